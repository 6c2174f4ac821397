import json
import logging
from dataclasses import asdict, fields, is_dataclass
from enum import Enum
from typing import Optional

from .enums import SolverKind
from .errors import ConfigurationError, DictIO
from .solver_model import DEMConfig, HCSITSConfig, SolverModelConfig
from .types import (DistributionConfig, DomainSetup, EvaluationProperties, GenerationProperties,
                    ParticleProperties, ShakingProperties, ShapeConfig, TerminationProperties)

logger = logging.getLogger(__name__)


class PackingConfig:
    """Configuration of a packing run."""

    def __init__(self,
                 domain: DomainSetup,
                 dt: float,
                 solver: SolverModelConfig,
                 particle_props: Optional[ParticleProperties] = None,
                 generation: Optional[GenerationProperties] = None,
                 termination: Optional[TerminationProperties] = None,
                 shaking: Optional[ShakingProperties] = None,
                 distribution: Optional[DistributionConfig] = None,
                 shape: Optional[ShapeConfig] = None,
                 evaluation: Optional[EvaluationProperties] = None):
        if dt <= 0:
            raise ConfigurationError(f"Time step dt must be positive, got {dt}")

        solver.validate()

        self.domain = domain
        self.dt = dt
        self.solver = solver
        self.particle_props = particle_props or ParticleProperties()
        self.generation = generation or GenerationProperties()
        self.termination = termination or TerminationProperties()
        self.shaking = shaking or ShakingProperties()
        self.distribution = distribution or DistributionConfig()
        self.shape = shape or ShapeConfig()
        self.evaluation = evaluation or EvaluationProperties()

        self.validate()

    def validate(self):
        if self.domain.domain_width <= self.generation.generation_spacing:
            raise ConfigurationError(
                f"Domain width ({self.domain.domain_width}) has to be larger than the generation spacing "
                f"({self.generation.generation_spacing})")

    # ------------------------------------------------------------------
    # JSON input
    # ------------------------------------------------------------------

    @classmethod
    def from_json(cls, file_path: str) -> 'PackingConfig':
        with open(file_path, "r", encoding="UTF-8") as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigurationError(f"Could not parse configuration file {file_path}: {e}") from e
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict) -> 'PackingConfig':
        get, alt, block = DictIO.get_essential, DictIO.get_alternative, DictIO.get_block

        main = block(data, "ParticlePacking")
        solver_block = block(data, "Solver")
        shaking_block = block(data, "Shaking")
        distribution_block = block(data, "Distribution")
        shape_block = block(data, "Shape")
        evaluation_block = block(data, "Evaluation")

        domain = DomainSetup(
            setup=alt(main, "domainSetup", "periodic"),
            domain_width=float(get(main, "domainWidth")),
            domain_height=float(get(main, "domainHeight")),
            blocks_per_direction=tuple(alt(main, "numBlocksPerDirection", (1, 1, 1))),
            num_processes=int(alt(main, "numProcesses", 1)))

        particle_props = ParticleProperties(
            density=float(alt(main, "particleDensity", 2650.0)),
            ambient_density=float(alt(main, "ambientDensity", 1000.0)),
            gravitational_acceleration=float(alt(main, "gravitationalAcceleration", 9.81)))

        generation = GenerationProperties(
            initial_velocity=float(alt(main, "initialVelocity", 1.0)),
            initial_generation_height_ratio_start=float(alt(main, "initialGenerationHeightRatioStart", 0.0)),
            initial_generation_height_ratio_end=float(alt(main, "initialGenerationHeightRatioEnd", 1.0)),
            generation_spacing=float(get(main, "generationSpacing")),
            generation_height_ratio_start=float(alt(main, "generationHeightRatioStart", 0.5)),
            generation_height_ratio_end=float(alt(main, "generationHeightRatioEnd", 1.0)),
            scale_generation_spacing_with_form=bool(alt(main, "scaleGenerationSpacingWithForm", True)),
            total_particle_mass=float(get(main, "totalParticleMass")),
            limit_velocity=float(alt(main, "limitVelocity", -1.0)))

        termination = TerminationProperties(
            terminal_velocity=float(alt(main, "terminalVelocity", 1e-3)),
            terminal_relative_height_change=float(alt(main, "terminalRelativeHeightChange", 1e-5)),
            minimal_terminal_run_time=float(alt(main, "minimalTerminalRunTime", 0.0)),
            termination_checking_spacing=float(alt(main, "terminationCheckingSpacing", 0.01)),
            velocity_damping_coefficient=float(alt(main, "velocityDampingCoefficient", 1e-4)))

        shaking = ShakingProperties(
            enabled=bool(alt(shaking_block, "enabled", alt(main, "shaking", False))),
            amplitude=float(alt(shaking_block, "amplitude", 0.0)),
            period=float(alt(shaking_block, "period", 1.0)),
            duration=float(alt(shaking_block, "duration", 0.0)),
            active_from_beginning=bool(alt(shaking_block, "activeFromBeginning", False)))

        distribution = DistributionConfig(
            kind=alt(distribution_block, "distribution", "Uniform"),
            random_seed=int(alt(distribution_block, "randomSeed", 41)),
            uniform_diameter=float(alt(distribution_block, "diameter", 1.0)),
            lognormal_mu=float(alt(distribution_block, "mu", 0.0)),
            lognormal_variance=float(alt(distribution_block, "variance", 0.01)),
            diameters=[float(d) for d in alt(distribution_block, "diameters", [])],
            mass_fractions=[float(f) for f in alt(distribution_block, "massFractions", [])],
            sieve_sizes=[float(s) for s in alt(distribution_block, "sieveSizes", [])],
            use_discrete_form=bool(alt(distribution_block, "useDiscreteForm", True)))

        shape = ShapeConfig(
            kind=alt(shape_block, "shape", "Sphere"),
            scale_mode=alt(shape_block, "scaleMode", "sphereEquivalent"),
            semi_axes=tuple(alt(shape_block, "semiAxes", (1.0, 1.0, 1.0))),
            mesh_files=list(alt(shape_block, "meshFiles", [])),
            elongation_mean=float(alt(shape_block, "elongationMean", 1.0)),
            elongation_std=float(alt(shape_block, "elongationStdDev", 0.0)),
            flatness_mean=float(alt(shape_block, "flatnessMean", 1.0)),
            flatness_std=float(alt(shape_block, "flatnessStdDev", 0.0)))

        evaluation = EvaluationProperties(
            histogram_bins=list(alt(evaluation_block, "histogramBins", [0.5, 1.0, 1.5, 2.0])),
            layer_height=float(alt(evaluation_block, "layerHeight", 1.0)),
            output_folder=str(alt(main, "outFolder", "output")),
            sqlite_file=alt(main, "sqlDBFileName", None),
            vis_spacing=float(alt(main, "visSpacing", -1.0)),
            info_spacing=float(alt(main, "infoSpacing", 1.0)),
            logging_spacing=float(alt(main, "loggingSpacing", -1.0)),
            particle_sorting_spacing=int(alt(main, "particleSortingSpacing", 0)),
            use_hash_grids=bool(alt(main, "useHashGrids", False)))

        solver_kind = SolverKind.from_string(alt(solver_block, "solver", "HCSITS"))
        common = dict(
            friction_dynamic=float(alt(solver_block, "frictionCoefficientDynamic", 0.5)),
            restitution=float(alt(solver_block, "coefficientOfRestitution", 0.1)))
        if solver_kind == SolverKind.HCSITS:
            hcsits_block = block(solver_block, "HCSITS")
            solver = HCSITSConfig(
                number_of_iterations=int(alt(hcsits_block, "numberOfIterations", 10)),
                relaxation_model=alt(hcsits_block, "relaxationModel",
                                     "ApproximateInelasticCoulombContactByDecoupling"),
                error_reduction_parameter=float(alt(hcsits_block, "errorReductionParameter", 0.8)),
                relaxation_parameter=float(alt(hcsits_block, "relaxationParameter", 0.75)),
                **common)
        else:
            dem_block = block(solver_block, "DEM")
            solver = DEMConfig(
                collision_time=float(alt(dem_block, "collisionTime", 0.1)),
                poissons_ratio=float(alt(dem_block, "poissonsRatio", 0.22)),
                friction_static=float(alt(solver_block, "frictionCoefficientStatic", 0.5)),
                **common)

        return cls(domain=domain,
                   dt=float(get(solver_block, "dt")),
                   solver=solver,
                   particle_props=particle_props,
                   generation=generation,
                   termination=termination,
                   shaking=shaking,
                   distribution=distribution,
                   shape=shape,
                   evaluation=evaluation)

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def sections(self):
        return {
            "domain": self.domain,
            "particle": self.particle_props,
            "generation": self.generation,
            "termination": self.termination,
            "shaking": self.shaking,
            "distribution": self.distribution,
            "shape": self.shape,
            "evaluation": self.evaluation,
            "solver": self.solver,
        }

    def to_properties(self):
        """Flatten every scalar setting into (integer, real, string) property dictionaries."""
        integer_props, real_props, string_props = {}, {}, {}
        real_props["dt"] = self.dt
        string_props["solver"] = self.solver.kind.value
        for section_name, section in self.sections().items():
            if not is_dataclass(section):
                continue
            for f in fields(section):
                key = f"{section_name}_{f.name}"
                value = getattr(section, f.name)
                if isinstance(value, Enum):
                    string_props[key] = value.value
                elif isinstance(value, bool):
                    integer_props[key] = int(value)
                elif isinstance(value, int):
                    integer_props[key] = value
                elif isinstance(value, float):
                    real_props[key] = value
                elif isinstance(value, str):
                    string_props[key] = value
                elif isinstance(value, (list, tuple)):
                    string_props[key] = json.dumps(list(value))
        if isinstance(self.solver, DEMConfig):
            real_props["solver_kappa"] = self.solver.kappa
        real_props["reduced_gravitational_acceleration"] = self.particle_props.reduced_gravitational_acceleration
        return integer_props, real_props, string_props

    def to_dict(self):
        """Plain dictionary copy of the configuration (for archiving next to the output)."""
        def convert(value):
            if isinstance(value, Enum):
                return value.value
            if isinstance(value, tuple):
                return list(value)
            return value
        result = {"dt": self.dt}
        for name, section in self.sections().items():
            result[name] = {k: convert(v) for k, v in asdict(section).items()}
        return result

    def summary(self) -> str:
        """Return a human-readable summary of the configuration."""
        d = self.domain
        p = self.particle_props
        g = self.generation
        t = self.termination
        s = self.shaking
        model = self.solver

        summary = f"""
Packing Configuration:
======================
Domain: {d.setup.value}, width {d.domain_width}, height {d.domain_height}
Blocks per direction: {d.blocks_per_direction}, processes: {d.num_processes}
Time step: {self.dt} s

Particle Properties:
- Density: {p.density} kg/m³
- Ambient density: {p.ambient_density} kg/m³
- Reduced gravitational acceleration: {p.reduced_gravitational_acceleration} m/s²

Generation:
- Distribution: {self.distribution.kind.value} (seed {self.distribution.random_seed})
- Shape: {self.shape.kind.value} ({self.shape.scale_mode.value})
- Spacing: {g.generation_spacing}, scaled with form: {g.scale_generation_spacing_with_form}
- Zone (height ratios): [{g.generation_height_ratio_start}, {g.generation_height_ratio_end}]
- Initial zone (height ratios): [{g.initial_generation_height_ratio_start}, {g.initial_generation_height_ratio_end}]
- Initial velocity: {g.initial_velocity}
- Total particle mass: {g.total_particle_mass}

Termination:
- Terminal velocity: {t.terminal_velocity}
- Terminal relative height change: {t.terminal_relative_height_change}
- Minimal terminal run time: {t.minimal_terminal_run_time}
- Velocity damping coefficient: {t.velocity_damping_coefficient}
"""
        if s.enabled:
            summary += f"""
Shaking:
- Amplitude: {s.amplitude}, period: {s.period}, duration: {s.duration}
- Active from beginning: {s.active_from_beginning}
"""
        summary += f"""
Solver: {model.get_model_name().upper()}
"""
        if isinstance(model, HCSITSConfig):
            summary += f"""- Iterations: {model.number_of_iterations}
- Relaxation model: {model.relaxation_model.value}
- Error reduction parameter: {model.error_reduction_parameter}
- Relaxation parameter: {model.relaxation_parameter}
- Friction: {model.friction_dynamic}
"""
        elif isinstance(model, DEMConfig):
            summary += f"""- Collision time: {model.collision_time}
- Poisson's ratio: {model.poissons_ratio} (kappa = {model.kappa:.4f})
- Friction (static / dynamic): {model.friction_static} / {model.friction_dynamic}
"""
        summary += f"""- Coefficient of restitution: {model.restitution}
"""
        return summary
