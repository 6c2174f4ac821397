"""
Driver of a packing run: setup, the time step loop and the final evaluation.
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional

import numpy as np

from ..bpcd import ContactPipeline, HashGrids, LinkedCells
from ..config import DomainKind, PackingConfig, ShapeKind
from ..datastruct import GLOBAL, CylindricalBoundary, HalfSpace
from ..domain import (NUM_CONTACTS, BlockDomain, Communicator, ContactFilter, assoc_to_block, make_ranks,
                      reduce_property, select_sync_strategy)
from ..evaluation import (ContactInfoPerHorizontalLayerEvaluator, ParticleHistogram,
                          PorosityPerHorizontalLayerEvaluator, RunRecorder, SizeEvaluator,
                          diameter_from_sphere_volume, evaluate_contact_info, evaluate_particle_info,
                          plot_packing, plot_porosity_profile)
from ..generator import ParticleCreator, create_diameter_source, create_shape_generator, resolve_seed
from ..solver import SolverDispatcher, count_contacts, damp_velocities, limit_velocity
from .lifecycle import LifecycleStateMachine, Phase
from .timing import TimingTree

logger = logging.getLogger(__name__)

# bottom plane, top plane, container wall
NUM_RESERVED_UIDS = 3


def estimate_max_particle_diameter(max_generation_diameter: float, scaling_factor: float,
                                   sampled_maximum: float, maximum_allowed_interaction_radius: float) -> float:
    """
    Largest interaction diameter the broad phase and the synchronisation have to handle.

    The a-priori estimate from the distribution is replaced by 1.1 x the sampled
    maximum if the samples exceed it, and the result never exceeds the periodic bound.
    """
    max_diameter = max_generation_diameter * scaling_factor
    if max_diameter < sampled_maximum:
        logger.info("Maximum interaction diameter from samples is larger than estimated maximum diameter, "
                    "will use sampled one instead.")
        max_diameter = 1.1 * sampled_maximum
    if max_diameter > 2.0 * maximum_allowed_interaction_radius:
        logger.warning(f"Maximum expected particle interaction diameter ({max_diameter:.6g}) is larger than "
                       f"maximum allowed interaction diameter - check that the generated size & form "
                       f"distributions match the expected ones!")
        max_diameter = 2.0 * maximum_allowed_interaction_radius
    return max_diameter


def steps_from_spacing(spacing: float, dt: float) -> int:
    """Number of time steps for an output spacing in seconds, 0 if disabled."""
    if spacing <= 0.0:
        return 0
    return max(int(round(spacing / dt)), 1)


@dataclass(frozen=True)
class PackingResult:
    identifier: str
    timesteps: int
    simulation_time: float
    terminated: bool
    num_particles: int
    particle_volume: float
    maximum_height: float
    num_contacts: int
    estimated_porosity: float
    run_id: Optional[int] = None


class ParticlePacking:
    """
    A complete packing run over all in-process ranks.

    usage:
        config = PackingConfig.from_json("packing.json")
        result = ParticlePacking(config).run()
    """

    def __init__(self, config: PackingConfig, config_file: Optional[str] = None):
        self.config = config
        self.config_file = config_file
        self.timestep = 0
        self.current_time = 0.0
        self.timing = TimingTree()
        self.particle_info = None
        self._cell_widened = False
        self.setup()

    # ------------------------------------------------------------------
    # setup
    # ------------------------------------------------------------------

    def setup(self):
        cfg = self.config
        d, g = cfg.domain, cfg.generation
        width, height = d.domain_width, d.domain_height
        density = cfg.particle_props.density

        self.comm = Communicator(d.num_processes)
        self.domain = BlockDomain((-0.5 * width, -0.5 * width, 0.0), (0.5 * width, 0.5 * width, height),
                                  d.blocks_per_direction, d.is_periodic, d.num_processes)
        self.ranks = make_ranks(d.num_processes)

        # one seed for all ranks, so their diameter sequences stay aligned
        self.seed = resolve_seed(cfg.distribution.random_seed)
        self.shape_generator = create_shape_generator(cfg.shape, self.seed)
        normal_volume = self.shape_generator.normal_volume()
        self.diameter_sources = [create_diameter_source(cfg.distribution, normal_volume, g.total_particle_mass,
                                                        density, seed=self.seed) for _ in self.ranks]
        min_diameter, max_diameter = self.diameter_sources[0].generation_range()
        logger.info(f"Generate with diameters in range [{min_diameter}, {max_diameter}] and generation spacing = "
                    f"{g.generation_spacing}")

        self._create_global_particles()

        self.maximum_allowed_interaction_radius = math.inf
        if d.setup == DomainKind.PERIODIC:
            # two large particles must not touch each other through both periodic images
            self.maximum_allowed_interaction_radius = 0.25 * width
            logger.info(f"Periodic case: the maximum interaction radius is restricted to "
                        f"{self.maximum_allowed_interaction_radius} to ensure valid periodic interaction")

        for r in self.ranks:
            r.creator = ParticleCreator(r, self.domain, d.setup, density, g.scale_generation_spacing_with_form,
                                        reserved_uids=NUM_RESERVED_UIDS)
        self.min_generation_height = g.generation_spacing
        self.max_generation_height = height - g.generation_spacing
        self.create_particles(max(self.min_generation_height, g.initial_generation_height_ratio_start * height),
                              min(self.max_generation_height, g.initial_generation_height_ratio_end * height))

        sample = self.comm.allgather([2.0 * r.storage.interaction_radius[r.storage.owned_mask] for r in self.ranks])
        sampled_maximum = float(np.max(sample)) if len(sample) else 0.0
        if len(sample):
            logger.info(f"Statistics of initially created particles' interaction diameters: "
                        f"min = {np.min(sample):.6g}, max = {sampled_maximum:.6g}, mean = {np.mean(sample):.6g}, "
                        f"count = {len(sample)}")
        self.max_particle_diameter = estimate_max_particle_diameter(
            max_diameter, self.shape_generator.max_diameter_scaling_factor(), sampled_maximum,
            self.maximum_allowed_interaction_radius)

        smallest_block_size = self.domain.smallest_block_size()
        logger.info(f"Sync info: maximum expected interaction diameter = {self.max_particle_diameter} and "
                    f"smallest block size = {smallest_block_size}")
        sync_strategy, self.sync_repetitions = select_sync_strategy(smallest_block_size, self.max_particle_diameter)
        self.sync = sync_strategy(self.domain, self.comm)
        self.synchronize(self.sync_repetitions)

        self._build_broad_phase(self.max_particle_diameter)
        sphere_only = cfg.shape.kind == ShapeKind.SPHERE
        self.contact_pipeline = ContactPipeline(self.domain, ContactFilter(self.domain), sphere_only,
                                                cfg.evaluation.use_hash_grids)

        self.solver = SolverDispatcher.create(cfg)
        self.lifecycle = LifecycleStateMachine(g, cfg.termination, cfg.shaking, height, cfg.dt, density)
        if g.limit_velocity > 0.0:
            logger.info(f"Will apply limiting of translational particle velocity to maximal magnitude of "
                        f"{g.limit_velocity}")

        e = cfg.evaluation
        self.size_evaluator = SizeEvaluator(cfg.shape.scale_mode)
        self.histogram = ParticleHistogram(e.histogram_bins, self.size_evaluator)
        self.histogram.evaluate(self.ranks, self.comm)
        logger.info(self.histogram)
        self.porosity_evaluator = PorosityPerHorizontalLayerEvaluator(e.layer_height, d)

        self.recorder = RunRecorder(e.output_folder, self.comm, e.sqlite_file)
        self.vis_steps = steps_from_spacing(e.vis_spacing, cfg.dt)
        self.info_steps = steps_from_spacing(e.info_spacing, cfg.dt)
        self.logging_steps = steps_from_spacing(e.logging_spacing, cfg.dt)
        if self.logging_steps:
            self.recorder.open_logging()

        logger.info(evaluate_particle_info(self.ranks, self.comm))
        logger.info(f"Starting simulation in domain of volume {d.domain_volume} m^3.")
        logger.info(f"Will terminate generation when particle mass is above {g.total_particle_mass} kg.")

    def _create_global_particles(self):
        d = self.config.domain
        density = self.config.particle_props.density
        for r in self.ranks:
            s = r.storage
            s.create(0, r.rank, (0.0, 0.0, 0.0), HalfSpace((0.0, 0.0, 1.0)), density, flags=GLOBAL)
            s.create(1, r.rank, (0.0, 0.0, d.domain_height), HalfSpace((0.0, 0.0, -1.0)), density, flags=GLOBAL)
            if d.setup == DomainKind.CONTAINER:
                s.create(2, r.rank, (0.0, 0.0, 0.0), CylindricalBoundary(0.5 * d.domain_width), density,
                         flags=GLOBAL)

    def _build_broad_phase(self, max_diameter: float):
        if self.config.evaluation.use_hash_grids:
            logger.info("Using hash grids")
            for r in self.ranks:
                r.broad_phase = HashGrids(self.domain, r.rank, max_diameter)
        else:
            self.linked_cell_width = 1.01 * max_diameter
            logger.info(f"Using linked cells with cell width = {self.linked_cell_width}")
            for r in self.ranks:
                r.broad_phase = LinkedCells(self.domain, r.rank, self.linked_cell_width)

    def create_particles(self, z_min: float, z_max: float) -> int:
        g = self.config.generation
        created = [r.creator.create_particles(z_min, z_max, g.generation_spacing, self.diameter_sources[r.rank],
                                              self.shape_generator, g.initial_velocity,
                                              self.maximum_allowed_interaction_radius)
                   for r in self.ranks]
        num_created = int(self.comm.allreduce(created))
        logger.info(f"Created {num_created} particles between z = {z_min:.4g} and {z_max:.4g}")
        return num_created

    def synchronize(self, repetitions: int = 1):
        assoc_to_block(self.ranks, self.domain)
        for _ in range(repetitions):
            self.sync(self.ranks)

    # ------------------------------------------------------------------
    # time stepping
    # ------------------------------------------------------------------

    def sort_particles(self):
        for r in self.ranks:
            s = r.storage
            s.sort_by(r.broad_phase.linearized_index(s.position))

    def detect_contacts(self):
        for r in self.ranks:
            self.contact_pipeline.run(r)

    def step(self):
        cfg = self.config
        e = cfg.evaluation
        t = self.current_time
        timing = self.timing

        timing.start("Sorting")
        if e.particle_sorting_spacing > 0 and self.timestep % e.particle_sorting_spacing == 0 \
                and not e.use_hash_grids:
            self.sort_particles()
        timing.stop("Sorting")

        timing.start("Output")
        if self.vis_steps and self.timestep % self.vis_steps == 0:
            self.recorder.save_frame(self.ranks, t, self.timestep)
        timing.stop("Output")

        timing.start("Contact detection")
        self.detect_contacts()
        timing.stop("Contact detection")

        timing.start("Contact eval")
        for r in self.ranks:
            count_contacts(r.storage, r.contacts)
        reduce_property(self.ranks, self.comm, NUM_CONTACTS)
        timing.stop("Contact eval")

        timing.start("Shaking")
        if self.lifecycle.is_shaking_active:
            self.solver.apply_shaking(self.ranks, self.lifecycle.shaking_acceleration(t))
        timing.stop("Shaking")

        timing.start(self.solver.name)
        self.solver.step(self.ranks, self.comm, cfg.dt)
        timing.stop(self.solver.name)

        if cfg.generation.limit_velocity > 0.0:
            timing.start("Velocity limiting")
            for r in self.ranks:
                s = r.storage
                limit_velocity(s, s.owned_mask & s.mobile_mask, cfg.generation.limit_velocity)
            timing.stop("Velocity limiting")

        timing.start("Sync")
        self.synchronize()
        timing.stop("Sync")

        timing.start("Evaluate particles")
        info = evaluate_particle_info(self.ranks, self.comm)
        decision = self.lifecycle.update(t, info)
        if decision.generate:
            timing.start("Generation")
            self.generate()
            timing.stop("Generation")
        if decision.damping_factor != 1.0:
            timing.start("Damping")
            for r in self.ranks:
                # ghosts are damped with the same factor, so replicas stay identical
                damp_velocities(r.storage, r.storage.mobile_mask, decision.damping_factor)
            timing.stop("Damping")
        timing.stop("Evaluate particles")
        self.particle_info = info

        write_info = bool(self.info_steps) and self.timestep % self.info_steps == 0
        write_logging = bool(self.logging_steps) and self.timestep % self.logging_steps == 0
        if write_info or write_logging:
            timing.start("Evaluate infos")
            self.report(t, info, write_info, write_logging)
            timing.stop("Evaluate infos")

        self.timestep += 1
        self.current_time = cfg.dt * self.timestep
        return decision

    def generate(self):
        g = self.config.generation
        height = self.config.domain.domain_height
        self.create_particles(max(self.min_generation_height, g.generation_height_ratio_start * height),
                              min(self.max_generation_height, g.generation_height_ratio_end * height))
        self.synchronize(self.sync_repetitions)
        self.check_diameter_drift()
        self.histogram.evaluate(self.ranks, self.comm)
        logger.info(self.histogram)

    def check_diameter_drift(self):
        """Widen the broad phase cells once if generated particles exceed the expected maximum diameter."""
        sample = self.comm.allgather([2.0 * r.storage.interaction_radius[r.storage.owned_mask] for r in self.ranks])
        if len(sample) == 0:
            return
        observed = float(np.max(sample))
        if observed <= self.max_particle_diameter:
            return
        if self._cell_widened:
            logger.warning(f"Interaction diameter {observed:.6g} exceeds the widened maximum "
                           f"{self.max_particle_diameter:.6g} again, broad phase is not adapted a second time")
            return
        widened = 1.1 * observed
        if widened > 2.0 * self.maximum_allowed_interaction_radius:
            logger.warning(f"Widened maximum interaction diameter {widened:.6g} is clamped to the maximum allowed "
                           f"{2.0 * self.maximum_allowed_interaction_radius:.6g}")
            widened = 2.0 * self.maximum_allowed_interaction_radius
        logger.warning(f"Sampled interaction diameter {observed:.6g} exceeds the expected maximum "
                       f"{self.max_particle_diameter:.6g}, broad phase is rebuilt for {widened:.6g}")
        self.max_particle_diameter = widened
        self._cell_widened = True
        self._build_broad_phase(widened)

    def report(self, t: float, info, write_info: bool, write_logging: bool):
        contact_info = evaluate_contact_info(self.ranks, self.comm)
        self.porosity_evaluator.evaluate(self.ranks, self.comm)
        porosity = self.porosity_evaluator.estimate_total_porosity()
        if write_logging:
            self.recorder.logging_writer(t, info, contact_info, porosity)
        if write_info:
            logger.info(f"t = {self.timestep} = {t:.6g} s")
            logger.info(f"{info} => {info.particle_volume * self.config.particle_props.density:.6g} kg, "
                        f"current porosity = {porosity:.4f}")
            if info.num_particles > 0:
                average_diameter = diameter_from_sphere_volume(info.particle_volume / info.num_particles)
                logger.info(f"{contact_info} => "
                            f"{contact_info.maximum_penetration_depth / average_diameter * 100.0:.4g}% "
                            f"of avg diameter {average_diameter:.6g}")

    def run(self, max_steps: Optional[int] = None) -> PackingResult:
        """Step until the packing has converged (or `max_steps` are done), then evaluate."""
        self.timing.start("Simulation")
        while self.lifecycle.phase != Phase.TERMINATED:
            if max_steps is not None and self.timestep >= max_steps:
                logger.warning(f"Stopping after {self.timestep} time steps without convergence")
                break
            self.step()
        for name in reversed(self.timing.running()):
            self.timing.stop(name)
        return self.finalize()

    # ------------------------------------------------------------------
    # final evaluation
    # ------------------------------------------------------------------

    def finalize(self) -> PackingResult:
        cfg = self.config
        recorder = self.recorder

        self.histogram.evaluate(self.ranks, self.comm)
        logger.info(self.histogram)

        self.porosity_evaluator.evaluate(self.ranks, self.comm)
        porosity = self.porosity_evaluator.estimate_total_porosity()
        logger.info(f"Estimated total porosity based on layers = {porosity}")
        porosity_file = recorder.path("layers.txt")
        logger.info(f"Writing porosity profile file to {porosity_file}")
        self.porosity_evaluator.print_to_file(porosity_file)

        contact_evaluator = ContactInfoPerHorizontalLayerEvaluator(cfg.evaluation.layer_height,
                                                                   cfg.domain.domain_height)
        contact_evaluator.evaluate(self.ranks, self.comm)
        contact_file = recorder.path("contact_layers.txt")
        logger.info(f"Writing contact info profile file to {contact_file}")
        contact_evaluator.print_to_file(contact_file)

        reduced_timing = self.timing.reduced()
        logger.info(f"\n{self.timing}")

        recorder.write_particle_info(self.ranks, self.size_evaluator)

        info = evaluate_particle_info(self.ranks, self.comm)
        contact_info = evaluate_contact_info(self.ranks, self.comm)
        integer_props, real_props, string_props = cfg.to_properties()
        integer_props.update({
            "numParticles": info.num_particles,
            "numContacts": contact_info.num_contacts,
            "numProcesses": self.comm.size,
            "timesteps": self.timestep,
            "singleShape": int(self.shape_generator.generates_single_shape()),
        })
        real_props.update({
            "maxParticlePosition": info.maximum_height,
            "particleVolume": info.particle_volume,
            "maxPenetrationDepth": contact_info.maximum_penetration_depth,
            "avgPenetrationDepth": contact_info.average_penetration_depth,
            "simulationTime": reduced_timing.get("Simulation", {}).get("total", 0.0),
            "generationSpacing": cfg.generation.generation_spacing,
            "maxAllowedInteractionRadius": self.maximum_allowed_interaction_radius,
            "estimatedPorosity": porosity,
        })
        string_props.update({
            "file_identifier": recorder.identifier,
            "evaluation_histogramData": " ".join(f"{h:.6f}" for h in self.histogram.mass_fraction_histogram),
            "evaluation_numberHistogramData": " ".join(str(int(h)) for h in self.histogram.number_histogram),
        })
        for (name, _), bins, histogram in zip(self.histogram.shape_evaluators, self.histogram.shape_bins,
                                              self.histogram.shape_histograms):
            string_props[f"evaluation_{name}_bins"] = " ".join(f"{b:.6f}" for b in bins)
            string_props[f"evaluation_{name}_histogramData"] = " ".join(f"{h:.6f}" for h in histogram)
        run_id = recorder.store_in_sqlite(integer_props, string_props, real_props, reduced_timing)

        recorder.save_frame(self.ranks, self.current_time, self.timestep)
        plot_porosity_profile(self.porosity_evaluator, recorder.path("porosity.png"))
        plot_packing(self.ranks, self.domain.aabb_min, self.domain.aabb_max, recorder.path("packing.png"))
        config_copy = recorder.copy_config(cfg, self.config_file)
        logger.info(f"Storing config file as {config_copy}")

        terminated = self.lifecycle.phase == Phase.TERMINATED
        if terminated:
            logger.info("Simulation terminated successfully")
        return PackingResult(
            identifier=recorder.identifier,
            timesteps=self.timestep,
            simulation_time=self.current_time,
            terminated=terminated,
            num_particles=info.num_particles,
            particle_volume=info.particle_volume,
            maximum_height=info.maximum_height,
            num_contacts=contact_info.num_contacts,
            estimated_porosity=porosity,
            run_id=run_id,
        )
