"""
Domain, material, generation and lifecycle property definitions.
"""

import math
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from .enums import DistributionKind, DomainKind, ScaleMode, ShapeKind
from .errors import ConfigurationError


@dataclass
class DomainSetup:
    """Simulation domain [-w/2, w/2]^2 x [0, h] and its block partition."""
    setup: DomainKind = DomainKind.PERIODIC
    domain_width: float = 10.0
    domain_height: float = 20.0
    blocks_per_direction: Tuple[int, int, int] = (1, 1, 1)
    num_processes: int = 1

    def __post_init__(self):
        if isinstance(self.setup, str):
            self.setup = DomainKind.from_string(self.setup)
        self.blocks_per_direction = tuple(int(b) for b in self.blocks_per_direction)
        if self.domain_width <= 0 or self.domain_height <= 0:
            raise ConfigurationError(
                f"Domain size must be positive, got width {self.domain_width} and height {self.domain_height}")
        if len(self.blocks_per_direction) != 3 or min(self.blocks_per_direction) < 1:
            raise ConfigurationError(f"Invalid blocks per direction {self.blocks_per_direction}")
        num_blocks = self.blocks_per_direction[0] * self.blocks_per_direction[1] * self.blocks_per_direction[2]
        if not (1 <= self.num_processes <= num_blocks):
            raise ConfigurationError(
                f"Number of processes ({self.num_processes}) must be in [1, {num_blocks}] (number of blocks)")

    @property
    def is_periodic(self) -> Tuple[bool, bool, bool]:
        periodic = self.setup == DomainKind.PERIODIC
        return (periodic, periodic, False)

    @property
    def domain_volume(self) -> float:
        if self.setup == DomainKind.CONTAINER:
            return math.pi * 0.25 * self.domain_width ** 2 * self.domain_height
        return self.domain_width ** 2 * self.domain_height

    @property
    def horizontal_area(self) -> float:
        return self.domain_volume / self.domain_height


@dataclass
class ParticleProperties:
    """Material properties of particles and ambient fluid."""
    density: float = 2650.0                 # kg/m^3
    ambient_density: float = 1000.0         # kg/m^3
    gravitational_acceleration: float = 9.81

    def __post_init__(self):
        if self.density <= 0:
            raise ConfigurationError(f"Particle density must be positive, got {self.density}")
        if self.ambient_density < 0:
            raise ConfigurationError(f"Ambient density must be non-negative, got {self.ambient_density}")

    @property
    def reduced_gravitational_acceleration(self) -> float:
        return (self.density - self.ambient_density) / self.density * self.gravitational_acceleration


@dataclass
class GenerationProperties:
    """Where, how fast and how much to generate."""
    initial_velocity: float = 1.0
    initial_generation_height_ratio_start: float = 0.0
    initial_generation_height_ratio_end: float = 1.0
    generation_spacing: float = 1.0
    generation_height_ratio_start: float = 0.5
    generation_height_ratio_end: float = 1.0
    scale_generation_spacing_with_form: bool = True
    total_particle_mass: float = 1.0
    limit_velocity: float = -1.0            # <= 0 disables the limiter

    def __post_init__(self):
        if self.generation_spacing <= 0:
            raise ConfigurationError(f"Generation spacing must be positive, got {self.generation_spacing}")
        if self.initial_velocity < 0:
            raise ConfigurationError(f"Initial velocity must be non-negative, got {self.initial_velocity}")
        for name in ("initial_generation_height_ratio", "generation_height_ratio"):
            start = getattr(self, name + "_start")
            end = getattr(self, name + "_end")
            if not (0.0 <= start <= end <= 1.0):
                raise ConfigurationError(f"{name} range [{start}, {end}] must satisfy 0 <= start <= end <= 1")
        if self.total_particle_mass <= 0:
            raise ConfigurationError(f"Total particle mass must be positive, got {self.total_particle_mass}")


@dataclass
class TerminationProperties:
    """Settling criteria and velocity damping."""
    terminal_velocity: float = 1e-3
    terminal_relative_height_change: float = 1e-5
    minimal_terminal_run_time: float = 0.0
    termination_checking_spacing: float = 0.01
    velocity_damping_coefficient: float = 1e-4

    def __post_init__(self):
        if self.termination_checking_spacing <= 0:
            raise ConfigurationError("Termination checking spacing must be positive")
        if not (0.0 < self.velocity_damping_coefficient <= 1.0):
            raise ConfigurationError(
                f"Velocity damping coefficient must be in (0, 1], got {self.velocity_damping_coefficient}")


@dataclass
class ShakingProperties:
    """Horizontal sinusoidal shaking of the packing."""
    enabled: bool = False
    amplitude: float = 0.0
    period: float = 1.0
    duration: float = 0.0
    active_from_beginning: bool = False

    def __post_init__(self):
        if self.enabled and self.period <= 0:
            raise ConfigurationError(f"Shaking period must be positive, got {self.period}")
        if self.duration < 0:
            raise ConfigurationError(f"Shaking duration must be non-negative, got {self.duration}")


@dataclass
class DistributionConfig:
    """Particle diameter distribution."""
    kind: DistributionKind = DistributionKind.UNIFORM
    random_seed: int = 41                   # < 0 seeds from the clock
    uniform_diameter: float = 1.0
    lognormal_mu: float = 0.0
    lognormal_variance: float = 0.01
    diameters: List[float] = field(default_factory=list)
    mass_fractions: List[float] = field(default_factory=list)
    sieve_sizes: List[float] = field(default_factory=list)
    use_discrete_form: bool = True

    def __post_init__(self):
        if isinstance(self.kind, str):
            self.kind = DistributionKind.from_string(self.kind)
        if self.kind == DistributionKind.UNIFORM and self.uniform_diameter <= 0:
            raise ConfigurationError(f"Uniform diameter must be positive, got {self.uniform_diameter}")
        if self.kind == DistributionKind.LOG_NORMAL and self.lognormal_variance < 0:
            raise ConfigurationError("LogNormal variance must be non-negative")
        if self.kind == DistributionKind.MASS_FRACTIONS:
            if len(self.diameters) == 0 or len(self.diameters) != len(self.mass_fractions):
                raise ConfigurationError("Diameters and mass fractions must be non-empty and of equal length")
        if self.kind == DistributionKind.SIEVING_CURVE:
            if len(self.sieve_sizes) < 2 or len(self.sieve_sizes) != len(self.mass_fractions) + 1:
                raise ConfigurationError("Sieving curve needs n+1 sieve sizes for n mass fractions")
            if any(b <= a for a, b in zip(self.sieve_sizes[:-1], self.sieve_sizes[1:])):
                raise ConfigurationError("Sieve sizes must be strictly increasing")
        if any(f < 0 for f in self.mass_fractions):
            raise ConfigurationError("Mass fractions must be non-negative")
        if self.mass_fractions and sum(self.mass_fractions) <= 0:
            raise ConfigurationError("Mass fractions must not all be zero")


@dataclass
class ShapeConfig:
    """Particle shape and how the drawn diameter is interpreted."""
    kind: ShapeKind = ShapeKind.SPHERE
    scale_mode: ScaleMode = ScaleMode.SPHERE_EQUIVALENT
    semi_axes: Tuple[float, float, float] = (1.0, 1.0, 1.0)
    mesh_files: List[str] = field(default_factory=list)
    elongation_mean: float = 1.0
    elongation_std: float = 0.0
    flatness_mean: float = 1.0
    flatness_std: float = 0.0

    def __post_init__(self):
        if isinstance(self.kind, str):
            self.kind = ShapeKind.from_string(self.kind)
        if isinstance(self.scale_mode, str):
            self.scale_mode = ScaleMode.from_string(self.scale_mode)
        self.semi_axes = tuple(float(a) for a in self.semi_axes)
        if len(self.semi_axes) != 3 or min(self.semi_axes) <= 0:
            raise ConfigurationError(f"Semi axes must be three positive values, got {self.semi_axes}")
        if self.kind in (ShapeKind.MESH, ShapeKind.MESH_FORM_DISTRIBUTION, ShapeKind.EQUIVALENT_ELLIPSOID) \
                and len(self.mesh_files) == 0:
            raise ConfigurationError(f"Shape '{self.kind.value}' requires at least one mesh file")
        for name in ("elongation", "flatness"):
            mean = getattr(self, name + "_mean")
            if not (0.0 < mean <= 1.0):
                raise ConfigurationError(f"{name} mean must be in (0, 1], got {mean}")
            if getattr(self, name + "_std") < 0:
                raise ConfigurationError(f"{name} std must be non-negative")


@dataclass
class EvaluationProperties:
    """Output, evaluation and bookkeeping intervals."""
    histogram_bins: List[float] = field(default_factory=lambda: [0.5, 1.0, 1.5, 2.0])
    layer_height: float = 1.0
    output_folder: str = "output"
    sqlite_file: Optional[str] = None
    vis_spacing: float = -1.0               # seconds, <= 0 disables particle frames
    info_spacing: float = 1.0
    logging_spacing: float = -1.0
    particle_sorting_spacing: int = 0       # time steps, <= 0 disables sorting
    use_hash_grids: bool = False

    def __post_init__(self):
        self.histogram_bins = [float(b) for b in self.histogram_bins]
        if any(b <= a for a, b in zip(self.histogram_bins[:-1], self.histogram_bins[1:])):
            raise ConfigurationError("Histogram bins must be strictly increasing")
        if self.layer_height <= 0:
            raise ConfigurationError(f"Layer height must be positive, got {self.layer_height}")
