'''
Collision response solver parameter settings
'''
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass

from .enums import RelaxationModel, SolverKind
from .errors import ConfigurationError


class SolverModelConfig(ABC):
    """Base class for collision response solvers."""

    @abstractmethod
    def get_model_name(self) -> str:
        pass

    @abstractmethod
    def validate(self):
        pass

    @property
    @abstractmethod
    def kind(self) -> SolverKind:
        pass


def _validate_common(model):
    if model.friction_dynamic < 0:
        raise ConfigurationError("Friction coefficients must be non-negative")
    if not (0.0 < model.restitution <= 1.0):
        raise ConfigurationError(f"Coefficient of restitution must be in (0, 1], got {model.restitution}")


@dataclass
class HCSITSConfig(SolverModelConfig):
    """Hard-contact semi-implicit time stepping."""
    number_of_iterations: int = 10
    relaxation_model: RelaxationModel = RelaxationModel.APPROXIMATE_COULOMB_DECOUPLING
    error_reduction_parameter: float = 0.8
    relaxation_parameter: float = 0.75
    friction_dynamic: float = 0.5   # the sweeps use a single Coulomb coefficient
    restitution: float = 0.1        # used by InelasticProjectedGaussSeidel only

    def __post_init__(self):
        if isinstance(self.relaxation_model, str):
            self.relaxation_model = RelaxationModel.from_string(self.relaxation_model)

    @property
    def kind(self) -> SolverKind:
        return SolverKind.HCSITS

    def get_model_name(self) -> str:
        return "hcsits"

    def validate(self):
        _validate_common(self)
        if self.number_of_iterations < 0:
            raise ConfigurationError("Number of HCSITS iterations must be non-negative")
        if not (0.0 <= self.error_reduction_parameter <= 1.0):
            raise ConfigurationError("Error reduction parameter must be between 0 and 1")
        if not (0.0 < self.relaxation_parameter <= 1.0):
            raise ConfigurationError("Relaxation parameter must be in (0, 1]")


@dataclass
class DEMConfig(SolverModelConfig):
    """Linear spring-dashpot with Coulomb friction."""
    collision_time: float = 0.1
    poissons_ratio: float = 0.22
    friction_static: float = 0.5
    friction_dynamic: float = 0.5
    restitution: float = 0.1

    @property
    def kind(self) -> SolverKind:
        return SolverKind.DEM

    @property
    def kappa(self) -> float:
        """Tangential to normal stiffness ratio."""
        return 2.0 * (1.0 - self.poissons_ratio) / (2.0 - self.poissons_ratio)

    def get_model_name(self) -> str:
        return "dem"

    def validate(self):
        _validate_common(self)
        if self.friction_static < 0:
            raise ConfigurationError("Friction coefficients must be non-negative")
        if self.collision_time <= 0:
            raise ConfigurationError(f"Collision time must be positive, got {self.collision_time}")
        if not (0.0 <= self.poissons_ratio < 0.5):
            raise ConfigurationError("Poisson's ratio must be in [0, 0.5)")

    def stiffness_and_damping(self, effective_mass):
        """Return (kn, dn, kt, dt) for the given effective mass (scalar or array)."""
        log_e = math.log(self.restitution)
        tc = self.collision_time
        kn = effective_mass * (math.pi ** 2 + log_e ** 2) / (tc * tc)
        dn = -2.0 * effective_mass * log_e / tc
        return kn, dn, self.kappa * kn, math.sqrt(self.kappa) * dn
