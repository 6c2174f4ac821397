"""
Closed enumerations selected once from the configuration.
"""
from enum import Enum

from .errors import ConfigurationError


class _NamedEnum(Enum):
    """Enum whose members are looked up by their configuration name."""

    @classmethod
    def from_string(cls, name: str):
        for member in cls:
            if member.value.lower() == str(name).lower():
                return member
        choices = ", ".join(member.value for member in cls)
        raise ConfigurationError(f"Unknown {cls.__name__} '{name}', choose one of: {choices}")


class DomainKind(_NamedEnum):
    CONTAINER = "container"
    PERIODIC = "periodic"


class SolverKind(_NamedEnum):
    HCSITS = "HCSITS"
    DEM = "DEM"


class RelaxationModel(_NamedEnum):
    INELASTIC_FRICTIONLESS = "InelasticFrictionlessContact"
    APPROXIMATE_COULOMB_DECOUPLING = "ApproximateInelasticCoulombContactByDecoupling"
    APPROXIMATE_COULOMB_ORTHOGONAL = "ApproximateInelasticCoulombContactByOrthogonalProjections"
    COULOMB_DECOUPLING = "InelasticCoulombContactByDecoupling"
    COULOMB_ORTHOGONAL = "InelasticCoulombContactByOrthogonalProjections"
    GENERALIZED_MAXIMUM_DISSIPATION = "InelasticGeneralizedMaximumDissipationContact"
    PROJECTED_GAUSS_SEIDEL = "InelasticProjectedGaussSeidel"


class DistributionKind(_NamedEnum):
    UNIFORM = "Uniform"
    LOG_NORMAL = "LogNormal"
    MASS_FRACTIONS = "DiameterMassFractions"
    SIEVING_CURVE = "SievingCurve"


class ShapeKind(_NamedEnum):
    SPHERE = "Sphere"
    ELLIPSOID = "Ellipsoid"
    EQUIVALENT_ELLIPSOID = "EquivalentEllipsoid"
    ELLIPSOID_FORM_DISTRIBUTION = "EllipsoidFormDistribution"
    MESH = "Mesh"
    MESH_FORM_DISTRIBUTION = "MeshFormDistribution"


class ScaleMode(_NamedEnum):
    SPHERE_EQUIVALENT = "sphereEquivalent"
    SIEVE_LIKE = "sieveLike"
