"""
Configuration and data types for packing simulations.
"""

from .enums import DistributionKind, DomainKind, RelaxationModel, ScaleMode, ShapeKind, SolverKind
from .errors import ConfigurationError, DictIO
from .solver_model import DEMConfig, HCSITSConfig, SolverModelConfig
from .types import (DistributionConfig, DomainSetup, EvaluationProperties, GenerationProperties,
                    ParticleProperties, ShakingProperties, ShapeConfig, TerminationProperties)
from .packconfig import PackingConfig

__all__ = [
    "ConfigurationError",
    "DictIO",
    "DistributionKind",
    "DomainKind",
    "RelaxationModel",
    "ScaleMode",
    "ShapeKind",
    "SolverKind",
    "SolverModelConfig",
    "DEMConfig",
    "HCSITSConfig",
    "DomainSetup",
    "ParticleProperties",
    "GenerationProperties",
    "TerminationProperties",
    "ShakingProperties",
    "DistributionConfig",
    "ShapeConfig",
    "EvaluationProperties",
    "PackingConfig",
]
