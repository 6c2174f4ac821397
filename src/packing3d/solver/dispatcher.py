"""
Selection of the collision response solver from the configuration.
"""

import logging

from ..config import ConfigurationError, PackingConfig, SolverKind
from .dem import DEMSolver
from .hcsits import HCSITSSolver

logger = logging.getLogger(__name__)


class SolverDispatcher:
    """Resolves the configured collision response solver once at setup."""

    @staticmethod
    def create(config: PackingConfig):
        gravity = config.particle_props.reduced_gravitational_acceleration
        kind = config.solver.kind
        if kind == SolverKind.HCSITS:
            solver = HCSITSSolver(config.solver, gravity)
        elif kind == SolverKind.DEM:
            solver = DEMSolver(config.solver, gravity)
        else:
            raise ConfigurationError(f"Unknown solver {kind}")
        logger.info(f"Using solver {solver.name} with dt = {config.dt}")
        return solver
