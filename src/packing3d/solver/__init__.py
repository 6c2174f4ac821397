"""
Collision response solvers and the taichi kernels they share.
"""

from .dem import DEMSolver
from .dispatcher import SolverDispatcher
from .hcsits import HCSITSSolver, clamp_radially, project_on_friction_cone
from .kernels import (add_acceleration_force, count_contacts, damp_velocities, integrate_positions,
                      limit_velocity, linear_spring_dashpot, project_impulses, semi_implicit_euler)

__all__ = [
    "SolverDispatcher",
    "HCSITSSolver",
    "DEMSolver",
    "project_on_friction_cone",
    "clamp_radially",
    "project_impulses",
    "semi_implicit_euler",
    "integrate_positions",
    "damp_velocities",
    "limit_velocity",
    "add_acceleration_force",
    "count_contacts",
    "linear_spring_dashpot",
]
