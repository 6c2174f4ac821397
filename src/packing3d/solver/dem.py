"""
Soft-contact DEM: linear spring-dashpot with Coulomb friction and semi-implicit Euler.

Stiffness and damping are derived per contact from the collision time and the
coefficient of restitution, so that every pair of particles has the same
collision duration independent of its mass.
"""

import logging

import numpy as np

from ..config import DEMConfig
from ..datastruct import GLOBAL
from ..domain import FORCE_TORQUE, reduce_contact_history, reduce_property
from .kernels import add_acceleration_force, linear_spring_dashpot, semi_implicit_euler

logger = logging.getLogger(__name__)


class DEMSolver:

    def __init__(self, config: DEMConfig, reduced_gravitational_acceleration: float):
        self.config = config
        self.gravity = np.array([0.0, 0.0, -reduced_gravitational_acceleration])
        self.global_acceleration = self.gravity.copy()
        logger.info(f"DEM solver with collision time {config.collision_time}, kappa {config.kappa:.4f}")

    @property
    def name(self) -> str:
        return "DEM"

    def apply_shaking(self, ranks, acceleration: float):
        self.global_acceleration[0] += acceleration

    def step(self, ranks, comm, dt: float):
        for r in ranks:
            s, contacts = r.storage, r.contacts
            if len(contacts):
                stiffness_damping = self.config.stiffness_and_damping(self.effective_mass(s, contacts))
                history_in = lookup_tangential_history(s, contacts)
                history_out, force = linear_spring_dashpot(s, contacts, stiffness_damping, history_in,
                                                           self.config.friction_static,
                                                           self.config.friction_dynamic, dt)
                store_tangential_history(s, contacts, history_out)
                contacts.solver_data["force"] = force
            add_acceleration_force(s, s.owned_mask & s.mobile_mask, self.global_acceleration)

        reduce_contact_history(ranks, comm)
        reduce_property(ranks, comm, FORCE_TORQUE)

        for r in ranks:
            s = r.storage
            semi_implicit_euler(s, s.owned_mask & s.mobile_mask, dt)
            # ghosts and global particles never integrate
            s.force[:] = 0.0
            s.torque[:] = 0.0
        self.global_acceleration = self.gravity.copy()

    @staticmethod
    def effective_mass(storage, contacts):
        inv_sum = storage.inv_mass[contacts.id1] + storage.inv_mass[contacts.id2]
        return np.where(inv_sum > 0.0, 1.0 / np.where(inv_sum > 0.0, inv_sum, 1.0), 0.0)


#=====================================
# Tangential spring history
#=====================================
# The spring is stored on both particles of a pair, keyed by the partner uid.
# Particle 2 keeps the negated spring; global particles keep no history.

def lookup_tangential_history(storage, contacts):
    history = np.zeros((len(contacts), 3))
    uid = storage.uid
    is_global = storage.has_flag(GLOBAL)
    for c in range(len(contacts)):
        i, j = contacts.id1[c], contacts.id2[c]
        spring = storage.old_contact_history[i].get(int(uid[j]))
        if spring is not None:
            history[c] = spring
        elif not is_global[j]:
            spring = storage.old_contact_history[j].get(int(uid[i]))
            if spring is not None:
                history[c] = -spring
    return history


def store_tangential_history(storage, contacts, history):
    uid = storage.uid
    is_global = storage.has_flag(GLOBAL)
    for c in range(len(contacts)):
        if contacts.distance[c] >= 0.0:
            continue
        i, j = contacts.id1[c], contacts.id2[c]
        storage.new_contact_history[i][int(uid[j])] = history[c].copy()
        if not is_global[j]:
            storage.new_contact_history[j][int(uid[i])] = -history[c]
