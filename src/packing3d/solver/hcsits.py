"""
Hard-contact semi-implicit time stepping (HCSITS).

Every contact carries an impulse ``p`` (world frame) that is relaxed contact by
contact: the impulse of the contact is removed from the velocity corrections of
both particles, the contact velocity is evaluated in the contact frame (normal,
tangent, second tangent) and a new impulse is found by the selected relaxation
model. Corrections of ghost particles are reduced onto their owners after each
sweep, the owners update their velocities and broadcast them again.
"""

import logging

import numpy as np

from ..config import HCSITSConfig, RelaxationModel
from ..datastruct.utils import orthonormal_basis, skew
from ..domain import VELOCITY_CORRECTION, reduce_property, velocity_update
from . import kernels
from .kernels import integrate_positions, project_impulses, relax_contacts

logger = logging.getLogger(__name__)

MODEL_CODES = {
    RelaxationModel.INELASTIC_FRICTIONLESS: kernels.FRICTIONLESS,
    RelaxationModel.APPROXIMATE_COULOMB_DECOUPLING: kernels.APPROXIMATE_DECOUPLING,
    RelaxationModel.APPROXIMATE_COULOMB_ORTHOGONAL: kernels.APPROXIMATE_ORTHOGONAL,
    RelaxationModel.COULOMB_DECOUPLING: kernels.COULOMB_DECOUPLING,
    RelaxationModel.COULOMB_ORTHOGONAL: kernels.COULOMB_ORTHOGONAL,
    RelaxationModel.GENERALIZED_MAXIMUM_DISSIPATION: kernels.GENERALIZED_MAXIMUM_DISSIPATION,
    RelaxationModel.PROJECTED_GAUSS_SEIDEL: kernels.PROJECTED_GAUSS_SEIDEL,
}


#=====================================
# Cone projections
#=====================================

def project_on_friction_cone(p_cf, mu: float):
    """Euclidean projection of a contact frame impulse onto the Coulomb cone."""
    return project_impulses(p_cf, mu)


def clamp_radially(p_cf, mu: float):
    """Cut the tangential impulse back to the cone keeping its direction and the normal impulse."""
    return project_impulses(p_cf, mu, radially=True)


#=====================================
# Solver
#=====================================

class HCSITSSolver:

    def __init__(self, config: HCSITSConfig, reduced_gravitational_acceleration: float):
        self.config = config
        self.gravity = np.array([0.0, 0.0, -reduced_gravitational_acceleration])
        self.global_acceleration = self.gravity.copy()
        self.relaxation_model = config.relaxation_model
        self.model_code = MODEL_CODES[self.relaxation_model]
        logger.info(f"HCSITS solver with {self.relaxation_model.value}, "
                    f"{config.number_of_iterations} iterations")

    @property
    def name(self) -> str:
        return "HCSITS"

    def apply_shaking(self, ranks, acceleration: float):
        self.global_acceleration[0] += acceleration

    def step(self, ranks, comm, dt: float):
        for r in ranks:
            self.init_contacts(r.storage, r.contacts)
            self.init_particles(r.storage, dt)

        # relaxation 1.0: corrections from external loads must not be scaled
        reduce_property(ranks, comm, VELOCITY_CORRECTION)
        velocity_update(ranks, comm, 1.0)

        for _ in range(self.config.number_of_iterations):
            for r in ranks:
                self.relaxation_step(r.storage, r.contacts, dt)
            reduce_property(ranks, comm, VELOCITY_CORRECTION)
            velocity_update(ranks, comm, self.config.relaxation_parameter)

        for r in ranks:
            s = r.storage
            r.contacts.solver_data["force"] = r.contacts.solver_data["p"] / dt
            integrate_positions(s, s.owned_mask & s.mobile_mask, dt)
        self.global_acceleration = self.gravity.copy()

    # ------------------------------------------------------------------
    # initialisation
    # ------------------------------------------------------------------

    def init_contacts(self, storage, contacts):
        """Contact frames, effective mass blocks, corrected distances and zero impulses."""
        nc = len(contacts)
        data = contacts.solver_data
        data["p"] = np.zeros((nc, 3))
        data["mu"] = np.full(nc, self.config.friction_dynamic)
        erp = self.config.error_reduction_parameter
        data["distance"] = np.where(contacts.distance < 0.0, erp * contacts.distance, contacts.distance)
        _, inv_inertia = storage.world_inertia()
        data["inv_inertia"] = inv_inertia

        i, j = contacts.id1, contacts.id2
        basis = orthonormal_basis(contacts.normal)
        r1x = skew(contacts.r1)
        r2x = skew(contacts.r2)
        k_world = (storage.inv_mass[i] + storage.inv_mass[j])[:, None, None] * np.eye(3) \
            - r1x @ inv_inertia[i] @ r1x - r2x @ inv_inertia[j] @ r2x
        k_cf = basis @ k_world @ np.swapaxes(basis, 1, 2)
        data["basis"] = basis
        data["diag_nto"] = k_cf
        data["diag_n_inv"] = 1.0 / k_cf[:, 0, 0]
        if nc > 0:
            data["diag_nto_inv"] = np.linalg.inv(k_cf)
            data["diag_to_inv"] = np.linalg.inv(k_cf[:, 1:, 1:])
            # step size of the dissipation descent, inverse of the largest eigenvalue
            data["gmd_step"] = 1.0 / np.linalg.eigvalsh(0.5 * (k_cf + np.swapaxes(k_cf, 1, 2)))[:, -1]
        else:
            data["diag_nto_inv"] = np.zeros((0, 3, 3))
            data["diag_to_inv"] = np.zeros((0, 2, 2))
            data["gmd_step"] = np.zeros(0)

        v, w = storage.linear_velocity, storage.angular_velocity
        gdot = (v[i] + np.cross(w[i], contacts.r1)) - (v[j] + np.cross(w[j], contacts.r2))
        data["gdot_n_pre"] = np.einsum("ij,ij->i", contacts.normal, gdot)

    def init_particles(self, storage, dt: float):
        """Velocity corrections of the owned particles caused by loads and the global acceleration."""
        storage.dv[:] = 0.0
        storage.dw[:] = 0.0
        active = storage.owned_mask & storage.mobile_mask
        if np.any(active):
            idx = np.nonzero(active)[0]
            inertia, inv_inertia = storage.world_inertia()
            w = storage.angular_velocity[idx]
            inv_mass = storage.inv_mass[idx]
            storage.dv[idx] = (inv_mass[:, None] * storage.force[idx] + self.global_acceleration) * dt
            gyroscopic = np.cross(w, np.einsum("nij,nj->ni", inertia[idx], w))
            storage.dw[idx] = dt * np.einsum("nij,nj->ni", inv_inertia[idx], storage.torque[idx] - gyroscopic)
        storage.force[:] = 0.0
        storage.torque[:] = 0.0

    # ------------------------------------------------------------------
    # relaxation
    # ------------------------------------------------------------------

    def relaxation_step(self, storage, contacts, dt: float):
        """One sweep over the contacts of a rank, in contact order."""
        relax_contacts(storage, contacts, self.model_code, dt, self.config.restitution)
