"""
Global particle and contact statistics, combined over all ranks.
"""

import numpy as np

from ..datastruct import ContactAggregateInfo, ParticleAggregateInfo


def evaluate_particle_info(ranks, comm) -> ParticleAggregateInfo:
    """Statistics of the finite particles owned by the ranks (each particle counted once)."""
    counts, volumes, weighted_heights, max_heights, max_velocities = [], [], [], [], []
    for r in ranks:
        s = r.storage
        owned = s.owned_indices()
        volume = s.volumes(owned)
        z = s.position[owned, 2]
        counts.append(len(owned))
        volumes.append(float(np.sum(volume)))
        weighted_heights.append(float(np.sum(volume * z)))
        max_heights.append(float(np.max(z)) if len(owned) else -np.inf)
        speed = np.linalg.norm(s.linear_velocity[owned], axis=1)
        max_velocities.append(float(np.max(speed)) if len(owned) else 0.0)

    num_particles = int(comm.allreduce(counts))
    total_volume = float(comm.allreduce(volumes))
    if num_particles == 0:
        return ParticleAggregateInfo()
    return ParticleAggregateInfo(
        num_particles=num_particles,
        particle_volume=total_volume,
        maximum_height=float(comm.allreduce(max_heights, op="max")),
        height_of_mass=float(comm.allreduce(weighted_heights)) / total_volume,
        maximum_velocity=float(comm.allreduce(max_velocities, op="max")),
    )


def evaluate_contact_info(ranks, comm) -> ContactAggregateInfo:
    counts, sums, maxima = [], [], []
    for r in ranks:
        penetration = np.maximum(-r.contacts.distance, 0.0)
        counts.append(len(penetration))
        sums.append(float(np.sum(penetration)))
        maxima.append(float(np.max(penetration)) if len(penetration) else 0.0)
    num_contacts = int(comm.allreduce(counts))
    if num_contacts == 0:
        return ContactAggregateInfo()
    return ContactAggregateInfo(
        num_contacts=num_contacts,
        maximum_penetration_depth=float(comm.allreduce(maxima, op="max")),
        average_penetration_depth=float(comm.allreduce(sums)) / num_contacts,
    )


def diameter_from_sphere_volume(volume: float) -> float:
    return float(np.cbrt(6.0 * volume / np.pi))
