"""
Particle creation on a hexagonal close packed lattice.
"""

import logging
import math

import numpy as np

from ..config import DomainKind
from ..datastruct.utils import DoublePrecisionTolerance

logger = logging.getLogger(__name__)


def hcp_lattice(lo, hi, reference, spacing: float) -> np.ndarray:
    """
    Points of the HCP lattice through `reference` with nearest neighbour
    distance `spacing` inside the box [lo, hi], ordered by z, then y, then x.
    """
    lo = np.asarray(lo, dtype=float)
    hi = np.asarray(hi, dtype=float)
    reference = np.asarray(reference, dtype=float)
    if spacing <= 0.0:
        raise ValueError(f"Lattice spacing must be positive, got {spacing}")
    if np.any(hi < lo):
        return np.zeros((0, 3))

    dx = spacing
    dy = spacing * math.sqrt(3.0) / 2.0
    dz = spacing * math.sqrt(6.0) / 3.0

    points = []
    for k in range(math.floor((lo[2] - reference[2]) / dz), math.ceil((hi[2] - reference[2]) / dz) + 1):
        z = reference[2] + k * dz
        if z < lo[2] or z > hi[2]:
            continue
        y_offset = (k % 2) * dy / 3.0
        j_lo = math.floor((lo[1] - reference[1] - y_offset) / dy)
        j_hi = math.ceil((hi[1] - reference[1] - y_offset) / dy)
        for j in range(j_lo, j_hi + 1):
            y = reference[1] + y_offset + j * dy
            if y < lo[1] or y > hi[1]:
                continue
            x_offset = 0.5 * dx * ((j + k) % 2)
            i_lo = math.ceil((lo[0] - reference[0] - x_offset) / dx)
            i_hi = math.floor((hi[0] - reference[0] - x_offset) / dx)
            if i_hi < i_lo:
                continue
            x = reference[0] + x_offset + np.arange(i_lo, i_hi + 1) * dx
            row = np.empty((len(x), 3))
            row[:, 0] = x
            row[:, 1] = y
            row[:, 2] = z
            points.append(row)
    if not points:
        return np.zeros((0, 3))
    return np.concatenate(points)


def spacing_scaling(shape_source, scale_with_form: bool) -> np.ndarray:
    """Per-axis lattice scaling (S, I, L) normalised on the intermediate axis."""
    if not scale_with_form:
        return np.ones(3)
    form = np.sort(np.asarray(shape_source.normal_form_parameters(), dtype=float))
    if not np.all(np.isfinite(form)) or form[0] <= DoublePrecisionTolerance:
        logger.warning(f"Degenerate normal form {form}, generation spacing is not scaled")
        return np.ones(3)
    return form / form[1]


class ParticleCreator:
    """Creates the particles of one rank."""

    def __init__(self, rank, domain, setup: DomainKind, density: float,
                 scale_generation_spacing_with_form: bool, reserved_uids: int = 0):
        self.rank = rank
        self.domain = domain
        self.setup = setup
        self.density = density
        self.scale_generation_spacing_with_form = scale_generation_spacing_with_form
        self.reserved_uids = reserved_uids
        self.counter = 0
        self.rng = np.random.default_rng(rank.rank)

    def next_uid(self) -> int:
        uid = self.reserved_uids + self.counter * self.domain.num_ranks + self.rank.rank
        self.counter += 1
        return uid

    def create_particles(self, z_min: float, z_max: float, spacing: float, diameter_source, shape_source,
                         initial_velocity: float, max_interaction_radius: float = math.inf) -> int:
        """Fill [z_min, z_max] with particles; returns the number created on this rank."""
        scaling = spacing_scaling(shape_source, self.scale_generation_spacing_with_form)
        inv_scaling = 1.0 / scaling

        sim_min, sim_max = self.domain.aabb_min, self.domain.aabb_max
        lo = np.array([sim_min[0] * inv_scaling[0] + 0.5 * spacing,
                       sim_min[1] * inv_scaling[1] + 0.5 * spacing,
                       z_min * inv_scaling[2]])
        hi = np.array([sim_max[0] * inv_scaling[0] - 0.5 * spacing,
                       sim_max[1] * inv_scaling[1] - 0.5 * spacing,
                       z_max * inv_scaling[2]])
        reference = np.array([0.0, 0.0, 0.5 * (z_max + z_min) * inv_scaling[2]])

        if self.rank.rank == 0:
            logger.info(f"Creating particles between z = {z_min:.4g} and {z_max:.4g}")

        center = 0.5 * (sim_min + sim_max)
        container_radius = 0.5 * (sim_max[0] - sim_min[0])
        storage = self.rank.storage
        created = 0
        for point in hcp_lattice(lo, hi, reference, spacing):
            position = point * scaling
            # drawn for every lattice point to keep the sequences of all ranks aligned
            diameter = diameter_source.get()
            if not self.domain.is_contained_in_local_subdomain(self.rank.rank, position):
                continue
            if self.setup == DomainKind.CONTAINER:
                distance = math.hypot(position[0] - center[0], position[1] - center[1])
                if distance > container_radius - 0.5 * spacing:
                    continue

            shape = shape_source.draw_shape(diameter, max_interaction_radius)
            v0 = initial_velocity
            linear_velocity = np.array([0.1 * self.rng.uniform(-v0, v0), 0.1 * self.rng.uniform(-v0, v0), -v0])
            angular_velocity = 0.1 * self.rng.uniform(-v0, v0, size=3) / diameter
            storage.create(self.next_uid(), self.rank.rank, position, shape, self.density,
                           linear_velocity=linear_velocity, angular_velocity=angular_velocity)
            created += 1
        return created
