"""
Horizontal layer profiles of the packing: porosity and contacts.
"""

import logging
import math

import numpy as np

from ..config import DomainSetup

logger = logging.getLogger(__name__)


def sphere_volume_between(center_z, radius, z_lo, z_hi):
    """Volume of spheres (arrays over particles) inside the slabs [z_lo, z_hi] (arrays over layers)."""
    c = np.asarray(center_z, dtype=float)[:, None]
    r = np.asarray(radius, dtype=float)[:, None]
    lo = np.clip(np.asarray(z_lo, dtype=float)[None, :], c - r, c + r)
    hi = np.clip(np.asarray(z_hi, dtype=float)[None, :], c - r, c + r)

    def primitive(z):
        return math.pi * (r * r * (z - c) - (z - c) ** 3 / 3.0)

    return np.maximum(primitive(hi) - primitive(lo), 0.0)


class _HorizontalLayers:

    def __init__(self, layer_height: float, domain_height: float):
        if layer_height <= 0.0:
            raise ValueError(f"Layer height must be positive, got {layer_height}")
        self.layer_height = layer_height
        self.domain_height = domain_height
        self.num_layers = max(int(math.ceil(domain_height / layer_height - 1e-12)), 1)
        self.z_lo = np.arange(self.num_layers) * layer_height
        self.z_hi = np.minimum(self.z_lo + layer_height, domain_height)

    @property
    def layer_centers(self):
        return 0.5 * (self.z_lo + self.z_hi)

    def layer_of(self, z):
        return np.clip(np.floor(np.asarray(z) / self.layer_height).astype(int), 0, self.num_layers - 1)


class PorosityPerHorizontalLayerEvaluator(_HorizontalLayers):
    """
    Solid volume per layer. Spheres are split exactly into spherical caps,
    other shapes are replaced by their volume-equivalent sphere.
    """

    def __init__(self, layer_height: float, domain_setup: DomainSetup):
        super().__init__(layer_height, domain_setup.domain_height)
        self.layer_volume = domain_setup.horizontal_area * (self.z_hi - self.z_lo)
        self.solid_volume = np.zeros(self.num_layers)
        self.maximum_height = 0.0

    def clear(self):
        self.solid_volume = np.zeros(self.num_layers)
        self.maximum_height = 0.0

    def evaluate(self, ranks, comm):
        self.clear()
        solids, heights = [], []
        for r in ranks:
            s = r.storage
            owned = s.owned_indices()
            if len(owned) == 0:
                solids.append(np.zeros(self.num_layers))
                heights.append(0.0)
                continue
            radius = np.cbrt(3.0 * s.volumes(owned) / (4.0 * math.pi))
            z = s.position[owned, 2]
            solids.append(np.sum(sphere_volume_between(z, radius, self.z_lo, self.z_hi), axis=0))
            heights.append(float(np.max(z)))
        self.solid_volume = comm.allreduce(solids)
        self.maximum_height = float(comm.allreduce(heights, op="max"))

    @property
    def porosity(self):
        return 1.0 - self.solid_volume / self.layer_volume

    def estimate_total_porosity(self) -> float:
        """Porosity of the layers lying entirely below 90 % of the maximum particle height."""
        below = self.z_hi <= 0.9 * self.maximum_height
        if not np.any(below):
            return 1.0
        return float(1.0 - np.sum(self.solid_volume[below]) / np.sum(self.layer_volume[below]))

    def print_to_file(self, file_name: str):
        data = np.column_stack([self.layer_centers, self.porosity, self.solid_volume])
        with open(file_name, "w", encoding="UTF-8") as f:
            f.write("# z  porosity  solidVolume\n")
            np.savetxt(f, data, fmt='%.6e %.6e %.6e')
        logger.info(f"Porosity profile written to {file_name}")


class ContactInfoPerHorizontalLayerEvaluator(_HorizontalLayers):
    """Number of contacts and mean penetration depth per layer, by contact position."""

    def __init__(self, layer_height: float, domain_height: float):
        super().__init__(layer_height, domain_height)
        self.num_contacts = np.zeros(self.num_layers, dtype=np.int64)
        self.penetration_sum = np.zeros(self.num_layers)

    def clear(self):
        self.num_contacts = np.zeros(self.num_layers, dtype=np.int64)
        self.penetration_sum = np.zeros(self.num_layers)

    def evaluate(self, ranks, comm):
        counts, sums = [], []
        for r in ranks:
            c = r.contacts
            layer = self.layer_of(c.position[:, 2])
            counts.append(np.bincount(layer, minlength=self.num_layers))
            sums.append(np.bincount(layer, weights=np.maximum(-c.distance, 0.0), minlength=self.num_layers))
        self.num_contacts = comm.allreduce(counts)
        self.penetration_sum = comm.allreduce(sums)

    @property
    def mean_penetration_depth(self):
        return np.divide(self.penetration_sum, self.num_contacts,
                         out=np.zeros(self.num_layers), where=self.num_contacts > 0)

    def print_to_file(self, file_name: str):
        data = np.column_stack([self.layer_centers, self.num_contacts, self.mean_penetration_depth])
        with open(file_name, "w", encoding="UTF-8") as f:
            f.write("# z  numContacts  meanPenetrationDepth\n")
            np.savetxt(f, data, fmt='%.6e %d %.6e')
        logger.info(f"Contact profile written to {file_name}")
