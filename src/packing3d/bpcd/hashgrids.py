"""
Hierarchical hash grids broad phase.

Each level is a hash map from cell index to the particles stored in it. Cell
sizes double from one level to the next, starting at the smallest interaction
diameter, and a particle is stored in the finest level whose cells are at least
as large as its diameter. Pairs inside one level are found in the 27-cell
neighbourhood; a particle is further tested against the neighbourhood of its
position in every coarser level, so each pair is reported exactly once.
"""

import numpy as np

from ..datastruct import INFINITE
from .cellgrid import CellGrid, cross_pairs, group_by_cell, inner_pairs
from .linkedcells import wrapping_axes


class HashGrids:

    def __init__(self, domain, rank: int, max_diameter: float):
        self.domain = domain
        self.rank = rank
        self.max_diameter = max_diameter
        lo, hi = domain.union_of_local_aabbs(rank)
        self._lo = lo - max_diameter
        self._hi = hi + max_diameter
        self._levels = []
        self._infinite = np.zeros(0, dtype=np.int64)
        self._finite = np.zeros(0, dtype=np.int64)

    @property
    def num_levels(self) -> int:
        return len(self._levels)

    def rebuild(self, storage):
        infinite = storage.has_flag(INFINITE)
        self._infinite = np.nonzero(infinite)[0]
        self._finite = np.nonzero(~infinite)[0]
        self._levels = []
        if len(self._finite) == 0:
            return
        diameters = 2.0 * storage.interaction_radius[self._finite]
        smallest = max(float(np.min(diameters)), 1e-12)
        level_of = np.maximum(np.ceil(np.log2(np.maximum(diameters / smallest, 1.0)) - 1e-12), 0).astype(int)
        positions = storage.position[self._finite]
        for level in range(int(level_of.max()) + 1):
            cell_size = smallest * 2.0 ** level
            grid = CellGrid(self._lo, self._hi, cell_size,
                            wrapping_axes(self.domain, self.rank, self._lo, self._hi), self.domain)
            members = level_of == level
            cells = {}
            if np.any(members):
                cells = group_by_cell(grid.linear_index(positions[members]), self._finite[members])
            self._levels.append((grid, cells, positions[members], self._finite[members]))

    def candidate_pairs(self):
        first, second = [], []
        for level, (grid, cells, positions, indices) in enumerate(self._levels):
            for cell, members in cells.items():
                a, b = inner_pairs(members)
                first.append(a)
                second.append(b)
                for neighbor in grid.neighbors(cell):
                    if neighbor <= cell:
                        continue
                    other = cells.get(neighbor)
                    if other is not None:
                        a, b = cross_pairs(members, other)
                        first.append(a)
                        second.append(b)
            if len(indices) == 0:
                continue
            for coarse_grid, coarse_cells, _, _ in self._levels[level + 1:]:
                if not coarse_cells:
                    continue
                linear = coarse_grid.linear_index(positions)
                for idx, cell in zip(indices, linear):
                    for neighbor in coarse_grid.neighbors(int(cell)):
                        other = coarse_cells.get(neighbor)
                        if other is not None:
                            a, b = cross_pairs(np.array([idx]), other)
                            first.append(a)
                            second.append(b)
        if len(self._infinite) and len(self._finite):
            a, b = cross_pairs(self._finite, self._infinite)
            first.append(a)
            second.append(b)
        if not first:
            return np.zeros(0, dtype=np.int64), np.zeros(0, dtype=np.int64)
        return np.concatenate(first).astype(np.int64), np.concatenate(second).astype(np.int64)

    def __repr__(self):
        return f"HashGrids(levels={self.num_levels}, max_diameter={self.max_diameter:.4g})"

