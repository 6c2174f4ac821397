"""
Uniform linked-cell broad phase over the extended subdomain of one rank.

The cell width is chosen by the caller (1.01 x the largest interaction diameter),
so every potentially touching pair of finite particles lies in the same or in
adjacent cells. Infinite particles (planes, container wall) are kept in a
separate list and are paired with every finite particle.
"""

import numpy as np

from ..datastruct import INFINITE
from .cellgrid import CellGrid, cross_pairs, group_by_cell, inner_pairs


def wrapping_axes(domain, rank: int, lo, hi):
    return [bool(domain.periodic[a]) and (domain.spans_periodic_axis(rank, a) or hi[a] - lo[a] >= domain.size[a])
            for a in range(3)]


class LinkedCells:

    def __init__(self, domain, rank: int, cell_width: float):
        if cell_width <= 0:
            raise ValueError(f"Cell width must be positive, got {cell_width}")
        lo, hi = domain.union_of_local_aabbs(rank)
        lo = lo - cell_width
        hi = hi + cell_width
        self.cell_width = cell_width
        self.grid = CellGrid(lo, hi, cell_width, wrapping_axes(domain, rank, lo, hi), domain)
        self._cells = {}
        self._infinite = np.zeros(0, dtype=np.int64)
        self._finite = np.zeros(0, dtype=np.int64)

    def rebuild(self, storage):
        infinite = storage.has_flag(INFINITE)
        self._infinite = np.nonzero(infinite)[0]
        self._finite = np.nonzero(~infinite)[0]
        if len(self._finite) == 0:
            self._cells = {}
            return
        linear = self.grid.linear_index(storage.position[self._finite])
        self._cells = group_by_cell(linear, self._finite)

    def linearized_index(self, positions):
        """Cell index of each position, used to sort particles for memory locality."""
        return self.grid.linear_index(positions)

    def candidate_pairs(self):
        """
        All pairs (i, j) that may be in contact, each yielded once.

        Pairs of two infinite particles are excluded.
        """
        first, second = [], []
        for cell, members in self._cells.items():
            a, b = inner_pairs(members)
            first.append(a)
            second.append(b)
            for neighbor in self.grid.neighbors(cell):
                if neighbor <= cell:
                    continue
                other = self._cells.get(neighbor)
                if other is None:
                    continue
                a, b = cross_pairs(members, other)
                first.append(a)
                second.append(b)
        if len(self._infinite) and len(self._finite):
            a, b = cross_pairs(self._finite, self._infinite)
            first.append(a)
            second.append(b)
        if not first:
            return np.zeros(0, dtype=np.int64), np.zeros(0, dtype=np.int64)
        return np.concatenate(first).astype(np.int64), np.concatenate(second).astype(np.int64)
