"""
Regular cell grid shared by the linked cells and the hash grid levels.

Axes that are periodic and completely covered by the owning rank wrap around;
all other axes are clamped. On periodic axes that do not wrap, particles are
binned at the periodic image closest to the grid, since ghost replicas carry the
authoritative (domain mapped) position of their owner.
"""

import itertools

import numpy as np


class CellGrid:

    def __init__(self, lo, hi, cell_width: float, wrap, domain):
        lo = np.asarray(lo, dtype=float).copy()
        hi = np.asarray(hi, dtype=float).copy()
        self.wrap = np.asarray(wrap, dtype=bool)
        self.domain = domain
        self.num_cells = np.zeros(3, dtype=np.int64)
        self.cell_size = np.zeros(3)
        for axis in range(3):
            if self.wrap[axis]:
                lo[axis] = domain.aabb_min[axis]
                hi[axis] = domain.aabb_max[axis]
                n = max(1, int(np.floor(domain.size[axis] / cell_width)))
                self.num_cells[axis] = n
                self.cell_size[axis] = domain.size[axis] / n
            else:
                n = max(1, int(np.ceil((hi[axis] - lo[axis]) / cell_width)))
                self.num_cells[axis] = n
                self.cell_size[axis] = cell_width
        self.lo = lo
        self.hi = hi
        self._neighbor_cache = {}

    def place(self, points):
        """Periodic image of every point that is closest to the grid along non-wrapping periodic axes."""
        points = np.array(points, dtype=float).reshape(-1, 3)
        for axis in range(3):
            if not self.domain.periodic[axis] or self.wrap[axis]:
                continue
            length = self.domain.size[axis]
            center = 0.5 * (self.lo[axis] + self.hi[axis])
            points[:, axis] -= length * np.round((points[:, axis] - center) / length)
        return points

    def cell_coords(self, points):
        points = self.place(points)
        coords = np.floor((points - self.lo) / self.cell_size).astype(np.int64)
        for axis in range(3):
            if self.wrap[axis]:
                coords[:, axis] = np.mod(coords[:, axis], self.num_cells[axis])
            else:
                coords[:, axis] = np.clip(coords[:, axis], 0, self.num_cells[axis] - 1)
        return coords

    def linearize(self, coords):
        n = self.num_cells
        return coords[..., 0] + n[0] * (coords[..., 1] + n[1] * coords[..., 2])

    def linear_index(self, points):
        return self.linearize(self.cell_coords(points))

    def neighbors(self, linear: int):
        """Linear indices of the (deduplicated) 3x3x3 neighbourhood of a cell, itself included."""
        cached = self._neighbor_cache.get(linear)
        if cached is not None:
            return cached
        n = self.num_cells
        coord = (linear % n[0], (linear // n[0]) % n[1], linear // (n[0] * n[1]))
        result = set()
        for offset in itertools.product((-1, 0, 1), repeat=3):
            c = []
            for axis in range(3):
                v = coord[axis] + offset[axis]
                if v < 0 or v >= n[axis]:
                    if not self.wrap[axis]:
                        break
                    v %= int(n[axis])
                c.append(v)
            else:
                result.add(int(c[0] + n[0] * (c[1] + n[1] * c[2])))
        result = sorted(result)
        self._neighbor_cache[linear] = result
        return result


def group_by_cell(linear, indices):
    """Map cell index -> array of particle indices in that cell."""
    order = np.argsort(linear, kind="stable")
    linear_sorted = linear[order]
    indices_sorted = np.asarray(indices)[order]
    cells, starts = np.unique(linear_sorted, return_index=True)
    ends = np.append(starts[1:], len(linear_sorted))
    return {int(c): indices_sorted[s:e] for c, s, e in zip(cells, starts, ends)}


def cross_pairs(a, b):
    return np.repeat(a, len(b)), np.tile(b, len(a))


def inner_pairs(a):
    ii, jj = np.triu_indices(len(a), 1)
    return a[ii], a[jj]
