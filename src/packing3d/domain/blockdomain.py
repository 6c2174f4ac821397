"""
Spatial partition of the simulation domain into a regular grid of blocks.

Blocks are half-open boxes [min, max) and are assigned round-robin to ranks, so
every point of the (periodically mapped) domain has exactly one owner rank.
Periodic axes are handled with the minimum image convention.
"""

import itertools
import logging

import numpy as np

logger = logging.getLogger(__name__)


class BlockDomain:

    def __init__(self, aabb_min, aabb_max, blocks_per_direction, periodic, num_ranks: int = 1):
        self.aabb_min = np.asarray(aabb_min, dtype=float)
        self.aabb_max = np.asarray(aabb_max, dtype=float)
        if np.any(self.aabb_max <= self.aabb_min):
            raise ValueError(f"Invalid simulation domain [{self.aabb_min}, {self.aabb_max}]")
        self.size = self.aabb_max - self.aabb_min
        self.blocks = np.asarray(blocks_per_direction, dtype=np.int64)
        self.block_size = self.size / self.blocks
        self.periodic = np.asarray(periodic, dtype=bool)
        self.num_ranks = int(num_ranks)
        num_blocks = int(np.prod(self.blocks))
        if not (1 <= self.num_ranks <= num_blocks):
            raise ValueError(f"Number of ranks ({self.num_ranks}) must be in [1, {num_blocks}]")

        self._block_rank = np.arange(num_blocks) % self.num_ranks
        self._rank_blocks = [[] for _ in range(self.num_ranks)]
        for coord in itertools.product(*(range(int(n)) for n in self.blocks)):
            self._rank_blocks[self.rank_of_block(coord)].append(coord)
        self._neighbor_ranks = [self._compute_neighbor_ranks(r) for r in range(self.num_ranks)]

        for axis in range(3):
            if self.periodic[axis] and self.blocks[axis] < 3:
                logger.warning("At least 3 blocks per periodic direction recommended, "
                               f"axis {axis} has {self.blocks[axis]}")

    # ------------------------------------------------------------------
    # blocks
    # ------------------------------------------------------------------

    def linear_block_index(self, coord) -> int:
        return int(coord[0] + self.blocks[0] * (coord[1] + self.blocks[1] * coord[2]))

    def rank_of_block(self, coord) -> int:
        return int(self._block_rank[self.linear_block_index(coord)])

    def block_aabb(self, coord):
        lo = self.aabb_min + np.asarray(coord) * self.block_size
        return lo, lo + self.block_size

    def local_blocks(self, rank: int):
        return list(self._rank_blocks[rank])

    def local_aabbs(self, rank: int):
        return [self.block_aabb(c) for c in self._rank_blocks[rank]]

    def union_of_local_aabbs(self, rank: int):
        aabbs = self.local_aabbs(rank)
        lo = np.min([a[0] for a in aabbs], axis=0)
        hi = np.max([a[1] for a in aabbs], axis=0)
        return lo, hi

    def smallest_block_size(self) -> float:
        return float(np.min(self.block_size))

    def spans_periodic_axis(self, rank: int, axis: int) -> bool:
        """True if the rank's blocks cover the whole extent of periodic `axis`."""
        if not self.periodic[axis]:
            return False
        covered = {c[axis] for c in self._rank_blocks[rank]}
        return len(covered) == self.blocks[axis]

    # ------------------------------------------------------------------
    # periodicity
    # ------------------------------------------------------------------

    def periodically_map_to_domain(self, points):
        points = np.array(points, dtype=float)
        for axis in range(3):
            if self.periodic[axis]:
                lo = self.aabb_min[axis]
                points[..., axis] = lo + np.mod(points[..., axis] - lo, self.size[axis])
        return points

    def min_image(self, delta):
        """Shortest periodic representative of the displacement(s) `delta`."""
        delta = np.array(delta, dtype=float)
        for axis in range(3):
            if self.periodic[axis]:
                length = self.size[axis]
                delta[..., axis] -= length * np.round(delta[..., axis] / length)
        return delta

    def _image_offsets(self):
        choices = [(-self.size[a], 0.0, self.size[a]) if self.periodic[a] else (0.0,) for a in range(3)]
        return np.array(list(itertools.product(*choices)))

    # ------------------------------------------------------------------
    # ownership
    # ------------------------------------------------------------------

    def block_coords(self, points):
        points = self.periodically_map_to_domain(points)
        coords = np.floor((points - self.aabb_min) / self.block_size).astype(np.int64)
        return np.clip(coords, 0, self.blocks - 1)

    def find_owner(self, points):
        """Owner rank(s) of the point(s); points outside non-periodic borders are clamped."""
        coords = self.block_coords(points)
        linear = coords[..., 0] + self.blocks[0] * (coords[..., 1] + self.blocks[1] * coords[..., 2])
        return self._block_rank[linear]

    def is_contained_in_local_subdomain(self, rank: int, point) -> bool:
        return int(self.find_owner(np.asarray(point, dtype=float))) == rank

    def distance_to_block(self, point, coord) -> float:
        lo, hi = self.block_aabb(coord)
        point = np.asarray(point, dtype=float)
        best = np.inf
        for offset in self._image_offsets():
            p = point + offset
            d = np.maximum(np.maximum(lo - p, 0.0), p - hi)
            best = min(best, float(np.sqrt(np.dot(d, d))))
        return best

    def sphere_intersects_rank(self, rank: int, center, radius: float) -> bool:
        return any(self.distance_to_block(center, c) <= radius for c in self._rank_blocks[rank])

    def ranks_within(self, center, radius: float):
        """All ranks whose subdomain intersects the sphere."""
        return {r for r in range(self.num_ranks) if self.sphere_intersects_rank(r, center, radius)}

    # ------------------------------------------------------------------
    # neighbourhood
    # ------------------------------------------------------------------

    def _compute_neighbor_ranks(self, rank: int):
        neighbors = set()
        for coord in self._rank_blocks[rank]:
            for offset in itertools.product((-1, 0, 1), repeat=3):
                neighbor = []
                for axis in range(3):
                    c = coord[axis] + offset[axis]
                    if c < 0 or c >= self.blocks[axis]:
                        if not self.periodic[axis]:
                            break
                        c %= int(self.blocks[axis])
                    neighbor.append(c)
                else:
                    neighbors.add(self.rank_of_block(neighbor))
        neighbors.discard(rank)
        return neighbors

    def neighbor_ranks(self, rank: int):
        return set(self._neighbor_ranks[rank])
