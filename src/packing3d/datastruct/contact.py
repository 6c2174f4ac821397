"""
Contact records of a single rank, rebuilt every time step.

A contact references two particle indices of the rank's ParticleStorage. The
normal points from particle 2 towards particle 1 and the signed distance is
negative for overlapping particles. Lever arms r1/r2 point from the particle
centres (as seen through the periodic minimum image) to the contact point.
"""

import numpy as np


class ContactStorage:

    def __init__(self):
        self._pending = []
        self.clear()

    def clear(self):
        self._pending = []
        self.id1 = np.zeros(0, dtype=np.int32)
        self.id2 = np.zeros(0, dtype=np.int32)
        self.distance = np.zeros(0)
        self.normal = np.zeros((0, 3))
        self.position = np.zeros((0, 3))
        self.r1 = np.zeros((0, 3))
        self.r2 = np.zeros((0, 3))
        # solver specific per-contact state, attached by the solvers
        self.solver_data = {}

    def __len__(self):
        return len(self.id1)

    def add(self, id1: int, id2: int, distance: float, normal, position, r1, r2):
        self._pending.append((id1, id2, distance, normal, position, r1, r2))

    def extend(self, id1, id2, distance, normal, position, r1, r2):
        """Append a batch of contacts given as arrays."""
        if len(id1) == 0:
            return
        self.finalize()
        self.id1 = np.concatenate([self.id1, np.asarray(id1, dtype=np.int32)])
        self.id2 = np.concatenate([self.id2, np.asarray(id2, dtype=np.int32)])
        self.distance = np.concatenate([self.distance, np.asarray(distance, dtype=float)])
        self.normal = np.concatenate([self.normal, np.asarray(normal, dtype=float).reshape(-1, 3)])
        self.position = np.concatenate([self.position, np.asarray(position, dtype=float).reshape(-1, 3)])
        self.r1 = np.concatenate([self.r1, np.asarray(r1, dtype=float).reshape(-1, 3)])
        self.r2 = np.concatenate([self.r2, np.asarray(r2, dtype=float).reshape(-1, 3)])

    def finalize(self):
        """Move pending single records into the contact arrays."""
        if not self._pending:
            return
        pending = self._pending
        self._pending = []
        id1, id2, distance, normal, position, r1, r2 = zip(*pending)
        self.extend(id1, id2, distance, np.array(normal), np.array(position), np.array(r1), np.array(r2))

    def pairs(self):
        """Contact pairs as a set of (id1, id2) tuples."""
        return set(zip(self.id1.tolist(), self.id2.tolist()))
