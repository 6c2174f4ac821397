"""
In-process message passing between cooperative ranks.

Every rank of a run lives in the same interpreter and advances in lockstep.
Point-to-point messages are buffered until the next `exchange`, which delivers
them ordered by sender. Collectives take one contribution per rank.
"""

import copy

import numpy as np


class Communicator:

    def __init__(self, size: int = 1):
        if size < 1:
            raise ValueError(f"Communicator size must be positive, got {size}")
        self.size = int(size)
        self._outbox = []
        self.num_messages = 0

    def send(self, src: int, dst: int, tag: str, payload):
        if not (0 <= dst < self.size):
            raise ValueError(f"Invalid destination rank {dst}")
        self._outbox.append((src, dst, tag, payload))

    def exchange(self):
        """Deliver all buffered messages; returns one inbox list of (src, tag, payload) per rank."""
        inboxes = [[] for _ in range(self.size)]
        for src, dst, tag, payload in sorted(self._outbox, key=lambda m: m[0]):
            inboxes[dst].append((src, tag, payload))
        self.num_messages += len(self._outbox)
        self._outbox = []
        return inboxes

    def allreduce(self, values, op: str = "sum"):
        if len(values) != self.size:
            raise ValueError(f"Expected {self.size} contributions, got {len(values)}")
        if op == "sum":
            return sum(values[1:], values[0])
        if op == "max":
            return max(values)
        if op == "min":
            return min(values)
        raise ValueError(f"Unknown reduction '{op}'")

    def allgather(self, values):
        """Concatenate per-rank arrays (or lists) in rank order."""
        if len(values) != self.size:
            raise ValueError(f"Expected {self.size} contributions, got {len(values)}")
        return np.concatenate([np.asarray(v, dtype=float).ravel() for v in values])

    def broadcast(self, value, root: int = 0):
        """Copy of the root's value for every rank."""
        return [value if r == root else copy.deepcopy(value) for r in range(self.size)]
