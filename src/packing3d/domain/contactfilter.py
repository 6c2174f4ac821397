"""
Ownership of contacts between cooperating ranks.
"""

import numpy as np

from ..datastruct import GHOST, GLOBAL


class ContactFilter:
    """
    Decides which rank treats a contact, so that every contact is treated exactly once.

    Contacts with a global (infinite) particle belong to the owner of the finite
    particle. All other contacts belong to the rank owning the contact point.
    """

    def __init__(self, domain):
        self.domain = domain

    def owns(self, rank: int, storage, idx1: int, idx2: int, point) -> bool:
        return bool(self.owns_many(rank, storage, np.array([idx1]), np.array([idx2]),
                                   np.asarray(point, dtype=float).reshape(1, 3))[0])

    def owns_many(self, rank: int, storage, id1, id2, points) -> np.ndarray:
        flags1 = storage.flags[id1]
        flags2 = storage.flags[id2]
        global1 = (flags1 & GLOBAL) != 0
        global2 = (flags2 & GLOBAL) != 0
        result = np.zeros(len(id1), dtype=bool)

        only1 = global1 & ~global2
        result[only1] = (flags2[only1] & GHOST) == 0
        only2 = global2 & ~global1
        result[only2] = (flags1[only2] & GHOST) == 0

        neither = ~global1 & ~global2
        if np.any(neither):
            result[neither] = self.domain.find_owner(points[neither]) == rank
        return result
