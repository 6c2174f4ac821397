"""
Per-step contact pipeline: broad phase, narrow phase and ownership filter.
"""

import numpy as np

from ..datastruct import INFINITE
from .detection import analytic_contacts, canonical_order, general_contacts


class ContactPipeline:
    """
    Rebuilds the contact storage of a rank from scratch.

    * sphere-only packings use analytic detection and filter on the exact contact point,
    * other shapes are first tested with their bounding spheres, filtered on the
      coarse contact point and only then detected exactly,
    * with hash grids the exact detection runs first and the filter uses its point.
    """

    def __init__(self, domain, contact_filter, sphere_only: bool, use_hash_grids: bool = False):
        self.domain = domain
        self.contact_filter = contact_filter
        self.sphere_only = sphere_only
        self.use_hash_grids = use_hash_grids

    def run(self, rank):
        storage = rank.storage
        contacts = rank.contacts
        contacts.clear()
        rank.broad_phase.rebuild(storage)
        I, J = rank.broad_phase.candidate_pairs()
        if len(I) == 0:
            return contacts
        both_infinite = ((storage.flags[I] & INFINITE) != 0) & ((storage.flags[J] & INFINITE) != 0)
        I, J = canonical_order(storage, I[~both_infinite], J[~both_infinite])

        if self.sphere_only:
            id1, id2, distance, normal, point, r1, r2 = analytic_contacts(storage, I, J, self.domain)
            keep = self.contact_filter.owns_many(rank.rank, storage, id1, id2, point)
            contacts.extend(id1[keep], id2[keep], distance[keep], normal[keep], point[keep], r1[keep], r2[keep])
        elif self.use_hash_grids:
            id1, id2, distance, normal, point, r1, r2 = general_contacts(storage, I, J, self.domain)
            keep = self.contact_filter.owns_many(rank.rank, storage, id1, id2, point)
            contacts.extend(id1[keep], id2[keep], distance[keep], normal[keep], point[keep], r1[keep], r2[keep])
        else:
            id1, id2, _, _, coarse_point, _, _ = analytic_contacts(storage, I, J, self.domain)
            keep = self.contact_filter.owns_many(rank.rank, storage, id1, id2, coarse_point)
            contacts.extend(*general_contacts(storage, id1[keep], id2[keep], self.domain))
        contacts.finalize()
        return contacts


def contact_pairs_by_uid(ranks):
    """All contacts of all ranks as a sorted list of (uid1, uid2) tuples."""
    pairs = []
    for r in ranks:
        uid = r.storage.uid
        pairs.extend(zip(uid[r.contacts.id1].tolist(), uid[r.contacts.id2].tolist()))
    return sorted(pairs)


def contact_signature(ranks, decimals: int = 12):
    """Sorted (uid1, uid2, distance, normal, point) records, for comparing two detection runs."""
    records = []
    for r in ranks:
        c = r.contacts
        uid = r.storage.uid
        for k in range(len(c)):
            records.append((int(uid[c.id1[k]]), int(uid[c.id2[k]]), round(float(c.distance[k]), decimals),
                            tuple(np.round(c.normal[k], decimals)), tuple(np.round(c.position[k], decimals))))
    return sorted(records)
