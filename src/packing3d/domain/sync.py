"""
Ownership transfer and ghost replica maintenance.

A synchronisation pass first migrates owned particles whose owner rank changed
(see `assoc_to_block`), then brings the ghost replicas of every owned particle
up to date: stale replicas are deleted, existing ones are overwritten and new
ones are created on ranks whose subdomain intersects the particle's
interaction sphere. The two strategies differ only in which ranks a single pass
can reach:

* NextNeighborSync reaches the neighbours of the owner rank, which is enough
  whenever particles are smaller than half a block.
* GhostOwnerSync additionally reaches the neighbours of every rank that
  already holds a replica, so repeated passes extend ghost visibility one
  neighbourhood at a time.
"""

import logging
import math

import numpy as np

from ..datastruct import GHOST

logger = logging.getLogger(__name__)


def assoc_to_block(ranks, domain):
    """Map owned positions into the periodic domain and reassign their owner rank."""
    for r in ranks:
        s = r.storage
        owned = s.owned_indices()
        if len(owned) == 0:
            continue
        s.position[owned] = domain.periodically_map_to_domain(s.position[owned])
        s.owner[owned] = domain.find_owner(s.position[owned])


class ParticleSync:
    name = "sync"

    def __init__(self, domain, comm, ghost_layer_thickness: float = 0.0):
        self.domain = domain
        self.comm = comm
        self.ghost_layer_thickness = ghost_layer_thickness

    def _reachable(self, rank: int, known):
        raise NotImplementedError

    def __call__(self, ranks):
        self._migrate(ranks)
        self._update_ghosts(ranks)

    def _migrate(self, ranks):
        for r in ranks:
            s = r.storage
            owned = s.owned_indices()
            leaving = owned[s.owner[owned] != r.rank]
            for i in leaving:
                self.comm.send(r.rank, int(s.owner[i]), "migrate", s.pack(i))
            s.remove(leaving)
        inboxes = self.comm.exchange()
        for r in ranks:
            for src, _, record in inboxes[r.rank]:
                record["ghost_owners"].discard(r.rank)
                record["owner"] = r.rank
                r.storage.unpack(record, ghost=False)

    def _update_ghosts(self, ranks):
        domain = self.domain
        if domain.num_ranks == 1:
            return
        for r in ranks:
            s = r.storage
            for i in s.owned_indices():
                known = s.ghost_owners[i]
                required = domain.ranks_within(s.position[i], s.interaction_radius[i] + self.ghost_layer_thickness)
                required.discard(r.rank)
                targets = required & (self._reachable(r.rank, known) | known)
                uid = int(s.uid[i])
                for dst in known - targets:
                    self.comm.send(r.rank, dst, "delete", uid)
                if targets:
                    record = s.pack(i)
                    for dst in sorted(targets):
                        self.comm.send(r.rank, dst, "ghost", record)
                s.ghost_owners[i] = targets
        inboxes = self.comm.exchange()
        for r in ranks:
            s = r.storage
            deleted = []
            for src, tag, payload in inboxes[r.rank]:
                if tag == "delete":
                    i = s.find(payload)
                    if i >= 0 and s.flags[i] & GHOST:
                        deleted.append(i)
                else:
                    s.unpack(payload, ghost=True)
            s.remove(deleted)


class NextNeighborSync(ParticleSync):
    name = "next neighbor"

    def _reachable(self, rank, known):
        return self.domain.neighbor_ranks(rank)


class GhostOwnerSync(ParticleSync):
    name = "ghost owner"

    def _reachable(self, rank, known):
        reachable = self.domain.neighbor_ranks(rank)
        for holder in known:
            reachable |= self.domain.neighbor_ranks(holder)
        reachable.discard(rank)
        return reachable


def select_sync_strategy(smallest_block_size: float, max_particle_diameter: float):
    """
    Choose the synchronisation strategy for the given partition and particle size.

    Returns (strategy class, number of passes needed after creation or re-association).
    """
    if 2.0 * smallest_block_size > max_particle_diameter:
        logger.info("Using next neighbor sync for particles")
        return NextNeighborSync, 1
    repetitions = int(math.ceil(max_particle_diameter / smallest_block_size))
    logger.info(f"Using ghost owner sync for particles, {repetitions} passes after creation")
    return GhostOwnerSync, repetitions


def check_ghost_consistency(ranks, domain, atol: float = 0.0):
    """Return the uids whose ghost replicas differ from the owner's state."""
    owners = {}
    for r in ranks:
        s = r.storage
        for i in s.owned_indices():
            owners[int(s.uid[i])] = (s.position[i], s.linear_velocity[i], s.angular_velocity[i])
    mismatched = []
    for r in ranks:
        s = r.storage
        for i in s.ghost_indices():
            uid = int(s.uid[i])
            if uid not in owners:
                mismatched.append(uid)
                continue
            position, velocity, omega = owners[uid]
            delta = domain.min_image(s.position[i] - position)
            if (np.any(np.abs(delta) > atol) or np.any(np.abs(s.linear_velocity[i] - velocity) > atol)
                    or np.any(np.abs(s.angular_velocity[i] - omega) > atol)):
                mismatched.append(uid)
    return mismatched
