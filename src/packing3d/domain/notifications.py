"""
Reduce and broadcast of per-particle properties between owners and ghosts.

A reduction sends every ghost's accumulated value to the owner, which adds it
to its own value; the ghost value is reset afterwards. A broadcast overwrites
the ghost values with the owner's value.
"""

import numpy as np

from ..datastruct import GHOST

# Named notifications: which per-particle arrays take part
NUM_CONTACTS = ("num_contacts",)
FORCE_TORQUE = ("force", "torque")
VELOCITY_CORRECTION = ("dv", "dw")
VELOCITY = ("linear_velocity", "angular_velocity")


def reduce_property(ranks, comm, names):
    for r in ranks:
        s = r.storage
        for i in s.ghost_indices():
            values = [getattr(s, name)[i].copy() for name in names]
            if not any(np.any(v != 0) for v in values):
                continue
            comm.send(r.rank, int(s.owner[i]), "reduce", (int(s.uid[i]), values))
            for name in names:
                getattr(s, name)[i] = 0
    inboxes = comm.exchange()
    for r in ranks:
        s = r.storage
        for src, _, (uid, values) in inboxes[r.rank]:
            i = s.find(uid)
            if i < 0 or s.flags[i] & GHOST:
                raise RuntimeError(f"Rank {r.rank} received a reduction for particle {uid} it does not own")
            for name, value in zip(names, values):
                getattr(s, name)[i] += value


def broadcast_property(ranks, comm, names):
    for r in ranks:
        s = r.storage
        for i in s.owned_indices():
            if not s.ghost_owners[i]:
                continue
            values = [getattr(s, name)[i].copy() for name in names]
            for dst in s.ghost_owners[i]:
                comm.send(r.rank, dst, "broadcast", (int(s.uid[i]), values))
    inboxes = comm.exchange()
    for r in ranks:
        s = r.storage
        for src, _, (uid, values) in inboxes[r.rank]:
            i = s.find(uid)
            if i < 0:
                raise RuntimeError(f"Rank {r.rank} misses the ghost of particle {uid}")
            for name, value in zip(names, values):
                getattr(s, name)[i] = value


def velocity_update(ranks, comm, relaxation_parameter: float):
    """Apply the reduced velocity corrections on the owners and broadcast the new velocities."""
    for r in ranks:
        s = r.storage
        owned = s.owned_mask & s.mobile_mask
        s.linear_velocity[owned] += relaxation_parameter * s.dv[owned]
        s.angular_velocity[owned] += relaxation_parameter * s.dw[owned]
        s.dv[:] = 0.0
        s.dw[:] = 0.0
    broadcast_property(ranks, comm, VELOCITY)


def reduce_contact_history(ranks, comm):
    """Merge ghost tangential histories into the owners, then make the new history the old one."""
    for r in ranks:
        s = r.storage
        for i in s.ghost_indices():
            if s.new_contact_history[i]:
                comm.send(r.rank, int(s.owner[i]), "history", (int(s.uid[i]), s.new_contact_history[i]))
    inboxes = comm.exchange()
    for r in ranks:
        s = r.storage
        for src, _, (uid, history) in inboxes[r.rank]:
            i = s.find(uid)
            if i < 0 or s.flags[i] & GHOST:
                raise RuntimeError(f"Rank {r.rank} received contact history for particle {uid} it does not own")
            s.new_contact_history[i].update(history)
        for i in range(len(s)):
            s.old_contact_history[i] = s.new_contact_history[i]
            s.new_contact_history[i] = {}
