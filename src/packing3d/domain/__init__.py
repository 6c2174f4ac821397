"""
Spatial partition, in-process ranks and owner/ghost synchronisation.
"""

from .blockdomain import BlockDomain
from .communicator import Communicator
from .contactfilter import ContactFilter
from .notifications import (FORCE_TORQUE, NUM_CONTACTS, VELOCITY, VELOCITY_CORRECTION, broadcast_property,
                            reduce_contact_history, reduce_property, velocity_update)
from .rank import Rank, make_ranks
from .sync import (GhostOwnerSync, NextNeighborSync, ParticleSync, assoc_to_block, check_ghost_consistency,
                   select_sync_strategy)

__all__ = [
    "BlockDomain",
    "Communicator",
    "ContactFilter",
    "Rank",
    "make_ranks",
    "ParticleSync",
    "NextNeighborSync",
    "GhostOwnerSync",
    "assoc_to_block",
    "select_sync_strategy",
    "check_ghost_consistency",
    "reduce_property",
    "broadcast_property",
    "velocity_update",
    "reduce_contact_history",
    "NUM_CONTACTS",
    "FORCE_TORQUE",
    "VELOCITY_CORRECTION",
    "VELOCITY",
]
