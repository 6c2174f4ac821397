"""
Module responsible for collision detection in packing simulations.

Provides the broad phase (uniform linked cells or hierarchical hash grids), the
narrow phase (analytic sphere detection and support mapping detection for
general convex shapes) and the per-step contact pipeline.
"""

from .cellgrid import CellGrid
from .detection import analytic_contacts, canonical_order, general_contact, general_contacts
from .hashgrids import HashGrids
from .linkedcells import LinkedCells
from .pipeline import ContactPipeline, contact_pairs_by_uid, contact_signature

__all__ = [
    "CellGrid",
    "LinkedCells",
    "HashGrids",
    "ContactPipeline",
    "analytic_contacts",
    "canonical_order",
    "general_contact",
    "general_contacts",
    "contact_pairs_by_uid",
    "contact_signature",
]
