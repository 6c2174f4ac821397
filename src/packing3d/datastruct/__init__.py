"""
Particle, contact and shape data structures for packing simulations.
"""

from .aggregate import ContactAggregateInfo, ParticleAggregateInfo
from .contact import ContactStorage
from .particle import FIXED, GHOST, GLOBAL, INFINITE, ParticleStorage
from .shape import ConvexPolyhedron, CylindricalBoundary, Ellipsoid, HalfSpace, Shape, Sphere

__all__ = [
    "ParticleStorage",
    "ContactStorage",
    "ParticleAggregateInfo",
    "ContactAggregateInfo",
    "Shape",
    "Sphere",
    "Ellipsoid",
    "ConvexPolyhedron",
    "HalfSpace",
    "CylindricalBoundary",
    "GHOST",
    "INFINITE",
    "FIXED",
    "GLOBAL",
]
