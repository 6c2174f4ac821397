"""
packing3d: generation, shaking and settling of dense granular packings.

Particles are created on an HCP lattice inside a generation zone, fall under
gravity, are optionally shaken and finally damped until the packing is at rest.
Collision response is computed either with a hard-contact iterative solver
(HCSITS) or a soft-contact spring-dashpot solver (DEM).
"""

__version__ = "0.1.0"
