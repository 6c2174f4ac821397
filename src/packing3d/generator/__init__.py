"""
Particle generation: diameter distributions, shape sources and the lattice creator.
"""

from .creator import ParticleCreator, hcp_lattice, spacing_scaling
from .diameter import (ContinuousSieving, DiameterSource, DiscreteSieving, LogNormalDiameter, UniformDiameter,
                       create_diameter_source, mean_diameters_from_sieve_sizes, percentile_from_sieve_distribution,
                       resolve_seed)
from .shapes import (ConstFormGenerator, DistributionFormGenerator, EllipsoidGenerator, MeshesGenerator,
                     SampleFormGenerator, ShapeGenerator, SphereGenerator, create_shape_generator,
                     extract_semi_axes_from_mesh_files, normalize_form)

__all__ = [
    "ParticleCreator",
    "hcp_lattice",
    "spacing_scaling",
    "DiameterSource",
    "UniformDiameter",
    "LogNormalDiameter",
    "DiscreteSieving",
    "ContinuousSieving",
    "create_diameter_source",
    "mean_diameters_from_sieve_sizes",
    "percentile_from_sieve_distribution",
    "resolve_seed",
    "ShapeGenerator",
    "SphereGenerator",
    "EllipsoidGenerator",
    "MeshesGenerator",
    "ConstFormGenerator",
    "SampleFormGenerator",
    "DistributionFormGenerator",
    "create_shape_generator",
    "extract_semi_axes_from_mesh_files",
    "normalize_form",
]
