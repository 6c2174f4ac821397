"""
Evaluation of the packing: statistics, profiles, histograms and output files.
"""

from .aggregate import diameter_from_sphere_volume, evaluate_contact_info, evaluate_particle_info
from .histogram import (SHAPE_EVALUATORS, ParticleHistogram, SizeEvaluator, elongation_from_semi_axes,
                        equancy_from_semi_axes, flatness_from_semi_axes)
from .layers import ContactInfoPerHorizontalLayerEvaluator, PorosityPerHorizontalLayerEvaluator
from .recorder import (LoggingWriter, RunRecorder, assemble_particle_information, save_single,
                       store_run_in_sqlite_db, store_timing_in_sqlite_db)
from .visual import plot_packing, plot_porosity_profile

__all__ = [
    "evaluate_particle_info",
    "evaluate_contact_info",
    "diameter_from_sphere_volume",
    "ParticleHistogram",
    "SizeEvaluator",
    "SHAPE_EVALUATORS",
    "flatness_from_semi_axes",
    "elongation_from_semi_axes",
    "equancy_from_semi_axes",
    "PorosityPerHorizontalLayerEvaluator",
    "ContactInfoPerHorizontalLayerEvaluator",
    "RunRecorder",
    "LoggingWriter",
    "save_single",
    "assemble_particle_information",
    "store_run_in_sqlite_db",
    "store_timing_in_sqlite_db",
    "plot_porosity_profile",
    "plot_packing",
]
