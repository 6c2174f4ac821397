"""
Phase control, timing and the driver of a packing run.
"""

from .lifecycle import LifecycleStateMachine, Phase, StepDecision
from .packing import (NUM_RESERVED_UIDS, PackingResult, ParticlePacking, estimate_max_particle_diameter,
                      steps_from_spacing)
from .timing import TimerRecord, TimingTree

__all__ = [
    "Phase",
    "StepDecision",
    "LifecycleStateMachine",
    "ParticlePacking",
    "PackingResult",
    "estimate_max_particle_diameter",
    "steps_from_spacing",
    "NUM_RESERVED_UIDS",
    "TimingTree",
    "TimerRecord",
]
