"""
Phase control of a packing run.

The run stays in GENERATING until the created particle mass reaches the target
mass. Shaking then runs for its configured duration (it may already be active
from the beginning), afterwards velocities are damped and the packing is
checked for convergence until the run terminates.
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum

from ..config import GenerationProperties, ShakingProperties, TerminationProperties
from ..datastruct import ParticleAggregateInfo

logger = logging.getLogger(__name__)


class Phase(Enum):
    GENERATING = "generating"
    SHAKING = "shaking"
    DAMPING_AND_CHECKING = "damping and checking"
    TERMINATED = "terminated"


@dataclass(frozen=True)
class StepDecision:
    generate: bool = False
    damping_factor: float = 1.0
    terminate: bool = False


class LifecycleStateMachine:

    def __init__(self, generation: GenerationProperties, termination: TerminationProperties,
                 shaking: ShakingProperties, domain_height: float, dt: float, density: float):
        self.generation = generation
        self.termination = termination
        self.shaking = shaking
        self.domain_height = domain_height
        self.density = density
        self.phase = Phase.GENERATING

        self.velocity_damping_factor = termination.velocity_damping_coefficient ** dt
        if generation.initial_velocity > 0.0:
            # time the particles need at most to pass the generation zone
            self.maximum_time_between_creation = ((generation.generation_height_ratio_end
                                                   - generation.generation_height_ratio_start)
                                                  * domain_height / generation.initial_velocity)
        else:
            self.maximum_time_between_creation = math.inf
        self.time_last_creation = 0.0

        self.shaking_pending = shaking.enabled
        self.is_shaking_active = False
        self.time_begin_shaking = -1.0
        self.time_end_shaking = -1.0
        self.shaking_transitions = []       # (time, active) at every change of is_shaking_active
        if shaking.enabled and shaking.active_from_beginning:
            logger.info("Will use shaking from beginning.")
            self._set_shaking_active(True, 0.0)
            self.time_begin_shaking = 0.0

        self.time_begin_damping = -1.0
        self.time_last_termination_check = 0.0
        self.old_average_height = 1.0
        self.old_maximum_height = 1.0

        logger.info(f"Maximum time between creation steps: {self.maximum_time_between_creation}")
        logger.info(f"Once all particles are created, will apply velocity damping of "
                    f"{self.velocity_damping_factor} per time step.")

    @property
    def target_mass(self) -> float:
        return self.generation.total_particle_mass

    def _set_shaking_active(self, active: bool, current_time: float):
        if active != self.is_shaking_active:
            self.shaking_transitions.append((current_time, active))
        self.is_shaking_active = active

    def shaking_acceleration(self, current_time: float) -> float:
        """Horizontal acceleration of the harmonic shaking, zero while shaking is inactive."""
        if not self.is_shaking_active:
            return 0.0
        omega = 2.0 * math.pi / self.shaking.period
        return self.shaking.amplitude * math.sin((current_time - self.time_begin_shaking) * omega) * omega * omega

    def generation_due(self, current_time: float, info: ParticleAggregateInfo) -> bool:
        g = self.generation
        zone_cleared = info.maximum_height < g.generation_height_ratio_start * self.domain_height - g.generation_spacing
        return zone_cleared or current_time - self.time_last_creation > self.maximum_time_between_creation

    def update(self, current_time: float, info: ParticleAggregateInfo) -> StepDecision:
        if self.phase == Phase.TERMINATED:
            return StepDecision(terminate=True)

        if info.particle_volume * self.density < self.target_mass:
            self.phase = Phase.GENERATING
            if self.generation_due(current_time, info):
                self.time_last_creation = current_time
                return StepDecision(generate=True)
            return StepDecision()

        if self.shaking_pending:
            self.phase = Phase.SHAKING
            self._update_shaking(current_time)
            return StepDecision()

        return self._damp_and_check(current_time, info)

    def _update_shaking(self, current_time: float):
        if self.time_end_shaking < 0.0:
            # the end is counted from now, not aligned to full periods
            self.time_end_shaking = current_time + self.shaking.duration
            if not self.is_shaking_active:
                self._set_shaking_active(True, current_time)
                self.time_begin_shaking = current_time
                logger.info(f"Beginning of shaking at time {current_time} s for {self.shaking.duration} s.")
            else:
                logger.info(f"Continue of shaking at time {current_time} s until time {self.time_end_shaking} s.")

        if current_time > self.time_end_shaking:
            logger.info(f"Ending of shaking at time {current_time} s.")
            self.shaking_pending = False
            self._set_shaking_active(False, current_time)

    def _damp_and_check(self, current_time: float, info: ParticleAggregateInfo) -> StepDecision:
        t = self.termination
        self.phase = Phase.DAMPING_AND_CHECKING
        if self.time_begin_damping < 0.0:
            self.time_begin_damping = current_time
            logger.info(f"Beginning of damping at time {current_time} s with damping factor "
                        f"{self.velocity_damping_factor} until convergence")

        terminate = False
        if (current_time - self.time_begin_damping > t.minimal_terminal_run_time
                and current_time - self.time_last_termination_check > t.termination_checking_spacing):
            if info.maximum_velocity < t.terminal_velocity:
                logger.info("Reached terminal max velocity - terminating.")
                terminate = True

            relative_average = _relative_change(info.height_of_mass, self.old_average_height)
            relative_maximum = _relative_change(info.maximum_height, self.old_maximum_height)
            # the max height criterion avoids early termination when little mass is created per generation
            if relative_maximum < 10.0 * t.terminal_relative_height_change \
                    and relative_average < t.terminal_relative_height_change:
                logger.info("Reached converged maximum and mass-averaged height - terminating.")
                terminate = True

            self.old_average_height = info.height_of_mass
            self.old_maximum_height = info.maximum_height
            self.time_last_termination_check = current_time

        if terminate:
            self.phase = Phase.TERMINATED
        return StepDecision(damping_factor=self.velocity_damping_factor, terminate=terminate)


def _relative_change(new: float, old: float) -> float:
    if old == 0.0:
        return 0.0 if new == 0.0 else math.inf
    return abs(new - old) / abs(old)
