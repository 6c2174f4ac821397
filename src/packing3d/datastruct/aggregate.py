"""
Global statistics of the packing, rebuilt after every step.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class ParticleAggregateInfo:
    num_particles: int = 0
    particle_volume: float = 0.0
    maximum_height: float = 0.0
    height_of_mass: float = 0.0         # volume weighted mean height
    maximum_velocity: float = 0.0

    def __str__(self):
        return (f"particles = {self.num_particles}, volume = {self.particle_volume:.6g}, "
                f"max height = {self.maximum_height:.6g}, height of mass = {self.height_of_mass:.6g}, "
                f"max velocity = {self.maximum_velocity:.6g}")


@dataclass(frozen=True)
class ContactAggregateInfo:
    num_contacts: int = 0
    maximum_penetration_depth: float = 0.0
    average_penetration_depth: float = 0.0

    def __str__(self):
        return (f"contacts = {self.num_contacts}, max penetration = {self.maximum_penetration_depth:.6g}, "
                f"avg penetration = {self.average_penetration_depth:.6g}")
