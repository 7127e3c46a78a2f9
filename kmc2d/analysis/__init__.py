"""Analysis module for KMC trajectories."""

from .trajectory import Trajectory, system_energy, time_averaged_occupancy

__all__ = [
    "Trajectory",
    "system_energy",
    "time_averaged_occupancy",
]
