"""
Energy and occupation traces of a KMC run.

Records the system energy and occupation against simulation time, and
computes residence-time weighted averages of the occupation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

import numpy as np
import numpy.typing as npt

if TYPE_CHECKING:
    from ..kmc.lattice import LatticeGraph
    from ..kmc.simulator import KMCSimulator


def system_energy(graph: LatticeGraph) -> float:
    """
    Total energy of the occupied sites.

    Each occupied site contributes its energy plus the coordination modifier
    for its current number of occupied neighbour links.

    Args:
        graph: Lattice.

    Returns:
        Energy in eV.
    """
    return float(
        sum(site.energy + site.modifier(graph.coordination(site)) for site in graph.iter_occupied_sites())
    )


def time_averaged_occupancy(
    times: npt.ArrayLike, occupancies: npt.ArrayLike
) -> npt.NDArray[np.float64]:
    """
    Residence-time weighted occupation of each site.

    State k is held from times[k] until times[k + 1], so the last state gets
    no weight.

    Args:
        times: Snapshot times, shape (n,), non-decreasing.
        occupancies: Occupation snapshots, shape (n, n_sites).

    Returns:
        Fraction of time each site was occupied, shape (n_sites,).
    """
    times = np.asarray(times, dtype=np.float64)
    occupancies = np.asarray(occupancies, dtype=np.float64)
    if occupancies.ndim != 2 or occupancies.shape[0] != times.shape[0]:
        raise ValueError(
            f"Expected one occupation row per time, got {occupancies.shape} for {times.shape[0]} times"
        )
    if times.shape[0] == 0:
        raise ValueError("Cannot average an empty trajectory")

    dt = np.diff(times)
    if np.any(dt < 0):
        raise ValueError("Times must be non-decreasing")
    total = dt.sum()
    if total == 0.0:
        return occupancies[0].copy()
    return (occupancies[:-1] * dt[:, None]).sum(axis=0) / total


@dataclass
class Trajectory:
    """
    Time series of a KMC run.

    Attributes:
        times: Simulation times (s).
        steps: Step counts.
        energies: System energies (eV).
        coverages: Occupied fractions.
        occupancies: Occupation vectors over the canonical sites.
    """

    times: list[float] = field(default_factory=list)
    steps: list[int] = field(default_factory=list)
    energies: list[float] = field(default_factory=list)
    coverages: list[float] = field(default_factory=list)
    occupancies: list[npt.NDArray[np.bool_]] = field(default_factory=list)

    def record(self, simulator: KMCSimulator) -> None:
        """Record the current state of a simulation."""
        graph = simulator.graph
        self.times.append(simulator.time)
        self.steps.append(simulator.step)
        self.energies.append(system_energy(graph))
        self.coverages.append(graph.coverage())
        self.occupancies.append(graph.occupancy())

    def as_arrays(self) -> dict[str, npt.NDArray]:
        """Trajectory as numpy arrays."""
        return {
            "times": np.asarray(self.times, dtype=np.float64),
            "steps": np.asarray(self.steps, dtype=np.int64),
            "energies": np.asarray(self.energies, dtype=np.float64),
            "coverages": np.asarray(self.coverages, dtype=np.float64),
            "occupancies": np.stack(self.occupancies) if self.occupancies else np.zeros((0, 0), dtype=bool),
        }

    def mean_occupancy(self) -> npt.NDArray[np.float64]:
        """Residence-time weighted occupation of each site."""
        if not self.occupancies:
            raise ValueError("Cannot average an empty trajectory")
        return time_averaged_occupancy(self.times, np.stack(self.occupancies))

    def save(self, path: str | Path) -> Path:
        """Save the trajectory to a compressed ``.npz`` file."""
        path = Path(path)
        if path.suffix != ".npz":
            path = path.with_suffix(".npz")
        path.parent.mkdir(parents=True, exist_ok=True)
        np.savez_compressed(path, **self.as_arrays())
        return path

    def __len__(self) -> int:
        """Number of recorded snapshots."""
        return len(self.times)
