"""
Event definitions for KMC simulation.

An event is one hop along a transition, leaving an occupied site for the
vacant site at the other end. The catalogue holds every hop available in the
current state together with its rate.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    import numpy.typing as npt

    from .lattice import SiteRef


@dataclass
class Event:
    """
    Represents a single KMC hop.

    Attributes:
        transition: Handle of the transition the hop follows.
        source: Occupied canonical site the hop leaves.
        target: Endpoint view the hop arrives at.
        barrier: Activation barrier (eV).
        prefactor: Attempt frequency used (THz).
        rate: Hop rate (Hz).
    """

    transition: int
    source: SiteRef
    target: SiteRef
    barrier: float
    prefactor: float
    rate: float = 0.0

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"Event(transition={self.transition}, "
            f"site={self.source.site}->{self.target.site}:{self.target.image}, "
            f"Ea={self.barrier:.3f}, rate={self.rate:.2e})"
        )


class EventCatalog:
    """
    Catalog of all hops available in the current state.

    Events keep the order they were added in; selection scans them left to
    right.
    """

    def __init__(self) -> None:
        """Initialize empty event catalog."""
        self.events: list[Event] = []
        self.total_rate: float = 0.0

    def add_event(self, event: Event) -> None:
        """
        Add an event to the catalog.

        Args:
            event: Event to add.
        """
        self.events.append(event)
        self.total_rate += event.rate

    def clear(self) -> None:
        """Clear all events from catalog."""
        self.events.clear()
        self.total_rate = 0.0

    def rates(self) -> list[float]:
        return [event.rate for event in self.events]

    def barriers(self) -> list[tuple[float, float]]:
        """(barrier, prefactor) of every event."""
        return [(event.barrier, event.prefactor) for event in self.events]

    def get_cumulative_probabilities(self) -> npt.NDArray[np.float64]:
        """Running sum of rate / total_rate over the catalogue."""
        if not self.events or self.total_rate <= 0.0:
            return np.zeros(len(self.events))
        return np.cumsum(np.array(self.rates())) / self.total_rate

    def select(self, u: float) -> int:
        """
        Select an event by inverting the cumulative distribution.

        Args:
            u: Uniform draw in [0, 1).

        Returns:
            Index of the first event whose cumulative probability is >= u.
        """
        if not self.events or self.total_rate <= 0.0:
            raise ValueError("Cannot select an event from an empty catalog")
        cumulative = self.get_cumulative_probabilities()
        idx = int(np.searchsorted(cumulative, u, side="left"))
        # Rounding can leave the last cumulative value just below 1
        return min(idx, len(self.events) - 1)

    def __len__(self) -> int:
        """Number of events in catalog."""
        return len(self.events)

    def __getitem__(self, index: int) -> Event:
        return self.events[index]

    def __repr__(self) -> str:
        """String representation."""
        return f"EventCatalog(n_events={len(self)}, total_rate={self.total_rate:.2e})"
