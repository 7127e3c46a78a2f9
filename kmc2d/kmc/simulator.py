"""
Main KMC simulator engine.

This module implements the rejection-free kinetic Monte Carlo algorithm on a
periodic lattice graph. A step is split into four sub-steps (build, select,
apply, advance time) that can be run one at a time for step-through display
or together with ``run_step``.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from .errors import SimulationStateError
from .events import Event, EventCatalog
from .random_source import RandomSource
from .rates import RateCalculator

if TYPE_CHECKING:
    from collections.abc import Callable

    from ..data.physical_constants import PhysicalConstants
    from .lattice import LatticeGraph

logger = logging.getLogger(__name__)


class StepPhase(Enum):
    """Position of the simulator inside a KMC step."""

    IDLE = "idle"
    BUILT = "built"
    SELECTED = "selected"
    APPLIED = "applied"
    TIME_ADVANCED = "time_advanced"


class StepStatus(Enum):
    """Outcome of a KMC step."""

    EXECUTED = "executed"
    NO_EVENTS = "no_events"
    IN_PROGRESS = "in_progress"


@dataclass
class StepReport:
    """
    Everything a caller needs to log or display one KMC step.

    Attributes:
        status: Outcome of the step.
        phase: Phase the simulator was in when the report was taken.
        step: Number of completed steps.
        time: Simulation time (s).
        transition: Handle of the chosen transition.
        event_index: Index of the chosen event in the catalogue.
        barriers: (barrier, prefactor) of every catalogue event.
        rates: Rate of every catalogue event (Hz).
        total_rate: Sum of the rates (Hz).
        u1: Draw used for event selection.
        u2: Draw used for the time increment.
        dt: Time increment (s).
    """

    status: StepStatus
    phase: StepPhase
    step: int
    time: float
    transition: int | None = None
    event_index: int | None = None
    barriers: list[tuple[float, float]] = field(default_factory=list)
    rates: list[float] = field(default_factory=list)
    total_rate: float = 0.0
    u1: float | None = None
    u2: float | None = None
    dt: float = 0.0


class KMCSimulator:
    """
    Kinetic Monte Carlo simulator for a periodic lattice graph.

    The simulator reads energies and transitions from the graph and only ever
    flips site occupations; it never creates or removes sites or transitions.

    Attributes:
        graph: Lattice being simulated.
        rng: Random source for both draws of a step.
        rate_calculator: Barrier and rate calculator.
        event_catalog: Hops available in the current state.
        time: Current simulation time (s).
        step: Number of completed steps.
        phase: Current sub-step position.
    """

    def __init__(
        self,
        graph: LatticeGraph,
        temperature: float,
        seed: int | None = None,
        random_source: RandomSource | None = None,
        constants: PhysicalConstants | None = None,
    ) -> None:
        """
        Initialize KMC simulator.

        Args:
            graph: Lattice to simulate.
            temperature: Temperature (K).
            seed: Random seed, used when no random source is given.
            random_source: Random source. A seeded RandomSource if None.
            constants: Physical constants. Defaults if None.
        """
        self.graph = graph
        self.rng = random_source if random_source is not None else RandomSource(seed)
        self.rate_calculator = RateCalculator(temperature=temperature, constants=constants)

        self.event_catalog = EventCatalog()
        self.time = 0.0
        self.step = 0
        self.phase = StepPhase.IDLE
        self.events_executed = 0

        self.selected_index: int | None = None
        self.u1: float | None = None
        self.u2: float | None = None
        self.dt = 0.0
        self._no_events = False

        logger.info(
            f"Initialized KMC simulator: {graph}, T={temperature}K, rng={self.rng}"
        )

    @property
    def temperature(self) -> float:
        return self.rate_calculator.temperature

    @temperature.setter
    def temperature(self, value: float) -> None:
        self.rate_calculator.temperature = value

    @property
    def selected_event(self) -> Event | None:
        if self.selected_index is None:
            return None
        return self.event_catalog[self.selected_index]

    def _require(self, *phases: StepPhase) -> None:
        if self.phase not in phases:
            expected = ", ".join(p.value for p in phases)
            raise SimulationStateError(
                f"Cannot run this sub-step in phase {self.phase.value!r} (expected {expected})"
            )

    def _clear_step(self) -> None:
        self.event_catalog.clear()
        self.selected_index = None
        self.u1 = None
        self.u2 = None
        self.dt = 0.0
        self._no_events = False
        self.phase = StepPhase.IDLE

    def build_event_list(self) -> EventCatalog:
        """
        Build the list of hops out of every occupied site.

        A hop is available along each transition attached to an occupied
        canonical site whose other end is vacant. If no hop is available the
        simulator stays idle.

        Returns:
            The rebuilt event catalogue.
        """
        self._require(StepPhase.IDLE, StepPhase.TIME_ADVANCED)
        self._clear_step()
        graph = self.graph

        for site in graph.iter_occupied_sites():
            mod_energy = site.modifier(graph.coordination(site))
            origin = site.ref
            for handle in sorted(site.transitions):
                transition = graph.transitions[handle]
                if graph.both_occupied(transition):
                    continue

                prefactor = transition.prefactor_from(origin)
                barrier = self.rate_calculator.effective_barrier(
                    transition.barrier, site.energy, mod_energy
                )
                rate = self.rate_calculator.calculate_hop_rate(prefactor, barrier)
                self.event_catalog.add_event(
                    Event(
                        transition=handle,
                        source=origin,
                        target=transition.other_end(origin),
                        barrier=barrier,
                        prefactor=prefactor,
                        rate=rate,
                    )
                )

        if self.event_catalog.total_rate > 0.0:
            self.phase = StepPhase.BUILT
        else:
            self._no_events = True

        logger.debug(
            f"build_event_list: step={self.step}, events={len(self.event_catalog)}, "
            f"total_rate={self.event_catalog.total_rate:.6e}"
        )
        return self.event_catalog

    def select_event(self, u: float | None = None) -> Event:
        """
        Select an event with probability proportional to its rate.

        Args:
            u: Uniform draw in [0, 1). Drawn from the random source if None.

        Returns:
            The selected event.
        """
        self._require(StepPhase.BUILT)
        if u is None:
            u = self.rng.uniform()
        if not 0.0 <= u < 1.0:
            raise ValueError(f"Selection draw must be in [0, 1), got {u}")

        self.u1 = u
        self.selected_index = self.event_catalog.select(u)
        self.phase = StepPhase.SELECTED

        event = self.event_catalog[self.selected_index]
        logger.debug(f"Selected {event} (u1={u:.6f})")
        return event

    def execute_event(self) -> Event:
        """
        Move the occupation along the selected transition.

        Returns:
            The executed event.
        """
        self._require(StepPhase.SELECTED)
        event = self.event_catalog[self.selected_index]

        if not self.graph.is_occupied(event.source):
            raise SimulationStateError(f"Source site {event.source.site} is vacant")
        if self.graph.is_occupied(event.target):
            raise SimulationStateError(f"Destination site {event.target.site} is occupied")

        self.graph.set_occupied(event.source, False)
        self.graph.set_occupied(event.target, True)

        self.events_executed += 1
        self.phase = StepPhase.APPLIED
        return event

    def advance_time(self, u: float | None = None) -> float:
        """
        Advance simulation time by a residence time draw.

        Args:
            u: Uniform draw in (0, 1). Drawn from the random source if None.

        Returns:
            The time increment (s).
        """
        self._require(StepPhase.APPLIED)
        if u is None:
            u = self.rng.open_uniform()
        if not 0.0 < u < 1.0:
            raise ValueError(f"Time draw must be in (0, 1), got {u}")

        self.u2 = u
        self.dt = -math.log(u) / self.event_catalog.total_rate
        self.time += self.dt
        self.step += 1
        self.phase = StepPhase.TIME_ADVANCED
        return self.dt

    def next_phase(self) -> StepPhase:
        """
        Run whichever sub-step comes next.

        Returns:
            The phase reached.
        """
        if self.phase in (StepPhase.IDLE, StepPhase.TIME_ADVANCED):
            self.build_event_list()
            if self._no_events:
                logger.warning(f"No available transitions at step {self.step}")
        elif self.phase is StepPhase.BUILT:
            self.select_event()
        elif self.phase is StepPhase.SELECTED:
            self.execute_event()
        else:
            self.advance_time()
        return self.phase

    def report(self) -> StepReport:
        """Report of the current step, valid at any phase."""
        if self._no_events:
            status = StepStatus.NO_EVENTS
        elif self.phase is StepPhase.TIME_ADVANCED:
            status = StepStatus.EXECUTED
        else:
            status = StepStatus.IN_PROGRESS

        event = self.selected_event
        return StepReport(
            status=status,
            phase=self.phase,
            step=self.step,
            time=self.time,
            transition=event.transition if event is not None else None,
            event_index=self.selected_index,
            barriers=self.event_catalog.barriers(),
            rates=self.event_catalog.rates(),
            total_rate=self.event_catalog.total_rate,
            u1=self.u1,
            u2=self.u2,
            dt=self.dt,
        )

    def run_step(self) -> StepReport:
        """
        Execute one full KMC step: build, select, apply, advance time.

        Returns:
            Report of the step. Its status is NO_EVENTS if nothing could hop,
            in which case time is not advanced.
        """
        self._require(StepPhase.IDLE, StepPhase.TIME_ADVANCED)

        self.build_event_list()
        if self._no_events:
            logger.warning(f"No available transitions at step {self.step}")
            report = self.report()
            self._clear_step()
            return report

        self.select_event()
        self.execute_event()
        self.advance_time()

        report = self.report()
        self.phase = StepPhase.IDLE
        return report

    def run(
        self,
        max_steps: int = 10000,
        max_time: float | None = None,
        callback: Callable[[KMCSimulator], None] | None = None,
        snapshot_interval: int = 100,
    ) -> StepReport | None:
        """
        Run KMC simulation.

        Args:
            max_steps: Maximum number of steps.
            max_time: Maximum simulation time (s).
            callback: Optional callback function called at snapshot intervals.
            snapshot_interval: Interval for calling callback.

        Returns:
            Report of the last step run, or None if no step was attempted.
        """
        logger.info(f"Starting KMC simulation: max_steps={max_steps}, max_time={max_time}")

        report = None
        while self.step < max_steps:
            if max_time is not None and self.time >= max_time:
                logger.info(f"Reached time limit: {self.time:.2e}s")
                break

            report = self.run_step()
            if report.status is StepStatus.NO_EVENTS:
                break

            if callback is not None and self.step % snapshot_interval == 0:
                callback(self)

        logger.info(
            f"Simulation completed: {self.step} steps, {self.time:.2e}s, "
            f"coverage={self.graph.coverage():.3f}"
        )
        return report

    def reseed(self, seed: int | None) -> None:
        """
        Restart the random stream and discard any partial step.

        Simulation time is kept; see reset_time.
        """
        self.rng.reseed(seed)
        self._clear_step()
        logger.info(f"Reseeded random source with {seed}")

    def reset_time(self) -> None:
        """Reset simulation time and step counter."""
        self.time = 0.0
        self.step = 0
        self.events_executed = 0

    def get_statistics(self) -> dict[str, int | float]:
        """
        Get simulation statistics.

        Returns:
            Dictionary of statistics.
        """
        occupancy = self.graph.occupancy()
        return {
            "step": self.step,
            "time": self.time,
            "n_sites": int(occupancy.size),
            "n_occupied": int(occupancy.sum()),
            "coverage": self.graph.coverage(),
            "events_executed": self.events_executed,
        }
