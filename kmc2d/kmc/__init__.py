"""KMC module for periodic lattice construction and kinetic Monte Carlo simulation."""

from .errors import (
    CoordinationOverflowError,
    LatticeError,
    MalformedStateError,
    SimulationStateError,
    StructuralInconsistencyError,
)
from .events import Event, EventCatalog
from .ids import IdAllocator
from .lattice import OPPOSITE_IMAGE, LatticeGraph, Site, SiteImage, SiteRef, Transition
from .random_source import RandomSource
from .rates import ArrheniusRate, RateCalculator
from .replicator import ExpansionResult, PeriodicReplicator
from .simulator import KMCSimulator, StepPhase, StepReport, StepStatus

__all__ = [
    "LatticeGraph",
    "Site",
    "SiteImage",
    "SiteRef",
    "Transition",
    "OPPOSITE_IMAGE",
    "IdAllocator",
    "PeriodicReplicator",
    "ExpansionResult",
    "Event",
    "EventCatalog",
    "ArrheniusRate",
    "RateCalculator",
    "RandomSource",
    "KMCSimulator",
    "StepPhase",
    "StepReport",
    "StepStatus",
    "LatticeError",
    "StructuralInconsistencyError",
    "MalformedStateError",
    "CoordinationOverflowError",
    "SimulationStateError",
]
