"""Exceptions raised by the lattice, replication and simulation layers."""


class LatticeError(Exception):
    """Base class for errors raised by kmc2d."""


class StructuralInconsistencyError(LatticeError):
    """A canonical/image/replica lookup failed while rewriting the lattice."""


class MalformedStateError(LatticeError):
    """A persisted lattice record is incomplete or cannot be resolved."""


class CoordinationOverflowError(LatticeError, ValueError):
    """A site has more occupied neighbour links than coordination modifiers."""


class SimulationStateError(LatticeError, RuntimeError):
    """A KMC sub-step was requested out of order or against a stale catalogue."""
