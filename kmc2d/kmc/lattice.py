"""
Periodic lattice graph for 2D KMC models.

This module defines the lattice data model: canonical sites with their eight
periodic images, directed transitions (hop pathways) between site views, and
the graph that owns both and keeps the periodic wiring consistent.
"""

from __future__ import annotations

import copy
import logging
import math
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np
import numpy.typing as npt

from .errors import CoordinationOverflowError, StructuralInconsistencyError
from .ids import IdAllocator

if TYPE_CHECKING:
    from collections.abc import Iterator

logger = logging.getLogger(__name__)

N_IMAGES = 8
N_MODIFIERS = 6

# Cell vectors of the canonical site (index 0) and its images, in units of the
# cell size. Scene y grows southwards, so north is negative y.
IMAGE_CELL_VECTORS: tuple[tuple[int, int], ...] = (
    (0, 0),
    (0, -1),  # N
    (1, -1),  # NE
    (1, 0),  # E
    (1, 1),  # SE
    (0, 1),  # S
    (-1, 1),  # SW
    (-1, 0),  # W
    (-1, -1),  # NW
)
IMAGE_NAMES = ("canonical", "N", "NE", "E", "SE", "S", "SW", "W", "NW")

_IMAGE_BY_VECTOR = {vector: index for index, vector in enumerate(IMAGE_CELL_VECTORS)}

OPPOSITE_IMAGE: dict[int, int] = {
    index: _IMAGE_BY_VECTOR[(-dx, -dy)] for index, (dx, dy) in enumerate(IMAGE_CELL_VECTORS)
}


def image_for_vector(vector: tuple[int, int]) -> int:
    """
    Get the image index whose cell vector is ``vector``.

    Args:
        vector: Cell vector with components in {-1, 0, 1}.

    Returns:
        Image index (0 for the canonical cell).
    """
    key = (int(vector[0]), int(vector[1]))
    if key not in _IMAGE_BY_VECTOR:
        raise ValueError(f"No periodic image for cell vector {key}")
    return _IMAGE_BY_VECTOR[key]


def image_offsets(x: float, y: float) -> npt.NDArray[np.float64]:
    """
    Offsets of the canonical position and its eight images for a cell (x, y).

    Returns:
        Array of shape (9, 2); row k is the offset of image k.
    """
    return np.asarray(IMAGE_CELL_VECTORS, dtype=np.float64) * np.array([x, y], dtype=np.float64)


def _check_prefactors(*prefactors: float | None) -> None:
    for prefactor in prefactors:
        if prefactor is not None and not (math.isfinite(prefactor) and prefactor >= 0):
            raise ValueError(f"Prefactors must be finite and non-negative, got {prefactor}")


@dataclass(frozen=True)
class SiteRef:
    """
    Reference to one view of a site: the canonical site or one of its images.

    Attributes:
        site: Handle of the canonical site.
        image: 0 for the canonical view, 1-8 for a periodic image.
    """

    site: int
    image: int = 0

    @property
    def is_image(self) -> bool:
        """True if this refers to a periodic image."""
        return self.image != 0

    def canonical(self) -> SiteRef:
        """Reference to the canonical view of the same site."""
        return SiteRef(self.site)


@dataclass(eq=False)
class SiteImage:
    """
    Periodic image of a canonical site.

    Images carry only their position and the transitions drawn to them. The
    occupation and energies are read from the parent site.
    """

    parent: Site = field(repr=False)
    index: int
    position: tuple[float, float]
    transitions: set[int] = field(default_factory=set)

    @property
    def occupied(self) -> bool:
        return self.parent.occupied

    @property
    def energy(self) -> float:
        return self.parent.energy

    @property
    def modifiers(self) -> tuple[float, ...]:
        return self.parent.modifiers

    @property
    def ref(self) -> SiteRef:
        return SiteRef(self.parent.handle, self.index)


@dataclass(eq=False)
class Site:
    """
    Canonical lattice site.

    The site is the single authoritative record for the occupation state and
    energies shared with its eight periodic images.

    Attributes:
        handle: Stable handle of the site in the graph.
        position: Scene coordinates (x, y) inside the simulation cell.
        occupied: Occupation state.
        energy: Energy of the occupied state (eV).
        modifiers: Energy corrections for 1..6 occupied neighbour links (eV).
        canonical_id: Identity shared with the images, used for replication.
        replica: Replica coordinates assigned during expansion.
        transitions: Handles of transitions attached to the canonical view.
        images: The eight periodic images, index 1..8.
    """

    handle: int
    position: tuple[float, float]
    occupied: bool = False
    energy: float = 0.0
    modifiers: tuple[float, ...] = (0.0,) * N_MODIFIERS
    canonical_id: int = 0
    replica: tuple[int, int] = (0, 0)
    transitions: set[int] = field(default_factory=set)
    images: list[SiteImage] = field(default_factory=list, repr=False)

    @property
    def ref(self) -> SiteRef:
        return SiteRef(self.handle)

    def image(self, index: int) -> SiteImage:
        """Get periodic image 1..8."""
        if not 1 <= index <= N_IMAGES:
            raise ValueError(f"Image index must be in 1..{N_IMAGES}, got {index}")
        return self.images[index - 1]

    def view_position(self, index: int) -> tuple[float, float]:
        """Position of the canonical view (0) or of image ``index``."""
        return self.position if index == 0 else self.image(index).position

    def view_transitions(self, index: int) -> set[int]:
        """Transitions attached to the canonical view (0) or to image ``index``."""
        return self.transitions if index == 0 else self.image(index).transitions

    def all_transitions(self) -> set[int]:
        """Transitions attached to any view of this site."""
        handles = set(self.transitions)
        for image in self.images:
            handles |= image.transitions
        return handles

    def modifier(self, coordination: int) -> float:
        """
        Energy correction for ``coordination`` occupied neighbour links.

        Args:
            coordination: Number of incident links with both ends occupied.

        Returns:
            0.0 for no occupied neighbours, otherwise the matching modifier.
        """
        if coordination < 0:
            raise ValueError(f"Coordination must be non-negative, got {coordination}")
        if coordination == 0:
            return 0.0
        if coordination > N_MODIFIERS:
            raise CoordinationOverflowError(
                f"Site {self.handle} has coordination {coordination}, "
                f"only {N_MODIFIERS} modifiers are defined"
            )
        return self.modifiers[coordination - 1]


@dataclass(eq=False)
class Transition:
    """
    Directed hop pathway between two site views.

    Attributes:
        handle: Stable handle of the transition in the graph.
        start: Start endpoint.
        end: End endpoint.
        barrier: Saddle point energy (eV).
        forward_prefactor: Attempt frequency start -> end (THz).
        backward_prefactor: Attempt frequency end -> start (THz).
        pair_id: 0 for a transition local to the cell, otherwise the id shared
            with its periodic mirror.
    """

    handle: int
    start: SiteRef
    end: SiteRef
    barrier: float = 1.0
    forward_prefactor: float = 10.0
    backward_prefactor: float = 10.0
    pair_id: int = 0

    @property
    def is_periodic(self) -> bool:
        return self.pair_id > 0

    def endpoints(self) -> tuple[SiteRef, SiteRef]:
        return self.start, self.end

    def other_end(self, ref: SiteRef) -> SiteRef:
        """Endpoint opposite to ``ref``."""
        if ref == self.start:
            return self.end
        if ref == self.end:
            return self.start
        raise ValueError(f"{ref} is not an endpoint of transition {self.handle}")

    def prefactor_from(self, ref: SiteRef) -> float:
        """Attempt frequency for a hop leaving endpoint ``ref``."""
        if ref == self.start:
            return self.forward_prefactor
        if ref == self.end:
            return self.backward_prefactor
        raise ValueError(f"{ref} is not an endpoint of transition {self.handle}")

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"Transition({self.handle}, {self.start.site}:{self.start.image}"
            f"->{self.end.site}:{self.end.image}, En={self.barrier:.3f}, "
            f"PF={self.forward_prefactor:g}/{self.backward_prefactor:g}, ID={self.pair_id})"
        )


class LatticeGraph:
    """
    Periodic 2D lattice of bistable sites connected by transitions.

    The graph owns the canonical sites (each with eight periodic images), the
    transitions between site views, the simulation cell dimensions and the id
    allocator used for handles and pairing ids.

    Attributes:
        sites: Canonical sites keyed by handle.
        transitions: Transitions keyed by handle.
        ids: Id allocator scoped to this graph.
        offsets: Offsets of the canonical view and the eight images, shape (9, 2).
    """

    def __init__(self, cell: tuple[float, float], ids: IdAllocator | None = None) -> None:
        """
        Initialize an empty lattice.

        Args:
            cell: Simulation cell dimensions (x, y).
            ids: Id allocator. A fresh one is created if None.
        """
        self.ids = ids if ids is not None else IdAllocator()
        self.sites: dict[int, Site] = {}
        self.transitions: dict[int, Transition] = {}
        self._site_keys: dict[tuple[int, tuple[int, int]], int] = {}
        self._cell = (0.0, 0.0)
        self.offsets = image_offsets(0.0, 0.0)
        self.set_cell_dimensions(*cell)

    # ------------------------------------------------------------------
    # Cell
    # ------------------------------------------------------------------

    @property
    def cell(self) -> tuple[float, float]:
        """Current simulation cell dimensions (x, y)."""
        return self._cell

    def set_cell_dimensions(self, x: float, y: float) -> None:
        """
        Set the cell dimensions and recompute the image offsets.

        Existing sites are not moved; see PeriodicReplicator.resize.
        """
        if not (math.isfinite(x) and x > 0 and math.isfinite(y) and y > 0):
            raise ValueError(f"Cell dimensions must be positive and finite, got ({x}, {y})")
        self._cell = (float(x), float(y))
        self.offsets = image_offsets(*self._cell)
        logger.debug(f"Cell dimensions set to {self._cell}")

    def contains(self, position: tuple[float, float]) -> bool:
        """Check if a position lies in the half-open cell [0, X) x [0, Y)."""
        x, y = position
        return 0.0 <= x < self._cell[0] and 0.0 <= y < self._cell[1]

    # ------------------------------------------------------------------
    # Sites
    # ------------------------------------------------------------------

    def add_canonical_site(
        self,
        occupied: bool = False,
        energy: float = 0.0,
        position: tuple[float, float] = (0.0, 0.0),
        canonical_id: int | None = None,
        replica: tuple[int, int] = (0, 0),
        modifiers: tuple[float, ...] | list[float] | None = None,
    ) -> Site:
        """
        Add a canonical site and its eight periodic images.

        Args:
            occupied: Initial occupation.
            energy: Energy of the occupied state (eV).
            position: Scene position inside the cell.
            canonical_id: Canonical id. A fresh one is allocated if None.
            replica: Replica coordinates.
            modifiers: Six coordination modifiers (eV). Zeros if None.

        Returns:
            The new site.
        """
        pos = (float(position[0]), float(position[1]))
        if not self.contains(pos):
            raise ValueError(f"Site position {pos} lies outside the cell {self._cell}")

        if modifiers is None:
            mods = (0.0,) * N_MODIFIERS
        else:
            mods = tuple(float(m) for m in modifiers)
            if len(mods) != N_MODIFIERS:
                raise ValueError(f"Expected {N_MODIFIERS} coordination modifiers, got {len(mods)}")

        replica = (int(replica[0]), int(replica[1]))
        if canonical_id is None:
            canonical_id = self.ids.allocate("canonical")
        elif (canonical_id, replica) in self._site_keys:
            raise ValueError(f"Canonical id {canonical_id} already present in replica {replica}")
        else:
            self.ids.observe("canonical", canonical_id)

        site = Site(
            handle=self.ids.allocate("site"),
            position=pos,
            occupied=bool(occupied),
            energy=float(energy),
            modifiers=mods,
            canonical_id=canonical_id,
            replica=replica,
        )
        site.images = [
            SiteImage(parent=site, index=k, position=self.image_position(pos, k))
            for k in range(1, N_IMAGES + 1)
        ]
        self.sites[site.handle] = site
        self._site_keys[(canonical_id, replica)] = site.handle
        return site

    def image_position(self, position: tuple[float, float], index: int) -> tuple[float, float]:
        """Position of image ``index`` of a site at ``position`` in the current cell."""
        x, y = np.asarray(position, dtype=np.float64) + self.offsets[index]
        return (float(x), float(y))

    def get_site(self, handle: int) -> Site:
        """Get a canonical site by handle."""
        if handle not in self.sites:
            raise KeyError(f"No site with handle {handle}")
        return self.sites[handle]

    def resolve(self, ref: SiteRef) -> Site:
        """Canonical site behind any view reference."""
        if not 0 <= ref.image <= N_IMAGES:
            raise ValueError(f"Image index must be in 0..{N_IMAGES}, got {ref.image}")
        return self.get_site(ref.site)

    def view(self, ref: SiteRef) -> Site | SiteImage:
        """The canonical site or image a reference points to."""
        site = self.resolve(ref)
        return site if ref.image == 0 else site.image(ref.image)

    def position_of(self, ref: SiteRef) -> tuple[float, float]:
        return self.resolve(ref).view_position(ref.image)

    def is_occupied(self, ref: SiteRef) -> bool:
        return self.resolve(ref).occupied

    def set_occupied(self, ref: SiteRef, occupied: bool) -> None:
        """
        Set the occupation through any view.

        The state always lands on the canonical site, so all images follow.
        """
        self.resolve(ref).occupied = bool(occupied)

    def set_site_properties(
        self,
        handle: int,
        occupied: bool | None = None,
        energy: float | None = None,
        modifiers: tuple[float, ...] | list[float] | None = None,
    ) -> Site:
        """Edit the state of a canonical site. Arguments left as None are unchanged."""
        site = self.get_site(handle)
        if modifiers is not None:
            mods = tuple(float(m) for m in modifiers)
            if len(mods) != N_MODIFIERS:
                raise ValueError(f"Expected {N_MODIFIERS} coordination modifiers, got {len(mods)}")
            site.modifiers = mods
        if occupied is not None:
            site.occupied = bool(occupied)
        if energy is not None:
            site.energy = float(energy)
        return site

    def find_site(self, canonical_id: int, replica: tuple[int, int] = (0, 0)) -> Site | None:
        """Look up a canonical site by canonical id and replica coordinates."""
        handle = self._site_keys.get((canonical_id, (int(replica[0]), int(replica[1]))))
        return None if handle is None else self.sites[handle]

    def find_views_at(self, position: tuple[float, float], tol: float = 1e-6) -> list[SiteRef]:
        """
        Find every site view located at ``position``.

        Args:
            position: Scene coordinates.
            tol: Absolute tolerance per coordinate.

        Returns:
            References to the matching canonical sites and images.
        """
        x, y = position
        matches = []
        for ref, (vx, vy) in self.iter_views():
            if math.isclose(vx, x, abs_tol=tol) and math.isclose(vy, y, abs_tol=tol):
                matches.append(ref)
        return matches

    def iter_views(self) -> Iterator[tuple[SiteRef, tuple[float, float]]]:
        """Iterate over (reference, position) for every canonical site and image."""
        for site in self.sites.values():
            yield site.ref, site.position
            for image in site.images:
                yield image.ref, image.position

    def iter_occupied_sites(self) -> Iterator[Site]:
        """Iterate over occupied canonical sites in handle order."""
        for site in self.sites.values():
            if site.occupied:
                yield site

    def renumber_canonical_ids(self) -> None:
        """Give every site a fresh canonical id and move it to replica (0, 0)."""
        self.ids.reset("canonical")
        self._site_keys.clear()
        for site in self.sites.values():
            site.canonical_id = self.ids.allocate("canonical")
            site.replica = (0, 0)
            self._site_keys[(site.canonical_id, site.replica)] = site.handle

    def remove_site(self, handle: int) -> list[Transition]:
        """
        Remove a site, its images and every transition attached to them.

        Periodic mirrors of the removed transitions are removed as well.

        Returns:
            The removed transitions.
        """
        site = self.get_site(handle)
        removed: list[Transition] = []
        for t_handle in sorted(site.all_transitions()):
            if t_handle in self.transitions:
                removed.extend(self.remove_transition(t_handle))
        del self.sites[handle]
        del self._site_keys[(site.canonical_id, site.replica)]
        logger.debug(f"Removed site {handle} and {len(removed)} transitions")
        return removed

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def add_transition(
        self,
        start: SiteRef,
        end: SiteRef,
        barrier: float = 1.0,
        pair_id: int = 0,
        forward_prefactor: float = 10.0,
        backward_prefactor: float = 10.0,
    ) -> Transition:
        """
        Add a transition and attach it to both endpoint views.

        A positive ``pair_id`` marks the transition as periodic; its mirror is
        not created here (see add_transition_pair). An unpaired link between
        two images in the same neighbouring cell is stored between the
        canonical sites, since it describes the same pathway.

        Returns:
            The new transition.
        """
        self._check_link(start, end)
        if pair_id < 0:
            raise ValueError(f"Pairing id must be non-negative, got {pair_id}")
        _check_prefactors(forward_prefactor, backward_prefactor)
        if pair_id == 0 and start.image == end.image != 0:
            logger.debug(f"Moving link {start} -> {end} onto the canonical sites")
            start, end = start.canonical(), end.canonical()

        transition = Transition(
            handle=self.ids.allocate("transition"),
            start=start,
            end=end,
            barrier=float(barrier),
            forward_prefactor=float(forward_prefactor),
            backward_prefactor=float(backward_prefactor),
            pair_id=int(pair_id),
        )
        self.transitions[transition.handle] = transition
        self.resolve(start).view_transitions(start.image).add(transition.handle)
        self.resolve(end).view_transitions(end.image).add(transition.handle)
        if pair_id > 0:
            self.ids.observe("pair", pair_id)
        return transition

    def add_transition_pair(
        self,
        first_start: SiteRef,
        first_end: SiteRef,
        second_start: SiteRef,
        second_end: SiteRef,
        barrier: float = 1.0,
        forward_prefactor: float = 10.0,
        backward_prefactor: float = 10.0,
    ) -> tuple[Transition, Transition]:
        """Add two transitions sharing a freshly allocated pairing id."""
        self._check_link(first_start, first_end)
        self._check_link(second_start, second_end)
        _check_prefactors(forward_prefactor, backward_prefactor)
        pair_id = self.ids.allocate("pair")
        first = self.add_transition(
            first_start, first_end, barrier, pair_id, forward_prefactor, backward_prefactor
        )
        second = self.add_transition(
            second_start, second_end, barrier, pair_id, forward_prefactor, backward_prefactor
        )
        return first, second

    def add_periodic_transition(
        self,
        start_site: int,
        end_site: int,
        image: int,
        barrier: float = 1.0,
        forward_prefactor: float = 10.0,
        backward_prefactor: float = 10.0,
    ) -> tuple[Transition, Transition]:
        """
        Link ``start_site`` to image ``image`` of ``end_site`` across the cell boundary.

        Creates the transition ``start -> end.image`` and its mirror
        ``start.opposite_image -> end``.
        """
        if not 1 <= image <= N_IMAGES:
            raise ValueError(f"Image index must be in 1..{N_IMAGES}, got {image}")
        return self.add_transition_pair(
            SiteRef(start_site),
            SiteRef(end_site, image),
            SiteRef(start_site, OPPOSITE_IMAGE[image]),
            SiteRef(end_site),
            barrier,
            forward_prefactor,
            backward_prefactor,
        )

    def _check_link(self, start: SiteRef, end: SiteRef) -> None:
        self.resolve(start)
        self.resolve(end)
        if start.site == end.site and start.image == end.image:
            raise ValueError(f"Transition endpoints must differ, got {start} twice")

    def get_transition(self, handle: int) -> Transition:
        if handle not in self.transitions:
            raise KeyError(f"No transition with handle {handle}")
        return self.transitions[handle]

    def transitions_with_pair_id(self, pair_id: int) -> list[Transition]:
        """All transitions carrying ``pair_id``."""
        return [t for t in self.transitions.values() if t.pair_id == pair_id]

    def paired_transition(self, transition: Transition | int) -> Transition | None:
        """
        Periodic mirror of a transition.

        Returns:
            The mirror, or None for a local transition or an unpaired one.
        """
        transition = self._transition(transition)
        if transition.pair_id == 0:
            return None
        mirrors = [
            t
            for t in self.transitions_with_pair_id(transition.pair_id)
            if t.handle != transition.handle
        ]
        if len(mirrors) > 1:
            raise StructuralInconsistencyError(
                f"Pairing id {transition.pair_id} is shared by {len(mirrors) + 1} transitions"
            )
        return mirrors[0] if mirrors else None

    def set_transition_properties(
        self,
        transition: Transition | int,
        barrier: float | None = None,
        forward_prefactor: float | None = None,
        backward_prefactor: float | None = None,
    ) -> list[Transition]:
        """
        Edit a transition's energy and prefactors, mirroring the change to its pair.

        Returns:
            The updated transitions.
        """
        transition = self._transition(transition)
        _check_prefactors(forward_prefactor, backward_prefactor)
        updated = [transition]
        mirror = self.paired_transition(transition)
        if mirror is not None:
            updated.append(mirror)
        for t in updated:
            if barrier is not None:
                t.barrier = float(barrier)
            if forward_prefactor is not None:
                t.forward_prefactor = float(forward_prefactor)
            if backward_prefactor is not None:
                t.backward_prefactor = float(backward_prefactor)
        return updated

    def remove_transition(self, transition: Transition | int, include_pair: bool = True) -> list[Transition]:
        """
        Remove a transition and, by default, its periodic mirror.

        Returns:
            The removed transitions.
        """
        transition = self._transition(transition)
        del self.transitions[transition.handle]
        for ref in transition.endpoints():
            site = self.sites.get(ref.site)
            if site is not None:
                site.view_transitions(ref.image).discard(transition.handle)

        removed = [transition]
        if include_pair and transition.pair_id > 0:
            for mirror in self.transitions_with_pair_id(transition.pair_id):
                removed.extend(self.remove_transition(mirror, include_pair=False))
        return removed

    def _transition(self, transition: Transition | int) -> Transition:
        if isinstance(transition, Transition):
            return self.get_transition(transition.handle)
        return self.get_transition(transition)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def both_occupied(self, transition: Transition) -> bool:
        """True if both endpoints of a transition are occupied."""
        return self.is_occupied(transition.start) and self.is_occupied(transition.end)

    def coordination(self, site: Site | int) -> int:
        """
        Number of occupied neighbour links of a site.

        Counts the transitions attached to the canonical view whose endpoints
        are both occupied.
        """
        if not isinstance(site, Site):
            site = self.get_site(site)
        return sum(1 for handle in site.transitions if self.both_occupied(self.transitions[handle]))

    def effective_barriers(self, transition: Transition | int) -> tuple[float, float]:
        """
        Forward and backward barriers of a transition, ignoring coordination.

        Returns:
            (max(0, En - E_start), max(0, En - E_end)) in eV.
        """
        transition = self._transition(transition)
        start = self.resolve(transition.start)
        end = self.resolve(transition.end)
        return (
            max(0.0, transition.barrier - start.energy),
            max(0.0, transition.barrier - end.energy),
        )

    def occupancy(self) -> npt.NDArray[np.bool_]:
        """Occupation of the canonical sites in handle order."""
        return np.array([site.occupied for site in self.sites.values()], dtype=bool)

    def coverage(self) -> float:
        """Fraction of canonical sites that are occupied."""
        if not self.sites:
            return 0.0
        return float(self.occupancy().mean())

    # ------------------------------------------------------------------
    # Whole-graph operations
    # ------------------------------------------------------------------

    def clear(self) -> None:
        """Remove all sites and transitions and reset the id counters."""
        self.sites.clear()
        self.transitions.clear()
        self._site_keys.clear()
        self.ids.reset()

    @contextmanager
    def transaction(self) -> Iterator[LatticeGraph]:
        """
        Restore the graph to its entry state if the body raises.

        Site and transition objects obtained before a rolled-back transaction
        are detached from the graph afterwards; look them up again by handle.
        """
        snapshot = copy.deepcopy(self.__dict__)
        try:
            yield self
        except Exception:
            self.__dict__.clear()
            self.__dict__.update(snapshot)
            logger.debug("Lattice transaction rolled back")
            raise

    def __len__(self) -> int:
        """Number of canonical sites."""
        return len(self.sites)

    def __repr__(self) -> str:
        """String representation."""
        n_occupied = sum(1 for _ in self.iter_occupied_sites())
        return (
            f"LatticeGraph(cell={self._cell}, sites={len(self.sites)}, "
            f"occupied={n_occupied}, transitions={len(self.transitions)})"
        )
