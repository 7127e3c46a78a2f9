"""
Periodic replication of the simulation cell.

Resizing the cell moves every periodic image so that it stays one full cell
away from its canonical site. Expanding the cell by integer factors replicates
the sites and local transitions into the new replicas and rewires the
periodic (seam) transitions so the larger cell still tiles the plane.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from .errors import StructuralInconsistencyError
from .lattice import (
    IMAGE_CELL_VECTORS,
    OPPOSITE_IMAGE,
    LatticeGraph,
    Site,
    SiteRef,
    Transition,
    image_for_vector,
)

logger = logging.getLogger(__name__)


@dataclass
class ExpansionResult:
    """
    Summary of a cell expansion.

    Attributes:
        sites_created: Number of replica sites added.
        local_transitions_created: Copies of local transitions placed in new replicas.
        interior_links_created: Former seam pathways now joining replicas inside the cell.
        seam_pairs_created: New periodic transition pairs closing the expanded cell.
        seam_transitions_removed: Original periodic transitions deleted.
    """

    sites_created: int = 0
    local_transitions_created: int = 0
    interior_links_created: int = 0
    seam_pairs_created: int = 0
    seam_transitions_removed: int = 0


@dataclass(frozen=True)
class SeamPathway:
    """A periodic pathway from site ``start`` to site ``end`` located ``shift`` cells away."""

    start: int
    end: int
    shift: tuple[int, int]
    template: Transition


def _exterior_region(position: tuple[float, float], x: float, y: float) -> tuple[int, int]:
    """
    Column and row of the exterior region holding ``position`` around a cell (x, y).

    Returns:
        (column, row) in {-1, 0, 1}, never (0, 0).
    """
    px, py = position
    column = -1 if px < 0.0 else (1 if px >= x else 0)
    row = -1 if py < 0.0 else (1 if py >= y else 0)
    if column == 0 and row == 0:
        raise StructuralInconsistencyError(f"Periodic image at {position} lies inside the cell ({x}, {y})")
    return column, row


def transition_shift(transition: Transition) -> tuple[int, int]:
    """Lattice shift, in cells, from the start to the end of a transition."""
    sx, sy = IMAGE_CELL_VECTORS[transition.start.image]
    ex, ey = IMAGE_CELL_VECTORS[transition.end.image]
    return ex - sx, ey - sy


class PeriodicReplicator:
    """
    Keeps the periodic tiling of a lattice consistent across cell changes.

    Both operations run inside a graph transaction: either they complete or the
    graph is left exactly as it was.
    """

    def __init__(self, graph: LatticeGraph) -> None:
        """
        Initialize the replicator.

        Args:
            graph: Lattice to operate on.
        """
        self.graph = graph

    def resize(self, x: float, y: float) -> None:
        """
        Change the cell dimensions and move the periodic images accordingly.

        Args:
            x: New cell width.
            y: New cell height.
        """
        old_cell = self.graph.cell
        with self.graph.transaction():
            self._resize(float(x), float(y))
        logger.info(f"Resized cell from {old_cell} to {self.graph.cell}")

    def expand(self, xexp: int, yexp: int) -> ExpansionResult:
        """
        Multiply the cell by integer factors, replicating its contents.

        Args:
            xexp: Number of replicas along x.
            yexp: Number of replicas along y.

        Returns:
            Counts of the sites and transitions created and removed.
        """
        for name, factor in (("xexp", xexp), ("yexp", yexp)):
            if isinstance(factor, bool) or not isinstance(factor, (int, np.integer)) or factor < 1:
                raise ValueError(f"{name} must be an integer >= 1, got {factor!r}")

        with self.graph.transaction():
            result = self._expand(int(xexp), int(yexp))

        logger.info(
            f"Expanded cell by ({xexp}, {yexp}) to {self.graph.cell}: "
            f"+{result.sites_created} sites, +{result.local_transitions_created} local, "
            f"+{result.interior_links_created} interior, +{result.seam_pairs_created} seam pairs, "
            f"-{result.seam_transitions_removed} old seams"
        )
        return result

    # ------------------------------------------------------------------
    # Resize
    # ------------------------------------------------------------------

    def _resize(self, x: float, y: float) -> None:
        graph = self.graph
        old_x, old_y = graph.cell
        if x <= 0 or y <= 0:
            raise ValueError(f"Cell dimensions must be positive, got ({x}, {y})")

        for site in graph.sites.values():
            px, py = site.position
            if not (0.0 <= px < x and 0.0 <= py < y):
                raise ValueError(
                    f"Site {site.handle} at {site.position} would lie outside the resized cell ({x}, {y})"
                )

        dx, dy = x - old_x, y - old_y
        graph.set_cell_dimensions(x, y)

        for site in graph.sites.values():
            for image in site.images:
                column, row = _exterior_region(image.position, old_x, old_y)
                image.position = (image.position[0] + column * dx, image.position[1] + row * dy)
            self._check_images(site)

    def _check_images(self, site: Site) -> None:
        """Verify every image sits at the canonical position plus its offset."""
        expected = np.asarray(site.position) + self.graph.offsets[1:]
        actual = np.array([image.position for image in site.images])
        if not np.allclose(actual, expected):
            raise StructuralInconsistencyError(
                f"Images of site {site.handle} are not at their periodic offsets after resize"
            )

    # ------------------------------------------------------------------
    # Expand
    # ------------------------------------------------------------------

    def _expand(self, xexp: int, yexp: int) -> ExpansionResult:
        graph = self.graph
        result = ExpansionResult()
        old_x, old_y = graph.cell

        local, seams, seam_handles = self._classify_transitions()

        # 1. Resize the base cell
        self._resize(old_x * xexp, old_y * yexp)

        # 2. Replicate sites
        graph.renumber_canonical_ids()
        replicas = [(i, j) for i in range(xexp) for j in range(yexp) if i + j > 0]
        for site in list(graph.sites.values()):
            for i, j in replicas:
                graph.add_canonical_site(
                    occupied=site.occupied,
                    energy=site.energy,
                    position=(site.position[0] + i * old_x, site.position[1] + j * old_y),
                    canonical_id=site.canonical_id,
                    replica=(i, j),
                    modifiers=site.modifiers,
                )
                result.sites_created += 1

        # 3. Replicate local transitions
        for transition in local:
            start = graph.resolve(transition.start)
            end = graph.resolve(transition.end)
            for replica in replicas:
                graph.add_transition(
                    self._replica_of(start, replica).ref,
                    self._replica_of(end, replica).ref,
                    barrier=transition.barrier,
                    forward_prefactor=transition.forward_prefactor,
                    backward_prefactor=transition.backward_prefactor,
                )
                result.local_transitions_created += 1

        # 4. Rewire seams
        for pathway in seams:
            self._rewire_seam(pathway, xexp, yexp, result)

        for handle in seam_handles:
            graph.remove_transition(handle, include_pair=False)
            result.seam_transitions_removed += 1

        return result

    def _classify_transitions(self) -> tuple[list[Transition], list[SeamPathway], list[int]]:
        """
        Split transitions into local ones and periodic pathways.

        Returns:
            Local transitions, one pathway per pairing id, and the handles of
            every periodic transition.
        """
        local: list[Transition] = []
        groups: dict[int, list[Transition]] = {}

        for transition in self.graph.transitions.values():
            shift = transition_shift(transition)
            if max(abs(shift[0]), abs(shift[1])) > 1:
                raise StructuralInconsistencyError(
                    f"{transition} spans more than one cell and cannot be replicated"
                )
            if shift == (0, 0):
                if transition.pair_id > 0:
                    raise StructuralInconsistencyError(
                        f"{transition} is paired but does not cross the cell boundary"
                    )
                local.append(transition)
            elif transition.pair_id == 0:
                raise StructuralInconsistencyError(f"{transition} crosses the cell boundary without a pairing id")
            else:
                groups.setdefault(transition.pair_id, []).append(transition)

        seams: list[SeamPathway] = []
        handles: list[int] = []
        for pair_id, members in groups.items():
            if len(members) != 2:
                raise StructuralInconsistencyError(
                    f"Pairing id {pair_id} has {len(members)} transitions, expected 2"
                )
            first, second = members
            key = (first.start.site, first.end.site, transition_shift(first))
            if key != (second.start.site, second.end.site, transition_shift(second)):
                raise StructuralInconsistencyError(
                    f"Transitions {first.handle} and {second.handle} share pairing id {pair_id} "
                    f"but describe different pathways"
                )
            seams.append(SeamPathway(first.start.site, first.end.site, key[2], first))
            handles.extend(t.handle for t in members)

        return local, seams, handles

    def _rewire_seam(self, pathway: SeamPathway, xexp: int, yexp: int, result: ExpansionResult) -> None:
        graph = self.graph
        start = graph.get_site(pathway.start)
        end = graph.get_site(pathway.end)
        sx, sy = pathway.shift
        template = pathway.template

        for i in range(xexp):
            for j in range(yexp):
                wrap_x, target_i = divmod(i + sx, xexp)
                wrap_y, target_j = divmod(j + sy, yexp)
                source = self._replica_of(start, (i, j))
                target = self._replica_of(end, (target_i, target_j))

                if (wrap_x, wrap_y) == (0, 0):
                    graph.add_transition(
                        source.ref,
                        target.ref,
                        barrier=template.barrier,
                        forward_prefactor=template.forward_prefactor,
                        backward_prefactor=template.backward_prefactor,
                    )
                    result.interior_links_created += 1
                    continue

                image = image_for_vector((wrap_x, wrap_y))
                graph.add_transition_pair(
                    source.ref,
                    SiteRef(target.handle, image),
                    SiteRef(source.handle, OPPOSITE_IMAGE[image]),
                    target.ref,
                    barrier=template.barrier,
                    forward_prefactor=template.forward_prefactor,
                    backward_prefactor=template.backward_prefactor,
                )
                result.seam_pairs_created += 1

    def _replica_of(self, site: Site, replica: tuple[int, int]) -> Site:
        """Copy of ``site`` in the given replica, matched by canonical id."""
        match = self.graph.find_site(site.canonical_id, replica)
        if match is None:
            raise StructuralInconsistencyError(
                f"No replica {replica} of canonical site {site.canonical_id}"
            )
        return match
