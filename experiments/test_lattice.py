"""
Tests for the periodic lattice graph.

Key validations:
- Images sit at the canonical position plus the cell offsets
- Images mirror the canonical occupation whichever view is flipped
- Periodic pairs stay symmetric under edits and are removed together
- Site removal cascades to images, incident transitions and mirrors
- Failed transactions leave the graph untouched
"""

from __future__ import annotations

import numpy as np
import pytest

from kmc2d.kmc import (
    OPPOSITE_IMAGE,
    CoordinationOverflowError,
    LatticeGraph,
    SiteRef,
    StructuralInconsistencyError,
)
from kmc2d.kmc.lattice import IMAGE_CELL_VECTORS, image_for_vector, image_offsets


def make_pair_lattice() -> tuple[LatticeGraph, int, int]:
    """Two sites in a 10 x 10 cell: A near the west edge, B near the east edge."""
    graph = LatticeGraph(cell=(10.0, 10.0))
    a = graph.add_canonical_site(occupied=True, position=(1.0, 5.0))
    b = graph.add_canonical_site(occupied=False, position=(9.0, 5.0))
    return graph, a.handle, b.handle


def test_image_offsets_table():
    """Offsets follow the N, NE, E, SE, S, SW, W, NW order with y growing south."""
    offsets = image_offsets(4.0, 3.0)
    assert offsets.shape == (9, 2)
    assert tuple(offsets[0]) == (0.0, 0.0)
    assert tuple(offsets[1]) == (0.0, -3.0)  # N
    assert tuple(offsets[3]) == (4.0, 0.0)  # E
    assert tuple(offsets[5]) == (0.0, 3.0)  # S
    assert tuple(offsets[8]) == (-4.0, -3.0)  # NW


def test_opposite_images():
    """Every image's opposite has the negated cell vector."""
    for index, (dx, dy) in enumerate(IMAGE_CELL_VECTORS):
        assert IMAGE_CELL_VECTORS[OPPOSITE_IMAGE[index]] == (-dx, -dy)
    assert image_for_vector((1, 0)) == 3
    with pytest.raises(ValueError):
        image_for_vector((2, 0))


def test_add_site_places_images():
    """A new site owns eight images at the current offsets."""
    graph = LatticeGraph(cell=(10.0, 20.0))
    site = graph.add_canonical_site(position=(2.0, 3.0), energy=-0.2)

    assert len(site.images) == 8
    positions = np.array([image.position for image in site.images])
    expected = np.array([2.0, 3.0]) + graph.offsets[1:]
    np.testing.assert_allclose(positions, expected)
    assert site.image(7).position == (-8.0, 3.0)
    assert site.canonical_id == 1
    assert site.replica == (0, 0)


def test_add_site_validation():
    """Positions outside the cell, bad modifier counts and duplicate ids are rejected."""
    graph = LatticeGraph(cell=(10.0, 10.0))
    with pytest.raises(ValueError):
        graph.add_canonical_site(position=(10.0, 5.0))
    with pytest.raises(ValueError):
        graph.add_canonical_site(position=(-0.1, 5.0))
    with pytest.raises(ValueError):
        graph.add_canonical_site(position=(1.0, 1.0), modifiers=[0.1, 0.2])

    graph.add_canonical_site(position=(1.0, 1.0), canonical_id=7)
    with pytest.raises(ValueError):
        graph.add_canonical_site(position=(2.0, 2.0), canonical_id=7)
    # Same canonical id in another replica is fine
    graph.add_canonical_site(position=(3.0, 3.0), canonical_id=7, replica=(1, 0))
    # Later allocations skip the observed id
    assert graph.add_canonical_site(position=(4.0, 4.0)).canonical_id == 8


def test_images_mirror_occupation():
    """Flipping through the canonical site or any image changes every view."""
    graph, a, _b = make_pair_lattice()
    site = graph.get_site(a)

    graph.set_occupied(SiteRef(a, 4), False)
    assert not site.occupied
    assert all(not image.occupied for image in site.images)

    graph.set_occupied(SiteRef(a), True)
    assert all(image.occupied for image in site.images)
    assert all(graph.is_occupied(SiteRef(a, k)) for k in range(9))


def test_images_mirror_energy_and_modifiers():
    graph, a, _b = make_pair_lattice()
    graph.set_site_properties(a, energy=0.4, modifiers=[-0.1] * 6)
    site = graph.get_site(a)
    for image in site.images:
        assert image.energy == 0.4
        assert image.modifiers == (-0.1,) * 6


def test_add_transition_links_endpoint_views():
    """A transition is attached to exactly the views it joins."""
    graph, a, b = make_pair_lattice()
    transition = graph.add_transition(SiteRef(a), SiteRef(b, 7), barrier=0.5)

    assert transition.handle in graph.get_site(a).transitions
    assert transition.handle in graph.get_site(b).image(7).transitions
    assert transition.handle not in graph.get_site(b).transitions
    assert graph.position_of(transition.end) == (-1.0, 5.0)


def test_add_transition_validation():
    graph, a, b = make_pair_lattice()
    with pytest.raises(ValueError):
        graph.add_transition(SiteRef(a), SiteRef(a))
    with pytest.raises(KeyError):
        graph.add_transition(SiteRef(a), SiteRef(99))
    with pytest.raises(ValueError):
        graph.add_transition(SiteRef(a), SiteRef(b, 9))
    with pytest.raises(ValueError):
        graph.add_transition(SiteRef(a), SiteRef(b), pair_id=-1)
    # A site may link to its own periodic image
    graph.add_transition(SiteRef(a), SiteRef(a, 3), pair_id=4)


def test_periodic_pair_symmetry():
    """A periodic pair shares energy and prefactors, and edits reach both members."""
    graph, a, b = make_pair_lattice()
    first, second = graph.add_periodic_transition(b, a, 3, barrier=0.5, forward_prefactor=8.0)

    assert first.pair_id == second.pair_id > 0
    assert first.start == SiteRef(b) and first.end == SiteRef(a, 3)
    assert second.start == SiteRef(b, OPPOSITE_IMAGE[3]) and second.end == SiteRef(a)
    assert graph.paired_transition(first) is second

    updated = graph.set_transition_properties(first.handle, barrier=0.7, backward_prefactor=3.0)
    assert len(updated) == 2
    for t in (first, second):
        assert t.barrier == 0.7
        assert t.forward_prefactor == 8.0
        assert t.backward_prefactor == 3.0


def test_pair_ids_are_not_reused():
    """Explicit pairing ids are observed so allocated ones never collide."""
    graph, a, b = make_pair_lattice()
    graph.add_transition(SiteRef(b), SiteRef(a, 3), pair_id=5)
    graph.add_transition(SiteRef(b, 7), SiteRef(a), pair_id=5)
    first, _second = graph.add_periodic_transition(a, b, 5)
    assert first.pair_id == 6


def test_remove_transition_removes_mirror():
    graph, a, b = make_pair_lattice()
    local = graph.add_transition(SiteRef(a), SiteRef(b))
    first, second = graph.add_periodic_transition(b, a, 3)

    removed = graph.remove_transition(second.handle)
    assert {t.handle for t in removed} == {first.handle, second.handle}
    assert list(graph.transitions) == [local.handle]
    assert graph.get_site(a).all_transitions() == {local.handle}
    assert graph.get_site(b).all_transitions() == {local.handle}


def test_remove_site_cascades():
    """Removing a site removes its images' transitions and their periodic mirrors."""
    graph, a, b = make_pair_lattice()
    c = graph.add_canonical_site(position=(5.0, 5.0)).handle
    graph.add_transition(SiteRef(a), SiteRef(c))
    graph.add_transition(SiteRef(c), SiteRef(b))
    graph.add_periodic_transition(b, a, 3)

    removed = graph.remove_site(a)

    assert len(removed) == 3
    assert a not in graph.sites
    assert graph.find_site(1) is None
    assert len(graph.transitions) == 1
    remaining = next(iter(graph.transitions.values()))
    assert remaining.start == SiteRef(c) and remaining.end == SiteRef(b)
    assert graph.get_site(b).all_transitions() == {remaining.handle}


def test_coordination_and_modifier():
    """Coordination counts occupied links on the canonical view only."""
    graph = LatticeGraph(cell=(10.0, 10.0))
    center = graph.add_canonical_site(occupied=True, position=(5.0, 5.0), modifiers=[-0.1, -0.2, -0.3, -0.4, -0.5, -0.6])
    neighbours = [
        graph.add_canonical_site(occupied=occ, position=(x, 5.0))
        for occ, x in ((True, 2.0), (True, 8.0), (False, 6.0))
    ]
    for site in neighbours:
        graph.add_transition(center.ref, site.ref)

    assert graph.coordination(center) == 2
    assert center.modifier(graph.coordination(center)) == -0.2
    assert center.modifier(0) == 0.0
    with pytest.raises(CoordinationOverflowError):
        center.modifier(7)


def test_effective_barriers():
    graph, a, b = make_pair_lattice()
    graph.set_site_properties(a, energy=0.2)
    graph.set_site_properties(b, energy=0.9)
    transition = graph.add_transition(SiteRef(a), SiteRef(b), barrier=0.5)
    assert graph.effective_barriers(transition) == pytest.approx((0.3, 0.0))


def test_find_views_at():
    graph, a, b = make_pair_lattice()
    assert graph.find_views_at((1.0, 5.0)) == [SiteRef(a)]
    assert graph.find_views_at((19.0, 5.0)) == [SiteRef(b, 3)]
    assert graph.find_views_at((3.0, 3.0)) == []


def test_transaction_rolls_back():
    """A failing transaction restores sites, transitions and counters."""
    graph, a, b = make_pair_lattice()
    graph.add_transition(SiteRef(a), SiteRef(b))

    with pytest.raises(StructuralInconsistencyError):
        with graph.transaction():
            graph.add_canonical_site(position=(5.0, 5.0))
            graph.remove_site(a)
            raise StructuralInconsistencyError("abort")

    assert len(graph) == 2
    assert len(graph.transitions) == 1
    assert graph.ids.last("site") == 2
    # Rolled-back sites are fresh objects but keep their state
    assert graph.get_site(a).occupied
    assert graph.get_site(a).images[0].parent is graph.get_site(a)


def test_occupancy_and_coverage():
    graph, _a, _b = make_pair_lattice()
    np.testing.assert_array_equal(graph.occupancy(), [True, False])
    assert graph.coverage() == 0.5
    assert LatticeGraph(cell=(1.0, 1.0)).coverage() == 0.0


def test_negative_prefactor_rejected():
    """Attempt frequencies below zero are refused, and edits leave the pair untouched."""
    graph, a, b = make_pair_lattice()
    with pytest.raises(ValueError):
        graph.add_transition(SiteRef(a), SiteRef(b), forward_prefactor=-5.0)
    with pytest.raises(ValueError):
        graph.add_periodic_transition(b, a, 3, backward_prefactor=-1.0)
    assert not graph.transitions

    first, second = graph.add_periodic_transition(b, a, 3, forward_prefactor=8.0)
    with pytest.raises(ValueError):
        graph.set_transition_properties(first.handle, barrier=0.9, forward_prefactor=-2.0)
    for t in (first, second):
        assert t.forward_prefactor == 8.0
        assert t.barrier == 1.0


def test_cell_dimensions_must_be_finite():
    graph = LatticeGraph(cell=(10.0, 10.0))
    for x, y in ((float("nan"), 1.0), (1.0, float("inf")), (0.0, 1.0)):
        with pytest.raises(ValueError):
            graph.set_cell_dimensions(x, y)
    assert graph.cell == (10.0, 10.0)


def test_link_between_same_images_moves_to_canonical_sites():
    """A.E -> B.E is the same pathway as A -> B and is stored that way."""
    graph, a, b = make_pair_lattice()
    transition = graph.add_transition(SiteRef(a, 3), SiteRef(b, 3), barrier=0.4)

    assert transition.start == SiteRef(a) and transition.end == SiteRef(b)
    assert transition.handle in graph.get_site(a).transitions
    assert transition.handle in graph.get_site(b).transitions
    assert not graph.get_site(a).image(3).transitions
    assert graph.coordination(a) == 0
