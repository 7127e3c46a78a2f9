"""
Tests for XML persistence of lattice models.
"""

from __future__ import annotations

import xml.etree.ElementTree as ET

import pytest

from kmc2d.kmc import LatticeGraph, MalformedStateError, SiteRef
from kmc2d.storage import lattice_from_xml, lattice_to_xml, load_lattice, save_lattice


def make_lattice() -> LatticeGraph:
    graph = LatticeGraph(cell=(4.0, 2.0))
    a = graph.add_canonical_site(occupied=True, energy=0.25, position=(0.5, 1.0), modifiers=[-0.05] * 6)
    b = graph.add_canonical_site(occupied=False, energy=-0.1, position=(3.5, 1.0))
    graph.add_transition(a.ref, SiteRef(b.handle), barrier=0.6, forward_prefactor=7.0, backward_prefactor=2.0)
    graph.add_periodic_transition(b.handle, a.handle, 3, barrier=0.8)
    return graph


def test_save_and_load(tmp_path):
    graph = make_lattice()
    path = save_lattice(graph, tmp_path / "model.xml")
    assert path.exists()

    loaded = load_lattice(path)

    assert loaded.cell == (4.0, 2.0)
    assert len(loaded) == 2
    a, b = loaded.sites.values()
    assert a.occupied and not b.occupied
    assert a.energy == 0.25 and b.energy == -0.1
    assert a.modifiers == (-0.05,) * 6

    assert len(loaded.transitions) == 3
    local = loaded.transitions_with_pair_id(0)[0]
    assert local.start == a.ref and local.end == b.ref
    assert (local.barrier, local.forward_prefactor, local.backward_prefactor) == (0.6, 7.0, 2.0)

    periodic = [t for t in loaded.transitions.values() if t.pair_id > 0]
    assert len(periodic) == 2
    assert {(t.start, t.end) for t in periodic} == {
        (b.ref, SiteRef(a.handle, 3)),
        (SiteRef(b.handle, 7), a.ref),
    }
    assert loaded.paired_transition(periodic[0]) is periodic[1]


def test_load_into_existing_graph(tmp_path):
    path = save_lattice(make_lattice(), tmp_path / "model.xml")
    graph = LatticeGraph(cell=(1.0, 1.0))
    graph.add_canonical_site(position=(0.5, 0.5))

    assert load_lattice(path, graph) is graph
    assert len(graph) == 2
    # Ids restart with the loaded content
    assert graph.ids.last("site") == 2


def test_xml_records():
    root = lattice_to_xml(make_lattice())
    assert root.tag == "KMC2D"
    assert root.find("Cell").get("xDim") == "4.0"
    site = root.find("Site")
    assert site.get("Occ") == "1"
    assert site.get("Mod6") == "-0.05"
    transition = root.find("Transition")
    assert transition.get("ID") == "0"
    assert transition.get("xEnd") == "3.5"


def test_missing_field_rejected():
    root = lattice_to_xml(make_lattice())
    del root.find("Site").attrib["En"]
    graph = LatticeGraph(cell=(1.0, 1.0))
    with pytest.raises(MalformedStateError, match="En"):
        lattice_from_xml(root, graph)
    assert len(graph) == 0
    assert not graph.transitions


def test_missing_cell_rejected():
    root = lattice_to_xml(make_lattice())
    root.remove(root.find("Cell"))
    with pytest.raises(MalformedStateError):
        lattice_from_xml(root)


def test_bad_values_rejected():
    root = lattice_to_xml(make_lattice())
    root.find("Site").set("Occ", "2")
    with pytest.raises(MalformedStateError):
        lattice_from_xml(root)

    root = lattice_to_xml(make_lattice())
    root.find("Transition").set("En", "high")
    with pytest.raises(MalformedStateError):
        lattice_from_xml(root)

    root = lattice_to_xml(make_lattice())
    root.find("Site").set("xCoord", "9.0")
    with pytest.raises(MalformedStateError):
        lattice_from_xml(root)


def test_unmatched_endpoint_rejected():
    """A transition endpoint that is not at any site view leaves the graph empty."""
    root = lattice_to_xml(make_lattice())
    root.find("Transition").set("xStart", "1.75")
    graph = LatticeGraph(cell=(1.0, 1.0))
    with pytest.raises(MalformedStateError, match="does not match"):
        lattice_from_xml(root, graph)
    assert len(graph) == 0


def test_unparsable_file(tmp_path):
    path = tmp_path / "broken.xml"
    path.write_text("<KMC2D><Cell xDim='1.0'")
    with pytest.raises(MalformedStateError):
        load_lattice(path)


def test_wrong_root_tag():
    with pytest.raises(MalformedStateError):
        lattice_from_xml(ET.Element("Lattice"))


def test_negative_prefactor_rejected():
    root = lattice_to_xml(make_lattice())
    root.find("Transition").set("startPF", "-5.0")
    graph = LatticeGraph(cell=(1.0, 1.0))
    with pytest.raises(MalformedStateError):
        lattice_from_xml(root, graph)
    assert len(graph) == 0


def test_non_finite_cell_rejected():
    root = lattice_to_xml(make_lattice())
    root.find("Cell").set("xDim", "nan")
    with pytest.raises(MalformedStateError):
        lattice_from_xml(root)


def test_mismatched_pair_rejected():
    """Both members of a periodic pair must agree on energy and prefactors."""
    root = lattice_to_xml(make_lattice())
    paired = [element for element in root.iter("Transition") if element.get("ID") != "0"]
    assert len(paired) == 2
    paired[1].set("En", "0.9")
    graph = LatticeGraph(cell=(1.0, 1.0))
    with pytest.raises(MalformedStateError, match="disagree"):
        lattice_from_xml(root, graph)
    assert not graph.transitions
