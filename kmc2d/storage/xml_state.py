"""
XML persistence of lattice models.

The file holds one ``Cell`` record, the canonical ``Site`` records and the
``Transition`` records. Transition endpoints are stored as scene positions and
matched back to site views on load.
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from pathlib import Path

from ..kmc.errors import MalformedStateError
from ..kmc.lattice import N_MODIFIERS, LatticeGraph, SiteRef

logger = logging.getLogger(__name__)

ROOT_TAG = "KMC2D"
CELL_FIELDS = ("xDim", "yDim")
SITE_FIELDS = ("xCoord", "yCoord", "Occ", "En") + tuple(f"Mod{n}" for n in range(1, N_MODIFIERS + 1))
TRANSITION_FIELDS = ("xStart", "yStart", "xEnd", "yEnd", "En", "startPF", "endPF", "ID")

# Absolute tolerance when matching stored endpoint positions to site views
POSITION_TOLERANCE = 1e-6


def _fmt(value: float) -> str:
    return repr(float(value))


def lattice_to_xml(graph: LatticeGraph) -> ET.Element:
    """
    Serialize a lattice to an XML element tree.

    Args:
        graph: Lattice to serialize.

    Returns:
        Root element.
    """
    root = ET.Element(ROOT_TAG)
    x, y = graph.cell
    ET.SubElement(root, "Cell", xDim=_fmt(x), yDim=_fmt(y))

    for site in graph.sites.values():
        attrs = {
            "xCoord": _fmt(site.position[0]),
            "yCoord": _fmt(site.position[1]),
            "Occ": "1" if site.occupied else "0",
            "En": _fmt(site.energy),
        }
        for n, modifier in enumerate(site.modifiers, start=1):
            attrs[f"Mod{n}"] = _fmt(modifier)
        ET.SubElement(root, "Site", attrs)

    for transition in graph.transitions.values():
        xs, ys = graph.position_of(transition.start)
        xe, ye = graph.position_of(transition.end)
        ET.SubElement(
            root,
            "Transition",
            xStart=_fmt(xs),
            yStart=_fmt(ys),
            xEnd=_fmt(xe),
            yEnd=_fmt(ye),
            En=_fmt(transition.barrier),
            startPF=_fmt(transition.forward_prefactor),
            endPF=_fmt(transition.backward_prefactor),
            ID=str(transition.pair_id),
        )

    return root


def save_lattice(graph: LatticeGraph, path: str | Path) -> Path:
    """
    Write a lattice to an XML file.

    Args:
        graph: Lattice to save.
        path: Destination file.

    Returns:
        Path written.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tree = ET.ElementTree(lattice_to_xml(graph))
    ET.indent(tree)
    tree.write(path, encoding="utf-8", xml_declaration=True)
    logger.info(
        f"Saved lattice to {path}: {len(graph.sites)} sites, {len(graph.transitions)} transitions"
    )
    return path


def _read_fields(element: ET.Element, fields: tuple[str, ...], label: str) -> dict[str, str]:
    missing = [name for name in fields if element.get(name) is None]
    if missing:
        raise MalformedStateError(f"{label} is missing required field(s): {', '.join(missing)}")
    return {name: element.get(name) for name in fields}


def _to_float(values: dict[str, str], name: str, label: str) -> float:
    try:
        return float(values[name])
    except ValueError as err:
        raise MalformedStateError(f"{label} field {name}={values[name]!r} is not a number") from err


def _to_int(values: dict[str, str], name: str, label: str) -> int:
    try:
        return int(values[name])
    except ValueError as err:
        raise MalformedStateError(f"{label} field {name}={values[name]!r} is not an integer") from err


def _match_view(graph: LatticeGraph, position: tuple[float, float], label: str) -> SiteRef:
    matches = graph.find_views_at(position, tol=POSITION_TOLERANCE)
    if not matches:
        raise MalformedStateError(f"{label} endpoint at {position} does not match any site")
    if len(matches) > 1:
        raise MalformedStateError(f"{label} endpoint at {position} matches {len(matches)} sites")
    return matches[0]


def _populate(graph: LatticeGraph, root: ET.Element) -> None:
    if root.tag != ROOT_TAG:
        raise MalformedStateError(f"Expected root element <{ROOT_TAG}>, got <{root.tag}>")

    cell = root.find("Cell")
    if cell is None:
        raise MalformedStateError("Missing Cell record")
    values = _read_fields(cell, CELL_FIELDS, "Cell")
    try:
        graph.set_cell_dimensions(_to_float(values, "xDim", "Cell"), _to_float(values, "yDim", "Cell"))
    except ValueError as err:
        raise MalformedStateError(f"Invalid Cell record: {err}") from err

    for number, element in enumerate(root.iter("Site"), start=1):
        label = f"Site record {number}"
        values = _read_fields(element, SITE_FIELDS, label)
        occ = _to_int(values, "Occ", label)
        if occ not in (0, 1):
            raise MalformedStateError(f"{label} field Occ must be 0 or 1, got {occ}")
        try:
            graph.add_canonical_site(
                occupied=bool(occ),
                energy=_to_float(values, "En", label),
                position=(_to_float(values, "xCoord", label), _to_float(values, "yCoord", label)),
                modifiers=[_to_float(values, f"Mod{n}", label) for n in range(1, N_MODIFIERS + 1)],
            )
        except ValueError as err:
            raise MalformedStateError(f"Invalid {label}: {err}") from err

    for number, element in enumerate(root.iter("Transition"), start=1):
        label = f"Transition record {number}"
        values = _read_fields(element, TRANSITION_FIELDS, label)
        start = _match_view(
            graph, (_to_float(values, "xStart", label), _to_float(values, "yStart", label)), label
        )
        end = _match_view(graph, (_to_float(values, "xEnd", label), _to_float(values, "yEnd", label)), label)
        try:
            graph.add_transition(
                start,
                end,
                barrier=_to_float(values, "En", label),
                pair_id=_to_int(values, "ID", label),
                forward_prefactor=_to_float(values, "startPF", label),
                backward_prefactor=_to_float(values, "endPF", label),
            )
        except ValueError as err:
            raise MalformedStateError(f"Invalid {label}: {err}") from err

    _check_pair_symmetry(graph)


def _check_pair_symmetry(graph: LatticeGraph) -> None:
    """Both members of a periodic pair must carry the same energy and prefactors."""
    seen: dict[int, tuple[float, float, float]] = {}
    for transition in graph.transitions.values():
        if transition.pair_id == 0:
            continue
        values = (transition.barrier, transition.forward_prefactor, transition.backward_prefactor)
        expected = seen.setdefault(transition.pair_id, values)
        if values != expected:
            raise MalformedStateError(
                f"Transitions with ID={transition.pair_id} disagree on energy or prefactors: "
                f"{expected} vs {values}"
            )


def lattice_from_xml(root: ET.Element, graph: LatticeGraph | None = None) -> LatticeGraph:
    """
    Build a lattice from an XML element tree.

    Args:
        root: Root element.
        graph: Graph to load into. It is cleared first, and left cleared if
            loading fails. A new graph is created if None.

    Returns:
        The loaded graph.
    """
    if graph is None:
        graph = LatticeGraph(cell=(1.0, 1.0))
    graph.clear()
    try:
        _populate(graph, root)
    except MalformedStateError:
        graph.clear()
        raise
    return graph


def load_lattice(path: str | Path, graph: LatticeGraph | None = None) -> LatticeGraph:
    """
    Load a lattice from an XML file.

    Args:
        path: File to read.
        graph: Graph to load into (see lattice_from_xml).

    Returns:
        The loaded graph.
    """
    path = Path(path)
    try:
        root = ET.parse(path).getroot()
    except ET.ParseError as err:
        if graph is not None:
            graph.clear()
        raise MalformedStateError(f"Cannot parse {path}: {err}") from err

    graph = lattice_from_xml(root, graph)
    logger.info(
        f"Loaded lattice from {path}: cell={graph.cell}, {len(graph.sites)} sites, "
        f"{len(graph.transitions)} transitions"
    )
    return graph
