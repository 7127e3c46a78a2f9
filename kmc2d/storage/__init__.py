"""Persistence of lattice models."""

from .xml_state import lattice_from_xml, lattice_to_xml, load_lattice, save_lattice

__all__ = ["save_lattice", "load_lattice", "lattice_to_xml", "lattice_from_xml"]
