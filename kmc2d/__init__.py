"""
KMC2D: construction and kinetic Monte Carlo simulation of 2D periodic lattice models.

This package provides a periodic lattice graph of bistable sites joined by hop
pathways, tools for resizing and replicating the simulation cell while keeping
the periodic wiring intact, and a rejection-free KMC engine to evolve the
occupation pattern in time.
"""

__version__ = "0.1.0"
