"""
Run a KMC simulation on a lattice model without the editor.

Loads a lattice from XML (or builds a small square demo lattice), optionally
expands the cell, runs the simulation and writes the final lattice and the
energy/occupation trace to the results directory.
"""

import argparse
from pathlib import Path

import numpy as np

from kmc2d.analysis import Trajectory
from kmc2d.kmc import KMCSimulator, LatticeGraph, PeriodicReplicator, StepStatus
from kmc2d.kmc.lattice import image_for_vector
from kmc2d.settings import settings
from kmc2d.storage import load_lattice, save_lattice

# Setup logging from settings (.env file)
logger = settings.setup_logging()


def build_square_lattice(n: int, occupied: int, seed: int | None = None) -> LatticeGraph:
    """
    Build an n x n square lattice with nearest-neighbour transitions.

    Transitions leaving the cell in +x and +y are created as periodic pairs.

    Args:
        n: Sites per side.
        occupied: Number of randomly chosen occupied sites.
        seed: Seed for choosing the occupied sites.
    """
    cfg = settings.lattice
    graph = LatticeGraph(cell=(cfg.cell_x, cfg.cell_y))
    spacing_x, spacing_y = cfg.cell_x / n, cfg.cell_y / n

    rng = np.random.default_rng(seed)
    filled = set(rng.choice(n * n, size=min(occupied, n * n), replace=False).tolist())

    handles = {}
    for i in range(n):
        for j in range(n):
            site = graph.add_canonical_site(
                occupied=(i * n + j) in filled,
                position=((i + 0.5) * spacing_x, (j + 0.5) * spacing_y),
            )
            handles[(i, j)] = site.handle

    for (i, j), handle in handles.items():
        for di, dj in ((1, 0), (0, 1)):
            ni, nj = i + di, j + dj
            wrap = (ni // n, nj // n)
            target = handles[(ni % n, nj % n)]
            if wrap == (0, 0):
                graph.add_transition(
                    graph.get_site(handle).ref,
                    graph.get_site(target).ref,
                    barrier=cfg.barrier,
                    forward_prefactor=cfg.forward_prefactor,
                    backward_prefactor=cfg.backward_prefactor,
                )
            else:
                graph.add_periodic_transition(
                    handle,
                    target,
                    image_for_vector(wrap),
                    barrier=cfg.barrier,
                    forward_prefactor=cfg.forward_prefactor,
                    backward_prefactor=cfg.backward_prefactor,
                )
    return graph


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run a KMC2D simulation")
    parser.add_argument("--input", type=Path, default=None, help="Lattice XML file")
    parser.add_argument("--demo-size", type=int, default=4, help="Sites per side of the demo lattice")
    parser.add_argument("--demo-occupied", type=int, default=4, help="Occupied sites in the demo lattice")
    parser.add_argument("--expand", type=int, nargs=2, default=None, metavar=("XEXP", "YEXP"))
    parser.add_argument("--temperature", type=float, default=settings.kmc.temperature)
    parser.add_argument("--steps", type=int, default=settings.kmc.max_steps)
    parser.add_argument("--max-time", type=float, default=settings.kmc.simulation_time)
    parser.add_argument("--seed", type=int, default=settings.kmc.seed)
    parser.add_argument("--snapshot-interval", type=int, default=settings.kmc.snapshot_interval)
    parser.add_argument("--name", type=str, default="kmc2d_run", help="Output file stem")
    return parser.parse_args()


def main() -> None:
    """Main execution."""
    args = parse_args()

    if args.input is not None:
        graph = load_lattice(args.input)
    else:
        graph = build_square_lattice(args.demo_size, args.demo_occupied, seed=args.seed)
    logger.info(f"Lattice ready: {graph}")

    if args.expand is not None:
        PeriodicReplicator(graph).expand(*args.expand)

    simulator = KMCSimulator(graph, temperature=args.temperature, seed=args.seed)
    trajectory = Trajectory()
    trajectory.record(simulator)

    def snapshot_callback(sim: KMCSimulator) -> None:
        """Callback to record data."""
        trajectory.record(sim)
        logger.info(
            f"Step {sim.step}, Time {sim.time:.3e}s, "
            f"Energy {trajectory.energies[-1]:.3f} eV, Coverage {trajectory.coverages[-1]:.3f}"
        )

    report = simulator.run(
        max_steps=args.steps,
        max_time=args.max_time,
        callback=snapshot_callback,
        snapshot_interval=args.snapshot_interval,
    )
    if report is not None and report.status is StepStatus.NO_EVENTS:
        logger.info("Stopped: no available transitions")
    trajectory.record(simulator)

    save_lattice(graph, settings.paths.output_file(f"{args.name}.xml"))
    trace_path = trajectory.save(settings.paths.output_file(f"{args.name}_trace.npz"))
    logger.info(f"Trace saved to {trace_path}")
    logger.info(f"Statistics: {simulator.get_statistics()}")


if __name__ == "__main__":
    main()
