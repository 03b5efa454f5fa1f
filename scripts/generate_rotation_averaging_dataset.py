"""
Generate Rotation Averaging Datasets.

This script generates synthetic relative-rotation measurement graphs with
known ground truth, written as G2O files that ShonanAveraging.from_g2o and
examples/example_shonan_averaging.py can load.

Output directory layout:
    graph.g2o                    vertices (ground truth) and edges
    ground_truth_rotations.npz   key -> rotation matrix
    config.json                  generation parameters

Presets:
    cycle_3d      3D single loop, low noise
    graph_3d      3D random graph with loop closures
    graph_2d      2D random graph with loop closures
    noisy_3d      3D random graph, high noise (needs higher levels)
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from shonan.averaging.types import Measurement
from shonan.datasets import (
    make_cycle_measurements,
    make_random_graph,
    rotations_to_poses,
    write_g2o,
)


PRESETS: Dict[str, Dict] = {
    "cycle_3d": {"topology": "cycle", "d": 3, "n_poses": 20, "extra_edges": 0, "noise": 0.01},
    "graph_3d": {"topology": "graph", "d": 3, "n_poses": 30, "extra_edges": 30, "noise": 0.05},
    "graph_2d": {"topology": "graph", "d": 2, "n_poses": 30, "extra_edges": 30, "noise": 0.05},
    "noisy_3d": {"topology": "graph", "d": 3, "n_poses": 30, "extra_edges": 40, "noise": 0.3},
}


def save_dataset(
    output_dir: Path,
    measurements: List[Measurement],
    rotations: Dict[int, np.ndarray],
    config: Dict,
) -> None:
    """Save G2O graph, ground truth and configuration."""
    output_dir.mkdir(parents=True, exist_ok=True)

    write_g2o(output_dir / "graph.g2o", measurements, rotations_to_poses(rotations))

    np.savez_compressed(
        output_dir / "ground_truth_rotations.npz",
        **{str(key): R for key, R in rotations.items()},
    )

    with open(output_dir / "config.json", "w") as f:
        json.dump(config, f, indent=2)

    print(f"\n  Saved dataset to: {output_dir}")
    print(f"    Files: graph.g2o, ground_truth_rotations.npz, config.json")
    print(f"    Rotations: {len(rotations)}")
    print(f"    Measurements: {len(measurements)}")


def generate_dataset(
    output_dir: str,
    preset: Optional[str] = None,
    topology: str = "graph",
    d: int = 3,
    n_poses: int = 30,
    extra_edges: int = 30,
    noise: float = 0.05,
    seed: int = 42,
) -> None:
    """Generate a dataset from a preset or explicit parameters."""
    if preset is not None:
        params = PRESETS[preset]
        topology = params["topology"]
        d = params["d"]
        n_poses = params["n_poses"]
        extra_edges = params["extra_edges"]
        noise = params["noise"]

    print("=" * 70)
    print("ROTATION AVERAGING DATASET GENERATION")
    print("=" * 70)
    print(f"  Preset: {preset or 'custom'}")
    print(f"  Topology: {topology}, d={d}, poses={n_poses}, noise={noise} rad")

    rng = np.random.default_rng(seed)
    if topology == "cycle":
        measurements, rotations = make_cycle_measurements(n_poses, d, noise=noise, rng=rng)
    elif topology == "graph":
        measurements, rotations = make_random_graph(n_poses, d, extra_edges, noise, rng)
    else:
        raise ValueError(f"Unknown topology: {topology}")

    config = {
        "dataset": "rotation_averaging",
        "preset": preset,
        "topology": topology,
        "d": d,
        "n_poses": n_poses,
        "extra_edges": extra_edges if topology == "graph" else 0,
        "n_measurements": len(measurements),
        "noise_rad": noise,
        "seed": seed,
    }
    save_dataset(Path(output_dir), measurements, rotations, config)


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Generate rotation averaging datasets (G2O)",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Presets:
  cycle_3d      3D single loop of 20 rotations, 0.01 rad noise
  graph_3d      3D random graph, 30 rotations, 30 loop closures, 0.05 rad
  graph_2d      2D random graph, 30 rotations, 30 loop closures, 0.05 rad
  noisy_3d      3D random graph, 0.3 rad noise

Examples:
  python scripts/generate_rotation_averaging_dataset.py --preset graph_3d \\
      --output data/sim/shonan_graph_3d

  python scripts/generate_rotation_averaging_dataset.py \\
      --output data/sim/my_graph --d 2 --n-poses 50 --noise 0.1
        """,
    )
    parser.add_argument(
        "--preset",
        type=str,
        choices=sorted(PRESETS),
        help="Use preset configuration (overrides other parameters)",
    )
    parser.add_argument(
        "--output",
        type=str,
        default="data/sim/shonan_graph_3d",
        help="Output directory (default: data/sim/shonan_graph_3d)",
    )

    graph_group = parser.add_argument_group("Graph Parameters")
    graph_group.add_argument(
        "--topology", type=str, choices=["cycle", "graph"], default="graph",
        help="Measurement graph topology (default: graph)",
    )
    graph_group.add_argument("--d", type=int, choices=[2, 3], default=3, help="Rotation dimension")
    graph_group.add_argument("--n-poses", type=int, default=30, help="Number of rotations")
    graph_group.add_argument("--extra-edges", type=int, default=30, help="Loop closures")

    noise_group = parser.add_argument_group("Noise Parameters")
    noise_group.add_argument(
        "--noise", type=float, default=0.05, help="Rotation noise std (rad) (default: 0.05)"
    )

    parser.add_argument("--seed", type=int, default=42, help="Random seed (default: 42)")

    args = parser.parse_args()

    generate_dataset(
        output_dir=args.output,
        preset=args.preset,
        topology=args.topology,
        d=args.d,
        n_poses=args.n_poses,
        extra_edges=args.extra_edges,
        noise=args.noise,
        seed=args.seed,
    )


if __name__ == "__main__":
    main()
