"""
Rotation averaging datasets: G2O I/O and synthetic problems.
"""

from shonan.datasets.g2o import read_g2o, write_g2o
from shonan.datasets.synthetic import (
    aligned_rotation_errors,
    make_cycle_measurements,
    make_random_graph,
    rotations_to_poses,
)

__all__ = [
    "read_g2o",
    "write_g2o",
    "make_cycle_measurements",
    "make_random_graph",
    "rotations_to_poses",
    "aligned_rotation_errors",
]
