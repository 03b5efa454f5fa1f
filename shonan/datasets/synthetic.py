"""Synthetic rotation averaging problems with known ground truth."""

from typing import Dict, List, Optional, Tuple

import numpy as np

from shonan.averaging.types import Measurement, Pose
from shonan.geometry import (
    axis_angle_to_rotation_matrix,
    closest_rotation,
    random_rotation,
    retract,
    rot2,
    so_dimension,
)


Rotations = Dict[int, np.ndarray]


def _ground_truth(
    n: int, d: int, angle_step: Optional[float], rng: np.random.Generator
) -> Rotations:
    if angle_step is None:
        return {i: random_rotation(d, rng) for i in range(n)}
    if d == 2:
        return {i: rot2(i * angle_step) for i in range(n)}
    axis = np.array([0.0, 0.0, 1.0])
    return {i: axis_angle_to_rotation_matrix(axis, i * angle_step) for i in range(n)}


def _relative(
    rotations: Rotations, i: int, j: int, noise: float, rng: np.random.Generator
) -> np.ndarray:
    d = rotations[i].shape[0]
    R_ij = rotations[i].T @ rotations[j]
    if noise > 0:
        R_ij = retract(R_ij, noise * rng.standard_normal(so_dimension(d)))
    return R_ij


def make_cycle_measurements(
    n: int,
    d: int = 3,
    angle_step: Optional[float] = None,
    noise: float = 0.0,
    rng: Optional[np.random.Generator] = None,
) -> Tuple[List[Measurement], Rotations]:
    """
    Measurements around a single loop 0 -> 1 -> ... -> n-1 -> 0.

    Args:
        n: Number of rotations (>= 3).
        d: Rotation dimension, 2 or 3.
        angle_step: Ground truth R_i is a rotation by i·angle_step about z
            (planar angle for d = 2). Haar-random rotations if None.
        noise: Std of the tangent-space noise on each measurement (rad).
        rng: Random source.

    Returns:
        Tuple of (measurements, ground truth rotations).
    """
    if n < 3:
        raise ValueError(f"A cycle needs n >= 3, got {n}")
    if d not in (2, 3):
        raise ValueError(f"d must be 2 or 3, got {d}")
    if rng is None:
        rng = np.random.default_rng()
    rotations = _ground_truth(n, d, angle_step, rng)
    measurements = [
        Measurement(i, (i + 1) % n, _relative(rotations, i, (i + 1) % n, noise, rng))
        for i in range(n)
    ]
    return measurements, rotations


def make_random_graph(
    n: int,
    d: int = 3,
    extra_edges: int = 0,
    noise: float = 0.0,
    rng: Optional[np.random.Generator] = None,
) -> Tuple[List[Measurement], Rotations]:
    """
    Connected random measurement graph: a chain plus random extra edges.

    Args:
        n: Number of rotations (>= 2).
        d: Rotation dimension, 2 or 3.
        extra_edges: Number of additional distinct edges (capped by the
            number of available pairs).
        noise: Std of the tangent-space noise on each measurement (rad).
        rng: Random source.

    Returns:
        Tuple of (measurements, ground truth rotations).
    """
    if n < 2:
        raise ValueError(f"n must be >= 2, got {n}")
    if d not in (2, 3):
        raise ValueError(f"d must be 2 or 3, got {d}")
    if rng is None:
        rng = np.random.default_rng()
    rotations = _ground_truth(n, d, None, rng)

    edges = [(i, i + 1) for i in range(n - 1)]
    used = set(edges)
    candidates = [(i, j) for i in range(n) for j in range(i + 2, n)]
    order = rng.permutation(len(candidates))
    for index in order[:extra_edges]:
        edge = candidates[index]
        if edge not in used:
            used.add(edge)
            edges.append(edge)

    measurements = [Measurement(i, j, _relative(rotations, i, j, noise, rng)) for i, j in edges]
    return measurements, rotations


def rotations_to_poses(rotations: Rotations) -> Dict[int, Pose]:
    """Poses with the given rotations and zero translation."""
    return {key: Pose(R) for key, R in rotations.items()}


def aligned_rotation_errors(estimate: Rotations, truth: Rotations) -> np.ndarray:
    """
    Chordal errors ‖G R̂_i - R_i‖_F after the best global alignment G.

    Rotation averaging recovers rotations only up to a common left
    rotation, found here by projecting Σ R_i R̂_iᵀ onto SO(d).
    """
    keys = list(truth)
    M = sum(truth[k] @ estimate[k].T for k in keys)
    G = closest_rotation(M)
    return np.array([np.linalg.norm(G @ estimate[k] - truth[k]) for k in keys])
