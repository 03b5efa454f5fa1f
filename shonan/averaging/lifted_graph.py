"""Lifted rotation averaging problem at level p.

At level p every key carries Q_i ∈ SO(p); only Y_i = Q_i P (the first d
columns, P = [I_d; 0]) enters the cost

    F_p(Q) = Σ_(i,j) κ_ij ‖Q_i P R_ij - Q_j P‖_F²

Each measurement becomes one factor with residual vec(Q_i P R_ij - Q_j P)
and information κ_ij. Jacobians are taken with respect to the tangent
coordinates ξ of the Cayley retraction Q ← Q cayley(hat(ξ)), whose
derivative at ξ = 0 is Q G_k for the k-th so(p) generator G_k.
"""

from typing import Optional

import numpy as np

from shonan.averaging.measurements import MeasurementStore
from shonan.averaging.types import LiftedValues
from shonan.estimators import Factor, FactorGraph
from shonan.geometry import random_rotation, retract, so_dimension, so_generators


def _rotation_factor(
    key_i, key_j, R_ij: np.ndarray, kappa: float, p: int, d: int
) -> Factor:
    """Chordal factor between two SO(p) variables for one measurement."""
    # G_k P for every generator, shape (m, p, d)
    GP = so_generators(p)[:, :, :d]

    def residual(x_vars):
        Q_i, Q_j = x_vars
        return (Q_i[:, :d] @ R_ij - Q_j[:, :d]).ravel()

    def jacobian(x_vars):
        Q_i, Q_j = x_vars
        # ∂r/∂ξ_i[k] = vec(Q_i G_k P R_ij), ∂r/∂ξ_j[k] = -vec(Q_j G_k P)
        J_i = np.einsum("ab,kbc,cd->kad", Q_i, GP, R_ij).reshape(len(GP), -1).T
        J_j = -np.einsum("ab,kbc->kac", Q_j, GP).reshape(len(GP), -1).T
        return [J_i, J_j]

    return Factor([key_i, key_j], residual, jacobian, kappa)


def build_graph_at(
    store: MeasurementStore,
    p: int,
    use_noise_model: bool = True,
    noise_sigma: float = 0.0,
) -> FactorGraph:
    """
    Build the SO(p) factor graph, one chordal factor per measurement.

    Variables are not inserted: use insert_values before optimizing.

    Args:
        store: Measurement store.
        p: Rotation dimension to optimize over, p >= d.
        use_noise_model: Weight factors by κ (else unit weights).
        noise_sigma: Fallback sigma for measurements without a weight.

    Returns:
        FactorGraph whose error equals cost_at(store, p, values).
    """
    d = store.d
    if p < d:
        raise ValueError(f"p={p} must be >= d={d}")
    graph = FactorGraph()
    for k, m in enumerate(store):
        kappa = store.kappa(k, use_noise_model, noise_sigma)
        graph.add_factor(_rotation_factor(m.key_i, m.key_j, m.rotation, kappa, p, d))
    return graph


def insert_values(graph: FactorGraph, values: LiftedValues) -> FactorGraph:
    """Insert SO(p) values as manifold variables with Cayley retraction."""
    dim = so_dimension(values.p)
    for key, Q in values.items():
        graph.add_variable(key, Q, dim=dim, retract=retract)
    return graph


def initialize_randomly_at(
    store: MeasurementStore, p: int, rng: Optional[np.random.Generator] = None
) -> LiftedValues:
    """Draw every Q_i independently and Haar-uniformly from SO(p)."""
    if p < store.d:
        raise ValueError(f"p={p} must be >= d={store.d}")
    if rng is None:
        rng = np.random.default_rng()
    return LiftedValues(p, {key: random_rotation(p, rng) for key in store.keys})


def stiefel_element_matrix(store: MeasurementStore, values: LiftedValues) -> np.ndarray:
    """The p x dN matrix S = [Y_1, ..., Y_N] in store key order."""
    return values.stiefel_matrix(store.keys, store.d)


def cost_at(
    store: MeasurementStore,
    p: int,
    values: LiftedValues,
    use_noise_model: bool = True,
    noise_sigma: float = 0.0,
) -> float:
    """
    Lifted chordal cost Σ κ ‖Y_i R_ij - Y_j‖_F².

    Equals tr(S L Sᵀ) and the error of build_graph_at at the same values.
    Gauge priors are never included.
    """
    if values.p != p:
        raise ValueError(f"values live in SO({values.p}), expected SO({p})")
    d = store.d
    total = 0.0
    for k, m in enumerate(store):
        kappa = store.kappa(k, use_noise_model, noise_sigma)
        Y_i = values[m.key_i][:, :d]
        Y_j = values[m.key_j][:, :d]
        total += kappa * float(np.sum((Y_i @ m.rotation - Y_j) ** 2))
    return total
