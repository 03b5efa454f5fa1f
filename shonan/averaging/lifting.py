"""
Escaping non-certified critical points by lifting SO(p) -> SO(p+1).

When the certificate at level p has a negative minimum eigenvalue λ_min
with unit eigenvector v (length dN), the direction Ẏ_i = e_{p+1} v_iᵀ in
the new dimension is a second-order descent direction of the level p+1
cost at the padded point diag(Q_i, 1). Lifting retracts each padded
rotation along that direction; the descent initializer picks the step
size with a backtracking line search.
"""

from typing import Optional

import numpy as np
import scipy.sparse as sp

from shonan.averaging.lifted_graph import cost_at, stiefel_element_matrix
from shonan.averaging.measurements import MeasurementStore
from shonan.averaging.sparse_matrices import build_D, build_L, build_Q
from shonan.averaging.types import LiftedValues
from shonan.geometry import lift_rotation, pair_index, retract, so_dimension

# Line-search step bounds
ALPHA_MIN = 1e-2
ALPHA_MIN_FACTOR = 1024


def make_a_tangent_vector(p: int, v: np.ndarray, i: int, d: int) -> np.ndarray:
    """
    so(p) coordinates moving Y_i along e_p v_iᵀ.

    All coordinates are zero except those of the generators coupling the
    last axis p-1 with the first d axes, which take the entries
    v[d·i : d·i + d].

    Args:
        p: Lifted rotation dimension.
        v: Eigenvector of length dN.
        i: Block index of the key.
        d: Native rotation dimension.

    Returns:
        Tangent coordinates of shape (p(p-1)/2,).
    """
    v = np.asarray(v, dtype=np.float64)
    if p <= d:
        raise ValueError(f"Lifted dimension p={p} must exceed d={d}")
    if v.shape[0] < d * (i + 1):
        raise ValueError(f"v of length {v.shape[0]} has no block {i} for d={d}")
    xi = np.zeros(so_dimension(p))
    for a in range(d):
        xi[pair_index(a, p - 1, p)] = v[d * i + a]
    return xi


def _check_keys(store: MeasurementStore, values: LiftedValues) -> None:
    known = set(store.keys)
    if set(values) != known:
        missing = [key for key in store.keys if key not in values]
        unknown = [key for key in values if key not in known]
        raise ValueError(f"values do not match the store keys: missing {missing}, unknown {unknown}")


def dimension_lifting(
    store: MeasurementStore, p: int, values: LiftedValues, min_eigen_vector: np.ndarray
) -> LiftedValues:
    """
    Lift SO(p) values to SO(p+1) along a tangent direction from v.

    Every Q_i is padded to diag(Q_i, 1) and retracted along
    make_a_tangent_vector(p+1, v, store.index(key), d). The result is keyed
    in store order whatever the order of values. With v = 0 the top-left
    p x p blocks are exactly the input.

    Raises:
        ValueError: If values are not at level p, their keys differ from
            the store's, or v does not have length dN.
    """
    if values.p != p:
        raise ValueError(f"values live in SO({values.p}), expected SO({p})")
    _check_keys(store, values)
    d = store.d
    v = np.asarray(min_eigen_vector, dtype=np.float64)
    if v.shape != (d * store.nr_poses(),):
        raise ValueError(
            f"min_eigen_vector must have shape ({d * store.nr_poses()},), got {v.shape}"
        )
    lifted = {}
    for key in store.keys:
        padded = lift_rotation(values[key], p + 1)
        lifted[key] = retract(padded, make_a_tangent_vector(p + 1, v, store.index(key), d))
    return LiftedValues(p + 1, lifted)


def riemannian_gradient(
    store: MeasurementStore,
    p: int,
    values: LiftedValues,
    L: Optional[sp.spmatrix] = None,
    use_noise_model: bool = True,
    noise_sigma: float = 0.0,
) -> np.ndarray:
    """
    Riemannian gradient of tr(S L Sᵀ) on the product of Stiefel manifolds.

    G = 2 S L is the Euclidean gradient; each block is projected to the
    tangent space: G_i - Y_i sym(Y_iᵀ G_i).

    Returns:
        p x dN gradient matrix.
    """
    if values.p != p:
        raise ValueError(f"values live in SO({values.p}), expected SO({p})")
    if L is None:
        L = build_L(
            build_D(store, use_noise_model, noise_sigma),
            build_Q(store, use_noise_model, noise_sigma),
        )
    d = store.d
    S = stiefel_element_matrix(store, values)
    G = 2.0 * np.asarray((L.T @ S.T).T)
    grad = G.copy()
    for i in range(store.nr_poses()):
        Y_i = S[:, d * i : d * i + d]
        G_i = G[:, d * i : d * i + d]
        M = Y_i.T @ G_i
        grad[:, d * i : d * i + d] -= Y_i @ (0.5 * (M + M.T))
    return grad


def _preconditioned_norm(store: MeasurementStore, grad: np.ndarray, D: sp.spmatrix) -> float:
    # D is κ-weighted identity per block, so Jacobi scaling is one scalar per key
    d = store.d
    degrees = D.diagonal()[::d]
    scaled = grad / np.repeat(degrees, d)[np.newaxis, :]
    return float(np.linalg.norm(scaled))


def initialize_with_descent(
    store: MeasurementStore,
    p: int,
    values: LiftedValues,
    min_eigen_vector: np.ndarray,
    min_eigenvalue: float,
    gradient_tolerance: float = 1e-2,
    preconditioned_grad_norm_tolerance: float = 1e-4,
    D: Optional[sp.spmatrix] = None,
    L: Optional[sp.spmatrix] = None,
    use_noise_model: bool = True,
    noise_sigma: float = 0.0,
) -> LiftedValues:
    """
    Starting point at SO(p+1) by line search along the escape direction.

    Tries α = α0, α0/2, ... down to ALPHA_MIN on
    dimension_lifting(store, p, values, α·v), with
    α0 = max(ALPHA_MIN_FACTOR·ALPHA_MIN, 10·gradient_tolerance/|λ_min|).
    The first α whose lifted point strictly decreases the level-p cost and
    is not critical (Riemannian gradient norm above gradient_tolerance and
    preconditioned gradient norm above preconditioned_grad_norm_tolerance)
    is returned. Failing that, the lowest-cost candidate is returned if it
    decreased the cost, else the one with the smallest α.

    Args:
        store: Measurement store.
        p: Level of values.
        values: Non-certified critical point at SO(p).
        min_eigen_vector: Unit eigenvector of λ_min, length dN.
        min_eigenvalue: λ_min at level p (negative).
        gradient_tolerance: Riemannian gradient norm threshold.
        preconditioned_grad_norm_tolerance: Preconditioned norm threshold.

    Returns:
        Values at SO(p+1).
    """
    if values.p != p:
        raise ValueError(f"values live in SO({values.p}), expected SO({p})")
    _check_keys(store, values)
    if D is None:
        D = build_D(store, use_noise_model, noise_sigma)
    if L is None:
        L = build_L(D, build_Q(store, use_noise_model, noise_sigma))

    v = np.asarray(min_eigen_vector, dtype=np.float64)
    current_cost = cost_at(store, p, values, use_noise_model, noise_sigma)
    alpha = max(
        ALPHA_MIN_FACTOR * ALPHA_MIN,
        10.0 * gradient_tolerance / max(abs(min_eigenvalue), np.finfo(float).tiny),
    )

    best_values, best_cost = None, np.inf
    last_values = None
    while alpha >= ALPHA_MIN:
        candidate = dimension_lifting(store, p, values, alpha * v)
        candidate_cost = cost_at(store, p + 1, candidate, use_noise_model, noise_sigma)
        last_values = candidate
        if candidate_cost < best_cost:
            best_values, best_cost = candidate, candidate_cost
        if candidate_cost < current_cost:
            grad = riemannian_gradient(store, p + 1, candidate, L)
            grad_norm = float(np.linalg.norm(grad))
            preconditioned = _preconditioned_norm(store, grad, D)
            if (
                grad_norm > gradient_tolerance
                and preconditioned > preconditioned_grad_norm_tolerance
            ):
                return candidate
        alpha /= 2.0

    if best_cost < current_cost:
        return best_values
    return last_values
