"""
Global optimality certificate for lifted rotation averaging.

A critical point S = [Y_1, ..., Y_N] of the lifted problem is a global
optimum of the semidefinite relaxation iff the certificate matrix

    A = Λ - Q,    Λ = SymBlockDiag(SᵀS Q)

is positive semidefinite. Λ holds the Lagrange multipliers of the
orthonormality constraints Y_iᵀY_i = I: per edge (i, j, R_ij, κ)

    Λ_ii += κ sym(Y_iᵀ Y_j R_ijᵀ),    Λ_jj += κ sym(Y_jᵀ Y_i R_ij)

with sym(M) = (M + Mᵀ)/2. At a critical point S A = 0, so λ_min(A) <= 0
always; λ_min(A) ≈ 0 certifies the solution and a clearly negative λ_min
comes with an eigenvector that yields a descent direction one level up.

The minimum eigenpair is found with the sparse Lanczos solver (eigsh) in
two passes: the largest-magnitude eigenvalue λ_LM first, and if it is not
already negative, the largest-magnitude eigenvalue μ of A - λ_LM·I, giving
λ_min = μ + λ_LM.
"""

from typing import Optional, Tuple, Union

import numpy as np
import scipy.sparse as sp
from scipy.sparse.linalg import ArpackError, ArpackNoConvergence, eigsh

from shonan.averaging.errors import EigensolverFailure
from shonan.averaging.lifted_graph import stiefel_element_matrix
from shonan.averaging.measurements import MeasurementStore
from shonan.averaging.sparse_matrices import build_Q
from shonan.averaging.types import LiftedValues


ValuesOrStiefel = Union[LiftedValues, np.ndarray]

# Seed of the fixed Lanczos start vector
_START_VECTOR_SEED = 42


def _as_stiefel(store: MeasurementStore, values: ValuesOrStiefel) -> np.ndarray:
    if isinstance(values, LiftedValues):
        return stiefel_element_matrix(store, values)
    S = np.asarray(values, dtype=np.float64)
    expected = store.d * store.nr_poses()
    if S.ndim != 2 or S.shape[1] != expected:
        raise ValueError(f"S must have shape (p, {expected}), got {S.shape}")
    return S


def compute_lambda(
    store: MeasurementStore,
    values: ValuesOrStiefel,
    use_noise_model: bool = True,
    noise_sigma: float = 0.0,
) -> sp.csr_matrix:
    """
    Block-diagonal Lagrange multiplier matrix Λ at a lifted solution.

    Args:
        store: Measurement store.
        values: LiftedValues or the p x dN Stiefel matrix S.

    Returns:
        Sparse (dN)x(dN) block-diagonal Λ.
    """
    S = _as_stiefel(store, values)
    d = store.d
    N = store.nr_poses()
    blocks = np.zeros((N, d, d))
    for k, m in enumerate(store):
        kappa = store.kappa(k, use_noise_model, noise_sigma)
        i = store.index(m.key_i)
        j = store.index(m.key_j)
        Y_i = S[:, d * i : d * i + d]
        Y_j = S[:, d * j : d * j + d]
        Y_ij = Y_i.T @ Y_j
        M_i = Y_ij @ m.rotation.T
        M_j = Y_ij.T @ m.rotation
        blocks[i] += 0.5 * kappa * (M_i + M_i.T)
        blocks[j] += 0.5 * kappa * (M_j + M_j.T)
    return sp.block_diag(list(blocks), format="csr")


def compute_lambda_dense(
    store: MeasurementStore, values: ValuesOrStiefel, **kwargs
) -> np.ndarray:
    """Dense Λ, for testing."""
    return compute_lambda(store, values, **kwargs).toarray()


def compute_A(
    store: MeasurementStore,
    values: ValuesOrStiefel,
    Q: Optional[sp.spmatrix] = None,
    use_noise_model: bool = True,
    noise_sigma: float = 0.0,
) -> sp.csr_matrix:
    """
    Certificate matrix A = Λ - Q.

    Args:
        store: Measurement store.
        values: LiftedValues or the p x dN Stiefel matrix S.
        Q: Prebuilt measurement matrix. Built from the store if None.
    """
    if Q is None:
        Q = build_Q(store, use_noise_model, noise_sigma)
    Lambda = compute_lambda(store, values, use_noise_model, noise_sigma)
    return sp.csr_matrix(Lambda - Q)


def compute_A_dense(store: MeasurementStore, values: ValuesOrStiefel, **kwargs) -> np.ndarray:
    """Dense A, for testing."""
    return compute_A(store, values, **kwargs).toarray()


def _largest_magnitude(A: sp.spmatrix, v0: np.ndarray) -> Tuple[float, np.ndarray]:
    n = A.shape[0]
    try:
        eigenvalues, eigenvectors = eigsh(
            A, k=1, which="LM", v0=v0, tol=1e-10, maxiter=max(2000, 50 * n)
        )
    except (ArpackNoConvergence, ArpackError) as e:
        raise EigensolverFailure(f"Lanczos did not converge on a {n}x{n} matrix: {e}") from e
    return float(eigenvalues[0]), eigenvectors[:, 0]


def min_eigenpair(A: sp.spmatrix) -> Tuple[float, np.ndarray]:
    """
    Algebraically smallest eigenpair of a sparse symmetric matrix.

    Returns:
        Tuple of (λ_min, v_min) with ‖v_min‖ = 1.

    Raises:
        EigensolverFailure: If ARPACK fails or returns non-finite values.
    """
    A = sp.csr_matrix(A, dtype=np.float64)
    n = A.shape[0]
    if n < 2:
        raise ValueError(f"A must be at least 2x2, got {A.shape}")
    v0 = np.random.default_rng(_START_VECTOR_SEED).standard_normal(n)

    lambda_lm, v_lm = _largest_magnitude(A, v0)
    if lambda_lm < 0:
        min_eigenvalue, min_eigenvector = lambda_lm, v_lm
    else:
        shifted = A - lambda_lm * sp.identity(n, format="csr")
        mu, min_eigenvector = _largest_magnitude(shifted, v0)
        min_eigenvalue = mu + lambda_lm

    if not np.isfinite(min_eigenvalue) or not np.all(np.isfinite(min_eigenvector)):
        raise EigensolverFailure("Lanczos returned a non-finite eigenpair")
    return min_eigenvalue, min_eigenvector / np.linalg.norm(min_eigenvector)


def compute_min_eigenvalue(
    store: MeasurementStore,
    values: ValuesOrStiefel,
    Q: Optional[sp.spmatrix] = None,
    use_noise_model: bool = True,
    noise_sigma: float = 0.0,
) -> Tuple[float, np.ndarray]:
    """Minimum eigenvalue and unit eigenvector of the certificate matrix."""
    return min_eigenpair(compute_A(store, values, Q, use_noise_model, noise_sigma))


def check_optimality(
    store: MeasurementStore,
    values: ValuesOrStiefel,
    optimality_threshold: float = -1e-4,
    Q: Optional[sp.spmatrix] = None,
    use_noise_model: bool = True,
    noise_sigma: float = 0.0,
) -> bool:
    """True iff λ_min(A) > optimality_threshold."""
    min_eigenvalue, _ = compute_min_eigenvalue(store, values, Q, use_noise_model, noise_sigma)
    return is_certified(min_eigenvalue, optimality_threshold)


def is_certified(min_eigenvalue: float, optimality_threshold: float = -1e-4) -> bool:
    """Certification rule: λ_min strictly above the (non-positive) threshold."""
    return bool(min_eigenvalue > optimality_threshold)
