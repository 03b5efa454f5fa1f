"""Sparse block matrices of the rotation averaging problem.

For N keys and rotation dimension d, all matrices are (dN)x(dN) with d x d
blocks indexed by the store's key order:

    D: degree matrix, block-diagonal, D_ii = Σ_(edges at i) κ I_d
    Q: measurement matrix, Q_ij = κ R_ij and Q_ji = κ R_ijᵀ per edge
    L: connection Laplacian L = D - Q

The lifted cost is F(S) = tr(S L Sᵀ) for the p x dN Stiefel matrix S.
"""

from typing import List, Tuple

import numpy as np
import scipy.sparse as sp

from shonan.averaging.measurements import MeasurementStore


def _block_triplets(
    row: int, col: int, block: np.ndarray
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    d = block.shape[0]
    rows, cols = np.meshgrid(np.arange(d), np.arange(d), indexing="ij")
    return (row + rows).ravel(), (col + cols).ravel(), block.ravel()


def _assemble(
    triplets: List[Tuple[np.ndarray, np.ndarray, np.ndarray]], size: int
) -> sp.csr_matrix:
    if triplets:
        rows = np.concatenate([t[0] for t in triplets])
        cols = np.concatenate([t[1] for t in triplets])
        data = np.concatenate([t[2] for t in triplets])
    else:
        rows = cols = np.zeros(0, dtype=int)
        data = np.zeros(0)
    # COO sums duplicate entries on conversion
    return sp.coo_matrix((data, (rows, cols)), shape=(size, size)).tocsr()


def build_D(
    store: MeasurementStore, use_noise_model: bool = True, noise_sigma: float = 0.0
) -> sp.csr_matrix:
    """Build the (dN)x(dN) sparse degree matrix D."""
    d = store.d
    identity = np.eye(d)
    triplets = []
    for k, m in enumerate(store):
        kappa = store.kappa(k, use_noise_model, noise_sigma)
        i = store.index(m.key_i)
        j = store.index(m.key_j)
        triplets.append(_block_triplets(d * i, d * i, kappa * identity))
        triplets.append(_block_triplets(d * j, d * j, kappa * identity))
    return _assemble(triplets, d * store.nr_poses())


def build_Q(
    store: MeasurementStore, use_noise_model: bool = True, noise_sigma: float = 0.0
) -> sp.csr_matrix:
    """Build the (dN)x(dN) sparse measurement matrix Q.

    Each measurement (i, j, R_ij) contributes κR_ij at block (i, j) and its
    transpose at block (j, i).
    """
    d = store.d
    triplets = []
    for k, m in enumerate(store):
        kappa = store.kappa(k, use_noise_model, noise_sigma)
        i = store.index(m.key_i)
        j = store.index(m.key_j)
        triplets.append(_block_triplets(d * i, d * j, kappa * m.rotation))
        triplets.append(_block_triplets(d * j, d * i, kappa * m.rotation.T))
    return _assemble(triplets, d * store.nr_poses())


def build_L(D: sp.spmatrix, Q: sp.spmatrix) -> sp.csr_matrix:
    """Connection Laplacian L = D - Q."""
    if D.shape != Q.shape:
        raise ValueError(f"D {D.shape} and Q {Q.shape} must have the same shape")
    return sp.csr_matrix(D - Q)
