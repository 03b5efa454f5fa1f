"""Unit tests for the sparse degree, measurement and Laplacian matrices."""

import numpy as np
import pytest
import scipy.sparse as sp

from shonan.averaging import Measurement, MeasurementStore, build_D, build_L, build_Q
from shonan.datasets import make_random_graph
from shonan.geometry import rot2


@pytest.fixture
def random_store():
    measurements, rotations = make_random_graph(
        12, d=3, extra_edges=10, noise=0.1, rng=np.random.default_rng(3)
    )
    return MeasurementStore(measurements), rotations


def test_matrices_are_sparse_csr(random_store):
    store, _ = random_store
    for M in (build_D(store), build_Q(store)):
        assert M.format == "csr"
        assert M.shape == (36, 36)


def test_laplacian_is_d_minus_q(random_store):
    store, _ = random_store
    D = build_D(store)
    Q = build_Q(store)
    L = build_L(D, Q)
    np.testing.assert_array_equal(L.toarray(), D.toarray() - Q.toarray())


def test_q_is_symmetric_with_zero_diagonal_blocks(random_store):
    store, _ = random_store
    Q = build_Q(store).toarray()
    np.testing.assert_allclose(Q, Q.T, atol=0.0)
    for i in range(store.nr_poses()):
        np.testing.assert_array_equal(Q[3 * i : 3 * i + 3, 3 * i : 3 * i + 3], 0.0)


def test_d_holds_weighted_degrees():
    measurements = [
        Measurement(0, 1, rot2(0.1), weight=2.0),
        Measurement(1, 2, rot2(0.2), weight=3.0),
    ]
    store = MeasurementStore(measurements)
    D = build_D(store).toarray()
    np.testing.assert_allclose(np.diag(D), [2, 2, 5, 5, 3, 3])
    np.testing.assert_array_equal(D - np.diag(np.diag(D)), 0.0)


def test_q_blocks_hold_weighted_rotations():
    R = rot2(0.7)
    store = MeasurementStore([Measurement(0, 1, R, weight=2.0)])
    Q = build_Q(store).toarray()
    np.testing.assert_allclose(Q[0:2, 2:4], 2.0 * R)
    np.testing.assert_allclose(Q[2:4, 0:2], 2.0 * R.T)


def test_unit_weights_without_noise_model():
    store = MeasurementStore([Measurement(0, 1, rot2(0.7), weight=5.0)])
    np.testing.assert_allclose(build_D(store, use_noise_model=False).toarray(), np.eye(4))


def test_duplicate_edges_are_summed():
    R = rot2(0.3)
    store = MeasurementStore([Measurement(0, 1, R), Measurement(0, 1, R)])
    Q = build_Q(store).toarray()
    np.testing.assert_allclose(Q[0:2, 2:4], 2.0 * R)


def test_ground_truth_is_in_laplacian_null_space():
    measurements, rotations = make_random_graph(
        8, d=3, extra_edges=6, noise=0.0, rng=np.random.default_rng(5)
    )
    store = MeasurementStore(measurements)
    L = build_L(build_D(store), build_Q(store)).toarray()
    S = np.hstack([rotations[key] for key in store.keys])
    np.testing.assert_allclose(S @ L, 0.0, atol=1e-10)
    assert np.linalg.eigvalsh(L).min() > -1e-10


def test_build_l_rejects_shape_mismatch():
    with pytest.raises(ValueError):
        build_L(sp.identity(4, format="csr"), sp.identity(6, format="csr"))
