"""Unit tests for the optimality certificate and the sparse eigensolver."""

import importlib

import numpy as np
import pytest
import scipy.sparse as sp
from scipy.sparse.linalg import ArpackNoConvergence

from shonan.averaging import (
    EigensolverFailure,
    LiftedValues,
    Measurement,
    MeasurementStore,
    build_Q,
    check_optimality,
    compute_A,
    compute_A_dense,
    compute_lambda_dense,
    compute_min_eigenvalue,
    initialize_randomly_at,
    is_certified,
    min_eigenpair,
    stiefel_element_matrix,
)
from shonan.datasets import make_random_graph
from shonan.geometry import lift_rotation, rot2


def lifted_truth(store, rotations, p):
    return LiftedValues(p, {key: lift_rotation(rotations[key], p) for key in store.keys})


@pytest.fixture
def noiseless():
    measurements, rotations = make_random_graph(
        8, d=3, extra_edges=6, noise=0.0, rng=np.random.default_rng(21)
    )
    return MeasurementStore(measurements), rotations


@pytest.fixture
def winding():
    """Eight-cycle of identity measurements with the rotations wound once around SO(2)."""
    n = 8
    store = MeasurementStore([Measurement(i, (i + 1) % n, np.eye(2)) for i in range(n)])
    values = LiftedValues(2, {i: rot2(2.0 * np.pi * i / n) for i in range(n)})
    return store, values


class TestLambda:
    def test_matches_sym_block_diag_formula(self, noiseless):
        store, _ = noiseless
        values = initialize_randomly_at(store, 5, np.random.default_rng(0))
        S = stiefel_element_matrix(store, values)
        M = S.T @ S @ build_Q(store).toarray()
        Lambda = compute_lambda_dense(store, values)
        for i in range(store.nr_poses()):
            block = M[3 * i : 3 * i + 3, 3 * i : 3 * i + 3]
            np.testing.assert_allclose(
                Lambda[3 * i : 3 * i + 3, 3 * i : 3 * i + 3], 0.5 * (block + block.T), atol=1e-12
            )

    def test_is_block_diagonal_and_symmetric(self, noiseless):
        store, _ = noiseless
        values = initialize_randomly_at(store, 4, np.random.default_rng(1))
        Lambda = compute_lambda_dense(store, values)
        np.testing.assert_allclose(Lambda, Lambda.T, atol=1e-12)
        mask = np.kron(np.eye(store.nr_poses()), np.ones((3, 3)))
        np.testing.assert_array_equal(Lambda * (1 - mask), 0.0)

    def test_accepts_stiefel_matrix(self, noiseless):
        store, _ = noiseless
        values = initialize_randomly_at(store, 4, np.random.default_rng(2))
        S = stiefel_element_matrix(store, values)
        np.testing.assert_allclose(
            compute_lambda_dense(store, S), compute_lambda_dense(store, values)
        )

    def test_rejects_wrong_stiefel_shape(self, noiseless):
        store, _ = noiseless
        with pytest.raises(ValueError):
            compute_lambda_dense(store, np.zeros((4, 5)))


class TestCertificate:
    def test_ground_truth_is_certified(self, noiseless):
        store, rotations = noiseless
        values = lifted_truth(store, rotations, 5)
        min_eigenvalue, _ = compute_min_eigenvalue(store, values)
        assert min_eigenvalue == pytest.approx(0.0, abs=1e-6)
        assert check_optimality(store, values)

    def test_critical_point_annihilates_certificate(self, noiseless):
        store, rotations = noiseless
        values = lifted_truth(store, rotations, 4)
        S = stiefel_element_matrix(store, values)
        np.testing.assert_allclose(S @ compute_A_dense(store, values), 0.0, atol=1e-10)

    def test_winding_is_not_certified(self, winding):
        store, values = winding
        min_eigenvalue, v = compute_min_eigenvalue(store, values)
        assert min_eigenvalue == pytest.approx(np.sqrt(2.0) - 2.0, abs=1e-8)
        assert np.linalg.norm(v) == pytest.approx(1.0)
        assert not check_optimality(store, values)

    def test_threshold_is_strict(self, winding):
        store, values = winding
        assert check_optimality(store, values, optimality_threshold=-0.6)
        assert not check_optimality(store, values, optimality_threshold=-0.5)

    def test_certification_rule(self):
        assert is_certified(0.0)
        assert is_certified(-5e-5)
        assert not is_certified(-1e-4)
        assert not is_certified(-0.3, optimality_threshold=-0.3)
        assert is_certified(-0.3, optimality_threshold=-0.5)

    def test_prebuilt_q_gives_same_matrix(self, noiseless):
        store, _ = noiseless
        values = initialize_randomly_at(store, 4, np.random.default_rng(3))
        A1 = compute_A(store, values).toarray()
        A2 = compute_A(store, values, Q=build_Q(store)).toarray()
        np.testing.assert_array_equal(A1, A2)


class TestMinEigenpair:
    def test_matches_dense_solver_at_random_point(self, noiseless):
        store, _ = noiseless
        values = initialize_randomly_at(store, 5, np.random.default_rng(4))
        A = compute_A(store, values)
        min_eigenvalue, v = min_eigenpair(A)
        assert min_eigenvalue == pytest.approx(np.linalg.eigvalsh(A.toarray()).min(), abs=1e-8)
        np.testing.assert_allclose(A @ v, min_eigenvalue * v, atol=1e-6)

    def test_negative_dominant_eigenvalue(self):
        min_eigenvalue, v = min_eigenpair(sp.diags([-5.0, 1.0, 2.0, 0.5]))
        assert min_eigenvalue == pytest.approx(-5.0)
        assert abs(v[0]) == pytest.approx(1.0)

    def test_positive_definite_matrix(self):
        min_eigenvalue, v = min_eigenpair(sp.diags([3.0, 1.0, 2.0, 4.0]))
        assert min_eigenvalue == pytest.approx(1.0)
        assert abs(v[1]) == pytest.approx(1.0)

    def test_deterministic(self, noiseless):
        store, _ = noiseless
        values = initialize_randomly_at(store, 5, np.random.default_rng(5))
        A = compute_A(store, values)
        assert min_eigenpair(A)[0] == min_eigenpair(A)[0]

    def test_too_small_matrix(self):
        with pytest.raises(ValueError):
            min_eigenpair(sp.identity(1))

    def test_arpack_failure_is_reported(self, noiseless, monkeypatch):
        store, _ = noiseless
        values = initialize_randomly_at(store, 5, np.random.default_rng(6))

        def failing_eigsh(*args, **kwargs):
            raise ArpackNoConvergence("no convergence", np.array([]), np.array([]))

        module = importlib.import_module("shonan.averaging.certifier")
        monkeypatch.setattr(module, "eigsh", failing_eigsh)
        with pytest.raises(EigensolverFailure):
            compute_min_eigenvalue(store, values)
