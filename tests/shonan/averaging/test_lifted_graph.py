"""Unit tests for the lifted SO(p) problem."""

import numpy as np
import pytest

from shonan.averaging import (
    LiftedValues,
    Measurement,
    MeasurementStore,
    build_D,
    build_graph_at,
    build_L,
    build_Q,
    cost_at,
    initialize_randomly_at,
    insert_values,
    stiefel_element_matrix,
)
from shonan.datasets import make_random_graph
from shonan.geometry import is_rotation, retract, so_dimension


@pytest.fixture
def store():
    measurements, _ = make_random_graph(6, d=3, extra_edges=4, noise=0.2, rng=np.random.default_rng(11))
    return MeasurementStore(measurements)


class TestInitialization:
    def test_random_values_are_rotations(self, store):
        values = initialize_randomly_at(store, 5, np.random.default_rng(0))
        assert values.p == 5
        assert list(values) == store.keys
        assert all(is_rotation(Q) for Q in values.values())

    def test_random_values_are_reproducible(self, store):
        v1 = initialize_randomly_at(store, 4, np.random.default_rng(1))
        v2 = initialize_randomly_at(store, 4, np.random.default_rng(1))
        for key in store.keys:
            np.testing.assert_array_equal(v1[key], v2[key])

    def test_p_below_d_rejected(self, store):
        with pytest.raises(ValueError):
            initialize_randomly_at(store, 2)


class TestCost:
    def test_cost_equals_trace_form(self, store):
        values = initialize_randomly_at(store, 5, np.random.default_rng(2))
        S = stiefel_element_matrix(store, values)
        L = build_L(build_D(store), build_Q(store))
        expected = np.trace(S @ L.toarray() @ S.T)
        assert cost_at(store, 5, values) == pytest.approx(expected, rel=1e-10)

    def test_cost_equals_graph_error(self, store):
        values = initialize_randomly_at(store, 4, np.random.default_rng(3))
        graph = insert_values(build_graph_at(store, 4), values)
        assert graph.compute_error() == pytest.approx(cost_at(store, 4, values), rel=1e-10)

    def test_cost_rejects_wrong_level(self, store):
        values = initialize_randomly_at(store, 4, np.random.default_rng(3))
        with pytest.raises(ValueError):
            cost_at(store, 5, values)

    def test_stiefel_matrix_shape(self, store):
        values = initialize_randomly_at(store, 5, np.random.default_rng(4))
        S = stiefel_element_matrix(store, values)
        assert S.shape == (5, 3 * store.nr_poses())
        np.testing.assert_allclose(S[:, :3].T @ S[:, :3], np.eye(3), atol=1e-12)


class TestGraph:
    def test_one_factor_per_measurement(self, store):
        graph = build_graph_at(store, 5)
        assert graph.size() == len(store)
        assert set(graph.missing_variables()) == set(store.keys)

    def test_p_below_d_rejected(self, store):
        with pytest.raises(ValueError):
            build_graph_at(store, 2)

    def test_jacobians_match_finite_differences(self):
        R = retract(np.eye(3), np.array([0.2, -0.1, 0.3]))
        store = MeasurementStore([Measurement(0, 1, R)])
        p = 4
        values = initialize_randomly_at(store, p, np.random.default_rng(5))
        factor = build_graph_at(store, p).factors[0]
        x_vars = [values[0], values[1]]
        _, jacobians = factor.linearize({0: values[0], 1: values[1]})

        eps = 1e-6
        m = so_dimension(p)
        for var in range(2):
            numeric = np.zeros_like(jacobians[var])
            for k in range(m):
                xi = np.zeros(m)
                xi[k] = eps
                plus = list(x_vars)
                minus = list(x_vars)
                plus[var] = retract(x_vars[var], xi)
                minus[var] = retract(x_vars[var], -xi)
                numeric[:, k] = (factor.residual_func(plus) - factor.residual_func(minus)) / (2 * eps)
            np.testing.assert_allclose(jacobians[var], numeric, atol=1e-7)


class TestLiftedValues:
    def test_shape_checked(self):
        with pytest.raises(ValueError):
            LiftedValues(3, {0: np.eye(4)})

    def test_values_read_only(self):
        values = LiftedValues(3, {0: np.eye(3)})
        with pytest.raises(ValueError):
            values[0][0, 0] = 2.0

    def test_mapping_interface(self):
        values = LiftedValues(2, {"a": np.eye(2), "b": np.eye(2)})
        assert len(values) == 2
        assert "a" in values
        assert list(values.keys()) == ["a", "b"]
