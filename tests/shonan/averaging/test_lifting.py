"""Unit tests for lifting to SO(p+1) and the descent initializer."""

import unittest

import numpy as np

from shonan.averaging import (
    LiftedValues,
    Measurement,
    MeasurementStore,
    compute_min_eigenvalue,
    cost_at,
    dimension_lifting,
    initialize_randomly_at,
    initialize_with_descent,
    make_a_tangent_vector,
    riemannian_gradient,
    stiefel_element_matrix,
)
from shonan.datasets import make_random_graph
from shonan.geometry import is_rotation, lift_rotation, retract, rot2


def winding_problem(n: int = 8):
    store = MeasurementStore([Measurement(i, (i + 1) % n, np.eye(2)) for i in range(n)])
    values = LiftedValues(2, {i: rot2(2.0 * np.pi * i / n) for i in range(n)})
    return store, values


class TestTangentVector(unittest.TestCase):
    def test_layout(self) -> None:
        v = np.arange(1.0, 7.0)
        xi = make_a_tangent_vector(4, v, 1, 3)
        # generators coupling axis 3 with axes 0, 1, 2 sit at 2, 4, 5
        np.testing.assert_array_equal(xi, [0.0, 0.0, 4.0, 0.0, 5.0, 6.0])

    def test_first_block(self) -> None:
        xi = make_a_tangent_vector(3, np.array([0.5, -0.5, 1.0, 2.0]), 0, 2)
        np.testing.assert_array_equal(xi, [0.0, 0.5, -0.5])

    def test_requires_p_above_d(self) -> None:
        with self.assertRaises(ValueError):
            make_a_tangent_vector(3, np.zeros(6), 0, 3)

    def test_block_out_of_range(self) -> None:
        with self.assertRaises(ValueError):
            make_a_tangent_vector(4, np.zeros(6), 2, 3)


class TestDimensionLifting(unittest.TestCase):
    def setUp(self) -> None:
        measurements, _ = make_random_graph(5, d=3, extra_edges=3, rng=np.random.default_rng(0))
        self.store = MeasurementStore(measurements)
        self.values = initialize_randomly_at(self.store, 4, np.random.default_rng(1))

    def test_zero_direction_pads_exactly(self) -> None:
        lifted = dimension_lifting(self.store, 4, self.values, np.zeros(15))
        self.assertEqual(lifted.p, 5)
        for key in self.store.keys:
            np.testing.assert_allclose(lifted[key], lift_rotation(self.values[key], 5), atol=1e-15)

    def test_lifted_values_are_rotations(self) -> None:
        v = np.random.default_rng(2).standard_normal(15)
        lifted = dimension_lifting(self.store, 4, self.values, v)
        self.assertTrue(all(is_rotation(Q) for Q in lifted.values()))

    def test_first_order_direction(self) -> None:
        v = np.random.default_rng(3).standard_normal(15)
        v /= np.linalg.norm(v)
        t = 1e-5
        S0 = np.vstack([stiefel_element_matrix(self.store, self.values), np.zeros((1, 15))])
        lifted = dimension_lifting(self.store, 4, self.values, t * v)
        S1 = stiefel_element_matrix(self.store, lifted)
        expected = np.zeros((5, 15))
        expected[4] = v
        np.testing.assert_allclose((S1 - S0) / t, expected, atol=1e-4)

    def test_rejects_wrong_level(self) -> None:
        with self.assertRaises(ValueError):
            dimension_lifting(self.store, 5, self.values, np.zeros(15))

    def test_rejects_wrong_vector_length(self) -> None:
        with self.assertRaises(ValueError):
            dimension_lifting(self.store, 4, self.values, np.zeros(12))

    def test_insertion_order_does_not_matter(self) -> None:
        v = np.random.default_rng(4).standard_normal(15)
        v /= np.linalg.norm(v)
        reordered = LiftedValues(
            4, {key: self.values[key] for key in reversed(self.store.keys)}
        )
        lifted = dimension_lifting(self.store, 4, self.values, v)
        lifted_reordered = dimension_lifting(self.store, 4, reordered, v)
        self.assertEqual(list(lifted_reordered), self.store.keys)
        for key in self.store.keys:
            np.testing.assert_allclose(lifted_reordered[key], lifted[key], atol=1e-12)

    def test_block_follows_store_index(self) -> None:
        v = np.zeros(15)
        key = self.store.keys[2]
        v[3 * self.store.index(key) : 3 * self.store.index(key) + 3] = [0.3, -0.2, 0.1]
        reordered = LiftedValues(
            4, {k: self.values[k] for k in reversed(self.store.keys)}
        )
        lifted = dimension_lifting(self.store, 4, reordered, v)
        for k in self.store.keys:
            if k == key:
                self.assertGreater(np.abs(lifted[k][4, :3]).max(), 0.05)
            else:
                np.testing.assert_allclose(lifted[k], lift_rotation(self.values[k], 5), atol=1e-15)

    def test_rejects_foreign_keys(self) -> None:
        values = dict(self.values.items())
        values.pop(self.store.keys[0])
        values["stranger"] = np.eye(4)
        with self.assertRaises(ValueError):
            dimension_lifting(self.store, 4, LiftedValues(4, values), np.zeros(15))

    def test_rejects_missing_keys(self) -> None:
        values = {k: self.values[k] for k in self.store.keys[1:]}
        with self.assertRaises(ValueError):
            dimension_lifting(self.store, 4, LiftedValues(4, values), np.zeros(15))


class TestRiemannianGradient(unittest.TestCase):
    def test_zero_at_ground_truth(self) -> None:
        measurements, rotations = make_random_graph(
            6, d=3, extra_edges=4, rng=np.random.default_rng(4)
        )
        store = MeasurementStore(measurements)
        values = LiftedValues(5, {k: lift_rotation(rotations[k], 5) for k in store.keys})
        np.testing.assert_allclose(riemannian_gradient(store, 5, values), 0.0, atol=1e-10)

    def test_zero_at_winding_critical_point(self) -> None:
        store, values = winding_problem()
        np.testing.assert_allclose(riemannian_gradient(store, 2, values), 0.0, atol=1e-12)

    def test_gradient_is_tangent(self) -> None:
        measurements, _ = make_random_graph(6, d=3, extra_edges=4, rng=np.random.default_rng(5))
        store = MeasurementStore(measurements)
        values = initialize_randomly_at(store, 5, np.random.default_rng(6))
        grad = riemannian_gradient(store, 5, values)
        S = stiefel_element_matrix(store, values)
        for i in range(store.nr_poses()):
            M = S[:, 3 * i : 3 * i + 3].T @ grad[:, 3 * i : 3 * i + 3]
            np.testing.assert_allclose(M, -M.T, atol=1e-10)

    def test_matches_directional_derivative(self) -> None:
        measurements, _ = make_random_graph(5, d=3, extra_edges=3, rng=np.random.default_rng(7))
        store = MeasurementStore(measurements)
        values = initialize_randomly_at(store, 4, np.random.default_rng(8))
        grad = riemannian_gradient(store, 4, values)

        rng = np.random.default_rng(9)
        moved = LiftedValues(
            4, {key: retract(values[key], 1e-6 * rng.standard_normal(6)) for key in store.keys}
        )
        S0 = stiefel_element_matrix(store, values)
        S1 = stiefel_element_matrix(store, moved)
        numeric = cost_at(store, 4, moved) - cost_at(store, 4, values)
        predicted = float(np.sum(grad * (S1 - S0)))
        self.assertLess(abs(numeric - predicted), 1e-3 * abs(predicted))


class TestDescent(unittest.TestCase):
    def test_escapes_winding_saddle(self) -> None:
        store, values = winding_problem()
        min_eigenvalue, v = compute_min_eigenvalue(store, values)
        self.assertLess(min_eigenvalue, -0.5)

        lifted = initialize_with_descent(store, 2, values, v, min_eigenvalue)

        self.assertEqual(lifted.p, 3)
        self.assertEqual(list(lifted), store.keys)
        self.assertLess(cost_at(store, 3, lifted), cost_at(store, 2, values))

    def test_lifted_values_are_rotations(self) -> None:
        store, values = winding_problem()
        min_eigenvalue, v = compute_min_eigenvalue(store, values)
        lifted = initialize_with_descent(store, 2, values, v, min_eigenvalue)
        self.assertTrue(all(is_rotation(Q) for Q in lifted.values()))

    def test_insertion_order_does_not_matter(self) -> None:
        store, values = winding_problem()
        min_eigenvalue, v = compute_min_eigenvalue(store, values)
        reordered = LiftedValues(2, {key: values[key] for key in reversed(store.keys)})
        lifted = initialize_with_descent(store, 2, values, v, min_eigenvalue)
        lifted_reordered = initialize_with_descent(store, 2, reordered, v, min_eigenvalue)
        for key in store.keys:
            np.testing.assert_allclose(lifted_reordered[key], lifted[key], atol=1e-12)


if __name__ == "__main__":
    unittest.main()
