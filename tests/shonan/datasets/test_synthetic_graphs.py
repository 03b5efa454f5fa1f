"""Unit tests for the synthetic problem generators."""

import unittest

import numpy as np

from shonan.averaging import MeasurementStore
from shonan.datasets import (
    aligned_rotation_errors,
    make_cycle_measurements,
    make_random_graph,
    rotations_to_poses,
)
from shonan.geometry import is_rotation, random_rotation, rot2


class TestCycle(unittest.TestCase):
    def test_noiseless_cycle_is_consistent(self) -> None:
        measurements, rotations = make_cycle_measurements(5, d=3, rng=np.random.default_rng(0))
        self.assertEqual(len(measurements), 5)
        self.assertEqual((measurements[-1].key_i, measurements[-1].key_j), (4, 0))
        for m in measurements:
            np.testing.assert_allclose(
                rotations[m.key_i] @ m.rotation, rotations[m.key_j], atol=1e-12
            )

    def test_planar_angle_step(self) -> None:
        measurements, rotations = make_cycle_measurements(4, d=2, angle_step=0.5)
        np.testing.assert_allclose(rotations[3], rot2(1.5))
        np.testing.assert_allclose(measurements[0].rotation, rot2(0.5), atol=1e-12)

    def test_too_short(self) -> None:
        with self.assertRaises(ValueError):
            make_cycle_measurements(2)


class TestRandomGraph(unittest.TestCase):
    def test_connected_and_distinct_edges(self) -> None:
        measurements, rotations = make_random_graph(
            10, d=3, extra_edges=12, noise=0.1, rng=np.random.default_rng(1)
        )
        edges = [(m.key_i, m.key_j) for m in measurements]
        self.assertEqual(len(edges), 9 + 12)
        self.assertEqual(len(set(edges)), len(edges))
        store = MeasurementStore(measurements)
        self.assertEqual(store.nr_poses(), 10)
        self.assertTrue(all(is_rotation(m.rotation) for m in measurements))

    def test_extra_edges_capped(self) -> None:
        measurements, _ = make_random_graph(4, d=2, extra_edges=100, rng=np.random.default_rng(2))
        # chain of 3 plus the 3 remaining pairs
        self.assertEqual(len(measurements), 6)

    def test_reproducible(self) -> None:
        m1, _ = make_random_graph(6, extra_edges=3, noise=0.1, rng=np.random.default_rng(3))
        m2, _ = make_random_graph(6, extra_edges=3, noise=0.1, rng=np.random.default_rng(3))
        for a, b in zip(m1, m2):
            np.testing.assert_array_equal(a.rotation, b.rotation)

    def test_invalid_dimension(self) -> None:
        with self.assertRaises(ValueError):
            make_random_graph(5, d=4)


class TestAlignedErrors(unittest.TestCase):
    def test_global_rotation_is_removed(self) -> None:
        rng = np.random.default_rng(4)
        truth = {i: random_rotation(3, rng) for i in range(5)}
        G = random_rotation(3, rng)
        estimate = {i: G @ R for i, R in truth.items()}
        np.testing.assert_allclose(aligned_rotation_errors(estimate, truth), 0.0, atol=1e-10)

    def test_reports_per_key_error(self) -> None:
        truth = {0: np.eye(2), 1: np.eye(2), 2: np.eye(2)}
        estimate = dict(truth)
        estimate[2] = rot2(0.3)
        errors = aligned_rotation_errors(estimate, truth)
        self.assertEqual(errors.shape, (3,))
        self.assertGreater(errors.max(), 0.0)

    def test_poses_have_zero_translation(self) -> None:
        poses = rotations_to_poses({0: np.eye(3)})
        np.testing.assert_array_equal(poses[0].translation, np.zeros(3))


if __name__ == "__main__":
    unittest.main()
