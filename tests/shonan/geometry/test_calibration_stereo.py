"""Unit tests for Cal3_S2 and the composed Cal3_S2Stereo."""

import numpy as np
import pytest

from shonan.estimators import Factor, FactorGraph
from shonan.geometry import Cal3_S2, Cal3_S2Stereo


class TestCal3S2:
    def test_matrix(self):
        K = Cal3_S2(500.0, 510.0, 0.1, 320.0, 240.0)
        expected = np.array([[500.0, 0.1, 320.0], [0.0, 510.0, 240.0], [0.0, 0.0, 1.0]])
        np.testing.assert_array_equal(K.K(), expected)

    def test_from_fov(self):
        K = Cal3_S2.from_fov(90.0, 640, 480)
        assert K.u0 == pytest.approx(320.0)
        assert K.v0 == pytest.approx(240.0)
        assert K.fx == pytest.approx(320.0)
        assert K.fy == pytest.approx(320.0)

    def test_from_fov_rejects_bad_angle(self):
        with pytest.raises(ValueError):
            Cal3_S2.from_fov(180.0, 640, 480)

    def test_retract_and_local_coordinates(self):
        K = Cal3_S2(500.0, 500.0, 0.0, 320.0, 240.0)
        d = np.array([1.0, -2.0, 0.5, 3.0, -4.0])
        K2 = K.retract(d)
        np.testing.assert_allclose(K.local_coordinates(K2), d)
        assert K2.equals(Cal3_S2.from_vector(K.vector() + d))
        assert K.dim() == 5

    def test_rejects_non_finite(self):
        with pytest.raises(ValueError):
            Cal3_S2(fx=np.nan)


class TestCal3S2Stereo:
    def test_owns_monocular_calibration(self):
        stereo = Cal3_S2Stereo.from_parameters(500, 510, 0.0, 320, 240, b=0.12)
        assert not isinstance(stereo, Cal3_S2)
        assert isinstance(stereo.calibration(), Cal3_S2)
        assert stereo.fx == 500.0
        assert stereo.fy == 510.0
        assert stereo.skew == 0.0
        assert stereo.px == 320.0
        assert stereo.py == 240.0
        assert stereo.baseline == 0.12
        np.testing.assert_array_equal(stereo.K(), stereo.calibration().K())

    def test_vector_and_dimension(self):
        stereo = Cal3_S2Stereo.from_parameters(500, 500, 0, 320, 240, b=0.5)
        np.testing.assert_array_equal(stereo.vector(), [500, 500, 0, 320, 240, 0.5])
        assert stereo.dim() == 6
        assert Cal3_S2Stereo.from_vector(stereo.vector()).equals(stereo)

    def test_retract(self):
        stereo = Cal3_S2Stereo.from_fov(90.0, 640, 480, b=0.1)
        d = np.array([1.0, 1.0, 0.0, 0.0, 0.0, 0.05])
        moved = stereo.retract(d)
        assert moved.baseline == pytest.approx(0.15)
        np.testing.assert_allclose(stereo.local_coordinates(moved), d)

    def test_retract_rejects_wrong_size(self):
        with pytest.raises(ValueError):
            Cal3_S2Stereo().retract(np.zeros(5))

    def test_rejects_non_calibration(self):
        with pytest.raises(TypeError):
            Cal3_S2Stereo(calibration_=np.eye(3), b=1.0)


def test_calibration_optimized_as_manifold_variable():
    """A stereo calibration can be a FactorGraph variable via its retract."""
    target = Cal3_S2Stereo.from_parameters(480, 490, 0.0, 310, 250, b=0.2)
    initial = Cal3_S2Stereo.from_parameters(500, 500, 0.0, 320, 240, b=0.1)

    graph = FactorGraph()
    graph.add_variable("K", initial, dim=6, retract=lambda c, d: c.retract(d))
    graph.add_factor(
        Factor(
            ["K"],
            lambda x: x[0].vector() - target.vector(),
            lambda x: [np.eye(6)],
            1.0,
        )
    )
    variables, _ = graph.optimize(method="lm", max_iterations=20)

    assert graph.converged
    assert variables["K"].equals(target, tol=1e-6)
