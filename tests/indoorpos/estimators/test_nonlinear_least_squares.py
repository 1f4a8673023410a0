"""
Unit tests for the Levenberg-Marquardt solver and Tukey IRLS weights.
"""

import numpy as np
import pytest

from indoorpos.estimators.nonlinear_least_squares import levenberg_marquardt, tukey_weights


def _range_model(anchors):
    def h(x):
        return np.linalg.norm(anchors - x, axis=1)

    def jac(x):
        return (x - anchors) / h(x)[:, None]

    return h, jac


class TestLevenbergMarquardt:
    """Test LM on range measurements."""

    def setup_method(self):
        self.anchors = np.array([[0.0, 0.0], [10.0, 0.0], [0.0, 10.0], [10.0, 10.0]])
        self.true_pos = np.array([3.0, 7.0])
        self.h, self.jac = _range_model(self.anchors)

    def test_converges_from_offset_start(self):
        y = self.h(self.true_pos)
        result = levenberg_marquardt(self.h, self.jac, y, np.array([6.0, 4.0]), max_iter=100)

        assert result.converged
        np.testing.assert_allclose(result.x, self.true_pos, atol=1e-6)
        assert result.cost < 1e-12

    def test_covariance_is_inverse_information(self):
        y = self.h(self.true_pos)
        weights = np.full(4, 1.0 / 0.1**2)
        result = levenberg_marquardt(
            self.h, self.jac, y, self.true_pos + 0.1, weights=weights
        )

        J = self.jac(result.x)
        expected = np.linalg.inv((J.T * weights) @ J)
        np.testing.assert_allclose(result.covariance, expected, rtol=1e-6)

    def test_zero_weight_ignores_measurement(self):
        y = self.h(self.true_pos)
        y[0] += 5.0
        result = levenberg_marquardt(
            self.h, self.jac, y, np.array([5.0, 5.0]),
            weights=np.array([0.0, 1.0, 1.0, 1.0]), max_iter=100,
        )
        np.testing.assert_allclose(result.x, self.true_pos, atol=1e-6)

    def test_invalid_weights(self):
        y = self.h(self.true_pos)
        with pytest.raises(ValueError):
            levenberg_marquardt(self.h, self.jac, y, np.zeros(2), weights=np.ones(3))
        with pytest.raises(ValueError):
            levenberg_marquardt(self.h, self.jac, y, np.zeros(2), weights=-np.ones(4))

    def test_covariance_ignores_residual_size(self):
        y = self.h(self.true_pos) + np.array([0.3, -0.2, 0.4, -0.1])
        result = levenberg_marquardt(self.h, self.jac, y, self.true_pos, max_iter=100)

        J = self.jac(result.x)
        np.testing.assert_allclose(result.covariance, np.linalg.inv(J.T @ J), rtol=1e-6)


class TestTukeyWeights:
    """Test Tukey biweight IRLS weights."""

    def test_small_residuals_have_unit_weight(self):
        assert np.isclose(tukey_weights(np.array([0.0]))[0], 1.0)

    def test_weights_decrease(self):
        w = tukey_weights(np.array([0.1, 0.5, 0.9, 2.0]))
        assert np.all(np.diff(w) <= 0)
        np.testing.assert_allclose(w[1], 0.75**2)

    def test_rejects_beyond_one(self):
        w = tukey_weights(np.array([1.5, -3.0]))
        assert np.all(w < 1e-9)
        assert np.all(w > 0)
