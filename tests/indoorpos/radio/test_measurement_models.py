"""
Unit tests for radio measurement models.

Tests power conversions, path-loss models, RSSI ranging and the propagation
of model uncertainty into distance variance.
"""

import numpy as np
import pytest

from indoorpos.exceptions import InvalidArgumentError
from indoorpos.radio.measurement_models import (
    SPEED_OF_LIGHT,
    dbm_to_power,
    free_space_reference_power,
    power_to_dbm,
    propagate_variances_to_distance_variance,
    received_power_dbm,
    rss_pathloss,
    rssi_distance_gradient,
    rssi_to_distance,
    wavelength_factor,
)


class TestPowerConversion:
    """Test dBm / mW conversions."""

    def test_known_values(self):
        assert np.isclose(dbm_to_power(0.0), 1.0)
        assert np.isclose(dbm_to_power(20.0), 100.0)
        assert np.isclose(power_to_dbm(1000.0), 30.0)

    def test_round_trip(self):
        for dbm in [-90.0, -40.5, 0.0, 17.3]:
            assert np.isclose(power_to_dbm(dbm_to_power(dbm)), dbm)

    def test_non_positive_power_rejected(self):
        with pytest.raises(InvalidArgumentError):
            power_to_dbm(0.0)
        with pytest.raises(InvalidArgumentError):
            power_to_dbm(-1.0)


class TestPathLoss:
    """Test log-distance and free-space path-loss models."""

    def test_wavelength_factor(self):
        k = wavelength_factor(2.4e9)
        assert np.isclose(k, SPEED_OF_LIGHT / (4 * np.pi * 2.4e9))
        # About 1 cm at 2.4 GHz
        assert 0.009 < k < 0.011

    def test_wavelength_factor_invalid_frequency(self):
        with pytest.raises(InvalidArgumentError):
            wavelength_factor(0.0)

    def test_free_space_loss_at_one_meter(self):
        """Free-space loss at 1 m and 2.4 GHz is about 40 dB."""
        p_ref = free_space_reference_power(20.0, 2.4e9, 2.0)
        assert np.isclose(20.0 - p_ref, 40.05, atol=0.01)

    def test_rss_pathloss_decade(self):
        """One decade of distance costs 10*n dB."""
        rss = rss_pathloss(p_ref_dbm=-40.0, distance=10.0, path_loss_exp=2.5)
        assert np.isclose(rss, -65.0)

    def test_rss_pathloss_invalid_distance(self):
        with pytest.raises(InvalidArgumentError):
            rss_pathloss(-40.0, 0.0)

    def test_received_power_decreases_with_distance(self):
        near = received_power_dbm(20.0, 2.0)
        far = received_power_dbm(20.0, 20.0)
        assert near > far
        assert np.isclose(near - far, 20.0)


class TestRssiRanging:
    """Test RSSI to distance inversion."""

    @pytest.mark.parametrize("path_loss_exp", [1.6, 2.0, 3.5])
    def test_inverts_received_power(self, path_loss_exp):
        for distance in [0.5, 3.0, 27.0]:
            rssi = received_power_dbm(15.0, distance, 5e9, path_loss_exp)
            d = rssi_to_distance(rssi, 15.0, 5e9, path_loss_exp)
            assert np.isclose(d, distance)

    def test_matches_closed_form(self):
        k = wavelength_factor(2.4e9)
        d = rssi_to_distance(-60.0, 20.0, 2.4e9, 2.0)
        assert np.isclose(d, k * 10 ** (80.0 / 20.0))

    def test_invalid_path_loss_exponent(self):
        with pytest.raises(InvalidArgumentError):
            rssi_to_distance(-60.0, 20.0, 2.4e9, 0.0)


class TestVariancePropagation:
    """Test first-order uncertainty propagation."""

    def test_gradient_matches_finite_differences(self):
        rssi, pt, n = -55.0, 18.0, 2.3
        grad = rssi_distance_gradient(rssi, pt, 2.4e9, n)

        h = 1e-6
        d_pt = (rssi_to_distance(rssi, pt + h, 2.4e9, n)
                - rssi_to_distance(rssi, pt - h, 2.4e9, n)) / (2 * h)
        d_pr = (rssi_to_distance(rssi + h, pt, 2.4e9, n)
                - rssi_to_distance(rssi - h, pt, 2.4e9, n)) / (2 * h)
        d_n = (rssi_to_distance(rssi, pt, 2.4e9, n + h)
               - rssi_to_distance(rssi, pt, 2.4e9, n - h)) / (2 * h)

        np.testing.assert_allclose(grad, [d_pt, d_pr, d_n], rtol=1e-5)

    def test_power_derivatives_are_opposite(self):
        grad = rssi_distance_gradient(-70.0, 10.0)
        assert np.isclose(grad[0], -grad[1])

    def test_no_variance_returns_none(self):
        assert propagate_variances_to_distance_variance(-60.0, 20.0) is None

    def test_missing_variances_count_as_zero(self):
        grad = rssi_distance_gradient(-60.0, 20.0)
        variance = propagate_variances_to_distance_variance(
            -60.0, 20.0, rssi_variance=4.0
        )
        assert np.isclose(variance, grad[1] ** 2 * 4.0)

    def test_all_variances(self):
        grad = rssi_distance_gradient(-60.0, 20.0, 2.4e9, 2.0)
        variance = propagate_variances_to_distance_variance(
            -60.0, 20.0, 2.4e9, 2.0,
            tx_power_variance=1.0, rssi_variance=2.0, path_loss_exp_variance=0.01,
        )
        expected = grad[0] ** 2 * 1.0 + grad[1] ** 2 * 2.0 + grad[2] ** 2 * 0.01
        assert np.isclose(variance, expected)
        assert variance > 0

    def test_negative_variance_rejected(self):
        with pytest.raises(InvalidArgumentError):
            propagate_variances_to_distance_variance(-60.0, 20.0, rssi_variance=-1.0)
