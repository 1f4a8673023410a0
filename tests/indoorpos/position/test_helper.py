"""
Unit tests for conversion of fingerprints into lateration inputs.
"""

import numpy as np
import pytest

from indoorpos.position.helper import build_measurement_arrays
from indoorpos.radio import (
    Fingerprint,
    RadioSource,
    RadioSourceLocated,
    RadioSourceWithPowerAndLocated,
    RangingAndRssiReading,
    RangingReading,
    RssiReading,
    propagate_variances_to_distance_variance,
    received_power_dbm,
)

FALLBACK_STD = 1e-3


class TestBuildMeasurementArrays:
    """Test the per-reading conversion rules."""

    def setup_method(self):
        self.ranging_only = RadioSourceLocated("a", position=[0.0, 0.0])
        self.with_power = RadioSourceWithPowerAndLocated(
            "b", position=[10.0, 0.0], transmitted_power_dbm=20.0,
            transmitted_power_standard_deviation=1.0,
        )
        self.with_covariance = RadioSourceLocated(
            "c", position=[0.0, 10.0], position_covariance=np.diag([0.5, 0.25])
        )
        self.sources = [self.ranging_only, self.with_power, self.with_covariance]

    def test_ranging_readings(self):
        fp = Fingerprint([
            RangingReading(self.ranging_only, 3.0, distance_standard_deviation=0.2),
            RangingReading(self.with_power, 4.0),
        ])
        m = build_measurement_arrays(self.sources, fp, FALLBACK_STD, use_rssi=False)

        np.testing.assert_allclose(m.distances, [3.0, 4.0])
        np.testing.assert_allclose(m.distance_standard_deviations, [0.2, FALLBACK_STD])
        np.testing.assert_allclose(m.positions, [[0.0, 0.0], [10.0, 0.0]])
        np.testing.assert_array_equal(m.source_indices, [0, 1])
        assert m.quality_scores is None
        assert len(m) == 2

    def test_rssi_reading_converted_to_distance(self):
        rssi = received_power_dbm(20.0, 6.0)
        fp = Fingerprint([RssiReading(self.with_power, rssi, rssi_standard_deviation=2.0)])
        m = build_measurement_arrays(self.sources, fp, FALLBACK_STD)

        expected_var = propagate_variances_to_distance_variance(
            rssi, 20.0, tx_power_variance=1.0, rssi_variance=4.0
        )
        np.testing.assert_allclose(m.distances, [6.0])
        np.testing.assert_allclose(m.distance_standard_deviations, [np.sqrt(expected_var)])

    def test_rssi_without_power_is_skipped(self):
        fp = Fingerprint([RssiReading(self.ranging_only, -50.0)])
        m = build_measurement_arrays(self.sources, fp, FALLBACK_STD)
        assert len(m) == 0
        assert m.positions.shape == (0, 2)

    def test_unknown_and_unlocated_sources_are_skipped(self):
        fp = Fingerprint([
            RangingReading(RadioSource("a"), 1.0),
            RangingReading(RadioSource("zz"), 1.0),
        ])
        m = build_measurement_arrays([self.ranging_only, RadioSource("zz")], fp, FALLBACK_STD)
        # Reading of "a" matches by identity, "zz" has no location
        assert len(m) == 1
        np.testing.assert_array_equal(m.reading_indices, [0])

    def test_combined_reading_ranging_first(self):
        rssi = received_power_dbm(20.0, 9.0)
        fp = Fingerprint([RangingAndRssiReading(self.with_power, distance=8.5, rssi=rssi)])

        m = build_measurement_arrays(self.sources, fp, FALLBACK_STD)
        np.testing.assert_allclose(m.distances, [8.5, 9.0])
        np.testing.assert_array_equal(m.reading_indices, [0, 0])

        ranging = build_measurement_arrays(self.sources, fp, FALLBACK_STD, use_rssi=False)
        rssi_only = build_measurement_arrays(self.sources, fp, FALLBACK_STD, use_ranging=False)
        np.testing.assert_allclose(ranging.distances, [8.5])
        np.testing.assert_allclose(rssi_only.distances, [9.0])

    def test_position_covariance_inflates_variance(self):
        fp = Fingerprint([RangingReading(self.with_covariance, 5.0, distance_standard_deviation=0.5)])

        inflated = build_measurement_arrays(self.sources, fp, FALLBACK_STD)
        plain = build_measurement_arrays(
            self.sources, fp, FALLBACK_STD, use_position_covariance=False
        )

        np.testing.assert_allclose(inflated.distance_standard_deviations, [1.0])
        np.testing.assert_allclose(plain.distance_standard_deviations, [0.5])

    def test_quality_scores_are_summed(self):
        fp = Fingerprint([
            RangingReading(self.ranging_only, 1.0),
            RangingReading(self.with_covariance, 2.0),
        ])
        m = build_measurement_arrays(
            self.sources, fp, FALLBACK_STD,
            source_quality_scores=np.array([1.0, 2.0, 3.0]),
            reading_quality_scores=np.array([0.5, -0.5]),
        )
        np.testing.assert_allclose(m.quality_scores, [1.5, 2.5])

    @pytest.mark.parametrize("which", ["source", "reading"])
    def test_single_kind_of_quality_score(self, which):
        fp = Fingerprint([RangingReading(self.ranging_only, 1.0)])
        kwargs = (
            {"source_quality_scores": np.array([4.0, 0.0, 0.0])}
            if which == "source"
            else {"reading_quality_scores": np.array([4.0])}
        )
        m = build_measurement_arrays(self.sources, fp, FALLBACK_STD, **kwargs)
        np.testing.assert_allclose(m.quality_scores, [4.0])
