"""
Unit tests for located-reading helpers and shared radio source estimator checks.
"""

import numpy as np
import pytest

from indoorpos.estimators.robust import RobustEstimatorMethod
from indoorpos.exceptions import InvalidArgumentError, NotReadyError
from indoorpos.radio import (
    Fingerprint,
    FingerprintLocated,
    RadioSource,
    RangingAndRssiReading,
    RangingAndRssiReadingLocated,
    RangingReading,
    RangingReadingLocated,
    RssiReading,
    RssiReadingLocated,
)
from indoorpos.radiosource import (
    RobustRangingRadioSourceEstimator,
    is_located_reading,
    locate_reading,
    located_readings_for,
)

AP = RadioSource("ap")
OTHER = RadioSource("other")


class TestLocateReading:
    """Test tagging readings with sampling positions."""

    def test_ranging_reading(self):
        reading = RangingReading(AP, 3.0, distance_standard_deviation=0.2)
        located = locate_reading(reading, [1.0, 2.0])

        assert isinstance(located, RangingReadingLocated)
        assert located.distance == 3.0
        assert located.distance_standard_deviation == 0.2
        np.testing.assert_array_equal(located.position, [1.0, 2.0])
        assert located.position_covariance is None
        assert is_located_reading(located)
        assert not is_located_reading(reading)

    def test_rssi_and_combined_readings(self):
        rssi = locate_reading(RssiReading(AP, -60.0), [0.0, 0.0], np.eye(2))
        combined = locate_reading(RangingAndRssiReading(AP, 2.0, -55.0), [0.0, 0.0, 1.0])

        assert isinstance(rssi, RssiReadingLocated)
        np.testing.assert_array_equal(rssi.position_covariance, np.eye(2))
        assert isinstance(combined, RangingAndRssiReadingLocated)
        assert combined.rssi == -55.0
        assert combined.position.shape == (3,)

    def test_readings_from_located_fingerprints(self):
        fingerprints = [
            FingerprintLocated(
                [RangingReading(AP, 1.0), RangingReading(OTHER, 4.0)],
                position=[0.0, 0.0],
            ),
            FingerprintLocated(
                [RssiReading(OTHER, -70.0), RangingReading(AP, 2.0)],
                position=[5.0, 0.0],
                position_covariance=0.1 * np.eye(2),
            ),
        ]
        readings = located_readings_for(fingerprints, "ap")

        assert [r.distance for r in readings] == [1.0, 2.0]
        np.testing.assert_array_equal(readings[1].position, [5.0, 0.0])
        np.testing.assert_array_equal(readings[1].position_covariance, 0.1 * np.eye(2))
        assert located_readings_for(fingerprints, "missing") == []

    def test_unlocated_fingerprint_rejected(self):
        with pytest.raises(InvalidArgumentError):
            located_readings_for([Fingerprint([RangingReading(AP, 1.0)])], "ap")


class TestEstimatorInputs:
    """Test reading validation shared by all radio source estimators."""

    def _located(self, source=AP, position=(0.0, 0.0)):
        return RangingReadingLocated(source, 1.0, position=np.array(position))

    def test_fresh_estimator_not_ready(self):
        estimator = RobustRangingRadioSourceEstimator()
        assert not estimator.is_ready
        assert estimator.source is None
        assert estimator.usable_readings == []
        with pytest.raises(NotReadyError):
            estimator.estimate()

    def test_unlocated_reading_rejected(self):
        with pytest.raises(InvalidArgumentError):
            RobustRangingRadioSourceEstimator([RangingReading(AP, 1.0)])

    def test_readings_of_several_sources_rejected(self):
        with pytest.raises(InvalidArgumentError):
            RobustRangingRadioSourceEstimator([self._located(), self._located(OTHER)])

    def test_dimension_mismatch_rejected(self):
        with pytest.raises(InvalidArgumentError):
            RobustRangingRadioSourceEstimator([self._located(position=(0.0, 0.0, 0.0))])
        with pytest.raises(InvalidArgumentError):
            RobustRangingRadioSourceEstimator(dimensions=4)

    def test_initial_position_shape(self):
        with pytest.raises(InvalidArgumentError):
            RobustRangingRadioSourceEstimator(initial_position=[1.0, 2.0, 3.0])

    def test_usable_readings_filter_by_component(self):
        readings = [
            self._located(),
            RssiReadingLocated(AP, -60.0, position=np.array([1.0, 0.0])),
        ]
        estimator = RobustRangingRadioSourceEstimator(
            readings, robust_method=RobustEstimatorMethod.RANSAC
        )
        assert estimator.usable_readings == readings[:1]
        assert estimator.source == AP
        assert not estimator.is_ready
