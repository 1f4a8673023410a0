"""
Unit tests for the robust radio source estimators.

Tests cover ranging, RSSI and combined estimators: accuracy with exact and
contaminated readings in 2D and 3D, readiness, settings, locking and
listener notifications.
"""

import numpy as np
import pytest

from indoorpos.estimators.robust import RobustEstimatorMethod
from indoorpos.exceptions import (
    InvalidArgumentError,
    LockedError,
    NonSymmetricPositiveDefiniteMatrixError,
    NotReadyError,
)
from indoorpos.position import CallbackListener, RobustPassConfig
from indoorpos.radio import (
    FingerprintLocated,
    RadioSource,
    RadioSourceLocated,
    RadioSourceWithPowerAndLocated,
    RangingAndRssiReadingLocated,
    RangingReading,
    RangingReadingLocated,
    RssiReadingLocated,
    received_power_dbm,
)
from indoorpos.radiosource import (
    RobustRangingAndRssiRadioSourceEstimator,
    RobustRangingRadioSourceEstimator,
    RobustRssiRadioSourceEstimator,
    located_readings_for,
)

AP = RadioSource("ap")
SOURCE_POSITION = np.array([5.0, 4.0])
TX_POWER = 12.0

READING_POSITIONS = np.array([
    [0.0, 0.0], [10.0, 0.0], [10.0, 8.0], [0.0, 8.0], [5.0, -2.0], [12.0, 4.0],
    [5.0, 10.0], [-2.0, 4.0], [2.0, 2.0], [8.0, 6.0], [3.0, 7.0], [7.5, 1.5],
])


def _distance(position, source_position=SOURCE_POSITION):
    return float(np.linalg.norm(position - source_position))


def _ranging_readings(positions=READING_POSITIONS, source_position=SOURCE_POSITION, **kwargs):
    return [
        RangingReadingLocated(
            AP, _distance(p, source_position), distance_standard_deviation=0.1,
            position=p, **kwargs,
        )
        for p in positions
    ]


def _rssi_readings(positions=READING_POSITIONS):
    return [
        RssiReadingLocated(
            AP, received_power_dbm(TX_POWER, _distance(p)), rssi_standard_deviation=1.0,
            position=p,
        )
        for p in positions
    ]


def _combined_readings(positions=READING_POSITIONS, outliers=()):
    readings = []
    for i, p in enumerate(positions):
        d = _distance(p)
        rssi = received_power_dbm(TX_POWER, d)
        if i in outliers:
            d += 10.0
            rssi += 20.0
        readings.append(RangingAndRssiReadingLocated(
            AP, distance=d, rssi=rssi, distance_standard_deviation=0.1,
            rssi_standard_deviation=1.0, position=p,
        ))
    return readings


def _outlier_readings(seed, num_readings=20, outliers=(1, 7, 12, 18)):
    """Noisy ranging from scattered positions, a fifth of them grossly biased."""
    rng = np.random.default_rng(seed)
    positions = SOURCE_POSITION + rng.uniform(-10.0, 10.0, size=(num_readings, 2))
    readings = []
    for i, p in enumerate(positions):
        d = _distance(p) + 0.05 * rng.standard_normal()
        if i in outliers:
            d += 5.0 + 10.0 * rng.uniform()
        readings.append(
            RangingReadingLocated(AP, max(d, 0.0), distance_standard_deviation=0.1, position=p)
        )
    return readings


class TestRobustRanging:
    """Test the ranging radio source estimator."""

    @pytest.mark.parametrize("method", list(RobustEstimatorMethod))
    def test_exact_ranging(self, method):
        readings = _ranging_readings()
        estimator = RobustRangingRadioSourceEstimator(
            readings, quality_scores=np.ones(len(readings)), robust_method=method, seed=0
        )
        assert estimator.is_ready

        position = estimator.estimate()

        np.testing.assert_allclose(position, SOURCE_POSITION, atol=1e-6)
        assert estimator.estimated_position_covariance.shape == (2, 2)
        assert estimator.inliers_data.num_inliers == len(readings)
        np.testing.assert_array_equal(estimator.inlier_reading_indices, np.arange(len(readings)))

        source = estimator.estimated_radio_source
        assert isinstance(source, RadioSourceLocated)
        assert not source.has_power
        assert source.identifier == "ap"
        np.testing.assert_array_equal(source.position, estimator.estimated_position)

    @pytest.mark.parametrize("method", list(RobustEstimatorMethod))
    def test_exact_ranging_3d(self, method):
        source_position = np.array([2.0, 3.0, 1.0])
        positions = np.array([
            [0.0, 0.0, 0.0], [6.0, 0.0, 0.0], [0.0, 6.0, 0.0], [0.0, 0.0, 3.0],
            [6.0, 6.0, 3.0], [3.0, 0.0, 3.0], [0.0, 3.0, 2.0],
        ])
        readings = _ranging_readings(positions, source_position)
        estimator = RobustRangingRadioSourceEstimator(
            readings, quality_scores=np.ones(len(readings)), robust_method=method,
            seed=0, dimensions=3,
        )

        np.testing.assert_allclose(estimator.estimate(), source_position, atol=1e-6)
        assert estimator.estimated_position_covariance.shape == (3, 3)

    @pytest.mark.parametrize("seed", range(5))
    @pytest.mark.parametrize("method", list(RobustEstimatorMethod))
    def test_rejects_biased_ranges(self, method, seed):
        readings = _outlier_readings(seed)
        estimator = RobustRangingRadioSourceEstimator(
            readings,
            quality_scores=np.ones(len(readings)),
            robust_method=method,
            threshold=None if method.median_based else 0.5,
            seed=seed,
        )
        estimator.estimate()

        assert np.linalg.norm(estimator.estimated_position - SOURCE_POSITION) < 0.5
        assert not set(estimator.inlier_reading_indices) & {1, 7, 12, 18}
        assert estimator.inliers_data.num_inliers >= 10

    def test_readings_from_located_fingerprints(self):
        fingerprints = [
            FingerprintLocated([RangingReading(AP, _distance(p))], position=p)
            for p in READING_POSITIONS
        ]
        readings = located_readings_for(fingerprints, "ap")
        assert all(isinstance(r, RangingReadingLocated) for r in readings)

        estimator = RobustRangingRadioSourceEstimator(
            readings, robust_method=RobustEstimatorMethod.LMEDS, seed=1
        )
        np.testing.assert_allclose(estimator.estimate(), SOURCE_POSITION, atol=1e-6)

    def test_ignores_rssi_only_readings(self):
        readings = _ranging_readings()[:4] + _rssi_readings()[4:]
        estimator = RobustRangingRadioSourceEstimator(
            readings, robust_method=RobustEstimatorMethod.RANSAC, seed=0
        )
        assert len(estimator.lateration_inputs()) == 4
        np.testing.assert_allclose(estimator.estimate(), SOURCE_POSITION, atol=1e-6)

    def test_seeded_runs_are_deterministic(self):
        readings = _outlier_readings(3)
        estimator = RobustRangingRadioSourceEstimator(
            readings, robust_method=RobustEstimatorMethod.MSAC, threshold=0.5, seed=11
        )
        first = estimator.estimate()
        np.testing.assert_array_equal(first, estimator.estimate())


class TestRobustRssi:
    """Test the RSSI radio source estimator."""

    @pytest.mark.parametrize("method", list(RobustEstimatorMethod))
    def test_exact_rssi(self, method):
        readings = _rssi_readings()
        estimator = RobustRssiRadioSourceEstimator(
            readings,
            quality_scores=np.ones(len(readings)),
            initial_transmitted_power_dbm=TX_POWER,
            robust_method=method,
            seed=0,
        )
        estimator.estimate()

        np.testing.assert_allclose(estimator.estimated_position, SOURCE_POSITION, atol=1e-5)
        assert estimator.estimated_transmitted_power_dbm == pytest.approx(TX_POWER, abs=1e-5)
        assert estimator.estimated_transmitted_power_variance > 0
        assert estimator.estimated_path_loss_exponent == 2.0

        source = estimator.estimated_radio_source
        assert isinstance(source, RadioSourceWithPowerAndLocated)
        assert source.transmitted_power_dbm == estimator.estimated_transmitted_power_dbm

    def test_refinement_corrects_initial_power(self):
        readings = _rssi_readings()
        estimator = RobustRssiRadioSourceEstimator(
            readings,
            initial_transmitted_power_dbm=TX_POWER + 1.0,
            robust_method=RobustEstimatorMethod.LMEDS,
            seed=0,
        )
        estimator.estimate()

        np.testing.assert_allclose(estimator.estimated_position, SOURCE_POSITION, atol=1e-4)
        assert estimator.estimated_transmitted_power_dbm == pytest.approx(TX_POWER, abs=1e-4)

    def test_without_refinement_reports_initial_power(self):
        estimator = RobustRssiRadioSourceEstimator(
            _rssi_readings(),
            initial_transmitted_power_dbm=TX_POWER,
            robust_method=RobustEstimatorMethod.RANSAC,
            result_refined=False,
            seed=0,
        )
        estimator.estimate()

        np.testing.assert_allclose(estimator.estimated_position, SOURCE_POSITION, atol=1e-6)
        assert estimator.estimated_transmitted_power_dbm == TX_POWER
        assert estimator.estimated_transmitted_power_variance is None
        assert estimator.estimated_position_covariance is None

    def test_requires_initial_power(self):
        estimator = RobustRssiRadioSourceEstimator(
            _rssi_readings(), robust_method=RobustEstimatorMethod.RANSAC
        )
        assert estimator.lateration_inputs() is None
        assert not estimator.is_ready
        estimator.initial_transmitted_power_dbm = TX_POWER
        assert estimator.is_ready


class TestRobustRangingAndRssi:
    """Test the combined ranging and RSSI estimator."""

    def test_position_and_power(self):
        readings = _combined_readings()
        estimator = RobustRangingAndRssiRadioSourceEstimator(
            readings, quality_scores=np.ones(len(readings)), seed=0
        )
        position = estimator.estimate()

        np.testing.assert_allclose(position, SOURCE_POSITION, atol=1e-6)
        assert estimator.estimated_transmitted_power_dbm == pytest.approx(TX_POWER, abs=1e-6)
        assert isinstance(estimator.estimated_radio_source, RadioSourceWithPowerAndLocated)

    def test_path_loss_exponent(self):
        readings = _combined_readings()
        estimator = RobustRangingAndRssiRadioSourceEstimator(
            readings,
            robust_method=RobustEstimatorMethod.RANSAC,
            path_loss_estimation_enabled=True,
            seed=0,
        )
        estimator.estimate()

        assert estimator.estimated_transmitted_power_dbm == pytest.approx(TX_POWER, abs=1e-5)
        assert estimator.estimated_path_loss_exponent == pytest.approx(2.0, abs=1e-5)
        assert estimator.estimated_path_loss_exponent_variance > 0

    def test_ranging_outliers_excluded_from_power_fit(self):
        readings = _combined_readings(outliers=(1, 7))
        estimator = RobustRangingAndRssiRadioSourceEstimator(
            readings, robust_method=RobustEstimatorMethod.RANSAC, threshold=0.5, seed=0
        )
        estimator.estimate()

        np.testing.assert_allclose(estimator.estimated_position, SOURCE_POSITION, atol=1e-6)
        assert not set(estimator.inlier_reading_indices) & {1, 7}
        assert estimator.estimated_transmitted_power_dbm == pytest.approx(TX_POWER, abs=1e-6)

    def test_power_not_estimated(self):
        estimator = RobustRangingAndRssiRadioSourceEstimator(
            _combined_readings(),
            robust_method=RobustEstimatorMethod.RANSAC,
            transmitted_power_estimation_enabled=False,
            seed=0,
        )
        estimator.estimate()
        assert estimator.estimated_transmitted_power_dbm is None
        assert isinstance(estimator.estimated_radio_source, RadioSourceLocated)
        assert not estimator.estimated_radio_source.has_power

        estimator.initial_transmitted_power_dbm = 7.0
        estimator.estimate()
        assert estimator.estimated_transmitted_power_dbm == 7.0
        assert estimator.estimated_radio_source.transmitted_power_dbm == 7.0


class TestRobustConfiguration:
    """Test readiness, validation and pass settings."""

    def test_progressive_methods_require_quality_scores(self):
        readings = _ranging_readings()
        estimator = RobustRangingRadioSourceEstimator(readings)
        assert estimator.robust_method == RobustEstimatorMethod.PROMEDS
        assert not estimator.is_ready

        estimator.quality_scores = np.ones(len(readings) - 1)
        assert not estimator.is_ready
        estimator.quality_scores = np.ones(len(readings))
        assert estimator.is_ready

    def test_not_enough_readings(self):
        estimator = RobustRangingRadioSourceEstimator(
            _ranging_readings()[:2], robust_method=RobustEstimatorMethod.RANSAC
        )
        assert estimator.min_readings == 3
        assert not estimator.is_ready
        with pytest.raises(NotReadyError):
            estimator.estimate()

    def test_repeated_positions_not_ready(self):
        positions = np.array([[0.0, 0.0], [0.0, 0.0], [10.0, 0.0], [10.0, 0.0]])
        estimator = RobustRangingRadioSourceEstimator(
            _ranging_readings(positions), robust_method=RobustEstimatorMethod.RANSAC
        )
        assert len(estimator.lateration_inputs()) == 4
        assert not estimator.is_ready

    def test_config_and_keyword_options(self):
        config = RobustPassConfig(robust_method=RobustEstimatorMethod.MSAC, threshold=0.2)
        estimator = RobustRangingRadioSourceEstimator(config=config, max_iterations=50)
        assert estimator.robust_method == RobustEstimatorMethod.MSAC
        assert estimator.threshold == 0.2
        assert estimator.max_iterations == 50

        estimator.confidence = 0.9
        assert estimator.config.confidence == 0.9
        with pytest.raises(InvalidArgumentError):
            estimator.confidence = 1.0

    def test_invalid_settings(self):
        with pytest.raises(InvalidArgumentError):
            RobustRangingRadioSourceEstimator(unknown_option=1)
        with pytest.raises(InvalidArgumentError):
            RobustRangingRadioSourceEstimator(progress_delta=2.0)
        with pytest.raises(InvalidArgumentError):
            RobustRangingRadioSourceEstimator(dimensions=3, preliminary_subset_size=3)
        with pytest.raises(InvalidArgumentError):
            RobustRssiRadioSourceEstimator(initial_path_loss_exponent=0.0)

    def test_reading_position_covariance_inflates_std(self):
        readings = _ranging_readings(position_covariance=0.5 * np.eye(2))
        estimator = RobustRangingRadioSourceEstimator(
            readings, robust_method=RobustEstimatorMethod.RANSAC
        )
        np.testing.assert_allclose(
            estimator.lateration_inputs().distance_standard_deviations,
            np.sqrt(0.1**2 + 1.0),
        )
        estimator.radio_source_position_covariance_used = False
        np.testing.assert_allclose(
            estimator.lateration_inputs().distance_standard_deviations, 0.1
        )

    def test_invalid_reading_position_covariance(self):
        readings = _ranging_readings(position_covariance=np.array([[1.0, 0.0], [0.5, 1.0]]))
        estimator = RobustRangingRadioSourceEstimator(
            readings, robust_method=RobustEstimatorMethod.RANSAC, seed=0
        )
        with pytest.raises(NonSymmetricPositiveDefiniteMatrixError):
            estimator.estimate()


class TestRobustListener:
    """Test notifications and locking."""

    def test_progress_and_lifecycle(self):
        events = []
        progress = []
        iterations = []
        listener = CallbackListener(
            on_start=lambda est: events.append("start"),
            on_end=lambda est: events.append("end"),
            on_next_iteration=lambda est, i: iterations.append(i),
            on_progress_change=lambda est, p: progress.append(p),
        )
        readings = _outlier_readings(0)
        estimator = RobustRangingRadioSourceEstimator(
            readings, listener=listener, robust_method=RobustEstimatorMethod.RANSAC,
            threshold=0.5, progress_delta=0.0, seed=0,
        )
        estimator.estimate()

        assert events == ["start", "end"]
        assert iterations
        assert progress == sorted(progress)
        assert progress[-1] == 1.0

    def test_locked_during_estimation(self):
        errors = []

        def on_progress(est, p):
            try:
                est.threshold = 1.0
            except LockedError as e:
                errors.append(e)

        estimator = RobustRangingRadioSourceEstimator(
            _ranging_readings(),
            listener=CallbackListener(on_progress_change=on_progress),
            robust_method=RobustEstimatorMethod.RANSAC,
            progress_delta=0.0,
            seed=0,
        )
        estimator.estimate()

        assert errors
        assert not estimator.is_locked
        assert estimator.threshold is None
