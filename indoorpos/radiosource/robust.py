"""
Robust radio source estimators.

- RobustRangingRadioSourceEstimator: source position from ranging readings
- RobustRssiRadioSourceEstimator: source position from RSSI readings turned
  into distances with an initial transmitted power, then refined jointly
  with power and path-loss exponent over the inliers
- RobustRangingAndRssiRadioSourceEstimator: position from the ranging
  components, power and path-loss exponent from the RSSI components of
  readings consistent with that position

The robust pass is the lateration solver used for position estimation with
reading positions in place of source positions.
"""

import logging
from typing import Optional

import numpy as np

from indoorpos.estimators.robust import DEFAULT_PROGRESS_DELTA, RobustLaterationSolver
from indoorpos.exceptions import InvalidArgumentError, NumericalInstabilityError
from indoorpos.position.base import validate_quality_scores
from indoorpos.position.config import RobustPassConfig, config_property, with_options
from indoorpos.position.helper import MeasurementArrays
from indoorpos.radio.measurement_models import (
    DEFAULT_PATH_LOSS_EXPONENT,
    dbm_to_power,
    propagate_variances_to_distance_variance,
    rssi_to_distance,
)
from indoorpos.radio.sources import RadioSourceLocated, RadioSourceWithPowerAndLocated
from indoorpos.radiosource.base import RadioSourceEstimator
from indoorpos.radiosource.rssi import DEFAULT_POWER_STANDARD_DEVIATION, RssiRadioSourceEstimator

logger = logging.getLogger(__name__)


class RobustRadioSourceEstimator(RadioSourceEstimator):
    """
    Radio source estimator running one robust lateration pass.

    Pass settings are given either as a RobustPassConfig or as keyword
    arguments naming its fields; keywords override the config. Quality scores
    are per reading.

    Example:
        >>> estimator = RobustRangingRadioSourceEstimator(
        ...     readings, robust_method=RobustEstimatorMethod.MSAC, threshold=0.5, seed=0)
        >>> source_position = estimator.estimate()
    """

    def __init__(
        self,
        readings=None,
        quality_scores=None,
        listener=None,
        initial_position=None,
        config: Optional[RobustPassConfig] = None,
        result_refined: bool = True,
        covariance_kept: bool = True,
        progress_delta: float = DEFAULT_PROGRESS_DELTA,
        seed=None,
        dimensions: int = 2,
        **config_options,
    ):
        config = with_options(config, config_options)
        super().__init__(
            readings=readings,
            listener=listener,
            initial_position=initial_position,
            covariance_kept=covariance_kept,
            dimensions=dimensions,
        )
        self._config = self._validate_config(config)
        self._quality_scores = validate_quality_scores(quality_scores, None, "quality_scores")
        self._result_refined = bool(result_refined)
        if not 0.0 <= progress_delta <= 1.0:
            raise InvalidArgumentError(f"progress_delta must be in [0, 1], got {progress_delta}")
        self._progress_delta = float(progress_delta)
        self._seed = seed

    def _validate_config(self, config: RobustPassConfig) -> RobustPassConfig:
        if not isinstance(config, RobustPassConfig):
            raise InvalidArgumentError("config must be a RobustPassConfig")
        if config.subset_size(self._dimensions) < self._dimensions + 1:
            raise InvalidArgumentError(
                f"preliminary_subset_size must be at least {self._dimensions + 1}"
            )
        return config

    # -------------------------------------------------------------------------
    # Settings
    # -------------------------------------------------------------------------
    @property
    def config(self) -> RobustPassConfig:
        return self._config

    @config.setter
    def config(self, config: RobustPassConfig) -> None:
        self._check_locked()
        self._config = self._validate_config(config)

    robust_method = config_property("robust_method")
    threshold = config_property("threshold")
    confidence = config_property("confidence")
    max_iterations = config_property("max_iterations")
    preliminary_subset_size = config_property("preliminary_subset_size")
    preliminary_solution_refined = config_property("preliminary_solution_refined")
    linear_solver_used = config_property("linear_solver_used")
    homogeneous_linear_solver_used = config_property("homogeneous_linear_solver_used")
    radio_source_position_covariance_used = config_property(
        "radio_source_position_covariance_used"
    )
    fallback_distance_standard_deviation = config_property(
        "fallback_distance_standard_deviation"
    )

    @property
    def quality_scores(self) -> Optional[np.ndarray]:
        """Per-reading quality scores, higher is better."""
        return self._quality_scores

    @quality_scores.setter
    def quality_scores(self, scores) -> None:
        self._check_locked()
        self._quality_scores = validate_quality_scores(scores, None, "quality_scores")

    @property
    def result_refined(self) -> bool:
        return self._result_refined

    @result_refined.setter
    def result_refined(self, value: bool) -> None:
        self._check_locked()
        self._result_refined = bool(value)

    @property
    def progress_delta(self) -> float:
        return self._progress_delta

    @progress_delta.setter
    def progress_delta(self, value: float) -> None:
        self._check_locked()
        if not 0.0 <= value <= 1.0:
            raise InvalidArgumentError(f"progress_delta must be in [0, 1], got {value}")
        self._progress_delta = float(value)

    @property
    def seed(self):
        return self._seed

    @seed.setter
    def seed(self, seed) -> None:
        self._check_locked()
        self._seed = seed

    # -------------------------------------------------------------------------
    # Lateration inputs
    # -------------------------------------------------------------------------
    def _entry_distance(self, reading):
        """(distance, std-dev or None) of one reading, or None to skip it."""
        raise NotImplementedError

    def lateration_inputs(self) -> Optional[MeasurementArrays]:
        """
        Reading positions, distances, std-devs and scores fed to the robust pass.

        reading_indices point into readings; source_indices count the reading
        positions.
        """
        if not self._readings:
            return None
        positions, distances, stds, scores, indices = [], [], [], [], []
        fallback = self._config.fallback_distance_standard_deviation
        for j, reading in enumerate(self._readings):
            entry = self._entry_distance(reading)
            if entry is None:
                continue
            distance, std = entry
            std = fallback if std is None else std
            if (
                self._config.radio_source_position_covariance_used
                and reading.position_covariance is not None
            ):
                std = float(np.sqrt(std**2 + np.trace(reading.position_covariance)))
            positions.append(reading.position)
            distances.append(distance)
            stds.append(std)
            indices.append(j)
            if self._quality_scores is not None:
                scores.append(self._quality_scores[j])
        indices = np.array(indices, dtype=int)
        return MeasurementArrays(
            positions=np.array(positions, dtype=float).reshape(-1, self._dimensions),
            distances=np.array(distances, dtype=float),
            distance_standard_deviations=np.array(stds, dtype=float),
            quality_scores=np.array(scores, dtype=float) if self._quality_scores is not None
            else None,
            source_indices=np.arange(len(indices)),
            reading_indices=indices,
        )

    # -------------------------------------------------------------------------
    # Readiness
    # -------------------------------------------------------------------------
    @property
    def min_readings(self) -> int:
        return self._config.subset_size(self._dimensions)

    @property
    def _quality_scores_sized(self) -> bool:
        if self._quality_scores is None:
            return not self._config.quality_scores_required
        return self._readings is not None and len(self._quality_scores) == len(self._readings)

    @property
    def is_ready(self) -> bool:
        if not self._readings or not self._quality_scores_sized:
            return False
        m = self.lateration_inputs()
        if len(m) < self.min_readings:
            return False
        # Repeated readings at fewer than d+1 places cannot fix a position
        return len(np.unique(m.positions, axis=0)) >= self._dimensions + 1

    @property
    def _position_covariance_used(self) -> bool:
        return self._config.radio_source_position_covariance_used

    # -------------------------------------------------------------------------
    # Estimation
    # -------------------------------------------------------------------------
    def _clear_results(self) -> None:
        super()._clear_results()
        self._last_progress = 0.0
        self._inlier_reading_indices: Optional[np.ndarray] = None

    def _notify_iteration(self, iteration: int) -> None:
        if self._listener is not None:
            self._listener.on_estimate_next_iteration(self, iteration)

    def _notify_progress(self, progress: float) -> None:
        if self._listener is None:
            return
        completed = progress >= 1.0 > self._last_progress
        if completed or progress - self._last_progress >= self._progress_delta:
            self._last_progress = progress
            self._listener.on_estimate_progress_change(self, progress)

    def _robust_pass(self) -> None:
        config = self._config
        m = self.lateration_inputs()

        solver = RobustLaterationSolver(
            strategy=config.strategy(),
            confidence=config.confidence,
            max_iterations=config.max_iterations,
            progress_delta=self._progress_delta,
            preliminary_subset_size=config.subset_size(self._dimensions),
            preliminary_solution_refined=config.preliminary_solution_refined,
            result_refined=self._result_refined,
            covariance_kept=self._covariance_kept,
            linear_solver_used=config.linear_solver_used,
            homogeneous_linear_solver_used=config.homogeneous_linear_solver_used,
            evenly_distribute_readings=False,
            on_iteration=self._notify_iteration,
            on_progress=self._notify_progress,
        )

        logger.debug(
            "%s: %s pass over %d readings of source %s",
            type(self).__name__, config.robust_method.name, len(m), self.source.identifier,
        )
        result = solver.solve(
            m.positions,
            m.distances,
            m.distance_standard_deviations,
            quality_scores=m.quality_scores,
            initial_position=self._initial_position,
            rng=np.random.default_rng(self._seed),
        )

        self._estimated_position = result.position
        self._estimated_position_covariance = result.covariance
        self._inliers_data = result.inliers_data
        self._inlier_reading_indices = m.reading_indices[result.inliers_data.inliers]

    @property
    def inlier_reading_indices(self) -> Optional[np.ndarray]:
        """Indices into readings of the inliers of the robust pass."""
        return self._inlier_reading_indices


class RobustRangingRadioSourceEstimator(RobustRadioSourceEstimator):
    """Robust estimator locating a source from ranging readings."""

    uses_ranging = True
    uses_rssi = False

    def _entry_distance(self, reading):
        if not reading.has_ranging:
            return None
        return reading.distance, reading.distance_standard_deviation

    def _estimate(self) -> None:
        self._robust_pass()
        source = self.source
        self._estimated_radio_source = RadioSourceLocated(
            identifier=source.identifier,
            frequency=source.frequency,
            source_type=source.source_type,
            position=self._estimated_position,
            position_covariance=self._estimated_position_covariance,
        )


class _PowerEstimationMixin:
    """Transmitted power and path-loss settings and results."""

    def _init_power(
        self,
        initial_transmitted_power_dbm,
        initial_path_loss_exponent,
        transmitted_power_estimation_enabled,
        path_loss_estimation_enabled,
    ):
        if not initial_path_loss_exponent > 0:
            raise InvalidArgumentError(
                f"path-loss exponent must be positive, got {initial_path_loss_exponent}"
            )
        self._initial_transmitted_power_dbm = initial_transmitted_power_dbm
        self._initial_path_loss_exponent = float(initial_path_loss_exponent)
        self._transmitted_power_estimation_enabled = bool(transmitted_power_estimation_enabled)
        self._path_loss_estimation_enabled = bool(path_loss_estimation_enabled)

    @property
    def initial_transmitted_power_dbm(self) -> Optional[float]:
        return self._initial_transmitted_power_dbm

    @initial_transmitted_power_dbm.setter
    def initial_transmitted_power_dbm(self, value: Optional[float]) -> None:
        self._check_locked()
        self._initial_transmitted_power_dbm = value

    @property
    def initial_path_loss_exponent(self) -> float:
        return self._initial_path_loss_exponent

    @initial_path_loss_exponent.setter
    def initial_path_loss_exponent(self, value: float) -> None:
        self._check_locked()
        if not value > 0:
            raise InvalidArgumentError(f"path-loss exponent must be positive, got {value}")
        self._initial_path_loss_exponent = float(value)

    @property
    def transmitted_power_estimation_enabled(self) -> bool:
        return self._transmitted_power_estimation_enabled

    @transmitted_power_estimation_enabled.setter
    def transmitted_power_estimation_enabled(self, value: bool) -> None:
        self._check_locked()
        self._transmitted_power_estimation_enabled = bool(value)

    @property
    def path_loss_estimation_enabled(self) -> bool:
        return self._path_loss_estimation_enabled

    @path_loss_estimation_enabled.setter
    def path_loss_estimation_enabled(self, value: bool) -> None:
        self._check_locked()
        self._path_loss_estimation_enabled = bool(value)

    def _clear_power_results(self) -> None:
        self._estimated_transmitted_power_dbm: Optional[float] = None
        self._estimated_transmitted_power_variance: Optional[float] = None
        self._estimated_path_loss_exponent: Optional[float] = None
        self._estimated_path_loss_exponent_variance: Optional[float] = None

    def _take_power_results(self, fit: Optional[RssiRadioSourceEstimator]) -> None:
        if fit is None:
            self._estimated_transmitted_power_dbm = self._initial_transmitted_power_dbm
            self._estimated_path_loss_exponent = self._initial_path_loss_exponent
            return
        self._estimated_transmitted_power_dbm = fit.estimated_transmitted_power_dbm
        self._estimated_transmitted_power_variance = fit.estimated_transmitted_power_variance
        self._estimated_path_loss_exponent = fit.estimated_path_loss_exponent
        self._estimated_path_loss_exponent_variance = fit.estimated_path_loss_exponent_variance

    def _build_radio_source(self):
        source = self.source
        if self._estimated_transmitted_power_dbm is None:
            return RadioSourceLocated(
                identifier=source.identifier,
                frequency=source.frequency,
                source_type=source.source_type,
                position=self._estimated_position,
                position_covariance=self._estimated_position_covariance,
            )
        power_variance = self._estimated_transmitted_power_variance
        path_loss_variance = self._estimated_path_loss_exponent_variance
        return RadioSourceWithPowerAndLocated(
            identifier=source.identifier,
            frequency=source.frequency,
            source_type=source.source_type,
            position=self._estimated_position,
            position_covariance=self._estimated_position_covariance,
            transmitted_power_dbm=self._estimated_transmitted_power_dbm,
            transmitted_power_standard_deviation=(
                None if power_variance is None else float(np.sqrt(power_variance))
            ),
            path_loss_exponent=self._estimated_path_loss_exponent,
            path_loss_exponent_standard_deviation=(
                None if path_loss_variance is None else float(np.sqrt(path_loss_variance))
            ),
        )

    @property
    def estimated_transmitted_power_dbm(self) -> Optional[float]:
        return self._estimated_transmitted_power_dbm

    @property
    def estimated_transmitted_power(self) -> Optional[float]:
        """Estimated transmitted power in mW."""
        if self._estimated_transmitted_power_dbm is None:
            return None
        return dbm_to_power(self._estimated_transmitted_power_dbm)

    @property
    def estimated_transmitted_power_variance(self) -> Optional[float]:
        return self._estimated_transmitted_power_variance

    @property
    def estimated_path_loss_exponent(self) -> Optional[float]:
        return self._estimated_path_loss_exponent

    @property
    def estimated_path_loss_exponent_variance(self) -> Optional[float]:
        return self._estimated_path_loss_exponent_variance


class RobustRssiRadioSourceEstimator(_PowerEstimationMixin, RobustRadioSourceEstimator):
    """
    Robust estimator locating and calibrating a source from RSSI readings.

    RSSI readings are converted to distances with the initial transmitted
    power and path-loss exponent, so initial_transmitted_power_dbm is
    required. When result_refined is set, position, power and (optionally)
    path-loss exponent are then fitted jointly over the inliers.
    """

    uses_ranging = False
    uses_rssi = True

    def __init__(
        self,
        readings=None,
        quality_scores=None,
        listener=None,
        initial_position=None,
        initial_transmitted_power_dbm: Optional[float] = None,
        initial_path_loss_exponent: float = DEFAULT_PATH_LOSS_EXPONENT,
        transmitted_power_estimation_enabled: bool = True,
        path_loss_estimation_enabled: bool = False,
        config: Optional[RobustPassConfig] = None,
        result_refined: bool = True,
        covariance_kept: bool = True,
        progress_delta: float = DEFAULT_PROGRESS_DELTA,
        seed=None,
        dimensions: int = 2,
        **config_options,
    ):
        self._init_power(
            initial_transmitted_power_dbm,
            initial_path_loss_exponent,
            transmitted_power_estimation_enabled,
            path_loss_estimation_enabled,
        )
        super().__init__(
            readings=readings,
            quality_scores=quality_scores,
            listener=listener,
            initial_position=initial_position,
            config=config,
            result_refined=result_refined,
            covariance_kept=covariance_kept,
            progress_delta=progress_delta,
            seed=seed,
            dimensions=dimensions,
            **config_options,
        )

    def _entry_distance(self, reading):
        if not reading.has_rssi:
            return None
        rssi_std = reading.rssi_standard_deviation
        if rssi_std is None:
            rssi_std = DEFAULT_POWER_STANDARD_DEVIATION
        power = self._initial_transmitted_power_dbm
        path_loss = self._initial_path_loss_exponent
        frequency = reading.source.frequency
        distance = rssi_to_distance(reading.rssi, power, frequency, path_loss)
        variance = propagate_variances_to_distance_variance(
            reading.rssi, power, frequency, path_loss, rssi_variance=rssi_std**2
        )
        if variance is None or not variance > 0:
            return distance, None
        return distance, float(np.sqrt(variance))

    def lateration_inputs(self) -> Optional[MeasurementArrays]:
        if self._initial_transmitted_power_dbm is None:
            return None
        return super().lateration_inputs()

    @property
    def is_ready(self) -> bool:
        return self._initial_transmitted_power_dbm is not None and super().is_ready

    def _clear_results(self) -> None:
        super()._clear_results()
        self._clear_power_results()

    def _estimate(self) -> None:
        self._robust_pass()

        fit = None
        if self._result_refined:
            inliers = [self._readings[j] for j in self._inlier_reading_indices]
            fit = RssiRadioSourceEstimator(
                inliers,
                initial_position=self._estimated_position,
                initial_transmitted_power_dbm=self._initial_transmitted_power_dbm,
                initial_path_loss_exponent=self._initial_path_loss_exponent,
                transmitted_power_estimation_enabled=self._transmitted_power_estimation_enabled,
                path_loss_estimation_enabled=self._path_loss_estimation_enabled,
                covariance_kept=self._covariance_kept,
                dimensions=self._dimensions,
            )
            if fit.is_ready:
                try:
                    fit.estimate()
                except NumericalInstabilityError as e:
                    logger.warning("RSSI refinement failed, keeping robust pass result: %s", e)
                    fit = None
            else:
                logger.debug("RSSI refinement skipped: %d inliers", len(inliers))
                fit = None

        if fit is not None:
            self._estimated_position = fit.estimated_position
            if self._covariance_kept:
                self._estimated_position_covariance = fit.estimated_position_covariance
        self._take_power_results(fit)
        self._estimated_radio_source = self._build_radio_source()


class RobustRangingAndRssiRadioSourceEstimator(
    _PowerEstimationMixin, RobustRadioSourceEstimator
):
    """
    Robust estimator combining ranging and RSSI readings of a source.

    The position comes from a robust pass over the ranging components. The
    transmitted power and path-loss exponent are then fitted with that
    position held fixed, over RSSI readings not rejected by the ranging pass.
    Without an RSSI fit the initial transmitted power (if any) is reported.
    """

    uses_ranging = True
    uses_rssi = True

    def __init__(
        self,
        readings=None,
        quality_scores=None,
        listener=None,
        initial_position=None,
        initial_transmitted_power_dbm: Optional[float] = None,
        initial_path_loss_exponent: float = DEFAULT_PATH_LOSS_EXPONENT,
        transmitted_power_estimation_enabled: bool = True,
        path_loss_estimation_enabled: bool = False,
        config: Optional[RobustPassConfig] = None,
        result_refined: bool = True,
        covariance_kept: bool = True,
        progress_delta: float = DEFAULT_PROGRESS_DELTA,
        seed=None,
        dimensions: int = 2,
        **config_options,
    ):
        self._init_power(
            initial_transmitted_power_dbm,
            initial_path_loss_exponent,
            transmitted_power_estimation_enabled,
            path_loss_estimation_enabled,
        )
        super().__init__(
            readings=readings,
            quality_scores=quality_scores,
            listener=listener,
            initial_position=initial_position,
            config=config,
            result_refined=result_refined,
            covariance_kept=covariance_kept,
            progress_delta=progress_delta,
            seed=seed,
            dimensions=dimensions,
            **config_options,
        )

    def _entry_distance(self, reading):
        if not reading.has_ranging:
            return None
        return reading.distance, reading.distance_standard_deviation

    def _clear_results(self) -> None:
        super()._clear_results()
        self._clear_power_results()

    def _rssi_readings_for_fit(self):
        ranging_outliers = set(
            int(j) for j in self.lateration_inputs().reading_indices
        ) - set(int(j) for j in self._inlier_reading_indices)
        return [
            reading for j, reading in enumerate(self._readings)
            if reading.has_rssi and j not in ranging_outliers
        ]

    def _estimate(self) -> None:
        self._robust_pass()

        fit = None
        if self._transmitted_power_estimation_enabled or self._path_loss_estimation_enabled:
            fit = RssiRadioSourceEstimator(
                self._rssi_readings_for_fit(),
                initial_position=self._estimated_position,
                initial_transmitted_power_dbm=self._initial_transmitted_power_dbm,
                initial_path_loss_exponent=self._initial_path_loss_exponent,
                position_estimation_enabled=False,
                transmitted_power_estimation_enabled=self._transmitted_power_estimation_enabled,
                path_loss_estimation_enabled=self._path_loss_estimation_enabled,
                covariance_kept=self._covariance_kept,
                dimensions=self._dimensions,
            )
            if fit.is_ready:
                fit.estimate()
            else:
                logger.debug("power fit skipped: not enough RSSI readings")
                fit = None

        self._take_power_results(fit)
        self._estimated_radio_source = self._build_radio_source()
