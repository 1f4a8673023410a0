"""
Robust position estimators for a single robust pass.

- RobustRangingPositionEstimator: ranging distances only
- RobustRssiPositionEstimator: distances implied by RSSI readings only
- RobustRangingAndRssiPositionEstimator: both modalities mixed in one pass

Each estimator converts its fingerprint into (position, distance, std-dev)
entries whenever an input changes, so estimate() only runs the robust
lateration.
"""

import logging
from typing import ClassVar, Optional

import numpy as np

from indoorpos.estimators.robust import DEFAULT_PROGRESS_DELTA, RobustLaterationSolver
from indoorpos.exceptions import InvalidArgumentError
from indoorpos.position.base import PositionEstimator
from indoorpos.position.config import RobustPassConfig, config_property, with_options
from indoorpos.position.helper import MeasurementArrays, build_measurement_arrays
from indoorpos.position.reading_sorter import evenly_distributed_quality_scores

logger = logging.getLogger(__name__)


class RobustPositionEstimator(PositionEstimator):
    """
    Position estimator running one robust lateration pass.

    Pass settings are given either as a RobustPassConfig or as keyword
    arguments naming its fields; keywords override the config.

    Example:
        >>> estimator = RobustRangingPositionEstimator(
        ...     sources=sources, fingerprint=fingerprint,
        ...     robust_method=RobustEstimatorMethod.RANSAC, threshold=0.1, seed=0)
        >>> position = estimator.estimate()
    """

    use_ranging: ClassVar[bool] = True
    use_rssi: ClassVar[bool] = True

    def __init__(
        self,
        sources=None,
        fingerprint=None,
        source_quality_scores=None,
        reading_quality_scores=None,
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
            sources=sources,
            fingerprint=fingerprint,
            source_quality_scores=source_quality_scores,
            reading_quality_scores=reading_quality_scores,
            listener=listener,
            initial_position=initial_position,
            result_refined=result_refined,
            covariance_kept=covariance_kept,
            progress_delta=progress_delta,
            seed=seed,
            dimensions=dimensions,
        )
        self._config = self._validate_config(config)
        self._measurements: Optional[MeasurementArrays] = None
        self._rebuild()

    def _validate_config(self, config: RobustPassConfig) -> RobustPassConfig:
        if not isinstance(config, RobustPassConfig):
            raise InvalidArgumentError("config must be a RobustPassConfig")
        if config.subset_size(self._dimensions) < self.min_required_sources:
            raise InvalidArgumentError(
                f"preliminary_subset_size must be at least {self.min_required_sources}"
            )
        return config

    @property
    def config(self) -> RobustPassConfig:
        return self._config

    @config.setter
    def config(self, config: RobustPassConfig) -> None:
        self._check_locked()
        self._config = self._validate_config(config)
        self._rebuild()

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
    evenly_distribute_readings = config_property("evenly_distribute_readings")
    fallback_distance_standard_deviation = config_property(
        "fallback_distance_standard_deviation"
    )

    # -------------------------------------------------------------------------
    # Working arrays
    # -------------------------------------------------------------------------
    def _rebuild(self) -> None:
        if self._sources is None or self._fingerprint is None:
            self._measurements = None
            return

        source_scores, reading_scores = self._usable_quality_scores()
        if self._config.evenly_distribute_readings and (
            source_scores is not None or reading_scores is not None
        ):
            source_scores, reading_scores = evenly_distributed_quality_scores(
                self._sources, self._fingerprint, source_scores, reading_scores
            )

        self._measurements = build_measurement_arrays(
            self._sources,
            self._fingerprint,
            self._config.fallback_distance_standard_deviation,
            use_ranging=self.use_ranging,
            use_rssi=self.use_rssi,
            use_position_covariance=self._config.radio_source_position_covariance_used,
            source_quality_scores=source_scores,
            reading_quality_scores=reading_scores,
        )

    @property
    def positions(self) -> Optional[np.ndarray]:
        return None if self._measurements is None else self._measurements.positions

    @property
    def distances(self) -> Optional[np.ndarray]:
        return None if self._measurements is None else self._measurements.distances

    @property
    def distance_standard_deviations(self) -> Optional[np.ndarray]:
        if self._measurements is None:
            return None
        return self._measurements.distance_standard_deviations

    @property
    def quality_scores(self) -> Optional[np.ndarray]:
        """Per-entry quality scores used for progressive sampling."""
        return None if self._measurements is None else self._measurements.quality_scores

    @property
    def num_measurements(self) -> int:
        return 0 if self._measurements is None else len(self._measurements)

    # -------------------------------------------------------------------------
    # Estimation
    # -------------------------------------------------------------------------
    @property
    def _quality_scores_required(self) -> bool:
        return self._config.quality_scores_required

    @property
    def _position_covariance_used(self) -> bool:
        return self._config.radio_source_position_covariance_used

    def _has_enough_measurements(self) -> bool:
        if self.num_measurements < self._config.subset_size(self._dimensions):
            return False
        # Repeated readings of fewer than d+1 sources cannot fix a position
        num_sources = len(np.unique(self._measurements.source_indices))
        return num_sources >= self.min_required_sources

    def _estimate(self) -> None:
        config = self._config
        m = self._measurements

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
            evenly_distribute_readings=config.evenly_distribute_readings,
            on_iteration=self._notify_iteration,
            on_progress=self._notify_progress,
        )

        logger.debug(
            "%s: %s pass over %d measurements from %d sources",
            type(self).__name__, config.robust_method.name, len(m), len(self._sources),
        )
        result = solver.solve(
            m.positions,
            m.distances,
            m.distance_standard_deviations,
            quality_scores=m.quality_scores,
            groups=m.source_indices,
            initial_position=self._initial_position,
            rng=self._new_rng(),
        )

        self._estimated_position = result.position
        self._covariance = result.covariance
        self._inliers_data = result.inliers_data


class RobustRangingPositionEstimator(RobustPositionEstimator):
    """Robust estimator using the ranging component of readings."""

    use_ranging = True
    use_rssi = False


class RobustRssiPositionEstimator(RobustPositionEstimator):
    """
    Robust estimator using RSSI readings converted to distances.

    Only sources with known transmitted power (RadioSourceWithPowerAndLocated)
    contribute.
    """

    use_ranging = False
    use_rssi = True


class RobustRangingAndRssiPositionEstimator(RobustPositionEstimator):
    """Robust estimator mixing ranging and RSSI derived distances in one pass."""

    use_ranging = True
    use_rssi = True
