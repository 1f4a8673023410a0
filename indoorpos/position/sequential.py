"""
Sequential robust ranging + RSSI position estimation.

Ranging is typically far less noisy than RSSI ranging, so the fingerprint
is processed in two robust passes:

1. Ranging pass over the ranging components of the readings.
2. RSSI pass over the RSSI components, seeded with the ranging position
   (unless an initial position was given explicitly).

The reported position and covariance come from the last pass that ran.
Either pass is skipped when the fingerprint does not carry enough readings
of its modality. Progress is reported over [0, 0.5] for the ranging pass and
[0.5, 1] for the RSSI pass when both run.
"""

import dataclasses
import logging
from typing import Optional

import numpy as np

from indoorpos.estimators.robust import DEFAULT_PROGRESS_DELTA, InliersData
from indoorpos.exceptions import InvalidArgumentError
from indoorpos.position.base import PositionEstimator
from indoorpos.position.config import RobustPassConfig
from indoorpos.position.listeners import PositionEstimatorListener
from indoorpos.position.robust_estimators import (
    RobustPositionEstimator,
    RobustRangingPositionEstimator,
    RobustRssiPositionEstimator,
)

logger = logging.getLogger(__name__)

RANGING = "ranging"
RSSI = "rssi"


def _pass_property(pass_name: str, name: str) -> property:
    """Property reading / replacing one field of a pass config."""
    attr = f"_{pass_name}_config"

    def getter(self):
        return getattr(getattr(self, attr), name)

    def setter(self, value):
        self._check_locked()
        setattr(self, f"{pass_name}_config",
                dataclasses.replace(getattr(self, attr), **{name: value}))

    return property(getter, setter, doc=f"{pass_name} pass setting '{name}'.")


class _PassListener(PositionEstimatorListener):
    """Forwards an inner pass's callbacks to the sequential estimator."""

    def __init__(self, outer: "SequentialRobustRangingAndRssiPositionEstimator",
                 offset: float, scale: float):
        self.outer = outer
        self.offset = offset
        self.scale = scale

    def on_estimate_next_iteration(self, estimator, iteration):
        self.outer._notify_iteration(iteration)

    def on_estimate_progress_change(self, estimator, progress):
        self.outer._notify_progress(self.offset + self.scale * progress)


class SequentialRobustRangingAndRssiPositionEstimator(PositionEstimator):
    """
    Two-pass robust estimator: ranging first, then RSSI seeded by ranging.

    Args:
        ranging_config: Settings of the ranging pass.
        rssi_config: Settings of the RSSI pass.
        Other arguments as in PositionEstimator.

    Example:
        >>> estimator = SequentialRobustRangingAndRssiPositionEstimator(
        ...     sources=sources, fingerprint=fingerprint,
        ...     source_quality_scores=np.ones(len(sources)),
        ...     reading_quality_scores=np.ones(len(fingerprint)), seed=42)
        >>> position = estimator.estimate()
        >>> estimator.covariance.shape
        (2, 2)
    """

    def __init__(
        self,
        sources=None,
        fingerprint=None,
        source_quality_scores=None,
        reading_quality_scores=None,
        listener=None,
        initial_position=None,
        ranging_config: Optional[RobustPassConfig] = None,
        rssi_config: Optional[RobustPassConfig] = None,
        result_refined: bool = True,
        covariance_kept: bool = True,
        progress_delta: float = DEFAULT_PROGRESS_DELTA,
        seed=None,
        dimensions: int = 2,
    ):
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
        self._ranging_config = self._validate_config(
            ranging_config if ranging_config is not None else RobustPassConfig()
        )
        self._rssi_config = self._validate_config(
            rssi_config if rssi_config is not None else RobustPassConfig()
        )
        self._ranging_estimator: Optional[RobustRangingPositionEstimator] = None
        self._rssi_estimator: Optional[RobustRssiPositionEstimator] = None
        self._clear_pass_results()
        self._rebuild()

    def _validate_config(self, config: RobustPassConfig) -> RobustPassConfig:
        if not isinstance(config, RobustPassConfig):
            raise InvalidArgumentError("pass config must be a RobustPassConfig")
        if config.subset_size(self._dimensions) < self.min_required_sources:
            raise InvalidArgumentError(
                f"preliminary_subset_size must be at least {self.min_required_sources}"
            )
        return config

    # -------------------------------------------------------------------------
    # Pass configuration
    # -------------------------------------------------------------------------
    @property
    def ranging_config(self) -> RobustPassConfig:
        return self._ranging_config

    @ranging_config.setter
    def ranging_config(self, config: RobustPassConfig) -> None:
        self._check_locked()
        self._ranging_config = self._validate_config(config)
        self._rebuild()

    @property
    def rssi_config(self) -> RobustPassConfig:
        return self._rssi_config

    @rssi_config.setter
    def rssi_config(self, config: RobustPassConfig) -> None:
        self._check_locked()
        self._rssi_config = self._validate_config(config)
        self._rebuild()

    ranging_robust_method = _pass_property(RANGING, "robust_method")
    ranging_threshold = _pass_property(RANGING, "threshold")
    ranging_confidence = _pass_property(RANGING, "confidence")
    ranging_max_iterations = _pass_property(RANGING, "max_iterations")
    ranging_preliminary_subset_size = _pass_property(RANGING, "preliminary_subset_size")
    ranging_preliminary_solution_refined = _pass_property(
        RANGING, "preliminary_solution_refined"
    )
    ranging_linear_solver_used = _pass_property(RANGING, "linear_solver_used")
    ranging_homogeneous_linear_solver_used = _pass_property(
        RANGING, "homogeneous_linear_solver_used"
    )
    ranging_radio_source_position_covariance_used = _pass_property(
        RANGING, "radio_source_position_covariance_used"
    )
    ranging_evenly_distribute_readings = _pass_property(RANGING, "evenly_distribute_readings")
    ranging_fallback_distance_standard_deviation = _pass_property(
        RANGING, "fallback_distance_standard_deviation"
    )

    rssi_robust_method = _pass_property(RSSI, "robust_method")
    rssi_threshold = _pass_property(RSSI, "threshold")
    rssi_confidence = _pass_property(RSSI, "confidence")
    rssi_max_iterations = _pass_property(RSSI, "max_iterations")
    rssi_preliminary_subset_size = _pass_property(RSSI, "preliminary_subset_size")
    rssi_preliminary_solution_refined = _pass_property(RSSI, "preliminary_solution_refined")
    rssi_linear_solver_used = _pass_property(RSSI, "linear_solver_used")
    rssi_homogeneous_linear_solver_used = _pass_property(
        RSSI, "homogeneous_linear_solver_used"
    )
    rssi_radio_source_position_covariance_used = _pass_property(
        RSSI, "radio_source_position_covariance_used"
    )
    rssi_evenly_distribute_readings = _pass_property(RSSI, "evenly_distribute_readings")
    rssi_fallback_distance_standard_deviation = _pass_property(
        RSSI, "fallback_distance_standard_deviation"
    )

    # -------------------------------------------------------------------------
    # Working state
    # -------------------------------------------------------------------------
    def _pass_seed(self, index: int):
        if self._seed is None:
            return None
        if isinstance(self._seed, np.random.SeedSequence):
            return np.random.SeedSequence(
                self._seed.entropy, spawn_key=self._seed.spawn_key + (index,)
            )
        return np.random.SeedSequence(self._seed, spawn_key=(index,))

    def _rebuild(self) -> None:
        if self._sources is None or self._fingerprint is None:
            self._ranging_estimator = None
            self._rssi_estimator = None
            return

        source_scores, reading_scores = self._usable_quality_scores()
        common = dict(
            sources=self._sources,
            fingerprint=self._fingerprint,
            source_quality_scores=source_scores,
            reading_quality_scores=reading_scores,
            dimensions=self._dimensions,
        )
        self._ranging_estimator = RobustRangingPositionEstimator(
            config=self._ranging_config, **common
        )
        self._rssi_estimator = RobustRssiPositionEstimator(
            config=self._rssi_config, **common
        )

    def _pass_ready(self, estimator: Optional[RobustPositionEstimator]) -> bool:
        return estimator is not None and estimator.is_ready

    @property
    def ranging_estimator(self) -> Optional[RobustRangingPositionEstimator]:
        return self._ranging_estimator

    @property
    def rssi_estimator(self) -> Optional[RobustRssiPositionEstimator]:
        return self._rssi_estimator

    def _concatenate(self, name: str) -> Optional[np.ndarray]:
        arrays = [
            getattr(e, name)
            for e in (self._ranging_estimator, self._rssi_estimator)
            if e is not None and e.num_measurements > 0
        ]
        if not arrays:
            return None
        return np.concatenate(arrays)

    @property
    def positions(self) -> Optional[np.ndarray]:
        """Source positions of both passes (ranging entries first)."""
        return self._concatenate("positions")

    @property
    def distances(self) -> Optional[np.ndarray]:
        return self._concatenate("distances")

    @property
    def distance_standard_deviations(self) -> Optional[np.ndarray]:
        return self._concatenate("distance_standard_deviations")

    # -------------------------------------------------------------------------
    # Estimation
    # -------------------------------------------------------------------------
    @property
    def _quality_scores_required(self) -> bool:
        return (
            self._ranging_config.quality_scores_required
            or self._rssi_config.quality_scores_required
        )

    @property
    def _position_covariance_used(self) -> bool:
        return (
            self._ranging_config.radio_source_position_covariance_used
            or self._rssi_config.radio_source_position_covariance_used
        )

    def _has_enough_measurements(self) -> bool:
        return self._pass_ready(self._ranging_estimator) or self._pass_ready(
            self._rssi_estimator
        )

    def _clear_pass_results(self) -> None:
        self._ranging_estimated_position: Optional[np.ndarray] = None
        self._rssi_estimated_position: Optional[np.ndarray] = None
        self._ranging_inliers_data: Optional[InliersData] = None
        self._rssi_inliers_data: Optional[InliersData] = None

    def _clear_results(self) -> None:
        super()._clear_results()
        self._clear_pass_results()

    def _run_pass(self, estimator, index, offset, scale, progress_delta, initial_position):
        estimator.listener = _PassListener(self, offset, scale)
        estimator.result_refined = self._result_refined
        estimator.covariance_kept = self._covariance_kept
        estimator.progress_delta = progress_delta
        estimator.seed = self._pass_seed(index)
        estimator.initial_position = initial_position
        return estimator.estimate()

    def _estimate(self) -> None:
        run_ranging = self._pass_ready(self._ranging_estimator)
        run_rssi = self._pass_ready(self._rssi_estimator)

        scale = 0.5 if run_ranging and run_rssi else 1.0
        progress_delta = min(1.0, self._progress_delta / scale)

        final = None
        if run_ranging:
            self._ranging_estimated_position = self._run_pass(
                self._ranging_estimator, 0, 0.0, scale, progress_delta, self._initial_position
            )
            self._ranging_inliers_data = self._ranging_estimator.inliers_data
            final = self._ranging_estimator
        else:
            logger.debug("ranging pass skipped: not enough ranging readings")

        if run_rssi:
            seed_position = self._initial_position
            if seed_position is None:
                seed_position = self._ranging_estimated_position
            self._rssi_estimated_position = self._run_pass(
                self._rssi_estimator, 1, 1.0 - scale, scale, progress_delta, seed_position
            )
            self._rssi_inliers_data = self._rssi_estimator.inliers_data
            final = self._rssi_estimator
        else:
            logger.debug("RSSI pass skipped: not enough RSSI readings")

        self._estimated_position = final.estimated_position
        self._covariance = final.covariance
        self._inliers_data = final.inliers_data

    # -------------------------------------------------------------------------
    # Per-pass results
    # -------------------------------------------------------------------------
    @property
    def ranging_estimated_position(self) -> Optional[np.ndarray]:
        return self._ranging_estimated_position

    @property
    def rssi_estimated_position(self) -> Optional[np.ndarray]:
        return self._rssi_estimated_position

    @property
    def ranging_inliers_data(self) -> Optional[InliersData]:
        return self._ranging_inliers_data

    @property
    def rssi_inliers_data(self) -> Optional[InliersData]:
        return self._rssi_inliers_data
