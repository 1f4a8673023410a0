"""
Base class for position estimators.

Estimators are mutable configuration objects guarded by a lock: while
estimate() runs, every mutator (and estimate() itself) raises LockedError.
The lock is a plain state flag, not a mutex; it prevents re-entrant use from
listener callbacks on the same thread.
"""

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

import numpy as np

from indoorpos.estimators.robust import DEFAULT_PROGRESS_DELTA, InliersData
from indoorpos.exceptions import InvalidArgumentError, LockedError, NotReadyError
from indoorpos.position.listeners import PositionEstimatorListener
from indoorpos.radio.fingerprint import Fingerprint, as_fingerprint
from indoorpos.radio.sources import RadioSource
from indoorpos.utils.geometry import check_symmetric_positive_definite


def validate_quality_scores(scores, expected: Optional[int], name: str) -> Optional[np.ndarray]:
    if scores is None:
        return None
    scores = np.asarray(scores, dtype=float)
    if scores.ndim != 1:
        raise InvalidArgumentError(f"{name} must be a 1D array, got shape {scores.shape}")
    if not np.all(np.isfinite(scores)):
        raise InvalidArgumentError(f"{name} must be finite")
    if expected is not None and len(scores) != expected:
        raise InvalidArgumentError(f"{name} must have length {expected}, got {len(scores)}")
    return scores


class PositionEstimator(ABC):
    """
    Abstract base class for fingerprint position estimators.

    Args:
        sources: Located radio sources, at least dimensions + 1.
        fingerprint: Readings taken at the unknown position.
        source_quality_scores: Per-source quality, higher is better.
        reading_quality_scores: Per-reading quality, higher is better.
        listener: Receives lifecycle and progress callbacks.
        initial_position: Optional prior position.
        result_refined: Refine the robust result on its inliers.
        covariance_kept: Compute the covariance of the refined position.
        progress_delta: Minimum progress change between progress callbacks.
        seed: Seed of the subset sampler (int or numpy SeedSequence). A fixed
            seed makes estimate() deterministic.
        dimensions: 2 or 3.
    """

    def __init__(
        self,
        sources: Optional[Sequence[RadioSource]] = None,
        fingerprint: Optional[Fingerprint] = None,
        source_quality_scores: Optional[np.ndarray] = None,
        reading_quality_scores: Optional[np.ndarray] = None,
        listener: Optional[PositionEstimatorListener] = None,
        initial_position: Optional[np.ndarray] = None,
        result_refined: bool = True,
        covariance_kept: bool = True,
        progress_delta: float = DEFAULT_PROGRESS_DELTA,
        seed=None,
        dimensions: int = 2,
    ):
        if dimensions not in (2, 3):
            raise InvalidArgumentError(f"dimensions must be 2 or 3, got {dimensions}")
        self._dimensions = dimensions
        self._locked = False

        self._sources: Optional[List[RadioSource]] = None
        self._fingerprint: Optional[Fingerprint] = None
        if sources is not None:
            self._sources = self._validate_sources(sources)
        if fingerprint is not None:
            self._fingerprint = as_fingerprint(fingerprint)

        self._source_quality_scores = validate_quality_scores(
            source_quality_scores, self.num_sources, "source_quality_scores"
        )
        self._reading_quality_scores = validate_quality_scores(
            reading_quality_scores, self.num_readings, "reading_quality_scores"
        )

        self._listener = listener
        self._initial_position = self._validate_position(initial_position)
        self._result_refined = bool(result_refined)
        self._covariance_kept = bool(covariance_kept)
        self._progress_delta = self._validate_progress_delta(progress_delta)
        self._seed = seed
        self._last_progress = 0.0

        self._clear_results()

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------
    @property
    def min_required_sources(self) -> int:
        return self._dimensions + 1

    def _validate_sources(self, sources) -> List[RadioSource]:
        if sources is None:
            raise InvalidArgumentError("sources must not be None")
        sources = list(sources)
        if len(sources) < self.min_required_sources:
            raise InvalidArgumentError(
                f"At least {self.min_required_sources} sources are required, got {len(sources)}"
            )
        for source in sources:
            if not isinstance(source, RadioSource) or not source.is_located:
                raise InvalidArgumentError("sources must be located radio sources")
            if source.dimensions != self._dimensions:
                raise InvalidArgumentError(
                    f"source {source.identifier} is {source.dimensions}D, "
                    f"estimator is {self._dimensions}D"
                )
        return sources

    def _validate_position(self, position) -> Optional[np.ndarray]:
        if position is None:
            return None
        position = np.asarray(position, dtype=float)
        if position.shape != (self._dimensions,):
            raise InvalidArgumentError(
                f"position must have shape ({self._dimensions},), got {position.shape}"
            )
        return position

    @staticmethod
    def _validate_progress_delta(progress_delta: float) -> float:
        if not 0.0 <= progress_delta <= 1.0:
            raise InvalidArgumentError(
                f"progress_delta must be in [0, 1], got {progress_delta}"
            )
        return float(progress_delta)

    def _check_locked(self) -> None:
        if self._locked:
            raise LockedError("Estimator is locked while an estimation is in progress")

    # -------------------------------------------------------------------------
    # Inputs
    # -------------------------------------------------------------------------
    @property
    def dimensions(self) -> int:
        return self._dimensions

    @property
    def num_sources(self) -> Optional[int]:
        return None if self._sources is None else len(self._sources)

    @property
    def num_readings(self) -> Optional[int]:
        return None if self._fingerprint is None else len(self._fingerprint)

    @property
    def sources(self) -> Optional[List[RadioSource]]:
        return self._sources

    @sources.setter
    def sources(self, sources: Sequence[RadioSource]) -> None:
        self._check_locked()
        self._sources = self._validate_sources(sources)
        self._rebuild()

    @property
    def fingerprint(self) -> Optional[Fingerprint]:
        return self._fingerprint

    @fingerprint.setter
    def fingerprint(self, fingerprint: Fingerprint) -> None:
        self._check_locked()
        if fingerprint is None:
            raise InvalidArgumentError("fingerprint must not be None")
        self._fingerprint = as_fingerprint(fingerprint)
        self._rebuild()

    @property
    def source_quality_scores(self) -> Optional[np.ndarray]:
        return self._source_quality_scores

    @source_quality_scores.setter
    def source_quality_scores(self, scores: Optional[np.ndarray]) -> None:
        self._check_locked()
        self._source_quality_scores = validate_quality_scores(
            scores, self.num_sources, "source_quality_scores"
        )
        self._rebuild()

    @property
    def reading_quality_scores(self) -> Optional[np.ndarray]:
        return self._reading_quality_scores

    @reading_quality_scores.setter
    def reading_quality_scores(self, scores: Optional[np.ndarray]) -> None:
        self._check_locked()
        self._reading_quality_scores = validate_quality_scores(
            scores, self.num_readings, "reading_quality_scores"
        )
        self._rebuild()

    @property
    def listener(self) -> Optional[PositionEstimatorListener]:
        return self._listener

    @listener.setter
    def listener(self, listener: Optional[PositionEstimatorListener]) -> None:
        self._check_locked()
        self._listener = listener

    @property
    def initial_position(self) -> Optional[np.ndarray]:
        return self._initial_position

    @initial_position.setter
    def initial_position(self, position: Optional[np.ndarray]) -> None:
        self._check_locked()
        self._initial_position = self._validate_position(position)

    @property
    def result_refined(self) -> bool:
        return self._result_refined

    @result_refined.setter
    def result_refined(self, value: bool) -> None:
        self._check_locked()
        self._result_refined = bool(value)

    @property
    def covariance_kept(self) -> bool:
        return self._covariance_kept

    @covariance_kept.setter
    def covariance_kept(self, value: bool) -> None:
        self._check_locked()
        self._covariance_kept = bool(value)

    @property
    def progress_delta(self) -> float:
        return self._progress_delta

    @progress_delta.setter
    def progress_delta(self, value: float) -> None:
        self._check_locked()
        self._progress_delta = self._validate_progress_delta(value)

    @property
    def seed(self):
        return self._seed

    @seed.setter
    def seed(self, seed) -> None:
        self._check_locked()
        self._seed = seed

    @property
    def is_locked(self) -> bool:
        return self._locked

    # -------------------------------------------------------------------------
    # Readiness
    # -------------------------------------------------------------------------
    def _quality_scores_sized(self) -> bool:
        if self._source_quality_scores is not None and (
            self._sources is None or len(self._source_quality_scores) != len(self._sources)
        ):
            return False
        if self._reading_quality_scores is not None and (
            self._fingerprint is None
            or len(self._reading_quality_scores) != len(self._fingerprint)
        ):
            return False
        return True

    def _usable_quality_scores(self):
        """Quality scores matching the current sources / fingerprint, else None."""
        source_scores = self._source_quality_scores
        reading_scores = self._reading_quality_scores
        if source_scores is not None and len(source_scores) != self.num_sources:
            source_scores = None
        if reading_scores is not None and len(reading_scores) != self.num_readings:
            reading_scores = None
        return source_scores, reading_scores

    @property
    def is_ready(self) -> bool:
        """True when sources, fingerprint and any required quality scores are usable."""
        if self._sources is None or self._fingerprint is None:
            return False
        if len(self._sources) < self.min_required_sources:
            return False
        if not self._quality_scores_sized():
            return False
        if self._quality_scores_required and (
            self._source_quality_scores is None or self._reading_quality_scores is None
        ):
            return False
        return self._has_enough_measurements()

    @property
    @abstractmethod
    def _quality_scores_required(self) -> bool:
        """Whether the configured robust method(s) need quality scores."""

    @abstractmethod
    def _has_enough_measurements(self) -> bool:
        """Whether the fingerprint yields enough usable measurements."""

    @property
    @abstractmethod
    def _position_covariance_used(self) -> bool:
        """Whether source position covariances enter the estimation."""

    @abstractmethod
    def _rebuild(self) -> None:
        """Recompute working arrays after an input changed."""

    @abstractmethod
    def _estimate(self) -> None:
        """Run the estimation and store results."""

    # -------------------------------------------------------------------------
    # Estimation
    # -------------------------------------------------------------------------
    def _clear_results(self) -> None:
        self._estimated_position: Optional[np.ndarray] = None
        self._covariance: Optional[np.ndarray] = None
        self._inliers_data: Optional[InliersData] = None

    def _check_position_covariances(self) -> None:
        if not self._position_covariance_used:
            return
        for source in self._sources:
            if source.position_covariance is not None:
                check_symmetric_positive_definite(
                    source.position_covariance,
                    f"position covariance of source {source.identifier}",
                )

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

    def _new_rng(self) -> np.random.Generator:
        return np.random.default_rng(self._seed)

    def estimate(self) -> np.ndarray:
        """
        Estimate the receiver position.

        Returns:
            Estimated position (d,), a copy of estimated_position.

        Raises:
            LockedError: If an estimation is already in progress.
            NotReadyError: If the estimator is not ready.
            RobustEstimationError: If no usable consensus is found.
            NonSymmetricPositiveDefiniteMatrixError: If a used source position
                covariance is not SPD.
        """
        self._check_locked()
        if not self.is_ready:
            raise NotReadyError("Estimator is not ready")

        self._locked = True
        try:
            self._clear_results()
            self._last_progress = 0.0
            self._check_position_covariances()

            if self._listener is not None:
                self._listener.on_estimate_start(self)

            self._estimate()

            if self._listener is not None:
                self._listener.on_estimate_end(self)
            return self._estimated_position.copy()
        finally:
            self._locked = False

    # -------------------------------------------------------------------------
    # Results
    # -------------------------------------------------------------------------
    @property
    def estimated_position(self) -> Optional[np.ndarray]:
        return self._estimated_position

    @property
    def covariance(self) -> Optional[np.ndarray]:
        return self._covariance

    @property
    def inliers_data(self) -> Optional[InliersData]:
        return self._inliers_data
