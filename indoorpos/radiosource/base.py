"""
Base class for radio source estimators.

A radio source estimator inverts fingerprint positioning: readings of one
source sampled at known positions locate the source, and RSSI readings also
calibrate its transmitted power and path-loss exponent. Estimators follow
the lock and listener protocol of position estimators.
"""

import dataclasses
from abc import ABC, abstractmethod
from typing import ClassVar, List, Optional, Sequence

import numpy as np

from indoorpos.estimators.robust import InliersData
from indoorpos.exceptions import InvalidArgumentError, LockedError, NotReadyError
from indoorpos.position.listeners import PositionEstimatorListener
from indoorpos.radio.fingerprint import FingerprintLocated
from indoorpos.radio.readings import (
    RangingAndRssiReadingLocated,
    RangingReadingLocated,
    Reading,
    ReadingType,
    RssiReadingLocated,
)
from indoorpos.radio.sources import RadioSource
from indoorpos.utils.geometry import check_symmetric_positive_definite

_LOCATED_READING_TYPES = {
    ReadingType.RANGING: RangingReadingLocated,
    ReadingType.RSSI: RssiReadingLocated,
    ReadingType.RANGING_AND_RSSI: RangingAndRssiReadingLocated,
}


def is_located_reading(reading) -> bool:
    return isinstance(reading, tuple(_LOCATED_READING_TYPES.values()))


def locate_reading(reading: Reading, position, position_covariance=None) -> Reading:
    """Copy of a reading tagged with the position where it was sampled."""
    values = {f.name: getattr(reading, f.name) for f in dataclasses.fields(reading)}
    values.update(position=position, position_covariance=position_covariance)
    return _LOCATED_READING_TYPES[reading.reading_type](**values)


def located_readings_for(
    fingerprints: Sequence[FingerprintLocated], identifier: str
) -> List[Reading]:
    """
    Readings of one radio source across located fingerprints.

    Each reading is tagged with the position and position covariance of the
    fingerprint holding it. Readings keep fingerprint order.

    Example:
        >>> readings = located_readings_for(calibration_fingerprints, "ap0")
        >>> estimator = RobustRangingRadioSourceEstimator(readings, seed=0)
    """
    readings = []
    for fingerprint in fingerprints:
        if not isinstance(fingerprint, FingerprintLocated):
            raise InvalidArgumentError("fingerprints must be FingerprintLocated instances")
        for reading in fingerprint.readings_for(identifier):
            readings.append(
                locate_reading(reading, fingerprint.position, fingerprint.position_covariance)
            )
    return readings


class RadioSourceEstimator(ABC):
    """
    Abstract base class for radio source estimators.

    Args:
        readings: Located readings of a single radio source.
        listener: Receives lifecycle (and, for robust estimators, progress)
            callbacks.
        initial_position: Optional prior source position.
        covariance_kept: Compute the covariance of the estimate.
        dimensions: 2 or 3.
    """

    # Reading components consumed by the estimator
    uses_ranging: ClassVar[bool] = True
    uses_rssi: ClassVar[bool] = True

    def __init__(
        self,
        readings: Optional[Sequence[Reading]] = None,
        listener: Optional[PositionEstimatorListener] = None,
        initial_position: Optional[np.ndarray] = None,
        covariance_kept: bool = True,
        dimensions: int = 2,
    ):
        if dimensions not in (2, 3):
            raise InvalidArgumentError(f"dimensions must be 2 or 3, got {dimensions}")
        self._dimensions = dimensions
        self._locked = False

        self._readings: Optional[List[Reading]] = None
        if readings is not None:
            self._readings = self._validate_readings(readings)
        self._listener = listener
        self._initial_position = self._validate_position(initial_position)
        self._covariance_kept = bool(covariance_kept)

        self._clear_results()

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------
    def _validate_readings(self, readings) -> List[Reading]:
        if readings is None:
            raise InvalidArgumentError("readings must not be None")
        readings = list(readings)
        identifiers = set()
        for reading in readings:
            if not is_located_reading(reading):
                raise InvalidArgumentError(
                    f"readings must be located readings, got {type(reading).__name__}"
                )
            if reading.position.shape[0] != self._dimensions:
                raise InvalidArgumentError(
                    f"reading position is {reading.position.shape[0]}D, "
                    f"estimator is {self._dimensions}D"
                )
            identifiers.add(reading.source.identifier)
        if len(identifiers) > 1:
            raise InvalidArgumentError(
                f"readings must belong to one radio source, got {sorted(identifiers)}"
            )
        return readings

    def _validate_position(self, position) -> Optional[np.ndarray]:
        if position is None:
            return None
        position = np.asarray(position, dtype=float)
        if position.shape != (self._dimensions,):
            raise InvalidArgumentError(
                f"position must have shape ({self._dimensions},), got {position.shape}"
            )
        return position

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
    def readings(self) -> Optional[List[Reading]]:
        return self._readings

    @readings.setter
    def readings(self, readings: Sequence[Reading]) -> None:
        self._check_locked()
        self._readings = self._validate_readings(readings)
        self._readings_changed()

    def _readings_changed(self) -> None:
        pass

    @property
    def usable_readings(self) -> List[Reading]:
        """Readings carrying a component this estimator consumes."""
        if self._readings is None:
            return []
        return [
            r for r in self._readings
            if (self.uses_ranging and r.has_ranging) or (self.uses_rssi and r.has_rssi)
        ]

    @property
    def source(self) -> Optional[RadioSource]:
        """The radio source the readings refer to."""
        if not self._readings:
            return None
        return self._readings[0].source

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
    def covariance_kept(self) -> bool:
        return self._covariance_kept

    @covariance_kept.setter
    def covariance_kept(self, value: bool) -> None:
        self._check_locked()
        self._covariance_kept = bool(value)

    @property
    def is_locked(self) -> bool:
        return self._locked

    # -------------------------------------------------------------------------
    # Readiness
    # -------------------------------------------------------------------------
    @property
    @abstractmethod
    def min_readings(self) -> int:
        """Minimum number of usable readings."""

    def _num_distinct_positions(self, readings) -> int:
        if not readings:
            return 0
        return len(np.unique(np.array([r.position for r in readings]), axis=0))

    @property
    def is_ready(self) -> bool:
        if not self._readings:
            return False
        return len(self.usable_readings) >= self.min_readings

    @property
    def _position_covariance_used(self) -> bool:
        return False

    @abstractmethod
    def _estimate(self) -> None:
        """Run the estimation and store results."""

    # -------------------------------------------------------------------------
    # Estimation
    # -------------------------------------------------------------------------
    def _clear_results(self) -> None:
        self._estimated_position: Optional[np.ndarray] = None
        self._estimated_position_covariance: Optional[np.ndarray] = None
        self._estimated_radio_source: Optional[RadioSource] = None
        self._inliers_data: Optional[InliersData] = None

    def _check_position_covariances(self) -> None:
        if not self._position_covariance_used:
            return
        for i, reading in enumerate(self._readings):
            if reading.position_covariance is not None:
                check_symmetric_positive_definite(
                    reading.position_covariance, f"position covariance of reading {i}"
                )

    def estimate(self) -> np.ndarray:
        """
        Estimate the radio source.

        Returns:
            Estimated source position (d,), a copy of estimated_position.

        Raises:
            LockedError: If an estimation is already in progress.
            NotReadyError: If the estimator is not ready.
            RobustEstimationError: If a robust pass finds no usable consensus.
            NumericalInstabilityError: If the fit is degenerate.
        """
        self._check_locked()
        if not self.is_ready:
            raise NotReadyError("Estimator is not ready")

        self._locked = True
        try:
            self._clear_results()
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
    def estimated_position_covariance(self) -> Optional[np.ndarray]:
        return self._estimated_position_covariance

    @property
    def estimated_radio_source(self) -> Optional[RadioSource]:
        """Located source (with power for RSSI estimators) built from the estimate."""
        return self._estimated_radio_source

    @property
    def inliers_data(self) -> Optional[InliersData]:
        return self._inliers_data
