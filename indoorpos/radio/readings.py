"""Reading value objects.

A reading associates a radio source with the quantities measured against it
at one receiver location: a ranged distance, an RSSI value, or both.
Located readings additionally carry the position where they were sampled
and are used to build calibration fingerprints.
"""

from dataclasses import dataclass
from enum import Enum
from typing import ClassVar, Optional

import numpy as np

from indoorpos.exceptions import InvalidArgumentError
from indoorpos.radio.sources import RadioSource, _as_covariance, _as_position


class ReadingType(Enum):
    # Declaration order is the preference order used when sorting readings
    RANGING = 0
    RANGING_AND_RSSI = 1
    RSSI = 2


def _check_distance(distance: float, std: Optional[float]) -> None:
    if distance is None or not distance >= 0:
        raise InvalidArgumentError(f"distance must be non-negative, got {distance}")
    if std is not None and not std > 0:
        raise InvalidArgumentError(
            f"distance_standard_deviation must be positive, got {std}"
        )


def _check_rssi(rssi: float, std: Optional[float]) -> None:
    if rssi is None or not np.isfinite(rssi):
        raise InvalidArgumentError(f"rssi must be a finite value, got {rssi}")
    if std is not None and not std > 0:
        raise InvalidArgumentError(f"rssi_standard_deviation must be positive, got {std}")


def _check_measurement_counts(attempted: int, successful: int) -> None:
    if attempted < 1:
        raise InvalidArgumentError("num_attempted_measurements must be at least 1")
    if successful < 1 or successful > attempted:
        raise InvalidArgumentError(
            "num_successful_measurements must be between 1 and "
            f"num_attempted_measurements ({attempted}), got {successful}"
        )


@dataclass(frozen=True)
class Reading:
    """Base class for all readings of a radio source."""

    reading_type: ClassVar[ReadingType]

    source: RadioSource

    def __post_init__(self) -> None:
        if not isinstance(self.source, RadioSource):
            raise InvalidArgumentError("source must be a RadioSource")

    @property
    def has_ranging(self) -> bool:
        return self.reading_type in (ReadingType.RANGING, ReadingType.RANGING_AND_RSSI)

    @property
    def has_rssi(self) -> bool:
        return self.reading_type in (ReadingType.RSSI, ReadingType.RANGING_AND_RSSI)


@dataclass(frozen=True)
class RangingReading(Reading):
    """
    Distance to a radio source measured by ranging (e.g. WiFi RTT).

    Attributes:
        distance: Measured distance in meters (>= 0).
        distance_standard_deviation: Optional std-dev in meters (> 0).
        num_attempted_measurements: Ranging attempts averaged into distance.
        num_successful_measurements: Successful attempts.
    """

    reading_type: ClassVar[ReadingType] = ReadingType.RANGING

    distance: float
    distance_standard_deviation: Optional[float] = None
    num_attempted_measurements: int = 1
    num_successful_measurements: int = 1

    def __post_init__(self) -> None:
        super().__post_init__()
        _check_distance(self.distance, self.distance_standard_deviation)
        _check_measurement_counts(
            self.num_attempted_measurements, self.num_successful_measurements
        )


@dataclass(frozen=True)
class RssiReading(Reading):
    """
    Received signal strength from a radio source.

    Attributes:
        rssi: Received power in dBm.
        rssi_standard_deviation: Optional std-dev in dB (> 0).
    """

    reading_type: ClassVar[ReadingType] = ReadingType.RSSI

    rssi: float
    rssi_standard_deviation: Optional[float] = None

    def __post_init__(self) -> None:
        super().__post_init__()
        _check_rssi(self.rssi, self.rssi_standard_deviation)


@dataclass(frozen=True)
class RangingAndRssiReading(Reading):
    """Reading carrying both a ranged distance and an RSSI value."""

    reading_type: ClassVar[ReadingType] = ReadingType.RANGING_AND_RSSI

    distance: float
    rssi: float
    distance_standard_deviation: Optional[float] = None
    rssi_standard_deviation: Optional[float] = None
    num_attempted_measurements: int = 1
    num_successful_measurements: int = 1

    def __post_init__(self) -> None:
        super().__post_init__()
        _check_distance(self.distance, self.distance_standard_deviation)
        _check_rssi(self.rssi, self.rssi_standard_deviation)
        _check_measurement_counts(
            self.num_attempted_measurements, self.num_successful_measurements
        )

    def to_ranging_reading(self) -> RangingReading:
        return RangingReading(
            source=self.source,
            distance=self.distance,
            distance_standard_deviation=self.distance_standard_deviation,
            num_attempted_measurements=self.num_attempted_measurements,
            num_successful_measurements=self.num_successful_measurements,
        )

    def to_rssi_reading(self) -> RssiReading:
        return RssiReading(
            source=self.source,
            rssi=self.rssi,
            rssi_standard_deviation=self.rssi_standard_deviation,
        )


class _LocatedMixin:
    """Validation shared by readings sampled at a known position."""

    def _check_location(self) -> None:
        if self.position is None:
            raise InvalidArgumentError("position is required for a located reading")
        position = _as_position(self.position)
        object.__setattr__(self, "position", position)
        if self.position_covariance is not None:
            object.__setattr__(
                self,
                "position_covariance",
                _as_covariance(self.position_covariance, position.shape[0]),
            )


@dataclass(frozen=True, eq=False)
class RangingReadingLocated(_LocatedMixin, RangingReading):
    position: Optional[np.ndarray] = None
    position_covariance: Optional[np.ndarray] = None

    def __post_init__(self) -> None:
        super().__post_init__()
        self._check_location()


@dataclass(frozen=True, eq=False)
class RssiReadingLocated(_LocatedMixin, RssiReading):
    position: Optional[np.ndarray] = None
    position_covariance: Optional[np.ndarray] = None

    def __post_init__(self) -> None:
        super().__post_init__()
        self._check_location()


@dataclass(frozen=True, eq=False)
class RangingAndRssiReadingLocated(_LocatedMixin, RangingAndRssiReading):
    position: Optional[np.ndarray] = None
    position_covariance: Optional[np.ndarray] = None

    def __post_init__(self) -> None:
        super().__post_init__()
        self._check_location()
