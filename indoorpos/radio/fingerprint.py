"""Fingerprints: the readings gathered at one receiver location."""

from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence, Tuple

import numpy as np

from indoorpos.exceptions import InvalidArgumentError
from indoorpos.radio.readings import Reading
from indoorpos.radio.sources import _as_covariance, _as_position


@dataclass(frozen=True, eq=False)
class Fingerprint:
    """
    Ordered, read-only collection of readings taken at one unknown location.

    Several readings may refer to the same radio source (repeated
    measurements), and a fingerprint may mix ranging, RSSI and combined
    readings.

    Attributes:
        readings: Readings in acquisition order.

    Examples:
        >>> ap = RadioSource("00:11:22:33:44:55")
        >>> fp = Fingerprint([RangingReading(ap, distance=3.0)])
        >>> len(fp)
        1
    """

    readings: Tuple[Reading, ...]

    def __post_init__(self) -> None:
        if self.readings is None:
            raise InvalidArgumentError("readings must not be None")
        readings = tuple(self.readings)
        for reading in readings:
            if not isinstance(reading, Reading):
                raise InvalidArgumentError(
                    f"fingerprint readings must be Reading instances, got {type(reading).__name__}"
                )
        object.__setattr__(self, "readings", readings)

    def __len__(self) -> int:
        return len(self.readings)

    def __iter__(self) -> Iterator[Reading]:
        return iter(self.readings)

    def __getitem__(self, index: int) -> Reading:
        return self.readings[index]

    def ranging_readings(self) -> List[Reading]:
        """Readings carrying a ranged distance (ranging or ranging+RSSI)."""
        return [r for r in self.readings if r.has_ranging]

    def rssi_readings(self) -> List[Reading]:
        """Readings carrying an RSSI value (RSSI or ranging+RSSI)."""
        return [r for r in self.readings if r.has_rssi]

    def readings_for(self, identifier: str) -> List[Reading]:
        return [r for r in self.readings if r.source.identifier == identifier]

    @property
    def source_identifiers(self) -> List[str]:
        """Distinct source identifiers in order of first appearance."""
        seen = {}
        for reading in self.readings:
            seen.setdefault(reading.source.identifier, None)
        return list(seen)


@dataclass(frozen=True, eq=False)
class FingerprintLocated(Fingerprint):
    """Fingerprint sampled at a known position, used for calibration."""

    position: Optional[np.ndarray] = None
    position_covariance: Optional[np.ndarray] = None

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.position is None:
            raise InvalidArgumentError("position is required for a located fingerprint")
        position = _as_position(self.position)
        object.__setattr__(self, "position", position)
        if self.position_covariance is not None:
            object.__setattr__(
                self,
                "position_covariance",
                _as_covariance(self.position_covariance, position.shape[0]),
            )


def as_fingerprint(readings: Sequence[Reading]) -> Fingerprint:
    if isinstance(readings, Fingerprint):
        return readings
    return Fingerprint(readings)
