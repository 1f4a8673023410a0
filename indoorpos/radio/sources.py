"""Radio source value objects.

A radio source is anything a receiver can range to or measure RSSI from
(WiFi access point, BLE beacon). Sources are identified by their identifier
(e.g. BSSID) and type; two instances with the same identity refer to the
same physical transmitter regardless of their other attributes.

Class hierarchy:
    RadioSource
    ├── RadioSourceWithPower        transmitted power and path-loss model
    ├── RadioSourceLocated          known position (+ optional covariance)
    └── RadioSourceWithPowerAndLocated
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

import numpy as np

from indoorpos.exceptions import InvalidArgumentError
from indoorpos.radio.measurement_models import (
    DEFAULT_FREQUENCY,
    DEFAULT_PATH_LOSS_EXPONENT,
)


class RadioSourceType(Enum):
    WIFI_ACCESS_POINT = "wifi_access_point"
    BEACON = "beacon"


def _check_standard_deviation(value: Optional[float], name: str) -> None:
    if value is not None and not value > 0:
        raise InvalidArgumentError(f"{name} must be positive, got {value}")


def _as_position(position, name: str = "position") -> np.ndarray:
    position = np.asarray(position, dtype=float)
    if position.ndim != 1 or position.shape[0] not in (2, 3):
        raise InvalidArgumentError(
            f"{name} must be a 2D or 3D point, got shape {position.shape}"
        )
    if not np.all(np.isfinite(position)):
        raise InvalidArgumentError(f"{name} must be finite")
    return position


def _as_covariance(covariance, dim: int, name: str = "position_covariance") -> np.ndarray:
    covariance = np.asarray(covariance, dtype=float)
    if covariance.shape != (dim, dim):
        raise InvalidArgumentError(
            f"{name} must have shape ({dim}, {dim}), got {covariance.shape}"
        )
    return covariance


@dataclass(frozen=True, eq=False)
class RadioSource:
    """
    A radio transmitter identified by its identifier.

    Attributes:
        identifier: Unique identifier such as a BSSID.
        frequency: Carrier frequency in Hz (must be positive).
        source_type: Kind of transmitter.
    """

    identifier: str
    frequency: float = DEFAULT_FREQUENCY
    source_type: RadioSourceType = RadioSourceType.WIFI_ACCESS_POINT

    def __post_init__(self) -> None:
        if self.identifier is None or self.identifier == "":
            raise InvalidArgumentError("identifier must be a non-empty string")
        if not self.frequency > 0:
            raise InvalidArgumentError(f"frequency must be positive, got {self.frequency}")

    def __eq__(self, other) -> bool:
        if not isinstance(other, RadioSource):
            return NotImplemented
        return (
            self.identifier == other.identifier
            and self.source_type == other.source_type
        )

    def __hash__(self) -> int:
        return hash((self.identifier, self.source_type))

    @property
    def has_power(self) -> bool:
        return False

    @property
    def is_located(self) -> bool:
        return False


@dataclass(frozen=True, eq=False)
class RadioSourceLocated(RadioSource):
    """
    Radio source at a known (or previously estimated) position.

    Attributes:
        position: Source position, shape (2,) or (3,).
        position_covariance: Optional position covariance, shape (d, d).
    """

    position: Optional[np.ndarray] = None
    position_covariance: Optional[np.ndarray] = None

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.position is None:
            raise InvalidArgumentError("position is required for a located source")
        position = _as_position(self.position)
        object.__setattr__(self, "position", position)
        if self.position_covariance is not None:
            object.__setattr__(
                self,
                "position_covariance",
                _as_covariance(self.position_covariance, position.shape[0]),
            )

    @property
    def is_located(self) -> bool:
        return True

    @property
    def dimensions(self) -> int:
        return self.position.shape[0]


@dataclass(frozen=True, eq=False)
class RadioSourceWithPower(RadioSource):
    """
    Radio source with a known transmitted power and path-loss model.

    Attributes:
        transmitted_power_dbm: Transmitted power in dBm.
        transmitted_power_standard_deviation: Optional std-dev of the
            transmitted power in dB.
        path_loss_exponent: Path-loss exponent, 2.0 for free space.
        path_loss_exponent_standard_deviation: Optional std-dev of the
            path-loss exponent.
    """

    transmitted_power_dbm: Optional[float] = None
    transmitted_power_standard_deviation: Optional[float] = None
    path_loss_exponent: float = DEFAULT_PATH_LOSS_EXPONENT
    path_loss_exponent_standard_deviation: Optional[float] = None

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.transmitted_power_dbm is None:
            raise InvalidArgumentError("transmitted_power_dbm is required")
        if not self.path_loss_exponent > 0:
            raise InvalidArgumentError(
                f"path_loss_exponent must be positive, got {self.path_loss_exponent}"
            )
        _check_standard_deviation(
            self.transmitted_power_standard_deviation,
            "transmitted_power_standard_deviation",
        )
        _check_standard_deviation(
            self.path_loss_exponent_standard_deviation,
            "path_loss_exponent_standard_deviation",
        )

    @property
    def has_power(self) -> bool:
        return True

    @property
    def transmitted_power_variance(self) -> Optional[float]:
        if self.transmitted_power_standard_deviation is None:
            return None
        return self.transmitted_power_standard_deviation ** 2

    @property
    def path_loss_exponent_variance(self) -> Optional[float]:
        if self.path_loss_exponent_standard_deviation is None:
            return None
        return self.path_loss_exponent_standard_deviation ** 2


@dataclass(frozen=True, eq=False)
class RadioSourceWithPowerAndLocated(RadioSourceWithPower, RadioSourceLocated):
    """Located radio source with a known transmitted power and path-loss model."""
