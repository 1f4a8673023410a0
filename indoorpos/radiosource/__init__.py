"""
Radio source estimators over readings sampled at known positions.

Submodules:
    base: RadioSourceEstimator and located-reading helpers
    rssi: Levenberg-Marquardt position / power / path-loss fit
    robust: robust ranging, RSSI and ranging + RSSI estimators
"""

from indoorpos.radiosource.base import (
    RadioSourceEstimator,
    is_located_reading,
    locate_reading,
    located_readings_for,
)
from indoorpos.radiosource.robust import (
    RobustRadioSourceEstimator,
    RobustRangingAndRssiRadioSourceEstimator,
    RobustRangingRadioSourceEstimator,
    RobustRssiRadioSourceEstimator,
)
from indoorpos.radiosource.rssi import (
    DEFAULT_POWER_STANDARD_DEVIATION,
    RssiRadioSourceEstimator,
)

__all__ = [
    "RadioSourceEstimator",
    "is_located_reading",
    "locate_reading",
    "located_readings_for",
    "DEFAULT_POWER_STANDARD_DEVIATION",
    "RssiRadioSourceEstimator",
    "RobustRadioSourceEstimator",
    "RobustRangingRadioSourceEstimator",
    "RobustRssiRadioSourceEstimator",
    "RobustRangingAndRssiRadioSourceEstimator",
]
