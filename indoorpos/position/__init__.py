"""
Robust position estimators over radio fingerprints.

Submodules:
    config: RobustPassConfig, settings of one robust pass
    listeners: lifecycle / progress listener interface
    helper: fingerprint to lateration input conversion
    reading_sorter: quality ordering for evenly distributed sampling
    robust_estimators: single-pass ranging, RSSI and mixed estimators
    sequential: two-pass ranging then RSSI estimator
"""

from indoorpos.position.base import PositionEstimator
from indoorpos.position.config import (
    DEFAULT_FALLBACK_DISTANCE_STANDARD_DEVIATION,
    DEFAULT_ROBUST_METHOD,
    RobustPassConfig,
)
from indoorpos.position.helper import MeasurementArrays, build_measurement_arrays
from indoorpos.position.listeners import CallbackListener, PositionEstimatorListener
from indoorpos.position.reading_sorter import (
    SortedReading,
    SortedSource,
    evenly_distributed_quality_scores,
    sort_readings,
)
from indoorpos.position.robust_estimators import (
    RobustPositionEstimator,
    RobustRangingAndRssiPositionEstimator,
    RobustRangingPositionEstimator,
    RobustRssiPositionEstimator,
)
from indoorpos.position.sequential import SequentialRobustRangingAndRssiPositionEstimator

__all__ = [
    # Configuration
    "RobustPassConfig",
    "DEFAULT_ROBUST_METHOD",
    "DEFAULT_FALLBACK_DISTANCE_STANDARD_DEVIATION",
    # Listeners
    "PositionEstimatorListener",
    "CallbackListener",
    # Helpers
    "MeasurementArrays",
    "build_measurement_arrays",
    "SortedSource",
    "SortedReading",
    "sort_readings",
    "evenly_distributed_quality_scores",
    # Estimators
    "PositionEstimator",
    "RobustPositionEstimator",
    "RobustRangingPositionEstimator",
    "RobustRssiPositionEstimator",
    "RobustRangingAndRssiPositionEstimator",
    "SequentialRobustRangingAndRssiPositionEstimator",
]
