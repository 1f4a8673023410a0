"""
Radio model: sources, readings, fingerprints and measurement models.

Submodules:
    measurement_models: dBm conversions, path-loss models, RSSI ranging
    sources: radio source value objects
    readings: ranging / RSSI reading value objects
    fingerprint: collections of readings taken at one location
"""

from indoorpos.radio.fingerprint import Fingerprint, FingerprintLocated, as_fingerprint
from indoorpos.radio.measurement_models import (
    DEFAULT_FREQUENCY,
    DEFAULT_PATH_LOSS_EXPONENT,
    SPEED_OF_LIGHT,
    dbm_to_power,
    free_space_reference_power,
    power_to_dbm,
    propagate_variances_to_distance_variance,
    received_power_dbm,
    rss_pathloss,
    rssi_distance_gradient,
    rssi_to_distance,
    wavelength_factor,
)
from indoorpos.radio.readings import (
    RangingAndRssiReading,
    RangingAndRssiReadingLocated,
    RangingReading,
    RangingReadingLocated,
    Reading,
    ReadingType,
    RssiReading,
    RssiReadingLocated,
)
from indoorpos.radio.sources import (
    RadioSource,
    RadioSourceLocated,
    RadioSourceType,
    RadioSourceWithPower,
    RadioSourceWithPowerAndLocated,
)

__all__ = [
    # Constants
    "SPEED_OF_LIGHT",
    "DEFAULT_FREQUENCY",
    "DEFAULT_PATH_LOSS_EXPONENT",
    # Measurement models
    "dbm_to_power",
    "power_to_dbm",
    "wavelength_factor",
    "free_space_reference_power",
    "rss_pathloss",
    "received_power_dbm",
    "rssi_to_distance",
    "rssi_distance_gradient",
    "propagate_variances_to_distance_variance",
    # Sources
    "RadioSourceType",
    "RadioSource",
    "RadioSourceWithPower",
    "RadioSourceLocated",
    "RadioSourceWithPowerAndLocated",
    # Readings
    "ReadingType",
    "Reading",
    "RangingReading",
    "RssiReading",
    "RangingAndRssiReading",
    "RangingReadingLocated",
    "RssiReadingLocated",
    "RangingAndRssiReadingLocated",
    # Fingerprints
    "Fingerprint",
    "FingerprintLocated",
    "as_fingerprint",
]
