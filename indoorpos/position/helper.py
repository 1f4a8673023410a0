"""
Conversion of sources and fingerprint readings into lateration inputs.

Each usable reading becomes one (position, distance, std-dev) entry:

- Ranging readings use the measured distance and its std-dev.
- RSSI readings are converted with the free-space path-loss inversion; this
  requires a source with known transmitted power. The std-dev is obtained by
  propagating the power and path-loss exponent uncertainties.
- Ranging+RSSI readings produce both entries, ranging first.

Readings of unknown or non-located sources are skipped. A missing std-dev
is replaced by the fallback std-dev. When source position covariance is
used, each entry's variance is inflated by the covariance trace.
"""

from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from indoorpos.radio.fingerprint import Fingerprint
from indoorpos.radio.measurement_models import (
    propagate_variances_to_distance_variance,
    rssi_to_distance,
)
from indoorpos.radio.readings import ReadingType
from indoorpos.radio.sources import RadioSource


@dataclass
class MeasurementArrays:
    """Lateration inputs built from a fingerprint.

    Attributes:
        positions: Source position per entry (N × d).
        distances: Distance per entry (N,).
        distance_standard_deviations: Std-dev per entry (N,).
        quality_scores: Source score + reading score per entry, or None.
        source_indices: Index into the source list per entry (N,).
        reading_indices: Index into the fingerprint per entry (N,).
    """

    positions: np.ndarray
    distances: np.ndarray
    distance_standard_deviations: np.ndarray
    quality_scores: Optional[np.ndarray]
    source_indices: np.ndarray
    reading_indices: np.ndarray

    def __len__(self) -> int:
        return len(self.distances)


def _rssi_distance_and_std(source, rssi, rssi_std, fallback_std):
    distance = rssi_to_distance(
        rssi,
        source.transmitted_power_dbm,
        source.frequency,
        source.path_loss_exponent,
    )
    variance = propagate_variances_to_distance_variance(
        rssi,
        source.transmitted_power_dbm,
        source.frequency,
        source.path_loss_exponent,
        tx_power_variance=source.transmitted_power_variance,
        rssi_variance=None if rssi_std is None else rssi_std**2,
        path_loss_exp_variance=source.path_loss_exponent_variance,
    )
    if variance is None or not variance > 0:
        return distance, fallback_std
    return distance, float(np.sqrt(variance))


def build_measurement_arrays(
    sources: Sequence[RadioSource],
    fingerprint: Fingerprint,
    fallback_distance_standard_deviation: float,
    use_ranging: bool = True,
    use_rssi: bool = True,
    use_position_covariance: bool = True,
    source_quality_scores: Optional[np.ndarray] = None,
    reading_quality_scores: Optional[np.ndarray] = None,
) -> MeasurementArrays:
    """
    Build positions, distances, std-devs and quality scores.

    Args:
        sources: Radio sources; only located ones are used.
        fingerprint: Readings to convert.
        fallback_distance_standard_deviation: Std-dev used when none is known.
        use_ranging: Include ranging components.
        use_rssi: Include RSSI components.
        use_position_covariance: Inflate variances with source position
            covariance traces.
        source_quality_scores: Per-source scores (len(sources),) or None.
        reading_quality_scores: Per-reading scores (len(fingerprint),) or None.

    Returns:
        MeasurementArrays.
    """
    located = {}
    for i, source in enumerate(sources):
        if source.is_located:
            located.setdefault(source.identifier, (i, source))

    dim = next(iter(located.values()))[1].dimensions if located else 2
    with_scores = source_quality_scores is not None or reading_quality_scores is not None

    positions, distances, stds, scores, source_idx, reading_idx = [], [], [], [], [], []

    def add(i, source, j, distance, std):
        if use_position_covariance and source.position_covariance is not None:
            std = float(np.sqrt(std**2 + np.trace(source.position_covariance)))
        positions.append(source.position)
        distances.append(distance)
        stds.append(std)
        source_idx.append(i)
        reading_idx.append(j)
        if with_scores:
            score = 0.0
            if source_quality_scores is not None:
                score += source_quality_scores[i]
            if reading_quality_scores is not None:
                score += reading_quality_scores[j]
            scores.append(score)

    for j, reading in enumerate(fingerprint):
        entry = located.get(reading.source.identifier)
        if entry is None:
            continue
        i, source = entry
        reading_type = reading.reading_type

        if use_ranging and reading_type in (ReadingType.RANGING, ReadingType.RANGING_AND_RSSI):
            std = reading.distance_standard_deviation
            add(i, source, j, reading.distance,
                fallback_distance_standard_deviation if std is None else std)

        if use_rssi and reading_type in (ReadingType.RSSI, ReadingType.RANGING_AND_RSSI):
            if not source.has_power:
                continue
            distance, std = _rssi_distance_and_std(
                source, reading.rssi, reading.rssi_standard_deviation,
                fallback_distance_standard_deviation,
            )
            add(i, source, j, distance, std)

    return MeasurementArrays(
        positions=np.array(positions, dtype=float).reshape(-1, dim),
        distances=np.array(distances, dtype=float),
        distance_standard_deviations=np.array(stds, dtype=float),
        quality_scores=np.array(scores, dtype=float) if with_scores else None,
        source_indices=np.array(source_idx, dtype=int),
        reading_indices=np.array(reading_idx, dtype=int),
    )
