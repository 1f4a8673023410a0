"""
Ordering of sources and readings by quality.

Used to spread progressive (PROSAC / PROMedS) sampling evenly across radio
sources: instead of exhausting the repeated readings of the best source
first, the first reading of every source is tried before the second
reading of any source, and so on.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import numpy as np

from indoorpos.radio.fingerprint import Fingerprint
from indoorpos.radio.readings import Reading
from indoorpos.radio.sources import RadioSource


@dataclass
class SortedReading:
    index: int
    reading: Reading
    quality_score: float


@dataclass
class SortedSource:
    index: int
    source: RadioSource
    quality_score: float
    readings: List[SortedReading] = field(default_factory=list)


def sort_readings(
    sources: Sequence[RadioSource],
    fingerprint: Fingerprint,
    source_quality_scores: Optional[np.ndarray] = None,
    reading_quality_scores: Optional[np.ndarray] = None,
) -> List[SortedSource]:
    """
    Group readings by source and sort both levels by quality.

    Sources are sorted by descending quality score. Within a source,
    readings are sorted by reading type (ranging, ranging+RSSI, RSSI) and
    then by descending quality score. Readings of unknown sources are
    dropped. Sorting is stable, so ties keep input order.

    Returns:
        Sorted sources, each with its sorted readings.
    """
    if source_quality_scores is None:
        source_quality_scores = np.zeros(len(sources))
    if reading_quality_scores is None:
        reading_quality_scores = np.zeros(len(fingerprint))

    by_identifier = {}
    for i, source in enumerate(sources):
        by_identifier.setdefault(
            source.identifier, SortedSource(i, source, float(source_quality_scores[i]))
        )

    for j, reading in enumerate(fingerprint):
        sorted_source = by_identifier.get(reading.source.identifier)
        if sorted_source is not None:
            sorted_source.readings.append(
                SortedReading(j, reading, float(reading_quality_scores[j]))
            )

    result = sorted(by_identifier.values(), key=lambda s: -s.quality_score)
    for sorted_source in result:
        sorted_source.readings.sort(
            key=lambda r: (r.reading.reading_type.value, -r.quality_score)
        )
    return result


def evenly_distributed_quality_scores(
    sources: Sequence[RadioSource],
    fingerprint: Fingerprint,
    source_quality_scores: Optional[np.ndarray] = None,
    reading_quality_scores: Optional[np.ndarray] = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Rewrite quality scores so that readings are visited round-robin.

    Reading scores become 0, -1, -2, ... following the round-robin order
    (k-th reading of every source, sources by quality). Source scores become
    fractions in (-1, 0] following source order, so that adding a source
    score to a reading score never changes the round-robin order.

    Returns:
        Tuple of (source_quality_scores, reading_quality_scores).
    """
    sorted_sources = sort_readings(
        sources, fingerprint, source_quality_scores, reading_quality_scores
    )

    num_sources = max(len(sources), 1)
    new_source_scores = np.full(len(sources), -(num_sources - 1) / num_sources)
    for rank, sorted_source in enumerate(sorted_sources):
        new_source_scores[sorted_source.index] = -rank / num_sources

    new_reading_scores = np.full(len(fingerprint), -float(len(fingerprint)))
    score = 0.0
    k = 0
    while True:
        assigned = False
        for sorted_source in sorted_sources:
            if k < len(sorted_source.readings):
                new_reading_scores[sorted_source.readings[k].index] = score
                score -= 1.0
                assigned = True
        if not assigned:
            break
        k += 1

    return new_source_scores, new_reading_scores
