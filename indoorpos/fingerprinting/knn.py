"""Nearest-neighbour fingerprint matching and weighted k-NN positioning.

The RSSI distance between two fingerprints sums squared RSSI differences over
pairs of readings of the same radio source:

    D²(z, f) = Σ (z_rssi - f_rssi)²

The no-mean variant first subtracts from each side its mean RSSI over those
pairs, which cancels a constant gain offset between receivers. Fingerprints
with no source in common are at infinite distance and never match.

A weighted k-NN position is the average of the neighbours' positions
weighted by inverse RSSI distance:

    x̂ = Σ w_i x_i / Σ w_i,   w_i = 1 / max(D_i, ε)
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from indoorpos.exceptions import InvalidArgumentError, LockedError, NotReadyError
from indoorpos.radio.fingerprint import Fingerprint, FingerprintLocated

logger = logging.getLogger(__name__)

DEFAULT_EPSILON = 1e-7


def _shared_rssi_pairs(a: Fingerprint, b: Fingerprint) -> Tuple[np.ndarray, np.ndarray]:
    a_values, b_values = [], []
    for ra in a.rssi_readings():
        for rb in b.rssi_readings():
            if ra.source.identifier == rb.source.identifier:
                a_values.append(ra.rssi)
                b_values.append(rb.rssi)
    return np.array(a_values, dtype=float), np.array(b_values, dtype=float)


def squared_rssi_distance(a: Fingerprint, b: Fingerprint) -> float:
    """
    Squared RSSI distance between two fingerprints.

    Returns +inf if the fingerprints share no radio source.

    Example:
        >>> squared_rssi_distance(query, reference)
        8.0
    """
    a_values, b_values = _shared_rssi_pairs(a, b)
    if len(a_values) == 0:
        return np.inf
    return float(np.sum((a_values - b_values) ** 2))


def no_mean_squared_rssi_distance(a: Fingerprint, b: Fingerprint) -> float:
    """Squared RSSI distance after removing each side's mean over shared sources."""
    a_values, b_values = _shared_rssi_pairs(a, b)
    if len(a_values) == 0:
        return np.inf
    a_values = a_values - a_values.mean()
    b_values = b_values - b_values.mean()
    return float(np.sum((a_values - b_values) ** 2))


@dataclass
class NearestFingerprints:
    """Nearest located fingerprints, closest first.

    Attributes:
        fingerprints: Matched fingerprints.
        squared_distances: Squared RSSI distance of each match.
        indices: Index of each match in the searched sequence.
    """

    fingerprints: List[FingerprintLocated]
    squared_distances: np.ndarray
    indices: np.ndarray

    def __len__(self) -> int:
        return len(self.fingerprints)

    @property
    def positions(self) -> np.ndarray:
        return np.array([f.position for f in self.fingerprints])

    @property
    def distances(self) -> np.ndarray:
        return np.sqrt(self.squared_distances)


def find_k_nearest(
    fingerprint: Fingerprint,
    fingerprints: Sequence[FingerprintLocated],
    k: int,
    mean_removed: bool = True,
) -> NearestFingerprints:
    """
    Find the k located fingerprints closest in RSSI to a fingerprint.

    Fingerprints sharing no source with the query are never returned, so
    fewer than k matches come back when fewer are comparable. Ties keep the
    order of fingerprints.

    Args:
        fingerprint: Query fingerprint.
        fingerprints: Located reference fingerprints.
        k: Number of neighbours (>= 1).
        mean_removed: Use no_mean_squared_rssi_distance instead of
            squared_rssi_distance.

    Returns:
        NearestFingerprints.

    Raises:
        InvalidArgumentError: If k < 1.
    """
    if k < 1:
        raise InvalidArgumentError(f"k must be >= 1, got k={k}")

    metric = no_mean_squared_rssi_distance if mean_removed else squared_rssi_distance
    squared = np.array([metric(fingerprint, f) for f in fingerprints], dtype=float)

    order = np.argsort(squared, kind="stable")
    order = order[np.isfinite(squared[order])][:k]
    return NearestFingerprints(
        fingerprints=[fingerprints[i] for i in order],
        squared_distances=squared[order],
        indices=order,
    )


def find_nearest(
    fingerprint: Fingerprint,
    fingerprints: Sequence[FingerprintLocated],
    mean_removed: bool = True,
) -> Optional[FingerprintLocated]:
    """Closest located fingerprint, or None if none shares a source."""
    nearest = find_k_nearest(fingerprint, fingerprints, 1, mean_removed=mean_removed)
    return nearest.fingerprints[0] if len(nearest) else None


class WeightedKNearestNeighboursPositionSolver:
    """
    Weighted k-nearest-neighbours position solver.

    Args:
        fingerprints: Neighbouring located fingerprints.
        distances: RSSI distance to each fingerprint (>= 0).
        listener: Optional object with on_solve_start(solver) and
            on_solve_end(solver) callbacks.
        epsilon: Floor applied to distances before inversion (> 0).

    Example:
        >>> nearest = find_k_nearest(query, radio_map, k=4)
        >>> solver = WeightedKNearestNeighboursPositionSolver(
        ...     nearest.fingerprints, nearest.distances)
        >>> position = solver.solve()
    """

    def __init__(
        self,
        fingerprints: Optional[Sequence[FingerprintLocated]] = None,
        distances=None,
        listener=None,
        epsilon: float = DEFAULT_EPSILON,
    ):
        self._locked = False
        self._fingerprints = None
        self._distances = None
        if fingerprints is not None or distances is not None:
            self.set_fingerprints_and_distances(fingerprints, distances)
        self._listener = listener
        self._epsilon = self._validate_epsilon(epsilon)
        self._estimated_position: Optional[np.ndarray] = None

    @staticmethod
    def _validate_epsilon(epsilon: float) -> float:
        if not epsilon > 0:
            raise InvalidArgumentError(f"epsilon must be positive, got {epsilon}")
        return float(epsilon)

    def _check_locked(self) -> None:
        if self._locked:
            raise LockedError("Solver is locked while solving")

    def set_fingerprints_and_distances(self, fingerprints, distances) -> None:
        self._check_locked()
        if fingerprints is None or distances is None:
            raise InvalidArgumentError("fingerprints and distances must both be given")
        fingerprints = list(fingerprints)
        distances = np.asarray(distances, dtype=float)
        if len(fingerprints) < 1:
            raise InvalidArgumentError("at least one fingerprint is required")
        if distances.shape != (len(fingerprints),):
            raise InvalidArgumentError(
                f"distances must have shape ({len(fingerprints)},), got {distances.shape}"
            )
        if np.any(distances < 0) or not np.all(np.isfinite(distances)):
            raise InvalidArgumentError("distances must be finite and non-negative")
        for f in fingerprints:
            if not isinstance(f, FingerprintLocated):
                raise InvalidArgumentError("fingerprints must be FingerprintLocated instances")
        dims = {f.position.shape[0] for f in fingerprints}
        if len(dims) > 1:
            raise InvalidArgumentError("fingerprint positions must share one dimensionality")
        self._fingerprints = fingerprints
        self._distances = distances

    @property
    def fingerprints(self) -> Optional[List[FingerprintLocated]]:
        return self._fingerprints

    @property
    def distances(self) -> Optional[np.ndarray]:
        return self._distances

    @property
    def listener(self):
        return self._listener

    @listener.setter
    def listener(self, listener) -> None:
        self._check_locked()
        self._listener = listener

    @property
    def epsilon(self) -> float:
        return self._epsilon

    @epsilon.setter
    def epsilon(self, value: float) -> None:
        self._check_locked()
        self._epsilon = self._validate_epsilon(value)

    @property
    def is_ready(self) -> bool:
        return self._fingerprints is not None

    @property
    def is_locked(self) -> bool:
        return self._locked

    @property
    def estimated_position(self) -> Optional[np.ndarray]:
        return self._estimated_position

    def solve(self) -> np.ndarray:
        """
        Weighted average of the fingerprint positions.

        Returns:
            Estimated position, a copy of estimated_position.

        Raises:
            LockedError: If already solving.
            NotReadyError: If no fingerprints were set.
        """
        self._check_locked()
        if not self.is_ready:
            raise NotReadyError("Solver is not ready")

        self._locked = True
        try:
            if self._listener is not None:
                self._listener.on_solve_start(self)

            positions = np.array([f.position for f in self._fingerprints])
            if len(positions) == 1:
                position = positions[0].copy()
            else:
                weights = 1.0 / np.maximum(self._distances, self._epsilon)
                position = np.sum(weights[:, np.newaxis] * positions, axis=0) / np.sum(weights)
            self._estimated_position = position
            logger.debug("WKNN position from %d fingerprints", len(positions))

            if self._listener is not None:
                self._listener.on_solve_end(self)
            return position.copy()
        finally:
            self._locked = False


def weighted_knn_position(
    fingerprint: Fingerprint,
    fingerprints: Sequence[FingerprintLocated],
    k: int = 3,
    epsilon: float = DEFAULT_EPSILON,
    mean_removed: bool = True,
) -> np.ndarray:
    """
    Position of a fingerprint by weighted k-NN over located fingerprints.

    Raises:
        InvalidArgumentError: If k < 1.
        NotReadyError: If no located fingerprint shares a source with the query.
    """
    nearest = find_k_nearest(fingerprint, fingerprints, k, mean_removed=mean_removed)
    if len(nearest) == 0:
        raise NotReadyError("no located fingerprint shares a radio source with the query")
    solver = WeightedKNearestNeighboursPositionSolver(
        nearest.fingerprints, nearest.distances, epsilon=epsilon
    )
    return solver.solve()
