"""
RSSI fingerprint matching against a radio map of located fingerprints.

Submodules:
    knn: RSSI distances, k-nearest search and weighted k-NN positioning
"""

from indoorpos.fingerprinting.knn import (
    DEFAULT_EPSILON,
    NearestFingerprints,
    WeightedKNearestNeighboursPositionSolver,
    find_k_nearest,
    find_nearest,
    no_mean_squared_rssi_distance,
    squared_rssi_distance,
    weighted_knn_position,
)

__all__ = [
    "DEFAULT_EPSILON",
    "NearestFingerprints",
    "WeightedKNearestNeighboursPositionSolver",
    "find_k_nearest",
    "find_nearest",
    "no_mean_squared_rssi_distance",
    "squared_rssi_distance",
    "weighted_knn_position",
]
