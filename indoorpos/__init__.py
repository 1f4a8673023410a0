"""Robust indoor position estimation from radio ranging and RSSI readings.

This package contains:
- radio: radio sources, readings, fingerprints and path-loss models
- estimators: least squares, lateration and robust (RANSAC family) solvers
- position: robust single-pass and sequential ranging + RSSI estimators
- radiosource: radio source position / power estimators from located readings
- fingerprinting: RSSI fingerprint matching and weighted k-NN positioning
- eval: error metrics and covariance accuracy
"""

__version__ = "0.1.0"
