"""
Evaluation module.

Modules:
    metrics: Error metrics (RMSE, statistics) and covariance accuracy
"""

from .metrics import (
    compute_error_stats,
    compute_position_errors,
    compute_rmse,
    confidence_ellipse,
    confidence_radius,
)

__all__ = [
    # Error metrics
    "compute_position_errors",
    "compute_rmse",
    "compute_error_stats",
    # Accuracy
    "confidence_radius",
    "confidence_ellipse",
]
