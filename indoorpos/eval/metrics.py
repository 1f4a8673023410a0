"""
Evaluation metrics for position estimates.

Error statistics over batches of estimates and accuracy figures derived
from a single covariance (confidence radius and ellipse).
"""

from typing import Dict, Optional, Tuple, Union

import numpy as np
from scipy import stats


def compute_position_errors(
    truth: np.ndarray, estimated: np.ndarray
) -> np.ndarray:
    """
    Compute position errors between true and estimated positions.

    Args:
        truth: True positions, shape (N, 2) or (N, 3)
        estimated: Estimated positions, shape (N, 2) or (N, 3)

    Returns:
        errors: Position error vectors, shape (N, 2) or (N, 3)

    Raises:
        ValueError: If inputs have incompatible shapes
    """
    truth = np.asarray(truth)
    estimated = np.asarray(estimated)

    if truth.shape != estimated.shape:
        raise ValueError(
            f"Shape mismatch: truth {truth.shape} vs estimated {estimated.shape}"
        )

    return estimated - truth


def compute_rmse(errors: np.ndarray, axis: Optional[int] = None) -> Union[float, np.ndarray]:
    """
    Compute Root Mean Square Error (RMSE).

    Args:
        errors: Error vectors, shape (N, d) or (N,)
        axis: None for a scalar RMSE, 0 for per-dimension, 1 for per-sample

    Returns:
        rmse: RMSE value(s)
    """
    errors = np.asarray(errors)
    return np.sqrt(np.mean(errors**2, axis=axis))


def compute_error_stats(errors: np.ndarray) -> Dict[str, float]:
    """
    Compute error magnitude statistics.

    Args:
        errors: Error vectors, shape (N, d) or (N,)

    Returns:
        Dictionary with 'mean', 'median', 'std', 'rmse', 'p75', 'p90',
        'p95' and 'max' of the error magnitudes.
    """
    errors = np.asarray(errors)

    if errors.ndim > 1:
        error_magnitudes = np.linalg.norm(errors, axis=1)
    else:
        error_magnitudes = np.abs(errors)

    return {
        "mean": float(np.mean(error_magnitudes)),
        "median": float(np.median(error_magnitudes)),
        "std": float(np.std(error_magnitudes)),
        "rmse": float(np.sqrt(np.mean(error_magnitudes**2))),
        "p75": float(np.percentile(error_magnitudes, 75)),
        "p90": float(np.percentile(error_magnitudes, 90)),
        "p95": float(np.percentile(error_magnitudes, 95)),
        "max": float(np.max(error_magnitudes)),
    }


def _check_covariance(covariance: np.ndarray) -> np.ndarray:
    covariance = np.asarray(covariance, dtype=float)
    if covariance.ndim != 2 or covariance.shape[0] != covariance.shape[1]:
        raise ValueError(f"covariance must be square, got shape {covariance.shape}")
    return covariance


def confidence_radius(covariance: np.ndarray, confidence: float = 0.95) -> float:
    """
    Radius containing the true position with at least the given confidence.

    Uses the largest eigenvalue of the covariance, so the circle encloses the
    confidence ellipse:
        r = sqrt(chi2_d(confidence) * λ_max)

    Args:
        covariance: Position covariance (d × d).
        confidence: Confidence level in (0, 1).

    Returns:
        Radius in the position units.

    Example:
        >>> r = confidence_radius(np.eye(2), 0.95)
        >>> round(r, 3)
        2.448
    """
    covariance = _check_covariance(covariance)
    if not 0.0 < confidence < 1.0:
        raise ValueError(f"confidence must be in (0, 1), got {confidence}")

    dof = covariance.shape[0]
    lambda_max = float(np.max(np.linalg.eigvalsh(covariance)))
    return float(np.sqrt(stats.chi2.ppf(confidence, dof) * max(lambda_max, 0.0)))


def confidence_ellipse(
    covariance: np.ndarray, confidence: float = 0.95
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Semi-axes and orientation of the confidence ellipse (ellipsoid in 3D).

    Args:
        covariance: Position covariance (d × d).
        confidence: Confidence level in (0, 1).

    Returns:
        Tuple of:
            - semi_axes: Semi-axis lengths in descending order (d,).
            - axes: Unit axis directions as columns (d × d).
    """
    covariance = _check_covariance(covariance)
    if not 0.0 < confidence < 1.0:
        raise ValueError(f"confidence must be in (0, 1), got {confidence}")

    eigenvalues, eigenvectors = np.linalg.eigh(covariance)
    order = np.argsort(eigenvalues)[::-1]
    scale = stats.chi2.ppf(confidence, covariance.shape[0])
    semi_axes = np.sqrt(scale * np.maximum(eigenvalues[order], 0.0))
    return semi_axes, eigenvectors[:, order]
