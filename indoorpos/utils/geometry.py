"""
Geometric utilities for lateration.

Provides functions for:
- Singularity handling in range Jacobians
- Radio source geometry checking
- Symmetric positive definite checks for covariance matrices
"""

import warnings
from typing import Tuple

import numpy as np
from scipy import linalg

from indoorpos.exceptions import NonSymmetricPositiveDefiniteMatrixError

# Singularity threshold constants
EPSILON_RANGE = 1e-10  # Minimum range for Jacobian computation (10 picometers)
EPSILON_COLINEAR = 1e-6  # Threshold for colinearity detection


def normalize_jacobian_singularities(
    diff: np.ndarray,
    ranges: np.ndarray,
    epsilon: float = EPSILON_RANGE
) -> np.ndarray:
    """
    Safely compute normalized range Jacobian, avoiding singularities.

    Computes H[i] = diff[i] / range[i] with protection against division by zero
    when range → 0 (receiver at source position).

    Args:
        diff: Difference vectors (receiver - source), shape (N, d)
        ranges: Range values, shape (N,) or (N, 1)
        epsilon: Minimum range threshold (default: 1e-10 meters = 10 pm)

    Returns:
        Normalized Jacobian H = diff / range, shape (N, d)
        At singularities (range < epsilon), returns zero vector

    Example:
        >>> diff = np.array([[1.0, 0.0], [1e-12, 1e-12], [3.0, 4.0]])
        >>> ranges = np.array([1.0, 1e-12, 5.0])
        >>> H = normalize_jacobian_singularities(diff, ranges)
        >>> H[1]  # Singularity -> zero vector
        array([0., 0.])
    """
    ranges = np.asarray(ranges).reshape(-1, 1)
    diff = np.asarray(diff)

    ranges_safe = np.maximum(ranges, epsilon)
    H = diff / ranges_safe

    singular_mask = (ranges < epsilon).flatten()
    if np.any(singular_mask):
        H[singular_mask, :] = 0.0
        warnings.warn(
            f"{np.sum(singular_mask)} measurement(s) at singularity (range < {epsilon}m). "
            "Setting Jacobian rows to zero. Check source-receiver geometry.",
            RuntimeWarning
        )

    return H


def check_source_geometry(
    positions: np.ndarray,
    warn_degenerate: bool = True
) -> Tuple[bool, str]:
    """
    Check if radio source geometry is suitable for lateration.

    Performs geometric checks:
    1. Sufficient number of sources (dimensions + 1)
    2. Sources are not colinear (2D) / coplanar (3D)

    Args:
        positions: Source positions, shape (N, d) where d=2 or 3
        warn_degenerate: If True, issue warnings for degenerate cases

    Returns:
        Tuple of (is_valid, message):
            - is_valid: True if geometry is acceptable
            - message: Description of geometry issue (empty if valid)

    Example:
        >>> is_valid, msg = check_source_geometry(np.array([[0, 0], [5, 0], [10, 0]]))
        >>> is_valid, 'colinear' in msg.lower()
        (False, True)
    """
    positions = np.asarray(positions, dtype=float)

    if positions.ndim != 2:
        return False, f"Positions must be 2D array (N, d), got shape {positions.shape}"

    n_sources, dim = positions.shape

    if dim not in [2, 3]:
        return False, f"Only 2D or 3D positioning supported, got dim={dim}"

    min_required = dim + 1
    if n_sources < min_required:
        return False, (
            f"Insufficient sources: need at least {min_required} for {dim}D positioning, "
            f"got {n_sources}"
        )

    # Rank of the centered source matrix
    centered = positions - np.mean(positions, axis=0)
    singular_values = np.linalg.svd(centered, compute_uv=False)
    if singular_values[0] == 0:
        rank = 0
    else:
        rank = np.sum(singular_values > EPSILON_COLINEAR * singular_values[0])

    if rank < dim:
        if dim == 2:
            msg = f"Sources are colinear (rank {rank} < 2). Positioning will fail."
        else:
            msg = f"Sources are coplanar (rank {rank} < 3). 3D positioning will fail."

        if warn_degenerate:
            warnings.warn(msg, RuntimeWarning)
        return False, msg

    return True, ""


def check_symmetric_positive_definite(
    matrix: np.ndarray,
    name: str = "matrix",
    atol: float = 1e-9
) -> np.ndarray:
    """
    Validate that a matrix is symmetric positive definite.

    Uses a Cholesky factorization, which only succeeds for SPD matrices.

    Args:
        matrix: Square matrix to check.
        name: Name used in the error message.
        atol: Absolute tolerance of the symmetry check.

    Returns:
        The lower-triangular Cholesky factor.

    Raises:
        NonSymmetricPositiveDefiniteMatrixError: If the check fails.
    """
    matrix = np.asarray(matrix, dtype=float)
    if matrix.ndim != 2 or matrix.shape[0] != matrix.shape[1]:
        raise NonSymmetricPositiveDefiniteMatrixError(
            f"{name} must be square, got shape {matrix.shape}"
        )
    if not np.allclose(matrix, matrix.T, atol=atol):
        raise NonSymmetricPositiveDefiniteMatrixError(f"{name} is not symmetric")

    try:
        return linalg.cholesky(matrix, lower=True)
    except linalg.LinAlgError as e:
        raise NonSymmetricPositiveDefiniteMatrixError(
            f"{name} is not positive definite"
        ) from e
