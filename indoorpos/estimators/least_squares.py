"""
Linear least squares solvers used by the lateration solvers.

Functions:
    - linear_least_squares: ordinary LS via the normal equations
    - weighted_least_squares: LS with diagonal weights or standard deviations
    - homogeneous_least_squares: unit-norm solution of A x = 0 via SVD

Shape and dimension problems raise ValueError. Systems that are well formed
but numerically degenerate (rank deficient, ill-conditioned) raise
NumericalInstabilityError so that callers can treat them as a failed fit.
"""

from typing import Optional, Tuple

import numpy as np

from indoorpos.exceptions import NumericalInstabilityError

# Normal equations with a condition number above this are treated as singular
MAX_CONDITION_NUMBER = 1e12


def _check_system(A: np.ndarray, b: np.ndarray) -> Tuple[int, int]:
    if A.ndim != 2 or b.ndim != 1:
        raise ValueError(f"A must be 2D and b must be 1D. Got A: {A.shape}, b: {b.shape}")

    m, n = A.shape
    if m < n:
        raise ValueError(f"Underdetermined system: m={m} < n={n}. Need m ≥ n.")
    if len(b) != m:
        raise ValueError(f"Dimension mismatch: A has {m} rows, b has {len(b)} elements")
    return m, n


def _solve_normal_equations(ATA: np.ndarray, ATb: np.ndarray) -> np.ndarray:
    n = ATA.shape[0]
    rank = np.linalg.matrix_rank(ATA)
    if rank < n:
        raise NumericalInstabilityError(
            f"Normal matrix is rank deficient: rank={rank} < n={n}"
        )

    cond = np.linalg.cond(ATA)
    if cond > MAX_CONDITION_NUMBER:
        raise NumericalInstabilityError(
            f"Normal matrix is ill-conditioned (condition number {cond:.2e})"
        )

    try:
        return np.linalg.solve(ATA, ATb)
    except np.linalg.LinAlgError as e:
        raise NumericalInstabilityError(f"Failed to solve normal equations: {e}") from e


def linear_least_squares(
    A: np.ndarray, b: np.ndarray, return_covariance: bool = True
) -> Tuple[np.ndarray, Optional[np.ndarray]]:
    """
    Standard linear least squares estimation.

    Solves: x_hat = argmin ||Ax - b||²
    Solution: x_hat = (A'A)^(-1) A'b

    Args:
        A: Design matrix (m × n), where m ≥ n.
        b: Observation vector (m,).
        return_covariance: If True, compute covariance matrix.

    Returns:
        Tuple of:
            - x_hat: Estimated state vector (n,).
            - P: Covariance matrix (n × n), or None if return_covariance is False.

    Raises:
        ValueError: If A and b dimensions don't match.
        NumericalInstabilityError: If A is rank deficient or ill-conditioned.

    Example:
        >>> A = np.array([[1, 0], [0, 1], [1, 1], [1, -1]], dtype=float)
        >>> b = np.array([1.0, 2.0, 3.0, -1.0])
        >>> x_hat, P = linear_least_squares(A, b)
        >>> np.allclose(x_hat, [1.0, 2.0])
        True
    """
    A = np.asarray(A, dtype=float)
    b = np.asarray(b, dtype=float)
    m, n = _check_system(A, b)

    ATA = A.T @ A
    x_hat = _solve_normal_equations(ATA, A.T @ b)

    P = None
    if return_covariance:
        residuals = b - A @ x_hat
        # Estimated measurement variance (unbiased)
        if m > n:
            sigma2 = np.sum(residuals**2) / (m - n)
        else:
            sigma2 = 1.0  # Exact fit case
        P = sigma2 * np.linalg.inv(ATA)

    return x_hat, P


def weighted_least_squares(
    A: np.ndarray,
    b: np.ndarray,
    W_or_sigma: np.ndarray,
    is_sigma: bool = False,
    return_covariance: bool = True,
) -> Tuple[np.ndarray, Optional[np.ndarray]]:
    """
    Weighted least squares with diagonal weights.

    Solves: x_hat = argmin (Ax - b)' W (Ax - b)
    Solution: x_hat = (A'WA)^(-1) A'Wb

    Setting wᵢ = 1/σᵢ² yields the best linear unbiased estimate.

    Args:
        A: Design matrix (m × n), where m ≥ n.
        b: Observation vector (m,).
        W_or_sigma: Diagonal weights wᵢ, or std devs σᵢ when is_sigma=True.
        is_sigma: If True, interpret W_or_sigma as σᵢ and use wᵢ = 1/σᵢ².
        return_covariance: If True, return (A'WA)^(-1).

    Returns:
        Tuple of (x_hat, P).
    """
    A = np.asarray(A, dtype=float)
    b = np.asarray(b, dtype=float)
    m, n = _check_system(A, b)

    W_or_sigma = np.asarray(W_or_sigma, dtype=float)
    if W_or_sigma.ndim != 1 or len(W_or_sigma) != m:
        raise ValueError(
            f"W_or_sigma must be a 1D array of length {m}, got shape {W_or_sigma.shape}"
        )

    if is_sigma:
        if np.any(W_or_sigma <= 0):
            raise ValueError("Sigma values must be positive")
        weights = 1.0 / (W_or_sigma ** 2)
    else:
        weights = W_or_sigma
        if np.any(weights < 0):
            raise ValueError("Weights must be non-negative")

    ATW = A.T * weights
    ATWA = ATW @ A
    x_hat = _solve_normal_equations(ATWA, ATW @ b)

    P = None
    if return_covariance:
        P = np.linalg.inv(ATWA)

    return x_hat, P


def homogeneous_least_squares(A: np.ndarray) -> np.ndarray:
    """
    Solve A x = 0 for a unit-norm x minimizing ||A x||.

    The solution is the right singular vector associated with the smallest
    singular value of A.

    Args:
        A: System matrix (m × n) with m ≥ n - 1.

    Returns:
        Unit-norm solution vector (n,).

    Raises:
        NumericalInstabilityError: If the null space is not one-dimensional,
            i.e. the solution is not unique up to scale.
    """
    A = np.asarray(A, dtype=float)
    if A.ndim != 2:
        raise ValueError(f"A must be 2D, got shape {A.shape}")

    m, n = A.shape
    if m < n - 1:
        raise ValueError(f"Underdetermined homogeneous system: m={m} < n-1={n - 1}")

    _, s, Vt = np.linalg.svd(A)
    # Pad singular values so the check below also works when m == n - 1
    s = np.concatenate([s, np.zeros(max(0, n - len(s)))])
    if s[0] == 0 or s[n - 2] <= s[0] / MAX_CONDITION_NUMBER:
        raise NumericalInstabilityError(
            "Homogeneous system has a degenerate null space"
        )

    return Vt[-1]
