"""
Nonlinear Least Squares solver using Levenberg-Marquardt.

Mathematical Formulation:
    Given observations y and measurement model h(x), we seek:
        x̂ = argmin ½‖r(x)‖²_W
    where r(x) = y - h(x) is the residual vector.

    Levenberg-Marquardt update:
        (J'WJ + μI) Δx = J'W r
    where μ is an adaptive damping parameter driven by the gain ratio.

    Covariance at the solution, with weights taken as inverse variances:
        P = (J'WJ)^(-1)

Tukey biweight IRLS weights down-weight outliers in a final refinement.
"""

from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np


@dataclass
class NonlinearLSResult:
    """Result container for nonlinear least squares optimization.

    Attributes:
        x: Estimated state vector.
        covariance: Covariance matrix (n × n), or None.
        iterations: Number of iterations performed.
        residuals: Final residuals r = y - h(x̂).
        cost: Final cost value ½‖r‖²_W.
        converged: Whether the solver converged within tolerance.
        weights: Measurement weights used by the solver.
    """

    x: np.ndarray
    covariance: Optional[np.ndarray]
    iterations: int
    residuals: np.ndarray
    cost: float
    converged: bool
    weights: Optional[np.ndarray] = None


def levenberg_marquardt(
    h: Callable[[np.ndarray], np.ndarray],
    jacobian: Callable[[np.ndarray], np.ndarray],
    y: np.ndarray,
    x0: np.ndarray,
    weights: Optional[np.ndarray] = None,
    max_iter: int = 50,
    tol: float = 1e-8,
    mu0: float = 1e-3,
    return_covariance: bool = True,
) -> NonlinearLSResult:
    """
    Levenberg-Marquardt solver for nonlinear least squares.

    Solves: x̂ = argmin ½‖y - h(x)‖²_W

    LM combines Gauss-Newton (fast near solution) with gradient descent
    (robust far from solution) by adaptively adjusting μ:
        - Small μ: Gauss-Newton behavior (quadratic convergence)
        - Large μ: Gradient descent behavior (global convergence)

    Args:
        h: Measurement model function h: R^n → R^m.
        jacobian: Function returning Jacobian matrix J = ∂h/∂x (m × n).
        y: Observation vector (m,).
        x0: Initial state estimate (n,).
        weights: Optional measurement weights (m,), typically 1/σᵢ².
        max_iter: Maximum number of iterations.
        tol: Convergence tolerance on ‖Δx‖.
        mu0: Initial damping parameter (default 1e-3).
        return_covariance: If True, compute (J'WJ)^(-1) at the final estimate.

    Returns:
        NonlinearLSResult containing estimate, covariance, and diagnostics.

    Raises:
        ValueError: On inconsistent shapes or negative weights.
        np.linalg.LinAlgError: If J'WJ is singular when computing covariance.

    Example:
        >>> anchors = np.array([[0, 0], [10, 0], [0, 10]], dtype=float)
        >>> h = lambda x: np.linalg.norm(anchors - x, axis=1)
        >>> jac = lambda x: (x - anchors) / h(x)[:, None]
        >>> y = h(np.array([3.0, 4.0]))
        >>> result = levenberg_marquardt(h, jac, y, np.array([5.0, 5.0]))
        >>> np.allclose(result.x, [3.0, 4.0])
        True
    """
    y = np.asarray(y, dtype=float)
    x0 = np.asarray(x0, dtype=float)

    if y.ndim != 1:
        raise ValueError(f"y must be 1D array, got shape {y.shape}")
    if x0.ndim != 1:
        raise ValueError(f"x0 must be 1D array, got shape {x0.shape}")

    m = len(y)
    n = len(x0)
    x = x0.copy()

    if weights is None:
        weights = np.ones(m)
    else:
        weights = np.asarray(weights, dtype=float)
        if weights.ndim != 1 or len(weights) != m:
            raise ValueError(f"weights must be 1D array of length {m}")
        if np.any(weights < 0):
            raise ValueError("weights must be non-negative")

    mu = mu0
    nu = 2.0

    converged = False
    iteration = 0

    for iteration in range(max_iter):
        hx = h(x)
        if len(hx) != m:
            raise ValueError(f"h(x) returned {len(hx)} elements, expected {m}")

        J = jacobian(x)
        if J.shape != (m, n):
            raise ValueError(f"Jacobian shape {J.shape}, expected ({m}, {n})")

        r = y - hx

        # Weighted normal equations: (J'WJ) Δx = J'Wr
        JtW = J.T * weights
        JtWJ = JtW @ J
        JtWr = JtW @ r

        cost = 0.5 * np.sum(weights * r**2)

        while True:
            JtWJ_damped = JtWJ + mu * np.eye(n)

            try:
                delta_x = np.linalg.solve(JtWJ_damped, JtWr)
            except np.linalg.LinAlgError:
                delta_x = np.linalg.lstsq(JtWJ_damped, JtWr, rcond=None)[0]

            x_new = x + delta_x
            r_new = y - h(x_new)
            cost_new = 0.5 * np.sum(weights * r_new**2)

            # Gain ratio: actual vs predicted decrease ½ Δx'(μΔx + J'Wr)
            predicted_decrease = 0.5 * delta_x @ (mu * delta_x + JtWr)
            actual_decrease = cost - cost_new

            if predicted_decrease > 1e-15:
                gain_ratio = actual_decrease / predicted_decrease
            else:
                gain_ratio = 0.0

            if gain_ratio > 0:
                x = x_new
                mu = mu * max(1.0 / 3.0, 1.0 - (2.0 * gain_ratio - 1.0) ** 3)
                nu = 2.0
                break

            mu = mu * nu
            nu = 2.0 * nu

            # Prevent infinite loop with very large damping
            if mu > 1e10:
                break

        if np.linalg.norm(delta_x) < tol:
            converged = True
            break

    r = y - h(x)
    cost = 0.5 * np.sum(weights * r**2)

    P = None
    if return_covariance:
        J = jacobian(x)
        P = np.linalg.inv((J.T * weights) @ J)

    return NonlinearLSResult(
        x=x,
        covariance=P,
        iterations=iteration + 1,
        residuals=r,
        cost=float(cost),
        converged=converged,
        weights=weights,
    )


def tukey_weights(u: np.ndarray) -> np.ndarray:
    """
    Tukey biweight IRLS weights.

    Args:
        u: Normalized residuals (r / (σ × c)).

    Returns:
        weights: (1 - u²)² for |u| ≤ 1, floored at 1e-10 elsewhere.
    """
    u = np.asarray(u, dtype=float)
    weights = np.where(np.abs(u) <= 1.0, (1.0 - u ** 2) ** 2, 0.0)
    return np.maximum(weights, 1e-10)  # Avoid singularity
