"""
Plain (non-robust) lateration solver.

Estimates a receiver position from N ≥ d+1 radio source positions and the
distances measured to them:

1. Linear initial solution from squared-distance differences against a
   reference source (Fang-style). For each source i ≠ ref:
       -2(s_i - s_ref)ᵀ p = d_i² - d_ref² - (‖s_i‖² - ‖s_ref‖²)
   solved either as an inhomogeneous LS system or as a homogeneous system
   [H | -y] [p; 1] = 0 via SVD.
2. Optional Levenberg-Marquardt refinement of the weighted cost
       Σ (‖p - s_i‖ - d_i)² / σ_i²
   with covariance (JᵀWJ)⁻¹ at the solution.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from indoorpos.estimators.least_squares import (
    homogeneous_least_squares,
    linear_least_squares,
)
from indoorpos.estimators.nonlinear_least_squares import levenberg_marquardt
from indoorpos.exceptions import (
    InvalidArgumentError,
    NotReadyError,
    NumericalInstabilityError,
)
from indoorpos.utils.geometry import (
    check_symmetric_positive_definite,
    normalize_jacobian_singularities,
)


@dataclass
class LaterationResult:
    """Result of a lateration solve.

    Attributes:
        position: Estimated position (d,).
        covariance: Position covariance (d × d), or None if not computed.
        residuals: Range residuals ‖p - s_i‖ - d_i, shape (N,).
        cost: Weighted cost ½ Σ wᵢ rᵢ².
        converged: Whether refinement converged (True for linear-only solves).
        method: 'linear', 'homogeneous' or 'refined'.
    """

    position: np.ndarray
    covariance: Optional[np.ndarray]
    residuals: np.ndarray
    cost: float
    converged: bool
    method: str


def range_residuals(
    position: np.ndarray, positions: np.ndarray, distances: np.ndarray
) -> np.ndarray:
    """Signed range residuals ‖p - s_i‖ - d_i."""
    return np.linalg.norm(positions - position, axis=1) - distances


def _build_difference_system(
    positions: np.ndarray, distances: np.ndarray, ref_idx: int = 0
) -> Tuple[np.ndarray, np.ndarray]:
    x_ref = positions[ref_idx]
    d_ref = distances[ref_idx]
    others = np.delete(np.arange(len(positions)), ref_idx)

    x_i = positions[others]
    d_i = distances[others]

    H = -2.0 * (x_i - x_ref)
    y = d_i**2 - d_ref**2 - (np.sum(x_i**2, axis=1) - np.sum(x_ref**2))
    return H, y


def linear_lateration(
    positions: np.ndarray,
    distances: np.ndarray,
    homogeneous: bool = False,
    ref_idx: int = 0,
) -> np.ndarray:
    """
    Closed-form lateration from squared-distance differences.

    Args:
        positions: Source positions (N × d), N ≥ d+1.
        distances: Measured distances (N,).
        homogeneous: Solve [H | -y][p; 1] = 0 by SVD instead of H p = y.
        ref_idx: Index of the reference source.

    Returns:
        Estimated position (d,).

    Raises:
        NumericalInstabilityError: If sources are degenerate (colinear /
            coplanar) and the system has no unique solution.

    Example:
        >>> anchors = np.array([[0, 0], [10, 0], [0, 10]], dtype=float)
        >>> true_pos = np.array([3.0, 4.0])
        >>> d = np.linalg.norm(anchors - true_pos, axis=1)
        >>> np.allclose(linear_lateration(anchors, d), true_pos)
        True
    """
    H, y = _build_difference_system(positions, distances, ref_idx)

    if not homogeneous:
        p, _ = linear_least_squares(H, y, return_covariance=False)
        return p

    v = homogeneous_least_squares(np.column_stack([H, -y]))
    w = v[-1]
    if abs(w) < 1e-12 * np.linalg.norm(v):
        raise NumericalInstabilityError("Homogeneous solution lies at infinity")
    return v[:-1] / w


class LaterationSolver:
    """
    Lateration solver with linear initialization and nonlinear refinement.

    Args:
        linear_solver_used: Compute the initial solution with the linear
            solver. If False, refinement starts from the provided initial
            position (or the source centroid).
        homogeneous_linear_solver_used: Use the homogeneous linear system.
        result_refined: Refine the linear solution with Levenberg-Marquardt.
            Always True when the linear solver is not used.
        covariance_kept: Compute the position covariance after refinement.
        max_iterations: Refinement iteration limit.
        tolerance: Refinement convergence tolerance on the step norm.

    Example:
        >>> solver = LaterationSolver()
        >>> anchors = np.array([[0, 0], [10, 0], [0, 10], [10, 10]], dtype=float)
        >>> d = np.linalg.norm(anchors - np.array([3.0, 4.0]), axis=1)
        >>> result = solver.solve(anchors, d, np.full(4, 0.1))
        >>> np.allclose(result.position, [3.0, 4.0])
        True
    """

    def __init__(
        self,
        linear_solver_used: bool = True,
        homogeneous_linear_solver_used: bool = False,
        result_refined: bool = True,
        covariance_kept: bool = True,
        max_iterations: int = 100,
        tolerance: float = 1e-12,
    ):
        self.linear_solver_used = linear_solver_used
        self.homogeneous_linear_solver_used = homogeneous_linear_solver_used
        self.result_refined = result_refined
        self.covariance_kept = covariance_kept
        self.max_iterations = max_iterations
        self.tolerance = tolerance

    def solve(
        self,
        positions: np.ndarray,
        distances: np.ndarray,
        distance_standard_deviations: Optional[np.ndarray] = None,
        initial_position: Optional[np.ndarray] = None,
        weights: Optional[np.ndarray] = None,
    ) -> LaterationResult:
        """
        Estimate the receiver position.

        Args:
            positions: Source positions (N × d).
            distances: Measured distances (N,).
            distance_standard_deviations: Distance std-devs (N,); unit
                std-devs are assumed when omitted.
            initial_position: Starting point when the linear solver is not used.
            weights: Extra per-measurement weights (N,) applied on top of
                1/σᵢ², e.g. robust IRLS weights.

        Returns:
            LaterationResult.

        Raises:
            NotReadyError: If fewer than d+1 measurements are given.
            NumericalInstabilityError: If the linear system or refinement is
                degenerate.
            NonSymmetricPositiveDefiniteMatrixError: If the covariance is not SPD.
        """
        positions = np.asarray(positions, dtype=float)
        distances = np.asarray(distances, dtype=float)

        if positions.ndim != 2 or positions.shape[1] not in (2, 3):
            raise InvalidArgumentError(
                f"positions must have shape (N, 2) or (N, 3), got {positions.shape}"
            )
        n, dim = positions.shape
        if distances.shape != (n,):
            raise InvalidArgumentError(
                f"distances must have shape ({n},), got {distances.shape}"
            )
        if n < dim + 1:
            raise NotReadyError(
                f"At least {dim + 1} measurements are required for {dim}D lateration, got {n}"
            )

        if distance_standard_deviations is None:
            sigma = np.ones(n)
        else:
            sigma = np.asarray(distance_standard_deviations, dtype=float)
            if sigma.shape != (n,):
                raise InvalidArgumentError(
                    f"distance_standard_deviations must have shape ({n},), got {sigma.shape}"
                )
            if np.any(sigma <= 0):
                raise InvalidArgumentError("distance standard deviations must be positive")

        w = 1.0 / sigma**2
        if weights is not None:
            w = w * np.asarray(weights, dtype=float)

        if self.linear_solver_used:
            position = linear_lateration(
                positions, distances, homogeneous=self.homogeneous_linear_solver_used
            )
            method = "homogeneous" if self.homogeneous_linear_solver_used else "linear"
            refine = self.result_refined
        else:
            if initial_position is None:
                position = np.mean(positions, axis=0)
            else:
                position = np.asarray(initial_position, dtype=float)
                if position.shape != (dim,):
                    raise InvalidArgumentError(
                        f"initial_position must have shape ({dim},), got {position.shape}"
                    )
            refine = True

        if not np.all(np.isfinite(position)):
            raise NumericalInstabilityError("Linear lateration produced a non-finite position")

        if not refine:
            residuals = range_residuals(position, positions, distances)
            return LaterationResult(
                position=position,
                covariance=None,
                residuals=residuals,
                cost=float(0.5 * np.sum(w * residuals**2)),
                converged=True,
                method=method,
            )

        return self._refine(positions, distances, w, position)

    def _refine(
        self,
        positions: np.ndarray,
        distances: np.ndarray,
        weights: np.ndarray,
        x0: np.ndarray,
    ) -> LaterationResult:
        def h(x):
            return np.linalg.norm(positions - x, axis=1)

        def jacobian(x):
            diff = x - positions
            return normalize_jacobian_singularities(diff, np.linalg.norm(diff, axis=1))

        try:
            result = levenberg_marquardt(
                h,
                jacobian,
                distances,
                x0,
                weights=weights,
                max_iter=self.max_iterations,
                tol=self.tolerance,
                return_covariance=self.covariance_kept,
            )
        except np.linalg.LinAlgError as e:
            raise NumericalInstabilityError(f"Lateration refinement failed: {e}") from e

        if not np.all(np.isfinite(result.x)):
            raise NumericalInstabilityError("Lateration refinement diverged")

        covariance = result.covariance
        if covariance is not None:
            covariance = 0.5 * (covariance + covariance.T)
            check_symmetric_positive_definite(covariance, "position covariance")

        return LaterationResult(
            position=result.x,
            covariance=covariance,
            residuals=-result.residuals,
            cost=result.cost,
            converged=result.converged,
            method="refined",
        )
