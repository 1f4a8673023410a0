"""
Robust lateration with the RANSAC family of estimators.

Every method shares the same loop:

1. Draw a preliminary subset of measurements.
2. Fit a candidate position on the subset with the plain lateration solver.
3. Score every measurement's range residual against the candidate.
4. Keep the best candidate and update the required number of iterations
       k = log(1 - confidence) / log(1 - wⁿ)
   where w is the best inlier ratio and n the subset size. Median based
   methods assume w = 0.5, their breakdown point, because their inlier
   count scales with the residuals of the candidate being scored.
5. Optionally refine the best candidate on its inliers.

Methods differ only in how subsets are drawn and candidates scored:

    RANSAC   uniform sampling, most inliers under threshold (ties: lower
             total inlier residual)
    MSAC     uniform sampling, Σ min(r², t²)
    LMedS    uniform sampling, median of r²
    PROSAC   progressive sampling by quality score, scored as RANSAC
    PROMedS  progressive sampling by quality score, quality-weighted median

References:
    Fischler & Bolles (1981), RANSAC.
    Torr & Zisserman (2000), MLESAC / MSAC.
    Rousseeuw (1984), Least Median of Squares.
    Chum & Matas (2005), PROSAC.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, ClassVar, Optional, Tuple

import numpy as np

from indoorpos.estimators.lateration import LaterationSolver, range_residuals
from indoorpos.estimators.nonlinear_least_squares import tukey_weights
from indoorpos.exceptions import (
    InvalidArgumentError,
    NotReadyError,
    NumericalInstabilityError,
    RobustEstimationError,
)

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 1e-2
DEFAULT_STOP_THRESHOLD = 1e-5
DEFAULT_CONFIDENCE = 0.99
DEFAULT_MAX_ITERATIONS = 5000
DEFAULT_PROGRESS_DELTA = 0.05

# Inliers of median based methods lie within this many robust std-devs
LMEDS_INLIER_FACTOR = 2.5
# Floor on the robust residual scale, reached with noise-free data
MIN_RESIDUAL_SCALE = 1e-6
# Inlier ratio assumed by median based methods when bounding iterations
LMEDS_BREAKDOWN_INLIER_RATIO = 0.5


class RobustEstimatorMethod(Enum):
    RANSAC = "ransac"
    LMEDS = "lmeds"
    MSAC = "msac"
    PROSAC = "prosac"
    PROMEDS = "promeds"

    @property
    def requires_quality_scores(self) -> bool:
        return self in (RobustEstimatorMethod.PROSAC, RobustEstimatorMethod.PROMEDS)

    @property
    def median_based(self) -> bool:
        return self in (RobustEstimatorMethod.LMEDS, RobustEstimatorMethod.PROMEDS)


@dataclass
class InliersData:
    """Inlier classification of the best candidate of a robust pass.

    Attributes:
        inliers: Boolean mask over the pass's measurements.
        residuals: Absolute range residuals against the best candidate.
        num_inliers: Number of True entries in inliers.
        best_score: Score of the best candidate: inlier count for
            RANSAC/PROSAC, capped cost for MSAC, (weighted) median of squared
            residuals for LMedS/PROMedS.
        residual_scale: Robust residual std-dev (median based methods only).
    """

    inliers: np.ndarray
    residuals: np.ndarray
    num_inliers: int
    best_score: float
    residual_scale: Optional[float] = None


@dataclass
class RobustLaterationResult:
    position: np.ndarray
    covariance: Optional[np.ndarray]
    inliers_data: InliersData
    iterations: int


def weighted_median(values: np.ndarray, weights: np.ndarray) -> float:
    """Lower weighted median: smallest value whose cumulative weight reaches half."""
    order = np.argsort(values)
    cumulative = np.cumsum(weights[order])
    idx = np.searchsorted(cumulative, 0.5 * cumulative[-1])
    return float(values[order][min(idx, len(values) - 1)])


def required_iterations(
    inlier_ratio: float, subset_size: int, confidence: float, max_iterations: int
) -> int:
    """Iterations needed to draw an all-inlier subset with the given confidence."""
    if confidence >= 1.0:
        return max_iterations
    w_n = inlier_ratio ** subset_size
    if w_n >= 1.0:
        return 1
    if w_n <= 0.0:
        return max_iterations
    k = np.log(1.0 - confidence) / np.log(1.0 - w_n)
    return int(min(max_iterations, max(1, np.ceil(k))))


def quality_weights(quality_scores: np.ndarray) -> np.ndarray:
    """Map arbitrary quality scores onto positive weights in [1, 2]."""
    q = np.asarray(quality_scores, dtype=float)
    span = q.max() - q.min()
    if span <= 0:
        return np.ones_like(q)
    return 1.0 + (q - q.min()) / span


# =============================================================================
# Scoring strategies
# =============================================================================
class RobustStrategy:
    """Scoring rule of a robust method. Lower keys are better."""

    method: ClassVar[RobustEstimatorMethod]
    default_threshold: ClassVar[float] = DEFAULT_THRESHOLD

    def __init__(self, threshold: Optional[float] = None):
        if threshold is None:
            threshold = self.default_threshold
        if not threshold > 0:
            raise InvalidArgumentError(f"threshold must be positive, got {threshold}")
        self.threshold = float(threshold)

    @property
    def median_based(self) -> bool:
        return self.method.median_based

    @property
    def progressive(self) -> bool:
        return self.method.requires_quality_scores

    def score(
        self, residuals: np.ndarray, weights: Optional[np.ndarray], subset_size: int
    ) -> Tuple[tuple, float, np.ndarray, Optional[float]]:
        """Return (sort key, reported score, inlier mask, residual scale)."""
        raise NotImplementedError

    def is_solved(self, best_score: float) -> bool:
        return False

    def inlier_ratio(self, num_inliers: int, num_measurements: int) -> float:
        """Inlier ratio driving the adaptive iteration count."""
        return num_inliers / num_measurements


class RansacStrategy(RobustStrategy):
    method = RobustEstimatorMethod.RANSAC

    def score(self, residuals, weights, subset_size):
        inliers = residuals <= self.threshold
        count = int(np.sum(inliers))
        total = float(np.sum(residuals[inliers]))
        return (-count, total), float(count), inliers, None


class ProsacStrategy(RansacStrategy):
    method = RobustEstimatorMethod.PROSAC


class MsacStrategy(RobustStrategy):
    method = RobustEstimatorMethod.MSAC

    def score(self, residuals, weights, subset_size):
        inliers = residuals <= self.threshold
        cost = float(np.sum(np.minimum(residuals**2, self.threshold**2)))
        return (cost,), cost, inliers, None


class LMedSStrategy(RobustStrategy):
    """Least median of squares.

    threshold is the stop threshold: iteration ends early once the median
    of squared residuals falls below it.
    """

    method = RobustEstimatorMethod.LMEDS
    default_threshold = DEFAULT_STOP_THRESHOLD

    def _median(self, squared: np.ndarray, weights: Optional[np.ndarray]) -> float:
        return float(np.median(squared))

    def score(self, residuals, weights, subset_size):
        squared = residuals**2
        median = self._median(squared, weights)

        # Rousseeuw's finite-sample corrected scale estimate
        n = len(residuals)
        scale = 1.4826 * (1.0 + 5.0 / max(n - subset_size, 1)) * np.sqrt(median)
        scale = max(scale, MIN_RESIDUAL_SCALE)
        inliers = residuals <= LMEDS_INLIER_FACTOR * scale
        return (median,), median, inliers, float(scale)

    def is_solved(self, best_score: float) -> bool:
        return best_score <= self.threshold

    def inlier_ratio(self, num_inliers, num_measurements):
        return LMEDS_BREAKDOWN_INLIER_RATIO


class PROMedSStrategy(LMedSStrategy):
    method = RobustEstimatorMethod.PROMEDS

    def _median(self, squared, weights):
        if weights is None:
            return float(np.median(squared))
        return weighted_median(squared, weights)


_STRATEGIES = {
    RobustEstimatorMethod.RANSAC: RansacStrategy,
    RobustEstimatorMethod.MSAC: MsacStrategy,
    RobustEstimatorMethod.LMEDS: LMedSStrategy,
    RobustEstimatorMethod.PROSAC: ProsacStrategy,
    RobustEstimatorMethod.PROMEDS: PROMedSStrategy,
}


def create_strategy(
    method: RobustEstimatorMethod, threshold: Optional[float] = None
) -> RobustStrategy:
    """Create the scoring strategy of a robust method."""
    try:
        method = RobustEstimatorMethod(method)
    except ValueError as e:
        raise InvalidArgumentError(f"Unknown robust method: {method}") from e
    return _STRATEGIES[method](threshold)


# =============================================================================
# Subset samplers
# =============================================================================
class UniformSampler:
    """
    Uniform subset sampler.

    When groups are given and evenly_distributed is set, each subset first
    takes one measurement from as many distinct groups (radio sources) as
    possible, and only then repeats groups.
    """

    def __init__(
        self,
        num_measurements: int,
        subset_size: int,
        rng: np.random.Generator,
        groups: Optional[np.ndarray] = None,
        evenly_distributed: bool = False,
    ):
        self.num_measurements = num_measurements
        self.subset_size = subset_size
        self.rng = rng
        self._members = None
        if evenly_distributed and groups is not None:
            groups = np.asarray(groups)
            self._members = [np.flatnonzero(groups == g) for g in np.unique(groups)]

    def sample(self) -> np.ndarray:
        if self._members is None:
            return self.rng.choice(self.num_measurements, self.subset_size, replace=False)

        order = self.rng.permutation(len(self._members))
        chosen = [
            self.rng.choice(self._members[g]) for g in order[: self.subset_size]
        ]
        missing = self.subset_size - len(chosen)
        if missing > 0:
            remaining = np.setdiff1d(np.arange(self.num_measurements), chosen)
            chosen.extend(self.rng.choice(remaining, missing, replace=False))
        return np.asarray(chosen, dtype=int)


class ProgressiveSampler:
    """
    PROSAC progressive sampler (Chum & Matas, 2005).

    Measurements are ranked by descending quality. Sampling starts from the
    top subset_size measurements and the pool grows following the growth
    function T'_n, so high quality hypotheses are tried first while the
    sampler degrades to uniform sampling after max_iterations draws.
    """

    def __init__(
        self,
        quality_scores: np.ndarray,
        subset_size: int,
        max_iterations: int,
        rng: np.random.Generator,
    ):
        # Stable sort keeps acquisition order among equal scores
        self.order = np.argsort(-np.asarray(quality_scores, dtype=float), kind="stable")
        self.subset_size = subset_size
        self.rng = rng
        self.num_measurements = len(self.order)

        m = subset_size
        N = self.num_measurements
        t_n = float(max_iterations)
        for i in range(m):
            t_n *= (m - i) / (N - i)

        self.pool_size = m
        self.t = 0
        self.t_n = t_n
        self.t_n_prime = 1

    def sample(self) -> np.ndarray:
        m = self.subset_size
        self.t += 1

        if self.t > self.t_n_prime and self.pool_size < self.num_measurements:
            t_next = self.t_n * (self.pool_size + 1) / (self.pool_size + 1 - m)
            self.pool_size += 1
            self.t_n_prime += int(np.ceil(t_next - self.t_n))
            self.t_n = t_next

        n = self.pool_size
        if self.t_n_prime < self.t:
            picks = self.rng.choice(n, m, replace=False)
        else:
            picks = np.append(self.rng.choice(n - 1, m - 1, replace=False), n - 1)
        return self.order[picks]


# =============================================================================
# Robust lateration
# =============================================================================
class RobustLaterationSolver:
    """
    Robust lateration over (position, distance, std-dev) measurements.

    Args:
        strategy: Scoring strategy (see create_strategy).
        confidence: Probability of drawing at least one outlier-free subset.
        max_iterations: Upper bound on iterations.
        progress_delta: Minimum progress change between progress callbacks.
        preliminary_subset_size: Measurements per candidate fit, at least
            d+1. Defaults to d+1.
        preliminary_solution_refined: Refine each candidate fit with LM.
        result_refined: Refine the best candidate on its inliers.
        covariance_kept: Compute the final position covariance.
        linear_solver_used: Initialize fits with the linear solver.
        homogeneous_linear_solver_used: Use the homogeneous linear system.
        evenly_distribute_readings: Spread uniform subsets across groups.
        on_iteration: Called with the iteration index before each iteration.
        on_progress: Called with progress in [0, 1].
    """

    def __init__(
        self,
        strategy: RobustStrategy,
        confidence: float = DEFAULT_CONFIDENCE,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        progress_delta: float = DEFAULT_PROGRESS_DELTA,
        preliminary_subset_size: Optional[int] = None,
        preliminary_solution_refined: bool = True,
        result_refined: bool = True,
        covariance_kept: bool = True,
        linear_solver_used: bool = True,
        homogeneous_linear_solver_used: bool = False,
        evenly_distribute_readings: bool = False,
        on_iteration: Optional[Callable[[int], None]] = None,
        on_progress: Optional[Callable[[float], None]] = None,
    ):
        if not 0.0 < confidence < 1.0:
            raise InvalidArgumentError(f"confidence must be in (0, 1), got {confidence}")
        self.strategy = strategy
        self.confidence = confidence
        self.max_iterations = max_iterations
        self.progress_delta = progress_delta
        self.preliminary_subset_size = preliminary_subset_size
        self.preliminary_solution_refined = preliminary_solution_refined
        self.result_refined = result_refined
        self.covariance_kept = covariance_kept
        self.linear_solver_used = linear_solver_used
        self.homogeneous_linear_solver_used = homogeneous_linear_solver_used
        self.evenly_distribute_readings = evenly_distribute_readings
        self.on_iteration = on_iteration
        self.on_progress = on_progress

    def _make_sampler(self, n, subset_size, quality_scores, groups, rng):
        if self.strategy.progressive:
            if quality_scores is None:
                quality_scores = np.zeros(n)
            return ProgressiveSampler(quality_scores, subset_size, self.max_iterations, rng)
        return UniformSampler(
            n, subset_size, rng, groups=groups, evenly_distributed=self.evenly_distribute_readings
        )

    def solve(
        self,
        positions: np.ndarray,
        distances: np.ndarray,
        distance_standard_deviations: Optional[np.ndarray] = None,
        quality_scores: Optional[np.ndarray] = None,
        groups: Optional[np.ndarray] = None,
        initial_position: Optional[np.ndarray] = None,
        rng: Optional[np.random.Generator] = None,
    ) -> RobustLaterationResult:
        """
        Run the robust estimation.

        Args:
            positions: Source positions (N × d).
            distances: Measured distances (N,).
            distance_standard_deviations: Distance std-devs (N,).
            quality_scores: Per-measurement quality (N,), higher is better.
            groups: Per-measurement source index (N,) for even distribution.
            initial_position: Starting point when the linear solver is unused.
            rng: Random generator driving subset sampling.

        Returns:
            RobustLaterationResult.

        Raises:
            NotReadyError: If there are fewer measurements than the subset size.
            RobustEstimationError: If no candidate is valid or the best one
                has fewer than d+1 inliers.
        """
        positions = np.asarray(positions, dtype=float)
        distances = np.asarray(distances, dtype=float)
        n, dim = positions.shape
        min_required = dim + 1

        if distance_standard_deviations is None:
            distance_standard_deviations = np.ones(n)
        stds = np.asarray(distance_standard_deviations, dtype=float)

        subset_size = self.preliminary_subset_size or min_required
        if subset_size < min_required:
            raise InvalidArgumentError(
                f"preliminary_subset_size must be at least {min_required}, got {subset_size}"
            )
        if n < subset_size:
            raise NotReadyError(
                f"{n} measurements available, preliminary subset needs {subset_size}"
            )

        weights = None
        if quality_scores is not None:
            quality_scores = np.asarray(quality_scores, dtype=float)
            if self.strategy.median_based:
                weights = quality_weights(quality_scores)

        rng = rng if rng is not None else np.random.default_rng()
        sampler = self._make_sampler(n, subset_size, quality_scores, groups, rng)
        candidate_solver = LaterationSolver(
            linear_solver_used=self.linear_solver_used,
            homogeneous_linear_solver_used=self.homogeneous_linear_solver_used,
            result_refined=self.preliminary_solution_refined,
            covariance_kept=False,
        )

        best_key = None
        best_position = None
        best = None
        required = self.max_iterations
        iteration = 0
        last_progress = 0.0

        def consider(candidate_position):
            nonlocal best_key, best_position, best, required
            residuals = np.abs(range_residuals(candidate_position, positions, distances))
            key, value, inliers, scale = self.strategy.score(residuals, weights, subset_size)
            if best_key is not None and not key < best_key:
                return
            best_key = key
            best_position = candidate_position
            best = InliersData(
                inliers=inliers,
                residuals=residuals,
                num_inliers=int(np.sum(inliers)),
                best_score=value,
                residual_scale=scale,
            )
            required = required_iterations(
                self.strategy.inlier_ratio(best.num_inliers, n),
                subset_size,
                self.confidence,
                self.max_iterations,
            )
            logger.debug(
                "iteration %d: new best candidate, %d/%d inliers, score %g, "
                "%d iterations required",
                iteration, best.num_inliers, n, value, required,
            )

        # A prior position (e.g. from another modality) is the first hypothesis
        if initial_position is not None:
            initial_position = np.asarray(initial_position, dtype=float)
            consider(initial_position)

        while iteration < required:
            if best is not None and self.strategy.is_solved(best.best_score):
                break

            if self.on_iteration is not None:
                self.on_iteration(iteration)

            subset = sampler.sample()
            iteration += 1
            try:
                candidate = candidate_solver.solve(
                    positions[subset],
                    distances[subset],
                    stds[subset],
                    initial_position=initial_position,
                )
            except (NumericalInstabilityError, NotReadyError, np.linalg.LinAlgError):
                candidate = None

            if candidate is not None:
                consider(candidate.position)

            progress = min(1.0, iteration / required)
            if self.on_progress is not None and progress - last_progress >= self.progress_delta:
                self.on_progress(progress)
                last_progress = progress

        if self.on_progress is not None and last_progress < 1.0:
            self.on_progress(1.0)

        if best is None:
            raise RobustEstimationError(
                f"No valid candidate position found after {iteration} iterations"
            )
        if best.num_inliers < min_required:
            raise RobustEstimationError(
                f"Best candidate has only {best.num_inliers} inliers, {min_required} required"
            )

        logger.debug(
            "%s finished after %d iterations with %d/%d inliers",
            self.strategy.method.name, iteration, best.num_inliers, n,
        )

        position = best_position
        covariance = None
        if self.result_refined:
            position, covariance = self._refine(positions, distances, stds, best, best_position)

        return RobustLaterationResult(
            position=position,
            covariance=covariance,
            inliers_data=best,
            iterations=iteration,
        )

    def _refine(self, positions, distances, stds, best, x0):
        refiner = LaterationSolver(
            linear_solver_used=False,
            result_refined=True,
            covariance_kept=self.covariance_kept,
        )
        if self.strategy.median_based:
            u = best.residuals / (LMEDS_INLIER_FACTOR * best.residual_scale)
            result = refiner.solve(
                positions, distances, stds, initial_position=x0,
                weights=tukey_weights(u),
            )
        else:
            mask = best.inliers
            result = refiner.solve(
                positions[mask], distances[mask], stds[mask], initial_position=x0
            )
        return result.position, result.covariance
