"""Configuration of a single robust estimation pass."""

import dataclasses
from dataclasses import dataclass
from typing import Optional

from indoorpos.estimators.robust import (
    DEFAULT_CONFIDENCE,
    DEFAULT_MAX_ITERATIONS,
    RobustEstimatorMethod,
    create_strategy,
)
from indoorpos.exceptions import InvalidArgumentError

# Distance std-dev used when a reading carries no usable uncertainty (m)
DEFAULT_FALLBACK_DISTANCE_STANDARD_DEVIATION = 1e-3

DEFAULT_ROBUST_METHOD = RobustEstimatorMethod.PROMEDS


@dataclass(frozen=True)
class RobustPassConfig:
    """
    Settings of one robust pass (ranging, RSSI or mixed).

    Attributes:
        robust_method: Robust estimator method.
        threshold: Inlier threshold in meters for RANSAC/MSAC/PROSAC, stop
            threshold on the median of squared residuals for LMedS/PROMedS.
            None selects the method default.
        confidence: Confidence in (0, 1) driving the adaptive iteration count.
        max_iterations: Iteration limit, at least 1.
        preliminary_subset_size: Measurements per candidate fit. None means
            the minimum, d+1.
        preliminary_solution_refined: Refine each candidate before scoring.
        linear_solver_used: Initialize fits with the linear solver.
        homogeneous_linear_solver_used: Use the homogeneous linear system.
        radio_source_position_covariance_used: Inflate distance variances
            with the trace of source position covariances.
        evenly_distribute_readings: Spread subsets across radio sources.
        fallback_distance_standard_deviation: Distance std-dev used when a
            reading has no uncertainty information.

    Example:
        >>> config = RobustPassConfig(robust_method=RobustEstimatorMethod.RANSAC,
        ...                           threshold=0.5)
        >>> config.strategy().threshold
        0.5
    """

    robust_method: RobustEstimatorMethod = DEFAULT_ROBUST_METHOD
    threshold: Optional[float] = None
    confidence: float = DEFAULT_CONFIDENCE
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    preliminary_subset_size: Optional[int] = None
    preliminary_solution_refined: bool = True
    linear_solver_used: bool = True
    homogeneous_linear_solver_used: bool = False
    radio_source_position_covariance_used: bool = True
    evenly_distribute_readings: bool = True
    fallback_distance_standard_deviation: float = DEFAULT_FALLBACK_DISTANCE_STANDARD_DEVIATION

    def __post_init__(self) -> None:
        try:
            object.__setattr__(self, "robust_method", RobustEstimatorMethod(self.robust_method))
        except ValueError as e:
            raise InvalidArgumentError(f"Unknown robust method: {self.robust_method}") from e

        if self.threshold is not None and not self.threshold > 0:
            raise InvalidArgumentError(f"threshold must be positive, got {self.threshold}")
        if not 0.0 < self.confidence < 1.0:
            raise InvalidArgumentError(f"confidence must be in (0, 1), got {self.confidence}")
        if self.max_iterations < 1:
            raise InvalidArgumentError(
                f"max_iterations must be at least 1, got {self.max_iterations}"
            )
        if self.preliminary_subset_size is not None and self.preliminary_subset_size < 3:
            raise InvalidArgumentError(
                "preliminary_subset_size must be at least 3, "
                f"got {self.preliminary_subset_size}"
            )
        if not self.fallback_distance_standard_deviation > 0:
            raise InvalidArgumentError(
                "fallback_distance_standard_deviation must be positive, "
                f"got {self.fallback_distance_standard_deviation}"
            )

    @property
    def quality_scores_required(self) -> bool:
        return self.robust_method.requires_quality_scores

    def subset_size(self, dimensions: int) -> int:
        """Effective preliminary subset size for the given dimensionality."""
        return self.preliminary_subset_size or dimensions + 1

    def strategy(self):
        return create_strategy(self.robust_method, self.threshold)


def with_options(config: Optional[RobustPassConfig], options: dict) -> RobustPassConfig:
    """Config (default RobustPassConfig()) with keyword overrides applied."""
    config = config if config is not None else RobustPassConfig()
    if not options:
        return config
    try:
        return dataclasses.replace(config, **options)
    except TypeError as e:
        raise InvalidArgumentError(str(e)) from e


def config_property(name: str) -> property:
    """Property reading / replacing one field of the owner's config."""

    def getter(self):
        return getattr(self._config, name)

    def setter(self, value):
        self._check_locked()
        self.config = dataclasses.replace(self._config, **{name: value})

    return property(getter, setter, doc=f"Robust pass setting '{name}'.")
