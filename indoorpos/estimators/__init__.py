"""
Lateration solvers.

Available solvers:
    - Linear, weighted and homogeneous least squares
    - Levenberg-Marquardt nonlinear least squares
    - Plain lateration (linear initialization + LM refinement)
    - Robust lateration (RANSAC, MSAC, LMedS, PROSAC, PROMedS)
"""

from indoorpos.estimators.lateration import (
    LaterationResult,
    LaterationSolver,
    linear_lateration,
    range_residuals,
)
from indoorpos.estimators.least_squares import (
    homogeneous_least_squares,
    linear_least_squares,
    weighted_least_squares,
)
from indoorpos.estimators.nonlinear_least_squares import (
    NonlinearLSResult,
    levenberg_marquardt,
    tukey_weights,
)
from indoorpos.estimators.robust import (
    InliersData,
    LMedSStrategy,
    MsacStrategy,
    ProgressiveSampler,
    PROMedSStrategy,
    ProsacStrategy,
    RansacStrategy,
    RobustEstimatorMethod,
    RobustLaterationResult,
    RobustLaterationSolver,
    RobustStrategy,
    UniformSampler,
    create_strategy,
    required_iterations,
    weighted_median,
)

__all__ = [
    # Linear LS
    "linear_least_squares",
    "weighted_least_squares",
    "homogeneous_least_squares",
    # Nonlinear LS
    "levenberg_marquardt",
    "tukey_weights",
    "NonlinearLSResult",
    # Lateration
    "LaterationSolver",
    "LaterationResult",
    "linear_lateration",
    "range_residuals",
    # Robust lateration
    "RobustEstimatorMethod",
    "RobustLaterationSolver",
    "RobustLaterationResult",
    "InliersData",
    "RobustStrategy",
    "RansacStrategy",
    "MsacStrategy",
    "LMedSStrategy",
    "ProsacStrategy",
    "PROMedSStrategy",
    "UniformSampler",
    "ProgressiveSampler",
    "create_strategy",
    "required_iterations",
    "weighted_median",
]
