"""
Error taxonomy for indoor position estimation.

All estimator failures derive from PositioningError so callers can catch the
whole family at once. InvalidArgumentError also derives from ValueError, which
is what the lower-level numerical helpers raise for malformed inputs.
"""


class PositioningError(Exception):
    """Base class for all position estimation errors."""


class InvalidArgumentError(PositioningError, ValueError):
    """Malformed configuration or value object, rejected before any state change."""


class NotReadyError(PositioningError):
    """Estimator does not have enough data to attempt an estimation."""


class LockedError(PositioningError):
    """Estimator was mutated or re-entered while an estimation was in flight."""


class NumericalInstabilityError(PositioningError):
    """Linear system or refinement became singular or ill-conditioned."""


class NonSymmetricPositiveDefiniteMatrixError(NumericalInstabilityError):
    """A covariance matrix failed the symmetric positive definite check."""


class RobustEstimationError(PositioningError):
    """Robust estimation could not reach a usable consensus."""
