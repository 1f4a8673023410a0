"""
Listener interface for position estimators.

Callbacks are invoked synchronously on the thread running estimate(). An
estimator is locked while they run, so calling any of its mutators from a
callback raises LockedError.
"""

from typing import Callable, Optional


class PositionEstimatorListener:
    """Base listener; override the callbacks of interest."""

    def on_estimate_start(self, estimator) -> None:
        pass

    def on_estimate_end(self, estimator) -> None:
        pass

    def on_estimate_next_iteration(self, estimator, iteration: int) -> None:
        pass

    def on_estimate_progress_change(self, estimator, progress: float) -> None:
        pass


class CallbackListener(PositionEstimatorListener):
    """
    Listener built from plain callables.

    Example:
        >>> progress = []
        >>> listener = CallbackListener(
        ...     on_progress_change=lambda est, p: progress.append(p))
    """

    def __init__(
        self,
        on_start: Optional[Callable] = None,
        on_end: Optional[Callable] = None,
        on_next_iteration: Optional[Callable] = None,
        on_progress_change: Optional[Callable] = None,
    ):
        self._on_start = on_start
        self._on_end = on_end
        self._on_next_iteration = on_next_iteration
        self._on_progress_change = on_progress_change

    def on_estimate_start(self, estimator) -> None:
        if self._on_start is not None:
            self._on_start(estimator)

    def on_estimate_end(self, estimator) -> None:
        if self._on_end is not None:
            self._on_end(estimator)

    def on_estimate_next_iteration(self, estimator, iteration: int) -> None:
        if self._on_next_iteration is not None:
            self._on_next_iteration(estimator, iteration)

    def on_estimate_progress_change(self, estimator, progress: float) -> None:
        if self._on_progress_change is not None:
            self._on_progress_change(estimator, progress)
