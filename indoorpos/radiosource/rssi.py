"""
Non-robust RSSI radio source estimator.

Fits the log-distance model

    Pr_i = Pt + 10*n*log10(k_i) - 5*n*log10(‖p - x_i‖²),   k_i = c / (4*pi*f_i)

to RSSI readings sampled at known positions x_i with Levenberg-Marquardt.
Any subset of the source position p, the transmitted power Pt and the
path-loss exponent n can be estimated; parameters not estimated are held at
their initial values. Readings without an RSSI std-dev are weighted with
DEFAULT_POWER_STANDARD_DEVIATION.
"""

import logging
from typing import Optional

import numpy as np

from indoorpos.estimators.nonlinear_least_squares import levenberg_marquardt
from indoorpos.exceptions import InvalidArgumentError, NumericalInstabilityError
from indoorpos.radio.measurement_models import (
    DEFAULT_PATH_LOSS_EXPONENT,
    dbm_to_power,
    wavelength_factor,
)
from indoorpos.radio.sources import RadioSourceWithPowerAndLocated
from indoorpos.radiosource.base import RadioSourceEstimator
from indoorpos.utils.geometry import check_source_geometry

logger = logging.getLogger(__name__)

# RSSI std-dev used for readings that carry none (dB)
DEFAULT_POWER_STANDARD_DEVIATION = 1.0

# Keeps log10(d²) finite when the source sits on a reading position (m²)
MIN_SQUARED_DISTANCE = 1e-12

_LN10 = np.log(10.0)


class RssiRadioSourceEstimator(RadioSourceEstimator):
    """
    Estimate position, transmitted power and path-loss exponent of a source.

    Args:
        readings: Located readings carrying RSSI (RSSI or ranging+RSSI).
        listener: Receives start / end callbacks.
        initial_position: Start point of the fit. Required when position
            estimation is disabled; defaults to the reading centroid.
        initial_transmitted_power_dbm: Start value of Pt. Required when
            transmitted power estimation is disabled; defaults to the mean
            RSSI.
        initial_path_loss_exponent: Start value of n.
        position_estimation_enabled: Estimate the source position.
        transmitted_power_estimation_enabled: Estimate Pt.
        path_loss_estimation_enabled: Estimate n.
        covariance_kept: Compute the parameter covariance.
        max_iterations: LM iteration cap.
        tolerance: LM convergence tolerance on the step norm.
        dimensions: 2 or 3.
    """

    uses_ranging = False
    uses_rssi = True

    def __init__(
        self,
        readings=None,
        listener=None,
        initial_position=None,
        initial_transmitted_power_dbm: Optional[float] = None,
        initial_path_loss_exponent: float = DEFAULT_PATH_LOSS_EXPONENT,
        position_estimation_enabled: bool = True,
        transmitted_power_estimation_enabled: bool = True,
        path_loss_estimation_enabled: bool = False,
        covariance_kept: bool = True,
        max_iterations: int = 100,
        tolerance: float = 1e-12,
        dimensions: int = 2,
    ):
        super().__init__(
            readings=readings,
            listener=listener,
            initial_position=initial_position,
            covariance_kept=covariance_kept,
            dimensions=dimensions,
        )
        self._initial_transmitted_power_dbm = initial_transmitted_power_dbm
        self._initial_path_loss_exponent = self._validate_path_loss_exponent(
            initial_path_loss_exponent
        )
        self._position_estimation_enabled = bool(position_estimation_enabled)
        self._transmitted_power_estimation_enabled = bool(transmitted_power_estimation_enabled)
        self._path_loss_estimation_enabled = bool(path_loss_estimation_enabled)
        self.max_iterations = max_iterations
        self.tolerance = tolerance

    @staticmethod
    def _validate_path_loss_exponent(value: float) -> float:
        if not value > 0:
            raise InvalidArgumentError(f"path-loss exponent must be positive, got {value}")
        return float(value)

    # -------------------------------------------------------------------------
    # Settings
    # -------------------------------------------------------------------------
    @property
    def initial_transmitted_power_dbm(self) -> Optional[float]:
        return self._initial_transmitted_power_dbm

    @initial_transmitted_power_dbm.setter
    def initial_transmitted_power_dbm(self, value: Optional[float]) -> None:
        self._check_locked()
        self._initial_transmitted_power_dbm = value

    @property
    def initial_path_loss_exponent(self) -> float:
        return self._initial_path_loss_exponent

    @initial_path_loss_exponent.setter
    def initial_path_loss_exponent(self, value: float) -> None:
        self._check_locked()
        self._initial_path_loss_exponent = self._validate_path_loss_exponent(value)

    @property
    def position_estimation_enabled(self) -> bool:
        return self._position_estimation_enabled

    @position_estimation_enabled.setter
    def position_estimation_enabled(self, value: bool) -> None:
        self._check_locked()
        self._position_estimation_enabled = bool(value)

    @property
    def transmitted_power_estimation_enabled(self) -> bool:
        return self._transmitted_power_estimation_enabled

    @transmitted_power_estimation_enabled.setter
    def transmitted_power_estimation_enabled(self, value: bool) -> None:
        self._check_locked()
        self._transmitted_power_estimation_enabled = bool(value)

    @property
    def path_loss_estimation_enabled(self) -> bool:
        return self._path_loss_estimation_enabled

    @path_loss_estimation_enabled.setter
    def path_loss_estimation_enabled(self, value: bool) -> None:
        self._check_locked()
        self._path_loss_estimation_enabled = bool(value)

    # -------------------------------------------------------------------------
    # Readiness
    # -------------------------------------------------------------------------
    @property
    def num_parameters(self) -> int:
        """Number of estimated parameters."""
        return (
            (self._dimensions if self._position_estimation_enabled else 0)
            + int(self._transmitted_power_estimation_enabled)
            + int(self._path_loss_estimation_enabled)
        )

    @property
    def min_readings(self) -> int:
        return self.num_parameters + 1

    @property
    def is_ready(self) -> bool:
        if self.num_parameters == 0:
            return False
        if not self._position_estimation_enabled and self._initial_position is None:
            return False
        if (
            not self._transmitted_power_estimation_enabled
            and self._initial_transmitted_power_dbm is None
        ):
            return False
        if self._position_estimation_enabled and (
            self._num_distinct_positions(self.usable_readings) < self._dimensions + 1
        ):
            return False
        return super().is_ready

    # -------------------------------------------------------------------------
    # Estimation
    # -------------------------------------------------------------------------
    def _estimate(self) -> None:
        readings = self.usable_readings
        d = self._dimensions
        xs = np.array([r.position for r in readings])
        rssi = np.array([r.rssi for r in readings])
        stds = np.array([
            DEFAULT_POWER_STANDARD_DEVIATION if r.rssi_standard_deviation is None
            else r.rssi_standard_deviation
            for r in readings
        ])
        log_k = np.log10([wavelength_factor(r.source.frequency) for r in readings])

        estimate_position = self._position_estimation_enabled
        estimate_power = self._transmitted_power_estimation_enabled
        estimate_path_loss = self._path_loss_estimation_enabled

        position0 = (
            self._initial_position if self._initial_position is not None
            else xs.mean(axis=0)
        )
        power0 = (
            self._initial_transmitted_power_dbm
            if self._initial_transmitted_power_dbm is not None
            else float(rssi.mean())
        )
        path_loss0 = self._initial_path_loss_exponent

        if estimate_position:
            valid, message = check_source_geometry(xs, warn_degenerate=False)
            if not valid:
                logger.warning("RSSI source fit on degenerate reading geometry: %s", message)

        def unpack(params):
            i = 0
            position = position0
            if estimate_position:
                position = params[:d]
                i = d
            power = power0
            if estimate_power:
                power = params[i]
                i += 1
            path_loss = params[i] if estimate_path_loss else path_loss0
            return position, power, path_loss

        def squared_distances(position):
            return np.maximum(np.sum((position - xs) ** 2, axis=1), MIN_SQUARED_DISTANCE)

        def h(params):
            position, power, path_loss = unpack(params)
            return (
                power + 10.0 * path_loss * log_k
                - 5.0 * path_loss * np.log10(squared_distances(position))
            )

        def jacobian(params):
            position, _, path_loss = unpack(params)
            sq = squared_distances(position)
            columns = []
            if estimate_position:
                columns.append(-10.0 * path_loss * (position - xs) / (_LN10 * sq[:, None]))
            if estimate_power:
                columns.append(np.ones((len(xs), 1)))
            if estimate_path_loss:
                columns.append((10.0 * log_k - 5.0 * np.log10(sq))[:, None])
            return np.hstack(columns)

        x0 = []
        if estimate_position:
            x0.extend(position0)
        if estimate_power:
            x0.append(power0)
        if estimate_path_loss:
            x0.append(path_loss0)

        try:
            result = levenberg_marquardt(
                h,
                jacobian,
                rssi,
                np.array(x0, dtype=float),
                weights=1.0 / stds**2,
                max_iter=self.max_iterations,
                tol=self.tolerance,
                return_covariance=self._covariance_kept,
            )
        except np.linalg.LinAlgError as e:
            raise NumericalInstabilityError(f"RSSI source fit failed: {e}") from e

        if not np.all(np.isfinite(result.x)):
            raise NumericalInstabilityError("RSSI source fit diverged")

        position, power, path_loss = unpack(result.x)
        if not path_loss > 0:
            raise NumericalInstabilityError(
                f"RSSI source fit gave a non-positive path-loss exponent ({path_loss})"
            )
        logger.debug(
            "RSSI source fit over %d readings: %d iterations, converged=%s",
            len(readings), result.iterations, result.converged,
        )

        covariance = result.covariance
        self._covariance = covariance
        self._chi_sq = 2.0 * result.cost
        self._estimated_position = np.array(position, dtype=float)
        self._estimated_transmitted_power_dbm = float(power)
        self._estimated_path_loss_exponent = float(path_loss)

        i = 0
        if estimate_position:
            if covariance is not None:
                self._estimated_position_covariance = covariance[:d, :d]
            i = d
        if estimate_power:
            if covariance is not None:
                self._estimated_transmitted_power_variance = float(covariance[i, i])
            i += 1
        if estimate_path_loss and covariance is not None:
            self._estimated_path_loss_exponent_variance = float(covariance[i, i])

        self._estimated_radio_source = self._build_radio_source()

    def _build_radio_source(self) -> RadioSourceWithPowerAndLocated:
        source = self.source
        power_variance = self._estimated_transmitted_power_variance
        path_loss_variance = self._estimated_path_loss_exponent_variance
        return RadioSourceWithPowerAndLocated(
            identifier=source.identifier,
            frequency=source.frequency,
            source_type=source.source_type,
            position=self._estimated_position,
            position_covariance=self._estimated_position_covariance,
            transmitted_power_dbm=self._estimated_transmitted_power_dbm,
            transmitted_power_standard_deviation=(
                None if power_variance is None else float(np.sqrt(power_variance))
            ),
            path_loss_exponent=self._estimated_path_loss_exponent,
            path_loss_exponent_standard_deviation=(
                None if path_loss_variance is None else float(np.sqrt(path_loss_variance))
            ),
        )

    def _clear_results(self) -> None:
        super()._clear_results()
        self._covariance: Optional[np.ndarray] = None
        self._chi_sq: Optional[float] = None
        self._estimated_transmitted_power_dbm: Optional[float] = None
        self._estimated_transmitted_power_variance: Optional[float] = None
        self._estimated_path_loss_exponent: Optional[float] = None
        self._estimated_path_loss_exponent_variance: Optional[float] = None

    # -------------------------------------------------------------------------
    # Results
    # -------------------------------------------------------------------------
    @property
    def covariance(self) -> Optional[np.ndarray]:
        """Covariance of the estimated parameters, in [p, Pt, n] order."""
        return self._covariance

    @property
    def chi_sq(self) -> Optional[float]:
        """Weighted sum of squared RSSI residuals at the solution."""
        return self._chi_sq

    @property
    def estimated_transmitted_power_dbm(self) -> Optional[float]:
        return self._estimated_transmitted_power_dbm

    @property
    def estimated_transmitted_power(self) -> Optional[float]:
        """Estimated transmitted power in mW."""
        if self._estimated_transmitted_power_dbm is None:
            return None
        return dbm_to_power(self._estimated_transmitted_power_dbm)

    @property
    def estimated_transmitted_power_variance(self) -> Optional[float]:
        return self._estimated_transmitted_power_variance

    @property
    def estimated_path_loss_exponent(self) -> Optional[float]:
        return self._estimated_path_loss_exponent

    @property
    def estimated_path_loss_exponent_variance(self) -> Optional[float]:
        return self._estimated_path_loss_exponent_variance
