"""
Radio measurement models for RSSI based ranging.

This module implements the power conversions and path-loss models used to turn
received signal strength into an implied distance to a radio source:
- dBm / linear power conversion
- Log-distance path-loss model and its inversion
- Free-space (Friis) reference power at 1 m for a given carrier frequency
- First-order propagation of power and path-loss exponent uncertainty

With k = c / (4*pi*f) the free-space received power is:
    Pr = Pt * k^n / d^n
which in logarithmic units gives the inversion used throughout the package:
    d = k * 10^((Pt_dBm - Pr_dBm) / (10*n))
"""

from typing import Optional

import numpy as np

from indoorpos.exceptions import InvalidArgumentError

# Physical constants
SPEED_OF_LIGHT = 299792458.0  # m/s

DEFAULT_FREQUENCY = 2.4e9  # Hz, 2.4 GHz WiFi band
DEFAULT_PATH_LOSS_EXPONENT = 2.0  # free space

_LN10 = np.log(10.0)


# =============================================================================
# Power Unit Conversion
# =============================================================================
def dbm_to_power(dbm: float) -> float:
    """
    Convert power from dBm to milliwatts.

    Args:
        dbm: Power in dBm.

    Returns:
        Power in mW (10^(dBm/10)).

    Example:
        >>> dbm_to_power(20.0)
        100.0
    """
    return float(10.0 ** (dbm / 10.0))


def power_to_dbm(power_mw: float) -> float:
    """
    Convert power from milliwatts to dBm.

    Args:
        power_mw: Power in mW, must be positive.

    Returns:
        Power in dBm (10*log10(mW)).

    Raises:
        InvalidArgumentError: If power is not positive.
    """
    if power_mw <= 0:
        raise InvalidArgumentError("Power must be positive to be expressed in dBm")
    return float(10.0 * np.log10(power_mw))


# =============================================================================
# Path-Loss Models
# =============================================================================
def wavelength_factor(frequency: float = DEFAULT_FREQUENCY) -> float:
    """Return k = c / (4*pi*f), the free-space attenuation factor at 1 m."""
    if frequency <= 0:
        raise InvalidArgumentError("Frequency must be positive")
    return SPEED_OF_LIGHT / (4.0 * np.pi * frequency)


def free_space_reference_power(
    tx_power_dbm: float,
    frequency: float = DEFAULT_FREQUENCY,
    path_loss_exp: float = DEFAULT_PATH_LOSS_EXPONENT,
) -> float:
    """
    Received power at 1 m from a source transmitting tx_power_dbm.

    Implements:
        p_ref = Pt + 10*n*log10(c / (4*pi*f))

    so that the generic log-distance model with d_ref = 1 m reduces to the
    free-space model when n = 2.

    Args:
        tx_power_dbm: Transmitted power in dBm.
        frequency: Carrier frequency in Hz. Defaults to 2.4 GHz.
        path_loss_exp: Path-loss exponent n. Defaults to 2.0.

    Returns:
        Reference received power at 1 m in dBm.
    """
    k = wavelength_factor(frequency)
    return tx_power_dbm + 10.0 * path_loss_exp * np.log10(k)


def rss_pathloss(
    p_ref_dbm: float,
    distance: float,
    path_loss_exp: float = DEFAULT_PATH_LOSS_EXPONENT,
    d_ref: float = 1.0,
) -> float:
    """
    Compute RSS using the log-distance path-loss model.

        p_R = p_ref - 10*n*log10(d / d_ref)

    Args:
        p_ref_dbm: Reference RSS at distance d_ref in dBm.
        distance: Distance from source to receiver in meters.
        path_loss_exp: Path-loss exponent n. Defaults to 2.0 (free space).
                      Typical indoor values: 2.5-4.0.
        d_ref: Reference distance in meters. Defaults to 1.0.

    Returns:
        Received signal strength in dBm.

    Example:
        >>> rss = rss_pathloss(p_ref_dbm=-40.0, distance=10.0, path_loss_exp=2.5)
        >>> print(f"RSS: {rss:.2f} dBm")
        RSS: -65.00 dBm
    """
    if distance <= 0:
        raise InvalidArgumentError("Distance must be positive")

    return p_ref_dbm - 10 * path_loss_exp * np.log10(distance / d_ref)


def received_power_dbm(
    tx_power_dbm: float,
    distance: float,
    frequency: float = DEFAULT_FREQUENCY,
    path_loss_exp: float = DEFAULT_PATH_LOSS_EXPONENT,
) -> float:
    """
    Expected RSSI at a given distance from a source of known power.

    Combines free_space_reference_power and rss_pathloss, i.e. the dB form of
    Pr = Pt * (c / (4*pi*f))^n / d^n.

    Example:
        >>> rssi = received_power_dbm(tx_power_dbm=20.0, distance=5.0)
        >>> d = rssi_to_distance(rssi, tx_power_dbm=20.0)
        >>> bool(np.isclose(d, 5.0))
        True
    """
    p_ref = free_space_reference_power(tx_power_dbm, frequency, path_loss_exp)
    return float(rss_pathloss(p_ref, distance, path_loss_exp))


def rssi_to_distance(
    rssi_dbm: float,
    tx_power_dbm: float,
    frequency: float = DEFAULT_FREQUENCY,
    path_loss_exp: float = DEFAULT_PATH_LOSS_EXPONENT,
) -> float:
    """
    Estimate distance from RSSI by inverting the free-space path-loss model.

        d = (c / (4*pi*f)) * 10^((Pt - Pr) / (10*n))

    Args:
        rssi_dbm: Received signal strength in dBm.
        tx_power_dbm: Transmitted power of the source in dBm.
        frequency: Carrier frequency in Hz.
        path_loss_exp: Path-loss exponent n, must be positive.

    Returns:
        Estimated distance in meters.
    """
    if path_loss_exp <= 0:
        raise InvalidArgumentError("Path-loss exponent must be positive")

    k = wavelength_factor(frequency)
    return float(k * 10.0 ** ((tx_power_dbm - rssi_dbm) / (10.0 * path_loss_exp)))


# =============================================================================
# Uncertainty Propagation
# =============================================================================
def rssi_distance_gradient(
    rssi_dbm: float,
    tx_power_dbm: float,
    frequency: float = DEFAULT_FREQUENCY,
    path_loss_exp: float = DEFAULT_PATH_LOSS_EXPONENT,
) -> np.ndarray:
    """
    Gradient of rssi_to_distance with respect to [Pt, Pr, n].

    With d = k * 10^g and g = (Pt - Pr) / (10*n):
        dd/dPt =  ln(10) / (10*n) * d
        dd/dPr = -ln(10) / (10*n) * d
        dd/dn  = -ln(10) * (Pt - Pr) / (10*n^2) * d

    Returns:
        Gradient vector of shape (3,).
    """
    d = rssi_to_distance(rssi_dbm, tx_power_dbm, frequency, path_loss_exp)
    n = path_loss_exp
    d_tx = _LN10 / (10.0 * n) * d
    d_n = -_LN10 * (tx_power_dbm - rssi_dbm) / (10.0 * n ** 2) * d
    return np.array([d_tx, -d_tx, d_n])


def propagate_variances_to_distance_variance(
    rssi_dbm: float,
    tx_power_dbm: float,
    frequency: float = DEFAULT_FREQUENCY,
    path_loss_exp: float = DEFAULT_PATH_LOSS_EXPONENT,
    tx_power_variance: Optional[float] = None,
    rssi_variance: Optional[float] = None,
    path_loss_exp_variance: Optional[float] = None,
) -> Optional[float]:
    """
    First-order propagation of RSSI model uncertainty into distance variance.

    The transmitted power, received power and path-loss exponent are treated
    as independent, so:
        var(d) = J diag(var_Pt, var_Pr, var_n) J^T

    Args:
        rssi_dbm: Received signal strength in dBm.
        tx_power_dbm: Transmitted power in dBm.
        frequency: Carrier frequency in Hz.
        path_loss_exp: Path-loss exponent.
        tx_power_variance: Variance of transmitted power (dBm^2), or None.
        rssi_variance: Variance of received power (dBm^2), or None.
        path_loss_exp_variance: Variance of the path-loss exponent, or None.

    Returns:
        Distance variance in m^2, or None if no variance is known.
    """
    variances = [tx_power_variance, rssi_variance, path_loss_exp_variance]
    if all(v is None for v in variances):
        return None

    variances = np.array([0.0 if v is None else v for v in variances], dtype=float)
    if np.any(variances < 0):
        raise InvalidArgumentError("Variances must be non-negative")

    gradient = rssi_distance_gradient(rssi_dbm, tx_power_dbm, frequency, path_loss_exp)
    return float(np.sum(gradient ** 2 * variances))
