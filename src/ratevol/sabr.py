# sabr.py
# SABR smile model: Hagan lognormal vols, per-smile fitting, ATM alpha solve.

from __future__ import annotations
import logging
from dataclasses import dataclass, replace
from typing import Optional, Sequence

import numpy as np

from .black import black_vega_vec
from .errors import SmileCalibrationError

logger = logging.getLogger(__name__)

PARAMETER_NAMES = ("alpha", "beta", "nu", "rho")

#            alpha   beta  nu     rho
_LOWER = (1e-8,   0.0,  0.0,  -0.9999)
_UPPER = (10.0,   1.0,  10.0,  0.9999)


# ---------------------------------------------------------------------------
# SABR parameter tuple
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class SabrParams:
    """SABR parameters for one smile.

    Parameters
    ----------
    alpha : float
        Vol level (> 0).  The ATM vol is roughly ``alpha * F**(beta - 1)``.
    beta : float
        CEV backbone exponent in [0, 1].
    nu : float
        Vol-of-vol (>= 0); drives the curvature of the smile.
    rho : float
        Forward/vol correlation in (-1, 1); drives the skew.

    Invalid values raise ``ValueError``; they are never clamped.
    """
    alpha: float
    beta: float
    nu: float
    rho: float

    def __post_init__(self):
        if not np.isfinite(self.alpha) or self.alpha <= 0:
            raise ValueError(f"alpha must be positive, got {self.alpha}")
        if not 0.0 <= self.beta <= 1.0:
            raise ValueError(f"beta must be in [0, 1], got {self.beta}")
        if not np.isfinite(self.nu) or self.nu < 0:
            raise ValueError(f"nu must be non-negative, got {self.nu}")
        if not -1.0 < self.rho < 1.0:
            raise ValueError(f"rho must be in (-1, 1), got {self.rho}")

    def as_array(self) -> np.ndarray:
        return np.array([self.alpha, self.beta, self.nu, self.rho], dtype=float)

    @classmethod
    def from_array(cls, x: Sequence[float]) -> SabrParams:
        alpha, beta, nu, rho = (float(v) for v in x)
        return cls(alpha=alpha, beta=beta, nu=nu, rho=rho)

    def with_alpha(self, alpha: float) -> SabrParams:
        return replace(self, alpha=float(alpha))

    def volatility(self, strike, forward: float, expiry: float):
        """Shortcut for :func:`sabr_volatility`."""
        return sabr_volatility(strike, forward, expiry, self)


# ---------------------------------------------------------------------------
# Hagan et al. (2002) lognormal expansion
# ---------------------------------------------------------------------------
def _hagan_vol(K, F, T, alpha, beta, nu, rho) -> np.ndarray:
    K = np.asarray(K, dtype=float)
    omb = 1.0 - beta
    fk = F * K
    fk_pow = fk ** (0.5 * omb)
    log_fk = np.log(F / K)
    z = (nu / alpha) * fk_pow * log_fk
    with np.errstate(divide="ignore", invalid="ignore"):
        x = np.log((np.sqrt(1.0 - 2.0 * rho * z + z * z) + z - rho) / (1.0 - rho))
        # z/x(z) -> 1 at the money
        ratio = np.where(np.abs(z) < 1e-8, 1.0 - 0.5 * rho * z, z / x)
    log2 = log_fk * log_fk
    denom = fk_pow * (1.0 + omb ** 2 / 24.0 * log2 + omb ** 4 / 1920.0 * log2 * log2)
    correction = 1.0 + (
        omb ** 2 * alpha ** 2 / (24.0 * fk ** omb)
        + 0.25 * rho * beta * nu * alpha / fk_pow
        + (2.0 - 3.0 * rho ** 2) * nu ** 2 / 24.0
    ) * T
    return alpha / denom * ratio * correction


def sabr_volatility(strike, forward: float, expiry: float, params: SabrParams):
    """Black (lognormal) implied vol of a SABR smile.

    Accepts a scalar or an array of strikes; scalars return a float.
    Strikes and the forward must be positive.
    """
    K = np.asarray(strike, dtype=float)
    if forward <= 0:
        raise ValueError(f"forward must be positive, got {forward}")
    if np.any(K <= 0):
        raise ValueError("strikes must be positive for the lognormal SABR formula")
    vol = _hagan_vol(K, forward, expiry, params.alpha, params.beta, params.nu, params.rho)
    if vol.ndim == 0:
        return float(vol)
    return vol


# ---------------------------------------------------------------------------
# Fitting
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class SabrFit:
    """Outcome of one smile fit."""
    params: SabrParams
    rms_error: float
    max_error: float
    nfev: int
    success: bool
    message: str = ""


def vega_weights(strikes, forward: float, expiry: float, vols) -> np.ndarray:
    """Black vegas of the quoted strikes, normalised to sum to one."""
    v = black_vega_vec(forward, strikes, expiry, vols)
    total = float(np.sum(v))
    if not total > 0:
        raise ValueError("vega weights are all zero")
    return v / total


def fit_sabr(
    strikes: np.ndarray,
    forward: float,
    expiry: float,
    market_vols: np.ndarray,
    *,
    guess: Optional[SabrParams] = None,
    is_fixed: Sequence[bool] = (False, False, False, False),
    weights: Optional[np.ndarray] = None,
    max_error_tolerance: float = 0.005,
    max_nfev: int = 2000,
) -> SabrFit:
    """Fit SABR to a single smile by bounded nonlinear least squares.

    Parameters
    ----------
    strikes, market_vols : array-like, shape (N,)
        Quoted strikes and their Black vols.  Non-positive strikes are
        dropped (the lognormal formula is undefined there).
    forward, expiry : float
        Forward rate and option expiry in years.
    guess : SabrParams, optional
        Starting point; fixed parameters keep their guessed value.
    is_fixed : sequence of 4 bool
        ``(alpha, beta, nu, rho)`` flags excluded from the fit.
    weights : array-like, optional
        Residual weights (e.g. :func:`vega_weights`); equal by default.
    max_error_tolerance : float
        A fit whose largest vol error exceeds this counts as failed.

    Returns
    -------
    SabrFit
        ``success`` is False when the solver did not converge or the fit is
        outside tolerance; the caller decides what to do with it.
    """
    from scipy.optimize import least_squares

    strikes = np.asarray(strikes, dtype=float)
    market_vols = np.asarray(market_vols, dtype=float)
    if strikes.shape != market_vols.shape:
        raise ValueError(
            f"strikes {strikes.shape} and market_vols {market_vols.shape} differ"
        )
    if len(is_fixed) != len(PARAMETER_NAMES):
        raise ValueError(f"is_fixed needs {len(PARAMETER_NAMES)} flags, got {len(is_fixed)}")
    if weights is not None:
        weights = np.asarray(weights, dtype=float)
        if weights.shape != strikes.shape:
            raise ValueError(f"weights {weights.shape} and strikes {strikes.shape} differ")

    keep = strikes > 0
    if not np.all(keep):
        logger.debug("dropping %d non-positive strikes", int(np.sum(~keep)))
        strikes, market_vols = strikes[keep], market_vols[keep]
        if weights is not None:
            weights = weights[keep]
    if len(strikes) == 0:
        raise ValueError("no positive strikes to fit")

    w = np.full(len(strikes), 1.0 / len(strikes)) if weights is None else weights / np.sum(weights)
    sqrt_w = np.sqrt(w)

    if guess is None:
        atm = float(np.interp(forward, strikes, market_vols))
        guess = SabrParams(alpha=atm * forward ** 0.5, beta=0.5, nu=0.4, rho=0.0)

    free = ~np.asarray(is_fixed, dtype=bool)
    lower = np.array(_LOWER)
    upper = np.array(_UPPER)
    x_all = np.clip(guess.as_array(), lower, upper)

    def model(x):
        p = x_all.copy()
        p[free] = x
        return _hagan_vol(strikes, forward, expiry, *p)

    def residuals(x):
        return (model(x) - market_vols) * sqrt_w

    if free.any():
        result = least_squares(
            residuals,
            x0=x_all[free],
            bounds=(lower[free], upper[free]),
            method="trf",
            max_nfev=max_nfev,
        )
        x_all[free] = result.x
        converged, nfev, message = bool(result.success), int(result.nfev), str(result.message)
    else:
        converged, nfev, message = True, 0, "all parameters fixed"

    err = _hagan_vol(strikes, forward, expiry, *x_all) - market_vols
    rms = float(np.sqrt(np.mean(err ** 2)))
    max_err = float(np.max(np.abs(err)))
    success = converged and np.isfinite(max_err) and max_err <= max_error_tolerance
    return SabrFit(
        params=SabrParams.from_array(x_all),
        rms_error=rms,
        max_error=max_err,
        nfev=nfev,
        success=success,
        message=message,
    )


# ---------------------------------------------------------------------------
# ATM recalibration
# ---------------------------------------------------------------------------
def calibrate_alpha_to_atm(
    params: SabrParams,
    forward: float,
    expiry: float,
    target_vol: float,
    *,
    xtol: float = 1e-14,
    max_expansions: int = 60,
) -> SabrParams:
    """Re-solve alpha so the smile returns ``target_vol`` at the forward.

    Brent root find on alpha with beta, nu and rho held; the upper end of
    the bracket is doubled until it straddles the target.
    """
    from scipy.optimize import brentq

    if target_vol <= 0:
        raise ValueError(f"target_vol must be positive, got {target_vol}")

    def f(alpha):
        return float(_hagan_vol(forward, forward, expiry, alpha,
                                params.beta, params.nu, params.rho)) - target_vol

    lo = 1e-12
    hi = max(2.0 * params.alpha, 2.0 * target_vol * forward ** (1.0 - params.beta))
    for _ in range(max_expansions):
        if f(hi) > 0:
            break
        hi *= 2.0
    else:
        raise SmileCalibrationError(
            f"no alpha reproduces ATM vol {target_vol} (forward {forward}, expiry {expiry})"
        )
    if f(lo) > 0:
        raise SmileCalibrationError(
            f"ATM vol {target_vol} below the smile floor (forward {forward}, expiry {expiry})"
        )
    alpha = brentq(f, lo, hi, xtol=xtol, maxiter=500)
    return params.with_alpha(alpha)
