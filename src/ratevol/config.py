# config.py
# Cube calibration settings.

from __future__ import annotations
from dataclasses import dataclass


@dataclass(frozen=True)
class CubeConfig:
    """Knobs shared by the volatility cubes.

    Parameters
    ----------
    vega_weighted_fit : bool
        Weight smile residuals by normalised Black vega, so the wings count
        less than the strikes near the money.
    is_atm_calibrated : bool
        Re-solve SABR alpha on every dense node so the smile reproduces the
        ATM surface exactly.
    extrapolation : bool
        Allow the parameter cubes to be queried outside their axes.
    max_error_tolerance : float
        Largest absolute vol error a per-cell fit may leave before the cell
        counts as failed.
    max_nfev : int
        Function-evaluation budget for each least-squares fit.
    atm_xtol : float
        Absolute tolerance on alpha in the ATM root find.
    default_beta, default_nu, default_rho : float
        Starting point used when no parameter guess is supplied.  The alpha
        guess is always derived from the ATM vol.
    """
    vega_weighted_fit: bool = True
    is_atm_calibrated: bool = True
    extrapolation: bool = True
    max_error_tolerance: float = 0.005
    max_nfev: int = 2000
    atm_xtol: float = 1e-14
    default_beta: float = 0.5
    default_nu: float = 0.4
    default_rho: float = 0.0

    def __post_init__(self):
        if self.max_error_tolerance <= 0:
            raise ValueError(
                f"max_error_tolerance must be positive, got {self.max_error_tolerance}"
            )
        if self.max_nfev <= 0:
            raise ValueError(f"max_nfev must be positive, got {self.max_nfev}")
        if self.atm_xtol <= 0:
            raise ValueError(f"atm_xtol must be positive, got {self.atm_xtol}")
        if not 0.0 <= self.default_beta <= 1.0:
            raise ValueError(f"default_beta must be in [0, 1], got {self.default_beta}")
        if self.default_nu < 0:
            raise ValueError(f"default_nu must be non-negative, got {self.default_nu}")
        if not -1.0 < self.default_rho < 1.0:
            raise ValueError(f"default_rho must be in (-1, 1), got {self.default_rho}")
