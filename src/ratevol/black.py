# black.py
# Vectorised Black-76 pricing and vega on a forward.
# All public functions accept scalars *or* NumPy arrays and broadcast.

from __future__ import annotations
import numpy as np
from scipy.stats import norm

_N = norm.cdf   # vectorised standard-normal CDF
_n = norm.pdf   # vectorised standard-normal PDF


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------
def _d1_d2(F, K, std_dev):
    """Compute d1, d2 arrays from the total standard deviation."""
    F, K, std_dev = (np.asarray(x, dtype=float) for x in (F, K, std_dev))
    d1 = np.log(F / K) / std_dev + 0.5 * std_dev
    d2 = d1 - std_dev
    return d1, d2


def _is_call(kind) -> np.ndarray:
    """Return boolean mask: True where kind == 'call'."""
    kind = np.asarray(kind)
    if kind.ndim == 0:
        return np.bool_(str(kind) == "call")
    return np.array([str(k) == "call" for k in kind.flat], dtype=bool).reshape(kind.shape)


# ---------------------------------------------------------------------------
# Vectorised price
# ---------------------------------------------------------------------------
def black_price_vec(F, K, T, sigma, kind, discount=1.0) -> np.ndarray:
    """Vectorised Black-76 price of an option on a forward.

    ``discount`` is the numeraire value at expiry: a discount factor for a
    caplet, the swap annuity for a swaption.

    Returns
    -------
    np.ndarray
        Option prices (same shape as broadcasted inputs).
    """
    F, K, T, sigma, discount = (
        np.asarray(x, dtype=float) for x in (F, K, T, sigma, discount)
    )
    std_dev = sigma * np.sqrt(T)
    d1, d2 = _d1_d2(F, K, std_dev)

    call_px = discount * (F * _N(d1) - K * _N(d2))
    put_px  = discount * (K * _N(-d2) - F * _N(-d1))

    is_call = _is_call(kind)
    return np.where(is_call, call_px, put_px)


# ---------------------------------------------------------------------------
# Vectorised vega
# ---------------------------------------------------------------------------
def black_vega_vec(F, K, T, sigma, discount=1.0) -> np.ndarray:
    """Black-76 vega, dPrice/dSigma (absolute), identical for calls and puts."""
    F, K, T, sigma, discount = (
        np.asarray(x, dtype=float) for x in (F, K, T, sigma, discount)
    )
    sqrt_T = np.sqrt(T)
    d1, _ = _d1_d2(F, K, sigma * sqrt_T)
    return discount * F * _n(d1) * sqrt_T
