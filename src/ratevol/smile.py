"""Volatility smile sections.

A smile section is one of three kinds, held in a single value type and
evaluated by one dispatch table:

* ``SPARSE_QUOTE``: discrete (strike, std dev) pairs read straight from the
  market around an ATM level; input to the per-cell SABR fits.
* ``SABR``: closed-form Hagan smile from a fitted parameter tuple.
* ``ADDITIVE_SPREAD``: (strike, std dev) pairs built from interpolated vol
  spreads added to the ATM vol.

Quote-based kinds interpolate the standard deviation linearly in strike and
hold it flat beyond the first and last strikes.
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

import numpy as np

from .black import black_price_vec
from .sabr import SabrParams, sabr_volatility

__all__ = [
    "SmileKind",
    "SmileSection",
    "smile_volatility",
    "sparse_quote_smile",
    "additive_spread_smile",
    "sabr_smile",
]


class SmileKind(Enum):
    SPARSE_QUOTE = "sparse_quote"
    SABR = "sabr"
    ADDITIVE_SPREAD = "additive_spread"


_QUOTE_KINDS = (SmileKind.SPARSE_QUOTE, SmileKind.ADDITIVE_SPREAD)


@dataclass(frozen=True, eq=False)
class SmileSection:
    """Volatility as a function of strike at one (expiry, underlying).

    Parameters
    ----------
    kind : SmileKind
    expiry : float
        Option expiry in years (> 0).
    forward : float
        ATM forward rate.
    atm_vol : float, optional
        Quoted ATM vol for the quote-based kinds.
    strikes, std_devs : np.ndarray, optional
        Strictly increasing strikes and total standard deviations
        (quote-based kinds only).
    sabr : SabrParams, optional
        Parameters of the ``SABR`` kind.
    """
    kind: SmileKind
    expiry: float
    forward: float
    atm_vol: Optional[float] = None
    strikes: Optional[np.ndarray] = None
    std_devs: Optional[np.ndarray] = None
    sabr: Optional[SabrParams] = None

    def __post_init__(self):
        if self.expiry <= 0:
            raise ValueError(f"expiry must be positive, got {self.expiry}")
        if self.kind in _QUOTE_KINDS:
            if self.strikes is None or self.std_devs is None or self.atm_vol is None:
                raise ValueError(f"{self.kind.value} smile needs strikes, std_devs and atm_vol")
            if self.strikes.shape != self.std_devs.shape or self.strikes.ndim != 1:
                raise ValueError(
                    f"strikes {self.strikes.shape} and std_devs {self.std_devs.shape} differ"
                )
            if len(self.strikes) < 2 or np.any(np.diff(self.strikes) <= 0):
                raise ValueError("strikes must be strictly increasing (at least two)")
        elif self.sabr is None:
            raise ValueError("sabr smile needs parameters")

    def volatility(self, strike):
        return smile_volatility(self, strike)

    def std_dev(self, strike):
        return self.volatility(strike) * np.sqrt(self.expiry)

    def variance(self, strike):
        return self.volatility(strike) ** 2 * self.expiry

    def atm_level(self) -> float:
        """ATM vol: the quoted level for quote smiles, the model value for SABR."""
        if self.kind in _QUOTE_KINDS:
            return float(self.atm_vol)
        return float(self.volatility(self.forward))

    def option_price(self, strike, kind: str = "call", discount: float = 1.0):
        """Black-76 price at the smile's vol; ``discount`` is the numeraire."""
        px = black_price_vec(self.forward, strike, self.expiry,
                             self.volatility(strike), kind, discount)
        if px.ndim == 0:
            return float(px)
        return px


# ---------------------------------------------------------------------------
# Evaluation, one entry per kind
# ---------------------------------------------------------------------------
def _quote_volatility(section: SmileSection, strike):
    std = np.interp(np.asarray(strike, dtype=float), section.strikes, section.std_devs)
    return std / np.sqrt(section.expiry)


def _sabr_volatility(section: SmileSection, strike):
    return sabr_volatility(strike, section.forward, section.expiry, section.sabr)


_EVALUATORS = {
    SmileKind.SPARSE_QUOTE: _quote_volatility,
    SmileKind.SABR: _sabr_volatility,
    SmileKind.ADDITIVE_SPREAD: _quote_volatility,
}
_missing = set(SmileKind) - set(_EVALUATORS)
if _missing:
    raise RuntimeError(f"no evaluator for smile kinds {sorted(k.name for k in _missing)}")


def smile_volatility(section: SmileSection, strike):
    """Volatility of ``section`` at ``strike`` (scalar in, float out)."""
    vol = _EVALUATORS[section.kind](section, strike)
    vol = np.asarray(vol, dtype=float)
    if vol.ndim == 0:
        return float(vol)
    return vol


# ---------------------------------------------------------------------------
# Constructors
# ---------------------------------------------------------------------------
def _spread_points(expiry, forward, atm_vol, strike_spreads, vol_spreads):
    strike_spreads = np.asarray(strike_spreads, dtype=float)
    vol_spreads = np.asarray(vol_spreads, dtype=float)
    if strike_spreads.shape != vol_spreads.shape:
        raise ValueError(
            f"{len(strike_spreads)} strike spreads vs {len(vol_spreads)} vol spreads"
        )
    strikes = forward + strike_spreads
    std_devs = np.sqrt(expiry) * (atm_vol + vol_spreads)
    return strikes, std_devs


def sparse_quote_smile(
    expiry: float,
    forward: float,
    atm_vol: float,
    strike_spreads: Sequence[float],
    vol_spreads: Sequence[float],
) -> SmileSection:
    """Market smile at a quoted node: strikes ``F + spread``, vols ``atm + spread``."""
    strikes, std_devs = _spread_points(expiry, forward, atm_vol, strike_spreads, vol_spreads)
    return SmileSection(SmileKind.SPARSE_QUOTE, expiry, forward, atm_vol=float(atm_vol),
                        strikes=strikes, std_devs=std_devs)


def additive_spread_smile(
    expiry: float,
    forward: float,
    atm_vol: float,
    strike_spreads: Sequence[float],
    vol_spreads: Sequence[float],
) -> SmileSection:
    """Smile from interpolated vol spreads added to the ATM vol."""
    strikes, std_devs = _spread_points(expiry, forward, atm_vol, strike_spreads, vol_spreads)
    return SmileSection(SmileKind.ADDITIVE_SPREAD, expiry, forward, atm_vol=float(atm_vol),
                        strikes=strikes, std_devs=std_devs)


def sabr_smile(expiry: float, forward: float, params: SabrParams) -> SmileSection:
    return SmileSection(SmileKind.SABR, expiry, forward, sabr=params)
