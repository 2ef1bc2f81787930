# termstructures.py
# ATM swaption vol matrix and forward swap rates consumed by the cubes.

from __future__ import annotations
import math
from datetime import date
from typing import Callable, Sequence, Union

import numpy as np

from .core import Period, advance, to_period, year_fraction
from .grid import GridCube


# ---------------------------------------------------------------------------
# ATM volatility matrix
# ---------------------------------------------------------------------------
class AtmVolMatrix:
    """ATM swaption vols on an (option tenor x swap tenor) grid.

    Vols are bilinear in (option time, swap length) and flat in strike.
    ``version`` increases on every :meth:`set_volatility`, which is what the
    cubes watch to know when to recalibrate.

    Parameters
    ----------
    reference_date : date
        Valuation date; option dates are ``reference_date + option_tenor``.
    option_tenors, swap_tenors : sequence of Period or str
    vols : array-like, shape (n_option_tenors, n_swap_tenors)
    extrapolation : bool
        Allow queries outside the grid (linear extension).
    """

    def __init__(
        self,
        reference_date: date,
        option_tenors: Sequence[Period | str],
        swap_tenors: Sequence[Period | str],
        vols,
        extrapolation: bool = True,
    ):
        self._reference_date = reference_date
        self._option_tenors = [to_period(p) for p in option_tenors]
        self._swap_tenors = [to_period(p) for p in swap_tenors]
        vols = np.asarray(vols, dtype=float)
        shape = (len(self._option_tenors), len(self._swap_tenors))
        if vols.shape != shape:
            raise ValueError(f"vols have shape {vols.shape}, expected {shape}")
        if np.any(vols <= 0):
            raise ValueError("ATM vols must be positive")

        self._option_dates = [advance(reference_date, p) for p in self._option_tenors]
        option_times = [year_fraction(reference_date, d) for d in self._option_dates]
        swap_lengths = [p.years for p in self._swap_tenors]
        self._grid = GridCube(self._option_dates, self._swap_tenors,
                              option_times, swap_lengths, 1, extrapolation)
        self._grid.set_layer(0, vols)
        self._version = 0

    @property
    def reference_date(self) -> date:
        return self._reference_date

    @property
    def option_tenors(self) -> list[Period]:
        return list(self._option_tenors)

    @property
    def swap_tenors(self) -> list[Period]:
        return list(self._swap_tenors)

    @property
    def option_dates(self) -> list[date]:
        return list(self._option_dates)

    @property
    def option_times(self) -> np.ndarray:
        return self._grid.option_times

    @property
    def swap_lengths(self) -> np.ndarray:
        return self._grid.swap_lengths

    @property
    def version(self) -> int:
        return self._version

    def time_from_reference(self, d: date) -> float:
        return year_fraction(self._reference_date, d)

    def volatility(self, option_time: float, swap_length: float, strike: float | None = None) -> float:
        return float(self._grid(option_time, swap_length)[0])

    def volatility_at(self, option_date: date, swap_tenor: Period | str,
                      strike: float | None = None) -> float:
        return self.volatility(self.time_from_reference(option_date),
                               to_period(swap_tenor).years, strike)

    def set_volatility(self, i: int, j: int, vol: float) -> None:
        if vol <= 0:
            raise ValueError(f"ATM vol must be positive, got {vol}")
        self._grid.set_element(0, i, j, vol)
        self._version += 1


# ---------------------------------------------------------------------------
# Forward swap rates
# ---------------------------------------------------------------------------
DiscountCurve = Union[float, Callable[[float], float]]


class SwapIndex:
    """Forward par swap rates off a discount curve.

    Parameters
    ----------
    discount : float or callable
        Either a flat continuously-compounded rate or ``P(t)``.
    fixed_frequency : int
        Fixed-leg payments per year (default annual).
    """

    def __init__(self, discount: DiscountCurve, fixed_frequency: int = 1):
        if fixed_frequency < 1:
            raise ValueError(f"fixed_frequency must be positive, got {fixed_frequency}")
        if callable(discount):
            self._discount = discount
        else:
            rate = float(discount)
            self._discount = lambda t: math.exp(-rate * t)
        self.fixed_frequency = fixed_frequency

    def discount(self, t: float) -> float:
        return float(self._discount(t))

    def _schedule(self, option_time: float, swap_length: float) -> tuple[np.ndarray, float]:
        if swap_length <= 0:
            raise ValueError(f"swap_length must be positive, got {swap_length}")
        n = max(1, int(round(swap_length * self.fixed_frequency)))
        accrual = swap_length / n
        return option_time + accrual * np.arange(1, n + 1), accrual

    def annuity(self, option_time: float, swap_length: float) -> float:
        pay_times, accrual = self._schedule(option_time, swap_length)
        return accrual * sum(self.discount(t) for t in pay_times)

    def forward_rate(self, option_time: float, swap_length: float) -> float:
        pay_times, _ = self._schedule(option_time, swap_length)
        annuity = self.annuity(option_time, swap_length)
        return (self.discount(option_time) - self.discount(pay_times[-1])) / annuity
