# marketmodel.py
# Minimal LIBOR market model scaffolding: evolution times, piecewise-constant
# variances, correlation pseudo-roots and a coterminal-swap curve state.

from __future__ import annotations
from typing import Optional, Sequence

import numpy as np


# ---------------------------------------------------------------------------
# Evolution description
# ---------------------------------------------------------------------------
class EvolutionDescription:
    """Rate fixing times and the times the simulation steps to.

    ``rate_times`` has one more entry than there are forward rates: rate
    ``i`` accrues over ``[rate_times[i], rate_times[i+1]]``.  Evolution times
    default to the reset times ``rate_times[:-1]``.
    """

    def __init__(self, rate_times: Sequence[float], evolution_times: Optional[Sequence[float]] = None):
        rate_times = np.asarray(rate_times, dtype=float)
        if rate_times.ndim != 1 or len(rate_times) < 2:
            raise ValueError("at least two rate times are required")
        if rate_times[0] <= 0 or np.any(np.diff(rate_times) <= 0):
            raise ValueError("rate times must be positive and strictly increasing")
        if evolution_times is None:
            evolution_times = rate_times[:-1]
        evolution_times = np.asarray(evolution_times, dtype=float)
        if len(evolution_times) == 0 or np.any(np.diff(evolution_times) <= 0):
            raise ValueError("evolution times must be strictly increasing")
        if evolution_times[-1] > rate_times[-2]:
            raise ValueError("evolution times cannot go beyond the last reset")
        self.rate_times = rate_times
        self.evolution_times = evolution_times

    @property
    def rate_taus(self) -> np.ndarray:
        return np.diff(self.rate_times)

    @property
    def number_of_rates(self) -> int:
        return len(self.rate_times) - 1

    @property
    def number_of_steps(self) -> int:
        return len(self.evolution_times)

    def first_alive_rate(self, step: int) -> int:
        """Index of the first rate still alive during ``step``."""
        return int(np.searchsorted(self.rate_times[:-1], self.evolution_times[step], side="left"))


# ---------------------------------------------------------------------------
# Piecewise-constant variances
# ---------------------------------------------------------------------------
class PiecewiseConstantVariance:
    """Variance accrued by one rate (or swap rate) over each evolution step.

    Step ``k`` spans ``[t_{k-1}, t_k]`` with ``t_{-1} = 0``.
    """

    def __init__(self, variances: Sequence[float], rate_times: Sequence[float]):
        variances = np.asarray(variances, dtype=float)
        rate_times = np.asarray(rate_times, dtype=float)
        if variances.ndim != 1 or len(variances) == 0:
            raise ValueError("at least one variance is required")
        if np.any(variances < 0):
            raise ValueError("variances must be non-negative")
        self.variances = variances
        self.rate_times = rate_times

    @classmethod
    def from_volatility(cls, volatility: float, reset_index: int,
                        rate_times: Sequence[float]) -> PiecewiseConstantVariance:
        """Flat vol up to reset ``reset_index``; no variance after it resets."""
        rate_times = np.asarray(rate_times, dtype=float)
        n_steps = len(rate_times) - 1
        if not 0 <= reset_index < n_steps:
            raise ValueError(f"reset_index {reset_index} outside [0, {n_steps})")
        if volatility < 0:
            raise ValueError(f"volatility must be non-negative, got {volatility}")
        starts = np.concatenate(([0.0], rate_times[:-2]))
        dt = rate_times[:-1] - starts
        variances = np.where(np.arange(n_steps) <= reset_index, volatility ** 2 * dt, 0.0)
        return cls(variances, rate_times)

    @property
    def volatilities(self) -> np.ndarray:
        starts = np.concatenate(([0.0], self.rate_times[:len(self.variances) - 1]))
        dt = self.rate_times[:len(self.variances)] - starts
        rates = np.divide(self.variances, dt, out=np.zeros_like(dt), where=dt > 0)
        return np.sqrt(rates)

    def total_variance(self, step: int) -> float:
        """Variance accrued up to and including ``step``."""
        return float(np.sum(self.variances[:step + 1]))


# ---------------------------------------------------------------------------
# Correlation
# ---------------------------------------------------------------------------
class ExponentialForwardCorrelation:
    """``rho_ij = L + (1 - L) exp(-beta |t_i - t_j|)`` between alive rates.

    :meth:`pseudo_root` returns an ``(n_rates, n_factors)`` matrix whose row
    dot products give the (rank-reduced) correlation at a step; rows of rates
    already reset are zero.
    """

    def __init__(self, evolution: EvolutionDescription, long_term_corr: float,
                 beta: float, number_of_factors: Optional[int] = None):
        if not -1.0 <= long_term_corr <= 1.0:
            raise ValueError(f"long_term_corr must be in [-1, 1], got {long_term_corr}")
        if beta < 0:
            raise ValueError(f"beta must be non-negative, got {beta}")
        n = evolution.number_of_rates
        if number_of_factors is None:
            number_of_factors = n
        if not 1 <= number_of_factors <= n:
            raise ValueError(f"number_of_factors must be in [1, {n}], got {number_of_factors}")
        self.evolution = evolution
        self.long_term_corr = long_term_corr
        self.beta = beta
        self.number_of_factors = number_of_factors
        self._roots = [self._build(step) for step in range(evolution.number_of_steps)]

    @property
    def number_of_rates(self) -> int:
        return self.evolution.number_of_rates

    @property
    def number_of_steps(self) -> int:
        return self.evolution.number_of_steps

    def correlation(self, step: int) -> np.ndarray:
        root = self.pseudo_root(step)
        return root @ root.T

    def pseudo_root(self, step: int) -> np.ndarray:
        return self._roots[step].copy()

    def _build(self, step: int) -> np.ndarray:
        from scipy.linalg import eigh

        n, k = self.number_of_rates, self.number_of_factors
        alive = self.evolution.first_alive_rate(step)
        t = self.evolution.rate_times[alive:n]
        L = self.long_term_corr
        rho = L + (1.0 - L) * np.exp(-self.beta * np.abs(t[:, None] - t[None, :]))

        w, v = eigh(rho)
        order = np.argsort(w)[::-1]
        w = np.clip(w[order], 0.0, None)
        v = v[:, order]
        m = min(k, len(t))
        b = v[:, :m] * np.sqrt(w[:m])
        norms = np.linalg.norm(b, axis=1)
        b = b / norms[:, None]

        root = np.zeros((n, k))
        root[alive:, :m] = b
        return root


# ---------------------------------------------------------------------------
# Curve state
# ---------------------------------------------------------------------------
class CoterminalCurveState:
    """Discount ratios, annuities and coterminal swap rates of a forward curve.

    Discount ratios are relative to the first rate time; coterminal swap
    ``i`` starts at ``rate_times[i]`` and ends at the last rate time.
    """

    def __init__(self, rate_times: Sequence[float], forward_rates: Sequence[float]):
        rate_times = np.asarray(rate_times, dtype=float)
        forward_rates = np.asarray(forward_rates, dtype=float)
        if len(forward_rates) != len(rate_times) - 1:
            raise ValueError(
                f"{len(forward_rates)} forward rates for {len(rate_times)} rate times"
            )
        self.rate_times = rate_times
        self.forward_rates = forward_rates
        taus = np.diff(rate_times)
        n = len(forward_rates)

        d = np.ones(n + 1)
        for i in range(n):
            d[i + 1] = d[i] / (1.0 + taus[i] * forward_rates[i])
        # annuity[i] = sum_{k >= i} tau_k d_{k+1}
        annuity = np.cumsum((taus * d[1:])[::-1])[::-1]
        self._discount_ratios = d
        self._annuities = annuity
        self._swap_rates = (d[:-1] - d[-1]) / annuity

    @property
    def number_of_rates(self) -> int:
        return len(self.forward_rates)

    @property
    def discount_ratios(self) -> np.ndarray:
        return self._discount_ratios.copy()

    @property
    def coterminal_swap_rates(self) -> np.ndarray:
        return self._swap_rates.copy()

    def coterminal_swap_annuity(self, numeraire: int, i: int) -> float:
        """Annuity of coterminal swap ``i`` in units of discount bond ``numeraire``."""
        return float(self._annuities[i] / self._discount_ratios[numeraire])
