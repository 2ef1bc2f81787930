"""Caplet / coterminal-swaption calibration of market-model pseudo-roots.

Given the displaced variances of the coterminal swap rates, a correlation
structure and the caplet vols, find per-rate multipliers ``a`` (applied
before the rate resets) and ``b`` (applied on its reset step) so that

* every coterminal swap rate keeps its total variance, and
* the forward rate implied by two neighbouring swap rates carries its caplet
  variance.

The second condition is a quadratic in ``a[i]`` for each step.  A negative
discriminant means the targets cannot be met under the given correlation;
that is reported through the returned result, not raised.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from .errors import CalibrationInvariantError

logger = logging.getLogger(__name__)

__all__ = ["CoterminalCalibrationResult", "caplet_coterminal_calibration"]

_TINY = 1e-300


@dataclass(frozen=True)
class CoterminalCalibrationResult:
    """Outcome of :func:`caplet_coterminal_calibration`.

    ``pseudo_roots`` holds one ``(n_rates, n_factors)`` matrix per evolution
    step when the calibration succeeded and is ``None`` otherwise, in which
    case ``failed_step`` and ``reason`` say where and why.
    """
    success: bool
    pseudo_roots: Optional[list[np.ndarray]] = None
    pre_reset_multipliers: Optional[np.ndarray] = None
    post_reset_multipliers: Optional[np.ndarray] = None
    variances: Optional[np.ndarray] = None
    failed_step: Optional[int] = None
    reason: str = ""

    def __bool__(self) -> bool:
        return self.success


def _per_rate(x, n: int, name: str) -> np.ndarray:
    arr = np.asarray(x, dtype=float)
    if arr.ndim == 0:
        return np.full(n, float(arr))
    if arr.shape != (n,):
        raise ValueError(f"{name} has {arr.size} values, expected {n}")
    return arr


def _failure(step: int, reason: str) -> CoterminalCalibrationResult:
    logger.warning("coterminal calibration infeasible at step %d: %s", step, reason)
    return CoterminalCalibrationResult(success=False, failed_step=step, reason=reason)


def _correlation(root: np.ndarray, i: int, j: int) -> float:
    return float(np.dot(root[i], root[j]))


def caplet_coterminal_calibration(
    corr,
    displaced_swap_variances: Sequence,
    caplet_vols: Sequence[float],
    curve_state,
    displacement=0.0,
    alpha=0.0,
) -> CoterminalCalibrationResult:
    """Calibrate per-step pseudo-roots to coterminal swaption and caplet vols.

    Parameters
    ----------
    corr : correlation structure
        Provides ``evolution`` (``rate_times``, ``evolution_times``,
        ``number_of_rates``, ``number_of_steps``), ``number_of_factors`` and
        ``pseudo_root(step)``.
    displaced_swap_variances : sequence
        One per coterminal swap rate; ``variances[k]`` is the variance the
        rate accrues over step ``k``.
    caplet_vols : sequence of float
        Target caplet vol per forward rate.
    curve_state : curve state
        Provides ``rate_times``, ``number_of_rates``, ``forward_rates``,
        ``coterminal_swap_rates`` and ``coterminal_swap_annuity``.
    displacement, alpha : float or sequence of float
        Per-rate displacement, and decay of the variance with the step's
        start time ``s`` through ``1 / (1 + alpha * s)**2``.

    Returns
    -------
    CoterminalCalibrationResult

    Raises
    ------
    ValueError
        Inputs of inconsistent sizes or misaligned times.
    CalibrationInvariantError
        The quadratic picked a negative root, or a pseudo-root came back
        with the wrong shape.
    """
    evolution = corr.evolution
    n = evolution.number_of_rates
    steps = evolution.number_of_steps
    n_factors = corr.number_of_factors
    rate_times = np.asarray(evolution.rate_times, dtype=float)
    evolution_times = np.asarray(evolution.evolution_times, dtype=float)

    # --- preconditions -----------------------------------------------------
    if len(displaced_swap_variances) != n:
        raise ValueError(f"{len(displaced_swap_variances)} swap variances for {n} rates")
    caplet_vols = np.asarray(caplet_vols, dtype=float)
    if caplet_vols.shape != (n,):
        raise ValueError(f"{caplet_vols.size} caplet vols for {n} rates")
    if curve_state.number_of_rates != n:
        raise ValueError(f"curve state has {curve_state.number_of_rates} rates, expected {n}")
    if not np.array_equal(np.asarray(curve_state.rate_times, dtype=float), rate_times):
        raise ValueError("curve state and evolution rate times differ")
    if not np.array_equal(evolution_times, rate_times[:-1]):
        raise ValueError("evolution times must equal the rate times without the last one")
    displacement = _per_rate(displacement, n, "displacement")
    alpha = _per_rate(alpha, n, "alpha")
    swap_var = []
    for j, v in enumerate(displaced_swap_variances):
        var = np.asarray(v.variances, dtype=float)
        if len(var) < steps:
            raise ValueError(f"swap variance {j} covers {len(var)} steps, expected {steps}")
        swap_var.append(var)

    roots = [np.asarray(corr.pseudo_root(k), dtype=float) for k in range(steps)]
    for k, raw in enumerate(roots):
        if raw.shape != (n, n_factors):
            logger.error("pseudo-root at step %d has shape %s", k, raw.shape)
            raise CalibrationInvariantError(
                f"pseudo-root at step {k} has shape {raw.shape}, expected {(n, n_factors)}"
            )
    taus = np.diff(rate_times)
    swap_rates = np.asarray(curve_state.coterminal_swap_rates, dtype=float)
    forwards = np.asarray(curve_state.forward_rates, dtype=float)

    # --- step 1: decayed variance table, decayed[step, rate] -----------------
    starts = np.concatenate(([0.0], evolution_times[:-1]))
    decayed = np.zeros((steps, n))
    for i in range(steps):
        for j in range(i, n):
            decayed[i, j] = swap_var[j][i] / (1.0 + alpha[j] * starts[i]) ** 2

    # --- step 2: accumulated variances and covariances -----------------------
    tot = np.array([np.sum(swap_var[i][:i + 1]) for i in range(n)])
    almost_tot_var = np.array([np.sum(decayed[:i, i]) for i in range(n)])
    almost_tot_cov = np.zeros(n)
    left_cov = np.zeros(n)
    for i in range(1, n):
        for j in range(i - 1):
            almost_tot_cov[i] += _correlation(roots[j], i - 1, i) * np.sqrt(
                decayed[j, i] * decayed[j, i - 1])
        left_cov[i] = _correlation(roots[i - 1], i - 1, i) * np.sqrt(
            decayed[i - 1, i] * decayed[i - 1, i - 1])

    a = np.ones(n)
    b = np.ones(n)
    variances = np.zeros((steps, n))

    def post_reset(i: int) -> float | None:
        residual = tot[i] - a[i] ** 2 * almost_tot_var[i]
        if residual < 0 or decayed[i, i] <= _TINY:
            return None
        return float(np.sqrt(residual / decayed[i, i]))

    b0 = post_reset(0)
    if b0 is None:
        return _failure(0, "no variance left for the first rate's reset step")
    b[0] = b0

    # --- step 3-4: sequential quadratic per step -----------------------------
    for i in range(1, steps - 1):
        sr0w0 = (swap_rates[i - 1] + displacement[i - 1]) * \
            curve_state.coterminal_swap_annuity(i, i - 1) / taus[i - 1]
        sr1w1 = (swap_rates[i] + displacement[i]) * \
            curve_state.coterminal_swap_annuity(i, i) / taus[i - 1]
        caplet_var = (forwards[i - 1] + displacement[i - 1]) ** 2 * \
            caplet_vols[i - 1] ** 2 * rate_times[i - 1]

        constant = sr0w0 ** 2 * tot[i - 1] - caplet_var
        linear = -2.0 * sr0w0 * sr1w1 * (a[i - 1] * almost_tot_cov[i] + b[i - 1] * left_cov[i])
        quadratic = sr1w1 ** 2 * almost_tot_var[i]

        if abs(quadratic) <= _TINY:
            if linear == 0.0:
                return _failure(i, "caplet variance does not depend on the multiplier")
            root = -constant / linear
        else:
            disc = linear ** 2 - 4.0 * quadratic * constant
            if disc < 0.0:
                return _failure(i, f"negative discriminant {disc:.3e}")
            sq = np.sqrt(disc)
            lo, hi = sorted(((-linear - sq) / (2.0 * quadratic),
                             (-linear + sq) / (2.0 * quadratic)))
            root = lo if lo >= 0.0 else hi

        if root < 0.0:
            logger.error("coterminal calibration picked negative root %.6e at step %d", root, i)
            raise CalibrationInvariantError(
                f"negative pre-reset multiplier {root:.6e} at step {i}"
            )
        a[i] = root

        bi = post_reset(i)
        if bi is None:
            return _failure(i, f"negative residual variance for rate {i}")
        b[i] = bi
        logger.debug("step %d: a=%.6f b=%.6f", i, a[i], b[i])

    # rates the recursion does not reach keep a = 1
    for i in range(max(1, steps - 1), n):
        bi = post_reset(i)
        if bi is None:
            return _failure(i, f"negative residual variance for rate {i}")
        b[i] = bi

    # --- step 5: scaled pseudo-roots -----------------------------------------
    pseudo_roots = []
    for k in range(steps):
        raw = roots[k]
        out = np.zeros((n, n_factors))
        for j in range(k, n):
            mult = a[j] if k < j else b[j]
            variances[k, j] = decayed[k, j] * mult ** 2
            out[j] = raw[j] * np.sqrt(decayed[k, j]) * mult
        pseudo_roots.append(out)

    logger.info("coterminal calibration succeeded over %d steps, %d factors", steps, n_factors)
    return CoterminalCalibrationResult(
        success=True,
        pseudo_roots=pseudo_roots,
        pre_reset_multipliers=a,
        post_reset_multipliers=b,
        variances=variances,
    )
