"""Swaption volatility cubes.

Both cubes start from the same inputs: an ATM vol matrix, a swap-rate
calculator and a grid of vol-spread quotes, one per (option tenor, swap
tenor, strike spread).  They differ in how the smile between quoted nodes is
produced:

* :class:`SabrVolCube` fits SABR on every quoted node, interpolates the
  parameters onto the dense grid and optionally re-solves alpha so each
  dense node reproduces the ATM vol exactly.
* :class:`SpreadVolCube` interpolates the vol spreads themselves and adds
  them to the ATM vol.

Recalculation is pull-based: :meth:`SwaptionVolCube.calculate` compares the
versions of every input against the ones recorded at the last run and only
reruns :meth:`perform_calculations` when something moved.
"""

from __future__ import annotations
import logging
from dataclasses import replace
from datetime import date
from typing import Optional, Sequence

import numpy as np

from .config import CubeConfig
from .core import Period, SimpleQuote, advance, as_quote, to_period, year_fraction
from .errors import SmileCalibrationError
from .grid import GridCube
from .sabr import (
    PARAMETER_NAMES, SabrFit, SabrParams, calibrate_alpha_to_atm, fit_sabr, vega_weights,
)
from .smile import SmileSection, additive_spread_smile, sabr_smile, sparse_quote_smile
from .termstructures import AtmVolMatrix, SwapIndex

logger = logging.getLogger(__name__)

__all__ = ["LAYER_NAMES", "SwaptionVolCube", "SabrVolCube", "SpreadVolCube"]

LAYER_NAMES = PARAMETER_NAMES + ("rms_error", "max_error", "forward")
_FORWARD = LAYER_NAMES.index("forward")
_N_PARAMS = len(PARAMETER_NAMES)


# ---------------------------------------------------------------------------
# Shared construction and lazy recalculation
# ---------------------------------------------------------------------------
class SwaptionVolCube:
    """Base cube: quote grid, axes and the recalculate-if-stale machinery.

    Parameters
    ----------
    atm_vol : AtmVolMatrix
        ATM vols; also supplies the reference date.
    option_tenors, swap_tenors : sequence of Period or str
        Quoted axes, increasing.
    strike_spreads : sequence of float
        Strictly increasing offsets from the ATM forward.
    vol_spreads : sequence of sequences
        One row per (option, swap) pair in option-major order, each with one
        quote (``SimpleQuote`` or float) per strike spread.
    swap_index : SwapIndex
        ATM forward swap rates.
    config : CubeConfig, optional
    """

    def __init__(
        self,
        atm_vol: AtmVolMatrix,
        option_tenors: Sequence[Period | str],
        swap_tenors: Sequence[Period | str],
        strike_spreads: Sequence[float],
        vol_spreads: Sequence[Sequence[SimpleQuote | float]],
        swap_index: SwapIndex,
        *,
        config: Optional[CubeConfig] = None,
    ):
        if atm_vol is None or swap_index is None:
            raise ValueError("atm_vol and swap_index are required")
        self.atm_vol = atm_vol
        self.swap_index = swap_index
        self.config = config or CubeConfig()

        self._option_tenors = [to_period(p) for p in option_tenors]
        self._swap_tenors = [to_period(p) for p in swap_tenors]
        if not self._option_tenors or not self._swap_tenors:
            raise ValueError("at least one option tenor and one swap tenor are required")

        self._strike_spreads = np.asarray(strike_spreads, dtype=float)
        if self._strike_spreads.ndim != 1 or len(self._strike_spreads) < 2:
            raise ValueError("at least two strike spreads are required")
        if np.any(np.diff(self._strike_spreads) <= 0):
            raise ValueError("strike spreads must be strictly increasing")

        n_rows = len(self._option_tenors) * len(self._swap_tenors)
        if len(vol_spreads) != n_rows:
            raise ValueError(
                f"{len(vol_spreads)} vol-spread rows, expected {n_rows} "
                f"({len(self._option_tenors)} option x {len(self._swap_tenors)} swap tenors)"
            )
        for r, row in enumerate(vol_spreads):
            if len(row) != len(self._strike_spreads):
                raise ValueError(
                    f"vol-spread row {r} has {len(row)} quotes, "
                    f"expected {len(self._strike_spreads)}"
                )
        self._vol_spreads = [[as_quote(q) for q in row] for row in vol_spreads]

        ref = atm_vol.reference_date
        self._option_dates = [advance(ref, p) for p in self._option_tenors]
        self._option_times = np.array([year_fraction(ref, d) for d in self._option_dates])
        self._swap_lengths = np.array([p.years for p in self._swap_tenors])
        if np.any(np.diff(self._option_times) <= 0) or self._option_times[0] <= 0:
            raise ValueError("option tenors must be positive and strictly increasing")
        if np.any(np.diff(self._swap_lengths) <= 0) or self._swap_lengths[0] <= 0:
            raise ValueError("swap tenors must be positive and strictly increasing")

        self._own_version = 0
        self._stamp: Optional[tuple] = None
        self._market_cube: Optional[GridCube] = None

    # --- inspectors --------------------------------------------------------
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
        return self._option_times.copy()

    @property
    def swap_lengths(self) -> np.ndarray:
        return self._swap_lengths.copy()

    @property
    def strike_spreads(self) -> np.ndarray:
        return self._strike_spreads.copy()

    def vol_spread_quote(self, i: int, j: int, k: int) -> SimpleQuote:
        """Quote for option tenor ``i``, swap tenor ``j``, strike spread ``k``."""
        return self._vol_spreads[i * len(self._swap_tenors) + j][k]

    # --- lazy recalculation ------------------------------------------------
    def _input_stamp(self) -> tuple:
        return (
            self._own_version,
            self.atm_vol.version,
            tuple(q.version for row in self._vol_spreads for q in row),
        )

    def calculate(self) -> None:
        """Run :meth:`perform_calculations` if any input changed since the last run."""
        stamp = self._input_stamp()
        if stamp == self._stamp:
            return
        logger.debug("%s inputs changed, recalculating", type(self).__name__)
        self.perform_calculations()
        self._stamp = stamp

    def perform_calculations(self) -> None:
        self._market_cube = self._build_market_cube()

    def _build_market_cube(self) -> GridCube:
        n_opt, n_swap = len(self._option_tenors), len(self._swap_tenors)
        cube = GridCube(self._option_dates, self._swap_tenors,
                        self._option_times, self._swap_lengths,
                        len(self._strike_spreads), self.config.extrapolation)
        for i in range(n_opt):
            for j in range(n_swap):
                for k, q in enumerate(self._vol_spreads[i * n_swap + j]):
                    cube.set_element(k, i, j, q.value)
        return cube

    # --- market helpers ----------------------------------------------------
    def atm_strike(self, option_time: float, swap_length: float) -> float:
        return self.swap_index.forward_rate(option_time, swap_length)

    def atm_volatility(self, option_time: float, swap_length: float) -> float:
        return self.atm_vol.volatility(option_time, swap_length,
                                       self.atm_strike(option_time, swap_length))

    def convert_dates(self, option_date: date, swap_tenor: Period | str) -> tuple[float, float]:
        return self.atm_vol.time_from_reference(option_date), to_period(swap_tenor).years

    def market_vol_cube(self) -> np.ndarray:
        """Browse matrix of the quoted vol spreads (one layer per strike spread)."""
        self.calculate()
        return self._market_cube.browse()

    def market_vol_layer(self, i: int) -> np.ndarray:
        """Quoted vol spreads for strike spread ``i``, shape (n_options, n_swaps)."""
        self.calculate()
        n = len(self._strike_spreads)
        if not 0 <= i < n:
            raise IndexError(f"strike spread {i} outside 0..{n - 1}")
        return self._market_cube.points[i]

    def spread_vol_interpolation(self, option_date: date, swap_tenor: Period | str) -> np.ndarray:
        """Quoted vol spreads interpolated at a date/tenor, one per strike spread."""
        self.calculate()
        return self._market_cube(*self.convert_dates(option_date, swap_tenor))

    # --- smiles ------------------------------------------------------------
    def smile_section(self, option_time: float, swap_length: float) -> SmileSection:
        raise NotImplementedError

    def smile_section_at(self, option_date: date, swap_tenor: Period | str) -> SmileSection:
        return self.smile_section(*self.convert_dates(option_date, swap_tenor))

    def volatility(self, option_time: float, swap_length: float, strike):
        return self.smile_section(option_time, swap_length).volatility(strike)


# ---------------------------------------------------------------------------
# Additive-spread cube
# ---------------------------------------------------------------------------
class SpreadVolCube(SwaptionVolCube):
    """Smile = ATM vol + bilinearly interpolated vol spread, strike by strike.

    No model fitting: suitable when the quotes are too sparse to support a
    SABR fit per node.  Extrapolation follows ``config.extrapolation``
    (on by default).
    """

    def smile_section(self, option_time: float, swap_length: float) -> SmileSection:
        self.calculate()
        forward = self.atm_strike(option_time, swap_length)
        atm = self.atm_vol.volatility(option_time, swap_length, forward)
        spreads = self._market_cube(option_time, swap_length)
        return additive_spread_smile(option_time, forward, atm, self._strike_spreads, spreads)


# ---------------------------------------------------------------------------
# SABR cube
# ---------------------------------------------------------------------------
class SabrVolCube(SwaptionVolCube):
    """Fit-early-interpolate-later SABR cube.

    ``perform_calculations`` runs, strictly in order: market cube, sparse
    smiles, sparse SABR parameters, dense parameters, ATM recalibration.

    Parameters
    ----------
    parameters_guess : array-like, shape (n_option * n_swap, 4), optional
        Starting ``(alpha, beta, nu, rho)`` per quoted node, option-major.
        Defaults to the config's beta/nu/rho with alpha from the ATM vol.
    is_parameter_fixed : sequence of 4 bool
        Parameters held at their guess during the fits.
    """

    def __init__(
        self,
        atm_vol: AtmVolMatrix,
        option_tenors: Sequence[Period | str],
        swap_tenors: Sequence[Period | str],
        strike_spreads: Sequence[float],
        vol_spreads: Sequence[Sequence[SimpleQuote | float]],
        swap_index: SwapIndex,
        *,
        parameters_guess=None,
        is_parameter_fixed: Sequence[bool] = (False, False, False, False),
        config: Optional[CubeConfig] = None,
    ):
        super().__init__(atm_vol, option_tenors, swap_tenors, strike_spreads,
                         vol_spreads, swap_index, config=config)
        if len(is_parameter_fixed) != _N_PARAMS:
            raise ValueError(
                f"is_parameter_fixed needs {_N_PARAMS} flags, got {len(is_parameter_fixed)}"
            )
        self._is_fixed = tuple(bool(f) for f in is_parameter_fixed)
        self._guess: Optional[list[SabrParams]] = None
        if parameters_guess is not None:
            guess = np.asarray(parameters_guess, dtype=float)
            expected = (len(self._option_tenors) * len(self._swap_tenors), _N_PARAMS)
            if guess.shape != expected:
                raise ValueError(f"parameters_guess has shape {guess.shape}, expected {expected}")
            self._guess = [SabrParams.from_array(row) for row in guess]
        self._beta_overrides: dict[Period, float] = {}
        self._sparse_smiles: dict[tuple[int, int], SmileSection] = {}
        self._sparse: Optional[GridCube] = None
        self._dense: Optional[GridCube] = None
        self._atm_calibrated: Optional[GridCube] = None

    # --- pipeline ----------------------------------------------------------
    def perform_calculations(self) -> None:
        market = self._build_market_cube()
        smiles = self._create_sparse_smiles(market)
        sparse = self._sabr_calibration(smiles)
        dense, atm_calibrated = self._dense_cubes(sparse)

        self._market_cube = market
        self._sparse_smiles = smiles
        self._sparse = sparse
        self._dense = dense
        self._atm_calibrated = atm_calibrated
        logger.info(
            "SABR cube calibrated: %d quoted nodes, dense grid %s, ATM calibrated=%s",
            len(smiles), dense.shape, atm_calibrated is not None,
        )

    def _create_sparse_smiles(self, market: GridCube) -> dict[tuple[int, int], SmileSection]:
        points = market.points
        smiles = {}
        for i, t in enumerate(self._option_times):
            for j, length in enumerate(self._swap_lengths):
                forward = self.atm_strike(t, length)
                atm = self.atm_vol.volatility(t, length, forward)
                spreads = [p[i, j] for p in points]
                smiles[i, j] = sparse_quote_smile(t, forward, atm, self._strike_spreads, spreads)
        return smiles

    def _calibrate_cell(self, i: int, j: int, smile: SmileSection) -> SabrFit:
        cfg = self.config
        t, forward = smile.expiry, smile.forward
        strikes = smile.strikes
        vols = smile.std_devs / np.sqrt(t)

        if self._guess is not None:
            guess = self._guess[i * len(self._swap_tenors) + j]
        else:
            guess = SabrParams(
                alpha=smile.atm_vol * forward ** (1.0 - cfg.default_beta),
                beta=cfg.default_beta, nu=cfg.default_nu, rho=cfg.default_rho,
            )
        is_fixed = list(self._is_fixed)
        beta = self._beta_overrides.get(self._swap_tenors[j])
        if beta is not None:
            guess = replace(guess, beta=beta)
            is_fixed[1] = True

        weights = None
        if cfg.vega_weighted_fit:
            weights = np.zeros_like(strikes)
            pos = strikes > 0
            weights[pos] = vega_weights(strikes[pos], forward, t, vols[pos])

        return fit_sabr(strikes, forward, t, vols, guess=guess, is_fixed=is_fixed,
                        weights=weights, max_error_tolerance=cfg.max_error_tolerance,
                        max_nfev=cfg.max_nfev)

    def _fit_column(self, sparse: GridCube, smiles, j: int) -> list[tuple]:
        """Fit every quoted node of swap-tenor column ``j`` into ``sparse``."""
        failures = []
        for i in range(len(self._option_tenors)):
            smile = smiles[i, j]
            fit = self._calibrate_cell(i, j, smile)
            logger.debug("SABR fit %sx%s: %s rms=%.2e max=%.2e nfev=%d",
                         self._option_tenors[i], self._swap_tenors[j],
                         fit.params, fit.rms_error, fit.max_error, fit.nfev)
            if not fit.success:
                failures.append((str(self._option_tenors[i]), str(self._swap_tenors[j]),
                                 f"max error {fit.max_error:.2e}, {fit.message}"))
                continue
            values = (*fit.params.as_array(), fit.rms_error, fit.max_error, smile.forward)
            for k, v in enumerate(values):
                sparse.set_element(k, i, j, v)
        return failures

    def _sabr_calibration(self, smiles) -> GridCube:
        sparse = GridCube(self._option_dates, self._swap_tenors,
                          self._option_times, self._swap_lengths,
                          len(LAYER_NAMES), self.config.extrapolation)
        failures = []
        for j in range(len(self._swap_tenors)):
            failures.extend(self._fit_column(sparse, smiles, j))
        if failures:
            logger.warning("SABR fit failed on %d of %d nodes", len(failures), len(smiles))
            raise SmileCalibrationError("SABR smile fit failed", failures)
        return sparse

    def _dense_cubes(self, sparse: GridCube) -> tuple[GridCube, Optional[GridCube]]:
        dense = self._expand_to_dense(sparse)
        atm_calibrated = self._atm_calibration(dense) if self.config.is_atm_calibrated else None
        return dense, atm_calibrated

    def _expand_to_dense(self, sparse: GridCube) -> GridCube:
        dense = sparse.copy()
        for d in self.atm_vol.option_dates:
            dense.expand_layers(option_date=d, option_time=self.atm_vol.time_from_reference(d))
        for p in self.atm_vol.swap_tenors:
            dense.expand_layers(swap_tenor=p, swap_length=p.years)
        for i, t in enumerate(dense.option_times):
            for j, length in enumerate(dense.swap_lengths):
                dense.set_element(_FORWARD, i, j, self.atm_strike(t, length))
        self._check_parameters(dense, "dense")
        return dense

    def _check_parameters(self, cube: GridCube, name: str) -> None:
        points = cube.points
        dates, tenors = cube.option_dates, cube.swap_tenors
        failures = []
        n_opt, n_swap = cube.shape
        for i in range(n_opt):
            for j in range(n_swap):
                try:
                    SabrParams.from_array([points[k][i, j] for k in range(_N_PARAMS)])
                except ValueError as exc:
                    failures.append((str(dates[i]), str(tenors[j]), str(exc)))
        if failures:
            logger.warning("%d invalid %s SABR nodes", len(failures), name)
            raise SmileCalibrationError(f"invalid {name} SABR parameters", failures)

    def _atm_calibration(self, dense: GridCube) -> GridCube:
        atm = dense.copy()
        points = dense.points
        dates, tenors = dense.option_dates, dense.swap_tenors
        failures = []
        # one root find per node, walked column by column
        for j, length in enumerate(dense.swap_lengths):
            for i, t in enumerate(dense.option_times):
                params = SabrParams.from_array([points[k][i, j] for k in range(_N_PARAMS)])
                forward = points[_FORWARD][i, j]
                target = self.atm_vol.volatility(t, length, forward)
                try:
                    solved = calibrate_alpha_to_atm(params, forward, t, target,
                                                    xtol=self.config.atm_xtol)
                except SmileCalibrationError as exc:
                    failures.append((str(dates[i]), str(tenors[j]), str(exc)))
                    continue
                atm.set_element(0, i, j, solved.alpha)
        if failures:
            logger.warning("ATM recalibration failed on %d nodes", len(failures))
            raise SmileCalibrationError("ATM recalibration failed", failures)
        return atm

    # --- queries -----------------------------------------------------------
    def smile_section(self, option_time: float, swap_length: float) -> SmileSection:
        self.calculate()
        cube = self._atm_calibrated if self._atm_calibrated is not None else self._dense
        values = cube(option_time, swap_length)
        try:
            params = SabrParams.from_array(values[:_N_PARAMS])
        except ValueError as exc:
            raise SmileCalibrationError(
                f"invalid SABR parameters at option time {option_time}, "
                f"swap length {swap_length}: {exc}"
            ) from exc
        return sabr_smile(option_time, self.atm_strike(option_time, swap_length), params)

    def recalibrate(self, beta: float, swap_tenor: Period | str) -> None:
        """Refit one swap-tenor column with beta fixed at ``beta``."""
        p = to_period(swap_tenor)
        if p not in self._swap_tenors:
            raise ValueError(f"swap tenor {p} is not quoted")
        if not 0.0 <= beta <= 1.0:
            raise ValueError(f"beta must be in [0, 1], got {beta}")
        self.calculate()
        j = self._swap_tenors.index(p)
        previous = self._beta_overrides.get(p)
        self._beta_overrides[p] = float(beta)
        try:
            sparse = self._sparse.copy()
            failures = self._fit_column(sparse, self._sparse_smiles, j)
            if failures:
                raise SmileCalibrationError(f"SABR refit of {p} with beta={beta} failed", failures)
            dense, atm_calibrated = self._dense_cubes(sparse)
        except Exception:
            if previous is None:
                del self._beta_overrides[p]
            else:
                self._beta_overrides[p] = previous
            raise
        self._sparse, self._dense, self._atm_calibrated = sparse, dense, atm_calibrated
        self._own_version += 1
        self._stamp = self._input_stamp()
        logger.info("recalibrated %s column with beta=%s", p, beta)

    # --- inspectors --------------------------------------------------------
    @property
    def sparse_smiles(self) -> dict[tuple[str, str], SmileSection]:
        """Market smiles at the quoted nodes, keyed by (option tenor, swap tenor)."""
        self.calculate()
        return {
            (str(self._option_tenors[i]), str(self._swap_tenors[j])): s
            for (i, j), s in self._sparse_smiles.items()
        }

    def sparse_sabr_parameters(self) -> np.ndarray:
        self.calculate()
        return self._sparse.browse()

    def dense_sabr_parameters(self) -> np.ndarray:
        self.calculate()
        return self._dense.browse()

    def vol_cube_atm_calibrated(self) -> np.ndarray:
        self.calculate()
        if self._atm_calibrated is None:
            raise ValueError("ATM recalibration is disabled in this cube's config")
        return self._atm_calibrated.browse()
