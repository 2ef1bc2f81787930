# grid.py
# Layered (option time x swap length) grids with per-layer bilinear interpolation.

from __future__ import annotations
import logging
from typing import Sequence

import numpy as np

logger = logging.getLogger(__name__)

# Axis values closer than this are treated as the same node.
_AXIS_TOL = 1e-10


# ---------------------------------------------------------------------------
# Bilinear interpolation
# ---------------------------------------------------------------------------
def _locate(axis: np.ndarray, v: float) -> tuple[int, float]:
    """Left index of the segment used for ``v`` and the weight of its right end."""
    if len(axis) == 1:
        return 0, 0.0
    i = int(np.searchsorted(axis, v, side="right")) - 1
    i = min(max(i, 0), len(axis) - 2)
    return i, (v - axis[i]) / (axis[i + 1] - axis[i])


class BilinearInterpolator:
    """Bilinear interpolation of ``z[i, j]`` sampled at ``(x[i], y[j])``.

    Beyond the axes the edge segments are extended linearly when
    ``extrapolate`` is set; otherwise such queries raise ``ValueError``.
    A single-point axis is treated as constant along that direction.
    Evaluating exactly on a node returns the stored value unchanged.
    """

    def __init__(self, x, y, z, *, extrapolate: bool = False):
        self._x = np.asarray(x, dtype=float)
        self._y = np.asarray(y, dtype=float)
        self._z = np.asarray(z, dtype=float)
        if self._z.shape != (len(self._x), len(self._y)):
            raise ValueError(
                f"z has shape {self._z.shape}, expected ({len(self._x)}, {len(self._y)})"
            )
        self.extrapolate = extrapolate

    def _check_range(self, x: float, y: float) -> None:
        if not self._x[0] <= x <= self._x[-1]:
            raise ValueError(
                f"option time {x} outside grid range [{self._x[0]}, {self._x[-1]}]"
            )
        if not self._y[0] <= y <= self._y[-1]:
            raise ValueError(
                f"swap length {y} outside grid range [{self._y[0]}, {self._y[-1]}]"
            )

    def __call__(self, x: float, y: float) -> float:
        if not self.extrapolate:
            self._check_range(x, y)
        i, wx = _locate(self._x, x)
        j, wy = _locate(self._y, y)
        i1 = min(i + 1, len(self._x) - 1)
        j1 = min(j + 1, len(self._y) - 1)
        z = self._z
        lower = (1.0 - wy) * z[i, j] + wy * z[i, j1]
        upper = (1.0 - wy) * z[i1, j] + wy * z[i1, j1]
        return float((1.0 - wx) * lower + wx * upper)


# ---------------------------------------------------------------------------
# GridCube
# ---------------------------------------------------------------------------
def _strictly_increasing(a: np.ndarray) -> bool:
    return bool(np.all(np.diff(a) > 0))


class GridCube:
    """Sparse layered grid keyed by (option time, swap length).

    Each layer is one scalar field (a vol spread, a SABR parameter, a fit
    error...) stored as an ``(n_option_times, n_swap_lengths)`` matrix.  The
    per-layer interpolators form a two-state cache: every write marks it
    stale and :meth:`ensure_fresh` rebuilds it before any read.

    Parameters
    ----------
    option_dates, swap_tenors : sequence
        Labels of the axes (dates and tenors); kept aligned with the numeric
        axes but never used in the arithmetic.
    option_times, swap_lengths : array-like
        Strictly increasing numeric axes, in years.
    n_layers : int
        Number of scalar fields held.
    extrapolation : bool
        Whether evaluation outside the axes is allowed.
    """

    def __init__(
        self,
        option_dates: Sequence,
        swap_tenors: Sequence,
        option_times: Sequence[float],
        swap_lengths: Sequence[float],
        n_layers: int,
        extrapolation: bool = True,
    ):
        option_times = np.asarray(option_times, dtype=float)
        swap_lengths = np.asarray(swap_lengths, dtype=float)
        if n_layers < 1:
            raise ValueError(f"n_layers must be positive, got {n_layers}")
        if option_times.ndim != 1 or len(option_times) == 0:
            raise ValueError("at least one option time is required")
        if swap_lengths.ndim != 1 or len(swap_lengths) == 0:
            raise ValueError("at least one swap length is required")
        if len(option_dates) != len(option_times):
            raise ValueError(
                f"{len(option_dates)} option dates vs {len(option_times)} option times"
            )
        if len(swap_tenors) != len(swap_lengths):
            raise ValueError(
                f"{len(swap_tenors)} swap tenors vs {len(swap_lengths)} swap lengths"
            )
        if not _strictly_increasing(option_times):
            raise ValueError("option times must be strictly increasing")
        if not _strictly_increasing(swap_lengths):
            raise ValueError("swap lengths must be strictly increasing")

        self._option_dates = list(option_dates)
        self._swap_tenors = list(swap_tenors)
        self._option_times = option_times.copy()
        self._swap_lengths = swap_lengths.copy()
        self._n_layers = int(n_layers)
        self._extrapolation = extrapolation
        self._points = [np.zeros(self.shape) for _ in range(self._n_layers)]
        self._interpolators: list[BilinearInterpolator] = []
        self._fresh = False

    # --- inspectors --------------------------------------------------------
    @property
    def option_dates(self) -> list:
        return list(self._option_dates)

    @property
    def swap_tenors(self) -> list:
        return list(self._swap_tenors)

    @property
    def option_times(self) -> np.ndarray:
        return self._option_times.copy()

    @property
    def swap_lengths(self) -> np.ndarray:
        return self._swap_lengths.copy()

    @property
    def n_layers(self) -> int:
        return self._n_layers

    @property
    def shape(self) -> tuple[int, int]:
        return len(self._option_times), len(self._swap_lengths)

    @property
    def extrapolation(self) -> bool:
        return self._extrapolation

    @property
    def points(self) -> list[np.ndarray]:
        """Per-layer matrices (copies)."""
        return [p.copy() for p in self._points]

    @property
    def is_fresh(self) -> bool:
        return self._fresh

    # --- writes ------------------------------------------------------------
    def set_element(self, layer: int, row: int, col: int, value: float) -> None:
        n_rows, n_cols = self.shape
        if not (0 <= layer < self._n_layers and 0 <= row < n_rows and 0 <= col < n_cols):
            raise IndexError(
                f"element ({layer}, {row}, {col}) outside {self._n_layers} layers of {self.shape}"
            )
        self._points[layer][row, col] = value
        self._fresh = False

    def set_layer(self, i: int, matrix) -> None:
        matrix = np.asarray(matrix, dtype=float)
        if matrix.shape != self.shape:
            raise ValueError(
                f"layer {i} has shape {matrix.shape}, grid is {self.shape}"
            )
        self._points[i] = matrix.copy()
        self._fresh = False

    def set_points(self, matrices: Sequence) -> None:
        if len(matrices) != self._n_layers:
            raise ValueError(
                f"{len(matrices)} matrices given for {self._n_layers} layers"
            )
        for i, m in enumerate(matrices):
            self.set_layer(i, m)

    def set_point(
        self,
        option_date,
        swap_tenor,
        option_time: float,
        swap_length: float,
        values: Sequence[float],
    ) -> None:
        """Write one value per layer at a node, adding the node if it is new."""
        values = np.asarray(values, dtype=float).ravel()
        if len(values) != self._n_layers:
            raise ValueError(
                f"{len(values)} values given for {self._n_layers} layers"
            )
        row, col = self.expand_layers(
            option_date=option_date, option_time=option_time,
            swap_tenor=swap_tenor, swap_length=swap_length,
        )
        for k in range(self._n_layers):
            self._points[k][row, col] = values[k]
        self._fresh = False

    def expand_layers(
        self,
        option_date=None,
        option_time: float | None = None,
        swap_tenor=None,
        swap_length: float | None = None,
    ) -> tuple[int | None, int | None]:
        """Insert new axis values, filling new cells from the current surface.

        Returns the row of ``option_time`` and the column of ``swap_length``
        (``None`` for an axis that was not requested).  Values on inserted
        rows and columns are interpolated (or linearly extrapolated) from the
        grid as it was, so the interpolated surface does not change.
        """
        row, new_row = (None, False)
        col, new_col = (None, False)
        if option_time is not None:
            row, new_row = self._position(self._option_times, float(option_time))
        if swap_length is not None:
            col, new_col = self._position(self._swap_lengths, float(swap_length))
        if not (new_row or new_col):
            return row, col

        old_interps = [
            BilinearInterpolator(self._option_times, self._swap_lengths, p,
                                 extrapolate=True)
            for p in self._points
        ]
        times = self._option_times
        lengths = self._swap_lengths
        if new_row:
            times = np.insert(times, row, option_time)
            self._option_dates.insert(row, option_date)
        if new_col:
            lengths = np.insert(lengths, col, swap_length)
            self._swap_tenors.insert(col, swap_tenor)

        new_points = []
        for k, interp in enumerate(old_interps):
            m = np.empty((len(times), len(lengths)))
            for r, t in enumerate(times):
                old_r = None if new_row and r == row else r - (new_row and r > row)
                for c, s in enumerate(lengths):
                    old_c = None if new_col and c == col else c - (new_col and c > col)
                    if old_r is None or old_c is None:
                        m[r, c] = interp(t, s)
                    else:
                        m[r, c] = self._points[k][old_r, old_c]
            new_points.append(m)

        self._option_times = times
        self._swap_lengths = lengths
        self._points = new_points
        self._fresh = False
        logger.debug("grid expanded to %s", self.shape)
        return row, col

    @staticmethod
    def _position(axis: np.ndarray, value: float) -> tuple[int, bool]:
        hits = np.flatnonzero(np.abs(axis - value) <= _AXIS_TOL)
        if len(hits):
            return int(hits[0]), False
        return int(np.searchsorted(axis, value)), True

    # --- reads -------------------------------------------------------------
    def ensure_fresh(self) -> None:
        """Rebuild the per-layer interpolators if anything changed."""
        if self._fresh:
            return
        self._interpolators = [
            BilinearInterpolator(self._option_times, self._swap_lengths, p,
                                 extrapolate=self._extrapolation)
            for p in self._points
        ]
        self._fresh = True

    def __call__(self, option_time: float, swap_length: float) -> np.ndarray:
        """Interpolated value of every layer at one point."""
        self.ensure_fresh()
        return np.array([f(option_time, swap_length) for f in self._interpolators])

    def browse(self) -> np.ndarray:
        """One row per node: ``[option_time, swap_length, layer_0, ...]``."""
        n_opt, n_swap = self.shape
        out = np.empty((n_opt * n_swap, 2 + self._n_layers))
        for i in range(n_opt):
            for j in range(n_swap):
                r = i * n_swap + j
                out[r, 0] = self._option_times[i]
                out[r, 1] = self._swap_lengths[j]
                for k, p in enumerate(self._points):
                    out[r, 2 + k] = p[i, j]
        return out

    def copy(self) -> GridCube:
        other = GridCube(self._option_dates, self._swap_tenors,
                         self._option_times, self._swap_lengths,
                         self._n_layers, self._extrapolation)
        other.set_points(self._points)
        return other
