"""Exception types for calibration failures.

Bad inputs (mismatched sizes, malformed grids) raise plain ``ValueError``.
The classes here cover the two other failure modes: a smile that cannot be
fitted to its quotes, and an internal invariant that should hold whenever
the inputs passed validation.
"""

from __future__ import annotations

__all__ = ["SmileCalibrationError", "CalibrationInvariantError"]


class SmileCalibrationError(RuntimeError):
    """One or more cube cells could not be calibrated.

    Parameters
    ----------
    message : str
        Summary of the failure.
    cells : list of tuple, optional
        ``(option_tenor, swap_tenor, detail)`` for every failed cell.
    """

    def __init__(self, message: str, cells: list[tuple] | None = None):
        self.cells = list(cells or [])
        if self.cells:
            detail = "; ".join(f"{o}x{s}: {d}" for o, s, d in self.cells)
            message = f"{message} [{detail}]"
        super().__init__(message)


class CalibrationInvariantError(RuntimeError):
    """A calibration reached a state its inputs should have ruled out."""
