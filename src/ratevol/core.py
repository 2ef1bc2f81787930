from __future__ import annotations
import calendar
import re
from dataclasses import dataclass
from datetime import date, timedelta


# ---------------------------------------------------------------------------
# Tenors
# ---------------------------------------------------------------------------
_UNITS = ("D", "W", "M", "Y")
_PERIOD_RE = re.compile(r"^\s*(\d+)\s*([DWMY])\s*$", re.IGNORECASE)


@dataclass(frozen=True)
class Period:
    """A tenor such as ``6M`` or ``10Y``.

    Parameters
    ----------
    length : int
        Number of units (non-negative).
    units : str
        One of ``"D"``, ``"W"``, ``"M"``, ``"Y"``.
    """
    length: int
    units: str

    def __post_init__(self):
        if self.length < 0:
            raise ValueError(f"length must be non-negative, got {self.length}")
        if self.units not in _UNITS:
            raise ValueError(f"units must be one of {_UNITS}, got {self.units!r}")

    @classmethod
    def parse(cls, text: str) -> Period:
        """Build a period from its string form, e.g. ``"18M"``."""
        match = _PERIOD_RE.match(text)
        if match is None:
            raise ValueError(f"cannot parse tenor {text!r}")
        return cls(int(match.group(1)), match.group(2).upper())

    @property
    def years(self) -> float:
        """Length in years (months / 12, days / 365)."""
        if self.units == "Y":
            return float(self.length)
        if self.units == "M":
            return self.length / 12.0
        if self.units == "W":
            return 7.0 * self.length / 365.0
        return self.length / 365.0

    def __str__(self) -> str:
        return f"{self.length}{self.units}"


def to_period(tenor: Period | str) -> Period:
    """Accept either a ``Period`` or its string form."""
    if isinstance(tenor, Period):
        return tenor
    return Period.parse(tenor)


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------
def advance(start: date, tenor: Period | str) -> date:
    """Move ``start`` forward by ``tenor``; month steps clamp to month end."""
    p = to_period(tenor)
    if p.units == "D":
        return start + timedelta(days=p.length)
    if p.units == "W":
        return start + timedelta(weeks=p.length)
    months = p.length * (12 if p.units == "Y" else 1)
    y, m = divmod(start.month - 1 + months, 12)
    year, month = start.year + y, m + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def year_fraction(start: date, end: date) -> float:
    """Actual/365 fixed year fraction."""
    return (end - start).days / 365.0


# ---------------------------------------------------------------------------
# Quotes
# ---------------------------------------------------------------------------
class SimpleQuote:
    """A market value that remembers how many times it changed.

    ``version`` only ever increases; cached calculations compare the versions
    they were built from against the current ones to decide whether to rerun.
    """

    def __init__(self, value: float):
        self._value = float(value)
        self._version = 0

    @property
    def value(self) -> float:
        return self._value

    @property
    def version(self) -> int:
        return self._version

    def set_value(self, value: float) -> None:
        value = float(value)
        if value != self._value:
            self._value = value
            self._version += 1

    def __repr__(self) -> str:
        return f"SimpleQuote({self._value!r})"


def as_quote(x: SimpleQuote | float) -> SimpleQuote:
    return x if isinstance(x, SimpleQuote) else SimpleQuote(x)
