"""Tests for the ATM vol matrix and forward swap rates."""

import math
from datetime import date

import numpy as np
import pytest
from ratevol.core import advance, year_fraction
from ratevol.termstructures import AtmVolMatrix, SwapIndex

REF = date(2024, 1, 15)


@pytest.fixture
def atm():
    vols = [[0.20, 0.18, 0.16],
            [0.19, 0.17, 0.15]]
    return AtmVolMatrix(REF, ["1Y", "2Y"], ["2Y", "5Y", "10Y"], vols)


# ---------------------------------------------------------------------------
# AtmVolMatrix
# ---------------------------------------------------------------------------
class TestAtmVolMatrix:
    def test_node_values(self, atm):
        d = advance(REF, "2Y")
        assert atm.volatility_at(d, "5Y") == 0.17

    def test_flat_in_strike(self, atm):
        t = atm.option_times[0]
        assert atm.volatility(t, 5.0, 0.01) == atm.volatility(t, 5.0, 0.08)

    def test_interpolates_between_nodes(self, atm):
        t0, t1 = atm.option_times
        assert atm.volatility(0.5 * (t0 + t1), 5.0) == pytest.approx(0.175)

    def test_axes(self, atm):
        assert [str(p) for p in atm.swap_tenors] == ["2Y", "5Y", "10Y"]
        np.testing.assert_array_equal(atm.swap_lengths, [2.0, 5.0, 10.0])
        assert atm.option_dates[0] == date(2025, 1, 15)
        assert atm.time_from_reference(date(2025, 1, 15)) == year_fraction(REF, date(2025, 1, 15))

    def test_set_volatility_bumps_version(self, atm):
        assert atm.version == 0
        atm.set_volatility(0, 0, 0.25)
        assert atm.version == 1
        assert atm.volatility(atm.option_times[0], 2.0) == 0.25

    def test_shape_mismatch_raises(self):
        with pytest.raises(ValueError, match="shape"):
            AtmVolMatrix(REF, ["1Y"], ["2Y", "5Y"], [[0.2]])

    def test_non_positive_vol_raises(self):
        with pytest.raises(ValueError, match="positive"):
            AtmVolMatrix(REF, ["1Y"], ["2Y"], [[0.0]])


# ---------------------------------------------------------------------------
# SwapIndex
# ---------------------------------------------------------------------------
class TestSwapIndex:
    def test_annual_par_rate_flat_curve(self):
        """Annual fixed leg on a flat cc curve: par rate is exp(r) - 1."""
        idx = SwapIndex(0.03)
        assert idx.forward_rate(1.0, 5.0) == pytest.approx(math.exp(0.03) - 1.0, abs=1e-13)

    def test_callable_curve(self):
        idx = SwapIndex(lambda t: 1.0 / (1.0 + 0.04) ** t)
        assert idx.forward_rate(2.0, 10.0) == pytest.approx(0.04, abs=1e-13)

    def test_annuity(self):
        idx = SwapIndex(0.0)
        assert idx.annuity(1.0, 5.0) == pytest.approx(5.0)

    def test_semi_annual_schedule(self):
        idx = SwapIndex(0.0, fixed_frequency=2)
        assert idx.annuity(0.5, 3.0) == pytest.approx(3.0)

    def test_bad_inputs_raise(self):
        with pytest.raises(ValueError):
            SwapIndex(0.03, fixed_frequency=0)
        with pytest.raises(ValueError):
            SwapIndex(0.03).forward_rate(1.0, 0.0)
