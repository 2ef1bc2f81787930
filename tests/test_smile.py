"""Tests for Black-76 pricing and smile sections."""

import numpy as np
import pytest
from ratevol import smile as smile_module
from ratevol.black import black_price_vec, black_vega_vec
from ratevol.sabr import SabrParams, sabr_volatility
from ratevol.smile import (
    SmileKind, SmileSection, additive_spread_smile, sabr_smile, smile_volatility,
    sparse_quote_smile,
)

SPREADS = np.array([-0.01, -0.005, 0.0, 0.005, 0.01])
VOL_SPREADS = np.array([0.03, 0.012, 0.0, -0.004, 0.002])


# ---------------------------------------------------------------------------
# Black-76
# ---------------------------------------------------------------------------
class TestBlack:
    def test_put_call_parity(self):
        F, K, T, vol, annuity = 0.03, 0.035, 2.0, 0.25, 4.2
        call = black_price_vec(F, K, T, vol, "call", annuity)
        put = black_price_vec(F, K, T, vol, "put", annuity)
        assert abs(float(call - put) - annuity * (F - K)) < 1e-14

    def test_array_of_strikes(self):
        strikes = np.linspace(0.01, 0.06, 20)
        prices = black_price_vec(0.03, strikes, 1.0, 0.2, "call")
        assert prices.shape == (20,)
        assert np.all(np.diff(prices) < 0)

    def test_vega_matches_finite_difference(self):
        F, K, T, vol, h = 0.03, 0.032, 1.5, 0.22, 1e-6
        up = black_price_vec(F, K, T, vol + h, "call")
        dn = black_price_vec(F, K, T, vol - h, "call")
        assert abs(float(black_vega_vec(F, K, T, vol)) - float(up - dn) / (2 * h)) < 1e-8


# ---------------------------------------------------------------------------
# Quote-based smiles
# ---------------------------------------------------------------------------
class TestQuoteSmiles:
    @pytest.mark.parametrize("factory, kind", [
        (sparse_quote_smile, SmileKind.SPARSE_QUOTE),
        (additive_spread_smile, SmileKind.ADDITIVE_SPREAD),
    ])
    def test_reproduces_quotes_on_nodes(self, factory, kind):
        F, T, atm = 0.03, 2.0, 0.2
        s = factory(T, F, atm, SPREADS, VOL_SPREADS)
        assert s.kind is kind
        np.testing.assert_allclose(s.strikes, F + SPREADS)
        np.testing.assert_allclose(s.volatility(F + SPREADS), atm + VOL_SPREADS, atol=1e-14)
        np.testing.assert_allclose(s.std_devs, np.sqrt(T) * (atm + VOL_SPREADS))

    def test_linear_in_std_dev_between_strikes(self):
        s = sparse_quote_smile(1.0, 0.03, 0.2, SPREADS, VOL_SPREADS)
        mid = 0.03 - 0.0075
        assert s.volatility(mid) == pytest.approx(0.2 + 0.5 * (0.03 + 0.012))

    def test_flat_beyond_wings(self):
        s = additive_spread_smile(1.0, 0.03, 0.2, SPREADS, VOL_SPREADS)
        assert s.volatility(0.001) == pytest.approx(0.23)
        assert s.volatility(0.5) == pytest.approx(0.202)

    def test_atm_level_is_quoted_vol(self):
        s = sparse_quote_smile(1.0, 0.03, 0.2, SPREADS, VOL_SPREADS)
        assert s.atm_level() == 0.2

    def test_variance_and_std_dev(self):
        s = additive_spread_smile(4.0, 0.03, 0.2, SPREADS, np.zeros(5))
        assert s.std_dev(0.03) == pytest.approx(0.4)
        assert s.variance(0.03) == pytest.approx(0.16)

    def test_mismatched_spreads_raise(self):
        with pytest.raises(ValueError, match="spreads"):
            sparse_quote_smile(1.0, 0.03, 0.2, SPREADS, VOL_SPREADS[:3])

    def test_non_increasing_strikes_raise(self):
        with pytest.raises(ValueError, match="increasing"):
            SmileSection(SmileKind.SPARSE_QUOTE, 1.0, 0.03, atm_vol=0.2,
                         strikes=np.array([0.03, 0.02]), std_devs=np.array([0.2, 0.2]))


# ---------------------------------------------------------------------------
# SABR smiles
# ---------------------------------------------------------------------------
class TestSabrSmile:
    def test_matches_formula(self):
        p = SabrParams(alpha=0.04, beta=0.5, nu=0.4, rho=-0.2)
        s = sabr_smile(3.0, 0.03, p)
        strikes = np.array([0.02, 0.03, 0.045])
        np.testing.assert_array_equal(s.volatility(strikes), sabr_volatility(strikes, 0.03, 3.0, p))
        assert s.atm_level() == sabr_volatility(0.03, 0.03, 3.0, p)

    def test_needs_parameters(self):
        with pytest.raises(ValueError, match="parameters"):
            SmileSection(SmileKind.SABR, 1.0, 0.03)

    def test_option_price_uses_smile_vol(self):
        p = SabrParams(alpha=0.04, beta=0.5, nu=0.4, rho=-0.2)
        s = sabr_smile(1.0, 0.03, p)
        K = 0.035
        expected = black_price_vec(0.03, K, 1.0, s.volatility(K), "call", 2.0)
        assert s.option_price(K, "call", 2.0) == pytest.approx(float(expected), abs=1e-16)

    def test_non_positive_expiry_raises(self):
        with pytest.raises(ValueError, match="expiry"):
            sabr_smile(0.0, 0.03, SabrParams(alpha=0.04, beta=0.5, nu=0.4, rho=0.0))


class TestDispatch:
    def test_every_kind_evaluates(self):
        p = SabrParams(alpha=0.04, beta=0.5, nu=0.4, rho=0.0)
        sections = [
            sparse_quote_smile(1.0, 0.03, 0.2, SPREADS, VOL_SPREADS),
            additive_spread_smile(1.0, 0.03, 0.2, SPREADS, VOL_SPREADS),
            sabr_smile(1.0, 0.03, p),
        ]
        assert {s.kind for s in sections} == set(SmileKind)
        for s in sections:
            assert isinstance(smile_volatility(s, 0.03), float)

    def test_every_kind_has_an_evaluator(self):
        assert set(smile_module._EVALUATORS) == set(SmileKind)
