"""Tests for the SABR formula, smile fitting and the ATM alpha solve."""

import numpy as np
import pytest
from ratevol.errors import SmileCalibrationError
from ratevol.sabr import (
    SabrParams, calibrate_alpha_to_atm, fit_sabr, sabr_volatility, vega_weights,
)


@pytest.fixture
def true_params():
    return SabrParams(alpha=0.035, beta=0.5, nu=0.45, rho=-0.25)


# ---------------------------------------------------------------------------
# SabrParams
# ---------------------------------------------------------------------------
class TestSabrParams:
    @pytest.mark.parametrize("kwargs", [
        {"alpha": 0.0, "beta": 0.5, "nu": 0.3, "rho": 0.0},
        {"alpha": 0.03, "beta": 1.2, "nu": 0.3, "rho": 0.0},
        {"alpha": 0.03, "beta": 0.5, "nu": -0.1, "rho": 0.0},
        {"alpha": 0.03, "beta": 0.5, "nu": 0.3, "rho": 1.0},
    ])
    def test_invalid_rejected_not_clamped(self, kwargs):
        with pytest.raises(ValueError):
            SabrParams(**kwargs)

    def test_array_round_trip(self, true_params):
        assert SabrParams.from_array(true_params.as_array()) == true_params

    def test_with_alpha(self, true_params):
        p = true_params.with_alpha(0.05)
        assert p.alpha == 0.05 and p.nu == true_params.nu


# ---------------------------------------------------------------------------
# Hagan formula
# ---------------------------------------------------------------------------
class TestSabrVolatility:
    def test_lognormal_limit(self):
        """beta = 1, nu = 0 collapses to a flat Black vol of alpha."""
        p = SabrParams(alpha=0.2, beta=1.0, nu=0.0, rho=0.0)
        vols = sabr_volatility(np.array([0.02, 0.03, 0.05]), 0.03, 2.0, p)
        np.testing.assert_allclose(vols, 0.2, rtol=1e-12)

    def test_atm_continuous(self, true_params):
        F, T = 0.03, 1.0
        atm = sabr_volatility(F, F, T, true_params)
        near = sabr_volatility(F * (1 + 1e-7), F, T, true_params)
        assert abs(atm - near) < 1e-6

    def test_negative_rho_gives_downward_skew(self, true_params):
        F = 0.03
        assert sabr_volatility(0.02, F, 1.0, true_params) > sabr_volatility(0.04, F, 1.0, true_params)

    def test_scalar_returns_float(self, true_params):
        assert isinstance(sabr_volatility(0.03, 0.03, 1.0, true_params), float)

    def test_non_positive_strike_raises(self, true_params):
        with pytest.raises(ValueError, match="positive"):
            sabr_volatility(np.array([-0.01, 0.02]), 0.03, 1.0, true_params)


# ---------------------------------------------------------------------------
# Fitting
# ---------------------------------------------------------------------------
class TestFitSabr:
    def test_zero_noise_recovery(self, true_params):
        """Fit to vols generated from known parameters with beta fixed."""
        F, T = 0.03, 2.0
        strikes = F + np.array([-0.015, -0.01, -0.005, 0.0, 0.005, 0.01, 0.02])
        vols = sabr_volatility(strikes, F, T, true_params)
        guess = SabrParams(alpha=0.03, beta=0.5, nu=0.3, rho=0.0)

        fit = fit_sabr(strikes, F, T, vols, guess=guess, is_fixed=(False, True, False, False))

        assert fit.success
        assert fit.max_error < 1e-5
        assert fit.params.beta == 0.5
        assert abs(fit.params.alpha - true_params.alpha) < 1e-4
        assert abs(fit.params.nu - true_params.nu) < 1e-2
        assert abs(fit.params.rho - true_params.rho) < 1e-2

    def test_vega_weighted_fit(self, true_params):
        F, T = 0.03, 1.0
        strikes = F + np.array([-0.01, -0.005, 0.0, 0.005, 0.01])
        vols = sabr_volatility(strikes, F, T, true_params)
        w = vega_weights(strikes, F, T, vols)
        assert w.sum() == pytest.approx(1.0)
        assert np.argmax(w) == 2

        fit = fit_sabr(strikes, F, T, vols, weights=w, is_fixed=(False, True, False, False))
        assert fit.success and fit.rms_error < 1e-5

    def test_failure_reported_not_raised(self):
        """A smile SABR cannot produce is a failed fit, not an exception."""
        F, T = 0.03, 1.0
        strikes = F + np.array([-0.01, -0.005, 0.0, 0.005, 0.01])
        vols = np.array([0.2, 0.6, 0.2, 0.6, 0.2])   # zig-zag
        fit = fit_sabr(strikes, F, T, vols, max_error_tolerance=1e-4)
        assert not fit.success
        assert fit.max_error > 1e-4

    def test_all_fixed_is_evaluation_only(self, true_params):
        F, T = 0.03, 1.0
        strikes = F + np.array([-0.01, 0.0, 0.01])
        vols = sabr_volatility(strikes, F, T, true_params)
        fit = fit_sabr(strikes, F, T, vols, guess=true_params, is_fixed=(True,) * 4)
        assert fit.nfev == 0
        assert fit.params == true_params
        assert fit.max_error < 1e-15

    def test_non_positive_strikes_dropped(self, true_params):
        F, T = 0.01, 1.0
        strikes = np.array([-0.005, 0.0, 0.005, 0.01, 0.015, 0.02])
        vols = np.full(len(strikes), 0.3)
        vols[2:] = sabr_volatility(strikes[2:], F, T, true_params)
        fit = fit_sabr(strikes, F, T, vols, guess=true_params,
                       is_fixed=(False, True, False, False))
        assert fit.success

    def test_shape_mismatch_raises(self):
        with pytest.raises(ValueError, match="differ"):
            fit_sabr(np.array([0.01, 0.02]), 0.015, 1.0, np.array([0.2]))


# ---------------------------------------------------------------------------
# ATM recalibration
# ---------------------------------------------------------------------------
class TestCalibrateAlphaToAtm:
    def test_reproduces_target(self, true_params):
        F, T, target = 0.03, 5.0, 0.27
        p = calibrate_alpha_to_atm(true_params, F, T, target)
        assert abs(sabr_volatility(F, F, T, p) - target) < 1e-12
        assert (p.beta, p.nu, p.rho) == (true_params.beta, true_params.nu, true_params.rho)

    def test_large_target(self, true_params):
        F, T = 0.03, 1.0
        p = calibrate_alpha_to_atm(true_params, F, T, 3.0)
        assert abs(sabr_volatility(F, F, T, p) - 3.0) < 1e-10

    def test_unbracketed_target_raises(self):
        # rho near one with large nu turns the ATM vol negative at the first bracket
        p = SabrParams(alpha=0.03, beta=0.5, nu=5.0, rho=0.99)
        with pytest.raises(SmileCalibrationError):
            calibrate_alpha_to_atm(p, 0.03, 10.0, 0.2, max_expansions=1)

    def test_non_positive_target_raises(self, true_params):
        with pytest.raises(ValueError):
            calibrate_alpha_to_atm(true_params, 0.03, 1.0, 0.0)
