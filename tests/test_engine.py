"""Tests for the shared engine contract and bump Greeks."""

import pytest
from amerpricer import (
    CALL, PUT, ValidationError, PricingError, AmerPricerError, AmericanEngine,
    SpectralEngine, bs_greeks, OptionSpec,
    numerical_greeks,
)
from amerpricer.black_scholes import bs_price
from amerpricer.engine import intrinsic_value


class _European(AmericanEngine):
    name = "european"

    def _price(self, spot, strike, maturity, r, q, sigma, kind):
        return bs_price(spot, strike, maturity, r, q, sigma, kind)


class _Broken(AmericanEngine):
    name = "broken"

    def _price(self, spot, strike, maturity, r, q, sigma, kind):
        return float("nan")


ARGS = (100.0, 100.0, 1.0, -0.005, -0.01, 0.2)


class TestNumericalGreeks:
    def test_vs_analytical_bs(self):
        g = numerical_greeks(bs_price, *ARGS, CALL)
        a = bs_greeks(OptionSpec(100, 100, 1.0, -0.005, 0.2, -0.01, CALL))
        assert g["price"] == pytest.approx(a["price"], rel=1e-12)
        assert g["delta"] == pytest.approx(a["delta"], abs=1e-5)
        assert g["gamma"] == pytest.approx(a["gamma"], rel=1e-3)
        assert g["vega"] == pytest.approx(a["vega"], rel=1e-3)
        assert g["theta"] == pytest.approx(a["theta"], abs=0.02)
        assert g["rho"] == pytest.approx(a["rho"], rel=1e-3)

    def test_all_keys(self):
        g = numerical_greeks(bs_price, *ARGS, PUT)
        assert set(g) == {"price", "delta", "gamma", "vega", "theta", "rho"}

    def test_theta_zero_inside_one_day(self):
        g = numerical_greeks(bs_price, 100.0, 100.0, 0.5 / 365, 0.01, 0.0, 0.2, PUT)
        assert g["theta"] == 0.0


class TestEngineContract:
    def test_base_is_abstract(self):
        with pytest.raises(NotImplementedError):
            AmericanEngine().price(*ARGS, PUT)

    def test_bump_greeks_on_european(self):
        eng = _European()
        res = eng.price_with_greeks(*ARGS, PUT)
        a = bs_greeks(OptionSpec(100, 100, 1.0, -0.005, 0.2, -0.01, PUT))
        assert res.price == pytest.approx(a["price"])
        assert res.delta == pytest.approx(a["delta"], abs=1e-5)
        assert res.gamma == pytest.approx(a["gamma"], rel=1e-3)
        assert res.vega == pytest.approx(a["vega"], rel=1e-3)
        assert res.rho == pytest.approx(a["rho"], rel=1e-3)

    def test_single_greeks_match_bundle(self):
        eng = _European()
        g = eng.greeks(*ARGS, CALL)
        assert eng.delta(*ARGS, CALL) == pytest.approx(g["delta"])
        assert eng.gamma(*ARGS, CALL) == pytest.approx(g["gamma"])
        assert eng.vega(*ARGS, CALL) == pytest.approx(g["vega"])
        assert eng.theta(*ARGS, CALL) == pytest.approx(g["theta"])
        assert eng.rho(*ARGS, CALL) == pytest.approx(g["rho"])

    def test_intrinsic_below_one_day(self):
        eng = SpectralEngine()
        assert eng.price(90.0, 100.0, 0.5 / 365, 0.01, 0.0, 0.2, PUT) == 10.0
        assert eng.price(90.0, 100.0, 0.0, 0.01, 0.0, 0.2, CALL) == 0.0
        assert eng.theta(90.0, 100.0, 0.5 / 365, 0.01, 0.0, 0.2, PUT) == 0.0

    @pytest.mark.parametrize("bad", [
        (-1.0, 100.0, 1.0, 0.01, 0.0, 0.2, PUT),
        (100.0, 100.0, 1.0, 0.01, 0.0, 0.0, PUT),
        (100.0, 0.0, 1.0, 0.01, 0.0, 0.2, PUT),
        (100.0, 100.0, -1.0, 0.01, 0.0, 0.2, PUT),
        (100.0, 100.0, 1.0, 0.7, 0.0, 0.2, PUT),
        (100.0, 100.0, 1.0, 0.01, 0.0, 0.2, "digital"),
    ])
    def test_rejects_bad_inputs(self, bad):
        with pytest.raises(ValidationError):
            SpectralEngine().price(*bad)

    def test_intrinsic_value(self):
        assert intrinsic_value(90.0, 100.0, PUT) == 10.0
        assert intrinsic_value(90.0, 100.0, CALL) == 0.0

    def test_non_finite_price_raises(self):
        with pytest.raises(PricingError) as exc:
            _Broken().price(*ARGS, PUT)
        assert isinstance(exc.value, AmerPricerError)
        assert isinstance(exc.value, ArithmeticError)
