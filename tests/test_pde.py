"""Tests for the finite-difference engine."""

import numpy as np
import pytest
from amerpricer import OptionSpec, CALL, PUT, FDParams, FDEngine, bs_price, bs_greeks
from amerpricer.config import MIN_PRICING_MATURITY
from amerpricer.pde import fd_price, fd_greeks, _thomas_factor, _thomas_apply

OPT = OptionSpec(S0=100, K=100, T=1.0, r=0.05, sigma=0.2, kind=PUT)
BAND = dict(T=1.0, r=-0.005, sigma=0.08, q=-0.01, kind=PUT)


class TestFDEuropean:
    def test_put_vs_bs(self):
        fd = fd_price(OPT, american=False)
        bs = bs_price(OPT)
        assert abs(fd - bs) / bs < 2e-3, f"FD={fd:.6f} BS={bs:.6f}"

    @pytest.mark.parametrize("kind", [CALL, PUT])
    def test_negative_rates_vs_bs(self, kind):
        opt = OptionSpec(S0=95, K=100, T=2.0, r=-0.01, sigma=0.25, q=-0.02, kind=kind)
        fd = fd_price(opt, american=False)
        bs = bs_price(opt)
        assert abs(fd - bs) / bs < 5e-3, f"FD={fd:.6f} BS={bs:.6f}"

    def test_greeks_vs_bs(self):
        g = fd_greeks(OPT, american=False)
        a = bs_greeks(OPT)
        assert g["delta"] == pytest.approx(a["delta"], abs=5e-3)
        assert g["gamma"] == pytest.approx(a["gamma"], abs=1e-3)
        assert g["theta"] == pytest.approx(a["theta"], abs=0.05)


class TestFDAmerican:
    def test_known_put_value(self):
        # CRR with 10k steps gives 6.0904
        assert fd_price(OPT) == pytest.approx(6.0904, abs=0.02)

    def test_american_put_geq_european(self):
        assert fd_price(OPT) >= fd_price(OPT, american=False) - 1e-10

    def test_no_exercise_regime_matches_european(self):
        opt = OptionSpec(S0=100, K=100, T=1.0, r=-0.01, sigma=0.2, q=0.0, kind=PUT)
        assert fd_price(opt) == pytest.approx(bs_price(opt), abs=0.01)

    def test_call_without_dividend_is_european(self):
        opt = OptionSpec(S0=100, K=100, T=1.0, r=0.05, sigma=0.2, kind=CALL)
        assert fd_price(opt) == pytest.approx(bs_price(opt), abs=0.05)

    def test_inside_double_band_is_intrinsic(self):
        opt = OptionSpec(S0=68, K=100, **BAND)
        assert fd_price(opt) == pytest.approx(32.0, abs=0.05)

    def test_double_band_above_european(self):
        opt = OptionSpec(S0=100, K=100, **BAND)
        assert fd_price(opt) >= bs_price(opt) - 1e-10

    def test_put_call_symmetry(self):
        call = OptionSpec(S0=100, K=110, T=1.0, r=0.03, sigma=0.25, q=0.06, kind=CALL)
        put = OptionSpec(S0=110, K=100, T=1.0, r=0.06, sigma=0.25, q=0.03, kind=PUT)
        assert fd_price(call) == pytest.approx(fd_price(put), abs=0.03)

    def test_implicit_close_to_crank_nicolson(self):
        implicit = fd_price(OPT, params=FDParams(theta=1.0))
        assert implicit == pytest.approx(fd_price(OPT), abs=0.05)

    def test_grid_greeks(self):
        g = fd_greeks(OPT)
        assert -1.0 < g["delta"] < 0.0
        assert g["gamma"] > 0.0
        assert g["theta"] < 0.0


class TestFDParams:
    def test_defaults(self):
        p = FDParams()
        assert (p.N_S, p.N_t, p.theta) == (300, 300, 0.5)

    @pytest.mark.parametrize("kw", [dict(N_S=2), dict(N_t=1), dict(theta=1.5)])
    def test_invalid(self, kw):
        with pytest.raises(ValueError):
            FDParams(**kw)


class TestFDEngine:
    def test_price_matches_function(self):
        eng = FDEngine()
        assert eng.price(100, 100, 1.0, 0.05, 0.0, 0.2, PUT) == pytest.approx(fd_price(OPT))

    def test_greeks(self):
        g = FDEngine(FDParams(N_S=150, N_t=150)).greeks(100, 100, 1.0, 0.05, 0.0, 0.2, PUT)
        assert set(g) == {"price", "delta", "gamma", "vega", "theta", "rho"}
        assert g["vega"] > 0.0
        assert g["rho"] < 0.0
        assert np.isfinite(list(g.values())).all()

    def test_delta_from_grid(self):
        eng = FDEngine()
        assert eng.delta(100, 100, 1.0, 0.05, 0.0, 0.2, PUT) == pytest.approx(fd_greeks(OPT)["delta"])

    def test_short_maturity_falls_back(self):
        eng = FDEngine()
        assert eng.delta(90, 100, 0.5 / 365, 0.05, 0.0, 0.2, PUT) == pytest.approx(-1.0)

    def test_grid_used_from_min_pricing_maturity(self):
        eng = FDEngine(FDParams(N_S=100, N_t=20))
        T = MIN_PRICING_MATURITY
        opt = OptionSpec(S0=100, K=100, T=T, r=0.05, sigma=0.2, q=0.0, kind=PUT)
        expected = fd_greeks(opt, params=FDParams(N_S=100, N_t=20))["gamma"]
        assert eng.gamma(100, 100, T, 0.05, 0.0, 0.2, PUT) == pytest.approx(expected)


class TestTridiagonal:
    def test_matches_dense_solve(self):
        rng = np.random.default_rng(7)
        M = 12
        a = rng.uniform(-1.0, -0.1, M)
        c = rng.uniform(-1.0, -0.1, M)
        b = 3.0 + rng.uniform(0.0, 1.0, M)
        A = np.diag(b) + np.diag(a[1:], -1) + np.diag(c[:-1], 1)
        mult, pivot = _thomas_factor(a, b, c)
        for _ in range(3):
            rhs = rng.normal(size=M)
            np.testing.assert_allclose(_thomas_apply(mult, pivot, c, rhs),
                                       np.linalg.solve(A, rhs), rtol=1e-12, atol=1e-12)
