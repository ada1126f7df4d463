"""Tests for the spectral-collocation engine."""

import numpy as np
import pytest
from amerpricer import (
    CALL, PUT, SPECTRAL_SCHEMES, SpectralScheme, SpectralEngine, ValidationError,
)
from amerpricer.black_scholes import bs_price
from amerpricer.pde import fd_price
from amerpricer.core import OptionSpec
from amerpricer.spectral import put_boundary, american_put_price

STD = (100.0, 100.0, 1.0, 0.05, 0.0, 0.2)
BAND = (100.0, 100.0, 1.0, -0.005, -0.01, 0.08)


def _fd(S, K, T, r, q, sigma, kind=PUT):
    return fd_price(OptionSpec(S0=S, K=K, T=T, r=r, sigma=sigma, q=q, kind=kind))


class TestSchemes:
    def test_tiers(self):
        assert SPECTRAL_SCHEMES["fast"].nodes == 8
        assert SPECTRAL_SCHEMES["accurate"].quad_points == 16
        assert SPECTRAL_SCHEMES["high_precision"].iterations == 6

    def test_unknown_scheme(self):
        with pytest.raises(ValidationError):
            SpectralEngine("ultra")

    def test_degenerate_custom_scheme(self):
        with pytest.raises(ValidationError):
            SpectralEngine(SpectralScheme("tiny", nodes=1, quad_points=4, iterations=1))

    def test_name(self):
        assert SpectralEngine().name == "spectral-accurate"


class TestSpectralPrices:
    def test_standard_put_close_to_fd(self):
        fd = _fd(*STD)
        sp = SpectralEngine("accurate").price(*STD, PUT)
        assert abs(sp - fd) / fd < 0.10, f"spectral={sp:.6f} FD={fd:.6f}"
        assert sp >= bs_price(*STD, PUT)

    def test_more_nodes_no_worse(self):
        fd = _fd(*STD)
        fast = SpectralEngine("fast").price(*STD, PUT)
        hp = SpectralEngine("high_precision").price(*STD, PUT)
        assert abs(hp - fd) <= abs(fast - fd) + 0.02

    def test_no_exercise_is_european(self):
        args = (100.0, 100.0, 1.0, -0.01, 0.0, 0.2)
        assert SpectralEngine().price(*args, PUT) == pytest.approx(bs_price(*args, PUT), rel=1e-12)

    def test_call_put_symmetry(self):
        eng = SpectralEngine()
        call = eng.price(100.0, 110.0, 1.0, 0.03, 0.06, 0.25, CALL)
        put = eng.price(110.0, 100.0, 1.0, 0.06, 0.03, 0.25, PUT)
        assert call == pytest.approx(put, rel=1e-12)

    @pytest.mark.parametrize("r,q", [(0.05, 0.04), (0.03, 0.05)])
    def test_call_close_to_fd(self, r, q):
        args = (100.0, 100.0, 1.0, r, q, 0.2)
        fd = _fd(*args, kind=CALL)
        sp = SpectralEngine("accurate").price(*args, CALL)
        assert sp == pytest.approx(fd, rel=0.02), f"spectral={sp:.6f} FD={fd:.6f}"
        assert sp >= bs_price(*args, CALL) - 1e-12

    def test_double_band_close_to_fd(self):
        fd = _fd(*BAND)
        sp = SpectralEngine().price(*BAND, PUT)
        assert abs(sp - fd) / fd < 0.10, f"spectral={sp:.6f} FD={fd:.6f}"

    def test_inside_band_at_least_intrinsic(self):
        sp = SpectralEngine().price(68.0, 100.0, 1.0, -0.005, -0.01, 0.08, PUT)
        assert sp >= 32.0 - 1e-12

    @pytest.mark.parametrize("scheme", sorted(SPECTRAL_SCHEMES))
    @pytest.mark.parametrize("S", [80.0, 100.0, 120.0])
    def test_floor_every_regime(self, scheme, S):
        eng = SpectralEngine(scheme)
        for r, q in [(0.05, 0.0), (-0.005, -0.01), (-0.01, 0.0), (0.02, 0.04)]:
            for kind in (CALL, PUT):
                px = eng.price(S, 100.0, 1.0, r, q, 0.25, kind)
                intrinsic = max(S - 100.0, 0.0) if kind == CALL else max(100.0 - S, 0.0)
                assert np.isfinite(px)
                assert px >= intrinsic

    def test_greeks_signs(self):
        res = SpectralEngine().price_with_greeks(*STD, PUT)
        assert -1.0 < res.delta < 0.0
        assert res.gamma > 0.0
        assert res.vega > 0.0


class TestPutBoundary:
    def test_single(self):
        curve = put_boundary(100.0, 1.0, 0.05, 0.0, 0.2, SPECTRAL_SCHEMES["accurate"])
        assert not curve.is_double
        assert curve.upper[0] == pytest.approx(100.0)
        assert np.all(curve.upper <= 100.0)
        assert np.all(curve.upper >= curve.floor)
        assert curve.taus[-1] == pytest.approx(1.0)

    def test_single_anchor_with_dividend(self):
        curve = put_boundary(100.0, 1.0, 0.03, 0.06, 0.2, SPECTRAL_SCHEMES["fast"])
        assert curve.upper[0] == pytest.approx(50.0)

    def test_double(self):
        curve = put_boundary(100.0, 1.0, -0.005, -0.01, 0.08, SPECTRAL_SCHEMES["accurate"])
        assert curve.is_double
        assert curve.upper[0] == pytest.approx(100.0)
        assert curve.lower[0] == pytest.approx(50.0)
        assert np.all(curve.lower <= curve.upper)
        u, l = curve.at(np.linspace(0.0, 1.0, 7))
        assert np.all(l <= u)

    def test_no_region(self):
        with pytest.raises(ValidationError):
            put_boundary(100.0, 1.0, -0.01, 0.0, 0.2, SPECTRAL_SCHEMES["fast"])

    def test_price_function(self):
        px = american_put_price(*STD, SPECTRAL_SCHEMES["accurate"])
        assert px == pytest.approx(SpectralEngine().price(*STD, PUT))
