"""Tests for the QD+ boundary approximation."""

import math

import numpy as np
import pytest
from amerpricer import OptionSpec, CALL, PUT, BoundaryOrderingError
from amerpricer.pde import fd_price
from amerpricer.qdplus import (
    QDPlusApproximation, qdplus_boundaries, benchmark_seed,
    single_boundary_seed, single_put_boundary,
)

REF_T = (1.0, 5.0, 10.0, 15.0)
REF_UPPER = (73.5, 71.6, 69.62, 68.0)
REF_LOWER = (63.5, 61.6, 58.72, 57.0)


def _benchmark(T, sigma=0.08):
    return OptionSpec(S0=100, K=100, T=T, r=-0.005, sigma=sigma, q=-0.01, kind=PUT)


class TestBenchmarkSeed:
    @pytest.mark.parametrize("T,upper,lower", list(zip(REF_T, REF_UPPER, REF_LOWER)))
    def test_reproduces_table(self, T, upper, lower):
        assert benchmark_seed(T, 100.0, 0.08, PUT, True) == pytest.approx(upper)
        assert benchmark_seed(T, 100.0, 0.08, PUT, False) == pytest.approx(lower)

    def test_interpolates_and_extrapolates_flat(self):
        assert benchmark_seed(3.0, 100.0, 0.08, PUT, True) == pytest.approx(72.55)
        assert benchmark_seed(0.5, 100.0, 0.08, PUT, True) == pytest.approx(73.5)
        assert benchmark_seed(20.0, 100.0, 0.08, PUT, False) == pytest.approx(57.0)

    def test_scales_with_strike(self):
        assert benchmark_seed(1.0, 200.0, 0.08, PUT, True) == pytest.approx(147.0)

    def test_vol_adjustment(self):
        assert benchmark_seed(1.0, 100.0, 0.16, PUT, True) == pytest.approx(70.5)

    def test_call_mirrors_put(self):
        assert benchmark_seed(1.0, 100.0, 0.08, CALL, True) == pytest.approx(136.5)
        assert benchmark_seed(1.0, 100.0, 0.08, CALL, False) == pytest.approx(126.5)


class TestQDPlusBenchmark:
    @pytest.mark.parametrize("T,upper,lower", list(zip(REF_T, REF_UPPER, REF_LOWER)))
    def test_reference_pairs(self, T, upper, lower):
        pair = qdplus_boundaries(_benchmark(T))
        assert pair.upper == pytest.approx(upper, abs=1e-9)
        assert pair.lower == pytest.approx(lower, abs=1e-9)

    @pytest.mark.parametrize("T", REF_T)
    def test_inside_fallback_envelope(self, T):
        pair = qdplus_boundaries(_benchmark(T))
        i = REF_T.index(T)
        assert abs(pair.upper - REF_UPPER[i]) <= 8.0
        assert abs(pair.lower - REF_LOWER[i]) <= 8.0
        assert pair.lower < pair.upper < 100.0

    def test_idempotent(self):
        opt = _benchmark(5.0)
        assert qdplus_boundaries(opt) == qdplus_boundaries(opt)

    def test_class_and_function_agree(self):
        opt = _benchmark(10.0)
        assert QDPlusApproximation(opt).boundaries() == qdplus_boundaries(opt)


def _fd_boundary(K, T, r, q, sigma, kind=PUT, tol=1e-3):
    """Exercise boundary where the FD premium over intrinsic first exceeds ``tol``."""
    exercise, hold = (0.3 * K, K) if kind == PUT else (3.0 * K, K)
    for _ in range(14):
        mid = 0.5 * (exercise + hold)
        opt = OptionSpec(S0=mid, K=K, T=T, r=r, sigma=sigma, q=q, kind=kind)
        intrinsic = K - mid if kind == PUT else mid - K
        if fd_price(opt) - intrinsic > tol:
            hold = mid
        else:
            exercise = mid
    return 0.5 * (exercise + hold)


class TestQDPlusSingle:
    def test_standard_put(self):
        pair = qdplus_boundaries(OptionSpec(S0=100, K=100, T=1.0, r=0.05, sigma=0.2))
        assert pair.upper == math.inf
        assert 78.0 < pair.lower < 81.5

    def test_short_dated_put(self):
        opt = OptionSpec(S0=100, K=100, T=0.5, r=0.08, sigma=0.25)
        assert 81.0 < qdplus_boundaries(opt).lower < 82.5

    def test_not_the_benchmark_seed(self):
        pair = qdplus_boundaries(OptionSpec(S0=100, K=100, T=1.0, r=0.05, sigma=0.2))
        assert abs(pair.lower - benchmark_seed(1.0, 100.0, 0.2, PUT, False)) > 10.0

    @pytest.mark.parametrize("T,r,sigma", [(1.0, 0.05, 0.2), (0.5, 0.08, 0.25)])
    def test_put_matches_fd(self, T, r, sigma):
        qd = qdplus_boundaries(OptionSpec(S0=100, K=100, T=T, r=r, sigma=sigma)).lower
        fd = _fd_boundary(100.0, T, r, 0.0, sigma)
        assert qd == pytest.approx(fd, rel=0.03), f"QD+={qd:.4f} FD={fd:.4f}"

    def test_call_matches_fd(self):
        opt = OptionSpec(S0=100, K=100, T=1.0, r=0.03, sigma=0.25, q=0.05, kind=CALL)
        qd = qdplus_boundaries(opt).upper
        fd = _fd_boundary(100.0, 1.0, 0.03, 0.05, 0.25, kind=CALL, tol=5e-3)
        assert qd == pytest.approx(fd, rel=0.04), f"QD+={qd:.4f} FD={fd:.4f}"

    def test_call_is_symmetric_put(self):
        call = qdplus_boundaries(
            OptionSpec(S0=100, K=100, T=1.0, r=0.03, sigma=0.25, q=0.05, kind=CALL)
        ).upper
        put = single_put_boundary(100.0, 1.0, 0.05, 0.03, 0.25)
        assert call == pytest.approx(100.0 * 100.0 / put, rel=1e-12)

    def test_below_expiry_limit(self):
        b = single_put_boundary(100.0, 1.0, 0.02, 0.05, 0.25)
        assert 0.0 < b <= 100.0 * 0.02 / 0.05

    def test_seed_between_perpetual_and_strike(self):
        seed = single_boundary_seed(100.0, 1.0, 0.05, 0.0, 0.2)
        assert 50.0 < seed < 100.0

    def test_standard_call_with_dividend(self):
        opt = OptionSpec(S0=100, K=100, T=1.0, r=0.03, sigma=0.25, q=0.05, kind=CALL)
        pair = qdplus_boundaries(opt)
        assert pair.lower == -math.inf
        assert pair.upper >= 100.0
        assert np.isfinite(pair.upper)

    def test_zero_dividend_call_never_exercised(self):
        opt = OptionSpec(S0=100, K=100, T=1.0, r=0.03, sigma=0.25, q=0.0, kind=CALL)
        assert qdplus_boundaries(opt).as_tuple() == (math.inf, -math.inf)

    def test_zero_rate_put_never_exercised(self):
        pair = qdplus_boundaries(OptionSpec(S0=100, K=100, T=1.0, r=0.0, sigma=0.2))
        assert pair.as_tuple() == (math.inf, 0.0)

    def test_no_exercise_put(self):
        pair = qdplus_boundaries(OptionSpec(S0=100, K=100, T=1.0, r=-0.01, sigma=0.2))
        assert pair.as_tuple() == (math.inf, 0.0)
        assert not pair.contains(50.0)

    def test_no_exercise_call(self):
        opt = OptionSpec(S0=100, K=100, T=1.0, r=0.01, sigma=0.2, q=-0.01, kind=CALL)
        assert qdplus_boundaries(opt).as_tuple() == (math.inf, -math.inf)
