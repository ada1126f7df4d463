"""Tests for the characteristic-equation and QD+ root solvers."""

import math

import pytest
from amerpricer.roots import (
    super_halley, characteristic_roots, qdplus_roots, qdplus_root_derivative,
)
from amerpricer.exceptions import ValidationError


def _residual(lam, r, q, sigma):
    return 0.5 * sigma ** 2 * lam ** 2 + (r - q - 0.5 * sigma ** 2) * lam - r


class TestSuperHalley:
    def test_sqrt_two(self):
        res = super_halley(lambda x: (x * x - 2.0, 2.0 * x, 2.0), 1.0)
        assert res.converged
        assert res.x == pytest.approx(math.sqrt(2.0), abs=1e-8)

    def test_bounds_clamp(self):
        res = super_halley(lambda x: (x - 5.0, 1.0, 0.0), 0.0,
                           bounds=(0.0, 2.0), max_iter=5)
        assert not res.converged
        assert res.x == 2.0

    def test_flat_derivative_stops(self):
        res = super_halley(lambda x: (1.0, 0.0, 0.0), 0.0)
        assert not res.converged
        assert res.iterations == 0

    def test_min_steps_forces_a_step(self):
        res = super_halley(lambda x: (x - 1.0, 1.0, 0.0), 1.0, min_steps=1)
        assert res.iterations == 1
        assert res.x == pytest.approx(1.0)


class TestCharacteristicRoots:
    @pytest.mark.parametrize("r,q,sigma", [
        (0.05, 0.0, 0.2),
        (0.03, 0.07, 0.35),
        (-0.005, -0.01, 0.3),
        (1e-9, 0.0, 0.2),
    ])
    def test_residual_and_vieta(self, r, q, sigma):
        roots = characteristic_roots(r, q, sigma)
        a = 0.5 * sigma ** 2
        b = r - q - a
        assert roots.lambda1 >= roots.lambda2
        for lam in roots:
            assert abs(_residual(lam, r, q, sigma)) < 1e-8 * max(1.0, a * lam * lam)
        assert roots.lambda1 + roots.lambda2 == pytest.approx(-b / a, rel=1e-9, abs=1e-9)
        assert roots.lambda1 * roots.lambda2 == pytest.approx(-r / a, rel=1e-9, abs=1e-12)

    def test_positive_rate_has_one_negative_root(self):
        roots = characteristic_roots(0.05, 0.0, 0.2)
        assert roots.lambda1 == pytest.approx(1.0)
        assert roots.lambda2 == pytest.approx(-2.5)

    def test_complex_roots_raise(self):
        # r = -0.5%, q = -1%, sigma = 8%: b^2 + 2 sigma^2 r < 0
        with pytest.raises(ValidationError):
            characteristic_roots(-0.005, -0.01, 0.08)

    def test_zero_vol_rejected(self):
        with pytest.raises(ValidationError):
            characteristic_roots(0.01, 0.0, 0.0)


class TestQDPlusRoots:
    def test_h_one_matches_characteristic(self):
        qd = qdplus_roots(0.05, 0.01, 0.25, 1.0)
        ch = characteristic_roots(0.05, 0.01, 0.25)
        assert qd.lambda1 == pytest.approx(ch.lambda1, rel=1e-10)
        assert qd.lambda2 == pytest.approx(ch.lambda2, rel=1e-10)

    def test_satisfies_quadratic(self):
        r, q, sigma = 0.04, 0.02, 0.3
        h = 1.0 - math.exp(-r * 2.0)
        omega = 2 * (r - q) / sigma ** 2
        for lam in qdplus_roots(r, q, sigma, h):
            assert lam ** 2 + (omega - 1) * lam - 2 * r / (sigma ** 2 * h) == pytest.approx(0.0, abs=1e-9)

    def test_negative_rate_roots_real(self):
        # r and h share a sign, so 8r / (sigma^2 h) > 0 for any physical h
        r, q, sigma = -0.005, -0.01, 0.08
        h = 1.0 - math.exp(-r * 1.0)
        roots = qdplus_roots(r, q, sigma, h)
        assert roots.lambda1 > roots.lambda2

    def test_negative_discriminant_collapses(self):
        r, q, sigma, h = 0.05, 0.0, 0.2, -1.0
        omega = 2 * (r - q) / sigma ** 2
        roots = qdplus_roots(r, q, sigma, h)
        centre = -(omega - 1.0) / 2.0
        assert roots.lambda1 == pytest.approx(centre + 0.5)
        assert roots.lambda2 == pytest.approx(centre - 0.5)

    def test_derivative_zero_when_degenerate(self):
        r, q, sigma, h = 0.05, 0.0, 0.2, -1.0
        lam = qdplus_roots(r, q, sigma, h).lambda1
        assert qdplus_root_derivative(lam, r, q, sigma, h) == 0.0

    def test_derivative_signs_opposite(self):
        r, q, sigma, h = 0.05, 0.0, 0.2, 0.3
        roots = qdplus_roots(r, q, sigma, h)
        d1 = qdplus_root_derivative(roots.lambda1, r, q, sigma, h)
        d2 = qdplus_root_derivative(roots.lambda2, r, q, sigma, h)
        assert d1 == pytest.approx(-d2)
        assert d1 != 0.0
