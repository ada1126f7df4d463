"""QD+ exercise-boundary approximation (Li 2005, extended by Healy 2021).

Single boundaries (a put with ``r > 0``, and calls through put-call
symmetry) solve the QD+ smooth-pasting condition of Andersen, Lake and
Offengenden (2016), eq. 26:

.. math::

    (1 - e^{-q\\tau} \\Phi(-d_1(B))) B + (\\lambda + c_0(B)) (K - B - p(B)) = 0

with ``p`` the European put and ``c0`` Li's second-order correction.  The
root is bracketed by scanning down from the short-maturity limit
``K min(1, r/q)`` and polished with Brent's method.

Double boundaries (the negative-rate band) solve

.. math::

    f(S) = S^{\\lambda} - K^{\\lambda} e^{c_0(S)} = 0

where ``lambda`` is a QD+ exponent (:func:`~amerpricer.roots.qdplus_roots`)
and ``c0`` is Healy's eq. 10 correction built from the European value and
theta at ``S``.  The smaller exponent drives the upper boundary and the
larger one the lower boundary.  That iteration starts from a seed
interpolated over Healy's Table 2 and is only trusted when it lands close
to that seed; otherwise the seed itself is returned.  Converging far from
the seed almost always means the iteration found a spurious branch.

References
----------
- Li, M. "Analytical approximations for the critical stock prices of
  American options", Quantitative Finance (2010).
- Andersen, L., Lake, M. and Offengenden, D. "High performance American
  option pricing", J. Comp. Finance (2016).
- Healy, J. "Pricing American options under negative rates",
  J. Comp. Finance (2021), eqs. 9-10, 17 and Table 2.
"""

from __future__ import annotations

import logging
import math

import numpy as np
from scipy.optimize import brentq

from . import config as C
from .black_scholes import bs_greeks, d1_d2, norm_cdf, norm_pdf
from .core import OptionSpec, CALL, PUT, ExerciseBoundaryPair
from .exceptions import BoundaryOrderingError
from .roots import characteristic_roots, qdplus_roots, qdplus_root_derivative, super_halley

__all__ = [
    "QDPlusApproximation",
    "qdplus_boundaries",
    "benchmark_seed",
    "single_boundary_seed",
    "single_put_boundary",
]

log = logging.getLogger(__name__)


def benchmark_seed(T: float, K: float, sigma: float, kind: str, upper: bool) -> float:
    """Initial double-boundary guess from the Table 2 benchmarks.

    Linear in ``T`` between the benchmark maturities, flat outside them,
    scaled to the strike and shifted by ``-3% K`` per unit of
    ``sigma / 0.08 - 1``.  Call seeds reflect the put seeds about ``K``:
    the call upper mirrors the put lower and vice versa.
    """
    scale = K / C.BENCHMARK_STRIKE
    adj = -(sigma / C.REFERENCE_VOL - 1.0) * K * C.VOL_ADJUST_SLOPE

    def interp(table):
        return float(np.interp(T, C.BENCHMARK_MATURITIES, table)) * scale

    if kind == PUT:
        return interp(C.BENCHMARK_UPPER if upper else C.BENCHMARK_LOWER) + adj
    mirrored = interp(C.BENCHMARK_LOWER if upper else C.BENCHMARK_UPPER) + adj
    return 2.0 * K - mirrored


def _put_cap(K: float, r: float, q: float) -> float:
    """Put boundary at expiry."""
    return K * min(1.0, r / q) if q > 0.0 else K


def _perpetual_put(K: float, r: float, q: float, sigma: float) -> float:
    lam = characteristic_roots(r, q, sigma).lambda2
    return K * lam / (lam - 1.0)


def single_boundary_seed(K: float, T: float, r: float, q: float, sigma: float) -> float:
    """Starting guess for a single put boundary (``r > 0``).

    Blends the expiry limit into the perpetual boundary with weight
    ``exp(-2 sigma sqrt(T))``, as in Barone-Adesi and Whaley.
    """
    cap = _put_cap(K, r, q)
    floor = _perpetual_put(K, r, q, sigma)
    return floor + (cap - floor) * math.exp(-2.0 * sigma * math.sqrt(T))


def _smooth_pasting(K: float, T: float, r: float, q: float, sigma: float):
    """Return ``f(B)`` for the single put boundary at maturity ``T``.

    ``f`` is multiplied through by ``K - B - p(B)`` so it stays finite
    where the European put meets intrinsic value.
    """
    h = 1.0 - math.exp(-r * T)
    sigma2 = sigma * sigma
    omega = 2.0 * (r - q) / sigma2
    disc = (omega - 1.0) ** 2 + 8.0 * r / (sigma2 * h)
    lam = qdplus_roots(r, q, sigma, h).lambda2
    r_dlam = 2.0 * (r / h) ** 2 / (sigma2 * math.sqrt(disc))    # r * d lambda / d h
    m = 2.0 * lam + omega - 1.0
    a = 2.0 * (1.0 - h) / (sigma2 * m)
    b = a * (r / h + r_dlam / m) - lam
    disc_r = 1.0 - h
    disc_q = math.exp(-q * T)

    def f(B):
        g = bs_greeks(B, K, T, r, q, sigma, PUT)
        d1, _ = d1_d2(B, K, T, r, q, sigma)
        gap = K - B - g["price"]
        return (1.0 - disc_q * norm_cdf(-d1)) * B - b * gap + a * g["theta"] / disc_r

    return f


def single_put_boundary(K: float, T: float, r: float, q: float, sigma: float) -> float:
    """QD+ exercise boundary of a put with a single boundary.

    Returns ``0.0`` when ``r <= 0`` (the put is never exercised early).
    If the scan finds no sign change the Barone-Adesi and Whaley seed is
    returned.
    """
    if r * T < C.ROOT_EPS:
        return 0.0
    cap = _put_cap(K, r, q)
    f = _smooth_pasting(K, T, r, q, sigma)
    grid = np.geomspace(cap, C.SINGLE_SCAN_FLOOR * _perpetual_put(K, r, q, sigma),
                        C.SINGLE_SCAN_POINTS)
    hi, f_hi = grid[0], f(grid[0])
    for S in grid[1:]:
        f_S = f(S)
        if f_S == 0.0:
            return float(S)
        if f_hi * f_S < 0.0:
            return float(brentq(f, S, hi, xtol=C.ROOT_TOL * K, maxiter=C.ROOT_MAX_ITER))
        hi, f_hi = S, f_S
    seed = single_boundary_seed(K, T, r, q, sigma)
    log.debug("QD+ single boundary not bracketed (K=%g T=%g r=%g q=%g), using seed %.6g",
              K, T, r, q, seed)
    return seed


class QDPlusApproximation:
    """One QD+ evaluation for a fixed contract.

    Parameters
    ----------
    opt : OptionSpec
        Contract and market state.  ``opt.S0`` is not used by the boundary
        itself but is part of the contract the result belongs to.
    """

    def __init__(self, opt: OptionSpec):
        self.opt = opt
        self.eta = 1.0 if opt.kind == CALL else -1.0
        self.h = 1.0 - math.exp(-opt.r * opt.T)
        sigma2 = opt.sigma * opt.sigma
        self.alpha = 2.0 * opt.r / sigma2
        self.beta = 2.0 * (opt.r - opt.q) / sigma2

    # ------------------------------------------------------------------
    # Case dispatch
    # ------------------------------------------------------------------
    def boundaries(self) -> ExerciseBoundaryPair:
        """Return the ``(upper, lower)`` boundary estimate.

        Raises
        ------
        BoundaryOrderingError
            If the double-boundary pair is still mis-ordered after the
            strike / positivity clamps.
        """
        o = self.opt
        if o.kind == PUT and o.r >= 0.0:
            return ExerciseBoundaryPair(math.inf, self._single())
        if o.kind == CALL and o.q >= 0.0:
            return ExerciseBoundaryPair(self._single(), -math.inf)
        if (o.kind == PUT and o.q < o.r < 0.0) or (o.kind == CALL and 0.0 < o.r < o.q):
            return self._double()

        # No early exercise: put with r < 0 <= ... or call with q < 0 outside
        # the double band.
        log.debug("QD+: no exercise region for %s r=%g q=%g", o.kind, o.r, o.q)
        if o.kind == PUT:
            return ExerciseBoundaryPair(math.inf, 0.0)
        return ExerciseBoundaryPair(math.inf, -math.inf)

    def _single(self) -> float:
        o = self.opt
        if o.kind == CALL:
            # C(S, K, r, q) = P(K, S, q, r): the call boundary is K^2 over the
            # put boundary with the rates swapped.
            b = single_put_boundary(o.K, o.T, o.q, o.r, o.sigma)
            return o.K * o.K / b if b > 0.0 else math.inf
        return single_put_boundary(o.K, o.T, o.r, o.q, o.sigma)

    def _double(self) -> ExerciseBoundaryPair:
        o = self.opt
        if abs(self.h) < C.ROOT_EPS:
            return self._small_h()
        roots = qdplus_roots(o.r, o.q, o.sigma, self.h)
        upper = self._solve(roots.lambda2, upper=True)
        lower = self._solve(roots.lambda1, upper=False)
        return self._constrain(upper, lower)

    def _small_h(self) -> ExerciseBoundaryPair:
        """Closed form used when ``1 - exp(-rT)`` vanishes."""
        o = self.opt
        factor = 0.2 * o.sigma * math.sqrt(o.T)
        b1 = o.K * (1.0 - factor)
        b2 = o.K * (0.5 + 0.5 * factor)
        if o.kind == CALL:
            return ExerciseBoundaryPair(2.0 * o.K - b2, 2.0 * o.K - b1)
        return ExerciseBoundaryPair(b1, b2)

    def _constrain(self, upper: float, lower: float) -> ExerciseBoundaryPair:
        o = self.opt
        if o.kind == PUT:
            upper = min(upper, o.K)
        else:
            upper = max(upper, o.K)
        lower = max(lower, 0.0)
        if lower >= upper:
            raise BoundaryOrderingError(
                f"QD+ produced invalid ordering: upper={upper:.4f}, lower={lower:.4f} "
                f"(S={o.S0}, K={o.K}, T={o.T}, r={o.r}, q={o.q}, sigma={o.sigma}, {o.kind})"
            )
        return ExerciseBoundaryPair(upper, lower)

    # ------------------------------------------------------------------
    # Boundary equation
    # ------------------------------------------------------------------
    def _solve(self, lam: float, upper: bool) -> float:
        o = self.opt
        lo, hi = C.SEARCH_LOW * o.K, C.SEARCH_HIGH * o.K
        seed = min(max(benchmark_seed(o.T, o.K, o.sigma, o.kind, upper), lo), hi)

        def scale(S):
            if lam < 0.0:
                return max(abs(S ** lam), abs(o.K ** lam))
            return 1.0

        side = "upper" if upper else "lower"
        try:
            res = super_halley(
                lambda S: self._equation(S, lam),
                seed,
                tol=C.ROOT_TOL,
                max_iter=C.ROOT_MAX_ITER,
                eps=C.ROOT_EPS,
                bounds=(lo, hi),
                scale=scale,
                min_steps=1,
            )
        except (OverflowError, ZeroDivisionError):
            log.debug("QD+ %s iteration overflowed (lambda=%.4g), using seed", side, lam)
            return seed
        return self._accept(res.x, seed, side)

    def _accept(self, S: float, seed: float, side: str) -> float:
        """Keep ``S`` only if it sits near the seed and away from the strike."""
        o = self.opt
        if not math.isfinite(S) or abs(S - o.K) / o.K < C.SEED_NEAR_STRIKE:
            log.debug("QD+ %s root %.6g too close to strike, using seed %.6g", side, S, seed)
            return seed
        short = o.T < C.SEED_SHORT_MATURITY
        max_rel = C.SEED_MAX_REL_DEV[0] if short else C.SEED_MAX_REL_DEV[1]
        max_abs = C.SEED_MAX_ABS_DEV[0] if short else C.SEED_MAX_ABS_DEV[1]
        dev = abs(S - seed)
        if dev / seed > max_rel or dev > max_abs:
            log.debug("QD+ %s root %.6g strays %.3g from seed %.6g, using seed",
                      side, S, dev, seed)
            return seed
        return S

    def _equation(self, S: float, lam: float) -> tuple[float, float, float]:
        """``f``, ``f'`` and ``f''`` of the boundary equation at ``S``."""
        o = self.opt
        S = self._off_strike(S)
        g = bs_greeks(S, o.K, o.T, o.r, o.q, o.sigma, o.kind)
        d1, _ = d1_d2(S, o.K, o.T, o.r, o.q, o.sigma)

        c0 = self._c0(S, lam, g["price"], g["theta"])
        dc0 = self._dc0_dS(S, d1, g["theta"])
        K_term = (o.K ** lam) * math.exp(c0)

        f = S ** lam - K_term
        df = lam * S ** (lam - 1.0) - K_term * dc0
        d2f = lam * (lam - 1.0) * S ** (lam - 2.0) - K_term * dc0 * dc0
        return f, df, d2f

    def _off_strike(self, S: float) -> float:
        K = self.opt.K
        gap = 0.01 * K
        if abs(S - K) < gap:
            return K + gap if self.opt.kind == CALL else K - gap
        return S

    def _c0(self, S: float, lam: float, european: float, theta: float) -> float:
        """Healy eq. 10, clamped to [-10, 10]."""
        o = self.opt
        h = self.h
        diff = self.eta * (S - o.K) - european
        if abs(diff) < C.ROOT_EPS or abs(o.r * diff) < C.ROOT_EPS:
            bracket = 1.0 / h
        else:
            bracket = 1.0 / h - theta / (o.r * diff)
        denom = 2.0 * lam + self.beta - 1.0
        lam_prime = qdplus_root_derivative(lam, o.r, o.q, o.sigma, h, eps=C.ROOT_EPS)
        c0 = -((1.0 - h) * self.alpha / denom) * bracket + lam_prime / denom
        return min(max(c0, -C.C0_CLAMP), C.C0_CLAMP)

    def _dc0_dS(self, S: float, d1: float, theta: float) -> float:
        o = self.opt
        diff = S - o.K
        if abs(diff) < C.ROOT_EPS or abs(o.r * diff) < C.ROOT_EPS:
            return 0.0
        disc_q = math.exp(-o.q * o.T)
        dtheta_dS = norm_pdf(d1) * o.q * disc_q
        dve_dS = disc_q * norm_cdf(d1)
        return -dtheta_dS / (o.r * diff) + theta * dve_dS / (o.r * diff * diff)


def qdplus_boundaries(opt: OptionSpec) -> ExerciseBoundaryPair:
    """QD+ boundary pair for ``opt``; see :class:`QDPlusApproximation`."""
    return QDPlusApproximation(opt).boundaries()
