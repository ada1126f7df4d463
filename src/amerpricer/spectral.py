"""Spectral-collocation engine: Kim integral equation on Chebyshev nodes.

A call is priced as the put obtained from put-call symmetry,
``C(S, K, r, q) = P(K, S, q, r)``, so only put boundaries are ever solved.
The put exercise region in time-to-maturity ``tau`` is

* ``(0, B(tau)]`` when ``r > 0``,
* ``[l(tau), u(tau)]`` when ``q < r < 0`` (the negative-rate band),
* empty otherwise, where the American price is the European one.

Boundaries are held on Chebyshev-Lobatto nodes in ``z = sqrt(tau / T)``,
which clusters nodes near expiry where the boundary moves like
``sqrt(tau)``.  Each pass of the fixed point ``B = K N(B) / D(B)`` is a
Jacobi sweep over the nodes, with the integrals evaluated by
Gauss-Legendre under ``s = tau (1 + x)^2 / 4``.  That substitution
removes the ``1/sqrt(s)`` behaviour of the integrand at ``s = 0``.

References
----------
- Andersen, L., Lake, M. and Offengenden, D. "High performance American
  option pricing", J. Comp. Finance (2016).
- Healy, J. "Pricing American options under negative rates",
  J. Comp. Finance (2021).
"""

from __future__ import annotations

import logging
import math
from typing import Union

import numpy as np
from numpy.polynomial import Chebyshev
from numpy.polynomial.legendre import leggauss
from scipy.special import ndtr

from .black_scholes import bs_price
from .config import SPECTRAL_SCHEMES, SpectralScheme
from .core import CALL, PUT
from .engine import AmericanEngine
from .exceptions import ValidationError
from .regime import exercise_structure
from .roots import characteristic_roots

__all__ = [
    "SpectralEngine",
    "SpectralBoundary",
    "put_boundary",
    "american_put_price",
]

log = logging.getLogger(__name__)

_EPS = 1e-12


def _tails(S, X, s, r, q, sigma):
    """``(Phi(-d2), Phi(-d1))`` for spot ``S`` against level ``X`` over ``s``."""
    vol = sigma * np.sqrt(s)
    d1 = (np.log(S / X) + (r - q + 0.5 * sigma * sigma) * s) / vol
    return ndtr(-(d1 - vol)), ndtr(-d1)


class SpectralBoundary:
    """Put exercise boundary over ``tau`` in ``[0, T]``.

    ``lower`` is all zeros for a single boundary.  Values between nodes
    come from the Chebyshev interpolant in ``z = sqrt(tau / T)``, clipped
    to ``[floor, cap]``; a double band whose interpolated edges cross is
    closed at their midpoint.
    """

    def __init__(self, structure: str, T: float, z: np.ndarray,
                 upper: np.ndarray, lower: np.ndarray, floor: float, cap: float):
        self.structure = structure
        self.T = T
        self.z = z
        self.upper = upper
        self.lower = lower
        self.floor = floor
        self.cap = cap
        deg = len(z) - 1
        self._u = Chebyshev.fit(z, upper, deg, domain=[0.0, 1.0])
        self._l = Chebyshev.fit(z, lower, deg, domain=[0.0, 1.0]) if self.is_double else None

    @property
    def is_double(self) -> bool:
        return self.structure == "double"

    @property
    def taus(self) -> np.ndarray:
        return self.T * self.z * self.z

    def at(self, tau):
        """``(upper, lower)`` at ``tau``; scalars or arrays."""
        z = np.sqrt(np.clip(np.asarray(tau, dtype=float) / self.T, 0.0, 1.0))
        u = np.clip(self._u(z), self.floor, self.cap)
        if not self.is_double:
            return u, np.zeros_like(u)
        lo = np.clip(self._l(z), self.floor, self.cap)
        mid = 0.5 * (u + lo)
        crossed = lo >= u
        return np.where(crossed, mid, u), np.where(crossed, mid, lo)

    def contains(self, S: float, tau: float) -> bool:
        u, lo = self.at(tau)
        u, lo = float(u), float(lo)
        if self.is_double:
            return lo < u and lo <= S <= u
        return S <= u


def _lobatto(n: int) -> np.ndarray:
    """Chebyshev-Lobatto points mapped to ``[0, 1]``, ascending."""
    return 0.5 * (1.0 - np.cos(np.pi * np.arange(n + 1) / n))


def _fixed_point(B, tau, s, ws, u_s, l_s, K, r, q, sigma, double):
    """One evaluation of ``K N(B) / D(B)``; ``None`` when it is unusable."""
    p2, p1 = _tails(B, K, tau, r, q, sigma)
    a2, a1 = _tails(B, u_s, s, r, q, sigma)
    if double:
        b2, b1 = _tails(B, l_s, s, r, q, sigma)
        a2, a1 = a2 - b2, a1 - b1
    num = 1.0 - math.exp(-r * tau) * p2 - np.sum(ws * r * np.exp(-r * s) * a2)
    den = 1.0 - math.exp(-q * tau) * p1 - np.sum(ws * q * np.exp(-q * s) * a1)
    # On the lower edge of a band both N and D are negative
    if not (np.isfinite(num) and np.isfinite(den)) or abs(den) <= _EPS:
        return None
    ratio = float(num) / float(den)
    if ratio <= 0.0:
        return None
    return K * ratio


def put_boundary(K: float, T: float, r: float, q: float, sigma: float,
                 scheme: SpectralScheme) -> SpectralBoundary:
    """Solve the put exercise boundary on ``scheme.nodes + 1`` collocation nodes.

    Raises
    ------
    ValidationError
        If the put has no early-exercise region for ``(r, q)``.
    """
    structure = exercise_structure(r, q, PUT)
    if structure == "none":
        raise ValidationError(f"put with r={r}, q={q} has no exercise boundary")

    z = _lobatto(scheme.nodes)
    taus = T * z * z
    x, w = leggauss(scheme.quad_points)
    double = structure == "double"

    if double:
        floor, cap = K * r / q, K
        upper = np.full_like(z, cap)
        lower = np.full_like(z, floor)
    else:
        cap = K * min(1.0, r / q) if q > 0.0 else K
        lam = characteristic_roots(r, q, sigma).lambda2
        floor = K * lam / (lam - 1.0)
        upper = floor + (cap - floor) * np.exp(-2.0 * sigma * np.sqrt(taus))
        lower = np.zeros_like(z)

    curve = SpectralBoundary(structure, T, z, upper, lower, floor, cap)
    for sweep in range(scheme.iterations):
        new_u, new_l = upper.copy(), lower.copy()
        for i in range(1, len(z)):
            tau = taus[i]
            s = 0.25 * tau * (1.0 + x) ** 2
            ws = w * 0.5 * tau * (1.0 + x)
            u_s, l_s = curve.at(tau - s)
            b = _fixed_point(upper[i], tau, s, ws, u_s, l_s, K, r, q, sigma, double)
            if b is not None:
                new_u[i] = min(max(b, floor), cap)
            if double:
                b = _fixed_point(lower[i], tau, s, ws, u_s, l_s, K, r, q, sigma, double)
                if b is not None:
                    new_l[i] = min(max(b, floor), cap)
                if new_l[i] >= new_u[i]:
                    new_u[i] = new_l[i] = 0.5 * (new_u[i] + new_l[i])
        change = float(np.max(np.abs(new_u - upper)) + np.max(np.abs(new_l - lower)))
        upper, lower = new_u, new_l
        curve = SpectralBoundary(structure, T, z, upper, lower, floor, cap)
        log.debug("spectral %s sweep %d: max change %.3g", scheme.name, sweep + 1, change)

    return curve


def _premium(S, K, T, r, q, sigma, curve: SpectralBoundary, quad_points: int) -> float:
    """Early-exercise premium at spot ``S`` with ``T`` to run."""
    x, w = leggauss(quad_points)
    s = 0.25 * T * (1.0 + x) ** 2
    ws = w * 0.5 * T * (1.0 + x)
    u_s, l_s = curve.at(T - s)
    a2, a1 = _tails(S, u_s, s, r, q, sigma)
    if curve.is_double:
        b2, b1 = _tails(S, l_s, s, r, q, sigma)
        a2, a1 = a2 - b2, a1 - b1
    integrand = r * K * np.exp(-r * s) * a2 - q * S * np.exp(-q * s) * a1
    return float(np.sum(ws * integrand))


def american_put_price(S: float, K: float, T: float, r: float, q: float,
                       sigma: float, scheme: SpectralScheme) -> float:
    """American put as European price plus early-exercise premium."""
    european = bs_price(S, K, T, r, q, sigma, PUT)
    intrinsic = max(K - S, 0.0)
    if exercise_structure(r, q, PUT) == "none":
        return max(european, intrinsic)
    curve = put_boundary(K, T, r, q, sigma, scheme)
    if curve.contains(S, T):
        return intrinsic
    premium = _premium(S, K, T, r, q, sigma, curve, scheme.quad_points)
    return max(european + premium, intrinsic)


class SpectralEngine(AmericanEngine):
    """American engine on the spectral boundary solve.

    Parameters
    ----------
    scheme : str or SpectralScheme
        ``"fast"``, ``"accurate"`` (default) or ``"high_precision"``, or a
        custom :class:`~amerpricer.config.SpectralScheme`.
    """

    def __init__(self, scheme: Union[str, SpectralScheme] = "accurate"):
        if isinstance(scheme, str):
            if scheme not in SPECTRAL_SCHEMES:
                raise ValidationError(
                    f"unknown scheme {scheme!r}; choose from {sorted(SPECTRAL_SCHEMES)}"
                )
            scheme = SPECTRAL_SCHEMES[scheme]
        if scheme.nodes < 2 or scheme.quad_points < 1 or scheme.iterations < 0:
            raise ValidationError(f"invalid spectral scheme {scheme}")
        self.scheme = scheme
        self.name = f"spectral-{scheme.name}"

    def _price(self, spot, strike, maturity, r, q, sigma, kind) -> float:
        if kind == CALL:
            return american_put_price(strike, spot, maturity, q, r, sigma, self.scheme)
        return american_put_price(spot, strike, maturity, r, q, sigma, self.scheme)
