"""Shared contract for the American pricing engines.

Every engine exposes ``price``, ``delta``, ``gamma``, ``vega``, ``theta``
and ``rho`` with the signature ``(spot, strike, maturity, r, q, sigma,
kind) -> float``, plus :meth:`AmericanEngine.price_with_greeks`.  Greeks
default to central bump-and-reprice on :meth:`AmericanEngine.price`;
engines with cheaper sensitivities override individual methods.
"""

from __future__ import annotations

import math
from typing import Callable

from .config import MIN_PRICING_MATURITY
from .core import CALL, PricingResult, check_kind, validate_rates
from .exceptions import PricingError, ValidationError

__all__ = ["AmericanEngine", "intrinsic_value", "numerical_greeks"]

SPOT_BUMP = 1e-3          # relative
VOL_BUMP = 1e-2           # relative
RATE_BUMP = 1e-4          # absolute
THETA_DT = 1.0 / 365.0


def intrinsic_value(spot: float, strike: float, kind: str) -> float:
    if kind == CALL:
        return max(spot - strike, 0.0)
    return max(strike - spot, 0.0)


def numerical_greeks(
    pricer_func: Callable[..., float],
    S: float,
    K: float,
    T: float,
    r: float,
    q: float,
    sigma: float,
    kind: str,
    *,
    spot_bump: float = SPOT_BUMP,
    vol_bump: float = VOL_BUMP,
    rate_bump: float = RATE_BUMP,
    dt: float = THETA_DT,
) -> dict[str, float]:
    """Compute Greeks via central finite differences on an arbitrary pricer.

    Parameters
    ----------
    pricer_func : callable
        ``pricer_func(S, K, T, r, q, sigma, kind) -> float``.
    spot_bump : float
        Relative spot bump (``h = spot_bump * S``).
    vol_bump : float
        Relative vol bump (``h = vol_bump * sigma``).
    rate_bump : float
        Absolute rate bump.
    dt : float
        Calendar step for theta, one day by default.

    Returns
    -------
    dict[str, float]
        Keys: ``price``, ``delta``, ``gamma``, ``vega``, ``theta``, ``rho``.
        Theta is ``dV/dt`` per year (negative for time decay).
    """
    P0 = pricer_func(S, K, T, r, q, sigma, kind)

    h = spot_bump * S
    P_up = pricer_func(S + h, K, T, r, q, sigma, kind)
    P_dn = pricer_func(S - h, K, T, r, q, sigma, kind)
    delta = (P_up - P_dn) / (2.0 * h)
    gamma = (P_up - 2.0 * P0 + P_dn) / (h * h)

    eps_v = max(vol_bump * sigma, 1e-5)
    P_vup = pricer_func(S, K, T, r, q, sigma + eps_v, kind)
    P_vdn = pricer_func(S, K, T, r, q, max(sigma - eps_v, 1e-6), kind)
    vega = (P_vup - P_vdn) / (2.0 * eps_v)

    if T > dt:
        theta = (pricer_func(S, K, T - dt, r, q, sigma, kind) - P0) / dt
    else:
        theta = 0.0

    P_rup = pricer_func(S, K, T, r + rate_bump, q, sigma, kind)
    P_rdn = pricer_func(S, K, T, r - rate_bump, q, sigma, kind)
    rho = (P_rup - P_rdn) / (2.0 * rate_bump)

    return {
        "price": float(P0),
        "delta": float(delta),
        "gamma": float(gamma),
        "vega": float(vega),
        "theta": float(theta),
        "rho": float(rho),
    }


class AmericanEngine:
    """Base class: input checks, intrinsic short-cut and bump Greeks.

    Subclasses implement :meth:`_price`, which receives validated inputs
    with ``maturity >= 1/365``.
    """

    name = "base"

    def _price(self, spot, strike, maturity, r, q, sigma, kind) -> float:
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------
    @staticmethod
    def _check(spot, strike, maturity, r, q, sigma, kind) -> None:
        if not (spot > 0.0) or not math.isfinite(spot):
            raise ValidationError(f"spot must be positive, got {spot}")
        if not (sigma > 0.0) or not math.isfinite(sigma):
            raise ValidationError(f"sigma must be positive, got {sigma}")
        if not (strike > 0.0) or not math.isfinite(strike):
            raise ValidationError(f"strike must be positive, got {strike}")
        if not (maturity >= 0.0) or not math.isfinite(maturity):
            raise ValidationError(f"maturity must be non-negative, got {maturity}")
        validate_rates(r, q)
        check_kind(kind)

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------
    def price(self, spot, strike, maturity, r, q, sigma, kind) -> float:
        self._check(spot, strike, maturity, r, q, sigma, kind)
        intrinsic = intrinsic_value(spot, strike, kind)
        if maturity < MIN_PRICING_MATURITY:
            return intrinsic
        value = self._price(spot, strike, maturity, r, q, sigma, kind)
        if not math.isfinite(value):
            raise PricingError(f"{self.name} engine produced {value}")
        return max(value, intrinsic)

    def greeks(self, spot, strike, maturity, r, q, sigma, kind) -> dict[str, float]:
        self._check(spot, strike, maturity, r, q, sigma, kind)
        return numerical_greeks(self.price, spot, strike, maturity, r, q, sigma, kind)

    def delta(self, spot, strike, maturity, r, q, sigma, kind) -> float:
        self._check(spot, strike, maturity, r, q, sigma, kind)
        h = SPOT_BUMP * spot
        up = self.price(spot + h, strike, maturity, r, q, sigma, kind)
        dn = self.price(spot - h, strike, maturity, r, q, sigma, kind)
        return (up - dn) / (2.0 * h)

    def gamma(self, spot, strike, maturity, r, q, sigma, kind) -> float:
        self._check(spot, strike, maturity, r, q, sigma, kind)
        h = SPOT_BUMP * spot
        mid = self.price(spot, strike, maturity, r, q, sigma, kind)
        up = self.price(spot + h, strike, maturity, r, q, sigma, kind)
        dn = self.price(spot - h, strike, maturity, r, q, sigma, kind)
        return (up - 2.0 * mid + dn) / (h * h)

    def vega(self, spot, strike, maturity, r, q, sigma, kind) -> float:
        self._check(spot, strike, maturity, r, q, sigma, kind)
        h = max(VOL_BUMP * sigma, 1e-5)
        up = self.price(spot, strike, maturity, r, q, sigma + h, kind)
        dn = self.price(spot, strike, maturity, r, q, max(sigma - h, 1e-6), kind)
        return (up - dn) / (2.0 * h)

    def theta(self, spot, strike, maturity, r, q, sigma, kind) -> float:
        self._check(spot, strike, maturity, r, q, sigma, kind)
        if maturity <= THETA_DT:
            return 0.0
        now = self.price(spot, strike, maturity, r, q, sigma, kind)
        later = self.price(spot, strike, maturity - THETA_DT, r, q, sigma, kind)
        return (later - now) / THETA_DT

    def rho(self, spot, strike, maturity, r, q, sigma, kind) -> float:
        self._check(spot, strike, maturity, r, q, sigma, kind)
        up = self.price(spot, strike, maturity, r + RATE_BUMP, q, sigma, kind)
        dn = self.price(spot, strike, maturity, r - RATE_BUMP, q, sigma, kind)
        return (up - dn) / (2.0 * RATE_BUMP)

    def price_with_greeks(self, spot, strike, maturity, r, q, sigma, kind) -> PricingResult:
        g = self.greeks(spot, strike, maturity, r, q, sigma, kind)
        return PricingResult(g["price"], g["delta"], g["gamma"], g["vega"],
                             g["theta"], g["rho"])
