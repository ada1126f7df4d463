"""Scalar normal distribution and European Black-Scholes formulas.

The European value is the continuation value every American engine is
measured against: the early-exercise premium is whatever sits above it.
"""

from __future__ import annotations

import math
from math import log, sqrt, exp
from statistics import NormalDist
from typing import Dict

from .core import OptionSpec, CALL, check_kind
from .exceptions import ValidationError

__all__ = [
    "norm_cdf",
    "norm_pdf",
    "d1_d2",
    "bs_price",
    "bs_greeks",
    "price",
    "greeks",
]

_nd = NormalDist()
_INV_SQRT_2PI = 1.0 / math.sqrt(2.0 * math.pi)


def norm_cdf(x: float) -> float:
    return _nd.cdf(x)


def norm_pdf(x: float) -> float:
    return _INV_SQRT_2PI * math.exp(-0.5 * x * x)


def d1_d2(S, K, T, r, q, sigma):
    if T <= 0 or sigma <= 0 or S <= 0 or K <= 0:
        raise ValidationError("S, K, T, sigma must be positive.")
    rt = sigma * sqrt(T)
    d1 = (log(S / K) + (r - q + 0.5 * sigma * sigma) * T) / rt
    d2 = d1 - rt
    return d1, d2


def bs_price(S: float, K: float, T: float, r: float, q: float, sigma: float,
             kind: str = CALL) -> float:
    """European price from raw inputs."""
    check_kind(kind)
    d1, d2 = d1_d2(S, K, T, r, q, sigma)
    disc_r = exp(-r * T)
    disc_q = exp(-q * T)
    if kind == CALL:
        return disc_q * S * _nd.cdf(d1) - disc_r * K * _nd.cdf(d2)
    return disc_r * K * _nd.cdf(-d2) - disc_q * S * _nd.cdf(-d1)


def bs_greeks(S: float, K: float, T: float, r: float, q: float, sigma: float,
              kind: str = CALL) -> Dict[str, float]:
    """European greeks; vega is dPrice/dSigma, theta is dPrice/dt per year."""
    check_kind(kind)
    d1, d2 = d1_d2(S, K, T, r, q, sigma)
    n_d1 = norm_pdf(d1)
    disc_r = exp(-r * T)
    disc_q = exp(-q * T)
    sqrt_T = sqrt(T)

    gamma = disc_q * n_d1 / (S * sigma * sqrt_T)
    vega = S * disc_q * n_d1 * sqrt_T
    decay = -S * disc_q * n_d1 * sigma / (2.0 * sqrt_T)

    if kind == CALL:
        delta = disc_q * _nd.cdf(d1)
        theta = decay - r * K * disc_r * _nd.cdf(d2) + q * S * disc_q * _nd.cdf(d1)
        rho = K * T * disc_r * _nd.cdf(d2)
    else:
        delta = -disc_q * _nd.cdf(-d1)
        theta = decay + r * K * disc_r * _nd.cdf(-d2) - q * S * disc_q * _nd.cdf(-d1)
        rho = -K * T * disc_r * _nd.cdf(-d2)

    return {"price": bs_price(S, K, T, r, q, sigma, kind),
            "delta": delta, "gamma": gamma, "vega": vega,
            "theta": theta, "rho": rho}


def price(opt: OptionSpec) -> float:
    """European price of ``opt`` (same contract, no early exercise)."""
    return bs_price(opt.S0, opt.K, opt.T, opt.r, opt.q, opt.sigma, opt.kind)


def greeks(opt: OptionSpec) -> Dict[str, float]:
    return bs_greeks(opt.S0, opt.K, opt.T, opt.r, opt.q, opt.sigma, opt.kind)
