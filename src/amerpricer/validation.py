"""Model validation framework.

Cross-engine benchmarking, convergence analysis, rate-shock stress tests
and no-arbitrage checks on a quoted price.  The FD engine is the
reference throughout: its projection step makes no assumption about the
exercise region, so it is right in every rate regime by construction.
"""

from __future__ import annotations

import math
from dataclasses import replace
from typing import Optional

import numpy as np

from .black_scholes import price as bs_price
from .config import FDParams, SPECTRAL_SCHEMES, SpectralScheme
from .core import OptionSpec
from .pde import FDEngine
from .regime import exercise_structure
from .spectral import SpectralEngine

__all__ = [
    "cross_validate",
    "convergence_analysis",
    "stress_test",
    "check_invariants",
]

ALL_METHODS = ("european", "fd", "fast", "accurate", "high_precision")


def _engine_price(engine, opt: OptionSpec) -> float:
    return engine.price(opt.S0, opt.K, opt.T, opt.r, opt.q, opt.sigma, opt.kind)


# ---------------------------------------------------------------------------
# Cross-model benchmarking
# ---------------------------------------------------------------------------

def cross_validate(
    opt: OptionSpec,
    *,
    methods: Optional[list[str]] = None,
    fd_params: Optional[FDParams] = None,
) -> dict:
    """Price ``opt`` with every requested method.

    Parameters
    ----------
    opt : OptionSpec
    methods : list of str, optional
        Subset of ``{"european", "fd", "fast", "accurate",
        "high_precision"}``.  Default: all.
    fd_params : FDParams, optional

    Returns
    -------
    dict
        One price per method, plus ``"max_discrepancy"`` (largest relative
        gap to ``"fd"``, NaN without it) and ``"early_exercise_premium"``
        (``fd - european`` when both ran).
    """
    if methods is None:
        methods = list(ALL_METHODS)
    unknown = set(methods) - set(ALL_METHODS)
    if unknown:
        raise ValueError(f"Unknown methods: {sorted(unknown)}")

    results: dict = {}
    for m in methods:
        if m == "european":
            results[m] = bs_price(opt)
        elif m == "fd":
            results[m] = _engine_price(FDEngine(fd_params), opt)
        else:
            results[m] = _engine_price(SpectralEngine(m), opt)

    ref = results.get("fd")
    if ref is not None:
        discs = [abs(v - ref) / max(abs(ref), 1e-12)
                 for k, v in results.items() if k not in ("fd", "european")]
        results["max_discrepancy"] = max(discs) if discs else 0.0
    else:
        results["max_discrepancy"] = float("nan")

    if "fd" in results and "european" in results:
        results["early_exercise_premium"] = results["fd"] - results["european"]

    return results


# ---------------------------------------------------------------------------
# Convergence analysis
# ---------------------------------------------------------------------------

def _reference(opt: OptionSpec, finest: int) -> float:
    if exercise_structure(opt.r, opt.q, opt.kind) == "none":
        return bs_price(opt)
    n = 4 * finest
    return _engine_price(FDEngine(FDParams(N_S=n, N_t=n)), opt)


def convergence_analysis(
    opt: OptionSpec,
    method: str,
    param_values: list | np.ndarray,
    *,
    reference: Optional[float] = None,
) -> dict:
    """Error of ``method`` as its resolution grows.

    Parameters
    ----------
    method : str
        ``"fd"`` (value = grid size, used for both ``N_S`` and ``N_t``) or
        ``"spectral"`` (value = collocation nodes, with twice as many
        quadrature points and six fixed-point sweeps).
    param_values : array-like
        Resolutions to test.
    reference : float, optional
        True price.  Default: the European price when ``opt`` has no
        early-exercise region, otherwise FD at four times the finest grid.

    Returns
    -------
    dict
        ``"params"``, ``"prices"``, ``"errors"``, ``"order"`` (estimated).
    """
    param_values = [int(v) for v in param_values]
    if method not in ("fd", "spectral"):
        raise ValueError(f"Unknown method: {method}")

    if reference is None:
        reference = _reference(opt, max(param_values))

    prices = []
    for val in param_values:
        if method == "fd":
            engine = FDEngine(FDParams(N_S=val, N_t=val))
        else:
            engine = SpectralEngine(SpectralScheme(f"nodes={val}", val, 2 * val, 6))
        prices.append(float(_engine_price(engine, opt)))

    errors = [abs(p - reference) for p in prices]

    # error ~ C / v^order  => log(e) = -order * log(v) + const
    order = float("nan")
    valid = [(v, e) for v, e in zip(param_values, errors) if e > 0]
    if len(valid) >= 2:
        log_v = np.log([v for v, _ in valid])
        log_e = np.log([e for _, e in valid])
        coeffs = np.polyfit(log_v, log_e, 1)
        order = -float(coeffs[0])

    return {
        "params": param_values,
        "prices": prices,
        "errors": errors,
        "order": order,
        "reference": reference,
    }


# ---------------------------------------------------------------------------
# Stress testing
# ---------------------------------------------------------------------------

def stress_test(
    opt: OptionSpec,
    spot_shocks: np.ndarray,
    rate_shocks: np.ndarray,
    *,
    scheme: str = "fast",
) -> np.ndarray:
    """American price on a grid of spot and rate shocks.

    Parameters
    ----------
    spot_shocks : array, shape (n_spot,)
        Multiplicative shocks to S0.
    rate_shocks : array, shape (n_rate,)
        Additive shocks applied to both ``r`` and ``q``, so the grid can
        walk a contract across the zero-rate line.
    scheme : str
        Spectral scheme used for pricing.

    Returns
    -------
    ndarray, shape (n_spot, n_rate)
    """
    spot_shocks = np.asarray(spot_shocks, dtype=float)
    rate_shocks = np.asarray(rate_shocks, dtype=float)
    engine = SpectralEngine(scheme)

    result = np.empty((len(spot_shocks), len(rate_shocks)))
    for i, ds in enumerate(spot_shocks):
        for j, dr in enumerate(rate_shocks):
            shocked = replace(opt, S0=opt.S0 * ds, r=opt.r + dr, q=opt.q + dr)
            result[i, j] = _engine_price(engine, shocked)
    return result


# ---------------------------------------------------------------------------
# No-arbitrage checks
# ---------------------------------------------------------------------------

def check_invariants(opt: OptionSpec, price: float, *, tol: float = 1e-8) -> list[str]:
    """Return the violated price bounds for ``price`` (empty when clean)."""
    violations = []
    if not math.isfinite(price):
        return [f"price is not finite: {price}"]
    if price < -tol:
        violations.append(f"price {price:.6g} is negative")
    intrinsic = opt.intrinsic()
    if price < intrinsic - tol:
        violations.append(f"price {price:.6g} below intrinsic {intrinsic:.6g}")
    european = bs_price(opt)
    if price < european - tol:
        violations.append(f"price {price:.6g} below European {european:.6g}")
    return violations
