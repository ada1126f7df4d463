"""Vectorised European Greeks over an option chain.

One spot and one rate pair, many ``(strike, maturity, vol, kind)`` legs.
The chain is processed in fixed-size blocks; each block is a single
broadcast numpy pass, and scratch memory is sized to the block.  A
remainder shorter than a block, or the whole chain when
``vectorize=False``, goes through the scalar formulas in
:mod:`amerpricer.black_scholes`.
"""

from __future__ import annotations

import math
from typing import Optional, Sequence, Union

import numpy as np
from scipy.stats import norm

from .black_scholes import bs_greeks
from .core import CALL, check_kind, validate_rates
from .exceptions import ValidationError

__all__ = ["chain_greeks", "chain_prices", "chain_deltas", "GREEK_FIELDS"]

_N = norm.cdf
_n = norm.pdf

GREEK_FIELDS = ("price", "delta", "gamma", "vega", "theta", "rho")
DEFAULT_BLOCK = 256


# ---------------------------------------------------------------------------
# Input handling
# ---------------------------------------------------------------------------
def _as_legs(strikes, maturities, vols, kinds):
    K = np.ascontiguousarray(strikes, dtype=float)
    T = np.ascontiguousarray(maturities, dtype=float)
    sigma = np.ascontiguousarray(vols, dtype=float)
    if K.ndim != 1 or T.ndim != 1 or sigma.ndim != 1:
        raise ValidationError("strikes, maturities and vols must be one-dimensional")
    n = len(K)
    if isinstance(kinds, str):
        kinds = [kinds] * n
    kinds = [check_kind(k) for k in kinds]
    if not (len(T) == len(sigma) == len(kinds) == n):
        raise ValidationError(
            f"chain legs differ in length: strikes={n}, maturities={len(T)}, "
            f"vols={len(sigma)}, kinds={len(kinds)}"
        )
    for name, arr in (("strikes", K), ("maturities", T), ("vols", sigma)):
        if not np.all(np.isfinite(arr)) or np.any(arr <= 0.0):
            raise ValidationError(f"{name} must be positive and finite")
    is_call = np.array([k == CALL for k in kinds], dtype=bool)
    return K, T, sigma, is_call


def _prepare_out(out, n: int, inputs: Sequence[np.ndarray]) -> dict[str, np.ndarray]:
    if out is None:
        return {f: np.empty(n) for f in GREEK_FIELDS}
    missing = [f for f in GREEK_FIELDS if f not in out]
    if missing:
        raise ValidationError(f"out is missing arrays for {missing}")
    for f in GREEK_FIELDS:
        arr = out[f]
        if not isinstance(arr, np.ndarray) or arr.shape != (n,) or arr.dtype != np.float64:
            raise ValidationError(f"out[{f!r}] must be a float64 array of shape ({n},)")
        for src in inputs:
            if np.shares_memory(arr, src):
                raise ValidationError(f"out[{f!r}] aliases an input array")
    for i, f in enumerate(GREEK_FIELDS):
        for g in GREEK_FIELDS[i + 1:]:
            if np.shares_memory(out[f], out[g]):
                raise ValidationError(f"out[{f!r}] and out[{g!r}] share memory")
    return out


# ---------------------------------------------------------------------------
# Kernels
# ---------------------------------------------------------------------------
def _block(S, K, T, r, q, sigma, is_call) -> dict[str, np.ndarray]:
    """Greeks for one contiguous block of legs."""
    sqrt_T = np.sqrt(T)
    sig_sqrt_T = sigma * sqrt_T
    d1 = (np.log(S / K) + (r - q + 0.5 * sigma * sigma) * T) / sig_sqrt_T
    d2 = d1 - sig_sqrt_T
    disc_r = np.exp(-r * T)
    disc_q = np.exp(-q * T)
    n_d1 = _n(d1)
    sign = np.where(is_call, 1.0, -1.0)
    Nd1 = _N(sign * d1)
    Nd2 = _N(sign * d2)

    price = sign * (disc_q * S * Nd1 - disc_r * K * Nd2)
    delta = sign * disc_q * Nd1
    gamma = disc_q * n_d1 / (S * sig_sqrt_T)
    vega = S * disc_q * n_d1 * sqrt_T
    # theta = -vega sigma / 2T -+ r K e^{-rT} N(+-d2) +- q S e^{-qT} N(+-d1)
    theta = -vega * sigma / (2.0 * T) - sign * r * K * disc_r * Nd2 + sign * q * S * disc_q * Nd1
    rho = sign * K * T * disc_r * Nd2
    return {"price": price, "delta": delta, "gamma": gamma,
            "vega": vega, "theta": theta, "rho": rho}


def _scalar(out, idx, S, K, T, r, q, sigma, is_call) -> None:
    g = bs_greeks(S, float(K), float(T), r, q, float(sigma), CALL if is_call else "put")
    for f in GREEK_FIELDS:
        out[f][idx] = g[f]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def chain_greeks(
    spot: float,
    strikes,
    maturities,
    vols,
    kinds: Union[str, Sequence[str]],
    r: float,
    q: float = 0.0,
    *,
    out: Optional[dict[str, np.ndarray]] = None,
    block: int = DEFAULT_BLOCK,
    vectorize: bool = True,
) -> dict[str, np.ndarray]:
    """European price and Greeks for every leg of a chain.

    Parameters
    ----------
    spot : float
    strikes, maturities, vols : array-like, shape (n,)
    kinds : str or sequence of str
        One kind for the whole chain, or one per leg.
    r, q : float
        Shared rate and dividend yield, either sign.
    out : dict of np.ndarray, optional
        Caller-owned float64 arrays of shape ``(n,)`` keyed by
        :data:`GREEK_FIELDS`.  Each slot is written exactly once.
    block : int
        Legs per vectorised pass.
    vectorize : bool
        False routes every leg through the scalar formulas.

    Returns
    -------
    dict[str, np.ndarray]
        ``out`` itself when supplied.  Theta is ``dV/dt`` per year.

    Raises
    ------
    ValidationError
        On unequal leg lengths, bad values, or ``out`` arrays that alias
        the inputs or each other.
    """
    if not (spot > 0.0) or not math.isfinite(spot):
        raise ValidationError(f"spot must be positive, got {spot}")
    validate_rates(r, q)
    if block < 1:
        raise ValidationError(f"block must be positive, got {block}")
    K, T, sigma, is_call = _as_legs(strikes, maturities, vols, kinds)
    n = len(K)
    out = _prepare_out(out, n, (K, T, sigma))

    stop = (n // block) * block if vectorize else 0
    for start in range(0, stop, block):
        sl = slice(start, start + block)
        res = _block(spot, K[sl], T[sl], r, q, sigma[sl], is_call[sl])
        for f in GREEK_FIELDS:
            out[f][sl] = res[f]
    for i in range(stop, n):
        _scalar(out, i, spot, K[i], T[i], r, q, sigma[i], is_call[i])
    return out


def chain_prices(spot, strikes, maturities, vols, kinds, r, q=0.0, **kwargs) -> np.ndarray:
    """European prices of a chain; see :func:`chain_greeks`."""
    return chain_greeks(spot, strikes, maturities, vols, kinds, r, q, **kwargs)["price"]


def chain_deltas(spot, strikes, maturities, vols, kinds, r, q=0.0, **kwargs) -> np.ndarray:
    """European deltas of a chain; see :func:`chain_greeks`."""
    return chain_greeks(spot, strikes, maturities, vols, kinds, r, q, **kwargs)["delta"]
