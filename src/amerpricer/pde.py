"""Finite-difference engine for American options in every rate regime.

Values are rolled back from expiry on a uniform grid in ``x = ln S``
with a θ-scheme (``theta = 0.5`` is Crank-Nicolson, ``1`` is fully
implicit).  In log-spot the pricing operator

.. math::

    \\frac{\\sigma^2}{2}\\frac{\\partial^2 V}{\\partial x^2}
    + \\left(r - q - \\tfrac{\\sigma^2}{2}\\right)\\frac{\\partial V}{\\partial x}
    - r\\,V

has constant coefficients for any sign of ``r`` and ``q``, so each step
is one tridiagonal solve against the same matrix.  The matrix is
factored once per solve and reused for all ``N_t`` steps.

Early exercise is a projection ``V <- max(V, payoff)`` after every step.
The projection knows nothing about regimes, so the same solver handles a
single boundary, the negative-rate double boundary, and no boundary at
all.  This makes it the accuracy reference for the faster engines.
Grid edges carry Dirichlet values: the discounted forward intrinsic,
floored by immediate exercise.

References
----------
- Duffy, D.J. *Finite Difference Methods in Financial Engineering* (Wiley,
  2006), chapters 7-10 and 22.
"""

from __future__ import annotations

from typing import Optional

import numpy as np

from .config import FDParams, MIN_PRICING_MATURITY
from .core import OptionSpec, CALL
from .engine import AmericanEngine

__all__ = [
    "fd_price",
    "fd_greeks",
    "FDEngine",
]

_DEFAULT = FDParams()


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _build_grid(
    S0: float,
    K: float,
    T: float,
    sigma: float,
    params: FDParams,
) -> tuple[np.ndarray, float, float]:
    """Log-spot grid centred between spot and strike; returns ``(x, dx, dt)``.

    The half-width is ``max(S_max_mult * sigma * sqrt(T), min_half_width)``
    plus half the log-moneyness, so both spot and strike sit well inside.
    """
    centre = 0.5 * (np.log(S0) + np.log(K))
    half = max(params.S_max_mult * sigma * np.sqrt(T), params.min_half_width)
    half += 0.5 * abs(np.log(S0 / K))
    x_grid = np.linspace(centre - half, centre + half, params.N_S + 1)
    dx = x_grid[1] - x_grid[0]
    dt = T / params.N_t
    return x_grid, dx, dt


def _thomas_factor(
    a: np.ndarray,
    b: np.ndarray,
    c: np.ndarray,
) -> tuple[np.ndarray, np.ndarray]:
    """Elimination multipliers and pivots of the step matrix.

    ``a``, ``b``, ``c`` are the sub-, main and super-diagonals, all of
    length ``M``; ``a[0]`` and ``c[-1]`` are ignored.
    """
    M = len(b)
    mult = np.zeros(M)
    pivot = np.array(b, dtype=float)
    for i in range(1, M):
        mult[i] = a[i] / pivot[i - 1]
        pivot[i] -= mult[i] * c[i - 1]
    return mult, pivot


def _thomas_apply(
    mult: np.ndarray,
    pivot: np.ndarray,
    c: np.ndarray,
    rhs: np.ndarray,
) -> np.ndarray:
    """Forward sweep on ``rhs`` then back substitution."""
    y = rhs.copy()
    for i in range(1, len(y)):
        y[i] -= mult[i] * y[i - 1]
    V = np.empty_like(y)
    V[-1] = y[-1] / pivot[-1]
    for i in range(len(y) - 2, -1, -1):
        V[i] = (y[i] - c[i] * V[i + 1]) / pivot[i]
    return V


def _payoff(x_grid: np.ndarray, K: float, kind: str) -> np.ndarray:
    """Exercise value on the log-spot grid."""
    S = np.exp(x_grid)
    if kind == CALL:
        return np.maximum(S - K, 0.0)
    return np.maximum(K - S, 0.0)


def _boundary_values(
    S_min: float,
    S_max: float,
    K: float,
    r: float,
    q: float,
    tau: float,
    kind: str,
    american: bool,
) -> tuple[float, float]:
    """Dirichlet values at the grid edges: discounted forward intrinsic,
    floored by immediate exercise when early exercise is allowed."""
    if kind == CALL:
        right = S_max * np.exp(-q * tau) - K * np.exp(-r * tau)
        if american:
            right = max(right, S_max - K)
        return 0.0, max(right, 0.0)
    left = K * np.exp(-r * tau) - S_min * np.exp(-q * tau)
    if american:
        left = max(left, K - S_min)
    return max(left, 0.0), 0.0


# ---------------------------------------------------------------------------
# Core θ-scheme engine
# ---------------------------------------------------------------------------

def _fd_solve(
    x_grid: np.ndarray,
    dx: float,
    dt: float,
    N_t: int,
    K: float,
    r: float,
    q: float,
    sigma: float,
    kind: str,
    theta: float,
    american: bool,
) -> tuple[np.ndarray, np.ndarray]:
    """Backward θ-scheme over the whole grid.

    Returns ``(V_at_t0, V_at_t_dt)`` so that theta can be extracted.
    """
    N_S = len(x_grid) - 1
    S_min = float(np.exp(x_grid[0]))
    S_max = float(np.exp(x_grid[-1]))
    exercise = _payoff(x_grid, K, kind)

    # Constant coefficients of L V_j = a V_{j-1} + b V_j + c V_{j+1}
    alpha = 0.5 * sigma ** 2 / dx ** 2
    beta = (r - q - 0.5 * sigma ** 2) / (2.0 * dx)
    M = N_S - 1
    a_L = np.full(M, alpha - beta)
    b_L = np.full(M, -2.0 * alpha - r)
    c_L = np.full(M, alpha + beta)

    a_lhs = -theta * dt * a_L
    b_lhs = 1.0 - theta * dt * b_L
    c_lhs = -theta * dt * c_L
    e = (1.0 - theta) * dt
    mult, pivot = _thomas_factor(a_lhs, b_lhs, c_lhs)

    V = exercise.copy()
    V_at_dt = V

    for n in range(N_t - 1, -1, -1):
        tau = (N_t - n) * dt
        bc_left, bc_right = _boundary_values(S_min, S_max, K, r, q, tau, kind, american)

        rhs = (1.0 + e * b_L) * V[1:N_S]
        rhs[1:] += e * a_L[1:] * V[1:N_S - 1]
        rhs[0] += e * a_L[0] * V[0]
        rhs[:-1] += e * c_L[:-1] * V[2:N_S]
        rhs[-1] += e * c_L[-1] * V[N_S]
        rhs[0] += theta * dt * a_L[0] * bc_left
        rhs[-1] += theta * dt * c_L[-1] * bc_right

        V_new = np.empty(N_S + 1)
        V_new[0] = bc_left
        V_new[1:N_S] = _thomas_apply(mult, pivot, c_lhs, rhs)
        V_new[N_S] = bc_right

        if american:
            V_new = np.maximum(V_new, exercise)

        if n == 1:
            V_at_dt = V_new.copy()
        V = V_new

    return V, V_at_dt


def _solve_option(opt: OptionSpec, params: FDParams, american: bool):
    x_grid, dx, dt = _build_grid(opt.S0, opt.K, opt.T, opt.sigma, params)
    V_0, V_dt = _fd_solve(
        x_grid, dx, dt, params.N_t, opt.K, opt.r, opt.q, opt.sigma,
        opt.kind, params.theta, american,
    )
    return x_grid, dx, dt, V_0, V_dt


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def fd_price(
    opt: OptionSpec,
    *,
    params: Optional[FDParams] = None,
    american: bool = True,
) -> float:
    """Price ``opt`` with the θ-scheme.

    Parameters
    ----------
    opt : OptionSpec
    params : FDParams, optional
        Grid settings; defaults to ``FDParams()`` (300 x 300, Crank-Nicolson).
    american : bool
        Early-exercise projection on (default) or off.

    Returns
    -------
    float
    """
    params = params or _DEFAULT
    x_grid, _, _, V, _ = _solve_option(opt, params, american)
    return float(np.interp(np.log(opt.S0), x_grid, V))


def fd_greeks(
    opt: OptionSpec,
    *,
    params: Optional[FDParams] = None,
    american: bool = True,
) -> dict[str, float]:
    """Extract price, delta, gamma and theta from a single FD solve.

    Delta and gamma are central differences in ``x = ln S`` at the node
    nearest ``S0``, mapped back to ``S``; theta is the difference between
    the first two time layers.

    Returns
    -------
    dict[str, float]
        Keys: ``price``, ``delta``, ``gamma``, ``theta``.
    """
    params = params or _DEFAULT
    x_grid, dx, dt, V_0, V_dt = _solve_option(opt, params, american)

    x0 = np.log(opt.S0)
    j = int(np.argmin(np.abs(x_grid - x0)))
    j = max(1, min(j, len(x_grid) - 2))

    # dV/dx and d²V/dx² via central differences
    dVdx = (V_0[j + 1] - V_0[j - 1]) / (2.0 * dx)
    d2Vdx2 = (V_0[j + 1] - 2.0 * V_0[j] + V_0[j - 1]) / dx ** 2

    # Chain rule:  delta = (1/S) dV/dx
    #              gamma = (1/S²)(d²V/dx² − dV/dx)
    S_j = np.exp(x_grid[j])
    delta = dVdx / S_j
    gamma = (d2Vdx2 - dVdx) / S_j ** 2

    V0_val = float(np.interp(x0, x_grid, V_0))
    Vdt_val = float(np.interp(x0, x_grid, V_dt))
    theta_val = (Vdt_val - V0_val) / dt

    return {
        "price": V0_val,
        "delta": float(delta),
        "gamma": float(gamma),
        "theta": float(theta_val),
    }


class FDEngine(AmericanEngine):
    """American engine backed by :func:`fd_price`.

    Delta, gamma and theta come from the grid of one solve; vega and rho
    are bumped.
    """

    name = "fd"

    def __init__(self, params: Optional[FDParams] = None):
        self.params = params or _DEFAULT

    def _option(self, spot, strike, maturity, r, q, sigma, kind) -> OptionSpec:
        return OptionSpec(S0=spot, K=strike, T=maturity, r=r, sigma=sigma, q=q, kind=kind)

    def _price(self, spot, strike, maturity, r, q, sigma, kind) -> float:
        return fd_price(self._option(spot, strike, maturity, r, q, sigma, kind),
                        params=self.params)

    def _grid_greeks(self, spot, strike, maturity, r, q, sigma, kind) -> Optional[dict]:
        self._check(spot, strike, maturity, r, q, sigma, kind)
        if maturity < MIN_PRICING_MATURITY:
            return None
        return fd_greeks(self._option(spot, strike, maturity, r, q, sigma, kind),
                         params=self.params)

    def delta(self, spot, strike, maturity, r, q, sigma, kind) -> float:
        g = self._grid_greeks(spot, strike, maturity, r, q, sigma, kind)
        if g is None:
            return super().delta(spot, strike, maturity, r, q, sigma, kind)
        return g["delta"]

    def gamma(self, spot, strike, maturity, r, q, sigma, kind) -> float:
        g = self._grid_greeks(spot, strike, maturity, r, q, sigma, kind)
        if g is None:
            return super().gamma(spot, strike, maturity, r, q, sigma, kind)
        return g["gamma"]

    def theta(self, spot, strike, maturity, r, q, sigma, kind) -> float:
        g = self._grid_greeks(spot, strike, maturity, r, q, sigma, kind)
        if g is None:
            return super().theta(spot, strike, maturity, r, q, sigma, kind)
        return g["theta"]

    def greeks(self, spot, strike, maturity, r, q, sigma, kind) -> dict[str, float]:
        g = self._grid_greeks(spot, strike, maturity, r, q, sigma, kind)
        if g is None:
            return super().greeks(spot, strike, maturity, r, q, sigma, kind)
        return {
            "price": max(g["price"], 0.0),
            "delta": g["delta"],
            "gamma": g["gamma"],
            "vega": self.vega(spot, strike, maturity, r, q, sigma, kind),
            "theta": g["theta"],
            "rho": self.rho(spot, strike, maturity, r, q, sigma, kind),
        }
