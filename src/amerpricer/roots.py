"""Characteristic-equation roots and the shared Super-Halley polisher.

The continuation value of a perpetual American option is a combination of
power functions ``S**lam`` whose exponents solve

.. math::

    \\tfrac{1}{2}\\sigma^2\\lambda^2
    + \\left(r - q - \\tfrac{1}{2}\\sigma^2\\right)\\lambda - r = 0 .

QD+ (Li 2005, Healy 2021) replaces ``r`` by ``r/h`` with
``h = 1 - exp(-r T)`` to get maturity-dependent exponents.

:func:`super_halley` is the single third-order iteration used both to
polish these roots and to solve the QD+ boundary equation.
"""

from __future__ import annotations

import math
from typing import Callable, NamedTuple, Optional

from .config import ROOT_EPS, ROOT_MAX_ITER, ROOT_TOL
from .exceptions import ValidationError

__all__ = [
    "RootResult",
    "CharacteristicRoots",
    "super_halley",
    "characteristic_roots",
    "qdplus_roots",
    "qdplus_root_derivative",
]


class RootResult(NamedTuple):
    x: float
    iterations: int
    converged: bool
    residual: float


class CharacteristicRoots(NamedTuple):
    lambda1: float    # larger root
    lambda2: float    # smaller root


# ---------------------------------------------------------------------------
# Generic polisher
# ---------------------------------------------------------------------------

def super_halley(
    func: Callable[[float], tuple[float, float, float]],
    x0: float,
    *,
    tol: float = ROOT_TOL,
    max_iter: int = ROOT_MAX_ITER,
    eps: float = ROOT_EPS,
    bounds: Optional[tuple[float, float]] = None,
    scale: Optional[Callable[[float], float]] = None,
    min_steps: int = 0,
) -> RootResult:
    """Find a root of ``f`` with the Super-Halley (third-order) iteration.

    Each step is ``x -= (1 + L/2 / (1 - L)) * f/f'`` with
    ``L = f f'' / f'**2``; when ``|1 - L|`` is below ``eps`` the step falls
    back to plain Newton.

    Parameters
    ----------
    func : callable
        ``func(x) -> (f, f', f'')``.
    x0 : float
        Starting point.
    tol : float
        Absolute tolerance on ``|f|``.
    bounds : (lo, hi), optional
        Every iterate is clamped into this interval.
    scale : callable, optional
        ``scale(x)`` multiplies ``tol``; lets callers use a relative test
        when ``f`` is a difference of large powers.
    min_steps : int
        Number of steps taken before the tolerance test is allowed to stop
        the iteration.

    Returns
    -------
    RootResult
        ``converged`` is False when the iterations ran out or ``f'`` vanished.
    """
    x = float(x0)
    f = math.nan
    for it in range(max_iter):
        f, df, d2f = func(x)
        limit = tol * scale(x) if scale is not None else tol
        if abs(f) < limit and it >= min_steps:
            return RootResult(x, it, True, abs(f))
        if abs(df) < eps:
            return RootResult(x, it, False, abs(f))

        newton = f / df
        Lf = f * d2f / (df * df)
        if abs(1.0 - Lf) < eps:
            step = newton
        else:
            step = (1.0 + 0.5 * Lf / (1.0 - Lf)) * newton

        x -= step
        if bounds is not None:
            x = min(max(x, bounds[0]), bounds[1])

    return RootResult(x, max_iter, False, abs(f))


# ---------------------------------------------------------------------------
# Characteristic roots
# ---------------------------------------------------------------------------

def _stable_quadratic(a: float, b: float, c: float) -> tuple[float, float]:
    """Real roots of ``a x^2 + b x + c`` without subtractive cancellation."""
    disc = b * b - 4.0 * a * c
    if disc < 0.0:
        raise ValidationError(
            f"characteristic equation has complex roots (discriminant {disc:.3e})"
        )
    qq = -0.5 * (b + math.copysign(math.sqrt(disc), b))
    if qq == 0.0:
        return 0.0, 0.0
    x1, x2 = qq / a, c / qq
    return (x1, x2) if x1 >= x2 else (x2, x1)


def characteristic_roots(r: float, q: float, sigma: float) -> CharacteristicRoots:
    """Return ``(lambda1, lambda2)``, ``lambda1 >= lambda2``.

    Closed form first; each root whose residual exceeds ``1e-8`` (relative
    to the size of the terms) is polished with :func:`super_halley`.

    Raises
    ------
    ValidationError
        If ``sigma <= 0`` or the discriminant ``b^2 + 2 sigma^2 r`` is
        negative (no real exponents; only possible for ``r < 0``).
    """
    if not sigma > 0:
        raise ValidationError(f"sigma must be positive, got {sigma}")
    a = 0.5 * sigma * sigma
    b = r - q - a
    c = -r

    def poly(lam):
        return a * lam * lam + b * lam + c, 2.0 * a * lam + b, 2.0 * a

    def size(lam):
        return max(1.0, abs(a * lam * lam), abs(b * lam), abs(c))

    polished = []
    for lam in _stable_quadratic(a, b, c):
        if abs(poly(lam)[0]) > ROOT_TOL * size(lam):
            lam = super_halley(poly, lam, scale=size).x
        polished.append(lam)

    hi, lo = max(polished), min(polished)
    return CharacteristicRoots(hi, lo)


def qdplus_roots(r: float, q: float, sigma: float, h: float) -> CharacteristicRoots:
    """QD+ exponents (Healy eq. 9): roots of ``l^2 + (w-1) l - 2r/(sigma^2 h)``.

    ``w = 2(r-q)/sigma^2``.  At ``h = 1`` this is :func:`characteristic_roots`.
    A negative discriminant does not raise here: the pair collapses to
    ``-(w-1)/2 +- 1/2`` so the boundary iteration still has exponents of
    the right sign ordering.
    """
    sigma2 = sigma * sigma
    omega = 2.0 * (r - q) / sigma2
    disc = (omega - 1.0) ** 2 + 8.0 * r / (sigma2 * h)
    if disc < 0.0:
        centre = -(omega - 1.0) / 2.0
        return CharacteristicRoots(centre + 0.5, centre - 0.5)
    root = math.sqrt(disc)
    return CharacteristicRoots((-(omega - 1.0) + root) / 2.0,
                               (-(omega - 1.0) - root) / 2.0)


def qdplus_root_derivative(lam: float, r: float, q: float, sigma: float, h: float,
                           *, eps: float = ROOT_EPS) -> float:
    """``d lambda / d h`` for the QD+ exponent ``lam`` (zero when degenerate)."""
    sigma2 = sigma * sigma
    omega = 2.0 * (r - q) / sigma2
    disc = (omega - 1.0) ** 2 + 8.0 * r / (sigma2 * h)
    if disc <= eps:
        return 0.0
    sign = 1.0 if lam > -(omega - 1.0) / 2.0 else -1.0
    return sign * 4.0 * r / (sigma2 * h * h * math.sqrt(disc))
