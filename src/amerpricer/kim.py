"""Kim integral-equation refinement of a double exercise boundary (FP-B').

For a put with ``q < r < 0`` the exercise region at calendar time ``t`` is
the band ``[l(t), u(t)]``.  Value matching at each boundary gives Kim's
fixed-point form

.. math::

    B(t_i) = K \\, \\frac{N(t_i, B)}{D(t_i, B)}

    N = 1 - e^{-r\\tau_i}\\Phi(-d_2(B, K, \\tau_i))
        - \\int_{t_i}^{T} r e^{-r(t-t_i)}
          [\\Phi(-d_2(B, u_t)) - \\Phi(-d_2(B, l_t))] \\, dt

with ``D`` the same expression in ``q`` and ``d1``.  FP-B' (Healy 2021,
eqs. 33-35) moves the ``D`` integral of the lower boundary into its
numerator and evaluates it against the *just updated* upper boundary,
which removes the oscillation plain FP-B shows on long maturities.

The iteration is guarded rather than trusted: every step is damped to 3%,
ratios that imply a boundary too close to the strike are rejected, and the
result is made non-increasing in ``t`` before it is returned.  The node at
``t = T`` has ``N = D = 1`` and therefore always keeps its seed value.

References
----------
- Kim, I.J. "The analytic valuation of American options",
  Rev. Financial Studies 3 (1990).
- Healy, J. "Pricing American options under negative rates",
  J. Comp. Finance (2021), section 5.3.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

import numpy as np
from scipy.special import ndtr

from . import config as C
from .core import OptionSpec, PUT
from .exceptions import BoundaryOrderingError

__all__ = ["KimSolver", "KimResult"]

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class KimResult:
    times: np.ndarray           # collocation times t_i, shape (m,)
    upper: np.ndarray           # u(t_i)
    lower: np.ndarray           # l(t_i)
    crossing_time: float
    iterations: int
    converged: bool


class KimSolver:
    """FP-B' fixed-point refinement on ``m`` equally spaced collocation times.

    Parameters
    ----------
    opt : OptionSpec
    collocation_points : int
        Number of times ``t_i = i T / (m - 1)`` (default 50).
    """

    def __init__(self, opt: OptionSpec, collocation_points: int = C.KIM_COLLOCATION_POINTS):
        if collocation_points < 2:
            raise ValueError(f"need at least 2 collocation points, got {collocation_points}")
        self.opt = opt
        self.m = int(collocation_points)
        self.times = np.linspace(0.0, opt.T, self.m)
        self.is_put = opt.kind == PUT
        self._crossing = 0.0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def solve(self, upper0: float, lower0: float) -> KimResult:
        """Refine the constant seed ``(upper0, lower0)``.

        Raises
        ------
        BoundaryOrderingError
            If the seed is non-positive, mis-ordered, or (for puts) has
            its upper boundary above the strike.
        """
        self._check_seed(upper0, lower0)
        upper = np.full(self.m, float(upper0))
        lower = np.full(self.m, float(lower0))

        crossing = self._refine_crossing(upper, lower, self._find_crossing(upper, lower))
        self._crossing = crossing
        self._flatten_before_crossing(upper, lower, crossing)

        upper, lower, iters, converged = self._iterate(upper, lower, crossing)
        if not converged:
            log.debug("Kim FP-B' stopped after %d iterations without converging", iters)

        upper = _non_increasing(upper)
        lower = _non_increasing(lower)
        return KimResult(self.times.copy(), upper, lower, crossing, iters, converged)

    # ------------------------------------------------------------------
    # Seed checks and crossing time
    # ------------------------------------------------------------------
    def _check_seed(self, upper: float, lower: float) -> None:
        K = self.opt.K
        if not (math.isfinite(upper) and math.isfinite(lower)):
            raise BoundaryOrderingError(f"seed must be finite: upper={upper}, lower={lower}")
        if upper <= 0.0 or lower <= 0.0:
            raise BoundaryOrderingError(f"seed must be positive: upper={upper}, lower={lower}")
        if lower >= upper:
            raise BoundaryOrderingError(f"seed lower {lower:.4f} >= upper {upper:.4f}")
        if self.is_put and upper > K:
            raise BoundaryOrderingError(f"put seed upper {upper:.4f} above strike {K}")

    def _find_crossing(self, upper: np.ndarray, lower: np.ndarray) -> float:
        crossed = np.nonzero(upper[1:] <= lower[1:])[0]
        if crossed.size == 0:
            return 0.0
        return float(self.times[crossed[0] + 1])

    def _refine_crossing(self, upper, lower, t0: float) -> float:
        T = self.opt.T
        if t0 <= 0.0 or t0 >= T:
            return t0
        left, right = max(0.0, t0 - 0.1), min(T, t0 + 0.1)
        while right - left > C.KIM_CROSSING_DT:
            mid = 0.5 * (left + right)
            if self._at(upper, mid) > self._at(lower, mid):
                left = mid
            else:
                right = mid
        return 0.5 * (left + right)

    def _flatten_before_crossing(self, upper, lower, crossing: float) -> None:
        if crossing <= 0.0 or crossing >= self.opt.T:
            return
        idx = int(crossing / self.opt.T * (self.m - 1))
        mid = 0.5 * (upper[idx] + lower[idx])
        upper[: idx + 1] = mid
        lower[: idx + 1] = mid

    # ------------------------------------------------------------------
    # FP-B' iteration
    # ------------------------------------------------------------------
    def _iterate(self, upper, lower, crossing):
        for it in range(C.KIM_MAX_ITER):
            new_upper = upper.copy()
            new_lower = lower.copy()
            max_change = 0.0

            for i, ti in enumerate(self.times):
                if ti < crossing - C.KIM_EPS:
                    continue
                u_i = self._update_upper(i, ti, upper, lower)
                fresh = upper.copy()
                fresh[i] = u_i
                l_i = self._update_lower(i, ti, fresh, lower)
                u_i, l_i = self._constrain(u_i, l_i)

                max_change = max(max_change, abs(u_i - upper[i]), abs(l_i - lower[i]))
                new_upper[i] = u_i
                new_lower[i] = l_i

            upper, lower = new_upper, new_lower
            if max_change < C.KIM_TOL:
                return upper, lower, it + 1, True
        return upper, lower, C.KIM_MAX_ITER, False

    def _update_upper(self, i, ti, upper, lower) -> float:
        current = upper[i]
        num = self._numerator(ti, current, upper, lower)
        den = self._denominator(ti, current, upper, lower)
        if not (np.isfinite(num) and np.isfinite(den)) or den < C.KIM_EPS or num < 0.0:
            return current
        ratio = num / den
        if self.is_put and ratio >= C.KIM_UPPER_RATIO_CAP:
            return current

        result = self._damp(self.opt.K * ratio, current)
        if self.is_put:
            result = min(result, self.opt.K * C.KIM_UPPER_STRIKE_MARGIN)
            result = max(result, C.KIM_EPS)
        return result

    def _update_lower(self, i, ti, fresh_upper, lower) -> float:
        current = lower[i]
        num = (self._numerator(ti, current, fresh_upper, lower)
               + current / self.opt.K * self._integral(ti, current, fresh_upper, lower, "q"))
        den = self._terminal(ti, current, "q")
        if not (np.isfinite(num) and np.isfinite(den)) or den < C.KIM_EPS or num < 0.0:
            return current
        ratio = num / den
        if self.is_put and ratio >= C.KIM_LOWER_RATIO_CAP:
            return current

        result = self._damp(self.opt.K * ratio, current)
        if self.is_put:
            result = min(result, fresh_upper[i] * C.KIM_LOWER_UPPER_MARGIN)
            result = max(result, C.KIM_EPS)
        return result

    @staticmethod
    def _damp(target: float, current: float) -> float:
        if not math.isfinite(target):
            return current
        step = C.KIM_MAX_STEP * current
        if abs(target - current) > step:
            return current + math.copysign(step, target - current)
        return target

    def _constrain(self, upper: float, lower: float) -> tuple[float, float]:
        K = self.opt.K
        upper = min(upper, K) if self.is_put else max(upper, K)
        lower = max(lower, 0.0)
        if lower >= upper:
            mid = 0.5 * (upper + lower)
            upper, lower = mid + C.KIM_EPS, mid - C.KIM_EPS
        return upper, lower

    # ------------------------------------------------------------------
    # N, D and their integrals
    # ------------------------------------------------------------------
    def _numerator(self, ti, B, upper, lower) -> float:
        if self.opt.T - ti < C.KIM_EPS:
            return 1.0
        return self._terminal(ti, B, "r") - self._integral(ti, B, upper, lower, "r")

    def _denominator(self, ti, B, upper, lower) -> float:
        if self.opt.T - ti < C.KIM_EPS:
            return 1.0
        return self._terminal(ti, B, "q") - self._integral(ti, B, upper, lower, "q")

    def _terminal(self, ti, B, which: str) -> float:
        """Non-integral term ``1 - exp(-x tau) Phi(-d(B, K, tau))``."""
        o = self.opt
        tau = o.T - ti
        if which == "r":
            return 1.0 - math.exp(-o.r * tau) * float(ndtr(-self._d2(B, o.K, tau)))
        return 1.0 - math.exp(-o.q * tau) * float(ndtr(-self._d1(B, o.K, tau)))

    def _integral(self, ti, B, upper, lower, which: str) -> float:
        """Trapezoidal ``int_{t_i}^T x e^{-x(t-t_i)} [Phi(-d(B,u_t)) - Phi(-d(B,l_t))] dt``."""
        o = self.opt
        t_start = max(ti, self._crossing)
        if t_start >= o.T:
            return 0.0
        n = C.KIM_INTEGRATION_POINTS
        t = np.linspace(t_start, o.T, n + 1)
        dt = (o.T - t_start) / n
        u = np.interp(t, self.times, upper)
        lo = np.interp(t, self.times, lower)
        tau = t - ti

        ok = (u > 0.0) & (lo > 0.0) & (lo < u) & (tau >= C.KIM_EPS)
        if not ok.any():
            return 0.0
        u, lo, tau = u[ok], lo[ok], tau[ok]
        w = np.where((np.arange(n + 1) == 0) | (np.arange(n + 1) == n), 0.5, 1.0)[ok]

        if which == "r":
            rate = o.r
            band = ndtr(-self._d2(B, u, tau)) - ndtr(-self._d2(B, lo, tau))
        else:
            rate = o.q
            band = ndtr(-self._d1(B, u, tau)) - ndtr(-self._d1(B, lo, tau))
        integrand = rate * np.exp(-rate * tau) * band
        good = np.isfinite(integrand)
        return float(np.sum(w[good] * integrand[good]) * dt)

    def _d1(self, S, X, tau):
        o = self.opt
        tau = np.asarray(tau, dtype=float)
        safe = np.maximum(tau, C.KIM_EPS)
        d1 = (np.log(S / X) + (o.r - o.q + 0.5 * o.sigma ** 2) * safe) / (o.sigma * np.sqrt(safe))
        return np.where(tau <= C.KIM_EPS, 0.0, d1)

    def _d2(self, S, X, tau):
        tau = np.asarray(tau, dtype=float)
        d2 = self._d1(S, X, tau) - self.opt.sigma * np.sqrt(np.maximum(tau, 0.0))
        return np.where(tau <= C.KIM_EPS, 0.0, d2)

    def _at(self, path: np.ndarray, t: float) -> float:
        return float(np.interp(t, self.times, path))


def _non_increasing(path: np.ndarray) -> np.ndarray:
    """Smallest non-increasing majorant of ``path``; the last node is kept."""
    return np.maximum.accumulate(path[::-1])[::-1].copy()
