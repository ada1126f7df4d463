"""Two-stage exercise-boundary solver: QD+ estimate, then Kim FP-B' refinement.

Single-boundary contracts stop after QD+.  Double-boundary contracts are
refined unless ``refine=False``.  Contracts within three trading days of
expiry skip both stages: QD+'s asymptotic expansion breaks down there, and
the boundaries sit a ``sigma * sqrt(T)``-sized distance from the strike.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional

from . import config as C
from .core import OptionSpec, CALL, ExerciseBoundaryPair
from .exceptions import ValidationError
from .kim import KimSolver
from .qdplus import qdplus_boundaries
from .regime import is_double_boundary

__all__ = ["BoundarySolution", "solve_boundaries", "check_boundary_inputs"]

log = logging.getLogger(__name__)

METHOD_NEAR_EXPIRY = "near-expiry"
METHOD_SINGLE = "QD+ (single boundary)"
METHOD_QD = "QD+"
METHOD_REFINED = "QD+ + FP-B' Kim"


@dataclass(frozen=True)
class BoundarySolution:
    """Boundary pair plus the metadata of how it was obtained.

    ``boundaries`` is the pair at valuation time (the final collocation
    node, held at the QD+ seed); ``upper_path`` / ``lower_path`` hold the
    whole refined curves over ``times`` when Kim refinement ran.
    """
    boundaries: ExerciseBoundaryPair
    qd_boundaries: ExerciseBoundaryPair
    method: str
    is_refined: bool
    is_valid: bool
    iterations: int = 0
    crossing_time: float = 0.0
    times: Optional[tuple[float, ...]] = None
    upper_path: Optional[tuple[float, ...]] = None
    lower_path: Optional[tuple[float, ...]] = None

    @property
    def upper(self) -> float:
        return self.boundaries.upper

    @property
    def lower(self) -> float:
        return self.boundaries.lower

    @property
    def upper_improvement(self) -> float:
        if not self.is_refined:
            return 0.0
        return abs(self.boundaries.upper - self.qd_boundaries.upper)

    @property
    def lower_improvement(self) -> float:
        if not self.is_refined:
            return 0.0
        return abs(self.boundaries.lower - self.qd_boundaries.lower)


def check_boundary_inputs(opt: OptionSpec) -> None:
    """Bounds the boundary solvers were calibrated for (vol and maturity)."""
    if not C.MIN_VOLATILITY <= opt.sigma <= C.MAX_VOLATILITY:
        raise ValidationError(
            f"sigma={opt.sigma} outside [{C.MIN_VOLATILITY}, {C.MAX_VOLATILITY}]"
        )
    if opt.T > C.MAX_MATURITY:
        raise ValidationError(f"T={opt.T} exceeds {C.MAX_MATURITY} years")


def _is_valid(pair: ExerciseBoundaryPair, opt: OptionSpec) -> bool:
    upper, lower = pair.upper, pair.lower
    if math.isnan(upper) or math.isnan(lower):
        return False
    if math.isinf(upper) and math.isinf(lower):
        return False
    if opt.kind == CALL:
        if upper != math.inf and upper < opt.K:
            return False
    elif upper != math.inf and upper > opt.K:
        return False
    if lower != -math.inf and lower < 0.0:
        return False
    if pair.is_double and lower >= upper:
        return False
    return True


def _near_expiry(opt: OptionSpec) -> BoundarySolution:
    spread = max(0.01, opt.sigma * math.sqrt(opt.T))
    if opt.kind == CALL:
        upper = opt.K * (1.0 + 0.3 * spread)
        lower = opt.K * (1.0 + 0.1 * spread)
    else:
        upper = opt.K * (1.0 - 0.3 * spread)
        lower = opt.K * (1.0 - spread)
        if lower >= upper:
            lower = 0.99 * upper
    pair = ExerciseBoundaryPair(upper, lower)
    return BoundarySolution(pair, pair, METHOD_NEAR_EXPIRY, is_refined=False, is_valid=True)


def solve_boundaries(
    opt: OptionSpec,
    *,
    refine: bool = True,
    collocation_points: int = C.KIM_COLLOCATION_POINTS,
) -> BoundarySolution:
    """Exercise boundaries for ``opt``.

    The reported pair of a refined solution is read from the last
    collocation node, ``t = T``.  FP-B' anchors that node to its seed, so
    ``boundaries`` always equals ``qd_boundaries`` there and the
    refinement only shows in ``upper_path`` / ``lower_path`` and
    ``crossing_time``.

    Parameters
    ----------
    opt : OptionSpec
    refine : bool
        Run Kim FP-B' refinement on double-boundary contracts (default True).
        With False the QD+ pair is returned as is.
    collocation_points : int
        Number of collocation times for the refinement (default 50).

    Returns
    -------
    BoundarySolution

    Raises
    ------
    ValidationError
        If sigma or T are outside the calibrated bounds, or
        ``collocation_points`` is not positive.
    BoundaryOrderingError
        If QD+ or the refinement seed violates boundary ordering.
    """
    check_boundary_inputs(opt)
    if collocation_points <= 0:
        raise ValidationError(f"collocation_points must be positive, got {collocation_points}")

    if opt.T < C.NEAR_EXPIRY_MATURITY:
        log.debug("T=%.5f below near-expiry cutoff, using sigma*sqrt(T) boundaries", opt.T)
        return _near_expiry(opt)

    qd = qdplus_boundaries(opt)

    if not is_double_boundary(opt.r, opt.q, opt.kind):
        return BoundarySolution(qd, qd, METHOD_SINGLE, is_refined=False, is_valid=True)

    if not refine:
        return BoundarySolution(qd, qd, METHOD_QD, is_refined=False,
                                is_valid=_is_valid(qd, opt))

    kim = KimSolver(opt, max(collocation_points, 2)).solve(qd.upper, qd.lower)
    final = ExerciseBoundaryPair(float(kim.upper[-1]), float(kim.lower[-1]))
    return BoundarySolution(
        boundaries=final,
        qd_boundaries=qd,
        method=METHOD_REFINED,
        is_refined=True,
        is_valid=_is_valid(final, opt),
        iterations=kim.iterations,
        crossing_time=kim.crossing_time,
        times=tuple(float(t) for t in kim.times),
        upper_path=tuple(float(u) for u in kim.upper),
        lower_path=tuple(float(v) for v in kim.lower),
    )
