"""Rate-regime classification.

Under negative rates an American put can have two exercise boundaries at
once.  The decision table is:

======  =====================  ================
kind    condition              regime
======  =====================  ================
put     ``q < r < 0``          double boundary
call    ``0 < r < q``          double boundary
either  anything else          standard
======  =====================  ================

:func:`exercise_structure` answers the related physical question the
pricing engines need: after mapping a call onto a put through put-call
symmetry, is the exercise region a single interval ``(0, B]``, a band
``[l, u]``, or empty?
"""

from __future__ import annotations

from typing import Literal

from .config import HYSTERESIS_EPS
from .core import CALL, PUT, STANDARD, DOUBLE_BOUNDARY, check_kind, validate_rates

__all__ = [
    "classify_regime",
    "validate_rates",
    "is_double_boundary",
    "exercise_structure",
]


def classify_regime(r: float, q: float, kind: str) -> str:
    """Return ``STANDARD`` or ``DOUBLE_BOUNDARY`` for ``(r, q, kind)``.

    Raises
    ------
    ValidationError
        If ``r`` or ``q`` is NaN, infinite, or larger than 50% in magnitude,
        or if ``kind`` is not ``"call"`` / ``"put"``.
    """
    validate_rates(r, q)
    check_kind(kind)
    if kind == PUT and q < r < 0.0:
        return DOUBLE_BOUNDARY
    if kind == CALL and 0.0 < r < q:
        return DOUBLE_BOUNDARY
    return STANDARD


def is_double_boundary(r: float, q: float, kind: str, *, band: float = HYSTERESIS_EPS) -> bool:
    """Double-boundary test that requires every inequality to clear ``band``.

    Keeps the boundary solver from flipping between code paths while rates
    hover within a few basis points of a regime edge.
    """
    validate_rates(r, q)
    if check_kind(kind) == PUT:
        return r < -band and q < r - band
    return r > band and r < q - band


def exercise_structure(r: float, q: float, kind: str) -> Literal["single", "double", "none"]:
    """Shape of the early-exercise region of the put-equivalent contract.

    A call with ``(r, q)`` is a put with ``(q, r)`` after swapping spot and
    strike, so calls are classified on the swapped rates.
    """
    validate_rates(r, q)
    if check_kind(kind) == CALL:
        r, q = q, r
    if r > 0.0:
        return "single"
    if q < r < 0.0:
        return "double"
    return "none"
