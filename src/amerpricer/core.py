from __future__ import annotations

import math
from dataclasses import dataclass, asdict

from .config import MAX_ABS_RATE
from .exceptions import ValidationError

CALL = "call"
PUT = "put"

STANDARD = "standard"
DOUBLE_BOUNDARY = "double_boundary"


def validate_rates(r: float, q: float) -> None:
    """Reject NaN / infinite rates and anything beyond +-50%."""
    for name, value in (("r", r), ("q", q)):
        if not math.isfinite(value):
            raise ValidationError(f"{name} must be finite, got {value}")
        if abs(value) > MAX_ABS_RATE:
            raise ValidationError(
                f"|{name}| must not exceed {MAX_ABS_RATE:.0%}, got {value}"
            )


def check_kind(kind: str) -> str:
    if kind not in (CALL, PUT):
        raise ValidationError(f"kind must be 'call' or 'put', got {kind!r}")
    return kind


def _check_positive(name: str, value: float) -> None:
    if not (value > 0) or not math.isfinite(value):
        raise ValidationError(f"{name} must be positive and finite, got {value}")


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class OptionSpec:
    """American option contract plus the market state it is priced in.

    Rates and dividend yield may be negative.  Everything is checked once
    here; downstream solvers trust the values.
    """
    S0: float
    K: float
    T: float          # years
    r: float          # continuous risk-free, any sign
    sigma: float
    q: float = 0.0    # continuous dividend / funding yield, any sign
    kind: str = PUT

    def __post_init__(self):
        _check_positive("S0", self.S0)
        _check_positive("K", self.K)
        _check_positive("T", self.T)
        _check_positive("sigma", self.sigma)
        validate_rates(self.r, self.q)
        check_kind(self.kind)

    @property
    def is_call(self) -> bool:
        return self.kind == CALL

    def intrinsic(self) -> float:
        if self.kind == CALL:
            return max(self.S0 - self.K, 0.0)
        return max(self.K - self.S0, 0.0)


# ---------------------------------------------------------------------------
# Outputs
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class ExerciseBoundaryPair:
    """Upper / lower early-exercise boundary.

    A Standard-regime put carries ``upper = +inf`` and its single boundary
    in ``lower``; a Standard-regime call carries ``lower = -inf`` and its
    single boundary in ``upper``.
    """
    upper: float
    lower: float

    @property
    def is_double(self) -> bool:
        return math.isfinite(self.upper) and math.isfinite(self.lower)

    @property
    def width(self) -> float:
        if not self.is_double:
            return math.inf
        return self.upper - self.lower

    def contains(self, S: float) -> bool:
        """Whether spot ``S`` lies in the early-exercise region."""
        if self.is_double:
            return self.lower <= S <= self.upper
        if self.lower == -math.inf:
            return S >= self.upper
        return S <= self.lower

    def as_tuple(self) -> tuple[float, float]:
        return (self.upper, self.lower)


@dataclass(frozen=True)
class PricingResult:
    price: float
    delta: float
    gamma: float
    vega: float
    theta: float      # dV/dt per year
    rho: float = math.nan

    def as_dict(self) -> dict[str, float]:
        return asdict(self)
