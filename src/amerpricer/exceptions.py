"""Exception hierarchy.

``ValidationError`` means the caller passed something unusable and can fix
it.  ``BoundaryOrderingError`` means an exercise-boundary invariant broke
after clamping, which points at a regime or branch defect in the engine.
``PricingError`` means an engine produced a NaN or infinite value.
Convergence shortfalls are not exceptions: solvers fall back to their seed.
"""


class AmerPricerError(Exception):
    """Base class for all errors raised by this package."""


class ValidationError(AmerPricerError, ValueError):
    """Rejected input: non-positive spot/strike/maturity/vol, NaN rates, ..."""


class BoundaryOrderingError(AmerPricerError, RuntimeError):
    """Upper and lower exercise boundaries violate their ordering."""


class PricingError(AmerPricerError, ArithmeticError):
    """An engine returned a non-finite price."""
