# amerpricer: American options under any rate sign
# Public API

# Data model and errors
from .core import (
    OptionSpec, CALL, PUT, STANDARD, DOUBLE_BOUNDARY,
    ExerciseBoundaryPair, PricingResult,
)
from .exceptions import AmerPricerError, ValidationError, BoundaryOrderingError, PricingError
from .config import FDParams, SpectralScheme, SPECTRAL_SCHEMES

# European reference
from .black_scholes import price as bs_price, greeks as bs_greeks

# Roots and regimes
from .roots import characteristic_roots, qdplus_roots, super_halley, CharacteristicRoots
from .regime import classify_regime, is_double_boundary, exercise_structure, validate_rates

# Exercise boundaries
from .qdplus import QDPlusApproximation, qdplus_boundaries
from .kim import KimSolver
from .boundary import BoundarySolution, solve_boundaries

# Pricing engines
from .engine import AmericanEngine, numerical_greeks
from .pde import FDEngine, fd_price, fd_greeks
from .spectral import SpectralEngine

# Batch Greeks
from .batch import chain_greeks, chain_prices, chain_deltas

# Model validation
from .validation import cross_validate, convergence_analysis, stress_test, check_invariants

__all__ = [
    # Data model
    "OptionSpec", "CALL", "PUT", "STANDARD", "DOUBLE_BOUNDARY",
    "ExerciseBoundaryPair", "PricingResult",
    "AmerPricerError", "ValidationError", "BoundaryOrderingError", "PricingError",
    "FDParams", "SpectralScheme", "SPECTRAL_SCHEMES",
    # European
    "bs_price", "bs_greeks",
    # Roots and regimes
    "characteristic_roots", "qdplus_roots", "super_halley", "CharacteristicRoots",
    "classify_regime", "is_double_boundary", "exercise_structure", "validate_rates",
    # Boundaries
    "QDPlusApproximation", "qdplus_boundaries", "KimSolver",
    "BoundarySolution", "solve_boundaries",
    # Engines
    "AmericanEngine", "numerical_greeks",
    "FDEngine", "fd_price", "fd_greeks", "SpectralEngine",
    # Batch
    "chain_greeks", "chain_prices", "chain_deltas",
    # Validation
    "cross_validate", "convergence_analysis", "stress_test", "check_invariants",
]

__version__ = "0.1.0"
