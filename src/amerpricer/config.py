"""Numerical constants and engine parameter sets.

Everything here is immutable.  Engines receive a parameter object
(:class:`FDParams`, :class:`SpectralScheme`) rather than reading module
globals, so two calls with different settings never interfere.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Final, Mapping

__all__ = [
    "MAX_ABS_RATE",
    "MIN_VOLATILITY",
    "MAX_VOLATILITY",
    "MAX_MATURITY",
    "NEAR_EXPIRY_MATURITY",
    "MIN_PRICING_MATURITY",
    "HYSTERESIS_EPS",
    "BENCHMARK_MATURITIES",
    "BENCHMARK_UPPER",
    "BENCHMARK_LOWER",
    "BENCHMARK_STRIKE",
    "REFERENCE_VOL",
    "FDParams",
    "SpectralScheme",
    "SPECTRAL_SCHEMES",
]


# ---------------------------------------------------------------------------
# Input bounds
# ---------------------------------------------------------------------------
MAX_ABS_RATE: Final = 0.5           # |r|, |q| above 50% are rejected
MIN_VOLATILITY: Final = 0.001
MAX_VOLATILITY: Final = 5.0
MAX_MATURITY: Final = 30.0          # years
NEAR_EXPIRY_MATURITY: Final = 3.0 / 252.0
MIN_PRICING_MATURITY: Final = 1.0 / 365.0
HYSTERESIS_EPS: Final = 0.0005      # 5 bp band around the regime edges


# ---------------------------------------------------------------------------
# Root finding
# ---------------------------------------------------------------------------
ROOT_TOL: Final = 1e-8
ROOT_EPS: Final = 1e-12
ROOT_MAX_ITER: Final = 100


# ---------------------------------------------------------------------------
# QD+ calibration
# Healy (2021) Table 2: r = -0.5%, q = -1%, sigma = 8%, K = 100.
# ---------------------------------------------------------------------------
BENCHMARK_MATURITIES: Final = (1.0, 5.0, 10.0, 15.0)
BENCHMARK_UPPER: Final = (73.5, 71.6, 69.62, 68.0)
BENCHMARK_LOWER: Final = (63.5, 61.6, 58.72, 57.0)
BENCHMARK_STRIKE: Final = 100.0
REFERENCE_VOL: Final = 0.08
VOL_ADJUST_SLOPE: Final = 0.03      # fraction of K per unit of sigma/REFERENCE_VOL

SEED_NEAR_STRIKE: Final = 0.05
SEED_SHORT_MATURITY: Final = 3.0
SEED_MAX_REL_DEV: Final = (0.10, 0.15)   # (T < 3, T >= 3)
SEED_MAX_ABS_DEV: Final = (5.0, 8.0)

C0_CLAMP: Final = 10.0
SEARCH_LOW: Final = 0.01
SEARCH_HIGH: Final = 3.0

# Single boundary: bracket scan from the short-maturity cap down to half
# the perpetual boundary.
SINGLE_SCAN_POINTS: Final = 64
SINGLE_SCAN_FLOOR: Final = 0.5


# ---------------------------------------------------------------------------
# Kim / FP-B' refinement
# ---------------------------------------------------------------------------
KIM_TOL: Final = 1e-6
KIM_MAX_ITER: Final = 100
KIM_INTEGRATION_POINTS: Final = 50
KIM_EPS: Final = 1e-10
KIM_CROSSING_DT: Final = 1e-2
KIM_MAX_STEP: Final = 0.03
KIM_UPPER_RATIO_CAP: Final = 0.80
KIM_LOWER_RATIO_CAP: Final = 0.70
KIM_UPPER_STRIKE_MARGIN: Final = 0.98
KIM_LOWER_UPPER_MARGIN: Final = 0.95
KIM_COLLOCATION_POINTS: Final = 50


# ---------------------------------------------------------------------------
# Engine parameter sets
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class FDParams:
    """Grid settings for the finite-difference engine.

    Parameters
    ----------
    N_S : int
        Number of spatial intervals.
    N_t : int
        Number of time steps.
    theta : float
        0 = explicit, 0.5 = Crank-Nicolson, 1 = implicit.
    S_max_mult : float
        Half-width of the log-spot grid as a multiple of sigma*sqrt(T).
    min_half_width : float
        Floor on the log-spot half-width, keeps low-vol grids wide enough
        to contain the exercise region.
    """
    N_S: int = 300
    N_t: int = 300
    theta: float = 0.5
    S_max_mult: float = 5.0
    min_half_width: float = 0.5

    def __post_init__(self):
        if self.N_S < 4 or self.N_t < 2:
            raise ValueError(f"grid too small: N_S={self.N_S}, N_t={self.N_t}")
        if not 0.0 <= self.theta <= 1.0:
            raise ValueError(f"theta must lie in [0, 1], got {self.theta}")


@dataclass(frozen=True)
class SpectralScheme:
    """Node and quadrature counts for one spectral accuracy tier."""
    name: str
    nodes: int
    quad_points: int
    iterations: int


SPECTRAL_SCHEMES: Final[Mapping[str, SpectralScheme]] = MappingProxyType({
    "fast": SpectralScheme("fast", nodes=8, quad_points=8, iterations=2),
    "accurate": SpectralScheme("accurate", nodes=12, quad_points=16, iterations=3),
    "high_precision": SpectralScheme("high_precision", nodes=24, quad_points=32, iterations=6),
})
