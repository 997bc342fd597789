"""
Numerical utilities for the base correlation engine.

Provides:
- Interpolation policies on strike and time axes
- Finite-difference stencils with domain boundary shifting
- Bracketed Brent root finding
"""

from basecorr_core.numerics.differentiation import (
    DEFAULT_STEP,
    Derivatives,
    FiniteDifference,
    factor_to_correlation,
)
from basecorr_core.numerics.interp import ExtrapMethod, Interp, InterpMethod, Interpolator
from basecorr_core.numerics.solver import SolverError, brent_solve, search_and_solve

__all__ = [
    # Interpolation
    "Interp",
    "InterpMethod",
    "ExtrapMethod",
    "Interpolator",
    # Differentiation
    "DEFAULT_STEP",
    "Derivatives",
    "FiniteDifference",
    "factor_to_correlation",
    # Solver
    "SolverError",
    "brent_solve",
    "search_and_solve",
]
