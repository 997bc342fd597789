"""
Common type aliases used throughout the base correlation engine.

This module defines type aliases for numpy arrays and scalar quantities
to improve code readability and enable better static type checking.
"""

from typing import TypeAlias

import numpy as np
import numpy.typing as npt

# Array type aliases
FloatArray: TypeAlias = npt.NDArray[np.float64]
"""1D or 2D array of 64-bit floats."""

IntArray: TypeAlias = npt.NDArray[np.int64]
"""1D or 2D array of 64-bit integers."""

SensitivityBuffer: TypeAlias = npt.NDArray[np.float64]
"""
1D packed sensitivity array.

For each name with K curve tenors the buffer holds K deltas, K(K+1)/2
gammas, one value-on-default entry and one recovery entry.
"""

# Scalar type aliases
Year: TypeAlias = float
"""Time measured in years (e.g., 5.0 for a five year maturity)."""

Strike: TypeAlias = float
"""Strike coordinate of a base correlation curve."""

Notional: TypeAlias = float
"""Notional amount in base currency units."""
