"""
Correlation representations.

Provides:
- Single-factor, multi-factor and general matrix correlations
- Correlation term structures over tenor dates
- Conversions and factor fitting between representations
"""

from basecorr_core.correlation.base import Correlation, bumped_value
from basecorr_core.correlation.factor import (
    MAX_FACTORS,
    FactorCorrelation,
    GeneralCorrelation,
    SingleFactorCorrelation,
)
from basecorr_core.correlation.factory import CorrelationFactory, fit_factors
from basecorr_core.correlation.term_struct import CorrelationTermStruct

__all__ = [
    "Correlation",
    "bumped_value",
    "MAX_FACTORS",
    "SingleFactorCorrelation",
    "FactorCorrelation",
    "GeneralCorrelation",
    "CorrelationTermStruct",
    "CorrelationFactory",
    "fit_factors",
]
