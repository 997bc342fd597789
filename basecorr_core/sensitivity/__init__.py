"""
Semi-analytic sensitivities of base correlations and tranche values.

Provides:
- Packed per-name layout with a structured record view
- Product and ratio derivative algebra on packed buffers
- Strike derivatives per strike method
- Correlation derivatives through the implicit strike equation
"""

from basecorr_core.sensitivity.algebra import product_derivatives, ratio_derivatives
from basecorr_core.sensitivity.engine import (
    compose_with_pv_ders,
    correlation_derivatives,
    correlation_strike_derivative,
    strike_correlation_derivative,
    tranche_sensitivities,
)
from basecorr_core.sensitivity.layout import (
    NameBlock,
    NameSensitivity,
    SensitivityLayout,
    block_size,
)
from basecorr_core.sensitivity.strike_derivatives import (
    expected_loss_derivatives,
    protection_pv_derivatives,
    spread_derivatives,
    strike_derivatives,
)

__all__ = [
    # Layout
    "NameBlock",
    "NameSensitivity",
    "SensitivityLayout",
    "block_size",
    # Algebra
    "product_derivatives",
    "ratio_derivatives",
    # Strike derivatives
    "expected_loss_derivatives",
    "protection_pv_derivatives",
    "spread_derivatives",
    "strike_derivatives",
    # Engine
    "correlation_strike_derivative",
    "strike_correlation_derivative",
    "correlation_derivatives",
    "compose_with_pv_ders",
    "tranche_sensitivities",
]
