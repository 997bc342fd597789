"""
Strike methods, strike functions and the strike fixed-point solve.
"""

from basecorr_core.strike.evaluators import (
    CorrelationEvaluator,
    ProbabilityFn,
    ProtectionFn,
    ProtectionPvFn,
    SpreadFn,
    StrikeFn,
    UserFn,
    basket_loss_pv,
    make_strike_fn,
)
from basecorr_core.strike.methods import (
    BaseCorrelationMethod,
    StrikeMethod,
    adjusted_detachment,
    check_tolerance,
    detachment_scaling_factor,
    forward_multiplier,
    is_forward,
    is_spread,
    strike,
    strikes,
)

__all__ = [
    "BaseCorrelationMethod",
    "StrikeMethod",
    "adjusted_detachment",
    "check_tolerance",
    "detachment_scaling_factor",
    "forward_multiplier",
    "is_forward",
    "is_spread",
    "strike",
    "strikes",
    "CorrelationEvaluator",
    "StrikeFn",
    "UserFn",
    "ProtectionFn",
    "ProtectionPvFn",
    "ProbabilityFn",
    "SpreadFn",
    "basket_loss_pv",
    "make_strike_fn",
]
