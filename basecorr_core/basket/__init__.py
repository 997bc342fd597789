"""
Basket collaborators: protocols of the external pricers and the tranche record.
"""

from basecorr_core.basket.protocols import (
    BasketPricer,
    DiscountCurve,
    StrikeEvaluator,
    SurvivalCurve,
    TranchePricer,
)
from basecorr_core.basket.tranche import Tranche, basket_factor, basket_maturity

__all__ = [
    "BasketPricer",
    "DiscountCurve",
    "StrikeEvaluator",
    "SurvivalCurve",
    "TranchePricer",
    "Tranche",
    "basket_factor",
    "basket_maturity",
]
