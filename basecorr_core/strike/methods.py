"""
Strike methods and the scalings they apply to tranche detachments.

A strike method decides which quantity of a zero-attachment tranche is used
as the x-axis of a base correlation curve. Some methods are a plain
rescaling of the detachment; the ratio methods depend on the correlation
itself and need a fixed-point solve (see ``strike.evaluators``).
"""

import math
from enum import Enum
from typing import Sequence

from basecorr_core.basket.protocols import BasketPricer, DiscountCurve, StrikeEvaluator, TranchePricer
from basecorr_core.exceptions import ConfigurationError, UnsupportedMethodError


class StrikeMethod(Enum):
    """Mapping from a tranche detachment to a strike."""

    UNSCALED = "Unscaled"
    UNSCALED_FORWARD = "UnscaledForward"
    EXPECTED_LOSS = "ExpectedLoss"
    EXPECTED_LOSS_FORWARD = "ExpectedLossForward"
    EXPECTED_LOSS_PV = "ExpectedLossPV"
    EXPECTED_LOSS_PV_FORWARD = "ExpectedLossPVForward"
    EXPECTED_LOSS_RATIO = "ExpectedLossRatio"
    EXPECTED_LOSS_RATIO_FORWARD = "ExpectedLossRatioForward"
    EXPECTED_LOSS_PV_RATIO = "ExpectedLossPvRatio"
    EXPECTED_LOSS_PV_RATIO_FORWARD = "ExpectedLossPvRatioForward"
    PROTECTION = "Protection"
    PROTECTION_FORWARD = "ProtectionForward"
    PROTECTION_PV = "ProtectionPv"
    PROTECTION_PV_FORWARD = "ProtectionPvForward"
    EQUITY_PROTECTION = "EquityProtection"
    EQUITY_PROTECTION_FORWARD = "EquityProtectionForward"
    EQUITY_PROTECTION_PV = "EquityProtectionPv"
    EQUITY_PROTECTION_PV_FORWARD = "EquityProtectionPvForward"
    PROBABILITY = "Probability"
    EQUITY_SPREAD = "EquitySpread"
    SENIOR_SPREAD = "SeniorSpread"
    USER_DEFINED = "UserDefined"


class BaseCorrelationMethod(Enum):
    """Calibration method of a base correlation curve."""

    PROTECTION_MATCHING = "ProtectionMatching"
    ARBITRAGE_FREE = "ArbitrageFree"


# Strike is a scaled detachment; no solve needed
SCALED_METHODS = frozenset(
    {StrikeMethod.UNSCALED, StrikeMethod.EXPECTED_LOSS, StrikeMethod.EXPECTED_LOSS_PV}
)
SCALED_FORWARD_METHODS = frozenset(
    {
        StrikeMethod.UNSCALED_FORWARD,
        StrikeMethod.EXPECTED_LOSS_FORWARD,
        StrikeMethod.EXPECTED_LOSS_PV_FORWARD,
    }
)
PROTECTION_METHODS = frozenset(
    {
        StrikeMethod.EXPECTED_LOSS_RATIO,
        StrikeMethod.EXPECTED_LOSS_RATIO_FORWARD,
        StrikeMethod.EQUITY_PROTECTION,
        StrikeMethod.EQUITY_PROTECTION_FORWARD,
        StrikeMethod.PROTECTION,
        StrikeMethod.PROTECTION_FORWARD,
    }
)
PROTECTION_PV_METHODS = frozenset(
    {
        StrikeMethod.EXPECTED_LOSS_PV_RATIO,
        StrikeMethod.EXPECTED_LOSS_PV_RATIO_FORWARD,
        StrikeMethod.EQUITY_PROTECTION_PV,
        StrikeMethod.EQUITY_PROTECTION_PV_FORWARD,
        StrikeMethod.PROTECTION_PV,
        StrikeMethod.PROTECTION_PV_FORWARD,
    }
)
SPREAD_METHODS = frozenset({StrikeMethod.EQUITY_SPREAD, StrikeMethod.SENIOR_SPREAD})

# Methods whose strike depends on the correlation
SOLVED_METHODS = (
    PROTECTION_METHODS
    | PROTECTION_PV_METHODS
    | SPREAD_METHODS
    | {StrikeMethod.PROBABILITY, StrikeMethod.USER_DEFINED}
)

# Threshold above which a detachment is treated as the whole basket
FULL_DETACHMENT = 0.9999999999


def is_forward(method: StrikeMethod) -> bool:
    """True for strike methods that exclude losses already incurred."""
    return method.value.endswith("Forward")


def is_spread(method: StrikeMethod) -> bool:
    return method in SPREAD_METHODS


def detachment_scaling_factor(
    method: StrikeMethod,
    basket: BasketPricer,
    discount_curve: DiscountCurve | None,
) -> float:
    """
    Factor multiplying the detachment for the scaled strike methods.

    Parameters
    ----------
    method : StrikeMethod
        Strike method
    basket : BasketPricer
        Basket whose expected loss normalises the detachment
    discount_curve : DiscountCurve | None
        Required for the ExpectedLossPV methods

    Returns
    -------
    float
        ``1 / expected loss`` (or its PV) for the expected-loss methods, 1.0 otherwise

    Raises
    ------
    ConfigurationError
        If an ExpectedLossPV method is used without a discount curve
    """
    if method in (StrikeMethod.EXPECTED_LOSS, StrikeMethod.EXPECTED_LOSS_FORWARD):
        return 1.0 / basket.basket_loss(basket.settle, basket.maturity)
    if method in (StrikeMethod.EXPECTED_LOSS_PV, StrikeMethod.EXPECTED_LOSS_PV_FORWARD):
        if discount_curve is None:
            raise ConfigurationError(
                "Must specify discount curve if using the ExpectedLossPV strike method"
            )
        return 1.0 / basket.basket_loss_pv(basket.settle, basket.maturity, discount_curve)
    if not isinstance(method, StrikeMethod):
        raise UnsupportedMethodError(f"Unsupported strike calculation method {method}", method)
    return 1.0


def forward_multiplier(method: StrikeMethod, basket: BasketPricer) -> float:
    """Surviving fraction of the basket, or 1.0 for UnscaledForward."""
    if method == StrikeMethod.UNSCALED_FORWARD:
        return 1.0
    return (basket.total_principal - basket.defaulted_principal) / basket.total_principal


def adjusted_detachment(basket: BasketPricer, detachment: float) -> float:
    """Detachment rescaled to the surviving portfolio."""
    _, d, _ = basket.adjust_tranche_levels(0.0, detachment)
    return d


def check_tolerance(
    tolerance_f: float,
    tolerance_x: float,
    basket: BasketPricer,
) -> tuple[float, float]:
    """
    Fill in non-positive solver tolerances from the basket size.

    Returns
    -------
    tuple[float, float]
        ``(tolerance_f, tolerance_x)``
    """
    if tolerance_f <= 0:
        tolerance_f = min(1.0 / abs(basket.total_principal), 1e-6)
    if tolerance_x <= 0:
        tolerance_x = min(100 * tolerance_f, 1e-4)
    return tolerance_f, tolerance_x


def strike(
    pricer: TranchePricer | None,
    method: StrikeMethod,
    evaluator: StrikeEvaluator | None,
    correlation: float,
) -> float:
    """
    Strike of the pricer's tranche detachment at a given base correlation.

    Parameters
    ----------
    pricer : TranchePricer | None
        Pricer of the tranche; None gives a zero strike
    method : StrikeMethod
        Strike method
    evaluator : StrikeEvaluator | None
        Required for ``StrikeMethod.USER_DEFINED``
    correlation : float
        Base correlation at the detachment

    Returns
    -------
    float
        Strike; NaN if ``correlation`` is NaN

    Example
    -------
    >>> strike(pricer, StrikeMethod.EXPECTED_LOSS_RATIO, None, 0.25)
    """
    # imported here, evaluators depends on this module
    from basecorr_core.strike.evaluators import (
        ProbabilityFn,
        ProtectionFn,
        ProtectionPvFn,
        SpreadFn,
        UserFn,
    )

    if pricer is None:
        return 0.0
    if math.isnan(correlation):
        return math.nan

    tranche = pricer.tranche
    basket = pricer.basket
    d = tranche.detachment
    dc = pricer.discount_curve
    factor = math.sqrt(correlation)

    if method in (StrikeMethod.EXPECTED_LOSS, StrikeMethod.EXPECTED_LOSS_PV):
        return d * detachment_scaling_factor(method, basket, dc)
    if method in SCALED_FORWARD_METHODS:
        scaling = detachment_scaling_factor(method, basket, dc)
        return adjusted_detachment(basket, d) * scaling * forward_multiplier(method, basket)
    if method in PROTECTION_METHODS:
        if d <= 1e-8 and method not in (
            StrikeMethod.EQUITY_PROTECTION,
            StrikeMethod.EQUITY_PROTECTION_FORWARD,
        ):
            return 0.0
        return ProtectionFn(method, d, basket).strike(factor)
    if method in PROTECTION_PV_METHODS:
        if d <= 1e-8 and method != StrikeMethod.EQUITY_PROTECTION_PV:
            return 0.0
        return ProtectionPvFn(method, tranche, basket, dc).strike(factor)
    if method == StrikeMethod.PROBABILITY:
        if d <= 1e-8:
            return 0.0
        return ProbabilityFn(d, basket).strike(factor)
    if method in SPREAD_METHODS:
        fn = SpreadFn(tranche, basket, dc, senior=method == StrikeMethod.SENIOR_SPREAD)
        return 1.0 - fn.strike(factor)
    if method == StrikeMethod.USER_DEFINED:
        if evaluator is None:
            raise ConfigurationError("strike evaluator cannot be None with UserDefined mapping method")
        if tranche.attachment != 0:
            raise ConfigurationError("Tranche attachment must be zero to calculate strike")
        evaluator.set_pricer(pricer)
        return UserFn(evaluator).strike(factor)
    return d


def strikes(
    pricers: Sequence[TranchePricer],
    method: StrikeMethod,
    evaluator: StrikeEvaluator | None,
    correlations: Sequence[float] | None,
) -> list[float] | None:
    """
    Strikes of a ladder of tranches.

    Without ``correlations`` the strike functions are evaluated at each
    basket's current factor.
    """
    from basecorr_core.strike.evaluators import make_strike_fn

    if not pricers:
        return None
    if correlations is not None and len(correlations) == 0:
        correlations = None
    if correlations is not None and len(correlations) != len(pricers):
        raise ConfigurationError(
            f"Pricers (Length={len(pricers)}) and base correlations "
            f"(Length={len(correlations)}) not match"
        )

    if method in SCALED_METHODS | SCALED_FORWARD_METHODS:
        return [
            strike(p, method, evaluator, 0.0) for p in pricers
        ]

    out = []
    for i, p in enumerate(pricers):
        if correlations is not None:
            out.append(strike(p, method, evaluator, correlations[i]))
            continue
        d = p.tranche.detachment
        if d <= 1e-8 and method not in (
            StrikeMethod.EQUITY_PROTECTION,
            StrikeMethod.EQUITY_PROTECTION_FORWARD,
            StrikeMethod.EQUITY_PROTECTION_PV,
        ) and method not in SPREAD_METHODS:
            out.append(0.0)
            continue
        if method == StrikeMethod.USER_DEFINED:
            if evaluator is None:
                raise ConfigurationError(
                    "strike evaluator cannot be None with UserDefined mapping method"
                )
            evaluator.set_pricer(p)
        fn = make_strike_fn(
            method, p.tranche, p.basket, p.discount_curve, evaluator
        )
        s = fn.strike()
        out.append(1.0 - s if method in SPREAD_METHODS else s)
    return out
