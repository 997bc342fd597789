"""
Derivatives of strikes with respect to the curve data of every name.

Each strike method maps a detachment to a ratio of basket quantities. The
numerator and denominator derivatives come from the basket pricer and the
tranche pricer, which must have saved their semi-analytic sensitivities at
the required loss levels beforehand.
"""

from typing import TYPE_CHECKING

from basecorr_core._types import SensitivityBuffer
from basecorr_core.basket.protocols import BasketPricer, DiscountCurve, TranchePricer
from basecorr_core.basket.tranche import Tranche
from basecorr_core.exceptions import ConfigurationError, UnsupportedMethodError
from basecorr_core.sensitivity.algebra import ratio_derivatives
from basecorr_core.sensitivity.layout import SensitivityLayout
from basecorr_core.strike.evaluators import basket_loss_pv
from basecorr_core.strike.methods import (
    PROTECTION_METHODS,
    PROTECTION_PV_METHODS,
    SPREAD_METHODS,
    StrikeMethod,
    adjusted_detachment,
    is_forward,
)

if TYPE_CHECKING:
    from basecorr_core.surface.base_correlation import BaseCorrelation

_EXPECTED_LOSS_METHODS = frozenset(
    {
        StrikeMethod.EXPECTED_LOSS,
        StrikeMethod.EXPECTED_LOSS_FORWARD,
        StrikeMethod.EXPECTED_LOSS_RATIO,
        StrikeMethod.EXPECTED_LOSS_RATIO_FORWARD,
        StrikeMethod.EQUITY_PROTECTION,
        StrikeMethod.EQUITY_PROTECTION_FORWARD,
        StrikeMethod.PROTECTION,
        StrikeMethod.PROTECTION_FORWARD,
    }
)
_PV_METHODS = PROTECTION_PV_METHODS | {
    StrikeMethod.EXPECTED_LOSS_PV,
    StrikeMethod.EXPECTED_LOSS_PV_FORWARD,
}


def _surviving_fraction(basket: BasketPricer) -> float:
    return (basket.total_principal - basket.defaulted_principal) / basket.total_principal


def _protection_ders(
    pricer: TranchePricer, layout: SensitivityLayout, scale: float
) -> SensitivityBuffer:
    """Derivatives of the protection value ``-protection_pv() * scale``."""
    ders = layout.zeros()
    pricer.protection_pv_derivatives(ders)
    ders *= -scale
    return ders


def expected_loss_derivatives(
    method: StrikeMethod,
    detachment: float,
    basket: BasketPricer,
    layout: SensitivityLayout,
    out: SensitivityBuffer,
) -> float:
    """
    Strike derivatives of the expected-loss based methods.

    Returns
    -------
    float
        The strike
    """
    d = detachment
    not_adj = 1.0
    if is_forward(method):
        d = basket.adjust_tranche_level(detachment)
        not_adj = _surviving_fraction(basket)

    num_ders = den_ders = None
    loss_t = 0.0
    if method in PROTECTION_METHODS:
        loss_t = basket.accumulated_loss(basket.maturity, 0.0, detachment)
        if is_forward(method):
            loss_t -= basket.previous_loss
        num_ders = layout.zeros()
        basket.accumulated_loss_derivatives(basket.maturity, 0.0, detachment, num_ders)

    loss = 0.0
    if method in (
        StrikeMethod.EXPECTED_LOSS,
        StrikeMethod.EXPECTED_LOSS_FORWARD,
        StrikeMethod.EXPECTED_LOSS_RATIO,
        StrikeMethod.EXPECTED_LOSS_RATIO_FORWARD,
    ):
        loss = basket.basket_loss(basket.settle, basket.maturity)
        if method == StrikeMethod.EXPECTED_LOSS_RATIO:
            loss += basket.previous_loss
        den_ders = layout.zeros()
        basket.accumulated_loss_derivatives(basket.maturity, 0.0, 1.0, den_ders)

    if method in (StrikeMethod.EXPECTED_LOSS, StrikeMethod.EXPECTED_LOSS_FORWARD):
        num, den = d * not_adj, loss
    elif method in (StrikeMethod.EXPECTED_LOSS_RATIO, StrikeMethod.EXPECTED_LOSS_RATIO_FORWARD):
        num, den = loss_t, loss
    elif method in (StrikeMethod.PROTECTION, StrikeMethod.PROTECTION_FORWARD):
        num, den = loss_t, not_adj
    else:
        num, den = loss_t, d * not_adj

    ratio_derivatives(layout, num, den, num_ders, den_ders, out)
    return num / den


def protection_pv_derivatives(
    method: StrikeMethod,
    tranche: Tranche,
    basket: BasketPricer,
    discount_curve: DiscountCurve | None,
    layout: SensitivityLayout,
    out: SensitivityBuffer,
) -> float:
    """
    Strike derivatives of the protection PV based methods.

    Pricer derivatives are taken per unit of notional and rescaled here.
    """
    if discount_curve is None:
        raise ConfigurationError(
            f"Must specify discount curve for the {method.value} strike method derivatives"
        )
    tranche = tranche.replace(attachment=0.0)
    if method == StrikeMethod.EXPECTED_LOSS_PV_RATIO_FORWARD:
        if basket.defaulted_principal != 0.0:
            tranche = tranche.replace(detachment=adjusted_detachment(basket, tranche.detachment))
        method = StrikeMethod.EXPECTED_LOSS_PV_RATIO

    notional = basket.total_principal
    d = tranche.detachment
    not_adj = 1.0
    if method in (
        StrikeMethod.EQUITY_PROTECTION_PV_FORWARD,
        StrikeMethod.EXPECTED_LOSS_PV_FORWARD,
        StrikeMethod.PROTECTION_PV_FORWARD,
    ):
        d = adjusted_detachment(basket, d)
        not_adj = _surviving_fraction(basket)

    full = tranche.replace(detachment=1.0)
    if method in (StrikeMethod.EXPECTED_LOSS_PV, StrikeMethod.EXPECTED_LOSS_PV_FORWARD):
        den = basket.basket_loss_pv(basket.settle, basket.maturity, discount_curve)
        den_ders = _protection_ders(basket.create_pricer(full, discount_curve, 1.0), layout, 1.0)
        num = d * not_adj
        ratio_derivatives(layout, num, den, None, den_ders, out)
        return abs(num / den)

    den_ders = None
    if method == StrikeMethod.EXPECTED_LOSS_PV_RATIO:
        den = basket_loss_pv(tranche, basket, discount_curve, notional)
        den_ders = _protection_ders(
            basket.create_pricer(full, discount_curve, notional), layout, notional
        )
    elif method in (StrikeMethod.EQUITY_PROTECTION_PV, StrikeMethod.EQUITY_PROTECTION_PV_FORWARD):
        den = notional * not_adj * d
    else:
        den = notional * not_adj

    scale = notional * tranche.detachment
    pricer = basket.create_pricer(tranche, discount_curve, scale)
    num = -pricer.protection_pv()
    num_ders = _protection_ders(pricer, layout, scale)
    ratio_derivatives(layout, num, den, num_ders, den_ders, out)
    return abs(num / den)


def spread_derivatives(
    method: StrikeMethod,
    tranche: Tranche,
    basket: BasketPricer,
    discount_curve: DiscountCurve | None,
    layout: SensitivityLayout,
    out: SensitivityBuffer,
) -> float:
    """Derivatives of the break-even premium of the equity or senior tranche."""
    if method == StrikeMethod.SENIOR_SPREAD:
        tranche = tranche.replace(attachment=tranche.detachment, detachment=1.0, fee=0.0)
    else:
        tranche = tranche.replace(attachment=0.0, fee=0.0)
    pricer = basket.create_pricer(tranche, discount_curve, 1.0)
    num = -pricer.protection_pv()
    den = pricer.flat_fee_pv(pricer.settle, 1.0)
    num_ders = _protection_ders(pricer, layout, 1.0)
    den_ders = layout.zeros()
    pricer.fee_pv_derivatives(pricer.settle, 1.0, den_ders)
    ratio_derivatives(layout, num, den, num_ders, den_ders, out)
    return num / den


def strike_derivatives(
    base_correlation: "BaseCorrelation",
    basket: BasketPricer,
    discount_curve: DiscountCurve | None,
    tranche: Tranche,
    out: SensitivityBuffer | None = None,
) -> tuple[float, SensitivityBuffer]:
    """
    Strike of the detachment and its packed derivatives.

    Parameters
    ----------
    base_correlation : BaseCorrelation
        Curve whose strike method is differentiated
    basket : BasketPricer
        Basket with saved semi-analytic sensitivities
    discount_curve : DiscountCurve | None
        Discounting for the PV based methods
    tranche : Tranche
        Tranche whose detachment is mapped
    out : SensitivityBuffer | None
        Buffer to fill; allocated when None

    Returns
    -------
    tuple[float, SensitivityBuffer]
        ``(strike, derivatives)``

    Raises
    ------
    UnsupportedMethodError
        For the Probability and UserDefined methods
    """
    layout = SensitivityLayout.from_basket(basket)
    out = layout.zeros() if out is None else out
    layout.check(out)
    method = base_correlation.strike_method
    d = tranche.detachment

    if method == StrikeMethod.UNSCALED:
        out[:] = 0.0
        return d, out
    if method == StrikeMethod.UNSCALED_FORWARD:
        out[:] = 0.0
        return adjusted_detachment(basket, d), out
    if method in _PV_METHODS:
        return protection_pv_derivatives(method, tranche, basket, discount_curve, layout, out), out
    if method in _EXPECTED_LOSS_METHODS:
        return expected_loss_derivatives(method, d, basket, layout, out), out
    if method in SPREAD_METHODS:
        return spread_derivatives(method, tranche, basket, discount_curve, layout, out), out
    raise UnsupportedMethodError(
        f"Derivatives of strike method {method.value} not supported", method
    )
