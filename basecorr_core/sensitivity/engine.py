"""
Semi-analytic derivatives of base correlations and tranche values.

The correlation at a detachment solves ``rho = C(S(rho, x))`` where ``C``
is the calibrated curve, ``S`` the strike function and ``x`` the curve
data of the basket names. Differentiating implicitly gives::

    d rho / dx = C'(S) dS/dx / (1 - C'(S) dS/drho)

The second order terms add the curvature of ``C``, the curvature of ``S``
in correlation and the mixed derivative ``d2S/dx drho``. The latter is
obtained by re-evaluating the strike derivatives at a bumped factor.
"""

import logging
import math

from basecorr_core._types import SensitivityBuffer
from basecorr_core.basket.protocols import BasketPricer, DiscountCurve
from basecorr_core.basket.tranche import Tranche, basket_factor
from basecorr_core.config.loader import get_engine_config
from basecorr_core.exceptions import ConfigurationError, UnsupportedMethodError
from basecorr_core.numerics.differentiation import FiniteDifference, factor_to_correlation
from basecorr_core.numerics.interp import ExtrapMethod
from basecorr_core.sensitivity.layout import SensitivityLayout
from basecorr_core.sensitivity.strike_derivatives import strike_derivatives
from basecorr_core.strike.methods import StrikeMethod, adjusted_detachment, is_spread

logger = logging.getLogger(__name__)


def _step() -> float:
    return get_engine_config().differentiation.step


def correlation_strike_derivative(base_correlation, strike: float) -> tuple[float, float]:
    """
    First and second derivatives of the calibrated curve at ``strike``.

    Centred differences in strike space. Non-smooth interpolation loses
    precision at the curve nodes.
    """
    interp = base_correlation.interp
    if not interp.is_smooth:
        logger.debug(
            "%s interpolation is non smooth. Precision loss might occur at "
            "base correlation curve abscissas", interp.method.value,
        )
    if interp.extrap != ExtrapMethod.SMOOTH:
        logger.debug(
            "%s extrapolation is non smooth. Precision loss might occur at "
            "base correlation curve nodes 0 and %d", interp.extrap.value,
            len(base_correlation.strikes) - 1,
        )
    ders = FiniteDifference(step=_step()).derivatives(base_correlation.get_correlation_at, strike)
    return ders.first, ders.second


def strike_correlation_derivative(
    base_correlation,
    correlation: float,
    basket: BasketPricer,
    tranche: Tranche,
    discount_curve: DiscountCurve | None,
) -> tuple[float, float, float]:
    """
    Strike at ``correlation`` and its first and second correlation derivatives.

    The strike function is differentiated in factor space with a stencil
    kept inside [0, 1], then converted to correlation space. The scaled
    methods do not depend on the correlation and return zero derivatives.
    The basket factor is left at ``sqrt(correlation)``.

    Returns
    -------
    tuple[float, float, float]
        ``(strike, dS/drho, d2S/drho2)``
    """
    method = base_correlation.strike_method
    d = tranche.detachment
    if method == StrikeMethod.UNSCALED:
        return d, 0.0, 0.0
    if method == StrikeMethod.UNSCALED_FORWARD:
        return adjusted_detachment(basket, d), 0.0, 0.0
    if method in (StrikeMethod.EXPECTED_LOSS, StrikeMethod.EXPECTED_LOSS_FORWARD):
        loss = basket.basket_loss(basket.settle, tranche.maturity)
        if method == StrikeMethod.EXPECTED_LOSS_FORWARD:
            mult = (basket.total_principal - basket.defaulted_principal) / basket.total_principal
            return adjusted_detachment(basket, d) * mult / loss, 0.0, 0.0
        return d / loss, 0.0, 0.0
    if method in (StrikeMethod.EXPECTED_LOSS_PV, StrikeMethod.EXPECTED_LOSS_PV_FORWARD):
        if discount_curve is None:
            raise ConfigurationError(
                "Must specify discount curve if using the ExpectedLossPV strike method"
            )
        loss = basket.basket_loss_pv(basket.settle, tranche.maturity, discount_curve)
        if method == StrikeMethod.EXPECTED_LOSS_PV_FORWARD:
            mult = (basket.total_principal - basket.defaulted_principal) / basket.total_principal
            return adjusted_detachment(basket, d) * mult / loss, 0.0, 0.0
        return d / loss, 0.0, 0.0
    if method in (StrikeMethod.PROBABILITY, StrikeMethod.USER_DEFINED):
        raise UnsupportedMethodError(
            f"Correlation derivatives of strike method {method.value} not supported", method
        )

    fn = base_correlation.make_strike_fn(tranche, basket, discount_curve)
    factor = math.sqrt(correlation)
    stencil = FiniteDifference(step=_step(), lower=0.0, upper=1.0)
    try:
        ders = stencil.derivatives(fn.strike, factor)
    finally:
        basket.set_factor(factor)
    fd, sd = factor_to_correlation(ders.first, ders.second, ders.center)
    s = ders.value
    if is_spread(method):
        # strike functions return 1 - premium, curves are quoted on premiums
        return 1.0 - s, -fd, -sd
    return s, fd, sd


def correlation_derivatives(
    base_correlation,
    basket: BasketPricer,
    discount_curve: DiscountCurve | None,
    tranche: Tranche,
    buffer: SensitivityBuffer,
) -> float:
    """
    Packed derivatives of the detachment correlation of ``tranche``.

    Parameters
    ----------
    base_correlation : BaseCorrelation
        Calibrated curve
    basket : BasketPricer
        Basket pricer; its factor is restored on return
    discount_curve : DiscountCurve | None
        Discounting for the PV based strike methods
    tranche : Tranche
        Tranche whose detachment correlation is differentiated
    buffer : SensitivityBuffer
        Overwritten with deltas, gammas, value on default and recovery
        derivatives of every name

    Returns
    -------
    float
        The detachment correlation
    """
    layout = SensitivityLayout.from_basket(basket)
    layout.check(buffer)
    method = base_correlation.strike_method
    if method == StrikeMethod.UNSCALED:
        buffer[:] = 0.0

    h = _step()
    d = tranche.detachment
    if method in (StrikeMethod.EXPECTED_LOSS, StrikeMethod.EXPECTED_LOSS_PV):
        levels = (0.0, 1.0)
    else:
        levels = (0.0, d, 1.0)
    basket.raw_loss_levels = (0.0, d)
    basket.reset()
    corr = base_correlation.get_correlation(tranche, basket, discount_curve, 0.0, 0.0)
    factor = math.sqrt(corr)

    with basket_factor(basket, factor):
        s, dsdf, dsdf2 = strike_correlation_derivative(
            base_correlation, corr, basket, tranche, discount_curve
        )
        dbcds, dbcds2 = correlation_strike_derivative(base_correlation, s)
        basket.compute_and_save_semi_analytic_sensitivities(levels)
        _, ders = strike_derivatives(base_correlation, basket, discount_curve, tranche)
        basket.set_factor(factor + h)
        basket.compute_and_save_semi_analytic_sensitivities(levels)
        _, ders_p = strike_derivatives(base_correlation, basket, discount_curve, tranche)

    mult_fd = dbcds / (1.0 - dbcds * dsdf)
    mult_sd = 1.0 / (1.0 - dbcds * dsdf)
    x = factor if factor > 0 else factor + h
    for b in layout:
        grad_s = ders[b.deltas]
        grad_f = grad_s * mult_fd
        mixed = 0.5 / x * (ders_p[b.deltas] - grad_s) / h
        rows, cols = b.pairs()
        buffer[b.gammas] = mult_sd * (
            dbcds2 * (dsdf * grad_f[cols] + grad_s[cols]) * (dsdf * grad_f[rows] + grad_s[rows])
            + dbcds * (
                dsdf2 * grad_f[cols] * grad_f[rows]
                + mixed[cols] * grad_f[rows]
                + mixed[rows] * grad_f[cols]
                + ders[b.gammas]
            )
        )
        buffer[b.deltas] = grad_f
        buffer[b.vod] = ders[b.vod] * mult_fd
        buffer[b.recovery] = ders[b.recovery] * mult_fd
    return corr


def compose_with_pv_ders(
    pv_ders: SensitivityBuffer,
    dv_dc: float,
    d2v_dc2: float,
    mixed: SensitivityBuffer | None,
    corr_ders: SensitivityBuffer,
    layout: SensitivityLayout,
) -> SensitivityBuffer:
    """
    Total derivatives of a value ``V(x, rho(x))``.

    Parameters
    ----------
    pv_ders : SensitivityBuffer
        Derivatives of ``V`` at fixed correlation
    dv_dc, d2v_dc2 : float
        First and second derivatives of ``V`` in correlation
    mixed : SensitivityBuffer | None
        ``d2V/dx drho`` in the delta slots; None when negligible
    corr_ders : SensitivityBuffer
        Derivatives of the correlation, as from :func:`correlation_derivatives`
    layout : SensitivityLayout
        Layout of all buffers

    Returns
    -------
    SensitivityBuffer
        The composed derivatives
    """
    out = layout.zeros()
    mixed = layout.zeros() if mixed is None else mixed
    for b in layout:
        cg = corr_ders[b.deltas]
        mg = mixed[b.deltas]
        rows, cols = b.pairs()
        out[b.deltas] = pv_ders[b.deltas] + dv_dc * cg
        out[b.gammas] = (
            pv_ders[b.gammas]
            + dv_dc * corr_ders[b.gammas]
            + d2v_dc2 * cg[rows] * cg[cols]
            + mg[rows] * cg[cols]
            + mg[cols] * cg[rows]
        )
        out[b.vod] = pv_ders[b.vod] + dv_dc * corr_ders[b.vod]
        out[b.recovery] = pv_ders[b.recovery] + dv_dc * corr_ders[b.recovery]
    return out


def _equity_sensitivities(
    base_correlation,
    basket: BasketPricer,
    discount_curve: DiscountCurve | None,
    tranche: Tranche,
    layout: SensitivityLayout,
) -> SensitivityBuffer:
    corr_ders = layout.zeros()
    corr = base_correlation.correlation_derivatives(basket, discount_curve, tranche, corr_ders)
    factor = math.sqrt(corr)
    h = _step()
    levels = (0.0, tranche.detachment, 1.0)
    pricer = basket.create_pricer(tranche, discount_curve, 1.0)

    def pv(f: float) -> float:
        basket.set_factor(f)
        return pricer.protection_pv()

    with basket_factor(basket, factor):
        pv_ders = layout.zeros()
        basket.compute_and_save_semi_analytic_sensitivities(levels)
        pricer.protection_pv_derivatives(pv_ders)
        ders = FiniteDifference(step=h, lower=0.0, upper=1.0).derivatives(pv, factor)
        dv_dc, d2v_dc2 = factor_to_correlation(ders.first, ders.second, ders.center)

        basket.set_factor(factor + h)
        basket.compute_and_save_semi_analytic_sensitivities(levels)
        pv_ders_p = layout.zeros()
        pricer.protection_pv_derivatives(pv_ders_p)
        x = factor if factor > 0 else factor + h
        mixed = 0.5 / x * (pv_ders_p - pv_ders) / h

    return compose_with_pv_ders(pv_ders, dv_dc, d2v_dc2, mixed, corr_ders, layout)


def tranche_sensitivities(
    base_correlation,
    basket: BasketPricer,
    discount_curve: DiscountCurve | None,
    tranche: Tranche,
) -> SensitivityBuffer:
    """
    Packed derivatives of the tranche protection PV per unit of notional.

    The correlation moves with the curve data through the base correlation
    surface. A tranche with positive attachment combines the two equity
    tranches, ``(d S_d - a S_a) / (d - a)``.

    Example
    -------
    >>> ders = tranche_sensitivities(bc, basket, dc, Tranche(0.03, 0.07, 5.0))
    >>> SensitivityLayout.from_basket(basket).to_frame(ders)
    """
    layout = SensitivityLayout.from_basket(basket)
    a, d = tranche.attachment, tranche.detachment
    equity_d = _equity_sensitivities(
        base_correlation, basket, discount_curve, tranche.replace(attachment=0.0), layout
    )
    if a <= 0.0:
        return equity_d
    if d - a <= 0.0:
        raise ConfigurationError(f"Tranche [{a}, {d}] has zero width")
    equity_a = _equity_sensitivities(
        base_correlation, basket, discount_curve,
        tranche.replace(attachment=0.0, detachment=a), layout,
    )
    return (d * equity_d - a * equity_a) / (d - a)
