"""
Tests for strike methods and strike functions.
"""

import math

import numpy as np
import pytest

from basecorr_core.basket import Tranche, basket_factor
from basecorr_core.exceptions import ConfigurationError, UnsupportedMethodError
from basecorr_core.numerics import ExtrapMethod, Interp, InterpMethod
from basecorr_core.strike import (
    ProtectionFn,
    StrikeMethod,
    check_tolerance,
    detachment_scaling_factor,
    make_strike_fn,
    strike,
    strikes,
)
from conftest import FlatDiscountCurve, FlatLossBasket, LargePoolBasket


class ScaledEvaluator:
    """Strike evaluator returning ``d * (1 + correlation)``."""

    def __init__(self) -> None:
        self.pricer = None

    def set_pricer(self, pricer) -> None:
        self.pricer = pricer

    def strike(self, correlation: float | None = None) -> float:
        if correlation is None:
            correlation = self.pricer.basket.get_factor() ** 2
        return self.pricer.tranche.detachment * (1.0 + correlation)


def _pool_loss(basket: LargePoolBasket) -> float:
    p = 1.0 - math.exp(-basket.average_hazard * basket.maturity)
    return (1.0 - basket.recovery) * p


class TestScaledStrikes:
    """Tests for strikes that rescale the detachment."""

    def test_unscaled(self, basket: LargePoolBasket, equity_tranche: Tranche) -> None:
        """The unscaled strike is the detachment."""
        pricer = basket.create_pricer(equity_tranche, None, 1.0)
        assert strike(pricer, StrikeMethod.UNSCALED, None, 0.3) == 0.07

    def test_expected_loss(self, basket: LargePoolBasket, equity_tranche: Tranche) -> None:
        """The expected loss strike divides by the basket expected loss."""
        pricer = basket.create_pricer(equity_tranche, None, 1.0)
        s = strike(pricer, StrikeMethod.EXPECTED_LOSS, None, 0.3)
        assert np.isclose(s, 0.07 / _pool_loss(basket), rtol=1e-10)

    def test_expected_loss_pv_needs_curve(self, basket: LargePoolBasket) -> None:
        """ExpectedLossPV cannot be scaled without discounting."""
        with pytest.raises(ConfigurationError):
            detachment_scaling_factor(StrikeMethod.EXPECTED_LOSS_PV, basket, None)

    def test_expected_loss_pv(
        self, basket: LargePoolBasket, discount_curve: FlatDiscountCurve
    ) -> None:
        """ExpectedLossPV divides by the discounted basket loss."""
        factor = detachment_scaling_factor(StrikeMethod.EXPECTED_LOSS_PV, basket, discount_curve)
        expected = 1.0 / (discount_curve.discount_factor(5.0) * _pool_loss(basket))
        assert np.isclose(factor, expected)

    def test_nan_correlation(self, basket: LargePoolBasket, equity_tranche: Tranche) -> None:
        """A NaN correlation yields a NaN strike."""
        pricer = basket.create_pricer(equity_tranche, None, 1.0)
        assert math.isnan(strike(pricer, StrikeMethod.EXPECTED_LOSS_RATIO, None, math.nan))

    def test_no_pricer(self) -> None:
        """A missing pricer yields a zero strike."""
        assert strike(None, StrikeMethod.UNSCALED, None, 0.3) == 0.0


class TestRatioStrikes:
    """Tests for strikes that depend on the correlation."""

    def test_expected_loss_ratio(self, flat_loss_basket: FlatLossBasket) -> None:
        """With a deterministic loss the ratio strike is d over the loss."""
        pricer = flat_loss_basket.create_pricer(Tranche(0.0, 0.06, 5.0), None, 1.0)
        s = strike(pricer, StrikeMethod.EXPECTED_LOSS_RATIO, None, 0.25)
        assert np.isclose(s, 0.5)

    def test_ratio_strike_sets_factor(
        self, basket: LargePoolBasket, equity_tranche: Tranche
    ) -> None:
        """The strike is evaluated at the factor of the given correlation."""
        pricer = basket.create_pricer(equity_tranche, None, 1.0)
        s = strike(pricer, StrikeMethod.EXPECTED_LOSS_RATIO, None, 0.25)
        assert np.isclose(basket.get_factor(), 0.5)
        expected = basket.accumulated_loss(5.0, 0.0, 0.07) / _pool_loss(basket)
        assert np.isclose(s, expected, rtol=1e-10)

    def test_equity_tranche_loss_falls_with_correlation(
        self, basket: LargePoolBasket, equity_tranche: Tranche
    ) -> None:
        """Equity protection strike decreases as correlation rises."""
        pricer = basket.create_pricer(equity_tranche, None, 1.0)
        low = strike(pricer, StrikeMethod.EQUITY_PROTECTION, None, 0.1)
        high = strike(pricer, StrikeMethod.EQUITY_PROTECTION, None, 0.6)
        assert 0.0 < high < low < 1.0

    def test_protection_pv(
        self, basket: LargePoolBasket, discount_curve: FlatDiscountCurve, equity_tranche: Tranche
    ) -> None:
        """ProtectionPv is the discounted equity loss as a basket fraction."""
        pricer = basket.create_pricer(equity_tranche, discount_curve, 1.0)
        s = strike(pricer, StrikeMethod.PROTECTION_PV, None, 0.25)
        expected = discount_curve.discount_factor(5.0) * basket.accumulated_loss(5.0, 0.0, 0.07)
        assert np.isclose(s, expected, rtol=1e-10)

    def test_probability(self, basket: LargePoolBasket, equity_tranche: Tranche) -> None:
        """The probability strike lies in [0, 1]."""
        pricer = basket.create_pricer(equity_tranche, None, 1.0)
        s = strike(pricer, StrikeMethod.PROBABILITY, None, 0.25)
        assert 0.0 < s < 1.0
        assert np.isclose(s, basket.loss_probability(5.0, 0.07))

    def test_equity_spread(
        self, basket: LargePoolBasket, discount_curve: FlatDiscountCurve, equity_tranche: Tranche
    ) -> None:
        """The spread strike is the break-even premium of the equity tranche."""
        pricer = basket.create_pricer(equity_tranche, discount_curve, 1.0)
        s = strike(pricer, StrikeMethod.EQUITY_SPREAD, None, 0.25)
        assert np.isclose(s, pricer.break_even_premium(), rtol=1e-10)

    def test_user_defined(self, basket: LargePoolBasket, equity_tranche: Tranche) -> None:
        """A user evaluator receives the correlation."""
        pricer = basket.create_pricer(equity_tranche, None, 1.0)
        s = strike(pricer, StrikeMethod.USER_DEFINED, ScaledEvaluator(), 0.25)
        assert np.isclose(s, 0.07 * 1.25)

    def test_user_defined_without_evaluator(
        self, basket: LargePoolBasket, equity_tranche: Tranche
    ) -> None:
        """UserDefined requires an evaluator."""
        pricer = basket.create_pricer(equity_tranche, None, 1.0)
        with pytest.raises(ConfigurationError):
            strike(pricer, StrikeMethod.USER_DEFINED, None, 0.25)


class TestStrikeLadder:
    """Tests for strikes of several tranches."""

    def test_length_mismatch(self, basket: LargePoolBasket, detachments: list[float]) -> None:
        """Correlations must match the pricers one to one."""
        pricers = [basket.create_pricer(Tranche(0.0, d, 5.0), None, 1.0) for d in detachments]
        with pytest.raises(ConfigurationError):
            strikes(pricers, StrikeMethod.EXPECTED_LOSS_RATIO, None, [0.2, 0.3])

    def test_scaled_ladder(self, basket: LargePoolBasket, detachments: list[float]) -> None:
        """Scaled strikes ignore the correlations."""
        pricers = [basket.create_pricer(Tranche(0.0, d, 5.0), None, 1.0) for d in detachments]
        assert strikes(pricers, StrikeMethod.UNSCALED, None, None) == detachments

    def test_ladder_at_current_factor(
        self, flat_loss_basket: FlatLossBasket, detachments: list[float]
    ) -> None:
        """Without correlations the current basket state is used."""
        pricers = [
            flat_loss_basket.create_pricer(Tranche(0.0, d, 5.0), None, 1.0) for d in detachments
        ]
        out = strikes(pricers, StrikeMethod.EXPECTED_LOSS_RATIO, None, None)
        assert np.allclose(out, [min(d, 0.12) / 0.12 for d in detachments])

    def test_empty(self) -> None:
        """No pricers, no strikes."""
        assert strikes([], StrikeMethod.UNSCALED, None, None) is None


class TestStrikeSolve:
    """Tests for the strike fixed-point solve."""

    STRIKES = [0.2, 0.4, 0.6, 0.8, 0.95]
    CORRELATIONS = [0.10, 0.18, 0.26, 0.35, 0.50]

    def _fn(self, basket, detachment: float) -> ProtectionFn:
        interp = Interp(InterpMethod.LINEAR, ExtrapMethod.CONST, 0.0, 1.0)
        return make_strike_fn(
            StrikeMethod.EXPECTED_LOSS_RATIO,
            Tranche(0.0, detachment, 5.0),
            basket,
            None,
            interp=interp,
            strikes=self.STRIKES,
            correlations=self.CORRELATIONS,
        )

    def test_solve_between_nodes(self, flat_loss_basket: FlatLossBasket) -> None:
        """A correlation independent strike resolves to the interpolated value."""
        fn = self._fn(flat_loss_basket, 0.06)
        corr = fn.solve(1e-12, 1e-10, 1.0)
        assert np.isclose(corr, 0.22, atol=1e-8)

    def test_solve_on_node(self, flat_loss_basket: FlatLossBasket) -> None:
        """A strike on a node returns the node correlation."""
        fn = self._fn(flat_loss_basket, 0.048)
        assert np.isclose(fn.solve(1e-12, 1e-10, 1.0), 0.18)

    def test_solve_large_pool_is_fixed_point(self, basket: LargePoolBasket) -> None:
        """The solved correlation reproduces itself through the strike."""
        fn = self._fn(basket, 0.07)
        with basket_factor(basket):
            corr = fn.solve(1e-12, 1e-10, 1.0)
            s = fn.strike(math.sqrt(corr))
        assert np.isclose(fn.evaluate(s), corr, atol=1e-8)

    def test_scaled_method_has_no_strike_fn(self, basket: LargePoolBasket) -> None:
        """Scaled methods have no strike function."""
        with pytest.raises(UnsupportedMethodError):
            make_strike_fn(StrikeMethod.UNSCALED, Tranche(0.0, 0.07, 5.0), basket, None)

    def test_check_tolerance(self, basket: LargePoolBasket) -> None:
        """Non-positive tolerances derive from the basket principal."""
        tf, tx = check_tolerance(0.0, 0.0, basket)
        assert np.isclose(tf, 1e-6)
        assert np.isclose(tx, 1e-4)
        assert check_tolerance(1e-9, 1e-7, basket) == (1e-9, 1e-7)
