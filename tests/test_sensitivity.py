"""
Tests for packed sensitivities, strike derivatives and correlation derivatives.
"""

import math
from typing import Callable

import numpy as np
import pytest

from basecorr_core.basket import Tranche, basket_factor
from basecorr_core.exceptions import ConfigurationError, UnsupportedMethodError
from basecorr_core.sensitivity import (
    NameSensitivity,
    SensitivityLayout,
    block_size,
    compose_with_pv_ders,
    correlation_derivatives,
    product_derivatives,
    ratio_derivatives,
    strike_derivatives,
    tranche_sensitivities,
)
from basecorr_core.strike.methods import BaseCorrelationMethod, StrikeMethod
from basecorr_core.surface import BaseCorrelation
from conftest import FlatDiscountCurve, LargePoolBasket


def hazard_derivative(
    basket: LargePoolBasket, i: int, fn: Callable[[], float], eps: float = 1e-5
) -> float:
    """Central difference of ``fn`` in the hazard rate of name ``i``."""
    curve = basket.survival_curves[i]
    h = curve.hazard
    try:
        curve.hazard = h + eps
        up = fn()
        curve.hazard = h - eps
        down = fn()
    finally:
        curve.hazard = h
    return (up - down) / (2 * eps)


def hazard_second_derivative(
    basket: LargePoolBasket, i: int, fn: Callable[[], float], eps: float = 1e-4
) -> float:
    curve = basket.survival_curves[i]
    h = curve.hazard
    try:
        mid = fn()
        curve.hazard = h + eps
        up = fn()
        curve.hazard = h - eps
        down = fn()
    finally:
        curve.hazard = h
    return (up - 2 * mid + down) / (eps * eps)


def curve_with_method(method: StrikeMethod, strikes: list[float], correlations: list[float]) -> BaseCorrelation:
    return BaseCorrelation(BaseCorrelationMethod.ARBITRAGE_FREE, method, strikes, correlations)


@pytest.fixture
def el_bc() -> BaseCorrelation:
    """Curve on expected loss scaled strikes."""
    return curve_with_method(
        StrikeMethod.EXPECTED_LOSS, [0.5, 1.0, 1.5, 2.0, 3.0], [0.15, 0.22, 0.28, 0.33, 0.45]
    )


class TestSensitivityLayout:
    """Tests for SensitivityLayout class."""

    def test_block_size(self) -> None:
        """Deltas, lower triangle gammas, vod and recovery."""
        assert block_size(1) == 4
        assert block_size(3) == 11

    def test_offsets(self) -> None:
        """Blocks follow each other in name order."""
        layout = SensitivityLayout([2, 2])
        assert layout.size == 14
        assert layout[1].offset == 7
        assert (layout[0].vod, layout[0].recovery) == (5, 6)
        assert layout[1].gammas == slice(9, 12)

    def test_from_basket(self, basket: LargePoolBasket) -> None:
        """One single tenor block per basket name."""
        layout = SensitivityLayout.from_basket(basket)
        assert len(layout) == 5
        assert layout.size == 20
        assert layout.names == basket.entity_names

    def test_pack_unpack(self) -> None:
        """Packing and unpacking preserve every record field."""
        layout = SensitivityLayout([2, 1])
        records = [
            NameSensitivity(np.array([1.0, 2.0]), np.array([3.0, 4.0, 5.0]), 6.0, 7.0),
            NameSensitivity(np.array([8.0]), np.array([9.0]), 10.0, 11.0),
        ]
        buffer = layout.pack(records)
        assert np.allclose(buffer, np.arange(1.0, 12.0))
        back = layout.unpack(buffer)
        assert np.allclose(back[0].gammas, [3.0, 4.0, 5.0])
        assert back[1].recovery == 11.0

    def test_hessian(self) -> None:
        """The lower triangle expands to a symmetric matrix."""
        rec = NameSensitivity(np.array([1.0, 2.0]), np.array([3.0, 4.0, 5.0]))
        assert rec.gamma(0, 1) == 4.0
        assert np.allclose(rec.hessian(), [[3.0, 4.0], [4.0, 5.0]])
        assert np.allclose(rec.gradient, rec.deltas)

    def test_mismatched_record(self) -> None:
        """Records must match the block tenor counts."""
        layout = SensitivityLayout([2])
        with pytest.raises(ConfigurationError):
            layout.pack([NameSensitivity(np.array([1.0]), np.array([1.0]))])

    def test_wrong_buffer_length(self) -> None:
        """Buffers of the wrong length are rejected."""
        with pytest.raises(ConfigurationError):
            SensitivityLayout([1, 1]).unpack(np.zeros(5))

    def test_to_frame(self) -> None:
        """The long table has one row per stored value."""
        layout = SensitivityLayout([2, 1], names=["A", "B"])
        df = layout.to_frame(np.arange(1.0, 12.0))
        assert list(df.columns) == ["Name", "Kind", "Tenor", "Tenor2", "Value"]
        assert len(df) == 11
        gammas = df[(df["Name"] == "A") & (df["Kind"] == "Gamma")]
        assert list(zip(gammas["Tenor"], gammas["Tenor2"])) == [(0, 0), (1, 0), (1, 1)]
        assert df[(df["Name"] == "B") & (df["Kind"] == "VOD")]["Value"].iloc[0] == 10.0


class TestDerivativeAlgebra:
    """Tests for product and ratio derivatives."""

    def test_product(self) -> None:
        """Product rule for each slot."""
        layout = SensitivityLayout([1])
        out = product_derivatives(
            layout, 2.0, 3.0, np.array([1.0, 0.5, 0.1, 0.2]), np.array([4.0, 1.0, 0.3, 0.4])
        )
        assert np.allclose(out, [11.0, 11.5, 0.93, 1.4])

    def test_constant_factors(self) -> None:
        """Two constants have zero derivatives."""
        layout = SensitivityLayout([1])
        out = np.ones(4)
        product_derivatives(layout, 2.0, 3.0, None, None, out)
        assert np.allclose(out, 0.0)

    def test_ratio(self) -> None:
        """Quotient rule for each slot."""
        layout = SensitivityLayout([1])
        out = ratio_derivatives(
            layout, 6.0, 3.0, np.array([1.0, 0.5, 0.3, 0.2]), np.array([2.0, 0.4, 0.6, 0.1])
        )
        assert np.allclose(out, [-1.0, 37.0 / 30.0, -0.25, 0.0])

    def test_ratio_constant_denominator(self) -> None:
        """A constant denominator scales the numerator derivatives."""
        layout = SensitivityLayout([1])
        out = ratio_derivatives(layout, 6.0, 4.0, np.array([1.0, 2.0, 0.0, 0.4]), None)
        assert np.allclose(out, [0.25, 0.5, 0.0, 0.1])


class TestStrikeDerivatives:
    """Tests for strike derivatives against finite differences in name hazards."""

    def _check_delta(
        self,
        method: StrikeMethod,
        basket: LargePoolBasket,
        discount_curve: FlatDiscountCurve | None,
        tranche: Tranche,
    ) -> None:
        bc = curve_with_method(method, [0.1, 0.5], [0.2, 0.3])
        s, ders = strike_derivatives(bc, basket, discount_curve, tranche)
        layout = SensitivityLayout.from_basket(basket)
        for i in (0, 3):
            expected = hazard_derivative(
                basket, i, lambda: strike_derivatives(bc, basket, discount_curve, tranche)[0]
            )
            assert np.isclose(ders[layout[i].deltas][0], expected, rtol=1e-5)
        assert s > 0.0

    def test_unscaled(self, unscaled_bc: BaseCorrelation, basket: LargePoolBasket,
                      equity_tranche: Tranche) -> None:
        """Unscaled strikes do not move with the curves."""
        s, ders = strike_derivatives(unscaled_bc, basket, None, equity_tranche)
        assert s == 0.07
        assert np.allclose(ders, 0.0)

    def test_expected_loss(self, basket: LargePoolBasket, equity_tranche: Tranche) -> None:
        """ExpectedLoss strike deltas."""
        self._check_delta(StrikeMethod.EXPECTED_LOSS, basket, None, equity_tranche)

    def test_expected_loss_ratio(self, basket: LargePoolBasket, equity_tranche: Tranche) -> None:
        """ExpectedLossRatio strike deltas."""
        self._check_delta(StrikeMethod.EXPECTED_LOSS_RATIO, basket, None, equity_tranche)

    def test_equity_protection(self, basket: LargePoolBasket, equity_tranche: Tranche) -> None:
        """EquityProtection strike deltas."""
        self._check_delta(StrikeMethod.EQUITY_PROTECTION, basket, None, equity_tranche)

    def test_protection(self, basket: LargePoolBasket, equity_tranche: Tranche) -> None:
        """Protection strike deltas."""
        self._check_delta(StrikeMethod.PROTECTION, basket, None, equity_tranche)

    def test_expected_loss_pv(
        self, basket: LargePoolBasket, discount_curve: FlatDiscountCurve, equity_tranche: Tranche
    ) -> None:
        """ExpectedLossPV strike deltas."""
        self._check_delta(StrikeMethod.EXPECTED_LOSS_PV, basket, discount_curve, equity_tranche)

    def test_protection_pv(
        self, basket: LargePoolBasket, discount_curve: FlatDiscountCurve, equity_tranche: Tranche
    ) -> None:
        """ProtectionPv strike deltas."""
        self._check_delta(StrikeMethod.PROTECTION_PV, basket, discount_curve, equity_tranche)

    def test_equity_protection_pv(
        self, basket: LargePoolBasket, discount_curve: FlatDiscountCurve, equity_tranche: Tranche
    ) -> None:
        """EquityProtectionPv strike deltas."""
        self._check_delta(
            StrikeMethod.EQUITY_PROTECTION_PV, basket, discount_curve, equity_tranche
        )

    def test_expected_loss_pv_ratio(
        self, basket: LargePoolBasket, discount_curve: FlatDiscountCurve, equity_tranche: Tranche
    ) -> None:
        """ExpectedLossPVRatio strike deltas."""
        self._check_delta(
            StrikeMethod.EXPECTED_LOSS_PV_RATIO, basket, discount_curve, equity_tranche
        )

    def test_equity_spread(
        self, basket: LargePoolBasket, discount_curve: FlatDiscountCurve, equity_tranche: Tranche
    ) -> None:
        """EquitySpread strike deltas."""
        self._check_delta(StrikeMethod.EQUITY_SPREAD, basket, discount_curve, equity_tranche)

    def test_expected_loss_gamma(self, basket: LargePoolBasket, equity_tranche: Tranche) -> None:
        """Second order terms of d / EL."""
        bc = curve_with_method(StrikeMethod.EXPECTED_LOSS, [0.5, 2.0], [0.2, 0.3])
        _, ders = strike_derivatives(bc, basket, None, equity_tranche)
        expected = hazard_second_derivative(
            basket, 0, lambda: strike_derivatives(bc, basket, None, equity_tranche)[0]
        )
        gamma = ders[SensitivityLayout.from_basket(basket)[0].gammas][0]
        assert np.isclose(gamma, expected, rtol=1e-3)

    def test_recovery_slots(self, basket: LargePoolBasket, equity_tranche: Tranche) -> None:
        """Per-name recovery derivatives add up to the basket recovery derivative."""
        bc = curve_with_method(StrikeMethod.EXPECTED_LOSS_RATIO, [0.1, 0.5], [0.2, 0.3])
        _, ders = strike_derivatives(bc, basket, None, equity_tranche)
        layout = SensitivityLayout.from_basket(basket)
        total = sum(ders[b.recovery] for b in layout)

        eps = 1e-5
        r = basket.recovery
        try:
            basket.recovery = r + eps
            up = strike_derivatives(bc, basket, None, equity_tranche)[0]
            basket.recovery = r - eps
            down = strike_derivatives(bc, basket, None, equity_tranche)[0]
        finally:
            basket.recovery = r
        assert np.isclose(total, (up - down) / (2 * eps), rtol=1e-5)

    def test_probability_unsupported(self, basket: LargePoolBasket, equity_tranche: Tranche) -> None:
        """Probability strikes have no derivatives."""
        bc = curve_with_method(StrikeMethod.PROBABILITY, [0.1, 0.5], [0.2, 0.3])
        with pytest.raises(UnsupportedMethodError):
            strike_derivatives(bc, basket, None, equity_tranche)

    def test_pv_method_needs_curve(self, basket: LargePoolBasket, equity_tranche: Tranche) -> None:
        """PV based derivatives require discounting."""
        bc = curve_with_method(StrikeMethod.PROTECTION_PV, [0.01, 0.05], [0.2, 0.3])
        with pytest.raises(ConfigurationError):
            strike_derivatives(bc, basket, None, equity_tranche)


class TestCorrelationDerivatives:
    """Tests for correlation derivatives through the strike equation."""

    def test_unscaled_is_flat(
        self, unscaled_bc: BaseCorrelation, basket: LargePoolBasket, equity_tranche: Tranche
    ) -> None:
        """Unscaled correlations do not depend on the curves."""
        buffer = np.ones(SensitivityLayout.from_basket(basket).size)
        corr = unscaled_bc.correlation_derivatives(basket, None, equity_tranche, buffer)
        assert np.isclose(corr, 0.25)
        assert np.allclose(buffer, 0.0)
        assert basket.get_factor() == 0.5

    def test_expected_loss_delta(
        self, el_bc: BaseCorrelation, basket: LargePoolBasket, equity_tranche: Tranche
    ) -> None:
        """Scaled strikes move the correlation along the curve."""
        layout = SensitivityLayout.from_basket(basket)
        buffer = layout.zeros()
        corr = correlation_derivatives(el_bc, basket, None, equity_tranche, buffer)
        assert np.isclose(corr, el_bc.get_correlation(equity_tranche, basket))
        expected = hazard_derivative(
            basket, 2, lambda: el_bc.get_correlation(equity_tranche, basket)
        )
        assert np.isclose(buffer[layout[2].deltas][0], expected, rtol=1e-4)

    def test_expected_loss_ratio_delta(
        self, elr_bc: BaseCorrelation, basket: LargePoolBasket, equity_tranche: Tranche
    ) -> None:
        """The implicit derivative matches a re-solved correlation."""
        layout = SensitivityLayout.from_basket(basket)
        buffer = layout.zeros()
        correlation_derivatives(elr_bc, basket, None, equity_tranche, buffer)
        expected = hazard_derivative(
            basket, 0,
            lambda: elr_bc.get_correlation(equity_tranche, basket, None, 1e-13, 1e-13),
            eps=1e-4,
        )
        assert np.isclose(buffer[layout[0].deltas][0], expected, rtol=5e-3)
        assert basket.get_factor() == 0.5

    def test_saves_basket_sensitivities(
        self, el_bc: BaseCorrelation, basket: LargePoolBasket, equity_tranche: Tranche
    ) -> None:
        """Expected loss methods only need the full basket level."""
        buffer = SensitivityLayout.from_basket(basket).zeros()
        correlation_derivatives(el_bc, basket, None, equity_tranche, buffer)
        assert basket.saved_levels == (0.0, 1.0)

    def test_wrong_buffer(
        self, unscaled_bc: BaseCorrelation, basket: LargePoolBasket, equity_tranche: Tranche
    ) -> None:
        """The buffer must follow the basket layout."""
        with pytest.raises(ConfigurationError):
            correlation_derivatives(unscaled_bc, basket, None, equity_tranche, np.zeros(3))


class TestTrancheSensitivities:
    """Tests for value derivatives with the correlation moving along the surface."""

    def test_compose(self) -> None:
        """Chain rule through the correlation."""
        layout = SensitivityLayout([1])
        out = compose_with_pv_ders(
            np.array([1.0, 2.0, 3.0, 4.0]), 0.5, 2.0, np.array([0.3, 0.0, 0.0, 0.0]),
            np.array([0.2, 0.1, 0.05, 0.6]), layout,
        )
        assert np.allclose(out, [1.1, 2.25, 3.025, 4.3])

    def test_compose_without_mixed(self) -> None:
        """Without cross terms only the correlation curvature is added."""
        layout = SensitivityLayout([1])
        out = compose_with_pv_ders(
            np.array([1.0, 2.0, 3.0, 4.0]), 0.5, 2.0, None,
            np.array([0.2, 0.1, 0.05, 0.6]), layout,
        )
        assert np.isclose(out[1], 2.13)

    def test_equity_unscaled(
        self, unscaled_bc: BaseCorrelation, basket: LargePoolBasket,
        discount_curve: FlatDiscountCurve, equity_tranche: Tranche,
    ) -> None:
        """With unscaled strikes the equity deltas are the fixed correlation deltas."""
        ders = tranche_sensitivities(unscaled_bc, basket, discount_curve, equity_tranche)
        pricer = basket.create_pricer(equity_tranche, discount_curve, 1.0)
        layout = SensitivityLayout.from_basket(basket)
        with basket_factor(basket, math.sqrt(0.25)):
            expected = hazard_derivative(basket, 1, pricer.protection_pv)
        assert np.isclose(ders[layout[1].deltas][0], expected, rtol=1e-5)

    def test_mezzanine_unscaled(
        self, unscaled_bc: BaseCorrelation, basket: LargePoolBasket,
        discount_curve: FlatDiscountCurve,
    ) -> None:
        """A mezzanine combines the two equity tranches at their own correlations."""
        tranche = Tranche(0.03, 0.07, 5.0)
        ders = tranche_sensitivities(unscaled_bc, basket, discount_curve, tranche)
        df = discount_curve.discount_factor(5.0)

        def value() -> float:
            with basket_factor(basket, math.sqrt(0.25)):
                el_d = basket.accumulated_loss(5.0, 0.0, 0.07)
            with basket_factor(basket, math.sqrt(0.15)):
                el_a = basket.accumulated_loss(5.0, 0.0, 0.03)
            return -df * (el_d - el_a) / 0.04

        layout = SensitivityLayout.from_basket(basket)
        expected = hazard_derivative(basket, 0, value)
        assert np.isclose(ders[layout[0].deltas][0], expected, rtol=1e-5)
