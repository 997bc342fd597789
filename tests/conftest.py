"""
Pytest fixtures for base correlation testing.

Provides deterministic basket and tranche pricers implementing the engine
protocols, plus reusable curves and surfaces.
"""

import copy
import math
from typing import Callable, Sequence

import numpy as np
import pytest
from scipy.stats import norm

from basecorr_core.basket import Tranche
from basecorr_core.sensitivity.layout import SensitivityLayout
from basecorr_core.strike.methods import BaseCorrelationMethod, StrikeMethod
from basecorr_core.surface import BaseCorrelation, BaseCorrelationTermStruct

NAMES = ["N1", "N2", "N3", "N4", "N5"]
HAZARDS = [0.01, 0.015, 0.02, 0.025, 0.03]

# Gauss-Legendre rule for the conditional loss integral
_GL_NODES, _GL_WEIGHTS = np.polynomial.legendre.leggauss(64)
_Z_MAX = 8.0
_FD_STEP = 1e-5


class FlatDiscountCurve:
    """Continuously compounded flat rate."""

    def __init__(self, rate: float) -> None:
        self.rate = rate

    def discount_factor(self, t: float) -> float:
        return math.exp(-self.rate * t)


class FlatSurvivalCurve:
    """Single tenor credit curve described by its hazard rate."""

    def __init__(self, hazard: float) -> None:
        self.hazard = hazard

    @property
    def count(self) -> int:
        return 1


class LargePoolBasket:
    """
    Homogeneous large pool basket under the one-factor Gaussian copula.

    The pool default probability uses the average hazard rate of the names,
    so the derivative with respect to one name's hazard is ``1/n`` of the
    derivative with respect to the average. Value on default is not
    modelled and reported as zero.
    """

    def __init__(
        self,
        names: Sequence[str],
        hazards: Sequence[float],
        recovery: float = 0.4,
        maturity: float = 5.0,
        factor: float = 0.5,
        total_principal: float = 1e6,
        defaulted_principal: float = 0.0,
        previous_loss: float = 0.0,
    ) -> None:
        if len(names) != len(hazards):
            raise ValueError("names and hazards must have the same length")
        self.entity_names = list(names)
        self.survival_curves = [FlatSurvivalCurve(h) for h in hazards]
        self.recovery = recovery
        self.settle = 0.0
        self.maturity = maturity
        self.total_principal = total_principal
        self.defaulted_principal = defaulted_principal
        self.previous_loss = previous_loss
        self.correlation = None
        self.raw_loss_levels = (0.0, 1.0)
        self.saved_levels: tuple[float, ...] | None = None
        self.resets = 0
        self._factor = factor

    @property
    def count(self) -> int:
        return len(self.entity_names)

    @property
    def average_hazard(self) -> float:
        return float(np.mean([c.hazard for c in self.survival_curves]))

    def _expected_min_loss(
        self,
        date: float,
        level: float,
        hazard: float | None = None,
        recovery: float | None = None,
    ) -> float:
        """``E[min(L, level)]`` of the pool loss fraction at ``date``."""
        lgd = 1.0 - (self.recovery if recovery is None else recovery)
        h = self.average_hazard if hazard is None else hazard
        p = 1.0 - math.exp(-h * date)
        if level <= 0.0 or p <= 0.0:
            return 0.0
        if level >= lgd:
            return lgd * p
        f = self._factor
        if f < 1e-10:
            return min(lgd * p, level)
        c = norm.ppf(p)
        s = math.sqrt(max(1.0 - f * f, 1e-10))
        # pool loss exceeds the level below z_star
        z_star = (c - s * norm.ppf(level / lgd)) / f
        z_star = min(max(z_star, -_Z_MAX), _Z_MAX)
        half = 0.5 * (_Z_MAX - z_star)
        z = z_star + half * (_GL_NODES + 1.0)
        integrand = lgd * norm.cdf((c - f * z) / s) * norm.pdf(z)
        return float(level * norm.cdf(z_star) + half * np.dot(_GL_WEIGHTS, integrand))

    def accumulated_loss(self, date: float, lower: float, upper: float) -> float:
        return self._expected_min_loss(date, upper) - self._expected_min_loss(date, lower)

    def accumulated_loss_derivatives(
        self, date: float, lower: float, upper: float, buffer: np.ndarray
    ) -> None:
        n = self.count
        h = self.average_hazard
        r = self.recovery
        eps = _FD_STEP

        def slice_loss(hazard: float, recovery: float) -> float:
            return self._expected_min_loss(date, upper, hazard, recovery) - self._expected_min_loss(
                date, lower, hazard, recovery
            )

        v0 = slice_loss(h, r)
        vp = slice_loss(h + eps, r)
        vm = slice_loss(h - eps, r)
        delta = (vp - vm) / (2 * eps) / n
        gamma = (vp - 2 * v0 + vm) / (eps * eps) / (n * n)
        rec = (slice_loss(h, r + eps) - slice_loss(h, r - eps)) / (2 * eps) / n

        for b in SensitivityLayout.from_basket(self):
            buffer[b.deltas] = delta
            buffer[b.gammas] = gamma
            buffer[b.vod] = 0.0
            buffer[b.recovery] = rec

    def basket_loss(self, settle: float, maturity: float) -> float:
        return self.accumulated_loss(maturity, 0.0, 1.0)

    def basket_loss_pv(self, settle: float, maturity: float, discount_curve) -> float:
        return discount_curve.discount_factor(maturity) * self.basket_loss(settle, maturity)

    def loss_probability(self, date: float, level: float) -> float:
        lgd = 1.0 - self.recovery
        p = 1.0 - math.exp(-self.average_hazard * date)
        if level >= lgd:
            return 1.0
        if level <= 0.0:
            return 0.0
        f = self._factor
        if f < 1e-10:
            return 1.0 if lgd * p <= level else 0.0
        c = norm.ppf(p)
        s = math.sqrt(max(1.0 - f * f, 1e-10))
        z_star = (c - s * norm.ppf(level / lgd)) / f
        return float(1.0 - norm.cdf(z_star))

    def adjust_tranche_levels(self, attachment: float, detachment: float) -> tuple[float, float, float]:
        remaining = 1.0 - self.defaulted_principal / self.total_principal
        a = min(max(attachment - self.previous_loss, 0.0) / remaining, 1.0)
        d = min(max(detachment - self.previous_loss, 0.0) / remaining, 1.0)
        return a, d, self.previous_loss

    def adjust_tranche_level(self, level: float) -> float:
        return self.adjust_tranche_levels(0.0, level)[1]

    def get_factor(self) -> float:
        return self._factor

    def set_factor(self, factor: float) -> None:
        self._factor = factor

    def reset(self) -> None:
        self.resets += 1

    def duplicate(self) -> "LargePoolBasket":
        return copy.copy(self)

    def compute_and_save_semi_analytic_sensitivities(self, levels: Sequence[float]) -> None:
        self.saved_levels = tuple(levels)

    def create_pricer(self, tranche: Tranche, discount_curve, notional: float) -> "PoolTranchePricer":
        return PoolTranchePricer(self, tranche, discount_curve, notional)


class FlatLossBasket(LargePoolBasket):
    """Basket whose loss is the constant ``loss`` whatever the correlation."""

    def __init__(self, names: Sequence[str], loss: float, **kwargs) -> None:
        super().__init__(names, [0.02] * len(names), **kwargs)
        self.loss = loss

    def _expected_min_loss(
        self,
        date: float,
        level: float,
        hazard: float | None = None,
        recovery: float | None = None,
    ) -> float:
        return min(self.loss, level) if level > 0.0 else 0.0


class PoolTranchePricer:
    """
    Tranche pricer on a ``LargePoolBasket``.

    Protection PV is ``-notional * df(T) * EL[a, d] / (d - a)``; the fee leg
    pays the premium on the average outstanding notional over the life.
    """

    def __init__(self, basket: LargePoolBasket, tranche: Tranche, discount_curve, notional: float) -> None:
        self.basket = basket
        self.tranche = tranche
        self.discount_curve = discount_curve
        self.notional = notional
        self.settle = basket.settle

    def _df(self) -> float:
        if self.discount_curve is None:
            return 1.0
        return self.discount_curve.discount_factor(self.tranche.maturity)

    def _loss_fraction(self) -> float:
        t = self.tranche
        if t.width <= 0.0:
            return 0.0
        return self.basket.accumulated_loss(t.maturity, t.attachment, t.detachment) / t.width

    def _loss_fraction_derivatives(self, buffer: np.ndarray) -> None:
        t = self.tranche
        if t.width <= 0.0:
            buffer[:] = 0.0
            return
        self.basket.accumulated_loss_derivatives(t.maturity, t.attachment, t.detachment, buffer)
        buffer /= t.width

    def protection_pv(self) -> float:
        return -self.notional * self._df() * self._loss_fraction()

    def protection_pv_derivatives(self, buffer: np.ndarray) -> None:
        self._loss_fraction_derivatives(buffer)
        buffer *= -self._df()

    def flat_fee_pv(self, settle: float, premium: float) -> float:
        annuity = (self.tranche.maturity - settle) * self._df()
        return premium * self.notional * annuity * (1.0 - 0.5 * self._loss_fraction())

    def fee_pv_derivatives(self, settle: float, premium: float, buffer: np.ndarray) -> None:
        annuity = (self.tranche.maturity - settle) * self._df()
        self._loss_fraction_derivatives(buffer)
        buffer *= -0.5 * premium * annuity

    def break_even_premium(self) -> float:
        return -self.protection_pv() / self.flat_fee_pv(self.settle, 1.0)

    def implied_tranche_correlation(
        self, method, ap_correlation: float, dp_correlation: float, tolerance_f: float, tolerance_x: float
    ) -> float:
        return 0.5 * (ap_correlation + dp_correlation)


@pytest.fixture
def basket() -> LargePoolBasket:
    """Five name pool with hazards from 100bp to 300bp, 5Y maturity."""
    return LargePoolBasket(NAMES, HAZARDS)


@pytest.fixture
def make_basket() -> Callable[..., LargePoolBasket]:
    """Factory for baskets with custom names or hazards."""

    def make(names: Sequence[str] = NAMES, hazards: Sequence[float] | None = None, **kwargs):
        hazards = hazards if hazards is not None else [0.02] * len(names)
        return LargePoolBasket(names, hazards, **kwargs)

    return make


@pytest.fixture
def flat_loss_basket() -> FlatLossBasket:
    """Zero-default basket whose loss of 12% exceeds every detachment used."""
    return FlatLossBasket(NAMES, loss=0.12)


@pytest.fixture
def discount_curve() -> FlatDiscountCurve:
    """Flat 3% discount curve."""
    return FlatDiscountCurve(0.03)


@pytest.fixture
def equity_tranche() -> Tranche:
    """0-7% equity tranche maturing with the basket."""
    return Tranche(attachment=0.0, detachment=0.07, maturity=5.0)


@pytest.fixture
def detachments() -> list[float]:
    """Standard index detachment points."""
    return [0.03, 0.07, 0.10, 0.15, 0.30]


@pytest.fixture
def unscaled_bc(detachments: list[float]) -> BaseCorrelation:
    """Unscaled 5Y curve, strikes equal to detachments."""
    return BaseCorrelation(
        BaseCorrelationMethod.ARBITRAGE_FREE,
        StrikeMethod.UNSCALED,
        strikes=detachments,
        correlations=[0.15, 0.25, 0.30, 0.38, 0.55],
        detachments=detachments,
        tenor_date=5.0,
        name="CDX",
        entity_names=NAMES,
    )


@pytest.fixture
def elr_bc(detachments: list[float]) -> BaseCorrelation:
    """Expected loss ratio 5Y curve."""
    return BaseCorrelation(
        BaseCorrelationMethod.ARBITRAGE_FREE,
        StrikeMethod.EXPECTED_LOSS_RATIO,
        strikes=[0.2, 0.4, 0.6, 0.8, 0.95],
        correlations=[0.10, 0.18, 0.26, 0.35, 0.50],
        detachments=detachments,
        tenor_date=5.0,
        name="CDX-ELR",
    )


@pytest.fixture
def term_struct(detachments: list[float]) -> BaseCorrelationTermStruct:
    """Unscaled surface with 3Y, 5Y and 7Y tenors."""
    bcs = [
        BaseCorrelation(
            BaseCorrelationMethod.ARBITRAGE_FREE,
            StrikeMethod.UNSCALED,
            strikes=detachments,
            correlations=[c + shift for c in [0.15, 0.25, 0.30, 0.38, 0.55]],
            detachments=detachments,
            tenor_date=date,
        )
        for date, shift in [(3.0, -0.05), (5.0, 0.0), (7.0, 0.04)]
    ]
    return BaseCorrelationTermStruct([3.0, 5.0, 7.0], bcs, name="ITRAXX")


def flat_bc(value: float, name: str = "", entity_names: Sequence[str] | None = None) -> BaseCorrelation:
    """Unscaled curve with the same correlation at every detachment."""
    dps = [0.03, 0.07, 0.10, 0.15, 0.30]
    return BaseCorrelation(
        BaseCorrelationMethod.ARBITRAGE_FREE,
        StrikeMethod.UNSCALED,
        strikes=dps,
        correlations=[value] * len(dps),
        detachments=dps,
        tenor_date=5.0,
        name=name,
        entity_names=entity_names,
    )


@pytest.fixture
def make_flat_bc() -> Callable[..., BaseCorrelation]:
    """Factory for flat unscaled curves."""
    return flat_bc
