"""
Strike functions and the fixed-point solve that resolves ratio strikes.

For the ratio strike methods the strike of a detachment depends on the
correlation used to price it. The base correlation at the detachment is
the factor ``f`` solving ``f^2 = interp(strike(f))``, where ``interp`` is
the calibrated curve over strike nodes.
"""

import logging
import math
from abc import ABC, abstractmethod
from typing import Sequence

import numpy as np

from basecorr_core._types import FloatArray
from basecorr_core.basket.protocols import (
    BasketPricer,
    DiscountCurve,
    StrikeEvaluator,
    TranchePricer,
)
from basecorr_core.basket.tranche import Tranche
from basecorr_core.config.loader import get_engine_config
from basecorr_core.exceptions import ConfigurationError, UnsupportedMethodError
from basecorr_core.numerics.interp import Interp
from basecorr_core.numerics.solver import SolverError, brent_solve, search_and_solve
from basecorr_core.strike.methods import (
    PROTECTION_METHODS,
    PROTECTION_PV_METHODS,
    SPREAD_METHODS,
    StrikeMethod,
    adjusted_detachment,
)

logger = logging.getLogger(__name__)

# Initial guess of the full-domain factor search
_SEARCH_GUESS = 0.4


class CorrelationEvaluator:
    """
    Interpolates a calibrated curve at a strike.

    NaN correlations (failed calibrations) are dropped together with their
    strikes. Nodes that are not strictly increasing are sorted, keeping the
    first of duplicated strikes.

    Parameters
    ----------
    interp : Interp | None
        Strike interpolation; None when only the strike function is needed
    onfactor : bool
        Interpolate factors (square roots) instead of correlations
    strikes : Sequence[float] | None
        Strike nodes
    correlations : Sequence[float] | None
        Base correlations at the nodes
    complement : bool
        Use ``1 - strike`` as the interpolation coordinate
    """

    def __init__(
        self,
        interp: Interp | None,
        onfactor: bool,
        strikes: Sequence[float] | FloatArray | None,
        correlations: Sequence[float] | FloatArray | None,
        complement: bool = False,
    ) -> None:
        self.onfactor = onfactor
        self.complement = complement
        self._interpolator = None

        if correlations is None:
            self.strikes = np.empty(0)
            self.values = np.empty(0)
            return

        corrs = np.asarray(correlations, dtype=np.float64)
        valid = ~np.isnan(corrs)
        if not valid.any():
            raise ConfigurationError("All correlations are NaN")
        values = np.sqrt(corrs[valid]) if onfactor else corrs[valid]

        if strikes is None:
            self.strikes = np.empty(0)
            self.values = values
            return

        s = np.asarray(strikes, dtype=np.float64)[valid]
        if complement:
            s = 1.0 - s
        if s.size < 2 or np.any(np.diff(s) <= 0):
            # np.unique sorts and returns the first occurrence of each strike
            s, first = np.unique(s, return_index=True)
            values = values[first]

        self.strikes = s
        self.values = values
        if interp is not None:
            self._interpolator = interp.build(s, values)

    def __len__(self) -> int:
        return int(self.strikes.size)

    def evaluate(self, strike: float) -> float:
        """Correlation interpolated at ``strike``."""
        if self._interpolator is None:
            raise ConfigurationError("No calibrated curve to interpolate")
        x = self._interpolator(strike)
        return x * x if self.onfactor else x

    def get_factor(self, i: int) -> float:
        """Factor at node ``i``."""
        v = float(self.values[i])
        return v if self.onfactor else math.sqrt(v)

    def get_correlation(self, i: int) -> float:
        """Correlation at node ``i``."""
        v = float(self.values[i])
        return v * v if self.onfactor else v

    def correlations(self) -> FloatArray:
        """Node correlations after NaN removal and sorting."""
        return self.values * self.values if self.onfactor else self.values.copy()


class StrikeFn(CorrelationEvaluator, ABC):
    """
    Strike as a function of the basket factor, plus the fixed-point solve.

    Subclasses implement :meth:`strike`; called with a factor it sets the
    basket factor first, called without one it evaluates the current state.
    """

    @abstractmethod
    def strike(self, factor: float | None = None) -> float:
        """Strike at ``factor`` (at the basket's current factor when None)."""

    def residual(self, factor: float) -> float:
        """``interp(strike(factor)) - factor^2``."""
        if math.isnan(factor):
            return math.nan
        return self.evaluate(self.strike(factor)) - factor * factor

    def monotone(self) -> bool:
        """True if the node correlations never move against the strikes."""
        s, c = self.strikes, self.correlations()
        if s.size < 2:
            return False
        return bool(np.all(np.diff(s) * np.diff(c) >= 0))

    def bracket_index(self, tolerance: float) -> int:
        """
        Locate the solution relative to the strike nodes.

        Returns
        -------
        int
            ``-(i + 1)`` if node ``i`` solves the fixed point within
            tolerance, otherwise the index ``i`` such that the root lies
            between the factors of nodes ``i - 1`` and ``i`` (0 means below
            the first node, ``len(self)`` above the last)
        """
        strikes = self.strikes
        high = strikes.size - 1
        low = 0
        idx = 0

        def compare(i: int) -> int:
            s = self.strike(self.get_factor(i))
            tol = (1 + abs(strikes[i])) * tolerance
            if s > strikes[i] + tol:
                return 1
            if s < strikes[i] - tol:
                return -1
            return 0

        while True:
            idx = (low + high) // 2
            side = compare(idx)
            if side > 0:
                low = idx
            elif side < 0:
                high = idx
            else:
                return -(idx + 1)
            if high - low <= 1:
                break

        if idx != low and low == 0:
            side = compare(low)
            if side > 0:
                return high
            if side < 0:
                return low
            return -(low + 1)
        if idx != high and high == strikes.size - 1:
            side = compare(high)
            if side > 0:
                return high + 1
            if side < 0:
                return high
            return -(high + 1)
        return high

    def solve(self, tolerance_f: float, tolerance_x: float, upper_bound: float) -> float:
        """
        Solve ``factor^2 = interp(strike(factor))`` and return the correlation.

        Parameters
        ----------
        tolerance_f : float
            Function tolerance
        tolerance_x : float
            Factor tolerance
        upper_bound : float
            Maximum correlation; the factor domain is ``[lower_factor, sqrt(upper_bound)]``

        Raises
        ------
        SolverError
            If no root exists on the full domain
        """
        min_factor = get_engine_config().solver.lower_factor
        max_factor = math.sqrt(upper_bound)
        low, high = min_factor, max_factor

        if self.monotone():
            idx = self.bracket_index(min(tolerance_x, tolerance_f))
            if idx < 0:
                return self.get_correlation(-idx - 1)
            n = len(self)
            if idx >= n:
                low, high = self.get_factor(n - 1), max_factor
            elif idx == 0:
                low, high = min_factor, self.get_factor(0)
            else:
                low, high = self.get_factor(idx - 1), self.get_factor(idx)

            # flat region of the curve
            if low >= high - tolerance_x:
                x = 0.5 * (low + high)
                if abs(self.residual(x)) <= tolerance_f:
                    return x * x
                low, high = min_factor, max_factor

        if low > min_factor or high < max_factor:
            try:
                res = brent_solve(self.residual, low, high, tolerance_x, tolerance_f)
                return res * res
            except SolverError as e:
                logger.debug("Bracketed solve failed (%s), searching the full domain", e)

        res = search_and_solve(
            self.residual, min_factor, max_factor, _SEARCH_GUESS, tolerance_x, tolerance_f
        )
        return res * res


class UserFn(StrikeFn):
    """Strike from a user supplied evaluator."""

    def __init__(
        self,
        evaluator: StrikeEvaluator,
        *,
        interp: Interp | None = None,
        onfactor: bool = False,
        strikes: Sequence[float] | None = None,
        correlations: Sequence[float] | None = None,
    ) -> None:
        super().__init__(interp, onfactor, strikes, correlations)
        self.evaluator = evaluator

    def strike(self, factor: float | None = None) -> float:
        if factor is None:
            return self.evaluator.strike()
        if math.isnan(factor):
            return math.nan
        return self.evaluator.strike(factor * factor)


class ProtectionFn(StrikeFn):
    """
    Expected loss of the equity tranche ``[0, d]``, scaled.

    The scaling is the total expected loss (ExpectedLossRatio), the tranche
    size (EquityProtection) or the surviving notional fraction (Protection).
    Forward variants exclude the loss already incurred.
    """

    def __init__(
        self,
        method: StrikeMethod,
        detachment: float,
        basket: BasketPricer,
        *,
        interp: Interp | None = None,
        onfactor: bool = False,
        strikes: Sequence[float] | None = None,
        correlations: Sequence[float] | None = None,
    ) -> None:
        super().__init__(interp, onfactor, strikes, correlations)
        self.detachment = detachment
        self.basket = basket

        forward = method in (
            StrikeMethod.EXPECTED_LOSS_RATIO_FORWARD,
            StrikeMethod.PROTECTION_FORWARD,
            StrikeMethod.EQUITY_PROTECTION_FORWARD,
        )
        self.include_past_loss = not forward
        not_adj = 1.0
        d = detachment
        if forward:
            not_adj = (basket.total_principal - basket.defaulted_principal) / basket.total_principal
            d = basket.adjust_tranche_level(d)

        if method == StrikeMethod.EXPECTED_LOSS_RATIO:
            # basket loss counts surviving names only
            self.scaling = basket.basket_loss(basket.settle, basket.maturity) + basket.previous_loss
        elif method == StrikeMethod.EXPECTED_LOSS_RATIO_FORWARD:
            self.scaling = basket.basket_loss(basket.settle, basket.maturity)
        elif method in (StrikeMethod.EQUITY_PROTECTION, StrikeMethod.EQUITY_PROTECTION_FORWARD):
            self.scaling = d * not_adj
        else:
            self.scaling = not_adj

    def strike(self, factor: float | None = None) -> float:
        bp = self.basket
        if factor is not None:
            if math.isnan(factor):
                return math.nan
            bp.set_factor(factor)
        past_loss = 0.0 if self.include_past_loss else bp.previous_loss
        return (bp.accumulated_loss(bp.maturity, 0.0, self.detachment) - past_loss) / self.scaling


def basket_loss_pv(
    tranche: Tranche,
    basket: BasketPricer,
    discount_curve: DiscountCurve | None,
    notional: float,
) -> float:
    """
    PV of the protection on the whole basket.

    Priced on a duplicate with zero correlation, which does not change the
    full basket loss.
    """
    from basecorr_core.correlation.term_struct import CorrelationTermStruct

    full = basket.duplicate()
    full.raw_loss_levels = (0.0, 1.0)
    full.correlation = CorrelationTermStruct(full.entity_names, [0.0], [full.maturity])
    full.reset()
    pricer = full.create_pricer(tranche.replace(detachment=1.0), discount_curve, notional)
    return -pricer.protection_pv()


class ProtectionPvFn(StrikeFn):
    """Protection PV of the equity tranche ``[0, d]``, scaled."""

    def __init__(
        self,
        method: StrikeMethod,
        tranche: Tranche,
        basket: BasketPricer,
        discount_curve: DiscountCurve | None,
        *,
        interp: Interp | None = None,
        onfactor: bool = False,
        strikes: Sequence[float] | None = None,
        correlations: Sequence[float] | None = None,
    ) -> None:
        super().__init__(interp, onfactor, strikes, correlations)
        if method == StrikeMethod.EXPECTED_LOSS_PV_RATIO_FORWARD:
            if basket.defaulted_principal != 0.0:
                tranche = tranche.replace(
                    detachment=adjusted_detachment(basket, tranche.detachment)
                )
            method = StrikeMethod.EXPECTED_LOSS_PV_RATIO
        tranche = tranche.replace(attachment=0.0)

        notional = basket.total_principal
        d = tranche.detachment
        if method == StrikeMethod.EXPECTED_LOSS_PV_RATIO:
            self.scaling = basket_loss_pv(tranche, basket, discount_curve, notional)
        elif method == StrikeMethod.EQUITY_PROTECTION_PV:
            self.scaling = notional * d
        elif method == StrikeMethod.EQUITY_PROTECTION_PV_FORWARD:
            d_adj = adjusted_detachment(basket, d)
            self.scaling = (notional - basket.defaulted_principal) * d_adj
        elif method == StrikeMethod.PROTECTION_PV_FORWARD:
            self.scaling = notional - basket.defaulted_principal
        else:
            self.scaling = notional
        self.pricer: TranchePricer = basket.create_pricer(tranche, discount_curve, notional * d)

    def strike(self, factor: float | None = None) -> float:
        if factor is not None:
            if math.isnan(factor):
                return math.nan
            self.pricer.basket.set_factor(factor)
        return -self.pricer.protection_pv() / self.scaling


class ProbabilityFn(StrikeFn):
    """Probability that the basket loss stays below the detachment."""

    def __init__(
        self,
        detachment: float,
        basket: BasketPricer,
        *,
        interp: Interp | None = None,
        onfactor: bool = False,
        strikes: Sequence[float] | None = None,
        correlations: Sequence[float] | None = None,
    ) -> None:
        super().__init__(interp, onfactor, strikes, correlations)
        self.detachment = detachment
        self.basket = basket

    def strike(self, factor: float | None = None) -> float:
        if factor is not None:
            if math.isnan(factor):
                return math.nan
            self.basket.set_factor(factor)
        return self.basket.loss_probability(self.basket.maturity, self.detachment)


class SpreadFn(StrikeFn):
    """
    One minus the break-even premium of the equity or senior tranche.

    Strike nodes are stored as break-even premiums, so the curve is
    interpolated on complemented strikes.
    """

    def __init__(
        self,
        tranche: Tranche,
        basket: BasketPricer,
        discount_curve: DiscountCurve | None,
        senior: bool,
        *,
        interp: Interp | None = None,
        onfactor: bool = False,
        strikes: Sequence[float] | None = None,
        correlations: Sequence[float] | None = None,
    ) -> None:
        super().__init__(interp, onfactor, strikes, correlations, complement=True)
        if senior:
            tranche = tranche.replace(attachment=tranche.detachment, detachment=1.0, fee=0.0)
        else:
            tranche = tranche.replace(attachment=0.0, fee=0.0)
        self.senior = senior
        self.pricer: TranchePricer = basket.create_pricer(tranche, discount_curve, 1.0)

    def strike(self, factor: float | None = None) -> float:
        if factor is not None:
            if math.isnan(factor):
                return math.nan
            self.pricer.basket.set_factor(factor)
        return 1.0 - self.pricer.break_even_premium()


def make_strike_fn(
    method: StrikeMethod,
    tranche: Tranche,
    basket: BasketPricer,
    discount_curve: DiscountCurve | None,
    evaluator: StrikeEvaluator | None = None,
    *,
    interp: Interp | None = None,
    onfactor: bool = False,
    strikes: Sequence[float] | None = None,
    correlations: Sequence[float] | None = None,
) -> StrikeFn:
    """
    Build the strike function of a ratio strike method.

    Raises
    ------
    UnsupportedMethodError
        For the scaled methods, whose strike does not depend on the factor
    """
    curve = dict(interp=interp, onfactor=onfactor, strikes=strikes, correlations=correlations)
    if method in SPREAD_METHODS:
        return SpreadFn(
            tranche, basket, discount_curve, method == StrikeMethod.SENIOR_SPREAD, **curve
        )
    if method in PROTECTION_METHODS:
        return ProtectionFn(method, tranche.detachment, basket, **curve)
    if method in PROTECTION_PV_METHODS:
        return ProtectionPvFn(method, tranche, basket, discount_curve, **curve)
    if method == StrikeMethod.PROBABILITY:
        return ProbabilityFn(tranche.detachment, basket, **curve)
    if method == StrikeMethod.USER_DEFINED:
        if evaluator is None:
            raise ConfigurationError("strike evaluator cannot be None with UserDefined mapping method")
        return UserFn(evaluator, **curve)
    raise UnsupportedMethodError(f"Strike method {method.value} has no strike function", method)
