"""
Base correlation curve of one maturity.

The curve is a set of calibrated (strike, correlation) nodes. A tranche is
mapped to a strike with the curve's strike method and the correlation is
interpolated there; for the ratio strike methods the strike itself depends
on the correlation and a fixed point is solved.
"""

import logging
import math
from typing import Sequence

import numpy as np
import pandas as pd

from basecorr_core._types import FloatArray, SensitivityBuffer, Year
from basecorr_core.basket.protocols import (
    BasketPricer,
    DiscountCurve,
    StrikeEvaluator,
    TranchePricer,
)
from basecorr_core.basket.tranche import Tranche, basket_factor
from basecorr_core.config.loader import get_engine_config
from basecorr_core.correlation.base import Correlation
from basecorr_core.correlation.factor import SingleFactorCorrelation
from basecorr_core.exceptions import ConfigurationError, NumericalError
from basecorr_core.numerics.interp import Interp
from basecorr_core.strike.evaluators import CorrelationEvaluator, StrikeFn, make_strike_fn
from basecorr_core.strike.methods import (
    FULL_DETACHMENT,
    SCALED_FORWARD_METHODS,
    SCALED_METHODS,
    BaseCorrelationMethod,
    StrikeMethod,
    adjusted_detachment,
    check_tolerance,
    detachment_scaling_factor,
    forward_multiplier,
    is_spread,
    strikes as calibrated_strikes,
)
from basecorr_core.surface.base import BaseCorrelationObject, SurfaceKind, VisitFn
from basecorr_core.surface.bump import DETACHMENT_TOLERANCE, BumpSize

logger = logging.getLogger(__name__)

# Interpolated correlations beyond this are treated as a broken curve
_MAX_ABS_CORRELATION = 2.0000000001

# Attachments at or below this are equity tranches
_EQUITY_ATTACHMENT = 1e-7


def relative_delta(orig: float, bump: float) -> float:
    """Change of ``orig`` under a relative bump; ``+b`` then ``-b`` is exact."""
    if bump > 0.0:
        return orig * bump
    return orig * (1.0 / (1.0 - bump) - 1.0)


class BaseCorrelation(BaseCorrelationObject):
    """
    Calibrated base correlation curve.

    Parameters
    ----------
    method : BaseCorrelationMethod
        Calibration method
    strike_method : StrikeMethod
        Mapping from detachments to strikes
    strikes : Sequence[float]
        Strike nodes
    correlations : Sequence[float]
        Base correlations at the nodes; NaN marks a failed calibration
    detachments : Sequence[float] | None
        Detachments the nodes were calibrated at
    tenor_date : Year | None
        Maturity of the calibration tranches
    strike_evaluator : StrikeEvaluator | None
        Required for ``StrikeMethod.USER_DEFINED``
    interp : Interp | None
        Strike interpolation; engine default when None
    interp_on_factors : bool | None
        Interpolate factors instead of correlations; engine default when None
    min_correlation, max_correlation : float
        Correlation bounds
    name : str
        Identifier used by selector bumps
    entity_names : Sequence[str] | None
        Names of the calibration basket

    Example
    -------
    >>> bc = BaseCorrelation(
    ...     BaseCorrelationMethod.ARBITRAGE_FREE, StrikeMethod.UNSCALED,
    ...     strikes=[0.03, 0.07, 0.10], correlations=[0.15, 0.25, 0.30],
    ...     detachments=[0.03, 0.07, 0.10],
    ... )
    >>> round(bc.get_correlation_at(0.07), 4)
    0.25
    """

    kind = SurfaceKind.BASE

    def __init__(
        self,
        method: BaseCorrelationMethod,
        strike_method: StrikeMethod,
        strikes: Sequence[float] | FloatArray,
        correlations: Sequence[float] | FloatArray,
        detachments: Sequence[float] | FloatArray | None = None,
        tenor_date: Year | None = None,
        strike_evaluator: StrikeEvaluator | None = None,
        interp: Interp | None = None,
        interp_on_factors: bool | None = None,
        min_correlation: float = 0.0,
        max_correlation: float = 1.0,
        name: str = "",
        entity_names: Sequence[str] | None = None,
    ) -> None:
        super().__init__(min_correlation, max_correlation, name, entity_names)
        if strikes is None:
            raise ConfigurationError("Null strike array")
        if correlations is None:
            raise ConfigurationError("Null correlation array")
        strikes_arr = np.array(strikes, dtype=np.float64)
        correls_arr = np.array(correlations, dtype=np.float64)
        if strikes_arr.size != correls_arr.size:
            raise ConfigurationError(
                f"The number of correlations ({correls_arr.size}) must match "
                f"the number of strikes ({strikes_arr.size})"
            )
        if detachments is not None and len(detachments) != strikes_arr.size:
            raise ConfigurationError(
                f"The number of detachments ({len(detachments)}) must match "
                f"the number of strikes ({strikes_arr.size})"
            )
        if strike_method == StrikeMethod.USER_DEFINED and strike_evaluator is None:
            raise ConfigurationError("strike evaluator cannot be None with UserDefined strike method")

        config = get_engine_config().interpolation
        self.method = method
        self.strike_method = strike_method
        self.strike_evaluator = strike_evaluator
        self.interp = interp or config.strike_policy(min_correlation, max_correlation)
        self.interp_on_factors = (
            config.interp_on_factors if interp_on_factors is None else interp_on_factors
        )
        self.tenor_date = tenor_date
        self._strikes = strikes_arr
        self._correls = correls_arr
        self._detachments = (
            np.array(detachments, dtype=np.float64) if detachments is not None else None
        )

    @classmethod
    def from_weighted(
        cls,
        base_correlations: Sequence["BaseCorrelation"],
        weights: Sequence[float],
        method: BaseCorrelationMethod,
        strike_method: StrikeMethod,
        strike_evaluator: StrikeEvaluator | None = None,
        interp: Interp | None = None,
        min_correlation: float = 0.0,
        max_correlation: float = 1.0,
    ) -> "BaseCorrelation":
        """
        Weighted average of curves on the union of their strikes.

        Weights are normalised to sum to one; every curve must use
        ``strike_method``.
        """
        if not base_correlations:
            raise ConfigurationError("Must specify base correlations")
        if len(base_correlations) != len(weights):
            raise ConfigurationError(
                f"Base correlations (Length={len(base_correlations)}) and weights "
                f"(Length={len(weights)}) not match"
            )
        w = np.asarray(weights, dtype=np.float64)
        w = w / w.sum()
        for bc in base_correlations:
            if bc.strike_method != strike_method:
                raise ConfigurationError(
                    "Only base correlations with same strike methods can be combined"
                )
        strikes = np.unique(np.concatenate([bc.strikes for bc in base_correlations]))
        corrs = [
            sum(wi * bc.get_correlation_at(s) for wi, bc in zip(w, base_correlations))
            for s in strikes
        ]
        return cls(
            method, strike_method, strikes, corrs,
            strike_evaluator=strike_evaluator, interp=interp,
            min_correlation=min_correlation, max_correlation=max_correlation,
        )

    @classmethod
    def from_pricers(
        cls,
        pricers: Sequence[TranchePricer],
        correlations: Sequence[float],
        method: BaseCorrelationMethod,
        strike_method: StrikeMethod,
        strike_evaluator: StrikeEvaluator | None = None,
        **kwargs,
    ) -> "BaseCorrelation":
        """
        Curve from calibrated equity tranches and their base correlations.

        Strikes are computed from the pricers at the calibrated correlations.
        """
        if not pricers:
            raise ConfigurationError("Must specify base pricers")
        s = calibrated_strikes(pricers, strike_method, strike_evaluator, correlations)
        return cls(
            method, strike_method, s, correlations,
            detachments=[p.tranche.detachment for p in pricers],
            tenor_date=pricers[0].tranche.maturity,
            strike_evaluator=strike_evaluator,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def strikes(self) -> FloatArray:
        """Strike nodes."""
        return self._strikes

    @property
    def correlations(self) -> FloatArray:
        """Correlations at the strike nodes; bumps write through this array."""
        return self._correls

    @property
    def detachments(self) -> FloatArray | None:
        return self._detachments

    def __len__(self) -> int:
        return int(self._correls.size)

    def _curve_interp(self) -> Interp:
        lo, hi = self.min_correlation, self.max_correlation
        if self.interp_on_factors:
            lo, hi = math.sqrt(max(lo, 0.0)), math.sqrt(max(hi, 0.0))
        return self.interp.with_bounds(lo, hi)

    def make_strike_fn(
        self,
        tranche: Tranche,
        basket: BasketPricer,
        discount_curve: DiscountCurve | None,
        onfactor: bool | None = None,
    ) -> StrikeFn:
        """Strike function of this curve's strike method carrying the curve nodes."""
        return make_strike_fn(
            self.strike_method, tranche, basket, discount_curve, self.strike_evaluator,
            interp=self._curve_interp(),
            onfactor=self.interp_on_factors if onfactor is None else onfactor,
            strikes=self._strikes,
            correlations=self._correls,
        )

    # ------------------------------------------------------------------
    # Correlation lookups
    # ------------------------------------------------------------------

    def get_correlation_at(self, strike: float) -> float:
        """
        Correlation interpolated at a strike.

        Raises
        ------
        NumericalError
            If the interpolated correlation exceeds 2 in magnitude
        """
        if self._correls.size == 1:
            return float(self._correls[0])
        evaluator = CorrelationEvaluator(
            self._curve_interp(), self.interp_on_factors, self._strikes, self._correls
        )
        corr = evaluator.evaluate(strike)
        if abs(corr) > _MAX_ABS_CORRELATION:
            raise NumericalError(f"Invalid base correlation {corr} at strike {strike}")
        return corr

    def calc_correlation(
        self,
        tranche: Tranche,
        basket: BasketPricer,
        discount_curve: DiscountCurve | None,
        tolerance_f: float,
        tolerance_x: float,
    ) -> float:
        """Correlation at the tranche detachment, without the maturity check."""
        if self._correls.size == 1:
            return float(self._correls[0])

        method = self.strike_method
        d = tranche.detachment
        if method in SCALED_METHODS:
            s = d * detachment_scaling_factor(method, basket, discount_curve)
            return self.get_correlation_at(s)
        if method in SCALED_FORWARD_METHODS:
            scaling = detachment_scaling_factor(method, basket, discount_curve)
            s = forward_multiplier(method, basket) * adjusted_detachment(basket, d) * scaling
            return self.get_correlation_at(s)

        tolerance_f, tolerance_x = check_tolerance(tolerance_f, tolerance_x, basket)
        if method == StrikeMethod.USER_DEFINED:
            equity = tranche.replace(attachment=0.0)
            pricer = basket.create_pricer(equity, discount_curve, basket.total_principal * d)
            self.strike_evaluator.set_pricer(pricer)

        fn = self.make_strike_fn(tranche, basket, discount_curve)
        with basket_factor(basket):
            if d > FULL_DETACHMENT:
                s = fn.strike(0.0)
                return self.get_correlation_at(1.0 - s if is_spread(method) else s)
            return fn.solve(tolerance_f, tolerance_x, self.max_correlation)

    def get_correlation(
        self,
        tranche: Tranche,
        basket: BasketPricer,
        discount_curve: DiscountCurve | None = None,
        tolerance_f: float = 0.0,
        tolerance_x: float = 0.0,
    ) -> float:
        """
        Base correlation at the tranche detachment.

        Raises
        ------
        ConfigurationError
            If the basket maturity differs from the tranche maturity
        """
        if basket.maturity != tranche.maturity:
            raise ConfigurationError(
                f"Basket maturity {basket.maturity} and tranche maturity "
                f"{tranche.maturity} not match"
            )
        return self.calc_correlation(tranche, basket, discount_curve, tolerance_f, tolerance_x)

    def get_correlations(
        self,
        tranche: Tranche,
        basket: BasketPricer,
        discount_curve: DiscountCurve | None = None,
        names: Sequence[str] | None = None,
        dates: Sequence[Year] | None = None,
        tolerance_f: float = 0.0,
        tolerance_x: float = 0.0,
    ) -> Correlation:
        """
        Detachment correlation as a correlation object.

        Without ``dates`` a ``SingleFactorCorrelation`` at the tranche
        maturity, otherwise a ``CorrelationTermStruct`` with one factor per
        date.
        """
        names = list(names) if names is not None else list(basket.entity_names)
        if dates is None or len(dates) == 0:
            basket.maturity = tranche.maturity
            basket.reset()
            corr = self.get_correlation(tranche, basket, discount_curve, tolerance_f, tolerance_x)
            return SingleFactorCorrelation(
                names, math.sqrt(corr), self.min_correlation, self.max_correlation
            )
        return self.factor_term_struct(
            tranche, basket, discount_curve, names, dates, tolerance_f, tolerance_x
        )

    def tranche_correlation(
        self,
        tranche: Tranche,
        basket: BasketPricer,
        discount_curve: DiscountCurve | None = None,
        ap_bump: float = 0.0,
        dp_bump: float = 0.0,
        tolerance_f: float = 0.0,
        tolerance_x: float = 0.0,
    ) -> float:
        """
        Flat correlation repricing ``[a, d]`` with the base correlations at ``a`` and ``d``.

        ``ap_bump`` and ``dp_bump`` shift the two base correlations first.
        """
        tolerance_f, tolerance_x = check_tolerance(tolerance_f, tolerance_x, basket)
        corr1 = self.get_correlation(tranche, basket, discount_curve, tolerance_f, tolerance_x)
        if tranche.attachment <= _EQUITY_ATTACHMENT:
            return corr1

        lower = tranche.replace(attachment=0.0, detachment=tranche.attachment)
        corr0 = self.get_correlation(lower, basket, discount_curve, tolerance_f, tolerance_x)
        corr0 += ap_bump
        corr1 += dp_bump
        if abs(corr1 - corr0) < _EQUITY_ATTACHMENT:
            return 0.5 * (corr0 + corr1)

        pricer = basket.create_pricer(tranche, discount_curve, 1.0)
        return pricer.implied_tranche_correlation(
            self.method, corr0, corr1, tolerance_f, tolerance_x
        )

    def correlation_derivatives(
        self,
        basket: BasketPricer,
        discount_curve: DiscountCurve | None,
        tranche: Tranche,
        buffer: SensitivityBuffer,
    ) -> float:
        from basecorr_core.sensitivity.engine import correlation_derivatives

        return correlation_derivatives(self, basket, discount_curve, tranche, buffer)

    # ------------------------------------------------------------------
    # Bumps
    # ------------------------------------------------------------------

    def _bump_node(
        self, i: int, bump: float, relative: bool, lower: float, upper: float
    ) -> float:
        orig = float(self._correls[i])
        delta = relative_delta(orig, bump) if relative else bump
        value = min(max(orig + delta, lower), upper)
        self._correls[i] = value
        return value - orig

    def bump_correlations(
        self,
        select_detachments: Sequence[float] | None,
        bump_sizes: Sequence[float] | None,
        relative: bool,
        lower_bound: float = 0.0,
        upper_bound: float = 1.0,
    ) -> float:
        """
        Bump nodes selected by detachment, clamping to the bounds.

        Parameters
        ----------
        select_detachments : Sequence[float] | None
            Detachments to bump, matched within 1e-6; None bumps every node
        bump_sizes : Sequence[float] | None
            One size for all selected nodes or one per selection
        relative : bool
            Relative instead of absolute bumps
        lower_bound, upper_bound : float
            Bounds of the bumped correlations

        Returns
        -------
        float
            Average realised change
        """
        if bump_sizes is None or len(bump_sizes) == 0:
            return 0.0
        n = self._correls.size

        if select_detachments is None:
            if len(bump_sizes) != 1 and len(bump_sizes) != n:
                raise ConfigurationError(
                    f"Number of bumps ({len(bump_sizes)}) and correlations ({n}) not match"
                )
            total = 0.0
            for i in range(n):
                b = bump_sizes[0] if len(bump_sizes) == 1 else bump_sizes[i]
                total += self._bump_node(i, b, relative, lower_bound, upper_bound)
            return total / n if n else 0.0

        if len(bump_sizes) != 1 and len(bump_sizes) != len(select_detachments):
            raise ConfigurationError(
                f"Number of bumps ({len(bump_sizes)}) and selected detachments "
                f"({len(select_detachments)}) not match"
            )
        if self._detachments is None:
            raise ConfigurationError(f"Base correlation {self.name!r} has no detachments")
        avg = 0.0
        count = 0
        for j, d in enumerate(select_detachments):
            hits = np.flatnonzero(np.abs(self._detachments - d) < DETACHMENT_TOLERANCE)
            if hits.size == 0:
                continue
            b = bump_sizes[0] if len(bump_sizes) == 1 else bump_sizes[j]
            delta = self._bump_node(int(hits[0]), b, relative, lower_bound, upper_bound)
            count += 1
            avg += (delta - avg) / count
        return avg

    def bump_index(self, i: int, bump: float, relative: bool, factor: bool = False) -> float:
        """
        Bump node ``i``, clamped to ``[min_correlation, max_correlation]``.

        Returns the realised change. ``factor`` is accepted for a uniform
        bump interface; nodes are always correlations.
        """
        if i < 0 or i >= self._correls.size:
            raise ConfigurationError(
                f"Index {i} out of range [0, {self._correls.size})"
            )
        return self._bump_node(
            i, bump, relative, self.min_correlation, self.max_correlation
        )

    def bump_all(self, bump: float, relative: bool, factor: bool = False) -> float:
        n = self._correls.size
        if n == 0:
            return 0.0
        return sum(self.bump_index(i, bump, relative, factor) for i in range(n)) / n

    def bump_selected(
        self,
        components: Sequence[str] | None,
        tenor_dates: Sequence[Year] | None,
        detachments: Sequence[float] | None,
        tranche_bumps: Sequence[BumpSize],
        relative: bool,
    ) -> float:
        from basecorr_core.surface.term_struct import BaseCorrelationTermStruct

        return BaseCorrelationTermStruct.wrap(self).bump_selected(
            components, tenor_dates, detachments, tranche_bumps, relative
        )

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------

    def set_correlations(self, other: BaseCorrelationObject) -> None:
        if not isinstance(other, BaseCorrelation):
            raise ConfigurationError("The source object is not a base correlation object")
        if other.correlations.size != self._correls.size:
            raise ConfigurationError(
                f"Source correlations (Length={other.correlations.size}) not match "
                f"(Length={self._correls.size})"
            )
        self._correls[:] = other.correlations
        self._strikes[:] = other.strikes

    def walk(self, visit: VisitFn) -> None:
        visit(self)

    def content(self) -> pd.DataFrame:
        n = self._correls.size
        dps = self._detachments if self._detachments is not None else np.full(n, np.nan)
        df = pd.DataFrame(
            {
                "Detachment": dps,
                "Strike": self._strikes,
                "Correlation": self._correls,
            }
        )
        if self.tenor_date is not None:
            df.insert(0, "Tenor", self.tenor_date)
        return df
