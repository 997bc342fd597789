"""
Joint surfaces: weighted blend of several base correlation surfaces.
"""

import math
from typing import Sequence

import numpy as np

from basecorr_core._types import FloatArray, Year
from basecorr_core.basket.protocols import BasketPricer, DiscountCurve
from basecorr_core.basket.tranche import Tranche
from basecorr_core.config.loader import get_engine_config
from basecorr_core.correlation.base import Correlation
from basecorr_core.correlation.factor import (
    FactorCorrelation,
    GeneralCorrelation,
    SingleFactorCorrelation,
)
from basecorr_core.correlation.term_struct import CorrelationTermStruct
from basecorr_core.exceptions import ConfigurationError, UnsupportedMethodError
from basecorr_core.numerics.interp import Interp
from basecorr_core.surface.base import BaseCorrelationObject, SurfaceKind
from basecorr_core.surface.mixed import BaseCorrelationMixed


def first_factor(co: Correlation) -> float:
    """Leading common factor of a correlation object."""
    if isinstance(co, CorrelationTermStruct):
        return float(co.block(0)[0])
    if isinstance(co, SingleFactorCorrelation):
        return co.get_factor()
    if isinstance(co, FactorCorrelation):
        return float(co.data[0])
    if isinstance(co, GeneralCorrelation):
        data = co.data
        return math.sqrt(data[0] if data.size < 2 else data[1])
    raise UnsupportedMethodError(f"Unknown correlation: {co.name}", type(co))


class BaseCorrelationJointSurfaces(BaseCorrelationMixed):
    """
    Blend of child surfaces with fixed weights.

    Children with a weight at or below ``mixing.weight_threshold`` are
    ignored.

    Parameters
    ----------
    base_correlations : Sequence[BaseCorrelationObject]
        Child surfaces
    weights : Sequence[float]
        One weight per child
    time_interp : Interp | None
        Interpolation of child term structures onto common dates
    min_correlation, max_correlation : float
        Bounds; NaN takes the extremes over the children
    """

    kind = SurfaceKind.JOINT_SURFACES

    def __init__(
        self,
        base_correlations: Sequence[BaseCorrelationObject | None],
        weights: Sequence[float],
        time_interp: Interp | None = None,
        min_correlation: float = math.nan,
        max_correlation: float = math.nan,
        name: str = "",
    ) -> None:
        super().__init__(base_correlations, min_correlation, max_correlation, name)
        if len(weights) != len(self.base_correlations):
            raise ConfigurationError(
                f"Base correlations (Length={len(self.base_correlations)}) and weights "
                f"(Length={len(weights)}) not match"
            )
        self.weights = np.asarray(weights, dtype=np.float64)
        self.time_interp = time_interp

    def _active(self) -> list[tuple[int, BaseCorrelationObject]]:
        threshold = get_engine_config().mixing.weight_threshold
        return [(i, bc) for i, bc in self._live() if self.weights[i] > threshold]

    def get_correlation(
        self,
        tranche: Tranche,
        basket: BasketPricer,
        discount_curve: DiscountCurve | None = None,
        tolerance_f: float = 0.0,
        tolerance_x: float = 0.0,
    ) -> float:
        result = 0.0
        sum_weights = 0.0
        for i, bc in self._active():
            c = bc.get_correlation(tranche, basket, discount_curve, tolerance_f, tolerance_x)
            sum_weights += self.weights[i]
            result += self.weights[i] * (c - result) / sum_weights
        return result

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
        """Weighted running mean of the children's tranche correlations."""
        result = 0.0
        sum_weights = 0.0
        for i, bc in self._active():
            c = bc.tranche_correlation(
                tranche, basket, discount_curve, ap_bump, dp_bump, tolerance_f, tolerance_x
            )
            sum_weights += self.weights[i]
            result += self.weights[i] * (c - result) / sum_weights
        return result

    def _factor_path(self, dates: Sequence[Year], co: Correlation) -> FloatArray:
        if isinstance(co, CorrelationTermStruct):
            interp = (self.time_interp or co.interp).with_bounds(
                self.min_correlation, self.max_correlation
            )
            values = np.array([co.block(t)[0] for t in range(co.dates.size)])
            if co.dates.size == 1:
                return np.full(len(dates), values[0])
            curve = interp.build(co.dates, values)
            return np.array([curve(d) for d in dates])
        return np.full(len(dates), first_factor(co))

    def get_correlations(
        self,
        tranche: Tranche,
        basket: BasketPricer,
        discount_curve: DiscountCurve | None = None,
        names: Sequence[str] | None = None,
        dates: Sequence[Year] | None = None,
        tolerance_f: float = 0.0,
        tolerance_x: float = 0.0,
    ) -> CorrelationTermStruct:
        """
        Common-factor term structure blended from the children's term structures.

        Without ``dates`` the union of the children's tenor dates is used;
        with at most one date the result is a single factor at the tranche
        maturity.
        """
        names = list(names) if names is not None else list(basket.entity_names)
        cos: list[tuple[int, Correlation]] = [
            (i, bc.get_correlations(
                tranche, basket, discount_curve, names, dates, tolerance_f, tolerance_x
            ))
            for i, bc in self._active()
        ]
        if dates is None:
            dates = [
                float(d) for d in np.unique(np.concatenate(
                    [co.dates for _, co in cos if isinstance(co, CorrelationTermStruct)]
                    or [np.empty(0)]
                ))
            ]

        sum_weights = 0.0
        if len(dates) <= 1:
            result = 0.0
            for i, co in cos:
                sum_weights += self.weights[i]
                result += self.weights[i] * (first_factor(co) - result) / sum_weights
            return CorrelationTermStruct(
                names, [result], [tranche.maturity], self.min_correlation, self.max_correlation
            )

        corrs = np.zeros(len(dates))
        for i, co in cos:
            work = self._factor_path(dates, co)
            sum_weights += self.weights[i]
            corrs += self.weights[i] * (work - corrs) / sum_weights
        return CorrelationTermStruct(
            names, corrs, dates, self.min_correlation, self.max_correlation
        )
