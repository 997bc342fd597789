"""
Surfaces built from other surfaces.

``BaseCorrelationMixed`` forwards bumps and structural operations to its
children; the concrete strategies decide how child correlations are
combined.
"""

import math
from typing import Sequence

import numpy as np
import pandas as pd

from basecorr_core._types import FloatArray, SensitivityBuffer, Year
from basecorr_core.basket.protocols import BasketPricer, DiscountCurve
from basecorr_core.basket.tranche import Tranche
from basecorr_core.config.loader import get_engine_config
from basecorr_core.correlation.base import Correlation
from basecorr_core.correlation.factor import FactorCorrelation
from basecorr_core.exceptions import ConfigurationError
from basecorr_core.surface.base import BaseCorrelationObject, SurfaceKind, VisitFn
from basecorr_core.surface.bump import BumpSize
from basecorr_core.surface.term_struct import BaseCorrelationTermStruct


class BaseCorrelationMixed(BaseCorrelationObject):
    """
    Base class of surfaces owning child surfaces.

    Parameters
    ----------
    base_correlations : Sequence[BaseCorrelationObject | None]
        Child surfaces; None entries are skipped
    min_correlation, max_correlation : float
        Bounds; NaN takes the extremes over the children
    name : str
        Identifier
    entity_names : Sequence[str] | None
        Basket names
    """

    def __init__(
        self,
        base_correlations: Sequence[BaseCorrelationObject | None],
        min_correlation: float = math.nan,
        max_correlation: float = math.nan,
        name: str = "",
        entity_names: Sequence[str] | None = None,
    ) -> None:
        if base_correlations is None:
            raise ConfigurationError("Null base correlation array")
        super().__init__(min_correlation, max_correlation, name, entity_names)
        self.base_correlations = list(base_correlations)
        if math.isnan(min_correlation) or math.isnan(max_correlation):
            self.set_min_and_max()
        if not math.isnan(min_correlation):
            self.min_correlation = min_correlation
        if not math.isnan(max_correlation):
            self.max_correlation = max_correlation

    def _live(self) -> list[tuple[int, BaseCorrelationObject]]:
        return [(i, bc) for i, bc in enumerate(self.base_correlations) if bc is not None]

    # ------------------------------------------------------------------
    # Helpers shared by the strategies
    # ------------------------------------------------------------------

    def factor_correlation(
        self,
        tranche: Tranche,
        basket: BasketPricer,
        discount_curve: DiscountCurve | None,
        names: Sequence[str],
        associates: Sequence[int],
        tolerance_f: float = 0.0,
        tolerance_x: float = 0.0,
    ) -> FactorCorrelation:
        """
        Per-name factors: name ``i`` gets ``sqrt`` of the correlation of child ``associates[i]``.
        """
        data = np.zeros(basket.count)
        owners = np.asarray(associates)
        for idx, bc in self._live():
            corr = bc.get_correlation(tranche, basket, discount_curve, tolerance_f, tolerance_x)
            data[owners == idx] = math.sqrt(corr)
        return FactorCorrelation(names, 1, data)

    def get_term_struct_dates(self) -> list[Year] | None:
        dates: list[Year] = []
        for _, bc in self._live():
            dates.extend(bc.get_term_struct_dates() or [])
        if not dates:
            return None
        return [float(d) for d in np.unique(dates)]

    @property
    def dates(self) -> FloatArray:
        """Union of the tenor dates of the children that have tenors."""
        dates = [
            d for _, bc in self._live() if isinstance(bc, _TENOR_KINDS) for d in bc.dates
        ]
        return np.unique(np.asarray(dates, dtype=np.float64))

    # ------------------------------------------------------------------
    # Bumps
    # ------------------------------------------------------------------

    def bump_selected(
        self,
        components: Sequence[str] | None,
        tenor_dates: Sequence[Year] | None,
        detachments: Sequence[float] | None,
        tranche_bumps: Sequence[BumpSize],
        relative: bool,
    ) -> float:
        """Bump every child; the average counts only children that moved."""
        threshold = get_engine_config().mixing.bump_threshold
        avg = 0.0
        count = 0
        for _, bc in self._live():
            res = bc.bump_selected(components, tenor_dates, detachments, tranche_bumps, relative)
            if abs(res) > threshold:
                count += 1
                avg += (res - avg) / count
        return avg

    def bump_index(self, i: int, bump: float, relative: bool, factor: bool = False) -> float:
        """Bump node ``i`` of every child; averaged over the children bumped."""
        deltas = [bc.bump_index(i, bump, relative, factor) for _, bc in self._live()]
        return sum(deltas) / len(deltas) if deltas else 0.0

    def bump_all(self, bump: float, relative: bool, factor: bool = False) -> float:
        deltas = [bc.bump_all(bump, relative, factor) for _, bc in self._live()]
        return sum(deltas) / len(deltas) if deltas else 0.0

    def bump_tenor(
        self,
        tenor: int,
        i: int | None,
        bump: float,
        relative: bool,
        factor: bool = False,
    ) -> float:
        """
        Bump the ``tenor``-th date of :attr:`dates` in every child that has it.

        Returns the average over the children bumped.
        """
        dates = self.dates
        if tenor < 0 or tenor >= dates.size:
            raise ConfigurationError(f"Tenor {tenor} is out of range")
        date = dates[tenor]
        total = 0.0
        count = 0
        for _, bc in self._live():
            if not isinstance(bc, _TENOR_KINDS):
                continue
            hits = np.flatnonzero(bc.dates == date)
            if hits.size == 0:
                continue
            total += bc.bump_tenor(int(hits[0]), i, bump, relative, factor)
            count += 1
        return total / count if count else 0.0

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------

    def set_correlations(self, other: BaseCorrelationObject) -> None:
        if not isinstance(other, BaseCorrelationMixed):
            raise ConfigurationError("The source object is not a base correlation mixed object")
        if len(other.base_correlations) != len(self.base_correlations):
            raise ConfigurationError("The source correlation array does not match this data")
        for mine, theirs in zip(self.base_correlations, other.base_correlations):
            if mine is not None and theirs is not None:
                mine.set_correlations(theirs)

    def walk(self, visit: VisitFn) -> None:
        if visit(self):
            for _, bc in self._live():
                bc.walk(visit)

    def content(self) -> pd.DataFrame:
        frames = []
        for i, bc in self._live():
            df = bc.content()
            df.insert(0, "Component", bc.name or f"#{i}")
            frames.append(df)
        if not frames:
            return pd.DataFrame()
        return pd.concat(frames, ignore_index=True)


class BaseCorrelationMixWeighted(BaseCorrelationMixed):
    """
    Weighted average of child correlations, ``sum w_i c_i / sum w_i``.

    Example
    -------
    >>> mix = BaseCorrelationMixWeighted([bc_a, bc_b], [0.25, 0.75])
    >>> mix.get_correlation(tranche, basket)
    """

    kind = SurfaceKind.MIX_WEIGHTED

    def __init__(
        self,
        base_correlations: Sequence[BaseCorrelationObject | None],
        weights: Sequence[float],
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

    def _weighted(self, values: Sequence[tuple[int, float]]) -> float:
        floor = get_engine_config().mixing.weight_sum_floor
        total = sum(self.weights[i] * v for i, v in values)
        wsum = sum(self.weights[i] for i, _ in values)
        if abs(wsum) > floor:
            return total / wsum
        return total

    def get_correlation(
        self,
        tranche: Tranche,
        basket: BasketPricer,
        discount_curve: DiscountCurve | None = None,
        tolerance_f: float = 0.0,
        tolerance_x: float = 0.0,
    ) -> float:
        return self._weighted(
            [
                (i, bc.get_correlation(tranche, basket, discount_curve, tolerance_f, tolerance_x))
                for i, bc in self._live()
            ]
        )

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
        names = list(names) if names is not None else list(basket.entity_names)
        if dates is None or len(dates) == 0:
            dates = self.get_term_struct_dates() or [tranche.maturity]
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
        return self._weighted(
            [
                (
                    i,
                    bc.tranche_correlation(
                        tranche, basket, discount_curve, ap_bump, dp_bump, tolerance_f, tolerance_x
                    ),
                )
                for i, bc in self._live()
            ]
        )

    def correlation_derivatives(
        self,
        basket: BasketPricer,
        discount_curve: DiscountCurve | None,
        tranche: Tranche,
        buffer: SensitivityBuffer,
    ) -> float:
        """Weighted average of the children's derivatives."""
        child_buffer = np.zeros_like(buffer)
        ders = np.zeros_like(buffer)
        values = []
        for i, bc in self._live():
            child_buffer[:] = 0.0
            values.append((i, bc.correlation_derivatives(basket, discount_curve, tranche, child_buffer)))
            ders += self.weights[i] * child_buffer
        floor = get_engine_config().mixing.weight_sum_floor
        wsum = sum(self.weights[i] for i, _ in values)
        buffer[:] = ders / wsum if abs(wsum) > floor else ders
        return self._weighted(values)


_TENOR_KINDS = (BaseCorrelationTermStruct, BaseCorrelationMixed)
