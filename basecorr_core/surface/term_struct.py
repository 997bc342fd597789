"""
Base correlation term structure: one calibrated curve per tenor date.
"""

import logging
from enum import Enum
from typing import Sequence

import numpy as np
import pandas as pd

from basecorr_core._types import FloatArray, SensitivityBuffer, Year
from basecorr_core.basket.protocols import BasketPricer, DiscountCurve
from basecorr_core.basket.tranche import Tranche, basket_maturity
from basecorr_core.config.loader import get_engine_config
from basecorr_core.correlation.base import Correlation
from basecorr_core.exceptions import ConfigurationError
from basecorr_core.numerics.interp import Interp
from basecorr_core.surface.base import BaseCorrelationObject, SurfaceKind, VisitFn
from basecorr_core.surface.base_correlation import BaseCorrelation
from basecorr_core.surface.bump import BumpSize, CorrelationBump

logger = logging.getLogger(__name__)


class CalibrationMethod(Enum):
    """How the tenors of a term structure were calibrated."""

    MATURITY_MATCH = "MaturityMatch"
    TERM_STRUCTURE = "TermStructure"


class BaseCorrelationTermStruct(BaseCorrelationObject):
    """
    Base correlation curves indexed by tenor date.

    Parameters
    ----------
    dates : Sequence[Year]
        Strictly ascending tenor dates
    base_correlations : Sequence[BaseCorrelation]
        One curve per date
    interp : Interp | None
        Time interpolation; engine default (linear, constant extrapolation) when None
    calibration_method : CalibrationMethod
        ``MATURITY_MATCH`` surfaces price every maturity off the matching
        tenor and expose no term-structure dates
    min_correlation, max_correlation : float | None
        Bounds; the extremes over the slices when None
    name : str
        Identifier used by selector bumps
    entity_names : Sequence[str] | None
        Names of the calibration basket

    Example
    -------
    >>> bct = BaseCorrelationTermStruct([3.0, 5.0], [bc_3y, bc_5y], name="CDX")
    >>> bct.get_correlation(tranche_4y, basket)  # interpolated between tenors
    """

    kind = SurfaceKind.TERM_STRUCT

    def __init__(
        self,
        dates: Sequence[Year],
        base_correlations: Sequence[BaseCorrelation],
        interp: Interp | None = None,
        calibration_method: CalibrationMethod = CalibrationMethod.TERM_STRUCTURE,
        min_correlation: float | None = None,
        max_correlation: float | None = None,
        name: str = "",
        entity_names: Sequence[str] | None = None,
        tenor_names: Sequence[str] | None = None,
    ) -> None:
        if dates is None or len(dates) == 0:
            raise ConfigurationError("Dates must not be empty")
        if base_correlations is None or len(base_correlations) != len(dates):
            raise ConfigurationError(
                f"Base correlations (len={0 if base_correlations is None else len(base_correlations)}) "
                f"and dates (len={len(dates)}) not match"
            )
        dates_arr = np.asarray(dates, dtype=np.float64)
        if dates_arr.size > 1 and np.any(np.diff(dates_arr) <= 0):
            raise ConfigurationError("Tenor dates must be strictly ascending")
        if tenor_names is not None and len(tenor_names) != len(dates):
            raise ConfigurationError(
                f"Tenor names (len={len(tenor_names)}) and dates (len={len(dates)}) not match"
            )

        if min_correlation is None:
            min_correlation = min(bc.min_correlation for bc in base_correlations)
        if max_correlation is None:
            max_correlation = max(bc.max_correlation for bc in base_correlations)
        super().__init__(min_correlation, max_correlation, name, entity_names)

        self._dates = dates_arr
        self.base_correlations = list(base_correlations)
        self.interp = interp or get_engine_config().interpolation.time_policy(
            min_correlation, max_correlation
        )
        self.calibration_method = calibration_method
        self.tenor_names = list(tenor_names) if tenor_names is not None else None

    @classmethod
    def wrap(cls, bc: BaseCorrelation) -> "BaseCorrelationTermStruct":
        """Single-date term structure sharing ``bc`` and its name."""
        date = bc.tenor_date if bc.tenor_date is not None else 0.0
        return cls(
            [date], [bc],
            min_correlation=bc.min_correlation, max_correlation=bc.max_correlation,
            name=bc.name, entity_names=bc.entity_names,
        )

    @property
    def dates(self) -> FloatArray:
        return self._dates

    @property
    def interp_on_factors(self) -> bool:
        return all(bc.interp_on_factors for bc in self.base_correlations)

    @interp_on_factors.setter
    def interp_on_factors(self, value: bool) -> None:
        for bc in self.base_correlations:
            bc.interp_on_factors = value

    def get_term_struct_dates(self) -> list[Year] | None:
        if self.calibration_method == CalibrationMethod.MATURITY_MATCH:
            return None
        return [float(d) for d in self._dates]

    def _date_index(self, date: Year) -> int:
        """Index of the tenor equal to ``date``; a single tenor always matches."""
        if self._dates.size == 1:
            return 0
        hits = np.flatnonzero(self._dates == date)
        return int(hits[0]) if hits.size else -1

    def _interpolate(self, values: Sequence[float], date: Year) -> float:
        return self.interp.build(self._dates, values)(date)

    # ------------------------------------------------------------------
    # Correlation lookups
    # ------------------------------------------------------------------

    def get_correlation(
        self,
        tranche: Tranche,
        basket: BasketPricer,
        discount_curve: DiscountCurve | None = None,
        tolerance_f: float = 0.0,
        tolerance_x: float = 0.0,
    ) -> float:
        """
        Correlation at the tranche detachment and maturity.

        An exact tenor match uses that curve; otherwise every curve is
        evaluated at the tranche maturity and the results are interpolated
        in time. The basket maturity is restored on exit.
        """
        idx = self._date_index(tranche.maturity)
        with basket_maturity(basket, tranche.maturity):
            if idx >= 0:
                return self.base_correlations[idx].calc_correlation(
                    tranche, basket, discount_curve, tolerance_f, tolerance_x
                )
            values = [
                bc.calc_correlation(tranche, basket, discount_curve, tolerance_f, tolerance_x)
                for bc in self.base_correlations
            ]
        return self._interpolate(values, tranche.maturity)

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
        """Common-factor term structure over ``dates`` (the surface tenors by default)."""
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
        idx = self._date_index(tranche.maturity)
        if idx >= 0:
            return self.base_correlations[idx].tranche_correlation(
                tranche, basket, discount_curve, ap_bump, dp_bump, tolerance_f, tolerance_x
            )
        values = []
        for date, bc in zip(self._dates, self.base_correlations):
            dated = tranche.replace(maturity=float(date))
            with basket_maturity(basket, float(date)):
                values.append(
                    bc.tranche_correlation(
                        dated, basket, discount_curve, ap_bump, dp_bump, tolerance_f, tolerance_x
                    )
                )
        return self._interpolate(values, tranche.maturity)

    def get_base_correlation(self, date: Year) -> BaseCorrelation:
        """
        Curve applicable at ``date``.

        The matching slice when ``date`` is a tenor, the first slice for
        dates up to the first tenor, otherwise a new curve on the union of
        strikes with correlations interpolated in time.

        Raises
        ------
        ConfigurationError
            If the slices differ in method or strike method
        """
        idx = self._date_index(date)
        if idx >= 0:
            return self.base_correlations[idx]
        if date <= self._dates[0]:
            return self.base_correlations[0]

        first = self.base_correlations[0]
        for bc in self.base_correlations[1:]:
            if bc.method != first.method or bc.strike_method != first.strike_method:
                raise ConfigurationError(
                    "Not all the base correlations have the same method and strike method"
                )
        logger.debug("Building base correlation of %r at %s from %d tenors",
                     self.name, date, self._dates.size)
        strikes = np.unique(np.concatenate([bc.strikes for bc in self.base_correlations]))
        strikes = strikes[~np.isnan(strikes)]
        corrs = [
            self._interpolate([bc.get_correlation_at(s) for bc in self.base_correlations], date)
            for s in strikes
        ]
        return BaseCorrelation(
            first.method, first.strike_method, strikes, corrs,
            tenor_date=date,
            strike_evaluator=first.strike_evaluator,
            interp=first.interp,
            interp_on_factors=first.interp_on_factors,
            min_correlation=self.min_correlation,
            max_correlation=self.max_correlation,
            name=self.name,
            entity_names=self.entity_names,
        )

    def correlation_derivatives(
        self,
        basket: BasketPricer,
        discount_curve: DiscountCurve | None,
        tranche: Tranche,
        buffer: SensitivityBuffer,
    ) -> float:
        """Derivatives of the curve applicable at the tranche maturity."""
        bc = self.get_base_correlation(tranche.maturity)
        return bc.correlation_derivatives(basket, discount_curve, tranche, buffer)

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
        """Bump this surface if it is among ``components`` (or no components are given)."""
        if components is not None and self.name not in components:
            return 0.0
        bump = CorrelationBump.create(self, tenor_dates, detachments, tranche_bumps, relative)
        if bump is None:
            return 0.0
        return CorrelationBump.bump_surfaces([self], [bump])

    def bump_index(self, i: int, bump: float, relative: bool, factor: bool = False) -> float:
        """Bump node ``i`` of every slice that has it; averaged over all slices."""
        total = sum(
            bc.bump_index(i, bump, relative, factor) if i < len(bc) else 0.0
            for bc in self.base_correlations
        )
        return total / len(self.base_correlations)

    def bump_all(self, bump: float, relative: bool, factor: bool = False) -> float:
        total = sum(bc.bump_all(bump, relative, factor) for bc in self.base_correlations)
        return total / len(self.base_correlations)

    def bump_tenor(
        self,
        tenor: int,
        i: int | None,
        bump: float,
        relative: bool,
        factor: bool = False,
    ) -> float:
        """
        Bump one slice: node ``i``, or every node when ``i`` is None.

        Raises
        ------
        ConfigurationError
            If ``tenor`` is out of range
        """
        if tenor < 0 or tenor >= len(self.base_correlations):
            raise ConfigurationError(f"Tenor {tenor} is out of range")
        bc = self.base_correlations[tenor]
        if i is None:
            return bc.bump_all(bump, relative, factor)
        if i < len(bc):
            return bc.bump_index(i, bump, relative, factor)
        return 0.0

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------

    def set_correlations(self, other: BaseCorrelationObject) -> None:
        if not isinstance(other, BaseCorrelationTermStruct):
            raise ConfigurationError(
                "The source object is not a base correlation term struct object"
            )
        if len(other.base_correlations) != len(self.base_correlations):
            raise ConfigurationError("The source correlation array does not match this data")
        for mine, theirs in zip(self.base_correlations, other.base_correlations):
            mine.set_correlations(theirs)

    def walk(self, visit: VisitFn) -> None:
        if visit(self):
            for bc in self.base_correlations:
                bc.walk(visit)

    def validate(self) -> None:
        super().validate()
        if len(self.base_correlations) != self._dates.size:
            raise ConfigurationError(
                f"Base correlations (len={len(self.base_correlations)}) and "
                f"dates (len={self._dates.size}) not match"
            )

    def content(self) -> pd.DataFrame:
        frames = []
        for t, (date, bc) in enumerate(zip(self._dates, self.base_correlations)):
            df = bc.content()
            if "Tenor" in df.columns:
                df = df.drop(columns="Tenor")
            df.insert(0, "Tenor", float(date))
            if self.tenor_names is not None:
                df.insert(1, "TenorName", self.tenor_names[t])
            frames.append(df)
        return pd.concat(frames, ignore_index=True)
