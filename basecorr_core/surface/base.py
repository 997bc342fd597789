"""
Abstract base correlation surface.

Every surface answers the same questions (the correlation of a tranche,
the per-name correlations of a basket, bumps) whether it is one calibrated
curve, a term structure of curves or a blend of other surfaces. Concrete
strategies are a closed set tagged by ``SurfaceKind``.
"""

import copy
import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Callable, Sequence

import numpy as np
import pandas as pd

from basecorr_core._types import SensitivityBuffer, Year
from basecorr_core.basket.protocols import BasketPricer, DiscountCurve
from basecorr_core.basket.tranche import Tranche
from basecorr_core.correlation.base import Correlation
from basecorr_core.correlation.term_struct import CorrelationTermStruct
from basecorr_core.exceptions import ConfigurationError, UnsupportedMethodError

if TYPE_CHECKING:
    from basecorr_core.surface.bump import BumpSize
    from basecorr_core.surface.term_struct import BaseCorrelationTermStruct

logger = logging.getLogger(__name__)

VisitFn = Callable[["BaseCorrelationObject"], bool]


class SurfaceKind(Enum):
    """Concrete surface strategies."""

    BASE = "BaseCorrelation"
    TERM_STRUCT = "BaseCorrelationTermStruct"
    MIX_WEIGHTED = "BaseCorrelationMixWeighted"
    COMBINED = "BaseCorrelationCombined"
    JOINT_SURFACES = "BaseCorrelationJointSurfaces"
    MIX_BY_NAME = "BaseCorrelationMixByName"


@dataclass(frozen=True)
class ModelChoice:
    """
    Basket model flags a surface was calibrated with.

    Attributes
    ----------
    extended : bool
        Correlations above one allowed
    with_correlated_recovery : bool
        Recoveries correlated with defaults
    """

    extended: bool = False
    with_correlated_recovery: bool = False


class BaseCorrelationObject(ABC):
    """
    Base class of all base correlation surfaces.

    Parameters
    ----------
    min_correlation : float
        Lower correlation bound
    max_correlation : float
        Upper correlation bound; above one marks an extended surface
    name : str
        Identifier used by selector bumps
    entity_names : Sequence[str] | None
        Names of the basket the surface was calibrated on
    """

    kind: SurfaceKind

    def __init__(
        self,
        min_correlation: float = 0.0,
        max_correlation: float = 1.0,
        name: str = "",
        entity_names: Sequence[str] | None = None,
    ) -> None:
        self.min_correlation = min_correlation
        self.max_correlation = max_correlation
        self.name = name
        self.entity_names = list(entity_names) if entity_names is not None else None
        self.with_correlated_recovery = False

    @property
    def extended(self) -> bool:
        """True if correlations above one are allowed."""
        return self.max_correlation > 1.0

    @property
    def model_choice(self) -> ModelChoice:
        return ModelChoice(self.extended, self.with_correlated_recovery)

    # ------------------------------------------------------------------
    # Correlation lookups
    # ------------------------------------------------------------------

    @abstractmethod
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

        Parameters
        ----------
        tranche : Tranche
            Tranche; only the detachment and maturity matter
        basket : BasketPricer
            Basket whose loss distribution defines the strike
        discount_curve : DiscountCurve | None
            Needed by the PV strike methods
        tolerance_f : float
            Solver function tolerance; derived from the basket when <= 0
        tolerance_x : float
            Solver factor tolerance; derived from the basket when <= 0

        Returns
        -------
        float
            Base correlation
        """

    @abstractmethod
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
        """Correlation object the basket should price the tranche with."""

    @abstractmethod
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
        """Flat correlation repricing the ``[a, d]`` tranche."""

    def get_term_struct_dates(self) -> list[Year] | None:
        """Tenor dates of the surface, or None without a term structure."""
        return None

    def factor_term_struct(
        self,
        tranche: Tranche,
        basket: BasketPricer,
        discount_curve: DiscountCurve | None,
        names: Sequence[str],
        dates: Sequence[Year],
        tolerance_f: float = 0.0,
        tolerance_x: float = 0.0,
    ) -> CorrelationTermStruct:
        """
        Common-factor term structure with the detachment correlation at each date.

        The basket is left priced with the returned term structure and its
        maturity at the last date.
        """
        cts = CorrelationTermStruct(
            names, np.zeros(len(dates)), dates, self.min_correlation, self.max_correlation
        )
        basket.correlation = cts
        basket.raw_loss_levels = (0.0, tranche.detachment)
        for i, date in enumerate(dates):
            dated = tranche.replace(maturity=date)
            basket.maturity = date
            basket.reset()
            corr = self.get_correlation(dated, basket, discount_curve, tolerance_f, tolerance_x)
            cts.set_factor_at_date(i, math.sqrt(corr))
        return cts

    def correlation_derivatives(
        self,
        basket: BasketPricer,
        discount_curve: DiscountCurve | None,
        tranche: Tranche,
        buffer: SensitivityBuffer,
    ) -> float:
        """Packed per-name derivatives of the detachment correlation."""
        raise UnsupportedMethodError(
            f"Semi-analytic correlation derivatives not supported by {self.kind.value}",
            self.kind,
        )

    # ------------------------------------------------------------------
    # Bumps
    # ------------------------------------------------------------------

    @abstractmethod
    def bump_index(self, i: int, bump: float, relative: bool, factor: bool = False) -> float:
        """Bump the ``i``-th correlation node; returns the realised change."""

    @abstractmethod
    def bump_all(self, bump: float, relative: bool, factor: bool = False) -> float:
        """Bump every correlation node; returns the average change."""

    @abstractmethod
    def bump_selected(
        self,
        components: Sequence[str] | None,
        tenor_dates: Sequence[Year] | None,
        detachments: Sequence[float] | None,
        tranche_bumps: Sequence["BumpSize"],
        relative: bool,
    ) -> float:
        """
        Bump the nodes picked by component name, tenor and detachment.

        None for a selector means no restriction.

        Returns
        -------
        float
            Average realised change over the bumped nodes
        """

    def bump_sizes(
        self,
        components: Sequence[str] | None,
        tenor_dates: Sequence[Year] | None,
        detachments: Sequence[float] | None,
        sizes: Sequence[float],
        relative: bool,
        lower_bound: float = math.nan,
        upper_bound: float = math.nan,
    ) -> float:
        """:meth:`bump_selected` with plain sizes sharing one set of bounds."""
        from basecorr_core.surface.bump import BumpSize

        return self.bump_selected(
            components, tenor_dates, detachments,
            BumpSize.create_array(sizes, lower_bound, upper_bound), relative,
        )

    def bump_components(
        self,
        components: Sequence[str] | None,
        bumps: Sequence["CorrelationBump"],  # noqa: F821
    ) -> float:
        """Apply prepared bumps to the named term-structure components."""
        from basecorr_core.surface.bump import CorrelationBump

        surfaces = self.find_components(self, components)
        return CorrelationBump.bump_surfaces(surfaces, bumps)

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------

    @abstractmethod
    def set_correlations(self, other: "BaseCorrelationObject") -> None:
        """Copy the correlation data of an identically shaped surface."""

    @abstractmethod
    def walk(self, visit: VisitFn) -> None:
        """Visit this surface and, while ``visit`` returns True, its children."""

    @abstractmethod
    def content(self) -> pd.DataFrame:
        """Tabular dump of the surface."""

    def clone(self) -> "BaseCorrelationObject":
        """Deep copy, safe to bump."""
        return copy.deepcopy(self)

    def create(self, entity_names: Sequence[str] | None) -> "BaseCorrelationObject":
        """Shallow copy carrying different entity names."""
        obj = copy.copy(self)
        obj.entity_names = list(entity_names) if entity_names is not None else None
        return obj

    def set_min_and_max(self) -> None:
        """Set the bounds to the extremes over every nested surface."""
        bounds = []

        def visit(bco: BaseCorrelationObject) -> bool:
            if bco is not self:
                bounds.append((bco.min_correlation, bco.max_correlation))
            return True

        self.walk(visit)
        lows = [lo for lo, _ in bounds if not math.isnan(lo)]
        highs = [hi for _, hi in bounds if not math.isnan(hi)]
        self.min_correlation = min(lows) if lows else 0.0
        self.max_correlation = max(highs) if highs else 1.0

    def validate(self) -> None:
        """
        Check the surface is consistent.

        Raises
        ------
        ConfigurationError
            If nested surfaces were calibrated with different model choices
            or bounds are inverted
        """
        if self.min_correlation > self.max_correlation:
            raise ConfigurationError(
                f"min_correlation ({self.min_correlation}) exceeds "
                f"max_correlation ({self.max_correlation})"
            )
        choices: dict[ModelChoice, str] = {}

        # slices of a term structure follow their parent
        def visit(bco: BaseCorrelationObject) -> bool:
            if bco.kind in (SurfaceKind.BASE, SurfaceKind.TERM_STRUCT):
                choices.setdefault(bco.model_choice, bco.name)
                return False
            return True

        self.walk(visit)
        if len(choices) > 1:
            raise ConfigurationError(
                f"Inconsistent basket model choices among components {sorted(choices.values())}"
            )

    # ------------------------------------------------------------------
    # Finders over nested surfaces
    # ------------------------------------------------------------------

    @staticmethod
    def _children(bco: "BaseCorrelationObject") -> list["BaseCorrelationObject"] | None:
        return getattr(bco, "base_correlations", None)

    @staticmethod
    def find_component_names(bco: "BaseCorrelationObject") -> list[str] | None:
        """Names of the leaf surfaces, in order of first appearance."""
        children = BaseCorrelationObject._children(bco)
        if children is not None and bco.kind not in (SurfaceKind.BASE, SurfaceKind.TERM_STRUCT):
            names: list[str] = []
            for child in children:
                if child is None:
                    continue
                for n in BaseCorrelationObject.find_component_names(child) or []:
                    if n not in names:
                        names.append(n)
            return names
        return [bco.name] if bco.name is not None else None

    @staticmethod
    def find_components(
        bco: "BaseCorrelationObject",
        component_names: Sequence[str] | None = None,
    ) -> list["BaseCorrelationTermStruct"]:
        """
        Term-structure components of a surface.

        A plain ``BaseCorrelation`` is wrapped in a single-date term
        structure of the same name. With ``component_names`` the result
        follows their order.

        Raises
        ------
        ConfigurationError
            If a requested name is not a component
        """
        from basecorr_core.surface.term_struct import BaseCorrelationTermStruct

        found: list[BaseCorrelationTermStruct] = []

        def collect(obj: BaseCorrelationObject) -> None:
            if obj.kind == SurfaceKind.TERM_STRUCT:
                found.append(obj)
            elif obj.kind == SurfaceKind.BASE:
                found.append(BaseCorrelationTermStruct.wrap(obj))
            else:
                for child in BaseCorrelationObject._children(obj) or []:
                    if child is not None:
                        collect(child)

        collect(bco)
        if not component_names:
            return found
        by_name: dict[str, BaseCorrelationTermStruct] = {}
        for bct in found:
            by_name.setdefault(bct.name, bct)
        missing = [n for n in component_names if n not in by_name]
        if missing:
            raise ConfigurationError(f"Components {missing} not found")
        return [by_name[n] for n in component_names]

    @staticmethod
    def find_tenor_dates(bco: "BaseCorrelationObject") -> list[Year] | None:
        """Union of the tenor dates of every term-structure component."""
        dates: list[Year] = []

        def visit(obj: BaseCorrelationObject) -> bool:
            if obj.kind == SurfaceKind.TERM_STRUCT:
                dates.extend(obj.dates)
                return False
            return True

        bco.walk(visit)
        if not dates:
            return None
        return [float(d) for d in np.unique(dates)]

    @staticmethod
    def find_detachments(bco: "BaseCorrelationObject") -> list[float] | None:
        """Union of the calibrated detachments of every curve."""
        dps: list[float] = []

        def visit(obj: BaseCorrelationObject) -> bool:
            if obj.kind == SurfaceKind.BASE and obj.detachments is not None:
                dps.extend(obj.detachments)
            return True

        bco.walk(visit)
        if not dps:
            return None
        return [float(d) for d in np.unique(dps)]

    @staticmethod
    def find_entity_names(bcos: Sequence["BaseCorrelationObject"]) -> list[str] | None:
        """First non-empty entity name list; surfaces are assumed to share names."""
        for bco in bcos:
            if bco is not None and bco.entity_names is not None:
                return bco.entity_names
        return None

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(name={self.name!r}, "
            f"bounds=[{self.min_correlation}, {self.max_correlation}])"
        )
