"""
Name-partitioned surfaces: each basket name follows the surface of its group.
"""

from typing import Mapping, Sequence

import numpy as np

from basecorr_core._types import Year
from basecorr_core.basket.protocols import BasketPricer, DiscountCurve
from basecorr_core.basket.tranche import Tranche, basket_maturity
from basecorr_core.correlation.term_struct import CorrelationTermStruct
from basecorr_core.exceptions import ConfigurationError, UnsupportedMethodError
from basecorr_core.surface.base import BaseCorrelationObject, SurfaceKind
from basecorr_core.surface.mixed import BaseCorrelationMixed


class BaseCorrelationMixByName(BaseCorrelationMixed):
    """
    Surfaces assigned to basket names.

    Build instances with :meth:`from_disjoint_correlations` or
    :meth:`from_correlation_by_names`. ``associates[i]`` is the index of
    the child used by ``entity_names[i]``; the full name to surface
    collection is shared by subsets.

    Example
    -------
    >>> mix = BaseCorrelationMixByName.from_disjoint_correlations([bc_ig, bc_hy])
    >>> sub = mix.create_subset_correlation(["IG1", "HY3"])
    """

    kind = SurfaceKind.MIX_BY_NAME

    def __init__(
        self,
        base_correlations: Sequence[BaseCorrelationObject | None],
        names: Sequence[str],
        associates: Sequence[int],
    ) -> None:
        super().__init__(base_correlations, entity_names=names)
        self.associates = list(associates)
        self.collection: dict[str, BaseCorrelationObject] | None = None

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @staticmethod
    def _build_collection(
        bcs: Sequence[BaseCorrelationObject | None],
        names: Sequence[str],
        associates: Sequence[int],
    ) -> dict[str, BaseCorrelationObject]:
        if not names:
            raise ConfigurationError("No names given for the name collection")
        if len(associates) != len(names):
            raise ConfigurationError("Associates and names not match")
        if not bcs:
            raise ConfigurationError("No base correlations for the name collection")
        collection = {}
        for name, idx in zip(names, associates):
            if idx >= len(bcs):
                raise ConfigurationError("Associate index outside legitimate base correlation range")
            collection[name] = bcs[idx]
        return collection

    @classmethod
    def _create_by_names(
        cls,
        bcs: Sequence[BaseCorrelationObject],
        names: Sequence[str],
    ) -> "BaseCorrelationMixByName":
        associates = [-1] * len(names)
        distinct: list[BaseCorrelationObject] = []
        for i, bc in enumerate(bcs[:len(names)]):
            if associates[i] >= 0:
                continue
            for j in range(i, len(names)):
                if bcs[j] is bc:
                    associates[j] = len(distinct)
            distinct.append(bc)
        return cls(distinct, names, associates)

    @classmethod
    def from_correlation_by_names(
        cls,
        base_correlations: Sequence[BaseCorrelationObject],
        names: Sequence[str],
    ) -> "BaseCorrelationMixByName":
        """
        Build from one surface per name; repeated objects share a child.

        Parameters
        ----------
        base_correlations : Sequence[BaseCorrelationObject]
            Surface of each name, aligned with ``names``
        names : Sequence[str]
            Entity names
        """
        if len(base_correlations) < len(names):
            raise ConfigurationError(
                f"Names (len={len(names)}) and base correlations "
                f"(len={len(base_correlations)}) not match"
            )
        bcm = cls._create_by_names(base_correlations, names)
        bcm.collection = cls._build_collection(bcm.base_correlations, names, bcm.associates)
        return bcm

    @classmethod
    def from_disjoint_correlations(
        cls,
        base_correlations: Sequence[BaseCorrelationObject | None],
    ) -> "BaseCorrelationMixByName":
        """
        Build from surfaces carrying disjoint entity name lists.

        Raises
        ------
        ConfigurationError
            If a surface has no entity names
        """
        names: list[str] = []
        associates: list[int] = []
        for i, bc in enumerate(base_correlations):
            if bc is None:
                continue
            if not bc.entity_names:
                raise ConfigurationError(
                    f"BaseCorrelation '{bc.name}' at index {i} contains no entity names"
                )
            names.extend(bc.entity_names)
            associates.extend([i] * len(bc.entity_names))
        bcm = cls(base_correlations, names, associates)
        bcm.collection = cls._build_collection(base_correlations, names, associates)
        return bcm

    def create_subset_correlation(
        self, subset_names: Sequence[str] | None
    ) -> "BaseCorrelationMixByName | None":
        """Surface over a subset of the full name collection; None for no names."""
        if not subset_names:
            return None
        collection = self.collection or {}
        bcs = []
        for i, name in enumerate(subset_names):
            if name not in collection:
                raise ConfigurationError(
                    f"Name '{name}' at index {i} not found in complete entity list"
                )
            bcs.append(collection[name])
        bcm = self._create_by_names(bcs, subset_names)
        bcm.collection = self.collection
        return bcm

    def create_superset_correlation(
        self, additional: Mapping[str, BaseCorrelationObject | None]
    ) -> "BaseCorrelationMixByName | None":
        """
        Surface over the full collection extended with ``additional`` names.

        Empty names are ignored; the existing collection is not modified.
        """
        collection = dict(self.collection) if self.collection is not None else None
        for i, (name, bco) in enumerate(additional.items()):
            if not name:
                continue
            if bco is None:
                raise ConfigurationError(
                    f"Null base correlation in position {i} for name {name}"
                )
            if collection is None:
                collection = {}
            collection[name] = bco
        if collection is None:
            return None
        names = list(collection)
        bcm = self._create_by_names([collection[n] for n in names], names)
        bcm.collection = collection
        return bcm

    def create(self, entity_names: Sequence[str] | None) -> BaseCorrelationObject:
        if entity_names is not None and self.entity_names is not None:
            return self.create_subset_correlation(entity_names)
        return super().create(entity_names)

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
        """Detachment correlation; only defined with a single child surface."""
        if len(self.base_correlations) != 1:
            raise UnsupportedMethodError(
                "get_correlation() is not defined for a by-name mix with more than "
                "one base correlation",
                self.kind,
            )
        return self.base_correlations[0].get_correlation(
            tranche, basket, discount_curve, tolerance_f, tolerance_x
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
    ) -> CorrelationTermStruct:
        """
        Per-name factor term structure.

        At each date name ``i`` carries the square root of its child
        surface's detachment correlation. The basket is left priced with
        the returned term structure.
        """
        if names is None:
            names = self.entity_names if self.entity_names is not None else basket.entity_names
        names = list(names)
        if len(names) != basket.count:
            raise ConfigurationError(
                f"Names (len={len(names)}) and basket size ({basket.count}) not match"
            )
        if dates is None or len(dates) == 0:
            dates = self.get_term_struct_dates() or [tranche.maturity]

        n_names = len(names)
        cts = CorrelationTermStruct(
            names, np.zeros(len(dates) * n_names), dates,
            self.min_correlation, self.max_correlation,
        )
        saved_correlation = basket.correlation
        saved_levels = basket.raw_loss_levels
        basket.correlation = cts
        basket.raw_loss_levels = (0.0, tranche.detachment)
        data = cts.data
        try:
            for t, date in enumerate(dates):
                dated = tranche.replace(maturity=date)
                with basket_maturity(basket, date):
                    basket.reset()
                    fc = self.factor_correlation(
                        dated, basket, discount_curve, names, self.associates,
                        tolerance_f, tolerance_x,
                    )
                data[t * n_names:(t + 1) * n_names] = fc.data
        finally:
            basket.correlation = saved_correlation
            basket.raw_loss_levels = saved_levels
            basket.reset()
        return cts

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
        raise UnsupportedMethodError(
            "tranche_correlation() is not implemented for a by-name mix", self.kind
        )
