"""
Merged surfaces.

``merge_surfaces`` folds weighted surfaces into a single term structure of
weighted curves. ``BaseCorrelationCombined`` keeps its children bumpable and
rebuilds the merged surface lazily after any change.
"""

import logging
import math
import threading
from contextlib import contextmanager
from typing import Iterator, Sequence

import numpy as np

from basecorr_core._types import SensitivityBuffer, Year
from basecorr_core.basket.protocols import BasketPricer, DiscountCurve
from basecorr_core.basket.tranche import Tranche
from basecorr_core.config.loader import get_engine_config
from basecorr_core.correlation.base import Correlation
from basecorr_core.exceptions import ConfigurationError, UnsupportedMethodError
from basecorr_core.numerics.interp import Interp
from basecorr_core.surface.base import BaseCorrelationObject, SurfaceKind
from basecorr_core.surface.base_correlation import BaseCorrelation
from basecorr_core.surface.bump import BumpSize
from basecorr_core.surface.mixed import BaseCorrelationMixed
from basecorr_core.surface.term_struct import BaseCorrelationTermStruct, CalibrationMethod

logger = logging.getLogger(__name__)


def merge_surfaces(
    base_correlations: Sequence[BaseCorrelationObject | None],
    weights: Sequence[float],
    strike_interp: Interp | None = None,
    time_interp: Interp | None = None,
    min_correlation: float = 0.0,
    max_correlation: float = 1.0,
) -> BaseCorrelationTermStruct:
    """
    Merge weighted surfaces into one term structure.

    Children with a non-positive weight are dropped and the remaining
    weights normalised. Each tenor of the union of child tenors holds the
    weighted curve ``corr(s) = sum w_i c_i(s)`` on the union of strikes.

    Parameters
    ----------
    base_correlations : Sequence[BaseCorrelationObject | None]
        Single curves or term structures
    weights : Sequence[float]
        One weight per surface
    strike_interp, time_interp : Interp | None
        Interpolation of the merged curves; configured defaults when None
    min_correlation, max_correlation : float
        Bounds of the merged surface

    Returns
    -------
    BaseCorrelationTermStruct
        The merged surface

    Raises
    ------
    ConfigurationError
        On length mismatch, no usable surface or children with different
        methods
    UnsupportedMethodError
        If a child is itself a mixed surface
    """
    if not base_correlations:
        raise ConfigurationError("Must specify base correlations")
    if len(base_correlations) != len(weights):
        raise ConfigurationError(
            f"Base correlations (Length={len(base_correlations)}) and weights "
            f"(Length={len(weights)}) not match"
        )

    pairs = [
        (bc, float(w)) for bc, w in zip(base_correlations, weights) if bc is not None and w > 0.0
    ]
    if not pairs:
        raise ConfigurationError("No base correlation with a positive weight")
    for bc, _ in pairs:
        if not isinstance(bc, (BaseCorrelation, BaseCorrelationTermStruct)):
            raise UnsupportedMethodError(
                "Merging a mixed base correlation is not allowed", bc.kind
            )
    children = [bc for bc, _ in pairs]
    w = np.array([w for _, w in pairs])
    w /= w.sum()

    term_structs = [bc for bc in children if isinstance(bc, BaseCorrelationTermStruct)]
    calibration = None
    for ts in term_structs:
        if calibration is None:
            calibration = ts.calibration_method
        elif ts.calibration_method != calibration:
            raise ConfigurationError("Term structures with different calibration methods")

    if term_structs:
        dates = np.unique(np.concatenate([ts.dates for ts in term_structs]))
    else:
        first = next(bc for bc in children if isinstance(bc, BaseCorrelation))
        dates = np.array([first.tenor_date if first.tenor_date is not None else 0.0])

    config = get_engine_config().interpolation
    strike_interp = (
        strike_interp.with_bounds(min_correlation, max_correlation)
        if strike_interp is not None
        else config.strike_policy(min_correlation, max_correlation)
    )
    time_interp = (
        time_interp.with_bounds(min_correlation, max_correlation)
        if time_interp is not None
        else config.time_policy(min_correlation, max_correlation)
    )

    bcs = []
    for date in dates:
        work = [
            bc.get_base_correlation(date) if isinstance(bc, BaseCorrelationTermStruct) else bc
            for bc in children
        ]
        ref = work[0]
        for bc in work[1:]:
            if bc.method != ref.method or bc.strike_method != ref.strike_method:
                raise ConfigurationError(
                    "Base correlations with different methods or strike methods cannot be merged"
                )
        merged = BaseCorrelation.from_weighted(
            work, w, ref.method, ref.strike_method, ref.strike_evaluator,
            strike_interp, min_correlation, max_correlation,
        )
        merged.tenor_date = float(date)
        bcs.append(merged)

    logger.debug("Merged %d surfaces on %d tenors", len(children), dates.size)
    return BaseCorrelationTermStruct(
        dates, bcs, interp=time_interp,
        calibration_method=calibration or CalibrationMethod.TERM_STRUCTURE,
        min_correlation=min_correlation, max_correlation=max_correlation,
    )


class BaseCorrelationCombined(BaseCorrelationMixed):
    """
    Weighted merge of child surfaces, rebuilt lazily.

    Bumps and weight updates go to the children and invalidate the merged
    surface; lookups use the merged surface, rebuilding it first when
    stale. The cache is guarded by a lock with a generation counter, and
    each mutation holds the lock until its invalidation is recorded.

    Parameters
    ----------
    base_correlations : Sequence[BaseCorrelationObject | None]
        Single curves or term structures
    weights : Sequence[float]
        One weight per child
    strike_interp, time_interp : Interp | None
        Interpolation of the merged surface
    min_correlation, max_correlation : float
        Bounds; NaN takes the extremes over the children

    Example
    -------
    >>> combined = BaseCorrelationCombined([bc_a, bc_b], [0.5, 0.5])
    >>> combined.bump_all(0.01, relative=False)
    >>> combined.get_correlation(tranche, basket)  # merged surface rebuilt
    """

    kind = SurfaceKind.COMBINED

    def __init__(
        self,
        base_correlations: Sequence[BaseCorrelationObject | None],
        weights: Sequence[float],
        strike_interp: Interp | None = None,
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
        self._weights = np.asarray(weights, dtype=np.float64)
        self.strike_interp = strike_interp
        self.time_interp = time_interp
        self._lock = threading.RLock()
        self._generation = 0
        self._combined: BaseCorrelationTermStruct | None = None
        self._combined_generation = -1

    def __getstate__(self) -> dict:
        state = self.__dict__.copy()
        del state["_lock"]
        return state

    def __setstate__(self, state: dict) -> None:
        self.__dict__.update(state)
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Merged surface
    # ------------------------------------------------------------------

    @property
    def weights(self) -> np.ndarray:
        return self._weights.copy()

    def set_weights(self, weights: Sequence[float]) -> None:
        """Replace the weights and invalidate the merged surface."""
        if len(weights) != len(self.base_correlations):
            raise ConfigurationError(
                f"Weights (Length={len(weights)}) not match base correlations "
                f"(Length={len(self.base_correlations)})"
            )
        with self._lock:
            self._weights = np.asarray(weights, dtype=np.float64)
            self._generation += 1

    def invalidate(self) -> None:
        """Mark the merged surface stale."""
        with self._lock:
            self._generation += 1

    @contextmanager
    def _mutating(self) -> Iterator[None]:
        with self._lock:
            try:
                yield
            finally:
                self._generation += 1

    def update_combined_correlation(self) -> BaseCorrelationTermStruct:
        """Rebuild the merged surface now."""
        self.invalidate()
        return self.combined

    @property
    def combined(self) -> BaseCorrelationTermStruct:
        """The merged surface, rebuilt if any child or weight changed."""
        with self._lock:
            if self._combined is None or self._combined_generation != self._generation:
                logger.debug("Rebuilding merged surface %r (generation %d)",
                             self.name, self._generation)
                self._combined = merge_surfaces(
                    self.base_correlations, self._weights, self.strike_interp,
                    self.time_interp, self.min_correlation, self.max_correlation,
                )
                self._combined_generation = self._generation
            return self._combined

    # ------------------------------------------------------------------
    # Lookups on the merged surface
    # ------------------------------------------------------------------

    def get_correlation(
        self,
        tranche: Tranche,
        basket: BasketPricer,
        discount_curve: DiscountCurve | None = None,
        tolerance_f: float = 0.0,
        tolerance_x: float = 0.0,
    ) -> float:
        return self.combined.get_correlation(
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
    ) -> Correlation:
        return self.combined.get_correlations(
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
        return self.combined.tranche_correlation(
            tranche, basket, discount_curve, ap_bump, dp_bump, tolerance_f, tolerance_x
        )

    def correlation_derivatives(
        self,
        basket: BasketPricer,
        discount_curve: DiscountCurve | None,
        tranche: Tranche,
        buffer: SensitivityBuffer,
    ) -> float:
        return self.combined.correlation_derivatives(basket, discount_curve, tranche, buffer)

    # ------------------------------------------------------------------
    # Mutations invalidate
    # ------------------------------------------------------------------

    def bump_selected(
        self,
        components: Sequence[str] | None,
        tenor_dates: Sequence[Year] | None,
        detachments: Sequence[float] | None,
        tranche_bumps: Sequence[BumpSize],
        relative: bool,
    ) -> float:
        with self._mutating():
            return super().bump_selected(
                components, tenor_dates, detachments, tranche_bumps, relative
            )

    def bump_index(self, i: int, bump: float, relative: bool, factor: bool = False) -> float:
        with self._mutating():
            return super().bump_index(i, bump, relative, factor)

    def bump_all(self, bump: float, relative: bool, factor: bool = False) -> float:
        with self._mutating():
            return super().bump_all(bump, relative, factor)

    def bump_tenor(
        self,
        tenor: int,
        i: int | None,
        bump: float,
        relative: bool,
        factor: bool = False,
    ) -> float:
        with self._mutating():
            return super().bump_tenor(tenor, i, bump, relative, factor)

    def set_correlations(self, other: BaseCorrelationObject) -> None:
        with self._mutating():
            super().set_correlations(other)

    def validate(self) -> None:
        """Also rejects leaves with different strike methods."""
        super().validate()
        methods = set()

        def visit(bco: BaseCorrelationObject) -> bool:
            if bco.kind == SurfaceKind.BASE:
                methods.add((bco.method, bco.strike_method))
            return True

        self.walk(visit)
        if len(methods) > 1:
            raise ConfigurationError(
                "Merged base correlations must share method and strike method, got "
                + ", ".join(f"{m.value}/{s.value}" for m, s in sorted(methods, key=str))
            )
