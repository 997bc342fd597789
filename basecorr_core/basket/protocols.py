"""
Interfaces of the collaborators the correlation engine drives.

The basket loss model, the tranche pricer and the discount curve live
outside this package; anything implementing these protocols can be
plugged in.
"""

from typing import TYPE_CHECKING, Any, Protocol, Sequence, runtime_checkable

from basecorr_core._types import FloatArray, Notional, Year

if TYPE_CHECKING:
    from basecorr_core.basket.tranche import Tranche
    from basecorr_core.correlation.base import Correlation


@runtime_checkable
class DiscountCurve(Protocol):
    """Deterministic discounting."""

    def discount_factor(self, t: Year) -> float:
        """Discount factor from time 0 to ``t``."""
        ...


@runtime_checkable
class SurvivalCurve(Protocol):
    """Credit curve of one name; ``count`` is its number of tenors."""

    @property
    def count(self) -> int: ...


@runtime_checkable
class BasketPricer(Protocol):
    """
    Loss distribution of a credit basket under a one-factor copula.

    ``correlation``, ``maturity`` and ``raw_loss_levels`` are settable;
    after changing them callers invoke :meth:`reset`.
    """

    count: int
    survival_curves: Sequence[SurvivalCurve]
    entity_names: Sequence[str]
    total_principal: Notional
    defaulted_principal: Notional
    previous_loss: float
    settle: Year
    maturity: Year
    correlation: "Correlation"
    raw_loss_levels: Sequence[float]

    def accumulated_loss(self, date: Year, lower: float, upper: float) -> float:
        """Expected loss of the ``[lower, upper]`` slice, as a fraction of total principal."""
        ...

    def accumulated_loss_derivatives(
        self, date: Year, lower: float, upper: float, buffer: FloatArray
    ) -> None:
        """Write the packed per-name derivatives of :meth:`accumulated_loss` into ``buffer``."""
        ...

    def basket_loss(self, settle: Year, maturity: Year) -> float: ...

    def basket_loss_pv(self, settle: Year, maturity: Year, discount_curve: DiscountCurve) -> float:
        ...

    def loss_probability(self, date: Year, level: float) -> float:
        """Probability that the basket loss at ``date`` does not exceed ``level``."""
        ...

    def adjust_tranche_levels(
        self, attachment: float, detachment: float
    ) -> tuple[float, float, float]:
        """Rescale tranche levels for defaulted names; returns ``(a, d, el)``."""
        ...

    def adjust_tranche_level(self, level: float) -> float: ...

    def get_factor(self) -> float: ...

    def set_factor(self, factor: float) -> None: ...

    def reset(self) -> None: ...

    def duplicate(self) -> "BasketPricer": ...

    def compute_and_save_semi_analytic_sensitivities(self, levels: Sequence[float]) -> None:
        """Precompute per-name loss derivatives at the given loss levels."""
        ...

    def create_pricer(
        self, tranche: "Tranche", discount_curve: DiscountCurve | None, notional: Notional
    ) -> "TranchePricer":
        ...


@runtime_checkable
class TranchePricer(Protocol):
    """Prices one tranche on a basket."""

    settle: Year
    basket: BasketPricer
    tranche: "Tranche"
    discount_curve: DiscountCurve | None
    notional: Notional

    def protection_pv(self) -> float: ...

    def protection_pv_derivatives(self, buffer: FloatArray) -> None:
        """Packed derivatives of the protection PV per unit of notional."""
        ...

    def flat_fee_pv(self, settle: Year, premium: float) -> float: ...

    def fee_pv_derivatives(self, settle: Year, premium: float, buffer: FloatArray) -> None:
        """Packed derivatives of the flat fee PV per unit of notional."""
        ...

    def break_even_premium(self) -> float: ...

    def implied_tranche_correlation(
        self,
        method: Any,
        ap_correlation: float,
        dp_correlation: float,
        tolerance_f: float,
        tolerance_x: float,
    ) -> float:
        """Solve the flat correlation repricing the tranche at the two base correlations."""
        ...


@runtime_checkable
class StrikeEvaluator(Protocol):
    """User supplied strike function for ``StrikeMethod.USER_DEFINED``."""

    def set_pricer(self, pricer: TranchePricer) -> None: ...

    def strike(self, correlation: float | None = None) -> float:
        """Strike at ``correlation`` (the pricer's current state when None)."""
        ...
