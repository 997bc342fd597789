"""
Tranche product record and scoped basket factor changes.
"""

import dataclasses
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator

from basecorr_core._types import Year
from basecorr_core.basket.protocols import BasketPricer
from basecorr_core.exceptions import ConfigurationError


@dataclass(frozen=True)
class Tranche:
    """
    Synthetic CDO tranche.

    Attributes
    ----------
    attachment : float
        Attachment point as a fraction of the basket
    detachment : float
        Detachment point as a fraction of the basket
    maturity : Year
        Maturity in years
    premium : float
        Running premium
    fee : float
        Upfront fee
    amortize_premium : bool
        Premium notional amortizes with recoveries
    effective : Year | None
        Protection start; the basket settle when None

    Example
    -------
    >>> mezz = Tranche(attachment=0.03, detachment=0.07, maturity=5.0, premium=0.01)
    >>> mezz.is_equity
    False
    """

    attachment: float
    detachment: float
    maturity: Year
    premium: float = 0.0
    fee: float = 0.0
    amortize_premium: bool = False
    effective: Year | None = None

    def __post_init__(self) -> None:
        if not 0.0 <= self.attachment <= self.detachment:
            raise ConfigurationError(
                f"Invalid tranche [{self.attachment}, {self.detachment}]: "
                f"need 0 <= attachment <= detachment"
            )

    @property
    def width(self) -> float:
        return self.detachment - self.attachment

    @property
    def is_equity(self) -> bool:
        """True for a zero-attachment tranche."""
        return self.attachment <= 0.0

    def replace(self, **changes) -> "Tranche":
        """Copy with some fields changed."""
        return dataclasses.replace(self, **changes)


@contextmanager
def basket_factor(basket: BasketPricer, factor: float | None = None) -> Iterator[float]:
    """
    Scope a change of the basket's copula factor.

    The factor in force on entry is restored on every exit path. If
    ``factor`` is given it is set on entry.

    Example
    -------
    >>> with basket_factor(basket, 0.5) as saved:
    ...     basket.accumulated_loss(5.0, 0.0, 0.03)
    """
    saved = basket.get_factor()
    if factor is not None:
        basket.set_factor(factor)
    try:
        yield saved
    finally:
        basket.set_factor(saved)


@contextmanager
def basket_maturity(basket: BasketPricer, maturity: Year) -> Iterator[Year]:
    """Scope a change of the basket maturity, restoring it on exit."""
    saved = basket.maturity
    basket.maturity = maturity
    try:
        yield saved
    finally:
        basket.maturity = saved
