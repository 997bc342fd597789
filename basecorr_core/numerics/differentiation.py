"""
Finite-difference differentiation with an explicit domain policy.

Correlation curves are differentiated in strike space with a plain centred
stencil, while strike functions are differentiated in factor space, where
the domain is [0, 1]. Near the domain boundaries the three point stencil is
shifted to one side so that no evaluation falls outside the domain.
"""

from dataclasses import dataclass
from typing import Callable

DEFAULT_STEP = 1e-4


@dataclass(frozen=True)
class Derivatives:
    """
    First and second derivatives from a three point stencil.

    Attributes
    ----------
    center : float
        Abscissa the derivatives refer to (shifted near boundaries)
    value : float
        Function value at ``center``
    first : float
        First derivative
    second : float
        Second derivative
    """

    center: float
    value: float
    first: float
    second: float


@dataclass(frozen=True)
class FiniteDifference:
    """
    Three point finite-difference stencil.

    Parameters
    ----------
    step : float
        Step size h
    lower : float | None
        Lower domain bound; None means unbounded
    upper : float | None
        Upper domain bound; None means unbounded

    Example
    -------
    >>> fd = FiniteDifference(step=1e-4, lower=0.0, upper=1.0)
    >>> fd.stencil(0.00005)  # shifted right, all points inside [0, 1]
    """

    step: float = DEFAULT_STEP
    lower: float | None = None
    upper: float | None = None

    def __post_init__(self) -> None:
        if self.step <= 0:
            raise ValueError(f"Finite difference step must be positive, got {self.step}")
        if self.lower is not None and self.upper is not None:
            if self.upper - self.lower < 2 * self.step:
                raise ValueError(
                    f"Domain [{self.lower}, {self.upper}] too narrow for step {self.step}"
                )

    def stencil(self, x: float) -> tuple[float, float, float]:
        """
        Return the (left, center, right) evaluation points around ``x``.

        When ``x - h`` falls below the lower bound the stencil is shifted right
        to ``(x, x + h, x + 2h)``; when ``x + h`` exceeds the upper bound it is
        shifted left to ``(x - 2h, x - h, x)``.
        """
        h = self.step
        if self.lower is not None and x - h < self.lower:
            return x, x + h, x + 2 * h
        if self.upper is not None and x + h > self.upper:
            return x - 2 * h, x - h, x
        return x - h, x, x + h

    def derivatives(self, fn: Callable[[float], float], x: float) -> Derivatives:
        """Evaluate ``fn`` on the stencil around ``x`` and difference it."""
        h = self.step
        xm, x0, xp = self.stencil(x)
        f0 = fn(x0)
        fp = fn(xp)
        fm = fn(xm)
        return Derivatives(
            center=x0,
            value=f0,
            first=(fp - fm) / (2 * h),
            second=(fp - 2 * f0 + fm) / (h * h),
        )


def factor_to_correlation(first: float, second: float, factor: float) -> tuple[float, float]:
    """
    Convert derivatives with respect to a factor into correlation derivatives.

    With ``correlation = factor**2``, ``dg/dc = g'(f) / 2f`` and
    ``d2g/dc2 = g''(f) / 4f^2 - g'(f) / 4f^3``.
    """
    x = factor
    return 0.5 / x * first, 0.25 * (second / (x * x) - first / (x * x * x))
