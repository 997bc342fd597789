"""
Interpolation policies for strike and time axes.

A base correlation curve is a set of (strike, correlation) nodes; between
nodes the value is interpolated and outside the node range it is
extrapolated. Both choices are captured by an ``Interp`` policy which
builds ``Interpolator`` instances on demand.
"""

import math
from dataclasses import dataclass
from enum import Enum

import numpy as np
from scipy.interpolate import CubicSpline, PchipInterpolator

from basecorr_core._types import FloatArray
from basecorr_core.exceptions import ConfigurationError


class InterpMethod(str, Enum):
    """Interpolation between nodes."""

    LINEAR = "linear"
    FLAT = "flat"
    CUBIC = "cubic"
    PCHIP = "pchip"


class ExtrapMethod(str, Enum):
    """Extrapolation outside the node range."""

    NONE = "none"
    CONST = "const"
    SMOOTH = "smooth"


@dataclass(frozen=True)
class Interp:
    """
    Interpolation policy.

    Attributes
    ----------
    method : InterpMethod
        Interpolation between nodes
    extrap : ExtrapMethod
        Extrapolation beyond the first and last nodes
    lower : float
        Lower bound applied to smooth extrapolation
    upper : float
        Upper bound applied to smooth extrapolation

    Example
    -------
    >>> interp = Interp(InterpMethod.PCHIP, ExtrapMethod.SMOOTH, 0.0, 1.0)
    >>> f = interp.build([0.03, 0.07, 0.10], [0.15, 0.25, 0.32])
    >>> round(f(0.05), 4)
    """

    method: InterpMethod = InterpMethod.LINEAR
    extrap: ExtrapMethod = ExtrapMethod.CONST
    lower: float = -math.inf
    upper: float = math.inf

    @property
    def is_smooth(self) -> bool:
        """True if first derivatives are continuous at the nodes."""
        return self.method in (InterpMethod.CUBIC, InterpMethod.PCHIP)

    def with_bounds(self, lower: float, upper: float) -> "Interp":
        """Return a copy with new extrapolation bounds."""
        return Interp(self.method, self.extrap, lower, upper)

    def build(self, x: FloatArray | list[float], y: FloatArray | list[float]) -> "Interpolator":
        """Build an interpolator over the given nodes."""
        return Interpolator(self, x, y)


class Interpolator:
    """
    Callable interpolating function over ascending nodes.

    Parameters
    ----------
    interp : Interp
        Interpolation policy
    x : array-like
        Strictly ascending abscissas
    y : array-like
        Ordinates, same length as ``x``
    """

    def __init__(
        self,
        interp: Interp,
        x: FloatArray | list[float],
        y: FloatArray | list[float],
    ) -> None:
        self.interp = interp
        self.x = np.asarray(x, dtype=np.float64)
        self.y = np.asarray(y, dtype=np.float64)

        if self.x.ndim != 1 or self.x.shape != self.y.shape:
            raise ConfigurationError(
                f"Abscissas (len={self.x.size}) and ordinates (len={self.y.size}) not match"
            )
        if self.x.size == 0:
            raise ConfigurationError("Cannot interpolate on an empty node set")
        if self.x.size > 1 and np.any(np.diff(self.x) <= 0):
            raise ConfigurationError("Interpolation abscissas must be strictly ascending")

        self._spline = None
        if self.x.size > 2 and interp.method == InterpMethod.CUBIC:
            self._spline = CubicSpline(self.x, self.y, bc_type="natural")
        elif self.x.size > 1 and interp.method == InterpMethod.PCHIP:
            self._spline = PchipInterpolator(self.x, self.y)

    def __call__(self, t: float) -> float:
        return self.evaluate(t)

    def evaluate(self, t: float) -> float:
        """Evaluate the interpolating function at ``t``."""
        x, y = self.x, self.y
        if x.size == 1:
            return float(y[0])

        if t < x[0] or t > x[-1]:
            return self._extrapolate(t)

        if self._spline is not None:
            return float(self._spline(t))
        if self.interp.method == InterpMethod.FLAT:
            idx = int(np.searchsorted(x, t, side="right")) - 1
            return float(y[min(max(idx, 0), y.size - 1)])
        return float(np.interp(t, x, y))

    def _end_slope(self, upper_end: bool) -> float:
        """Slope of the interpolant at the first or last node."""
        x, y = self.x, self.y
        if self._spline is not None:
            return float(self._spline(x[-1] if upper_end else x[0], 1))
        if self.interp.method == InterpMethod.FLAT:
            return 0.0
        if upper_end:
            return float((y[-1] - y[-2]) / (x[-1] - x[-2]))
        return float((y[1] - y[0]) / (x[1] - x[0]))

    def _extrapolate(self, t: float) -> float:
        x, y = self.x, self.y
        upper_end = t > x[-1]
        x_end = x[-1] if upper_end else x[0]
        y_end = y[-1] if upper_end else y[0]

        extrap = self.interp.extrap
        if extrap == ExtrapMethod.CONST:
            return float(y_end)
        if extrap == ExtrapMethod.SMOOTH:
            value = y_end + self._end_slope(upper_end) * (t - x_end)
            return float(min(max(value, self.interp.lower), self.interp.upper))
        # NONE: continue the interpolant past the end node
        if self._spline is not None:
            return float(self._spline(t, extrapolate=True))
        return float(y_end + self._end_slope(upper_end) * (t - x_end))
