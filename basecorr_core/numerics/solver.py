"""
Bracketed one dimensional root finding.

Thin wrapper around :func:`scipy.optimize.brentq` that scans for a sign
change when the initial bracket does not contain a root.
"""

import logging
from typing import Callable

import numpy as np
from scipy.optimize import brentq

from basecorr_core.exceptions import NumericalError

logger = logging.getLogger(__name__)


class SolverError(NumericalError):
    """Raised when no root can be bracketed or the iteration fails."""

    pass


def brent_solve(
    fn: Callable[[float], float],
    low: float,
    high: float,
    tolerance_x: float = 1e-8,
    tolerance_f: float = 1e-10,
    max_iter: int = 200,
) -> float:
    """
    Solve ``fn(x) = 0`` on ``[low, high]`` with Brent's method.

    Parameters
    ----------
    fn : Callable[[float], float]
        Function whose root is sought
    low, high : float
        Bracket end points
    tolerance_x : float
        Absolute tolerance on the root
    tolerance_f : float
        Accept an end point directly when ``|fn| <= tolerance_f`` there
    max_iter : int
        Maximum Brent iterations

    Returns
    -------
    float
        Root of ``fn``

    Raises
    ------
    SolverError
        If ``fn`` does not change sign on the bracket
    """
    f_low = fn(low)
    if abs(f_low) <= tolerance_f:
        return low
    f_high = fn(high)
    if abs(f_high) <= tolerance_f:
        return high
    if np.isnan(f_low) or np.isnan(f_high) or f_low * f_high > 0:
        raise SolverError(
            f"Root not bracketed in [{low}, {high}]: f(low)={f_low}, f(high)={f_high}"
        )
    try:
        return float(brentq(fn, low, high, xtol=tolerance_x, maxiter=max_iter))
    except (RuntimeError, ValueError) as e:
        raise SolverError(f"Brent iteration failed on [{low}, {high}]: {e}") from e


def search_and_solve(
    fn: Callable[[float], float],
    low: float,
    high: float,
    guess: float,
    tolerance_x: float = 1e-8,
    tolerance_f: float = 1e-10,
    n_grid: int = 40,
) -> float:
    """
    Solve ``fn(x) = 0`` anywhere in ``[low, high]``.

    The domain is scanned outward from ``guess`` on a uniform grid until a
    sign change is found, then the sub-bracket is handed to
    :func:`brent_solve`.
    """
    grid = np.linspace(low, high, n_grid + 1)
    # visit grid cells ordered by distance from the initial guess
    mids = 0.5 * (grid[:-1] + grid[1:])
    order = np.argsort(np.abs(mids - guess))
    values: dict[int, float] = {}

    def value_at(i: int) -> float:
        if i not in values:
            values[i] = fn(float(grid[i]))
        return values[i]

    for cell in order:
        a, b = int(cell), int(cell) + 1
        fa, fb = value_at(a), value_at(b)
        if abs(fa) <= tolerance_f:
            return float(grid[a])
        if abs(fb) <= tolerance_f:
            return float(grid[b])
        if fa * fb < 0:
            logger.debug("Root bracketed in [%g, %g] after grid search", grid[a], grid[b])
            return brent_solve(fn, float(grid[a]), float(grid[b]), tolerance_x, tolerance_f)

    raise SolverError(f"No sign change of the objective found in [{low}, {high}]")
