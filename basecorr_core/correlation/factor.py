"""
Factor based and general matrix correlation representations.

- ``SingleFactorCorrelation``: one factor shared by every name,
  ``corr(i, j) = f**2``.
- ``FactorCorrelation``: up to three factor loadings per name,
  ``corr(i, j) = sum_k a[k, i] * a[k, j]``.
- ``GeneralCorrelation``: full symmetric matrix with unit diagonal.
"""

import math
from typing import Sequence

import numpy as np
import pandas as pd

from basecorr_core._types import FloatArray
from basecorr_core.correlation.base import Correlation, bumped_value
from basecorr_core.exceptions import ConfigurationError

MAX_FACTORS = 3


class SingleFactorCorrelation(Correlation):
    """
    One-factor correlation with a common factor for all names.

    Example
    -------
    >>> corr = SingleFactorCorrelation(["A", "B", "C"], factor=0.5)
    >>> corr.get_correlation(0, 1)
    0.25
    """

    def __init__(
        self,
        names: Sequence[str],
        factor: float,
        min_correlation: float = 0.0,
        max_correlation: float = 1.0,
        name: str = "",
    ) -> None:
        super().__init__(names, [factor], min_correlation, max_correlation, name)
        self.std_error = 0.0
        self.max_error = 0.0

    def get_factor(self) -> float:
        """The common factor."""
        return float(self._data[0])

    def get_correlation(self, i: int, j: int) -> float:
        if i == j:
            return 1.0
        f = self._data[0]
        return float(f * f)

    def bump_index(self, i: int, bump: float, relative: bool, factor: bool) -> float:
        # every name shares the factor, so any index bumps it
        self._check_name_index(i)
        return self.bump_all(bump, relative, factor)

    def bump_all(self, bump: float, relative: bool, factor: bool) -> float:
        lower, upper = self.bounds(factor)
        f = self._data[0]
        orig = f if factor else f * f
        value = bumped_value(orig, bump, relative, lower, upper)
        self._data[0] = value if factor else math.sqrt(value)
        return value - orig

    def content(self) -> pd.DataFrame:
        return pd.DataFrame(
            {"Name": self.names, "Factor": [self.get_factor()] * self.basket_size}
        )


class FactorCorrelation(Correlation):
    """
    Multi-factor correlation with per-name loadings.

    The buffer is laid out factor by factor: the loadings of factor ``k``
    occupy ``data[k * n:(k + 1) * n]`` for a basket of ``n`` names.

    Parameters
    ----------
    names : Sequence[str]
        Entity names
    num_factors : int
        Number of factors (1 to 3)
    data : array-like
        Loadings, length ``num_factors * len(names)``

    Example
    -------
    >>> corr = FactorCorrelation(["A", "B"], 1, [0.3, 0.3])
    >>> round(corr.get_correlation(0, 1), 4)
    0.09
    """

    def __init__(
        self,
        names: Sequence[str],
        num_factors: int,
        data: FloatArray | Sequence[float],
        min_correlation: float = 0.0,
        max_correlation: float = 1.0,
        name: str = "",
    ) -> None:
        super().__init__(names, data, min_correlation, max_correlation, name)
        if not 1 <= num_factors <= MAX_FACTORS:
            raise ConfigurationError(
                f"Number of factors must be between 1 and {MAX_FACTORS}, got {num_factors}"
            )
        if self._data.size != num_factors * self.basket_size:
            raise ConfigurationError(
                f"Factor data length ({self._data.size}) should be "
                f"{num_factors}x{self.basket_size}"
            )
        communality = np.sum(self.factors**2, axis=0)
        if np.any(communality > 1.0 + 1e-8):
            bad = [self.names[i] for i in np.flatnonzero(communality > 1.0 + 1e-8)]
            raise ConfigurationError(f"Sum of squared loadings exceeds one for {bad}")

        self.num_factors = num_factors
        self.std_error = 0.0
        self.max_error = 0.0

    @property
    def factors(self) -> FloatArray:
        """Loadings as a ``(num_factors, basket_size)`` view of the buffer."""
        return self._data.reshape(-1, self.basket_size)

    def get_factor(self, f: int, i: int) -> float:
        """Loading of name ``i`` on factor ``f``."""
        return float(self._data[f * self.basket_size + i])

    def get_correlation(self, i: int, j: int) -> float:
        if i == j:
            return 1.0
        a = self.factors
        return float(np.dot(a[:, i], a[:, j]))

    def bump_index(self, i: int, bump: float, relative: bool, factor: bool) -> float:
        self._check_name_index(i)
        lower, upper = self.bounds(factor)
        n = self.basket_size
        delta = 0.0
        for f in range(self.num_factors):
            idx = f * n + i
            orig = self._data[idx] if factor else self._data[idx] ** 2
            value = bumped_value(orig, bump, relative, lower, upper, self.num_factors)
            self._data[idx] = value if factor else math.sqrt(value)
            delta += value - orig
        return delta

    def bump_all(self, bump: float, relative: bool, factor: bool) -> float:
        delta = 0.0
        for i in range(self.basket_size):
            delta += self.bump_index(i, bump, relative, factor)
        return delta / self.basket_size

    def content(self) -> pd.DataFrame:
        table = {"Name": self.names}
        for f in range(self.num_factors):
            table[f"Factor {f + 1}"] = self.factors[f].copy()
        return pd.DataFrame(table)


class GeneralCorrelation(Correlation):
    """
    Full pairwise correlation matrix.

    Parameters
    ----------
    names : Sequence[str]
        Entity names
    data : array-like
        Row-major matrix of length ``len(names) ** 2`` (or a square 2D array)

    Example
    -------
    >>> corr = GeneralCorrelation(["A", "B"], [[1.0, 0.4], [0.4, 1.0]])
    >>> corr.get_correlation(1, 0)
    0.4
    """

    def __init__(
        self,
        names: Sequence[str],
        data: FloatArray | Sequence[float],
        min_correlation: float = -1.0,
        max_correlation: float = 1.0,
        name: str = "",
    ) -> None:
        super().__init__(names, data, min_correlation, max_correlation, name)
        n = self.basket_size
        if self._data.size != n * n:
            raise ConfigurationError(
                f"General correlation data length ({self._data.size}) should be {n}x{n}"
            )
        m = self.matrix()
        if not np.allclose(m, m.T, atol=1e-10):
            raise ConfigurationError("General correlation matrix is not symmetric")
        if not np.allclose(np.diag(m), 1.0, atol=1e-10):
            raise ConfigurationError("General correlation matrix must have a unit diagonal")

        self.std_error = 0.0
        self.max_error = 0.0

    def matrix(self) -> FloatArray:
        return self._data.reshape(self.basket_size, self.basket_size).copy()

    def get_correlation(self, i: int, j: int) -> float:
        return float(self._data[i * self.basket_size + j])

    def bounds(self, factor: bool) -> tuple[float, float]:
        if factor:
            return 0.0, self.max_factor
        return self.min_correlation, self.max_correlation

    def _bump_pair(self, i: int, j: int, bump: float, relative: bool, factor: bool) -> float:
        n = self.basket_size
        lower, upper = self.bounds(factor)
        c = self._data[i * n + j]
        if factor:
            # bump the square root of |c|, keeping the sign of the pair
            sign = -1.0 if c < 0 else 1.0
            orig = math.sqrt(abs(c))
            value = bumped_value(orig, bump, relative, lower, upper)
            new_c = sign * value * value
        else:
            orig = c
            value = bumped_value(orig, bump, relative, lower, upper)
            new_c = value
        self._data[i * n + j] = self._data[j * n + i] = new_c
        return value - orig

    def bump_index(self, i: int, bump: float, relative: bool, factor: bool) -> float:
        """Bump every pair involving name ``i`` and return the average change."""
        self._check_name_index(i)
        n = self.basket_size
        if n < 2:
            return 0.0
        delta = 0.0
        for j in range(n):
            if j != i:
                delta += self._bump_pair(i, j, bump, relative, factor)
        return delta / (n - 1)

    def bump_all(self, bump: float, relative: bool, factor: bool) -> float:
        n = self.basket_size
        if n < 2:
            return 0.0
        delta = 0.0
        for i in range(n):
            for j in range(i):
                delta += self._bump_pair(i, j, bump, relative, factor)
        return delta / (n * (n - 1) / 2)

    def set_factor(self, factor: float) -> None:
        """Set every off-diagonal correlation to ``factor**2``."""
        n = self.basket_size
        m = np.full((n, n), factor * factor)
        np.fill_diagonal(m, 1.0)
        self._data[:] = m.ravel()

    def content(self) -> pd.DataFrame:
        return pd.DataFrame(self.matrix(), index=self.names, columns=self.names)
