"""
Abstract pairwise correlation structure among named entities.

Every representation stores its numbers in one flat buffer whose stride
encodes the factor count; concrete classes interpret the buffer.
"""

import copy
import math
from abc import ABC, abstractmethod
from typing import Sequence

import numpy as np
import pandas as pd

from basecorr_core._types import FloatArray
from basecorr_core.exceptions import ConfigurationError


def bumped_value(
    orig: float,
    bump: float,
    relative: bool,
    lower: float,
    upper: float,
    num_factors: int = 1,
) -> float:
    """
    Apply an absolute or relative bump and clamp to ``[lower, upper]``.

    Relative bumps scale by ``1 + bump`` for positive sizes and by
    ``1 / (1 - bump)`` otherwise, so that ``+b`` followed by ``-b`` is exact.
    Absolute bumps are split evenly over ``num_factors``.
    """
    if relative:
        value = orig * ((1.0 + bump) if bump > 0.0 else (1.0 / (1.0 - bump)))
    else:
        value = orig + bump / num_factors
    return min(max(value, lower), upper)


class Correlation(ABC):
    """
    Base class of correlation representations.

    Parameters
    ----------
    names : Sequence[str]
        Entity names in basket order; must be unique
    data : array-like
        Flat correlation buffer
    min_correlation : float
        Lower bound used when bumping
    max_correlation : float
        Upper bound used when bumping
    name : str
        Optional identifier
    """

    def __init__(
        self,
        names: Sequence[str],
        data: FloatArray | Sequence[float],
        min_correlation: float = 0.0,
        max_correlation: float = 1.0,
        name: str = "",
    ) -> None:
        names = list(names)
        if len(set(names)) != len(names):
            dupes = sorted({n for n in names if names.count(n) > 1})
            raise ConfigurationError(f"Duplicate entity names: {dupes}")
        if min_correlation > max_correlation:
            raise ConfigurationError(
                f"min_correlation ({min_correlation}) exceeds max_correlation ({max_correlation})"
            )

        self._names = names
        self._data = np.array(data, dtype=np.float64).ravel()
        self.min_correlation = float(min_correlation)
        self.max_correlation = float(max_correlation)
        self.name = name
        self._index = {n: i for i, n in enumerate(names)}

    @property
    def names(self) -> list[str]:
        """Entity names in basket order."""
        return self._names

    @property
    def data(self) -> FloatArray:
        """Flat correlation buffer (shared, mutated in place by bumps)."""
        return self._data

    @property
    def basket_size(self) -> int:
        """Number of names."""
        return len(self._names)

    @property
    def min_factor(self) -> float:
        """Lower bound in factor space."""
        return math.sqrt(max(self.min_correlation, 0.0))

    @property
    def max_factor(self) -> float:
        """Upper bound in factor space."""
        return math.sqrt(self.max_correlation)

    def index(self, name: str) -> int:
        """Position of ``name`` in the basket, or -1 if absent."""
        return self._index.get(name, -1)

    def bounds(self, factor: bool) -> tuple[float, float]:
        """Bump bounds in factor or correlation space."""
        if factor:
            return self.min_factor, self.max_factor
        return max(self.min_correlation, 0.0), self.max_correlation

    @abstractmethod
    def get_correlation(self, i: int, j: int) -> float:
        """Pairwise correlation between names ``i`` and ``j``."""

    def matrix(self) -> FloatArray:
        """Canonical ``basket_size x basket_size`` correlation matrix."""
        n = self.basket_size
        out = np.empty((n, n))
        for i in range(n):
            for j in range(n):
                out[i, j] = self.get_correlation(i, j)
        return out

    @abstractmethod
    def bump_index(self, i: int, bump: float, relative: bool, factor: bool) -> float:
        """
        Bump the correlation of name ``i``.

        Returns
        -------
        float
            Realised change in the bumped quantity
        """

    @abstractmethod
    def bump_all(self, bump: float, relative: bool, factor: bool) -> float:
        """Bump every name and return the average realised change."""

    def set_factor(self, factor: float) -> None:
        """Set every factor in the buffer to ``factor``."""
        self._data[:] = factor

    def clone(self) -> "Correlation":
        """Deep copy, including the data buffer."""
        return copy.deepcopy(self)

    @abstractmethod
    def content(self) -> pd.DataFrame:
        """Tabular dump for diagnostics."""

    def _check_name_index(self, i: int) -> None:
        if i < 0 or i >= self.basket_size:
            raise ConfigurationError(
                f"Name index {i} out of range for basket of {self.basket_size}"
            )

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(name={self.name!r}, "
            f"basket_size={self.basket_size}, data_size={self._data.size})"
        )
