"""
Correlation term structure.

Attaches an ascending sequence of dates to a factor correlation: the
buffer holds one block of ``stride`` numbers per date, where the stride is
1 (a common factor) or ``num_factors * basket_size`` (per-name loadings).
"""

import logging
import math
from typing import Sequence

import numpy as np
import pandas as pd

from basecorr_core._types import FloatArray, Year
from basecorr_core.correlation.base import Correlation, bumped_value
from basecorr_core.correlation.factor import (
    MAX_FACTORS,
    FactorCorrelation,
    SingleFactorCorrelation,
)
from basecorr_core.exceptions import ConfigurationError, UnsupportedMethodError
from basecorr_core.numerics.interp import ExtrapMethod, Interp, InterpMethod

logger = logging.getLogger(__name__)


class CorrelationTermStruct(Correlation):
    """
    Factor correlations indexed by tenor date.

    Parameters
    ----------
    names : Sequence[str]
        Entity names
    data : array-like
        Flat buffer of ``len(dates) * stride`` factors
    dates : Sequence[Year]
        Strictly ascending tenor dates
    min_correlation, max_correlation : float
        Bump bounds
    interp : Interp | None
        Time interpolation (linear with constant extrapolation by default)

    Example
    -------
    >>> cts = CorrelationTermStruct(["A", "B"], [0.3, 0.5], [3.0, 5.0])
    >>> cts.get_correlation(0, 1, date=4.0)  # factor 0.4 at 4y
    """

    def __init__(
        self,
        names: Sequence[str],
        data: FloatArray | Sequence[float],
        dates: Sequence[Year],
        min_correlation: float = 0.0,
        max_correlation: float = 1.0,
        interp: Interp | None = None,
        name: str = "",
        generalized: bool = False,
    ) -> None:
        super().__init__(names, data, min_correlation, max_correlation, name)
        if dates is None or len(dates) == 0:
            raise ConfigurationError("Null date array")
        dates_arr = np.asarray(dates, dtype=np.float64)
        if dates_arr.size > 1 and np.any(np.diff(dates_arr) <= 0):
            raise ConfigurationError("Tenor dates must be strictly ascending")

        stride = self._data.size // dates_arr.size
        if stride == 0 or self._data.size != dates_arr.size * stride:
            raise ConfigurationError(
                f"Correlation data is not well-formed, its length should be "
                f"{dates_arr.size}x{max(stride, 1)}, but got {self._data.size}."
            )
        if not generalized and stride != 1:
            num_factors = stride // self.basket_size
            if num_factors * self.basket_size != stride or num_factors > MAX_FACTORS:
                raise ConfigurationError(
                    f"Number of correlations per date ({stride}) not match "
                    f"the basket size ({self.basket_size})"
                )

        self._dates = dates_arr
        self.generalized = generalized
        self.interp = interp or Interp(InterpMethod.LINEAR, ExtrapMethod.CONST)

    @classmethod
    def from_correlations(
        cls,
        names: Sequence[str] | None,
        dates: Sequence[Year],
        correlations: Sequence[Correlation],
    ) -> "CorrelationTermStruct":
        """
        Stack single-factor or factor correlations into a term structure.

        All correlations must be of the same kind; factor correlations must
        share basket size and number of factors.
        """
        if dates is None or len(dates) == 0:
            raise ConfigurationError("Null date array")
        if not correlations:
            raise ConfigurationError("Null correlation array")

        first = correlations[0]
        if isinstance(first, SingleFactorCorrelation):
            data = []
            for i, c in enumerate(correlations):
                if not isinstance(c, SingleFactorCorrelation):
                    raise ConfigurationError(f"Correlation {i} is not SingleFactorCorrelation")
                data.append(c.get_factor())
            names = names if names is not None else first.names
        elif isinstance(first, FactorCorrelation):
            basket_size = len(names) if names is not None else first.basket_size
            num_factors = first.num_factors
            blocks = []
            for i, c in enumerate(correlations):
                if not isinstance(c, FactorCorrelation):
                    raise ConfigurationError(f"Correlation {i} is not FactorCorrelation")
                if c.basket_size != basket_size:
                    raise ConfigurationError(
                        f"Basket size ({c.basket_size}) of correlation {i} not match {basket_size}"
                    )
                if c.num_factors != num_factors:
                    raise ConfigurationError(
                        f"Number of factors ({c.num_factors}) of correlation {i} "
                        f"not match {num_factors}"
                    )
                blocks.append(c.data)
            data = np.concatenate(blocks)
            names = names if names is not None else first.names
        else:
            raise UnsupportedMethodError(
                f"Cannot create CorrelationTermStruct from type {type(first).__name__}",
                type(first),
            )
        return cls(names, data, dates)

    @classmethod
    def generalize(
        cls,
        names: Sequence[str],
        data: FloatArray | Sequence[float],
        dates: Sequence[Year],
    ) -> "CorrelationTermStruct":
        """Term structure with an arbitrary stride; pairwise lookups are unsupported."""
        return cls(names, data, dates, generalized=True)

    @property
    def dates(self) -> FloatArray:
        """Tenor dates."""
        return self._dates

    @property
    def stride(self) -> int:
        """Numbers per tenor date."""
        return self._data.size // self._dates.size

    @property
    def num_factors(self) -> int:
        """Factors per date; a common factor counts as one."""
        return max(self.stride // self.basket_size, 1)

    def block(self, tenor: int) -> FloatArray:
        """View of the factors at tenor index ``tenor``."""
        s = self.stride
        return self._data[tenor * s:(tenor + 1) * s]

    def factors_at(self, date: Year) -> FloatArray:
        """Factors interpolated in time at ``date``."""
        if self._dates.size == 1:
            return self.block(0).copy()
        blocks = self._data.reshape(self._dates.size, self.stride)
        return np.array(
            [self.interp.build(self._dates, blocks[:, k])(date) for k in range(self.stride)]
        )

    def correlation_at(self, date: Year) -> Correlation:
        """Single-date correlation object at ``date``."""
        factors = self.factors_at(date)
        if self.stride == 1:
            return SingleFactorCorrelation(
                self.names, float(factors[0]), self.min_correlation, self.max_correlation, self.name
            )
        self._check_pairwise()
        return FactorCorrelation(
            self.names, self.num_factors, factors,
            self.min_correlation, self.max_correlation, self.name,
        )

    def _check_pairwise(self) -> None:
        if self.generalized and self.stride != 1 and self.stride % self.basket_size != 0:
            raise UnsupportedMethodError(
                "get_correlation(i, j) is not supported by generalized correlation object"
            )

    def get_correlation(self, i: int, j: int, date: Year | None = None) -> float:
        """
        Pairwise correlation at ``date`` (the first tenor when omitted).
        """
        if i == j:
            return 1.0
        self._check_pairwise()
        data = self.block(0) if date is None else self.factors_at(date)
        if self.stride == 1:
            return float(data[0] * data[0])
        a = data.reshape(-1, self.basket_size)
        return float(np.dot(a[:, i], a[:, j]))

    def bump_tenor(
        self,
        tenor: int,
        bump: float,
        relative: bool,
        factor: bool,
        index: int | None = None,
    ) -> float:
        """
        Bump the factors of one tenor.

        Parameters
        ----------
        tenor : int
            Tenor index
        bump : float
            Bump size
        relative : bool
            Relative instead of absolute bump
        factor : bool
            Bump factors instead of correlations
        index : int | None
            Name index; None bumps every name and averages

        Returns
        -------
        float
            Realised change
        """
        if tenor < 0 or tenor >= self._dates.size:
            raise ConfigurationError(f"Tenor {tenor} is out of range")

        if index is None:
            if self.stride == 1:
                return self._bump_slot(tenor * self.stride, bump, relative, factor, 1)
            delta = sum(
                self.bump_tenor(tenor, bump, relative, factor, i) for i in range(self.basket_size)
            )
            return delta / self.basket_size

        if self.stride == 1:
            self._check_name_index(index)
            return self._bump_slot(tenor, bump, relative, factor, 1)
        if index < 0 or index >= self.basket_size:
            raise ConfigurationError(
                f"Index {index} larger than the maximum permitted ({self.basket_size})"
            )
        delta = 0.0
        n = self.basket_size
        num_factors = self.num_factors
        for f in range(num_factors):
            delta += self._bump_slot(
                tenor * self.stride + f * n + index, bump, relative, factor, num_factors
            )
        return delta

    def _bump_slot(self, idx: int, bump: float, relative: bool, factor: bool, nf: int) -> float:
        lower, upper = self.bounds(factor)
        orig = self._data[idx] if factor else self._data[idx] ** 2
        value = bumped_value(orig, bump, relative, lower, upper, nf)
        self._data[idx] = value if factor else math.sqrt(value)
        return value - orig

    def bump_index(self, i: int, bump: float, relative: bool, factor: bool) -> float:
        """Bump name ``i`` at every tenor and return the average change."""
        delta = sum(
            self.bump_tenor(t, bump, relative, factor, i) for t in range(self._dates.size)
        )
        return delta / self._dates.size

    def bump_all(self, bump: float, relative: bool, factor: bool) -> float:
        delta = sum(self.bump_tenor(t, bump, relative, factor) for t in range(self._dates.size))
        return delta / self._dates.size

    def set_factor_at_date(self, tenor: int, factor: float) -> None:
        """Set all factors of tenor index ``tenor``."""
        if tenor < 0 or tenor >= self._dates.size:
            raise ConfigurationError(
                f"Date index {tenor} larger than the maximum permitted ({self._dates.size})"
            )
        self.block(tenor)[:] = factor

    def set_factor_from_index(self, tenor: int, factor: float) -> None:
        """Set all factors from tenor index ``tenor`` onward."""
        if tenor < 0 or tenor >= self._dates.size:
            raise ConfigurationError(
                f"Date index {tenor} larger than the maximum permitted ({self._dates.size})"
            )
        self._data[tenor * self.stride:] = factor

    def set_factor(self, factor: float, from_date: Year | None = None) -> None:
        """
        Set factors to ``factor``.

        Without ``from_date`` every factor is set. Otherwise only the first
        tenor on or after ``from_date`` is set (the last tenor when
        ``from_date`` is beyond it).
        """
        if from_date is None or self._dates.size == 1:
            self._data[:] = factor
            return
        pos = int(np.searchsorted(self._dates, from_date, side="left"))
        self.set_factor_at_date(min(pos, self._dates.size - 1), factor)

    def set_factor_from(self, date: Year, factor: float) -> None:
        """Set factors of every tenor on or after ``date``."""
        if self._dates.size == 1:
            self._data[:] = factor
            return
        pos = int(np.searchsorted(self._dates, date, side="left"))
        if pos >= self._dates.size:
            raise ConfigurationError(
                f"Date {date} is later than the last tenor date {self._dates[-1]}"
            )
        self.set_factor_from_index(pos, factor)

    def content(self) -> pd.DataFrame:
        if self._dates.size <= 1:
            return self.correlation_at(float(self._dates[0])).content()
        rows = []
        for i, name in enumerate(self.names):
            for t, date in enumerate(self._dates):
                block = self.block(t)
                rows.append(
                    {
                        "Name": name,
                        "Date": float(date),
                        "Factor": float(block[0] if self.stride == 1 else block[i]),
                    }
                )
        return pd.DataFrame(rows, columns=["Name", "Date", "Factor"])
