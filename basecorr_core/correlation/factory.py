"""
Conversions between correlation representations.

Lossless conversions (single factor to factor to general matrix) copy
numbers; lossy conversions (general matrix to factors, factors to a single
factor) fit and report the fit quality through ``std_error`` and
``max_error`` on the result.
"""

import logging
from typing import Sequence

import numpy as np

from basecorr_core._types import FloatArray
from basecorr_core.correlation.base import Correlation
from basecorr_core.correlation.factor import (
    MAX_FACTORS,
    FactorCorrelation,
    GeneralCorrelation,
    SingleFactorCorrelation,
)
from basecorr_core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


def fit_factors(
    matrix: FloatArray,
    num_factors: int,
    max_iter: int = 5000,
    tolerance: float = 1e-14,
) -> FloatArray:
    """
    Fit factor loadings to a correlation matrix.

    Uses iterated principal factors: the diagonal is replaced by the current
    communalities, the leading ``num_factors`` eigenpairs give new loadings,
    and the loop repeats until the communalities settle. Loadings are
    rescaled so that no communality exceeds one.

    Parameters
    ----------
    matrix : FloatArray
        Symmetric ``n x n`` correlation matrix
    num_factors : int
        Number of factors to extract

    Returns
    -------
    FloatArray
        Loadings of shape ``(num_factors, n)``
    """
    c = np.array(matrix, dtype=np.float64)
    n = c.shape[0]
    if n == 1:
        out = np.zeros((num_factors, 1))
        return out

    off = c - np.diag(np.diag(c))
    communality = np.max(np.abs(off), axis=1)
    loadings = np.zeros((num_factors, n))
    for it in range(max_iter):
        work = off + np.diag(communality)
        eigval, eigvec = np.linalg.eigh(work)
        top = np.argsort(eigval)[::-1][:num_factors]
        lam = np.clip(eigval[top], 0.0, None)
        loadings = (eigvec[:, top] * np.sqrt(lam)).T
        new_comm = np.sum(loadings**2, axis=0)
        scale = np.where(new_comm > 1.0, 1.0 / np.sqrt(np.maximum(new_comm, 1e-300)), 1.0)
        loadings = loadings * scale
        new_comm = np.minimum(new_comm, 1.0)
        if np.max(np.abs(new_comm - communality)) < tolerance:
            communality = new_comm
            break
        communality = new_comm
    else:
        logger.debug("Factor fit did not converge in %d iterations", max_iter)

    # orient each factor so that its loadings sum to a non-negative number
    for f in range(num_factors):
        if loadings[f].sum() < 0:
            loadings[f] = -loadings[f]
    return loadings


def _fit_errors(target: Correlation | FloatArray, fitted: Correlation) -> tuple[float, float]:
    """Standard and maximum error of ``fitted`` against ``target`` over pairs i > j."""
    n = fitted.basket_size
    std_err = 0.0
    max_err = 0.0
    for i in range(n):
        for j in range(i):
            if isinstance(target, Correlation):
                r0 = target.get_correlation(i, j)
            else:
                r0 = target[i, j]
            d = abs(fitted.get_correlation(i, j) - r0)
            max_err = max(max_err, d)
            std_err += d * d
    if n > 1:
        std_err /= n * (n - 1)
    return float(np.sqrt(std_err)), max_err


class CorrelationFactory:
    """
    Factory functions converting between correlation representations.

    Example
    -------
    >>> general = GeneralCorrelation(names, matrix)
    >>> factor = CorrelationFactory.create_factor_correlation(general)
    >>> print(factor.max_error)
    """

    @staticmethod
    def factor_fit(names: Sequence[str], matrix: FloatArray, num_factors: int) -> FactorCorrelation:
        """Fit ``num_factors`` factors to ``matrix`` and record the fit errors."""
        loadings = fit_factors(matrix, num_factors)
        corr = FactorCorrelation(names, num_factors, loadings.ravel())
        corr.std_error, corr.max_error = _fit_errors(np.asarray(matrix), corr)
        return corr

    @staticmethod
    def _subset(correlation: Correlation, notionals: Sequence[float]) -> list[int]:
        idx = [i for i, x in enumerate(notionals) if x != 0.0]
        return idx

    @staticmethod
    def create_factor_correlation(
        correlation: Correlation,
        notionals: Sequence[float] | None = None,
        names: Sequence[str] | None = None,
        max_factors: int | None = None,
    ) -> FactorCorrelation:
        """
        Convert any correlation to a ``FactorCorrelation``.

        Parameters
        ----------
        correlation : Correlation
            Source correlation
        notionals : Sequence[float] | None
            Keep only names with non-zero notional
        names : Sequence[str] | None
            Keep only these names, in this order
        max_factors : int | None
            Maximum number of factors; general matrices are fitted with one
            factor unless this is given

        Returns
        -------
        FactorCorrelation
            Factor correlation; ``std_error``/``max_error`` report fit quality
        """
        if notionals is not None and names is not None:
            raise ConfigurationError("Specify either notionals or names, not both")

        if max_factors is not None and not 1 <= max_factors <= MAX_FACTORS:
            raise ConfigurationError(
                f"max_factors must be between 1 and {MAX_FACTORS}, got {max_factors}"
            )

        index = CorrelationFactory._select(correlation, notionals, names)
        if index is None:
            corr = CorrelationFactory._full_factor(correlation, max_factors)
        else:
            corr = CorrelationFactory._subset_factor(correlation, index, max_factors)
        corr.name = correlation.name
        return corr

    @staticmethod
    def _select(
        correlation: Correlation,
        notionals: Sequence[float] | None,
        names: Sequence[str] | None,
    ) -> list[int] | None:
        """Indices of the selected sub-basket, or None when the full basket is kept."""
        if notionals is not None:
            index = CorrelationFactory._subset(correlation, notionals)
            if len(index) == correlation.basket_size:
                return None
            single = isinstance(correlation, SingleFactorCorrelation) and correlation.basket_size <= 1
            if not single and len(notionals) > correlation.basket_size:
                raise ConfigurationError(
                    f"Constituents of correlation (len={correlation.basket_size}) and "
                    f"notionals (len={len(notionals)}) not match."
                )
            return index
        if names is not None:
            if isinstance(correlation, SingleFactorCorrelation):
                index = list(range(len(names)))
            else:
                index = []
                for n in names:
                    i = correlation.index(n)
                    if i < 0:
                        raise ConfigurationError(f"Missing correlation for name {n}")
                    index.append(i)
            if len(index) == correlation.basket_size and index == list(range(len(index))):
                return None
            return index
        return None

    @staticmethod
    def _full_factor(correlation: Correlation, max_factors: int | None) -> FactorCorrelation:
        n = correlation.basket_size
        if isinstance(correlation, SingleFactorCorrelation):
            return FactorCorrelation(
                correlation.names, 1, np.full(n, correlation.get_factor()),
                correlation.min_correlation, correlation.max_correlation,
            )
        if isinstance(correlation, FactorCorrelation) and (
            max_factors is None or correlation.num_factors <= max_factors
        ):
            return correlation
        return CorrelationFactory.factor_fit(
            correlation.names, correlation.matrix(), max_factors or 1
        )

    @staticmethod
    def _subset_factor(
        correlation: Correlation, index: list[int], max_factors: int | None
    ) -> FactorCorrelation:
        if isinstance(correlation, SingleFactorCorrelation):
            names = (
                [correlation.names[i] for i in index]
                if correlation.basket_size > max(index, default=-1)
                else [f"Name {k + 1}" for k in range(len(index))]
            )
            return FactorCorrelation(names, 1, np.full(len(index), correlation.get_factor()))
        names = [correlation.names[i] for i in index]
        if isinstance(correlation, FactorCorrelation) and (
            max_factors is None or correlation.num_factors <= max_factors
        ):
            data = correlation.factors[:, index]
            return FactorCorrelation(names, correlation.num_factors, data.ravel())
        sub = correlation.matrix()[np.ix_(index, index)]
        return CorrelationFactory.factor_fit(names, sub, max_factors or 1)

    @staticmethod
    def create_single_factor_correlation(
        correlation: Correlation,
        notionals: Sequence[float] | None = None,
    ) -> SingleFactorCorrelation:
        """
        Convert any correlation to a ``SingleFactorCorrelation``.

        The common factor is the average of the one-factor loadings; the
        standard error is ``sqrt(sum d^2 / (n (n - 1)))`` over pairs i > j.
        """
        if notionals is not None:
            correlation = CorrelationFactory.create_factor_correlation(
                correlation, notionals=notionals
            )
        if isinstance(correlation, SingleFactorCorrelation):
            return correlation

        factor_corr = CorrelationFactory.create_factor_correlation(correlation)
        corr = SingleFactorCorrelation(
            factor_corr.names, float(np.mean(factor_corr.data)), name=correlation.name
        )
        corr.std_error, corr.max_error = _fit_errors(correlation, corr)
        return corr

    @staticmethod
    def create_general_correlation(
        correlation: Correlation,
        notionals: Sequence[float] | None = None,
        names: Sequence[str] | None = None,
    ) -> GeneralCorrelation:
        """Expand any correlation to its full pairwise matrix, optionally on a sub-basket."""
        if notionals is not None and names is not None:
            raise ConfigurationError("Specify either notionals or names, not both")

        if names is not None:
            index = []
            for n in names:
                i = correlation.index(n)
                if i < 0:
                    raise ConfigurationError(f"Missing correlation for name {n}")
                index.append(i)
        elif notionals is not None:
            index = CorrelationFactory._subset(correlation, notionals)
        else:
            index = list(range(correlation.basket_size))

        if isinstance(correlation, GeneralCorrelation) and index == list(
            range(correlation.basket_size)
        ):
            return correlation

        sub = correlation.matrix()[np.ix_(index, index)]
        corr = GeneralCorrelation(
            [correlation.names[i] for i in index], sub.ravel(), name=correlation.name
        )
        return corr

    @staticmethod
    def create_correlation_term_struct(
        names: Sequence[str] | None,
        dates: Sequence[float],
        correlations: Sequence[Correlation],
    ) -> "CorrelationTermStruct":  # noqa: F821
        """Stack per-date correlations into a ``CorrelationTermStruct``."""
        from basecorr_core.correlation.term_struct import CorrelationTermStruct

        return CorrelationTermStruct.from_correlations(names, dates, correlations)

    @staticmethod
    def create_combined_base_correlation(
        base_correlations: Sequence["BaseCorrelationObject"],  # noqa: F821
        weights: Sequence[float],
        strike_interp: "Interp | None" = None,  # noqa: F821
        time_interp: "Interp | None" = None,  # noqa: F821
        min_correlation: float = 0.0,
        max_correlation: float = 1.0,
    ) -> "BaseCorrelationTermStruct":  # noqa: F821
        """Merge base correlation surfaces into one weighted term structure."""
        from basecorr_core.surface.combined import merge_surfaces

        return merge_surfaces(
            base_correlations, weights, strike_interp, time_interp,
            min_correlation, max_correlation,
        )
