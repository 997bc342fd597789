"""
Tests for correlation representations and conversions.
"""

import numpy as np
import pytest

from basecorr_core.correlation import (
    CorrelationFactory,
    CorrelationTermStruct,
    FactorCorrelation,
    GeneralCorrelation,
    SingleFactorCorrelation,
    bumped_value,
)
from basecorr_core.exceptions import ConfigurationError

NAMES = ["A", "B", "C", "D", "E"]


@pytest.fixture
def loadings() -> np.ndarray:
    """One-factor loadings with distinct values per name."""
    return np.array([0.3, 0.5, 0.6, 0.4, 0.7])


@pytest.fixture
def general(loadings: np.ndarray) -> GeneralCorrelation:
    """General matrix generated by a single factor."""
    m = np.outer(loadings, loadings)
    np.fill_diagonal(m, 1.0)
    return GeneralCorrelation(NAMES, m)


class TestBumpedValue:
    """Tests for the shared bump rule."""

    def test_relative_round_trip(self) -> None:
        """A relative bump of +b followed by -b restores the value."""
        up = bumped_value(0.09, 0.5, True, 0.0, 1.0)
        assert np.isclose(up, 0.135)
        assert np.isclose(bumped_value(up, -0.5, True, 0.0, 1.0), 0.09)

    def test_absolute_split_over_factors(self) -> None:
        """Absolute bumps are split evenly across factors."""
        assert np.isclose(bumped_value(0.2, 0.1, False, 0.0, 1.0, num_factors=2), 0.25)

    def test_clamped(self) -> None:
        """Bumped values stay within the bounds."""
        assert bumped_value(0.95, 0.1, False, 0.0, 1.0) == 1.0
        assert bumped_value(0.05, -0.1, False, 0.0, 1.0) == 0.0


class TestSingleFactorCorrelation:
    """Tests for SingleFactorCorrelation class."""

    def test_pairwise_correlation(self) -> None:
        """Pairwise correlation is the squared factor."""
        corr = SingleFactorCorrelation(NAMES, 0.3)
        assert np.isclose(corr.get_correlation(0, 1), 0.09)
        assert corr.get_correlation(2, 2) == 1.0

    def test_bump_and_restore(self) -> None:
        """An absolute correlation bump can be reversed exactly."""
        corr = SingleFactorCorrelation(NAMES, 0.3)
        delta = corr.bump_all(0.03, relative=False, factor=False)
        assert np.isclose(delta, 0.03)
        assert np.isclose(corr.get_correlation(0, 1), 0.12)
        corr.bump_all(-0.03, relative=False, factor=False)
        assert np.isclose(corr.get_factor(), 0.3)

    def test_duplicate_names_rejected(self) -> None:
        """Entity names must be unique."""
        with pytest.raises(ConfigurationError):
            SingleFactorCorrelation(["A", "A"], 0.3)


class TestFactorCorrelation:
    """Tests for FactorCorrelation class."""

    def test_pairwise_correlation(self) -> None:
        """Pairwise correlation is the dot product of loadings."""
        corr = FactorCorrelation(["A", "B"], 1, [0.3, 0.3])
        assert np.isclose(corr.get_correlation(0, 1), 0.09)

    def test_bump_factor_of_one_name(self) -> None:
        """Bumping one name's factor changes only pairs involving that name."""
        corr = FactorCorrelation(["A", "B", "C"], 1, [0.3, 0.3, 0.3])
        delta = corr.bump_index(0, 0.1, relative=False, factor=True)
        assert np.isclose(delta, 0.1)
        assert np.isclose(corr.get_correlation(0, 1), 0.12)
        assert np.isclose(corr.get_correlation(1, 2), 0.09)

    def test_communality_above_one_rejected(self) -> None:
        """Loadings whose squares sum above one are invalid."""
        with pytest.raises(ConfigurationError):
            FactorCorrelation(["A", "B"], 2, [0.8, 0.5, 0.8, 0.5])

    def test_wrong_length_rejected(self) -> None:
        """Data length must equal factors times names."""
        with pytest.raises(ConfigurationError):
            FactorCorrelation(["A", "B"], 1, [0.3])


class TestGeneralCorrelation:
    """Tests for GeneralCorrelation class."""

    def test_bump_keeps_symmetry(self, general: GeneralCorrelation) -> None:
        """Bumping a name moves both halves of each pair."""
        general.bump_index(1, 0.05, relative=False, factor=False)
        m = general.matrix()
        assert np.allclose(m, m.T)
        assert np.isclose(m[0, 1], 0.15 + 0.05)
        assert np.isclose(m[0, 2], 0.18)

    def test_set_factor(self, general: GeneralCorrelation) -> None:
        """set_factor writes a flat matrix with a unit diagonal."""
        general.set_factor(0.5)
        m = general.matrix()
        assert np.allclose(np.diag(m), 1.0)
        assert np.isclose(m[3, 4], 0.25)

    def test_asymmetric_rejected(self) -> None:
        """The matrix must be symmetric."""
        with pytest.raises(ConfigurationError):
            GeneralCorrelation(["A", "B"], [[1.0, 0.3], [0.4, 1.0]])


class TestCorrelationTermStruct:
    """Tests for CorrelationTermStruct class."""

    def test_interpolates_factors_in_time(self) -> None:
        """Factors are interpolated linearly between tenor dates."""
        cts = CorrelationTermStruct(["A", "B"], [0.3, 0.5], [3.0, 5.0])
        assert np.isclose(cts.get_correlation(0, 1, date=4.0), 0.16)
        assert np.isclose(cts.get_correlation(0, 1, date=10.0), 0.25)

    def test_bump_tenor_of_one_name(self) -> None:
        """Bumping one tenor of one name leaves other slots untouched."""
        data = [0.3, 0.3, 0.5, 0.5]
        cts = CorrelationTermStruct(["A", "B"], data, [3.0, 5.0])
        cts.bump_tenor(1, 0.1, relative=False, factor=True, index=0)
        assert np.allclose(cts.data, [0.3, 0.3, 0.6, 0.5])
        cts.bump_tenor(1, -0.1, relative=False, factor=True, index=0)
        assert np.allclose(cts.data, data)

    def test_bump_common_factor_tenor(self) -> None:
        """A common-factor term structure bumps the selected tenor."""
        cts = CorrelationTermStruct(NAMES, [0.3, 0.5], [3.0, 5.0])
        cts.bump_tenor(0, 0.1, relative=False, factor=True, index=2)
        assert np.allclose(cts.data, [0.4, 0.5])

    def test_set_factor_from(self) -> None:
        """set_factor_from overwrites every tenor on or after the date."""
        cts = CorrelationTermStruct(["A", "B"], [0.1, 0.1, 0.2, 0.2, 0.3, 0.3], [1.0, 3.0, 5.0])
        cts.set_factor_from(2.0, 0.9)
        assert np.allclose(cts.data, [0.1, 0.1, 0.9, 0.9, 0.9, 0.9])

    def test_set_factor_from_beyond_last_date(self) -> None:
        """A date past the last tenor is rejected."""
        cts = CorrelationTermStruct(["A"], [0.1, 0.2], [1.0, 3.0])
        with pytest.raises(ConfigurationError):
            cts.set_factor_from(4.0, 0.5)

    def test_from_correlations(self) -> None:
        """Single-factor correlations stack into a common-factor term structure."""
        cts = CorrelationTermStruct.from_correlations(
            None, [1.0, 2.0], [SingleFactorCorrelation(NAMES, 0.2), SingleFactorCorrelation(NAMES, 0.4)]
        )
        assert cts.stride == 1
        assert np.allclose(cts.data, [0.2, 0.4])
        assert cts.names == NAMES

    def test_malformed_data_rejected(self) -> None:
        """Data length must be a multiple of the date count."""
        with pytest.raises(ConfigurationError):
            CorrelationTermStruct(["A", "B"], [0.1, 0.2, 0.3], [1.0, 2.0])


class TestCorrelationFactory:
    """Tests for conversions between representations."""

    def test_factor_fit_recovers_loadings(
        self, general: GeneralCorrelation, loadings: np.ndarray
    ) -> None:
        """A one-factor matrix is fitted back to its loadings."""
        fitted = CorrelationFactory.create_factor_correlation(general)
        assert fitted.num_factors == 1
        assert np.allclose(fitted.factors[0], loadings, atol=1e-4)
        assert fitted.max_error < 1e-4

    def test_subset_by_names(self, general: GeneralCorrelation) -> None:
        """Selecting names keeps the selected pairs."""
        sub = CorrelationFactory.create_general_correlation(general, names=["C", "A"])
        assert sub.names == ["C", "A"]
        assert np.isclose(sub.get_correlation(0, 1), 0.18)

    def test_subset_by_notionals(self) -> None:
        """Names with zero notional are dropped."""
        corr = FactorCorrelation(["A", "B", "C"], 1, [0.3, 0.4, 0.5])
        sub = CorrelationFactory.create_factor_correlation(corr, notionals=[1.0, 0.0, 1.0])
        assert sub.names == ["A", "C"]
        assert np.allclose(sub.data, [0.3, 0.5])

    def test_names_and_notionals_exclusive(self, general: GeneralCorrelation) -> None:
        """Passing both selections is an error."""
        with pytest.raises(ConfigurationError):
            CorrelationFactory.create_factor_correlation(
                general, notionals=[1.0] * 5, names=NAMES
            )

    def test_single_factor_average(self) -> None:
        """The single factor is the average loading and reports its error."""
        corr = FactorCorrelation(["A", "B", "C"], 1, [0.3, 0.4, 0.5])
        single = CorrelationFactory.create_single_factor_correlation(corr)
        assert np.isclose(single.get_factor(), 0.4)
        assert single.max_error > 0.0

    def test_single_to_general(self) -> None:
        """Lossless expansion to the full matrix."""
        general = CorrelationFactory.create_general_correlation(SingleFactorCorrelation(NAMES, 0.5))
        m = general.matrix()
        assert np.isclose(m[0, 4], 0.25)
        assert np.allclose(np.diag(m), 1.0)
