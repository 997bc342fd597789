"""
Tests for reporting tables, exports and plots.
"""

import json
from pathlib import Path

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from basecorr_core.basket import Tranche
from basecorr_core.reporting import (
    create_sensitivity_table,
    create_surface_table,
    create_tranche_correlation_table,
    export_to_csv,
    export_to_json,
    plot_base_correlation,
    plot_term_structure,
    surface_to_dict,
)
from basecorr_core.sensitivity import SensitivityLayout
from basecorr_core.surface import BaseCorrelation, BaseCorrelationMixWeighted, BaseCorrelationTermStruct
from conftest import LargePoolBasket


class TestTables:
    """Tests for DataFrame builders."""

    def test_surface_table(self, unscaled_bc: BaseCorrelation) -> None:
        """Node table is prefixed with the surface name."""
        df = create_surface_table(unscaled_bc)
        assert (df["Surface"] == "CDX").all()
        assert len(df) == 5
        assert np.isclose(df["Correlation"].iloc[1], 0.25)

    def test_unnamed_surface_uses_kind(self, make_flat_bc) -> None:
        """Surfaces without a name are labelled by their kind."""
        mix = BaseCorrelationMixWeighted([make_flat_bc(0.2, name="A")], [1.0])
        df = create_surface_table(mix)
        assert (df["Surface"] == mix.kind.value).all()

    def test_sensitivity_table(self) -> None:
        """One row per name with delta, diagonal gamma, VOD and recovery."""
        layout = SensitivityLayout([2, 1], names=["A", "B"])
        df = create_sensitivity_table(layout, np.arange(1.0, 12.0))
        assert list(df["Name"]) == ["A", "B"]
        assert df.loc[0, "Delta 1"] == 2.0
        assert df.loc[0, "Gamma 1"] == 5.0
        assert df.loc[1, "VOD"] == 10.0
        assert np.isnan(df.loc[1, "Delta 1"])

    def test_sensitivity_table_without_gammas(self) -> None:
        """Gamma columns are optional."""
        layout = SensitivityLayout([1])
        df = create_sensitivity_table(layout, np.ones(4), include_gammas=False)
        assert not any(c.startswith("Gamma") for c in df.columns)

    def test_tranche_correlation_table(
        self, unscaled_bc: BaseCorrelation, basket: LargePoolBasket
    ) -> None:
        """Equity tranches have no attachment correlation."""
        tranches = [Tranche(0.0, 0.03, 5.0), Tranche(0.03, 0.07, 5.0)]
        df = create_tranche_correlation_table(unscaled_bc, tranches, basket)
        assert np.isnan(df.loc[0, "AP Correlation"])
        assert np.isclose(df.loc[1, "AP Correlation"], 0.15)
        assert np.isclose(df.loc[1, "DP Correlation"], 0.25)


class TestExport:
    """Tests for CSV and JSON export."""

    def test_csv(self, tmp_path: Path, unscaled_bc: BaseCorrelation) -> None:
        """CSV files are written with parent directories created."""
        path = tmp_path / "out" / "surface.csv"
        export_to_csv(create_surface_table(unscaled_bc), path)
        df = pd.read_csv(path)
        assert len(df) == 5
        assert np.isclose(df["Correlation"].iloc[4], 0.55)

    def test_json_surface(self, tmp_path: Path, elr_bc: BaseCorrelation) -> None:
        """Missing detachments are exported as null."""
        path = tmp_path / "surface.json"
        export_to_json(surface_to_dict(elr_bc), path)
        with open(path) as f:
            data = json.load(f)
        assert data["name"] == "CDX-ELR"
        assert data["kind"] == elr_bc.kind.value
        assert data["entity_names"] is None
        col = data["columns"].index("Detachment")
        assert all(row[col] is None for row in data["rows"])

    def test_json_numpy_values(self, tmp_path: Path) -> None:
        """Arrays and numpy scalars are converted."""
        path = tmp_path / "values.json"
        export_to_json({"a": np.array([1.0, np.nan]), "n": np.int64(3)}, path)
        with open(path) as f:
            data = json.load(f)
        assert data == {"a": [1.0, None], "n": 3}


class TestPlots:
    """Tests for curve plots."""

    def test_plot_base_correlation(self, unscaled_bc: BaseCorrelation) -> None:
        """The curve plot returns a figure with the curve and the nodes."""
        fig = plot_base_correlation(unscaled_bc, num_points=20)
        assert isinstance(fig, plt.Figure)
        assert len(fig.axes[0].lines) == 2
        plt.close(fig)

    def test_plot_term_structure(self, term_struct: BaseCorrelationTermStruct) -> None:
        """One line per tenor."""
        fig = plot_term_structure(term_struct)
        labels = [line.get_label() for line in fig.axes[0].lines]
        assert labels == ["3Y", "5Y", "7Y"]
        plt.close(fig)
