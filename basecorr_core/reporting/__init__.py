"""
Reporting module for base correlation surfaces and sensitivities.

Provides:
- Matplotlib plots of curves and term structures
- DataFrame formatters
- CSV/JSON export utilities
"""

from basecorr_core.reporting.export import export_to_csv, export_to_json, surface_to_dict
from basecorr_core.reporting.plots import plot_base_correlation, plot_term_structure
from basecorr_core.reporting.tables import (
    create_sensitivity_table,
    create_surface_table,
    create_tranche_correlation_table,
)

__all__ = [
    # Plots
    "plot_base_correlation",
    "plot_term_structure",
    # Tables
    "create_surface_table",
    "create_sensitivity_table",
    "create_tranche_correlation_table",
    # Export
    "export_to_csv",
    "export_to_json",
    "surface_to_dict",
]
