#!/usr/bin/env python3
"""
Base Correlation Engine - Demo Script

This script walks through the surface workflow that needs no basket model:
1. Build unscaled base correlation curves for two indices
2. Stack them into tenor term structures
3. Interpolate across strikes and tenors
4. Merge the two indices into one weighted surface
5. Apply selector bumps
6. Convert between correlation representations
7. Export tables and plots

Usage:
    python examples/run_demo.py
"""

import logging
from pathlib import Path

import numpy as np

from basecorr_core import (
    BaseCorrelation,
    BaseCorrelationCombined,
    BaseCorrelationMethod,
    BaseCorrelationTermStruct,
    CorrelationFactory,
    FactorCorrelation,
    StrikeMethod,
    create_surface_table,
    export_to_csv,
    plot_base_correlation,
)
from basecorr_core.reporting import export_to_json, plot_term_structure, surface_to_dict

DETACHMENTS = [0.03, 0.07, 0.10, 0.15, 0.30]
TENORS = [3.0, 5.0, 7.0]


def index_surface(name: str, base: list[float], slope: float) -> BaseCorrelationTermStruct:
    """Term structure whose correlations rise by ``slope`` per year of tenor."""
    curves = [
        BaseCorrelation(
            BaseCorrelationMethod.ARBITRAGE_FREE,
            StrikeMethod.UNSCALED,
            strikes=DETACHMENTS,
            correlations=[c + slope * (t - 5.0) for c in base],
            detachments=DETACHMENTS,
            tenor_date=t,
            name=name,
        )
        for t in TENORS
    ]
    return BaseCorrelationTermStruct(
        TENORS, curves, name=name, tenor_names=[f"{t:g}Y" for t in TENORS]
    )


def main() -> None:
    """Run the base correlation demo."""
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    print("=" * 60)
    print("Base Correlation Engine - Demo")
    print("=" * 60)
    print()

    # =========================================================================
    # 1-2. Build surfaces
    # =========================================================================
    print("1. Building index surfaces...")

    cdx = index_surface("CDX", [0.15, 0.25, 0.30, 0.38, 0.55], 0.02)
    itraxx = index_surface("ITRAXX", [0.12, 0.22, 0.28, 0.35, 0.50], 0.015)

    for surface in (cdx, itraxx):
        print(f"   {surface.name}: {len(surface.dates)} tenors x {len(DETACHMENTS)} detachments")
    print()

    # =========================================================================
    # 3. Interpolation
    # =========================================================================
    print("2. Interpolating...")

    bc_4y = cdx.get_base_correlation(4.0)
    for strike in (0.05, 0.12, 0.20):
        print(f"   CDX 4Y at strike {strike:.0%}: {bc_4y.get_correlation_at(strike):.4f}")
    print()

    # =========================================================================
    # 4. Merge
    # =========================================================================
    print("3. Merging indices 60/40...")

    combined = BaseCorrelationCombined([cdx, itraxx], [0.6, 0.4], name="BLEND")
    combined.validate()
    merged_5y = combined.combined.get_base_correlation(5.0)
    print(f"   Blended 5Y correlations: {np.round(merged_5y.correlations, 4)}")
    print()

    # =========================================================================
    # 5. Bumps
    # =========================================================================
    print("4. Bumping the CDX 7% detachment by +1%...")

    delta = combined.bump_sizes(["CDX"], None, [0.07], [0.01], relative=False)
    print(f"   Average realised bump: {delta:.4f}")
    merged_5y = combined.combined.get_base_correlation(5.0)
    print(f"   Blended 5Y at 7%: {merged_5y.get_correlation_at(0.07):.4f}")
    combined.bump_sizes(["CDX"], None, [0.07], [-0.01], relative=False)
    print()

    # =========================================================================
    # 6. Correlation representations
    # =========================================================================
    print("5. Converting correlation representations...")

    names = ["N1", "N2", "N3", "N4"]
    factor = FactorCorrelation(names, 1, [0.35, 0.45, 0.50, 0.60])
    general = CorrelationFactory.create_general_correlation(factor)
    single = CorrelationFactory.create_single_factor_correlation(factor)
    print(f"   Pairwise N1/N4: {general.get_correlation(0, 3):.4f}")
    print(f"   Single factor: {single.get_factor():.4f} (max error {single.max_error:.4f})")
    print()

    # =========================================================================
    # 7. Export
    # =========================================================================
    print("6. Exporting results...")

    output_dir = Path(__file__).parent / "outputs"
    output_dir.mkdir(exist_ok=True)

    export_to_csv(create_surface_table(combined), output_dir / "demo_surface.csv")
    export_to_json(surface_to_dict(cdx), output_dir / "demo_cdx.json")
    plot_base_correlation(bc_4y, title="CDX 4Y").savefig(output_dir / "demo_cdx_4y.png")
    plot_term_structure(itraxx, title="ITRAXX").savefig(output_dir / "demo_itraxx.png")

    for path in sorted(output_dir.glob("demo_*")):
        print(f"   Saved: {path}")

    print()
    print("=" * 60)
    print("Demo complete!")
    print("=" * 60)


if __name__ == "__main__":
    main()
