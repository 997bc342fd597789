"""
Plotting utilities for base correlation curves.

All functions return matplotlib figures.
"""

from typing import Sequence

import matplotlib.pyplot as plt
import numpy as np

from basecorr_core.surface.base_correlation import BaseCorrelation
from basecorr_core.surface.term_struct import BaseCorrelationTermStruct


def plot_base_correlation(
    bc: BaseCorrelation,
    title: str = "Base Correlation",
    num_points: int = 100,
    show_nodes: bool = True,
) -> plt.Figure:
    """
    Plot a base correlation curve against strike.

    Parameters
    ----------
    bc : BaseCorrelation
        Curve to plot
    title : str
        Plot title
    num_points : int
        Number of interpolated points between the first and last strike
    show_nodes : bool
        Mark the calibrated nodes

    Returns
    -------
    plt.Figure
        Matplotlib figure
    """
    fig, ax = plt.subplots(figsize=(10, 6))

    strikes = bc.strikes
    if strikes.size > 1:
        grid = np.linspace(strikes.min(), strikes.max(), num_points)
        curve = [bc.get_correlation_at(s) for s in grid]
        ax.plot(grid * 100, np.asarray(curve) * 100, "b-", linewidth=2, label="Interpolated")

    if show_nodes:
        ax.plot(strikes * 100, bc.correlations * 100, "ro", markersize=6, label="Nodes")

    ax.set_xlabel(f"Strike (%) [{bc.strike_method.value}]")
    ax.set_ylabel("Base Correlation (%)")
    ax.set_title(title)
    ax.legend()
    ax.grid(True, alpha=0.3)

    plt.tight_layout()
    return fig


def plot_term_structure(
    bct: BaseCorrelationTermStruct,
    title: str = "Base Correlation Term Structure",
    labels: Sequence[str] | None = None,
) -> plt.Figure:
    """
    Plot every tenor curve of a term structure on one axis.

    Parameters
    ----------
    bct : BaseCorrelationTermStruct
        Term structure to plot
    title : str
        Plot title
    labels : Sequence[str] | None
        Legend labels, one per tenor; tenor dates when None

    Returns
    -------
    plt.Figure
        Matplotlib figure
    """
    fig, ax = plt.subplots(figsize=(10, 6))

    dates = bct.dates
    for t, date in enumerate(dates):
        bc = bct.get_base_correlation(float(date))
        label = labels[t] if labels is not None else f"{date:g}Y"
        ax.plot(bc.strikes * 100, bc.correlations * 100, "o-", linewidth=2, label=label)

    ax.set_xlabel("Strike (%)")
    ax.set_ylabel("Base Correlation (%)")
    ax.set_title(title)
    ax.legend()
    ax.grid(True, alpha=0.3)

    plt.tight_layout()
    return fig
