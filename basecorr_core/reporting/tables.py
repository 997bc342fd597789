"""
Table generation utilities for base correlation reporting.

Creates pandas DataFrames of surface content and packed sensitivities.
"""

from typing import Sequence

import numpy as np
import pandas as pd

from basecorr_core._types import SensitivityBuffer
from basecorr_core.basket.tranche import Tranche
from basecorr_core.sensitivity.layout import SensitivityLayout
from basecorr_core.surface.base import BaseCorrelationObject


def create_surface_table(bco: BaseCorrelationObject) -> pd.DataFrame:
    """
    Create a flat table of the nodes of a surface.

    Parameters
    ----------
    bco : BaseCorrelationObject
        Any surface, single curve or mixed

    Returns
    -------
    pd.DataFrame
        ``content()`` of the surface with a leading Surface column
    """
    df = bco.content()
    df.insert(0, "Surface", bco.name or bco.kind.value)
    return df


def create_sensitivity_table(
    layout: SensitivityLayout,
    buffer: SensitivityBuffer,
    include_gammas: bool = True,
) -> pd.DataFrame:
    """
    Create a wide table of per-name sensitivities.

    Parameters
    ----------
    layout : SensitivityLayout
        Layout of ``buffer``
    buffer : SensitivityBuffer
        Packed derivatives
    include_gammas : bool
        Add the diagonal gammas as ``Gamma t`` columns

    Returns
    -------
    pd.DataFrame
        One row per name with ``Delta t``, optional ``Gamma t``, VOD and
        Recovery columns
    """
    records = layout.unpack(buffer)
    rows = []
    for i, rec in enumerate(records):
        row: dict[str, float | str] = {
            "Name": layout.names[i] if layout.names is not None else str(i)
        }
        for t, v in enumerate(rec.deltas):
            row[f"Delta {t}"] = float(v)
        if include_gammas:
            for t in range(rec.tenors):
                row[f"Gamma {t}"] = rec.gamma(t, t)
        row["VOD"] = rec.vod
        row["Recovery"] = rec.recovery
        rows.append(row)

    return pd.DataFrame(rows)


def create_tranche_correlation_table(
    bco: BaseCorrelationObject,
    tranches: Sequence[Tranche],
    basket,
    discount_curve=None,
) -> pd.DataFrame:
    """
    Create a table of tranche correlations implied by a surface.

    Parameters
    ----------
    bco : BaseCorrelationObject
        Surface to query
    tranches : Sequence[Tranche]
        Tranches to price
    basket : BasketPricer
        Basket the strikes are computed on
    discount_curve : DiscountCurve | None
        Discounting for PV based strike methods

    Returns
    -------
    pd.DataFrame
        Attachment, detachment, maturity and the correlations at both
        attachment points
    """
    rows = []
    for tranche in tranches:
        ap = (
            bco.get_correlation(tranche.replace(detachment=tranche.attachment), basket, discount_curve)
            if tranche.attachment > 0.0
            else np.nan
        )
        dp = bco.get_correlation(tranche, basket, discount_curve)
        rows.append(
            {
                "Attachment": tranche.attachment,
                "Detachment": tranche.detachment,
                "Maturity (Y)": tranche.maturity,
                "AP Correlation": ap,
                "DP Correlation": dp,
            }
        )

    return pd.DataFrame(rows)
