"""
Derivatives of products and ratios of packed sensitivities.

``None`` derivatives stand for a constant factor.
"""

from basecorr_core._types import SensitivityBuffer
from basecorr_core.sensitivity.layout import SensitivityLayout


def product_derivatives(
    layout: SensitivityLayout,
    f: float,
    g: float,
    f_ders: SensitivityBuffer | None,
    g_ders: SensitivityBuffer | None,
    out: SensitivityBuffer | None = None,
) -> SensitivityBuffer:
    """
    Derivatives of ``f * g``.

    Value on default is the exact jump ``(f + df)(g + dg) - f g``.
    """
    out = layout.zeros() if out is None else out
    if f_ders is None and g_ders is None:
        out[:] = 0.0
        return out
    f_ders = layout.zeros() if f_ders is None else f_ders
    g_ders = layout.zeros() if g_ders is None else g_ders

    for b in layout:
        fg = f_ders[b.deltas]
        gg = g_ders[b.deltas]
        rows, cols = b.pairs()
        gammas = f_ders[b.gammas] * g + (gg[rows] * fg[cols] + gg[cols] * fg[rows]) + f * g_ders[b.gammas]
        out[b.deltas] = fg * g + f * gg
        out[b.gammas] = gammas
        out[b.vod] = (f + f_ders[b.vod]) * (g + g_ders[b.vod]) - f * g
        out[b.recovery] = f_ders[b.recovery] * g + f * g_ders[b.recovery]
    return out


def ratio_derivatives(
    layout: SensitivityLayout,
    num: float,
    den: float,
    num_ders: SensitivityBuffer | None,
    den_ders: SensitivityBuffer | None,
    out: SensitivityBuffer | None = None,
) -> SensitivityBuffer:
    """
    Derivatives of ``num / den``.

    Value on default is the exact jump ``(n + dn)/(d + dd) - n/d``.
    """
    out = layout.zeros() if out is None else out
    if num_ders is None and den_ders is None:
        out[:] = 0.0
        return out
    if den_ders is None:
        return product_derivatives(layout, num, 1.0 / den, num_ders, None, out)
    num_ders = layout.zeros() if num_ders is None else num_ders

    d2 = den * den
    d3 = d2 * den
    for b in layout:
        ng = num_ders[b.deltas]
        dg = den_ders[b.deltas]
        rows, cols = b.pairs()
        gammas = (
            num_ders[b.gammas] / den
            - (dg[rows] * ng[cols] + dg[cols] * ng[rows]) / d2
            + 2.0 * num / d3 * dg[cols] * dg[rows]
            - num / d2 * den_ders[b.gammas]
        )
        out[b.deltas] = ng / den - num / d2 * dg
        out[b.gammas] = gammas
        out[b.vod] = (num + num_ders[b.vod]) / (den + den_ders[b.vod]) - num / den
        out[b.recovery] = num_ders[b.recovery] / den - num / d2 * den_ders[b.recovery]
    return out
