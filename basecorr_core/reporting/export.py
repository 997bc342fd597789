"""
Export utilities for surfaces and sensitivities.

Provides CSV and JSON export functionality.
"""

import json
from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd

from basecorr_core.surface.base import BaseCorrelationObject


def export_to_csv(
    df: pd.DataFrame,
    path: str | Path,
    float_format: str = "%.6f",
) -> None:
    """
    Export DataFrame to CSV.

    Parameters
    ----------
    df : pd.DataFrame
        DataFrame to export
    path : str | Path
        Output file path
    float_format : str
        Format string for floats
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, index=False, float_format=float_format)


def _convert(obj: Any) -> Any:
    if isinstance(obj, np.ndarray):
        return [_convert(v) for v in obj.tolist()]
    elif isinstance(obj, (float, np.floating)):
        # JSON has no NaN
        return None if np.isnan(obj) else float(obj)
    elif isinstance(obj, np.integer):
        return int(obj)
    elif isinstance(obj, dict):
        return {k: _convert(v) for k, v in obj.items()}
    elif isinstance(obj, (list, tuple)):
        return [_convert(v) for v in obj]
    return obj


def export_to_json(
    data: dict[str, Any],
    path: str | Path,
    indent: int = 2,
) -> None:
    """
    Export dictionary to JSON.

    Numpy arrays and scalars are converted; NaN becomes ``null``.

    Parameters
    ----------
    data : dict
        Data to export
    path : str | Path
        Output file path
    indent : int
        JSON indentation
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, "w") as f:
        json.dump(_convert(data), f, indent=indent)


def surface_to_dict(bco: BaseCorrelationObject) -> dict[str, Any]:
    """
    Summarise a surface as a JSON friendly dictionary.

    Example
    -------
    >>> export_to_json(surface_to_dict(bc), "out/surface.json")
    """
    content = bco.content()
    return {
        "name": bco.name,
        "kind": bco.kind.value,
        "min_correlation": bco.min_correlation,
        "max_correlation": bco.max_correlation,
        "entity_names": list(bco.entity_names) if bco.entity_names is not None else None,
        "columns": list(content.columns),
        "rows": [_convert(list(r)) for r in content.itertuples(index=False)],
    }
