"""
YAML configuration loading utilities.

Provides functions to load and validate engine settings from YAML files,
returning properly typed Pydantic model instances.
"""

from pathlib import Path
from typing import Any

import yaml

from basecorr_core.config.models import EngineConfig

_default_config: EngineConfig | None = None


def _load_yaml(path: Path) -> dict[str, Any]:
    """
    Load a YAML file and return its contents as a dictionary.

    Parameters
    ----------
    path : Path
        Path to the YAML file

    Returns
    -------
    dict[str, Any]
        Parsed YAML contents (empty for an empty file)

    Raises
    ------
    FileNotFoundError
        If the file does not exist
    yaml.YAMLError
        If the file contains invalid YAML
    """
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def load_engine_config(path: Path | str) -> EngineConfig:
    """
    Load engine configuration from a YAML file.

    Parameters
    ----------
    path : Path | str
        Path to the configuration YAML file

    Returns
    -------
    EngineConfig
        Validated engine configuration

    Example
    -------
    >>> config = load_engine_config("config/engine.yaml")
    >>> print(config.interpolation.strike_interp)
    """
    path = Path(path)
    data = _load_yaml(path)

    # Handle nested 'engine' key if present
    if "engine" in data:
        data = data["engine"]

    return EngineConfig(**data)


def create_default_engine_config() -> EngineConfig:
    """
    Create the default engine configuration.

    Returns
    -------
    EngineConfig
        Configuration with PCHIP/smooth strike interpolation, linear/constant
        time interpolation, bounds [0, 1] and step 1e-4
    """
    return EngineConfig()


def get_engine_config() -> EngineConfig:
    """Return the process-wide configuration used when callers pass none."""
    global _default_config
    if _default_config is None:
        _default_config = create_default_engine_config()
    return _default_config


def set_engine_config(config: EngineConfig) -> None:
    """Replace the process-wide configuration."""
    global _default_config
    _default_config = config
