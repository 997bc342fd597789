"""
Configuration module for the base correlation engine.

Provides Pydantic-validated configuration models and YAML loading utilities
for solver tolerances, finite-difference steps, interpolation defaults,
correlation bounds and mixing thresholds.
"""

from basecorr_core.config.loader import (
    create_default_engine_config,
    get_engine_config,
    load_engine_config,
    set_engine_config,
)
from basecorr_core.config.models import (
    BoundsConfig,
    DifferentiationConfig,
    EngineConfig,
    InterpolationConfig,
    MixingConfig,
    SolverConfig,
)

__all__ = [
    # Models
    "SolverConfig",
    "DifferentiationConfig",
    "InterpolationConfig",
    "BoundsConfig",
    "MixingConfig",
    "EngineConfig",
    # Loaders
    "load_engine_config",
    "create_default_engine_config",
    "get_engine_config",
    "set_engine_config",
]
