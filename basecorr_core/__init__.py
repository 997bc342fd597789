"""
Base Correlation Engine - Core Package.

Base correlation surfaces for CDO tranche pricing: strike mapping of tranche
detachments, interpolation across strikes and tenors, mixing of surfaces
from several indices, selector bumps, and semi-analytic sensitivities of
correlations and tranche values to the curve data of every name.

Example
-------
>>> from basecorr_core import BaseCorrelation, BaseCorrelationMethod, StrikeMethod, Tranche
>>> bc = BaseCorrelation(
...     BaseCorrelationMethod.ARBITRAGE_FREE, StrikeMethod.EXPECTED_LOSS,
...     strikes=[0.5, 1.2, 1.8], correlations=[0.15, 0.25, 0.32],
... )
>>> corr = bc.get_correlation(Tranche(0.0, 0.07, 5.0), basket)
>>> bc.bump_all(0.01, relative=False)
"""

__version__ = "1.0.0"

# Core types
from basecorr_core._types import FloatArray, IntArray, SensitivityBuffer

# Errors
from basecorr_core.exceptions import (
    ConfigurationError,
    CorrelationError,
    NumericalError,
    UnsupportedMethodError,
)

# Configuration
from basecorr_core.config import EngineConfig, get_engine_config, load_engine_config

# Correlations
from basecorr_core.correlation import (
    Correlation,
    CorrelationFactory,
    CorrelationTermStruct,
    FactorCorrelation,
    GeneralCorrelation,
    SingleFactorCorrelation,
)

# Basket collaborators
from basecorr_core.basket import BasketPricer, DiscountCurve, Tranche, TranchePricer

# Strikes
from basecorr_core.strike import BaseCorrelationMethod, StrikeMethod

# Surfaces
from basecorr_core.surface import (
    BaseCorrelation,
    BaseCorrelationCombined,
    BaseCorrelationJointSurfaces,
    BaseCorrelationMixByName,
    BaseCorrelationMixWeighted,
    BaseCorrelationObject,
    BaseCorrelationTermStruct,
    BumpSize,
    CalibrationMethod,
    CorrelationBump,
)

# Sensitivities
from basecorr_core.sensitivity import (
    NameSensitivity,
    SensitivityLayout,
    strike_derivatives,
    tranche_sensitivities,
)

# Reporting
from basecorr_core.reporting import (
    create_sensitivity_table,
    create_surface_table,
    export_to_csv,
    plot_base_correlation,
)

__all__ = [
    # Version
    "__version__",
    # Types
    "FloatArray",
    "IntArray",
    "SensitivityBuffer",
    # Errors
    "CorrelationError",
    "ConfigurationError",
    "UnsupportedMethodError",
    "NumericalError",
    # Config
    "EngineConfig",
    "get_engine_config",
    "load_engine_config",
    # Correlations
    "Correlation",
    "SingleFactorCorrelation",
    "FactorCorrelation",
    "GeneralCorrelation",
    "CorrelationTermStruct",
    "CorrelationFactory",
    # Basket
    "BasketPricer",
    "TranchePricer",
    "DiscountCurve",
    "Tranche",
    # Strikes
    "BaseCorrelationMethod",
    "StrikeMethod",
    # Surfaces
    "BaseCorrelationObject",
    "BaseCorrelation",
    "BaseCorrelationTermStruct",
    "CalibrationMethod",
    "BaseCorrelationMixWeighted",
    "BaseCorrelationJointSurfaces",
    "BaseCorrelationCombined",
    "BaseCorrelationMixByName",
    "BumpSize",
    "CorrelationBump",
    # Sensitivities
    "NameSensitivity",
    "SensitivityLayout",
    "strike_derivatives",
    "tranche_sensitivities",
    # Reporting
    "plot_base_correlation",
    "create_surface_table",
    "create_sensitivity_table",
    "export_to_csv",
]
