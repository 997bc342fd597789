"""
Base correlation surfaces.

Provides:
- Single strike curves and their term structures
- Mixing strategies: weighted, joint, merged and by-name surfaces
- Selector bumps and bump records
"""

from basecorr_core.surface.base import BaseCorrelationObject, ModelChoice, SurfaceKind
from basecorr_core.surface.base_correlation import BaseCorrelation
from basecorr_core.surface.bump import BumpResult, BumpSize, CorrelationBump
from basecorr_core.surface.by_name import BaseCorrelationMixByName
from basecorr_core.surface.combined import BaseCorrelationCombined, merge_surfaces
from basecorr_core.surface.joint import BaseCorrelationJointSurfaces
from basecorr_core.surface.mixed import BaseCorrelationMixed, BaseCorrelationMixWeighted
from basecorr_core.surface.term_struct import BaseCorrelationTermStruct, CalibrationMethod

__all__ = [
    # Base
    "BaseCorrelationObject",
    "ModelChoice",
    "SurfaceKind",
    # Curves
    "BaseCorrelation",
    "BaseCorrelationTermStruct",
    "CalibrationMethod",
    # Mixing
    "BaseCorrelationMixed",
    "BaseCorrelationMixWeighted",
    "BaseCorrelationJointSurfaces",
    "BaseCorrelationCombined",
    "BaseCorrelationMixByName",
    "merge_surfaces",
    # Bumps
    "BumpSize",
    "BumpResult",
    "CorrelationBump",
]
