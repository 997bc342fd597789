"""
Pydantic configuration models for the base correlation engine.

These models provide validation and type-safe configuration for:
- Root solver tolerances used to resolve strikes
- Finite-difference step sizes for the sensitivity engine
- Strike and time interpolation defaults
- Correlation bounds and surface mixing thresholds
"""

import warnings

from pydantic import BaseModel, Field, field_validator, model_validator

from basecorr_core.numerics.interp import ExtrapMethod, Interp, InterpMethod


class SolverConfig(BaseModel):
    """
    Root solver tolerances for the strike fixed-point problem.

    Non-positive tolerances mean "derive from the basket": the function
    tolerance becomes ``min(1/|TotalPrincipal|, 1e-6)`` and the argument
    tolerance ``min(100 * tolerance_f, 1e-4)``.

    Attributes
    ----------
    tolerance_f : float
        Function tolerance
    tolerance_x : float
        Argument (factor) tolerance
    lower_factor : float
        Lower end of the factor search domain
    """

    tolerance_f: float = Field(default=0.0, description="Function tolerance (<=0: derive)")
    tolerance_x: float = Field(default=0.0, description="Factor tolerance (<=0: derive)")
    lower_factor: float = Field(gt=0, lt=0.1, default=1e-10)


class DifferentiationConfig(BaseModel):
    """
    Finite-difference settings for semi-analytic sensitivities.

    Attributes
    ----------
    step : float
        Step size used in both strike and factor space
    """

    step: float = Field(gt=0, le=0.01, default=1e-4)

    @field_validator("step")
    @classmethod
    def step_realistic(cls, v: float) -> float:
        """Warn on steps that trade too much truncation for round-off or vice versa."""
        if v < 1e-6 or v > 1e-3:
            warnings.warn(
                f"Finite difference step {v} is unusual; typical values are 1e-5 to 1e-3",
                UserWarning,
                stacklevel=2,
            )
        return v


class InterpolationConfig(BaseModel):
    """
    Default interpolation policies.

    Attributes
    ----------
    strike_interp : InterpMethod
        Interpolation across strikes
    strike_extrap : ExtrapMethod
        Extrapolation beyond the first/last strike
    time_interp : InterpMethod
        Interpolation across tenor dates
    time_extrap : ExtrapMethod
        Extrapolation beyond the first/last tenor date
    interp_on_factors : bool
        Interpolate square roots of correlations instead of correlations
    """

    strike_interp: InterpMethod = InterpMethod.PCHIP
    strike_extrap: ExtrapMethod = ExtrapMethod.SMOOTH
    time_interp: InterpMethod = InterpMethod.LINEAR
    time_extrap: ExtrapMethod = ExtrapMethod.CONST
    interp_on_factors: bool = False

    def strike_policy(self, lower: float, upper: float) -> Interp:
        """Strike interpolation policy with bounds."""
        return Interp(self.strike_interp, self.strike_extrap, lower, upper)

    def time_policy(self, lower: float, upper: float) -> Interp:
        """Time interpolation policy with bounds."""
        return Interp(self.time_interp, self.time_extrap, lower, upper)


class BoundsConfig(BaseModel):
    """
    Correlation bounds.

    Attributes
    ----------
    min_correlation : float
        Lower bound of base correlations
    max_correlation : float
        Upper bound of base correlations; above 1 marks an extended surface
    """

    min_correlation: float = Field(ge=-1, le=1, default=0.0)
    max_correlation: float = Field(gt=0, le=2, default=1.0)

    @model_validator(mode="after")
    def bounds_ordered(self) -> "BoundsConfig":
        """Validate that the bounds form a non-empty interval."""
        if self.min_correlation >= self.max_correlation:
            raise ValueError(
                f"min_correlation ({self.min_correlation}) must be below "
                f"max_correlation ({self.max_correlation})"
            )
        if self.max_correlation > 1.0:
            warnings.warn(
                f"max_correlation {self.max_correlation} > 1 enables extended surfaces",
                UserWarning,
                stacklevel=2,
            )
        return self

    @property
    def extended(self) -> bool:
        """True if correlations above one are allowed."""
        return self.max_correlation > 1.0


class MixingConfig(BaseModel):
    """
    Thresholds used by mixed base correlation surfaces.

    Attributes
    ----------
    weight_threshold : float
        Joint surfaces skip children with weights at or below this value
    bump_threshold : float
        Selector bumps average only children whose delta exceeds this value
    weight_sum_floor : float
        Weighted averages with ``|sum w|`` at or below this value return zero
    """

    weight_threshold: float = Field(ge=0, default=1e-14)
    bump_threshold: float = Field(ge=0, default=1e-8)
    weight_sum_floor: float = Field(ge=0, default=1e-15)


class EngineConfig(BaseModel):
    """
    Complete engine configuration.

    Example
    -------
    >>> config = EngineConfig()
    >>> config.differentiation.step
    0.0001
    """

    solver: SolverConfig = Field(default_factory=SolverConfig)
    differentiation: DifferentiationConfig = Field(default_factory=DifferentiationConfig)
    interpolation: InterpolationConfig = Field(default_factory=InterpolationConfig)
    bounds: BoundsConfig = Field(default_factory=BoundsConfig)
    mixing: MixingConfig = Field(default_factory=MixingConfig)
