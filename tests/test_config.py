"""
Tests for engine configuration models and loading.
"""

from pathlib import Path

import pytest
from pydantic import ValidationError

from basecorr_core.config import (
    BoundsConfig,
    DifferentiationConfig,
    EngineConfig,
    create_default_engine_config,
    get_engine_config,
    load_engine_config,
    set_engine_config,
)
from basecorr_core.numerics import ExtrapMethod, InterpMethod

CONFIG_DIR = Path(__file__).parent.parent / "config"


class TestEngineConfig:
    """Tests for EngineConfig defaults and validation."""

    def test_defaults(self) -> None:
        """Defaults match the documented engine settings."""
        config = create_default_engine_config()
        assert config.differentiation.step == 1e-4
        assert config.interpolation.strike_interp == InterpMethod.PCHIP
        assert config.interpolation.strike_extrap == ExtrapMethod.SMOOTH
        assert config.interpolation.time_interp == InterpMethod.LINEAR
        assert config.bounds.min_correlation == 0.0
        assert config.bounds.max_correlation == 1.0
        assert not config.bounds.extended
        assert config.mixing.weight_threshold == 1e-14

    def test_inverted_bounds_rejected(self) -> None:
        """min_correlation must lie below max_correlation."""
        with pytest.raises(ValidationError):
            BoundsConfig(min_correlation=0.5, max_correlation=0.4)

    def test_extended_bounds_warn(self) -> None:
        """Bounds above one enable extended surfaces with a warning."""
        with pytest.warns(UserWarning):
            bounds = BoundsConfig(max_correlation=1.5)
        assert bounds.extended

    def test_unusual_step_warns(self) -> None:
        """Steps outside the typical range trigger a warning."""
        with pytest.warns(UserWarning):
            DifferentiationConfig(step=5e-3)

    def test_step_out_of_range(self) -> None:
        """Non-positive steps are invalid."""
        with pytest.raises(ValidationError):
            DifferentiationConfig(step=0.0)

    def test_strike_policy(self) -> None:
        """The strike policy carries the configured methods and bounds."""
        policy = EngineConfig().interpolation.strike_policy(0.0, 1.0)
        assert policy.method == InterpMethod.PCHIP
        assert (policy.lower, policy.upper) == (0.0, 1.0)


class TestConfigLoader:
    """Tests for YAML configuration loading."""

    def test_load_repository_config(self) -> None:
        """The shipped engine.yaml loads under its 'engine' key."""
        config = load_engine_config(CONFIG_DIR / "engine.yaml")
        assert config.interpolation.strike_interp == InterpMethod.PCHIP
        assert config.solver.lower_factor == 1e-10

    def test_load_flat_file(self, tmp_path: Path) -> None:
        """Files without the 'engine' key are read as the configuration itself."""
        path = tmp_path / "custom.yaml"
        path.write_text("interpolation:\n  strike_interp: linear\n  strike_extrap: const\n")
        config = load_engine_config(path)
        assert config.interpolation.strike_interp == InterpMethod.LINEAR
        assert config.interpolation.strike_extrap == ExtrapMethod.CONST

    def test_missing_file(self, tmp_path: Path) -> None:
        """A missing file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            load_engine_config(tmp_path / "missing.yaml")

    def test_set_engine_config(self) -> None:
        """set_engine_config replaces the process-wide configuration."""
        original = get_engine_config()
        try:
            custom = EngineConfig(solver={"tolerance_f": 1e-9})
            set_engine_config(custom)
            assert get_engine_config().solver.tolerance_f == 1e-9
        finally:
            set_engine_config(original)
