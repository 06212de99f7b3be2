"""Tests for the machine configuration loader.

Validates that:
    - machine.yaml loads with the current schema
    - Missing required keys and bad values raise ConfigError
    - Streaming vocabulary is normalised to lower case
    - Optional sections fall back to defaults
"""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from drawbot.configs.loader import (
    ConfigError,
    MachineConfig,
    StreamingConfig,
    load_config,
)
from drawbot.configs.settings import ConversionMode


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


MINIMAL = {
    "machine": {"geometry": "cartesian"},
    "connection": {"port": "/dev/null", "baudrate": 9600, "read_timeout_s": 0.5},
    "kinematics": {"arm1_length_mm": 120, "arm2_length_mm": 80},
}


def _write(tmp_path: Path, data: dict) -> Path:
    path = tmp_path / "machine.yaml"
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


def _with(section: str, **values: object) -> dict:
    data = {k: dict(v) for k, v in MINIMAL.items()}
    data.setdefault(section, {}).update(values)
    return data


@pytest.fixture()
def config() -> MachineConfig:
    """Load the default machine.yaml shipped with the package."""
    return load_config()


# ---------------------------------------------------------------------------
# Default configuration
# ---------------------------------------------------------------------------


class TestDefaultConfig:
    def test_loads(self, config: MachineConfig) -> None:
        assert config.geometry in ("cartesian", "scara")

    def test_reach(self, config: MachineConfig) -> None:
        k = config.kinematics
        assert k.max_reach == k.arm1_length_mm + k.arm2_length_mm
        assert k.min_reach == abs(k.arm1_length_mm - k.arm2_length_mm)

    def test_streaming_timing(self, config: MachineConfig) -> None:
        s = config.streaming
        assert 0 < s.poll_interval_s < s.ack_timeout_s
        assert "ok" in s.ack_tokens

    def test_control_line_is_soft_reset(self, config: MachineConfig) -> None:
        assert "\x18" in config.streaming.control_lines

    def test_conversion_defaults(self, config: MachineConfig) -> None:
        assert isinstance(config.conversion.mode, ConversionMode)
        assert config.conversion.pen_up_z > config.conversion.pen_down_z


# ---------------------------------------------------------------------------
# Custom files
# ---------------------------------------------------------------------------


class TestCustomConfig:
    def test_minimal_uses_defaults(self, tmp_path: Path) -> None:
        cfg = load_config(_write(tmp_path, MINIMAL))
        assert cfg.streaming == StreamingConfig()
        assert cfg.raster.max_dimension_px == 100
        assert cfg.connection.write_timeout_s == 2.0
        assert cfg.use_kinematics is False

    def test_scara_geometry(self, tmp_path: Path) -> None:
        data = _with("machine", geometry="SCARA")
        assert load_config(_write(tmp_path, data)).use_kinematics is True

    def test_ack_tokens_lowercased(self, tmp_path: Path) -> None:
        data = _with("streaming", ack_tokens=["OK", "Done"], error_prefixes=["ERR"])
        cfg = load_config(_write(tmp_path, data))
        assert cfg.streaming.ack_tokens == ("ok", "done")
        assert cfg.streaming.error_prefixes == ("err",)

    def test_calibration_partial(self, tmp_path: Path) -> None:
        data = _with("calibration", steps_per_mm={"x": 80})
        cal = load_config(_write(tmp_path, data)).calibration
        assert cal.steps_per_mm_x == 80.0
        assert cal.steps_per_mm_y == 65.0

    def test_conversion_section(self, tmp_path: Path) -> None:
        data = _with("conversion", mode="contour", feed_rate=600)
        conv = load_config(_write(tmp_path, data)).conversion
        assert conv.mode is ConversionMode.CONTOUR
        assert conv.feed_rate == 600.0


class TestInvalidConfig:
    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml")

    def test_missing_key(self, tmp_path: Path) -> None:
        data = {k: v for k, v in MINIMAL.items() if k != "kinematics"}
        with pytest.raises(ConfigError, match="kinematics"):
            load_config(_write(tmp_path, data))

    def test_unknown_geometry(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="geometry"):
            load_config(_write(tmp_path, _with("machine", geometry="delta")))

    def test_non_numeric(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError):
            load_config(_write(tmp_path, _with("connection", baudrate="fast")))

    def test_zero_arm(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="Arm lengths"):
            load_config(_write(tmp_path, _with("kinematics", arm1_length_mm=0)))

    def test_poll_not_below_timeout(self, tmp_path: Path) -> None:
        data = _with("streaming", ack_timeout_s=1.0, poll_interval_s=2.0)
        with pytest.raises(ConfigError, match="poll_interval_s"):
            load_config(_write(tmp_path, data))

    def test_empty_ack_tokens(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="ack_tokens"):
            load_config(_write(tmp_path, _with("streaming", ack_tokens=[])))

    def test_string_instead_of_list(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="trailer"):
            load_config(_write(tmp_path, _with("streaming", trailer="M18")))
