"""Configuration loader for the drawbot.

Loads and validates ``machine.yaml`` into typed, frozen dataclasses.
Link parameters, arm geometry, streaming timeouts, time-estimate
constants and firmware calibration values all come from the config.

Feed rates and travel speeds are stored in **mm/min** (the G-code ``F``
unit) because the firmware and the conversion settings both use it.

Usage::

    from drawbot.configs.loader import load_config
    cfg = load_config()                       # default path
    cfg = load_config("/custom/machine.yaml") # explicit path
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from drawbot.configs.settings import ConversionSettings, settings_from_config
from drawbot.errors import ConfigError
from drawbot.utils.fs import load_yaml

logger = logging.getLogger(__name__)

GEOMETRIES = ("cartesian", "scara")


# ---------------------------------------------------------------------------
# Dataclasses -- mirror the YAML structure
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ConnectionConfig:
    """Serial link settings."""

    port: str
    baudrate: int
    read_timeout_s: float
    write_timeout_s: float = 2.0


@dataclass(frozen=True)
class KinematicsConfig:
    """Two-link arm geometry in mm.

    The shoulder joint sits at ``(offset_x_mm, offset_y_mm)`` in machine
    coordinates.  ``arc_segment_mm`` is the chord length used when arcs
    are flattened for joint-space output.
    """

    arm1_length_mm: float
    arm2_length_mm: float
    offset_x_mm: float = 0.0
    offset_y_mm: float = 0.0
    arc_segment_mm: float = 1.0

    @property
    def min_reach(self) -> float:
        """Closest reachable distance from the shoulder."""
        return abs(self.arm1_length_mm - self.arm2_length_mm)

    @property
    def max_reach(self) -> float:
        """Farthest reachable distance from the shoulder."""
        return self.arm1_length_mm + self.arm2_length_mm


@dataclass(frozen=True)
class StreamingConfig:
    """Ack-paced transmission settings.

    ``control_lines`` are written without waiting for an acknowledgement
    and followed by ``reset_settle_s``.  ``prologue`` lines are ack-paced
    but not counted as toolpath progress.  ``trailer`` and ``emergency``
    are written fire-and-forget.
    """

    ack_timeout_s: float = 30.0
    poll_interval_s: float = 0.02
    command_delay_s: float = 0.0
    reset_settle_s: float = 1.0
    control_lines: tuple[str, ...] = ("\x18", "$X")
    prologue: tuple[str, ...] = ("G21", "G90", "G92 X0 Y0 Z0", "M17")
    trailer: tuple[str, ...] = ("M400", "M18")
    emergency: tuple[str, ...] = ("M18",)
    ack_tokens: tuple[str, ...] = ("ok", "ook", "k")
    error_prefixes: tuple[str, ...] = ("error:",)


@dataclass(frozen=True)
class EstimateConfig:
    """Constants of the drawing-time estimate."""

    pen_move_time_s: float = 0.2
    accel_allowance_s: float = 0.01


@dataclass(frozen=True)
class RasterConfig:
    """Raster decoding limits."""

    max_dimension_px: int = 100


@dataclass(frozen=True)
class CalibrationConfig:
    """GRBL ``$nnn`` values written by ``send_job --calibrate``."""

    steps_per_mm_x: float = 65.0
    steps_per_mm_y: float = 65.0
    steps_per_mm_z: float = 200.0
    max_rate_x: float = 800.0
    max_rate_y: float = 800.0
    max_rate_z: float = 800.0
    acceleration_x: float = 10.0
    acceleration_y: float = 10.0
    acceleration_z: float = 10.0


@dataclass(frozen=True)
class LoggingConfig:
    """Defaults for :func:`drawbot.utils.logging_config.setup_logging`."""

    level: str = "INFO"
    file: str | None = None
    json: bool = False


@dataclass(frozen=True)
class MachineConfig:
    """Complete machine configuration loaded from ``machine.yaml``.

    All linear dimensions are in **millimeters**.
    All feed rates are in **mm/min**.
    """

    geometry: str
    connection: ConnectionConfig
    kinematics: KinematicsConfig
    streaming: StreamingConfig
    estimate: EstimateConfig
    raster: RasterConfig
    calibration: CalibrationConfig
    logging: LoggingConfig
    conversion: ConversionSettings

    @property
    def use_kinematics(self) -> bool:
        """True when toolpaths must be rendered in joint space."""
        return self.geometry == "scara"


# ---------------------------------------------------------------------------
# Internal parsing helpers
# ---------------------------------------------------------------------------


def _str_tuple(name: str, raw: Any, default: tuple[str, ...]) -> tuple[str, ...]:
    """Parse a list of G-code lines; ``None`` keeps *default*."""
    if raw is None:
        return default
    if isinstance(raw, str) or not isinstance(raw, (list, tuple)):
        raise ConfigError(f"streaming.{name} must be a list, got {raw!r}")
    return tuple(str(item) for item in raw)


def _parse_streaming(data: dict[str, Any]) -> StreamingConfig:
    defaults = StreamingConfig()
    return StreamingConfig(
        ack_timeout_s=float(data.get("ack_timeout_s", defaults.ack_timeout_s)),
        poll_interval_s=float(
            data.get("poll_interval_s", defaults.poll_interval_s)
        ),
        command_delay_s=float(
            data.get("command_delay_s", defaults.command_delay_s)
        ),
        reset_settle_s=float(
            data.get("reset_settle_s", defaults.reset_settle_s)
        ),
        control_lines=_str_tuple(
            "control_lines", data.get("control_lines"), defaults.control_lines,
        ),
        prologue=_str_tuple(
            "prologue", data.get("prologue"), defaults.prologue,
        ),
        trailer=_str_tuple("trailer", data.get("trailer"), defaults.trailer),
        emergency=_str_tuple(
            "emergency", data.get("emergency"), defaults.emergency,
        ),
        ack_tokens=tuple(
            t.lower() for t in _str_tuple(
                "ack_tokens", data.get("ack_tokens"), defaults.ack_tokens,
            )
        ),
        error_prefixes=tuple(
            p.lower() for p in _str_tuple(
                "error_prefixes", data.get("error_prefixes"),
                defaults.error_prefixes,
            )
        ),
    )


def _parse_calibration(data: dict[str, Any]) -> CalibrationConfig:
    steps = data.get("steps_per_mm", {})
    rate = data.get("max_rate_mm_min", {})
    accel = data.get("acceleration_mm_s2", {})
    d = CalibrationConfig()
    return CalibrationConfig(
        steps_per_mm_x=float(steps.get("x", d.steps_per_mm_x)),
        steps_per_mm_y=float(steps.get("y", d.steps_per_mm_y)),
        steps_per_mm_z=float(steps.get("z", d.steps_per_mm_z)),
        max_rate_x=float(rate.get("x", d.max_rate_x)),
        max_rate_y=float(rate.get("y", d.max_rate_y)),
        max_rate_z=float(rate.get("z", d.max_rate_z)),
        acceleration_x=float(accel.get("x", d.acceleration_x)),
        acceleration_y=float(accel.get("y", d.acceleration_y)),
        acceleration_z=float(accel.get("z", d.acceleration_z)),
    )


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def _validate_config(cfg: MachineConfig) -> None:
    """Validate cross-field consistency.

    Raises
    ------
    ConfigError
        On any invalid combination.
    """
    if cfg.geometry not in GEOMETRIES:
        raise ConfigError(
            f"Unknown geometry '{cfg.geometry}'. Expected one of {GEOMETRIES}"
        )

    # -- Arm lengths --------------------------------------------------------
    k = cfg.kinematics
    if k.arm1_length_mm <= 0 or k.arm2_length_mm <= 0:
        raise ConfigError(
            f"Arm lengths must be > 0, got "
            f"{k.arm1_length_mm} and {k.arm2_length_mm}"
        )
    if k.arc_segment_mm <= 0:
        raise ConfigError(
            f"arc_segment_mm must be > 0, got {k.arc_segment_mm}"
        )

    # -- Connection ---------------------------------------------------------
    c = cfg.connection
    if c.baudrate <= 0:
        raise ConfigError(f"baudrate must be > 0, got {c.baudrate}")
    if c.read_timeout_s <= 0:
        raise ConfigError(
            f"read_timeout_s must be > 0, got {c.read_timeout_s}"
        )

    # -- Streaming timing ---------------------------------------------------
    s = cfg.streaming
    if s.ack_timeout_s <= 0:
        raise ConfigError(f"ack_timeout_s must be > 0, got {s.ack_timeout_s}")
    if s.poll_interval_s <= 0:
        raise ConfigError(
            f"poll_interval_s must be > 0, got {s.poll_interval_s}"
        )
    if s.poll_interval_s >= s.ack_timeout_s:
        raise ConfigError(
            f"poll_interval_s ({s.poll_interval_s}) must be smaller than "
            f"ack_timeout_s ({s.ack_timeout_s})"
        )
    if s.command_delay_s < 0 or s.reset_settle_s < 0:
        raise ConfigError(
            "command_delay_s and reset_settle_s must be >= 0"
        )
    if not s.ack_tokens:
        raise ConfigError("streaming.ack_tokens must not be empty")

    # -- Estimate / raster --------------------------------------------------
    if cfg.estimate.pen_move_time_s < 0 or cfg.estimate.accel_allowance_s < 0:
        raise ConfigError("estimate constants must be >= 0")
    if cfg.raster.max_dimension_px < 1:
        raise ConfigError(
            f"raster.max_dimension_px must be >= 1, "
            f"got {cfg.raster.max_dimension_px}"
        )

    # -- Pen heights --------------------------------------------------------
    conv = cfg.conversion
    if conv.pen_up_z <= conv.pen_down_z:
        logger.warning(
            "Pen-up Z (%.2f) is not above pen-down Z (%.2f)",
            conv.pen_up_z,
            conv.pen_down_z,
        )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(path: str | Path | None = None) -> MachineConfig:
    """Load and validate machine configuration from YAML.

    Parameters
    ----------
    path : str | Path | None
        Path to ``machine.yaml``.  ``None`` loads the default shipped
        alongside this module.

    Returns
    -------
    MachineConfig
        Fully validated, frozen configuration object.

    Raises
    ------
    ConfigError
        If any field is missing or fails validation.
    FileNotFoundError
        If *path* does not exist.
    """
    if path is None:
        path = Path(__file__).parent / "machine.yaml"
    else:
        path = Path(path)

    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    logger.info("Loading configuration from %s", path)

    data: dict[str, Any] = load_yaml(path)
    if data is None:
        raise ConfigError(f"Empty configuration file: {path}")

    try:
        geometry = str(data["machine"]["geometry"]).lower()

        # -- connection -----------------------------------------------------
        cd = data["connection"]
        connection = ConnectionConfig(
            port=str(cd["port"]),
            baudrate=int(cd["baudrate"]),
            read_timeout_s=float(cd["read_timeout_s"]),
            write_timeout_s=float(cd.get("write_timeout_s", 2.0)),
        )

        # -- kinematics -----------------------------------------------------
        kd = data["kinematics"]
        kinematics = KinematicsConfig(
            arm1_length_mm=float(kd["arm1_length_mm"]),
            arm2_length_mm=float(kd["arm2_length_mm"]),
            offset_x_mm=float(kd.get("offset_x_mm", 0.0)),
            offset_y_mm=float(kd.get("offset_y_mm", 0.0)),
            arc_segment_mm=float(kd.get("arc_segment_mm", 1.0)),
        )

        # -- streaming ------------------------------------------------------
        streaming = _parse_streaming(data.get("streaming") or {})

        # -- estimate -------------------------------------------------------
        ed = data.get("estimate") or {}
        estimate = EstimateConfig(
            pen_move_time_s=float(ed.get("pen_move_time_s", 0.2)),
            accel_allowance_s=float(ed.get("accel_allowance_s", 0.01)),
        )

        # -- raster ---------------------------------------------------------
        rd = data.get("raster") or {}
        raster = RasterConfig(
            max_dimension_px=int(rd.get("max_dimension_px", 100)),
        )

        # -- calibration / logging -----------------------------------------
        calibration = _parse_calibration(data.get("calibration") or {})
        ld = data.get("logging") or {}
        logging_cfg = LoggingConfig(
            level=str(ld.get("level", "INFO")).upper(),
            file=ld.get("file"),
            json=bool(ld.get("json", False)),
        )

        # -- conversion defaults -------------------------------------------
        conversion = settings_from_config(data.get("conversion"))

        config = MachineConfig(
            geometry=geometry,
            connection=connection,
            kinematics=kinematics,
            streaming=streaming,
            estimate=estimate,
            raster=raster,
            calibration=calibration,
            logging=logging_cfg,
            conversion=conversion,
        )

        _validate_config(config)
        logger.info("Configuration loaded successfully")
        return config

    except KeyError as exc:
        raise ConfigError(
            f"Missing required configuration key: {exc}"
        ) from exc
    except (TypeError, ValueError, AttributeError) as exc:
        raise ConfigError(
            f"Invalid configuration value: {exc}"
        ) from exc
