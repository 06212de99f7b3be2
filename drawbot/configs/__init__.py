"""Machine configuration loading and per-run conversion settings."""

from drawbot.configs.loader import (
    CalibrationConfig,
    ConnectionConfig,
    EstimateConfig,
    KinematicsConfig,
    LoggingConfig,
    MachineConfig,
    RasterConfig,
    StreamingConfig,
    load_config,
)
from drawbot.configs.settings import (
    ConversionMode,
    ConversionSettings,
    parse_settings,
)
from drawbot.errors import ConfigError

__all__ = [
    "CalibrationConfig",
    "ConfigError",
    "ConnectionConfig",
    "ConversionMode",
    "ConversionSettings",
    "EstimateConfig",
    "KinematicsConfig",
    "LoggingConfig",
    "MachineConfig",
    "RasterConfig",
    "StreamingConfig",
    "load_config",
    "parse_settings",
]
