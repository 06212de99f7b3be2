"""Per-run conversion settings.

A :class:`ConversionSettings` instance is built once per conversion call
and never mutated.  :func:`parse_settings` is the tolerant entry point for
user-supplied values (CLI flags, form fields, YAML): a malformed numeric
field is logged and replaced by its default instead of aborting the
conversion.

Units:
    - Sizes and spacing: millimetres
    - Feed rate and travel speed: mm/min (G-code ``F`` units)
    - Threshold: luminance 0-255
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields, replace
from enum import Enum
from typing import Any, Mapping

from drawbot.errors import ParseError

logger = logging.getLogger(__name__)


class ConversionMode(Enum):
    """Raster conversion strategy tag."""

    RASTER_HORIZONTAL = "raster_horizontal"
    RASTER_VERTICAL = "raster_vertical"
    RASTER_DIAGONAL = "raster_diagonal"
    CROSSHATCH = "crosshatch"
    CONTOUR = "contour"
    STIPPLING = "stippling"
    SPIRAL = "spiral"
    VECTOR_TRACE = "vector_trace"

    @classmethod
    def parse(cls, value: str | ConversionMode) -> ConversionMode:
        """Accept an enum member, its value, or its name (any case)."""
        if isinstance(value, cls):
            return value
        text = str(value).strip()
        for member in cls:
            if text.lower() in (member.value, member.name.lower()):
                return member
        # Dashed CLI spelling: "raster-horizontal"
        text = text.lower().replace("-", "_")
        for member in cls:
            if text == member.value:
                return member
        raise ParseError(
            f"Unknown conversion mode {value!r}. "
            f"Available: {[m.value for m in cls]}"
        )


@dataclass(frozen=True)
class ConversionSettings:
    """Immutable settings for one conversion run."""

    mode: ConversionMode = ConversionMode.RASTER_HORIZONTAL
    target_width_mm: float = 50.0
    target_height_mm: float = 50.0
    threshold: int = 128
    line_spacing: float = 0.5
    feed_rate: float = 800.0
    travel_speed: float = 1500.0
    pen_up_z: float = 5.0
    pen_down_z: float = -1.0
    invert_image: bool = False
    optimize_path: bool = True
    trace_resolution_px: float = 1.5

    def __post_init__(self) -> None:
        for name in (
            "target_width_mm",
            "target_height_mm",
            "line_spacing",
            "feed_rate",
            "travel_speed",
            "trace_resolution_px",
        ):
            value = getattr(self, name)
            if value <= 0:
                raise ValueError(f"{name} must be > 0, got {value}")
        if not 0 <= self.threshold <= 255:
            raise ValueError(
                f"threshold must be in [0, 255], got {self.threshold}"
            )


_FLOAT_FIELDS = (
    "target_width_mm",
    "target_height_mm",
    "line_spacing",
    "feed_rate",
    "travel_speed",
    "trace_resolution_px",
)
_SIGNED_FLOAT_FIELDS = ("pen_up_z", "pen_down_z")
_BOOL_FIELDS = ("invert_image", "optimize_path")

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


# ---------------------------------------------------------------------------
# Field parsers (raise ParseError, caught by parse_settings)
# ---------------------------------------------------------------------------


def _to_float(name: str, value: Any) -> float:
    if isinstance(value, bool):
        raise ParseError(f"{name}: expected a number, got {value!r}")
    try:
        result = float(str(value).strip().replace(",", "."))
    except (TypeError, ValueError) as exc:
        raise ParseError(f"{name}: not a number: {value!r}") from exc
    if result != result or result in (float("inf"), float("-inf")):
        raise ParseError(f"{name}: not a finite number: {value!r}")
    return result


def _to_positive_float(name: str, value: Any) -> float:
    result = _to_float(name, value)
    if result <= 0:
        raise ParseError(f"{name}: must be > 0, got {result}")
    return result


def _to_threshold(value: Any) -> int:
    result = int(round(_to_float("threshold", value)))
    return min(255, max(0, result))


def _to_bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ParseError(f"{name}: not a boolean: {value!r}")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def parse_settings(
    raw: Mapping[str, Any],
    defaults: ConversionSettings | None = None,
) -> ConversionSettings:
    """Build settings from loosely typed user input.

    Parameters
    ----------
    raw : Mapping[str, Any]
        Field name -> value.  Strings are accepted for every field.
        ``None`` and empty strings keep the default.  Unknown keys are
        ignored with a warning.
    defaults : ConversionSettings | None
        Fallback values.  ``None`` uses the dataclass defaults.

    Returns
    -------
    ConversionSettings
        Settings with every malformed field replaced by its default.
        Out-of-range thresholds are clamped to [0, 255].
    """
    base = defaults if defaults is not None else ConversionSettings()
    known = {f.name for f in fields(ConversionSettings)}
    updates: dict[str, Any] = {}

    for key, value in raw.items():
        if key not in known:
            logger.warning("Ignoring unknown conversion setting %r", key)
            continue
        if value is None or (isinstance(value, str) and not value.strip()):
            continue

        try:
            if key == "mode":
                updates[key] = ConversionMode.parse(value)
            elif key == "threshold":
                updates[key] = _to_threshold(value)
            elif key in _FLOAT_FIELDS:
                updates[key] = _to_positive_float(key, value)
            elif key in _SIGNED_FLOAT_FIELDS:
                updates[key] = _to_float(key, value)
            elif key in _BOOL_FIELDS:
                updates[key] = _to_bool(key, value)
        except ParseError as exc:
            logger.warning(
                "%s -- using default %r", exc, getattr(base, key),
            )

    return replace(base, **updates)


def settings_from_config(data: Mapping[str, Any] | None) -> ConversionSettings:
    """Parse the ``conversion`` section of ``machine.yaml``."""
    if not data:
        return ConversionSettings()
    return parse_settings(data)
