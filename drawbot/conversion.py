"""Conversion pipeline entry points.

Ties the raster source, mode generators, SVG extractor and assembler
together.  Input problems do not raise: the result carries
``success=False``, the error message and a single comment line, so a
caller can show the message without streaming anything.

Usage::

    from drawbot.conversion import convert_image, convert_svg
    result = convert_image("cat.png", settings)
    if result.success:
        controller.start(result.lines)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Union

from drawbot.configs.loader import MachineConfig, load_config
from drawbot.configs.settings import ConversionSettings
from drawbot.errors import InputError
from drawbot.gcode.generator import ToolpathAssembler
from drawbot.gcode.stats import ToolpathStats, compute_stats
from drawbot.job_ir.operations import Toolpath
from drawbot.raster.modes import generate
from drawbot.raster.source import ImageSource, load_raster
from drawbot.vector.svg_extractor import (
    compute_scale,
    extract_primitives,
    primitives_to_commands,
)

logger = logging.getLogger(__name__)

SvgSource = Union[str, bytes, Path]

# Dwell after homing before the first SVG stroke
SVG_SETTLE_S = 1.0


@dataclass
class ConversionResult:
    """Diagnostic result of one conversion call."""

    success: bool
    error_message: str = ""
    commands: Toolpath = field(default_factory=list)
    lines: list[str] = field(default_factory=list)
    stats: ToolpathStats = field(default_factory=ToolpathStats)
    skipped_points: int = 0

    @classmethod
    def failure(cls, message: str) -> ConversionResult:
        return cls(success=False, error_message=message, lines=[f"; {message}"])


def _finish(
    body: Toolpath,
    settings: ConversionSettings,
    config: MachineConfig,
    use_kinematics: bool,
    header: list[str],
    settle_s: float = 0.0,
) -> ConversionResult:
    assembler = ToolpathAssembler(config, use_kinematics=use_kinematics)
    assembled = assembler.assemble(body, settings, header, settle_s)
    stats = compute_stats(assembled.commands, settings, config.estimate)
    logger.info(
        "Conversion done: %d lines, %.1f mm drawn, ~%.0f s",
        len(assembled.lines),
        stats.draw_distance_mm,
        stats.estimated_time_s,
    )
    return ConversionResult(
        success=True,
        commands=assembled.commands,
        lines=assembled.lines,
        stats=stats,
        skipped_points=assembled.skipped_points,
    )


def convert_image(
    source: ImageSource,
    settings: ConversionSettings,
    config: MachineConfig | None = None,
    use_kinematics: bool | None = None,
) -> ConversionResult:
    """Raster image -> G-code.

    Parameters
    ----------
    source : str | Path | bytes | PIL.Image.Image
        Image file, encoded bytes or decoded image.
    settings : ConversionSettings
        Per-run settings; ``settings.mode`` picks the generator.
    config : MachineConfig | None
        ``None`` loads the default ``machine.yaml``.
    use_kinematics : bool | None
        Joint-space output; ``None`` follows the configured geometry.
    """
    cfg = config if config is not None else load_config()
    kinematics = cfg.use_kinematics if use_kinematics is None else use_kinematics
    try:
        raster = load_raster(source, settings, cfg.raster.max_dimension_px)
    except InputError as exc:
        logger.error("Image conversion failed: %s", exc)
        return ConversionResult.failure(str(exc))

    body = generate(raster, settings)
    header = [f"Raster: {raster.width}x{raster.height} px"]
    return _finish(body, settings, cfg, kinematics, header)


def convert_svg(
    source: SvgSource,
    settings: ConversionSettings,
    config: MachineConfig | None = None,
    use_kinematics: bool | None = None,
) -> ConversionResult:
    """SVG -> G-code.

    Parameters
    ----------
    source : str | bytes | Path
        SVG text, or a :class:`~pathlib.Path` to read it from.
    settings : ConversionSettings
        Target size, feed rate and pen heights.
    config : MachineConfig | None
        ``None`` loads the default ``machine.yaml``.
    use_kinematics : bool | None
        Joint-space output with the shoulder offset applied; ``None``
        follows the configured geometry.
    """
    cfg = config if config is not None else load_config()
    kinematics = cfg.use_kinematics if use_kinematics is None else use_kinematics
    try:
        if isinstance(source, Path):
            try:
                source = source.read_bytes()
            except OSError as exc:
                raise InputError(f"Cannot read SVG {source}: {exc}") from exc
        doc = extract_primitives(source)
    except InputError as exc:
        logger.error("SVG conversion failed: %s", exc)
        return ConversionResult.failure(str(exc))

    scale = compute_scale(doc, settings)
    offset = (
        (cfg.kinematics.offset_x_mm, cfg.kinematics.offset_y_mm)
        if kinematics
        else (0.0, 0.0)
    )
    body = primitives_to_commands(doc, scale, offset)
    header = [
        f"SVG: {doc.width:.1f}x{doc.height:.1f}, scale {scale:.3f}",
    ]
    return _finish(body, settings, cfg, kinematics, header, SVG_SETTLE_S)
