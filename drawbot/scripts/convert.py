#!/usr/bin/env python3
"""
Convert Script.

Turn a raster image or an SVG into a G-code program and print its
statistics.

Usage:
    python -m drawbot.scripts.convert cat.png --mode crosshatch -o cat.gcode
    python -m drawbot.scripts.convert logo.svg --width 80 --height 80
    python -m drawbot.scripts.convert cat.png --kinematics --dry-run

Available modes:
    raster_horizontal, raster_vertical, raster_diagonal, crosshatch,
    contour, stippling, spiral, vector_trace
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from drawbot.configs.loader import MachineConfig, load_config
from drawbot.configs.settings import ConversionMode, parse_settings
from drawbot.conversion import ConversionResult, convert_image, convert_svg
from drawbot.errors import ConfigError
from drawbot.utils.fs import atomic_write_text
from drawbot.utils.logging_config import install_excepthook, setup_logging

logger = logging.getLogger(__name__)

# CLI flag -> ConversionSettings field
SETTING_FLAGS = {
    "mode": "mode",
    "width": "target_width_mm",
    "height": "target_height_mm",
    "threshold": "threshold",
    "spacing": "line_spacing",
    "feed": "feed_rate",
    "travel": "travel_speed",
    "pen_up": "pen_up_z",
    "pen_down": "pen_down_z",
    "resolution": "trace_resolution_px",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Convert an image or SVG to plotter G-code",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"Available modes: {', '.join(m.value for m in ConversionMode)}",
    )
    parser.add_argument("input", type=str, help="Image or .svg file")
    parser.add_argument(
        "--config", "-c", type=str, help="Configuration file path",
    )
    parser.add_argument(
        "--output", "-o", type=str, help="G-code output file",
    )

    # Settings (strings; parse_settings validates and falls back)
    parser.add_argument("--mode", "-m", type=str, help="Conversion mode")
    parser.add_argument("--width", type=str, help="Target width (mm)")
    parser.add_argument("--height", type=str, help="Target height (mm)")
    parser.add_argument("--threshold", type=str, help="Threshold 0-255")
    parser.add_argument("--spacing", type=str, help="Line spacing (mm)")
    parser.add_argument("--feed", type=str, help="Drawing feed (mm/min)")
    parser.add_argument("--travel", type=str, help="Travel speed (mm/min)")
    parser.add_argument("--pen-up", dest="pen_up", type=str, help="Pen-up Z")
    parser.add_argument(
        "--pen-down", dest="pen_down", type=str, help="Pen-down Z",
    )
    parser.add_argument(
        "--resolution", type=str, help="Vector-trace resolution (px)",
    )
    parser.add_argument(
        "--invert", action="store_true", help="Invert image before thresholding",
    )
    parser.add_argument(
        "--no-optimize", action="store_true", help="Keep repeated commands",
    )

    # Output geometry
    geometry = parser.add_mutually_exclusive_group()
    geometry.add_argument(
        "--kinematics",
        action="store_true",
        help="Joint-space (SCARA) output",
    )
    geometry.add_argument(
        "--cartesian",
        action="store_true",
        help="Cartesian output regardless of configured geometry",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print statistics only, write nothing",
    )
    parser.add_argument(
        "--log-level", default=None, help="Override configured log level",
    )
    return parser


def run_conversion(
    args: argparse.Namespace, config: MachineConfig,
) -> ConversionResult:
    """Convert ``args.input`` using CLI overrides on top of the config."""
    raw = {
        field: getattr(args, flag)
        for flag, field in SETTING_FLAGS.items()
        if getattr(args, flag) is not None
    }
    if args.invert:
        raw["invert_image"] = True
    if args.no_optimize:
        raw["optimize_path"] = False
    settings = parse_settings(raw, defaults=config.conversion)

    use_kinematics: bool | None = None
    if args.kinematics:
        use_kinematics = True
    elif args.cartesian:
        use_kinematics = False

    path = Path(args.input)
    if path.suffix.lower() == ".svg":
        return convert_svg(path, settings, config, use_kinematics)
    return convert_image(path, settings, config, use_kinematics)


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"Error loading config: {e}")
        return 1

    setup_logging(
        args.log_level or config.logging.level,
        config.logging.file,
        json=config.logging.json,
        context={"app": "convert", "job": Path(args.input).name},
    )
    install_excepthook()

    result = run_conversion(args, config)
    if not result.success:
        print(f"Conversion failed: {result.error_message}")
        return 1

    print(result.stats.summary())
    if result.skipped_points:
        print(f"Unreachable points skipped: {result.skipped_points}")

    if args.dry_run:
        return 0

    text = "".join(f"{line}\n" for line in result.lines)
    if args.output:
        atomic_write_text(args.output, text)
        print(f"Wrote {len(result.lines)} lines to {args.output}")
    else:
        sys.stdout.write(text)
    return 0


if __name__ == "__main__":
    sys.exit(main())
