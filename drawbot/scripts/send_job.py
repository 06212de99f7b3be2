#!/usr/bin/env python3
"""
Send Job Script.

Stream a G-code program to the plotter over serial, one acknowledged
line at a time.  Accepts a ready ``.gcode`` file, or an image / SVG that
is converted first.

Usage:
    python -m drawbot.scripts.send_job job.gcode --port /dev/ttyUSB0
    python -m drawbot.scripts.send_job cat.png --mode spiral
    python -m drawbot.scripts.send_job --calibrate
    python -m drawbot.scripts.send_job --test-circle --port /dev/rfcomm0
    python -m drawbot.scripts.send_job logo.svg --dry-run

Ctrl-C stops the stream: the queue is emptied, the pen lifted and the
motors released.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Callable

from drawbot.configs.loader import MachineConfig, load_config
from drawbot.configs.settings import parse_settings
from drawbot.conversion import convert_image, convert_svg
from drawbot.errors import ConfigError, SessionActiveError, TransportError
from drawbot.gcode.generator import (
    calibration_lines,
    circle_test_lines,
    connection_check_lines,
    home_lines,
)
from drawbot.hardware.scheduler import LoopScheduler
from drawbot.hardware.stream_controller import (
    CommandStreamController,
    StreamProgress,
    StreamState,
)
from drawbot.hardware.transport import SerialTransport
from drawbot.utils.logging_config import (
    install_excepthook,
    push_context,
    setup_logging,
    shutdown,
)

logger = logging.getLogger(__name__)

GCODE_SUFFIXES = {".gcode", ".nc", ".ngc", ".txt"}

# Built-in programs selectable instead of an input file
SERVICE_PROGRAMS: dict[str, Callable[[MachineConfig], list[str]]] = {
    "calibrate": lambda cfg: calibration_lines(cfg.calibration),
    "home": lambda cfg: home_lines(cfg, cfg.conversion),
    "test_circle": lambda cfg: circle_test_lines(cfg, cfg.conversion),
    "test_connection": lambda cfg: connection_check_lines(cfg, cfg.conversion),
}


def load_program(
    source: str, config: MachineConfig, mode: str | None,
) -> list[str] | None:
    """G-code lines for *source*; ``None`` when conversion failed."""
    path = Path(source)
    if path.suffix.lower() in GCODE_SUFFIXES:
        return path.read_text(encoding="utf-8").splitlines()

    raw = {"mode": mode} if mode else {}
    settings = parse_settings(raw, defaults=config.conversion)
    if path.suffix.lower() == ".svg":
        result = convert_svg(path, settings, config)
    else:
        result = convert_image(path, settings, config)
    if not result.success:
        print(f"Conversion failed: {result.error_message}")
        return None
    print(result.stats.summary())
    return result.lines


def _print_progress(p: StreamProgress) -> None:
    if p.total:
        print(
            f"\r{p.processed}/{p.total} ({p.fraction:.0%})  "
            f"errors {p.errors}  timeouts {p.timeouts}",
            end="",
            flush=True,
        )


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Stream a drawing to the plotter",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "input", nargs="?", type=str, help=".gcode, image or .svg file",
    )
    parser.add_argument(
        "--config", "-c", type=str, help="Configuration file path",
    )
    parser.add_argument("--port", "-p", type=str, help="Serial port override")
    parser.add_argument("--baud", type=int, help="Baud rate override")
    parser.add_argument("--mode", "-m", type=str, help="Conversion mode")
    service = parser.add_mutually_exclusive_group()
    service.add_argument(
        "--calibrate",
        action="store_true",
        help="Send the configured calibration settings instead of a drawing",
    )
    service.add_argument(
        "--home", action="store_true", help="Lift the pen and move to the origin",
    )
    service.add_argument(
        "--test-circle", action="store_true", help="Draw a 30 mm test circle",
    )
    service.add_argument(
        "--test-connection",
        action="store_true",
        help="Query the controller and make a 1 mm move",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the program, don't connect",
    )
    parser.add_argument(
        "--log-level", default=None, help="Override configured log level",
    )
    args = parser.parse_args(argv)

    program = next((name for name in SERVICE_PROGRAMS if getattr(args, name)), None)
    if args.input and program:
        parser.error("give an input file or a service option, not both")
    if not args.input and not program:
        parser.error(
            "an input file or one of --calibrate, --home, --test-circle, "
            "--test-connection is required"
        )

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"Error loading config: {e}")
        return 1

    setup_logging(
        args.log_level or config.logging.level,
        config.logging.file,
        json=config.logging.json,
        context={
            "app": "send_job",
            "job": Path(args.input).name if args.input else program,
        },
    )
    install_excepthook()

    if program:
        lines = SERVICE_PROGRAMS[program](config)
    else:
        try:
            lines = load_program(args.input, config, args.mode)
        except OSError as e:
            print(f"Cannot read {args.input}: {e}")
            return 1
        if lines is None:
            return 1

    print(f"Program contains {len(lines)} lines")
    if args.dry_run:
        print("\n--- G-code ---")
        print("\n".join(lines))
        print("--- End G-code ---")
        return 0

    transport = SerialTransport(
        port=args.port or config.connection.port,
        baudrate=args.baud or config.connection.baudrate,
        read_timeout_s=config.connection.read_timeout_s,
        write_timeout_s=config.connection.write_timeout_s,
    )
    push_context(port=transport.port)
    print(f"Connecting to {transport.port}...")

    try:
        with transport, LoopScheduler() as scheduler:
            controller = CommandStreamController(
                transport,
                scheduler,
                config.streaming,
                pen_up_z=config.conversion.pen_up_z,
            )
            controller.set_progress_callback(_print_progress)
            controller.set_error_callback(lambda msg: print(f"\nError: {msg}"))
            controller.start(lines)
            try:
                while not controller.wait(timeout=0.5):
                    pass
            except KeyboardInterrupt:
                print("\nStopping...")
                controller.stop()
                controller.wait(timeout=5.0)
    except (TransportError, SessionActiveError) as e:
        print(f"\nError: {e}")
        return 1
    finally:
        shutdown()

    state = controller.state
    print(f"\nFinished: {state.name.lower()}")
    return 0 if state is StreamState.COMPLETED else 1


if __name__ == "__main__":
    sys.exit(main())
