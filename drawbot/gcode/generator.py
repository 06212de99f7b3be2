"""Toolpath assembler -- command lists to G-code lines.

Assembly steps:
    1. Bracket normalisation (``PenDown`` before any draw issued with the
       pen up, ``PenUp`` before any travel issued with the pen down,
       redundant pen commands dropped, pen up at the end)
    2. Optional collapse of immediately repeated identical commands
    3. Prologue (header comments, ``G21``, ``G90``, ``G92 X0 Y0 Z0``,
       pen up, home) and epilogue (pen up, home)
    4. Rendering, either Cartesian ``G0/G1 X.. Y..`` or joint-space
       ``G0/G1 A.. B..`` through the two-link inverse kinematics

Feed convention:
    Feed rate and pen-plunge feed are emitted as ``F`` in mm/min.  ``G0``
    travels carry no ``F``; the firmware moves them at its rapid rate.

Joint-space output:
    Targets outside the arm envelope are replaced by a ``;`` comment and
    counted.  Straight draws and arcs are split into chords of
    ``arc_segment_mm`` first.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from io import StringIO

from drawbot.configs.loader import CalibrationConfig, MachineConfig
from drawbot.configs.settings import ConversionSettings
from drawbot.job_ir.operations import (
    Draw,
    DrawArc,
    Dwell,
    PenDown,
    PenUp,
    Raw,
    Toolpath,
    ToolpathCommand,
    Travel,
    flatten_arc,
)
from drawbot.kinematics.scara import inverse_kinematics

logger = logging.getLogger(__name__)


@dataclass
class AssembledToolpath:
    """Output of :meth:`ToolpathAssembler.assemble`.

    Attributes
    ----------
    commands : Toolpath
        Complete command list including prologue and epilogue.
    lines : list[str]
        Rendered G-code, one command per line, no newline characters.
    skipped_points : int
        Joint-space targets dropped as unreachable.
    """

    commands: Toolpath
    lines: list[str] = field(default_factory=list)
    skipped_points: int = 0

    def to_text(self) -> str:
        buf = StringIO()
        for line in self.lines:
            buf.write(f"{line}\n")
        return buf.getvalue()


# ---------------------------------------------------------------------------
# Command-list passes
# ---------------------------------------------------------------------------


def normalize_brackets(commands: list[ToolpathCommand]) -> Toolpath:
    """Return *commands* with every draw inside a pen-down bracket."""
    out: Toolpath = []
    pen_down = False
    for cmd in commands:
        if isinstance(cmd, (Draw, DrawArc)) and not pen_down:
            out.append(PenDown())
            pen_down = True
        elif isinstance(cmd, Travel) and pen_down:
            out.append(PenUp())
            pen_down = False
        elif isinstance(cmd, PenDown):
            if pen_down:
                continue
            pen_down = True
        elif isinstance(cmd, PenUp):
            if not pen_down:
                continue
            pen_down = False
        out.append(cmd)
    if pen_down:
        out.append(PenUp())
    return out


def collapse_repeats(commands: list[ToolpathCommand]) -> Toolpath:
    """Drop commands identical to their immediate predecessor."""
    out: Toolpath = []
    for cmd in commands:
        if out and out[-1] == cmd:
            continue
        out.append(cmd)
    return out


def calibration_lines(cal: CalibrationConfig) -> list[str]:
    """GRBL ``$nnn=value`` directives for steps, max rate and acceleration."""
    return [
        f"$100={cal.steps_per_mm_x}",
        f"$101={cal.steps_per_mm_y}",
        f"$102={cal.steps_per_mm_z}",
        f"$110={cal.max_rate_x}",
        f"$111={cal.max_rate_y}",
        f"$112={cal.max_rate_z}",
        f"$120={cal.acceleration_x}",
        f"$121={cal.acceleration_y}",
        f"$122={cal.acceleration_z}",
    ]


# ---------------------------------------------------------------------------
# Assembler
# ---------------------------------------------------------------------------


class ToolpathAssembler:
    """Turn generator output into a streamable G-code program.

    Parameters
    ----------
    config : MachineConfig
        Validated machine configuration.
    use_kinematics : bool | None
        Render joint angles instead of X/Y.  ``None`` follows
        ``config.geometry``.
    """

    def __init__(
        self, config: MachineConfig, use_kinematics: bool | None = None,
    ) -> None:
        self._cfg = config
        self._kinematics = (
            config.use_kinematics if use_kinematics is None else use_kinematics
        )
        self._skipped = 0
        self._x = 0.0
        self._y = 0.0

    @property
    def use_kinematics(self) -> bool:
        return self._kinematics

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def build(
        self,
        body: list[ToolpathCommand],
        settings: ConversionSettings,
        header: list[str] | None = None,
        settle_s: float = 0.0,
    ) -> Toolpath:
        """Wrap *body* in prologue and epilogue after normalisation.

        Parameters
        ----------
        body : list[ToolpathCommand]
            Generator or extractor output.
        settings : ConversionSettings
            Supplies mode, size and ``optimize_path``.
        header : list[str] | None
            Extra comment text appended to the standard header.
        settle_s : float
            Dwell after homing; 0 omits it.
        """
        commands = normalize_brackets(body)
        if settings.optimize_path:
            before = len(commands)
            commands = collapse_repeats(commands)
            if before != len(commands):
                logger.debug(
                    "Collapsed %d repeated commands", before - len(commands),
                )

        prologue: Toolpath = [
            Raw("; DrawBot G-code"),
            Raw(f"; Mode: {settings.mode.value}"),
            Raw(
                f"; Size: {settings.target_width_mm:.1f}x"
                f"{settings.target_height_mm:.1f} mm"
            ),
        ]
        if self._kinematics:
            k = self._cfg.kinematics
            prologue.append(Raw(
                f"; SCARA arms {k.arm1_length_mm:.1f}/{k.arm2_length_mm:.1f} mm, "
                f"shoulder at ({k.offset_x_mm:.1f}, {k.offset_y_mm:.1f})"
            ))
        prologue.extend(Raw(f"; {text}") for text in header or [])
        prologue.extend([
            Raw("G21"),
            Raw("G90"),
            Raw("G92 X0 Y0 Z0"),
            PenUp(),
            Travel(0.0, 0.0),
        ])
        if settle_s > 0:
            prologue.append(Dwell(settle_s))
        epilogue: Toolpath = [
            PenUp(),
            Travel(0.0, 0.0),
            Raw("; End of drawing"),
        ]
        return prologue + commands + epilogue

    def render(
        self, commands: list[ToolpathCommand], settings: ConversionSettings,
    ) -> list[str]:
        """Render commands to G-code lines.

        Resets the skip counter; read it back from :attr:`skipped_points`.
        """
        self._skipped = 0
        self._x = 0.0
        self._y = 0.0
        lines: list[str] = []
        for cmd in commands:
            self._render_cmd(cmd, settings, lines)
        if self._skipped:
            logger.warning(
                "%d target(s) outside the arm envelope were skipped",
                self._skipped,
            )
        return lines

    @property
    def skipped_points(self) -> int:
        return self._skipped

    def assemble(
        self,
        body: list[ToolpathCommand],
        settings: ConversionSettings,
        header: list[str] | None = None,
        settle_s: float = 0.0,
    ) -> AssembledToolpath:
        """:meth:`build` followed by :meth:`render`."""
        commands = self.build(body, settings, header, settle_s)
        lines = self.render(commands, settings)
        logger.info(
            "Assembled %d commands into %d lines (%s output)",
            len(commands),
            len(lines),
            "joint-space" if self._kinematics else "cartesian",
        )
        return AssembledToolpath(
            commands=commands, lines=lines, skipped_points=self._skipped,
        )

    # ------------------------------------------------------------------
    # Internal: per-command dispatch
    # ------------------------------------------------------------------

    def _render_cmd(
        self,
        cmd: ToolpathCommand,
        settings: ConversionSettings,
        lines: list[str],
    ) -> None:
        if isinstance(cmd, Travel):
            self._move("G0", cmd.x, cmd.y, None, lines)
        elif isinstance(cmd, Draw):
            self._line(cmd.x, cmd.y, settings.feed_rate, lines)
        elif isinstance(cmd, DrawArc):
            self._arc(cmd, settings, lines)
        elif isinstance(cmd, PenUp):
            lines.append(f"G0 Z{settings.pen_up_z:.2f}")
        elif isinstance(cmd, PenDown):
            lines.append(
                f"G1 Z{settings.pen_down_z:.2f} F{settings.feed_rate:.0f}"
            )
        elif isinstance(cmd, Dwell):
            lines.append(f"G4 P{cmd.seconds:g}")
        elif isinstance(cmd, Raw):
            lines.append(cmd.text)
        else:
            logger.warning("Unsupported command: %s", type(cmd).__name__)

    def _move(
        self,
        code: str,
        x: float,
        y: float,
        feed: float | None,
        lines: list[str],
    ) -> None:
        self._x, self._y = x, y
        suffix = f" F{feed:.0f}" if feed is not None else ""
        if not self._kinematics:
            lines.append(f"{code} X{x:.3f} Y{y:.3f}{suffix}")
            return

        angles = inverse_kinematics(x, y, self._cfg.kinematics)
        if not angles.valid:
            self._skipped += 1
            logger.debug("Unreachable target (%.3f, %.3f) skipped", x, y)
            lines.append(f"; unreachable X{x:.3f} Y{y:.3f} skipped")
            return
        lines.append(
            f"{code} A{angles.theta1:.3f} B{angles.theta2:.3f}{suffix}"
        )

    def _line(
        self, x: float, y: float, feed: float, lines: list[str],
    ) -> None:
        """Straight draw; joint-space chords are at most ``arc_segment_mm``."""
        if self._kinematics:
            x0, y0 = self._x, self._y
            length = math.hypot(x - x0, y - y0)
            n = max(1, math.ceil(length / self._cfg.kinematics.arc_segment_mm))
            for k in range(1, n):
                t = k / n
                self._move("G1", x0 + (x - x0) * t, y0 + (y - y0) * t, feed, lines)
        self._move("G1", x, y, feed, lines)

    def _arc(
        self,
        arc: DrawArc,
        settings: ConversionSettings,
        lines: list[str],
    ) -> None:
        if self._kinematics:
            start = (self._x, self._y)
            for px, py in flatten_arc(
                start, arc, self._cfg.kinematics.arc_segment_mm,
            ):
                self._move("G1", px, py, settings.feed_rate, lines)
            return

        code = "G02" if arc.clockwise else "G03"
        lines.append(
            f"{code} X{arc.x:.3f} Y{arc.y:.3f} I{arc.i:.3f} J{arc.j:.3f} "
            f"F{settings.feed_rate:.0f}"
        )
        self._x, self._y = arc.x, arc.y


# ---------------------------------------------------------------------------
# Service programs
# ---------------------------------------------------------------------------


def _service_program(
    commands: list[ToolpathCommand],
    config: MachineConfig,
    settings: ConversionSettings,
    use_kinematics: bool | None,
) -> list[str]:
    return ToolpathAssembler(config, use_kinematics).render(
        [Raw("G21"), Raw("G90"), *commands], settings,
    )


def home_lines(
    config: MachineConfig,
    settings: ConversionSettings,
    use_kinematics: bool | None = None,
) -> list[str]:
    """Lift the pen and move to the origin."""
    return _service_program(
        [PenUp(), Travel(0.0, 0.0)], config, settings, use_kinematics,
    )


def circle_test_lines(
    config: MachineConfig,
    settings: ConversionSettings,
    use_kinematics: bool | None = None,
    center: tuple[float, float] = (20.0, 20.0),
    radius: float = 15.0,
) -> list[str]:
    """Draw one full clockwise circle, then return home.

    The default is a 30 mm circle starting at ``(35, 20)``.
    """
    cx, cy = center
    start_x = cx + radius
    return _service_program(
        [
            PenUp(),
            Travel(start_x, cy),
            PenDown(),
            DrawArc(start_x, cy, -radius, 0.0, clockwise=True),
            PenUp(),
            Travel(0.0, 0.0),
        ],
        config,
        settings,
        use_kinematics,
    )


def connection_check_lines(
    config: MachineConfig,
    settings: ConversionSettings,
    use_kinematics: bool | None = None,
) -> list[str]:
    """Ask for build info, unlock, then make a 1 mm pen-up move.

    ``$I`` is answered with ``ok``; GRBL's ``?`` status query is not, so
    an ack-paced stream would wait it out.
    """
    return [
        "$I",
        "$X",
        *_service_program(
            [PenUp(), Travel(1.0, 1.0)], config, settings, use_kinematics,
        ),
    ]
