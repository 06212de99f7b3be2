"""Toolpath statistics by replaying the command list.

The replay starts at the origin with the pen up.  A move is counted only
when it changes the pen position; pen transitions only when the pen
state actually changes.

Estimated drawing time::

    draw_mm / feed_rate * 60
    + travel_mm / travel_speed * 60
    + pen_transitions * pen_move_time_s
    + moves * accel_allowance_s
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from drawbot.configs.loader import EstimateConfig
from drawbot.configs.settings import ConversionSettings
from drawbot.job_ir.operations import (
    Draw,
    DrawArc,
    Dwell,
    PenDown,
    PenUp,
    ToolpathCommand,
    Travel,
    arc_sweep,
)


@dataclass(frozen=True)
class ToolpathStats:
    """Aggregate figures of one toolpath."""

    travel_distance_mm: float = 0.0
    draw_distance_mm: float = 0.0
    moves: int = 0
    draw_moves: int = 0
    pen_transitions: int = 0
    dwell_time_s: float = 0.0
    estimated_time_s: float = 0.0

    @property
    def total_distance_mm(self) -> float:
        return self.travel_distance_mm + self.draw_distance_mm

    def summary(self) -> str:
        """Human-readable multi-line summary."""
        minutes, seconds = divmod(int(round(self.estimated_time_s)), 60)
        return (
            f"Draw distance:   {self.draw_distance_mm:.1f} mm\n"
            f"Travel distance: {self.travel_distance_mm:.1f} mm\n"
            f"Moves:           {self.moves} ({self.draw_moves} drawing)\n"
            f"Pen transitions: {self.pen_transitions}\n"
            f"Estimated time:  {minutes}m {seconds:02d}s"
        )


def compute_stats(
    commands: list[ToolpathCommand],
    settings: ConversionSettings,
    estimate: EstimateConfig | None = None,
) -> ToolpathStats:
    """Replay *commands* and derive :class:`ToolpathStats`.

    Parameters
    ----------
    commands : list[ToolpathCommand]
        Toolpath in machine mm (Cartesian frame).
    settings : ConversionSettings
        Supplies ``feed_rate`` and ``travel_speed`` (mm/min).
    estimate : EstimateConfig | None
        Time constants.  ``None`` uses the defaults.
    """
    est = estimate if estimate is not None else EstimateConfig()
    x = y = 0.0
    pen_down = False
    travel = draw = dwell = 0.0
    moves = draw_moves = transitions = 0

    for cmd in commands:
        if isinstance(cmd, (Travel, Draw)):
            dist = math.hypot(cmd.x - x, cmd.y - y)
            if dist > 0:
                moves += 1
                if isinstance(cmd, Draw):
                    draw_moves += 1
                    draw += dist
                else:
                    travel += dist
            x, y = cmd.x, cmd.y
        elif isinstance(cmd, DrawArc):
            radius, sweep = arc_sweep((x, y), cmd)
            moves += 1
            draw_moves += 1
            draw += abs(sweep) * radius
            x, y = cmd.x, cmd.y
        elif isinstance(cmd, PenDown):
            if not pen_down:
                transitions += 1
                pen_down = True
        elif isinstance(cmd, PenUp):
            if pen_down:
                transitions += 1
                pen_down = False
        elif isinstance(cmd, Dwell):
            dwell += cmd.seconds

    estimated = (
        draw / settings.feed_rate * 60.0
        + travel / settings.travel_speed * 60.0
        + transitions * est.pen_move_time_s
        + moves * est.accel_allowance_s
    )
    return ToolpathStats(
        travel_distance_mm=travel,
        draw_distance_mm=draw,
        moves=moves,
        draw_moves=draw_moves,
        pen_transitions=transitions,
        dwell_time_s=dwell,
        estimated_time_s=estimated,
    )
