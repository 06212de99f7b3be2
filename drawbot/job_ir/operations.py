"""Toolpath commands -- the vocabulary between geometry and G-code.

Every toolpath action is an immutable, slotted dataclass.  Commands use
**semantic** names (``PenDown``, not ``G1 Z-1``) and **millimetre**
machine coordinates; the assembler decides whether a target becomes
``X/Y`` or joint angles ``A/B``.

Ordering
--------
A ``Draw`` or ``DrawArc`` belongs to a *bracket*: it is preceded by a
``PenDown`` and followed by a ``PenUp`` before the next ``Travel``.
Mode generators emit well-formed brackets; the assembler repairs
anything else.
"""

from __future__ import annotations

import math
from abc import ABC
from dataclasses import dataclass

# ---------------------------------------------------------------------------
# Type aliases
# ---------------------------------------------------------------------------

Toolpath = list["ToolpathCommand"]
"""Ordered command sequence produced by a generator or extractor."""

Stroke = list["ToolpathCommand"]
"""One pen-down bracket including its leading travel."""

# ---------------------------------------------------------------------------
# Base class
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ToolpathCommand(ABC):
    """Base class for all toolpath commands."""

    pass


# ---------------------------------------------------------------------------
# Motion commands  (machine mm)
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Travel(ToolpathCommand):
    """Pen-up move at travel speed.

    Parameters
    ----------
    x, y : float
        Target position in mm.
    """

    x: float
    y: float


@dataclass(frozen=True, slots=True)
class Draw(ToolpathCommand):
    """Pen-down line segment at feed rate.

    A ``Draw`` to the current position is a zero-length stroke and still
    marks the paper (single-pixel runs rely on this).
    """

    x: float
    y: float


@dataclass(frozen=True, slots=True)
class DrawArc(ToolpathCommand):
    """Circular arc at feed rate (G2/G3).

    Uses the centre-offset (I/J) form.  The arc runs from the current
    position to ``(x, y)`` with its centre at ``(current + i, current + j)``.
    An end point equal to the start point draws a full circle.

    Parameters
    ----------
    x, y : float
        End point in mm.
    i, j : float
        Offset from the current position to the arc centre, in mm.
    clockwise : bool
        ``True`` for G2, ``False`` for G3.
    """

    x: float
    y: float
    i: float
    j: float
    clockwise: bool = True


# ---------------------------------------------------------------------------
# Pen and timing commands
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class PenUp(ToolpathCommand):
    """Raise the pen to its travel height."""

    pass


@dataclass(frozen=True, slots=True)
class PenDown(ToolpathCommand):
    """Lower the pen onto the paper."""

    pass


@dataclass(frozen=True, slots=True)
class Dwell(ToolpathCommand):
    """Pause in place (``G4 P<seconds>``)."""

    seconds: float

    def __post_init__(self) -> None:
        if self.seconds < 0:
            raise ValueError(f"Dwell seconds must be >= 0, got {self.seconds}")


@dataclass(frozen=True, slots=True)
class Raw(ToolpathCommand):
    """Pass-through line (setup directives, ``$nnn=v`` values, comments).

    An empty text or one starting with ``;`` is log-only: the controller
    never transmits it.
    """

    text: str

    @property
    def is_comment(self) -> bool:
        stripped = self.text.strip()
        return not stripped or stripped.startswith(";")


# ---------------------------------------------------------------------------
# Arc geometry
# ---------------------------------------------------------------------------


def arc_sweep(start: tuple[float, float], arc: DrawArc) -> tuple[float, float]:
    """Return ``(radius, signed sweep in radians)`` of *arc* from *start*.

    Clockwise sweeps are negative.  Coincident start and end points give
    a full turn.
    """
    cx = start[0] + arc.i
    cy = start[1] + arc.j
    radius = math.hypot(arc.i, arc.j)
    a0 = math.atan2(start[1] - cy, start[0] - cx)
    a1 = math.atan2(arc.y - cy, arc.x - cx)
    sweep = a1 - a0
    if math.isclose(arc.x, start[0], abs_tol=1e-9) and math.isclose(
        arc.y, start[1], abs_tol=1e-9,
    ):
        sweep = 0.0
    if arc.clockwise:
        if sweep >= 0:
            sweep -= 2 * math.pi
    elif sweep <= 0:
        sweep += 2 * math.pi
    return radius, sweep


def flatten_arc(
    start: tuple[float, float], arc: DrawArc, segment_mm: float,
) -> list[tuple[float, float]]:
    """Approximate *arc* by chords of at most ``segment_mm`` arc length.

    The returned points exclude *start* and end exactly at the arc's end
    point.
    """
    radius, sweep = arc_sweep(start, arc)
    if radius == 0:
        return [(arc.x, arc.y)]
    cx = start[0] + arc.i
    cy = start[1] + arc.j
    a0 = math.atan2(start[1] - cy, start[0] - cx)
    n = max(1, math.ceil(abs(sweep) * radius / segment_mm))
    points = [
        (
            cx + radius * math.cos(a0 + sweep * k / n),
            cy + radius * math.sin(a0 + sweep * k / n),
        )
        for k in range(1, n)
    ]
    points.append((arc.x, arc.y))
    return points


# ---------------------------------------------------------------------------
# Stroke helpers
# ---------------------------------------------------------------------------


def create_stroke(points: list[tuple[float, float]]) -> Stroke:
    """Build a standard bracket: travel -> pen-down -> draws -> pen-up.

    Parameters
    ----------
    points : list[tuple[float, float]]
        Ordered polyline vertices in mm.  A single point yields a
        zero-length stroke.

    Returns
    -------
    Stroke
        ``[Travel, PenDown, Draw, ..., PenUp]``
    """
    if not points:
        raise ValueError("Stroke requires at least 1 point")

    x0, y0 = points[0]
    draws = [Draw(x=x, y=y) for x, y in points[1:]] or [Draw(x=x0, y=y0)]
    return [Travel(x=x0, y=y0), PenDown(), *draws, PenUp()]
