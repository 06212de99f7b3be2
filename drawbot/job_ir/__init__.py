"""
Toolpath command module.

Defines every toolpath action as an immutable dataclass. This vocabulary
is the contract between the raster/vector front ends and G-code assembly.

All coordinates are in millimeters, machine frame.
"""

from drawbot.job_ir.operations import (
    ToolpathCommand,
    Travel,
    Draw,
    DrawArc,
    PenUp,
    PenDown,
    Dwell,
    Raw,
    Stroke,
    Toolpath,
    arc_sweep,
    create_stroke,
    flatten_arc,
)

__all__ = [
    "ToolpathCommand",
    "Travel",
    "Draw",
    "DrawArc",
    "PenUp",
    "PenDown",
    "Dwell",
    "Raw",
    "Stroke",
    "Toolpath",
    "arc_sweep",
    "create_stroke",
    "flatten_arc",
]
