"""
G-code assembly module.

Normalises toolpath commands, wraps them in prologue/epilogue, renders
Cartesian or joint-space G-code, and derives toolpath statistics.
"""

from drawbot.gcode.generator import (
    AssembledToolpath,
    ToolpathAssembler,
    calibration_lines,
    circle_test_lines,
    connection_check_lines,
    home_lines,
)
from drawbot.gcode.stats import ToolpathStats, compute_stats

__all__ = [
    "AssembledToolpath",
    "ToolpathAssembler",
    "ToolpathStats",
    "calibration_lines",
    "circle_test_lines",
    "compute_stats",
    "connection_check_lines",
    "home_lines",
]
