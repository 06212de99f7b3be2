"""Constrained SVG extraction into toolpath commands."""

from drawbot.vector.svg_extractor import (
    Circle,
    GeometricPrimitive,
    Line,
    PathSegmentList,
    Rect,
    SvgDocument,
    compute_scale,
    extract_primitives,
    parse_dimensions,
    primitives_to_commands,
)

__all__ = [
    "Circle",
    "GeometricPrimitive",
    "Line",
    "PathSegmentList",
    "Rect",
    "SvgDocument",
    "compute_scale",
    "extract_primitives",
    "parse_dimensions",
    "primitives_to_commands",
]
