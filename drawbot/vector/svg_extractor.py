"""Constrained SVG extraction.

Supported subset:
    - Document size from ``viewBox`` (preferred) or ``width``/``height``
      with unit suffixes stripped; 100 x 100 when neither parses
    - ``<path d>`` with ``M``/``m``, ``L``/``l`` (implicit coordinate pairs
      honoured; a pair following a moveto is a lineto) and ``Z``/``z``
    - ``<line>``, ``<rect>`` (no rounded corners), ``<circle>``

Everything else (other elements, curve and arc path commands with their
arguments, transforms, styles) is ignored.  An element whose numeric
attributes do not parse is skipped on its own.

Coordinates are converted to machine mm by :func:`primitives_to_commands`::

    machine_x = svg_x * scale + offset_x
    machine_y = (svg_height - svg_y) * scale + offset_y

so the SVG's top-left origin becomes the machine's bottom-left.
"""

from __future__ import annotations

import logging
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Iterator, Union

from drawbot.configs.settings import ConversionSettings
from drawbot.errors import InputError
from drawbot.job_ir.operations import (
    DrawArc,
    PenDown,
    PenUp,
    Toolpath,
    Travel,
    create_stroke,
)

logger = logging.getLogger(__name__)

Point = tuple[float, float]

DEFAULT_SIZE = 100.0

PATH_TOKEN_RE = re.compile(
    r"([A-Za-z])|([-+]?(?:[0-9]*\.[0-9]+|[0-9]+\.?)(?:[eE][-+]?[0-9]+)?)"
)
_NON_NUMERIC_RE = re.compile(r"[^0-9.]")


# ---------------------------------------------------------------------------
# Primitives (SVG user units)
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class PathSegmentList:
    """Polylines of one ``<path>``; each subpath is drawn as one stroke."""

    subpaths: tuple[tuple[Point, ...], ...]


@dataclass(frozen=True, slots=True)
class Line:
    x1: float
    y1: float
    x2: float
    y2: float


@dataclass(frozen=True, slots=True)
class Rect:
    x: float
    y: float
    width: float
    height: float


@dataclass(frozen=True, slots=True)
class Circle:
    cx: float
    cy: float
    r: float


GeometricPrimitive = Union[PathSegmentList, Line, Rect, Circle]


@dataclass(frozen=True)
class SvgDocument:
    """Parsed document: user-unit size plus primitives in document order."""

    width: float
    height: float
    primitives: tuple[GeometricPrimitive, ...]


# ---------------------------------------------------------------------------
# Attribute helpers
# ---------------------------------------------------------------------------


def _local_name(tag: str) -> str:
    """Strip an ``{namespace}`` prefix from an element tag."""
    return tag.rsplit("}", 1)[-1]


def _length(value: str | None) -> float:
    """Parse a length attribute, dropping unit suffixes (``mm``, ``px``, ``%``)."""
    if value is None:
        raise ValueError("missing attribute")
    cleaned = _NON_NUMERIC_RE.sub("", value)
    return float(cleaned)


def _number(elem: ET.Element, name: str, default: float | None = None) -> float:
    raw = elem.get(name)
    if raw is None:
        if default is None:
            raise ValueError(f"missing attribute {name!r}")
        return default
    return float(raw.strip())


def parse_dimensions(root: ET.Element) -> tuple[float, float]:
    """Return the document ``(width, height)`` in user units.

    ``viewBox`` wins when it holds four numbers with a positive size;
    otherwise ``width``/``height`` are used, each falling back to 100.
    """
    view_box = root.get("viewBox")
    if view_box:
        parts = view_box.replace(",", " ").split()
        if len(parts) == 4:
            try:
                width, height = float(parts[2]), float(parts[3])
            except ValueError:
                logger.debug("Unparseable viewBox %r", view_box)
            else:
                if width > 0 and height > 0:
                    return width, height

    dims = []
    for name in ("width", "height"):
        try:
            value = _length(root.get(name))
        except ValueError:
            value = DEFAULT_SIZE
        dims.append(value if value > 0 else DEFAULT_SIZE)
    return dims[0], dims[1]


# ---------------------------------------------------------------------------
# Path data
# ---------------------------------------------------------------------------


def _tokenize_path(data: str) -> Iterator[str]:
    for match in PATH_TOKEN_RE.finditer(data):
        yield match.group(1) or match.group(2)


def parse_path_data(data: str) -> PathSegmentList:
    """Parse ``d`` into absolute-coordinate polylines.

    ``Z`` ends the current subpath without drawing back to its start and
    moves the current point there.  Subpaths with fewer than two points
    draw nothing and are dropped.
    """
    tokens = list(_tokenize_path(data))
    subpaths: list[tuple[Point, ...]] = []
    current: list[Point] = []
    cx = cy = 0.0
    start_x = start_y = 0.0
    command: str | None = None
    i = 0

    def finish() -> None:
        if len(current) >= 2:
            subpaths.append(tuple(current))
        current.clear()

    while i < len(tokens):
        token = tokens[i]
        if token.isalpha():
            command = token
            i += 1
            if command in "Zz":
                finish()
                cx, cy = start_x, start_y
                command = None
            continue

        if command is None or command not in "MmLl":
            # Argument of an unsupported command (or stray number)
            i += 1
            continue

        if i + 1 >= len(tokens) or tokens[i + 1].isalpha():
            i += 1
            continue

        x, y = float(tokens[i]), float(tokens[i + 1])
        i += 2
        if command.islower():
            x += cx
            y += cy

        if command in "Mm":
            finish()
            start_x, start_y = x, y
            current.append((x, y))
            # Further pairs after a moveto are linetos
            command = "l" if command == "m" else "L"
        else:
            if not current:
                current.append((cx, cy))
            current.append((x, y))
        cx, cy = x, y

    finish()
    return PathSegmentList(subpaths=tuple(subpaths))


# ---------------------------------------------------------------------------
# Element extraction
# ---------------------------------------------------------------------------


def _primitive_from_element(elem: ET.Element) -> GeometricPrimitive | None:
    name = _local_name(elem.tag)
    if name == "path":
        data = elem.get("d", "")
        if not data.strip():
            return None
        return parse_path_data(data)
    if name == "line":
        return Line(
            x1=_number(elem, "x1", 0.0),
            y1=_number(elem, "y1", 0.0),
            x2=_number(elem, "x2", 0.0),
            y2=_number(elem, "y2", 0.0),
        )
    if name == "rect":
        rect = Rect(
            x=_number(elem, "x", 0.0),
            y=_number(elem, "y", 0.0),
            width=_number(elem, "width"),
            height=_number(elem, "height"),
        )
        if rect.width <= 0 or rect.height <= 0:
            return None
        return rect
    if name == "circle":
        circle = Circle(
            cx=_number(elem, "cx", 0.0),
            cy=_number(elem, "cy", 0.0),
            r=_number(elem, "r"),
        )
        return circle if circle.r > 0 else None
    return None


def extract_primitives(svg: str | bytes) -> SvgDocument:
    """Parse SVG text into a :class:`SvgDocument`.

    Raises
    ------
    InputError
        If the text is not well-formed XML.
    """
    try:
        root = ET.fromstring(svg)
    except ET.ParseError as exc:
        raise InputError(f"Cannot parse SVG: {exc}") from exc

    width, height = parse_dimensions(root)
    primitives: list[GeometricPrimitive] = []
    skipped = 0

    for elem in root.iter():
        try:
            primitive = _primitive_from_element(elem)
        except ValueError as exc:
            skipped += 1
            logger.debug(
                "Skipping <%s>: %s", _local_name(elem.tag), exc,
            )
            continue
        if primitive is not None:
            primitives.append(primitive)

    logger.info(
        "SVG %.1fx%.1f: %d primitives (%d malformed skipped)",
        width, height, len(primitives), skipped,
    )
    return SvgDocument(width=width, height=height, primitives=tuple(primitives))


# ---------------------------------------------------------------------------
# Primitive -> toolpath
# ---------------------------------------------------------------------------


def compute_scale(doc: SvgDocument, settings: ConversionSettings) -> float:
    """Uniform scale fitting the document into the target size."""
    return min(
        settings.target_width_mm / doc.width,
        settings.target_height_mm / doc.height,
    )


def primitives_to_commands(
    doc: SvgDocument,
    scale: float,
    offset: Point = (0.0, 0.0),
) -> Toolpath:
    """Convert primitives to toolpath commands in machine mm.

    Parameters
    ----------
    doc : SvgDocument
        Extracted document.
    scale : float
        mm per SVG user unit.
    offset : tuple[float, float]
        Added after scaling and flipping; the shoulder offset in
        kinematics mode, zero otherwise.
    """
    ox, oy = offset
    top = doc.height * scale

    def to_machine(x: float, y: float) -> Point:
        return x * scale + ox, top - y * scale + oy

    out: Toolpath = []
    for prim in doc.primitives:
        if isinstance(prim, PathSegmentList):
            for sub in prim.subpaths:
                out.extend(create_stroke([to_machine(x, y) for x, y in sub]))
        elif isinstance(prim, Line):
            out.extend(create_stroke([
                to_machine(prim.x1, prim.y1),
                to_machine(prim.x2, prim.y2),
            ]))
        elif isinstance(prim, Rect):
            x, y = to_machine(prim.x, prim.y)
            w = prim.width * scale
            h = prim.height * scale
            out.extend(create_stroke([
                (x, y),
                (x + w, y),
                (x + w, y - h),
                (x, y - h),
                (x, y),
            ]))
        elif isinstance(prim, Circle):
            cx, cy = to_machine(prim.cx, prim.cy)
            r = prim.r * scale
            start = (cx + r, cy)
            out.extend([
                Travel(x=start[0], y=start[1]),
                PenDown(),
                DrawArc(x=start[0], y=start[1], i=-r, j=0.0, clockwise=True),
                PenUp(),
            ])
    return out
