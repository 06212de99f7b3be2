"""Raster conversion strategies.

One generator class per :class:`~drawbot.configs.settings.ConversionMode`,
registered by tag.  Every generator maps a :class:`RasterImage` to a list
of toolpath commands in which each draw sits inside a
``PenDown ... PenUp`` bracket.

Pixel ``(x, y)`` maps to ``(x * scale_x, y * scale_y)`` mm with
``scale_x = target_width_mm / width`` and
``scale_y = target_height_mm / height``.  The row order of the image is
kept (no vertical flip).

Usage::

    from drawbot.raster.modes import generate
    commands = generate(raster, settings)
"""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from typing import ClassVar, Iterable, Sequence

import numpy as np

from drawbot.configs.settings import ConversionMode, ConversionSettings
from drawbot.job_ir.operations import (
    Draw,
    Dwell,
    PenDown,
    PenUp,
    Toolpath,
    Travel,
    create_stroke,
)
from drawbot.raster.source import RasterImage

logger = logging.getLogger(__name__)

Pixel = tuple[int, int]

STIPPLE_STEP_PX = 2
STIPPLE_DWELL_S = 0.1
CONTOUR_MAX_POINTS = 1000
CONTOUR_MIN_POINTS = 4
SPIRAL_ANGLE_STEP_DEG = 5

# Neighbour priority for contour following: up, right, down, left.
_CONTOUR_STEPS = ((0, -1), (1, 0), (0, 1), (-1, 0))


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


def _scales(image: RasterImage, settings: ConversionSettings) -> tuple[float, float]:
    return (
        settings.target_width_mm / image.width,
        settings.target_height_mm / image.height,
    )


def _line_step(line_spacing: float, pixel_scale: float) -> int:
    """Scan-line spacing in pixels, rounded half up, never below 1."""
    return max(1, math.floor(line_spacing / pixel_scale + 0.5))


def _split_runs(points: Sequence[Pixel]) -> list[tuple[Pixel, Pixel]]:
    """Split ordered pixels into maximal contiguous runs.

    A run ends at the last point or where the next point is more than
    one pixel away on either axis.

    Returns
    -------
    list[tuple[Pixel, Pixel]]
        ``(first, last)`` of every run, in input order.
    """
    runs: list[tuple[Pixel, Pixel]] = []
    start: Pixel | None = None
    for i, current in enumerate(points):
        if start is None:
            start = current
        is_last = i == len(points) - 1
        if is_last or (
            abs(points[i + 1][0] - current[0]) > 1
            or abs(points[i + 1][1] - current[1]) > 1
        ):
            runs.append((start, current))
            start = None
    return runs


def _emit_runs(
    out: Toolpath,
    runs: Iterable[tuple[Pixel, Pixel]],
    sx: float,
    sy: float,
) -> None:
    for (x0, y0), (x1, y1) in runs:
        out.extend([
            Travel(x=x0 * sx, y=y0 * sy),
            PenDown(),
            Draw(x=x1 * sx, y=y1 * sy),
            PenUp(),
        ])


# ---------------------------------------------------------------------------
# Generator base + registry
# ---------------------------------------------------------------------------


class ModeGenerator(ABC):
    """Strategy interface: raster grid -> toolpath commands."""

    mode: ClassVar[ConversionMode]

    @abstractmethod
    def generate(
        self, image: RasterImage, settings: ConversionSettings,
    ) -> Toolpath:
        """Return the toolpath for *image*."""


_REGISTRY: dict[ConversionMode, type[ModeGenerator]] = {}


def register(cls: type[ModeGenerator]) -> type[ModeGenerator]:
    """Class decorator adding a generator to the registry."""
    if cls.mode in _REGISTRY:
        raise ValueError(f"Duplicate generator for mode {cls.mode}")
    _REGISTRY[cls.mode] = cls
    return cls


def get_generator(mode: ConversionMode) -> ModeGenerator:
    """Instantiate the generator registered for *mode*.

    Raises
    ------
    KeyError
        If no generator handles *mode*.
    """
    try:
        return _REGISTRY[mode]()
    except KeyError:
        raise KeyError(
            f"No generator for mode {mode!r}. "
            f"Available: {[m.value for m in _REGISTRY]}"
        ) from None


def available_modes() -> list[ConversionMode]:
    return list(_REGISTRY)


def generate(image: RasterImage, settings: ConversionSettings) -> Toolpath:
    """Run the generator selected by ``settings.mode``."""
    commands = get_generator(settings.mode).generate(image, settings)
    logger.info(
        "Mode %s produced %d commands from %dx%d raster",
        settings.mode.value,
        len(commands),
        image.width,
        image.height,
    )
    return commands


# ---------------------------------------------------------------------------
# Scan-line modes
# ---------------------------------------------------------------------------


@register
class HorizontalRaster(ModeGenerator):
    """Boustrophedon rows.

    The first row with foreground is scanned left to right; the direction
    flips after every row that produced runs, so blank rows do not count.
    """

    mode = ConversionMode.RASTER_HORIZONTAL

    def generate(
        self, image: RasterImage, settings: ConversionSettings,
    ) -> Toolpath:
        sx, sy = _scales(image, settings)
        step = _line_step(settings.line_spacing, sy)
        out: Toolpath = []
        reverse = False
        for y in range(0, image.height, step):
            xs = np.flatnonzero(image.pixels[y]).tolist()
            if not xs:
                continue
            if reverse:
                xs.reverse()
            reverse = not reverse
            _emit_runs(out, _split_runs([(x, y) for x in xs]), sx, sy)
        return out


@register
class VerticalRaster(ModeGenerator):
    """Boustrophedon columns, top to bottom first.

    Direction flips after every column that produced runs.
    """

    mode = ConversionMode.RASTER_VERTICAL

    def generate(
        self, image: RasterImage, settings: ConversionSettings,
    ) -> Toolpath:
        sx, sy = _scales(image, settings)
        step = _line_step(settings.line_spacing, sx)
        out: Toolpath = []
        reverse = False
        for x in range(0, image.width, step):
            ys = np.flatnonzero(image.pixels[:, x]).tolist()
            if not ys:
                continue
            if reverse:
                ys.reverse()
            reverse = not reverse
            _emit_runs(out, _split_runs([(x, y) for y in ys]), sx, sy)
        return out


@register
class DiagonalRaster(ModeGenerator):
    """Runs along anti-diagonals ``x + y = const``, x increasing."""

    mode = ConversionMode.RASTER_DIAGONAL

    def generate(
        self, image: RasterImage, settings: ConversionSettings,
    ) -> Toolpath:
        sx, sy = _scales(image, settings)
        step = _line_step(settings.line_spacing, min(sx, sy))
        w, h = image.width, image.height
        out: Toolpath = []
        for s in range(0, w + h - 1, step):
            points = [
                (x, s - x)
                for x in range(max(0, s - h + 1), min(w, s + 1))
                if image.pixels[s - x, x]
            ]
            if points:
                _emit_runs(out, _split_runs(points), sx, sy)
        return out


@register
class Crosshatch(ModeGenerator):
    """Horizontal pass followed by a vertical pass over the same image."""

    mode = ConversionMode.CROSSHATCH

    def generate(
        self, image: RasterImage, settings: ConversionSettings,
    ) -> Toolpath:
        return (
            HorizontalRaster().generate(image, settings)
            + VerticalRaster().generate(image, settings)
        )


# ---------------------------------------------------------------------------
# Contour following
# ---------------------------------------------------------------------------


def trace_contour(
    image: RasterImage, start: Pixel, visited: np.ndarray,
) -> list[Pixel]:
    """Greedy 4-neighbour walk from *start*, marking *visited*.

    At each step the first unvisited foreground neighbour in the order
    up, right, down, left is taken.  Stops at a dead end or after
    ``CONTOUR_MAX_POINTS`` points.
    """
    contour: list[Pixel] = []
    x, y = start
    while True:
        contour.append((x, y))
        visited[y, x] = True
        if len(contour) >= CONTOUR_MAX_POINTS:
            break
        for dx, dy in _CONTOUR_STEPS:
            nx, ny = x + dx, y + dy
            if image.is_foreground(nx, ny) and not visited[ny, nx]:
                x, y = nx, ny
                break
        else:
            break
    return contour


@register
class ContourFollowing(ModeGenerator):
    """Closed polylines traced from every unvisited foreground pixel."""

    mode = ConversionMode.CONTOUR

    def generate(
        self, image: RasterImage, settings: ConversionSettings,
    ) -> Toolpath:
        sx, sy = _scales(image, settings)
        visited = np.zeros(image.pixels.shape, dtype=bool)
        out: Toolpath = []
        kept = 0
        # argwhere yields (row, col) in raster order
        for y, x in np.argwhere(image.pixels):
            if visited[y, x]:
                continue
            contour = trace_contour(image, (int(x), int(y)), visited)
            if len(contour) < CONTOUR_MIN_POINTS:
                continue
            kept += 1
            points = [(px * sx, py * sy) for px, py in contour]
            points.append(points[0])
            out.extend(create_stroke(points))
        logger.debug("Contour mode kept %d contours", kept)
        return out


# ---------------------------------------------------------------------------
# Point-based modes
# ---------------------------------------------------------------------------


@register
class Stippling(ModeGenerator):
    """A dwell dot on every second foreground pixel in both axes."""

    mode = ConversionMode.STIPPLING

    def generate(
        self, image: RasterImage, settings: ConversionSettings,
    ) -> Toolpath:
        sx, sy = _scales(image, settings)
        out: Toolpath = []
        for y in range(0, image.height, STIPPLE_STEP_PX):
            for x in range(0, image.width, STIPPLE_STEP_PX):
                if image.pixels[y, x]:
                    out.extend([
                        Travel(x=x * sx, y=y * sy),
                        PenDown(),
                        Dwell(seconds=STIPPLE_DWELL_S),
                        PenUp(),
                    ])
        return out


@register
class Spiral(ModeGenerator):
    """Polar sweep from the image centre outward, one pixel per ring."""

    mode = ConversionMode.SPIRAL

    def generate(
        self, image: RasterImage, settings: ConversionSettings,
    ) -> Toolpath:
        sx, sy = _scales(image, settings)
        cx, cy = image.width // 2, image.height // 2
        max_radius = min(cx, cy)
        out: Toolpath = []
        pen_down = False

        for r in range(1, max_radius):
            for angle in range(0, 360, SPIRAL_ANGLE_STEP_DEG):
                rad = math.radians(angle)
                x = int(cx + r * math.cos(rad))
                y = int(cy + r * math.sin(rad))
                if not (0 <= x < image.width and 0 <= y < image.height):
                    continue
                if image.pixels[y, x]:
                    if not pen_down:
                        out.extend([Travel(x=x * sx, y=y * sy), PenDown()])
                        pen_down = True
                    out.append(Draw(x=x * sx, y=y * sy))
                elif pen_down:
                    out.append(PenUp())
                    pen_down = False

        if pen_down:
            out.append(PenUp())
        return out


@register
class VectorTrace(ModeGenerator):
    """Chain foreground pixels (raster order) into polylines.

    Consecutive points closer than ``trace_resolution_px`` join the
    current path; a larger gap starts a new one.
    """

    mode = ConversionMode.VECTOR_TRACE

    def generate(
        self, image: RasterImage, settings: ConversionSettings,
    ) -> Toolpath:
        sx, sy = _scales(image, settings)
        limit = settings.trace_resolution_px
        out: Toolpath = []
        path: list[Pixel] = []

        def flush() -> None:
            if path:
                out.extend(create_stroke([(x * sx, y * sy) for x, y in path]))
                path.clear()

        for y, x in np.argwhere(image.pixels):
            point = (int(x), int(y))
            if path and math.dist(path[-1], point) > limit:
                flush()
            path.append(point)
        flush()
        return out
