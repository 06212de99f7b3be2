"""Raster source: decode an image into a binary foreground grid.

Pipeline:
    1. Decode with Pillow (any format it can read)
    2. Flatten transparency onto white
    3. Downscale so the long side is at most ``max_dimension_px``
    4. Luminance ``0.299 R + 0.587 G + 0.114 B`` (optionally inverted)
    5. Foreground where ``luminance < threshold``

The grid is indexed ``[y, x]`` with ``y = 0`` at the top row and is
read-only once built.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Union

import numpy as np
from PIL import Image, UnidentifiedImageError

from drawbot.configs.settings import ConversionSettings
from drawbot.errors import InputError

logger = logging.getLogger(__name__)

ImageSource = Union[str, Path, bytes, Image.Image]

_LUMA = np.array([0.299, 0.587, 0.114], dtype=np.float64)


@dataclass(frozen=True, eq=False)
class RasterImage:
    """Boolean foreground grid, shape ``(height, width)``.

    Attributes
    ----------
    pixels : np.ndarray
        ``bool`` array, ``True`` for foreground (pen) pixels.  Not
        writeable.
    """

    pixels: np.ndarray

    def __post_init__(self) -> None:
        if self.pixels.ndim != 2:
            raise ValueError(
                f"RasterImage expects a 2-D array, got shape {self.pixels.shape}"
            )
        if self.pixels.dtype != np.bool_ or self.pixels.flags.writeable:
            frozen = np.array(self.pixels, dtype=bool, copy=True)
            frozen.setflags(write=False)
            object.__setattr__(self, "pixels", frozen)

    @classmethod
    def from_rows(cls, rows: list[str], mark: str = "#") -> RasterImage:
        """Build a grid from text rows (``mark`` = foreground).

        Convenient for small fixtures::

            RasterImage.from_rows(["..##", ".##."])
        """
        grid = np.array([[ch == mark for ch in row] for row in rows], dtype=bool)
        return cls(grid)

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def foreground_count(self) -> int:
        return int(self.pixels.sum())

    def is_foreground(self, x: int, y: int) -> bool:
        """True for an in-bounds foreground pixel; False out of bounds."""
        if 0 <= x < self.width and 0 <= y < self.height:
            return bool(self.pixels[y, x])
        return False


# ---------------------------------------------------------------------------
# Decoding helpers
# ---------------------------------------------------------------------------


def _open_image(source: ImageSource) -> Image.Image:
    """Open *source* with Pillow, raising ``InputError`` on failure."""
    if isinstance(source, Image.Image):
        return source
    try:
        if isinstance(source, bytes):
            img = Image.open(io.BytesIO(source))
        else:
            img = Image.open(Path(source))
        img.load()
    except FileNotFoundError as exc:
        raise InputError(f"Image not found: {source}") from exc
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        label = "<bytes>" if isinstance(source, bytes) else str(source)
        raise InputError(f"Cannot decode image {label}: {exc}") from exc
    return img


def _flatten_to_rgb(img: Image.Image) -> Image.Image:
    """Composite any alpha channel onto white and return an RGB image."""
    if img.mode in ("RGBA", "LA") or (
        img.mode == "P" and "transparency" in img.info
    ):
        rgba = img.convert("RGBA")
        background = Image.new("RGBA", rgba.size, (255, 255, 255, 255))
        return Image.alpha_composite(background, rgba).convert("RGB")
    return img.convert("RGB")


def _target_size(width: int, height: int, max_dim: int) -> tuple[int, int]:
    """Shrink ``(width, height)`` so the long side is at most *max_dim*."""
    if max(width, height) <= max_dim:
        return width, height
    if width >= height:
        return max_dim, max(1, int(height * max_dim / width))
    return max(1, int(width * max_dim / height)), max_dim


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def threshold_image(
    img: Image.Image, threshold: int, invert: bool = False,
) -> np.ndarray:
    """Return the boolean foreground mask of an RGB(A) image."""
    rgb = np.asarray(_flatten_to_rgb(img), dtype=np.float64)
    gray = rgb @ _LUMA
    if invert:
        gray = 255.0 - gray
    return gray < threshold


def load_raster(
    source: ImageSource,
    settings: ConversionSettings,
    max_dimension_px: int = 100,
) -> RasterImage:
    """Decode, downscale and threshold an image.

    Parameters
    ----------
    source : str | Path | bytes | PIL.Image.Image
        File path, encoded bytes or an already decoded image.
    settings : ConversionSettings
        Provides ``threshold`` and ``invert_image``.
    max_dimension_px : int
        Long-side pixel limit applied before thresholding.

    Returns
    -------
    RasterImage
        Read-only foreground grid.

    Raises
    ------
    InputError
        If the image cannot be decoded or is empty.
    """
    img = _open_image(source)
    width, height = img.size
    if width < 1 or height < 1:
        raise InputError(f"Image has no pixels ({width}x{height})")

    new_size = _target_size(width, height, max_dimension_px)
    if new_size != (width, height):
        img = _flatten_to_rgb(img).resize(new_size, Image.Resampling.LANCZOS)
        logger.debug(
            "Resized image %dx%d -> %dx%d", width, height, *new_size,
        )

    mask = threshold_image(img, settings.threshold, settings.invert_image)
    raster = RasterImage(mask)
    logger.info(
        "Raster %dx%d, %d foreground pixels (threshold=%d, invert=%s)",
        raster.width,
        raster.height,
        raster.foreground_count,
        settings.threshold,
        settings.invert_image,
    )
    return raster
