"""Image thresholding and raster conversion strategies."""

from drawbot.raster.modes import ModeGenerator, available_modes, generate, get_generator
from drawbot.raster.source import RasterImage, load_raster

__all__ = [
    "ModeGenerator",
    "RasterImage",
    "available_modes",
    "generate",
    "get_generator",
    "load_raster",
]
