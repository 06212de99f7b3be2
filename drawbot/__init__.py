"""
DrawBot Control Package.

Toolpath synthesis and command streaming for a pen-plotting robot driven
over a line-oriented serial link (GRBL-style ``ok`` acknowledgements).

Subpackages:
    raster: Image thresholding and raster conversion strategies
    vector: Constrained SVG extraction
    kinematics: Two-link (SCARA) inverse / forward kinematics
    job_ir: Toolpath command vocabulary
    gcode: Toolpath assembly, G-code rendering and statistics
    hardware: Transport, scheduler and the command stream controller
    configs: Machine configuration and conversion settings
"""

__all__ = [
    "raster",
    "vector",
    "kinematics",
    "job_ir",
    "gcode",
    "hardware",
    "configs",
]

__version__ = "0.1.0"
