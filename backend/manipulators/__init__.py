"""
Manipulators Module

Pixel transformation stages for the image proxy.

Features:
- Fixed stage order: trim, thumbnail, orientation, crop, letterbox, shape,
  brightness, contrast, gamma, sharpen, filter, blur, background
- Smart crop positioning (entropy, attention)
- Stages only run when requested by the query string
"""

from .base import Manipulator
from .color import Color, get_background
from .pipeline import ManipulationPipeline, build_pipeline

__all__ = [
    "Manipulator",
    "ManipulationPipeline",
    "build_pipeline",
    "Color",
    "get_background",
]
