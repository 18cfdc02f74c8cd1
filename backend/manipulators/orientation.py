"""
Orientation: apply EXIF orientation (?or=auto, the default) or an explicit
clockwise angle rounded to 0/90/180/270.
"""

import math
from typing import Mapping, Optional

from PIL import Image

from image_proxy.raster import RasterBuffer

from .base import Manipulator
from .helpers import get_int

Transpose = Image.Transpose

# EXIF orientation tag -> transpose that displays the image upright
EXIF_TRANSPOSE = {
    2: Transpose.FLIP_LEFT_RIGHT,
    3: Transpose.ROTATE_180,
    4: Transpose.FLIP_TOP_BOTTOM,
    5: Transpose.TRANSPOSE,
    6: Transpose.ROTATE_270,
    7: Transpose.TRANSVERSE,
    8: Transpose.ROTATE_90,
}

# Clockwise angle -> transpose (Pillow's ROTATE_* are counter-clockwise)
ANGLE_TRANSPOSE = {
    90: Transpose.ROTATE_270,
    180: Transpose.ROTATE_180,
    270: Transpose.ROTATE_90,
}

SWAPS_AXES = {Transpose.TRANSPOSE, Transpose.TRANSVERSE, Transpose.ROTATE_90, Transpose.ROTATE_270}


def normalize_angle(angle: int) -> int:
    """Map any angle to the nearest of 0, 90, 180, 270 (-450 -> 270)."""
    angle %= 360
    return (int(math.floor(angle / 90.0 + 0.5)) * 90) % 360


def get_angle(params: Mapping[str, str]) -> Optional[int]:
    """Explicit angle from ?or=, or None for 'auto' (also when missing/invalid)."""
    if params.get("or", "auto") == "auto":
        return None
    angle = get_int(params, "or")
    if angle is None:
        return None
    return normalize_angle(angle)


def pending_transpose(raster: RasterBuffer, params: Mapping[str, str]) -> Optional[Transpose]:
    """The transpose the Orientation stage is going to apply, if any."""
    angle = get_angle(params)
    if angle is None:
        return EXIF_TRANSPOSE.get(raster.exif_orientation)
    return ANGLE_TRANSPOSE.get(angle)


class Orientation(Manipulator):
    """Rotate/flip the image upright."""

    name = "or"

    def applies(self, raster: RasterBuffer, params: Mapping[str, str]) -> bool:
        return pending_transpose(raster, params) is not None

    def run(self, raster: RasterBuffer, params: Mapping[str, str]) -> None:
        method = pending_transpose(raster, params)
        raster.replace(raster.image.transpose(method))
        raster.exif_orientation = 1
