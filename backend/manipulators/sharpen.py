"""
Sharpen: unsharp mask with separate strengths for flat and jagged areas.

?sharp=f,j,r
- f: sharpening applied to flat areas (default 1.0, 0-10000)
- j: sharpening applied to jagged areas (default 2.0, 0-10000)
- r: gaussian mask radius in pixels (optional, 0.5-1000; default 0.5)
Out-of-range arguments fall back to their defaults.
"""

from typing import Mapping, Tuple

import numpy as np
from PIL import ImageFilter

from image_proxy.raster import RasterBuffer

from .base import Manipulator
from .helpers import from_array, merge_alpha, split_alpha, to_array

DEFAULT_FLAT = 1.0
DEFAULT_JAGGED = 2.0
DEFAULT_RADIUS = 0.5

# Differences up to this many levels count as "flat"
FLAT_THRESHOLD = 2.0


def _argument(parts, index: int, default: float, low: float, high: float) -> float:
    try:
        value = float(parts[index])
    except (IndexError, ValueError):
        return default
    return value if low <= value <= high else default


def get_sharpen(params: Mapping[str, str]) -> Tuple[float, float, float]:
    """(flat, jagged, radius) from ?sharp=."""
    parts = params.get("sharp", "").split(",")
    flat = _argument(parts, 0, DEFAULT_FLAT, 0.0, 10000.0)
    jagged = _argument(parts, 1, DEFAULT_JAGGED, 0.0, 10000.0)
    radius = _argument(parts, 2, DEFAULT_RADIUS, 0.5, 1000.0)
    return flat, jagged, radius


class Sharpen(Manipulator):
    name = "sharp"

    def run(self, raster: RasterBuffer, params: Mapping[str, str]) -> None:
        flat, jagged, radius = get_sharpen(params)
        color, alpha = split_alpha(raster.image)

        original = to_array(color)
        blurred = to_array(color.filter(ImageFilter.GaussianBlur(radius)))
        detail = original - blurred
        boost = np.where(np.abs(detail) <= FLAT_THRESHOLD, flat, jagged)

        sharpened = from_array(original + boost * detail)
        raster.replace(merge_alpha(sharpened, alpha))
