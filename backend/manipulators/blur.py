"""
Blur: ?blur=<radius> gaussian blur (0.3-100); blur=0 is a no-op, bare or
other out-of-range values give a mild 3x3 box blur.
"""

from typing import Mapping, Optional

from PIL import ImageFilter

from image_proxy.raster import RasterBuffer

from .base import Manipulator
from .helpers import get_float


def get_blur(params: Mapping[str, str]) -> Optional[float]:
    """Gaussian radius, or None for the mild blur."""
    radius = get_float(params, "blur")
    if radius is None or radius < 0.3 or radius > 100:
        return None
    return radius


class Blur(Manipulator):
    name = "blur"

    def applies(self, raster: RasterBuffer, params: Mapping[str, str]) -> bool:
        return "blur" in params and get_float(params, "blur") != 0

    def run(self, raster: RasterBuffer, params: Mapping[str, str]) -> None:
        radius = get_blur(params)
        if radius is None:
            image_filter = ImageFilter.BoxBlur(1)
        else:
            image_filter = ImageFilter.GaussianBlur(radius)
        raster.replace(raster.image.filter(image_filter))
