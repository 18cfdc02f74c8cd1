"""
Letterbox: pad the fitted image to exactly ?w= x ?h= with ?bg=.
"""

from typing import Mapping

from PIL import Image

from image_proxy.raster import RasterBuffer

from .base import Manipulator
from .color import Color, get_background
from .helpers import get_dimensions, get_fit

TRANSPARENT = Color(0, 0, 0, 0)
BLACK = Color(0, 0, 0)


class Letterbox(Manipulator):
    name = "letterbox"

    def applies(self, raster: RasterBuffer, params: Mapping[str, str]) -> bool:
        if get_fit(params) != "letterbox":
            return False
        width, height = get_dimensions(params)
        return bool(width and height) and (width, height) != raster.size

    def run(self, raster: RasterBuffer, params: Mapping[str, str]) -> None:
        width, height = get_dimensions(params)
        color = get_background(params) or (TRANSPARENT if raster.has_alpha else BLACK)

        transparent = raster.has_alpha or not color.is_opaque
        mode = "RGBA" if transparent else "RGB"
        canvas = Image.new(mode, (width, height), color.rgba if transparent else color.rgb)

        image = raster.image.convert(mode)
        left = (width - image.width) // 2
        top = (height - image.height) // 2
        if transparent:
            canvas.alpha_composite(image, (max(left, 0), max(top, 0)))
        else:
            canvas.paste(image, (left, top))
        raster.replace(canvas)
