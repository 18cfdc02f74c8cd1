"""
Background: composite transparent images against ?bg=.

Runs whenever the image has an alpha channel and either ?bg= is a valid
color or the output format can't store alpha (then white is used).
"""

from typing import Mapping

from PIL import Image

from image_proxy.encoder import OPAQUE_FORMATS, resolve_output_format
from image_proxy.raster import RasterBuffer

from .base import Manipulator
from .color import Color, get_background
from .helpers import split_alpha

WHITE = Color(255, 255, 255)


class Background(Manipulator):
    name = "bg"

    def applies(self, raster: RasterBuffer, params: Mapping[str, str]) -> bool:
        if not raster.has_alpha:
            return False
        opaque_output = resolve_output_format(params, raster) in OPAQUE_FORMATS
        return opaque_output or get_background(params) is not None

    def run(self, raster: RasterBuffer, params: Mapping[str, str]) -> None:
        color = get_background(params) or WHITE
        opaque_output = resolve_output_format(params, raster) in OPAQUE_FORMATS

        if color.is_opaque or opaque_output:
            # Flatten: the result has no alpha channel
            image, alpha = split_alpha(raster.image)
            canvas = Image.new("RGB", raster.size, color.rgb)
            canvas.paste(image.convert("RGB"), (0, 0), alpha)
        else:
            canvas = Image.new("RGBA", raster.size, color.rgba)
            canvas.alpha_composite(raster.image.convert("RGBA"))

        raster.replace(canvas)
