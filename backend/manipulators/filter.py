"""
Filter: ?filt=greyscale | sepia | negate
"""

from typing import Mapping

from PIL import ImageOps

from image_proxy.raster import RasterBuffer

from .base import Manipulator
from .helpers import merge_alpha, split_alpha

FILTERS = ("greyscale", "sepia", "negate")

SEPIA_MATRIX = (
    0.393, 0.769, 0.189, 0,
    0.349, 0.686, 0.168, 0,
    0.272, 0.534, 0.131, 0,
)


class Filter(Manipulator):
    name = "filt"

    def applies(self, raster: RasterBuffer, params: Mapping[str, str]) -> bool:
        return params.get("filt") in FILTERS

    def run(self, raster: RasterBuffer, params: Mapping[str, str]) -> None:
        color, alpha = split_alpha(raster.image)
        effect = params["filt"]

        if effect == "greyscale":
            color = color.convert("L")
        elif effect == "sepia":
            color = color.convert("RGB").convert("RGB", SEPIA_MATRIX)
        else:
            color = ImageOps.invert(color)

        raster.replace(merge_alpha(color, alpha))
