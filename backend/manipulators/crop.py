"""
Crop: cut an explicit ?crop=width,height,x,y rectangle after resizing.
Rectangles reaching outside the image are clamped to it.
"""

from typing import Mapping, Optional, Tuple

from image_proxy.raster import RasterBuffer

from .base import Manipulator


def get_crop(params: Mapping[str, str]) -> Optional[Tuple[int, int, int, int]]:
    """Parse ?crop= into (width, height, x, y), or None if malformed."""
    parts = params.get("crop", "").split(",")
    if len(parts) != 4:
        return None
    try:
        width, height, x, y = (int(part) for part in parts)
    except ValueError:
        return None
    if width <= 0 or height <= 0:
        return None
    return width, height, x, y


def clamp_crop(
    crop: Tuple[int, int, int, int],
    size: Tuple[int, int],
) -> Optional[Tuple[int, int, int, int]]:
    """
    Fit the crop rectangle inside an image of `size`.

    Returns:
        (left, top, right, bottom) box, or None if nothing is left
    """
    width, height, x, y = crop
    image_width, image_height = size

    left = max(0, min(x, image_width - 1))
    top = max(0, min(y, image_height - 1))
    right = min(image_width, left + width)
    bottom = min(image_height, top + height)

    if right <= left or bottom <= top:
        return None
    return left, top, right, bottom


class Crop(Manipulator):
    name = "crop"

    def run(self, raster: RasterBuffer, params: Mapping[str, str]) -> None:
        crop = get_crop(params)
        if crop is None:
            return
        box = clamp_crop(crop, raster.size)
        if box is None or box == (0, 0, raster.width, raster.height):
            return
        raster.replace(raster.image.crop(box))
