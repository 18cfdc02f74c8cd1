"""
Thumbnail: resize to ?w= / ?h= (times ?dpr=) according to the fit mode ?t=.

Fit modes:
- fit         fit inside the box, never upsample (default)
- fitup       fit inside the box, upsample when smaller
- square      cover the box and crop the excess, upsample when smaller
- squaredown  cover the box and crop the excess, never upsample
- absolute    stretch to exactly the box, aspect ratio not kept
- letterbox   like fit; the Letterbox stage pads to the box afterwards

Square crops are positioned with ?a= (named position, crop-X-Y focal point,
entropy or attention).
"""

import logging
import re
from typing import Mapping, Optional, Tuple, Union

from PIL import Image

from image_proxy.config import DEFAULT_MAX_IMAGE_PIXELS
from image_proxy.errors import ImageTooLargeError
from image_proxy.raster import RasterBuffer

from .base import Manipulator
from .helpers import get_dimensions, get_fit
from .orientation import SWAPS_AXES, Transpose, pending_transpose
from .smartcrop import attention_crop, entropy_crop

logger = logging.getLogger(__name__)

# Named crop positions as (x, y) fractions
POSITIONS = {
    "center": (0.5, 0.5),
    "centre": (0.5, 0.5),
    "top": (0.5, 0.0),
    "t": (0.5, 0.0),
    "bottom": (0.5, 1.0),
    "b": (0.5, 1.0),
    "left": (0.0, 0.5),
    "l": (0.0, 0.5),
    "right": (1.0, 0.5),
    "r": (1.0, 0.5),
    "top-left": (0.0, 0.0),
    "top-right": (1.0, 0.0),
    "bottom-left": (0.0, 1.0),
    "bottom-right": (1.0, 1.0),
}

SMART_CROPS = {"entropy": entropy_crop, "attention": attention_crop}

_FOCAL_RE = re.compile(r"^crop-(-?\d+)-(-?\d+)$")

# How a focal point in the upright image maps back onto the stored pixels
_FOCUS_TO_SOURCE = {
    Transpose.FLIP_LEFT_RIGHT: lambda x, y: (1 - x, y),
    Transpose.FLIP_TOP_BOTTOM: lambda x, y: (x, 1 - y),
    Transpose.ROTATE_180: lambda x, y: (1 - x, 1 - y),
    Transpose.ROTATE_270: lambda x, y: (y, 1 - x),
    Transpose.ROTATE_90: lambda x, y: (1 - y, x),
    Transpose.TRANSPOSE: lambda x, y: (y, x),
    Transpose.TRANSVERSE: lambda x, y: (1 - y, 1 - x),
}

Alignment = Union[str, Tuple[float, float]]


def get_alignment(params: Mapping[str, str]) -> Alignment:
    """
    Parse ?a=.

    Returns:
        'entropy' / 'attention', or an (x, y) focal point in 0..1
    """
    value = params.get("a", "center")
    if value in SMART_CROPS:
        return value
    if value in POSITIONS:
        return POSITIONS[value]

    match = _FOCAL_RE.match(value)
    if match:
        x, y = (int(group) for group in match.groups())
        if 0 <= x <= 100 and 0 <= y <= 100:
            return x / 100.0, y / 100.0
    return POSITIONS["center"]


def focal_offset(length: int, target: int, focus: float) -> int:
    """Offset of a `target`-long window centered on `focus`, clamped inside `length`."""
    offset = int(round(focus * length - target / 2.0))
    return max(0, min(offset, length - target))


def compute_size(
    source: Tuple[int, int],
    target: Tuple[Optional[int], Optional[int]],
    fit: str,
) -> Tuple[int, int]:
    """
    Size of the resized (not yet cropped) image.

    Args:
        source: (width, height) of the image
        target: requested (width, height), either may be None
        fit: fit mode

    Returns:
        (width, height)
    """
    src_width, src_height = source
    width, height = target

    if fit == "absolute" and width and height:
        return width, height

    ratios = []
    if width:
        ratios.append(width / src_width)
    if height:
        ratios.append(height / src_height)

    cover = fit in ("square", "squaredown") and len(ratios) == 2
    scale = max(ratios) if cover else min(ratios)

    if fit in ("fit", "squaredown", "letterbox"):
        scale = min(scale, 1.0)

    return max(1, int(round(src_width * scale))), max(1, int(round(src_height * scale)))


class Thumbnail(Manipulator):
    """Resize (and for square modes, crop) to the requested dimensions."""

    name = "thumbnail"

    def __init__(self, max_image_size: int = DEFAULT_MAX_IMAGE_PIXELS):
        self.max_image_size = max_image_size

    def applies(self, raster: RasterBuffer, params: Mapping[str, str]) -> bool:
        width, height = get_dimensions(params)
        return width is not None or height is not None

    def run(self, raster: RasterBuffer, params: Mapping[str, str]) -> None:
        fit = get_fit(params)
        width, height = get_dimensions(params)

        # Orientation runs later, so work in the stored (unrotated) axes
        method = pending_transpose(raster, params)
        if method in SWAPS_AXES:
            width, height = height, width

        new_width, new_height = compute_size(raster.size, (width, height), fit)

        crop_to: Optional[Tuple[int, int]] = None
        if fit in ("square", "squaredown") and width and height:
            crop_to = (min(width, new_width), min(height, new_height))

        if new_width * new_height > self.max_image_size:
            raise ImageTooLargeError(
                f"Requested image is too large. Width x height should be less than {self.max_image_size} pixels."
            )

        if (new_width, new_height) != raster.size:
            logger.debug(f"[Pipeline] Resize {raster.size} -> {(new_width, new_height)} ({fit})")
            raster.replace(raster.image.resize((new_width, new_height), Image.Resampling.LANCZOS))

        if crop_to and crop_to != raster.size:
            self._crop(raster, crop_to, get_alignment(params), method)

    @staticmethod
    def _crop(
        raster: RasterBuffer,
        size: Tuple[int, int],
        alignment: Alignment,
        method: Optional[Transpose],
    ) -> None:
        width, height = size
        if isinstance(alignment, str):
            left, top = SMART_CROPS[alignment](raster.image, width, height)
        else:
            focus_x, focus_y = alignment
            if method in _FOCUS_TO_SOURCE:
                focus_x, focus_y = _FOCUS_TO_SOURCE[method](focus_x, focus_y)
            left = focal_offset(raster.width, width, focus_x)
            top = focal_offset(raster.height, height, focus_y)

        raster.replace(raster.image.crop((left, top, left + width, top + height)))
