"""
Trim: remove uniform borders before any sizing decision.
"""

import logging
from typing import Mapping

import numpy as np

from image_proxy.raster import RasterBuffer

from .base import Manipulator
from .helpers import get_int

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE = 10


def get_tolerance(params: Mapping[str, str]) -> int:
    """?trim= tolerance (1-254); bare or invalid values give the default."""
    tolerance = get_int(params, "trim")
    if tolerance is None or tolerance < 1 or tolerance > 254:
        return DEFAULT_TOLERANCE
    return tolerance


class Trim(Manipulator):
    """Crop away edges whose pixels are within `trim` of the top-left pixel."""

    name = "trim"

    def run(self, raster: RasterBuffer, params: Mapping[str, str]) -> None:
        tolerance = get_tolerance(params)
        pixels = np.asarray(raster.image, dtype=np.int16)
        if pixels.ndim == 2:
            pixels = pixels[:, :, np.newaxis]

        reference = pixels[0, 0]
        distance = np.abs(pixels - reference).max(axis=2)
        content = distance > tolerance

        rows = np.flatnonzero(content.any(axis=1))
        cols = np.flatnonzero(content.any(axis=0))
        if rows.size == 0 or cols.size == 0:
            # Whole image is one color; nothing sensible to keep
            return

        box = (int(cols[0]), int(rows[0]), int(cols[-1]) + 1, int(rows[-1]) + 1)
        if box == (0, 0, raster.width, raster.height):
            return

        logger.debug(f"[Pipeline] Trim {raster.size} -> {box}")
        raster.replace(raster.image.crop(box))
