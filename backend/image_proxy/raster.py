"""
Raster Buffer

Decoded image plus the metadata the pipeline needs. One buffer per request;
manipulators replace `image` in place when they apply.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
from PIL import Image, UnidentifiedImageError

from .errors import ImageNotReadableError, ImageTooLargeError, InvalidImageError

logger = logging.getLogger(__name__)

# EXIF tag holding the orientation (1-8)
EXIF_ORIENTATION = 0x0112

# Pillow format name -> short format name used by ?output=
PIL_FORMATS = {
    "JPEG": "jpg",
    "MPO": "jpg",
    "PNG": "png",
    "GIF": "gif",
    "TIFF": "tiff",
    "WEBP": "webp",
    "BMP": "bmp",
    "ICO": "ico",
}

_MODE_CHANNELS = {"L": 1, "LA": 2, "RGB": 3, "RGBA": 4}


@dataclass
class RasterBuffer:
    """A decoded image owned by exactly one request."""
    image: Image.Image
    source_format: str = "jpg"
    exif_orientation: int = 1
    page: int = 0
    page_count: int = 1
    interpretation: str = "RGB"     # Mode of the image as decoded

    @property
    def width(self) -> int:
        return self.image.width

    @property
    def height(self) -> int:
        return self.image.height

    @property
    def size(self) -> Tuple[int, int]:
        return self.image.size

    @property
    def channels(self) -> int:
        return _MODE_CHANNELS[self.image.mode]

    @property
    def has_alpha(self) -> bool:
        return self.image.mode in ("LA", "RGBA")

    def replace(self, image: Image.Image) -> None:
        """Swap in the result of a transform, normalizing its mode."""
        self.image = normalize_mode(image)


def normalize_mode(image: Image.Image) -> Image.Image:
    """Reduce any Pillow mode to one of L, LA, RGB, RGBA."""
    mode = image.mode
    if mode in _MODE_CHANNELS:
        return image
    if mode == "P":
        return image.convert("RGBA" if "transparency" in image.info else "RGB")
    if mode in ("PA", "RGBa", "La"):
        return image.convert("RGBA" if mode != "La" else "LA")
    if mode == "1":
        return image.convert("L")
    if mode in ("I", "I;16", "I;16B", "I;16L", "F"):
        return _to_8bit_grey(image)
    if "A" in image.getbands():
        return image.convert("RGBA")
    return image.convert("RGB")


def _to_8bit_grey(image: Image.Image) -> Image.Image:
    """
    Rescale a high bit-depth greyscale image to L.

    Integer modes hold 16-bit samples (Pillow opens 16-bit PNG/TIFF as I;16
    or I), so the top byte is kept. Float data in 0..1 is scaled by 255,
    anything else is stretched over its own min/max.
    """
    data = np.asarray(image)
    if image.mode == "F":
        low, high = float(data.min()), float(data.max())
        if low >= 0.0 and high <= 1.0:
            scaled = data * 255.0
        elif high > low:
            scaled = (data - low) * (255.0 / (high - low))
        else:
            scaled = np.zeros_like(data)
        return Image.fromarray(np.clip(np.rint(scaled), 0, 255).astype(np.uint8))
    samples = np.clip(data.astype(np.int64), 0, 65535) >> 8
    return Image.fromarray(samples.astype(np.uint8))


def decode(path: str, page: int = 0, max_pixels: Optional[int] = None) -> RasterBuffer:
    """
    Decode a fetched file into a RasterBuffer.

    Args:
        path: Local file written by the origin fetcher
        page: Page/frame index for multi-page formats
        max_pixels: Ceiling for width * height

    Returns:
        RasterBuffer

    Raises:
        InvalidImageError: Bytes are not a supported image
        ImageTooLargeError: Pixel count above the ceiling
        ImageNotReadableError: Header is fine but pixels can't be read
    """
    try:
        image = Image.open(path)
    except Image.DecompressionBombError as e:
        raise ImageTooLargeError(str(e))
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise InvalidImageError("Image not supported", error=str(e))

    width, height = image.size
    if width <= 0 or height <= 0:
        raise InvalidImageError("Image has no pixels")
    if max_pixels and width * height > max_pixels:
        raise ImageTooLargeError(
            f"Image is too large for processing. Width x height should be less than {max_pixels} pixels."
        )

    page_count = getattr(image, "n_frames", 1)
    if page < 0 or page >= page_count:
        raise ImageNotReadableError(f"Page {page} out of range (pages: {page_count})")

    source_format = PIL_FORMATS.get(image.format or "", (image.format or "jpg").lower())

    try:
        if page:
            image.seek(page)
        exif_orientation = image.getexif().get(EXIF_ORIENTATION, 1)
        interpretation = image.mode
        image.load()
    except (OSError, ValueError, EOFError, SyntaxError) as e:
        raise ImageNotReadableError(f"Image not readable: {e}")

    if exif_orientation not in range(1, 9):
        exif_orientation = 1

    # Detach from the file handle so the fetch artifact can be removed
    decoded = normalize_mode(image)
    if decoded is image:
        decoded = image.copy()
    image.close()

    return RasterBuffer(
        image=decoded,
        source_format=source_format,
        exif_orientation=exif_orientation,
        page=page,
        page_count=page_count,
        interpretation=interpretation,
    )
