"""
Encoder

Serializes the final RasterBuffer to the requested output format.
"""

import base64
import logging
from dataclasses import dataclass
from io import BytesIO
from typing import Any, Dict, Mapping

from .errors import TransformError
from .raster import RasterBuffer

logger = logging.getLogger(__name__)

# ?output= value -> (Pillow format, media type)
OUTPUT_FORMATS = {
    "jpg": ("JPEG", "image/jpeg"),
    "png": ("PNG", "image/png"),
    "gif": ("GIF", "image/gif"),
    "tiff": ("TIFF", "image/tiff"),
    "webp": ("WEBP", "image/webp"),
}

# Formats that can't carry an alpha channel
OPAQUE_FORMATS = {"jpg"}

DEFAULT_QUALITY = 85


@dataclass
class EncodedImage:
    """Encoded output ready to be sent to the client."""
    data: bytes
    media_type: str
    extension: str

    def to_data_url(self) -> str:
        """Wrap the bytes as a data: URL for inline embedding."""
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.media_type};base64,{encoded}"


def resolve_output_format(params: Mapping[str, str], raster: RasterBuffer) -> str:
    """
    Pick the output format: explicit ?output=, else the origin format when
    it can be written, else png for transparent images and jpg otherwise.
    """
    requested = params.get("output", "").lower()
    if requested == "jpeg":
        requested = "jpg"
    if requested in OUTPUT_FORMATS:
        return requested
    if raster.source_format in OUTPUT_FORMATS:
        return raster.source_format
    return "png" if raster.has_alpha else "jpg"


def get_quality(params: Mapping[str, str], default: int = DEFAULT_QUALITY) -> int:
    """Quality from ?q= (0-100), falling back to the default."""
    try:
        quality = int(params.get("q", ""))
    except ValueError:
        return default
    if 0 <= quality <= 100:
        return quality
    return default


def encode(raster: RasterBuffer, params: Mapping[str, str], default_quality: int = DEFAULT_QUALITY) -> EncodedImage:
    """
    Encode the raster according to ?output=, ?q= and ?il.

    Raises:
        TransformError: If the codec fails
    """
    output = resolve_output_format(params, raster)
    pil_format, media_type = OUTPUT_FORMATS[output]
    interlace = "il" in params
    quality = get_quality(params, default_quality)

    image = raster.image
    save_kwargs: Dict[str, Any] = {"format": pil_format}

    if output == "jpg":
        if image.mode == "RGBA":
            image = image.convert("RGB")
        elif image.mode == "LA":
            image = image.convert("L")
        save_kwargs["quality"] = quality
        save_kwargs["progressive"] = interlace
        save_kwargs["optimize"] = interlace
    elif output == "webp":
        save_kwargs["quality"] = quality
        save_kwargs["method"] = 4  # Compression method (0-6)
    elif output == "gif":
        save_kwargs["interlace"] = interlace
    elif output == "png":
        # Pillow has no interlaced PNG writer; ?il only affects jpg and gif
        save_kwargs["compress_level"] = 6
    elif output == "tiff":
        save_kwargs["compression"] = "tiff_deflate"

    buffer = BytesIO()
    try:
        image.save(buffer, **save_kwargs)
    except (OSError, ValueError, KeyError) as e:
        logger.warning(f"[Encoder] Failed to encode {output}: {e}")
        raise TransformError(f"Unable to encode image as {output}: {e}")

    return EncodedImage(data=buffer.getvalue(), media_type=media_type, extension=output)
