"""
Shared helpers for manipulators: parameter coercion, alpha handling and
lookup-table application.
"""

from typing import Callable, Mapping, Optional, Tuple

import numpy as np
from PIL import Image

FIT_MODES = ("fit", "fitup", "square", "squaredown", "absolute", "letterbox")


# ============================================
# Parameter coercion
# ============================================

def get_int(params: Mapping[str, str], key: str) -> Optional[int]:
    """Integer value of `key`, or None if missing/not an integer."""
    value = params.get(key)
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        try:
            number = float(value)
        except ValueError:
            return None
        if not np.isfinite(number):
            return None
        return int(number)


def get_float(params: Mapping[str, str], key: str) -> Optional[float]:
    """Float value of `key`, or None if missing/not a finite number."""
    value = params.get(key)
    if value is None:
        return None
    try:
        number = float(value)
    except ValueError:
        return None
    return number if np.isfinite(number) else None


def get_fit(params: Mapping[str, str]) -> str:
    fit = params.get("t", "fit")
    return fit if fit in FIT_MODES else "fit"


def get_dpr(params: Mapping[str, str]) -> float:
    """Device pixel ratio from ?dpr= (1-8, default 1)."""
    dpr = get_float(params, "dpr")
    if dpr is None or dpr < 1 or dpr > 8:
        return 1.0
    return dpr


def get_dimensions(params: Mapping[str, str]) -> Tuple[Optional[int], Optional[int]]:
    """
    Requested output width/height in device pixels (?w=, ?h= times ?dpr=).

    Returns:
        (width, height), each None when not given or not positive
    """
    dpr = get_dpr(params)
    dimensions = []
    for key in ("w", "h"):
        value = get_int(params, key)
        dimensions.append(int(round(value * dpr)) if value is not None and value > 0 else None)
    return dimensions[0], dimensions[1]


# ============================================
# Image helpers
# ============================================

def split_alpha(image: Image.Image) -> Tuple[Image.Image, Optional[Image.Image]]:
    """Separate color bands from the alpha band (if any)."""
    if image.mode == "RGBA":
        return image.convert("RGB"), image.getchannel("A")
    if image.mode == "LA":
        return image.convert("L"), image.getchannel("A")
    return image, None


def merge_alpha(color: Image.Image, alpha: Optional[Image.Image]) -> Image.Image:
    """Inverse of split_alpha."""
    if alpha is None:
        return color
    merged = color.convert("RGBA" if color.mode == "RGB" else "LA")
    merged.putalpha(alpha)
    return merged


def apply_curve(image: Image.Image, curve: Callable[[np.ndarray], np.ndarray]) -> Image.Image:
    """
    Map every color band through `curve` (0-255 in, 0-255 out) via a lookup
    table, leaving alpha untouched.
    """
    levels = np.arange(256, dtype=np.float64)
    lut = np.clip(np.rint(curve(levels)), 0, 255).astype(np.uint8).tolist()
    identity = list(range(256))

    bands = image.getbands()
    table = []
    for band in bands:
        table.extend(identity if band == "A" else lut)
    return image.point(table)


def to_array(image: Image.Image) -> np.ndarray:
    return np.asarray(image, dtype=np.float32)


def from_array(array: np.ndarray) -> Image.Image:
    """uint8 image from a float array; mode follows the band count."""
    return Image.fromarray(np.clip(np.rint(array), 0, 255).astype(np.uint8))
