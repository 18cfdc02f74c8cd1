"""
Tone adjustments: brightness (?bri=), contrast (?con=) and gamma (?gam=).

All three are lookup tables on the color bands; alpha is left alone.
Brightness and contrast ignore values outside -100..100. Gamma falls back
to 2.2 when bare or outside 1..3.
"""

from typing import Mapping, Optional

import numpy as np

from image_proxy.raster import RasterBuffer

from .base import Manipulator
from .helpers import apply_curve, get_float, get_int

DEFAULT_GAMMA = 2.2


def _get_level(params: Mapping[str, str], key: str) -> Optional[int]:
    """Value in -100..100 (0 means no change), or None."""
    value = get_int(params, key)
    if value is None or value == 0 or value < -100 or value > 100:
        return None
    return value


def get_gamma(params: Mapping[str, str]) -> float:
    gamma = get_float(params, "gam")
    if gamma is None or gamma < 1.0 or gamma > 3.0:
        return DEFAULT_GAMMA
    return gamma


def sigmoid_curve(levels: np.ndarray, contrast: int) -> np.ndarray:
    """
    Sigmoidal contrast around mid-grey. Positive values steepen the midtones,
    negative values apply the inverse curve and flatten them.
    """
    strength = abs(contrast) / 10.0
    x = levels / 255.0
    low = 1.0 / (1.0 + np.exp(strength * 0.5))
    high = 1.0 / (1.0 + np.exp(-strength * 0.5))

    if contrast > 0:
        y = (1.0 / (1.0 + np.exp(-strength * (x - 0.5))) - low) / (high - low)
    else:
        scaled = np.clip(x * (high - low) + low, 1e-6, 1 - 1e-6)
        y = 0.5 - np.log(1.0 / scaled - 1.0) / strength
    return np.clip(y, 0.0, 1.0) * 255.0


class Brightness(Manipulator):
    name = "bri"

    def applies(self, raster: RasterBuffer, params: Mapping[str, str]) -> bool:
        return _get_level(params, "bri") is not None

    def run(self, raster: RasterBuffer, params: Mapping[str, str]) -> None:
        shift = _get_level(params, "bri") * 255.0 / 100.0
        raster.replace(apply_curve(raster.image, lambda levels: levels + shift))


class Contrast(Manipulator):
    name = "con"

    def applies(self, raster: RasterBuffer, params: Mapping[str, str]) -> bool:
        return _get_level(params, "con") is not None

    def run(self, raster: RasterBuffer, params: Mapping[str, str]) -> None:
        contrast = _get_level(params, "con")
        raster.replace(apply_curve(raster.image, lambda levels: sigmoid_curve(levels, contrast)))


class Gamma(Manipulator):
    name = "gam"

    def run(self, raster: RasterBuffer, params: Mapping[str, str]) -> None:
        exponent = 1.0 / get_gamma(params)
        raster.replace(apply_curve(raster.image, lambda levels: 255.0 * (levels / 255.0) ** exponent))
