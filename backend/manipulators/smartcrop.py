"""
Smart crop

Content-aware choice of a crop window (used by ?t=square / squaredown):
- entropy:   repeatedly drop the edge strip with lower Shannon entropy
- attention: score pixels by luminance edges, saturation and skin tones and
             take the window with the highest total score
"""

from typing import Tuple

import numpy as np
from PIL import Image

# Strip width removed per step by the entropy strategy
_ENTROPY_STEP = 8


def _entropy(values: np.ndarray) -> float:
    """Shannon entropy (bits) of a uint8 luminance array."""
    if values.size == 0:
        return 0.0
    histogram = np.bincount(values.ravel(), minlength=256).astype(np.float64)
    probabilities = histogram[histogram > 0] / values.size
    return float(-(probabilities * np.log2(probabilities)).sum())


def entropy_crop(image: Image.Image, width: int, height: int) -> Tuple[int, int]:
    """
    Returns:
        (left, top) of the width x height window with the most detail
    """
    grey = np.asarray(image.convert("L"), dtype=np.uint8)
    top, left = 0, 0
    bottom, right = grey.shape

    while right - left > width:
        step = min(_ENTROPY_STEP, right - left - width)
        if _entropy(grey[top:bottom, left:left + step]) < _entropy(grey[top:bottom, right - step:right]):
            left += step
        else:
            right -= step

    while bottom - top > height:
        step = min(_ENTROPY_STEP, bottom - top - height)
        if _entropy(grey[top:top + step, left:right]) < _entropy(grey[bottom - step:bottom, left:right]):
            top += step
        else:
            bottom -= step

    return left, top


def _edge_score(luminance: np.ndarray) -> np.ndarray:
    # Laplacian magnitude via shifted copies, normalized to 0..1
    padded = np.pad(luminance, 1, mode="edge")
    laplacian = (
        padded[:-2, 1:-1] + padded[2:, 1:-1] + padded[1:-1, :-2] + padded[1:-1, 2:]
        - 4 * padded[1:-1, 1:-1]
    )
    return np.minimum(np.abs(laplacian) / 255.0, 1.0)


def _skin_score(rgb: np.ndarray) -> np.ndarray:
    red, green, blue = rgb[..., 0], rgb[..., 1], rgb[..., 2]
    spread = rgb.max(axis=2) - rgb.min(axis=2)
    skin = (
        (red > 95) & (green > 40) & (blue > 20)
        & (spread > 15) & (np.abs(red - green) > 15)
        & (red > green) & (red > blue)
    )
    return skin.astype(np.float32)


def attention_map(image: Image.Image) -> np.ndarray:
    """Per-pixel interest score."""
    rgb = np.asarray(image.convert("RGB"), dtype=np.float32)
    luminance = np.asarray(image.convert("L"), dtype=np.float32)
    saturation = np.asarray(image.convert("RGB").convert("HSV"), dtype=np.float32)[..., 1] / 255.0
    return _edge_score(luminance) + 0.5 * saturation + 1.5 * _skin_score(rgb)


def attention_crop(image: Image.Image, width: int, height: int) -> Tuple[int, int]:
    """
    Returns:
        (left, top) of the width x height window with the highest attention score
    """
    scores = attention_map(image).astype(np.float64)
    rows, cols = scores.shape
    width, height = min(width, cols), min(height, rows)

    # Summed-area table with a zero row/column in front
    table = np.zeros((rows + 1, cols + 1), dtype=np.float64)
    table[1:, 1:] = scores.cumsum(axis=0).cumsum(axis=1)

    sums = (
        table[height:, width:]
        - table[:rows - height + 1, width:]
        - table[height:, :cols - width + 1]
        + table[:rows - height + 1, :cols - width + 1]
    )
    top, left = np.unravel_index(int(np.argmax(sums)), sums.shape)
    return int(left), int(top)
