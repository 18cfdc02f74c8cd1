"""
Shape: mask the image to a polygon/ellipse template (?shape=) and
optionally trim the transparent margins (?strim).

Shapes are inscribed in the largest centered square, except 'ellipse' which
fills the whole image.
"""

import math
from typing import List, Mapping, Optional, Tuple

from PIL import Image, ImageChops, ImageDraw

from image_proxy.raster import RasterBuffer

from .base import Manipulator
from .helpers import merge_alpha, split_alpha

Point = Tuple[float, float]

# name -> (corners, start angle in degrees, inner radius ratio or None)
POLYGONS = {
    "triangle": (3, -90.0, None),
    "triangle-180": (3, 90.0, None),
    "pentagon": (5, -90.0, None),
    "pentagon-180": (5, 90.0, None),
    "hexagon": (6, 0.0, None),
    "square": (4, -90.0, None),
    "star": (5, -90.0, 0.382),
}

SHAPES = ("circle", "ellipse", "heart") + tuple(POLYGONS)


def polygon_points(
    center: Point,
    radius: float,
    corners: int,
    start_angle: float,
    inner_ratio: Optional[float] = None,
) -> List[Point]:
    """Vertices of a regular polygon (or star when inner_ratio is given)."""
    cx, cy = center
    steps = corners * 2 if inner_ratio else corners
    points = []
    for i in range(steps):
        angle = math.radians(start_angle + 360.0 * i / steps)
        r = radius * inner_ratio if inner_ratio and i % 2 else radius
        points.append((cx + r * math.cos(angle), cy + r * math.sin(angle)))
    return points


def heart_points(center: Point, radius: float, steps: int = 120) -> List[Point]:
    """Parametric heart scaled to fit a square of side 2 * radius."""
    raw = []
    for i in range(steps):
        t = 2 * math.pi * i / steps
        x = 16 * math.sin(t) ** 3
        y = -(13 * math.cos(t) - 5 * math.cos(2 * t) - 2 * math.cos(3 * t) - math.cos(4 * t))
        raw.append((x, y))

    min_x = min(x for x, _ in raw)
    max_x = max(x for x, _ in raw)
    min_y = min(y for _, y in raw)
    max_y = max(y for _, y in raw)
    scale = 2 * radius / max(max_x - min_x, max_y - min_y)
    offset_x = center[0] - (min_x + max_x) / 2 * scale
    offset_y = center[1] - (min_y + max_y) / 2 * scale
    return [(offset_x + x * scale, offset_y + y * scale) for x, y in raw]


def shape_mask(shape: str, size: Tuple[int, int]) -> Image.Image:
    """L-mode mask (255 inside the shape) for an image of `size`."""
    width, height = size
    mask = Image.new("L", size, 0)
    draw = ImageDraw.Draw(mask)

    center = (width / 2.0, height / 2.0)
    radius = min(width, height) / 2.0

    if shape == "ellipse":
        draw.ellipse((0, 0, width - 1, height - 1), fill=255)
    elif shape == "circle":
        draw.ellipse(
            (center[0] - radius, center[1] - radius, center[0] + radius - 1, center[1] + radius - 1),
            fill=255,
        )
    elif shape == "heart":
        draw.polygon(heart_points(center, radius), fill=255)
    else:
        corners, start_angle, inner_ratio = POLYGONS[shape]
        draw.polygon(polygon_points(center, radius, corners, start_angle, inner_ratio), fill=255)
    return mask


class Shape(Manipulator):
    name = "shape"

    def applies(self, raster: RasterBuffer, params: Mapping[str, str]) -> bool:
        return params.get("shape") in SHAPES

    def run(self, raster: RasterBuffer, params: Mapping[str, str]) -> None:
        mask = shape_mask(params["shape"], raster.size)

        color, alpha = split_alpha(raster.image)
        alpha = mask if alpha is None else ImageChops.multiply(alpha, mask)
        image = merge_alpha(color, alpha)

        if "strim" in params:
            box = mask.getbbox()
            if box and box != (0, 0, image.width, image.height):
                image = image.crop(box)

        raster.replace(image)
