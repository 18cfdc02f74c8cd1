"""
Color parsing for ?bg=

Accepts the CSS color names known to Pillow and hexadecimal RGB/ARGB:
- 3 digit RGB:    CCC       -> (0xCC, 0xCC, 0xCC, 0xFF)
- 4 digit ARGB:   5CCC      -> (0xCC, 0xCC, 0xCC, 0x55)
- 6 digit RGB:    CCCCCC
- 8 digit ARGB:   55CCCCCC
A leading '#' is optional.
"""

import re
from dataclasses import dataclass
from typing import Optional, Tuple

from PIL import ImageColor

_HEX_RE = re.compile(r"^#?([0-9a-fA-F]{3,4}|[0-9a-fA-F]{6}|[0-9a-fA-F]{8})$")


@dataclass(frozen=True)
class Color:
    red: int
    green: int
    blue: int
    alpha: int = 255

    @property
    def rgb(self) -> Tuple[int, int, int]:
        return self.red, self.green, self.blue

    @property
    def rgba(self) -> Tuple[int, int, int, int]:
        return self.red, self.green, self.blue, self.alpha

    @property
    def is_opaque(self) -> bool:
        return self.alpha == 255

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["Color"]:
        """Parse a name or hex string; None if it isn't a color."""
        if not value:
            return None

        match = _HEX_RE.match(value)
        if match:
            return cls._from_hex(match.group(1))

        name = value.strip().lower()
        if name in ImageColor.colormap:
            red, green, blue = ImageColor.getrgb(name)[:3]
            return cls(red, green, blue)
        return None

    @classmethod
    def _from_hex(cls, digits: str) -> "Color":
        if len(digits) <= 4:
            digits = "".join(digit * 2 for digit in digits)
        values = [int(digits[i:i + 2], 16) for i in range(0, len(digits), 2)]
        if len(values) == 4:
            alpha, red, green, blue = values
            return cls(red, green, blue, alpha)
        red, green, blue = values
        return cls(red, green, blue)


def get_background(params) -> Optional[Color]:
    """Color from ?bg=, or None."""
    return Color.parse(params.get("bg"))
