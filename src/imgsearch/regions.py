"""Named image regions and their pixel rectangles."""

from enum import Enum
from typing import NamedTuple

from .errors import ConfigurationError


class Region(str, Enum):
    """Rectangular sub-area of an image that features are computed on."""

    WHOLE = "whole"
    TOP = "top"
    BOTTOM = "bottom"
    CENTER = "center"

    def __str__(self) -> str:
        return self.value


class Rect(NamedTuple):
    """Axis-aligned integer rectangle (x, y, width, height)."""

    x: int
    y: int
    width: int
    height: int


# "up" is the name used in database filenames such as fv_rgbhist3d_up.csv
_ALIASES = {"up": Region.TOP}


def parse_region(name: str) -> Region:
    """Parse a region name.

    Args:
        name: One of whole, top (or up), bottom, center. Case-insensitive.

    Returns:
        The matching Region.

    Raises:
        ConfigurationError: If the name is not a known region.
    """
    key = name.strip().lower()
    if key in _ALIASES:
        return _ALIASES[key]
    try:
        return Region(key)
    except ValueError:
        valid = ", ".join(r.value for r in Region)
        msg = f"Unknown region '{name}' (expected one of: {valid})"
        raise ConfigurationError(msg) from None


def region_rect(region: Region, width: int, height: int) -> Rect:
    """Map a region to a pixel rectangle inside a width x height image.

    TOP and BOTTOM split at height // 2 so that together they cover every
    row, including the extra one of an odd-height image.

    Args:
        region: Region to select.
        width: Image width in pixels.
        height: Image height in pixels.

    Returns:
        Rectangle contained in [0, width) x [0, height).
    """
    if region is Region.TOP:
        return Rect(0, 0, width, height // 2)
    if region is Region.BOTTOM:
        return Rect(0, height // 2, width, height - height // 2)
    if region is Region.CENTER:
        return Rect(0, height // 4, width, height // 2)
    return Rect(0, 0, width, height)
