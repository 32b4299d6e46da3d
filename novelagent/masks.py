"""Binary inpainting masks built from rectangular regions.

White pixels mark areas the inpaint action regenerates; black pixels are
preserved. Regions are never clipped up front: anything painted outside the
canvas simply falls off the array.
"""

from __future__ import annotations

import math
from typing import Iterable, NamedTuple

import numpy as np
from PIL import Image, ImageOps

from novelagent.errors import InvalidRegionError

WHITE = 255
BLACK = 0


class RegionRect(NamedTuple):
    x: int
    y: int
    width: int
    height: int

    def as_flag(self) -> str:
        return f"{self.x},{self.y},{self.width},{self.height}"


def validate_region(rect: Iterable[float]) -> RegionRect:
    """Check a rectangle and return it with integer coordinates."""
    values = tuple(rect)
    if len(values) != 4:
        raise InvalidRegionError(f"Invalid region {values}: expected 4 values")
    for name, value in zip(RegionRect._fields, values):
        if isinstance(value, float):
            if not math.isfinite(value):
                raise InvalidRegionError(f"Invalid region {values}: {name} is not a number")
            if not value.is_integer():
                raise InvalidRegionError(f"Invalid region {values}: {name} must be a whole pixel")
        if value < 0:
            raise InvalidRegionError(f"Invalid region {values}: {name} must be non-negative")
    return RegionRect(*(int(value) for value in values))


def parse_region(text: str) -> RegionRect:
    """Parse an ``x,y,w,h`` flag value."""
    parts = [part.strip() for part in text.split(",")]
    if len(parts) != 4:
        raise InvalidRegionError(
            f'Invalid region: "{text}" - expected x,y,w,h (e.g. 100,200,300,400)'
        )
    try:
        values = [float(part) for part in parts]
    except ValueError as exc:
        raise InvalidRegionError(
            f'Invalid region: "{text}" - expected x,y,w,h (e.g. 100,200,300,400)'
        ) from exc
    for value in values:
        if not math.isfinite(value) or not value.is_integer():
            raise InvalidRegionError(f'Invalid region: "{text}" - coordinates must be whole pixels')
    return validate_region(values)


def invert_mask(mask: Image.Image) -> Image.Image:
    """Swap regenerate and preserve areas."""
    return ImageOps.invert(mask.convert("RGB"))


def synthesize(
    canvas_width: int,
    canvas_height: int,
    rects: Iterable[RegionRect],
    invert: bool = False,
) -> Image.Image:
    """Render ``rects`` as white on black; no regions means regenerate everything."""
    if canvas_width <= 0 or canvas_height <= 0:
        raise InvalidRegionError(f"Mask canvas must be positive, got {canvas_width}x{canvas_height}")
    rects = [validate_region(rect) for rect in rects]

    if not rects:
        pixels = np.full((canvas_height, canvas_width, 3), WHITE, dtype=np.uint8)
    else:
        pixels = np.full((canvas_height, canvas_width, 3), BLACK, dtype=np.uint8)
        for rect in rects:
            pixels[rect.y : rect.y + rect.height, rect.x : rect.x + rect.width] = WHITE

    mask = Image.fromarray(pixels)
    if invert:
        mask = invert_mask(mask)
    return mask
