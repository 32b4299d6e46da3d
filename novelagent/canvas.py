"""Fit arbitrary images onto the fixed canvases the reference protocol accepts.

Reference and vibe images must arrive at exactly one of three geometries. The
closest canvas by aspect ratio is chosen, the image is scaled to fit inside it
without cropping, and the remainder is padded with opaque black.
"""

from __future__ import annotations

import asyncio
import base64
import io
import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import NamedTuple

from PIL import Image

from novelagent.errors import ImageReadError

logger = logging.getLogger("novelagent.canvas")

_DECODE_ERRORS = (OSError, SyntaxError, Image.DecompressionBombError)


class Canvas(NamedTuple):
    label: str
    width: int
    height: int

    @property
    def aspect(self) -> float:
        return self.width / self.height


# Declaration order breaks aspect-ratio ties.
CANVASES: tuple[Canvas, ...] = (
    Canvas("portrait", 1024, 1536),
    Canvas("square", 1472, 1472),
    Canvas("landscape", 1536, 1024),
)


@dataclass(frozen=True)
class NormalizedImage:
    """PNG bytes at exactly ``canvas`` dimensions."""

    data: bytes
    canvas: Canvas

    @property
    def width(self) -> int:
        return self.canvas.width

    @property
    def height(self) -> int:
        return self.canvas.height

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")


@dataclass(frozen=True)
class SourceImage:
    """Unmodified file bytes plus the decoded dimensions."""

    path: Path
    data: bytes
    width: int
    height: int
    format: str

    @property
    def mime_type(self) -> str:
        return Image.MIME.get(self.format, "image/png")

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")


def select_canvas(width: int, height: int) -> Canvas:
    """Pick the canvas whose aspect ratio is closest to ``width / height``."""
    if width <= 0 or height <= 0:
        raise ValueError(f"Image dimensions must be positive, got {width}x{height}")
    aspect = width / height
    best = CANVASES[0]
    best_diff = math.inf
    for canvas in CANVASES:
        diff = abs(aspect - canvas.aspect)
        if diff < best_diff:
            best_diff = diff
            best = canvas
    return best


def _flatten_alpha(image: Image.Image) -> Image.Image:
    if image.mode in ("RGBA", "LA", "PA") or "transparency" in image.info:
        rgba = image.convert("RGBA")
        background = Image.new("RGBA", rgba.size, (0, 0, 0, 255))
        return Image.alpha_composite(background, rgba).convert("RGB")
    return image.convert("RGB")


def contain_size(width: int, height: int, canvas: Canvas) -> tuple[int, int]:
    """Largest size with the same aspect that fits inside ``canvas``, never below 1px."""
    scale = min(canvas.width / width, canvas.height / height)
    new_w = min(canvas.width, max(1, int(round(width * scale))))
    new_h = min(canvas.height, max(1, int(round(height * scale))))
    return new_w, new_h


def fit_to_canvas(image: Image.Image, canvas: Canvas) -> Image.Image:
    """Contain-fit ``image`` inside ``canvas`` and pad with black."""
    flat = _flatten_alpha(image)
    new_w, new_h = contain_size(*flat.size, canvas)
    resized = flat.resize((new_w, new_h), resample=Image.Resampling.LANCZOS)
    padded = Image.new("RGB", (canvas.width, canvas.height), (0, 0, 0))
    padded.paste(resized, ((canvas.width - new_w) // 2, (canvas.height - new_h) // 2))
    return padded


def encode_png(image: Image.Image) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def normalize_file(path: Path | str) -> NormalizedImage:
    """Synchronous form of :func:`normalize`."""
    path = Path(path)
    try:
        with Image.open(path) as image:
            # Header only; pixels are decoded by the resize below.
            canvas = select_canvas(*image.size)
            fitted = fit_to_canvas(image, canvas)
    except _DECODE_ERRORS as exc:
        raise ImageReadError(path, str(exc)) from exc

    data = encode_png(fitted)
    logger.info(
        "Reference: %s -> %dx%d (%s, %d KB)",
        path.name,
        canvas.width,
        canvas.height,
        canvas.label,
        len(data) // 1024,
    )
    return NormalizedImage(data=data, canvas=canvas)


async def normalize(path: Path | str) -> NormalizedImage:
    return await asyncio.to_thread(normalize_file, path)


def load_source_file(path: Path | str) -> SourceImage:
    """Read an image as-is and record its decoded dimensions."""
    path = Path(path)
    try:
        data = path.read_bytes()
        with Image.open(io.BytesIO(data)) as image:
            width, height = image.size
            fmt = image.format or "PNG"
    except _DECODE_ERRORS as exc:
        raise ImageReadError(path, str(exc)) from exc
    return SourceImage(path=path, data=data, width=width, height=height, format=fmt)


async def load_source(path: Path | str) -> SourceImage:
    return await asyncio.to_thread(load_source_file, path)


def read_dimensions(path: Path | str) -> tuple[int, int]:
    path = Path(path)
    try:
        with Image.open(path) as image:
            return image.size
    except _DECODE_ERRORS as exc:
        raise ImageReadError(path, str(exc)) from exc
