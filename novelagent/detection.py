"""Region detection through a vision model.

The vision model answers with boxes on a fixed 1000-unit grid, ordered
``[y_min, x_min, y_max, x_max]``. ``translate`` turns those into pixel-space
``RegionRect`` values that ``novelagent.masks.synthesize`` can paint.

Detection is advisory: an unparseable answer means "nothing found", and a
single malformed entry never spoils the rest of the batch.
"""

from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Sequence

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from novelagent.canvas import SourceImage
from novelagent.config import ServiceConfig
from novelagent.constants import DEFAULT_DETECT_TARGET, DETECTION_GRID
from novelagent.errors import RemoteServiceError
from novelagent.masks import RegionRect

logger = logging.getLogger("novelagent.detection")

BODY_EXCERPT_CHARS = 500

_FENCE_RE = re.compile(r"```(?:json)?[ \t]*\n?")

DETECTION_INSTRUCTION = """Detect {target} in this anime image. Return ONLY a JSON array of objects, each with:
- "label": descriptive name (e.g. "right_hand", "face", "left_arm")
- "box_2d": [y_min, x_min, y_max, x_max] normalized to 0-1000
- "issue": optional string describing any anatomical issue (e.g. "extra fingers", "deformed")

Only include items you can actually see. Return valid JSON array, nothing else."""


@dataclass(frozen=True)
class Detection:
    label: str
    box: Any
    issue: Optional[str] = None

    @classmethod
    def from_json(cls, entry: dict[str, Any]) -> Detection:
        box = entry.get("box_2d", entry.get("box"))
        issue = entry.get("issue")
        return cls(
            label=str(entry.get("label") or "region"),
            box=box,
            issue=str(issue) if issue else None,
        )


def parse_detections(text: str) -> list[Detection]:
    """Parse a vision model reply; anything malformed yields no detections."""
    cleaned = _FENCE_RE.sub("", text).strip()
    try:
        payload = json.loads(cleaned)
    except json.JSONDecodeError:
        logger.error("Failed to parse vision response as JSON:\n%s", text)
        return []

    if not isinstance(payload, list):
        logger.warning("Vision response is not a JSON array; treating as no detections")
        return []

    detections: list[Detection] = []
    for entry in payload:
        if not isinstance(entry, dict):
            logger.warning("Skipping detection that is not an object: %r", entry)
            continue
        detections.append(Detection.from_json(entry))
    return detections


def round_half_away(value: float) -> int:
    """Nearest integer, ties away from zero."""
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


def box_values(box: Any) -> Optional[tuple[float, float, float, float]]:
    """Return the four box coordinates, or None when the box is malformed."""
    if not isinstance(box, Sequence) or isinstance(box, (str, bytes)) or len(box) != 4:
        return None
    for value in box:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        if not math.isfinite(value) or not 0 <= value <= DETECTION_GRID:
            return None
    y_min, x_min, y_max, x_max = (float(value) for value in box)
    if y_max < y_min or x_max < x_min:
        return None
    return y_min, x_min, y_max, x_max


def translate_pairs(
    detections: Iterable[Detection],
    canvas_width: int,
    canvas_height: int,
) -> list[tuple[Detection, RegionRect]]:
    """Like :func:`translate`, keeping each rectangle next to its detection."""
    pairs: list[tuple[Detection, RegionRect]] = []
    for index, detection in enumerate(detections):
        values = box_values(detection.box)
        if values is None:
            logger.warning(
                "Dropping detection %d (%s): expected [y_min, x_min, y_max, x_max] in 0-%d, got %r",
                index,
                detection.label,
                DETECTION_GRID,
                detection.box,
            )
            continue
        y_min, x_min, y_max, x_max = values
        rect = RegionRect(
            x=round_half_away(x_min / DETECTION_GRID * canvas_width),
            y=round_half_away(y_min / DETECTION_GRID * canvas_height),
            width=round_half_away((x_max - x_min) / DETECTION_GRID * canvas_width),
            height=round_half_away((y_max - y_min) / DETECTION_GRID * canvas_height),
        )
        pairs.append((detection, rect))
    return pairs


def translate(
    detections: Iterable[Detection],
    canvas_width: int,
    canvas_height: int,
) -> list[RegionRect]:
    """Convert normalized detections to pixel rectangles, in input order."""
    return [rect for _, rect in translate_pairs(detections, canvas_width, canvas_height)]


def expand_region(rect: RegionRect, margin: int, canvas_width: int, canvas_height: int) -> RegionRect:
    """Grow ``rect`` by ``margin`` pixels on every side, clamped to the canvas."""
    if margin < 0:
        raise ValueError(f"margin must be non-negative, got {margin}")
    left = max(0, rect.x - margin)
    top = max(0, rect.y - margin)
    right = min(canvas_width, rect.x + rect.width + margin)
    bottom = min(canvas_height, rect.y + rect.height + margin)
    return RegionRect(left, top, max(0, right - left), max(0, bottom - top))


def build_instruction(target: str) -> str:
    return DETECTION_INSTRUCTION.format(target=target)


class VisionDetector:
    """Ask a Gemini model where ``target`` appears in an image."""

    def __init__(self, api_key: str, model: str, client: Optional[Any] = None):
        self.model = model
        self._client = client if client is not None else genai.Client(api_key=api_key)

    @classmethod
    def from_config(cls, service: ServiceConfig, client: Optional[Any] = None) -> VisionDetector:
        return cls(service.require_vision_api_key(), service.vision_model, client=client)

    async def detect(self, image: SourceImage, target: Optional[str] = None) -> list[Detection]:
        target = target or DEFAULT_DETECT_TARGET
        contents = [
            types.Part.from_bytes(data=image.data, mime_type=image.mime_type),
            types.Part.from_text(text=build_instruction(target)),
        ]
        logger.debug("Requesting detections from %s for: %s", self.model, target)
        try:
            response = await self._client.aio.models.generate_content(
                model=self.model,
                contents=contents,
                config=types.GenerateContentConfig(response_mime_type="application/json"),
            )
        except genai_errors.APIError as exc:
            detail = str(exc.message or exc)
            raise RemoteServiceError("Gemini API", exc.code, detail[:BODY_EXCERPT_CHARS]) from exc

        text = response.text
        if not text:
            logger.error("No response from the vision model.")
            return []
        return parse_detections(text)
