"""Action handlers: one coroutine per CLI action.

Each handler checks the user's inputs, prepares images, builds the payload,
performs at most one image-service request and writes the result to the
output directory as ``<prefix>_<epoch-ms>.png``.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from rich.console import Console
from rich.markup import escape

from novelagent import canvas, masks
from novelagent.config import RequestOptions, ServiceConfig
from novelagent.constants import DEFAULT_DETECT_TARGET
from novelagent.detection import VisionDetector, expand_region, translate_pairs
from novelagent.errors import UsageError
from novelagent.payloads import (
    RequestPayload,
    build_director_payload,
    build_enhance_payload,
    build_generate_payload,
    build_inpaint_payload,
    build_vibe_payload,
)
from novelagent.prompt_checks import log_prompt_warnings
from novelagent.transport import ImageServiceClient

logger = logging.getLogger("novelagent.actions")


@dataclass
class ActionContext:
    """Collaborators shared by the action handlers for one invocation."""

    service: ServiceConfig
    console: Console = field(default_factory=Console)
    client: Optional[ImageServiceClient] = None
    detector: Optional[VisionDetector] = None
    rng: Optional[random.Random] = None

    def image_client(self) -> ImageServiceClient:
        self.service.require_api_key()
        if self.client is None:
            self.client = ImageServiceClient(self.service)
        return self.client

    def vision_detector(self) -> VisionDetector:
        if self.detector is None:
            self.detector = VisionDetector.from_config(self.service)
        return self.detector


def output_path(out_dir: Path, prefix: str) -> Path:
    return out_dir / f"{prefix}_{time.time_ns() // 1_000_000}.png"


def _write_file(out_dir: Path, prefix: str, data: bytes) -> Path:
    out_dir.mkdir(parents=True, exist_ok=True)
    path = output_path(out_dir, prefix)
    path.write_bytes(data)
    return path


async def write_output(out_dir: Path, prefix: str, data: bytes) -> Path:
    return await asyncio.to_thread(_write_file, out_dir, prefix, data)


async def _execute_and_save(
    ctx: ActionContext,
    payload: RequestPayload,
    out_dir: Path,
    prefix: str,
) -> Path:
    image = await ctx.image_client().execute(payload)
    path = await write_output(out_dir, prefix, image)
    ctx.console.print(f"Saved: [cyan]{path}[/cyan] ({len(image) // 1024} KB)")
    return path


def _require_prompt(options: RequestOptions) -> None:
    if not options.prompt:
        raise UsageError("--prompt is required. Use --help for usage.")


async def run_generate(options: RequestOptions, ctx: ActionContext) -> Path:
    _require_prompt(options)
    ctx.service.require_api_key()
    log_prompt_warnings(options.prompt, has_reference=options.ref is not None)

    reference = None
    if options.ref is not None:
        ctx.console.print("Preparing reference image...")
        reference = await canvas.normalize(options.ref)

    payload = build_generate_payload(options, reference, model=ctx.service.model, rng=ctx.rng)
    params = payload.parameters
    ctx.console.print(
        f"Generating: {params['width']}x{params['height']}, seed={payload.seed}, "
        f"scale={options.scale}, steps={options.steps}"
    )
    if reference is not None:
        ctx.console.print(
            f"  Ref: strength={options.strength}, fidelity={options.fidelity}, info={options.info_extracted}"
        )
    if params["sm"] or params["sm_dyn"]:
        ctx.console.print(f"  SMEA: {'DYN' if params['sm_dyn'] else 'standard'}")

    return await _execute_and_save(ctx, payload, options.out, "gen")


async def run_vibe(options: RequestOptions, ctx: ActionContext) -> Path:
    _require_prompt(options)
    if not options.vibes:
        raise UsageError("at least one --vibe is required for vibe mode.")
    ctx.service.require_api_key()
    log_prompt_warnings(options.prompt)

    ctx.console.print(f"Preparing {len(options.vibes)} vibe reference(s)...")
    vibes = [await canvas.normalize(path) for path in options.vibes]

    payload = build_vibe_payload(options, vibes, model=ctx.service.model, rng=ctx.rng)
    params = payload.parameters
    strengths = ", ".join(str(value) for value in params["reference_strength_multiple"])
    ctx.console.print(
        f"Generating: {params['width']}x{params['height']}, seed={payload.seed}, "
        f"scale={options.scale}, steps={options.steps}"
    )
    ctx.console.print(f"  Vibes: {len(vibes)}, strengths=[{strengths}]")

    return await _execute_and_save(ctx, payload, options.out, "vibe")


async def run_enhance(options: RequestOptions, ctx: ActionContext) -> Path:
    if options.image is None:
        raise UsageError("--image is required for enhance mode.")
    ctx.service.require_api_key()
    log_prompt_warnings(options.prompt)

    ctx.console.print(f"Enhancing: {options.image}...")
    source = await canvas.load_source(options.image)
    payload = build_enhance_payload(options, source, model=ctx.service.model, rng=ctx.rng)
    params = payload.parameters
    ctx.console.print(
        f"  {params['width']}x{params['height']}, strength={params['strength']}, "
        f"noise={params['noise']}, seed={payload.seed}"
    )

    return await _execute_and_save(ctx, payload, options.out, "enhanced")


async def run_inpaint(options: RequestOptions, ctx: ActionContext) -> Path:
    if options.image is None or options.mask is None:
        raise UsageError("--image and --mask are required for inpaint mode.")
    _require_prompt(options)
    ctx.service.require_api_key()
    log_prompt_warnings(options.prompt)

    ctx.console.print(f"Inpainting: {options.image} with mask {options.mask}...")
    source = await canvas.load_source(options.image)
    mask = await canvas.load_source(options.mask)
    if (mask.width, mask.height) != (source.width, source.height):
        logger.warning(
            "Mask is %dx%d but the image is %dx%d; the service may reject the request",
            mask.width,
            mask.height,
            source.width,
            source.height,
        )
    if (options.width, options.height) != (source.width, source.height):
        logger.warning(
            "Requesting %dx%d for a %dx%d image; pass --width/--height to match the source",
            options.width,
            options.height,
            source.width,
            source.height,
        )

    payload = build_inpaint_payload(options, source, mask, model=ctx.service.model, rng=ctx.rng)
    ctx.console.print(
        f"  {options.width}x{options.height}, strength={options.inpaint_strength}, seed={payload.seed}"
    )

    return await _execute_and_save(ctx, payload, options.out, "inpaint")


async def run_director(options: RequestOptions, ctx: ActionContext) -> Path:
    if options.director_tool is None:
        raise UsageError("specify a director tool.")
    if options.image is None:
        raise UsageError("--image is required for director tools.")
    ctx.service.require_api_key()

    ctx.console.print(f"Processing: {options.image} with {options.director_tool}...")
    source = await canvas.load_source(options.image)
    payload = build_director_payload(options, source)

    return await _execute_and_save(ctx, payload, options.out, options.director_tool)


async def _mask_dimensions(options: RequestOptions, ctx: ActionContext) -> tuple[int, int]:
    if options.image is None:
        return options.width, options.height
    width, height = await asyncio.to_thread(canvas.read_dimensions, options.image)
    ctx.console.print(f"  Source image: {width}x{height}")
    return width, height


async def save_mask(
    ctx: ActionContext,
    width: int,
    height: int,
    rects: list[masks.RegionRect],
    invert: bool,
    out_dir: Path,
) -> Path:
    image = masks.synthesize(width, height, rects, invert=invert)
    data = canvas.encode_png(image)
    path = await write_output(out_dir, "mask", data)
    ctx.console.print(f"Saved: [cyan]{path}[/cyan] ({width}x{height})")
    return path


async def run_mask(options: RequestOptions, ctx: ActionContext) -> Path:
    width, height = await _mask_dimensions(options, ctx)
    rects = [masks.parse_region(text) for text in options.regions]

    if rects:
        for rect in rects:
            ctx.console.print(f"  Region: {rect.x},{rect.y} {rect.width}x{rect.height}")
    else:
        ctx.console.print("  Full mask (no regions specified - everything will be inpainted)")
    if options.invert_mask:
        ctx.console.print("  Inverted mask")

    return await save_mask(ctx, width, height, rects, options.invert_mask, options.out)


def _mask_command(image: Path, rects: list[masks.RegionRect], out_dir: Path) -> str:
    regions = " ".join(f'--region "{rect.as_flag()}"' for rect in rects)
    return f'novelagent mask --image "{image}" {regions} --out {out_dir}'


async def run_analyze(options: RequestOptions, ctx: ActionContext) -> list[masks.RegionRect]:
    if options.image is None:
        raise UsageError("--image is required for analyze.")
    detector = ctx.vision_detector()

    source = await canvas.load_source(options.image)
    ctx.console.print(f"  Image: {options.image} ({source.width}x{source.height})")
    ctx.console.print(f"  Detecting: {options.detect or DEFAULT_DETECT_TARGET}")

    detections = await detector.detect(source, options.detect)
    found: list[tuple[str, masks.RegionRect]] = []
    for detection, rect in translate_pairs(detections, source.width, source.height):
        if options.margin:
            rect = expand_region(rect, options.margin, source.width, source.height)
        found.append((detection.label, rect))
        issue = f"  [yellow]! {escape(detection.issue)}[/yellow]" if detection.issue else ""
        ctx.console.print(
            f"  {escape(detection.label):<20} --region \"{rect.as_flag()}\"  "
            f"({rect.width}x{rect.height} px){issue}",
            highlight=False,
        )

    if not found:
        ctx.console.print("  No detections found.")
        return []

    rects = [rect for _, rect in found]
    ctx.console.print(f"\n  Found {len(found)} region(s). Ready-to-use commands:\n")
    for label, rect in found:
        ctx.console.print(f"  # Fix {label}:", markup=False)
        ctx.console.print(f"  {_mask_command(options.image, [rect], options.out)}", markup=False)
    if len(rects) > 1:
        ctx.console.print("\n  # Fix all detected regions:", markup=False)
        ctx.console.print(f"  {_mask_command(options.image, rects, options.out)}", markup=False)

    if options.save_mask:
        await save_mask(ctx, source.width, source.height, rects, options.invert_mask, options.out)
    return rects


ACTION_HANDLERS: dict[str, Callable[[RequestOptions, ActionContext], Awaitable[Any]]] = {
    "generate": run_generate,
    "vibe": run_vibe,
    "enhance": run_enhance,
    "inpaint": run_inpaint,
    "director": run_director,
    "mask": run_mask,
    "analyze": run_analyze,
}


async def run_action(options: RequestOptions, ctx: ActionContext) -> Any:
    """Dispatch ``options.action`` to its handler."""
    handler = ACTION_HANDLERS[options.action]
    logger.debug("Running action %s", options.action)
    return await handler(options, ctx)
