from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from novelagent.actions import ActionContext, run_action
from novelagent.config import RequestOptions, ServiceConfig
from novelagent.constants import (
    DEFAULT_CFG_RESCALE,
    DEFAULT_DEFRY,
    DEFAULT_EMOTION_LEVEL,
    DEFAULT_HEIGHT,
    DEFAULT_INPAINT_STRENGTH,
    DEFAULT_NOISE_SCHEDULE,
    DEFAULT_OUT_DIR,
    DEFAULT_REF_CAPTION,
    DEFAULT_REF_FIDELITY,
    DEFAULT_REF_INFO_EXTRACTED,
    DEFAULT_REF_STRENGTH,
    DEFAULT_SAMPLER,
    DEFAULT_SCALE,
    DEFAULT_STEPS,
    DEFAULT_WIDTH,
    DIRECTOR_TOOLS,
)
from novelagent.errors import NovelAgentError

app = typer.Typer(
    help="NovelAI image generation, editing and inpainting from the command line",
    no_args_is_help=True,
    pretty_exceptions_show_locals=False,
    rich_markup_mode="rich",
    add_completion=False,
)
console = Console()

logger = logging.getLogger("novelagent.cli")


def _describe(name: str) -> str:
    return RequestOptions.describe(name)


def _options():
    return {
        "prompt": typer.Option(None, "--prompt", "-p", help=_describe("prompt")),
        "negative": typer.Option(None, "--negative", "-n", help=_describe("negative")),
        "out": typer.Option(DEFAULT_OUT_DIR, "--out", "-o", help=_describe("out")),
        "image": typer.Option(None, "--image", "-i", help=_describe("image")),
        # Precise Reference
        "ref": typer.Option(None, "--ref", help=_describe("ref")),
        "ref_caption": typer.Option(DEFAULT_REF_CAPTION, "--ref-caption", help=_describe("ref_caption")),
        "ref_strength": typer.Option(DEFAULT_REF_STRENGTH, "--strength", help=_describe("strength")),
        "fidelity": typer.Option(DEFAULT_REF_FIDELITY, "--fidelity", help=_describe("fidelity")),
        "info_extracted": typer.Option(
            DEFAULT_REF_INFO_EXTRACTED, "--info-extracted", help=_describe("info_extracted")
        ),
        # Vibe Transfer
        "vibe": typer.Option(None, "--vibe", help=_describe("vibes")),
        "vibe_strength": typer.Option(None, "--vibe-strength", help=_describe("vibe_strengths")),
        "vibe_info": typer.Option(None, "--vibe-info", help=_describe("vibe_infos")),
        "normalize_vibes": typer.Option(
            True, "--normalize-vibes/--no-normalize-vibes", help=_describe("normalize_vibes")
        ),
        # Enhance
        "magnitude": typer.Option(None, "--magnitude", help=_describe("magnitude")),
        "enhance_strength": typer.Option(None, "--strength", help=_describe("enhance_strength")),
        "enhance_noise": typer.Option(None, "--noise", help=_describe("enhance_noise")),
        "upscale": typer.Option(1.0, "--upscale", help=_describe("upscale")),
        # Inpaint
        "mask": typer.Option(None, "--mask", "-m", help=_describe("mask")),
        "inpaint_strength": typer.Option(
            DEFAULT_INPAINT_STRENGTH, "--strength", help=_describe("inpaint_strength")
        ),
        # Mask / analyze
        "region": typer.Option(None, "--region", help=_describe("regions")),
        "invert": typer.Option(False, "--invert", help=_describe("invert_mask")),
        "detect": typer.Option(None, "--detect", help=_describe("detect")),
        "margin": typer.Option(0, "--margin", help=_describe("margin"), min=0),
        "save_mask": typer.Option(False, "--save-mask", help=_describe("save_mask")),
        # Director
        "defry": typer.Option(DEFAULT_DEFRY, "--defry", help=_describe("defry")),
        "emotion_level": typer.Option(DEFAULT_EMOTION_LEVEL, "--emotion-level", help=_describe("emotion_level")),
        # Sampling
        "width": typer.Option(DEFAULT_WIDTH, "--width", "-W", help=_describe("width"), min=1),
        "height": typer.Option(DEFAULT_HEIGHT, "--height", "-H", help=_describe("height"), min=1),
        "scale": typer.Option(DEFAULT_SCALE, "--scale", help=_describe("scale")),
        "steps": typer.Option(DEFAULT_STEPS, "--steps", help=_describe("steps")),
        "seed": typer.Option(None, "--seed", help=_describe("seed")),
        "cfg_rescale": typer.Option(DEFAULT_CFG_RESCALE, "--cfg-rescale", help=_describe("cfg_rescale")),
        "sampler": typer.Option(DEFAULT_SAMPLER, "--sampler", help=_describe("sampler")),
        "noise_schedule": typer.Option(
            DEFAULT_NOISE_SCHEDULE, "--noise-schedule", help=_describe("noise_schedule")
        ),
        "smea": typer.Option(False, "--smea", help=_describe("smea")),
        "smea_dyn": typer.Option(False, "--smea-dyn", help=_describe("smea_dyn")),
        "auto_smea": typer.Option(True, "--auto-smea/--no-auto-smea", help=_describe("auto_smea")),
        # Global
        "verbose": typer.Option(False, "--verbose", "-v", help="Show debug logging"),
        "env_file": typer.Option(Path(".env"), "--env-file", help="File to load API keys from"),
    }


def _sampling(
    width: int,
    height: int,
    scale: float,
    steps: int,
    seed: Optional[int],
    cfg_rescale: float,
    sampler: str,
    noise_schedule: str,
    smea: bool,
    smea_dyn: bool,
    auto_smea: bool,
) -> dict[str, Any]:
    return {
        "width": width,
        "height": height,
        "scale": scale,
        "steps": steps,
        "seed": seed,
        "cfg_rescale": cfg_rescale,
        "sampler": sampler,
        "noise_schedule": noise_schedule,
        "smea": smea,
        "smea_dyn": smea_dyn,
        "auto_smea": auto_smea,
    }


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False, rich_tracebacks=True)],
        force=True,
    )
    # httpx logs every request at INFO.
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


def _run(ctx: typer.Context, **values: Any) -> Any:
    service: ServiceConfig = ctx.obj if ctx.obj is not None else ServiceConfig.from_env()
    try:
        options = RequestOptions(**values)
    except ValidationError as exc:
        for error in exc.errors():
            location = ".".join(str(part) for part in error["loc"]) or "options"
            console.print(f"[red]Invalid {escape(location)}: {escape(error['msg'])}[/red]")
        raise typer.Exit(1) from None

    try:
        return asyncio.run(run_action(options, ActionContext(service=service, console=console)))
    except NovelAgentError as exc:
        console.print(f"[red]Error: {escape(str(exc))}[/red]")
        raise typer.Exit(1) from None


@app.command("generate", help="Text-to-image, optionally with a Precise Reference image")
def generate(
    ctx: typer.Context,
    prompt: Optional[str] = _options()["prompt"],
    negative: Optional[str] = _options()["negative"],
    ref: Optional[Path] = _options()["ref"],
    ref_caption: str = _options()["ref_caption"],
    strength: float = _options()["ref_strength"],
    fidelity: float = _options()["fidelity"],
    info_extracted: float = _options()["info_extracted"],
    width: int = _options()["width"],
    height: int = _options()["height"],
    scale: float = _options()["scale"],
    steps: int = _options()["steps"],
    seed: Optional[int] = _options()["seed"],
    cfg_rescale: float = _options()["cfg_rescale"],
    sampler: str = _options()["sampler"],
    noise_schedule: str = _options()["noise_schedule"],
    smea: bool = _options()["smea"],
    smea_dyn: bool = _options()["smea_dyn"],
    auto_smea: bool = _options()["auto_smea"],
    out: Path = _options()["out"],
) -> None:
    _run(
        ctx,
        action="generate",
        prompt=prompt,
        negative=negative,
        ref=ref,
        ref_caption=ref_caption,
        strength=strength,
        fidelity=fidelity,
        info_extracted=info_extracted,
        out=out,
        **_sampling(
            width, height, scale, steps, seed, cfg_rescale, sampler, noise_schedule, smea, smea_dyn, auto_smea
        ),
    )


@app.command("vibe", help="Text-to-image steered by up to 16 Vibe Transfer images")
def vibe(
    ctx: typer.Context,
    prompt: Optional[str] = _options()["prompt"],
    negative: Optional[str] = _options()["negative"],
    vibes: Optional[list[Path]] = _options()["vibe"],
    vibe_strengths: Optional[list[float]] = _options()["vibe_strength"],
    vibe_infos: Optional[list[float]] = _options()["vibe_info"],
    normalize_vibes: bool = _options()["normalize_vibes"],
    width: int = _options()["width"],
    height: int = _options()["height"],
    scale: float = _options()["scale"],
    steps: int = _options()["steps"],
    seed: Optional[int] = _options()["seed"],
    cfg_rescale: float = _options()["cfg_rescale"],
    sampler: str = _options()["sampler"],
    noise_schedule: str = _options()["noise_schedule"],
    smea: bool = _options()["smea"],
    smea_dyn: bool = _options()["smea_dyn"],
    auto_smea: bool = _options()["auto_smea"],
    out: Path = _options()["out"],
) -> None:
    _run(
        ctx,
        action="vibe",
        prompt=prompt,
        negative=negative,
        vibes=tuple(vibes or ()),
        vibe_strengths=tuple(vibe_strengths or ()),
        vibe_infos=tuple(vibe_infos or ()),
        normalize_vibes=normalize_vibes,
        out=out,
        **_sampling(
            width, height, scale, steps, seed, cfg_rescale, sampler, noise_schedule, smea, smea_dyn, auto_smea
        ),
    )


@app.command("enhance", help="Image-to-image refinement, optionally upscaled")
def enhance(
    ctx: typer.Context,
    image: Optional[Path] = _options()["image"],
    prompt: Optional[str] = _options()["prompt"],
    negative: Optional[str] = _options()["negative"],
    magnitude: Optional[float] = _options()["magnitude"],
    enhance_strength: Optional[float] = _options()["enhance_strength"],
    enhance_noise: Optional[float] = _options()["enhance_noise"],
    upscale: float = _options()["upscale"],
    scale: float = _options()["scale"],
    steps: int = _options()["steps"],
    seed: Optional[int] = _options()["seed"],
    cfg_rescale: float = _options()["cfg_rescale"],
    sampler: str = _options()["sampler"],
    noise_schedule: str = _options()["noise_schedule"],
    smea: bool = _options()["smea"],
    smea_dyn: bool = _options()["smea_dyn"],
    auto_smea: bool = _options()["auto_smea"],
    out: Path = _options()["out"],
) -> None:
    # Output size follows the source image, so --width/--height are not offered.
    _run(
        ctx,
        action="enhance",
        image=image,
        prompt=prompt,
        negative=negative,
        magnitude=magnitude,
        enhance_strength=enhance_strength,
        enhance_noise=enhance_noise,
        upscale=upscale,
        out=out,
        **_sampling(
            DEFAULT_WIDTH,
            DEFAULT_HEIGHT,
            scale,
            steps,
            seed,
            cfg_rescale,
            sampler,
            noise_schedule,
            smea,
            smea_dyn,
            auto_smea,
        ),
    )


@app.command("inpaint", help="Regenerate the white areas of a mask")
def inpaint(
    ctx: typer.Context,
    image: Optional[Path] = _options()["image"],
    mask: Optional[Path] = _options()["mask"],
    prompt: Optional[str] = _options()["prompt"],
    negative: Optional[str] = _options()["negative"],
    inpaint_strength: float = _options()["inpaint_strength"],
    width: int = _options()["width"],
    height: int = _options()["height"],
    scale: float = _options()["scale"],
    steps: int = _options()["steps"],
    seed: Optional[int] = _options()["seed"],
    cfg_rescale: float = _options()["cfg_rescale"],
    sampler: str = _options()["sampler"],
    noise_schedule: str = _options()["noise_schedule"],
    smea: bool = _options()["smea"],
    smea_dyn: bool = _options()["smea_dyn"],
    auto_smea: bool = _options()["auto_smea"],
    out: Path = _options()["out"],
) -> None:
    _run(
        ctx,
        action="inpaint",
        image=image,
        mask=mask,
        prompt=prompt,
        negative=negative,
        inpaint_strength=inpaint_strength,
        out=out,
        **_sampling(
            width, height, scale, steps, seed, cfg_rescale, sampler, noise_schedule, smea, smea_dyn, auto_smea
        ),
    )


@app.command("director", help=f"Director post-processing: {', '.join(DIRECTOR_TOOLS)}")
def director(
    ctx: typer.Context,
    tool: str = typer.Argument(..., help=f"One of: {', '.join(DIRECTOR_TOOLS)}"),
    image: Optional[Path] = _options()["image"],
    prompt: Optional[str] = _options()["prompt"],
    defry: float = _options()["defry"],
    emotion_level: float = _options()["emotion_level"],
    out: Path = _options()["out"],
) -> None:
    _run(
        ctx,
        action="director",
        director_tool=tool,
        image=image,
        prompt=prompt,
        defry=defry,
        emotion_level=emotion_level,
        out=out,
    )


@app.command("mask", help="Create an inpainting mask (white = regenerate, black = keep)")
def mask(
    ctx: typer.Context,
    image: Optional[Path] = _options()["image"],
    region: Optional[list[str]] = _options()["region"],
    invert: bool = _options()["invert"],
    width: int = _options()["width"],
    height: int = _options()["height"],
    out: Path = _options()["out"],
) -> None:
    _run(
        ctx,
        action="mask",
        image=image,
        regions=tuple(region or ()),
        invert_mask=invert,
        width=width,
        height=height,
        out=out,
    )


@app.command("analyze", help="Locate body parts or anatomical issues and suggest mask regions")
def analyze(
    ctx: typer.Context,
    image: Optional[Path] = _options()["image"],
    detect: Optional[str] = _options()["detect"],
    margin: int = _options()["margin"],
    save_mask: bool = _options()["save_mask"],
    invert: bool = _options()["invert"],
    out: Path = _options()["out"],
) -> None:
    _run(
        ctx,
        action="analyze",
        image=image,
        detect=detect,
        margin=margin,
        save_mask=save_mask,
        invert_mask=invert,
        out=out,
    )


@app.callback()
def root(
    ctx: typer.Context,
    verbose: bool = _options()["verbose"],
    env_file: Path = _options()["env_file"],
) -> None:
    """Load credentials and configure logging before any subcommand runs."""
    _configure_logging(verbose)
    ctx.obj = ServiceConfig.from_env(env_file)
    logger.debug("Using model %s, vision model %s", ctx.obj.model, ctx.obj.vision_model)


if __name__ == "__main__":
    app()
