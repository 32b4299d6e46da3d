"""Self-documenting configuration with Pydantic validation.

This module provides the typed, validated records every NovelAgent action is
driven by. Field descriptions double as CLI help text, so the options listed
by ``novelagent <action> --help`` and the record below never drift apart.

Usage:
    # Options for one invocation (immutable once built)
    options = RequestOptions(action="generate", prompt="1girl, solo", seed=42)

    # Derive a variant without mutating the original
    wide = options.updated({"width": 1216, "height": 832})

    # Service endpoints and credentials, resolved once per process
    service = ServiceConfig.from_env()
"""

from __future__ import annotations

import math
import os
from pathlib import Path
from typing import Any, ClassVar, Optional, Self

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator

from novelagent.errors import MissingCredentialError

# Protocol constants
GENERATE_URL: str = "https://image.novelai.net/ai/generate-image"
AUGMENT_URL: str = "https://image.novelai.net/ai/augment-image"
DEFAULT_MODEL: str = "nai-diffusion-4-5-full"
DEFAULT_VISION_MODEL: str = "gemini-2.5-flash"

ACTIONS: tuple[str, ...] = ("generate", "vibe", "enhance", "inpaint", "director", "mask", "analyze")
DIRECTOR_TOOLS: tuple[str, ...] = ("bg-removal", "line-art", "sketch", "colorize", "emotion", "declutter")
SAMPLERS: tuple[str, ...] = (
    "k_euler_ancestral",
    "k_euler",
    "k_dpmpp_2m",
    "k_dpmpp_2s_ancestral",
    "k_dpmpp_sde",
    "k_dpm_fast",
    "ddim",
)

MAX_VIBES: int = 16
SEED_LIMIT: int = 2**32
HIGH_RES_PIXELS: int = 1024 * 1024


class Config(BaseModel):
    """Base configuration class with copy-on-update support and validation.

    This class extends Pydantic's BaseModel to provide:
    - Strict field validation (extra="forbid")
    - Immutability (frozen=True); use ``updated`` to derive a new instance
    - Rejection of NaN/inf for every float field
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(
        extra="forbid",
        frozen=True,
        allow_inf_nan=False,
    )

    def updated(self, changes: dict[str, Any]) -> Self:
        """Return a validated copy with ``changes`` applied.

        Examples:
            options.updated({"steps": 40})
            service.updated({"request_timeout": 300.0})
        """
        unknown = sorted(set(changes) - set(type(self).model_fields))
        if unknown:
            raise ValueError(f"Update failed: unknown field(s) {', '.join(unknown)}")
        return type(self).model_validate({**self.model_dump(), **changes})

    @classmethod
    def describe(cls, field_name: str) -> str:
        """Help text for a field, taken from its description."""
        field = cls.model_fields.get(field_name)
        if field is None:
            raise KeyError(f"{cls.__name__} has no field '{field_name}'")
        return field.description or ""


class ServiceConfig(Config):
    """Endpoints and credentials for the remote services.

    Built once per invocation and passed explicitly to the transport client,
    payload builders and vision detector.
    """

    api_key: Optional[str] = Field(
        default=None,
        description="NovelAI bearer token (NOVELAI_API_KEY)",
    )
    vision_api_key: Optional[str] = Field(
        default=None,
        description="Gemini API key used by the analyze action (GEMINI_API_KEY)",
    )
    generate_url: str = Field(
        default=GENERATE_URL,
        description="Image generation endpoint",
    )
    augment_url: str = Field(
        default=AUGMENT_URL,
        description="Director tools (augment) endpoint",
    )
    model: str = Field(
        default=DEFAULT_MODEL,
        description="Image model identifier sent with every generation request",
    )
    vision_model: str = Field(
        default=DEFAULT_VISION_MODEL,
        description="Gemini model used for region detection",
    )
    request_timeout: Optional[float] = Field(
        default=None,
        gt=0,
        description="Seconds before an image request is abandoned (None = wait indefinitely)",
    )

    @classmethod
    def from_env(cls, env_file: Optional[Path | str] = ".env") -> ServiceConfig:
        """Resolve keys from the environment, loading ``env_file`` first.

        Values already present in the process environment take precedence
        over the file.
        """
        if env_file is not None:
            load_dotenv(env_file, override=False)
        values: dict[str, Any] = {
            "api_key": os.getenv("NOVELAI_API_KEY") or None,
            "vision_api_key": os.getenv("GEMINI_API_KEY") or None,
        }
        if os.getenv("NOVELAI_MODEL"):
            values["model"] = os.environ["NOVELAI_MODEL"]
        if os.getenv("GEMINI_MODEL"):
            values["vision_model"] = os.environ["GEMINI_MODEL"]
        return cls(**values)

    def require_api_key(self) -> str:
        if not self.api_key:
            raise MissingCredentialError("NOVELAI_API_KEY", "required for image requests")
        return self.api_key

    def require_vision_api_key(self) -> str:
        if not self.vision_api_key:
            raise MissingCredentialError("GEMINI_API_KEY", "required for image analysis")
        return self.vision_api_key


class RequestOptions(Config):
    """Every user-supplied and defaulted parameter for one invocation.

    Optional scalars that arrive as NaN are stored as None; required numeric
    fields reject non-finite values outright.
    """

    # Action selection
    action: str = Field(
        default="generate",
        description="Action to run",
    )
    director_tool: Optional[str] = Field(
        default=None,
        description="Director post-processing tool",
    )

    # Prompt
    prompt: Optional[str] = Field(
        default=None,
        description="Danbooru-style prompt tags",
    )
    negative: Optional[str] = Field(
        default=None,
        description="Negative prompt tags",
    )

    # Precise Reference (generate)
    ref: Optional[Path] = Field(
        default=None,
        description="Precise Reference image path",
    )
    ref_caption: str = Field(
        default="character&style",
        description="Caption describing what the reference transfers",
    )
    strength: float = Field(
        default=1.0,
        ge=0,
        le=1,
        description="Reference strength",
    )
    fidelity: float = Field(
        default=0.0,
        ge=0,
        le=1,
        description="Reference fidelity; 0 = max, 1 = min",
    )
    info_extracted: float = Field(
        default=1.0,
        ge=0,
        le=1,
        description="Reference information extraction level",
    )

    # Vibe Transfer (vibe)
    vibes: tuple[Path, ...] = Field(
        default=(),
        max_length=MAX_VIBES,
        description=f"Vibe image path (repeatable, up to {MAX_VIBES})",
    )
    vibe_strengths: tuple[float, ...] = Field(
        default=(),
        description="Per-vibe strength, applied positionally (default 0.6)",
    )
    vibe_infos: tuple[float, ...] = Field(
        default=(),
        description="Per-vibe information extracted, applied positionally (default 1)",
    )
    normalize_vibes: bool = Field(
        default=True,
        description="Normalize the combined strength of multiple vibes",
    )

    # Image input (enhance, inpaint, director, mask, analyze)
    image: Optional[Path] = Field(
        default=None,
        description="Source image path",
    )
    mask: Optional[Path] = Field(
        default=None,
        description="Mask image for inpaint (white = regenerate, black = keep)",
    )

    # Enhance
    magnitude: Optional[float] = Field(
        default=None,
        ge=0,
        le=1,
        description="Combined strength and noise for enhance",
    )
    enhance_strength: Optional[float] = Field(
        default=None,
        ge=0,
        le=1,
        description="Explicit enhance strength (overrides magnitude)",
    )
    enhance_noise: Optional[float] = Field(
        default=None,
        ge=0,
        le=1,
        description="Explicit enhance noise (overrides magnitude)",
    )
    upscale: float = Field(
        default=1.0,
        ge=1,
        le=4,
        description="Upscale multiplier applied to the source dimensions",
    )

    # Inpaint
    inpaint_strength: float = Field(
        default=0.7,
        ge=0,
        le=1,
        description="Inpainting strength",
    )

    # Mask creation
    regions: tuple[str, ...] = Field(
        default=(),
        description="Region to mask as x,y,w,h (repeatable, white = regenerate)",
    )
    invert_mask: bool = Field(
        default=False,
        description="Invert the mask after painting regions",
    )

    # Analyze
    detect: Optional[str] = Field(
        default=None,
        description="What to detect, e.g. 'hands, face' or 'anatomical issues'",
    )
    margin: int = Field(
        default=0,
        ge=0,
        description="Pixels added around each detected region",
    )
    save_mask: bool = Field(
        default=False,
        description="Write a mask covering every detected region",
    )

    # Director
    defry: float = Field(
        default=0.0,
        ge=0,
        description="Colorize: reduce noise and artifacts",
    )
    emotion_level: float = Field(
        default=0.5,
        ge=0,
        description="Emotion: intensity",
    )

    # Sampling
    width: int = Field(
        default=832,
        ge=1,
        description="Output width in pixels",
    )
    height: int = Field(
        default=1216,
        ge=1,
        description="Output height in pixels",
    )
    scale: float = Field(
        default=6.0,
        ge=0,
        le=10,
        description="CFG scale",
    )
    steps: int = Field(
        default=28,
        ge=1,
        le=50,
        description="Sampling steps",
    )
    seed: Optional[int] = Field(
        default=None,
        ge=0,
        lt=SEED_LIMIT,
        description="RNG seed (random when omitted)",
    )
    cfg_rescale: float = Field(
        default=0.4,
        ge=0,
        le=1,
        description="CFG rescale",
    )
    sampler: str = Field(
        default="k_euler_ancestral",
        description="Sampler name",
    )
    noise_schedule: str = Field(
        default="karras",
        description="Noise schedule name",
    )
    smea: bool = Field(
        default=False,
        description="Enable the SMEA sampler",
    )
    smea_dyn: bool = Field(
        default=False,
        description="Enable the SMEA DYN variant",
    )
    auto_smea: bool = Field(
        default=True,
        description="Enable SMEA DYN automatically above one megapixel",
    )

    # Output
    out: Path = Field(
        default=Path("output"),
        description="Output directory",
    )

    @field_validator("magnitude", "enhance_strength", "enhance_noise", "seed", mode="before")
    @classmethod
    def nan_to_none(cls, v: Any) -> Any:
        if isinstance(v, float) and not math.isfinite(v):
            return None
        return v

    @field_validator("action")
    @classmethod
    def validate_action(cls, v: str) -> str:
        if v not in ACTIONS:
            raise ValueError(f"action must be one of {ACTIONS}, got '{v}'")
        return v

    @field_validator("director_tool")
    @classmethod
    def validate_director_tool(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in DIRECTOR_TOOLS:
            raise ValueError(f"director_tool must be one of {DIRECTOR_TOOLS}, got '{v}'")
        return v

    @field_validator("sampler")
    @classmethod
    def validate_sampler(cls, v: str) -> str:
        if v not in SAMPLERS:
            raise ValueError(f"sampler must be one of {SAMPLERS}, got '{v}'")
        return v

    @field_validator("vibe_strengths", "vibe_infos")
    @classmethod
    def validate_unit_interval(cls, v: tuple[float, ...]) -> tuple[float, ...]:
        for value in v:
            if not 0 <= value <= 1:
                raise ValueError(f"per-vibe values must be within [0, 1], got {value}")
        return v


__all__ = [
    "Config",
    "ServiceConfig",
    "RequestOptions",
    "GENERATE_URL",
    "AUGMENT_URL",
    "DEFAULT_MODEL",
    "DEFAULT_VISION_MODEL",
    "ACTIONS",
    "DIRECTOR_TOOLS",
    "SAMPLERS",
    "MAX_VIBES",
    "SEED_LIMIT",
    "HIGH_RES_PIXELS",
]
