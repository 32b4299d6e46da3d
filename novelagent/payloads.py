"""Request payload builders for the NovelAI image endpoints.

Each builder returns a frozen ``RequestPayload`` holding the exact JSON body
for one request. Shared sampling parameters come from ``base_parameters``;
builders only add the fields their request kind needs.

Protocol notes:
    - The prompt is sent twice, as the flat ``input`` field and inside
      ``v4_prompt``; the negative prompt likewise. The copies must match.
    - Reference and vibe images travel as parallel arrays. Internally they are
      kept as one list of records and flattened here, so the arrays cannot
      drift apart.
    - Fidelity is the protocol's "secondary strength", where 0 means maximum
      fidelity. It is passed through unchanged.
"""

from __future__ import annotations

import enum
import logging
import random
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Mapping, Optional, Sequence, TypeVar

from novelagent.canvas import NormalizedImage, SourceImage
from novelagent.config import DEFAULT_MODEL, HIGH_RES_PIXELS, MAX_VIBES, SEED_LIMIT, RequestOptions
from novelagent.constants import (
    DEFAULT_EMOTION_PROMPT,
    DEFAULT_ENHANCE_NOISE,
    DEFAULT_ENHANCE_STRENGTH,
    DEFAULT_VIBE_INFO_EXTRACTED,
    DEFAULT_VIBE_STRENGTH,
    MAGNITUDE_NOISE_FACTOR,
    MAX_MAGNITUDE_NOISE,
)
from novelagent.errors import ArrayLengthMismatchError, MissingRequiredFieldError

logger = logging.getLogger("novelagent.payloads")

PARAMS_VERSION = 3

R = TypeVar("R")


class Endpoint(str, enum.Enum):
    GENERATE = "generate"
    AUGMENT = "augment"


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({key: _freeze(item) for key, item in value.items()})
    if isinstance(value, list):
        return tuple(_freeze(item) for item in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {key: _thaw(item) for key, item in value.items()}
    if isinstance(value, tuple):
        return [_thaw(item) for item in value]
    return value


@dataclass(frozen=True)
class RequestPayload:
    """One request body, read-only once built (nested values included)."""

    endpoint: Endpoint
    body: Mapping[str, Any]

    def __post_init__(self) -> None:
        object.__setattr__(self, "body", _freeze(self.body))

    @property
    def action(self) -> str:
        return self.body.get("action") or self.body["req_type"]

    @property
    def parameters(self) -> Mapping[str, Any]:
        return self.body["parameters"]

    @property
    def seed(self) -> Optional[int]:
        if self.endpoint is Endpoint.GENERATE:
            return self.parameters["seed"]
        return None

    def to_wire(self) -> dict[str, Any]:
        """A JSON-serializable deep copy of the body."""
        return _thaw(self.body)


@dataclass(frozen=True)
class ReferenceImage:
    """One Precise Reference entry."""

    image: str
    caption: str
    information_extracted: float
    strength: float
    fidelity: float


@dataclass(frozen=True)
class VibeReference:
    """One Vibe Transfer entry."""

    image: str
    information_extracted: float = DEFAULT_VIBE_INFO_EXTRACTED
    strength: float = DEFAULT_VIBE_STRENGTH


@dataclass(frozen=True)
class EnhanceLevels:
    strength: float
    noise: float


@dataclass
class _ParallelArrays:
    """Column-wise view of a record list, keyed by wire field name."""

    columns: dict[str, list[Any]] = field(default_factory=dict)

    @classmethod
    def flatten(cls, records: Sequence[R], getters: Mapping[str, Callable[[R], Any]]) -> _ParallelArrays:
        columns = {name: [getter(record) for record in records] for name, getter in getters.items()}
        lengths = {name: len(values) for name, values in columns.items()}
        if len(set(lengths.values())) > 1:
            raise ArrayLengthMismatchError(lengths)
        return cls(columns=columns)


def resolve_seed(seed: Optional[int], rng: Optional[random.Random] = None) -> int:
    """Use the caller's seed, else draw one uniformly from [0, 2**32)."""
    if seed is not None:
        return seed
    return (rng or random).randrange(SEED_LIMIT)


def resolve_smea(options: RequestOptions, width: int, height: int) -> tuple[bool, bool]:
    """Return (sm, sm_dyn), enabling DYN automatically above one megapixel."""
    sm = options.smea
    sm_dyn = options.smea_dyn
    if options.auto_smea and width * height > HIGH_RES_PIXELS and not sm and not sm_dyn:
        sm_dyn = True
    return sm, sm_dyn


def _caption(text: str) -> dict[str, Any]:
    return {"base_caption": text, "char_captions": []}


def base_parameters(
    options: RequestOptions,
    *,
    seed: int,
    width: Optional[int] = None,
    height: Optional[int] = None,
) -> dict[str, Any]:
    """Sampling parameters shared by every generation request kind."""
    width = options.width if width is None else width
    height = options.height if height is None else height
    prompt = options.prompt or ""
    negative = options.negative or ""
    sm, sm_dyn = resolve_smea(options, width, height)

    return {
        "params_version": PARAMS_VERSION,
        "width": width,
        "height": height,
        "scale": options.scale,
        "sampler": options.sampler,
        "steps": options.steps,
        "seed": seed,
        "n_samples": 1,
        "ucPreset": 0,
        "qualityToggle": True,
        "sm": sm,
        "sm_dyn": sm_dyn,
        "dynamic_thresholding": False,
        "cfg_rescale": options.cfg_rescale,
        "noise_schedule": options.noise_schedule,
        "normalize_reference_strength_multiple": options.normalize_vibes,
        "prefer_brownian": True,
        "v4_prompt": {
            "caption": _caption(prompt),
            "use_coords": False,
            "use_order": True,
        },
        "v4_negative_prompt": {
            "caption": _caption(negative),
            "legacy_uc": False,
        },
        "negative_prompt": negative,
    }


def _generation_request(
    action: str,
    parameters: dict[str, Any],
    model: str,
) -> RequestPayload:
    body = {
        # Must match parameters["v4_prompt"]["caption"]["base_caption"].
        "input": parameters["v4_prompt"]["caption"]["base_caption"],
        "model": model,
        "action": action,
        "parameters": parameters,
    }
    logger.debug(
        "Built %s payload: %sx%s seed=%s",
        action,
        parameters["width"],
        parameters["height"],
        parameters["seed"],
    )
    return RequestPayload(endpoint=Endpoint.GENERATE, body=body)


def _require_prompt(options: RequestOptions, action: str) -> None:
    if not options.prompt:
        raise MissingRequiredFieldError("prompt", action)


def build_generate_payload(
    options: RequestOptions,
    reference: Optional[NormalizedImage] = None,
    *,
    model: str = DEFAULT_MODEL,
    rng: Optional[random.Random] = None,
) -> RequestPayload:
    """Text-to-image, with an optional Precise Reference."""
    _require_prompt(options, "generate")
    if options.ref is not None and reference is None:
        raise MissingRequiredFieldError("reference image", "generate")

    seed = resolve_seed(options.seed, rng)
    params = base_parameters(options, seed=seed)

    references: list[ReferenceImage] = []
    if reference is not None:
        references.append(
            ReferenceImage(
                image=reference.to_base64(),
                caption=options.ref_caption,
                information_extracted=options.info_extracted,
                strength=options.strength,
                fidelity=options.fidelity,
            )
        )

    if references:
        arrays = _ParallelArrays.flatten(
            references,
            {
                "director_reference_images": lambda r: r.image,
                "director_reference_descriptions": lambda r: {
                    "caption": _caption(r.caption),
                    "legacy_uc": False,
                },
                "director_reference_information_extracted": lambda r: r.information_extracted,
                "director_reference_strength_values": lambda r: r.strength,
                "director_reference_secondary_strength_values": lambda r: r.fidelity,
            },
        )
        params.update(arrays.columns)

    return _generation_request("generate", params, model)


def vibe_references(options: RequestOptions, vibes: Sequence[NormalizedImage]) -> list[VibeReference]:
    """Pair each vibe image with its positional strength and info values."""
    for name, values in (("vibe strength", options.vibe_strengths), ("vibe info", options.vibe_infos)):
        if len(values) > len(vibes):
            logger.warning(
                "Ignoring %d extra %s value(s); only %d vibe image(s) given",
                len(values) - len(vibes),
                name,
                len(vibes),
            )

    references: list[VibeReference] = []
    for index, vibe in enumerate(vibes):
        strength = (
            options.vibe_strengths[index] if index < len(options.vibe_strengths) else DEFAULT_VIBE_STRENGTH
        )
        info = options.vibe_infos[index] if index < len(options.vibe_infos) else DEFAULT_VIBE_INFO_EXTRACTED
        references.append(VibeReference(image=vibe.to_base64(), information_extracted=info, strength=strength))
    return references


def build_vibe_payload(
    options: RequestOptions,
    vibes: Sequence[NormalizedImage],
    *,
    model: str = DEFAULT_MODEL,
    rng: Optional[random.Random] = None,
) -> RequestPayload:
    """Text-to-image steered by one or more Vibe Transfer images."""
    _require_prompt(options, "vibe")
    if not vibes:
        raise MissingRequiredFieldError("vibes", "vibe")
    if len(vibes) > MAX_VIBES:
        raise ValueError(f"At most {MAX_VIBES} vibe images are supported, got {len(vibes)}")

    seed = resolve_seed(options.seed, rng)
    params = base_parameters(options, seed=seed)

    arrays = _ParallelArrays.flatten(
        vibe_references(options, vibes),
        {
            "reference_image_multiple": lambda v: v.image,
            "reference_information_extracted_multiple": lambda v: v.information_extracted,
            "reference_strength_multiple": lambda v: v.strength,
        },
    )
    params.update(arrays.columns)

    return _generation_request("generate", params, model)


def resolve_enhance_levels(options: RequestOptions) -> EnhanceLevels:
    """Derive strength/noise from magnitude, then apply explicit overrides."""
    strength: Optional[float] = None
    noise: Optional[float] = None
    if options.magnitude is not None:
        strength = options.magnitude
        noise = min(options.magnitude * MAGNITUDE_NOISE_FACTOR, MAX_MAGNITUDE_NOISE)
    if options.enhance_strength is not None:
        strength = options.enhance_strength
    if options.enhance_noise is not None:
        noise = options.enhance_noise
    return EnhanceLevels(
        strength=DEFAULT_ENHANCE_STRENGTH if strength is None else strength,
        noise=DEFAULT_ENHANCE_NOISE if noise is None else noise,
    )


def build_enhance_payload(
    options: RequestOptions,
    source: Optional[SourceImage],
    *,
    model: str = DEFAULT_MODEL,
    rng: Optional[random.Random] = None,
) -> RequestPayload:
    """Image-to-image pass over ``source``, optionally upscaled."""
    if source is None:
        raise MissingRequiredFieldError("image", "img2img")

    width, height = source.width, source.height
    if options.upscale > 1:
        width = round(source.width * options.upscale)
        height = round(source.height * options.upscale)

    seed = resolve_seed(options.seed, rng)
    levels = resolve_enhance_levels(options)
    params = base_parameters(options, seed=seed, width=width, height=height)
    params.update(
        {
            "image": source.to_base64(),
            "strength": levels.strength,
            "noise": levels.noise,
            "extra_noise_seed": seed,
        }
    )
    return _generation_request("img2img", params, model)


def build_inpaint_payload(
    options: RequestOptions,
    source: Optional[SourceImage],
    mask: Optional[SourceImage],
    *,
    model: str = DEFAULT_MODEL,
    rng: Optional[random.Random] = None,
) -> RequestPayload:
    """Regenerate the white areas of ``mask`` within ``source``."""
    _require_prompt(options, "infill")
    if source is None:
        raise MissingRequiredFieldError("image", "infill")
    if mask is None:
        raise MissingRequiredFieldError("mask", "infill")

    seed = resolve_seed(options.seed, rng)
    params = base_parameters(options, seed=seed)
    params.update(
        {
            "image": source.to_base64(),
            "mask": mask.to_base64(),
            "strength": options.inpaint_strength,
            "extra_noise_seed": seed,
        }
    )
    return _generation_request("infill", params, model)


def build_director_payload(options: RequestOptions, source: Optional[SourceImage]) -> RequestPayload:
    """Post-processing request for the augment endpoint."""
    tool = options.director_tool
    if tool is None:
        raise MissingRequiredFieldError("director_tool", "director")
    if source is None:
        raise MissingRequiredFieldError("image", "director")

    body: dict[str, Any] = {
        "image": source.to_base64(),
        "width": source.width,
        "height": source.height,
        "req_type": tool,
    }
    if tool == "colorize":
        body["defry"] = options.defry
        if options.prompt:
            body["prompt"] = options.prompt
    elif tool == "emotion":
        body["prompt"] = options.prompt or DEFAULT_EMOTION_PROMPT
        body["defry"] = options.emotion_level

    logger.debug("Built director payload: %s %sx%s", tool, source.width, source.height)
    return RequestPayload(endpoint=Endpoint.AUGMENT, body=body)
