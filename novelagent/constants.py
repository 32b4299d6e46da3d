"""Default values for NovelAgent.

This module re-exports default values from the typed config module so the CLI
and the payload builders share a single source of truth:

    from novelagent.constants import DEFAULT_WIDTH, DEFAULT_STEPS
"""

from novelagent.config import (
    ACTIONS,
    DIRECTOR_TOOLS,
    HIGH_RES_PIXELS,
    MAX_VIBES,
    SAMPLERS,
    SEED_LIMIT,
    RequestOptions,
)

# Sampling defaults (from RequestOptions)
_options = RequestOptions()
DEFAULT_WIDTH = _options.width
DEFAULT_HEIGHT = _options.height
DEFAULT_SCALE = _options.scale
DEFAULT_STEPS = _options.steps
DEFAULT_CFG_RESCALE = _options.cfg_rescale
DEFAULT_SAMPLER = _options.sampler
DEFAULT_NOISE_SCHEDULE = _options.noise_schedule
DEFAULT_OUT_DIR = _options.out

# Reference and vibe defaults
DEFAULT_REF_CAPTION = _options.ref_caption
DEFAULT_REF_STRENGTH = _options.strength
DEFAULT_REF_FIDELITY = _options.fidelity
DEFAULT_REF_INFO_EXTRACTED = _options.info_extracted
DEFAULT_VIBE_STRENGTH = 0.6
DEFAULT_VIBE_INFO_EXTRACTED = 1.0

# Image-to-image defaults
DEFAULT_INPAINT_STRENGTH = _options.inpaint_strength
DEFAULT_ENHANCE_STRENGTH = 0.5
DEFAULT_ENHANCE_NOISE = 0.1
MAGNITUDE_NOISE_FACTOR = 0.3
MAX_MAGNITUDE_NOISE = 0.3

# Director defaults
DEFAULT_DEFRY = _options.defry
DEFAULT_EMOTION_LEVEL = _options.emotion_level
DEFAULT_EMOTION_PROMPT = "neutral"

# Vision detection
DETECTION_GRID = 1000
DEFAULT_DETECT_TARGET = "all body parts (face, hands, torso, legs)"

__all__ = [
    "ACTIONS",
    "DIRECTOR_TOOLS",
    "SAMPLERS",
    "MAX_VIBES",
    "SEED_LIMIT",
    "HIGH_RES_PIXELS",
    # Sampling
    "DEFAULT_WIDTH",
    "DEFAULT_HEIGHT",
    "DEFAULT_SCALE",
    "DEFAULT_STEPS",
    "DEFAULT_CFG_RESCALE",
    "DEFAULT_SAMPLER",
    "DEFAULT_NOISE_SCHEDULE",
    "DEFAULT_OUT_DIR",
    # Reference and vibe
    "DEFAULT_REF_CAPTION",
    "DEFAULT_REF_STRENGTH",
    "DEFAULT_REF_FIDELITY",
    "DEFAULT_REF_INFO_EXTRACTED",
    "DEFAULT_VIBE_STRENGTH",
    "DEFAULT_VIBE_INFO_EXTRACTED",
    # Image-to-image
    "DEFAULT_INPAINT_STRENGTH",
    "DEFAULT_ENHANCE_STRENGTH",
    "DEFAULT_ENHANCE_NOISE",
    "MAGNITUDE_NOISE_FACTOR",
    "MAX_MAGNITUDE_NOISE",
    # Director
    "DEFAULT_DEFRY",
    "DEFAULT_EMOTION_LEVEL",
    "DEFAULT_EMOTION_PROMPT",
    # Vision
    "DETECTION_GRID",
    "DEFAULT_DETECT_TARGET",
]
