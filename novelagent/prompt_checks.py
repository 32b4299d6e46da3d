"""Advisory prompt-quality heuristics.

These checks only produce warnings; they never block a request.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

logger = logging.getLogger("novelagent.prompt_checks")

MIN_PROMPT_CHARS = 500
QUALITY_TOGGLE_TAGS = ("masterpiece", "very aesthetic")
FRONT_VIEW_TAGS = ("pussy", "clitoris", "navel", "nipples")

_YEAR_TAG_RE = re.compile(r"year\s+\d{4}")


def check_prompt(prompt: Optional[str], has_reference: bool = False) -> list[str]:
    """Return human-readable warnings for ``prompt``."""
    if not prompt:
        return []
    warnings: list[str] = []

    if "rating:explicit" in prompt and "-1::censored::" not in prompt:
        warnings.append("rating:explicit without -1::censored:: - censoring artifacts likely")

    if "{" not in prompt and "::" not in prompt:
        warnings.append("No emphasis syntax ({tag} or N::tag::) - key elements won't be prioritized")

    redundant = [tag for tag in QUALITY_TOGGLE_TAGS if tag in prompt]
    if redundant:
        warnings.append(f"Redundant tag(s): {', '.join(redundant)} - already auto-appended by qualityToggle")

    if has_reference and not _YEAR_TAG_RE.search(prompt):
        warnings.append("No 'year XXXX' tag - consider adding one for period-specific style reinforcement")

    if "rating:explicit" in prompt and not prompt.lstrip().startswith("rating:explicit"):
        warnings.append("rating:explicit should be the FIRST tag for strongest influence")

    if len(prompt) < MIN_PROMPT_CHARS:
        warnings.append(f"Prompt is only {len(prompt)} chars - target 500-1100 for proper anatomy")

    if "from behind" in prompt or "from_behind" in prompt:
        front = [tag for tag in FRONT_VIEW_TAGS if tag in prompt]
        if front:
            warnings.append(
                f"Spatial conflict: 'from behind' with front-view tags [{', '.join(front)}] - will distort anatomy"
            )

    return warnings


def log_prompt_warnings(prompt: Optional[str], has_reference: bool = False) -> list[str]:
    warnings = check_prompt(prompt, has_reference)
    if warnings:
        logger.warning("Prompt warnings (%d):\n%s", len(warnings), "\n".join(f"  - {w}" for w in warnings))
    return warnings
