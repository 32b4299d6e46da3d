"""Exception hierarchy for NovelAgent.

Every failure the CLI reports to the user derives from ``NovelAgentError``.
Errors that carry diagnostic context keep it as attributes so tests and
callers never have to parse messages.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional


class NovelAgentError(Exception):
    """Base class for all NovelAgent errors."""


class UsageError(NovelAgentError):
    """An action was invoked without the inputs it needs."""


class MissingCredentialError(NovelAgentError):
    """A required API key is not configured."""

    def __init__(self, variable: str, purpose: str):
        self.variable = variable
        super().__init__(f"{variable} not set. Add it to .env or export it ({purpose}).")


class ImageReadError(NovelAgentError):
    """A source image could not be opened or decoded."""

    def __init__(self, path: Path | str, reason: str):
        self.path = Path(path)
        super().__init__(f"Cannot read image {self.path}: {reason}")


class InvalidRegionError(NovelAgentError, ValueError):
    """A mask region is malformed."""


class ArrayLengthMismatchError(NovelAgentError):
    """Parallel protocol arrays ended up with different lengths."""

    def __init__(self, lengths: dict[str, int]):
        self.lengths = dict(lengths)
        detail = ", ".join(f"{name}={length}" for name, length in self.lengths.items())
        super().__init__(f"Parallel payload arrays differ in length: {detail}")


class MissingRequiredFieldError(NovelAgentError):
    """A payload builder was called without a field its request kind requires."""

    def __init__(self, field: str, action: str):
        self.field = field
        self.action = action
        super().__init__(f"'{field}' is required to build a {action} payload")


class RemoteServiceError(NovelAgentError):
    """A remote service answered with a non-success status or was unreachable."""

    def __init__(self, service: str, status: Optional[int], body_excerpt: str):
        self.service = service
        self.status = status
        self.body_excerpt = body_excerpt
        label = status if status is not None else "unreachable"
        super().__init__(f"{service} {label}: {body_excerpt}")


class MissingImageError(NovelAgentError):
    """A response archive did not contain an image entry."""
