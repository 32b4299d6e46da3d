"""
NovelAgent - NovelAI image generation from the command line

This package builds NovelAI image requests (text-to-image, Precise Reference,
Vibe Transfer, enhance, inpaint and Director tools), sends them, and writes the
returned images to disk. Masks for inpainting can be drawn from rectangles or
suggested by a Gemini vision model.
"""

from .actions import ActionContext, run_action
from .config import RequestOptions, ServiceConfig

__version__ = "0.1.0"

__all__ = ["ActionContext", "RequestOptions", "ServiceConfig", "run_action"]
