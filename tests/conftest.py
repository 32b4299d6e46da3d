"""Pytest configuration and fixtures for novelagent tests."""

import io
import zipfile
from pathlib import Path

import pytest
from PIL import Image

from novelagent.config import RequestOptions, ServiceConfig


def make_png(path: Path, width: int, height: int, mode: str = "RGB", color=(200, 40, 40)) -> Path:
    """Write a solid-color PNG and return its path."""
    if mode == "RGBA" and len(color) == 3:
        color = (*color, 128)
    Image.new(mode, (width, height), color).save(path, format="PNG")
    return path


def png_bytes(width: int = 8, height: int = 8, color=(10, 20, 30)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


def zip_bytes(entries: dict[str, bytes]) -> bytes:
    """Build a ZIP archive shaped like an image-service response."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, data in entries.items():
            archive.writestr(name, data)
    return buffer.getvalue()


@pytest.fixture
def portrait_png(tmp_path: Path) -> Path:
    return make_png(tmp_path / "portrait.png", 832, 1216)


@pytest.fixture
def square_png(tmp_path: Path) -> Path:
    return make_png(tmp_path / "square.png", 512, 512)


@pytest.fixture
def service() -> ServiceConfig:
    return ServiceConfig(api_key="test-key", vision_api_key="vision-key")


@pytest.fixture
def make_options(tmp_path: Path):
    """Factory for RequestOptions writing into a temporary output directory."""

    def _make(**values) -> RequestOptions:
        values.setdefault("out", tmp_path / "out")
        return RequestOptions(**values)

    return _make
