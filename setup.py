#!/usr/bin/env python3
"""
Setup script for novelagent.
"""

from pathlib import Path

from setuptools import find_packages, setup


def read_version():
    """Read __version__ from the package without importing it."""
    init_file = Path(__file__).parent / "novelagent" / "__init__.py"
    for line in init_file.read_text().splitlines():
        if line.startswith("__version__"):
            return line.split("=", 1)[1].strip().strip('"')
    raise RuntimeError("Unable to find __version__ in novelagent/__init__.py")


if __name__ == "__main__":
    setup(
        name="novelagent",
        version=read_version(),
        description="Command-line client for NovelAI image generation, editing and inpainting",
        packages=find_packages(include=["novelagent", "novelagent.*"]),
        python_requires=">=3.11",
        install_requires=[
            "typer>=0.12",
            "rich>=13",
            "pydantic>=2",
            "python-dotenv>=1.0",
            "httpx>=0.27",
            "pillow>=10",
            "numpy>=1.26",
            "google-genai>=1.0",
        ],
        extras_require={
            "test": ["pytest>=8"],
        },
        entry_points={
            "console_scripts": [
                "novelagent=novelagent.cli:app",
            ],
        },
    )
