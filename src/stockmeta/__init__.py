"""
Stockmeta - An asynchronous command-line toolkit and Python library for
generating microstock metadata with generative AI.

This package sends JPG/PNG images to Google's Generative AI service and
produces titles, keywords and descriptions tailored to AdobeStock, Freepik
and Shutterstock, rotating across several API keys with bounded retries.
"""

# Runtime guard to ensure Pydantic v2 is installed
import pydantic

# Essential package-level exports for public API
from .config import Settings, load_config
from .models import (
    Credential,
    GenerationConfig,
    GenerationItem,
    Platform,
    PlatformMetadata,
)

assert pydantic.VERSION.startswith("2."), (
    f"Pydantic v2 or greater is required, but found version {pydantic.VERSION}. "
    "Please upgrade with: uv add 'pydantic>=2.0,<3.0'"
)

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "Settings",
    "load_config",
    "Credential",
    "GenerationConfig",
    "GenerationItem",
    "Platform",
    "PlatformMetadata",
]
