"""
Configuration management for stockmeta package.

Settings are read from ``./stockmeta.toml`` or ``~/.stockmeta.toml`` and
then overridden by environment variables. The resulting ``Settings`` object
is passed explicitly into every operation; nothing in the core reads
configuration on its own.
"""

import asyncio
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import tomli
from pydantic import BaseModel, Field, ValidationError, field_validator

from .api import DEFAULT_MODEL
from .models import GenerationConfig, Platform

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "stockmeta.toml"
STATE_FILENAME = ".stockmeta_keys.json"


class Auth(BaseModel):
    """API keys used to populate the credential pool."""

    api_keys: List[str] = Field(
        ..., description="Google Generative AI API keys, in rotation order"
    )

    @field_validator("api_keys", mode="before")
    @classmethod
    def split_api_keys(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.split(",")
        return v

    @field_validator("api_keys")
    @classmethod
    def validate_api_keys(cls, v: List[str]) -> List[str]:
        cleaned: List[str] = []
        for key in v:
            key = key.strip()
            if key and key not in cleaned:
                cleaned.append(key)
        if not cleaned:
            raise ValueError("At least one Google API key is required")
        return cleaned


class Defaults(BaseModel):
    """Default generation settings."""

    model: str = Field(default=DEFAULT_MODEL, description="Model used for description")

    output_path: Path = Field(
        default_factory=lambda: Path.cwd() / "metadata",
        description="Directory CSV exports are written to",
    )

    platform: Platform = Field(default=Platform.ADOBE_STOCK)

    base_url: Optional[str] = Field(
        default=None, description="Override of the endpoint base URL"
    )

    state_file: Path = Field(
        default_factory=lambda: Path.home() / STATE_FILENAME,
        description="File recording API key health between runs",
    )

    @field_validator("output_path", "state_file")
    @classmethod
    def resolve_path(cls, v: Path) -> Path:
        return Path(v).expanduser().resolve()


class Settings(BaseModel):
    """Complete application configuration."""

    auth: Auth
    defaults: Defaults = Field(default_factory=Defaults)
    metadata: GenerationConfig = Field(default_factory=GenerationConfig)


def _config_paths() -> List[Path]:
    return [Path.cwd() / CONFIG_FILENAME, Path.home() / f".{CONFIG_FILENAME}"]


def _read_toml(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "rb") as f:
            return tomli.load(f)
    except tomli.TOMLDecodeError as e:
        raise ValueError(f"Invalid TOML syntax in {path}: {e}") from e


def _apply_env_overrides(data: Dict[str, Any]) -> bool:
    """Merge environment variables into ``data``; True if any was set."""
    found = False
    auth = data.setdefault("auth", {})
    defaults = data.setdefault("defaults", {})

    keys_env = os.getenv("GOOGLE_API_KEYS")
    if keys_env:
        auth["api_keys"] = keys_env.split(",")
        found = True

    single_key = os.getenv("GOOGLE_API_KEY")
    if single_key:
        existing = auth.get("api_keys") or []
        if isinstance(existing, str):
            existing = existing.split(",")
        auth["api_keys"] = list(existing) + [single_key]
        found = True

    for env_name, field_name in (
        ("STOCKMETA_MODEL", "model"),
        ("STOCKMETA_OUTPUT_PATH", "output_path"),
        ("STOCKMETA_PLATFORM", "platform"),
        ("STOCKMETA_BASE_URL", "base_url"),
        ("STOCKMETA_STATE_FILE", "state_file"),
    ):
        value = os.getenv(env_name)
        if value:
            defaults[field_name] = value

    return found


def _load_config_sync() -> Settings:
    data: Dict[str, Any] = {}
    config_file = None
    for path in _config_paths():
        if path.exists():
            config_file = path
            data = _read_toml(path)
            break

    env_found = _apply_env_overrides(data)

    if config_file is None and not env_found:
        raise FileNotFoundError(
            f"No configuration file found ({CONFIG_FILENAME} or "
            f"~/.{CONFIG_FILENAME}) and GOOGLE_API_KEY environment variable "
            "is not set"
        )

    try:
        settings = Settings(**data)
    except ValidationError as e:
        raise ValueError(f"Configuration validation failed: {e}") from e

    source = config_file or "environment"
    logger.debug(
        f"Loaded configuration from {source} with {len(settings.auth.api_keys)} keys"
    )
    return settings


async def load_config() -> Settings:
    """
    Load configuration from TOML files and environment variables.

    Returns:
        Settings: Validated configuration

    Raises:
        FileNotFoundError: If neither a config file nor an API key env var exists
        ValueError: If the TOML is malformed or validation fails
    """
    return await asyncio.to_thread(_load_config_sync)
