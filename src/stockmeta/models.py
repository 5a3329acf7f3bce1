"""
Core data models for stockmeta package.

This module defines Pydantic models for credentials, generation items,
platform metadata and batch summaries used throughout the application.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
    model_validator,
)


def _new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class Platform(str, Enum):
    """Supported microstock marketplaces."""

    ADOBE_STOCK = "AdobeStock"
    FREEPIK = "Freepik"
    SHUTTERSTOCK = "Shutterstock"

    @property
    def key(self) -> str:
        """Lowercase key used when storing results on an item."""
        return self.value.lower()

    @classmethod
    def _missing_(cls, value: object) -> Optional["Platform"]:
        if isinstance(value, str):
            for member in cls:
                if member.key == value.strip().lower():
                    return member
        return None


class Credential(BaseModel):
    """
    A single API key tracked by the credential pool.

    The raw secret is excluded from repr and serialization; use
    ``masked_display`` wherever the key has to be shown or logged.
    """

    id: str = Field(default_factory=_new_id, frozen=True)

    secret: str = Field(..., min_length=1, repr=False, exclude=True)

    is_active: bool = Field(default=False)

    is_valid: bool = Field(default=True)

    failure_count: int = Field(default=0, ge=0)

    last_used_at: Optional[datetime] = Field(default=None)

    model_config = ConfigDict(validate_assignment=True, extra="forbid")

    @field_validator("secret")
    @classmethod
    def validate_secret(cls, v: str) -> str:
        cleaned = v.strip()
        if not cleaned:
            raise ValueError("Credential secret cannot be empty")
        return cleaned

    @computed_field  # type: ignore[prop-decorator]
    @property
    def masked_display(self) -> str:
        return self.mask(self.secret)

    @staticmethod
    def mask(secret: str) -> str:
        """Return a non-sensitive prefix...suffix form of a secret."""
        if len(secret) > 12:
            return f"{secret[:8]}...{secret[-4:]}"
        if len(secret) > 4:
            return f"{secret[:2]}...{secret[-2:]}"
        return "***"

    def touch(self) -> None:
        self.last_used_at = utcnow()


class PlatformMetadata(BaseModel):
    """Title, keywords and description generated for one platform."""

    title: str = Field(default="")

    keywords: List[str] = Field(default_factory=list)

    description: str = Field(default="")


class GenerationConfig(BaseModel):
    """
    Immutable word and keyword bounds plus optional prefix/suffix injection.

    A min greater than its max is clamped down to the max rather than
    rejected, so a half-edited configuration never stops a batch.
    """

    min_title_words: int = Field(default=8, ge=1)
    max_title_words: int = Field(default=15, ge=1)
    min_keywords: int = Field(default=40, ge=1)
    max_keywords: int = Field(default=45, ge=1)
    min_description_words: int = Field(default=10, ge=1)
    max_description_words: int = Field(default=20, ge=1)

    title_prefix: str = Field(default="", description="Prepended to every title")

    keyword_suffix: str = Field(
        default="", description="Comma-separated keywords appended to every result"
    )

    file_extension: str = Field(
        default="original",
        description="Extension substituted into exported filenames",
    )

    model_config = ConfigDict(frozen=True, extra="forbid")

    @field_validator("file_extension")
    @classmethod
    def validate_file_extension(cls, v: str) -> str:
        cleaned = v.strip().lower()
        if not cleaned or cleaned == "original":
            return "original"
        if not cleaned.startswith("."):
            cleaned = "." + cleaned
        return cleaned

    @model_validator(mode="after")
    def clamp_bounds(self) -> "GenerationConfig":
        for name in ("title_words", "keywords", "description_words"):
            low, high = f"min_{name}", f"max_{name}"
            if getattr(self, low) > getattr(self, high):
                object.__setattr__(self, low, getattr(self, high))
        return self


class GenerationItem(BaseModel):
    """
    An uploaded image and everything generated for it so far.

    ``results_by_platform`` is only ever merged into: generating for one
    platform never discards results stored for another.
    """

    id: str = Field(default_factory=_new_id)

    display_name: str = Field(..., min_length=1)

    image_bytes: bytes = Field(..., repr=False)

    mime_type: str = Field(default="image/jpeg", pattern="^image/(jpeg|png)$")

    results_by_platform: Dict[str, PlatformMetadata] = Field(default_factory=dict)

    is_generating: bool = Field(default=False)

    last_error: Optional[str] = Field(default=None)

    model_config = ConfigDict(validate_assignment=True, extra="forbid")

    def result_for(self, platform: Platform) -> Optional[PlatformMetadata]:
        return self.results_by_platform.get(Platform(platform).key)

    def apply_updates(self, updates: Dict[str, Any]) -> None:
        """Apply a partial update, merging platform results."""
        for field_name, value in updates.items():
            if field_name == "results_by_platform":
                merged = dict(self.results_by_platform)
                merged.update(value)
                value = merged
            setattr(self, field_name, value)


class BatchState(str, Enum):
    """Lifecycle of a single batch run."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"


class BatchSummary(BaseModel):
    """Aggregate statistics for a batch run."""

    total: int = Field(default=0, ge=0)
    completed: int = Field(default=0, ge=0)
    succeeded: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)
    forced_rotations: int = Field(default=0, ge=0)

    state: BatchState = Field(default=BatchState.IDLE)

    started_at: Optional[datetime] = Field(default=None)
    finished_at: Optional[datetime] = Field(default=None)

    model_config = ConfigDict(validate_assignment=True)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def success_rate(self) -> float:
        """Percentage of completed items that succeeded."""
        if self.completed == 0:
            return 0.0
        return self.succeeded / self.completed * 100.0
