"""
Persistence of credential health between runs.

Failure counts are never reset automatically, so the health recorded by one
run has to be available to the next. Entries are keyed by a SHA-256
fingerprint of the secret; the secret itself is never written.
"""

import hashlib
import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional, Union

import aiofiles
from pydantic import BaseModel, Field, ValidationError

from .credentials import CredentialPool

logger = logging.getLogger(__name__)


class KeyStateError(Exception):
    """Raised when the key state file cannot be read or written."""

    pass


class CredentialHealth(BaseModel):
    """Recorded health of one API key."""

    failure_count: int = Field(default=0, ge=0)

    is_valid: bool = Field(default=True)

    last_used_at: Optional[datetime] = Field(default=None)


class KeyState(BaseModel):
    """Contents of the key state file."""

    credentials: Dict[str, CredentialHealth] = Field(default_factory=dict)


def fingerprint(secret: str) -> str:
    return hashlib.sha256(secret.strip().encode("utf-8")).hexdigest()


def snapshot_pool(pool: CredentialPool) -> KeyState:
    return KeyState(
        credentials={
            fingerprint(c.secret): CredentialHealth(
                failure_count=c.failure_count,
                is_valid=c.is_valid,
                last_used_at=c.last_used_at,
            )
            for c in pool
        }
    )


def apply_key_state(pool: CredentialPool, state: KeyState) -> int:
    """
    Restore recorded health onto the matching credentials of ``pool``.

    Returns:
        int: Number of credentials that had a recorded entry
    """
    restored = 0
    for credential in pool:
        health = state.credentials.get(fingerprint(credential.secret))
        if health is None:
            continue
        pool.restore_health(
            credential.id,
            failure_count=health.failure_count,
            is_valid=health.is_valid,
            last_used_at=health.last_used_at,
        )
        restored += 1
    return restored


async def load_key_state(path: Union[str, Path]) -> KeyState:
    """
    Read the key state file; a missing file yields an empty state.

    Raises:
        KeyStateError: If the file exists but cannot be read or parsed
    """
    state_path = Path(path)
    if not state_path.exists():
        return KeyState()

    try:
        async with aiofiles.open(state_path, "r", encoding="utf-8") as f:
            content = await f.read()
    except OSError as e:
        raise KeyStateError(f"Failed to read key state {state_path}: {e}") from e

    try:
        return KeyState.model_validate_json(content)
    except ValidationError as e:
        raise KeyStateError(f"Invalid key state file {state_path}: {e}") from e


async def save_key_state(pool: CredentialPool, path: Union[str, Path]) -> Path:
    """Write the health of every credential in ``pool`` to ``path``."""
    state_path = Path(path)
    state = snapshot_pool(pool)

    try:
        state_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(state_path, "w", encoding="utf-8") as f:
            await f.write(state.model_dump_json(indent=2))
    except OSError as e:
        raise KeyStateError(f"Failed to write key state {state_path}: {e}") from e

    logger.debug(f"Saved health of {len(state.credentials)} API keys to {state_path}")
    return state_path
