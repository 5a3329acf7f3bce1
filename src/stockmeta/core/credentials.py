"""
Credential pool and rotation policy.

The pool is the single owner of credential health and of the "active"
pointer. The rotator decides which credential to use after a failure and
promotes its choice through the pool, so failure bookkeeping and active
selection never happen anywhere else.
"""

import logging
from datetime import datetime
from typing import Awaitable, Callable, Iterator, List, Optional, Tuple

from ..api import validate_api_key
from ..models import Credential

logger = logging.getLogger(__name__)

INVALIDATION_THRESHOLD = 15

SOFT_LIMIT = 10
HARD_LIMIT = 15
ABSOLUTE_LIMIT = 20

Probe = Callable[[str], Awaitable[bool]]


class CredentialError(Exception):
    """Base exception for credential pool errors."""

    pass


class InvalidCredentialError(CredentialError):
    """Raised when a secret fails validation and is not admitted."""

    pass


class CredentialNotFoundError(CredentialError, KeyError):
    """Raised when an operation names a credential the pool does not hold."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "Credential not found"


class CredentialPool:
    """
    Insertion-ordered collection of credentials and their health.

    At most one credential is active at a time, and one always is while the
    pool is non-empty. ``failure_count`` only goes down through
    ``reset_all_failures``.
    """

    def __init__(self, probe: Optional[Probe] = None) -> None:
        self._probe: Probe = probe or validate_api_key
        self._credentials: List[Credential] = []

    def __len__(self) -> int:
        return len(self._credentials)

    def __iter__(self) -> Iterator[Credential]:
        return iter(list(self._credentials))

    @property
    def credentials(self) -> Tuple[Credential, ...]:
        return tuple(self._credentials)

    def get(self, credential_id: str) -> Credential:
        for credential in self._credentials:
            if credential.id == credential_id:
                return credential
        raise CredentialNotFoundError(f"Unknown credential: {credential_id}")

    def current(self) -> Optional[Credential]:
        for credential in self._credentials:
            if credential.is_active:
                return credential
        return None

    def active_index(self) -> int:
        """Index of the active credential, or -1 if none is active."""
        for index, credential in enumerate(self._credentials):
            if credential.is_active:
                return index
        return -1

    async def add(self, secret: str) -> Credential:
        """
        Probe a secret against the endpoint and admit it on success.

        Args:
            secret: The raw API key

        Returns:
            Credential: The admitted credential

        Raises:
            InvalidCredentialError: If the secret is blank, already present,
                or the probe does not succeed
        """
        cleaned = (secret or "").strip()
        if not cleaned:
            raise InvalidCredentialError("API key cannot be empty")

        masked = Credential.mask(cleaned)
        if any(c.secret == cleaned for c in self._credentials):
            raise InvalidCredentialError(f"API key {masked} is already registered")

        try:
            accepted = await self._probe(cleaned)
        except Exception as e:
            raise InvalidCredentialError(
                f"API key {masked} could not be validated: {e}"
            ) from e

        if not accepted:
            raise InvalidCredentialError(f"API key {masked} was rejected")

        credential = Credential(secret=cleaned)
        credential.touch()
        self._credentials.append(credential)

        if self.current() is None:
            credential.is_active = True

        logger.info(
            f"Added API key {credential.masked_display} "
            f"({len(self._credentials)} in pool)"
        )
        return credential

    def remove(self, credential_id: str) -> None:
        """
        Remove a credential, promoting its successor if it was active.

        The successor is the next credential in insertion order, wrapping
        to the first when the removed one was last.
        """
        removed = self.get(credential_id)
        index = self._credentials.index(removed)
        self._credentials.pop(index)

        if removed.is_active and self._credentials:
            successor = self._credentials[index % len(self._credentials)]
            self.set_active(successor.id)

        logger.info(f"Removed API key {removed.masked_display}")

    def set_active(self, credential_id: str) -> Credential:
        target = self.get(credential_id)
        for credential in self._credentials:
            if credential is not target and credential.is_active:
                credential.is_active = False
        target.is_active = True
        target.touch()
        return target

    def mark_used(self, credential_id: str) -> Credential:
        """Stamp ``last_used_at`` for a credential about to be attempted."""
        credential = self.get(credential_id)
        credential.touch()
        return credential

    def report_failure(self, credential_id: str) -> Credential:
        credential = self.get(credential_id)
        credential.failure_count += 1
        credential.is_valid = credential.failure_count < INVALIDATION_THRESHOLD
        credential.touch()

        if not credential.is_valid:
            logger.warning(
                f"API key {credential.masked_display} marked invalid after "
                f"{credential.failure_count} failures"
            )
        else:
            logger.debug(
                f"API key {credential.masked_display} failure "
                f"#{credential.failure_count}"
            )
        return credential

    def restore_health(
        self,
        credential_id: str,
        failure_count: int,
        is_valid: bool,
        last_used_at: Optional[datetime] = None,
    ) -> Credential:
        """Load health recorded by an earlier run onto a credential."""
        credential = self.get(credential_id)
        credential.failure_count = failure_count
        credential.is_valid = is_valid and failure_count < INVALIDATION_THRESHOLD
        if last_used_at is not None:
            credential.last_used_at = last_used_at
        return credential

    def reset_all_failures(self) -> None:
        """Manually restore every credential to a healthy state."""
        for credential in self._credentials:
            credential.failure_count = 0
            credential.is_valid = True
        logger.info(f"Reset failure counts for {len(self._credentials)} API keys")


class CredentialRotator:
    """
    Picks the next credential to use after the current one failed.

    Selection runs three tiers in order:

    1. sequential scan from the active credential (wrapping) for a valid key
       with fewer than ``SOFT_LIMIT`` failures;
    2. the valid key with the fewest failures below ``HARD_LIMIT``;
    3. any key, valid or not, with the fewest failures below
       ``ABSOLUTE_LIMIT``.

    The chosen credential is promoted to active through the pool.
    """

    def __init__(self, pool: CredentialPool) -> None:
        self.pool = pool

    def current(self) -> Optional[Credential]:
        return self.pool.current()

    def mark_used(self, credential: Credential) -> Credential:
        return self.pool.mark_used(credential.id)

    def report_failure(self, credential: Credential) -> Credential:
        return self.pool.report_failure(credential.id)

    def rotate(self) -> Optional[Credential]:
        """
        Select and activate the next viable credential.

        Returns:
            Optional[Credential]: The newly active credential, or None when
            no credential qualifies under any tier
        """
        choice = self._select()
        if choice is None:
            logger.warning("No API key available for rotation")
            return None

        previous = self.pool.current()
        self.pool.set_active(choice.id)
        if previous is not None and previous.id != choice.id:
            logger.info(
                f"Rotated API key: {previous.masked_display} -> "
                f"{choice.masked_display}"
            )
        return choice

    def _select(self) -> Optional[Credential]:
        credentials = self.pool.credentials
        count = len(credentials)
        if count == 0:
            return None

        start = self.pool.active_index()
        for offset in range(1, count + 1):
            candidate = credentials[(start + offset) % count]
            if candidate.is_valid and candidate.failure_count < SOFT_LIMIT:
                return candidate

        fallback = sorted(
            (c for c in credentials if c.is_valid and c.failure_count < HARD_LIMIT),
            key=lambda c: c.failure_count,
        )
        if fallback:
            return fallback[0]

        last_resort = sorted(
            (c for c in credentials if c.failure_count < ABSOLUTE_LIMIT),
            key=lambda c: c.failure_count,
        )
        if last_resort:
            return last_resort[0]

        return None
