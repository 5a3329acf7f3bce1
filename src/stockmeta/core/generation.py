"""
Single-item generation with credential-aware retries.

This module turns one image into one ``PlatformMetadata`` by calling the
remote endpoint, rotating credentials on failure and giving up after a
bounded number of attempts.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
)

from ..api import DEFAULT_MODEL, APIError, describe_image, is_rate_limit
from ..models import GenerationConfig, GenerationItem, Platform, PlatformMetadata
from .credentials import CredentialRotator
from .metadata import build_prompt, parse_response, post_process

logger = logging.getLogger(__name__)

MIN_ATTEMPTS = 10
ATTEMPTS_PER_CREDENTIAL = 3

SWITCH_DELAY = 0.5
RATE_LIMIT_DELAY = 1.5
RETRY_DELAY = 0.3

Describe = Callable[..., Awaitable[str]]
Sleep = Callable[[float], Awaitable[Any]]


class GenerationError(Exception):
    """Base exception for generation-related errors."""

    pass


class NoCredentialError(GenerationError):
    """Raised when there is no credential to attempt the call with."""

    pass


class ExhaustedRetriesError(GenerationError):
    """Raised when the attempt budget is consumed without a success."""

    def __init__(self, attempts: int, last_error: Optional[BaseException]) -> None:
        detail = str(last_error) if last_error else "Unknown error"
        super().__init__(f"Failed after {attempts} attempts: {detail}")
        self.attempts = attempts
        self.last_error = last_error


def attempt_budget(pool_size: int) -> int:
    """Total attempts allowed for one item."""
    return max(pool_size * ATTEMPTS_PER_CREDENTIAL, MIN_ATTEMPTS)


class MetadataGenerator:
    """
    Produces metadata for one image, retrying across credentials.

    Every failed attempt except the last one is reported against the
    credential that made it (rate-limit failures only on even attempt
    numbers) and followed by a rotation request. A switch to a different
    credential waits ``SWITCH_DELAY``; otherwise the plain retry delay is
    used.
    """

    def __init__(
        self,
        rotator: CredentialRotator,
        describe: Optional[Describe] = None,
        sleep: Optional[Sleep] = None,
        model: str = DEFAULT_MODEL,
        base_url: Optional[str] = None,
    ) -> None:
        self.rotator = rotator
        self.model = model
        self.base_url = base_url
        self._describe: Describe = describe or describe_image
        self._sleep: Sleep = sleep or asyncio.sleep

    async def generate(
        self, item: GenerationItem, platform: Platform, config: GenerationConfig
    ) -> PlatformMetadata:
        """
        Generate raw metadata for a single item.

        Args:
            item: The image to describe
            platform: Target marketplace
            config: Bounds used to build the prompt

        Returns:
            PlatformMetadata: Parsed, not yet post-processed, metadata

        Raises:
            NoCredentialError: If the pool has no active credential
            ExhaustedRetriesError: If every attempt failed
        """
        credential = self.rotator.current()
        if credential is None:
            raise NoCredentialError("No API key available")

        budget = attempt_budget(len(self.rotator.pool))
        prompt = build_prompt(item.display_name, platform, config)
        state = {"credential": credential}

        def next_delay(retry_state: RetryCallState) -> float:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            rate_limited = exc is not None and is_rate_limit(exc)
            current = state["credential"]
            attempt = retry_state.attempt_number

            # the final failure is neither reported nor rotated
            if attempt >= budget:
                return 0.0

            logger.info(
                f"Attempt {attempt}/{budget} failed for {item.display_name} "
                f"with key {current.masked_display}: {exc}"
            )

            if not rate_limited or attempt % 2 == 0:
                self.rotator.report_failure(current)

            replacement = self.rotator.rotate()
            if replacement is not None and replacement.id != current.id:
                state["credential"] = replacement
                logger.info(
                    f"Switching to API key {replacement.masked_display} "
                    f"for {item.display_name}"
                )
                return SWITCH_DELAY

            return RATE_LIMIT_DELAY if rate_limited else RETRY_DELAY

        retrying = AsyncRetrying(
            stop=stop_after_attempt(budget),
            wait=next_delay,
            retry=retry_if_exception_type(APIError),
            before_sleep=before_sleep_log(logger, logging.DEBUG),
            sleep=self._sleep,
        )

        metadata: Optional[PlatformMetadata] = None
        try:
            async for attempt in retrying:
                with attempt:
                    credential = self.rotator.mark_used(state["credential"])
                    text = await self._describe(
                        prompt,
                        item.image_bytes,
                        credential.secret,
                        model=self.model,
                        mime_type=item.mime_type,
                        base_url=self.base_url,
                    )
                    metadata = parse_response(text)
        except RetryError as e:
            raise ExhaustedRetriesError(
                e.last_attempt.attempt_number, e.last_attempt.exception()
            ) from e.last_attempt.exception()
        except GenerationError:
            raise
        except Exception as e:
            raise GenerationError(f"Generation failed: {e}") from e

        if metadata is None:
            raise GenerationError("Generation finished without a parsed response")
        return metadata

    async def generate_and_store(
        self, item: GenerationItem, platform: Platform, config: GenerationConfig
    ) -> PlatformMetadata:
        """Generate, post-process and merge the result into the item."""
        platform = Platform(platform)
        raw = await self.generate(item, platform, config)
        result = post_process(raw, config)
        item.apply_updates(
            {
                "results_by_platform": {platform.key: result},
                "is_generating": False,
                "last_error": None,
            }
        )
        return result
