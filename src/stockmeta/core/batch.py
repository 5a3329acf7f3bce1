"""
Batch orchestration for metadata generation.

Items are processed strictly one at a time and in input order. A failed
item never stops the run: its error is recorded on the item and the batch
moves on, with a coarse consecutive-failure breaker and growing pacing
delays protecting the remote endpoint.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence

from ..models import (
    BatchState,
    BatchSummary,
    GenerationConfig,
    GenerationItem,
    Platform,
    utcnow,
)
from .credentials import CredentialRotator
from .generation import MetadataGenerator
from .metadata import post_process

logger = logging.getLogger(__name__)

MAX_CONSECUTIVE_FAILURES = 5
BREAKER_PAUSE = 1.0

ItemUpdateCallback = Callable[[str, Dict[str, Any]], None]
ProgressCallback = Callable[[int, int], None]
NotifyCallback = Callable[[str, str], None]
Sleep = Callable[[float], Awaitable[Any]]


def pacing_delay(completed: int) -> float:
    """Delay after an item, growing with the number of completed items."""
    if completed > 100:
        return 0.6
    if completed > 50:
        return 0.4
    if completed > 20:
        return 0.3
    return 0.2


class BatchOrchestrator:
    """
    Drives the single-item generator across a collection of items.

    The host supplies three callbacks: ``on_item_update(item_id, fields)``
    for status and result changes, ``on_progress(completed, total)`` after
    every item and ``notify(kind, message)`` with kind one of success,
    error, info or warning.
    """

    def __init__(
        self,
        generator: MetadataGenerator,
        rotator: CredentialRotator,
        on_item_update: Optional[ItemUpdateCallback] = None,
        on_progress: Optional[ProgressCallback] = None,
        notify: Optional[NotifyCallback] = None,
        sleep: Optional[Sleep] = None,
    ) -> None:
        self.generator = generator
        self.rotator = rotator
        self._on_item_update = on_item_update
        self._on_progress = on_progress
        self._notify = notify
        self._sleep: Sleep = sleep or asyncio.sleep

        self.state = BatchState.IDLE
        self.consecutive_failures = 0

    async def run(
        self,
        items: Sequence[GenerationItem],
        platform: Platform,
        config: GenerationConfig,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> BatchSummary:
        """
        Generate metadata for every item in order.

        Args:
            items: Items to process; mutated in place
            platform: Target marketplace
            config: Generation bounds, snapshotted for the whole run
            cancel_event: When set, the run stops before the next item

        Returns:
            BatchSummary: Aggregate outcome of the run
        """
        platform = Platform(platform)
        snapshot = config.model_copy(deep=True)
        total = len(items)

        summary = BatchSummary(total=total, started_at=utcnow())
        self.state = BatchState.RUNNING
        summary.state = self.state
        self.consecutive_failures = 0

        logger.info(f"Starting {platform.value} batch of {total} items")

        for item in items:
            if cancel_event is not None and cancel_event.is_set():
                logger.info(
                    f"Batch cancelled after {summary.completed}/{total} items"
                )
                self._emit("warning", "Generation cancelled")
                self.state = BatchState.ABORTED
                break

            await self._process_item(item, platform, snapshot, summary)

            summary.completed += 1
            if self._on_progress is not None:
                self._on_progress(summary.completed, total)

            if self.consecutive_failures >= MAX_CONSECUTIVE_FAILURES:
                await self._trip_breaker(summary)

            await self._sleep(pacing_delay(summary.completed))
        else:
            self.state = BatchState.COMPLETED

        summary.state = self.state
        summary.finished_at = utcnow()

        logger.info(
            f"Batch {self.state.value}: {summary.succeeded} succeeded, "
            f"{summary.failed} failed of {total}"
        )
        if summary.succeeded:
            self._emit(
                "success",
                f"Generated {platform.value} metadata for "
                f"{summary.succeeded}/{total} files",
            )
        return summary

    async def _process_item(
        self,
        item: GenerationItem,
        platform: Platform,
        config: GenerationConfig,
        summary: BatchSummary,
    ) -> None:
        self._update(item, {"is_generating": True, "last_error": None})

        try:
            raw = await self.generator.generate(item, platform, config)
            result = post_process(raw, config)
        except Exception as e:
            message = str(e) or "Generation failed"
            logger.error(f"Failed to generate metadata for {item.display_name}: {e}")
            self._update(item, {"is_generating": False, "last_error": message})
            self._emit(
                "error",
                f"Failed to generate metadata for {item.display_name}: {message}",
            )
            summary.failed += 1
            self.consecutive_failures += 1
            return

        self._update(
            item,
            {"results_by_platform": {platform.key: result}, "is_generating": False},
        )
        summary.succeeded += 1
        self.consecutive_failures = 0

    async def _trip_breaker(self, summary: BatchSummary) -> None:
        logger.warning(
            f"{self.consecutive_failures} consecutive failures, forcing key rotation"
        )
        self._emit(
            "warning",
            "Multiple consecutive failures detected. "
            "Switching to next available API key...",
        )

        if self.rotator.rotate() is not None:
            self._emit("info", "Switched to next API key due to consecutive failures")
        summary.forced_rotations += 1

        await self._sleep(BREAKER_PAUSE)
        self.consecutive_failures = 0

    def _update(self, item: GenerationItem, fields: Dict[str, Any]) -> None:
        item.apply_updates(fields)
        if self._on_item_update is not None:
            self._on_item_update(item.id, fields)

    def _emit(self, kind: str, message: str) -> None:
        if self._notify is not None:
            self._notify(kind, message)
