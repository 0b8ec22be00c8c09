"""Bounded-concurrency batch enrichment of deduplicated watch history."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Iterable, List, Optional, Protocol

from src.datatypes import FailurePolicy

from .chain import ProviderChain
from .dedup import deduplicate
from .errors import BatchFailedError, RetryExhaustedError, WatchExportError
from .models import BatchResult, FailedItem, MediaKind, MetadataResult, ProcessedRecord, WatchEvent

logger = logging.getLogger(__name__)

__all__ = [
    "BACKOFF_STEP_SECONDS",
    "HistoryProcessor",
    "MetadataLookup",
    "NullProgressObserver",
    "ProgressObserver",
]

BACKOFF_STEP_SECONDS = 1.0


class MetadataLookup(Protocol):
    """What the processor needs from a chain: a single resolving call."""

    async def lookup(
        self, title: str, media_kind: MediaKind, year: Optional[int] = None
    ) -> MetadataResult: ...


class ProgressObserver(Protocol):
    def started(self, total: int) -> None: ...

    def item_started(self, title: str, remaining: int) -> None: ...

    def item_finished(self, title: str, ok: bool) -> None: ...

    def completed(self, processed: int, failed: int) -> None: ...


class NullProgressObserver:
    """Observer that ignores every notification."""

    def started(self, total: int) -> None:
        return None

    def item_started(self, title: str, remaining: int) -> None:
        return None

    def item_finished(self, title: str, ok: bool) -> None:
        return None

    def completed(self, processed: int, failed: int) -> None:
        return None


class HistoryProcessor:
    """Resolve metadata for a watch history with bounded parallelism.

    Each worklist item holds one semaphore permit for its whole lookup cycle,
    including the waits between attempts, so at most ``concurrency`` lookups
    are ever in flight. A failed attempt ``n`` is followed by a pause of
    ``n`` seconds before the next one.

    With :attr:`FailurePolicy.PARTIAL` every item runs to completion and
    failures are reported next to the resolved records. With
    :attr:`FailurePolicy.ALL_OR_NOTHING` the first item to exhaust its
    attempts cancels the rest and :class:`BatchFailedError` is raised.
    """

    def __init__(
        self,
        chain: ProviderChain | MetadataLookup,
        *,
        concurrency: int = 5,
        max_attempts: int = 3,
        failure_policy: FailurePolicy = FailurePolicy.PARTIAL,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        observer: ProgressObserver | None = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.chain = chain
        self.concurrency = concurrency
        self.max_attempts = max_attempts
        self.failure_policy = failure_policy
        self._sleep = sleep or asyncio.sleep
        self._observer: ProgressObserver = observer or NullProgressObserver()

    async def _resolve(self, event: WatchEvent) -> ProcessedRecord:
        attempt = 1
        while True:
            try:
                result = await self.chain.lookup(event.title, event.media_kind)
            except WatchExportError as exc:
                if attempt >= self.max_attempts:
                    raise RetryExhaustedError(event.title, self.max_attempts, exc) from exc
                delay = attempt * BACKOFF_STEP_SECONDS
                logger.info(
                    "Lookup attempt %d/%d for %r failed; retrying in %.0f s",
                    attempt,
                    self.max_attempts,
                    event.title,
                    delay,
                )
                await self._sleep(delay)
                attempt += 1
                continue
            return ProcessedRecord.from_event(event, result)

    async def _run_batch(self, events: Iterable[WatchEvent], policy: FailurePolicy) -> BatchResult:
        worklist = deduplicate(events)
        total = len(worklist)
        semaphore = asyncio.Semaphore(self.concurrency)
        outcome = BatchResult()
        started = 0
        strict = policy is FailurePolicy.ALL_OR_NOTHING

        logger.info(
            "Enriching %d titles (concurrency=%d, policy=%s)", total, self.concurrency, policy.value
        )
        self._observer.started(total)

        async def _run_item(event: WatchEvent) -> None:
            nonlocal started
            async with semaphore:
                started += 1
                self._observer.item_started(event.title, total - started)
                try:
                    record = await self._resolve(event)
                except RetryExhaustedError as exc:
                    self._observer.item_finished(event.title, False)
                    if strict:
                        raise
                    logger.error("Giving up on %r: %s", event.title, exc.last_error)
                    outcome.failures.append(FailedItem(event=event, error=exc))
                    return
                self._observer.item_finished(event.title, True)
                outcome.records.append(record)

        tasks: List[asyncio.Task[None]] = [asyncio.create_task(_run_item(event)) for event in worklist]
        try:
            if tasks:
                done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
                errors = [task.exception() for task in done if not task.cancelled()]
                failure = next((error for error in errors if error is not None), None)
                if failure is not None:
                    await _cancel_pending(tasks)
                    self._observer.completed(len(outcome.records), len(outcome.failures) + 1)
                    if isinstance(failure, RetryExhaustedError):
                        raise BatchFailedError(
                            failure.title,
                            f"Batch aborted: {failure}",
                        ) from failure
                    raise failure
        finally:
            await _cancel_pending(tasks)

        self._observer.completed(len(outcome.records), len(outcome.failures))
        logger.info(
            "Enrichment finished: %d resolved, %d failed", len(outcome.records), len(outcome.failures)
        )
        return outcome

    async def process(self, events: Iterable[WatchEvent]) -> BatchResult:
        """Enrich *events* under the configured failure policy."""

        return await self._run_batch(events, self.failure_policy)

    async def process_strict(self, events: Iterable[WatchEvent]) -> List[ProcessedRecord]:
        """Enrich *events* and return every record, or raise :class:`BatchFailedError`."""

        outcome = await self._run_batch(events, FailurePolicy.ALL_OR_NOTHING)
        return outcome.records


async def _cancel_pending(tasks: List[asyncio.Task[None]]) -> None:
    pending = [task for task in tasks if not task.done()]
    for task in pending:
        task.cancel()
    if pending:
        await asyncio.wait(pending)
