"""Deterministic stand-ins for clocks, sleeps, providers and chains."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import date
from typing import Dict, List, Optional, Sequence

from src.watch_export.errors import AllProvidersFailedError, MetadataError, NoResultsError
from src.watch_export.models import (
    MediaIdentifiers,
    MediaKind,
    MetadataQuery,
    MetadataResult,
    WatchEvent,
)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Async sleep replacement that records delays and optionally advances a clock."""

    def __init__(self, clock: Optional[FakeClock] = None) -> None:
        self.delays: List[float] = []
        self._clock = clock

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        if self._clock is not None:
            self._clock.advance(delay)
        await asyncio.sleep(0)


def make_result(title: str, *, source: str = "stub", kind: MediaKind = MediaKind.MOVIE) -> MetadataResult:
    return MetadataResult(
        ids=MediaIdentifiers(tmdb=f"tmdb-{title}"),
        title=title,
        year="2020",
        media_kind=kind,
        source=source,
    )


def movie(title: str, day: str = "2024-01-01") -> WatchEvent:
    return WatchEvent(title=title, watched_date=date.fromisoformat(day), media_kind=MediaKind.MOVIE)


def episode(title: str, day: str, label: str = "S1E1") -> WatchEvent:
    return WatchEvent(
        title=title,
        watched_date=date.fromisoformat(day),
        media_kind=MediaKind.TV,
        episode_label=label,
    )


class StubProvider:
    """Provider returning canned results or raising canned errors, in call order."""

    def __init__(
        self,
        name: str,
        *,
        error: Optional[MetadataError] = None,
        result: Optional[MetadataResult] = None,
        log: Optional[List[str]] = None,
    ) -> None:
        self.name = name
        self._error = error
        self._result = result
        self._log = log
        self.queries: List[MetadataQuery] = []
        self.closed = False

    async def fetch(self, query: MetadataQuery) -> MetadataResult:
        self.queries.append(query)
        if self._log is not None:
            self._log.append(self.name)
        if self._error is not None:
            raise self._error
        return self._result or make_result(query.title, source=self.name, kind=query.media_kind)

    async def aclose(self) -> None:
        self.closed = True


class StubChain:
    """Chain double for processor tests.

    ``failures`` maps a title to how many leading attempts fail; a negative
    count fails forever. The chain tracks concurrent lookups so tests can
    assert on the semaphore bound.
    """

    def __init__(
        self,
        *,
        failures: Optional[Dict[str, int]] = None,
        delay: float = 0.0,
        on_lookup: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.failures = dict(failures or {})
        self.delay = delay
        self.on_lookup = on_lookup
        self.calls: List[str] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.closed = False

    async def lookup(
        self, title: str, media_kind: MediaKind, year: Optional[int] = None
    ) -> MetadataResult:
        self.calls.append(title)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.on_lookup is not None:
                self.on_lookup(title)
            await asyncio.sleep(self.delay)
            remaining = self.failures.get(title, 0)
            if remaining != 0:
                if remaining > 0:
                    self.failures[title] = remaining - 1
                raise AllProvidersFailedError(title, [("stub", NoResultsError(f"no match for {title}"))])
            return make_result(title, kind=media_kind)
        finally:
            self.in_flight -= 1

    async def aclose(self) -> None:
        self.closed = True

    async def __aenter__(self) -> "StubChain":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()


def titles(records: Sequence[object]) -> List[str]:
    return sorted(getattr(record, "title") for record in records)
