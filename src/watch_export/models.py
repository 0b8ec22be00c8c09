"""Data model shared by the metadata providers, chain and batch processor."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional


class MediaKind(str, Enum):
    """Whether a watch event refers to a film or to an episodic show."""

    MOVIE = "movie"
    TV = "tv"


class ServiceName(str, Enum):
    """External metadata services that can contribute identifiers."""

    SIMKL = "simkl"
    TMDB = "tmdb"
    TVDB = "tvdb"
    IMDB = "imdb"
    MAL = "mal"


def _coerce_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value or "").strip()
    if not text:
        raise ValueError("watched date is empty")
    # Scrapers may emit full timestamps; only the calendar day matters here.
    return date.fromisoformat(text[:10])


def _coerce_kind(value: Any, episode_label: Optional[str]) -> MediaKind:
    if isinstance(value, MediaKind):
        return value
    text = str(value or "").strip().lower()
    if text in {"tv", "show", "series", "episode", "tvshow", "tv_show"}:
        return MediaKind.TV
    if text in {"movie", "film"}:
        return MediaKind.MOVIE
    if text:
        raise ValueError(f"unknown media kind {value!r}")
    return MediaKind.TV if episode_label else MediaKind.MOVIE


@dataclass(frozen=True)
class WatchEvent:
    """One scraped record of a title watched on some date."""

    title: str
    watched_date: date
    media_kind: MediaKind
    episode_label: Optional[str] = None

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "WatchEvent":
        """Build an event from a loosely-typed mapping such as a JSON object.

        Accepts ``watched_date`` or ``date`` for the day, ``episode_label`` or
        ``episode`` for the episode, and ``media_kind`` or ``type`` for the kind.
        Without an explicit kind, entries carrying an episode are treated as TV.
        """

        title = str(payload.get("title") or "").strip()
        if not title:
            raise ValueError("watch event is missing a title")
        episode_raw = payload.get("episode_label", payload.get("episode"))
        episode = str(episode_raw).strip() if episode_raw not in (None, "") else None
        kind_raw = payload.get("media_kind", payload.get("type"))
        return cls(
            title=title,
            watched_date=_coerce_date(payload.get("watched_date", payload.get("date"))),
            media_kind=_coerce_kind(kind_raw, episode),
            episode_label=episode or None,
        )


@dataclass(frozen=True)
class MetadataQuery:
    title: str
    media_kind: MediaKind
    year: Optional[int] = None


@dataclass(frozen=True)
class MediaIdentifiers:
    """Identifier per external service; absent until a provider fills it."""

    simkl: Optional[str] = None
    tmdb: Optional[str] = None
    tvdb: Optional[str] = None
    imdb: Optional[str] = None
    mal: Optional[str] = None

    def get(self, service: ServiceName | str) -> Optional[str]:
        key = service.value if isinstance(service, ServiceName) else str(service).lower()
        return getattr(self, key, None)

    def as_dict(self) -> Dict[str, Optional[str]]:
        return {item.name: getattr(self, item.name) for item in fields(self)}

    def is_empty(self) -> bool:
        return all(value is None for value in self.as_dict().values())


@dataclass(frozen=True)
class MetadataResult:
    """Resolved canonical record for one query, supplied by a single provider."""

    ids: MediaIdentifiers
    title: str
    year: Optional[str]
    media_kind: MediaKind
    source: str = ""


@dataclass(frozen=True)
class ProcessedRecord:
    """Final unit handed to the output stage."""

    title: str
    watched_date: date
    media_kind: MediaKind
    episode_label: Optional[str]
    metadata: MetadataResult

    @classmethod
    def from_event(cls, event: WatchEvent, metadata: MetadataResult) -> "ProcessedRecord":
        return cls(
            title=event.title,
            watched_date=event.watched_date,
            media_kind=event.media_kind,
            episode_label=event.episode_label,
            metadata=metadata,
        )


@dataclass(frozen=True)
class RateLimit:
    """Token bucket budget: ``capacity`` tokens refilled at ``refill_rate`` per second."""

    capacity: float
    refill_rate: float

    @classmethod
    def per_window(cls, calls: int | float, per_seconds: int | float) -> "RateLimit":
        """Translate a "calls per N seconds" budget into a bucket definition."""

        if per_seconds <= 0:
            raise ValueError("per_seconds must be > 0")
        return cls(capacity=float(calls), refill_rate=float(calls) / float(per_seconds))


@dataclass(frozen=True)
class FailedItem:
    """A worklist item that could not be resolved."""

    event: WatchEvent
    error: Exception

    @property
    def title(self) -> str:
        return self.event.title


@dataclass
class BatchResult:
    """Outcome of a batch run: resolved records plus any failed items."""

    records: List[ProcessedRecord] = field(default_factory=list)
    failures: List[FailedItem] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


__all__ = [
    "BatchResult",
    "FailedItem",
    "MediaIdentifiers",
    "MediaKind",
    "MetadataQuery",
    "MetadataResult",
    "ProcessedRecord",
    "RateLimit",
    "ServiceName",
    "WatchEvent",
]
