"""Reading scraped watch history and writing the Simkl import CSV."""

from __future__ import annotations

import csv
import json
import logging
from pathlib import Path
from typing import Any, Iterable, List

from .models import MediaKind, ProcessedRecord, WatchEvent

logger = logging.getLogger(__name__)

__all__ = ["SIMKL_CSV_HEADER", "read_watch_events", "simkl_row", "write_simkl_csv"]

SIMKL_CSV_HEADER = (
    "simkl_id",
    "TVDB_ID",
    "TMDB",
    "IMDB_ID",
    "MAL_ID",
    "Type",
    "Title",
    "Year",
    "LastEpWatched",
    "Watchlist",
    "WatchedDate",
    "Rating",
    "Memo",
)


def read_watch_events(path: str | Path) -> List[WatchEvent]:
    """Load a JSON list of watch-event objects from *path*.

    Raises :class:`ValueError` naming the offending entry when the file is not a
    JSON list or an entry cannot be interpreted as a watch event.
    """

    source = Path(path)
    try:
        payload: Any = json.loads(source.read_text(encoding="utf-8-sig"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"{source}: invalid JSON ({exc})") from exc
    if isinstance(payload, dict) and isinstance(payload.get("events"), list):
        payload = payload["events"]
    if not isinstance(payload, list):
        raise ValueError(f"{source}: expected a JSON list of watch events")

    events: List[WatchEvent] = []
    for index, entry in enumerate(payload):
        if not isinstance(entry, dict):
            raise ValueError(f"{source}: entry {index} is not an object")
        try:
            events.append(WatchEvent.from_mapping(entry))
        except ValueError as exc:
            raise ValueError(f"{source}: entry {index}: {exc}") from exc
    logger.debug("Loaded %d watch events from %s", len(events), source)
    return events


def simkl_row(record: ProcessedRecord) -> List[str]:
    ids = record.metadata.ids
    episode = record.episode_label or ""
    if record.media_kind is MediaKind.MOVIE or not episode:
        watchlist = "completed"
    else:
        watchlist = "watching"
    return [
        ids.simkl or "",
        ids.tvdb or "",
        ids.tmdb or "",
        ids.imdb or "",
        ids.mal or "",
        record.media_kind.value,
        record.metadata.title or record.title,
        record.metadata.year or "",
        episode,
        watchlist,
        record.watched_date.isoformat(),
        "",
        "",
    ]


def write_simkl_csv(records: Iterable[ProcessedRecord], path: str | Path) -> int:
    """Write *records* to *path* in the Simkl import layout; return the row count."""

    target = Path(path)
    if target.parent and not target.parent.exists():
        target.parent.mkdir(parents=True, exist_ok=True)
    count = 0
    with target.open("w", encoding="utf-8", newline="") as handle:
        writer = csv.writer(handle)
        writer.writerow(SIMKL_CSV_HEADER)
        for record in records:
            writer.writerow(simkl_row(record))
            count += 1
    logger.info("Wrote %d rows to %s", count, target)
    return count
