"""Collapse raw watch history into one lookup per title."""

from __future__ import annotations

from typing import Dict, Iterable, List

from .models import MediaKind, WatchEvent

__all__ = ["deduplicate"]


def deduplicate(events: Iterable[WatchEvent]) -> List[WatchEvent]:
    """Return the worklist for *events*.

    Movies are kept as-is in input order. TV events are grouped by exact title
    and each group keeps the event with the latest ``watched_date`` (the last
    one seen wins a tie). TV titles follow the movies in first-seen order.
    """

    movies: List[WatchEvent] = []
    latest_tv: Dict[str, WatchEvent] = {}
    for event in events:
        if event.media_kind is MediaKind.MOVIE:
            movies.append(event)
            continue
        current = latest_tv.get(event.title)
        if current is None or event.watched_date >= current.watched_date:
            # dict keeps the first insertion position on reassignment
            latest_tv[event.title] = event
    return movies + list(latest_tv.values())
