"""IMDb lookups through the keyless imdbapi.dev service."""

from __future__ import annotations

from typing import Any, Dict, List

from src.datatypes import IMDBConfig

from ..errors import NoResultsError
from ..models import MediaIdentifiers, MediaKind, MetadataQuery, MetadataResult
from .base import HttpMetadataProvider, dict_entries, ensure_dict, extract_year, id_text, pick_search_hit


def _entries(payload: Dict[str, Any]) -> List[Dict[str, Any]]:
    for key in ("data", "titles", "results"):
        entries = dict_entries(payload.get(key))
        if entries:
            return entries
    return []


def _title(payload: Dict[str, Any]) -> str | None:
    value = payload.get("title") or payload.get("primaryTitle")
    return str(value) if value else None


def _year(payload: Dict[str, Any]) -> str | None:
    return extract_year(payload.get("year"), payload.get("startYear"))


class IMDBProvider(HttpMetadataProvider):
    name = "IMDb"

    def __init__(self, config: IMDBConfig, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.config = config
        self.base_url = config.base_url

    async def fetch(self, query: MetadataQuery) -> MetadataResult:
        kind = "movie" if query.media_kind is MediaKind.MOVIE else "tvSeries"
        payload = ensure_dict(
            await self._request_json("GET", "search", params={"query": query.title, "type": kind}),
            context=f"{self.name} search response",
        )
        hits = _entries(payload)
        if not hits:
            raise NoResultsError(f"{self.name} found no matches for {query.title!r}")
        hit = pick_search_hit(hits, year=query.year, year_of=_year)
        imdb_id = id_text(hit.get("id"))
        if imdb_id is None:
            raise NoResultsError(f"{self.name} search hit for {query.title!r} carried no id")

        detail = ensure_dict(
            await self._request_json("GET", f"title/{imdb_id}"),
            context=f"{self.name} title/{imdb_id} response",
        )
        return MetadataResult(
            ids=MediaIdentifiers(imdb=imdb_id),
            title=_title(detail) or _title(hit) or query.title,
            year=_year(detail) or _year(hit),
            media_kind=query.media_kind,
            source=self.name,
        )
