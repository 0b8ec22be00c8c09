"""TMDB adapter: search by title, then pull the external id table."""

from __future__ import annotations

import logging
from typing import Any, Dict

from src.datatypes import TMDBConfig

from ..errors import NoResultsError
from ..models import MediaIdentifiers, MediaKind, MetadataQuery, MetadataResult
from .base import (
    HttpMetadataProvider,
    dict_entries,
    ensure_dict,
    extract_year,
    id_text,
    pick_search_hit,
    require_credential,
)

logger = logging.getLogger(__name__)


def _year_of(payload: Dict[str, Any]) -> str | None:
    return extract_year(payload.get("release_date") or payload.get("first_air_date"))


class TMDBProvider(HttpMetadataProvider):
    name = "TMDB"

    def __init__(self, config: TMDBConfig, *, use_original_titles: bool = False, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.config = config
        self.base_url = config.base_url
        self.use_original_titles = use_original_titles

    def _title_of(self, payload: Dict[str, Any], fallback: str) -> str:
        keys = ("title", "name", "original_title", "original_name")
        if self.use_original_titles:
            keys = ("original_title", "original_name", "title", "name")
        for key in keys:
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
        return fallback

    async def fetch(self, query: MetadataQuery) -> MetadataResult:
        api_key = require_credential(self.config.api_key, provider=self.name, setting="api_key")
        category = "movie" if query.media_kind is MediaKind.MOVIE else "tv"

        params: Dict[str, object] = {
            "api_key": api_key,
            "query": query.title,
            "include_adult": "false",
            "language": self.config.language,
        }
        if query.year is not None:
            params["year" if category == "movie" else "first_air_date_year"] = query.year
        payload = ensure_dict(
            await self._request_json("GET", f"search/{category}", params=params, context=f"search/{category}"),
            context=f"{self.name} search/{category} response",
        )
        hits = dict_entries(payload.get("results"))
        if not hits:
            raise NoResultsError(f"{self.name} found no matches for {query.title!r}")
        hit = pick_search_hit(hits, year=query.year, year_of=_year_of)

        tmdb_id = id_text(hit.get("id"))
        if tmdb_id is None:
            raise NoResultsError(f"{self.name} search hit for {query.title!r} carried no id")

        external = ensure_dict(
            await self._request_json(
                "GET",
                f"{category}/{tmdb_id}/external_ids",
                params={"api_key": api_key},
                context=f"{category}/{tmdb_id}/external_ids",
            ),
            context=f"{self.name} external_ids response",
        )
        result = MetadataResult(
            ids=MediaIdentifiers(
                tmdb=tmdb_id,
                imdb=id_text(external.get("imdb_id")),
                tvdb=id_text(external.get("tvdb_id")),
            ),
            title=self._title_of(hit, query.title),
            year=_year_of(hit),
            media_kind=query.media_kind,
            source=self.name,
        )
        logger.debug("TMDB match %s/%s (%s)", category, tmdb_id, result.title)
        return result
