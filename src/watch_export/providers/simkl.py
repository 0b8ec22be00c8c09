"""Simkl adapter: text search followed by a full-detail identifier lookup."""

from __future__ import annotations

from typing import Any, Dict, Optional

from src.datatypes import SimklConfig

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


def _ids_of(payload: Dict[str, Any]) -> Dict[str, Any]:
    ids = payload.get("ids")
    return ids if isinstance(ids, dict) else {}


def _simkl_id(ids: Dict[str, Any]) -> Optional[str]:
    return id_text(ids.get("simkl")) or id_text(ids.get("simkl_id"))


class SimklProvider(HttpMetadataProvider):
    name = "Simkl"

    def __init__(self, config: SimklConfig, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.config = config
        self.base_url = config.base_url

    async def fetch(self, query: MetadataQuery) -> MetadataResult:
        api_key = require_credential(self.config.client_id, provider=self.name, setting="client_id")
        headers = {"simkl-api-key": api_key}
        is_movie = query.media_kind is MediaKind.MOVIE

        params: Dict[str, object] = {"q": query.title}
        if query.year is not None:
            params["year"] = query.year
        search_path = "search/movie" if is_movie else "search/tv"
        payload = await self._request_json("GET", search_path, params=params, headers=headers)
        hits = dict_entries(payload)
        if not hits:
            raise NoResultsError(f"{self.name} found no matches for {query.title!r}")
        hit = pick_search_hit(hits, year=query.year, year_of=lambda item: extract_year(item.get("year")))

        simkl_id = _simkl_id(_ids_of(hit))
        if simkl_id is None:
            raise NoResultsError(f"{self.name} search hit for {query.title!r} carried no Simkl id")

        detail_path = f"{'movies' if is_movie else 'tv'}/{simkl_id}"
        details = ensure_dict(
            await self._request_json("GET", detail_path, params={"extended": "full"}, headers=headers),
            context=f"{self.name} {detail_path} response",
        )
        ids = _ids_of(details)
        return MetadataResult(
            ids=MediaIdentifiers(
                simkl=_simkl_id(ids) or simkl_id,
                imdb=id_text(ids.get("imdb")),
                tmdb=id_text(ids.get("tmdb")),
                tvdb=id_text(ids.get("tvdb")),
                mal=id_text(ids.get("mal")),
            ),
            title=str(details.get("title") or hit.get("title") or query.title),
            year=extract_year(details.get("year"), hit.get("year")),
            media_kind=query.media_kind,
            source=self.name,
        )
