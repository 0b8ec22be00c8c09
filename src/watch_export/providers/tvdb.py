"""TheTVDB v4 adapter (login token, search, extended record for remote ids)."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from src.datatypes import TVDBConfig

from ..errors import AuthError, NoResultsError
from ..models import MediaIdentifiers, MediaKind, MetadataQuery, MetadataResult
from .base import (
    TokenAuthProvider,
    dict_entries,
    ensure_dict,
    extract_year,
    id_text,
    pick_search_hit,
    require_credential,
)

logger = logging.getLogger(__name__)


def _remote_ids(payload: Dict[str, Any]) -> Dict[str, str]:
    """Map TVDB ``remoteIds`` entries onto ``imdb``/``tmdb`` keys."""

    found: Dict[str, str] = {}
    entries: List[Dict[str, Any]] = dict_entries(payload.get("remoteIds")) or dict_entries(
        payload.get("remote_ids")
    )
    for entry in entries:
        source = str(entry.get("sourceName") or "").lower()
        value = id_text(entry.get("id"))
        if value is None:
            continue
        if "imdb" in source:
            found.setdefault("imdb", value)
        elif "themoviedb" in source or "tmdb" in source:
            found.setdefault("tmdb", value)
    return found


def _tvdb_id(hit: Dict[str, Any]) -> Optional[str]:
    raw = id_text(hit.get("tvdb_id")) or id_text(hit.get("id"))
    if raw is None:
        return None
    # search ids look like "series-81189"
    return raw.rsplit("-", 1)[-1]


class TVDBProvider(TokenAuthProvider):
    name = "TVDB"

    def __init__(self, config: TVDBConfig, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.config = config
        self.base_url = config.base_url

    async def _authenticate(self) -> str:
        api_key = require_credential(self.config.api_key, provider=self.name, setting="api_key")
        body: Dict[str, str] = {"apikey": api_key}
        if self.config.pin:
            body["pin"] = self.config.pin
        payload = ensure_dict(
            await self._request_json("POST", "login", json_body=body, context="login"),
            context=f"{self.name} login response",
        )
        data = payload.get("data")
        token = id_text(data.get("token")) if isinstance(data, dict) else None
        if token is None:
            raise AuthError(f"{self.name} login response did not include a token")
        logger.debug("TVDB session token acquired")
        return token

    async def fetch(self, query: MetadataQuery) -> MetadataResult:
        require_credential(self.config.api_key, provider=self.name, setting="api_key")
        is_movie = query.media_kind is MediaKind.MOVIE

        params: Dict[str, object] = {"query": query.title, "type": "movie" if is_movie else "series"}
        if query.year is not None:
            params["year"] = query.year
        payload = ensure_dict(
            await self._authorized_json("GET", "search", params=params, context="search"),
            context=f"{self.name} search response",
        )
        hits = dict_entries(payload.get("data"))
        if not hits:
            raise NoResultsError(f"{self.name} found no matches for {query.title!r}")
        hit = pick_search_hit(
            hits,
            year=query.year,
            year_of=lambda item: extract_year(
                item.get("year"), item.get("first_air_time"), item.get("firstAired")
            ),
        )
        tvdb_id = _tvdb_id(hit)
        if tvdb_id is None:
            raise NoResultsError(f"{self.name} search hit for {query.title!r} carried no id")

        detail_path = f"{'movies' if is_movie else 'series'}/{tvdb_id}/extended"
        detail = ensure_dict(
            await self._authorized_json("GET", detail_path, params={"short": "true"}, context=detail_path),
            context=f"{self.name} {detail_path} response",
        )
        record = detail.get("data") if isinstance(detail.get("data"), dict) else {}
        remote = _remote_ids(record) or _remote_ids(hit)
        return MetadataResult(
            ids=MediaIdentifiers(tvdb=tvdb_id, imdb=remote.get("imdb"), tmdb=remote.get("tmdb")),
            title=str(record.get("name") or hit.get("name") or query.title),
            year=extract_year(
                record.get("year"), record.get("firstAired"), hit.get("year"), hit.get("first_air_time")
            ),
            media_kind=query.media_kind,
            source=self.name,
        )
