"""MyAnimeList adapter. Anime is catalogued as TV, so movie queries never match."""

from __future__ import annotations

from typing import Any, Dict

from src.datatypes import MALConfig

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

_FIELDS = "id,title,start_date,alternative_titles"


def _node(entry: Dict[str, Any]) -> Dict[str, Any]:
    node = entry.get("node")
    return node if isinstance(node, dict) else entry


class MALProvider(TokenAuthProvider):
    name = "MyAnimeList"

    def __init__(self, config: MALConfig, *, use_original_titles: bool = False, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.config = config
        self.base_url = config.base_url
        self.use_original_titles = use_original_titles

    def _auth_headers(self, token: str) -> Dict[str, str]:
        if not self.config.client_secret:
            return {"X-MAL-CLIENT-ID": token}
        return super()._auth_headers(token)

    async def _authenticate(self) -> str:
        client_id = require_credential(self.config.client_id, provider=self.name, setting="client_id")
        if not self.config.client_secret:
            return client_id
        payload = ensure_dict(
            await self._request_json(
                "POST",
                self.config.token_url,
                data={
                    "client_id": client_id,
                    "client_secret": self.config.client_secret,
                    "grant_type": "client_credentials",
                },
                context="oauth2/token",
            ),
            context=f"{self.name} token response",
        )
        token = id_text(payload.get("access_token"))
        if token is None:
            raise AuthError(f"{self.name} token response did not include an access_token")
        return token

    def _title_of(self, node: Dict[str, Any], fallback: str) -> str:
        if self.use_original_titles:
            alternatives = node.get("alternative_titles")
            if isinstance(alternatives, dict) and alternatives.get("ja"):
                return str(alternatives["ja"])
        return str(node.get("title") or fallback)

    async def fetch(self, query: MetadataQuery) -> MetadataResult:
        require_credential(self.config.client_id, provider=self.name, setting="client_id")
        if query.media_kind is MediaKind.MOVIE:
            raise NoResultsError(f"{self.name} does not index movies ({query.title!r})")

        payload = ensure_dict(
            await self._authorized_json(
                "GET",
                "anime",
                params={"q": query.title[:64], "limit": 5, "fields": _FIELDS},
                context="anime search",
            ),
            context=f"{self.name} anime search response",
        )
        hits = [_node(entry) for entry in dict_entries(payload.get("data"))]
        if not hits:
            raise NoResultsError(f"{self.name} found no matches for {query.title!r}")
        node = pick_search_hit(hits, year=query.year, year_of=lambda item: extract_year(item.get("start_date")))
        mal_id = id_text(node.get("id"))
        if mal_id is None:
            raise NoResultsError(f"{self.name} search hit for {query.title!r} carried no id")

        detail = ensure_dict(
            await self._authorized_json(
                "GET",
                f"anime/{mal_id}",
                params={"fields": f"{_FIELDS},media_type"},
                context=f"anime/{mal_id}",
            ),
            context=f"{self.name} anime/{mal_id} response",
        )
        return MetadataResult(
            ids=MediaIdentifiers(mal=mal_id),
            title=self._title_of(detail, self._title_of(node, query.title)),
            year=extract_year(detail.get("start_date"), node.get("start_date")),
            media_kind=query.media_kind,
            source=self.name,
        )
