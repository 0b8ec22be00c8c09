from __future__ import annotations

import asyncio
import json
from urllib.parse import parse_qs

import httpx
import pytest

from src.datatypes import MALConfig, TVDBConfig
from src.watch_export.errors import AuthError, NoResultsError
from src.watch_export.models import MediaKind, MetadataQuery, MetadataResult
from src.watch_export.providers import MALProvider, TVDBProvider
from src.watch_export.providers.base import HttpMetadataProvider


class _TVDBServer:
    """Minimal TheTVDB v4 double issuing numbered tokens."""

    def __init__(self, *, reject_tokens: set[str] | None = None) -> None:
        self.reject_tokens = reject_tokens if reject_tokens is not None else set()
        self.logins: list[dict] = []
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/v4/login":
            self.logins.append(json.loads(request.content))
            return httpx.Response(200, json={"status": "success", "data": {"token": f"t{len(self.logins)}"}})
        token = request.headers.get("Authorization", "").removeprefix("Bearer ")
        if token in self.reject_tokens:
            return httpx.Response(401, json={"status": "failure"})
        if path == "/v4/search":
            return httpx.Response(
                200,
                json={
                    "data": [
                        {"tvdb_id": "81189", "name": "Breaking Bad", "year": "2008"},
                    ]
                },
            )
        if path == "/v4/series/81189/extended":
            return httpx.Response(
                200,
                json={
                    "data": {
                        "id": 81189,
                        "name": "Breaking Bad",
                        "year": "2008",
                        "remoteIds": [
                            {"id": "tt0903747", "sourceName": "IMDB"},
                            {"id": "1396", "sourceName": "TheMovieDB.com"},
                        ],
                    }
                },
            )
        return httpx.Response(404, json={})


def _run(provider: HttpMetadataProvider, *queries: MetadataQuery) -> list[MetadataResult]:
    async def _go() -> list[MetadataResult]:
        try:
            return [await provider.fetch(query) for query in queries]
        finally:
            await provider.aclose()

    return asyncio.run(_go())


def test_tvdb_authenticates_lazily_and_once() -> None:
    server = _TVDBServer()
    provider = TVDBProvider(TVDBConfig(api_key="k", pin="1234"), transport=httpx.MockTransport(server))

    assert server.requests == []
    first, second = _run(
        provider,
        MetadataQuery("Breaking Bad", MediaKind.TV),
        MetadataQuery("Breaking Bad", MediaKind.TV, year=2008),
    )

    assert server.logins == [{"apikey": "k", "pin": "1234"}]
    assert first.ids.tvdb == "81189"
    assert first.ids.imdb == "tt0903747"
    assert first.ids.tmdb == "1396"
    assert first.year == "2008"
    assert second.source == "TVDB"


def test_tvdb_reauthenticates_once_after_rejected_token() -> None:
    server = _TVDBServer(reject_tokens={"t1"})
    provider = TVDBProvider(TVDBConfig(api_key="k"), transport=httpx.MockTransport(server))

    result = _run(provider, MetadataQuery("Breaking Bad", MediaKind.TV))[0]

    assert len(server.logins) == 2
    assert server.logins[0] == {"apikey": "k"}
    assert result.ids.tvdb == "81189"


def test_tvdb_second_rejection_surfaces_auth_error() -> None:
    server = _TVDBServer(reject_tokens={"t1", "t2", "t3"})
    provider = TVDBProvider(TVDBConfig(api_key="k"), transport=httpx.MockTransport(server))

    with pytest.raises(AuthError):
        _run(provider, MetadataQuery("Breaking Bad", MediaKind.TV))
    assert len(server.logins) == 2


def test_tvdb_concurrent_callers_share_one_refresh() -> None:
    server = _TVDBServer(reject_tokens={"t1"})
    provider = TVDBProvider(TVDBConfig(api_key="k"), transport=httpx.MockTransport(server))

    async def _go() -> list[MetadataResult]:
        try:
            return list(
                await asyncio.gather(
                    provider.fetch(MetadataQuery("Breaking Bad", MediaKind.TV)),
                    provider.fetch(MetadataQuery("Breaking Bad", MediaKind.TV, year=2008)),
                )
            )
        finally:
            await provider.aclose()

    results = asyncio.run(_go())

    assert len(results) == 2
    assert len(server.logins) == 2


def test_tvdb_missing_key_makes_no_request() -> None:
    server = _TVDBServer()
    provider = TVDBProvider(TVDBConfig(api_key=""), transport=httpx.MockTransport(server))

    with pytest.raises(AuthError):
        _run(provider, MetadataQuery("Breaking Bad", MediaKind.TV))
    assert server.requests == []


def _mal_handler(seen: list[httpx.Request]):
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.url.host == "myanimelist.net":
            return httpx.Response(200, json={"access_token": "mal-token", "token_type": "Bearer"})
        if request.url.path == "/v2/anime":
            return httpx.Response(
                200,
                json={"data": [{"node": {"id": 1, "title": "Cowboy Bebop", "start_date": "1998-04-03"}}]},
            )
        if request.url.path == "/v2/anime/1":
            return httpx.Response(200, json={"id": 1, "title": "Cowboy Bebop", "start_date": "1998-04-03"})
        return httpx.Response(404, json={})

    return handler


def test_mal_uses_client_id_header_without_secret() -> None:
    seen: list[httpx.Request] = []
    provider = MALProvider(MALConfig(client_id="cid"), transport=httpx.MockTransport(_mal_handler(seen)))

    result = _run(provider, MetadataQuery("Cowboy Bebop", MediaKind.TV))[0]

    assert result.ids.mal == "1"
    assert result.year == "1998"
    assert result.source == "MyAnimeList"
    assert [request.url.path for request in seen] == ["/v2/anime", "/v2/anime/1"]
    assert all(request.headers["X-MAL-CLIENT-ID"] == "cid" for request in seen)
    assert seen[0].url.params["limit"] == "5"


def test_mal_fetches_client_credentials_token_when_secret_is_set() -> None:
    seen: list[httpx.Request] = []
    provider = MALProvider(
        MALConfig(client_id="cid", client_secret="secret"),
        transport=httpx.MockTransport(_mal_handler(seen)),
    )

    _run(provider, MetadataQuery("Cowboy Bebop", MediaKind.TV))

    token_request = seen[0]
    assert token_request.method == "POST"
    assert token_request.url.path == "/v1/oauth2/token"
    form = parse_qs(token_request.content.decode())
    assert form["grant_type"] == ["client_credentials"]
    assert seen[1].headers["Authorization"] == "Bearer mal-token"


def test_mal_does_not_serve_movies() -> None:
    seen: list[httpx.Request] = []
    provider = MALProvider(MALConfig(client_id="cid"), transport=httpx.MockTransport(_mal_handler(seen)))

    with pytest.raises(NoResultsError):
        _run(provider, MetadataQuery("Akira", MediaKind.MOVIE))
    assert seen == []
