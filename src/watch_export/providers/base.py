"""Provider contract plus the shared httpx plumbing used by every adapter."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple, TypeVar, cast

import httpx

from src.datatypes import HttpConfig

from .. import net
from ..errors import AuthError, NoResultsError, TransportError
from ..models import MetadataQuery, MetadataResult

logger = logging.getLogger(__name__)

__all__ = [
    "HttpMetadataProvider",
    "MetadataProvider",
    "TokenAuthProvider",
    "extract_year",
    "pick_search_hit",
]

_YEAR_RE = re.compile(r"(19|20)\d{2}")

_T = TypeVar("_T")


class MetadataProvider(Protocol):
    """Capability shared by every metadata source the chain can consult."""

    @property
    def name(self) -> str: ...

    async def fetch(self, query: MetadataQuery) -> MetadataResult: ...

    async def aclose(self) -> None: ...


class _ResponseCache:
    """Bounded LRU of decoded GET payloads, scoped to one provider instance."""

    def __init__(self, max_entries: int = 256) -> None:
        self._max_entries = max(0, int(max_entries))
        self._data: "OrderedDict[Tuple[Any, ...], Any]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._data)

    def clear(self) -> None:
        self._data.clear()

    def get(self, key: Tuple[Any, ...]) -> Any | None:
        value = self._data.get(key)
        if value is None:
            return None
        self._data.move_to_end(key)
        return value

    def set(self, key: Tuple[Any, ...], value: Any) -> None:
        if self._max_entries == 0:
            return
        self._data[key] = value
        self._data.move_to_end(key)
        while len(self._data) > self._max_entries:
            self._data.popitem(last=False)


def extract_year(*values: object) -> Optional[str]:
    """Return the first four-digit year found in *values* as a string."""

    for value in values:
        if value is None:
            continue
        if isinstance(value, int):
            return str(value) if 1800 < value < 2200 else None
        match = _YEAR_RE.search(str(value))
        if match:
            return match.group(0)
    return None


def pick_search_hit(
    hits: Sequence[_T],
    *,
    year: Optional[int],
    year_of: Callable[[_T], Optional[str]],
) -> _T:
    """Return the first hit, preferring one whose year matches *year*."""

    if not hits:
        raise NoResultsError("search returned no results")
    if year is not None:
        wanted = str(year)
        for hit in hits:
            if year_of(hit) == wanted:
                return hit
    return hits[0]


def ensure_dict(value: object, *, context: str) -> Dict[str, Any]:
    if isinstance(value, dict) and all(isinstance(key, str) for key in value):
        return cast(Dict[str, Any], value)
    raise TransportError(f"{context} was not a JSON object")


def dict_entries(value: object) -> List[Dict[str, Any]]:
    if not isinstance(value, list):
        return []
    entries: List[Dict[str, Any]] = []
    for item in value:
        if isinstance(item, dict) and all(isinstance(key, str) for key in item):
            entries.append(cast(Dict[str, Any], item))
    return entries


def id_text(value: object) -> Optional[str]:
    """Normalise an identifier from a JSON payload to a non-empty string."""

    if value is None or isinstance(value, bool):
        return None
    text = str(value).strip()
    return text or None


def require_credential(value: Optional[str], *, provider: str, setting: str) -> str:
    resolved = (value or "").strip()
    if not resolved:
        raise AuthError(f"{provider} {setting} is not configured")
    return resolved


class HttpMetadataProvider:
    """Base class owning an ``httpx.AsyncClient`` and the error mapping.

    Subclasses implement :meth:`fetch` on top of :meth:`_request_json`, which
    turns transport failures and non-2xx responses into the
    :class:`~src.watch_export.errors.MetadataError` family.
    """

    name = "provider"
    base_url = ""

    def __init__(
        self,
        *,
        http: HttpConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        cache_max_entries: int = 256,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        self._http = http or HttpConfig()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._cache = _ResponseCache(cache_max_entries)
        self._sleep = sleep or asyncio.sleep

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"

    def _default_headers(self) -> Dict[str, str]:
        return {"Accept": "application/json"}

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._default_headers(),
                timeout=net.build_timeout(self._http.connect_timeout, self._http.read_timeout),
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            await client.aclose()

    async def _request_json(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, object] | None = None,
        headers: Mapping[str, str] | None = None,
        json_body: Any = None,
        data: Mapping[str, str] | None = None,
        context: str = "",
    ) -> Any:
        label = context or path
        verb = method.upper()
        cache_key: Tuple[Any, ...] | None = None
        if verb == "GET":
            cache_key = (path, tuple(sorted((params or {}).items())))
            cached = self._cache.get(cache_key)
            if cached is not None:
                return cached

        client = self._get_client()
        host = net.redact_url_for_logs(path if "://" in path else str(client.base_url))
        try:
            response = await net.httpx_request_with_backoff(
                client,
                verb,
                path,
                params=params,
                headers=headers,
                json=json_body,
                data=data,
                retries=self._http.retries,
                sleep=self._sleep,
                timeout=net.build_timeout(self._http.connect_timeout, self._http.read_timeout),
                label=f"{self.name} {host}",
            )
        except httpx.RequestError as exc:
            raise TransportError(f"{self.name} request failed for {label}: {exc}") from exc
        except net.BackoffError as exc:
            raise TransportError(
                f"{self.name} request failed for {label} after retries: {exc}",
                status_code=exc.status_code,
            ) from exc

        status = response.status_code
        if status in (401, 403):
            raise AuthError(f"{self.name} rejected credentials for {label} (status={status})")
        if status >= 400:
            raise TransportError(
                f"{self.name} request failed for {label} (status={status}): {response.text[:200]}",
                status_code=status,
            )
        try:
            payload = response.json()
        except (ValueError, json.JSONDecodeError) as exc:
            raise TransportError(f"{self.name} returned invalid JSON for {label}") from exc
        if cache_key is not None:
            self._cache.set(cache_key, payload)
        return payload

    async def fetch(self, query: MetadataQuery) -> MetadataResult:
        raise NotImplementedError


class TokenAuthProvider(HttpMetadataProvider):
    """Provider whose data endpoints need a bearer token obtained at runtime.

    The token is fetched lazily on first use and replaced at most once per
    request when the service rejects it. The generation counter lets
    concurrent callers holding the same stale token share one refresh.
    """

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._token: Optional[str] = None
        self._token_generation = 0
        self._auth_lock = asyncio.Lock()

    async def _authenticate(self) -> str:
        raise NotImplementedError

    def _auth_headers(self, token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {token}"}

    async def _current_token(self) -> Tuple[str, int]:
        async with self._auth_lock:
            if self._token is None:
                self._token = await self._authenticate()
                self._token_generation += 1
            return self._token, self._token_generation

    async def _refresh_token(self, stale_generation: int) -> Tuple[str, int]:
        async with self._auth_lock:
            if self._token is None or self._token_generation == stale_generation:
                logger.info("%s token rejected; re-authenticating", self.name)
                self._token = None
                self._token = await self._authenticate()
                self._token_generation += 1
            return self._token, self._token_generation

    async def _authorized_json(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, object] | None = None,
        context: str = "",
    ) -> Any:
        token, generation = await self._current_token()
        try:
            return await self._request_json(
                method, path, params=params, headers=self._auth_headers(token), context=context
            )
        except AuthError:
            token, _ = await self._refresh_token(generation)
        return await self._request_json(
            method, path, params=params, headers=self._auth_headers(token), context=context
        )
