"""Ordered provider fallback with per-provider rate limiting."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, List, Optional, Sequence, Tuple

from .errors import AllProvidersFailedError, MetadataError
from .models import MediaKind, MetadataQuery, MetadataResult
from .rate_limit import TokenBucket, acquire

if TYPE_CHECKING:
    from .providers.base import MetadataProvider

logger = logging.getLogger(__name__)

__all__ = ["ProviderChain", "RateLimitedProvider"]


class RateLimitedProvider:
    """A provider paired with the token bucket that paces its calls."""

    def __init__(
        self,
        provider: MetadataProvider,
        bucket: TokenBucket,
        *,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        self.provider = provider
        self.bucket = bucket
        self._sleep = sleep

    @property
    def name(self) -> str:
        return self.provider.name

    async def fetch(self, query: MetadataQuery) -> MetadataResult:
        await acquire(self.bucket, sleep=self._sleep, label=self.name)
        return await self.provider.fetch(query)

    async def aclose(self) -> None:
        await self.provider.aclose()


class ProviderChain:
    """Consults providers in a fixed priority order until one resolves the query.

    A provider error is logged and the next provider is tried. When every
    provider fails the caller receives a single :class:`AllProvidersFailedError`
    listing each cause in order. The chain never retries on its own.
    """

    def __init__(self, providers: Sequence[RateLimitedProvider]) -> None:
        self._providers: Tuple[RateLimitedProvider, ...] = tuple(providers)

    @property
    def providers(self) -> Tuple[RateLimitedProvider, ...]:
        return self._providers

    @property
    def names(self) -> List[str]:
        return [provider.name for provider in self._providers]

    def __len__(self) -> int:
        return len(self._providers)

    async def lookup(
        self,
        title: str,
        media_kind: MediaKind,
        year: Optional[int] = None,
    ) -> MetadataResult:
        return await self.lookup_query(MetadataQuery(title=title, media_kind=media_kind, year=year))

    async def lookup_query(self, query: MetadataQuery) -> MetadataResult:
        causes: List[Tuple[str, Exception]] = []
        for provider in self._providers:
            try:
                result = await provider.fetch(query)
            except MetadataError as exc:
                logger.warning("Metadata lookup failed on %s: %s", provider.name, exc)
                causes.append((provider.name, exc))
                continue
            logger.debug("Resolved %r via %s", query.title, provider.name)
            return result
        raise AllProvidersFailedError(query.title, causes)

    async def aclose(self) -> None:
        for provider in self._providers:
            await provider.aclose()

    async def __aenter__(self) -> "ProviderChain":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
