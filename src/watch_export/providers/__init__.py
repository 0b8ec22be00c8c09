"""Metadata provider adapters and the factory that assembles them into a chain."""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Dict, List, Tuple

import httpx

from src.config_loader import KNOWN_PROVIDERS, ConfigError
from src.datatypes import AppConfig, ProviderRateLimit

from ..chain import ProviderChain, RateLimitedProvider
from ..models import RateLimit
from ..rate_limit import TokenBucket
from .base import HttpMetadataProvider, MetadataProvider, TokenAuthProvider
from .imdb import IMDBProvider
from .mal import MALProvider
from .simkl import SimklProvider
from .tmdb import TMDBProvider
from .tvdb import TVDBProvider

logger = logging.getLogger(__name__)

__all__ = [
    "HttpMetadataProvider",
    "IMDBProvider",
    "MALProvider",
    "MetadataProvider",
    "ProviderStatus",
    "SimklProvider",
    "TMDBProvider",
    "TVDBProvider",
    "TokenAuthProvider",
    "build_provider_chain",
    "create_provider",
    "describe_limit",
    "missing_credentials",
    "provider_status",
]

# config section name -> credential fields that must be non-empty
_REQUIRED_SETTINGS: Dict[str, Tuple[str, ...]] = {
    "simkl": ("client_id",),
    "tmdb": ("api_key",),
    "tvdb": ("api_key",),
    "imdb": (),
    "mal": ("client_id",),
}


@dataclass(frozen=True)
class ProviderStatus:
    """Effective state of one configured provider, used for reporting."""

    key: str
    enabled: bool
    missing: Tuple[str, ...]
    rate_limit: ProviderRateLimit


def _check_known(key: str) -> str:
    normalized = key.strip().lower()
    if normalized not in KNOWN_PROVIDERS:
        raise ConfigError(f"Unknown metadata provider {key!r}")
    return normalized


def missing_credentials(config: AppConfig, key: str) -> Tuple[str, ...]:
    """Return the ``section.field`` names that are still empty for *key*."""

    key = _check_known(key)
    section = getattr(config, key)
    return tuple(
        f"{key}.{setting}"
        for setting in _REQUIRED_SETTINGS[key]
        if not str(getattr(section, setting) or "").strip()
    )


def create_provider(
    key: str,
    config: AppConfig,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    sleep: Callable[[float], Awaitable[None]] | None = None,
) -> HttpMetadataProvider:
    """Instantiate the adapter registered under *key*."""

    key = _check_known(key)
    common: Dict[str, Any] = {
        "http": config.http,
        "transport": transport,
        "cache_max_entries": config.metadata.cache_max_entries,
        "sleep": sleep,
    }
    original_titles = config.metadata.use_original_titles
    if key == "simkl":
        return SimklProvider(config.simkl, **common)
    if key == "tmdb":
        return TMDBProvider(config.tmdb, use_original_titles=original_titles, **common)
    if key == "tvdb":
        return TVDBProvider(config.tvdb, **common)
    if key == "imdb":
        return IMDBProvider(config.imdb, **common)
    return MALProvider(config.mal, use_original_titles=original_titles, **common)


def provider_status(config: AppConfig) -> List[ProviderStatus]:
    """Describe every provider in priority order."""

    statuses: List[ProviderStatus] = []
    for key in config.metadata.priority_order:
        key = _check_known(key)
        missing = missing_credentials(config, key)
        statuses.append(
            ProviderStatus(
                key=key,
                enabled=not missing,
                missing=missing,
                rate_limit=getattr(config.rate_limits, key),
            )
        )
    return statuses


def build_provider_chain(
    config: AppConfig,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], Awaitable[None]] | None = None,
) -> ProviderChain:
    """Assemble the fallback chain in the configured priority order.

    Providers whose credentials are missing are left out. Each remaining
    provider receives its own token bucket built from ``[rate_limits]``.
    """

    members: List[RateLimitedProvider] = []
    for status in provider_status(config):
        if not status.enabled:
            logger.info(
                "Skipping %s: missing %s", status.key, ", ".join(status.missing)
            )
            continue
        limit = status.rate_limit
        bucket = TokenBucket.from_rate_limit(
            RateLimit.per_window(limit.calls, limit.per_seconds), clock=clock
        )
        provider = create_provider(status.key, config, transport=transport, sleep=sleep)
        members.append(RateLimitedProvider(provider, bucket, sleep=sleep))
    chain = ProviderChain(members)
    if not members:
        logger.warning("No metadata providers are enabled; every lookup will fail")
    else:
        logger.info("Metadata provider order: %s", " -> ".join(chain.names))
    return chain


def describe_limit(limit: ProviderRateLimit) -> str:
    return f"{limit.calls:g} calls / {limit.per_seconds:g} s"
