"""Public shim exposing the watch_export CLI and library surface."""

from __future__ import annotations

from typing import Callable, cast

import src.watch_export.cli_entry as _cli_entry
from src.config_loader import ConfigError, load_config
from src.watch_export.chain import ProviderChain, RateLimitedProvider
from src.watch_export.dedup import deduplicate
from src.watch_export.errors import (
    AllProvidersFailedError,
    AuthError,
    BatchFailedError,
    MetadataError,
    NoResultsError,
    RetryExhaustedError,
    TransportError,
)
from src.watch_export.history_io import read_watch_events, write_simkl_csv
from src.watch_export.models import BatchResult, MediaKind, ProcessedRecord, WatchEvent
from src.watch_export.processor import HistoryProcessor
from src.watch_export.providers import build_provider_chain
from src.watch_export.rate_limit import TokenBucket

run_enrichment = _cli_entry.run_enrichment

__all__ = (
    "main",
    "run_enrichment",
    "AllProvidersFailedError",
    "AuthError",
    "BatchFailedError",
    "BatchResult",
    "ConfigError",
    "HistoryProcessor",
    "MediaKind",
    "MetadataError",
    "NoResultsError",
    "ProcessedRecord",
    "ProviderChain",
    "RateLimitedProvider",
    "RetryExhaustedError",
    "TokenBucket",
    "TransportError",
    "WatchEvent",
    "build_provider_chain",
    "deduplicate",
    "load_config",
    "read_watch_events",
    "write_simkl_csv",
)

main = _cli_entry.main


if __name__ == "__main__":
    _entry_point = cast(Callable[[], None], main)
    _entry_point()
