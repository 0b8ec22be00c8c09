from __future__ import annotations

import logging

import pytest

from src.config_loader import ConfigError, load_config
from src.watch_export.providers import (
    MALProvider,
    SimklProvider,
    TMDBProvider,
    build_provider_chain,
    create_provider,
    describe_limit,
    provider_status,
)
from tests.helpers.fakes import FakeClock


def _config(**env: str):
    return load_config(None, environ=env)


def test_chain_follows_priority_and_skips_missing_credentials(caplog: pytest.LogCaptureFixture) -> None:
    config = _config(TMDB_API_KEY="k", MAL_CLIENT_ID="m")

    with caplog.at_level(logging.INFO, logger="src.watch_export.providers"):
        chain = build_provider_chain(config, clock=FakeClock())

    assert chain.names == ["TMDB", "IMDb", "MyAnimeList"]
    skipped = [record.getMessage() for record in caplog.records if record.getMessage().startswith("Skipping")]
    assert skipped == ["Skipping simkl: missing simkl.client_id", "Skipping tvdb: missing tvdb.api_key"]


def test_each_provider_gets_its_own_bucket() -> None:
    config = _config(TMDB_API_KEY="k", SIMKL_CLIENT_ID="s")
    config.metadata.priority_order = ["tmdb", "simkl"]

    chain = build_provider_chain(config, clock=FakeClock())

    tmdb, simkl = chain.providers
    assert isinstance(tmdb.provider, TMDBProvider)
    assert isinstance(simkl.provider, SimklProvider)
    assert tmdb.bucket is not simkl.bucket
    assert tmdb.bucket.capacity == 40
    assert tmdb.bucket.refill_rate == pytest.approx(4.0)
    assert simkl.bucket.capacity == 30


def test_shared_options_reach_adapters() -> None:
    config = _config(MAL_CLIENT_ID="m")
    config.metadata.use_original_titles = True

    provider = create_provider("MAL", config)

    assert isinstance(provider, MALProvider)
    assert provider.use_original_titles is True


def test_unknown_provider_is_a_config_error() -> None:
    with pytest.raises(ConfigError):
        create_provider("netflix", _config())


def test_provider_status_reports_every_provider() -> None:
    statuses = provider_status(_config(TVDB_API_KEY="t"))

    assert [status.key for status in statuses] == ["simkl", "tmdb", "tvdb", "imdb", "mal"]
    assert [status.enabled for status in statuses] == [False, False, True, True, False]
    assert describe_limit(statuses[2].rate_limit) == "100 calls / 60 s"
