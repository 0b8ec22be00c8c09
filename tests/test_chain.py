from __future__ import annotations

import asyncio
import logging

import pytest

from src.watch_export.chain import ProviderChain, RateLimitedProvider
from src.watch_export.errors import AllProvidersFailedError, AuthError, NoResultsError, TransportError
from src.watch_export.models import MediaKind
from src.watch_export.rate_limit import TokenBucket
from tests.helpers.fakes import FakeClock, RecordingSleep, StubProvider


def _wrap(*providers: StubProvider, clock: FakeClock | None = None) -> list[RateLimitedProvider]:
    clock = clock or FakeClock()
    return [RateLimitedProvider(provider, TokenBucket(10, 10, clock=clock)) for provider in providers]


def test_first_success_wins_and_later_providers_are_skipped() -> None:
    first = StubProvider("A")
    second = StubProvider("B")
    chain = ProviderChain(_wrap(first, second))

    result = asyncio.run(chain.lookup("Heat", MediaKind.MOVIE))

    assert result.source == "A"
    assert len(first.queries) == 1
    assert second.queries == []


def test_falls_through_failures_in_priority_order(caplog: pytest.LogCaptureFixture) -> None:
    failing = StubProvider("A", error=NoResultsError("nothing"))
    broken = StubProvider("B", error=TransportError("boom", status_code=500))
    working = StubProvider("C")
    chain = ProviderChain(_wrap(failing, broken, working))

    with caplog.at_level(logging.WARNING, logger="src.watch_export.chain"):
        result = asyncio.run(chain.lookup("Heat", MediaKind.MOVIE, year=1995))

    assert result.source == "C"
    assert [len(p.queries) for p in (failing, broken, working)] == [1, 1, 1]
    assert working.queries[0].year == 1995
    messages = [record.getMessage() for record in caplog.records]
    assert "Metadata lookup failed on A: nothing" in messages
    assert "Metadata lookup failed on B: boom" in messages


def test_all_failures_raise_single_error_with_ordered_causes() -> None:
    providers = [
        StubProvider("A", error=NoResultsError("no match")),
        StubProvider("B", error=AuthError("bad key")),
    ]
    chain = ProviderChain(_wrap(*providers))

    with pytest.raises(AllProvidersFailedError) as excinfo:
        asyncio.run(chain.lookup("Obscure", MediaKind.TV))

    error = excinfo.value
    assert error.title == "Obscure"
    assert [name for name, _ in error.causes] == ["A", "B"]
    assert isinstance(error.causes[1][1], AuthError)
    assert "A: no match" in str(error)


def test_empty_chain_fails_immediately() -> None:
    with pytest.raises(AllProvidersFailedError, match="no providers configured"):
        asyncio.run(ProviderChain([]).lookup("Heat", MediaKind.MOVIE))


def test_unexpected_errors_are_not_swallowed() -> None:
    class _Exploding(StubProvider):
        async def fetch(self, query):  # type: ignore[override]
            raise KeyError("bug")

    fallback = StubProvider("B")
    chain = ProviderChain(_wrap(_Exploding("A"), fallback))

    with pytest.raises(KeyError):
        asyncio.run(chain.lookup("Heat", MediaKind.MOVIE))
    assert fallback.queries == []


def test_rate_limited_provider_waits_for_tokens() -> None:
    clock = FakeClock()
    sleep = RecordingSleep(clock)
    provider = StubProvider("A")
    limited = RateLimitedProvider(provider, TokenBucket(1, 1, clock=clock), sleep=sleep)
    chain = ProviderChain([limited])

    async def _twice() -> None:
        await chain.lookup("One", MediaKind.MOVIE)
        await chain.lookup("Two", MediaKind.MOVIE)

    asyncio.run(_twice())

    assert len(provider.queries) == 2
    assert sleep.delays == [pytest.approx(1.0)]


def test_context_manager_closes_every_provider() -> None:
    providers = [StubProvider("A"), StubProvider("B")]
    chain = ProviderChain(_wrap(*providers))

    async def _use() -> None:
        async with chain:
            await chain.lookup("Heat", MediaKind.MOVIE)

    asyncio.run(_use())

    assert all(provider.closed for provider in providers)
    assert chain.names == ["A", "B"]
