"""HTTP transport helpers shared by the metadata providers.

Provider adapters never talk to ``httpx`` retry logic directly; they call
:func:`httpx_request_with_backoff`, which absorbs rate-limit and gateway
responses from the catalogue APIs and hands everything else back unchanged.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any
from urllib.parse import urlsplit

import httpx

__all__ = [
    "BackoffError",
    "DEFAULT_CONNECT_TIMEOUT",
    "DEFAULT_HTTP_TIMEOUT",
    "DEFAULT_READ_TIMEOUT",
    "RETRY_STATUS",
    "build_timeout",
    "httpx_request_with_backoff",
    "log_backoff_attempt",
    "redact_url_for_logs",
]

logger = logging.getLogger(__name__)

# Catalogue APIs answer 429 when throttled and 5xx from their gateways.
RETRY_STATUS = frozenset({429, 500, 502, 503, 504})

DEFAULT_CONNECT_TIMEOUT = 10.0
DEFAULT_READ_TIMEOUT = 30.0
DEFAULT_HTTP_TIMEOUT = httpx.Timeout(
    DEFAULT_READ_TIMEOUT,
    connect=DEFAULT_CONNECT_TIMEOUT,
    read=DEFAULT_READ_TIMEOUT,
)

_MIN_DELAY = 0.1


class BackoffError(RuntimeError):
    """Raised when a catalogue endpoint keeps answering with a transient status."""

    def __init__(self, message: str, status_code: int | None = None, attempts: int = 0) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.attempts = attempts


def build_timeout(
    connect: float = DEFAULT_CONNECT_TIMEOUT, read: float = DEFAULT_READ_TIMEOUT
) -> httpx.Timeout:
    """Translate ``[http]`` connect/read seconds into an :class:`httpx.Timeout`."""

    return httpx.Timeout(float(read), connect=float(connect), read=float(read))


def log_backoff_attempt(label: str, attempt: int, delay: float, method: str = "GET") -> None:
    logger.info("%s %s retry #%d scheduled in %.2f s", method, label, attempt, delay)


async def httpx_request_with_backoff(
    client: httpx.AsyncClient,
    method: str,
    path: str,
    *,
    params: Mapping[str, object] | None = None,
    headers: Mapping[str, str] | None = None,
    json: Any = None,
    data: Mapping[str, str] | None = None,
    retries: int = 3,
    initial_backoff: float = 0.5,
    max_backoff: float = 4.0,
    sleep: Callable[[float], Awaitable[None]] | None = None,
    timeout: float | httpx.Timeout | None = None,
    label: str | None = None,
) -> httpx.Response:
    """Send one API request, retrying throttled and gateway failures.

    Only network errors and :data:`RETRY_STATUS` answers are retried, doubling
    the delay up to ``max_backoff`` unless the server sends ``Retry-After``.
    Any other response, 4xx included, is returned for the caller to map.

    Args:
        label: Log-safe name for the endpoint. Defaults to the host of the
            client's base URL so query strings holding API keys stay out of logs.

    Raises:
        BackoffError: The last attempt still got a transient status.
        httpx.RequestError: The last attempt failed at the network level.
    """

    verb = method.upper()
    attempts = max(0, retries) + 1
    delay_floor = max(_MIN_DELAY, initial_backoff)
    delay_cap = max(_MIN_DELAY, max_backoff)
    sleep_impl = sleep or asyncio.sleep
    if label is None:
        label = redact_url_for_logs(path if "://" in path else str(getattr(client, "base_url", "") or path))
    request_timeout = DEFAULT_HTTP_TIMEOUT if timeout is None else timeout

    backoff = delay_floor
    throttled: httpx.Response | None = None
    network_error: httpx.RequestError | None = None
    for attempt in range(1, attempts + 1):
        try:
            response = await client.request(
                verb,
                path,
                params=params,
                headers=headers,
                json=json,
                data=data,
                timeout=request_timeout,
            )
        except httpx.RequestError as exc:
            network_error, throttled = exc, None
            delay = backoff
        else:
            if response.status_code not in RETRY_STATUS:
                if attempt > 1:
                    logger.debug("%s %s succeeded on attempt %d", verb, label, attempt)
                return response
            network_error, throttled = None, response
            delay = _retry_delay_from_response(response, backoff, delay_cap)

        if attempt == attempts:
            break
        log_backoff_attempt(label, attempt, delay, verb)
        await sleep_impl(delay)
        backoff = min(backoff * 2, delay_cap)

    if network_error is not None:
        raise network_error
    status = throttled.status_code if throttled is not None else None
    raise BackoffError(
        f"{verb} {label} still failing with status {status} after {attempts} attempts",
        status_code=status,
        attempts=attempts,
    )


def redact_url_for_logs(url: str) -> str:
    """Reduce *url* to its host; relative paths pass through unchanged."""

    try:
        parsed = urlsplit(url)
    except (ValueError, AttributeError):
        return "url"
    if parsed.netloc:
        return parsed.hostname or parsed.netloc
    return parsed.path or "url"


def _retry_delay_from_response(response: httpx.Response, fallback: float, cap: float) -> float:
    retry_after = response.headers.get("Retry-After")
    try:
        delay = float(retry_after) if retry_after else fallback
    except ValueError:
        delay = fallback
    return max(_MIN_DELAY, min(delay, cap))
