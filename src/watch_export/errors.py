"""Exception hierarchy for metadata resolution and batch enrichment."""

from __future__ import annotations

from typing import Optional, Sequence, Tuple


class WatchExportError(RuntimeError):
    """Base class for errors raised by the enrichment engine."""


class MetadataError(WatchExportError):
    """Raised when a single metadata provider cannot resolve a query."""


class TransportError(MetadataError):
    """Network or HTTP-layer failure talking to a provider."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthError(MetadataError):
    """Credential or token failure."""


class NoResultsError(MetadataError):
    """Provider answered but had zero matches."""


class AllProvidersFailedError(WatchExportError):
    """Every provider in the chain failed for one query."""

    def __init__(self, title: str, causes: Sequence[Tuple[str, Exception]]) -> None:
        self.title = title
        self.causes = list(causes)
        if self.causes:
            detail = "; ".join(f"{name}: {exc}" for name, exc in self.causes)
        else:
            detail = "no providers configured"
        super().__init__(f"All providers failed for {title!r} ({detail})")


class RetryExhaustedError(WatchExportError):
    """A worklist item failed on every attempt."""

    def __init__(self, title: str, attempts: int, last_error: Exception) -> None:
        self.title = title
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Lookup for {title!r} failed after {attempts} attempts: {last_error}")


class BatchFailedError(WatchExportError):
    """Raised by all-or-nothing batches once any item exhausts its retries."""

    def __init__(self, title: str, message: str) -> None:
        self.title = title
        super().__init__(message)


def describe_cause_chain(exc: BaseException) -> list[str]:
    """Return ``str`` of *exc* and every chained cause, outermost first."""

    lines: list[str] = []
    seen: set[int] = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        lines.append(f"{type(current).__name__}: {current}")
        current = current.__cause__ or current.__context__
    return lines


__all__ = [
    "AllProvidersFailedError",
    "AuthError",
    "BatchFailedError",
    "MetadataError",
    "NoResultsError",
    "RetryExhaustedError",
    "TransportError",
    "WatchExportError",
    "describe_cause_chain",
]
