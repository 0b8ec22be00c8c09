"""Configuration dataclasses for the watch history exporter."""
from dataclasses import dataclass, field
from enum import Enum
from typing import List


class FailurePolicy(str, Enum):
    """How a batch reacts when an item exhausts its lookup attempts."""

    PARTIAL = "partial"
    ALL_OR_NOTHING = "all_or_nothing"


@dataclass
class ProviderRateLimit:
    """Call budget for one metadata service, expressed as calls per window."""

    calls: int = 10
    per_seconds: float = 1.0


def _simkl_limit() -> ProviderRateLimit:
    return ProviderRateLimit(calls=30, per_seconds=10)


def _tmdb_limit() -> ProviderRateLimit:
    return ProviderRateLimit(calls=40, per_seconds=10)


def _tvdb_limit() -> ProviderRateLimit:
    return ProviderRateLimit(calls=100, per_seconds=60)


def _imdb_limit() -> ProviderRateLimit:
    return ProviderRateLimit(calls=5, per_seconds=10)


def _mal_limit() -> ProviderRateLimit:
    return ProviderRateLimit(calls=2, per_seconds=1)


@dataclass
class RateLimitsConfig:
    """Independent rate budgets, one per metadata service."""

    simkl: ProviderRateLimit = field(default_factory=_simkl_limit)
    tmdb: ProviderRateLimit = field(default_factory=_tmdb_limit)
    tvdb: ProviderRateLimit = field(default_factory=_tvdb_limit)
    imdb: ProviderRateLimit = field(default_factory=_imdb_limit)
    mal: ProviderRateLimit = field(default_factory=_mal_limit)


@dataclass
class SimklConfig:
    """Simkl API access (``client_id`` is sent as the ``simkl-api-key`` header)."""

    client_id: str = ""
    base_url: str = "https://api.simkl.com"


@dataclass
class TMDBConfig:
    """Configuration controlling TMDB lookups."""

    api_key: str = ""
    base_url: str = "https://api.themoviedb.org/3"
    language: str = "en-US"


@dataclass
class TVDBConfig:
    api_key: str = ""
    pin: str = ""
    base_url: str = "https://api4.thetvdb.com/v4"


@dataclass
class IMDBConfig:
    """imdbapi.dev needs no key; only the endpoint is configurable."""

    base_url: str = "https://imdbapi.dev"


@dataclass
class MALConfig:
    """MyAnimeList credentials; without a secret the client id header is used."""

    client_id: str = ""
    client_secret: str = ""
    base_url: str = "https://api.myanimelist.net/v2"
    token_url: str = "https://myanimelist.net/v1/oauth2/token"


@dataclass
class MetadataConfig:
    """Provider ordering and shared lookup preferences."""

    priority_order: List[str] = field(
        default_factory=lambda: ["simkl", "tmdb", "tvdb", "imdb", "mal"]
    )
    use_original_titles: bool = False
    cache_max_entries: int = 256


@dataclass
class ProcessorConfig:
    """Batch execution limits."""

    concurrency: int = 5
    max_attempts: int = 3
    failure_policy: FailurePolicy = FailurePolicy.PARTIAL


@dataclass
class HttpConfig:
    """Transport timeouts and transient-status retries for provider requests."""

    connect_timeout: float = 10.0
    read_timeout: float = 30.0
    retries: int = 3


@dataclass
class PathsConfig:
    output: str = "export.csv"


@dataclass
class CLIConfig:
    """Console behaviour for the command-line entry point."""

    log_level: str = "info"
    progress: bool = True


@dataclass
class AppConfig:
    """Aggregated configuration loaded from the user-provided TOML file."""

    metadata: MetadataConfig = field(default_factory=MetadataConfig)
    processor: ProcessorConfig = field(default_factory=ProcessorConfig)
    http: HttpConfig = field(default_factory=HttpConfig)
    rate_limits: RateLimitsConfig = field(default_factory=RateLimitsConfig)
    simkl: SimklConfig = field(default_factory=SimklConfig)
    tmdb: TMDBConfig = field(default_factory=TMDBConfig)
    tvdb: TVDBConfig = field(default_factory=TVDBConfig)
    imdb: IMDBConfig = field(default_factory=IMDBConfig)
    mal: MALConfig = field(default_factory=MALConfig)
    paths: PathsConfig = field(default_factory=PathsConfig)
    cli: CLIConfig = field(default_factory=CLIConfig)
