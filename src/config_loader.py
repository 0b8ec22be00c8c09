"""Configuration loader that parses and validates user-provided TOML."""

from __future__ import annotations

import logging
import math
import os
import tomllib
from dataclasses import MISSING, Field, fields, is_dataclass, replace
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from .datatypes import (
    AppConfig,
    CLIConfig,
    HttpConfig,
    IMDBConfig,
    MALConfig,
    MetadataConfig,
    PathsConfig,
    ProcessorConfig,
    ProviderRateLimit,
    RateLimitsConfig,
    SimklConfig,
    TMDBConfig,
    TVDBConfig,
)

logger = logging.getLogger(__name__)

KNOWN_PROVIDERS = ("simkl", "tmdb", "tvdb", "imdb", "mal")

_LOG_LEVELS = {"debug", "info", "warning", "error", "critical"}

# (section, field) -> environment variable consulted when the config value is empty
CREDENTIAL_ENV_VARS: Dict[tuple[str, str], str] = {
    ("simkl", "client_id"): "SIMKL_CLIENT_ID",
    ("tmdb", "api_key"): "TMDB_API_KEY",
    ("tvdb", "api_key"): "TVDB_API_KEY",
    ("tvdb", "pin"): "TVDB_PIN",
    ("mal", "client_id"): "MAL_CLIENT_ID",
    ("mal", "client_secret"): "MAL_CLIENT_SECRET",
}

_SECTIONS: Dict[str, type] = {
    "metadata": MetadataConfig,
    "processor": ProcessorConfig,
    "http": HttpConfig,
    "rate_limits": RateLimitsConfig,
    "simkl": SimklConfig,
    "tmdb": TMDBConfig,
    "tvdb": TVDBConfig,
    "imdb": IMDBConfig,
    "mal": MALConfig,
    "paths": PathsConfig,
    "cli": CLIConfig,
}


class ConfigError(ValueError):
    """Raised when the configuration file is malformed or fails validation."""


def _coerce_bool(value: Any, dotted_key: str) -> bool:
    """Return a bool, coercing simple 0/1 representations when necessary."""

    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"0", "1"}:
            return normalized == "1"
        if normalized in {"true", "false"}:
            return normalized == "true"
    raise ConfigError(f"{dotted_key} must be a boolean (use true/false).")


def _coerce_enum(value: Any, dotted_key: str, enum_type: type[Enum]) -> Enum:
    """Return an enum member, coercing string values case-insensitively."""

    if isinstance(value, enum_type):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower()
        for member in enum_type:
            if normalized == str(member.value).lower():
                return member
    raise ConfigError(
        f"{dotted_key} must be one of: {', '.join(str(member.value) for member in enum_type)}"
    )


def _sanitize_section(raw: dict[str, Any], name: str, cls, base: Any = None):
    """
    Coerce a raw TOML table into an instance of ``cls``.

    Booleans and enums are coerced, nested dataclass fields recurse with a
    dotted section name, and unknown keys are rejected. When ``base`` is given
    the table overrides its fields instead of the class defaults, so a nested
    table only needs the keys it changes.

    Raises:
        ConfigError: If the section is not a table or contains invalid keys or values.
    """
    if not isinstance(raw, dict):
        raise ConfigError(f"[{name}] must be a table")
    cleaned: Dict[str, Any] = {}
    cls_fields = {field.name: field for field in fields(cls)}
    bool_fields = {key for key, field in cls_fields.items() if field.type is bool}
    enum_fields = {
        key: field.type
        for key, field in cls_fields.items()
        if isinstance(field.type, type) and issubclass(field.type, Enum)
    }
    nested_fields = {key: field.type for key, field in cls_fields.items() if is_dataclass(field.type)}
    for key, value in raw.items():
        if key in bool_fields:
            cleaned[key] = _coerce_bool(value, f"{name}.{key}")
        elif key in enum_fields:
            cleaned[key] = _coerce_enum(value, f"{name}.{key}", enum_fields[key])
        elif key in nested_fields:
            if not isinstance(value, dict):
                raise ConfigError(f"[{name}.{key}] must be a table")
            cleaned[key] = _sanitize_section(
                value, f"{name}.{key}", nested_fields[key], _field_default(cls_fields[key])
            )
        else:
            cleaned[key] = value
    try:
        if base is not None:
            return replace(base, **cleaned)
        return cls(**cleaned)
    except TypeError as exc:
        raise ConfigError(f"Invalid keys in [{name}]: {exc}") from exc


def _field_default(field: Field) -> Any:
    if field.default_factory is not MISSING:
        return field.default_factory()
    if field.default is not MISSING:
        return field.default
    return None


def _normalize_float(value: Any, dotted_key: str) -> float:
    """Return ``value`` as a finite float, raising ConfigError otherwise."""

    if isinstance(value, bool):
        raise ConfigError(f"{dotted_key} must be a number")
    try:
        numeric = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{dotted_key} must be a number") from exc
    if not math.isfinite(numeric):
        raise ConfigError(f"{dotted_key} must be a finite number")
    return numeric


def _normalize_int(value: Any, dotted_key: str, *, minimum: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{dotted_key} must be an integer")
    if value < minimum:
        raise ConfigError(f"{dotted_key} must be >= {minimum}")
    return value


def _normalize_priority_order(value: Any) -> List[str]:
    """Validate ``metadata.priority_order`` and return lower-cased service names."""

    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ConfigError("metadata.priority_order must be a list of provider names")
    order: List[str] = []
    for item in value:
        name = item.strip().lower()
        if name not in KNOWN_PROVIDERS:
            raise ConfigError(
                f"metadata.priority_order: unknown provider {item!r} "
                f"(expected one of: {', '.join(KNOWN_PROVIDERS)})"
            )
        if name in order:
            raise ConfigError(f"metadata.priority_order lists {name!r} more than once")
        order.append(name)
    return order


def _validate_rate_limit(limit: ProviderRateLimit, provider: str) -> None:
    dotted = f"rate_limits.{provider}"
    limit.calls = _normalize_int(limit.calls, f"{dotted}.calls", minimum=1)
    per_seconds = _normalize_float(limit.per_seconds, f"{dotted}.per_seconds")
    if per_seconds <= 0:
        raise ConfigError(f"{dotted}.per_seconds must be > 0")
    limit.per_seconds = per_seconds


def apply_env_credentials(app: AppConfig, environ: Optional[Mapping[str, str]] = None) -> None:
    """Fill empty credential fields from the environment."""

    env = os.environ if environ is None else environ
    for (section, key), variable in CREDENTIAL_ENV_VARS.items():
        target = getattr(app, section)
        if str(getattr(target, key) or "").strip():
            continue
        value = (env.get(variable) or "").strip()
        if value:
            setattr(target, key, value)
            logger.debug("Using %s for %s.%s", variable, section, key)


def _validate(app: AppConfig) -> None:
    app.metadata.priority_order = _normalize_priority_order(app.metadata.priority_order)
    app.metadata.use_original_titles = _coerce_bool(
        app.metadata.use_original_titles, "metadata.use_original_titles"
    )
    _normalize_int(app.metadata.cache_max_entries, "metadata.cache_max_entries", minimum=0)

    _normalize_int(app.processor.concurrency, "processor.concurrency", minimum=1)
    _normalize_int(app.processor.max_attempts, "processor.max_attempts", minimum=1)

    app.http.connect_timeout = _normalize_float(app.http.connect_timeout, "http.connect_timeout")
    app.http.read_timeout = _normalize_float(app.http.read_timeout, "http.read_timeout")
    if app.http.connect_timeout <= 0:
        raise ConfigError("http.connect_timeout must be > 0")
    if app.http.read_timeout <= 0:
        raise ConfigError("http.read_timeout must be > 0")
    _normalize_int(app.http.retries, "http.retries", minimum=0)

    for provider in KNOWN_PROVIDERS:
        _validate_rate_limit(getattr(app.rate_limits, provider), provider)

    for section in ("simkl", "tmdb", "tvdb", "imdb", "mal"):
        base_url = str(getattr(app, section).base_url or "").strip()
        if not base_url.startswith(("http://", "https://")):
            raise ConfigError(f"{section}.base_url must be an http(s) URL")

    if not str(app.paths.output or "").strip():
        raise ConfigError("paths.output must be set")

    level = str(app.cli.log_level).strip().lower()
    if level not in _LOG_LEVELS:
        raise ConfigError(f"cli.log_level must be one of: {', '.join(sorted(_LOG_LEVELS))}")
    app.cli.log_level = level


def config_from_mapping(
    raw: Mapping[str, Any],
    *,
    environ: Optional[Mapping[str, str]] = None,
) -> AppConfig:
    """Build a validated :class:`AppConfig` from already-parsed TOML data."""

    for section in raw:
        if section not in _SECTIONS:
            logger.warning("Config: ignoring unknown section [%s]", section)
    sections = {
        name: _sanitize_section(raw.get(name, {}), name, cls) for name, cls in _SECTIONS.items()
    }
    app = AppConfig(**sections)
    apply_env_credentials(app, environ)
    _validate(app)
    return app


def load_config(path: Optional[str] = None, *, environ: Optional[Mapping[str, str]] = None) -> AppConfig:
    """
    Load and validate an application configuration from a TOML file.

    The file is parsed as UTF-8 TOML (a BOM is accepted). When ``path`` is
    ``None`` the built-in defaults are used. Either way, empty credentials are
    filled from the environment before validation.

    Raises:
        ConfigError: If the file is not UTF-8, TOML parsing fails, or any validation rule is violated.
    """

    if path is None:
        return config_from_mapping({}, environ=environ)

    try:
        with open(path, "rb") as handle:
            raw_bytes = handle.read()
    except OSError as exc:
        raise ConfigError(f"Unable to read configuration file {path}: {exc}") from exc
    if raw_bytes.startswith(b"\xef\xbb\xbf"):
        raw_bytes = raw_bytes[3:]
    try:
        raw = tomllib.loads(raw_bytes.decode("utf-8"))
    except UnicodeDecodeError as exc:
        raise ConfigError("Configuration file must be UTF-8 encoded") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Failed to parse TOML: {exc}") from exc
    return config_from_mapping(raw, environ=environ)


__all__ = [
    "CREDENTIAL_ENV_VARS",
    "ConfigError",
    "KNOWN_PROVIDERS",
    "apply_env_credentials",
    "config_from_mapping",
    "load_config",
]
