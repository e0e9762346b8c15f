"""Configuration loading and validation.

Reads eventsync.toml from a config directory, resolves ``${VAR}`` references
from the environment, and returns a validated EventSyncConfig dataclass.
"""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from eventsync.storage.cache import DEFAULT_CACHE_KEY

CONFIG_FILENAME = "eventsync.toml"
DEFAULT_CACHE_PATH = "data/event-cache.json"
DEFAULT_TIMEOUT_SECONDS = 10.0

# Pattern matching ${VAR_NAME}; supports alphanumeric + underscore variable names.
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


class ConfigError(Exception):
    """Raised when configuration is missing, malformed, or invalid."""


@dataclass
class LoggingConfig:
    """Logging configuration from [eventsync.logging] section."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    log_root: str | None = None


@dataclass
class EventSyncConfig:
    """Parsed eventsync.toml."""

    base_url: str
    token: str | None = None
    account: str | None = None
    cache_path: str = DEFAULT_CACHE_PATH
    cache_key: str = DEFAULT_CACHE_KEY
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    config_dir: Path | None = None

    def resolved_cache_path(self) -> Path:
        """Cache path, relative paths anchored at the config directory."""
        path = Path(self.cache_path)
        if path.is_absolute() or self.config_dir is None:
            return path
        return self.config_dir / path


def resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ``${VAR_NAME}`` references in config values.

    Walks dicts, lists, and strings. Non-string leaf values are returned
    unchanged.

    Raises
    ------
    ConfigError
        If a referenced environment variable is not set.
    """
    if isinstance(value, dict):
        return {k: resolve_env_vars(v) for k, v in value.items()}

    if isinstance(value, list):
        return [resolve_env_vars(item) for item in value]

    if isinstance(value, str):
        return _resolve_string(value)

    return value


def _resolve_string(s: str) -> str:
    """Replace all ``${VAR_NAME}`` occurrences in *s* with env var values.

    Collects all missing variable names and reports them in a single error.
    """
    missing: list[str] = []

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            missing.append(var_name)
            return match.group(0)
        return env_value

    result = _ENV_VAR_PATTERN.sub(_replace, s)

    if missing:
        vars_str = ", ".join(missing)
        raise ConfigError(
            f"Unresolved environment variable(s) in config value: {vars_str} (original: {s!r})"
        )

    return result


def _optional_string(section: dict, key: str) -> str | None:
    value = section.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigError(f"eventsync.{key} must be a string when set")
    return value.strip() or None


def _parse_logging(section: dict) -> LoggingConfig:
    logging_section = section.get("logging", {})
    if not isinstance(logging_section, dict):
        raise ConfigError("eventsync.logging must be a TOML table")

    level = str(logging_section.get("level", "INFO")).upper()
    log_format = str(logging_section.get("format", "text")).lower()
    if log_format not in ("text", "json"):
        raise ConfigError(
            f"Invalid eventsync.logging.format: {log_format!r}. Must be 'text' or 'json'."
        )

    log_root = logging_section.get("log_root")
    if log_root is not None and not isinstance(log_root, str):
        raise ConfigError("eventsync.logging.log_root must be a string when set")

    return LoggingConfig(level=level, format=log_format, log_root=log_root or None)


def load_config(config_dir: Path) -> EventSyncConfig:
    """Load and validate ``eventsync.toml`` from *config_dir*.

    Raises
    ------
    ConfigError
        If the file is missing, contains invalid TOML, or lacks required fields.
    """
    toml_path = config_dir / CONFIG_FILENAME

    if not toml_path.exists():
        raise ConfigError(f"Config file not found: {toml_path}")

    try:
        data = tomllib.loads(toml_path.read_text())
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {toml_path}: {exc}") from exc

    data = resolve_env_vars(data)

    section = data.get("eventsync")
    if not isinstance(section, dict):
        raise ConfigError("Missing [eventsync] section in config")

    base_url = section.get("base_url")
    if not isinstance(base_url, str) or not base_url.strip():
        raise ConfigError("Missing required field: eventsync.base_url")

    cache_path = section.get("cache_path", DEFAULT_CACHE_PATH)
    if not isinstance(cache_path, str) or not cache_path.strip():
        raise ConfigError("eventsync.cache_path must be a non-empty string")

    cache_key = section.get("cache_key", DEFAULT_CACHE_KEY)
    if not isinstance(cache_key, str) or not cache_key.strip():
        raise ConfigError("eventsync.cache_key must be a non-empty string")

    raw_timeout = section.get("timeout_seconds", DEFAULT_TIMEOUT_SECONDS)
    if isinstance(raw_timeout, bool) or not isinstance(raw_timeout, int | float):
        raise ConfigError(f"Invalid eventsync.timeout_seconds: {raw_timeout!r}")
    if raw_timeout <= 0:
        raise ConfigError(
            f"Invalid eventsync.timeout_seconds: {raw_timeout!r}. Must be a positive number."
        )

    return EventSyncConfig(
        base_url=base_url.strip(),
        token=_optional_string(section, "token"),
        account=_optional_string(section, "account"),
        cache_path=cache_path.strip(),
        cache_key=cache_key.strip(),
        timeout_seconds=float(raw_timeout),
        logging=_parse_logging(section),
        config_dir=config_dir,
    )
