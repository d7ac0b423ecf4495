"""Application configuration loaded via python-decouple with typed helpers."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Final, Protocol, cast

from decouple import (
    Config as DecoupleConfig,
    RepositoryEmpty,
    RepositoryEnv,
)

logger = logging.getLogger(__name__)

_DOTENV_PATH: Final[Path] = Path(".env")

# Alias used when only the legacy single-server variable is configured.
LEGACY_SERVER_ALIAS: Final[str] = "default"


def _build_decouple_config() -> DecoupleConfig:
    # Gracefully handle missing .env (e.g., in CI/tests) by falling back to an empty repository.
    try:
        return DecoupleConfig(RepositoryEnv(str(_DOTENV_PATH)))
    except FileNotFoundError:
        return DecoupleConfig(RepositoryEmpty())


_decouple_config: Final[DecoupleConfig] = _build_decouple_config()


@dataclass(slots=True, frozen=True)
class DiscordSettings:
    """Discord connection and routing settings."""

    token: str | None
    # Ordered alias -> guild id; insertion order decides the fallback default alias
    servers: dict[str, str]
    default_channel_id: str | None
    user_mappings: dict[str, str]
    ready_timeout_seconds: float


@dataclass(slots=True, frozen=True)
class Settings:
    """Top-level application settings."""

    environment: str
    discord: DiscordSettings
    # Logging
    log_rich_enabled: bool
    log_level: str
    log_json_enabled: bool
    # Tools logging (Rich panels on stderr)
    tools_log_enabled: bool


def _bool(value: str, *, default: bool) -> bool:
    normalized = value.strip().lower()
    if normalized in {"1", "true", "t", "yes", "y"}:
        return True
    if normalized in {"0", "false", "f", "no", "n"}:
        return False
    return default


def _float(value: str, *, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _json_mapping(name: str, raw: str) -> dict[str, str]:
    """Parse a JSON object of string -> id; anything malformed yields an empty mapping."""
    text = (raw or "").strip()
    if not text:
        return {}
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        logger.warning("config.invalid_json_mapping", extra={"variable": name, "error": str(exc)})
        return {}
    if not isinstance(data, dict):
        logger.warning("config.invalid_json_mapping", extra={"variable": name, "error": "not an object"})
        return {}
    mapping: dict[str, str] = {}
    for key, value in data.items():
        if value is None or isinstance(value, (dict, list)):
            continue
        mapping[str(key)] = str(value).strip()
    return mapping


def _server_map(raw_servers: str, legacy_guild_id: str) -> dict[str, str]:
    servers = _json_mapping("DISCORD_SERVERS", raw_servers)
    if not servers and legacy_guild_id.strip():
        servers = {LEGACY_SERVER_ALIAS: legacy_guild_id.strip()}
    return servers


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached application settings."""
    environment = _decouple_config("APP_ENVIRONMENT", default="development")

    discord_settings = DiscordSettings(
        token=_decouple_config("DISCORD_TOKEN", default="").strip() or None,
        servers=_server_map(
            _decouple_config("DISCORD_SERVERS", default=""),
            _decouple_config("DISCORD_GUILD_ID", default=""),
        ),
        default_channel_id=_decouple_config("DISCORD_DEFAULT_CHANNEL_ID", default="").strip() or None,
        user_mappings={
            alias.lower(): user_id
            for alias, user_id in _json_mapping(
                "DISCORD_USER_MAPPINGS", _decouple_config("DISCORD_USER_MAPPINGS", default="")
            ).items()
        },
        ready_timeout_seconds=_float(_decouple_config("DISCORD_READY_TIMEOUT_SECONDS", default="15"), default=15.0),
    )

    return Settings(
        environment=environment,
        discord=discord_settings,
        log_rich_enabled=_bool(_decouple_config("LOG_RICH_ENABLED", default="true"), default=True),
        log_level=_decouple_config("LOG_LEVEL", default="INFO"),
        log_json_enabled=_bool(_decouple_config("LOG_JSON_ENABLED", default="false"), default=False),
        tools_log_enabled=_bool(_decouple_config("TOOLS_LOG_ENABLED", default="false"), default=False),
    )


class _CacheClearable(Protocol):
    def cache_clear(self) -> None: ...


def clear_settings_cache() -> None:
    """Clear the lru_cache for get_settings in a type-checker-friendly way."""
    cache_clear = getattr(cast(_CacheClearable, get_settings), "cache_clear", None)
    if callable(cache_clear):
        cache_clear()
