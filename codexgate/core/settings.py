"""Typed gateway settings resolved from a loaded configuration mapping."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from .exceptions import ConfigurationError
from .sse import DEFAULT_MAX_LINE_BYTES


# Default values
DEFAULT_BASE_URL = "https://chatgpt.com/backend-api/codex"
DEFAULT_VERSION = "0.21.0"
DEFAULT_OPENAI_BETA = "responses=experimental"
DEFAULT_ORIGINATOR = "codex_cli_rs"
DEFAULT_CONNECT_TIMEOUT = 30.0
DEFAULT_STREAM_QUEUE_SIZE = 16
DEFAULT_REASONING_EFFORT = "medium"
DEFAULT_STRIP_FIELDS = ("previous_response_id",)

DEFAULT_TOKEN_URL = "https://auth.openai.com/oauth/token"
DEFAULT_CLIENT_ID = "app_EMoamEEZ73f0CkXaXp7hrann"
DEFAULT_REFRESH_ATTEMPTS = 3
DEFAULT_REFRESH_RETRY_DELAY = 1.0

DEFAULT_CACHE_TTL_SECONDS = 3600.0
DEFAULT_UPSTREAM_LOG_DIR = "logs/upstream"


@dataclass
class CodexSettings:
    """Upstream endpoint, protocol markers and payload policy."""

    base_url: str = DEFAULT_BASE_URL
    version: str = DEFAULT_VERSION
    openai_beta: str = DEFAULT_OPENAI_BETA
    originator: str = DEFAULT_ORIGINATOR
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    proxy_url: Optional[str] = None
    stream_queue_size: int = DEFAULT_STREAM_QUEUE_SIZE
    max_line_bytes: int = DEFAULT_MAX_LINE_BYTES
    strip_fields: tuple[str, ...] = DEFAULT_STRIP_FIELDS
    default_reasoning_effort: str = DEFAULT_REASONING_EFFORT
    model_aliases: dict[str, tuple[str, str]] = field(default_factory=dict)
    model_mapping: dict[str, str] = field(default_factory=dict)


@dataclass
class OAuthSettings:
    """Refresh-token exchange endpoint and retry policy."""

    token_url: str = DEFAULT_TOKEN_URL
    client_id: str = DEFAULT_CLIENT_ID
    max_attempts: int = DEFAULT_REFRESH_ATTEMPTS
    retry_delay: float = DEFAULT_REFRESH_RETRY_DELAY


@dataclass
class LoggingSettings:
    level: str = "INFO"
    upstream_log_enabled: bool = False
    upstream_log_dir: str = DEFAULT_UPSTREAM_LOG_DIR


@dataclass
class GatewaySettings:
    """Everything the executor and its collaborators need from config."""

    codex: CodexSettings = field(default_factory=CodexSettings)
    oauth: OAuthSettings = field(default_factory=OAuthSettings)
    cache_ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS
    logging: LoggingSettings = field(default_factory=LoggingSettings)

    @classmethod
    def from_mapping(cls, config: Mapping[str, Any] | None) -> "GatewaySettings":
        """Build settings from a loaded config, applying defaults.

        Invalid numeric values fall back to their defaults. An unknown log
        level is a configuration error.
        """
        config = config or {}
        codex_cfg = _section(config, "codex")
        oauth_cfg = _section(config, "oauth")
        cache_cfg = _section(config, "conversation_cache")
        logging_cfg = _section(config, "logging")
        upstream_log_cfg = _section(logging_cfg, "upstream_log")

        codex = CodexSettings(
            base_url=_get_str(codex_cfg, "base_url", DEFAULT_BASE_URL).rstrip("/"),
            version=_get_str(codex_cfg, "version", DEFAULT_VERSION),
            openai_beta=_get_str(codex_cfg, "openai_beta", DEFAULT_OPENAI_BETA),
            originator=_get_str(codex_cfg, "originator", DEFAULT_ORIGINATOR),
            connect_timeout=_get_float(codex_cfg, "connect_timeout", DEFAULT_CONNECT_TIMEOUT),
            proxy_url=codex_cfg.get("proxy_url") or None,
            stream_queue_size=max(
                1, _get_int(codex_cfg, "stream_queue_size", DEFAULT_STREAM_QUEUE_SIZE)
            ),
            max_line_bytes=max(
                1, _get_int(codex_cfg, "max_line_bytes", DEFAULT_MAX_LINE_BYTES)
            ),
            strip_fields=tuple(
                _ensure_list(codex_cfg.get("strip_fields", list(DEFAULT_STRIP_FIELDS)))
            ),
            default_reasoning_effort=_get_str(
                codex_cfg, "default_reasoning_effort", DEFAULT_REASONING_EFFORT
            ),
            model_aliases=_parse_aliases(codex_cfg.get("model_aliases")),
            model_mapping={
                str(k).lower(): str(v)
                for k, v in _section(codex_cfg, "model_mapping").items()
                if v
            },
        )
        oauth = OAuthSettings(
            token_url=_get_str(oauth_cfg, "token_url", DEFAULT_TOKEN_URL),
            client_id=_get_str(oauth_cfg, "client_id", DEFAULT_CLIENT_ID),
            max_attempts=max(
                1, _get_int(oauth_cfg, "max_attempts", DEFAULT_REFRESH_ATTEMPTS)
            ),
            retry_delay=max(
                0.0, _get_float(oauth_cfg, "retry_delay", DEFAULT_REFRESH_RETRY_DELAY)
            ),
        )

        level = _get_str(logging_cfg, "level", "INFO").upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ConfigurationError(f"Unknown log level: {level}")
        log_settings = LoggingSettings(
            level=level,
            upstream_log_enabled=_parse_bool(upstream_log_cfg.get("enabled"), False),
            upstream_log_dir=_get_str(upstream_log_cfg, "dir", DEFAULT_UPSTREAM_LOG_DIR),
        )

        return cls(
            codex=codex,
            oauth=oauth,
            cache_ttl_seconds=_get_float(cache_cfg, "ttl_seconds", DEFAULT_CACHE_TTL_SECONDS),
            logging=log_settings,
        )


def _section(config: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = config.get(key)
    if not isinstance(value, Mapping):
        return {}
    return value


def _parse_aliases(raw: Any) -> dict[str, tuple[str, str]]:
    """Parse ``alias: {model: ..., effort: ...}`` entries."""
    if not isinstance(raw, Mapping):
        return {}
    aliases: dict[str, tuple[str, str]] = {}
    for alias, entry in raw.items():
        if not isinstance(entry, Mapping):
            continue
        model = entry.get("model")
        if not model:
            continue
        aliases[str(alias).lower()] = (str(model), str(entry.get("effort") or ""))
    return aliases


def _get_str(config: Mapping[str, Any], key: str, default: str) -> str:
    value = config.get(key)
    if value is None or value == "":
        return default
    return str(value)


def _get_int(config: Mapping[str, Any], key: str, default: int) -> int:
    """Get an integer value from config with fallback."""
    value = config.get(key)
    if value is None:
        return default
    try:
        return int(value)
    except (ValueError, TypeError):
        return default


def _get_float(config: Mapping[str, Any], key: str, default: float) -> float:
    """Get a float value from config with fallback."""
    value = config.get(key)
    if value is None:
        return default
    try:
        return float(value)
    except (ValueError, TypeError):
        return default


def _parse_bool(value: Any, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    return default


def _ensure_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple, set)):
        return [str(item) for item in value if item]
    return [str(value)]
