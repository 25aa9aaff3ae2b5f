"""Relay configuration for sensorrelay."""

from __future__ import annotations

import dataclasses
import os
from collections.abc import Callable
from typing import Any

from sensorrelay.exceptions import RelayConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_number(env_key: str, value: str, parse: Callable[[str], Any]) -> Any:
    try:
        return parse(value)
    except ValueError as exc:
        raise RelayConfigError(f"{env_key} must be numeric, got {value!r}") from exc


@dataclasses.dataclass(frozen=True)
class RelayConfig:
    """Relay configuration.

    Parameters
    ----------
    line_access_token : str
        LINE Messaging API channel access token used for reply/push.
    line_channel_secret : str or None
        Channel secret used to verify ``X-Line-Signature`` on webhook
        calls.  ``None`` disables verification.
    report_token : str or None
        Bearer token required by ``POST /report``.  ``None`` leaves the
        route rejecting every call.
    openai_api_key : str
        API key for the completion service.
    openai_base_url : str
        Base URL of the OpenAI-compatible API.
    openai_model : str
        Model name sent with every completion request.
    requests_per_minute : int
        Global completion call budget.  Calls are spaced at least
        ``ceil(60000 / requests_per_minute)`` ms apart.
    max_retries : int
        Retries allowed on throttling responses for a single call.
    max_queue_size : int
        Bound on calls waiting for the rate limiter.  ``0`` means
        unbounded.
    cache_ttl : float
        Seconds a cached answer stays valid.
    cache_max_entries : int
        Upper bound on cached answers; oldest entries are evicted first.
    completion_timeout : float
        Seconds allowed for one completion request.
    persistence_timeout : float
        SQLite busy timeout: seconds a statement waits on a locked
        database before failing.
    handled_token_ttl : float
        Seconds a fully handled delivery token is remembered in-process.
    max_message_length : int
        Chat messages longer than this are truncated with a marker.
    database_path : str
        SQLite database file (``":memory:"`` for an ephemeral store).
    time_zone : str
        IANA time zone used for report timestamps.
    host : str
        Bind address of the HTTP server.
    port : int
        Bind port of the HTTP server.
    access_log : bool
        Enable aiohttp access logging.
    """

    line_access_token: str = ""
    line_channel_secret: str | None = None
    report_token: str | None = None
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    openai_model: str = "gpt-4o-mini"
    requests_per_minute: int = 20
    max_retries: int = 3
    max_queue_size: int = 0
    cache_ttl: float = 120.0
    cache_max_entries: int = 256
    completion_timeout: float = 30.0
    persistence_timeout: float = 5.0
    handled_token_ttl: float = 600.0
    max_message_length: int = 4000
    database_path: str = "sensorrelay.db"
    time_zone: str = "Asia/Bangkok"
    host: str = "0.0.0.0"
    port: int = 10000
    access_log: bool = False

    def __post_init__(self) -> None:
        if self.requests_per_minute <= 0:
            raise RelayConfigError(f"requests_per_minute must be positive, got {self.requests_per_minute}")
        if self.max_retries < 0:
            raise RelayConfigError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.max_queue_size < 0:
            raise RelayConfigError(f"max_queue_size must be >= 0, got {self.max_queue_size}")
        if self.max_message_length <= 0:
            raise RelayConfigError(f"max_message_length must be positive, got {self.max_message_length}")

    @classmethod
    def from_env(cls, **overrides: Any) -> RelayConfig:
        """Create configuration from environment variables.

        Reads ``LINE_*``, ``OPENAI_*`` and ``RELAY_*`` variables.
        Explicit keyword arguments override environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        RelayConfig
            Populated configuration.

        Raises
        ------
        RelayConfigError
            If a numeric variable cannot be parsed or a value is out of
            range.
        """
        env = os.environ

        _ENV_STR_MAP = {
            "LINE_ACCESS_TOKEN": "line_access_token",
            "LINE_CHANNEL_SECRET": "line_channel_secret",
            "RELAY_REPORT_TOKEN": "report_token",
            "OPENAI_API_KEY": "openai_api_key",
            "OPENAI_BASE_URL": "openai_base_url",
            "OPENAI_MODEL": "openai_model",
            "RELAY_DATABASE_PATH": "database_path",
            "RELAY_TIME_ZONE": "time_zone",
            "HOST": "host",
        }
        _ENV_INT_MAP = {
            "RELAY_REQUESTS_PER_MINUTE": "requests_per_minute",
            "RELAY_MAX_RETRIES": "max_retries",
            "RELAY_MAX_QUEUE_SIZE": "max_queue_size",
            "RELAY_CACHE_MAX_ENTRIES": "cache_max_entries",
            "RELAY_MAX_MESSAGE_LENGTH": "max_message_length",
            "PORT": "port",
        }
        _ENV_FLOAT_MAP = {
            "RELAY_CACHE_TTL": "cache_ttl",
            "RELAY_COMPLETION_TIMEOUT": "completion_timeout",
            "RELAY_PERSISTENCE_TIMEOUT": "persistence_timeout",
            "RELAY_HANDLED_TOKEN_TTL": "handled_token_ttl",
        }

        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = val

        for env_key, field_name in _ENV_INT_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = _env_number(env_key, val, int)

        for env_key, field_name in _ENV_FLOAT_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = _env_number(env_key, val, float)

        if "access_log" not in overrides:
            config_kwargs["access_log"] = _env_bool(env.get("RELAY_ACCESS_LOG"), False)

        # An empty secret in the environment means "not configured".
        for secret_field in ("line_channel_secret", "report_token"):
            if not config_kwargs.get(secret_field):
                config_kwargs.pop(secret_field, None)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
