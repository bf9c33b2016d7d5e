"""Configuration management for the voice-driven spreadsheet service."""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

_config_logger = logging.getLogger(__name__)


class LoggingSettings(BaseModel):
    level: str = Field(default="INFO", description="Python logging level name")
    file: str | None = Field(default=None, description="Optional log file path")


class StorageSettings(BaseModel):
    sqlite_path: str = Field(default="./data/voice_sheets.sqlite")
    sqlite_wal: bool = Field(default=True)


class SafetySettings(BaseModel):
    rollback_window_hours: int = Field(default=24, ge=1, le=24 * 30)
    undo_claim_lease_seconds: int = Field(
        default=600,
        ge=1,
        description="Age after which an in-flight undo claim is considered abandoned.",
    )
    stale_conversation_minutes: int = Field(default=30, ge=1)
    clarification_threshold: float = Field(default=0.60, ge=0.0, le=1.0)
    audit_retention_days: int = Field(default=90, ge=1)
    sweep_interval_seconds: int = Field(default=300, ge=1)
    sweep_enabled: bool = Field(default=True)


class SheetsSettings(BaseModel):
    api_base_url: str = Field(default="https://sheets.googleapis.com/v4")
    timeout_seconds: float = Field(default=30.0, ge=0.1, le=300.0)
    access_token: str | None = Field(
        default=None,
        description="Static OAuth access token used by the default backend provider.",
    )

    @field_validator("api_base_url")
    @classmethod
    def _strip_base_url(cls, value: str) -> str:
        value = value.strip().rstrip("/")
        if not value.startswith(("http://", "https://")):
            raise ValueError("api_base_url must be an http(s) URL")
        return value


class RateLimitSettings(BaseModel):
    enabled: bool = Field(default=True)
    requests_per_minute: int = Field(default=60, ge=1)
    window_seconds: int = Field(default=60, ge=1)


class ServerSettings(BaseModel):
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8000, ge=1024, le=65535)
    trust_forwarded_headers: bool = Field(default=False)
    max_body_size_kb: int = Field(default=256, ge=1)
    audit_requests: bool = Field(default=True)


class Settings(BaseModel):
    server: ServerSettings = Field(default_factory=ServerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    safety: SafetySettings = Field(default_factory=SafetySettings)
    sheets: SheetsSettings = Field(default_factory=SheetsSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)


ENV_KEYS = {
    "host": "VOICE_SHEETS_HOST",
    "port": "VOICE_SHEETS_PORT",
    "log_level": "LOG_LEVEL",
    "log_file": "LOG_FILE",
    "sqlite_path": "SQLITE_PATH",
    "rollback_window_hours": "ROLLBACK_WINDOW_HOURS",
    "stale_minutes": "STALE_CONVERSATION_MINUTES",
    "clarification_threshold": "CLARIFICATION_THRESHOLD",
    "audit_retention_days": "AUDIT_RETENTION_DAYS",
    "sheets_token": "GOOGLE_SHEETS_ACCESS_TOKEN",
}

_TRUE_VALUES = frozenset({"1", "true", "yes"})


def _project_root() -> Path:
    return Path(__file__).resolve().parents[2]


def _resolve_path(path: str) -> str:
    candidate = Path(path)
    if path == ":memory:":
        return path
    if candidate.is_absolute():
        return str(candidate.resolve())
    return str((_project_root() / candidate).resolve())


def _env_bool(key: str, default: bool) -> bool:
    value = os.getenv(key)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _env_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        _config_logger.warning(
            "Invalid integer value for %s: %r, using default %d", key, value, default
        )
        return default


def _env_float(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError:
        _config_logger.warning(
            "Invalid float value for %s: %r, using default %s", key, value, default
        )
        return default


def load_settings() -> Settings:
    """Load configuration and cache the result."""

    return _load_settings_cached()


@lru_cache(maxsize=1)
def _load_settings_cached() -> Settings:
    load_dotenv(dotenv_path=_project_root() / ".env")
    log_file_env = os.getenv(ENV_KEYS["log_file"])

    settings_data: dict[str, object] = {
        "server": {
            "host": os.getenv(ENV_KEYS["host"], ServerSettings().host),
            "port": _env_int(ENV_KEYS["port"], ServerSettings().port),
            "trust_forwarded_headers": _env_bool(
                "HTTP_TRUST_FORWARDED_HEADERS",
                ServerSettings().trust_forwarded_headers,
            ),
            "max_body_size_kb": _env_int(
                "HTTP_MAX_BODY_SIZE_KB",
                ServerSettings().max_body_size_kb,
            ),
            "audit_requests": _env_bool(
                "HTTP_AUDIT_REQUESTS",
                ServerSettings().audit_requests,
            ),
        },
        "logging": {
            "level": os.getenv(ENV_KEYS["log_level"], LoggingSettings().level),
            "file": _resolve_path(log_file_env) if log_file_env else None,
        },
        "storage": {
            "sqlite_path": _resolve_path(
                os.getenv(ENV_KEYS["sqlite_path"], StorageSettings().sqlite_path)
            ),
            "sqlite_wal": _env_bool("SQLITE_WAL", StorageSettings().sqlite_wal),
        },
        "safety": {
            "rollback_window_hours": _env_int(
                ENV_KEYS["rollback_window_hours"],
                SafetySettings().rollback_window_hours,
            ),
            "undo_claim_lease_seconds": _env_int(
                "UNDO_CLAIM_LEASE_SECONDS",
                SafetySettings().undo_claim_lease_seconds,
            ),
            "stale_conversation_minutes": _env_int(
                ENV_KEYS["stale_minutes"],
                SafetySettings().stale_conversation_minutes,
            ),
            "clarification_threshold": _env_float(
                ENV_KEYS["clarification_threshold"],
                SafetySettings().clarification_threshold,
            ),
            "audit_retention_days": _env_int(
                ENV_KEYS["audit_retention_days"],
                SafetySettings().audit_retention_days,
            ),
            "sweep_interval_seconds": _env_int(
                "SWEEP_INTERVAL_SECONDS",
                SafetySettings().sweep_interval_seconds,
            ),
            "sweep_enabled": _env_bool("SWEEP_ENABLED", SafetySettings().sweep_enabled),
        },
        "sheets": {
            "api_base_url": os.getenv(
                "GOOGLE_SHEETS_API_BASE_URL", SheetsSettings().api_base_url
            ),
            "timeout_seconds": _env_float(
                "GOOGLE_SHEETS_TIMEOUT_SECONDS",
                SheetsSettings().timeout_seconds,
            ),
            "access_token": os.getenv(ENV_KEYS["sheets_token"]) or None,
        },
        "rate_limit": {
            "enabled": _env_bool("RATE_LIMIT_ENABLED", RateLimitSettings().enabled),
            "requests_per_minute": _env_int(
                "RATE_LIMIT_PER_USER_PER_MINUTE",
                RateLimitSettings().requests_per_minute,
            ),
            "window_seconds": _env_int(
                "RATE_LIMIT_WINDOW_SECONDS",
                RateLimitSettings().window_seconds,
            ),
        },
    }

    try:
        settings = Settings.model_validate(settings_data)
    except ValidationError as exc:
        raise RuntimeError(f"Invalid configuration: {exc}") from exc

    if settings.storage.sqlite_path != ":memory:":
        Path(settings.storage.sqlite_path).parent.mkdir(parents=True, exist_ok=True)

    return settings
