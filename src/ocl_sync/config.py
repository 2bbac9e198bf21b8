"""Configuration management for the OCL subscription synchronizer."""

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

    @field_validator("level")
    @classmethod
    def _validate_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown logging level: {value}")
        return normalized


class StorageSettings(BaseModel):
    sqlite_path: str = Field(default="./data/ocl_sync.sqlite")
    sqlite_wal: bool = Field(default=True)


class SubscriptionSettings(BaseModel):
    path: str | None = Field(
        default=None,
        description="Optional YAML file used to seed the subscription at startup",
    )


class UpdaterSettings(BaseModel):
    abandoned_after_seconds: int = Field(
        default=6 * 60 * 60,
        ge=60,
        le=7 * 24 * 60 * 60,
        description=(
            "Active updates older than this are treated as abandoned by a crashed "
            "process and force-closed on startup."
        ),
    )
    recover_on_startup: bool = Field(default=True)


class Settings(BaseModel):
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    subscription: SubscriptionSettings = Field(default_factory=SubscriptionSettings)
    updater: UpdaterSettings = Field(default_factory=UpdaterSettings)


ENV_KEYS = {
    "log_level": "LOG_LEVEL",
    "log_file": "LOG_FILE",
    "sqlite_path": "SQLITE_PATH",
    "sqlite_wal": "SQLITE_WAL",
    "subscription_path": "OCL_SUBSCRIPTION_PATH",
    "abandoned_after_seconds": "UPDATER_ABANDONED_AFTER_SECONDS",
    "recover_on_startup": "UPDATER_RECOVER_ON_STARTUP",
}

_TRUE_VALUES = frozenset({"1", "true", "yes"})


def _project_root() -> Path:
    return Path(__file__).resolve().parents[2]


def _resolve_path(path: str) -> str:
    candidate = Path(path)
    root = _project_root().resolve()
    if candidate.is_absolute():
        resolved = candidate.resolve()
    else:
        resolved = (root / candidate).resolve()
    if not resolved.is_relative_to(root):
        raise ValueError(f"Path traversal detected: '{path}' resolves outside project root")
    return str(resolved)


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


def load_settings() -> Settings:
    """Load configuration and cache the result."""

    return _load_settings_cached()


@lru_cache(maxsize=1)
def _load_settings_cached() -> Settings:
    load_dotenv(dotenv_path=_project_root() / ".env")
    log_file_env = os.getenv(ENV_KEYS["log_file"])
    subscription_path_env = os.getenv(ENV_KEYS["subscription_path"])

    settings_data: dict[str, object] = {
        "logging": {
            "level": os.getenv(ENV_KEYS["log_level"], LoggingSettings().level),
            "file": _resolve_path(log_file_env) if log_file_env else None,
        },
        "storage": {
            "sqlite_path": _resolve_path(
                os.getenv(ENV_KEYS["sqlite_path"], StorageSettings().sqlite_path)
            ),
            "sqlite_wal": _env_bool(ENV_KEYS["sqlite_wal"], StorageSettings().sqlite_wal),
        },
        "subscription": {
            "path": _resolve_path(subscription_path_env) if subscription_path_env else None,
        },
        "updater": {
            "abandoned_after_seconds": _env_int(
                ENV_KEYS["abandoned_after_seconds"],
                UpdaterSettings().abandoned_after_seconds,
            ),
            "recover_on_startup": _env_bool(
                ENV_KEYS["recover_on_startup"],
                UpdaterSettings().recover_on_startup,
            ),
        },
    }

    try:
        settings = Settings.model_validate(settings_data)
    except ValidationError as exc:
        raise RuntimeError(f"Invalid configuration: {exc}") from exc

    Path(settings.storage.sqlite_path).parent.mkdir(parents=True, exist_ok=True)

    return settings
