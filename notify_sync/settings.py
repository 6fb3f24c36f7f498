"""Client settings and configuration."""
import os
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from notify_sync.config_store import ConfigStore


class Settings(BaseSettings):
    """Client settings. Env vars use the NOTIFY_SYNC_ prefix (e.g. NOTIFY_SYNC_API_BASE_URL)."""

    model_config = SettingsConfigDict(
        env_prefix="NOTIFY_SYNC_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # App
    app_name: str = "notify-sync"
    log_level: str = "INFO"

    # Backend endpoints (relative to api_base_url)
    api_base_url: str = "http://localhost:8282/api"
    stream_path: str = "/notifications/stream"
    unread_path: str = "/notifications/unread"
    mark_read_path: str = "/notifications/{notification_id}/read"
    mark_all_read_path: str = "/notifications/read-all"
    lessons_path: str = "/lessons/upcoming"
    teachers_path: str = "/teachers"
    teacher_availabilities_path: str = "/availabilities/teacher/{teacher_id}"
    # Session cookie forwarded on every request (the stream carries no auth header)
    session_cookie_name: str = "JSESSIONID"
    session_cookie: str = ""

    # HTTP
    request_timeout_s: float = 10.0
    stream_connect_timeout_s: float = 10.0

    # Reconnect backoff: 3s, 6s, 12s, 24s, 48s, 60s (max)
    initial_retry_delay_s: float = Field(default=3.0, gt=0)
    max_retry_delay_s: float = Field(default=60.0, gt=0)
    max_retry_attempts: int = Field(default=10, ge=1)

    # Backgrounding: grace period before a hidden client drops its stream
    hidden_grace_s: float = Field(default=30.0, ge=0)

    # Notification log
    max_notifications: int = Field(default=50, ge=1)
    storage_backend: Literal["memory", "file", "redis"] = "file"
    storage_dir: str = Field(default_factory=lambda: str(Path.home() / ".notify_sync"))
    storage_key_prefix: str = "notifications"
    redis_url: str = "redis://localhost:6379/0"

    # Change-detection polling: always | fallback (only while the stream is down) | off
    poll_mode: Literal["always", "fallback", "off"] = "fallback"
    poll_interval_s: float = Field(default=8.0, gt=0)


# Config file: NOTIFY_SYNC_CONFIG_FILE or ./notify_sync.yaml; values in it win over env
_config_file = os.environ.get("NOTIFY_SYNC_CONFIG_FILE") or str(Path.cwd() / "notify_sync.yaml")
_config_store = ConfigStore(Settings, _config_file)


def get_settings() -> Settings:
    """Return the resolved Settings (raises ConfigError on invalid config)."""
    return _config_store.get_settings()


def get_config_store() -> ConfigStore:
    """Return the config store; CLI flags go through its update()."""
    return _config_store


def use_config_file(path: str) -> ConfigStore:
    """Replace the process config store with one reading ``path`` (the CLI --config flag)."""
    global _config_store
    _config_store = ConfigStore(Settings, path)
    return _config_store
