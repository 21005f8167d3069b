from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal

AppEnv = Literal["dev", "test", "prod"]
LogLevel = Literal["debug", "info", "warning", "error"]


def _getenv(name: str, default: str) -> str:
    # Centralize env access so type casting and validation live in one place
    return os.environ.get(name, default).strip()


def _getfloat(name: str, default: str, *, minimum: float = 0.0) -> float:
    raw = _getenv(name, default)
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number (got {raw!r})") from None
    if value <= minimum:
        raise ValueError(f"{name} must be greater than {minimum:g} (got {raw!r})")
    return value


def _getint(name: str, default: str, *, minimum: int = 1) -> int:
    raw = _getenv(name, default)
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer (got {raw!r})") from None
    if value < minimum:
        raise ValueError(f"{name} must be at least {minimum} (got {raw!r})")
    return value


@dataclass(frozen=True)
class Settings:
    app_env: AppEnv
    log_level: LogLevel
    log_json: bool
    port: int
    redis_url: str | None
    local_storage_url: str | None

    # Sync engine timers (seconds)
    video_sync_interval: float = 5.0
    aggregate_sync_interval: float = 30.0
    analytics_refresh_interval: float = 10.0
    sync_max_backoff: float = 300.0

    # Proctoring
    face_poll_interval: float = 0.75
    face_miss_threshold: int = 3
    violation_cooldown: float = 10.0
    max_tab_warnings: int = 3
    face_monitoring: bool = False  # open a server-side webcam per session
    camera_index: int = 0

    @property
    def is_dev(self) -> bool:
        return self.app_env == "dev"

    @property
    def is_test(self) -> bool:
        return self.app_env == "test"

    @property
    def is_prod(self) -> bool:
        return self.app_env == "prod"


def load_settings() -> Settings:
    app_env_raw = _getenv("APP_ENV", "dev").lower()
    log_level_raw = _getenv("LOG_LEVEL", "info").lower()
    log_json_raw = _getenv("LOG_JSON", "false").lower()
    face_monitoring_raw = _getenv("FACE_MONITORING", "false").lower()
    port_raw = _getenv("PORT", "8000")

    if app_env_raw not in ("dev", "test", "prod"):
        raise ValueError(f"APP_ENV must be dev|test|prod (got {app_env_raw!r})")

    if log_level_raw not in ("debug", "info", "warning", "error"):
        raise ValueError(
            f"LOG_LEVEL must be debug|info|warning|error (got {log_level_raw!r})"
        )

    if log_json_raw not in ("true", "false", "1", "0", "yes", "no"):
        raise ValueError(f"LOG_JSON must be true|false (got {log_json_raw!r})")

    if face_monitoring_raw not in ("true", "false", "1", "0", "yes", "no"):
        raise ValueError(f"FACE_MONITORING must be true|false (got {face_monitoring_raw!r})")

    try:
        port = int(port_raw)
    except ValueError:
        raise ValueError(f"PORT must be an integer (got {port_raw!r})") from None

    redis_url = _getenv("REDIS_URL", "") or None
    local_storage_url = _getenv("LOCAL_STORAGE_URL", "") or None

    return Settings(  # type: ignore[arg-type]
        app_env=app_env_raw,
        log_level=log_level_raw,
        log_json=log_json_raw in ("true", "1", "yes"),
        port=port,
        redis_url=redis_url,
        local_storage_url=local_storage_url,
        video_sync_interval=_getfloat("VIDEO_SYNC_INTERVAL", "5"),
        aggregate_sync_interval=_getfloat("AGGREGATE_SYNC_INTERVAL", "30"),
        analytics_refresh_interval=_getfloat("ANALYTICS_REFRESH_INTERVAL", "10"),
        sync_max_backoff=_getfloat("SYNC_MAX_BACKOFF", "300"),
        face_poll_interval=_getfloat("FACE_POLL_INTERVAL", "0.75"),
        face_miss_threshold=_getint("FACE_MISS_THRESHOLD", "3"),
        violation_cooldown=_getfloat("VIOLATION_COOLDOWN", "10"),
        max_tab_warnings=_getint("MAX_TAB_WARNINGS", "3"),
        face_monitoring=face_monitoring_raw in ("true", "1", "yes"),
        camera_index=_getint("CAMERA_INDEX", "0", minimum=0),
    )


# Module-level singleton so imports are cheap
SETTINGS = load_settings()
