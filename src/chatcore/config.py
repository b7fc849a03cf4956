from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class EngineConfig:
    heartbeat_interval_s: float = 30.0
    story_ttl_s: int = 24 * 60 * 60
    story_duration_s: float = 5.0
    playback_tick_s: float = 0.1
    call_log_page_size: int = 50
    request_timeout_s: float = 10.0
    store_url: str | None = None
    upload_url: str | None = None
    db_path: str | None = None
    log_level: str = "INFO"

    @property
    def story_ttl_ms(self) -> int:
        return self.story_ttl_s * 1000

    @property
    def ticks_per_story(self) -> int:
        return max(1, round(self.story_duration_s / self.playback_tick_s))


def _parse_positive_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        parsed = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer") from exc
    if parsed <= 0:
        raise ValueError(f"{name} must be positive")
    return parsed


def _parse_positive_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        parsed = float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number") from exc
    if parsed <= 0:
        raise ValueError(f"{name} must be positive")
    return parsed


def _parse_optional_str(name: str) -> str | None:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return None
    return raw.strip()


def _parse_log_level(name: str, default: str) -> str:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    level = raw.strip().upper()
    if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
        raise ValueError(f"{name} must be a logging level name")
    return level


def load_config_from_env() -> EngineConfig:
    defaults = EngineConfig()
    return EngineConfig(
        heartbeat_interval_s=_parse_positive_float("CHATCORE_HEARTBEAT_INTERVAL_S", defaults.heartbeat_interval_s),
        story_ttl_s=_parse_positive_int("CHATCORE_STORY_TTL_S", defaults.story_ttl_s),
        story_duration_s=_parse_positive_float("CHATCORE_STORY_DURATION_S", defaults.story_duration_s),
        playback_tick_s=_parse_positive_float("CHATCORE_PLAYBACK_TICK_S", defaults.playback_tick_s),
        call_log_page_size=_parse_positive_int("CHATCORE_CALL_PAGE_SIZE", defaults.call_log_page_size),
        request_timeout_s=_parse_positive_float("CHATCORE_REQUEST_TIMEOUT_S", defaults.request_timeout_s),
        store_url=_parse_optional_str("CHATCORE_STORE_URL"),
        upload_url=_parse_optional_str("CHATCORE_UPLOAD_URL"),
        db_path=_parse_optional_str("CHATCORE_DB_PATH"),
        log_level=_parse_log_level("CHATCORE_LOG_LEVEL", defaults.log_level),
    )
