"""Application configuration."""

import os

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")


def default_forward_threads() -> int:
    """Half the CPUs, never fewer than two."""
    return max(2, (os.cpu_count() or 1) // 2)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    telegram_bot_token: str
    admin_token: str
    telegram_allowed_user_ids: str | None = None
    chat_ids_file: str = "chatids.json"
    supabase_url: str | None = None
    supabase_service_key: str | None = None
    rtmp_pull_base: str = "rtmp://127.0.0.1:1935"
    recordings_dir: str = "recordings"
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    metrics_interval_seconds: float = 2.0
    probe_timeout_seconds: float = 10.0
    low_bitrate_threshold: int = 2_000_000
    forward_threads: int = Field(default_factory=default_forward_threads)
    process_stop_timeout_seconds: float = 5.0
    recording_stop_grace_seconds: float = 3.0
    subscriber_queue_size: int = 100
    host: str = "0.0.0.0"
    port: int = 3000
    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )


def parse_allowed_user_ids(raw: str | None) -> set[int] | None:
    """Parse allowed Telegram user IDs from env."""
    if raw is None:
        return None
    cleaned = raw.strip()
    if cleaned in {"", "*"}:
        return None
    ids: set[int] = set()
    for chunk in cleaned.split(","):
        value = chunk.strip()
        if not value:
            continue
        if value.isdigit():
            ids.add(int(value))
    return ids or None
