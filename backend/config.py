"""
Application configuration management.
Centralizes all configuration settings for the call transcription service.
"""

from pathlib import Path
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


def get_app_data_dir() -> Path:
    """Directory holding the SQLite database and log files."""
    return Path(__file__).parent


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "Call Transcription API"
    debug: bool = False

    # Paths
    base_dir: Path = get_app_data_dir()
    database_url: str = f"sqlite:///{base_dir / 'calls.db'}"

    # Logging
    log_level: str = "INFO"
    log_file: Optional[Path] = None

    # Server
    host: str = "127.0.0.1"
    port: int = 8000
    cors_origins: list[str] = ["*"]

    # Auth
    jwt_secret_key: str = "change-me"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24

    # Job queue / worker pool
    start_workers: bool = True
    transcription_concurrency: int = 5
    transcription_max_attempts: int = 3
    transcription_backoff_ms: int = 2000
    transcription_submit_delay_ms: int = 1000
    transcription_timeout_seconds: Optional[float] = None
    queue_poll_interval_seconds: float = 0.5
    queue_keep_completed: int = 10
    queue_keep_failed: int = 5

    # Transcriber selection
    transcriber_backend: Literal["mock", "static"] = "mock"
    mock_min_seconds: float = 2.0
    mock_max_seconds: float = 10.0
    mock_failure_rate: float = 0.05
    static_transcript_text: str = "Static transcript for call {call_id}."
    static_fail: bool = False

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


settings = Settings()
