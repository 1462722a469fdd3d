"""Centralized player configuration via environment variables."""

from enum import StrEnum
from functools import lru_cache
from pathlib import Path

from pydantic import computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(StrEnum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


class Settings(BaseSettings):
    """Player settings loaded from environment variables.

    Timing values are plain seconds or milliseconds so they can be
    passed straight into the components; nothing reads the cached
    settings implicitly except :func:`course_player.session.create_session`.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- App ---
    environment: Environment = Environment.DEVELOPMENT
    log_level: str = "DEBUG"

    # --- Backend API ---
    api_base_url: str = "http://localhost:3000/api"
    api_timeout_sec: float = 30.0
    api_max_attempts: int = 3
    api_retry_delay_sec: float = 1.0
    auth_refresh_path: str = "/auth/refresh"

    # --- Playback ---
    # Duplicate engine errors inside this window are ignored.
    fallback_cooldown_sec: float = 2.0
    play_confirm_attempts: int = 3
    play_confirm_interval_sec: float = 0.5
    end_tolerance_ms: int = 500
    stream_validation_timeout_sec: float = 10.0

    # --- Questions / progress ---
    default_question_time_limit_sec: int = 30
    progress_milestones: list[int] = [25, 50, 75]

    # --- Local storage ---
    storage_dir: Path = Path(".course_player")

    @computed_field  # type: ignore[prop-decorator]
    @property
    def storage_path(self) -> Path:
        """JSON file backing the key-value store."""
        return self.storage_dir / "store.json"

    # --- Convenience properties ---
    @property
    def is_dev(self) -> bool:
        return self.environment == Environment.DEVELOPMENT

    @property
    def is_prod(self) -> bool:
        return self.environment == Environment.PRODUCTION

    @property
    def is_testing(self) -> bool:
        return self.environment == Environment.TESTING


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings singleton.

    Usage::

        from course_player.config import get_settings
        settings = get_settings()
    """
    return Settings()
