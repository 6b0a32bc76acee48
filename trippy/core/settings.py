"""Application settings and configuration."""

from __future__ import annotations

from typing import List, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    APP_NAME: str = "trippy-live"

    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    # SQL store; a relative sqlite path is resolved against the project root
    DATABASE_URL: str = "sqlite:///./data/trippy.db"

    # Change-feed transport. In-memory when unset.
    REDIS_URL: Optional[str] = None

    # Channel namespace for change-feed events, already includes the trailing colon
    CHANGE_FEED_PREFIX: str = "changes:"

    # Live session timing
    WRITE_DEBOUNCE_MS: int = 500
    POLL_INTERVAL_SEC: float = 2.0

    # Presence configuration
    # NOTE: HEARTBEAT_SEC must stay below PRESENCE_TTL_SEC / 2 so a single
    # missed heartbeat doesn't immediately drop a participant from the list.
    HEARTBEAT_SEC: int = 60
    PRESENCE_TTL_SEC: int = 180

    # Consecutive failed refreshes before the reader is told it is out of sync
    SYNC_FAILURE_NOTICE_THRESHOLD: int = 3

    # Per-group notification flags survive restarts in this file
    NOTIFICATIONS_PATH: str = "./data/notifications.json"

    # AI plan generation
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_MODEL: str = "gpt-4o-mini"
    OPENAI_TIMEOUT_SEC: float = 60.0

    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000

    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def write_debounce_sec(self) -> float:
        return self.WRITE_DEBOUNCE_MS / 1000.0

    @property
    def cors_origins_list(self) -> List[str]:
        return (
            ["*"]
            if self.CORS_ORIGINS == "*"
            else [s.strip() for s in self.CORS_ORIGINS.split(",") if s.strip()]
        )


def validate_settings(cfg: Settings) -> None:
    """Reject timing combinations the live session engine cannot honour."""
    if cfg.HEARTBEAT_SEC * 2 >= cfg.PRESENCE_TTL_SEC:
        raise ValueError(
            f"Invalid presence timing: HEARTBEAT_SEC={cfg.HEARTBEAT_SEC} must be < PRESENCE_TTL_SEC/2={cfg.PRESENCE_TTL_SEC / 2}"
        )
    if cfg.WRITE_DEBOUNCE_MS <= 0:
        raise ValueError(f"WRITE_DEBOUNCE_MS must be positive, got {cfg.WRITE_DEBOUNCE_MS}")
    if cfg.POLL_INTERVAL_SEC <= 0:
        raise ValueError(f"POLL_INTERVAL_SEC must be positive, got {cfg.POLL_INTERVAL_SEC}")


# Global settings instance
settings = Settings()

# Settings come from the environment, so misconfiguration fails fast at import.
validate_settings(settings)


def get_settings() -> Settings:
    """Get the current settings instance (for dependency injection)."""
    return settings
