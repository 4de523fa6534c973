"""Application configuration using Pydantic settings."""

import logging
import time
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def utc_now() -> datetime:
    """Current time in UTC."""
    return datetime.now(timezone.utc)


def utc_now_naive() -> datetime:
    """Current UTC time as naive datetime (for SQLAlchemy defaults).

    SQLite doesn't handle timezone-aware datetimes well, so stored
    timestamps are naive UTC.
    """
    return utc_now().replace(tzinfo=None)


def now_ms() -> int:
    """Epoch milliseconds, the timestamp unit used by round history."""
    return int(time.time() * 1000)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="RACE_PREDICTOR_",
        extra="ignore",
    )

    # Database
    db_path: Path = Path("./data/race_predictor.db")

    # App
    debug: bool = False
    log_level: str = "INFO"

    # Learning
    recent_window_size: int = Field(default=20, ge=10, le=50)
    calibration_window: int = Field(default=10, ge=10, le=20)
    default_strategy: str = "Balanced"

    # Staking
    bankroll_unit: float = Field(default=10_000.0, gt=0)

    @property
    def database_url(self) -> str:
        """SQLite database URL for SQLAlchemy."""
        return f"sqlite+aiosqlite:///{self.db_path}"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def configure_logging(level: str | None = None) -> None:
    """Set up root logging the same way for scripts and embedding apps."""
    logging.basicConfig(
        level=getattr(logging, (level or get_settings().log_level).upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
