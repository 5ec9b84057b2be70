"""
Environment configuration — single source of truth for all settings.

Uses pydantic-settings for type-safe config with .env file support.
All values have sensible defaults for local development.

Usage:
    from backend.app.core.config import settings
    print(settings.DANGER_LOOKBACK_DAYS)
"""

from __future__ import annotations

from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application-wide settings loaded from environment variables or .env file.

    Precedence: env var > .env file > default value
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ── Application ──
    APP_NAME: str = "Night-Safety Risk & Routing Engine"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development | staging | production
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"  # DEBUG | INFO | WARNING | ERROR | CRITICAL

    # ── Server ──
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # ── CORS ──
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]
    CORS_ALLOW_ALL: bool = True  # False in production

    # ── Database (confirmation transactions only) ──
    DATABASE_URL: str = "sqlite+aiosqlite:///./night_safety.db"
    DATABASE_POOL_SIZE: int = 20  # ignored for sqlite
    DATABASE_MAX_OVERFLOW: int = 10  # ignored for sqlite
    DATABASE_ECHO: bool = False  # log SQL queries

    # ── Density grid ──
    HEATMAP_CELL_SIZE_DEG: float = 0.002  # ~200 m map heat cells
    GRID_CELL_SIZE_DEG: float = 0.005  # ~500 m danger-zone cells

    # ── Danger zones ──
    DANGER_LOOKBACK_DAYS: int = 30
    DANGER_BASE_RADIUS_M: float = 150.0
    DANGER_MIN_SEVERITY: int = 2  # lighter reports never form a zone
    DENSE_ZONE_MIN_REPORTS: int = 3  # radius grows above this count
    DENSE_ZONE_RADIUS_FACTOR: float = 1.5

    # ── Segment risk ──
    SEGMENT_LOOKBACK_DAYS: int = 30
    SEGMENT_BBOX_DELTA_DEG: float = 0.002

    # ── Route synthesis ──
    ROUTE_STEP_M: float = 100.0
    ROUTE_MAX_WAYPOINTS: int = 500  # step is widened to stay under this
    WALKING_SPEED_M_S: float = 1.4
    OVERLAY_PROXIMITY_M: float = 50.0

    # ── Confirmation transaction ──
    CONFIRM_MAX_ATTEMPTS: int = 5
    CONFIRM_BACKOFF_BASE_SECONDS: float = 0.05
    CONFIRM_BACKOFF_MAX_SECONDS: float = 1.0

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()


settings = get_settings()
