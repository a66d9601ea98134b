from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # ==============================
    # Application
    # ==============================
    APP_NAME: str = "Stockflow Replenishment Service"
    ENVIRONMENT: str = "local"

    # ==============================
    # Database
    # ==============================
    DATABASE_URL: str = "sqlite:///./stockflow.db"

    # ==============================
    # Logging
    # ==============================
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    # ==============================
    # Security
    # ==============================
    API_KEYS: Optional[str] = None
    API_KEY_HEADER: str = "X-API-Key"

    # ==============================
    # External Inventory API
    # ==============================
    INVENTORY_API_BASE_URL: str = "https://app.finaleinventory.com"
    INVENTORY_API_ACCOUNT: Optional[str] = None
    INVENTORY_API_KEY: Optional[str] = None
    INVENTORY_API_SECRET: Optional[str] = None
    INVENTORY_API_TIMEOUT_SECONDS: int = 30
    INVENTORY_API_PAGE_SIZE: int = 100

    # ==============================
    # Rate Limiter
    # ==============================
    RATE_LIMIT_PER_SECOND: float = 2.0
    RATE_LIMIT_MAX_QUEUE: int = 100
    RATE_LIMIT_HISTORY: int = 50

    # ==============================
    # Sync
    # ==============================
    SYNC_MAX_PAGES: int = 500
    SYNC_PAGE_MAX_ATTEMPTS: int = 3
    SYNC_BACKOFF_BASE_SECONDS: float = 1.0
    SYNC_BACKOFF_MAX_SECONDS: float = 10.0
    SYNC_STALE_MINUTES: int = 30
    SYNC_MAX_ERRORS: int = 50

    # ==============================
    # Auto Sync
    # ==============================
    AUTO_SYNC_ENABLED: bool = False
    AUTO_SYNC_INTERVAL_MINUTES: int = 60
    AUTO_SYNC_STRATEGY: str = "smart"

    # ==============================
    # Reorder Policy
    # ==============================
    REORDER_ORDER_COST: float = 50.0
    REORDER_HOLDING_COST_RATE: float = 0.25
    REORDER_DEFAULT_UNIT_COST: float = 10.0
    REORDER_DEFAULT_LEAD_TIME_DAYS: int = 7
    REORDER_SAFETY_FACTOR: float = 2.0


@lru_cache
def get_settings() -> Settings:
    """Cached settings loader (once per process)."""
    return Settings()


__all__ = ["Settings", "get_settings"]
