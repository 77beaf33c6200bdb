import os
from functools import lru_cache
from typing import Optional

from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    sync_interval_seconds: float = Field(30.0, alias="COMPETENCY_SYNC_INTERVAL_SECONDS", gt=0)
    sync_autostart: bool = Field(True, alias="COMPETENCY_SYNC_AUTOSTART")
    cache_freshness_seconds: float = Field(300.0, alias="COMPETENCY_CACHE_FRESHNESS_SECONDS", ge=0)
    max_delivery_attempts: int = Field(3, alias="COMPETENCY_MAX_DELIVERY_ATTEMPTS", ge=1)
    remote_timeout_seconds: float = Field(10.0, alias="COMPETENCY_REMOTE_TIMEOUT_SECONDS", gt=0)
    recent_action_retention: int = Field(50, alias="COMPETENCY_RECENT_ACTION_RETENTION", ge=1)
    debug_endpoints: bool = Field(False, alias="COMPETENCY_DEBUG_ENDPOINTS")
    database_url: Optional[str] = Field(None, alias="COMPETENCY_DATABASE_URL")
    database_pool_size: int = Field(10, alias="COMPETENCY_DATABASE_POOL_SIZE")
    database_max_overflow: int = Field(10, alias="COMPETENCY_DATABASE_MAX_OVERFLOW")
    database_echo: bool = Field(False, alias="COMPETENCY_DATABASE_ECHO")

    class Config:
        env_file = os.getenv("ENV_FILE", ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True


class SyncConfig(BaseModel):
    """Runtime knobs carried by a single service instance."""

    sync_interval_seconds: float = Field(default=30.0, gt=0)
    cache_freshness_seconds: float = Field(default=300.0, ge=0)
    max_delivery_attempts: int = Field(default=3, ge=1)
    remote_timeout_seconds: float = Field(default=10.0, gt=0)
    autostart: bool = True

    @classmethod
    def from_settings(cls, settings: Settings) -> "SyncConfig":
        return cls(
            sync_interval_seconds=settings.sync_interval_seconds,
            cache_freshness_seconds=settings.cache_freshness_seconds,
            max_delivery_attempts=settings.max_delivery_attempts,
            remote_timeout_seconds=settings.remote_timeout_seconds,
            autostart=settings.sync_autostart,
        )


@lru_cache
def get_settings() -> Settings:
    try:
        return Settings()  # type: ignore[call-arg]
    except ValidationError as exc:
        raise RuntimeError(f"Invalid competency engine configuration: {exc}") from exc
