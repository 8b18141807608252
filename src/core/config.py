from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Ignore unrelated env keys so local/dev .env can include optional integrations.
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "CAMPS Trends Backend"
    environment: str = "development"
    api_prefix: str = "/api/v1"
    cors_allow_origins: str = "http://localhost:3000,http://127.0.0.1:3000"
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    supabase_url: str = Field(..., alias="SUPABASE_URL")
    supabase_service_role_key: Optional[str] = Field(
        default=None, alias="SUPABASE_SERVICE_ROLE_KEY"
    )
    supabase_anon_key: Optional[str] = Field(default=None, alias="SUPABASE_ANON_KEY")

    trend_manual_run_token: Optional[str] = Field(default=None, alias="TREND_MANUAL_RUN_TOKEN")
    trend_batch_size: int = Field(default=5, ge=1, alias="TREND_BATCH_SIZE")
    trend_max_workers: int = Field(default=5, ge=1, alias="TREND_MAX_WORKERS")
    trend_batch_pause_seconds: float = Field(default=0.1, ge=0, alias="TREND_BATCH_PAUSE_SECONDS")
    trend_lag_tolerance_days: int = Field(default=7, ge=0, alias="TREND_LAG_TOLERANCE_DAYS")
    trend_include_organization: bool = Field(default=True, alias="TREND_INCLUDE_ORGANIZATION")
    trend_startup_check_enabled: bool = Field(default=False, alias="TREND_STARTUP_CHECK_ENABLED")
    trend_stale_pending_minutes: int = Field(default=180, ge=1, alias="TREND_STALE_PENDING_MINUTES")


@lru_cache
def get_settings() -> Settings:
    return Settings()


def get_cors_origins() -> list[str]:
    settings = get_settings()
    return [origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()]
