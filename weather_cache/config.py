"""Process-wide configuration pulled from environment variables via pydantic."""
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from utils.logging_utils import get_tagged_logger
logger = get_tagged_logger(__name__, tag="config")


class Settings(BaseSettings):
    """Environment-driven configuration for the weather snapshot cache.

    Loaded once at startup and frozen; components receive it by reference.
    """
    model_config = SettingsConfigDict(env_prefix="WEATHER_CACHE_", extra="ignore", frozen=True)

    store_backend: str = "memory"  # options: memory, sql
    database_url: str = "sqlite:///./weather_cache.db"

    default_radius_km: float = 50.0
    default_max_age_hours: float = 3.0
    fresh_max_age_hours: float = 2.0
    default_expiry_hours: float = 6.0
    cache_key_interval_seconds: int = 900
    region_time_range_hours: float = 24.0
    linear_scan_threshold: int = 500
    assess_on_put: bool = True

    sweeper_enabled: bool = True
    sweep_interval_seconds: float = 300.0
    sweep_lock_redis_url: str | None = None
    sweep_lock_ttl_seconds: int = 120

    log_level: str = "INFO"

    @field_validator("store_backend", mode="after")
    @classmethod
    def normalize_backend(cls, v: str) -> str:
        """Accept backend names case-insensitively."""
        return str(v).strip().lower()

    @field_validator("sweep_interval_seconds", "default_expiry_hours", mode="after")
    @classmethod
    def require_positive(cls, v: float) -> float:
        """Intervals of zero or less would spin or expire records immediately."""
        if v <= 0:
            raise ValueError("must be greater than zero")
        return v


settings = Settings()


if __name__ == "__main__":
    logger.setLevel("DEBUG")
    logger.debug(f"Loaded settings: {settings.model_dump_json(indent=4)}")
