"""Service settings loaded from environment variables (prefix ``PAYGATE_``)."""
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = Field(default="paygate", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/production/test)")
    log_level: str = Field(default="INFO", description="Logging level")
    log_json: bool = Field(default=True, description="Render logs as JSON")

    database_url: str = Field(default="sqlite:///./paygate.db", description="SQLAlchemy database URL")
    database_echo: bool = Field(default=False, description="Echo SQL queries (debug)")

    # The quota day is [00:00, 24:00) at this fixed offset, independent of the
    # database server's own time zone.
    quota_utc_offset_hours: int = Field(default=8, description="UTC offset of the quota calendar day")

    pay_types_path: Optional[str] = Field(default=None, description="JSON file replacing the built-in method catalog")
    idempotency_enabled: bool = Field(default=True, description="Replay prior decisions for a repeated idempotency key")

    model_config = SettingsConfigDict(
        env_prefix="PAYGATE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()

    @field_validator("quota_utc_offset_hours")
    @classmethod
    def validate_offset(cls, v: int) -> int:
        if not -12 <= v <= 14:
            raise ValueError("quota_utc_offset_hours must be between -12 and 14")
        return v

    @property
    def is_production(self) -> bool:
        return self.app_env.lower() == "production"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance; call ``get_settings.cache_clear()`` after changing the environment."""
    return Settings()
