"""Application configuration using pydantic-settings.

All environment variables should be accessed through the settings object
rather than using os.getenv() directly.
"""

from functools import lru_cache
from typing import Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


TRANSACTION_TYPES = ("usage", "transfer", "adjustment", "waste")


class Settings(BaseSettings):
    """Settings loaded from environment variables (prefix ``STOCKCORE_``)."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="STOCKCORE_",
        case_sensitive=False,
        extra="ignore",
    )

    # Database - relative path for local runs, override via env in deployment
    database_url: str = "sqlite:///./data/stockcore.db"
    pool_size: int = 20
    max_overflow: int = 40
    pool_recycle: int = 3600  # seconds

    # Deduction defaults
    default_timezone: str = "America/Chicago"
    default_transaction_type: str = "usage"
    default_reason_prefix: str = "POS sale"

    # Server
    debug: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    @field_validator("default_timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone '{v}'")
        return v

    @field_validator("default_transaction_type")
    @classmethod
    def validate_transaction_type(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in TRANSACTION_TYPES:
            raise ValueError(
                f"default_transaction_type must be one of {', '.join(TRANSACTION_TYPES)}"
            )
        return v

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
