from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings, read from the environment and an optional .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    database_url: str = Field(default="sqlite:///./invoices.db")
    secret_key: str = Field(default="change-me")
    token_ttl_minutes: int = Field(default=24 * 60, ge=1)

    backup_interval_seconds: int = Field(default=5 * 60, ge=1)
    backup_retention: int = Field(default=5, ge=1)
    backup_scheduler_enabled: bool = Field(default=True)

    resend_api_key: Optional[str] = Field(default=None)
    resend_api_url: str = Field(default="https://api.resend.com/emails")
    email_from_address: str = Field(default="invoices@yourdomain.com")
    email_timeout_seconds: float = Field(default=10.0, gt=0)

    seed_demo_user: bool = Field(default=True)
    log_level: str = Field(default="INFO")


@lru_cache()
def get_settings() -> Settings:
    return Settings()
