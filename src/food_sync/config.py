"""Application configuration."""

import os

from pydantic_settings import BaseSettings, SettingsConfigDict

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    supabase_url: str
    supabase_service_key: str
    api_token: str
    fitbit_client_id: str
    fitbit_client_secret: str
    fitbit_base_url: str = "https://api.fitbit.com"
    fitbit_request_timeout_seconds: float = 10.0
    fitbit_max_retries: int = 3
    fitbit_retry_deadline_seconds: float = 30.0
    fitbit_dry_run: bool = False
    token_refresh_margin_seconds: int = 3600
    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )
