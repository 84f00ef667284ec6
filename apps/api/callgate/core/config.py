"""Application configuration for the call edge service."""
from __future__ import annotations

from functools import lru_cache
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration, built once at startup and handed to each component."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore", frozen=True)

    app_env: str = Field(default="development")
    log_level: str = Field(default="INFO")
    cors_allow_origins: Annotated[list[str], NoDecode] = Field(default_factory=lambda: ["*"])
    trust_proxy: bool = Field(default=False)

    turn_secret: str = Field(default="")
    turn_host: str = Field(default="")
    turn_ttl_seconds: int = Field(default=24 * 3600, ge=1)
    turn_subject: str = Field(default="connected-user")
    stun_fallback_uri: str = Field(default="stun:stun.l.google.com:19302")

    api_rate_per_minute: float = Field(default=10.0, gt=0)
    api_rate_burst: float = Field(default=5.0, ge=1)
    push_rate_per_minute: float = Field(default=10.0, gt=0)
    push_rate_burst: float = Field(default=5.0, ge=1)
    rate_limit_max_clients: int = Field(default=10_000, ge=1)
    rate_limit_idle_seconds: float = Field(default=600.0, gt=0)

    fcm_service_account_json: str = Field(default="")
    fcm_service_account_file: str = Field(default="")
    fcm_project_id: str = Field(default="")
    fcm_client_email: str = Field(default="")
    fcm_private_key: str = Field(default="")
    fcm_token_endpoint: str = Field(default="https://oauth2.googleapis.com/token")
    fcm_api_base_url: str = Field(default="https://fcm.googleapis.com")
    push_http_timeout_seconds: float = Field(default=12.0, gt=0)

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: object) -> object:
        """Allow comma-separated env values for CORS origins."""

        if isinstance(value, str):
            parts = [item.strip() for item in value.split(",") if item.strip()]
            return parts
        return value


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance."""

    return Settings()
