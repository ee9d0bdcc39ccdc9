# /chathub/config/settings.py

from typing import Annotated, List
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode


class Settings(BaseSettings):
    # MongoDB
    mongo_uri: str = "mongodb://localhost:27017/chathub"
    max_pool_size: int = 10
    min_pool_size: int = 1
    mongo_ssl: bool = False

    # Redis
    redis_url: str = "redis://localhost:6379"

    # AI responder
    ai_url: str = "http://localhost:5000"
    ai_timeout_seconds: float = 30.0
    human_handoff_sentinel: str = "code:human007"

    # Token usage service
    token_service_base_url: str = "http://localhost:5001"

    # Staff notifications (Telegram bot webhook)
    telegram_bot_url: str | None = None

    # Shared variables service
    shared_variables_service_url: str | None = None
    shared_variables_service_api_key: str | None = None
    runtime_config_refresh_minutes: int = 10
    default_plan_controller_url: str | None = None
    default_free_trial_duration_days: int = 3

    # Localization
    default_language: str = "en"

    # Security
    api_key: str | None = None

    # Deployment
    environment: str = Field(default="production")

    # CORS: static origins, merged with tenant website links at runtime
    cors_allowed_origins: Annotated[List[str], NoDecode] = Field(default=["http://localhost:3000"])

    # App Metadata & Limits
    api_version: str = "v1"
    rate_limit_per_minute: int = 100

    # ---------------- Validators ---------------- #

    @field_validator("cors_allowed_origins", mode="before")
    @classmethod
    def parse_cors_allowed_origins(cls, v):
        """
        Handle both string (comma-separated) and list formats for cors_allowed_origins.
        """
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    @field_validator("human_handoff_sentinel")
    @classmethod
    def sentinel_must_not_be_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("HUMAN_HANDOFF_SENTINEL cannot be blank")
        return v.strip()

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
