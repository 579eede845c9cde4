"""
Application configuration and settings.
Centralized configuration management using Pydantic Settings.
"""
from functools import lru_cache
from typing import List, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Allow extra fields from .env files that aren't defined here
    # (the frontend shares the same .env.local as this backend)
    model_config = SettingsConfigDict(
        extra="ignore",
        case_sensitive=False,
        env_file=[".env", ".env.local"],  # Load .env first, then .env.local (so .env.local overrides)
    )

    # Application settings
    app_name: str = "Symptom Checker Chat API"
    environment: str = Field(
        default="local",
        validation_alias=AliasChoices("SYSTEM_ENVIRONMENT", "environment"),
    )

    # CORS settings
    allowed_origins: Optional[List[str]] = None

    # Logging settings
    log_level: str = "INFO"
    enable_request_logging: bool = True

    # Azure OpenAI settings
    azure_openai_api_base_url: Optional[str] = None
    azure_openai_api_key: Optional[str] = None
    azure_deployment_gpt4: Optional[str] = None
    azure_deployment_gpt4_version: Optional[str] = None
    azure_deployment_dalle3: Optional[str] = None
    azure_deployment_dalle3_version: Optional[str] = None

    # Transport-level timeout for upstream calls (seconds)
    upstream_timeout_seconds: float = 120.0

    # Hold back a trailing partial SSE line until the next chunk completes it.
    # When disabled every chunk is split on its own and split events are dropped.
    stream_reassemble_lines: bool = True

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"


@lru_cache()
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
