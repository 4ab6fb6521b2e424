"""
Application configuration with environment-based settings.
All configuration is explicit, validated, and logged at startup.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings have sensible defaults for development but require
    explicit configuration in production environments.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_ignore_empty=True,
    )

    # Application
    app_name: str = Field(default="MediQuest AI", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment"
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    # Server
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port")

    # CORS
    cors_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:9002"],
        description="Allowed CORS origins"
    )

    # LLM provider (any OpenAI-compatible endpoint)
    llm_api_key: str = Field(default="", description="LLM provider API key")
    llm_base_url: str = Field(default="https://api.openai.com/v1", description="LLM API base URL")
    llm_model: str = Field(default="gpt-4o-mini", description="Model for structured output flows")
    llm_image_model: str = Field(default="gpt-image-1", description="Model for image annotation")
    llm_max_tokens: int = Field(default=2048, description="Max tokens per response")
    llm_temperature: float = Field(default=0.2, description="Model temperature")
    llm_max_tool_rounds: int = Field(
        default=8,
        ge=1,
        description="Max model turns spent on tool calls before a final answer is required"
    )
    llm_timeout_seconds: float | None = Field(
        default=None,
        description="Request timeout; client default when unset"
    )
    llm_max_retries: int = Field(
        default=0,
        ge=0,
        description="SDK-level retries; flows themselves never retry"
    )

    # ArangoDB document store
    arango_host: str = Field(default="http://localhost:8529", description="ArangoDB host URL")
    arango_database: str = Field(default="mediquest", description="ArangoDB database name")
    arango_username: str = Field(default="root", description="ArangoDB username")
    arango_password: str = Field(default="", description="ArangoDB password")

    # Blob storage (S3 or S3-compatible)
    blob_bucket: str = Field(default="mediquest-scans", description="Bucket for scan images")
    blob_region: str | None = Field(default=None, description="Bucket region")
    blob_endpoint_url: str | None = Field(
        default=None,
        description="Custom endpoint for S3-compatible stores"
    )
    blob_public_base_url: str | None = Field(
        default=None,
        description="Public base URL; presigned URLs are issued when unset"
    )
    blob_url_expiry_seconds: int = Field(default=7 * 24 * 3600, description="Presigned URL lifetime")

    # Scan ingestion
    max_image_bytes: int = Field(default=20 * 1024 * 1024, description="Largest accepted decoded image")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: Literal["json", "console"] = Field(
        default="console",
        description="Log output format"
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"

    def get_safe_config_dict(self) -> dict:
        """Return configuration dict with secrets redacted for logging."""
        config = self.model_dump()
        # Redact sensitive values
        for key in ("llm_api_key", "arango_password"):
            if config.get(key):
                config[key] = "***REDACTED***"
        return config


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Settings are loaded once and cached for the application lifetime.
    Pass an explicit Settings to create_app() in tests.
    """
    return Settings()
