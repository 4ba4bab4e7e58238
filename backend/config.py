"""
Configuration management for the marketplace messaging core.

This module uses Pydantic Settings for environment-based configuration
with validation and type checking.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application settings
    log_level: str = Field(default="INFO", description="Logging level")

    # Hosted backend (Supabase) settings
    supabase_url: str = Field(
        default="http://localhost:54321",
        description="Base URL of the hosted backend project"
    )
    supabase_anon_key: str = Field(
        default="",
        description="Public API key sent with every backend request"
    )
    supabase_access_token: str = Field(
        default="",
        description="Access token of the signed-in user (empty = signed out)"
    )
    request_timeout: float = Field(
        default=30.0,
        description="Backend HTTP timeout in seconds"
    )

    # Self-hosted database settings
    database_url: str = Field(
        default="sqlite+aiosqlite:///./marketplace.db",
        description="Database connection URL for the SQL gateway"
    )

    # Avatar storage settings
    avatar_bucket: str = Field(
        default="avatars",
        description="Storage bucket holding profile pictures"
    )
    signed_url_ttl_seconds: int = Field(
        default=3600,
        description="Lifetime of signed URLs for direct storage paths"
    )
    user_avatar_ttl_seconds: int = Field(
        default=900,
        description="Lifetime of signed URLs resolved from a user id"
    )
    storage_signing_secret: str = Field(
        default="dev-signing-secret",
        description="HMAC key used by the SQL gateway to sign object URLs"
    )
    storage_base_url: str = Field(
        default="http://localhost:8000/storage",
        description="Public base URL for objects served by the SQL gateway"
    )

    # Polling settings
    message_poll_interval: float = Field(
        default=3.0,
        description="Seconds between message refreshes for the open thread"
    )
    thread_poll_interval: float = Field(
        default=15.0,
        description="Seconds between thread list refreshes"
    )


# Global settings instance
settings = Settings()
