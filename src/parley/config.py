"""Configuration for parley."""

from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from parley.types import QueueMode


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_prefix="PARLEY_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Conversation
    model: str = Field(default="echo", description="Model name passed to the provider")
    system_prompt: str | None = Field(default=None, description="System prompt for new conversations")
    queue_mode: QueueMode = Field(default="one-at-a-time", description="How queued messages are drained")
    max_steps: int = Field(default=20, ge=1, description="Maximum provider calls within one turn")

    # Logging
    log_level: str = Field(default="INFO", description="Log level")

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()


def get_settings(**overrides: object) -> Settings:
    """Get application settings.

    Values come from the environment and `.env`; keyword overrides win.
    """
    return Settings(**overrides)  # type: ignore[arg-type]
