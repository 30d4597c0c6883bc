"""Configuration management for callpipe."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_prefix="CALLPIPE_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Logging Configuration
    log_level: str = Field(default="WARNING", description="Log level for diagnostics on stderr")

    # Input Configuration
    read_chunk_size: int = Field(default=16384, ge=1, description="Bytes requested per read on the input")
    max_line_bytes: int = Field(default=0, ge=0, description="Maximum length of one input line, 0 for unbounded")
    history_file: Path | None = Field(None, description="History file for the interactive prompt")

    # Connection Configuration
    connect_timeout_seconds: float = Field(default=10.0, gt=0, description="Timeout for opening the connection")
    subprotocol: str = Field(default="x-afb-ws-json1", description="Websocket subprotocol to negotiate")


def get_settings() -> Settings:
    """Get application settings from the environment and `.env`."""
    return Settings()
