"""Runtime settings for AgentDirect, read from AGENTDIRECT_* environment variables."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_STORE_PATH = Path.home() / ".agentdirect" / "tasks.db"


class Settings(BaseSettings):
    """AgentDirect configuration."""

    model_config = SettingsConfigDict(
        env_prefix="AGENTDIRECT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # HTTP server
    host: str = Field(default="127.0.0.1", description="Interface to bind")
    port: int = Field(default=3000, ge=1, le=65535, description="Port to listen on")
    log_level: str = Field(default="INFO", description="Root logging level")
    public_url: str | None = Field(
        default=None,
        description="Externally visible base URL advertised in agent cards",
    )

    # Planner oracle
    planner_backend: Literal["ollama", "openai"] = "ollama"
    planner_base_url: str = "http://localhost:11434"
    planner_model: str = "mistral:7b-instruct-q4_0"
    planner_api_key: str | None = None
    planner_timeout: float = Field(default=60.0, gt=0)
    planner_temperature: float = Field(default=0.3, ge=0.0, le=2.0)

    # Tool registry
    tool_schema_path: Path | None = Field(
        default=None,
        description="MCP tools document or OpenAPI 3 spec; built-in catalogue when unset",
    )

    # Task store
    store_backend: Literal["memory", "sqlite"] = "memory"
    store_path: Path = DEFAULT_STORE_PATH

    # Client polling
    poll_interval: float = Field(default=1.0, gt=0)
    poll_max_attempts: int = Field(default=30, ge=1)


_settings_instance: Settings | None = None


def get_settings() -> Settings:
    """Get or create the global settings instance."""
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings()
    return _settings_instance
