"""Configuration and settings management using pydantic-settings."""
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from connector_registry.models import ResolutionStrategy


class Settings(BaseSettings):
    """Application settings with environment variable loading."""

    model_config = SettingsConfigDict(
        env_prefix="CONNECTORFLOW_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Core service settings
    env: str = Field(default="development", description="Environment name")
    log_level: str = Field(default="INFO", description="Log level")
    log_json: bool = Field(default=True, description="Emit JSON log lines")

    # Execution limits
    max_concurrent_nodes: int = Field(
        default=4,
        description="Worker pool size per run; timed-out adapter calls free their worker while still running",
    )
    default_node_timeout_s: float = Field(
        default=30,
        description="Node timeout when the node does not set timeoutMs",
    )

    # Resolution
    max_resolution_steps: int = Field(
        default=10_000,
        description="Candidate attempts before resolution gives up",
    )
    default_resolution_strategy: ResolutionStrategy | None = Field(
        default=None,
        description="Strategy for every connector; unset uses each entry's declared strategy",
    )
    registry_path: Path | None = Field(
        default=None,
        description="Registry document (JSON or YAML) used by the CLI",
    )

    # Connectors
    http_timeout_s: float = Field(
        default=30,
        description="Default timeout for adapter HTTP calls",
    )
    notification_base_url: str = Field(
        default="http://localhost:8080",
        description="Base URL of the notification service used by svc.sendNotification",
    )

    @field_validator("max_concurrent_nodes", "max_resolution_steps")
    @classmethod
    def validate_positive_int(cls, v: int) -> int:
        """Validate that limits are positive."""
        if v <= 0:
            raise ValueError("limit must be positive")
        return v

    @field_validator("default_node_timeout_s", "http_timeout_s")
    @classmethod
    def validate_positive_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("timeout must be positive")
        return v

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return v.upper()


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Reset settings (useful for testing)."""
    global _settings
    _settings = None
