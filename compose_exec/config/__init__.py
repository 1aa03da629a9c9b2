"""Configuration management for compose-exec.

Settings are read from the environment (``COMPOSE_EXEC_*``) and an optional
``.env`` file. Flat fields are grouped into logical views:

Usage:
    from compose_exec.config import settings

    settings.lifecycle.stop_grace_seconds
    settings.engine.docker_host
    settings.logging.log_format
"""

from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .engine import EngineConfig
from .lifecycle import LifecycleConfig
from .logging import LoggingConfig


class Settings(BaseSettings):
    """Library settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_prefix="COMPOSE_EXEC_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Lifecycle
    container_name_prefix: str = Field(default="compose-exec", min_length=1)
    default_project_name: str = Field(default="default")
    stop_grace_seconds: float = Field(default=2.0, ge=0, le=300)
    kill_timeout_seconds: float = Field(default=2.0, gt=0, le=60)
    remove_timeout_seconds: float = Field(default=5.0, gt=0, le=120)
    inspect_timeout_seconds: float = Field(default=2.0, gt=0, le=60)
    stdin_drain_timeout_seconds: float = Field(default=1.0, ge=0, le=60)
    health_poll_interval_seconds: float = Field(default=0.5, gt=0, le=60)
    handle_signals: bool = Field(default=True)

    # Engine
    docker_host: Optional[str] = Field(default=None)
    engine_timeout_seconds: int = Field(default=60, ge=1, le=3600)

    # Logging
    log_level: str = Field(default="INFO")
    log_format: Literal["json", "console"] = Field(default="json")

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        """Upper-case and validate the log level name."""
        level = v.strip().upper()
        if level not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(f"unknown log level: {v}")
        return level

    @field_validator("container_name_prefix")
    @classmethod
    def validate_prefix(cls, v: str) -> str:
        """Container names may not start with a separator."""
        v = v.strip()
        if not v or v[0] in "-_.":
            raise ValueError("container_name_prefix must start with an alphanumeric")
        return v

    @property
    def lifecycle(self) -> LifecycleConfig:
        """Access lifecycle configuration group."""
        return LifecycleConfig(
            container_name_prefix=self.container_name_prefix,
            default_project_name=self.default_project_name,
            stop_grace_seconds=self.stop_grace_seconds,
            kill_timeout_seconds=self.kill_timeout_seconds,
            remove_timeout_seconds=self.remove_timeout_seconds,
            inspect_timeout_seconds=self.inspect_timeout_seconds,
            stdin_drain_timeout_seconds=self.stdin_drain_timeout_seconds,
            health_poll_interval_seconds=self.health_poll_interval_seconds,
            handle_signals=self.handle_signals,
        )

    @property
    def engine(self) -> EngineConfig:
        """Access engine connection configuration group."""
        return EngineConfig(
            docker_host=self.docker_host,
            engine_timeout_seconds=self.engine_timeout_seconds,
        )

    @property
    def logging(self) -> LoggingConfig:
        """Access logging configuration group."""
        return LoggingConfig(
            log_level=self.log_level,
            log_format=self.log_format,
        )


# Global settings instance
settings = Settings()

__all__ = [
    "Settings",
    "settings",
    "LifecycleConfig",
    "EngineConfig",
    "LoggingConfig",
]
