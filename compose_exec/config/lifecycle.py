"""Container lifecycle configuration."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class LifecycleConfig(BaseSettings):
    """Timeouts and naming used by the command lifecycle controller."""

    container_name_prefix: str = Field(default="compose-exec", min_length=1)
    default_project_name: str = Field(default="default")
    stop_grace_seconds: float = Field(default=2.0, ge=0, le=300)
    kill_timeout_seconds: float = Field(default=2.0, gt=0, le=60)
    remove_timeout_seconds: float = Field(default=5.0, gt=0, le=120)
    inspect_timeout_seconds: float = Field(default=2.0, gt=0, le=60)
    stdin_drain_timeout_seconds: float = Field(default=1.0, ge=0, le=60)
    health_poll_interval_seconds: float = Field(default=0.5, gt=0, le=60)
    handle_signals: bool = Field(default=True)

    def stop_call_timeout(self) -> float:
        """Upper bound for the stop call itself (grace period plus slack)."""
        return self.stop_grace_seconds + 1.0

    model_config = SettingsConfigDict(env_prefix="COMPOSE_EXEC_", extra="ignore")
