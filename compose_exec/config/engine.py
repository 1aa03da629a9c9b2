"""Container engine connection configuration."""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineConfig(BaseSettings):
    """Docker Engine connection settings.

    When ``docker_host`` is unset the standard ``DOCKER_HOST``,
    ``DOCKER_TLS_VERIFY`` and ``DOCKER_CERT_PATH`` variables apply.
    """

    docker_host: Optional[str] = Field(default=None)
    engine_timeout_seconds: int = Field(default=60, ge=1, le=3600)

    model_config = SettingsConfigDict(env_prefix="COMPOSE_EXEC_", extra="ignore")
