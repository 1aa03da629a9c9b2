"""Core building blocks: cancellation scopes and the engine boundary."""

from .engine import (
    DockerEngine,
    EngineClient,
    create_engine,
    engine_error,
    is_already_exists,
    is_not_found,
)
from .scope import CancelScope

__all__ = [
    "CancelScope",
    "EngineClient",
    "DockerEngine",
    "create_engine",
    "engine_error",
    "is_already_exists",
    "is_not_found",
]
