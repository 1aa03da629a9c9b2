"""Data models for compose-exec."""

from .container import ContainerState
from .errors import (
    Cancelled,
    ComposeExecError,
    DeadlineExceeded,
    DownError,
    EngineError,
    ErrorDetail,
    ErrorType,
    ExitError,
    HealthCheckError,
    ServiceNotFoundError,
    UsageError,
)
from .project import NetworkDeclaration, ProjectContext, VolumeDeclaration
from .service import (
    DeviceMapping,
    HealthCheck,
    NetworkAttachment,
    PortMapping,
    ServiceDescriptor,
    VolumeMount,
)

__all__ = [
    # Container
    "ContainerState",
    # Errors
    "ErrorType",
    "ErrorDetail",
    "ComposeExecError",
    "UsageError",
    "ServiceNotFoundError",
    "EngineError",
    "HealthCheckError",
    "Cancelled",
    "DeadlineExceeded",
    "DownError",
    "ExitError",
    # Project
    "ProjectContext",
    "VolumeDeclaration",
    "NetworkDeclaration",
    # Service
    "ServiceDescriptor",
    "PortMapping",
    "VolumeMount",
    "NetworkAttachment",
    "HealthCheck",
    "DeviceMapping",
]
