"""Run commands in Compose services as isolated containers.

Usage:
    from compose_exec import CancelScope, Project

    project = Project.from_mapping(resolved_mapping, working_dir="/srv/app")
    cmd = project.command("web", "python", "-c", "print('hi')",
                          scope=CancelScope(timeout=60))
    out = await cmd.output()
"""

from .core.engine import DockerEngine, EngineClient, create_engine
from .core.scope import CancelScope
from .models.container import ContainerState
from .models.errors import (
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
from .models.project import NetworkDeclaration, ProjectContext, VolumeDeclaration
from .models.service import ServiceDescriptor
from .services.container import (
    Command,
    CommandState,
    Outcome,
    Project,
    Service,
    StdinPipe,
    down,
    merge_env,
    resolve_resource_name,
)

__version__ = "0.4.0"

__all__ = [
    "CancelScope",
    "Command",
    "CommandState",
    "Outcome",
    "Project",
    "Service",
    "StdinPipe",
    "down",
    "merge_env",
    "resolve_resource_name",
    "EngineClient",
    "DockerEngine",
    "create_engine",
    "ServiceDescriptor",
    "ProjectContext",
    "VolumeDeclaration",
    "NetworkDeclaration",
    "ContainerState",
    "ErrorType",
    "ErrorDetail",
    "ComposeExecError",
    "UsageError",
    "ServiceNotFoundError",
    "EngineError",
    "ExitError",
    "HealthCheckError",
    "Cancelled",
    "DeadlineExceeded",
    "DownError",
]
