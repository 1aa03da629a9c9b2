"""Container command services.

This package provides the command lifecycle and its collaborators:
- command: Command lifecycle controller
- streams: attach-stream forwarding and pipes
- builder: container configuration builder
- mounts / networks: volume and network translation and provisioning
- naming / env: pure naming and environment helpers
- project: descriptor-bound command factories
- teardown: project teardown (down)
"""

from .command import Command, CommandState, Outcome, WaitState
from .env import merge_env
from .naming import resolve_resource_name
from .project import Project, Service
from .streams import StdinPipe
from .teardown import down

__all__ = [
    "Command",
    "CommandState",
    "Outcome",
    "WaitState",
    "Project",
    "Service",
    "StdinPipe",
    "down",
    "merge_env",
    "resolve_resource_name",
]
