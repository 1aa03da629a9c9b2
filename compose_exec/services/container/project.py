"""Descriptor-bound command factories."""

import os
from typing import Any, Dict, Iterator, List, Mapping, Optional

import structlog

from ...config import settings
from ...core.engine import EngineClient
from ...models.errors import ServiceNotFoundError
from ...models.project import ProjectContext
from ...models.service import ServiceDescriptor
from .command import DEFAULT_SCOPE, Command

logger = structlog.get_logger(__name__)


class Service:
    """A service bound to its project; creates commands for it."""

    def __init__(self, descriptor: ServiceDescriptor, project: ProjectContext):
        self.descriptor = descriptor
        self.project = project

    @classmethod
    def from_descriptor(
        cls, descriptor: ServiceDescriptor, project: Optional[ProjectContext] = None
    ) -> "Service":
        """Bind a manually built descriptor.

        Without a project, the default project name and the process working
        directory are used.
        """
        if project is None:
            project = ProjectContext(name=settings.default_project_name, working_dir=os.getcwd())
        return cls(descriptor, project)

    @property
    def name(self) -> str:
        return self.descriptor.name

    def command(
        self,
        *args: str,
        scope: Any = DEFAULT_SCOPE,
        engine: Optional[EngineClient] = None,
    ) -> Command:
        """New command for this service; ``args`` override the service command."""
        return Command(
            self.descriptor, self.project, args=list(args), scope=scope, engine=engine
        )


class Project:
    """A resolved Compose project."""

    def __init__(self, context: ProjectContext, services: Dict[str, ServiceDescriptor]):
        self.context = context
        self.services = services

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any], working_dir: Optional[str] = None) -> "Project":
        """Validate an already resolved project mapping.

        ``mapping`` has the top-level Compose shape (``name``, ``services``,
        ``volumes``, ``networks``) with interpolation and merging already done.
        """
        context = ProjectContext(
            name=mapping.get("name") or "",
            working_dir=os.path.abspath(working_dir or mapping.get("working_dir") or os.getcwd()),
            volumes=mapping.get("volumes"),
            networks=mapping.get("networks"),
        )
        services: Dict[str, ServiceDescriptor] = {}
        for name, raw in (mapping.get("services") or {}).items():
            data = dict(raw or {})
            data["name"] = name
            services[name] = ServiceDescriptor.model_validate(data)
        logger.debug("Project loaded", project=context.name, services=len(services))
        return cls(context, services)

    @property
    def name(self) -> str:
        return self.context.name

    @property
    def working_dir(self) -> str:
        return self.context.working_dir

    def service_names(self) -> List[str]:
        return list(self.services)

    def __iter__(self) -> Iterator[Service]:
        return (Service(d, self.context) for d in self.services.values())

    def service(self, name: str) -> Service:
        """Bound service by name.

        Raises:
            ServiceNotFoundError: The project declares no such service
        """
        descriptor = self.services.get(name)
        if descriptor is None:
            raise ServiceNotFoundError(name)
        return Service(descriptor, self.context)

    def command(
        self,
        service: str,
        *args: str,
        scope: Any = DEFAULT_SCOPE,
        engine: Optional[EngineClient] = None,
    ) -> Command:
        """Command for ``service``.

        An unknown service does not raise here; the error is raised by the
        command's ``start()``, ``run()``, ``output()`` and
        ``wait_until_healthy()``.
        """
        try:
            return self.service(service).command(*args, scope=scope, engine=engine)
        except ServiceNotFoundError as e:
            return Command(
                ServiceDescriptor(name=service),
                self.context,
                args=list(args),
                scope=scope,
                engine=engine,
                load_error=e,
            )
