"""Volume translation: service mounts to engine mount specs, and named-volume
provisioning."""

import os
from typing import Any, Dict, List

import structlog

from ...core.engine import EngineClient, engine_error, is_already_exists
from ...models.errors import UsageError
from ...models.project import ProjectContext, VolumeDeclaration
from ...models.service import ServiceDescriptor, VolumeMount
from .naming import resolve_resource_name
from .utils import run_in_executor

logger = structlog.get_logger(__name__)

PROJECT_LABEL = "com.docker.compose.project"
VOLUME_LABEL = "com.docker.compose.volume"


def resolve_bind_source(source: str, working_dir: str) -> str:
    """Absolute host path for a bind source, relative to the project directory."""
    path = os.path.expanduser(source)
    if not os.path.isabs(path):
        path = os.path.join(os.path.abspath(working_dir), path)
    return os.path.normpath(path)


def volume_name(project: ProjectContext, source: str) -> str:
    decl = project.volumes.get(source) or VolumeDeclaration()
    return resolve_resource_name(project.name, source, decl.name, decl.external)


def mount_spec(mount: VolumeMount, project: ProjectContext) -> Dict[str, Any]:
    """Engine ``Mounts`` entry for one service volume."""
    source = (mount.source or "").strip()
    if mount.type in ("", "bind"):
        if not source:
            raise UsageError(f"bind mount for {mount.target} has no source")
        return {
            "Type": "bind",
            "Source": resolve_bind_source(source, project.working_dir),
            "Target": mount.target,
            "ReadOnly": mount.read_only,
        }
    if mount.type == "volume":
        spec: Dict[str, Any] = {
            "Type": "volume",
            "Target": mount.target,
            "ReadOnly": mount.read_only,
        }
        # No source means an anonymous volume.
        if source:
            spec["Source"] = volume_name(project, source)
        return spec
    raise UsageError(f"unsupported volume type {mount.type!r} (supported: bind, volume)")


def service_mounts(service: ServiceDescriptor, project: ProjectContext) -> List[Dict[str, Any]]:
    """Translate all service volumes; raises ``UsageError`` on unsupported types."""
    return [mount_spec(m, project) for m in service.volumes]


async def ensure_volumes(
    engine: EngineClient, service: ServiceDescriptor, project: ProjectContext
) -> List[str]:
    """Create the named volumes the service references, if absent.

    External volumes are never created. A concurrent creation reported as
    "already exists" counts as success.

    Returns:
        Qualified names of the volumes that were ensured
    """
    ensured: List[str] = []
    for source in service.volume_sources():
        decl = project.volumes.get(source) or VolumeDeclaration()
        if decl.external:
            continue
        name = resolve_resource_name(project.name, source, decl.name, decl.external)
        labels = dict(decl.labels)
        if project.name:
            labels[PROJECT_LABEL] = project.name
        labels[VOLUME_LABEL] = source
        try:
            await run_in_executor(engine.create_volume, name, labels, decl.driver, decl.driver_opts)
            logger.debug("Volume ensured", volume=name)
        except Exception as e:
            if not is_already_exists(e):
                raise engine_error(f"create volume {name!r}", e) from e
            logger.debug("Volume already exists", volume=name)
        ensured.append(name)
    return ensured
