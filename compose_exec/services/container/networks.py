"""Network translation: service attachments to endpoint configs, and network
provisioning."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import structlog

from ...core.engine import EngineClient, engine_error, is_already_exists
from ...models.project import NetworkDeclaration, ProjectContext
from ...models.service import ServiceDescriptor
from .naming import resolve_resource_name
from .utils import run_in_executor

logger = structlog.get_logger(__name__)

PROJECT_LABEL = "com.docker.compose.project"
NETWORK_LABEL = "com.docker.compose.network"
DEFAULT_NETWORK = "default"


@dataclass
class ResolvedNetwork:
    """A service network attachment with its engine-level name."""

    key: str
    name: str
    external: bool = False
    driver: Optional[str] = None
    driver_opts: Dict[str, str] = field(default_factory=dict)
    labels: Dict[str, str] = field(default_factory=dict)
    endpoint: Dict[str, Any] = field(default_factory=dict)


def resolve_networking(
    service: ServiceDescriptor, project: ProjectContext
) -> Optional[List[ResolvedNetwork]]:
    """Networks the container joins, or ``None`` to leave networking to the engine.

    ``None`` is returned when the service pins ``network_mode`` or there is no
    project namespace. A service without networks joins the project default
    network. The service name is always an alias on every endpoint.
    """
    if service.network_mode:
        return None
    if not project.name:
        return None

    attachments = dict(service.networks) or {DEFAULT_NETWORK: None}
    resolved: List[ResolvedNetwork] = []
    for key, attachment in attachments.items():
        decl = project.networks.get(key) or NetworkDeclaration()
        name = resolve_resource_name(project.name, key, decl.name, decl.external)

        aliases: List[str] = []
        for alias in ([service.name] if service.name else []) + (
            list(attachment.aliases) if attachment else []
        ):
            if alias and alias not in aliases:
                aliases.append(alias)

        endpoint: Dict[str, Any] = {"Aliases": aliases}
        if attachment is not None:
            ipam: Dict[str, str] = {}
            if attachment.ipv4_address:
                ipam["IPv4Address"] = attachment.ipv4_address
            if attachment.ipv6_address:
                ipam["IPv6Address"] = attachment.ipv6_address
            if ipam:
                endpoint["IPAMConfig"] = ipam
            if attachment.driver_opts:
                endpoint["DriverOpts"] = dict(attachment.driver_opts)

        resolved.append(
            ResolvedNetwork(
                key=key,
                name=name,
                external=decl.external,
                driver=decl.driver,
                driver_opts=dict(decl.driver_opts),
                labels=dict(decl.labels),
                endpoint=endpoint,
            )
        )
    return resolved


def networking_config(networks: Optional[List[ResolvedNetwork]]) -> Optional[Dict[str, Any]]:
    """Engine ``NetworkingConfig`` for the resolved networks."""
    if not networks:
        return None
    return {"EndpointsConfig": {n.name: n.endpoint for n in networks}}


async def ensure_networks(
    engine: EngineClient, networks: List[ResolvedNetwork], project_name: str
) -> None:
    """Create the project networks that do not exist yet.

    External networks are never created; a missing external network surfaces
    when the container is created.
    """
    for net in networks:
        if net.external:
            continue
        try:
            existing = await run_in_executor(engine.list_networks, [net.name])
        except Exception as e:
            raise engine_error(f"list networks {net.name!r}", e) from e
        # The engine matches names by prefix; require an exact match.
        if any(n.get("Name") == net.name for n in existing):
            continue

        labels = dict(net.labels)
        labels[PROJECT_LABEL] = project_name
        labels[NETWORK_LABEL] = net.key
        try:
            await run_in_executor(
                engine.create_network, net.name, labels, net.driver, net.driver_opts
            )
            logger.info("Network created", network=net.name, project=project_name)
        except Exception as e:
            if not is_already_exists(e):
                raise engine_error(f"create network {net.name!r}", e) from e
            logger.debug("Network already exists", network=net.name)
