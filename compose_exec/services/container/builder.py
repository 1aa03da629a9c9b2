"""Container configuration builder.

Produces the raw engine ``POST /containers/create`` body: the container
config with ``HostConfig`` and ``NetworkingConfig`` embedded. Building the
body directly keeps every engine field reachable, including ones the SDK's
keyword helpers do not expose such as the health-check start interval.
"""

import os
from datetime import timedelta
from typing import Any, Dict, List, Optional, Sequence

from ...models.errors import UsageError
from ...models.project import ProjectContext
from ...models.service import HealthCheck, ServiceDescriptor
from .env import merge_env
from .networks import PROJECT_LABEL, ResolvedNetwork, networking_config

SERVICE_LABEL = "com.docker.compose.service"


def duration_ns(value: Optional[timedelta]) -> Optional[int]:
    if value is None:
        return None
    return (value // timedelta(microseconds=1)) * 1000


def health_config(hc: HealthCheck) -> Dict[str, Any]:
    """Engine ``Healthcheck``; durations are nanoseconds."""
    if hc.disable:
        return {"Test": ["NONE"]}
    out: Dict[str, Any] = {"Test": list(hc.test)}
    for key, value in (
        ("Interval", hc.interval),
        ("Timeout", hc.timeout),
        ("StartPeriod", hc.start_period),
        ("StartInterval", hc.start_interval),
    ):
        ns = duration_ns(value)
        if ns is not None:
            out[key] = ns
    if hc.retries is not None:
        out["Retries"] = hc.retries
    return out


def port_config(service: ServiceDescriptor):
    """Exposed ports and host port bindings keyed by ``<port>/<proto>``."""
    exposed: Dict[str, Dict] = {}
    bindings: Dict[str, List[Dict[str, str]]] = {}
    for p in service.ports:
        key = f"{p.target}/{p.protocol or 'tcp'}"
        exposed[key] = {}
        if p.published:
            bindings.setdefault(key, []).append(
                {"HostIp": p.host_ip or "", "HostPort": p.published}
            )
    return exposed, bindings


def service_labels(service: ServiceDescriptor, project_name: str) -> Optional[Dict[str, str]]:
    labels = dict(service.labels)
    if project_name:
        labels[PROJECT_LABEL] = project_name
    if service.name.strip():
        labels[SERVICE_LABEL] = service.name.strip()
    return labels or None


def resolve_security_opt(opt: str, base_dir: str) -> str:
    """Inline seccomp profiles referenced by path.

    ``seccomp:<path>`` and ``seccomp=<path>`` are replaced with the profile's
    contents, read relative to ``base_dir``. ``unconfined`` and inline JSON
    pass through. Other options are returned unchanged.
    """
    trimmed = opt.strip()
    for prefix in ("seccomp:", "seccomp="):
        if trimmed.startswith(prefix):
            break
    else:
        return opt

    value = trimmed[len(prefix):].strip()
    if not value:
        return trimmed
    if value.lower() == "unconfined" or value.startswith("{"):
        return f"seccomp={value}"

    path = value
    if base_dir and not os.path.isabs(path):
        path = os.path.join(os.path.abspath(base_dir), path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            profile = f.read()
    except OSError as e:
        raise UsageError(f"read seccomp profile {path!r}: {e}") from e
    return f"seccomp={profile}"


def device_config(service: ServiceDescriptor) -> List[Dict[str, str]]:
    return [
        {
            "PathOnHost": d.source,
            "PathInContainer": d.target or d.source,
            "CgroupPermissions": d.permissions or "rwm",
        }
        for d in service.devices
    ]


def host_config(
    service: ServiceDescriptor,
    project: ProjectContext,
    mounts: List[Dict[str, Any]],
) -> Dict[str, Any]:
    """Engine ``HostConfig``."""
    _, bindings = port_config(service)
    host: Dict[str, Any] = {
        "Init": True if service.init is None else service.init,
        "Mounts": mounts,
        "PortBindings": bindings,
        "Privileged": service.privileged,
    }

    # Security
    if service.cap_add:
        host["CapAdd"] = list(service.cap_add)
    if service.cap_drop:
        host["CapDrop"] = list(service.cap_drop)
    if service.security_opt:
        host["SecurityOpt"] = [
            resolve_security_opt(opt, project.working_dir) for opt in service.security_opt
        ]
    if service.extra_hosts:
        host["ExtraHosts"] = [
            f"{name}:{ip}" for name, ips in service.extra_hosts.items() for ip in ips
        ]
    if service.devices:
        host["Devices"] = device_config(service)

    # Resources
    if service.mem_limit:
        host["Memory"] = service.mem_limit
    if service.mem_reservation:
        host["MemoryReservation"] = service.mem_reservation
    if service.memswap_limit:
        host["MemorySwap"] = service.memswap_limit
    if service.shm_size:
        host["ShmSize"] = service.shm_size
    if service.cpus:
        host["NanoCpus"] = int(round(service.cpus * 1_000_000_000))
    if service.cpu_shares:
        host["CpuShares"] = service.cpu_shares
    if service.cpu_quota is not None:
        host["CpuQuota"] = service.cpu_quota
    if service.cpu_period:
        host["CpuPeriod"] = service.cpu_period
    if service.cpuset and service.cpuset.strip():
        host["CpusetCpus"] = service.cpuset.strip()

    if service.network_mode and service.network_mode.strip():
        host["NetworkMode"] = service.network_mode.strip()
    return host


def build_container_config(
    service: ServiceDescriptor,
    project: ProjectContext,
    args: Sequence[str] = (),
    env: Sequence[str] = (),
    working_dir: Optional[str] = None,
    stdin_enabled: bool = False,
    mounts: Optional[List[Dict[str, Any]]] = None,
    networks: Optional[List[ResolvedNetwork]] = None,
) -> Dict[str, Any]:
    """Assemble the full create-container body for one invocation.

    Args:
        service: Resolved service descriptor
        project: Project the service belongs to
        args: Command override; falls back to the service command, then to
            the image default
        env: Environment overrides merged over the service environment
        working_dir: Working directory override
        stdin_enabled: Whether a stdin source is attached
        mounts: Translated mount specs
        networks: Resolved network attachments

    Returns:
        Engine container-create body
    """
    exposed, _ = port_config(service)
    config: Dict[str, Any] = {
        "Image": service.image,
        "Env": merge_env(service.environment_list(), env),
        "Tty": False,
        "OpenStdin": stdin_enabled,
        "StdinOnce": stdin_enabled,
        "AttachStdin": stdin_enabled,
        "AttachStdout": True,
        "AttachStderr": True,
        "ExposedPorts": exposed,
    }

    cmd = list(args) or list(service.command)
    if cmd:
        config["Cmd"] = cmd
    if service.entrypoint:
        config["Entrypoint"] = list(service.entrypoint)

    labels = service_labels(service, project.name)
    if labels:
        config["Labels"] = labels

    workdir = working_dir or service.working_dir
    if workdir:
        config["WorkingDir"] = workdir
    if service.user and service.user.strip():
        config["User"] = service.user.strip()
    if service.healthcheck is not None:
        config["Healthcheck"] = health_config(service.healthcheck)

    config["HostConfig"] = host_config(service, project, mounts or [])
    netcfg = networking_config(networks)
    if netcfg is not None:
        config["NetworkingConfig"] = netcfg
    return config
