"""Service descriptor models.

A ``ServiceDescriptor`` is the resolved, normalized form of one Compose
service: interpolation and file merging already happened upstream. Only the
subset of fields honored by the command lifecycle is modelled.
"""

import re
from datetime import timedelta
from typing import Any, Dict, List, Optional

from docker.utils import parse_bytes
from pydantic import BaseModel, ConfigDict, Field, field_validator

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ns|us|µs|ms|s|m|h)")
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(value: Any) -> Any:
    """Parse Compose durations such as ``1m30s`` or ``500ms``.

    Numbers are seconds. Anything else is left for pydantic to validate.
    """
    if not isinstance(value, str):
        return value
    text = value.strip()
    if not text:
        return None
    parts = _DURATION_PART.findall(text)
    if not parts or "".join(n + u for n, u in parts) != text:
        return value
    return timedelta(seconds=sum(float(n) * _DURATION_UNITS[u] for n, u in parts))


def compose_scalar(value: Any) -> Any:
    """Render a YAML scalar the way Compose does: ``true``/``false``, ``8080``."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return value


def string_mapping(value: Any) -> Any:
    """Stringify the scalar values of a label or option mapping."""
    if value is None:
        return {}
    if isinstance(value, dict):
        return {str(k): compose_scalar(v) for k, v in value.items()}
    return value


class PortMapping(BaseModel):
    """A container port, optionally published on the host."""

    model_config = ConfigDict(frozen=True)

    target: int = Field(..., ge=1, le=65535)
    published: Optional[str] = Field(default=None)
    protocol: str = Field(default="tcp")
    host_ip: Optional[str] = Field(default=None)

    @field_validator("published", mode="before")
    @classmethod
    def published_as_string(cls, v: Any) -> Optional[str]:
        if v is None or v == "":
            return None
        return str(v)

    @classmethod
    def parse(cls, spec: Any) -> Any:
        """Short syntax: ``[[host_ip:]published:]target[/protocol]``."""
        if isinstance(spec, int):
            return {"target": spec}
        if not isinstance(spec, str):
            return spec
        text, _, protocol = spec.partition("/")
        host_ip, published, target = None, None, text
        if ":" in text:
            head, _, target = text.rpartition(":")
            host_ip, _, published = head.rpartition(":")
        return {
            "target": int(target),
            "published": published or None,
            "protocol": protocol or "tcp",
            "host_ip": host_ip or None,
        }


class VolumeMount(BaseModel):
    """A bind mount or named-volume mount.

    ``type`` is kept as a free string: types other than ``bind`` and
    ``volume`` are rejected when the command starts.
    """

    model_config = ConfigDict(frozen=True)

    type: str = Field(default="bind")
    source: Optional[str] = Field(default=None)
    target: str = Field(..., min_length=1)
    read_only: bool = Field(default=False)

    @classmethod
    def parse(cls, spec: Any) -> Any:
        """Short syntax: ``[source:]target[:mode]``.

        Sources that look like paths are bind mounts; other sources name a
        volume. A lone target is an anonymous volume.
        """
        if not isinstance(spec, str):
            return spec
        parts = spec.split(":")
        if len(parts) == 1:
            return {"type": "volume", "target": parts[0]}
        source, target = parts[0], parts[1]
        mode = parts[2] if len(parts) > 2 else ""
        is_path = source.startswith((".", "/", "~"))
        return {
            "type": "bind" if is_path else "volume",
            "source": source,
            "target": target,
            "read_only": "ro" in mode.split(","),
        }


class NetworkAttachment(BaseModel):
    """Per-network endpoint settings for a service."""

    model_config = ConfigDict(frozen=True)

    aliases: List[str] = Field(default_factory=list)
    ipv4_address: Optional[str] = Field(default=None)
    ipv6_address: Optional[str] = Field(default=None)
    driver_opts: Dict[str, str] = Field(default_factory=dict)

    @field_validator("driver_opts", mode="before")
    @classmethod
    def string_options(cls, v: Any) -> Any:
        return string_mapping(v)


class HealthCheck(BaseModel):
    """Container health-check definition."""

    model_config = ConfigDict(frozen=True)

    test: List[str] = Field(default_factory=list)
    interval: Optional[timedelta] = Field(default=None)
    timeout: Optional[timedelta] = Field(default=None)
    start_period: Optional[timedelta] = Field(default=None)
    start_interval: Optional[timedelta] = Field(default=None)
    retries: Optional[int] = Field(default=None, ge=0)
    disable: bool = Field(default=False)

    @field_validator("test", mode="before")
    @classmethod
    def shell_form(cls, v: Any) -> Any:
        # A bare string is the shell form.
        if isinstance(v, str):
            return ["CMD-SHELL", v]
        return v

    @field_validator("interval", "timeout", "start_period", "start_interval", mode="before")
    @classmethod
    def durations(cls, v: Any) -> Any:
        return parse_duration(v)


class DeviceMapping(BaseModel):
    """Host device exposed to the container."""

    model_config = ConfigDict(frozen=True)

    source: str = Field(..., min_length=1)
    target: Optional[str] = Field(default=None)
    permissions: Optional[str] = Field(default=None)


class ServiceDescriptor(BaseModel):
    """Resolved configuration of a single Compose service."""

    model_config = ConfigDict(frozen=True, coerce_numbers_to_str=True)

    name: str = Field(default="")
    image: str = Field(default="")
    build: Optional[Any] = Field(default=None)
    command: List[str] = Field(default_factory=list)
    entrypoint: List[str] = Field(default_factory=list)
    environment: Dict[str, Optional[str]] = Field(default_factory=dict)
    ports: List[PortMapping] = Field(default_factory=list)
    volumes: List[VolumeMount] = Field(default_factory=list)
    networks: Dict[str, Optional[NetworkAttachment]] = Field(default_factory=dict)
    network_mode: Optional[str] = Field(default=None)
    healthcheck: Optional[HealthCheck] = Field(default=None)
    working_dir: Optional[str] = Field(default=None)
    user: Optional[str] = Field(default=None)
    init: Optional[bool] = Field(default=None)
    labels: Dict[str, str] = Field(default_factory=dict)

    # Security
    privileged: bool = Field(default=False)
    cap_add: List[str] = Field(default_factory=list)
    cap_drop: List[str] = Field(default_factory=list)
    security_opt: List[str] = Field(default_factory=list)
    extra_hosts: Dict[str, List[str]] = Field(default_factory=dict)
    devices: List[DeviceMapping] = Field(default_factory=list)

    # Resources
    mem_limit: Optional[int] = Field(default=None, ge=0)
    mem_reservation: Optional[int] = Field(default=None, ge=0)
    memswap_limit: Optional[int] = Field(default=None, ge=-1)
    shm_size: Optional[int] = Field(default=None, ge=0)
    cpus: Optional[float] = Field(default=None, ge=0)
    cpu_shares: Optional[int] = Field(default=None, ge=0)
    cpu_quota: Optional[int] = Field(default=None)
    cpu_period: Optional[int] = Field(default=None, ge=0)
    cpuset: Optional[str] = Field(default=None)

    @field_validator("command", "entrypoint", mode="before")
    @classmethod
    def none_as_empty(cls, v: Any) -> Any:
        return [] if v is None else v

    @field_validator("ports", mode="before")
    @classmethod
    def short_ports(cls, v: Any) -> Any:
        return [PortMapping.parse(p) for p in (v or [])]

    @field_validator("volumes", mode="before")
    @classmethod
    def short_volumes(cls, v: Any) -> Any:
        return [VolumeMount.parse(m) for m in (v or [])]

    @field_validator("environment", mode="before")
    @classmethod
    def environment_mapping(cls, v: Any) -> Any:
        """Accept ``["K=V", "K"]`` lists; a bare key stays key-only (None)."""
        if v is None:
            return {}
        if isinstance(v, (list, tuple)):
            out: Dict[str, Optional[str]] = {}
            for item in v:
                key, sep, value = str(item).partition("=")
                out[key] = value if sep else None
            return out
        if isinstance(v, dict):
            return {str(key): compose_scalar(value) for key, value in v.items()}
        return v

    @field_validator("labels", mode="before")
    @classmethod
    def string_labels(cls, v: Any) -> Any:
        if isinstance(v, (list, tuple)):
            return dict(str(item).partition("=")[::2] for item in v)
        return string_mapping(v)

    @field_validator("networks", mode="before")
    @classmethod
    def networks_mapping(cls, v: Any) -> Any:
        if v is None:
            return {}
        if isinstance(v, (list, tuple)):
            return {str(name): None for name in v}
        return v

    @field_validator("extra_hosts", mode="before")
    @classmethod
    def extra_hosts_mapping(cls, v: Any) -> Any:
        """Accept ``host:ip`` / ``host=ip`` lists or host -> ip(s) mappings."""
        if v is None:
            return {}
        out: Dict[str, List[str]] = {}
        if isinstance(v, dict):
            for host, ips in v.items():
                out[host] = [ips] if isinstance(ips, str) else list(ips)
            return out
        for entry in v:
            sep = "=" if "=" in entry else ":"
            host, _, ip = str(entry).partition(sep)
            out.setdefault(host, []).append(ip)
        return out

    @field_validator("mem_limit", "mem_reservation", "memswap_limit", "shm_size", mode="before")
    @classmethod
    def byte_sizes(cls, v: Any) -> Any:
        if isinstance(v, str):
            return parse_bytes(v)
        return v

    def environment_list(self) -> List[str]:
        """Environment as ``KEY=VALUE`` entries; key-only entries stay bare."""
        return [key if value is None else f"{key}={value}" for key, value in self.environment.items()]

    def volume_sources(self) -> List[str]:
        """Named-volume sources referenced by this service, in declaration order."""
        seen: List[str] = []
        for v in self.volumes:
            source = (v.source or "").strip()
            if v.type == "volume" and source and source not in seen:
                seen.append(source)
        return seen
