"""Resource and container naming."""

import re
import secrets
from typing import Optional

_UNSAFE = re.compile(r"[^a-z0-9_.-]+")


def resolve_resource_name(
    project: Optional[str],
    key: str,
    explicit_name: Optional[str] = None,
    external: bool = False,
) -> str:
    """Engine-level name of a declared volume or network.

    An explicit ``name:`` wins. External resources are referenced by their key
    as-is. Otherwise the key is qualified with the project namespace.

    >>> resolve_resource_name("myproj", "db_data")
    'myproj_db_data'
    """
    key = (key or "").strip()
    explicit = (explicit_name or "").strip()
    if explicit:
        return explicit
    if external:
        return key
    project = (project or "").strip()
    if project:
        return f"{project}_{key}"
    return key


def sanitize_name(value: str) -> str:
    """Lowercase ``value`` and replace characters not allowed in container names."""
    slug = _UNSAFE.sub("-", (value or "").lower()).strip("-")
    return slug or "service"


def container_name_for(prefix: str, service: str) -> str:
    """Unique container name: ``<prefix>-<service slug>-<12 hex>``."""
    return f"{prefix}-{sanitize_name(service)}-{secrets.token_hex(6)}"
