"""Project teardown."""

from typing import List, Optional

import structlog

from ...core.engine import EngineClient, create_engine, engine_error, is_not_found
from ...models.errors import DownError, ErrorDetail, UsageError
from .networks import PROJECT_LABEL
from .utils import run_in_executor, short_id

logger = structlog.get_logger(__name__)


async def down(project_name: str, engine: Optional[EngineClient] = None) -> None:
    """Remove every container and network labeled with ``project_name``.

    Containers are removed before networks. Objects that are already gone are
    ignored, so repeated calls are safe. Remaining failures are collected and
    raised together.

    Args:
        project_name: Compose project name
        engine: Engine client to use; one is created (and closed) if omitted

    Raises:
        UsageError: ``project_name`` is empty
        EngineError: Listing containers failed
        DownError: Some containers or networks could not be removed
    """
    project_name = (project_name or "").strip()
    if not project_name:
        raise UsageError("project name is required")

    owned = engine is None
    if engine is None:
        engine = await run_in_executor(create_engine)
    try:
        await _down(engine, project_name)
    finally:
        if owned:
            try:
                engine.close()
            except Exception as e:
                logger.warning("Engine client close failed", error=str(e))


async def _down(engine: EngineClient, project_name: str) -> None:
    label_filter = {"label": [f"{PROJECT_LABEL}={project_name}"]}
    failures: List[ErrorDetail] = []

    try:
        containers = await run_in_executor(engine.list_containers, label_filter)
    except Exception as e:
        raise engine_error("list containers", e) from e

    removed = 0
    for c in containers:
        container_id = c.get("Id", "")
        names = ",".join(n.lstrip("/") for n in c.get("Names") or []) or short_id(container_id)
        try:
            await run_in_executor(engine.remove, container_id, True)
            removed += 1
        except Exception as e:
            if is_not_found(e):
                continue
            failures.append(
                ErrorDetail(resource=f"container {names}", message=str(e), code="remove_failed")
            )

    try:
        networks = await run_in_executor(engine.list_networks, None, label_filter)
    except Exception as e:
        networks = []
        failures.append(ErrorDetail(resource="networks", message=str(e), code="list_failed"))

    for n in networks:
        try:
            await run_in_executor(engine.remove_network, n.get("Id", ""))
        except Exception as e:
            if is_not_found(e):
                continue
            failures.append(
                ErrorDetail(
                    resource=f"network {n.get('Name', '')}", message=str(e), code="remove_failed"
                )
            )

    logger.info(
        "Project down",
        project=project_name,
        containers=removed,
        networks=len(networks),
        errors=len(failures),
    )
    if failures:
        raise DownError(failures)
