"""Container engine boundary.

``EngineClient`` names the blocking operations the lifecycle needs from a
container engine. ``DockerEngine`` implements it on top of the docker SDK's
low-level ``APIClient``; tests substitute an in-memory fake.

Engine clients are created lazily by the command that needs one and closed
by that same command. A client passed in by the caller is never closed.
"""

import math
from typing import Any, Dict, List, Optional, Protocol

import docker
import structlog
from docker.errors import APIError, DockerException, NotFound
from docker.utils import kwargs_from_env

from ..config import settings
from ..models.errors import EngineError

logger = structlog.get_logger(__name__)


class EngineClient(Protocol):
    """Synchronous container engine operations."""

    def image_exists(self, image: str) -> bool: ...

    def pull_image(self, image: str) -> None: ...

    def create_container(self, config: Dict[str, Any], name: str) -> str: ...

    def attach(self, container_id: str, stdin: bool) -> Any: ...

    def start(self, container_id: str) -> None: ...

    def wait(self, container_id: str) -> Dict[str, Any]: ...

    def inspect(self, container_id: str) -> Dict[str, Any]: ...

    def stop(self, container_id: str, timeout: float) -> None: ...

    def kill(self, container_id: str, signal: str = "SIGKILL") -> None: ...

    def remove(self, container_id: str, force: bool = True) -> None: ...

    def list_containers(self, filters: Dict[str, Any]) -> List[Dict[str, Any]]: ...

    def list_networks(
        self, names: Optional[List[str]] = None, filters: Optional[Dict[str, Any]] = None
    ) -> List[Dict[str, Any]]: ...

    def create_network(
        self,
        name: str,
        labels: Dict[str, str],
        driver: Optional[str] = None,
        options: Optional[Dict[str, str]] = None,
    ) -> str: ...

    def remove_network(self, network_id: str) -> None: ...

    def create_volume(
        self,
        name: str,
        labels: Dict[str, str],
        driver: Optional[str] = None,
        driver_opts: Optional[Dict[str, str]] = None,
    ) -> None: ...

    def close(self) -> None: ...


def raw_socket(sock: Any) -> Any:
    """Underlying socket of an attach stream (``SocketIO`` wraps it)."""
    return getattr(sock, "_sock", sock)


def is_already_exists(err: BaseException) -> bool:
    """True if the engine refused because the object already exists."""
    if isinstance(err, APIError) and err.status_code == 409:
        return True
    return "already exists" in str(err).lower()


def is_not_found(err: BaseException) -> bool:
    """True if the engine reported the object as missing."""
    if isinstance(err, NotFound):
        return True
    return "not found" in str(err).lower() or "no such" in str(err).lower()


class DockerEngine:
    """``EngineClient`` backed by ``docker.APIClient``."""

    def __init__(self, client: docker.APIClient):
        self._client = client

    @property
    def api(self) -> docker.APIClient:
        return self._client

    def ping(self) -> bool:
        return bool(self._client.ping())

    def image_exists(self, image: str) -> bool:
        try:
            self._client.inspect_image(image)
            return True
        except NotFound:
            return False

    def pull_image(self, image: str) -> None:
        # Progress messages are drained; failures arrive in-band.
        for chunk in self._client.pull(image, stream=True, decode=True):
            if isinstance(chunk, dict) and chunk.get("error"):
                raise APIError(f"pull {image}: {chunk['error']}")

    def create_container(self, config: Dict[str, Any], name: str) -> str:
        created = self._client.create_container_from_config(config, name)
        for warning in created.get("Warnings") or []:
            logger.warning("Engine warning on create", container=name, warning=warning)
        return created["Id"]

    def attach(self, container_id: str, stdin: bool) -> Any:
        sock = self._client.attach_socket(
            container_id,
            params={
                "stdin": 1 if stdin else 0,
                "stdout": 1,
                "stderr": 1,
                "stream": 1,
            },
        )
        # The hijacked stream must not inherit the API request timeout.
        raw_socket(sock).settimeout(None)
        return sock

    def start(self, container_id: str) -> None:
        self._client.start(container_id)

    def wait(self, container_id: str) -> Dict[str, Any]:
        return self._client.wait(container_id, condition="not-running")

    def inspect(self, container_id: str) -> Dict[str, Any]:
        return self._client.inspect_container(container_id)

    def stop(self, container_id: str, timeout: float) -> None:
        self._client.stop(container_id, timeout=int(math.ceil(timeout)))

    def kill(self, container_id: str, signal: str = "SIGKILL") -> None:
        self._client.kill(container_id, signal=signal)

    def remove(self, container_id: str, force: bool = True) -> None:
        self._client.remove_container(container_id, force=force)

    def list_containers(self, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        return self._client.containers(all=True, filters=filters)

    def list_networks(
        self, names: Optional[List[str]] = None, filters: Optional[Dict[str, Any]] = None
    ) -> List[Dict[str, Any]]:
        return self._client.networks(names=names, filters=filters)

    def create_network(
        self,
        name: str,
        labels: Dict[str, str],
        driver: Optional[str] = None,
        options: Optional[Dict[str, str]] = None,
    ) -> str:
        created = self._client.create_network(
            name, driver=driver, options=options or None, labels=labels
        )
        return created.get("Id", "")

    def remove_network(self, network_id: str) -> None:
        self._client.remove_network(network_id)

    def create_volume(
        self,
        name: str,
        labels: Dict[str, str],
        driver: Optional[str] = None,
        driver_opts: Optional[Dict[str, str]] = None,
    ) -> None:
        self._client.create_volume(
            name=name, driver=driver, driver_opts=driver_opts or None, labels=labels
        )

    def close(self) -> None:
        self._client.close()


def create_engine(docker_host: Optional[str] = None) -> DockerEngine:
    """Connect to the engine named by the environment and settings.

    ``DOCKER_HOST``, ``DOCKER_TLS_VERIFY`` and ``DOCKER_CERT_PATH`` are
    honored; ``docker_host`` (or the ``docker_host`` setting) overrides the
    host.
    """
    engine_settings = settings.engine
    kwargs = kwargs_from_env()
    host = docker_host or engine_settings.docker_host
    if host:
        kwargs["base_url"] = host
    try:
        client = docker.APIClient(
            version="auto", timeout=engine_settings.engine_timeout_seconds, **kwargs
        )
    except DockerException as e:
        raise EngineError(f"compose: connect to engine: {e}") from e
    logger.debug("Engine client created", base_url=client.base_url)
    return DockerEngine(client)


def engine_error(action: str, err: BaseException) -> EngineError:
    """Wrap an SDK failure; callers raise it ``from err`` to keep the cause."""
    return EngineError(f"compose: {action}: {err}")
