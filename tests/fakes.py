"""In-memory container engine used by the unit tests."""

import secrets
import socket
import struct
import threading
from typing import Any, Callable, Dict, List, Optional
from unittest.mock import MagicMock

from docker.errors import APIError, NotFound


def conflict(message: str) -> APIError:
    """An engine 409 response."""
    return APIError("Conflict", response=MagicMock(status_code=409), explanation=message)


class FakeProcess:
    """Engine side of one running container.

    Programs receive this object and return the exit code.
    """

    def __init__(self, sock: socket.socket, stdin_enabled: bool):
        self.sock = sock
        self.stdin_enabled = stdin_enabled
        self.stop_requested = threading.Event()
        self.signal: Optional[str] = None

    def write(self, data: bytes, stream: int = 1) -> None:
        header = struct.pack(">BxxxL", stream, len(data))
        self.sock.sendall(header + data)

    def stdout(self, data: bytes) -> None:
        self.write(data, 1)

    def stderr(self, data: bytes) -> None:
        self.write(data, 2)

    def read_stdin(self) -> bytes:
        chunks: List[bytes] = []
        while True:
            chunk = self.sock.recv(4096)
            if not chunk:
                return b"".join(chunks)
            chunks.append(chunk)

    def wait_for_stop(self, timeout: Optional[float] = None) -> bool:
        return self.stop_requested.wait(timeout)


Program = Callable[[FakeProcess], int]


def exit_with(code: int, stdout: bytes = b"", stderr: bytes = b"") -> Program:
    def program(proc: FakeProcess) -> int:
        if stdout:
            proc.stdout(stdout)
        if stderr:
            proc.stderr(stderr)
        return code

    return program


def sleep_until_stopped(proc: FakeProcess) -> int:
    proc.wait_for_stop()
    return 137 if proc.signal == "SIGKILL" else 143


def echo_stdin(proc: FakeProcess) -> int:
    proc.stdout(proc.read_stdin())
    return 0


class FakeContainer:
    def __init__(self, container_id: str, name: str, config: Dict[str, Any]):
        self.id = container_id
        self.name = name
        self.config = config
        self.engine_sock: Optional[socket.socket] = None
        self.process: Optional[FakeProcess] = None
        self.running = False
        self.started = False
        self.removed = False
        self.exit_code: Optional[int] = None
        self.exited = threading.Event()
        self.oom_killed = False

    @property
    def labels(self) -> Dict[str, str]:
        return self.config.get("Labels") or {}


class FakeEngine:
    """In-memory ``EngineClient``.

    The attach stream is a real socket pair carrying engine-framed output, so
    the stream forwarder runs unmodified against it.
    """

    def __init__(self, program: Program = exit_with(0), images: Optional[List[str]] = None):
        self.program = program
        self.images = set(images if images is not None else ["alpine:3.20"])
        self.containers: Dict[str, FakeContainer] = {}
        self.networks: Dict[str, Dict[str, Any]] = {}
        self.volumes: Dict[str, Dict[str, Any]] = {}
        self.calls: List[str] = []
        self.remove_calls: List[str] = []
        self.health: List[str] = []
        self.closed = False
        self.wait_error: Optional[Exception] = None
        self.wait_response_error: Optional[str] = None
        self.create_error: Optional[Exception] = None
        self.start_error: Optional[Exception] = None
        self.pull_error: Optional[Exception] = None
        self.stop_error: Optional[Exception] = None
        self.remove_error: Optional[Exception] = None
        self.inspect_error: Optional[Exception] = None
        self._lock = threading.Lock()

    # Helpers

    def _get(self, container_id: str) -> FakeContainer:
        c = self.containers.get(container_id)
        if c is None or c.removed:
            raise NotFound(f"No such container: {container_id}")
        return c

    def only_container(self) -> FakeContainer:
        assert len(self.containers) == 1, list(self.containers)
        return next(iter(self.containers.values()))

    def live_containers(self) -> List[FakeContainer]:
        return [c for c in self.containers.values() if not c.removed]

    def _run(self, c: FakeContainer) -> None:
        code = 1
        try:
            code = self.program(c.process)
        finally:
            c.exit_code = code
            c.running = False
            try:
                c.engine_sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            c.engine_sock.close()
            c.exited.set()

    def _signal(self, c: FakeContainer, sig: str) -> None:
        if c.process is not None:
            c.process.signal = sig
            c.process.stop_requested.set()

    # EngineClient

    def image_exists(self, image: str) -> bool:
        self.calls.append("image_exists")
        return image in self.images

    def pull_image(self, image: str) -> None:
        self.calls.append("pull")
        if self.pull_error is not None:
            raise self.pull_error
        self.images.add(image)

    def create_container(self, config: Dict[str, Any], name: str) -> str:
        self.calls.append("create")
        if self.create_error is not None:
            raise self.create_error
        container_id = secrets.token_hex(32)
        with self._lock:
            self.containers[container_id] = FakeContainer(container_id, name, config)
        return container_id

    def attach(self, container_id: str, stdin: bool) -> Any:
        self.calls.append("attach")
        c = self._get(container_id)
        client_sock, engine_sock = socket.socketpair()
        c.engine_sock = engine_sock
        c.process = FakeProcess(engine_sock, stdin)
        return client_sock

    def start(self, container_id: str) -> None:
        self.calls.append("start")
        if self.start_error is not None:
            raise self.start_error
        c = self._get(container_id)
        c.started = True
        c.running = True
        threading.Thread(target=self._run, args=(c,), daemon=True).start()

    def wait(self, container_id: str) -> Dict[str, Any]:
        self.calls.append("wait")
        c = self._get(container_id)
        if self.wait_error is not None:
            raise self.wait_error
        c.exited.wait()
        error = {"Message": self.wait_response_error} if self.wait_response_error else None
        return {"StatusCode": c.exit_code, "Error": error}

    def inspect(self, container_id: str) -> Dict[str, Any]:
        self.calls.append("inspect")
        if self.inspect_error is not None:
            raise self.inspect_error
        c = self._get(container_id)
        state: Dict[str, Any] = {
            "Status": "running" if c.running else "exited",
            "Running": c.running,
            "OOMKilled": c.oom_killed,
            "Dead": False,
            "Pid": 4242 if c.running else 0,
            "ExitCode": c.exit_code or 0,
            "Error": "",
        }
        if "Healthcheck" in c.config and c.config["Healthcheck"].get("Test") != ["NONE"]:
            status = self.health.pop(0) if len(self.health) > 1 else (self.health or ["starting"])[0]
            state["Health"] = {"Status": status}
        return {"Id": c.id, "Name": "/" + c.name, "State": state}

    def stop(self, container_id: str, timeout: float) -> None:
        self.calls.append("stop")
        if self.stop_error is not None:
            raise self.stop_error
        self._signal(self._get(container_id), "SIGTERM")

    def kill(self, container_id: str, signal: str = "SIGKILL") -> None:
        self.calls.append("kill")
        self._signal(self._get(container_id), signal)

    def remove(self, container_id: str, force: bool = True) -> None:
        self.calls.append("remove")
        self.remove_calls.append(container_id)
        if self.remove_error is not None:
            raise self.remove_error
        c = self._get(container_id)
        if c.running:
            self._signal(c, "SIGKILL")
        c.removed = True

    def list_containers(self, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        self.calls.append("list_containers")
        wanted = dict(label.split("=", 1) for label in filters.get("label", []))
        return [
            {"Id": c.id, "Names": ["/" + c.name], "Labels": c.labels}
            for c in self.live_containers()
            if all(c.labels.get(k) == v for k, v in wanted.items())
        ]

    def list_networks(
        self, names: Optional[List[str]] = None, filters: Optional[Dict[str, Any]] = None
    ) -> List[Dict[str, Any]]:
        self.calls.append("list_networks")
        out = list(self.networks.values())
        if names:
            # Substring match, like the engine's name filter.
            out = [n for n in out if any(name in n["Name"] for name in names)]
        if filters and filters.get("label"):
            wanted = dict(label.split("=", 1) for label in filters["label"])
            out = [n for n in out if all(n["Labels"].get(k) == v for k, v in wanted.items())]
        return out

    def create_network(
        self,
        name: str,
        labels: Dict[str, str],
        driver: Optional[str] = None,
        options: Optional[Dict[str, str]] = None,
    ) -> str:
        self.calls.append("create_network")
        with self._lock:
            if name in self.networks:
                raise conflict(f"network with name {name} already exists")
            network_id = secrets.token_hex(32)
            self.networks[name] = {
                "Id": network_id,
                "Name": name,
                "Labels": labels,
                "Driver": driver or "bridge",
                "Options": options or {},
            }
        return network_id

    def remove_network(self, network_id: str) -> None:
        self.calls.append("remove_network")
        for name, n in list(self.networks.items()):
            if n["Id"] == network_id:
                del self.networks[name]
                return
        raise NotFound(f"network {network_id} not found")

    def create_volume(
        self,
        name: str,
        labels: Dict[str, str],
        driver: Optional[str] = None,
        driver_opts: Optional[Dict[str, str]] = None,
    ) -> None:
        self.calls.append("create_volume")
        with self._lock:
            if name in self.volumes:
                raise conflict(f"volume {name} already exists")
            self.volumes[name] = {
                "Name": name,
                "Labels": labels,
                "Driver": driver or "local",
                "Options": driver_opts or {},
            }

    def close(self) -> None:
        self.closed = True
