"""Command lifecycle controller.

A ``Command`` runs one invocation of a service as a fresh container, with an
API shaped like ``subprocess``: ``start``/``wait``/``run`` and the
``output``/``combined_output`` helpers, plus pipe accessors for the standard
streams.

Lifecycle::

    UNSTARTED -> STARTING -> RUNNING -> STOPPING -> TERMINAL

Start creates the container, attaches to it, starts the stream forwarder and
only then starts the container, so no early output is lost. Wait blocks until
the engine reports the exit, drains the streams and removes the container.
Exactly one container is created and exactly one removal is issued for it on
every exit path.

All mutable fields are guarded by one lock. ``wait()`` takes an immutable
snapshot under that lock and performs blocking work without holding it.
"""

import asyncio
import io
import shlex
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import structlog

from ...config import settings
from ...core.engine import EngineClient, create_engine, engine_error, is_not_found, raw_socket
from ...core.scope import CancelScope
from ...models.container import ContainerState
from ...models.errors import (
    Cancelled,
    EngineError,
    ExitError,
    HealthCheckError,
    UsageError,
)
from ...models.project import ProjectContext
from ...models.service import ServiceDescriptor
from .builder import build_container_config
from .env import merge_env
from .mounts import ensure_volumes, service_mounts
from .naming import container_name_for
from .networks import ensure_networks, resolve_networking
from .streams import ReaderSink, StdinPipe, StreamForwarder, stdin_source
from .utils import run_bounded, run_in_executor, run_in_thread, short_id

logger = structlog.get_logger(__name__)


class CommandState(str, Enum):
    """Lifecycle state of a command."""

    UNSTARTED = "unstarted"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    TERMINAL = "terminal"


class Outcome(str, Enum):
    """How a terminal command ended."""

    SUCCESS = "success"
    EXIT_ERROR = "exit_error"
    ENGINE_ERROR = "engine_error"
    USAGE_ERROR = "usage_error"
    CANCELLED = "cancelled"


def outcome_for(error: Optional[BaseException]) -> Outcome:
    if error is None:
        return Outcome.SUCCESS
    if isinstance(error, ExitError):
        return Outcome.EXIT_ERROR
    if isinstance(error, (Cancelled, asyncio.CancelledError)):
        return Outcome.CANCELLED
    if isinstance(error, UsageError):
        return Outcome.USAGE_ERROR
    return Outcome.ENGINE_ERROR


def _close_attach_socket(sock: Any) -> None:
    """Close an attach stream no forwarder took over."""
    raw = raw_socket(sock)
    for closable in {id(sock): sock, id(raw): raw}.values():
        try:
            closable.close()
        except OSError as e:
            logger.debug("Attach close failed", error=str(e))


@dataclass(frozen=True)
class WaitState:
    """Snapshot of a started command, taken under the command lock."""

    container_id: str
    engine: EngineClient
    exit_future: asyncio.Future
    forwarder: StreamForwarder
    scope: CancelScope
    signal_scope: CancelScope
    release_signals: Callable[[], None]


DEFAULT_SCOPE = object()


class Command:
    """One invocation of a service, run in its own container.

    Attributes set before ``start()``:
        args: Command override (empty means the service or image default)
        env: ``KEY=VALUE`` / ``KEY`` entries merged over the service environment
        working_dir: Working directory override
        stdin: ``bytes``, ``str`` or a readable file-like object
        stdout, stderr: Objects with a ``write(bytes)`` method
        scope: Governing ``CancelScope``; setting it to ``None`` is a usage error
    """

    def __init__(
        self,
        service: ServiceDescriptor,
        project: Optional[ProjectContext] = None,
        args: Optional[List[str]] = None,
        scope: Any = DEFAULT_SCOPE,
        engine: Optional[EngineClient] = None,
        load_error: Optional[BaseException] = None,
    ):
        self.service = service
        self.project = project or ProjectContext(name=settings.default_project_name)
        self.args: List[str] = list(args or [])
        self.env: List[str] = []
        self.working_dir: Optional[str] = None
        self.stdin: Any = None
        self.stdout: Any = None
        self.stderr: Any = None
        self.scope: Optional[CancelScope] = CancelScope() if scope is DEFAULT_SCOPE else scope

        self._load_error = load_error
        self._lock = threading.Lock()
        self._engine = engine
        self._owns_engine = False
        self._state = CommandState.UNSTARTED
        self._outcome: Optional[Outcome] = None
        self._container_id: Optional[str] = None
        self._exit_future: Optional[asyncio.Future] = None
        self._forwarder: Optional[StreamForwarder] = None
        self._attach_sock: Any = None
        self._signal_scope: Optional[CancelScope] = None
        self._release_signals: Optional[Callable[[], None]] = None
        self._stop_task: Optional[asyncio.Future] = None
        self._removed = False
        self._waited = False
        self._capture_stderr = False
        self._stderr_buf = io.BytesIO()

    def __str__(self) -> str:
        if not self.args:
            return "<default>"
        return shlex.join(self.args)

    def __repr__(self) -> str:
        return f"<Command service={self.service.name!r} args={str(self)!r} state={self.state.value}>"

    # State accessors

    @property
    def state(self) -> CommandState:
        with self._lock:
            return self._state

    @property
    def outcome(self) -> Optional[Outcome]:
        with self._lock:
            return self._outcome

    @property
    def container_id(self) -> Optional[str]:
        with self._lock:
            return self._container_id

    def environ(self) -> List[str]:
        """The merged environment the container would run with."""
        return merge_env(self.service.environment_list(), self.env)

    # Pipes

    def _check_unstarted(self) -> None:
        with self._lock:
            if self._state is not CommandState.UNSTARTED:
                raise UsageError("already started")

    @staticmethod
    def _running_loop() -> asyncio.AbstractEventLoop:
        try:
            return asyncio.get_running_loop()
        except RuntimeError as e:
            raise UsageError("pipes require a running event loop") from e

    def stdout_pipe(self) -> asyncio.StreamReader:
        """Stream connected to the container's standard output.

        It is an error to call this after start or when ``stdout`` is set.
        """
        self._check_unstarted()
        if self.stdout is not None:
            raise UsageError("Stdout already set")
        loop = self._running_loop()
        reader = asyncio.StreamReader(loop=loop)
        self.stdout = ReaderSink(loop, reader)
        return reader

    def stderr_pipe(self) -> asyncio.StreamReader:
        """Stream connected to the container's standard error.

        It is an error to call this after start or when ``stderr`` is set.
        """
        self._check_unstarted()
        if self.stderr is not None:
            raise UsageError("Stderr already set")
        loop = self._running_loop()
        reader = asyncio.StreamReader(loop=loop)
        self.stderr = ReaderSink(loop, reader)
        return reader

    def stdin_pipe(self) -> StdinPipe:
        """Writable pipe connected to the container's standard input.

        Closing the pipe delivers end-of-input to the container. It is an
        error to call this after start or when ``stdin`` is set.
        """
        self._check_unstarted()
        if self.stdin is not None:
            raise UsageError("Stdin already set")
        pipe = StdinPipe()
        self.stdin = pipe
        return pipe

    def _close_pipes(self, error: Optional[BaseException]) -> None:
        for sink in (self.stdout, self.stderr):
            if isinstance(sink, ReaderSink):
                sink.close(error)
        if isinstance(self.stdin, StdinPipe):
            self.stdin.close_reader(error)

    # Engine handle

    async def _ensure_engine(self) -> EngineClient:
        with self._lock:
            engine = self._engine
        if engine is not None:
            return engine
        engine = await run_in_executor(create_engine)
        with self._lock:
            self._engine = engine
            self._owns_engine = True
        return engine

    def _close_engine_if_owned(self) -> None:
        with self._lock:
            if not self._owns_engine or self._engine is None:
                return
            engine, self._engine = self._engine, None
            self._owns_engine = False
        try:
            engine.close()
        except Exception as e:
            logger.warning("Engine client close failed", error=str(e))

    # Start

    def _raise_load_error(self) -> None:
        if self._load_error is not None:
            raise self._load_error

    def _mark_started(self) -> None:
        with self._lock:
            if self._state is not CommandState.UNSTARTED:
                raise UsageError("already started")
            self._state = CommandState.STARTING

    def _finish(self, error: Optional[BaseException]) -> None:
        with self._lock:
            self._state = CommandState.TERMINAL
            self._outcome = outcome_for(error)

    async def start(self) -> None:
        """Create, attach and start the container.

        Raises:
            UsageError: Already started, no scope, no image or a build request
            EngineError: The engine failed during setup
            Cancelled: The scope ended during setup
        """
        self._raise_load_error()
        self._mark_started()
        try:
            await self._start()
        except BaseException as e:
            await self._abort_start(e)
            raise

    async def _start(self) -> None:
        scope = self.scope
        if scope is None:
            raise UsageError("cancel scope is required")
        service = self.service
        if service.build is not None:
            raise UsageError("service.build is not supported (use a pre-built image)")
        if not service.image.strip():
            raise UsageError("service.image is required")
        scope.raise_if_cancelled()

        lifecycle = settings.lifecycle
        stdin = stdin_source(self.stdin)
        mounts = service_mounts(service, self.project)
        networks = resolve_networking(service, self.project)
        config = build_container_config(
            service,
            self.project,
            args=self.args,
            env=self.env,
            working_dir=self.working_dir,
            stdin_enabled=stdin is not None,
            mounts=mounts,
            networks=networks,
        )
        name = container_name_for(lifecycle.container_name_prefix, service.name)
        log = logger.bind(service=service.name, name=name)

        if lifecycle.handle_signals:
            signal_scope, release = scope.with_signals()
        else:
            signal_scope = scope.child()
            release = signal_scope.detach
        with self._lock:
            self._signal_scope = signal_scope
            self._release_signals = release

        engine = await self._ensure_engine()
        await self._ensure_image(engine, signal_scope)
        signal_scope.raise_if_cancelled()
        await ensure_volumes(engine, service, self.project)
        if networks:
            await ensure_networks(engine, networks, self.project.name)
        signal_scope.raise_if_cancelled()

        container_id = await self._create_container(engine, config, name)
        log = log.bind(container=short_id(container_id))
        log.info("Container created", image=service.image, command=str(self))

        sock = await self._attach_container(engine, container_id, stdin is not None, name)
        log.debug("Attached to container", stdin=stdin is not None)

        forwarder = StreamForwarder(
            sock,
            asyncio.get_running_loop(),
            stdout=self.stdout,
            stderr=self.stderr,
            stdin=stdin,
            capture_stderr=self._stderr_buf if self._capture_stderr else None,
            name=short_id(container_id),
        )
        with self._lock:
            self._forwarder = forwarder
            self._attach_sock = None
        forwarder.start()
        await forwarder.ready
        signal_scope.raise_if_cancelled()

        try:
            await run_in_executor(engine.start, container_id)
        except Exception as e:
            raise engine_error(f"start container {name!r}", e) from e

        # Not bound to any scope: the real exit must be observed even after
        # cancellation.
        exit_future = run_in_thread(engine.wait, container_id, name=f"{name}-wait")
        with self._lock:
            self._exit_future = exit_future
            self._state = CommandState.RUNNING
        log.info("Container started")

    async def _ensure_image(self, engine: EngineClient, scope: CancelScope) -> None:
        image = self.service.image
        try:
            exists = await run_in_executor(engine.image_exists, image)
        except Exception as e:
            raise engine_error(f"inspect image {image!r}", e) from e
        if exists:
            return
        logger.info("Pulling image", image=image)
        try:
            await scope.run(run_in_executor(engine.pull_image, image))
        except Cancelled:
            raise
        except Exception as e:
            raise engine_error(f"pull image {image!r}", e) from e
        logger.info("Image pulled", image=image)

    async def _create_container(self, engine: EngineClient, config: Dict[str, Any], name: str) -> str:
        fut = asyncio.ensure_future(run_in_executor(engine.create_container, config, name))
        try:
            container_id = await asyncio.shield(fut)
        except asyncio.CancelledError:
            # The worker still completes the create; record the id so the
            # abort path removes it.
            try:
                created = await fut
            except Exception:
                created = None
            if created:
                with self._lock:
                    self._container_id = created
            raise
        except Exception as e:
            raise engine_error(f"create container {name!r}", e) from e
        with self._lock:
            self._container_id = container_id
        return container_id

    async def _attach_container(
        self, engine: EngineClient, container_id: str, stdin: bool, name: str
    ) -> Any:
        fut = asyncio.ensure_future(run_in_executor(engine.attach, container_id, stdin))
        try:
            sock = await asyncio.shield(fut)
        except asyncio.CancelledError:
            # The worker still opens the stream; hand it to the abort path.
            try:
                opened = await fut
            except Exception:
                opened = None
            if opened is not None:
                with self._lock:
                    self._attach_sock = opened
            raise
        except Exception as e:
            raise engine_error(f"attach container {name!r}", e) from e
        with self._lock:
            self._attach_sock = sock
        return sock

    async def _abort_start(self, error: BaseException) -> None:
        with self._lock:
            container_id = self._container_id
            engine = self._engine
            forwarder = self._forwarder
            release = self._release_signals
            sock, self._attach_sock = self._attach_sock, None
        pipe_error = error if isinstance(error, Exception) else Cancelled("start cancelled")
        if sock is not None:
            _close_attach_socket(sock)
        if forwarder is not None:
            forwarder.close(pipe_error)
        if container_id and engine is not None:
            await asyncio.shield(self._remove_container(engine, container_id))
        self._close_pipes(pipe_error)
        if release is not None:
            release()
        self._close_engine_if_owned()
        self._finish(error)
        logger.debug(
            "Start failed",
            service=self.service.name,
            container=short_id(container_id),
            error=str(error),
        )

    # Cleanup primitives

    async def _remove_container(self, engine: EngineClient, container_id: str) -> None:
        """Force-remove the container; issued at most once per command."""
        with self._lock:
            if self._removed:
                return
            self._removed = True
        try:
            await run_bounded(settings.lifecycle.remove_timeout_seconds, engine.remove, container_id, True)
            logger.info("Container removed", container=short_id(container_id))
        except Exception as e:
            if is_not_found(e):
                logger.debug("Container already removed", container=short_id(container_id))
                return
            logger.warning(
                "Failed to remove container",
                container=short_id(container_id),
                error=str(e),
            )

    async def _stop_container(self, engine: EngineClient, container_id: str) -> None:
        """Stop with a grace period, escalating to kill if stop fails."""
        lifecycle = settings.lifecycle
        try:
            await run_bounded(
                lifecycle.stop_call_timeout(), engine.stop, container_id, lifecycle.stop_grace_seconds
            )
            return
        except Exception as e:
            logger.warning(
                "Container stop failed, killing",
                container=short_id(container_id),
                error=str(e),
            )
        try:
            await run_bounded(lifecycle.kill_timeout_seconds, engine.kill, container_id, "SIGKILL")
        except Exception as e:
            if not is_not_found(e):
                logger.warning(
                    "Failed to kill container",
                    container=short_id(container_id),
                    error=str(e),
                )

    def _request_stop(self, st: WaitState, reason: str) -> None:
        with self._lock:
            if self._stop_task is not None:
                return
            self._state = CommandState.STOPPING
            self._stop_task = asyncio.ensure_future(self._stop_container(st.engine, st.container_id))
        logger.info("Stopping container", container=short_id(st.container_id), reason=reason)

    async def _await_stop(self) -> None:
        with self._lock:
            task = self._stop_task
        if task is not None:
            await asyncio.shield(task)

    async def _teardown(self, st: WaitState, error: BaseException) -> None:
        st.forwarder.close(error)
        await self._await_stop()
        await self._remove_container(st.engine, st.container_id)

    # Wait

    def _snapshot(self, consume: bool = True) -> WaitState:
        with self._lock:
            if self._state in (CommandState.UNSTARTED, CommandState.STARTING):
                raise UsageError("not started")
            if consume and self._waited:
                raise UsageError("wait already called")
            if (
                not self._container_id
                or self._engine is None
                or self._exit_future is None
                or self._forwarder is None
                or self._signal_scope is None
                or self.scope is None
            ):
                raise UsageError("internal state incomplete")
            if consume:
                self._waited = True
            return WaitState(
                container_id=self._container_id,
                engine=self._engine,
                exit_future=self._exit_future,
                forwarder=self._forwarder,
                scope=self.scope,
                signal_scope=self._signal_scope,
                release_signals=self._release_signals or (lambda: None),
            )

    async def wait(self) -> None:
        """Wait for the container to exit, drain its streams and remove it.

        Raises:
            ExitError: The process exited with a non-zero status
            EngineError: The engine reported an error for the container
            Cancelled: The governing scope ended; the container was stopped
                and removed first
        """
        st = self._snapshot()
        error: Optional[BaseException] = None
        deferred_close = False
        try:
            await self._wait(st)
        except asyncio.CancelledError as e:
            error = e
            self._request_stop(st, "wait cancelled")
            cleanup = asyncio.ensure_future(self._teardown(st, Cancelled("wait cancelled")))
            try:
                await asyncio.shield(cleanup)
            except asyncio.CancelledError:
                # Finish cleanup in the background, then release the engine.
                deferred_close = True
                cleanup.add_done_callback(lambda _: self._close_engine_if_owned())
            raise
        except BaseException as e:
            error = e
            raise
        finally:
            st.release_signals()
            if not deferred_close:
                self._close_engine_if_owned()
            self._finish(error)

    async def _wait(self, st: WaitState) -> None:
        lifecycle = settings.lifecycle
        response = await self._wait_for_exit(st)
        log = logger.bind(container=short_id(st.container_id))

        # Drain: end the container's input, then collect remaining output.
        st.forwarder.close_write()
        await asyncio.wait({st.forwarder.input_done}, timeout=lifecycle.stdin_drain_timeout_seconds)
        caller_done = asyncio.ensure_future(st.scope.wait())
        try:
            await asyncio.wait(
                {st.forwarder.output_done, caller_done}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            caller_done.cancel()
        if not st.forwarder.output_done.done():
            err = st.scope.error or Cancelled()
            await self._teardown(st, err)
            raise err
        st.forwarder.close()
        log.debug("Streams drained")

        code = response.get("StatusCode", -1)
        engine_message = (response.get("Error") or {}).get("Message")
        container_state: Optional[ContainerState] = None
        if not engine_message and code != 0:
            container_state = await self._capture_state(st)

        log.info("Container exited", exit_code=code)
        await self._await_stop()
        await self._remove_container(st.engine, st.container_id)

        if st.scope.cancelled:
            raise st.scope.error
        if engine_message:
            raise EngineError(f"compose: {engine_message}")
        if code != 0:
            stderr = self._stderr_buf.getvalue() if self._capture_stderr else b""
            raise ExitError(code, stderr=stderr, container_state=container_state)
        if st.forwarder.copy_error is not None:
            raise st.forwarder.copy_error

    async def _wait_for_exit(self, st: WaitState) -> Dict[str, Any]:
        """Block until the engine reports the exit.

        Cancellation of the caller scope or a process signal triggers a single
        stop-then-kill; waiting continues for the real exit.
        """
        cancelled = asyncio.ensure_future(st.signal_scope.wait())
        try:
            while not st.exit_future.done():
                waiting = {st.exit_future}
                if not cancelled.done():
                    waiting.add(cancelled)
                await asyncio.wait(waiting, return_when=asyncio.FIRST_COMPLETED)
                if cancelled.done():
                    err = st.signal_scope.error
                    self._request_stop(st, err.reason if err is not None and err.reason else "cancelled")
        finally:
            cancelled.cancel()

        try:
            return st.exit_future.result()
        except Exception as e:
            await self._teardown(st, e)
            raise engine_error(f"wait container {short_id(st.container_id)}", e) from e

    async def _capture_state(self, st: WaitState) -> Optional[ContainerState]:
        """Best-effort final state for diagnostics after an abnormal exit."""
        try:
            data = await run_bounded(
                settings.lifecycle.inspect_timeout_seconds, st.engine.inspect, st.container_id
            )
        except Exception as e:
            logger.debug("Post-exit inspect failed", container=short_id(st.container_id), error=str(e))
            return None
        if not data or not data.get("State"):
            return None
        return ContainerState.from_inspect(data)

    # Convenience

    async def run(self) -> None:
        """Start the command and wait for it to finish."""
        self._raise_load_error()
        await self.start()
        await self.wait()

    async def output(self) -> bytes:
        """Run the command and return its standard output.

        Standard error is captured for the ``ExitError`` when ``stderr`` is
        unset.
        """
        self._raise_load_error()
        if self.stdout is not None:
            raise UsageError("Stdout already set")
        buf = io.BytesIO()
        self.stdout = buf
        if self.stderr is None:
            self._capture_stderr = True
        try:
            await self.run()
        except ExitError as e:
            e.output = buf.getvalue()
            raise
        return buf.getvalue()

    async def combined_output(self) -> bytes:
        """Run the command and return standard output and error interleaved."""
        self._raise_load_error()
        if self.stdout is not None:
            raise UsageError("Stdout already set")
        if self.stderr is not None:
            raise UsageError("Stderr already set")
        buf = io.BytesIO()
        self.stdout = buf
        self.stderr = buf
        self._capture_stderr = True
        try:
            await self.run()
        except ExitError as e:
            e.output = buf.getvalue()
            raise
        return buf.getvalue()

    async def wait_until_healthy(self, interval: Optional[float] = None) -> None:
        """Poll the container's health status until it is healthy.

        May run concurrently with ``wait()``.

        Raises:
            UsageError: The service declares no health check
            HealthCheckError: The container stopped or became unhealthy
            Cancelled: The governing scope ended
        """
        self._raise_load_error()
        if self.service.healthcheck is None:
            raise UsageError("healthcheck is not defined for this service")
        st = self._snapshot(consume=False)
        interval = interval or settings.lifecycle.health_poll_interval_seconds

        while True:
            try:
                data = await st.scope.run(run_in_executor(st.engine.inspect, st.container_id))
            except Cancelled:
                raise
            except Exception as e:
                raise engine_error(f"inspect container {short_id(st.container_id)}", e) from e
            if not data or not data.get("State"):
                raise HealthCheckError("container state unavailable")
            state = ContainerState.from_inspect(data)
            if not state.running:
                raise HealthCheckError(f"container stopped (status={state.status})")
            if not state.has_health:
                raise HealthCheckError("container has no healthcheck")
            if state.health_status == "healthy":
                return
            if state.health_status == "unhealthy":
                raise HealthCheckError("container became unhealthy")
            await st.scope.sleep(interval)
