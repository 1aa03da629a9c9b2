"""Stream forwarding between a command's I/O endpoints and the attach stream.

The engine multiplexes stdout and stderr onto one attach stream using 8-byte
frame headers. ``StreamForwarder`` demultiplexes it on a reader thread and
copies the stdin source into it on a writer thread. Completion is reported to
the event loop through futures, so the lifecycle controller never blocks on
socket I/O.
"""

import asyncio
import io
import queue
import socket
import threading
from typing import Any, Optional

import structlog
from docker.utils.socket import STDERR, STDOUT, frames_iter

from ...core.engine import raw_socket

logger = structlog.get_logger(__name__)

CHUNK_SIZE = 32 * 1024


def _set_result(fut: asyncio.Future) -> None:
    if not fut.done():
        fut.set_result(None)


class DiscardSink:
    """Sink that drops everything written to it."""

    def write(self, data: bytes) -> int:
        return len(data)


class TeeWriter:
    """Write to a primary sink and keep a copy in ``capture``."""

    def __init__(self, primary: Any, capture: io.BytesIO):
        self.primary = primary
        self.capture = capture

    def write(self, data: bytes) -> int:
        self.primary.write(data)
        self.capture.write(data)
        return len(data)


class ReaderSink:
    """Thread-side writer feeding an ``asyncio.StreamReader`` on its loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop, reader: asyncio.StreamReader):
        self._loop = loop
        self._reader = reader
        self._lock = threading.Lock()
        self._closed = False

    @property
    def reader(self) -> asyncio.StreamReader:
        return self._reader

    def write(self, data: bytes) -> int:
        with self._lock:
            if self._closed:
                raise BrokenPipeError("read end of pipe closed")
        try:
            self._loop.call_soon_threadsafe(self._reader.feed_data, bytes(data))
        except RuntimeError as e:
            raise BrokenPipeError("event loop closed") from e
        return len(data)

    def close(self, error: Optional[BaseException] = None) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        try:
            if error is None:
                self._loop.call_soon_threadsafe(self._reader.feed_eof)
            else:
                self._loop.call_soon_threadsafe(self._reader.set_exception, error)
        except RuntimeError:
            pass


class StdinPipe:
    """Writable end of a pipe connected to the container's standard input.

    Writes are queued and never block. ``close()`` delivers end-of-input to the
    container. Once the copy into the container fails, further writes raise
    ``BrokenPipeError``.
    """

    def __init__(self):
        self._queue: "queue.Queue[Optional[bytes]]" = queue.Queue()
        self._lock = threading.Lock()
        self._closed = False
        self._error: Optional[BaseException] = None
        self._pending = b""

    @property
    def closed(self) -> bool:
        return self._closed

    def write(self, data) -> int:
        if isinstance(data, str):
            data = data.encode("utf-8")
        with self._lock:
            if self._error is not None:
                raise BrokenPipeError(str(self._error))
            if self._closed:
                raise ValueError("write to closed pipe")
            self._queue.put(bytes(data))
        return len(data)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._queue.put(None)

    def read(self, n: int = -1) -> bytes:
        """Reader side, used by the forwarder's input thread."""
        if not self._pending:
            item = self._queue.get()
            if item is None:
                # Keep the sentinel for any later reader.
                self._queue.put(None)
                return b""
            self._pending = item
        if n is None or n < 0:
            n = len(self._pending)
        data, self._pending = self._pending[:n], self._pending[n:]
        return data

    def close_reader(self, error: Optional[BaseException] = None) -> None:
        with self._lock:
            if self._error is None:
                self._error = error or BrokenPipeError("container input closed")
            if not self._closed:
                self._closed = True
                self._queue.put(None)


def stdin_source(stdin: Any) -> Optional[Any]:
    """Readable source for a stdin value, or ``None`` when input is disabled.

    ``bytes`` and ``str`` are wrapped in a buffer. Known-empty sources disable
    stdin entirely so the container is not left waiting for input.
    """
    if stdin is None:
        return None
    if isinstance(stdin, str):
        stdin = stdin.encode("utf-8")
    if isinstance(stdin, (bytes, bytearray, memoryview)):
        return io.BytesIO(bytes(stdin)) if len(stdin) else None
    if isinstance(stdin, io.BytesIO) and stdin.tell() >= len(stdin.getbuffer()):
        return None
    return stdin


class StreamForwarder:
    """Copies attach-stream frames to sinks and a stdin source into the stream.

    Futures (resolved on ``loop``):
        ready: the output thread is about to issue its first read
        output_done: the attach stream reached end of stream
        input_done: the stdin source was exhausted (or there was none)
    """

    def __init__(
        self,
        sock: Any,
        loop: asyncio.AbstractEventLoop,
        stdout: Any = None,
        stderr: Any = None,
        stdin: Any = None,
        capture_stderr: Optional[io.BytesIO] = None,
        name: str = "",
    ):
        self._sock = sock
        self._loop = loop
        self._name = name
        self._stdout_raw = stdout
        self._stderr_raw = stderr
        self._stdout = stdout if stdout is not None else DiscardSink()
        stderr_sink = stderr if stderr is not None else DiscardSink()
        if capture_stderr is not None:
            stderr_sink = TeeWriter(stderr_sink, capture_stderr)
        self._stderr = stderr_sink
        self._stdin = stdin

        self._lock = threading.Lock()
        self._write_closed = False
        self._closed = False
        self._abort_error: Optional[BaseException] = None
        self.copy_error: Optional[BaseException] = None
        self.stream_error: Optional[BaseException] = None
        self.input_error: Optional[BaseException] = None

        self.ready: asyncio.Future = loop.create_future()
        self.output_done: asyncio.Future = loop.create_future()
        self.input_done: asyncio.Future = loop.create_future()

    def start(self) -> None:
        threading.Thread(
            target=self._copy_output, name=f"{self._name}-output", daemon=True
        ).start()
        if self._stdin is None:
            _set_result(self.input_done)
            return
        threading.Thread(
            target=self._copy_input, name=f"{self._name}-input", daemon=True
        ).start()

    def _signal(self, fut: asyncio.Future) -> None:
        try:
            self._loop.call_soon_threadsafe(_set_result, fut)
        except RuntimeError:
            logger.debug("Event loop closed before stream signal", command=self._name)

    def _copy_output(self) -> None:
        self._signal(self.ready)
        try:
            for stream, data in frames_iter(self._sock, tty=False):
                if not data or self.copy_error is not None:
                    # After a sink failure the stream is still drained so the
                    # container is never blocked on a full pipe.
                    continue
                if stream == STDOUT:
                    sink = self._stdout
                elif stream == STDERR:
                    sink = self._stderr
                else:
                    continue
                try:
                    sink.write(data)
                except Exception as e:
                    self.copy_error = e
                    logger.warning("Output sink failed", command=self._name, error=str(e))
                    self.close_pipes(e)
        except Exception as e:
            if not self._closed:
                self.stream_error = e
                logger.warning("Attach stream failed", command=self._name, error=str(e))
        logger.debug("Output stream finished", command=self._name)
        self.close_pipes(self.copy_error or self._abort_error or self.stream_error)
        self._signal(self.output_done)

    def _copy_input(self) -> None:
        source = self._stdin
        error: Optional[BaseException] = None
        try:
            while True:
                chunk = source.read(CHUNK_SIZE)
                if not chunk:
                    break
                if isinstance(chunk, str):
                    chunk = chunk.encode("utf-8")
                self._send(chunk)
        except Exception as e:
            error = e
            self.input_error = e
            logger.debug("Input copy stopped", command=self._name, error=str(e))
        if isinstance(source, StdinPipe):
            source.close_reader(error)
        self.close_write()
        self._signal(self.input_done)

    def _send(self, data: bytes) -> None:
        raw = raw_socket(self._sock)
        if hasattr(raw, "sendall"):
            raw.sendall(data)
        else:
            self._sock.write(data)

    def close_write(self) -> None:
        """Half-close the stream: the container sees end of input."""
        with self._lock:
            if self._write_closed or self._closed:
                return
            self._write_closed = True
        try:
            raw_socket(self._sock).shutdown(socket.SHUT_WR)
        except OSError as e:
            logger.debug("Attach half-close failed", command=self._name, error=str(e))

    def close_pipes(self, error: Optional[BaseException] = None) -> None:
        """Close caller-visible output pipes, with ``error`` if given."""
        for sink in (self._stdout_raw, self._stderr_raw):
            if isinstance(sink, ReaderSink):
                sink.close(error)

    def close(self, error: Optional[BaseException] = None) -> None:
        """Tear down the attach stream; blocked copies end promptly."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._abort_error = error
        if isinstance(self._stdin, StdinPipe):
            self._stdin.close_reader(error)
        raw = raw_socket(self._sock)
        try:
            raw.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        for closable in {id(self._sock): self._sock, id(raw): raw}.values():
            try:
                closable.close()
            except OSError as e:
                logger.debug("Attach close failed", command=self._name, error=str(e))
