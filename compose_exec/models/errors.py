"""Error models and exception classes for compose-exec."""

from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from .container import ContainerState


class ErrorType(str, Enum):
    """Error type enumeration."""

    USAGE = "usage"
    NOT_FOUND = "not_found"
    ENGINE = "engine"
    EXIT = "exit"
    HEALTH = "health"
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"


class ErrorDetail(BaseModel):
    """Detailed error information."""

    resource: Optional[str] = Field(None, description="Engine object the error refers to")
    message: str = Field(..., description="Human-readable error message")
    code: Optional[str] = Field(None, description="Machine-readable error code")


# Custom Exception Classes


class ComposeExecError(Exception):
    """Base exception for compose-exec."""

    def __init__(
        self,
        message: str,
        error_type: ErrorType = ErrorType.ENGINE,
        details: Optional[List[ErrorDetail]] = None,
    ):
        self.message = message
        self.error_type = error_type
        self.details = details or []
        super().__init__(message)


class UsageError(ComposeExecError):
    """A precondition was violated; raised before any engine interaction."""

    def __init__(self, message: str, error_type: ErrorType = ErrorType.USAGE, **kwargs):
        super().__init__(message=f"compose: {message}", error_type=error_type, **kwargs)


class ServiceNotFoundError(UsageError):
    """The requested service is not declared in the project."""

    def __init__(self, service: str, **kwargs):
        self.service = service
        super().__init__(
            f"service {service!r} not found", error_type=ErrorType.NOT_FOUND, **kwargs
        )


class EngineError(ComposeExecError):
    """The container engine rejected or failed an operation.

    The underlying SDK exception is kept as ``__cause__``.
    """

    def __init__(self, message: str, **kwargs):
        super().__init__(message=message, error_type=ErrorType.ENGINE, **kwargs)


class HealthCheckError(ComposeExecError):
    """The container stopped or became unhealthy while waiting for health."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message=f"compose: {message}", error_type=ErrorType.HEALTH, **kwargs)


class Cancelled(ComposeExecError):
    """The governing cancel scope was cancelled."""

    def __init__(self, reason: Optional[str] = None, **kwargs):
        self.reason = reason
        message = "compose: cancelled" if not reason else f"compose: cancelled ({reason})"
        super().__init__(message=message, error_type=ErrorType.CANCELLED, **kwargs)


class DeadlineExceeded(Cancelled):
    """The governing cancel scope reached its deadline."""

    def __init__(self, **kwargs):
        ComposeExecError.__init__(
            self, message="compose: deadline exceeded", error_type=ErrorType.TIMEOUT, **kwargs
        )
        self.reason = "deadline exceeded"


class DownError(EngineError):
    """One or more project resources could not be removed."""

    def __init__(self, details: List[ErrorDetail]):
        summary = "; ".join(f"{d.resource}: {d.message}" for d in details)
        super().__init__(message=f"compose: down errors: {summary}", details=details)


class ExitError(ComposeExecError):
    """The container process exited with a non-zero status.

    Mirrors ``subprocess.CalledProcessError``: ``exit_code`` carries the status,
    ``stderr`` the captured standard error (when capture was requested), and
    ``container_state`` the last inspected state, used for OOM-kill and signal
    diagnostics. ``container_state`` is ``None`` when inspect failed.
    """

    MAX_SNIPPET_LEN = 512

    def __init__(
        self,
        code: int,
        stderr: bytes = b"",
        container_state: Optional["ContainerState"] = None,
        output: Optional[bytes] = None,
    ):
        self.code = code
        self.stderr = stderr
        self.container_state = container_state
        self.output = output
        super().__init__(message=f"compose: exit status {code}", error_type=ErrorType.EXIT)

    @property
    def exit_code(self) -> int:
        """Process exit status code."""
        return self.code

    @property
    def pid(self) -> int:
        """Container process id from the captured state, or 0 if unavailable."""
        if self.container_state is not None:
            return self.container_state.pid
        return 0

    def __str__(self) -> str:
        base = f"compose: exit status {self.code}"
        if not self.stderr:
            return base
        snippet = bytes(self.stderr)
        prefix = ""
        if len(snippet) > self.MAX_SNIPPET_LEN:
            snippet = snippet[-self.MAX_SNIPPET_LEN:]
            prefix = "... "
        text = snippet.decode("utf-8", errors="replace")
        return f"{base}: stderr={prefix}{text!r}"
