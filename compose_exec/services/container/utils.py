"""Shared utilities for container operations.

Engine calls are blocking; these helpers move them off the event loop.
"""

import asyncio
import threading
from typing import Any, Callable, Optional

import structlog

logger = structlog.get_logger(__name__)


def short_id(container_id: Optional[str]) -> str:
    """Container id truncated for logs."""
    return (container_id or "")[:12]


async def run_in_executor(func, *args):
    """
    Run a blocking function in the default thread pool executor.

    Args:
        func: Blocking function to run
        *args: Arguments to pass to the function

    Returns:
        Result of the function
    """
    loop = asyncio.get_event_loop()
    return await loop.run_in_executor(None, func, *args)


async def run_bounded(timeout: float, func, *args):
    """Run a blocking function in the executor, giving up after ``timeout``.

    The worker thread is not interrupted on timeout; only the wait ends.
    """
    return await asyncio.wait_for(run_in_executor(func, *args), timeout)


def run_in_thread(func: Callable[..., Any], *args, name: Optional[str] = None) -> asyncio.Future:
    """
    Run a long blocking call on a dedicated daemon thread.

    Unlike ``run_in_executor`` this does not occupy a pool worker for the
    lifetime of the call, which matters for calls that block until a
    container exits.

    Args:
        func: Blocking function to run
        *args: Arguments to pass to the function
        name: Thread name

    Returns:
        Future resolved on the calling loop with the result or exception
    """
    loop = asyncio.get_running_loop()
    fut = loop.create_future()

    def deliver(result: Any, error: Optional[BaseException]) -> None:
        if fut.done():
            return
        if error is not None:
            fut.set_exception(error)
        else:
            fut.set_result(result)

    def target() -> None:
        result, error = None, None
        try:
            result = func(*args)
        except Exception as e:
            error = e
        try:
            loop.call_soon_threadsafe(deliver, result, error)
        except RuntimeError:
            logger.debug("Event loop closed before thread result", thread=name)

    threading.Thread(target=target, name=name, daemon=True).start()
    return fut
