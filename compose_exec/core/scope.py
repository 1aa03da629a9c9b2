"""Cancellation scopes.

A ``CancelScope`` governs how long an operation may run. It is done once it is
cancelled explicitly, once its deadline passes, or once its parent is done.
Scopes are thread-safe: ``cancel()`` may be called from any thread, from a
signal handler, or from another event loop.

Usage:
    scope = CancelScope(timeout=30)
    await scope.run(some_coroutine())
    await scope.sleep(0.5)
"""

import asyncio
import signal
import threading
import time
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

import structlog

from ..models.errors import Cancelled, DeadlineExceeded

logger = structlog.get_logger(__name__)

DEFAULT_SIGNALS: Tuple[int, ...] = (signal.SIGINT, signal.SIGTERM)


def _resolve(fut: asyncio.Future) -> None:
    if not fut.done():
        fut.set_result(None)


async def _discard_task(task: asyncio.Future) -> None:
    """Cancel a helper task and let it unwind."""
    if task.done():
        if not task.cancelled():
            task.exception()
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    except Exception as e:
        logger.debug("Discarded task failed", error=str(e))


class CancelScope:
    """Thread-safe cancellation scope with an optional deadline."""

    def __init__(self, timeout: Optional[float] = None, parent: Optional["CancelScope"] = None):
        self._lock = threading.Lock()
        self._error: Optional[Cancelled] = None
        self._waiters: List[Tuple[asyncio.AbstractEventLoop, asyncio.Future]] = []
        self._children: List["CancelScope"] = []
        self._parent = parent

        deadline = time.monotonic() + timeout if timeout is not None else None
        if parent is not None and parent._deadline is not None:
            deadline = parent._deadline if deadline is None else min(deadline, parent._deadline)
        self._deadline = deadline

        if parent is not None:
            parent._adopt(self)

    @property
    def deadline(self) -> Optional[float]:
        """Deadline on the ``time.monotonic()`` clock, if any."""
        return self._deadline

    @property
    def error(self) -> Optional[Cancelled]:
        """Why the scope is done, or ``None`` while it is live."""
        with self._lock:
            err = self._error
        if err is None and self._deadline is not None and time.monotonic() >= self._deadline:
            self._finish(DeadlineExceeded())
            with self._lock:
                err = self._error
        return err

    @property
    def cancelled(self) -> bool:
        return self.error is not None

    def cancel(self, reason: Optional[str] = None) -> bool:
        """Cancel the scope and all of its children.

        Returns False if the scope was already done.
        """
        return self._finish(Cancelled(reason))

    def raise_if_cancelled(self) -> None:
        err = self.error
        if err is not None:
            raise err

    def remaining(self) -> Optional[float]:
        """Seconds until the deadline, or ``None`` without one."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    async def wait(self) -> None:
        """Return once the scope is done."""
        if self.error is not None:
            return
        loop = asyncio.get_running_loop()
        fut = loop.create_future()
        entry = (loop, fut)
        with self._lock:
            if self._error is None:
                self._waiters.append(entry)
            else:
                fut.set_result(None)
        try:
            done, _ = await asyncio.wait({fut}, timeout=self.remaining())
            if not done:
                self._finish(DeadlineExceeded())
        finally:
            with self._lock:
                if entry in self._waiters:
                    self._waiters.remove(entry)

    async def sleep(self, delay: float) -> None:
        """Sleep for ``delay`` seconds, raising the scope error if it ends first."""
        self.raise_if_cancelled()
        waiter = asyncio.ensure_future(self.wait())
        try:
            await asyncio.wait({waiter}, timeout=delay)
        finally:
            await _discard_task(waiter)
        self.raise_if_cancelled()

    async def run(self, awaitable: Awaitable[Any]) -> Any:
        """Race ``awaitable`` against the scope.

        If the scope ends first the awaitable is cancelled and the scope error
        is raised.
        """
        self.raise_if_cancelled()
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            await _discard_task(task)
            await _discard_task(waiter)
            raise
        await _discard_task(waiter)
        if task.done():
            return task.result()
        await _discard_task(task)
        raise self.error or Cancelled()

    def child(self, timeout: Optional[float] = None) -> "CancelScope":
        """Derive a scope that ends no later than this one."""
        return CancelScope(timeout=timeout, parent=self)

    def with_signals(
        self, signals: Optional[Iterable[int]] = None
    ) -> Tuple["CancelScope", Callable[[], None]]:
        """Derive a child scope that process signals also cancel.

        Returns the child and a release function that uninstalls the relay
        subscription. Release is idempotent.
        """
        child = self.child()
        sigs = tuple(signals) if signals is not None else DEFAULT_SIGNALS
        active = _relay.subscribe(child, sigs)
        released = False

        def release() -> None:
            nonlocal released
            if released:
                return
            released = True
            _relay.unsubscribe(child, active)
            child.detach()

        return child, release

    def _adopt(self, child: "CancelScope") -> None:
        err = self.error
        if err is None:
            with self._lock:
                if self._error is None:
                    self._children.append(child)
                    return
                err = self._error
        child._finish(err)

    def detach(self) -> None:
        """Stop following the parent scope."""
        if self._parent is not None:
            self._parent._discard(self)

    def _discard(self, child: "CancelScope") -> None:
        with self._lock:
            if child in self._children:
                self._children.remove(child)

    def _finish(self, error: Cancelled) -> bool:
        with self._lock:
            if self._error is not None:
                return False
            self._error = error
            waiters, self._waiters = self._waiters, []
            children, self._children = self._children, []
        for loop, fut in waiters:
            try:
                loop.call_soon_threadsafe(_resolve, fut)
            except RuntimeError:
                # Loop already closed; nobody is left waiting.
                pass
        for child in children:
            child._finish(error)
        self.detach()
        return True


class _PriorHandler:
    """Whatever handled a signal before the relay took it over.

    That is either an event-loop callback registered with
    ``add_signal_handler`` or a plain ``signal.signal`` handler.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop, sig: int):
        handle = getattr(loop, "_signal_handlers", {}).get(sig)
        self.callback: Optional[Callable[..., Any]] = handle._callback if handle else None
        self.args: Tuple[Any, ...] = tuple(handle._args) if handle else ()
        self.os_handler = signal.getsignal(sig)

    def chain(self, sig: int) -> None:
        if self.callback is not None:
            self.callback(*self.args)
        elif callable(self.os_handler) and self.os_handler is not signal.default_int_handler:
            self.os_handler(sig, None)

    def restore(self, loop: asyncio.AbstractEventLoop, sig: int) -> None:
        if self.callback is not None:
            loop.add_signal_handler(sig, self.callback, *self.args)
            return
        loop.remove_signal_handler(sig)
        if self.os_handler is not None and signal.getsignal(sig) != self.os_handler:
            signal.signal(sig, self.os_handler)


class _SignalRelay:
    """Process-wide fan-out of signals to subscribed scopes.

    One handler per signal is installed on the first subscription. It cancels
    the subscribed scopes and then calls the handler it displaced. When the
    last subscriber releases the signal, the displaced handler is put back.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: Dict[int, List[CancelScope]] = {}
        self._loops: Dict[int, asyncio.AbstractEventLoop] = {}
        self._prior: Dict[int, _PriorHandler] = {}

    def subscribe(self, scope: CancelScope, signals: Iterable[int]) -> List[int]:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("Signal relay skipped, no running event loop")
            return []

        active: List[int] = []
        with self._lock:
            for sig in signals:
                if sig not in self._subscribers:
                    prior = _PriorHandler(loop, sig)
                    try:
                        loop.add_signal_handler(sig, self._dispatch, sig)
                    except (NotImplementedError, RuntimeError, ValueError) as e:
                        logger.debug(
                            "Signal relay unavailable",
                            signal=signal.Signals(sig).name,
                            error=str(e),
                        )
                        continue
                    self._subscribers[sig] = []
                    self._loops[sig] = loop
                    self._prior[sig] = prior
                    logger.debug("Signal relay installed", signal=signal.Signals(sig).name)
                self._subscribers[sig].append(scope)
                active.append(sig)
        return active

    def unsubscribe(self, scope: CancelScope, signals: Iterable[int]) -> None:
        with self._lock:
            for sig in signals:
                scopes = self._subscribers.get(sig)
                if scopes is None:
                    continue
                if scope in scopes:
                    scopes.remove(scope)
                if scopes:
                    continue
                del self._subscribers[sig]
                loop = self._loops.pop(sig)
                prior = self._prior.pop(sig)
                if loop.is_closed():
                    continue
                try:
                    prior.restore(loop, sig)
                except (NotImplementedError, RuntimeError, ValueError) as e:
                    logger.debug(
                        "Signal relay removal failed",
                        signal=signal.Signals(sig).name,
                        error=str(e),
                    )

    def subscriber_count(self, sig: int) -> int:
        with self._lock:
            return len(self._subscribers.get(sig, []))

    def _dispatch(self, sig: int) -> None:
        with self._lock:
            scopes = list(self._subscribers.get(sig, []))
            prior = self._prior.get(sig)
        name = signal.Signals(sig).name
        logger.info("Received signal, cancelling commands", signal=name, commands=len(scopes))
        for scope in scopes:
            scope.cancel(f"received {name}")
        if prior is not None:
            prior.chain(sig)


_relay = _SignalRelay()
