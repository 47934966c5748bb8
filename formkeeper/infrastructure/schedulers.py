"""Schedulers — delayed callbacks delivered on the session's owning event loop.

Invariants:
    - Callbacks ALWAYS execute on the owning loop, never on a timer thread
    - A callback whose handle was cancelled, or whose token is set, never runs
    - cancel() is idempotent and safe from any thread

Design Decisions:
    - LoopScheduler returns asyncio.TimerHandle directly: it already is a ScheduledHandle
    - ThreadTimerScheduler exists for hosts whose timers live outside asyncio;
      expiry is posted back with loop.call_soon_threadsafe and re-checked there
"""

import asyncio
import logging
import threading
from collections.abc import Callable

logger = logging.getLogger(__name__)


def _guarded(
    callback: Callable[[], None], token: asyncio.Event,
) -> Callable[[], None]:
    def run() -> None:
        if token.is_set():
            return
        callback()
    return run


class LoopScheduler:
    """Scheduler backed by loop.call_later on the owning loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None):
        self._loop = loop or asyncio.get_running_loop()

    def schedule(
        self, delay: float, callback: Callable[[], None], token: asyncio.Event,
    ) -> asyncio.TimerHandle:
        return self._loop.call_later(max(delay, 0.0), _guarded(callback, token))


class _ThreadTimerHandle:
    """Handle for a threading.Timer whose expiry is re-dispatched to a loop."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._cancelled = False
        self.timer: threading.Timer | None = None

    def cancel(self) -> None:
        with self._lock:
            self._cancelled = True
        if self.timer is not None:
            self.timer.cancel()

    def cancelled(self) -> bool:
        with self._lock:
            return self._cancelled


class ThreadTimerScheduler:
    """Scheduler backed by threading.Timer, dispatching expiry onto the owning loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None):
        self._loop = loop or asyncio.get_running_loop()

    def schedule(
        self, delay: float, callback: Callable[[], None], token: asyncio.Event,
    ) -> _ThreadTimerHandle:
        handle = _ThreadTimerHandle()
        guarded = _guarded(callback, token)

        def on_loop() -> None:
            if handle.cancelled():
                return
            guarded()

        def on_timer_thread() -> None:
            if handle.cancelled() or token.is_set():
                return
            try:
                self._loop.call_soon_threadsafe(on_loop)
            except RuntimeError:
                # Loop already closed: the owning session is gone.
                logger.debug("Timer expired after its event loop closed")

        handle.timer = threading.Timer(max(delay, 0.0), on_timer_thread)
        handle.timer.daemon = True
        handle.timer.start()
        return handle
