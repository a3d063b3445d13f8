"""
Delayed-call scheduling for the restreamer.

The supervisor never sleeps or starts timers itself; it asks a Scheduler to
run a callback later. Production uses ThreadingScheduler (threading.Timer).
Tests inject a manual scheduler and advance time explicitly.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class ScheduledCall:
    """Handle for a pending delayed call."""

    def __init__(self, delay_sec: float, timer: Optional[threading.Timer] = None):
        self.delay_sec = delay_sec
        self.due_at = time.monotonic() + delay_sec
        self._timer = timer
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True
        if self._timer is not None:
            self._timer.cancel()


class Scheduler(ABC):
    """Base class for delayed-call schedulers."""

    @abstractmethod
    def call_later(self, delay_sec: float, fn: Callable, *args) -> ScheduledCall:
        """
        Run fn(*args) once, delay_sec seconds from now.

        Returns:
            ScheduledCall that can cancel the call before it runs
        """
        ...

    @abstractmethod
    def shutdown(self) -> None:
        """Cancel every pending call."""
        ...


class ThreadingScheduler(Scheduler):
    """Scheduler backed by daemon threading.Timer instances."""

    def __init__(self):
        self._lock = threading.Lock()
        self._pending = set()

    def call_later(self, delay_sec: float, fn: Callable, *args) -> ScheduledCall:
        call = ScheduledCall(delay_sec)

        def run():
            with self._lock:
                self._pending.discard(call)
            if call.cancelled:
                return
            try:
                fn(*args)
            except Exception as e:
                logger.error(f"Scheduled call {getattr(fn, '__name__', fn)} failed: {e}", exc_info=True)

        timer = threading.Timer(delay_sec, run)
        timer.daemon = True
        timer.name = "RestreamTimer"
        call._timer = timer
        with self._lock:
            self._pending.add(call)
        timer.start()
        return call

    def shutdown(self) -> None:
        with self._lock:
            pending = list(self._pending)
            self._pending.clear()
        for call in pending:
            call.cancel()
