"""
Restart policy for the stream supervisor.

Decides how long to wait before the next start_stream after a stream stops,
and when to give up. Normal end of a video always restarts after end_delay.
Failures (kill, error, launch failure) walk the backoff schedule; the last
entry repeats. When max_restarts > 0, more than max_restarts consecutive
failures opens the circuit.
"""

import enum
import logging
import threading
from typing import List, Optional

logger = logging.getLogger(__name__)

DEFAULT_END_DELAY_SEC = 2.0
DEFAULT_BACKOFF_SCHEDULE_MS = [5000]


class RestartReason(enum.Enum):
    ENDED = "ended"
    KILLED = "killed"
    ERROR = "error"
    LAUNCH_FAILED = "launch_failed"


class RestartPolicy:
    """Delay table plus consecutive-failure counter."""

    def __init__(
        self,
        end_delay_sec: float = DEFAULT_END_DELAY_SEC,
        backoff_schedule_ms: Optional[List[int]] = None,
        max_restarts: int = 0,
        restart_on_error: bool = True,
    ) -> None:
        """
        Args:
            end_delay_sec: Delay after a video finishes normally
            backoff_schedule_ms: Delays for failure restarts, indexed by attempt
            max_restarts: Consecutive failure restarts allowed (0 = unbounded)
            restart_on_error: Restart after non-kill errors (kills always restart)
        """
        self.end_delay_sec = end_delay_sec
        self.backoff_schedule_ms = list(backoff_schedule_ms or DEFAULT_BACKOFF_SCHEDULE_MS)
        self.max_restarts = max_restarts
        self.restart_on_error = restart_on_error
        self._failures = 0
        self._lock = threading.Lock()

    @property
    def consecutive_failures(self) -> int:
        return self._failures

    def next_delay(self, reason: RestartReason) -> Optional[float]:
        """
        Delay in seconds before restarting, or None to stop restarting.

        ENDED resets the failure counter. Every other reason counts as one
        failure attempt.
        """
        if reason is RestartReason.ENDED:
            with self._lock:
                self._failures = 0
            return self.end_delay_sec

        if reason is RestartReason.ERROR and not self.restart_on_error:
            return None

        with self._lock:
            self._failures += 1
            attempt = self._failures

        if self.max_restarts and attempt > self.max_restarts:
            logger.error(f"Restart limit reached ({self.max_restarts} consecutive failures)")
            return None

        backoff_idx = min(attempt - 1, len(self.backoff_schedule_ms) - 1)
        return self.backoff_schedule_ms[backoff_idx] / 1000.0

    def reset(self) -> None:
        with self._lock:
            self._failures = 0
