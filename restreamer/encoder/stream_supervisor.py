"""
Stream Supervisor for the restreamer.

Owns the single active ffmpeg stream. start_stream() picks the next video,
tears down any previous stream, launches a new ffmpeg process and returns a
Future that resolves once the process has started emitting. Lifecycle events
from the process drive automatic restarts:

- normal end of a video  -> restart with a new video after the end delay
- kill or error          -> restart after the failure backoff delay
- missing video asset    -> unrecoverable when hit by an automatic restart

Events from a stream that has been superseded are ignored, so terminating an
old stream never triggers a second restart.
"""

from __future__ import annotations

import enum
import logging
import threading
import time
from concurrent.futures import Future
from typing import Callable, Dict, List, Optional

from restreamer.clock import ScheduledCall, Scheduler, ThreadingScheduler
from restreamer.config import StreamConfig
from restreamer.encoder.ffmpeg_process import FFmpegLauncher, ProcessHandle, StreamObserver
from restreamer.encoder.restart_policy import RestartPolicy, RestartReason
from restreamer.errors import LaunchFailure, LaunchSuperseded, VideoAssetMissing
from restreamer.selection.rotation import VideoSelector

logger = logging.getLogger(__name__)

DEFAULT_SUPERSEDE_GRACE_SEC = 5.0

# How long to wait for a SIGKILLed process after the grace period ran out
_KILL_WAIT_SEC = 1.0


class SupervisorState(enum.Enum):
    IDLE = 1
    LAUNCHING = 2
    STREAMING = 3
    FAILED = 4
    STOPPED = 5


class _PendingLaunch:
    """A launched process that has not reported on_start yet."""

    def __init__(
        self,
        handle: ProcessHandle,
        future: Future,
        config: StreamConfig,
        video: str,
        resume_config: Optional[StreamConfig] = None,
    ):
        self.handle = handle
        self.future = future
        self.config = config
        self.video = video
        # Config of the automatic restart this launch replaced, if any
        self.resume_config = resume_config


class StreamSupervisor(StreamObserver):
    """
    Orchestrates VideoSelector + FFmpegLauncher + RestartPolicy.

    All state is guarded by one re-entrant lock. Futures are completed and
    the fatal callback is invoked outside the lock.
    """

    def __init__(
        self,
        selector: VideoSelector,
        launcher: Optional[FFmpegLauncher] = None,
        policy: Optional[RestartPolicy] = None,
        scheduler: Optional[Scheduler] = None,
        supersede_grace_sec: float = DEFAULT_SUPERSEDE_GRACE_SEC,
        on_fatal: Optional[Callable[[str], None]] = None,
    ) -> None:
        """
        Initialize stream supervisor.

        Args:
            selector: Picks the next video
            launcher: Starts ffmpeg processes (default: FFmpegLauncher())
            policy: Restart delays and retry limit (default: RestartPolicy())
            scheduler: Runs delayed restarts (default: ThreadingScheduler())
            supersede_grace_sec: How long to wait for a superseded process to
                exit before launching its replacement (0 = don't wait)
            on_fatal: Called with a message when the supervisor gives up
        """
        self._selector = selector
        self._launcher = launcher or FFmpegLauncher()
        self._policy = policy or RestartPolicy()
        self._scheduler = scheduler or ThreadingScheduler()
        self._supersede_grace_sec = supersede_grace_sec
        self._on_fatal = on_fatal

        self._lock = threading.RLock()
        self._state = SupervisorState.IDLE
        self._active: Optional[ProcessHandle] = None
        self._active_config: Optional[StreamConfig] = None
        self._active_video: Optional[str] = None
        self._active_since: Optional[float] = None
        self._launching: Optional[_PendingLaunch] = None
        self._restart_call: Optional[ScheduledCall] = None
        self._restart_config: Optional[StreamConfig] = None
        self._restart_disabled = False
        self._launch_seq = 0
        # Superseded processes still inside their grace period
        self._retiring: List[ProcessHandle] = []

        self._streams_started = 0
        self._last_error: Optional[str] = None

    @property
    def state(self) -> SupervisorState:
        with self._lock:
            return self._state

    @property
    def active_stream(self) -> Optional[ProcessHandle]:
        with self._lock:
            return self._active

    @property
    def restart_pending(self) -> bool:
        with self._lock:
            return self._restart_call is not None

    def start_stream(self, config: StreamConfig) -> Future:
        """
        Start streaming a freshly selected video to config's destination.

        Any previous stream is terminated first. The returned Future resolves
        with the selected video path once ffmpeg has started, or fails with
        VideoAssetMissing / LaunchFailure.

        A pending automatic restart is only cancelled once the new process
        has been spawned, so a failed start leaves it in place.
        """
        future: Future = Future()
        future.set_running_or_notify_cancel()
        failures: List[tuple] = []
        seq = None
        retiring: List[ProcessHandle] = []

        logger.info(f"Starting stream with configuration: {config.describe()}")

        with self._lock:
            if self._state == SupervisorState.STOPPED:
                failures.append((future, RuntimeError("Stream supervisor is stopped")))
            else:
                if self._state == SupervisorState.FAILED:
                    logger.info("Manual start requested after failure, resetting restart policy")
                    self._policy.reset()
                try:
                    video = self._selector.pick_next()
                except VideoAssetMissing as e:
                    # Nothing was superseded, a running stream keeps running
                    failures.append((future, e))
                else:
                    self._launch_seq += 1
                    seq = self._launch_seq
                    failures.extend(self._supersede_locked())
                    retiring = list(self._retiring)
                    self._set_state_locked(SupervisorState.LAUNCHING)

        if seq is not None:
            # Superseded processes get their grace period without holding the lock
            self._await_exit(retiring)

            with self._lock:
                for handle in retiring:
                    if handle in self._retiring:
                        self._retiring.remove(handle)

                if self._state == SupervisorState.STOPPED:
                    failures.append((future, RuntimeError("Stream supervisor is stopped")))
                elif seq != self._launch_seq:
                    failures.append((
                        future,
                        LaunchSuperseded("Stream launch superseded by a newer start request"),
                    ))
                else:
                    try:
                        handle = self._launcher.launch(video, config, self)
                    except LaunchFailure as e:
                        self._set_state_locked(SupervisorState.IDLE)
                        self._last_error = str(e)
                        failures.append((future, e))
                    else:
                        resume_config = self._restart_config if self._restart_call is not None else None
                        self._cancel_restart_locked()
                        self._launching = _PendingLaunch(handle, future, config, video, resume_config)

        for pending, exc in failures:
            pending.set_exception(exc)
        return future

    def stop(self) -> None:
        """Disable restarts, cancel timers and terminate any live stream."""
        logger.info("Stopping StreamSupervisor...")
        failures: List[tuple] = []
        with self._lock:
            self._restart_disabled = True
            self._cancel_restart_locked()
            if self._launching is not None:
                failures.append((self._launching.future, RuntimeError("Stream supervisor stopped")))
                self._launching = None
            if self._active is not None:
                self._terminate_locked([self._active])
            self._active = None
            self._active_config = None
            self._active_video = None
            self._active_since = None
            self._launch_seq += 1
            self._set_state_locked(SupervisorState.STOPPED)
            retiring = list(self._retiring)
            self._retiring.clear()

        self._await_exit(retiring)
        for pending, exc in failures:
            pending.set_exception(exc)
        logger.info("StreamSupervisor stopped")

    def snapshot(self) -> Dict[str, object]:
        """Status view for the HTTP layer."""
        with self._lock:
            handle = self._active
            return {
                "state": self._state.name,
                "current_video": self._active_video,
                "pid": handle.pid if handle is not None else None,
                "streaming_since": self._active_since,
                "streams_started": self._streams_started,
                "restart_pending": self._restart_call is not None,
                "consecutive_failures": self._policy.consecutive_failures,
                "last_error": self._last_error,
                "history_size": self._selector.history_size,
                "recently_played": self._selector.recently_played(5),
            }

    # ------------------------------------------------------------------
    # Lifecycle events (called from ProcessHandle monitor threads)
    # ------------------------------------------------------------------

    def on_start(self, handle: ProcessHandle, command: str) -> None:
        with self._lock:
            launch = self._launching
            if launch is None or launch.handle is not handle:
                logger.debug(f"Ignoring start from superseded ffmpeg PID={handle.pid}")
                return
            self._launching = None
            self._active = handle
            self._active_config = launch.config
            self._active_video = launch.video
            self._active_since = time.time()
            self._streams_started += 1
            self._set_state_locked(SupervisorState.STREAMING)

        launch.future.set_result(launch.video)

    def on_end(self, handle: ProcessHandle) -> None:
        fatal = None
        with self._lock:
            if handle is not self._active:
                logger.debug(f"Ignoring end from superseded ffmpeg PID={handle.pid}")
                return
            config = self._active_config
            self._clear_active_locked()
            logger.info("Stream ended, restarting with new video...")
            fatal = self._schedule_restart_locked(RestartReason.ENDED, config)
        if fatal:
            self._fail(fatal)

    def on_error(self, handle: ProcessHandle, error: Exception, diagnostics: str) -> None:
        failure = None
        fatal = None
        with self._lock:
            launch = self._launching
            if launch is not None and launch.handle is handle:
                # Died before it started: the caller is still waiting
                self._launching = None
                self._set_state_locked(
                    SupervisorState.STREAMING if self._active is not None else SupervisorState.IDLE
                )
                self._last_error = str(error)
                if not isinstance(error, LaunchFailure):
                    error = LaunchFailure(str(error), diagnostics=diagnostics)
                failure = (launch.future, error)
                if launch.resume_config is not None and self._active is None:
                    # The restart this launch replaced is still owed
                    fatal = self._schedule_restart_locked(
                        RestartReason.LAUNCH_FAILED, launch.resume_config
                    )
            elif handle is self._active:
                config = self._active_config
                self._clear_active_locked()
                self._last_error = str(error)
                killed = getattr(error, "killed", False)
                if diagnostics:
                    logger.error(f"FFmpeg stderr:\n{diagnostics}")
                if killed:
                    logger.warning(f"Stream was killed: {error}")
                    reason = RestartReason.KILLED
                else:
                    logger.error(f"Stream interrupted: {error}")
                    reason = RestartReason.ERROR
                fatal = self._schedule_restart_locked(reason, config)
            else:
                logger.debug(f"Ignoring error from superseded ffmpeg PID={handle.pid}: {error}")
                return

        if failure is not None:
            failure[0].set_exception(failure[1])
        if fatal:
            self._fail(fatal)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _set_state_locked(self, new_state: SupervisorState) -> None:
        if new_state != self._state:
            logger.debug(f"Supervisor state: {self._state.name} -> {new_state.name}")
            self._state = new_state

    def _clear_active_locked(self) -> None:
        self._active = None
        self._active_config = None
        self._active_video = None
        self._active_since = None
        self._set_state_locked(SupervisorState.IDLE)

    def _cancel_restart_locked(self) -> None:
        if self._restart_call is not None:
            self._restart_call.cancel()
            self._restart_call = None
            self._restart_config = None
            logger.debug("Cancelled pending restart")

    def _supersede_locked(self) -> List[tuple]:
        """
        Send SIGTERM to the active stream and any launch still in flight.

        The terminated handles move to the retiring list, to be awaited with
        the lock released. Returns (future, exception) pairs to fail once the
        lock is released.
        """
        handles = []
        failures = []
        if self._active is not None:
            handles.append(self._active)
            self._active = None
            self._active_config = None
            self._active_video = None
            self._active_since = None
        if self._launching is not None:
            handles.append(self._launching.handle)
            failures.append((
                self._launching.future,
                LaunchSuperseded("Stream launch superseded by a newer start request"),
            ))
            self._launching = None

        if handles:
            logger.info(f"Terminating {len(handles)} previous stream(s) before launching")
            self._terminate_locked(handles)
        return failures

    def _terminate_locked(self, handles: List[ProcessHandle]) -> None:
        for handle in handles:
            try:
                handle.terminate()
            except Exception as e:
                logger.error(f"Error killing previous stream: {e}")
            self._retiring.append(handle)

    def _await_exit(self, handles: List[ProcessHandle]) -> None:
        """Give terminated processes their grace period, then SIGKILL. Never called with the lock held."""
        if self._supersede_grace_sec <= 0:
            return

        for handle in handles:
            if not handle.wait(timeout=self._supersede_grace_sec):
                logger.warning(
                    f"ffmpeg PID={handle.pid} still running {self._supersede_grace_sec:.1f}s "
                    f"after SIGTERM, killing"
                )
                handle.kill()
                handle.wait(timeout=_KILL_WAIT_SEC)

    def _schedule_restart_locked(self, reason: RestartReason, config: Optional[StreamConfig]) -> Optional[str]:
        """
        Schedule the next start_stream per the restart policy.

        Returns a fatal message if the supervisor should give up.
        """
        if self._restart_disabled or config is None:
            return None

        if reason is RestartReason.ERROR and not self._policy.restart_on_error:
            logger.error("Automatic restart after stream errors is disabled, staying idle")
            return None

        delay = self._policy.next_delay(reason)
        if delay is None:
            return (
                f"Giving up after {self._policy.consecutive_failures} consecutive "
                f"failures (last error: {self._last_error})"
            )

        if reason is RestartReason.ENDED:
            logger.info(f"Next video in {delay:.1f}s")
        else:
            logger.info(
                f"Stream {reason.value}, attempting restart in {delay:.1f}s "
                f"(attempt {self._policy.consecutive_failures})"
            )
        self._restart_config = config
        self._restart_call = self._scheduler.call_later(delay, self._run_restart, config, reason)
        return None

    def _run_restart(self, config: StreamConfig, reason: RestartReason) -> None:
        with self._lock:
            if self._restart_disabled:
                return
            self._restart_call = None
            self._restart_config = None

        logger.info(f"Restarting stream after {reason.value}")
        future = self.start_stream(config)
        future.add_done_callback(lambda f: self._on_restart_done(f, config))

    def _on_restart_done(self, future: Future, config: StreamConfig) -> None:
        error = future.exception()
        if error is None or isinstance(error, LaunchSuperseded):
            return

        if isinstance(error, VideoAssetMissing):
            self._fail(f"Error in restart attempt: {error}")
            return

        logger.error(f"Error in restart attempt: {error}")
        with self._lock:
            if self._state == SupervisorState.STOPPED:
                return
            self._last_error = str(error)
            fatal = self._schedule_restart_locked(RestartReason.LAUNCH_FAILED, config)
        if fatal:
            self._fail(fatal)

    def _fail(self, message: str) -> None:
        with self._lock:
            if self._state == SupervisorState.STOPPED:
                return
            self._cancel_restart_locked()
            self._last_error = message
            self._set_state_locked(SupervisorState.FAILED)
            callback = self._on_fatal

        logger.error(f"Stream supervisor failed: {message}")
        if callback:
            callback(message)
