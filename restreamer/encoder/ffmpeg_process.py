"""
FFmpeg process handle for the restreamer.

A ProcessHandle wraps exactly one ffmpeg invocation that pushes a local video
file to an RTMP destination. It reports three lifecycle events to an observer
(on_start, on_error, on_end) and can be terminated. It holds no retry logic;
every restart decision belongs to the StreamSupervisor.

Threads per handle:
- stderr drain thread: reads ffmpeg stderr, logs it, keeps a bounded tail
- monitor thread: runs the startup probe, waits for exit, emits events
"""

from __future__ import annotations

import collections
import logging
import signal
import subprocess
import threading
from typing import TYPE_CHECKING, List, Optional

from restreamer.errors import LaunchFailure, StreamInterrupted

if TYPE_CHECKING:
    from restreamer.config import StreamConfig

logger = logging.getLogger(__name__)

# Fixed encoding policy, identical for every invocation.
STREAM_INPUT_OPTIONS = [
    "-re",  # Read input at native frame rate
    "-threads", "4",
]

STREAM_OUTPUT_OPTIONS = [
    "-c:v", "libx264",
    "-preset", "ultrafast",
    "-tune", "zerolatency",
    "-maxrate", "1500k",
    "-bufsize", "3000k",
    "-pix_fmt", "yuv420p",
    "-g", "50",
    "-c:a", "aac",
    "-b:a", "128k",
    "-f", "flv",
    "-threads", "4",
    "-cpu-used", "4",
]

DEFAULT_STARTUP_PROBE_SEC = 0.5

# Number of stderr lines kept for diagnostics
STDERR_TAIL_LINES = 50

# ffmpeg traps SIGINT/SIGTERM and exits 255; at -loglevel warning it prints nothing about it
_FFMPEG_SIGNAL_EXIT_CODE = 255


def build_ffmpeg_cmd(input_path: str, destination: str, ffmpeg_bin: str = "ffmpeg") -> List[str]:
    """Build the ffmpeg command that streams input_path to destination."""
    cmd = [ffmpeg_bin, "-hide_banner", "-nostdin", "-loglevel", "warning"]
    cmd.extend(STREAM_INPUT_OPTIONS)
    cmd.extend(["-i", input_path])
    cmd.extend(STREAM_OUTPUT_OPTIONS)
    cmd.append(destination)
    return cmd


def describe_command(cmd: List[str], secret: Optional[str] = None) -> str:
    """Render a command for logging, masking the stream key."""
    text = " ".join(cmd)
    if secret:
        text = text.replace(secret, "****")
    return text


def classify_exit(returncode: int, diagnostics: str = "") -> StreamInterrupted:
    """Turn a non-zero ffmpeg exit into a StreamInterrupted error."""
    if returncode < 0:
        try:
            name = signal.Signals(-returncode).name
        except ValueError:
            name = f"signal {-returncode}"
        return StreamInterrupted(
            f"ffmpeg was killed with signal {name}",
            killed=True,
            returncode=returncode,
            diagnostics=diagnostics,
        )

    if returncode == _FFMPEG_SIGNAL_EXIT_CODE:
        return StreamInterrupted(
            "ffmpeg exited after receiving a termination signal",
            killed=True,
            returncode=returncode,
            diagnostics=diagnostics,
        )

    return StreamInterrupted(
        f"ffmpeg exited with code {returncode}",
        killed=False,
        returncode=returncode,
        diagnostics=diagnostics,
    )


class StreamObserver:
    """Receives lifecycle events from a ProcessHandle."""

    def on_start(self, handle: "ProcessHandle", command: str) -> None:
        pass

    def on_error(self, handle: "ProcessHandle", error: Exception, diagnostics: str) -> None:
        pass

    def on_end(self, handle: "ProcessHandle") -> None:
        pass


class ProcessHandle:
    """
    One running ffmpeg invocation.

    The handle counts as started once the process has been spawned and is
    still alive after the startup probe window. If it exits inside that window
    the observer receives on_error with a LaunchFailure and started stays False.
    """

    def __init__(
        self,
        command: List[str],
        observer: StreamObserver,
        startup_probe_sec: float = DEFAULT_STARTUP_PROBE_SEC,
        input_path: Optional[str] = None,
        secret: Optional[str] = None,
    ) -> None:
        self.command = list(command)
        self.input_path = input_path
        self._observer = observer
        self._startup_probe_sec = startup_probe_sec
        self._secret = secret

        self._process: Optional[subprocess.Popen] = None
        self._started = False
        self._terminate_requested = False
        self._lock = threading.Lock()

        self._stderr_tail = collections.deque(maxlen=STDERR_TAIL_LINES)
        self._stderr_thread: Optional[threading.Thread] = None
        self._monitor_thread: Optional[threading.Thread] = None

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process is not None else None

    @property
    def started(self) -> bool:
        return self._started

    @property
    def returncode(self) -> Optional[int]:
        return self._process.returncode if self._process is not None else None

    @property
    def terminate_requested(self) -> bool:
        return self._terminate_requested

    def describe(self) -> str:
        return describe_command(self.command, self._secret)

    def diagnostics(self) -> str:
        """Most recent stderr lines, oldest first."""
        return "\n".join(self._stderr_tail)

    def start(self) -> None:
        """
        Spawn ffmpeg and begin monitoring it.

        Raises:
            LaunchFailure: If the process cannot be spawned (e.g. binary missing)
        """
        if self._process is not None:
            raise RuntimeError("ProcessHandle already started")

        logger.info("Initializing FFmpeg stream...")
        logger.debug(f"FFmpeg command: {self.describe()}")
        try:
            self._process = subprocess.Popen(
                self.command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
            )
        except (OSError, ValueError) as e:
            logger.error(f"Failed to start ffmpeg: {e}")
            raise LaunchFailure(f"Failed to start ffmpeg: {e}") from e

        logger.info(f"Started ffmpeg PID={self._process.pid}")

        self._stderr_thread = threading.Thread(
            target=self._stderr_drain,
            daemon=True,
            name=f"FFmpegStderrDrain-{self._process.pid}",
        )
        self._stderr_thread.start()

        self._monitor_thread = threading.Thread(
            target=self._monitor,
            daemon=True,
            name=f"FFmpegMonitor-{self._process.pid}",
        )
        self._monitor_thread.start()

    def terminate(self) -> None:
        """
        Send SIGTERM to the process. Does not wait for it to exit.

        The resulting on_error (reporting a kill) is the expected outcome.
        """
        with self._lock:
            self._terminate_requested = True
            process = self._process
        if process is None or process.poll() is not None:
            return
        try:
            process.terminate()
            logger.info(f"Sent SIGTERM to ffmpeg PID={process.pid}")
        except OSError as e:
            logger.warning(f"Error terminating ffmpeg PID={process.pid}: {e}")

    def kill(self) -> None:
        """Send SIGKILL. Used only when a terminated process overstays its grace period."""
        process = self._process
        if process is None or process.poll() is not None:
            return
        try:
            process.kill()
            logger.warning(f"Sent SIGKILL to ffmpeg PID={process.pid}")
        except OSError as e:
            logger.warning(f"Error killing ffmpeg PID={process.pid}: {e}")

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for the process to exit.

        Returns:
            True if the process has exited (or never started), False on timeout
        """
        process = self._process
        if process is None:
            return True
        try:
            process.wait(timeout=timeout)
            return True
        except subprocess.TimeoutExpired:
            return False

    def _stderr_drain(self) -> None:
        """Read ffmpeg stderr until EOF, logging each line with an [FFMPEG] prefix."""
        process = self._process
        if process is None or process.stderr is None:
            return
        try:
            for line in iter(process.stderr.readline, b""):
                decoded = line.decode("utf-8", errors="ignore").rstrip()
                if not decoded:
                    continue
                if self._secret:
                    decoded = decoded.replace(self._secret, "****")
                self._stderr_tail.append(decoded)
                logger.debug(f"[FFMPEG] {decoded}")
        except (OSError, ValueError) as e:
            logger.debug(f"Stderr read error (likely closed): {e}")
        finally:
            try:
                process.stderr.close()
            except OSError:
                pass

    def _join_stderr(self, timeout: float = 1.0) -> None:
        if self._stderr_thread is not None and self._stderr_thread.is_alive():
            self._stderr_thread.join(timeout=timeout)

    def _monitor(self) -> None:
        process = self._process
        try:
            returncode = process.wait(timeout=self._startup_probe_sec)
        except subprocess.TimeoutExpired:
            returncode = None

        if returncode is not None and returncode != 0:
            # Exited inside the probe window: emission never began
            self._join_stderr()
            diagnostics = self.diagnostics()
            logger.error(f"FFmpeg exited immediately at startup (exit code: {returncode})")
            error = LaunchFailure(
                f"ffmpeg exited during startup with code {returncode}",
                diagnostics=diagnostics,
            )
            self._emit("on_error", error, diagnostics)
            return

        self._started = True
        command = self.describe()
        logger.info(f"FFmpeg process started with command: {command}")
        logger.info(f"Stream started with video file: {self.input_path}")
        self._emit("on_start", command)

        if returncode is None:
            returncode = process.wait()
        self._join_stderr()

        if returncode == 0:
            logger.info(f"FFmpeg PID={process.pid} finished: {self.input_path}")
            self._emit("on_end")
            return

        diagnostics = self.diagnostics()
        error = classify_exit(returncode, diagnostics)
        if error.killed and self._terminate_requested:
            logger.info(f"FFmpeg PID={process.pid} stopped after termination request")
        elif error.killed:
            logger.warning(f"Streaming interrupted: {error}")
        else:
            logger.error(f"Streaming error: {error}")
        self._emit("on_error", error, diagnostics)

    def _emit(self, event: str, *args) -> None:
        callback = getattr(self._observer, event)
        try:
            callback(self, *args)
        except Exception as e:
            logger.error(f"Observer {event} handler failed: {e}", exc_info=True)


class FFmpegLauncher:
    """Builds and starts ProcessHandles with the fixed encoding policy."""

    def __init__(self, ffmpeg_bin: str = "ffmpeg", startup_probe_sec: float = DEFAULT_STARTUP_PROBE_SEC):
        self.ffmpeg_bin = ffmpeg_bin
        self.startup_probe_sec = startup_probe_sec

    def launch(self, input_path: str, stream: "StreamConfig", observer: StreamObserver) -> ProcessHandle:
        """
        Start streaming input_path to the stream's destination.

        Raises:
            LaunchFailure: If ffmpeg cannot be spawned
        """
        cmd = build_ffmpeg_cmd(input_path, stream.destination, self.ffmpeg_bin)
        handle = ProcessHandle(
            cmd,
            observer,
            startup_probe_sec=self.startup_probe_sec,
            input_path=input_path,
            secret=stream.stream_key,
        )
        handle.start()
        return handle
