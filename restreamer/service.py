# restreamer/service.py

import logging
import random
import threading
import time
from typing import Optional

from restreamer.clock import Scheduler, ThreadingScheduler
from restreamer.config import RestreamConfig
from restreamer.encoder.ffmpeg_process import FFmpegLauncher
from restreamer.encoder.restart_policy import RestartPolicy
from restreamer.encoder.stream_supervisor import StreamSupervisor
from restreamer.http.server import RestreamHTTPServer
from restreamer.selection.rotation import VideoSelector
from restreamer.selection.video_pool import VideoPool

logger = logging.getLogger(__name__)


class RestreamService:
    def __init__(
        self,
        config: RestreamConfig,
        launcher: Optional[FFmpegLauncher] = None,
        scheduler: Optional[Scheduler] = None,
        rng: Optional[random.Random] = None,
    ):
        """
        Initialize RestreamService.

        Args:
            config: Validated restreamer configuration
            launcher: Optional launcher override (tests inject a fake)
            scheduler: Optional scheduler override (tests inject a manual clock)
            rng: Optional random source for video selection
        """
        self.config = config
        self.pool = VideoPool.from_directory(
            config.asset_dir,
            size=config.pool_size,
            file_pattern=config.file_pattern,
        )
        self.selector = VideoSelector(self.pool, rng=rng)
        self.scheduler = scheduler or ThreadingScheduler()
        self.launcher = launcher or FFmpegLauncher(
            ffmpeg_bin=config.ffmpeg_bin,
            startup_probe_sec=config.startup_probe_ms / 1000.0,
        )
        self.policy = RestartPolicy(
            end_delay_sec=config.end_delay_ms / 1000.0,
            backoff_schedule_ms=config.restart_backoff_ms,
            max_restarts=config.max_restarts,
            restart_on_error=config.restart_on_error,
        )
        self.supervisor = StreamSupervisor(
            self.selector,
            launcher=self.launcher,
            policy=self.policy,
            scheduler=self.scheduler,
            supersede_grace_sec=config.supersede_grace_ms / 1000.0,
            on_fatal=self._on_fatal,
        )
        self.start_time = time.time()
        self.http_server = RestreamHTTPServer(
            host=config.host,
            port=config.port,
            supervisor=self.supervisor,
            config=config,
            start_time=self.start_time,
        )

        self.running = False
        self._stop_event = threading.Event()
        self._fatal_message: Optional[str] = None

    def start(self):
        """Start the HTTP server, then the first stream if autostart is on."""
        logger.info("=== Restreamer starting ===")

        missing = self.pool.missing()
        if missing:
            logger.warning(
                f"{len(missing)} of {len(self.pool)} video files missing from "
                f"{self.config.asset_dir} (expected {self.pool.describe_range()})"
            )

        self.http_server.start()
        self.running = True

        if self.config.autostart:
            logger.info("Starting automatic stream...")
            future = self.supervisor.start_stream(self.config.stream_config())
            future.add_done_callback(self._on_autostart_done)

    def _on_autostart_done(self, future):
        error = future.exception()
        if error is not None:
            logger.error(f"Failed to start automatic stream: {error}")
            return
        logger.info("Automatic stream started successfully")

    def _on_fatal(self, message: str):
        logger.critical(f"Restreamer cannot continue: {message}")
        self._fatal_message = message
        self._stop_event.set()

    def run_forever(self) -> int:
        """
        Block until stop() or a fatal supervisor error.

        Returns:
            Process exit status (0 on clean stop, 1 after a fatal error)
        """
        while not self._stop_event.is_set():
            self._stop_event.wait(timeout=1.0)

        self.stop()
        return 1 if self._fatal_message else 0

    def stop(self):
        """Stop streaming, cancel timers and close the HTTP listener."""
        if not self.running:
            self._stop_event.set()
            return
        self.running = False
        logger.info("=== Restreamer stopping ===")

        self.supervisor.stop()
        self.scheduler.shutdown()
        self.http_server.stop()
        self._stop_event.set()

        logger.info("=== Restreamer stopped ===")
