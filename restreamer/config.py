"""
Configuration management for the restreamer.

Reads configuration from an optional .env file and environment variables.
The destination URL and stream key are required; everything else has a default.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from dotenv import load_dotenv

from restreamer.errors import ConfigMissing

# Default .env file location (relative to the working directory)
DEFAULT_ENV_FILE = Path(".env")

REQUIRED_ENV_VARS = ["YOUTUBE_STREAM_URL", "YOUTUBE_STREAM_KEY"]

_TRUE_VALUES = ("1", "true", "yes", "on")

logger = logging.getLogger(__name__)


def _load_env_file():
    """Load environment variables from .env file if it exists."""
    env_file = os.getenv("RESTREAM_ENV_FILE", str(DEFAULT_ENV_FILE))
    env_path = Path(env_file)

    if env_path.exists():
        load_dotenv(env_path, override=False)  # Don't override existing env vars


def _parse_backoff_schedule(backoff_str: str) -> List[int]:
    """
    Parse restart backoff schedule from comma-separated string.

    Args:
        backoff_str: Comma-separated list of milliseconds (e.g., "5000,10000")

    Returns:
        List of backoff delays in milliseconds

    Raises:
        ValueError: If parsing fails or values are invalid
    """
    if not backoff_str:
        raise ValueError("Backoff schedule cannot be empty")

    try:
        delays = [int(x.strip()) for x in backoff_str.split(",")]
    except ValueError:
        raise ValueError(f"Invalid backoff schedule format: {backoff_str} (must be comma-separated integers)")
    if any(d <= 0 for d in delays):
        raise ValueError("All backoff delays must be positive")
    return delays


def _get_int(name: str, default: str) -> int:
    value = os.getenv(name, default)
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Invalid {name}: {value} (must be an integer)")


def _get_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in _TRUE_VALUES


@dataclass(frozen=True)
class StreamConfig:
    """Where a stream is pushed: base URL plus stream key. Immutable."""

    destination_url: str
    stream_key: str

    @property
    def destination(self) -> str:
        return f"{self.destination_url.rstrip('/')}/{self.stream_key}"

    def describe(self) -> Dict[str, object]:
        """Log-safe view. The key itself is never included."""
        return {
            "stream_url": self.destination_url,
            "stream_key_length": len(self.stream_key) if self.stream_key else 0,
        }


@dataclass
class RestreamConfig:
    """Restreamer configuration loaded from .env file and environment variables."""

    # Destination (required)
    stream_url: str = ""
    stream_key: str = ""

    # Server settings
    host: str = "0.0.0.0"
    port: int = 3000

    # Video pool
    asset_dir: str = "./assets"
    pool_size: int = 61
    file_pattern: str = "{index:02d}.mp4"

    # Encoder
    ffmpeg_bin: str = "ffmpeg"
    startup_probe_ms: int = 500

    # Restart policy
    end_delay_ms: int = 2000
    restart_backoff_ms: List[int] = field(default_factory=lambda: [5000])
    max_restarts: int = 0  # 0 = unbounded
    restart_on_error: bool = True
    supersede_grace_ms: int = 5000

    # Trigger
    start_timeout_sec: int = 30
    autostart: bool = True

    # Logging
    log_level: str = "INFO"

    def stream_config(self, stream_key: Optional[str] = None) -> StreamConfig:
        """Build the StreamConfig for a start request, optionally overriding the key."""
        return StreamConfig(
            destination_url=self.stream_url,
            stream_key=stream_key if stream_key is not None else self.stream_key,
        )

    @classmethod
    def load_config(cls) -> "RestreamConfig":
        """
        Load configuration from environment variables.

        Returns:
            RestreamConfig instance with loaded values

        Raises:
            ConfigMissing: If a required variable is absent
            ValueError: If configuration is invalid
        """
        # Load .env file first (if it exists)
        _load_env_file()

        missing = [name for name in REQUIRED_ENV_VARS if not os.getenv(name, "").strip()]
        if missing:
            raise ConfigMissing(missing)

        # PORT is honoured for hosting platforms that inject it
        port_str = os.getenv("RESTREAM_PORT") or os.getenv("PORT", "3000")
        try:
            port = int(port_str)
        except ValueError:
            raise ValueError(f"Invalid RESTREAM_PORT: {port_str} (must be an integer)")

        backoff_str = os.getenv("RESTREAM_RESTART_BACKOFF_MS", "5000")
        try:
            restart_backoff_ms = _parse_backoff_schedule(backoff_str)
        except ValueError as e:
            raise ValueError(f"Invalid RESTREAM_RESTART_BACKOFF_MS: {e}")

        config = cls(
            stream_url=os.environ["YOUTUBE_STREAM_URL"].strip(),
            stream_key=os.environ["YOUTUBE_STREAM_KEY"].strip(),
            host=os.getenv("RESTREAM_HOST", "0.0.0.0"),
            port=port,
            asset_dir=os.getenv("RESTREAM_ASSET_DIR", "./assets"),
            pool_size=_get_int("RESTREAM_POOL_SIZE", "61"),
            file_pattern=os.getenv("RESTREAM_FILE_PATTERN", "{index:02d}.mp4"),
            ffmpeg_bin=os.getenv("RESTREAM_FFMPEG_BIN", "ffmpeg"),
            startup_probe_ms=_get_int("RESTREAM_STARTUP_PROBE_MS", "500"),
            end_delay_ms=_get_int("RESTREAM_END_DELAY_MS", "2000"),
            restart_backoff_ms=restart_backoff_ms,
            max_restarts=_get_int("RESTREAM_MAX_RESTARTS", "0"),
            restart_on_error=_get_bool("RESTREAM_RESTART_ON_ERROR", "true"),
            supersede_grace_ms=_get_int("RESTREAM_SUPERSEDE_GRACE_MS", "5000"),
            start_timeout_sec=_get_int("RESTREAM_START_TIMEOUT_SEC", "30"),
            autostart=_get_bool("RESTREAM_AUTOSTART", "true"),
            log_level=os.getenv("RESTREAM_LOG_LEVEL", "INFO"),
        )

        # Validate configuration
        config.validate()

        return config

    def validate(self) -> None:
        """
        Validate configuration values.

        Raises:
            ConfigMissing: If the destination URL or key is empty
            ValueError: If configuration is invalid
        """
        missing = []
        if not self.stream_url:
            missing.append("YOUTUBE_STREAM_URL")
        if not self.stream_key:
            missing.append("YOUTUBE_STREAM_KEY")
        if missing:
            raise ConfigMissing(missing)

        if self.port < 1 or self.port > 65535:
            raise ValueError(f"Invalid port: {self.port} (must be 1-65535)")

        if self.pool_size <= 0:
            raise ValueError(f"Invalid pool size: {self.pool_size} (must be > 0)")

        try:
            self.file_pattern.format(index=0)
        except (KeyError, IndexError, ValueError):
            raise ValueError(
                f"Invalid file pattern: {self.file_pattern} (must be a format string using {{index}})"
            )

        if self.startup_probe_ms < 0:
            raise ValueError(f"Invalid startup probe: {self.startup_probe_ms} (must be >= 0)")

        if self.end_delay_ms < 0:
            raise ValueError(f"Invalid end delay: {self.end_delay_ms} (must be >= 0)")

        if not self.restart_backoff_ms:
            raise ValueError("Restart backoff schedule cannot be empty")
        if any(d <= 0 for d in self.restart_backoff_ms):
            raise ValueError("All restart backoff delays must be positive")

        if self.max_restarts < 0:
            raise ValueError(f"Invalid max restarts: {self.max_restarts} (must be >= 0)")

        if self.supersede_grace_ms < 0:
            raise ValueError(f"Invalid supersede grace: {self.supersede_grace_ms} (must be >= 0)")

        if self.start_timeout_sec <= 0:
            raise ValueError(f"Invalid start timeout: {self.start_timeout_sec} (must be > 0)")

        # Validate log level
        valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.log_level.upper() not in valid_log_levels:
            raise ValueError(
                f"Invalid log level: {self.log_level} "
                f"(must be one of: {', '.join(valid_log_levels)})"
            )


def load_config() -> RestreamConfig:
    """
    Load and validate restreamer configuration from environment variables.

    Raises:
        ConfigMissing: If a required variable is absent
        ValueError: If configuration is invalid
    """
    try:
        return RestreamConfig.load_config()
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        raise
