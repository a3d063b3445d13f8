"""
Error kinds for the restreamer.

Errors raised before a stream is confirmed started are surfaced to the
caller of StreamSupervisor.start_stream(). Errors after that point are
handled inside the supervisor by restart scheduling and only show up in logs.
"""

from typing import Optional


class RestreamerError(Exception):
    """Base class for all restreamer errors."""


class ConfigMissing(RestreamerError, ValueError):
    """Required process-wide configuration is absent. Fatal at startup."""

    def __init__(self, missing):
        self.missing = list(missing)
        super().__init__(
            f"Missing required environment variables: {', '.join(self.missing)}"
        )


class VideoAssetMissing(RestreamerError):
    """The selected video file does not exist on disk."""

    def __init__(self, path: str, expected_range: str):
        self.path = path
        self.expected_range = expected_range
        super().__init__(
            f"Video file {path} not found. Please ensure all video files "
            f"({expected_range}) are present in the assets directory."
        )


class LaunchFailure(RestreamerError):
    """The encoder could not be spawned, or died before it started emitting."""

    def __init__(self, message: str, diagnostics: str = ""):
        self.diagnostics = diagnostics
        super().__init__(message)


class StreamInterrupted(RestreamerError):
    """
    The encoder reported an error after it had started.

    Forced termination (a signal) is reported with killed=True and is the
    normal outcome of superseding a stream.
    """

    def __init__(
        self,
        message: str,
        killed: bool = False,
        returncode: Optional[int] = None,
        diagnostics: str = "",
    ):
        self.killed = killed
        self.returncode = returncode
        self.diagnostics = diagnostics
        super().__init__(message)


class LaunchSuperseded(LaunchFailure):
    """A launch was replaced by a newer start_stream() before it started."""
