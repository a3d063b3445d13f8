"""
Restreamer encoder subsystem.

This package provides the ffmpeg streaming components:
- FFmpegLauncher / ProcessHandle: one ffmpeg invocation and its lifecycle events
- RestartPolicy: restart delays and retry limit
- StreamSupervisor: owns the single active stream and restarts it
"""

from restreamer.encoder.ffmpeg_process import FFmpegLauncher, ProcessHandle, StreamObserver
from restreamer.encoder.restart_policy import RestartPolicy, RestartReason
from restreamer.encoder.stream_supervisor import StreamSupervisor, SupervisorState

__all__ = [
    "FFmpegLauncher",
    "ProcessHandle",
    "StreamObserver",
    "RestartPolicy",
    "RestartReason",
    "StreamSupervisor",
    "SupervisorState",
]
