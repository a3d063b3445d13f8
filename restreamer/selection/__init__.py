"""
Video selection subsystem.

- VideoPool: the fixed, numbered set of candidate files
- VideoSelector: non-repeating rotation over the pool
"""

from restreamer.selection.video_pool import VideoPool
from restreamer.selection.rotation import VideoSelector

__all__ = [
    "VideoPool",
    "VideoSelector",
]
