"""
Restreamer: continuously re-streams a pool of local video files to a live
RTMP endpoint, rotating through the pool without repeats.
"""

__version__ = "0.1.0"
