"""
Video rotation logic.

Picks the next video to stream from the pool. A video is not repeated until
every video in the pool has been played once in the current rotation; after
the last one is played the history is cleared and a new rotation begins.

History lives in memory only and resets when the process restarts.
"""

import logging
import os
import random
from typing import List, Optional

from restreamer.errors import VideoAssetMissing
from restreamer.selection.video_pool import VideoPool

logger = logging.getLogger(__name__)


class VideoSelector:
    """
    Chooses videos from a VideoPool without repeats inside a rotation.

    Not thread-safe on its own: the StreamSupervisor only calls pick_next()
    while holding its lock.
    """

    def __init__(self, pool: VideoPool, rng: Optional[random.Random] = None):
        """
        Initialize selector.

        Args:
            pool: The fixed pool of candidate videos
            rng: Optional random source (default: unseeded random.Random)
        """
        self._pool = pool
        self._rng = rng or random.Random()

        # Indices played in the current rotation, in play order
        self._history: List[int] = []
        self._played = set()

        logger.info(f"VideoSelector initialized with {len(pool)} videos ({pool.describe_range()})")

    @property
    def pool(self) -> VideoPool:
        return self._pool

    @property
    def history_size(self) -> int:
        return len(self._played)

    def pick_next(self) -> str:
        """
        Select the next video and record it as played.

        Draws uniformly among the videos not yet played in this rotation.

        Returns:
            Path of the selected video

        Raises:
            VideoAssetMissing: If the drawn file does not exist. Selection is
                not retried, so a pool with missing files can never spin.
        """
        candidates = [i for i in range(len(self._pool)) if i not in self._played]
        index = self._rng.choice(candidates)
        path = self._pool[index]

        if not os.path.isfile(path):
            logger.error(f"[ROTATION] Failed to access video file {path}")
            raise VideoAssetMissing(path, self._pool.describe_range())

        self._history.append(index)
        self._played.add(index)
        logger.info(f"[ROTATION] Selected video file: {path}")

        if len(self._played) >= len(self._pool):
            self._history.clear()
            self._played.clear()
            logger.info("[ROTATION] All videos have been played, resetting playlist")

        return path

    def recently_played(self, count: int = 10) -> List[str]:
        """
        Videos played in the current rotation.

        Args:
            count: Number of recent videos to return

        Returns:
            List of paths (most recent first)
        """
        recent = self._history[-count:] if count > 0 else []
        return [self._pool[i] for i in reversed(recent)]

    def reset(self) -> None:
        """Forget the current rotation."""
        self._history.clear()
        self._played.clear()
