"""
The fixed, numbered pool of video files eligible for streaming.
"""

import logging
import os
from typing import List, Sequence

logger = logging.getLogger(__name__)

DEFAULT_POOL_SIZE = 61
DEFAULT_FILE_PATTERN = "{index:02d}.mp4"


class VideoPool:
    """
    Ordered, immutable sequence of candidate video paths.

    Index i maps to os.path.join(asset_dir, file_pattern.format(index=i)).
    The pool does not scan the directory; files are expected to be pre-placed.
    """

    def __init__(self, paths: Sequence[str], file_pattern: str = DEFAULT_FILE_PATTERN):
        if not paths:
            raise ValueError("Video pool cannot be empty")
        self._paths = tuple(paths)
        self._file_pattern = file_pattern

    @classmethod
    def from_directory(
        cls,
        asset_dir: str,
        size: int = DEFAULT_POOL_SIZE,
        file_pattern: str = DEFAULT_FILE_PATTERN,
    ) -> "VideoPool":
        paths = [os.path.join(asset_dir, file_pattern.format(index=i)) for i in range(size)]
        return cls(paths, file_pattern=file_pattern)

    def __len__(self) -> int:
        return len(self._paths)

    def __getitem__(self, index: int) -> str:
        return self._paths[index]

    def __iter__(self):
        return iter(self._paths)

    @property
    def paths(self) -> tuple:
        return self._paths

    def describe_range(self) -> str:
        """Human-readable expected range, e.g. "00.mp4 through 60.mp4"."""
        first = os.path.basename(self._paths[0])
        last = os.path.basename(self._paths[-1])
        return f"{first} through {last}"

    def missing(self) -> List[int]:
        """Indices whose file is not currently present on disk."""
        return [i for i, path in enumerate(self._paths) if not os.path.isfile(path)]
