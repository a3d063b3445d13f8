"""
Contract tests for VideoPool and VideoSelector.

Covers: naming convention, anti-repeat inside a rotation, rotation reset,
missing asset failure (fails fast, never spins).
"""

import os
import random

import pytest

from restreamer.errors import VideoAssetMissing
from restreamer.selection.rotation import VideoSelector
from restreamer.selection.video_pool import VideoPool

from restreamer.tests.contracts.test_doubles import ScriptedRandom, create_asset_dir


class TestVideoPool:
    """Tests for the fixed, numbered pool."""

    def test_default_pool_has_61_zero_padded_paths(self, tmp_path):
        pool = VideoPool.from_directory(str(tmp_path))

        assert len(pool) == 61
        assert os.path.basename(pool[0]) == "00.mp4"
        assert os.path.basename(pool[7]) == "07.mp4"
        assert os.path.basename(pool[60]) == "60.mp4"
        assert all(os.path.dirname(p) == str(tmp_path) for p in pool)

    def test_describe_range(self, tmp_path):
        pool = VideoPool.from_directory(str(tmp_path))
        assert pool.describe_range() == "00.mp4 through 60.mp4"

    def test_custom_pattern_and_size(self, tmp_path):
        pool = VideoPool.from_directory(str(tmp_path), size=3, file_pattern="clip_{index:03d}.mkv")
        assert [os.path.basename(p) for p in pool] == ["clip_000.mkv", "clip_001.mkv", "clip_002.mkv"]
        assert pool.describe_range() == "clip_000.mkv through clip_002.mkv"

    def test_missing_lists_absent_indices(self, tmp_path):
        asset_dir = create_asset_dir(tmp_path / "assets", missing=[3, 60])
        pool = VideoPool.from_directory(str(asset_dir))
        assert pool.missing() == [3, 60]

    def test_empty_pool_rejected(self):
        with pytest.raises(ValueError):
            VideoPool([])


class TestAntiRepeat:
    """A video is not repeated until the whole pool has been played."""

    def test_n_minus_one_picks_never_repeat(self, video_pool):
        selector = VideoSelector(video_pool, rng=random.Random(1234))

        picks = [selector.pick_next() for _ in range(len(video_pool) - 1)]

        assert len(set(picks)) == len(picks)
        assert selector.history_size == len(video_pool) - 1

    def test_candidates_exclude_played_videos(self, video_pool):
        rng = ScriptedRandom([5, 9])
        selector = VideoSelector(video_pool, rng=rng)

        selector.pick_next()
        selector.pick_next()
        selector.pick_next()

        assert 5 not in rng.offered[1]
        assert 5 not in rng.offered[2] and 9 not in rng.offered[2]
        assert len(rng.offered[2]) == len(video_pool) - 2

    def test_pick_returns_pool_path(self, video_pool):
        selector = VideoSelector(video_pool, rng=ScriptedRandom([42]))
        assert selector.pick_next() == video_pool[42]


class TestRotationReset:
    """History clears once every video has been played."""

    def test_nth_pick_completes_rotation_and_clears_history(self, video_pool):
        selector = VideoSelector(video_pool, rng=random.Random(99))

        picks = [selector.pick_next() for _ in range(len(video_pool))]

        assert sorted(picks) == sorted(video_pool.paths)
        assert selector.history_size == 0
        assert selector.recently_played() == []

    def test_new_rotation_may_repeat_previous_rotation(self, video_pool):
        selector = VideoSelector(video_pool, rng=random.Random(7))
        first_rotation = [selector.pick_next() for _ in range(len(video_pool))]

        second_rotation = [selector.pick_next() for _ in range(len(video_pool))]

        assert sorted(second_rotation) == sorted(first_rotation)

    def test_recently_played_is_newest_first(self, video_pool):
        selector = VideoSelector(video_pool, rng=ScriptedRandom([1, 2, 3]))
        for _ in range(3):
            selector.pick_next()

        assert selector.recently_played(2) == [video_pool[3], video_pool[2]]

    def test_reset_forgets_rotation(self, video_pool):
        selector = VideoSelector(video_pool, rng=ScriptedRandom([4]))
        selector.pick_next()
        selector.reset()
        assert selector.history_size == 0


class TestMissingAsset:
    """Selecting an absent file raises VideoAssetMissing."""

    @pytest.fixture
    def pool_without_60(self, tmp_path):
        asset_dir = create_asset_dir(tmp_path / "assets", missing=[60])
        return VideoPool.from_directory(str(asset_dir))

    def test_missing_file_raises_with_expected_range(self, pool_without_60):
        selector = VideoSelector(pool_without_60, rng=ScriptedRandom([60]))

        with pytest.raises(VideoAssetMissing) as exc_info:
            selector.pick_next()

        message = str(exc_info.value)
        assert "60.mp4" in message
        assert "00.mp4 through 60.mp4" in message
        assert exc_info.value.path == pool_without_60[60]

    def test_failed_pick_is_not_recorded(self, pool_without_60):
        selector = VideoSelector(pool_without_60, rng=ScriptedRandom([60]))

        with pytest.raises(VideoAssetMissing):
            selector.pick_next()

        assert selector.history_size == 0

    @pytest.mark.timeout(5)
    def test_missing_file_surfaces_within_one_rotation(self, pool_without_60):
        """Random selection reaches the missing file and raises instead of spinning."""
        selector = VideoSelector(pool_without_60, rng=random.Random(2024))

        with pytest.raises(VideoAssetMissing):
            for _ in range(len(pool_without_60)):
                selector.pick_next()

    @pytest.mark.timeout(5)
    def test_empty_asset_dir_fails_immediately(self, tmp_path):
        pool = VideoPool.from_directory(str(tmp_path / "nothing-here"))
        selector = VideoSelector(pool)

        with pytest.raises(VideoAssetMissing):
            selector.pick_next()
