"""
Shared pytest fixtures for restreamer contract tests.

Contract tests use test doubles (fake launcher, manual scheduler, scripted
random) instead of ffmpeg and real timers. Video assets are empty
placeholder files under tmp_path.
"""

import socket

import pytest

from restreamer.config import RestreamConfig, StreamConfig
from restreamer.encoder.restart_policy import RestartPolicy
from restreamer.encoder.stream_supervisor import StreamSupervisor
from restreamer.selection.rotation import VideoSelector
from restreamer.selection.video_pool import VideoPool

from restreamer.tests.contracts.test_doubles import (
    FakeLauncher,
    ManualScheduler,
    ScriptedRandom,
    create_asset_dir,
)

RESTREAM_ENV_VARS = [
    "YOUTUBE_STREAM_URL",
    "YOUTUBE_STREAM_KEY",
    "PORT",
    "RESTREAM_HOST",
    "RESTREAM_PORT",
    "RESTREAM_ASSET_DIR",
    "RESTREAM_POOL_SIZE",
    "RESTREAM_FILE_PATTERN",
    "RESTREAM_FFMPEG_BIN",
    "RESTREAM_STARTUP_PROBE_MS",
    "RESTREAM_END_DELAY_MS",
    "RESTREAM_RESTART_BACKOFF_MS",
    "RESTREAM_MAX_RESTARTS",
    "RESTREAM_RESTART_ON_ERROR",
    "RESTREAM_SUPERSEDE_GRACE_MS",
    "RESTREAM_START_TIMEOUT_SEC",
    "RESTREAM_AUTOSTART",
    "RESTREAM_LOG_LEVEL",
    "RESTREAM_ENV_FILE",
]


def find_free_port() -> int:
    """Find an available ephemeral port."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("", 0))
        s.listen(1)
        port = s.getsockname()[1]
    return port


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """
    Remove every restreamer variable from the environment.

    Each variable is set then deleted so monkeypatch also removes anything
    load_dotenv() adds during the test. RESTREAM_ENV_FILE points at a file
    that does not exist.
    """
    for name in RESTREAM_ENV_VARS:
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    monkeypatch.setenv("RESTREAM_ENV_FILE", str(tmp_path / "absent.env"))
    return monkeypatch


@pytest.fixture
def asset_dir(tmp_path):
    """Directory holding 00.mp4 through 60.mp4."""
    return create_asset_dir(tmp_path / "assets")


@pytest.fixture
def video_pool(asset_dir):
    return VideoPool.from_directory(str(asset_dir))


@pytest.fixture
def scripted_rng():
    return ScriptedRandom()


@pytest.fixture
def selector(video_pool, scripted_rng):
    return VideoSelector(video_pool, rng=scripted_rng)


@pytest.fixture
def fake_launcher():
    return FakeLauncher()


@pytest.fixture
def manual_scheduler():
    return ManualScheduler()


@pytest.fixture
def restart_policy():
    return RestartPolicy(end_delay_sec=2.0, backoff_schedule_ms=[5000])


@pytest.fixture
def fatal_messages():
    return []


@pytest.fixture
def supervisor(selector, fake_launcher, restart_policy, manual_scheduler, fatal_messages):
    """StreamSupervisor wired to fakes."""
    supervisor = StreamSupervisor(
        selector,
        launcher=fake_launcher,
        policy=restart_policy,
        scheduler=manual_scheduler,
        supersede_grace_sec=5.0,
        on_fatal=fatal_messages.append,
    )
    yield supervisor
    supervisor.stop()


@pytest.fixture
def stream_config():
    return StreamConfig(destination_url="rtmp://a.rtmp.youtube.com/live2", stream_key="abcd-efgh-ijkl")


@pytest.fixture
def restream_config(asset_dir):
    """Validated config pointing at the test asset directory."""
    return RestreamConfig(
        stream_url="rtmp://a.rtmp.youtube.com/live2",
        stream_key="abcd-efgh-ijkl",
        host="127.0.0.1",
        port=find_free_port(),
        asset_dir=str(asset_dir),
        start_timeout_sec=5,
    )
