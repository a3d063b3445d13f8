"""
Contract tests for restreamer configuration.

Required variables gate startup; everything else has a default. The .env
file is loaded with python-dotenv without overriding the real environment.
"""

import dataclasses

import pytest

from restreamer.config import RestreamConfig, StreamConfig, _parse_backoff_schedule, load_config
from restreamer.errors import ConfigMissing


class TestRequiredVariables:
    """YOUTUBE_STREAM_URL and YOUTUBE_STREAM_KEY are required."""

    def test_both_missing(self, clean_env):
        with pytest.raises(ConfigMissing) as exc_info:
            RestreamConfig.load_config()

        assert exc_info.value.missing == ["YOUTUBE_STREAM_URL", "YOUTUBE_STREAM_KEY"]
        assert "YOUTUBE_STREAM_URL" in str(exc_info.value)

    def test_url_missing(self, clean_env):
        clean_env.setenv("YOUTUBE_STREAM_KEY", "abcd")

        with pytest.raises(ConfigMissing) as exc_info:
            RestreamConfig.load_config()

        assert exc_info.value.missing == ["YOUTUBE_STREAM_URL"]

    def test_blank_value_counts_as_missing(self, clean_env):
        clean_env.setenv("YOUTUBE_STREAM_URL", "rtmp://a.rtmp.youtube.com/live2")
        clean_env.setenv("YOUTUBE_STREAM_KEY", "   ")

        with pytest.raises(ConfigMissing):
            RestreamConfig.load_config()

    def test_config_missing_is_value_error(self, clean_env):
        with pytest.raises(ValueError):
            load_config()


class TestDefaults:
    """Optional settings fall back to defaults."""

    @pytest.fixture
    def env(self, clean_env):
        clean_env.setenv("YOUTUBE_STREAM_URL", "rtmp://a.rtmp.youtube.com/live2")
        clean_env.setenv("YOUTUBE_STREAM_KEY", "abcd-efgh")
        return clean_env

    def test_defaults(self, env):
        config = RestreamConfig.load_config()

        assert config.stream_url == "rtmp://a.rtmp.youtube.com/live2"
        assert config.stream_key == "abcd-efgh"
        assert config.host == "0.0.0.0"
        assert config.port == 3000
        assert config.asset_dir == "./assets"
        assert config.pool_size == 61
        assert config.file_pattern == "{index:02d}.mp4"
        assert config.end_delay_ms == 2000
        assert config.restart_backoff_ms == [5000]
        assert config.max_restarts == 0
        assert config.restart_on_error is True
        assert config.autostart is True
        assert config.log_level == "INFO"

    def test_port_from_platform_variable(self, env):
        env.setenv("PORT", "8080")
        assert RestreamConfig.load_config().port == 8080

    def test_restream_port_wins_over_port(self, env):
        env.setenv("PORT", "8080")
        env.setenv("RESTREAM_PORT", "9090")
        assert RestreamConfig.load_config().port == 9090

    def test_overrides(self, env):
        env.setenv("RESTREAM_POOL_SIZE", "10")
        env.setenv("RESTREAM_RESTART_BACKOFF_MS", "1000, 5000, 30000")
        env.setenv("RESTREAM_MAX_RESTARTS", "5")
        env.setenv("RESTREAM_RESTART_ON_ERROR", "false")
        env.setenv("RESTREAM_AUTOSTART", "0")

        config = RestreamConfig.load_config()

        assert config.pool_size == 10
        assert config.restart_backoff_ms == [1000, 5000, 30000]
        assert config.max_restarts == 5
        assert config.restart_on_error is False
        assert config.autostart is False

    @pytest.mark.parametrize("name,value", [
        ("RESTREAM_PORT", "not-a-port"),
        ("RESTREAM_PORT", "70000"),
        ("RESTREAM_POOL_SIZE", "0"),
        ("RESTREAM_RESTART_BACKOFF_MS", "5000,-1"),
        ("RESTREAM_FILE_PATTERN", "{name}.mp4"),
        ("RESTREAM_LOG_LEVEL", "CHATTY"),
        ("RESTREAM_START_TIMEOUT_SEC", "0"),
    ])
    def test_invalid_values_rejected(self, env, name, value):
        env.setenv(name, value)
        with pytest.raises(ValueError):
            RestreamConfig.load_config()


class TestEnvFile:
    """Optional .env file loading."""

    def test_values_loaded_from_env_file(self, clean_env, tmp_path):
        env_file = tmp_path / "restream.env"
        env_file.write_text(
            "YOUTUBE_STREAM_URL=rtmp://b.rtmp.youtube.com/live2\n"
            "YOUTUBE_STREAM_KEY=from-file\n"
            "RESTREAM_PORT=4000\n"
        )
        clean_env.setenv("RESTREAM_ENV_FILE", str(env_file))

        config = RestreamConfig.load_config()

        assert config.stream_url == "rtmp://b.rtmp.youtube.com/live2"
        assert config.stream_key == "from-file"
        assert config.port == 4000

    def test_environment_overrides_env_file(self, clean_env, tmp_path):
        env_file = tmp_path / "restream.env"
        env_file.write_text(
            "YOUTUBE_STREAM_URL=rtmp://b.rtmp.youtube.com/live2\n"
            "YOUTUBE_STREAM_KEY=from-file\n"
        )
        clean_env.setenv("RESTREAM_ENV_FILE", str(env_file))
        clean_env.setenv("YOUTUBE_STREAM_KEY", "from-env")

        assert RestreamConfig.load_config().stream_key == "from-env"


class TestStreamConfig:
    """Tests for StreamConfig."""

    def test_destination_joins_url_and_key(self):
        stream = StreamConfig(destination_url="rtmp://a.rtmp.youtube.com/live2/", stream_key="abcd")
        assert stream.destination == "rtmp://a.rtmp.youtube.com/live2/abcd"

    def test_describe_hides_key(self):
        stream = StreamConfig(destination_url="rtmp://host/live2", stream_key="abcd-efgh")
        assert stream.describe() == {"stream_url": "rtmp://host/live2", "stream_key_length": 9}

    def test_key_override(self):
        config = RestreamConfig(stream_url="rtmp://host/live2", stream_key="default")
        assert config.stream_config().stream_key == "default"
        assert config.stream_config("override").stream_key == "override"

    def test_immutable(self):
        stream = StreamConfig(destination_url="rtmp://host/live2", stream_key="abcd")
        with pytest.raises(dataclasses.FrozenInstanceError):
            stream.stream_key = "other"


class TestBackoffParsing:

    def test_parse(self):
        assert _parse_backoff_schedule("1000,2000") == [1000, 2000]

    @pytest.mark.parametrize("value", ["", "abc", "1000,,2000", "0"])
    def test_rejects_bad_schedules(self, value):
        with pytest.raises(ValueError):
            _parse_backoff_schedule(value)
