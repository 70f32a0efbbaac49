"""
Unit tests for safechat.config module.

Created by SafeChat contributors

Tests default values, TOML loading, environment overrides and validation.
"""

import pytest

from safechat.config import DEFAULT_CONFIG, Config
from safechat.errors import ConfigError, ErrorCode


class TestDefaults:
    """Built-in configuration."""

    def test_defaults_without_file(self, temp_dir):
        config = Config(temp_dir / "missing.toml", env={})

        assert config.get("server", "port") == 3002
        assert config.get("server", "max_frame_size") == 5 * 1024 * 1024
        assert config.get("rooms", "sweep_interval") == 3600
        assert config.get("rooms", "retention") == 86400
        assert config.get("client", "join_timeout") == 10.0
        assert config.get("logging", "level") == "INFO"

    def test_defaults_not_shared(self, temp_dir):
        config = Config(temp_dir / "missing.toml", env={})
        config.set("server", "port", 4000)
        assert DEFAULT_CONFIG["server"]["port"] == 3002

    def test_get_missing(self, test_config):
        assert test_config.get("nope", "nothing") is None
        assert test_config.get("server", "nothing", "fallback") == "fallback"

    def test_to_dict_is_copy(self, test_config):
        data = test_config.to_dict()
        data["server"]["port"] = 1
        assert test_config.get("server", "port") == 3002


class TestFileLoading:
    """TOML file handling."""

    def test_file_overrides_defaults(self, temp_dir):
        path = temp_dir / "config.toml"
        path.write_text('[server]\nport = 4500\n\n[rooms]\nretention = 600\n')

        config = Config(path, env={})

        assert config.get("server", "port") == 4500
        assert config.get("server", "host") == "0.0.0.0"
        assert config.get("rooms", "retention") == 600
        assert config.get("rooms", "sweep_interval") == 3600

    def test_unparseable_file(self, temp_dir):
        path = temp_dir / "config.toml"
        path.write_text("[server\nport = ")

        with pytest.raises(ConfigError) as exc_info:
            Config(path, env={})
        assert exc_info.value.code == ErrorCode.E704_CONFIG_PARSE_ERROR

    def test_invalid_port_in_file(self, temp_dir):
        path = temp_dir / "config.toml"
        path.write_text("[server]\nport = 80\n")

        with pytest.raises(ConfigError) as exc_info:
            Config(path, env={})
        assert exc_info.value.code == ErrorCode.E703_INVALID_CONFIG

    def test_non_positive_interval(self, temp_dir):
        path = temp_dir / "config.toml"
        path.write_text("[rooms]\nsweep_interval = 0\n")

        with pytest.raises(ConfigError):
            Config(path, env={})


class TestEnvironmentOverrides:
    """SAFECHAT_<SECTION>_<KEY> variables."""

    def test_int_override(self, temp_dir):
        config = Config(temp_dir / "missing.toml", env={"SAFECHAT_SERVER_PORT": "4000"})
        assert config.get("server", "port") == 4000

    def test_float_override(self, temp_dir):
        config = Config(temp_dir / "missing.toml", env={"SAFECHAT_CLIENT_JOIN_TIMEOUT": "2.5"})
        assert config.get("client", "join_timeout") == 2.5

    def test_string_override(self, temp_dir):
        config = Config(temp_dir / "missing.toml", env={"SAFECHAT_LOGGING_LEVEL": "DEBUG"})
        assert config.get("logging", "level") == "DEBUG"

    def test_env_beats_file(self, temp_dir):
        path = temp_dir / "config.toml"
        path.write_text("[server]\nport = 4500\n")

        config = Config(path, env={"SAFECHAT_SERVER_PORT": "4600"})
        assert config.get("server", "port") == 4600

    def test_bad_value(self, temp_dir):
        with pytest.raises(ConfigError) as exc_info:
            Config(temp_dir / "missing.toml", env={"SAFECHAT_SERVER_PORT": "lots"})
        assert exc_info.value.code == ErrorCode.E703_INVALID_CONFIG

    def test_unrelated_variables_ignored(self, temp_dir):
        config = Config(temp_dir / "missing.toml", env={"SAFECHAT_UNKNOWN_KEY": "1", "PATH": "/bin"})
        assert config.get("server", "port") == 3002
