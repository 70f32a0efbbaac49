"""
SafeChat - Configuration Management

This module handles loading, merging, and managing configuration from
TOML files and environment variables. Supports default values and
runtime configuration updates.

Author: SafeChat contributors
Version: 1.0.0
"""

import copy
import os
import sys
from pathlib import Path
from typing import Any, Dict, Optional

# Python 3.11+ has tomllib built-in, older versions need tomli
if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from .constants import (
    CONFIG_FILENAME,
    DEFAULT_DATA_DIR,
    DEFAULT_HOST,
    DEFAULT_SERVER_PORT,
    ENV_PREFIX,
    JOIN_TIMEOUT,
    MAX_DISPLAY_NAME_LENGTH,
    MAX_FRAME_SIZE,
    OUTBOUND_QUEUE_SIZE,
    ROOM_RETENTION,
    ROOM_SWEEP_INTERVAL,
)
from .errors import ConfigError, ErrorCode
from .utils import validate_port

# Default configuration dictionary
DEFAULT_CONFIG: Dict[str, Any] = {
    "server": {
        "host": DEFAULT_HOST,
        "port": DEFAULT_SERVER_PORT,
        "max_frame_size": MAX_FRAME_SIZE,
        "outbound_queue_size": OUTBOUND_QUEUE_SIZE,
    },
    "rooms": {
        "sweep_interval": ROOM_SWEEP_INTERVAL,
        "retention": ROOM_RETENTION,
        "max_display_name_length": MAX_DISPLAY_NAME_LENGTH,
    },
    "client": {
        "join_timeout": float(JOIN_TIMEOUT),
    },
    "logging": {
        "level": "INFO",
    },
}


class Config:
    """Configuration manager for SafeChat.

    Loads configuration from TOML files, merges with defaults,
    and applies environment variable overrides.

    Attributes:
        config_path: Path to the configuration file
        data: Configuration dictionary
    """

    def __init__(self, config_path: Optional[Path] = None, env: Optional[Dict[str, str]] = None):
        """Initialize configuration manager.

        Args:
            config_path: Path to configuration file (optional)
                If not provided, uses default location
            env: Environment mapping used for overrides (defaults to os.environ)
        """
        if config_path is None:
            data_dir = Path(DEFAULT_DATA_DIR).expanduser()
            config_path = data_dir / CONFIG_FILENAME

        self.config_path = Path(config_path)
        self._env = os.environ if env is None else env
        self.data = self._load_config()
        self._validate()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from file and merge with defaults.

        Returns:
            Merged configuration dictionary

        Raises:
            ConfigError: If configuration loading or parsing fails
        """
        config = copy.deepcopy(DEFAULT_CONFIG)

        if self.config_path.exists():
            try:
                with open(self.config_path, "rb") as f:
                    file_config = tomllib.load(f)
            except (OSError, tomllib.TOMLDecodeError) as e:
                raise ConfigError(
                    ErrorCode.E704_CONFIG_PARSE_ERROR,
                    f"Failed to parse configuration file: {e}",
                    {"path": str(self.config_path), "error": str(e)},
                )

            config = self._merge_config(config, file_config)

        return self._apply_env_overrides(config)

    def _merge_config(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge override config into base config.

        Args:
            base: Base configuration dictionary
            override: Override configuration dictionary

        Returns:
            Merged configuration dictionary
        """
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_config(result[key], value)
            else:
                result[key] = value

        return result

    def _apply_env_overrides(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides to configuration.

        Environment variables follow the pattern: SAFECHAT_SECTION_KEY
        For example: SAFECHAT_SERVER_PORT=4000

        Args:
            config: Base configuration dictionary

        Returns:
            Configuration with environment overrides applied
        """
        for section, settings in config.items():
            if not isinstance(settings, dict):
                continue

            for key, current in settings.items():
                env_var = f"{ENV_PREFIX}_{section.upper()}_{key.upper()}"
                env_value = self._env.get(env_var)

                if env_value is None:
                    continue

                # Convert environment variable to the type of the current value
                try:
                    if isinstance(current, bool):
                        settings[key] = env_value.lower() in ("true", "1", "yes")
                    elif isinstance(current, int):
                        settings[key] = int(env_value)
                    elif isinstance(current, float):
                        settings[key] = float(env_value)
                    else:
                        settings[key] = env_value
                except ValueError:
                    raise ConfigError(
                        ErrorCode.E703_INVALID_CONFIG,
                        f"Invalid value for {env_var}: {env_value!r}",
                        {"variable": env_var, "value": env_value},
                    )

        return config

    def _validate(self) -> None:
        """Reject values the server cannot run with.

        Raises:
            ConfigError: If a value is out of range
        """
        port = self.get("server", "port")
        if not validate_port(port):
            raise ConfigError(
                ErrorCode.E703_INVALID_CONFIG, f"Invalid server port: {port}", {"port": port}
            )

        for section, key in (
            ("rooms", "sweep_interval"),
            ("rooms", "retention"),
            ("client", "join_timeout"),
            ("server", "max_frame_size"),
            ("server", "outbound_queue_size"),
        ):
            value = self.get(section, key)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
                raise ConfigError(
                    ErrorCode.E703_INVALID_CONFIG,
                    f"{section}.{key} must be a positive number, got {value!r}",
                    {"section": section, "key": key},
                )

    def get(self, section: str, key: str, default: Any = None) -> Any:
        """Get a configuration value.

        Args:
            section: Configuration section name
            key: Configuration key name
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        return self.data.get(section, {}).get(key, default)

    def set(self, section: str, key: str, value: Any) -> None:
        """Set a configuration value.

        Args:
            section: Configuration section name
            key: Configuration key name
            value: Value to set
        """
        if section not in self.data:
            self.data[section] = {}

        self.data[section][key] = value

    def to_dict(self) -> Dict[str, Any]:
        """Get configuration as dictionary.

        Returns:
            Configuration dictionary
        """
        return copy.deepcopy(self.data)
