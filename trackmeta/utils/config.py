"""
Configuration management for the track analysis pipeline.

Loads and validates configuration from YAML files with environment
variable interpolation support.
"""

import copy
import os
import re
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

from trackmeta.utils.errors import ConfigurationError


class ConfigManager:
    """
    Manages application configuration loaded from YAML files.

    Features:
    - YAML configuration loading
    - Environment variable interpolation (${VAR_NAME})
    - Nested key access with dot notation
    - Default value support
    - Configuration validation
    """

    def __init__(self, config_dict: Optional[Dict[str, Any]] = None):
        """
        Initialize configuration manager.

        Args:
            config_dict: Optional pre-loaded configuration dictionary
        """
        self._config: Dict[str, Any] = config_dict or {}
        self._env_pattern = re.compile(r'\$\{([^}]+)\}')

    @classmethod
    def from_file(cls, file_path: Path) -> "ConfigManager":
        """
        Create ConfigManager from YAML file.

        Args:
            file_path: Path to YAML configuration file

        Returns:
            ConfigManager: Initialized with file contents

        Raises:
            ConfigurationError: If file cannot be loaded or parsed
        """
        if not file_path.exists():
            raise ConfigurationError(
                f"Configuration file not found: {file_path}",
                config_key=str(file_path)
            )

        try:
            with open(file_path, 'r') as f:
                config_dict = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Failed to parse YAML configuration: {e}",
                config_key=str(file_path)
            )

        if not isinstance(config_dict, dict):
            raise ConfigurationError(
                "Configuration root must be a mapping",
                config_key=str(file_path)
            )

        manager = cls(config_dict)
        manager._interpolate_env_vars()
        return manager

    def _interpolate_env_vars(self) -> None:
        """Replace ${ENV_VAR} patterns with environment variable values."""
        self._config = self._interpolate_value(self._config)

    def _interpolate_value(self, value: Any) -> Any:
        """Recursively interpolate environment variables in nested values."""
        if isinstance(value, dict):
            return {key: self._interpolate_value(item) for key, item in value.items()}
        if isinstance(value, list):
            return [self._interpolate_value(item) for item in value]
        if isinstance(value, str):
            return self._interpolate_string(value)
        return value

    def _interpolate_string(self, s: str) -> Any:
        """
        Replace ${ENV_VAR} with environment variable value.

        A string that is exactly one reference is parsed as YAML so that
        numbers and booleans keep their type.
        """
        def replace(match: re.Match) -> str:
            value = os.environ.get(match.group(1))
            if value is None:
                return match.group(0)  # Keep original if not found
            return value

        full = self._env_pattern.fullmatch(s)
        if full and full.group(1) in os.environ:
            return yaml.safe_load(os.environ[full.group(1)])
        return self._env_pattern.sub(replace, s)

    def get(
        self,
        key: str,
        default: Any = None,
        required: bool = False
    ) -> Any:
        """
        Get configuration value using dot notation.

        Args:
            key: Configuration key (supports dot notation: "analysis.timeout")
            default: Default value if key not found
            required: If True, raise error when key not found

        Returns:
            Configuration value or default

        Raises:
            ConfigurationError: If required key is not found
        """
        value: Any = self._config

        for k in key.split('.'):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                if required:
                    raise ConfigurationError(
                        f"Required configuration key not found: {key}",
                        config_key=key
                    )
                return default

        return value

    def get_section(self, key: str) -> Dict[str, Any]:
        """
        Get an entire configuration section as a dictionary.

        Args:
            key: Section key (e.g., "tempo", "download")

        Returns:
            Dictionary of section values (empty dict if not found)
        """
        value = self.get(key, default={})
        if not isinstance(value, dict):
            return {}
        return value

    def set(self, key: str, value: Any) -> None:
        """
        Set a configuration value using dot notation.

        Example:
            config.set("memory.max_mb", 1024)
        """
        keys = key.split('.')
        current = self._config

        for k in keys[:-1]:
            if k not in current or not isinstance(current[k], dict):
                current[k] = {}
            current = current[k]

        current[keys[-1]] = value

    def to_dict(self) -> Dict[str, Any]:
        """Return configuration as dictionary."""
        return copy.deepcopy(self._config)

    def validate(self, schema: Dict[str, Any]) -> None:
        """
        Validate configuration against a schema.

        Args:
            schema: Dictionary defining required keys and their types

        Raises:
            ConfigurationError: If validation fails

        Schema format:
            {
                "analysis.timeout": {"type": (int, float), "required": True},
                "fallback.enabled": {"type": bool}
            }
        """
        for key, rules in schema.items():
            value = self.get(key)
            required = rules.get("required", False)
            expected_type = rules.get("type")

            if value is None:
                if required:
                    raise ConfigurationError(
                        f"Required configuration missing: {key}",
                        config_key=key
                    )
                continue

            if expected_type and not isinstance(value, expected_type):
                type_name = (
                    " or ".join(t.__name__ for t in expected_type)
                    if isinstance(expected_type, tuple) else expected_type.__name__
                )
                raise ConfigurationError(
                    f"Invalid type for {key}: expected {type_name}, "
                    f"got {type(value).__name__}",
                    config_key=key
                )

            minimum = rules.get("min")
            if minimum is not None and value < minimum:
                raise ConfigurationError(
                    f"Invalid value for {key}: must be >= {minimum}, got {value}",
                    config_key=key
                )


# Types and lower bounds of every recognized numeric/boolean option
CONFIG_SCHEMA: Dict[str, Dict[str, Any]] = {
    "audio.max_file_size": {"type": int, "min": 1},
    "audio.min_file_size": {"type": int, "min": 0},
    "analysis.timeout": {"type": (int, float), "min": 0},
    "analysis.classification_timeout": {"type": (int, float), "min": 0},
    "analysis.min_duration": {"type": (int, float), "min": 0},
    "analysis.max_workers": {"type": int, "min": 1},
    "download.timeout": {"type": (int, float), "min": 0},
    "download.max_attempts": {"type": int, "min": 1},
    "download.base_delay": {"type": (int, float), "min": 0},
    "download.decode_timeout": {"type": (int, float), "min": 0},
    "memory.max_mb": {"type": (int, float), "min": 1},
    "memory.check_interval": {"type": (int, float), "min": 0},
    "memory.enabled": {"type": bool},
    "tempo.min_duration": {"type": (int, float), "min": 0},
    "tempo.max_duration": {"type": (int, float), "min": 0},
    "tempo.timeout": {"type": (int, float), "min": 0},
    "key.min_duration": {"type": (int, float), "min": 0},
    "key.max_duration": {"type": (int, float), "min": 0},
    "key.timeout": {"type": (int, float), "min": 0},
    "key.confidence_threshold": {"type": (int, float), "min": 0},
    "fallback.enabled": {"type": bool},
}


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load configuration from file merged over the defaults.

    Args:
        config_path: Optional path to config file.
                    If None, tries "config/config.yaml"

    Returns:
        Dict[str, Any]: Configuration dictionary
    """
    env_file = Path.cwd() / ".env"
    if env_file.exists():
        load_dotenv(env_file)

    if config_path is None:
        default_paths = [
            Path("config/config.yaml"),
            Path("config.yaml"),
            Path(__file__).parent.parent.parent / "config" / "config.yaml",
        ]

        for path in default_paths:
            if path.exists():
                config_path = str(path)
                break

    config = get_default_config()

    if config_path:
        manager = ConfigManager.from_file(Path(config_path))
        config = _deep_merge(config, manager.to_dict())

    ConfigManager(config).validate(CONFIG_SCHEMA)
    return config


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Merge override into a copy of base, recursing into nested mappings."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def get_default_config() -> Dict[str, Any]:
    """Return default configuration values."""
    return {
        "audio": {
            "max_file_size": 52428800,  # 50MB
            "min_file_size": 100,
        },
        "analysis": {
            "timeout": 30.0,
            "classification_timeout": 30.0,
            "min_duration": 10.0,
            "max_workers": 4,
        },
        "download": {
            "timeout": 60.0,
            "max_attempts": 3,
            "base_delay": 1.0,
            "decode_timeout": 30.0,
        },
        "memory": {
            "enabled": True,
            "max_mb": 512,
            "check_interval": 1.0,
        },
        "tempo": {
            "min_duration": 5.0,
            "max_duration": 600.0,
            "timeout": 30.0,
        },
        "key": {
            "min_duration": 10.0,
            "max_duration": 600.0,
            "timeout": 30.0,
            "confidence_threshold": 0.6,
        },
        "fallback": {
            "enabled": False,
        },
        "logging": {
            "level": "INFO",
            "format": "json",
        },
    }
