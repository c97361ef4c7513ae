"""
Configuration management for the sample ingestion pipeline.

Loads configuration from YAML with ${ENV_VAR} interpolation and merges it
over the built-in defaults, so a partial file only overrides what it names.
"""

import copy
import os
import re
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from sample_pipeline.utils.errors import ConfigurationError


class ConfigManager:
    """
    Manages configuration loaded from YAML files.

    Features:
    - YAML loading
    - Environment variable interpolation (${VAR_NAME})
    - Nested key access with dot notation
    - Type validation against a flat schema
    """

    def __init__(self, config_dict: Optional[Dict[str, Any]] = None):
        self._config: Dict[str, Any] = config_dict or {}
        self._env_pattern = re.compile(r'\$\{([^}]+)\}')

    @classmethod
    def from_file(cls, file_path: Path) -> "ConfigManager":
        """
        Create a ConfigManager from a YAML file.

        Raises:
            ConfigurationError: If the file is missing or not valid YAML
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
            ) from e

        if not isinstance(config_dict, dict):
            raise ConfigurationError(
                f"Configuration root must be a mapping: {file_path}",
                config_key=str(file_path)
            )

        manager = cls(config_dict)
        manager._interpolate_env_vars()
        return manager

    def _interpolate_env_vars(self) -> None:
        self._config = self._interpolate(self._config)

    def _interpolate(self, value: Any) -> Any:
        if isinstance(value, dict):
            return {k: self._interpolate(v) for k, v in value.items()}
        if isinstance(value, list):
            return [self._interpolate(item) for item in value]
        if isinstance(value, str):
            return self._interpolate_string(value)
        return value

    def _interpolate_string(self, s: str) -> str:
        """Replace ${ENV_VAR} with its value; unknown variables are left as-is."""
        def replace(match: re.Match) -> str:
            value = os.environ.get(match.group(1))
            if value is None:
                return match.group(0)
            return value

        return self._env_pattern.sub(replace, s)

    def get(
        self,
        key: str,
        default: Any = None,
        required: bool = False
    ) -> Any:
        """
        Get a configuration value using dot notation.

        Example:
            config.get("upload.max_file_size", default=52428800)
            config.get("storage.root", required=True)
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
        """Return a whole section as a dict (empty if missing)."""
        value = self.get(key, default={})
        if not isinstance(value, dict):
            return {}
        return value

    def set(self, key: str, value: Any) -> None:
        """Set a configuration value using dot notation."""
        keys = key.split('.')
        current = self._config

        for k in keys[:-1]:
            if not isinstance(current.get(k), dict):
                current[k] = {}
            current = current[k]

        current[keys[-1]] = value

    def merge_defaults(self, defaults: Dict[str, Any]) -> None:
        """Fill in every key missing from the loaded config with ``defaults``."""
        self._config = _deep_merge(defaults, self._config)

    def to_dict(self) -> Dict[str, Any]:
        """Return a deep copy of the configuration."""
        return copy.deepcopy(self._config)

    def validate(self, schema: Dict[str, Any]) -> None:
        """
        Validate configuration against a schema.

        Schema format:
            {
                "batch.concurrency": {"type": int, "required": True},
                "storage.backend": {"type": str, "choices": ["memory", "local"]},
            }

        Raises:
            ConfigurationError: If validation fails
        """
        for key, rules in schema.items():
            value = self.get(key)

            if value is None:
                if rules.get("required", False):
                    raise ConfigurationError(
                        f"Required configuration missing: {key}",
                        config_key=key
                    )
                continue

            expected_type = rules.get("type")
            # bool is an int subclass; never accept it for numeric keys
            if expected_type and (
                not isinstance(value, expected_type)
                or (isinstance(value, bool) and bool not in _as_tuple(expected_type))
            ):
                raise ConfigurationError(
                    f"Invalid type for {key}: expected {_type_names(expected_type)}, "
                    f"got {type(value).__name__}",
                    config_key=key
                )

            choices = rules.get("choices")
            if choices and value not in choices:
                raise ConfigurationError(
                    f"Invalid value for {key}: {value!r} (expected one of {choices})",
                    config_key=key
                )

            minimum = rules.get("min")
            if minimum is not None and value < minimum:
                raise ConfigurationError(
                    f"Invalid value for {key}: {value} is below {minimum}",
                    config_key=key
                )


CONFIG_SCHEMA: Dict[str, Dict[str, Any]] = {
    "upload.max_file_size": {"type": int, "required": True, "min": 1},
    "upload.allowed_mime_types": {"type": list, "required": True},
    "upload.allowed_extensions": {"type": list, "required": True},
    "analysis.waveform_points": {"type": int, "required": True, "min": 1},
    "analysis.fft_size": {"type": int, "min": 32},
    "analysis.key_segments": {"type": int, "min": 1},
    "analysis.max_workers": {"type": int, "min": 1},
    "record.require_bpm": {"type": bool},
    "record.require_key": {"type": bool},
    "batch.concurrency": {"type": int, "required": True, "min": 1},
    "batch.timeouts": {"type": dict},
    "storage.backend": {"type": str, "choices": ["memory", "local"]},
    "storage.root": {"type": str},
    "storage.base_url": {"type": str},
    "pricing.has_wav": {"type": bool},
    "pricing.has_stems": {"type": bool},
    "pricing.has_midi": {"type": bool},
    "pricing.wav_price": {"type": (int, float)},
    "logging.level": {"type": str},
    "logging.format": {"type": str, "choices": ["json", "text"]},
}


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load configuration from file, merged over the defaults.

    Args:
        config_path: Optional path to a YAML file. If None, tries
                     "config/config.yaml" and "config.yaml".

    Returns:
        Dict[str, Any]: Validated configuration dictionary

    Raises:
        ConfigurationError: If an explicit path is missing or the result
                            fails schema validation
    """
    if config_path is None:
        for path in (Path("config/config.yaml"), Path("config.yaml")):
            if path.exists():
                config_path = str(path)
                break

    if config_path:
        manager = ConfigManager.from_file(Path(config_path))
    else:
        manager = ConfigManager()

    manager.merge_defaults(get_default_config())
    manager.validate(CONFIG_SCHEMA)
    return manager.to_dict()


def get_default_config() -> Dict[str, Any]:
    """Return default configuration values."""
    return {
        "upload": {
            "max_file_size": 52428800,  # 50MB
            "allowed_mime_types": [
                "audio/wav", "audio/wave", "audio/x-wav",
                "audio/mpeg", "audio/mp3",
                "audio/aiff", "audio/x-aiff",
            ],
            "allowed_extensions": [".wav", ".mp3", ".aif", ".aiff"],
        },
        "analysis": {
            "waveform_points": 200,
            "fft_size": 4096,
            "key_segments": 8,
            "max_workers": 4,
        },
        "record": {
            "require_bpm": False,
            "require_key": False,
        },
        "batch": {
            "concurrency": 3,
            "timeouts": {
                "decode": 30.0,
                "analysis": 60.0,
                "upload": 60.0,
                "persist": 10.0,
                "delete": 30.0,
            },
        },
        "storage": {
            "backend": "local",
            "root": "uploads",
            "base_url": "/uploads",
        },
        "pricing": {
            "has_wav": True,
            "has_stems": False,
            "has_midi": False,
            "wav_price": 0.99,
            "stems_price": None,
            "midi_price": None,
        },
        "logging": {
            "level": "INFO",
            "format": "text",
            "file": None,
        },
    }


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def _as_tuple(expected_type: Any) -> tuple:
    return expected_type if isinstance(expected_type, tuple) else (expected_type,)


def _type_names(expected_type: Any) -> str:
    return " or ".join(t.__name__ for t in _as_tuple(expected_type))
