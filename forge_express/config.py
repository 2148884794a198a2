"""Configuration management for Forge Express.

This module provides the Config class that manages application configuration,
including environment variables, file-based config, and runtime overrides.
"""

import os
from dataclasses import dataclass, field
from functools import wraps
from pathlib import Path
from typing import Any, Callable, Dict, List, Type, Union

import yaml


def validate_config(func):
    """Decorator to validate configuration values after a mutation."""
    @wraps(func)
    def wrapper(self, *args, **kwargs):
        result = func(self, *args, **kwargs)
        self._validate()
        return result
    return wrapper


@dataclass
class ConfigValue:
    """Configuration value with type information and validation."""
    value: Any
    type: Type
    required: bool = True
    validators: List[Callable[[Any], None]] = field(default_factory=list)

    def validate(self, key: str = "") -> None:
        """Validate the configuration value."""
        if self.required and self.value is None:
            raise ValueError(f"Required configuration value is missing: {key}")
        if self.value is not None and not isinstance(self.value, self.type):
            raise TypeError(f"{key}: expected {self.type.__name__}, got {type(self.value).__name__}")
        for validator in self.validators:
            validator(self.value)


def _port_in_range(value: int) -> None:
    if not 0 <= value <= 65535:
        raise ValueError(f"Port out of range: {value}")


class Config:
    """Configuration for Forge Express applications.

    Values come from, in increasing precedence: built-in defaults, a YAML
    file passed to ``load_file``, environment variables, and ``set``.
    Nested sections are addressed with a double underscore, e.g.
    ``config.get("http__port")``; in the environment the same key is
    ``FORGE_EXPRESS_HTTP_PORT``.
    """

    def __init__(self, env_prefix: str = "FORGE_EXPRESS_") -> None:
        """Initialize a new configuration instance.

        Args:
            env_prefix: Prefix for environment variables.
        """
        self._env_prefix = env_prefix
        self._values: Dict[str, ConfigValue] = {}
        self._load_defaults()
        self.load_env()

    def _load_defaults(self) -> None:
        defaults = {
            "debug": ConfigValue(False, bool, False),
            "env": ConfigValue("development", str, False),
            "secret_key": ConfigValue("", str, False),
            "log_level": ConfigValue("INFO", str, False),
            "http": {
                "host": ConfigValue("0.0.0.0", str, False),
                "port": ConfigValue(3000, int, False, [_port_in_range]),
                "etag": ConfigValue(True, bool, False),
            },
            "router": {
                "case_sensitive": ConfigValue(False, bool, False),
                "strict": ConfigValue(False, bool, False),
            },
            "views": {
                "path": ConfigValue("views", str, False),
                "extension": ConfigValue("html", str, False),
            },
        }
        self._values = self._flatten_config(defaults)

    def _flatten_config(self, config: Dict[str, Any], prefix: str = "") -> Dict[str, Any]:
        """Flatten nested configuration into a flat dictionary."""
        result = {}
        for key, value in config.items():
            full_key = f"{prefix}{key}" if prefix else key
            if isinstance(value, dict):
                result.update(self._flatten_config(value, f"{full_key}__"))
            else:
                result[full_key] = value
        return result

    def _unflatten_config(self, config: Dict[str, ConfigValue]) -> Dict[str, Any]:
        """Unflatten configuration into a nested dictionary."""
        result: Dict[str, Any] = {}
        for key, value in config.items():
            parts = key.split("__")
            current = result
            for part in parts[:-1]:
                current = current.setdefault(part, {})
            current[parts[-1]] = value.value
        return result

    @validate_config
    def load_file(self, path: Union[str, Path]) -> None:
        """Load configuration from a YAML file.

        Unknown keys are ignored.

        Args:
            path: Path to the configuration file.

        Raises:
            FileNotFoundError: If the file does not exist.
            ValueError: If the file does not contain a mapping.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(path, "r") as f:
            config = yaml.safe_load(f)

        if not isinstance(config, dict):
            raise ValueError("Configuration file must contain a dictionary")

        for key, value in self._flatten_config(config).items():
            if key in self._values:
                self._values[key].value = value

    @validate_config
    def load_env(self) -> None:
        """Load configuration from environment variables."""
        for key, config_value in self._values.items():
            env_key = key.upper().replace("__", "_")
            value = os.getenv(f"{self._env_prefix}{env_key}")
            if value is not None:
                config_value.value = self._convert_value(value, config_value.type)

    def _convert_value(self, value: str, target_type: Type) -> Any:
        """Convert a string value to the target type."""
        if target_type == bool:
            return value.lower() in ("true", "1", "yes")
        elif target_type == int:
            return int(value)
        elif target_type == float:
            return float(value)
        elif target_type == str:
            return value
        else:
            raise TypeError(f"Unsupported type: {target_type}")

    def _validate(self) -> None:
        for key, value in self._values.items():
            value.validate(key)

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value."""
        if key in self._values:
            return self._values[key].value
        return default

    @validate_config
    def set(self, key: str, value: Any) -> None:
        """Set a configuration value, adding the key if it is new."""
        if key in self._values:
            self._values[key].value = value
        else:
            self._values[key] = ConfigValue(value, type(value), False)

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to a nested dictionary."""
        return self._unflatten_config(self._values)

    @property
    def debug(self) -> bool:
        """Get debug mode status."""
        return self.get("debug", False)

    @property
    def env(self) -> str:
        """Get current environment."""
        return self.get("env", "development")

    @property
    def secret_key(self) -> str:
        """Get the secret used to sign cookies."""
        return self.get("secret_key", "")

    @property
    def log_level(self) -> str:
        """Get log level."""
        return self.get("log_level", "INFO")

    @property
    def http(self) -> Dict[str, Any]:
        """Get HTTP server configuration."""
        return self.to_dict().get("http", {})

    @property
    def router(self) -> Dict[str, Any]:
        """Get router matching configuration."""
        return self.to_dict().get("router", {})

    @property
    def views(self) -> Dict[str, Any]:
        """Get view rendering configuration."""
        return self.to_dict().get("views", {})
