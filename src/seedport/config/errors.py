"""Configuration error definitions."""

from __future__ import annotations


class ConfigurationError(RuntimeError):
    """Raised when a configuration value is present but unusable."""


class MissingConfigurationError(ConfigurationError):
    """Raised when a required setting is absent or blank."""


class InvalidConfigurationValueError(ConfigurationError):
    """Raised when an environment value cannot be converted to its expected type."""

    def __init__(self, name: str, value: str, expected: str) -> None:
        super().__init__(f"{name}={value!r} is not a valid {expected}")
        self.name = name
        self.value = value
