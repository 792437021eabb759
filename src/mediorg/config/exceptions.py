"""Custom exceptions for configuration management."""


class ConfigError(Exception):
    """Raised when mediorg configuration data cannot be loaded or validated."""
