from __future__ import annotations


class ConfigError(Exception):
    """Base class for registry errors. Fatal to the current operation; never retried."""


class ConfigNotFound(ConfigError):
    """Raised when the registry document does not exist."""


class ConfigParseError(ConfigError):
    """Raised when the registry document is structurally or semantically invalid."""


class ClientNotFound(ConfigError):
    """Raised when a client key is not registered."""


class EnvironmentNotFound(ConfigError):
    """Raised when a client has no such environment."""


class DuplicateClient(ConfigError):
    """Raised when adding a client whose key is already registered."""


class InvalidFunctionReference(ConfigError):
    """Raised when an environment lists a function with no function mapping."""
