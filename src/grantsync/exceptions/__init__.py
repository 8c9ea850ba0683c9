from grantsync.exceptions.handlers import (
    ConfigurationError,
    GrantSyncException,
    RebuildError,
    RegistryNotReadyError,
    ValidationError,
)

__all__ = [
    "GrantSyncException",
    "ValidationError",
    "ConfigurationError",
    "RebuildError",
    "RegistryNotReadyError",
]
