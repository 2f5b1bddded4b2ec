"""Core modules: configuration, logging and the exception hierarchy."""

from .exceptions import (
    AmbiguousDatabaseError,
    ConfigurationError,
    ConnectionFailureError,
    DatabaseAlreadyExistsError,
    DatabaseLookupError,
    DatabaseNotFoundError,
    InvalidConfigError,
    NoDatabasesConfiguredError,
    PersistenceError,
    PgMcpError,
)

__all__ = [
    "PgMcpError",
    "ConfigurationError",
    "InvalidConfigError",
    "PersistenceError",
    "DatabaseLookupError",
    "DatabaseNotFoundError",
    "DatabaseAlreadyExistsError",
    "NoDatabasesConfiguredError",
    "AmbiguousDatabaseError",
    "ConnectionFailureError",
]
