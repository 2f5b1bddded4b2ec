"""Custom exception classes for pg-mcp."""

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional


class PgMcpError(Exception):
    """Base exception for pg-mcp."""

    def __init__(
        self, message: str, recoverable: bool = True, details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize pg-mcp error.

        Args:
            message: Error message
            recoverable: Whether the error is recoverable with retry
            details: Additional error details
        """
        self.message = message
        self.recoverable = recoverable
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc).isoformat()
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "recoverable": self.recoverable,
            "details": self.details,
            "timestamp": self.timestamp,
        }


# Configuration Errors
class ConfigurationError(PgMcpError):
    """Configuration error occurred."""

    def __init__(
        self,
        message: str = "Configuration error",
        recoverable: bool = False,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, recoverable, details)


class InvalidConfigError(ConfigurationError):
    """Configuration failed to parse or validate. Never auto-corrected."""

    def __init__(
        self,
        message: str = "Invalid config",
        errors: Optional[List[Dict[str, Any]]] = None,
        path: Optional[str] = None,
    ):
        """
        Initialize invalid config error.

        Args:
            message: Error message
            errors: Validation issues (pydantic ``errors()`` shape)
            path: Backing file the configuration was read from
        """
        self.errors = errors or []
        details: Dict[str, Any] = {}
        if self.errors:
            details["errors"] = self.errors
        if path:
            details["path"] = path
        super().__init__(message, recoverable=False, details=details)


class PersistenceError(ConfigurationError):
    """Reading, writing or renaming the configuration file failed."""

    def __init__(self, message: str = "Failed to persist config", path: Optional[str] = None):
        super().__init__(message, recoverable=True, details={"path": path} if path else {})


# Name-level lookup errors
class DatabaseLookupError(PgMcpError):
    """Base class for database name lookup and CRUD violations."""

    def __init__(
        self,
        message: str,
        available: Optional[Iterable[str]] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.available = sorted(available or [])
        details = dict(details or {})
        details["available"] = self.available
        super().__init__(message, recoverable=False, details=details)


class DatabaseNotFoundError(DatabaseLookupError):
    """Raised when a database name is not configured."""

    def __init__(self, name: str, available: Optional[Iterable[str]] = None):
        self.name = name
        names = sorted(available or [])
        if names:
            message = f"Database '{name}' not found. Available databases: {', '.join(names)}"
        else:
            message = (
                "No databases are configured. Please add a database configuration first."
            )
        super().__init__(message, available=names, details={"name": name})


class DatabaseAlreadyExistsError(DatabaseLookupError):
    """Raised when adding a database name that is already configured."""

    def __init__(self, name: str, available: Optional[Iterable[str]] = None):
        self.name = name
        super().__init__(
            f"Database name '{name}' already exists",
            available=available,
            details={"name": name},
        )


class NoDatabasesConfiguredError(DatabaseLookupError):
    """Raised when a database must be resolved but none are configured."""

    def __init__(self):
        super().__init__(
            "No databases are configured. Please add a database configuration first.",
            available=[],
        )


class AmbiguousDatabaseError(DatabaseLookupError):
    """Raised when several databases are configured and none was requested."""

    def __init__(self, available: Iterable[str]):
        names = sorted(available)
        super().__init__(
            f"Multiple databases are configured: {', '.join(names)}. "
            "Please specify the database using the `database` parameter.",
            available=names,
        )


# Connection Errors
class ConnectionFailureError(PgMcpError):
    """Client construction or liveness probe failed. Retryable on next call."""

    def __init__(self, name: str, reason: str = ""):
        self.name = name
        self.reason = reason
        message = f"Failed to connect to database '{name}'"
        if reason:
            message += f": {reason}"
        super().__init__(message, recoverable=True, details={"name": name, "reason": reason})
