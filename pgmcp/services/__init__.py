"""Services package."""

from .database_resolver import resolve_database_name
from .database_service import DatabaseService

__all__ = ["DatabaseService", "resolve_database_name"]
