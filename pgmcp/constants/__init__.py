"""Constants package."""

from .database import ConfigFile, Database, Pools

__all__ = ["ConfigFile", "Database", "Pools"]
