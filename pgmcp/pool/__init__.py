"""
Connection pool for named databases.

One live asyncpg connection per configured name, created lazily and kept in
step with the database registry.
"""

from .connection_pool import ConnectionPool, DatabaseClient, PoolEntry, connect_asyncpg

__all__ = [
    "ConnectionPool",
    "DatabaseClient",
    "PoolEntry",
    "connect_asyncpg",
]
