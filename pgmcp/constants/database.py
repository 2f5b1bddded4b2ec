"""Database, pool and config file constants."""

from typing import Final


class Database:
    """Database descriptor defaults.

    NOTE: These are compile-time defaults only. Runtime configuration
    should be obtained via PgMcpSettings (pgmcp/core/config/settings.py) which
    provides environment variable parsing, validation, and type coercion.
    """

    DEFAULT_NAME: Final[str] = "default"
    DEFAULT_TTL_MS: Final[int] = 60_000
    CONNECTION_TIMEOUT: Final[float] = 30.0
    PROBE_QUERY: Final[str] = "SELECT 1"


class Pools:
    """Connection pool timing."""

    REAPER_INTERVAL: Final[float] = 30.0


class ConfigFile:
    """Backing file location and reload timing."""

    PATH_ENV: Final[str] = "PG_MCP_CONFIG_PATH"
    LEGACY_URL_ENV: Final[str] = "POSTGRES_URL"
    DIR_NAME: Final[str] = "pg-mcp"
    FILE_NAME: Final[str] = "config.json"
    TMP_SUFFIX: Final[str] = ".tmp"
    WATCH_INTERVAL: Final[float] = 1.0
    RELOAD_DEBOUNCE_MS: Final[int] = 100
