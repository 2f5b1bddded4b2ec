"""Composition of the database registry and the connection pool.

Request handlers call ``get_client`` with an optional database name and get
back a live client or a typed error; the service keeps the pool reconciled
with the registry file while it runs.
"""

from typing import Any, Dict, Optional, Tuple

from loguru import logger

from pgmcp.constants import ConfigFile, Pools
from pgmcp.core.config.config_hot_reload import ConfigWatcher
from pgmcp.core.config.config_models import Configuration
from pgmcp.core.config.config_store import ConfigStore
from pgmcp.core.config.settings import PgMcpSettings
from pgmcp.pool.connection_pool import ClientFactory, ConnectionPool, DatabaseClient, connect_asyncpg

from .database_resolver import resolve_database_name


class DatabaseService:
    """Resolve names via the ConfigStore and hand out clients from the pool."""

    def __init__(
        self,
        store: ConfigStore,
        pool: Optional[ConnectionPool] = None,
        reaper_interval: float = Pools.REAPER_INTERVAL,
        watch_interval: float = ConfigFile.WATCH_INTERVAL,
        debounce_ms: int = ConfigFile.RELOAD_DEBOUNCE_MS,
        verify_on_start: bool = True,
    ):
        """
        Initialize database service.

        Args:
            store: Database registry
            pool: Connection pool (defaults to one resolving through *store*)
            reaper_interval: Seconds between idle sweeps
            watch_interval: Seconds between config file checks
            debounce_ms: Debounce window for config reloads
            verify_on_start: Connect at startup when exactly one database is configured
        """
        self.store = store
        self.pool = pool or ConnectionPool(store.get)
        self._reaper_interval = reaper_interval
        self._watch_interval = watch_interval
        self._debounce_ms = debounce_ms
        self._verify_on_start = verify_on_start
        self._watcher: Optional[ConfigWatcher] = None
        self._started = False

    @classmethod
    def from_settings(
        cls, settings: PgMcpSettings, client_factory: ClientFactory = connect_asyncpg
    ) -> "DatabaseService":
        """Build the service with explicit dependencies taken from settings."""
        store = ConfigStore.from_settings(settings)
        pool = ConnectionPool(
            store.get,
            client_factory=client_factory,
            connect_timeout=settings.db_connect_timeout,
        )
        return cls(
            store,
            pool,
            reaper_interval=settings.pool_reaper_interval,
            watch_interval=settings.config_watch_interval,
            debounce_ms=settings.config_reload_debounce_ms,
            verify_on_start=settings.verify_on_start,
        )

    async def start(self) -> Configuration:
        """
        Load the registry, start the idle reaper and the config watcher.

        Returns:
            Configuration loaded at startup

        Raises:
            InvalidConfigError: Registry file is invalid
            ConnectionFailureError: Startup verification of the single database failed
        """
        if self._started:
            return self.store.load()

        config = self.store.load()
        self.pool.start_idle_reaper(self._reaper_interval)
        self._watcher = await self.store.watch(
            self._on_config_change,
            poll_interval=self._watch_interval,
            debounce_ms=self._debounce_ms,
        )
        self._started = True
        logger.info(
            f"Database service started with {len(config.databases)} database(s) "
            f"from {self.store.path}"
        )

        names = config.names()
        if self._verify_on_start and len(names) == 1:
            try:
                await self.pool.get(names[0])
            except Exception:
                await self.stop()
                raise
        return config

    async def stop(self) -> None:
        """Stop watcher and reaper, then close every pooled client. Idempotent."""
        if self._watcher is not None:
            await self._watcher.stop()
            self._watcher = None
        await self.pool.stop_idle_reaper()
        await self.pool.close_all()
        if self._started:
            logger.info("Database service stopped")
        self._started = False

    async def __aenter__(self) -> "DatabaseService":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    async def _on_config_change(self, config: Configuration) -> None:
        await self.pool.reconcile(config)

    def resolve_database_name(self, requested: Optional[str] = None) -> str:
        """Resolve *requested* against the current registry."""
        return resolve_database_name(self.store.load(), requested)

    async def get_client(self, database: Optional[str] = None) -> Tuple[str, DatabaseClient]:
        """
        Return ``(name, client)`` for the requested or sole configured database.

        Raises:
            NoDatabasesConfiguredError: Nothing requested and nothing configured
            AmbiguousDatabaseError: Nothing requested and several databases configured
            DatabaseNotFoundError: Requested name is not configured
            ConnectionFailureError: Client could not be created
        """
        name = self.resolve_database_name(database)
        client = await self.pool.get(name)
        return name, client

    def get_stats(self) -> Dict[str, Any]:
        """Service, pool and watcher statistics."""
        return {
            "started": self._started,
            "config_path": str(self.store.path),
            "pool": self.pool.stats(),
            "watcher": self._watcher.get_stats() if self._watcher else None,
        }
