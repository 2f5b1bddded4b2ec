"""Per-name cache of live database clients.

Amortizes expensive client construction: at most one live client per
database name, created lazily on first use (single-flight), evicted when idle
past its TTL or when a reloaded configuration invalidates it.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Set, Tuple

import asyncpg
from loguru import logger

from pgmcp.constants import Database, Pools
from pgmcp.core.config.config_models import Configuration, DatabaseDescriptor
from pgmcp.core.exceptions import ConnectionFailureError, PgMcpError
from pgmcp.utils.masking import mask_database_url


class DatabaseClient(Protocol):
    """The part of an asyncpg connection the pool relies on."""

    async def fetchval(self, query: str, *args: Any) -> Any: ...

    async def close(self) -> None: ...


ClientFactory = Callable[[str, float], Awaitable[DatabaseClient]]
DescriptorResolver = Callable[[str], DatabaseDescriptor]


async def connect_asyncpg(url: str, timeout: float) -> DatabaseClient:
    """Default client factory: one asyncpg connection per database."""
    return await asyncpg.connect(dsn=url, timeout=timeout)


@dataclass
class PoolEntry:
    """A cached live client plus its last-used timestamp."""

    client: DatabaseClient
    url: str
    ttl_ms: int
    last_used: float  # clock() when the entry was last handed out
    created_at: float = 0.0
    closed: bool = field(default=False, compare=False)

    def touch(self, now: float) -> None:
        self.last_used = now

    def is_idle(self, now: float) -> bool:
        return (now - self.last_used) * 1000.0 > self.ttl_ms


class ConnectionPool:
    """Name-keyed client cache with single-flight creation and idle reaping."""

    def __init__(
        self,
        resolver: DescriptorResolver,
        client_factory: ClientFactory = connect_asyncpg,
        connect_timeout: float = Database.CONNECTION_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize connection pool.

        Args:
            resolver: Returns the current descriptor for a database name
                (normally ``ConfigStore.get``); called in a worker thread
            client_factory: Async callable ``(url, timeout) -> client``
            connect_timeout: Bound on construction and on the liveness probe
            clock: Monotonic time source in seconds
        """
        self._resolver = resolver
        self._client_factory = client_factory
        self._connect_timeout = connect_timeout
        self._clock = clock

        self._entries: Dict[str, PoolEntry] = {}
        self._inflight: Dict[str, asyncio.Task] = {}
        self._inflight_urls: Dict[str, str] = {}
        # Bumped on every invalidation; a build started under an older
        # generation discards its client instead of caching it
        self._generations: Dict[str, int] = {}
        self._lock = asyncio.Lock()
        self._reaper_task: Optional[asyncio.Task] = None
        self._created = 0
        self._evicted = 0
        # Detached entries still closing; drained by close_all
        self._closing: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------

    async def get(self, key: str) -> DatabaseClient:
        """
        Return the live client for *key*, creating it on a cache miss.

        Concurrent misses for the same key share one construction.

        Raises:
            ConnectionFailureError: Construction or the liveness probe failed
            DatabaseNotFoundError: *key* is not configured
        """
        while True:
            async with self._lock:
                entry = self._entries.get(key)
                if entry is not None:
                    entry.touch(self._clock())
                    return entry.client
                task = self._inflight.get(key)
                if task is None:
                    task = asyncio.create_task(self._build(key, self._generations.get(key, 0)))
                    self._inflight[key] = task
                    task.add_done_callback(lambda t, k=key: self._clear_inflight(k, t))

            entry = await asyncio.shield(task)
            if entry is None or entry.closed:
                logger.debug(f"Pool entry for '{key}' was invalidated during checkout, rebuilding")
                continue
            entry.touch(self._clock())
            return entry.client

    def _clear_inflight(self, key: str, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
            self._inflight_urls.pop(key, None)
        if not task.cancelled():
            # Retrieved here so a failure nobody awaited is not reported as unhandled
            task.exception()

    async def _build(self, key: str, generation: int) -> Optional[PoolEntry]:
        descriptor = await asyncio.to_thread(self._resolver, key)
        self._inflight_urls[key] = descriptor.url
        masked = mask_database_url(descriptor.url)

        try:
            client = await asyncio.wait_for(
                self._client_factory(descriptor.url, self._connect_timeout),
                timeout=self._connect_timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error(f"Timed out connecting to '{key}' ({masked})")
            raise ConnectionFailureError(key, f"timed out after {self._connect_timeout}s") from e
        except PgMcpError:
            raise
        except Exception as e:
            logger.error(f"Failed to connect to '{key}' ({masked}): {e}")
            raise ConnectionFailureError(key, str(e)) from e

        try:
            await asyncio.wait_for(
                client.fetchval(Database.PROBE_QUERY), timeout=self._connect_timeout
            )
        except BaseException as e:
            await self._close_client(key, client)
            if isinstance(e, asyncio.TimeoutError):
                logger.error(f"Liveness probe timed out for '{key}' ({masked})")
                raise ConnectionFailureError(key, "liveness probe timed out") from e
            if isinstance(e, Exception):
                logger.error(f"Liveness probe failed for '{key}' ({masked}): {e}")
                raise ConnectionFailureError(key, f"liveness probe failed: {e}") from e
            raise

        async with self._lock:
            if self._generations.get(key, 0) == generation and key not in self._entries:
                now = self._clock()
                entry = PoolEntry(
                    client=client,
                    url=descriptor.url,
                    ttl_ms=descriptor.ttl,
                    last_used=now,
                    created_at=now,
                )
                self._entries[key] = entry
                self._created += 1
                logger.info(f"Connected to database '{key}' ({masked})")
                return entry

        # Invalidated while connecting
        await self._close_client(key, client)
        return None

    # ------------------------------------------------------------------
    # Eviction
    # ------------------------------------------------------------------

    async def evict(self, key: str) -> None:
        """Close and remove the entry for *key*; no-op if absent."""
        async with self._lock:
            entry = self._detach(key)
        if entry is not None:
            await self._close_detached([(key, entry)])

    def _detach(self, key: str) -> Optional[PoolEntry]:
        """Remove *key* from the map and invalidate builds. Caller holds the lock."""
        self._generations[key] = self._generations.get(key, 0) + 1
        entry = self._entries.pop(key, None)
        if entry is not None:
            entry.closed = True
        return entry

    async def _close_entry(self, key: str, entry: PoolEntry) -> None:
        self._evicted += 1
        await self._close_client(key, entry.client)
        logger.info(f"Evicted pool entry '{key}'")

    async def _close_detached(self, detached: List[Tuple[str, PoolEntry]]) -> None:
        """
        Close detached entries in a task of their own.

        Entries are already gone from the map, so a cancelled caller must not
        abandon them half closed; the task runs to completion either way and
        ``close_all`` waits for it.
        """
        if not detached:
            return
        task = asyncio.create_task(self._close_entries(detached))
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)
        await asyncio.shield(task)

    async def _close_entries(self, detached: List[Tuple[str, PoolEntry]]) -> None:
        await asyncio.gather(*(self._close_entry(key, entry) for key, entry in detached))

    async def _close_client(self, key: str, client: DatabaseClient) -> None:
        try:
            await asyncio.wait_for(client.close(), timeout=self._connect_timeout)
        except Exception as e:
            logger.warning(f"Error closing client for '{key}': {e}")

    async def reconcile(self, config: Configuration) -> None:
        """
        Align cached entries with a freshly loaded configuration.

        Evicts names that disappeared or whose URL changed, updates the TTL of
        unchanged entries in place, and leaves new names to be created lazily.
        """
        databases = config.databases
        stale: List[Tuple[str, PoolEntry]] = []
        async with self._lock:
            for key, entry in list(self._entries.items()):
                descriptor = databases.get(key)
                if descriptor is None or descriptor.url != entry.url:
                    detached = self._detach(key)
                    if detached is not None:
                        stale.append((key, detached))
                elif descriptor.ttl != entry.ttl_ms:
                    logger.debug(f"TTL for '{key}' changed {entry.ttl_ms}ms -> {descriptor.ttl}ms")
                    entry.ttl_ms = descriptor.ttl
            for key in list(self._inflight):
                descriptor = databases.get(key)
                url = self._inflight_urls.get(key)
                # Unknown URL means the descriptor is still being resolved; assume stale
                if descriptor is None or url is None or descriptor.url != url:
                    self._generations[key] = self._generations.get(key, 0) + 1

        await self._close_detached(stale)
        if stale:
            logger.info(f"Reconciled pool: evicted {', '.join(k for k, _ in stale)}")

    async def close_all(self) -> None:
        """Evict every entry (used at shutdown)."""
        async with self._lock:
            detached = [(key, self._entries[key]) for key in list(self._entries)]
            for key, _ in detached:
                self._detach(key)
            for key in list(self._inflight):
                self._generations[key] = self._generations.get(key, 0) + 1
        await self._close_detached(detached)
        # Closes started by evictions whose callers were cancelled
        if self._closing:
            await asyncio.gather(*list(self._closing), return_exceptions=True)
        logger.info(f"Closed all pooled connections ({len(detached)})")

    # ------------------------------------------------------------------
    # Idle reaper
    # ------------------------------------------------------------------

    async def reap_idle(self) -> int:
        """
        Evict every entry unused for longer than its own TTL.

        Returns:
            Number of entries evicted
        """
        now = self._clock()
        async with self._lock:
            expired = [key for key, entry in self._entries.items() if entry.is_idle(now)]
            detached = [(key, self._entries[key]) for key in expired]
            for key in expired:
                self._detach(key)

        await self._close_detached(detached)
        if detached:
            logger.debug(f"Idle reaper evicted {len(detached)} entries")
        return len(detached)

    def start_idle_reaper(self, interval: float = Pools.REAPER_INTERVAL) -> None:
        """Start the background sweep; no-op if already running."""
        if self._reaper_task is not None and not self._reaper_task.done():
            return
        self._reaper_task = asyncio.create_task(self._reaper_loop(interval))
        logger.debug(f"Idle reaper started (interval: {interval}s)")

    async def stop_idle_reaper(self) -> None:
        """Stop the background sweep. Safe if never started."""
        task = self._reaper_task
        self._reaper_task = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _reaper_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await self.reap_idle()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error in idle reaper: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def keys(self) -> List[str]:
        return sorted(self._entries)

    def stats(self) -> Dict[str, Any]:
        """Return pool statistics for monitoring."""
        return {
            "entries": len(self._entries),
            "pending": len(self._inflight),
            "created": self._created,
            "evicted": self._evicted,
            "closing": len(self._closing),
            "reaper_running": self._reaper_task is not None and not self._reaper_task.done(),
        }
