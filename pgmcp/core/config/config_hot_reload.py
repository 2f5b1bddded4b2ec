"""Configuration hot-reload service.

Watches the database registry file and hands each freshly loaded
configuration to a callback. Uses file stat polling instead of filesystem
watchers to avoid additional dependencies; a debounce window collapses
bursts of writes (editors, ``save`` itself) into a single reload.
"""

import asyncio
from typing import TYPE_CHECKING, Any, Dict, Optional, Set, Tuple

from loguru import logger

from pgmcp.constants import ConfigFile

if TYPE_CHECKING:
    from .config_store import ConfigStore, OnChange

_Signature = Optional[Tuple[int, int, int]]


class ConfigWatcher:
    """
    Monitor the config file for changes and trigger reload callbacks.

    Every raw change event re-arms a single debounce task. When it fires the
    file is reloaded once, and the callback runs only if the reloaded
    configuration has ``autoReload`` enabled. Reload failures are logged and
    never stop the watch loop.
    """

    def __init__(
        self,
        store: "ConfigStore",
        on_change: "OnChange",
        poll_interval: float = ConfigFile.WATCH_INTERVAL,
        debounce_ms: int = ConfigFile.RELOAD_DEBOUNCE_MS,
    ):
        """
        Initialize config watcher.

        Args:
            store: Store whose backing file is watched and reloaded
            on_change: Sync or async callable receiving the new configuration
            poll_interval: Seconds between modification checks
            debounce_ms: Quiet window before a reload fires
        """
        self._store = store
        self._on_change = on_change
        self._poll_interval = poll_interval
        self._debounce = debounce_ms / 1000.0
        self._last_signature: _Signature = None
        self._running = False
        self._stopped = False
        self._task: Optional[asyncio.Task] = None
        self._pending: Optional[asyncio.Task] = None
        self._reloads: Set[asyncio.Task] = set()
        self._reload_lock = asyncio.Lock()
        self._reload_count = 0
        self._error_count = 0

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start watching for config changes."""
        if self._running:
            logger.warning("Config watcher already running")
            return
        if self._stopped:
            raise RuntimeError("Config watcher cannot be restarted after stop()")

        self._running = True
        self._last_signature = self._signature()
        self._task = asyncio.create_task(self._monitor_loop())
        logger.info(
            f"Started monitoring config file: {self._store.path} "
            f"(interval: {self._poll_interval}s, debounce: {self._debounce * 1000:.0f}ms)"
        )

    async def stop(self) -> None:
        """Stop watching. Idempotent and safe if never started."""
        self._stopped = True
        if not self._running and self._task is None and not self._reloads:
            return
        self._running = False

        tasks = [t for t in (self._task, *self._reloads) if t is not None]
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.debug(f"Config watcher task ended with error during stop: {e}")

        self._task = None
        self._pending = None
        self._reloads.clear()
        logger.info("Config watcher stopped")

    def notify(self) -> None:
        """Register a raw change event, (re)arming the debounce timer."""
        if self._stopped:
            return
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        task = asyncio.create_task(self._debounced_reload())
        self._pending = task
        self._reloads.add(task)
        task.add_done_callback(self._reloads.discard)

    def _signature(self) -> _Signature:
        try:
            st = self._store.path.stat()
        except OSError:
            return None
        return (st.st_mtime_ns, st.st_size, st.st_ino)

    async def _monitor_loop(self) -> None:
        """Main monitoring loop."""
        while self._running:
            try:
                await asyncio.sleep(self._poll_interval)
                self._check_for_changes()
            except asyncio.CancelledError:
                logger.debug("Config monitoring loop cancelled")
                break
            except Exception as e:
                logger.error(f"Error in config monitoring loop: {e}", exc_info=True)

    def _check_for_changes(self) -> None:
        current = self._signature()
        if current == self._last_signature:
            return
        self._last_signature = current
        if current is None:
            logger.warning(f"Config file disappeared: {self._store.path}")
            return
        logger.debug("Config file changed, scheduling reload")
        self.notify()

    async def _debounced_reload(self) -> None:
        await asyncio.sleep(self._debounce)
        # Past the debounce window: later events arm a new timer instead of cancelling this reload
        if self._pending is asyncio.current_task():
            self._pending = None
        async with self._reload_lock:
            await self._reload_and_notify()

    async def _reload_and_notify(self) -> None:
        try:
            config = await asyncio.to_thread(self._store.load)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._error_count += 1
            logger.error(f"Auto-reload error: {e}")
            return

        self._reload_count += 1
        if not config.auto_reload:
            logger.debug("Config changed but autoReload is disabled; skipping reconcile")
            return
        if self._stopped:
            return

        try:
            result = self._on_change(config)
            if asyncio.iscoroutine(result):
                await result
            logger.info(f"Config reload completed ({len(config.databases)} databases)")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._error_count += 1
            logger.error(f"Error in reload callback: {e}", exc_info=True)

    def get_stats(self) -> Dict[str, Any]:
        """Get watcher statistics."""
        return {
            "config_path": str(self._store.path),
            "running": self._running,
            "poll_interval": self._poll_interval,
            "debounce_ms": int(self._debounce * 1000),
            "reload_count": self._reload_count,
            "error_count": self._error_count,
        }
