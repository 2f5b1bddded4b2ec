"""Durable JSON-backed registry of named database descriptors."""

import json
import os
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Mapping, Optional, Union

from loguru import logger
from pydantic import ValidationError

from pgmcp.constants import ConfigFile, Database
from pgmcp.core.exceptions import (
    DatabaseAlreadyExistsError,
    DatabaseNotFoundError,
    InvalidConfigError,
    PersistenceError,
)
from pgmcp.utils.masking import mask_database_url

from .config_models import Configuration, DatabaseDescriptor, DatabaseUpdate

if TYPE_CHECKING:
    from .config_hot_reload import ConfigWatcher
    from .settings import PgMcpSettings

OnChange = Callable[[Configuration], Union[None, Awaitable[None]]]


def _validation_issues(error: ValidationError) -> list:
    return error.errors(include_url=False, include_context=False, include_input=False)


class ConfigStore:
    """
    Single authoritative, crash-consistent view of the database registry.

    Every read goes back to the file; every write is validate-then-atomic-rename.
    Mutations run as load -> mutate -> validate -> save -> reload under an
    in-process lock.
    """

    def __init__(self, path: Union[str, Path], legacy_url: Optional[str] = None):
        """
        Initialize config store.

        Args:
            path: Backing JSON file
            legacy_url: Single connection URL used to seed a ``default``
                descriptor when the file does not exist yet
        """
        self._path = Path(path)
        self._legacy_url = legacy_url
        self._lock = threading.RLock()

    @classmethod
    def from_settings(cls, settings: "PgMcpSettings") -> "ConfigStore":
        """Build a store from the resolved path and legacy URL in settings."""
        return cls(settings.resolve_config_path(), legacy_url=settings.postgres_url)

    @property
    def path(self) -> Path:
        return self._path

    @property
    def tmp_path(self) -> Path:
        return self._path.with_name(self._path.name + ConfigFile.TMP_SUFFIX)

    # ------------------------------------------------------------------
    # Load / save
    # ------------------------------------------------------------------

    def load(self) -> Configuration:
        """
        Read and validate the backing file.

        Synthesizes, persists and returns a default configuration when the
        file does not exist.

        Returns:
            Validated configuration

        Raises:
            InvalidConfigError: File is not valid JSON or has the wrong shape
            PersistenceError: File could not be read, or the default could not be written
        """
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return self._bootstrap()
        except UnicodeDecodeError as e:
            raise InvalidConfigError(
                f"Invalid config: {self._path} is not valid UTF-8 ({e})", path=str(self._path)
            ) from e
        except OSError as e:
            raise PersistenceError(f"Failed to load config: {e}", path=str(self._path)) from e

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise InvalidConfigError(
                f"Invalid config: {self._path} is not valid JSON ({e})", path=str(self._path)
            ) from e

        try:
            return Configuration.model_validate(data)
        except ValidationError as e:
            issues = _validation_issues(e)
            raise InvalidConfigError(
                f"Invalid config: {json.dumps(issues)}", errors=issues, path=str(self._path)
            ) from e

    def save(self, config: Union[Configuration, Mapping[str, Any]]) -> None:
        """
        Validate and atomically persist a configuration.

        Writes ``<path>.tmp`` then renames it over ``<path>`` so readers never
        observe a partial write.

        Args:
            config: Configuration model or its on-disk mapping

        Raises:
            InvalidConfigError: Validation failed; the file is untouched
            PersistenceError: Writing or renaming failed
        """
        validated = self._validate(config)
        payload = json.dumps(validated.to_json_dict(), indent=2)
        tmp_path = self.tmp_path

        with self._lock:
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                with open(tmp_path, "w", encoding="utf-8") as f:
                    f.write(payload)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_path, self._path)
            except OSError as e:
                try:
                    tmp_path.unlink()
                except OSError:
                    pass
                raise PersistenceError(f"Failed to save config: {e}", path=str(self._path)) from e

        logger.debug(f"Config saved: {self._path} ({len(validated.databases)} databases)")

    def _validate(self, config: Union[Configuration, Mapping[str, Any]]) -> Configuration:
        data = config.to_json_dict() if isinstance(config, Configuration) else dict(config)
        try:
            return Configuration.model_validate(data)
        except ValidationError as e:
            issues = _validation_issues(e)
            raise InvalidConfigError(
                f"Invalid config: {json.dumps(issues)}", errors=issues, path=str(self._path)
            ) from e

    def _bootstrap(self) -> Configuration:
        """One-time implicit migration for a missing file."""
        databases: Dict[str, Dict[str, Any]] = {}
        if self._legacy_url:
            databases[Database.DEFAULT_NAME] = {
                "url": self._legacy_url,
                "ttl": Database.DEFAULT_TTL_MS,
            }
            logger.info(
                f"No config at {self._path}; migrating legacy URL "
                f"{mask_database_url(self._legacy_url)} as '{Database.DEFAULT_NAME}'"
            )
        else:
            logger.info(f"No config at {self._path}; creating an empty registry")

        config = self._validate({"databases": databases, "autoReload": True})
        self.save(config)
        return config

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get(self, name: str) -> DatabaseDescriptor:
        """
        Look up a descriptor by name.

        Raises:
            DatabaseNotFoundError: Name is not configured (message lists known names)
        """
        config = self.load()
        descriptor = config.databases.get(name)
        if descriptor is None:
            raise DatabaseNotFoundError(name, config.names())
        return descriptor

    def list_databases(self) -> Dict[str, DatabaseDescriptor]:
        """Return every configured descriptor keyed by name."""
        return dict(self.load().databases)

    # ------------------------------------------------------------------
    # Transactional mutators
    # ------------------------------------------------------------------

    def add(
        self, name: str, descriptor: Union[DatabaseDescriptor, Mapping[str, Any]]
    ) -> Configuration:
        """
        Add a new database.

        Raises:
            DatabaseAlreadyExistsError: Name is already configured
            InvalidConfigError: Descriptor is invalid
        """
        with self._lock:
            config = self.load()
            if name in config.databases:
                raise DatabaseAlreadyExistsError(name, config.names())
            entry = (
                descriptor.model_dump()
                if isinstance(descriptor, DatabaseDescriptor)
                else dict(descriptor)
            )
            data = config.to_json_dict()
            data["databases"][name] = entry
            self.save(data)
            logger.info(f"Database added: {name}")
            return self.load()

    def update(
        self, name: str, partial: Union[DatabaseUpdate, Mapping[str, Any]]
    ) -> Configuration:
        """
        Merge supplied fields onto an existing descriptor.

        Raises:
            DatabaseNotFoundError: Name is not configured
            InvalidConfigError: Merged descriptor is invalid
        """
        if not isinstance(partial, DatabaseUpdate):
            try:
                partial = DatabaseUpdate.model_validate(dict(partial))
            except ValidationError as e:
                issues = _validation_issues(e)
                raise InvalidConfigError(
                    f"Invalid updated database config: {json.dumps(issues)}", errors=issues
                ) from e

        with self._lock:
            config = self.load()
            existing = config.databases.get(name)
            if existing is None:
                raise DatabaseNotFoundError(name, config.names())
            merged = {**existing.model_dump(), **partial.changes()}
            data = config.to_json_dict()
            data["databases"][name] = merged
            self.save(data)
            logger.info(f"Database updated: {name} ({', '.join(partial.changes()) or 'no changes'})")
            return self.load()

    def remove(self, name: str) -> Configuration:
        """
        Remove a database.

        Raises:
            DatabaseNotFoundError: Name is not configured
        """
        with self._lock:
            config = self.load()
            if name not in config.databases:
                raise DatabaseNotFoundError(name, config.names())
            data = config.to_json_dict()
            del data["databases"][name]
            self.save(data)
            logger.info(f"Database removed: {name}")
            return self.load()

    # ------------------------------------------------------------------
    # Change detection
    # ------------------------------------------------------------------

    async def watch(
        self,
        on_change: OnChange,
        poll_interval: float = ConfigFile.WATCH_INTERVAL,
        debounce_ms: int = ConfigFile.RELOAD_DEBOUNCE_MS,
    ) -> "ConfigWatcher":
        """
        Start monitoring the backing file.

        Args:
            on_change: Called with the reloaded configuration when autoReload is true
            poll_interval: Seconds between modification checks
            debounce_ms: Quiet window collapsing bursts into one reload

        Returns:
            Running watcher; call ``stop()`` to cancel it
        """
        from .config_hot_reload import ConfigWatcher

        watcher = ConfigWatcher(
            self, on_change, poll_interval=poll_interval, debounce_ms=debounce_ms
        )
        await watcher.start()
        return watcher
