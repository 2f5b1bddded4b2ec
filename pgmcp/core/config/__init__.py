"""Configuration management module."""

from .config_hot_reload import ConfigWatcher
from .config_models import Configuration, DatabaseDescriptor, DatabaseUpdate
from .config_store import ConfigStore
from .settings import PgMcpSettings, get_settings, reset_settings

__all__ = [
    "ConfigStore",
    "ConfigWatcher",
    "Configuration",
    "DatabaseDescriptor",
    "DatabaseUpdate",
    "PgMcpSettings",
    "get_settings",
    "reset_settings",
]
