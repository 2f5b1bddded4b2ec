"""Application settings with Pydantic validation."""

from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from pgmcp.constants import ConfigFile, Database, Pools


class PgMcpSettings(BaseSettings):
    """Process settings with validation and environment variable support."""

    # Config file location
    pg_mcp_config_path: Optional[str] = Field(
        default=None,
        description=(
            "Override for the JSON database registry path "
            "(defaults to ~/.config/pg-mcp/config.json)"
        ),
    )

    # Legacy single-database bootstrap
    postgres_url: Optional[str] = Field(
        default=None,
        description=(
            "Legacy single connection URL. Seeds a descriptor named 'default' "
            "when no config file exists yet."
        ),
    )

    # Pool
    pool_reaper_interval: float = Field(
        default=Pools.REAPER_INTERVAL,
        gt=0,
        description="Seconds between idle reaper sweeps",
    )
    db_connect_timeout: float = Field(
        default=Database.CONNECTION_TIMEOUT,
        gt=0,
        description="Timeout in seconds for client construction and the liveness probe",
    )
    verify_on_start: bool = Field(
        default=True,
        description="Open the connection at startup when exactly one database is configured",
    )

    # Hot reload
    config_watch_interval: float = Field(
        default=ConfigFile.WATCH_INTERVAL,
        gt=0,
        description="Seconds between config file modification checks",
    )
    config_reload_debounce_ms: int = Field(
        default=ConfigFile.RELOAD_DEBOUNCE_MS,
        ge=0,
        description="Quiet window collapsing bursts of file changes into one reload",
    )

    # Logging
    log_level: str = Field(
        default="INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    log_format: str = Field(default="text", description="Log format (text, json)")
    log_file: Optional[str] = Field(default=None, description="Optional rotating log file")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extra fields in .env
    )

    @field_validator("postgres_url", "pg_mcp_config_path")
    @classmethod
    def empty_as_none(cls, v: Optional[str]) -> Optional[str]:
        """Treat blank environment values as unset."""
        if v is not None and not v.strip():
            return None
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f'LOG_LEVEL must be one of: {", ".join(allowed)}')
        return v_upper

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Validate log format."""
        v_lower = v.lower()
        if v_lower not in ("text", "json"):
            raise ValueError("LOG_FORMAT must be one of: text, json")
        return v_lower

    def resolve_config_path(self) -> Path:
        """
        Resolve the backing file path.

        Returns:
            The override path when set, else the per-user config location
        """
        if self.pg_mcp_config_path:
            return Path(self.pg_mcp_config_path).expanduser()
        return Path.home() / ".config" / ConfigFile.DIR_NAME / ConfigFile.FILE_NAME


_settings: Optional[PgMcpSettings] = None


def get_settings() -> PgMcpSettings:
    """
    Get application settings singleton.

    Returns:
        PgMcpSettings instance

    Raises:
        ValidationError: If settings are invalid
    """
    global _settings
    if _settings is None:
        _settings = PgMcpSettings()
    return _settings


def reset_settings() -> None:
    """Reset settings singleton (useful for testing)."""
    global _settings
    _settings = None
