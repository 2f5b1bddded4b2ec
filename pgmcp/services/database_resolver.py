"""Resolve which configured database a request targets."""

from typing import Optional

from pgmcp.core.config.config_models import Configuration
from pgmcp.core.exceptions import AmbiguousDatabaseError, NoDatabasesConfiguredError


def resolve_database_name(config: Configuration, requested: Optional[str] = None) -> str:
    """
    Pick the database name for a request.

    Args:
        config: Current configuration snapshot
        requested: Name supplied by the caller, if any

    Returns:
        *requested* when given, else the only configured name

    Raises:
        NoDatabasesConfiguredError: Nothing requested and nothing configured
        AmbiguousDatabaseError: Nothing requested and several names configured
    """
    if requested:
        return requested

    names = config.names()
    if not names:
        raise NoDatabasesConfiguredError()
    if len(names) > 1:
        raise AmbiguousDatabaseError(names)
    return names[0]
