"""Tests for database name resolution."""

import pytest

from pgmcp.core.config.config_models import Configuration
from pgmcp.core.exceptions import AmbiguousDatabaseError, NoDatabasesConfiguredError
from pgmcp.services.database_resolver import resolve_database_name


def config_with(*names) -> Configuration:
    return Configuration.from_dict(
        {"databases": {name: {"url": f"postgres://h/{name}"} for name in names}}
    )


def test_requested_name_returned_verbatim():
    assert resolve_database_name(config_with("a", "b"), "b") == "b"


def test_requested_name_not_checked_against_config():
    # Existence is checked when the client is fetched
    assert resolve_database_name(config_with("a"), "zzz") == "zzz"


def test_single_database_is_implicit():
    assert resolve_database_name(config_with("only")) == "only"


def test_empty_requested_treated_as_absent():
    assert resolve_database_name(config_with("only"), "") == "only"


def test_nothing_configured():
    with pytest.raises(NoDatabasesConfiguredError):
        resolve_database_name(config_with())


def test_ambiguous():
    with pytest.raises(AmbiguousDatabaseError) as exc_info:
        resolve_database_name(config_with("b", "a"))

    assert exc_info.value.available == ["a", "b"]
