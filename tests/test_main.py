"""Tests for the pg-mcp-config command line."""

import json

import pytest
from loguru import logger

import main as cli
from conftest import FakeClientFactory, read_json
from pgmcp.services.database_service import DatabaseService


@pytest.fixture(autouse=True)
def quiet_logging():
    """Drop sinks bound to the captured stderr once the test ends."""
    yield
    logger.remove()


@pytest.fixture
def run(config_path):
    def _run(*argv):
        return cli.main(["--config", str(config_path), "--log-level", "ERROR", *argv])

    return _run


def test_add_list_show(run, config_path, capsys):
    assert run("add", "main", "postgres://u:secret@h:5432/db", "--ttl", "5000") == 0
    assert "Added database 'main'" in capsys.readouterr().out

    assert run("list") == 0
    listed = json.loads(capsys.readouterr().out)
    assert listed["databases"]["main"] == {"url": "postgres://u:***@h:5432/db", "ttl": 5000}
    assert listed["path"] == str(config_path)

    assert run("show", "main", "--show-secrets") == 0
    shown = json.loads(capsys.readouterr().out)
    assert shown == {"main": {"url": "postgres://u:secret@h:5432/db", "ttl": 5000}}


def test_update_and_remove(run, config_path, capsys):
    run("add", "main", "postgres://h/db")

    assert run("update", "main", "--ttl", "1500") == 0
    assert read_json(config_path)["databases"]["main"] == {"url": "postgres://h/db", "ttl": 1500}

    assert run("remove", "main") == 0
    assert read_json(config_path)["databases"] == {}


def test_update_without_changes(run, capsys):
    run("add", "main", "postgres://h/db")

    assert run("update", "main") == 1
    assert "Nothing to update" in capsys.readouterr().err


def test_errors_reported_with_exit_code(run, capsys):
    assert run("show", "ghost") == 1
    assert "Error: No databases are configured" in capsys.readouterr().err

    run("add", "a", "postgres://h/a")
    assert run("add", "a", "postgres://h/other") == 1
    assert "already exists" in capsys.readouterr().err


def test_invalid_file_reported(run, config_path, capsys):
    config_path.parent.mkdir(parents=True)
    config_path.write_text("[]", encoding="utf-8")

    assert run("list") == 1
    assert "Error:" in capsys.readouterr().err


def test_check_probes_connection(run, monkeypatch, capsys):
    factory = FakeClientFactory()
    real_from_settings = DatabaseService.from_settings
    monkeypatch.setattr(
        cli.DatabaseService,
        "from_settings",
        lambda settings: real_from_settings(settings, client_factory=factory),
    )
    run("add", "main", "postgres://h/db")

    assert run("check") == 0

    assert "main: OK" in capsys.readouterr().out
    assert factory.clients[0].queries == ["SELECT 1", "SHOW server_version"]
    assert factory.clients[0].closed


def test_check_connection_failure(run, monkeypatch, capsys):
    factory = FakeClientFactory()
    factory.fail_connect["postgres://h/db"] = OSError("refused")
    real_from_settings = DatabaseService.from_settings
    monkeypatch.setattr(
        cli.DatabaseService,
        "from_settings",
        lambda settings: real_from_settings(settings, client_factory=factory),
    )
    run("add", "main", "postgres://h/db")

    assert run("check", "main") == 1
    assert "Failed to connect to database 'main': refused" in capsys.readouterr().err


def test_invalid_log_level_rejected(config_path, capsys):
    code = cli.main(["--config", str(config_path), "--log-level", "foo", "list"])

    assert code == 2
    assert "LOG_LEVEL must be one of" in capsys.readouterr().err
    assert not config_path.exists()


def test_log_level_override_is_normalized(config_path, capsys):
    assert cli.main(["--config", str(config_path), "--log-level", "warning", "list"]) == 0
