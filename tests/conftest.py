"""Pytest configuration and common fixtures."""

import asyncio
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

# Try to load test-specific environment file if it exists
test_env_file = Path(__file__).parent / ".env.test"
if test_env_file.exists():
    load_dotenv(test_env_file)

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest

from pgmcp.core.config.config_store import ConfigStore


class FakeClient:
    """Stands in for an asyncpg connection."""

    def __init__(self, url: str, fail_probe: bool = False, close_delay: float = 0.0):
        self.url = url
        self.fail_probe = fail_probe
        self.close_delay = close_delay
        self.closed = False
        self.queries: List[str] = []

    async def fetchval(self, query: str, *args: Any) -> Any:
        if self.closed:
            raise RuntimeError("connection is closed")
        self.queries.append(query)
        if self.fail_probe:
            raise OSError("server closed the connection unexpectedly")
        return 1

    async def close(self) -> None:
        if self.close_delay:
            await asyncio.sleep(self.close_delay)
        self.closed = True


class FakeClientFactory:
    """Records every client it creates; optional latency and failures."""

    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self.clients: List[FakeClient] = []
        self.fail_connect: Dict[str, Exception] = {}
        self.fail_probe: set = set()

    async def __call__(self, url: str, timeout: float) -> FakeClient:
        if self.delay:
            await asyncio.sleep(self.delay)
        error = self.fail_connect.get(url)
        if error is not None:
            raise error
        client = FakeClient(url, fail_probe=url in self.fail_probe)
        self.clients.append(client)
        return client

    @property
    def created(self) -> int:
        return len(self.clients)


@pytest.fixture(autouse=True)
def setup_test_environment(monkeypatch, tmp_path):
    """Isolate every test from the developer's environment and home directory."""
    monkeypatch.delenv("POSTGRES_URL", raising=False)
    monkeypatch.delenv("PG_MCP_CONFIG_PATH", raising=False)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    # Keep a stray .env in the working directory out of settings
    monkeypatch.chdir(tmp_path)

    from pgmcp.core.config.settings import reset_settings

    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def config_path(tmp_path) -> Path:
    """Path of a per-test registry file (not created)."""
    return tmp_path / "pg-mcp" / "config.json"


@pytest.fixture
def store(config_path) -> ConfigStore:
    """Store over an isolated backing file."""
    return ConfigStore(config_path)


def write_config(path: Path, data: Dict[str, Any]) -> None:
    """Write a registry file directly, bypassing the store."""
    import json

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data), encoding="utf-8")


@pytest.fixture
def client_factory() -> FakeClientFactory:
    return FakeClientFactory()


@pytest.fixture
def seeded_store(store) -> ConfigStore:
    """Store holding two databases with autoReload enabled."""
    store.save(
        {
            "databases": {
                "analytics": {"url": "postgres://u:p@analytics:5432/a", "ttl": 60000},
                "billing": {"url": "postgres://u:p@billing:5432/b", "ttl": 1000},
            },
            "autoReload": True,
        }
    )
    return store


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def read_json(path: Path) -> Optional[Dict[str, Any]]:
    import json

    if not path.exists():
        return None
    return json.loads(path.read_text(encoding="utf-8"))
