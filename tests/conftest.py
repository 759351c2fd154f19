"""Shared test fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from optiondesk.config.settings import Settings, load_settings
from optiondesk.data.database import Database
from optiondesk.data.migrations import run_migrations
from optiondesk.data.repository import Repository
from optiondesk.data.store import KeyValueStore
from tests.factories import FakeClock


@pytest.fixture
def settings() -> Settings:
    """Load default settings for testing."""
    return load_settings("default")


@pytest.fixture
def fast_settings(db_path) -> Settings:
    """Demo settings with no delays and an isolated database."""
    settings = load_settings("demo")
    settings.storage.path = db_path
    settings.simulator.execution_delay = 0.0
    settings.simulator.update_interval = 0.01
    settings.broker.heartbeat_interval = 60.0
    return settings


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).resolve().parent.parent


@pytest.fixture
def db_path(tmp_path: Path) -> str:
    """Temporary database path for test isolation."""
    return str(tmp_path / "test_optiondesk.db")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
async def db(db_path):
    """Connected database with the schema applied."""
    await run_migrations(db_path)
    database = Database(db_path)
    await database.connect()
    yield database
    await database.disconnect()


@pytest.fixture
def store(db, clock) -> KeyValueStore:
    return KeyValueStore(db, clock=clock.epoch)


@pytest.fixture
def repo(store, settings) -> Repository:
    return Repository(store, settings.storage)
