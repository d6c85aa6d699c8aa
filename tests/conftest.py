"""Pytest fixtures for tournament sync tests.

This module provides fixtures for test configuration, the local database,
the in-memory remote store and the sync service.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Generator, List, Tuple

import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from tournament_sync.core.config import Config
from tournament_sync.core.database import Database
from tournament_sync.core.models import SyncScope
from tournament_sync.core.remote import DocumentTree, InMemoryRemoteStore
from tournament_sync.core.service import SyncService

from helpers import ORG_ID, TOURNAMENT_ID


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "web: Flask document server and HTTP adapter tests")
    config.addinivalue_line("markers", "cli: command-line interface tests")
    config.addinivalue_line("markers", "sync: engine-level sync scenarios")


@pytest.fixture
def test_config_dir(tmp_path: Path) -> Path:
    """Create temporary config directory for tests.

    Args:
        tmp_path: pytest temporary directory fixture

    Returns:
        Path to temporary config directory.
    """
    config_dir = tmp_path / "tournament_sync_test"
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


@pytest.fixture
def test_config(test_config_dir: Path) -> Config:
    """Create test configuration.

    Args:
        test_config_dir: Temporary config directory

    Returns:
        Config instance for testing.
    """
    return Config(config_dir=test_config_dir)


@pytest.fixture
def test_db_path(test_config_dir: Path) -> Path:
    """Get path for test database."""
    return test_config_dir / "test_tournament.db"


@pytest.fixture
def db(test_db_path: Path) -> Generator[Database, None, None]:
    """Create empty test database.

    Yields:
        Empty Database instance.
    """
    database = Database(test_db_path)
    yield database
    database.close()


@pytest.fixture
def tree() -> DocumentTree:
    """Authoritative remote document tree shared by every device in a test."""
    return DocumentTree()


@pytest.fixture
def remote(tree: DocumentTree) -> InMemoryRemoteStore:
    """Remote store adapter over the shared tree."""
    return InMemoryRemoteStore(tree)


@pytest.fixture
def scope() -> SyncScope:
    """Organization/tournament scope used by most tests."""
    return SyncScope(ORG_ID, TOURNAMENT_ID)


@pytest.fixture
def service(db: Database, remote: InMemoryRemoteStore, test_config: Config) -> SyncService:
    """Sync service over the test database and in-memory remote store."""
    return SyncService(db, remote, test_config)


@pytest.fixture
def notifications() -> List[Tuple[str, str]]:
    """Collected (level, message) pairs from a service's notify callback."""
    return []


@pytest.fixture
def two_devices(
    tmp_path: Path, tree: DocumentTree
) -> Generator[Tuple[SyncService, SyncService], None, None]:
    """Two devices (each with its own local store) syncing against one tree."""
    db_a = Database(tmp_path / "device_a.db")
    db_b = Database(tmp_path / "device_b.db")
    device_a = SyncService(db_a, InMemoryRemoteStore(tree))
    device_b = SyncService(db_b, InMemoryRemoteStore(tree))
    yield device_a, device_b
    db_a.close()
    db_b.close()
