"""
Shared fixtures.
"""

import pytest

from parley.auth import Caller
from parley.storage.sqlite_store import SQLiteStore
from tests.fakes import make_cfg


@pytest.fixture
def cfg(tmp_path):
    return make_cfg(tmp_path)


@pytest.fixture
def store(tmp_path):
    """Create a fresh SQLite store for each test."""
    return SQLiteStore(str(tmp_path / "test.db"))


@pytest.fixture
def alice():
    return Caller(id="alice", current_workspace="ws-1")


@pytest.fixture
def bob():
    return Caller(id="bob", current_workspace="ws-2")
