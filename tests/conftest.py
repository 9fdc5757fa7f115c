"""
Pytest fixtures for userdir tests.
"""

from pathlib import Path

import pytest

from userdir.models import UserRecord
from userdir.store import RecordStore


@pytest.fixture
def user_file(tmp_path: Path) -> Path:
    return tmp_path / "userDB.json"


@pytest.fixture
def store(user_file: Path) -> RecordStore:
    """Empty store loaded from a not-yet-existing file."""
    return RecordStore.open(user_file, flush_timeout=None)


@pytest.fixture
def stark_store(store: RecordStore) -> RecordStore:
    """Store with three records, flushed."""
    store.insert(UserRecord.create("Arya", "Stark", "arya@winterfell.com", "Not today"))
    store.insert(UserRecord.create("Sansa", "Stark", "sansa@winterfell.com", "I'm a slow learner"))
    store.insert(UserRecord.create("Jon", "Snow", "jon.snow@winterfell.com", "Winter is coming"))
    store.flush()
    return store
