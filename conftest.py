import os

import pytest
from fastapi.testclient import TestClient

from api import create_app
from catalog.database import MemoryDocumentStore, SQLiteDocumentStore
from catalog.ui_helpers import OUTPUT_MODE_ENV


@pytest.fixture(autouse=True)
def _plain_output(monkeypatch):
    # CLI output mode lives in the environment; keep it from leaking between tests
    monkeypatch.delenv(OUTPUT_MODE_ENV, raising=False)


@pytest.fixture
def store():
    return MemoryDocumentStore()


@pytest.fixture
def sqlite_store(tmp_path, request):
    # One database file per test
    db_file = str(tmp_path / f"test_{request.node.name}.db")
    store = SQLiteDocumentStore(db_file)
    yield store
    store.close()
    if os.path.exists(db_file):
        os.remove(db_file)


@pytest.fixture
def client(sqlite_store):
    return TestClient(create_app(sqlite_store))
