import os
import tempfile

import mongomock
import pytest

os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="uploads-"))

from fastapi.testclient import TestClient

import main
from database import JsonFileStore, MongoStore, SqlStore, get_store


@pytest.fixture
def store(tmp_path):
    return JsonFileStore(tmp_path / "db.json", seed=False)


@pytest.fixture(params=["json", "sql", "mongo"])
def any_store(request, tmp_path):
    if request.param == "sql":
        return SqlStore(f"sqlite:///{tmp_path / 'shop.db'}", seed=False)
    if request.param == "mongo":
        return MongoStore(mongomock.MongoClient()["beaute_store_test"], seed=False)
    return JsonFileStore(tmp_path / "db.json", seed=False)


@pytest.fixture
def client(store, tmp_path, monkeypatch):
    monkeypatch.setattr(main, "UPLOAD_DIR", str(tmp_path / "uploads"))
    monkeypatch.setattr(main, "MESSAGES_LOG", str(tmp_path / "messages.log"))
    main.app.dependency_overrides[get_store] = lambda: store
    with TestClient(main.app, raise_server_exceptions=False) as c:
        yield c
    main.app.dependency_overrides.clear()
