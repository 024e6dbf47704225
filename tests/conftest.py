import os

# Must be set before importing app so nothing touches the real items.json.
os.environ.setdefault("DATA_FILE", os.path.join(os.path.dirname(__file__), "unused-items.json"))

import pytest
from fastapi.testclient import TestClient

from app import app, get_store
from store import Store


@pytest.fixture
def data_file(tmp_path):
    return tmp_path / "items.json"


@pytest.fixture
def store(data_file):
    """A freshly loaded store backed by a per-test file that does not exist yet."""
    s = Store(data_file)
    s.load()
    return s


@pytest.fixture
def client(store):
    """
    A TestClient whose get_store dependency is overridden to use the per-test
    store.

    TestClient is intentionally used without the context manager so the app's
    startup event (which loads DATA_FILE) does not run.
    """
    app.dependency_overrides[get_store] = lambda: store
    yield TestClient(app, raise_server_exceptions=True)
    app.dependency_overrides.clear()


@pytest.fixture
def groceries(client):
    """An app holding one todo named "Groceries" with two tasks."""
    app_id = client.post("/apps", json={"name": "Home"}).json()["id"]
    todo = client.post(f"/apps/{app_id}/todos/new", json={"name": "Groceries"}).json()
    for text in ("milk", "eggs"):
        r = client.post(f"/apps/{app_id}/todos/{todo['id']}/tasks", json={"text": text})
        assert r.status_code == 201
    return {"app_id": app_id, "todo_id": todo["id"]}
