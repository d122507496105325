"""
Pytest configuration and shared fixtures.

Settings are pointed at a throwaway data directory before any app import,
then each test gets its own FileStorage-backed MessageStore injected through
app.dependency_overrides.
"""

import os
import tempfile

import pytest

# Configure environment before any app imports so the default store never
# touches ./data
_TEST_DATA_DIR = tempfile.mkdtemp(prefix="calcchat-test-")
os.environ["STORAGE_BACKEND"] = "file"
os.environ["CHAT_FILE_PATH"] = os.path.join(_TEST_DATA_DIR, "chat.json")
os.environ["LOG_LEVEL"] = "DEBUG"

from calcchat.config import get_settings  # noqa: E402

get_settings.cache_clear()

from fastapi.testclient import TestClient  # noqa: E402

from calcchat.main import app, get_message_store  # noqa: E402
from calcchat.errors import StorageError  # noqa: E402
from calcchat.storage import FileStorage  # noqa: E402
from calcchat.store import MessageStore  # noqa: E402


@pytest.fixture
def storage(tmp_path):
    """File storage in a per-test temp directory."""
    return FileStorage(tmp_path / "data" / "chat.json")


@pytest.fixture
def store(storage):
    return MessageStore(storage)


@pytest.fixture
def client(store):
    """Create test client backed by a fresh message store for each test."""
    app.dependency_overrides[get_message_store] = lambda: store

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def post_message(client):
    """Helper to create a message through the API and return its JSON."""
    def _post(name: str, message: str) -> dict:
        response = client.post("/api/chat", json={"name": name, "message": message})
        assert response.status_code == 200
        return response.json()["message"]
    return _post


class FlakyStorage(FileStorage):
    """FileStorage whose reads or writes can be switched to fail."""

    def __init__(self, path):
        super().__init__(path)
        self.fail_load = False
        self.fail_store = False

    def load(self):
        if self.fail_load:
            raise StorageError("disk on fire")
        return super().load()

    def store(self, messages):
        if self.fail_store:
            raise StorageError("disk on fire")
        super().store(messages)


@pytest.fixture
def flaky_storage(tmp_path):
    return FlakyStorage(tmp_path / "flaky" / "chat.json")


@pytest.fixture
def flaky_client(flaky_storage):
    """Test client whose storage can be made to fail."""
    flaky_store = MessageStore(flaky_storage)
    app.dependency_overrides[get_message_store] = lambda: flaky_store

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
