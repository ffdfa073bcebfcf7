"""
Shared fixtures: an in-memory MongoDB (mongomock), a recording broadcaster
and a TestClient with both injected through dependency overrides.
"""
import mongomock
import pytest
from fastapi.testclient import TestClient

from config import Settings, get_settings
from database import create_document, ensure_indexes, get_db
from realtime import get_broadcaster
from workflow import ComplaintWorkflow


class RecordingBroadcaster:
    def __init__(self):
        self.events = []

    async def broadcast(self, event, data):
        self.events.append((event, data))

    def of(self, event):
        return [data for name, data in self.events if name == event]


@pytest.fixture
def db():
    database = mongomock.MongoClient()["resolvenow_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def broadcaster():
    return RecordingBroadcaster()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        secret_key="test-secret-key-for-resolvenow",
        upload_dir=str(tmp_path / "uploads"),
    )


@pytest.fixture
def workflow(db, broadcaster):
    return ComplaintWorkflow(db, broadcaster, max_active=3)


@pytest.fixture
def make_complaint(db):
    def _make(status="Pending", user_id="000000000000000000000001"):
        return create_document(db, "complaint", {
            "user_id": user_id,
            "name": "Asha",
            "address": "12 Lake Road",
            "city": "Pune",
            "state": "MH",
            "pincode": "411001",
            "comment": "Street light broken",
            "attachments": [],
            "status": status,
        })
    return _make


@pytest.fixture
def app_overrides(db, broadcaster, settings):
    from main import app

    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_broadcaster] = lambda: broadcaster
    app.dependency_overrides[get_settings] = lambda: settings
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def client(app_overrides):
    return TestClient(app_overrides)
