"""
Pytest configuration and shared fixtures.

Test environment variables are set here before any smsrelay import so the
module-level settings and engine point at a throwaway SQLite database.
"""

import os
import tempfile

os.environ["DATABASE_URL"] = "sqlite:///" + os.path.join(tempfile.gettempdir(), "smsrelay_test.sqlite")
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["FROM_NUMBER"] = "+15550001111"
os.environ["TELNYX_API_KEY"] = "KEY_TEST"
os.environ.pop("TELNYX_MESSAGING_PROFILE_ID", None)
os.environ.pop("TELNYX_WEBHOOK_PUBLIC_KEY", None)

import pytest
from fastapi.testclient import TestClient

# Clear settings cache before any app imports to ensure test env vars are used
from smsrelay.config import get_settings
get_settings.cache_clear()

from smsrelay.errors import StorageError
from smsrelay.gateway import SendReceipt
from smsrelay.main import app
from smsrelay.storage import MessageStore, SessionLocal, engine
from smsrelay.models import Base


class FakeGateway:
    """Records calls and returns a canned receipt, or raises a canned error."""

    def __init__(self, receipt=None, error=None):
        self.receipt = receipt or SendReceipt(provider_id="msg_out_1", status="queued")
        self.error = error
        self.calls = []

    async def send(self, to, body, sender):
        self.calls.append((to, body, sender))
        if self.error is not None:
            raise self.error
        return self.receipt

    async def close(self):
        pass


class FakeStore:
    """In-memory stand-in for MessageStore with call counters."""

    def __init__(self, fail_inserts=False):
        self.records = []
        self.inserts = 0
        self.updates = []
        self.fail_inserts = fail_inserts

    def insert(self, record):
        self.inserts += 1
        if self.fail_inserts:
            raise StorageError("Failed to store message", detail="disk full")
        record.id = len(self.records) + 1
        self.records.append(record)
        return record.id

    def update_status(self, provider_message_id, new_status):
        self.updates.append((provider_message_id, new_status))
        if not provider_message_id:
            return 0
        affected = 0
        for record in self.records:
            if record.provider_message_id == provider_message_id:
                record.status = new_status
                affected += 1
        return affected

    def list(self, limit=200):
        return sorted(self.records, key=lambda r: r.id, reverse=True)[:limit]


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture
def fake_store():
    return FakeStore()


@pytest.fixture(scope="function")
def db():
    """Fresh database tables for each test."""
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def store(db):
    return MessageStore(SessionLocal)


@pytest.fixture(scope="function")
def client(db, fake_gateway):
    """Test client with a fresh database and the carrier replaced by a fake."""
    from smsrelay.main import get_gateway

    app.dependency_overrides[get_gateway] = lambda: fake_gateway
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()

