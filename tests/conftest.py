"""
Pytest configuration and shared fixtures.

Environment variables are set before any app import so the module-level
settings and engine point at a throwaway SQLite file and the in-memory queue.
"""

import os
import tempfile

_TEST_DIR = tempfile.mkdtemp(prefix="sms-notification-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{_TEST_DIR}/test.db"
os.environ["QUEUE_BACKEND"] = "memory"
os.environ["SMS_TRANSPORT"] = "mock"
os.environ["REQUIRE_AUTH_HEADER"] = "true"
os.environ["LOG_LEVEL"] = "WARNING"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from app.config import get_settings  # noqa: E402

get_settings.cache_clear()

from app.container import Services, get_services  # noqa: E402
from app.denylist import DenylistCache  # noqa: E402
from app.main import app  # noqa: E402
from app.message_queue import InMemoryMessageQueue  # noqa: E402
from app.search_index import SearchIndex  # noqa: E402
from app.storage import Base, RecordStore, SessionLocal, engine, init_db  # noqa: E402
from app.submission import SubmissionHandler  # noqa: E402
from app.worker import DeliveryWorker  # noqa: E402

from tests.fakes import FakeClock, FakeRedis, RecordingTransport  # noqa: E402

AUTH_HEADERS = {"Authorization": "Bearer test-token"}


@pytest.fixture(autouse=True)
def tables():
    """Fresh tables for each test."""
    init_db()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def clock():
    return FakeClock(start=1_700_000_000.0)


@pytest.fixture
def fake_redis(clock):
    return FakeRedis(clock)


@pytest.fixture
def denylist(fake_redis):
    return DenylistCache(fake_redis, key="sms:blacklist", ttl_seconds=86400)


@pytest.fixture
def record_store():
    return RecordStore(SessionLocal)


@pytest.fixture
def search_index():
    return SearchIndex(SessionLocal)


@pytest.fixture
def queue():
    return InMemoryMessageQueue()


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def services(record_store, denylist, queue, transport, search_index):
    return Services(
        record_store=record_store,
        denylist=denylist,
        queue=queue,
        transport=transport,
        search_index=search_index,
    )


@pytest.fixture
def handler(record_store, denylist, queue):
    return SubmissionHandler(record_store, denylist, queue)


@pytest.fixture
def worker(record_store, denylist, transport, search_index, queue):
    return DeliveryWorker(record_store, denylist, transport, search_index, queue)


@pytest.fixture
def client(services):
    """Test client wired to the in-process fakes."""
    app.dependency_overrides[get_services] = lambda: services
    with TestClient(app) as test_client:
        test_client.headers.update(AUTH_HEADERS)
        yield test_client
    app.dependency_overrides.clear()
