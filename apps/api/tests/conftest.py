"""Fixtures for API tests.

The app's collaborators are swapped through dependency overrides: an
in-memory click store, a canned PBX fetcher and a recording publisher.
The lifespan (database + scheduler start) is not run by these tests.
"""

import pytest
from calltrack.leads import PublishResult
from calltrack.reconciler import ReconciliationEngine
from calltrack.schemas import LeadRecord
from calltrack.scheduler import ReconciliationScheduler
from calltrack.store import InMemoryClickStore
from fastapi.testclient import TestClient

from api.dependencies import get_click_store, get_lead_publisher, get_scheduler
from api.main import app


class StubFetcher:
    """PBX fetcher returning whatever records the test puts in it."""

    def __init__(self):
        self.records = []
        self.error = None
        self.last_error = None

    async def fetch_logs(self, window_start, window_end, destination=None):
        self.last_error = self.error
        return [] if self.error else list(self.records)


class StubPublisher:
    """Lead publisher recording leads, optionally failing with a code."""

    def __init__(self):
        self.sent = []
        self.fail_with = None

    async def publish(self, click, call):
        return await self.send(LeadRecord.from_match(click, call))

    async def send(self, lead):
        self.sent.append(lead)
        if self.fail_with:
            return PublishResult(success=False, error=self.fail_with)
        return PublishResult(success=True, status_code=200)


@pytest.fixture
def click_store():
    """In-memory click store used by the app under test."""
    return InMemoryClickStore()


@pytest.fixture
def fetcher():
    return StubFetcher()


@pytest.fixture
def lead_publisher():
    return StubPublisher()


@pytest.fixture
def scheduler(click_store, fetcher, lead_publisher):
    """Scheduler over a real engine with stubbed upstreams (loop not started)."""
    engine = ReconciliationEngine(click_store, fetcher, lead_publisher)
    return ReconciliationScheduler(engine.run_pass, run_on_start=False)


@pytest.fixture
def client(click_store, lead_publisher, scheduler):
    """Test client with the app's dependencies overridden."""
    app.dependency_overrides[get_click_store] = lambda: click_store
    app.dependency_overrides[get_lead_publisher] = lambda: lead_publisher
    app.dependency_overrides[get_scheduler] = lambda: scheduler
    yield TestClient(app)
    app.dependency_overrides.clear()
