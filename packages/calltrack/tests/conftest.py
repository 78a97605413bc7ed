"""Shared fixtures for calltrack tests."""

import pytest
from calltrack.store import InMemoryClickStore

from factories import FakePublisher


@pytest.fixture
def store() -> InMemoryClickStore:
    """Empty in-memory click store."""
    return InMemoryClickStore()


@pytest.fixture
def publisher() -> FakePublisher:
    """Publisher that always succeeds."""
    return FakePublisher()
