from __future__ import annotations

import pytest

from tests.token_broker.support.fakes import FakeLogger, RecordingSleep
from token_broker.storage import InMemoryStorage


@pytest.fixture
def fake_logger() -> FakeLogger:
    """Provide a fresh structured logger test double per test."""
    return FakeLogger()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    """Provide a backoff sleep that records delays instead of waiting."""
    return RecordingSleep()


@pytest.fixture
def storage() -> InMemoryStorage:
    """Provide empty in-memory storage per test."""
    return InMemoryStorage()
