"""Shared fixtures for usagegate tests."""

import pytest

from usagegate.app.core.store import InMemoryStateStore, reset_store
from usagegate.app.services.ping_service import reset_ping_service


class FakeClock:
    """Manually advanced epoch-seconds clock."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def reset_globals():
    """Reset global state before each test."""
    reset_store()
    reset_ping_service()
    yield
    reset_store()
    reset_ping_service()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    """In-memory store whose string expiry follows the fake clock."""
    return InMemoryStateStore(clock=clock)
