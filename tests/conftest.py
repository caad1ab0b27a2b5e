"""
Shared pytest fixtures for Ribbon quota tests.

Provides fixtures for:
- A controllable clock
- In-memory and failing key/value stores
- Trackers wired to both
- Logging capture
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Dict, Optional

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from ribbon.auth.attempt_limiter import LoginAttemptLimiter
from ribbon.billing.quota_tracker import QuotaTracker
from ribbon.config import PersistenceFailurePolicy, QuotaSettings
from ribbon.storage.kv_store import InMemoryKeyValueStore


START_TIME = 1_700_000_000.0
HOUR = 60 * 60
MINUTE = 60


# ============================================================================
# Test doubles
# ============================================================================


class FakeClock:
    """Epoch-seconds clock that only moves when told to."""

    def __init__(self, start: float = START_TIME):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FailingStore(InMemoryKeyValueStore):
    """In-memory store whose reads and/or writes can be switched to fail."""

    def __init__(
        self,
        initial: Optional[Dict[str, str]] = None,
        fail_get: bool = False,
        fail_set: bool = False,
    ):
        super().__init__(initial)
        self.fail_get = fail_get
        self.fail_set = fail_set
        self.get_calls = 0
        self.set_calls = 0

    async def get(self, key: str) -> Optional[str]:
        self.get_calls += 1
        if self.fail_get:
            raise OSError("storage read failed")
        return await super().get(key)

    async def set(self, key: str, value: str) -> None:
        self.set_calls += 1
        if self.fail_set:
            raise OSError("storage write failed")
        await super().set(key, value)


class SlowStore(InMemoryKeyValueStore):
    """Store that yields to the event loop on every call."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        super().__init__(initial)
        self.get_calls = 0

    async def get(self, key: str) -> Optional[str]:
        self.get_calls += 1
        await asyncio.sleep(0)
        return await super().get(key)

    async def set(self, key: str, value: str) -> None:
        await asyncio.sleep(0)
        await super().set(key, value)


# ============================================================================
# Logging Fixtures
# ============================================================================

@pytest.fixture(autouse=True)
def configure_test_logging(caplog):
    """Configure logging for all tests."""
    caplog.set_level(logging.DEBUG)
    return caplog


# ============================================================================
# Core Fixtures
# ============================================================================

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> QuotaSettings:
    return QuotaSettings()


@pytest.fixture
def fail_closed_settings() -> QuotaSettings:
    return QuotaSettings(failure_policy=PersistenceFailurePolicy.FAIL_CLOSED)


@pytest.fixture
def store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def failing_store() -> FailingStore:
    return FailingStore()


@pytest.fixture
def make_failing_store():
    """Factory for FailingStore with seeded data and failure switches."""
    return FailingStore


@pytest.fixture
def slow_store() -> SlowStore:
    return SlowStore()


@pytest.fixture
def quota_tracker(store, settings, clock) -> QuotaTracker:
    """QuotaTracker on a fresh in-memory store and a fake clock."""
    return QuotaTracker(store, settings, clock=clock)


@pytest.fixture
def attempt_limiter(store, settings, clock) -> LoginAttemptLimiter:
    """LoginAttemptLimiter on a fresh in-memory store and a fake clock."""
    return LoginAttemptLimiter(store, settings, clock=clock)
