"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
Environment defaults are set before anything imports ``app.core.config`` so
the global settings are built for tests (no .env file, in-memory store).
"""

from __future__ import annotations

import os

# CRITICAL: Set these before any imports that might load settings
os.environ["APP_ENV"] = "testing"
os.environ.setdefault("APP_API_KEY_REQUIRED", "true")
os.environ.setdefault("APP_API_KEYS", "test-api-key-123,test-api-key-456")
os.environ.setdefault("RATE_LIMIT_BACKEND", "memory")
os.environ.setdefault("RATE_LIMIT_CLEANUP_INTERVAL_SECONDS", "0")
os.environ.setdefault("APP_TRUST_PROXY_HEADERS", "true")
os.environ.pop("AUTH_PROVIDER_URL", None)

from typing import Iterator  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from app.adapters.auth_provider.base import AbstractPasswordResetProvider  # noqa: E402
from app.adapters.rate_limit.base import AbstractWindowStore, WindowSnapshot  # noqa: E402
from app.adapters.rate_limit.in_memory import InMemoryWindowStore  # noqa: E402
from app.core.app_factory import create_app  # noqa: E402
from app.core.config import settings  # noqa: E402
from app.core.errors import BackendUnavailableError  # noqa: E402
from app.core.rate_limit import RateLimiterRegistry, build_rate_limiter_registry  # noqa: E402
from app.services.metrics import CheckEvent, FallbackEvent  # noqa: E402

API_KEY = "test-api-key-123"
START_TIME = 1_700_000_000.0


class FakeClock:
    """Controllable time source returning UNIX seconds."""

    def __init__(self, now: float = START_TIME) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingMetrics:
    """Metrics emitter that keeps every event for assertions."""

    def __init__(self) -> None:
        self.checks: list[CheckEvent] = []
        self.fallbacks: list[FallbackEvent] = []

    def record_check(self, event: CheckEvent) -> None:
        self.checks.append(event)

    def record_fallback(self, event: FallbackEvent) -> None:
        self.fallbacks.append(event)


class BrokenStore(AbstractWindowStore):
    """Store that fails every call, as an unreachable backend would."""

    name = "broken"

    def __init__(self) -> None:
        self.calls = 0

    def _fail(self) -> None:
        self.calls += 1
        raise BackendUnavailableError(
            code="rate_limit_backend_unavailable",
            message="store is down",
        )

    async def slide_and_count(self, key, *, now_ms, window_ms, limit, member) -> WindowSnapshot:
        self._fail()

    async def peek(self, key, *, now_ms, window_ms) -> WindowSnapshot:
        self._fail()

    async def delete(self, key) -> None:
        self._fail()

    async def ping(self) -> bool:
        return False


class RecordingResetProvider(AbstractPasswordResetProvider):
    """Password reset provider that records the addresses it was asked to email."""

    def __init__(self) -> None:
        self.sent: list[str] = []
        self.closed = False

    async def send_reset(self, email: str, *, redirect_to: str) -> None:
        self.sent.append(email)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def metrics() -> RecordingMetrics:
    return RecordingMetrics()


@pytest.fixture
def memory_store() -> InMemoryWindowStore:
    return InMemoryWindowStore()


@pytest.fixture
def reset_provider() -> RecordingResetProvider:
    return RecordingResetProvider()


@pytest.fixture
def registry(clock: FakeClock, memory_store: InMemoryWindowStore) -> RateLimiterRegistry:
    return build_rate_limiter_registry(settings, store=memory_store, clock=clock)


@pytest.fixture
def client(
    registry: RateLimiterRegistry,
    reset_provider: RecordingResetProvider,
) -> Iterator[TestClient]:
    """Test client with a fresh in-memory limiter and a fake clock."""
    app = create_app(rate_limiters=registry, password_reset_provider=reset_provider)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def broken_client(
    clock: FakeClock,
    reset_provider: RecordingResetProvider,
) -> Iterator[TestClient]:
    """Test client whose rate limit store is unreachable."""
    broken_registry = build_rate_limiter_registry(settings, store=BrokenStore(), clock=clock)
    app = create_app(rate_limiters=broken_registry, password_reset_provider=reset_provider)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"X-API-Key": API_KEY}


@pytest.fixture
def broken_store() -> BrokenStore:
    return BrokenStore()
