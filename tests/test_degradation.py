"""Tests for failure policies, metrics emission and multi-scope evaluation."""

from __future__ import annotations

import asyncio
import logging
import time

import pytest

from app.adapters.rate_limit.in_memory import InMemoryWindowStore
from app.core.config import FailurePolicy
from app.core.errors import BackendError, InvalidRateLimitConfigError
from app.services.degradation import GuardedRateLimiter, evaluate_limits
from app.services.metrics import CheckEvent, LoggingMetricsEmitter
from app.services.rate_limiter import RateLimitConfig, SlidingWindowRateLimiter
from app.services.retry import RetryPolicy

WINDOW_MS = 60_000


async def _no_sleep(_: float) -> None:
    return None


def _guarded(store, clock, metrics, *, scope="login_email", limit=3, policy=FailurePolicy.FAIL_CLOSED, **kwargs):
    limiter = SlidingWindowRateLimiter(
        store,
        clock=clock,
        call_timeout_seconds=kwargs.pop("call_timeout_seconds", 0.25),
        retry_policy=RetryPolicy(max_retries=kwargs.pop("max_retries", 2)),
        sleep=_no_sleep,
    )
    config = RateLimitConfig(scope=scope, limit=limit, window_ms=WINDOW_MS, failure_policy=policy)
    return GuardedRateLimiter(limiter, config, metrics=metrics, clock=clock, **kwargs)


class HangingStore(InMemoryWindowStore):
    name = "hanging"

    async def slide_and_count(self, key, *, now_ms, window_ms, limit, member):
        await asyncio.sleep(10)


class TestHealthyBackend:
    @pytest.mark.asyncio
    async def test_check_passes_through_and_records_metrics(self, memory_store, clock, metrics) -> None:
        guarded = _guarded(memory_store, clock, metrics, limit=1)

        allowed = await guarded.check("ada@example.com")
        blocked = await guarded.check("ada@example.com")

        assert allowed.allowed is True and allowed.degraded is False
        assert blocked.allowed is False and blocked.degraded is False
        assert metrics.checks == [
            CheckEvent(scope="login_email", allowed=True, remaining=0),
            CheckEvent(scope="login_email", allowed=False, remaining=0),
        ]
        assert metrics.fallbacks == []

    @pytest.mark.asyncio
    async def test_scopes_share_a_store_without_colliding(self, memory_store, clock, metrics) -> None:
        login = _guarded(memory_store, clock, metrics, scope="login_email", limit=1)
        reset = _guarded(memory_store, clock, metrics, scope="password_reset_email", limit=1)

        assert (await login.check("ada@example.com")).allowed is True
        assert (await reset.check("ada@example.com")).allowed is True

    @pytest.mark.asyncio
    async def test_status_and_reset(self, memory_store, clock, metrics) -> None:
        guarded = _guarded(memory_store, clock, metrics, limit=2)
        await guarded.check("ada@example.com")

        status = await guarded.status("ada@example.com")
        assert (status.count, status.remaining) == (1, 1)

        assert await guarded.reset("ada@example.com") is True
        assert (await guarded.status("ada@example.com")).count == 0

    @pytest.mark.asyncio
    async def test_empty_identifier_is_not_a_backend_failure(self, memory_store, clock, metrics) -> None:
        guarded = _guarded(memory_store, clock, metrics)

        with pytest.raises(InvalidRateLimitConfigError):
            await guarded.check("")
        assert metrics.fallbacks == []


class TestBackendFailure:
    @pytest.mark.asyncio
    async def test_fail_open_allows_and_reports(self, broken_store, clock, metrics) -> None:
        guarded = _guarded(broken_store, clock, metrics, scope="password_reset_email", limit=5, policy=FailurePolicy.FAIL_OPEN)

        result = await guarded.check("ada@example.com")

        assert result.allowed is True
        assert result.degraded is True
        assert result.remaining == 5
        assert result.retry_after_seconds is None
        assert len(metrics.fallbacks) == 1
        assert metrics.fallbacks[0].policy is FailurePolicy.FAIL_OPEN
        assert metrics.fallbacks[0].error_code == "rate_limit_backend_unavailable"
        assert metrics.checks[-1].degraded is True

    @pytest.mark.asyncio
    async def test_fail_closed_denies_with_retry_after(self, broken_store, clock, metrics) -> None:
        guarded = _guarded(broken_store, clock, metrics, degraded_retry_after_seconds=30)

        result = await guarded.check("ada@example.com")

        assert result.allowed is False
        assert result.degraded is True
        assert result.retry_after_seconds == 30
        assert result.reset_at_ms == int(clock.now * 1000) + 30_000
        assert metrics.fallbacks[0].policy is FailurePolicy.FAIL_CLOSED

    @pytest.mark.asyncio
    async def test_backend_is_retried_before_falling_back(self, broken_store, clock, metrics) -> None:
        guarded = _guarded(broken_store, clock, metrics, max_retries=2)

        await guarded.check("ada@example.com")

        assert broken_store.calls == 3

    @pytest.mark.asyncio
    async def test_check_returns_within_check_timeout(self, clock, metrics) -> None:
        guarded = _guarded(
            HangingStore(),
            clock,
            metrics,
            call_timeout_seconds=5.0,
            check_timeout_seconds=0.05,
        )

        started = time.perf_counter()
        result = await guarded.check("ada@example.com")
        elapsed = time.perf_counter() - started

        assert elapsed < 1.0
        assert result.allowed is False
        assert metrics.fallbacks[0].error_code == "rate_limit_check_timeout"

    @pytest.mark.asyncio
    async def test_status_propagates_backend_errors(self, broken_store, clock, metrics) -> None:
        guarded = _guarded(broken_store, clock, metrics, max_retries=0)

        with pytest.raises(BackendError):
            await guarded.status("ada@example.com")

    @pytest.mark.asyncio
    async def test_reset_reports_failure(self, broken_store, clock, metrics) -> None:
        guarded = _guarded(broken_store, clock, metrics, max_retries=0)

        assert await guarded.reset("ada@example.com") is False

    @pytest.mark.asyncio
    async def test_fallback_is_logged_without_identifier(self, broken_store, clock, caplog) -> None:
        guarded = _guarded(broken_store, clock, LoggingMetricsEmitter(), max_retries=0)

        with caplog.at_level(logging.INFO):
            await guarded.check("ada@example.com")

        messages = [r.getMessage() for r in caplog.records]
        assert "rate_limit.backend_error" in messages
        assert "rate_limit.fallback_activated" in messages
        fallback = next(r for r in caplog.records if r.getMessage() == "rate_limit.fallback_activated")
        assert fallback.levelno == logging.ERROR
        assert fallback.alert is True
        assert all("ada@example.com" not in str(r.__dict__) for r in caplog.records)


class TestEvaluateLimits:
    @pytest.mark.asyncio
    async def test_all_allow(self, memory_store, clock, metrics) -> None:
        ip = _guarded(memory_store, clock, metrics, scope="login_ip", limit=10)
        email = _guarded(memory_store, clock, metrics, scope="login_email", limit=3)

        combined = await evaluate_limits([(ip, "1.2.3.4"), (email, "ada@example.com")])

        assert combined.allowed is True
        assert combined.binding_scope == "login_email"
        assert combined.binding.remaining == 2
        assert combined.denied_scopes() == []

    @pytest.mark.asyncio
    async def test_one_denial_denies_and_every_scope_is_evaluated(self, memory_store, clock, metrics) -> None:
        ip = _guarded(memory_store, clock, metrics, scope="login_ip", limit=1)
        email = _guarded(memory_store, clock, metrics, scope="login_email", limit=5)
        await ip.check("1.2.3.4")

        combined = await evaluate_limits([(ip, "1.2.3.4"), (email, "ada@example.com")])

        assert combined.allowed is False
        assert combined.binding_scope == "login_ip"
        assert combined.denied_scopes() == ["login_ip"]
        assert (await email.status("ada@example.com")).count == 1

    @pytest.mark.asyncio
    async def test_binding_denial_has_longest_retry(self, memory_store, clock, metrics) -> None:
        ip = _guarded(memory_store, clock, metrics, scope="login_ip", limit=1)
        email = _guarded(memory_store, clock, metrics, scope="login_email", limit=1)
        await ip.check("1.2.3.4")
        clock.advance(20)
        await email.check("ada@example.com")
        clock.advance(1)

        combined = await evaluate_limits([(ip, "1.2.3.4"), (email, "ada@example.com")])

        assert combined.binding_scope == "login_email"
        assert combined.binding.retry_after_seconds == 59
        assert combined.result_for("login_ip").retry_after_seconds == 39

    @pytest.mark.asyncio
    async def test_same_scope_twice_keeps_earlier_denial(self, memory_store, clock, metrics) -> None:
        ip = _guarded(memory_store, clock, metrics, scope="login_ip", limit=1)
        await ip.check("1.1.1.1")

        combined = await evaluate_limits([(ip, "1.1.1.1"), (ip, "2.2.2.2")])

        assert combined.allowed is False
        assert combined.binding_scope == "login_ip"
        assert combined.binding.allowed is False
        assert combined.denied_scopes() == ["login_ip"]
        assert combined.result_for("login_ip").allowed is False
        assert [entry.identifier for entry in combined.results] == ["1.1.1.1", "2.2.2.2"]
        assert [entry.result.allowed for entry in combined.results] == [False, True]

    @pytest.mark.asyncio
    async def test_result_for_unknown_scope(self, memory_store, clock, metrics) -> None:
        ip = _guarded(memory_store, clock, metrics, scope="login_ip", limit=1)

        combined = await evaluate_limits([(ip, "1.1.1.1")])

        with pytest.raises(KeyError):
            combined.result_for("login_email")

    @pytest.mark.asyncio
    async def test_requires_at_least_one_check(self) -> None:
        with pytest.raises(ValueError):
            await evaluate_limits([])
