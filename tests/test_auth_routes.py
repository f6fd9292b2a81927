"""API tests for the rate-limited auth endpoints."""

from __future__ import annotations

from fastapi.testclient import TestClient

from app.core.app_factory import create_app
from app.core.config import Settings, settings
from app.core.rate_limit import build_rate_limiter_registry
from app.schemas.auth import GENERIC_RESET_MESSAGE

FORGOT = "/v1/auth/forgot-password"
LOGIN = "/v1/auth/login-attempts"
LOGIN_RESET = "/v1/auth/login-attempts/reset"


def _forgot(client: TestClient, email: str, ip: str = "203.0.113.7"):
    return client.post(FORGOT, json={"email": email}, headers={"X-Forwarded-For": ip})


class TestForgotPassword:
    def test_returns_generic_message_and_sends(self, client: TestClient, reset_provider) -> None:
        resp = _forgot(client, "Ada@Example.com")

        assert resp.status_code == 200
        assert resp.json() == {"success": True, "message": GENERIC_RESET_MESSAGE}
        assert reset_provider.sent == ["ada@example.com"]

    def test_does_not_require_api_key(self, client: TestClient) -> None:
        resp = client.post(FORGOT, json={"email": "ada@example.com"})

        assert resp.status_code == 200

    def test_invalid_email_returns_400(self, client: TestClient) -> None:
        resp = _forgot(client, "not-an-email")

        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_email"

    def test_email_limit_is_invisible_to_client(self, client: TestClient, reset_provider) -> None:
        responses = [_forgot(client, "ada@example.com") for _ in range(7)]

        assert {r.status_code for r in responses} == {200}
        assert len({r.text for r in responses}) == 1
        assert len(reset_provider.sent) == 5

    def test_ip_limit_returns_429_with_headers(self, client: TestClient) -> None:
        for i in range(20):
            assert _forgot(client, f"user{i}@example.com").status_code == 200

        resp = _forgot(client, "someone@example.com")

        assert resp.status_code == 429
        assert resp.json()["detail"] == (
            "Too many password reset requests from this location. Please try again in 1 hour."
        )
        assert resp.headers["Retry-After"] == "3600"
        assert resp.headers["X-RateLimit-Limit"] == "20"
        assert resp.headers["X-RateLimit-Remaining"] == "0"

    def test_ip_limit_is_per_address(self, client: TestClient) -> None:
        for i in range(20):
            _forgot(client, f"user{i}@example.com", ip="203.0.113.7")

        assert _forgot(client, "x@example.com", ip="198.51.100.1").status_code == 200

    def test_spoofed_forwarded_for_ignored_without_proxy_trust(self, client: TestClient, monkeypatch) -> None:
        monkeypatch.setattr(settings.app, "trust_proxy_headers", False)

        statuses = [
            _forgot(client, f"user{i}@example.com", ip=f"10.0.0.{i}").status_code for i in range(30)
        ]

        assert statuses[:20] == [200] * 20
        assert set(statuses[20:]) == {429}

    def test_window_slides_back_open(self, client: TestClient, clock) -> None:
        for i in range(20):
            _forgot(client, f"user{i}@example.com")
        assert _forgot(client, "x@example.com").status_code == 429

        clock.advance(3601)

        assert _forgot(client, "x@example.com").status_code == 200

    def test_store_outage_fails_open(self, broken_client: TestClient, reset_provider) -> None:
        resp = broken_client.post(FORGOT, json={"email": "ada@example.com"})

        assert resp.status_code == 200
        assert reset_provider.sent == ["ada@example.com"]


class TestLoginAttempts:
    def test_requires_api_key(self, client: TestClient) -> None:
        resp = client.post(LOGIN, json={"email": "ada@example.com"})

        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "missing_api_key"

    def test_rejects_wrong_api_key(self, client: TestClient) -> None:
        resp = client.post(LOGIN, json={"email": "ada@example.com"}, headers={"X-API-Key": "nope"})

        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "invalid_api_key"

    def test_allowed_attempt_reports_tightest_window(self, client: TestClient, auth_headers, clock) -> None:
        resp = client.post(
            LOGIN,
            json={"email": "ada@example.com", "client_ip": "203.0.113.7"},
            headers=auth_headers,
        )

        assert resp.status_code == 200
        body = resp.json()
        assert body["allowed"] is True
        assert body["remaining"] == 4
        assert body["degraded"] is False
        assert body["reset_at"] == int(clock.now) + 900
        assert resp.headers["X-RateLimit-Limit"] == "5"
        assert resp.headers["X-RateLimit-Remaining"] == "4"

    def test_sixth_attempt_is_blocked(self, client: TestClient, auth_headers) -> None:
        payload = {"email": "ada@example.com", "client_ip": "203.0.113.7"}
        for _ in range(5):
            assert client.post(LOGIN, json=payload, headers=auth_headers).status_code == 200

        resp = client.post(LOGIN, json=payload, headers=auth_headers)

        assert resp.status_code == 429
        assert resp.json()["detail"] == "Too many login attempts. Please try again in 15 minutes."
        assert resp.headers["Retry-After"] == "900"

    def test_email_limit_applies_across_addresses(self, client: TestClient, auth_headers) -> None:
        for i in range(5):
            client.post(
                LOGIN,
                json={"email": "ada@example.com", "client_ip": f"203.0.113.{i}"},
                headers=auth_headers,
            )

        resp = client.post(
            LOGIN,
            json={"email": "ADA@example.com", "client_ip": "198.51.100.1"},
            headers=auth_headers,
        )

        assert resp.status_code == 429

    def test_reset_after_successful_login(self, client: TestClient, auth_headers) -> None:
        payload = {"email": "ada@example.com", "client_ip": "203.0.113.7"}
        for _ in range(5):
            client.post(LOGIN, json=payload, headers=auth_headers)

        resp = client.post(LOGIN_RESET, json={"email": "Ada@example.com"}, headers=auth_headers)
        assert resp.status_code == 204

        assert client.post(LOGIN, json=payload, headers=auth_headers).status_code == 200

    def test_store_outage_fails_closed(self, broken_client: TestClient, auth_headers) -> None:
        resp = broken_client.post(
            LOGIN,
            json={"email": "ada@example.com", "client_ip": "203.0.113.7"},
            headers=auth_headers,
        )

        assert resp.status_code == 429
        assert resp.headers["Retry-After"] == "30"

    def test_invalid_email_returns_400(self, client: TestClient, auth_headers) -> None:
        resp = client.post(LOGIN, json={"email": "nope"}, headers=auth_headers)

        assert resp.status_code == 400

    def test_disabled_limits_report_full_quota(self, clock, memory_store, reset_provider, auth_headers) -> None:
        cfg = Settings()
        cfg.rate_limit.enabled = False
        registry = build_rate_limiter_registry(cfg, store=memory_store, clock=clock)
        app = create_app(rate_limiters=registry, password_reset_provider=reset_provider)

        with TestClient(app) as client:
            responses = [
                client.post(
                    LOGIN,
                    json={"email": "ada@example.com", "client_ip": "203.0.113.7"},
                    headers=auth_headers,
                )
                for _ in range(7)
            ]
            stored_keys = memory_store.key_count()

        assert {r.status_code for r in responses} == {200}
        assert responses[-1].json() == {"allowed": True, "remaining": 5, "reset_at": None, "degraded": False}
        assert stored_keys == 0
