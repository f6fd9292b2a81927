"""API tests for rate limit administration and health endpoints."""

from __future__ import annotations

from fastapi.testclient import TestClient

ADMIN = "/v1/admin/rate-limits"


def _login(client: TestClient, headers: dict[str, str], email: str = "ada@example.com") -> None:
    resp = client.post(
        "/v1/auth/login-attempts",
        json={"email": email, "client_ip": "203.0.113.7"},
        headers=headers,
    )
    assert resp.status_code == 200


class TestStatus:
    def test_reports_usage_without_consuming(self, client: TestClient, auth_headers, clock) -> None:
        _login(client, auth_headers)
        _login(client, auth_headers)

        for _ in range(3):
            resp = client.get(f"{ADMIN}/login_email/Ada@Example.com", headers=auth_headers)

        assert resp.status_code == 200
        assert resp.json() == {
            "scope": "login_email",
            "limit": 5,
            "window_ms": 900_000,
            "failure_policy": "fail_closed",
            "count": 2,
            "remaining": 3,
            "reset_at": int(clock.now) + 900,
        }

    def test_unknown_identifier_is_empty(self, client: TestClient, auth_headers) -> None:
        resp = client.get(f"{ADMIN}/login_ip/198.51.100.9", headers=auth_headers)

        assert resp.status_code == 200
        assert resp.json()["count"] == 0
        assert resp.json()["reset_at"] is None

    def test_unknown_scope_returns_404(self, client: TestClient, auth_headers) -> None:
        resp = client.get(f"{ADMIN}/signup_ip/203.0.113.7", headers=auth_headers)

        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "rate_limit_unknown_scope"

    def test_requires_api_key(self, client: TestClient) -> None:
        resp = client.get(f"{ADMIN}/login_ip/203.0.113.7")

        assert resp.status_code == 403

    def test_store_outage_returns_503(self, broken_client: TestClient, auth_headers) -> None:
        resp = broken_client.get(f"{ADMIN}/login_ip/203.0.113.7", headers=auth_headers)

        assert resp.status_code == 503
        assert "details" not in resp.json()["error"]


class TestResetAndCleanup:
    def test_delete_clears_window(self, client: TestClient, auth_headers) -> None:
        _login(client, auth_headers)

        resp = client.delete(f"{ADMIN}/login_email/ada@example.com", headers=auth_headers)
        assert resp.status_code == 204

        status = client.get(f"{ADMIN}/login_email/ada@example.com", headers=auth_headers).json()
        assert status["count"] == 0

    def test_delete_is_idempotent(self, client: TestClient, auth_headers) -> None:
        for _ in range(2):
            resp = client.delete(f"{ADMIN}/login_ip/203.0.113.7", headers=auth_headers)
            assert resp.status_code == 204

    def test_delete_during_outage_returns_503(self, broken_client: TestClient, auth_headers) -> None:
        resp = broken_client.delete(f"{ADMIN}/login_ip/203.0.113.7", headers=auth_headers)

        assert resp.status_code == 503
        assert resp.json()["error"]["code"] == "rate_limit_reset_failed"

    def test_cleanup_reclaims_expired_keys(self, client: TestClient, auth_headers, clock) -> None:
        _login(client, auth_headers)
        clock.advance(16 * 60)

        resp = client.post(f"{ADMIN}/cleanup", headers=auth_headers)

        assert resp.status_code == 200
        assert resp.json() == {"backend": "memory", "removed_keys": 2}


class TestHealth:
    def test_liveness(self, client: TestClient) -> None:
        resp = client.get("/health")

        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}

    def test_readiness_with_reachable_store(self, client: TestClient) -> None:
        resp = client.get("/health/ready")

        assert resp.status_code == 200
        assert resp.json() == {"status": "ok", "rate_limit_backend": "memory"}

    def test_readiness_with_unreachable_store(self, broken_client: TestClient) -> None:
        resp = broken_client.get("/health/ready")

        assert resp.status_code == 503
        assert resp.json() == {"status": "degraded", "rate_limit_backend": "broken"}

    def test_openapi_marks_public_endpoints(self, client: TestClient) -> None:
        schema = client.get("/openapi.json").json()

        assert schema["components"]["securitySchemes"]["ApiKeyAuth"]["name"] == "X-API-Key"
        assert schema["paths"]["/v1/auth/forgot-password"]["post"]["security"] == []
        assert "security" not in schema["paths"]["/v1/auth/login-attempts"]["post"]
