"""Tests for API middleware."""

from fastapi.testclient import TestClient

from storefront.infrastructure.config import settings


class TestRequestIdMiddleware:
    """Tests for request ID correlation middleware."""

    def test_generates_request_id_if_not_provided(self, client: TestClient) -> None:
        """Should generate request ID if not in request headers."""
        response = client.get("/health")
        assert response.status_code == 200
        assert "X-Request-ID" in response.headers
        # UUID format
        assert len(response.headers["X-Request-ID"]) == 36

    def test_uses_provided_request_id(self, client: TestClient) -> None:
        """Should use request ID from request headers."""
        custom_id = "custom-request-id-12345"
        response = client.get("/health", headers={"X-Request-ID": custom_id})
        assert response.headers["X-Request-ID"] == custom_id

    def test_error_body_carries_request_id(self, auth_client: TestClient, user_headers) -> None:
        """Domain errors echo the request ID in the envelope."""
        response = auth_client.get(
            "/orders/missing",
            headers={**user_headers(), "X-Request-ID": "req-42"},
        )
        assert response.status_code == 404
        data = response.json()
        assert data["error_code"] == "NOT_FOUND"
        assert data["request_id"] == "req-42"


class TestApiKeyMiddleware:
    """Tests for API key authentication middleware."""

    def test_public_endpoints_dont_require_auth(self, client: TestClient) -> None:
        """Health endpoints are public."""
        assert client.get("/health").status_code == 200
        assert client.get("/ready").status_code == 200

    def test_protected_endpoints_require_auth(self, client: TestClient) -> None:
        """Protected endpoints should require authentication."""
        response = client.get("/orders", headers={"X-User-Id": "user-1"})
        assert response.status_code == 401
        assert response.json()["error_code"] == "UNAUTHORIZED"

    def test_invalid_auth_format_rejected(self, client: TestClient) -> None:
        """Invalid authorization header format should be rejected."""
        response = client.get("/orders", headers={"Authorization": "InvalidFormat"})
        assert response.status_code == 401
        assert response.json()["error_code"] == "UNAUTHORIZED"

    def test_invalid_api_key_rejected(self, client: TestClient) -> None:
        """Invalid API key should be rejected."""
        response = client.get("/orders", headers={"Authorization": "Bearer invalid-key"})
        assert response.status_code == 401
        assert response.json()["error_code"] == "INVALID_API_KEY"

    def test_valid_api_key_accepted(self, client: TestClient) -> None:
        """A valid key passes through to the route."""
        response = client.get(
            "/orders",
            headers={"Authorization": f"Bearer {settings.api_key}", "X-User-Id": "user-1"},
        )
        assert response.status_code == 200

    def test_webhook_does_not_need_api_key(self, client: TestClient) -> None:
        """The gateway authenticates with a signature, not the API key."""
        response = client.post("/payments/webhook", content=b"{}")
        assert response.status_code == 400
        assert response.json()["error_code"] == "INVALID_SIGNATURE"


class TestIdentityHeaders:
    """Tests for caller identity resolution."""

    def test_missing_user_rejected(self, auth_client: TestClient) -> None:
        """Routes that need a user reject calls without X-User-Id."""
        response = auth_client.get("/orders")
        assert response.status_code == 401
        assert response.json()["error_code"] == "UNAUTHORIZED"

    def test_admin_route_needs_admin_role(self, auth_client: TestClient, user_headers) -> None:
        """Customers cannot call admin routes."""
        response = auth_client.put(
            "/orders/some-order/status",
            json={"status": "confirmed"},
            headers=user_headers(),
        )
        assert response.status_code == 403
        assert response.json()["error_code"] == "FORBIDDEN"
