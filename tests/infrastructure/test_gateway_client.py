"""Tests for the HTTP payment gateway client."""

import json

import httpx
import pytest

from storefront.domain.exceptions import PaymentGatewayError
from storefront.infrastructure.gateway_client import HttpPaymentGateway


def make_gateway(handler) -> tuple[HttpPaymentGateway, list[httpx.Request]]:
    """Gateway client whose requests are answered by ``handler``."""
    requests: list[httpx.Request] = []

    def record(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler(request)

    gateway = HttpPaymentGateway(
        base_url="https://gateway.test",
        api_key="sk_test_123",
        timeout=2.0,
        transport=httpx.MockTransport(record),
    )
    return gateway, requests


class TestRequests:
    """Tests for the requests the client sends."""

    async def test_create_transaction(self) -> None:
        """Creating posts the amount with auth and idempotency headers."""
        gateway, requests = make_gateway(
            lambda request: httpx.Response(
                200,
                json={
                    "id": "txn_1",
                    "client_secret": "txn_1_secret",
                    "amount": 6700,
                    "status": "requires_payment_method",
                },
            )
        )

        txn = await gateway.create_transaction(
            6700, "USD", metadata={"order_id": "ord-1"}, idempotency_key="order-ord-1-6700-0"
        )
        await gateway.close()

        assert txn.id == "txn_1"
        assert txn.client_secret == "txn_1_secret"
        assert txn.amount_cents == 6700
        request = requests[0]
        assert request.method == "POST"
        assert request.url.path == "/v1/transactions"
        assert request.headers["Authorization"] == "Bearer sk_test_123"
        assert request.headers["Idempotency-Key"] == "order-ord-1-6700-0"
        assert json.loads(request.content) == {
            "amount": 6700,
            "currency": "usd",
            "metadata": {"order_id": "ord-1"},
        }

    async def test_update_transaction(self) -> None:
        """Updating posts the new amount to the transaction."""
        gateway, requests = make_gateway(
            lambda request: httpx.Response(200, json={"id": "txn_1", "amount": 5000})
        )

        txn = await gateway.update_transaction("txn_1", 5000, idempotency_key="update-p1-5000")
        await gateway.close()

        assert txn.amount_cents == 5000
        assert requests[0].url.path == "/v1/transactions/txn_1"
        assert json.loads(requests[0].content) == {"amount": 5000}

    async def test_refund(self) -> None:
        """Refunds post to the transaction's refunds collection."""
        gateway, requests = make_gateway(
            lambda request: httpx.Response(
                200, json={"id": "re_1", "amount": 2500, "status": "succeeded"}
            )
        )

        refund = await gateway.refund("txn_1", 2500, idempotency_key="refund-p1-2500")
        await gateway.close()

        assert refund.id == "re_1"
        assert refund.amount_cents == 2500
        assert refund.status == "succeeded"
        assert requests[0].url.path == "/v1/transactions/txn_1/refunds"
        assert requests[0].headers["Idempotency-Key"] == "refund-p1-2500"


class TestErrors:
    """Tests for gateway error mapping."""

    async def test_rejection_carries_gateway_code(self) -> None:
        """Error responses become PaymentGatewayError with the gateway's code."""
        gateway, _ = make_gateway(
            lambda request: httpx.Response(
                402,
                json={"error": {"code": "card_declined", "message": "Your card was declined."}},
            )
        )

        with pytest.raises(PaymentGatewayError) as exc_info:
            await gateway.create_transaction(1000, "USD", metadata={}, idempotency_key="k")

        assert exc_info.value.status_code == 502
        assert exc_info.value.details["gateway_status"] == 402
        assert exc_info.value.details["gateway_code"] == "card_declined"
        assert "Your card was declined." in exc_info.value.message

    async def test_non_json_error_body(self) -> None:
        """Plain-text error bodies still raise."""
        gateway, _ = make_gateway(lambda request: httpx.Response(503, text="upstream down"))

        with pytest.raises(PaymentGatewayError) as exc_info:
            await gateway.refund("txn_1", 100, idempotency_key="k")

        assert "upstream down" in exc_info.value.message

    async def test_success_body_not_json(self) -> None:
        """A 2xx answer that is not JSON is a gateway error."""
        gateway, _ = make_gateway(
            lambda request: httpx.Response(200, text="<html>maintenance</html>")
        )

        with pytest.raises(PaymentGatewayError, match="invalid response body"):
            await gateway.create_transaction(1000, "USD", metadata={}, idempotency_key="k")

    async def test_success_body_without_id(self) -> None:
        """A 2xx answer without an id is a gateway error."""
        gateway, _ = make_gateway(
            lambda request: httpx.Response(200, json={"client_secret": "x"})
        )

        with pytest.raises(PaymentGatewayError, match="response missing id"):
            await gateway.create_transaction(1000, "USD", metadata={}, idempotency_key="k")
        with pytest.raises(PaymentGatewayError, match="response missing id"):
            await gateway.refund("txn_1", 100, idempotency_key="k")

    async def test_timeout(self) -> None:
        """Timeouts are reported as gateway errors."""

        def timeout(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        gateway, _ = make_gateway(timeout)

        with pytest.raises(PaymentGatewayError, match="request timed out"):
            await gateway.create_transaction(1000, "USD", metadata={}, idempotency_key="k")

    async def test_connection_failure(self) -> None:
        """Transport failures are reported as gateway errors."""

        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        gateway, _ = make_gateway(refuse)

        with pytest.raises(PaymentGatewayError, match="request failed"):
            await gateway.update_transaction("txn_1", 1000, idempotency_key="k")
