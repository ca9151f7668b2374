"""Tests for order endpoints."""

from typing import Any

import httpx
import pytest
from fastapi.testclient import TestClient

from storefront.domain.entities import ProductType
from storefront.domain.exceptions import PaymentGatewayError
from storefront.infrastructure.gateway_client import HttpPaymentGateway, set_payment_gateway

SHIPPING_ADDRESS = {
    "full_name": "Dana Reyes",
    "line1": "221 Harbor Street",
    "city": "Portland",
    "state": "OR",
    "postal_code": "97201",
    "country": "US",
}


@pytest.fixture
def place_order(auth_client: TestClient, seed_variant):
    """Fill a user's basket and create an order through the API."""

    def place(user_id: str = "user-1", quantity: int = 1, **variant_kwargs: Any) -> dict[str, Any]:
        variant = seed_variant(**variant_kwargs)
        headers = {"X-User-Id": user_id}
        added = auth_client.post(
            "/basket/items",
            json={"product_id": variant.product_id, "variant_id": variant.id, "quantity": quantity},
            headers=headers,
        )
        assert added.status_code == 201
        response = auth_client.post(
            "/orders",
            json={"shipping_address": SHIPPING_ADDRESS},
            headers=headers,
        )
        assert response.status_code == 201, response.text
        return {**response.json(), "variant_id": variant.id}

    return place


# ============================================================================
# Create
# ============================================================================


class TestCreateOrder:
    """Tests for POST /orders."""

    def test_create_order(self, auth_client: TestClient, place_order, stock, gateway) -> None:
        """The basket becomes a pending order with a payment transaction."""
        order = place_order(quantity=2, price_cents=2500, stock=10)

        assert order["status"] == "pending"
        assert order["order_number"].startswith("ORD-")
        assert order["total"]["amount"] == 5500
        assert order["payment_transaction_id"] in gateway.transactions
        assert order["client_secret"] == f"{order['payment_transaction_id']}_secret"
        assert stock(order["variant_id"]) == 8

        basket = auth_client.get("/basket", headers={"X-User-Id": "user-1"})
        assert basket.status_code == 404

    def test_create_without_basket(self, auth_client: TestClient, user_headers) -> None:
        """A caller without a basket gets 404."""
        response = auth_client.post(
            "/orders",
            json={"shipping_address": SHIPPING_ADDRESS},
            headers=user_headers(),
        )
        assert response.status_code == 404

    def test_create_requires_user(self, auth_client: TestClient) -> None:
        """Anonymous basket owners must sign in to order."""
        response = auth_client.post(
            "/orders",
            json={"shipping_address": SHIPPING_ADDRESS},
            headers={"X-Basket-Owner": "guest-1"},
        )
        assert response.status_code == 401

    def test_create_with_foreign_basket_id(
        self, auth_client: TestClient, seed_variant, user_headers
    ) -> None:
        """Naming a basket that is not the caller's is rejected."""
        variant = seed_variant()
        auth_client.post(
            "/basket/items",
            json={"product_id": variant.product_id, "variant_id": variant.id},
            headers=user_headers(),
        )

        response = auth_client.post(
            "/orders",
            json={"basket_id": "someone-elses", "shipping_address": SHIPPING_ADDRESS},
            headers=user_headers(),
        )
        assert response.status_code == 404

    def test_gateway_outage_still_creates_order(
        self, auth_client: TestClient, place_order, gateway, user_headers
    ) -> None:
        """The order survives a gateway error; the transaction can be requested later."""
        gateway.error = PaymentGatewayError("request timed out")

        order = place_order()

        assert order["payment_transaction_id"] is None
        assert order["client_secret"] is None

        gateway.error = None
        retry = auth_client.post(
            "/payments", json={"order_id": order["order_id"]}, headers=user_headers()
        )
        assert retry.status_code == 200
        assert retry.json()["created"] is True

    def test_garbled_gateway_answer_still_creates_order(
        self, auth_client: TestClient, place_order, user_headers
    ) -> None:
        """An unreadable gateway answer leaves the order payable later."""
        set_payment_gateway(
            HttpPaymentGateway(
                base_url="https://gateway.test",
                api_key="sk_test",
                transport=httpx.MockTransport(
                    lambda request: httpx.Response(200, text="<html>maintenance</html>")
                ),
            )
        )

        order = place_order()

        assert order["status"] == "pending"
        assert order["payment_transaction_id"] is None
        details = auth_client.get(f"/orders/{order['order_id']}", headers=user_headers())
        assert details.status_code == 200

    def test_invalid_address_rejected(
        self, auth_client: TestClient, seed_variant, user_headers
    ) -> None:
        """Addresses are validated before anything is written."""
        response = auth_client.post(
            "/orders",
            json={"shipping_address": {**SHIPPING_ADDRESS, "country": "USA"}},
            headers=user_headers(),
        )
        assert response.status_code == 422


# ============================================================================
# Reads
# ============================================================================


class TestReadOrders:
    """Tests for GET /orders and GET /orders/{id}."""

    def test_get_order(self, auth_client: TestClient, place_order, user_headers) -> None:
        """The owner sees the full order."""
        order = place_order(price_cents=2500)

        response = auth_client.get(f"/orders/{order['order_id']}", headers=user_headers())

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "pending"
        assert data["payment_status"] == "pending"
        assert data["subtotal"]["amount"] == 2500
        assert data["shipping_address"]["city"] == "Portland"
        assert data["billing_address"] == data["shipping_address"]
        assert data["allowed_transitions"] == ["confirmed", "cancelled"]
        assert data["items"][0]["attributes"] == [{"name": "colour", "value": "natural"}]

    def test_other_customer_forbidden(
        self, auth_client: TestClient, place_order, user_headers
    ) -> None:
        """Other customers cannot read the order."""
        order = place_order()

        response = auth_client.get(f"/orders/{order['order_id']}", headers=user_headers("user-2"))

        assert response.status_code == 403

    def test_list_orders(
        self, auth_client: TestClient, place_order, user_headers, admin_headers
    ) -> None:
        """Customers list their own orders; admins list everyone's."""
        place_order("user-1")
        place_order("user-2")

        own = auth_client.get("/orders", headers=user_headers()).json()
        everyone = auth_client.get("/orders", headers=admin_headers).json()
        filtered = auth_client.get(
            "/orders", params={"status": "confirmed"}, headers=admin_headers
        ).json()

        assert own["total"] == 1
        assert own["items"][0]["user_id"] == "user-1"
        assert own["items"][0]["item_count"] == 1
        assert everyone["total"] == 2
        assert filtered["total"] == 0

    def test_history(self, auth_client: TestClient, place_order, user_headers) -> None:
        """History starts with the creation row."""
        order = place_order()

        response = auth_client.get(f"/orders/{order['order_id']}/history", headers=user_headers())

        assert response.status_code == 200
        assert response.json()[0]["from_status"] is None
        assert response.json()[0]["to_status"] == "pending"


# ============================================================================
# Status Changes
# ============================================================================


class TestStatusChanges:
    """Tests for admin status endpoints and cancellation."""

    def test_invalid_transition(self, auth_client: TestClient, place_order, admin_headers) -> None:
        """pending -> delivered answers 400 with the allowed targets."""
        order = place_order()

        response = auth_client.put(
            f"/orders/{order['order_id']}/status",
            json={"status": "delivered"},
            headers=admin_headers,
        )

        assert response.status_code == 400
        data = response.json()
        assert data["error_code"] == "INVALID_TRANSITION"
        assert data["details"]["allowed_transitions"] == ["confirmed", "cancelled"]

    def test_ship_requires_tracking(
        self, auth_client: TestClient, place_order, admin_headers
    ) -> None:
        """Shipping needs a tracking number."""
        order = place_order()
        url = f"/orders/{order['order_id']}/status"
        auth_client.put(url, json={"status": "confirmed"}, headers=admin_headers)
        auth_client.put(url, json={"status": "processing"}, headers=admin_headers)

        missing = auth_client.put(url, json={"status": "shipped"}, headers=admin_headers)
        shipped = auth_client.put(
            url, json={"status": "shipped", "tracking_number": "1Z999"}, headers=admin_headers
        )

        assert missing.status_code == 400
        assert missing.json()["error_code"] == "TRACKING_REQUIRED"
        assert shipped.status_code == 200
        assert shipped.json()["tracking_number"] == "1Z999"
        assert shipped.json()["allowed_transitions"] == ["delivered"]

    def test_bulk_status(self, auth_client: TestClient, place_order, admin_headers) -> None:
        """Bulk updates report each order separately."""
        first = place_order("user-1")
        second = place_order("user-2")
        auth_client.put(
            f"/orders/{first['order_id']}/status", json={"status": "confirmed"}, headers=admin_headers
        )

        response = auth_client.put(
            "/orders/bulk-status",
            json={"order_ids": [first["order_id"], second["order_id"]], "status": "processing"},
            headers=admin_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["succeeded"] == 1
        assert data["failed"] == 1
        assert data["results"][0]["status"] == "processing"
        assert data["results"][1]["error_code"] == "INVALID_TRANSITION"

    def test_cancel_releases_stock(
        self, auth_client: TestClient, place_order, stock, user_headers
    ) -> None:
        """The owner can cancel; the units go back to stock."""
        order = place_order(quantity=2, stock=10)

        response = auth_client.request(
            "DELETE",
            f"/orders/{order['order_id']}",
            json={"reason": "Ordered by mistake"},
            headers=user_headers(),
        )

        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"
        assert stock(order["variant_id"]) == 10

    def test_cancel_without_body(self, auth_client: TestClient, place_order, user_headers) -> None:
        """The cancellation reason is optional."""
        order = place_order()

        response = auth_client.delete(f"/orders/{order['order_id']}", headers=user_headers())

        assert response.status_code == 200

    def test_customer_cannot_cancel_processing_order(
        self, auth_client: TestClient, place_order, user_headers, admin_headers
    ) -> None:
        """Customers cancel only before processing; admins use the status endpoint."""
        order = place_order()
        url = f"/orders/{order['order_id']}"
        auth_client.put(f"{url}/status", json={"status": "confirmed"}, headers=admin_headers)
        auth_client.put(f"{url}/status", json={"status": "processing"}, headers=admin_headers)

        by_customer = auth_client.delete(url, headers=user_headers())
        by_admin = auth_client.delete(url, headers=admin_headers)
        via_status = auth_client.put(
            f"{url}/status", json={"status": "cancelled"}, headers=admin_headers
        )

        assert by_customer.status_code == 400
        assert by_customer.json()["error_code"] == "INVALID_TRANSITION"
        assert by_admin.status_code == 403
        assert via_status.status_code == 200
        assert via_status.json()["status"] == "cancelled"

    def test_tracking_and_notes(self, auth_client: TestClient, place_order, admin_headers) -> None:
        """Admins amend tracking and notes without changing status."""
        order = place_order()
        url = f"/orders/{order['order_id']}"

        tracking = auth_client.put(
            f"{url}/tracking", json={"tracking_number": "1Z123"}, headers=admin_headers
        )
        notes = auth_client.put(f"{url}/notes", json={"notes": "Gift wrap"}, headers=admin_headers)

        assert tracking.json()["tracking_number"] == "1Z123"
        assert notes.json()["notes"] == "Gift wrap"
        assert notes.json()["status"] == "pending"


class TestDownloadPermission:
    """Tests for the download permission endpoint."""

    def test_unpaid_digital_item(self, auth_client: TestClient, place_order, user_headers) -> None:
        """Unpaid digital items cannot be downloaded yet."""
        order = place_order(product_type=ProductType.DIGITAL)
        details = auth_client.get(f"/orders/{order['order_id']}", headers=user_headers()).json()
        item_id = details["items"][0]["id"]

        response = auth_client.get(
            f"/orders/{order['order_id']}/items/{item_id}/download-permission",
            headers=user_headers(),
        )

        assert response.status_code == 200
        assert response.json() == {"allowed": False, "reason": "Order is not paid"}
