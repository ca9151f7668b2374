"""HTTP client for the payment gateway.

Implements the ``PaymentGateway`` port over the gateway's REST API with
httpx. Every request carries an ``Idempotency-Key`` header.
"""

from typing import Any

import httpx
import structlog

from storefront.application.ports import GatewayRefund, GatewayTransaction, PaymentGateway
from storefront.domain.exceptions import PaymentGatewayError
from storefront.infrastructure.config import settings

logger = structlog.get_logger()


class HttpPaymentGateway:
    """Payment gateway adapter using httpx.

    Timeouts and transport failures surface as ``PaymentGatewayError``
    so callers never see httpx exceptions.
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize gateway client.

        Args:
            base_url: Gateway base URL (defaults to settings).
            api_key: Gateway secret key (defaults to settings).
            timeout: Request timeout in seconds (defaults to settings).
            transport: Optional httpx transport, used by tests.
        """
        self.base_url = base_url or settings.payment_gateway_url
        self.api_key = api_key or settings.payment_gateway_api_key
        self.timeout = timeout or settings.payment_gateway_timeout_seconds
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers={"Authorization": f"Bearer {self.api_key}"},
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _post(self, path: str, body: dict[str, Any], idempotency_key: str) -> dict[str, Any]:
        client = await self._get_client()
        try:
            response = await client.post(
                path,
                json=body,
                headers={"Idempotency-Key": idempotency_key},
            )
        except httpx.TimeoutException as e:
            logger.error("Payment gateway timeout", path=path, error=str(e))
            raise PaymentGatewayError("request timed out") from e
        except httpx.RequestError as e:
            logger.error("Payment gateway request failed", path=path, error=str(e))
            raise PaymentGatewayError("request failed") from e

        if response.status_code >= 400:
            code = None
            message = response.text
            try:
                payload = response.json()
            except ValueError:
                payload = None
            error = payload.get("error") if isinstance(payload, dict) else None
            if isinstance(error, dict):
                code = error.get("code")
                message = error.get("message", message)
            logger.warning(
                "Payment gateway rejected request",
                path=path,
                status_code=response.status_code,
                gateway_code=code,
            )
            raise PaymentGatewayError(message, status_code=response.status_code, gateway_code=code)

        try:
            data = response.json()
        except ValueError as e:
            logger.error("Payment gateway returned invalid JSON", path=path, status_code=response.status_code)
            raise PaymentGatewayError("invalid response body", status_code=response.status_code) from e
        if not isinstance(data, dict) or not data.get("id"):
            logger.error("Payment gateway response missing id", path=path, status_code=response.status_code)
            raise PaymentGatewayError("response missing id", status_code=response.status_code)
        return data

    @staticmethod
    def _transaction(data: dict[str, Any]) -> GatewayTransaction:
        return GatewayTransaction(
            id=data["id"],
            client_secret=data.get("client_secret", ""),
            amount_cents=data.get("amount", 0),
            status=data.get("status", "requires_payment_method"),
        )

    async def create_transaction(
        self,
        amount_cents: int,
        currency: str,
        metadata: dict[str, Any],
        idempotency_key: str,
    ) -> GatewayTransaction:
        """Open a new transaction for the given amount."""
        data = await self._post(
            "/v1/transactions",
            {"amount": amount_cents, "currency": currency.lower(), "metadata": metadata},
            idempotency_key,
        )
        logger.info("Gateway transaction created", transaction_id=data.get("id"), amount=amount_cents)
        return self._transaction(data)

    async def update_transaction(
        self,
        transaction_id: str,
        amount_cents: int,
        idempotency_key: str,
    ) -> GatewayTransaction:
        """Refresh the amount of an unsettled transaction."""
        data = await self._post(
            f"/v1/transactions/{transaction_id}",
            {"amount": amount_cents},
            idempotency_key,
        )
        return self._transaction(data)

    async def refund(
        self,
        transaction_id: str,
        amount_cents: int,
        idempotency_key: str,
    ) -> GatewayRefund:
        """Refund part or all of a captured transaction."""
        data = await self._post(
            f"/v1/transactions/{transaction_id}/refunds",
            {"amount": amount_cents},
            idempotency_key,
        )
        logger.info("Gateway refund created", transaction_id=transaction_id, refund_id=data.get("id"))
        return GatewayRefund(
            id=data["id"],
            amount_cents=data.get("amount", amount_cents),
            status=data.get("status", "succeeded"),
        )


# Global gateway instance
_payment_gateway: PaymentGateway | None = None


def get_payment_gateway() -> PaymentGateway:
    """Get or create the payment gateway client.

    Returns:
        PaymentGateway instance.
    """
    global _payment_gateway
    if _payment_gateway is None:
        _payment_gateway = HttpPaymentGateway()
    return _payment_gateway


def set_payment_gateway(gateway: PaymentGateway | None) -> None:
    """Replace the gateway instance (None restores the HTTP client lazily)."""
    global _payment_gateway
    _payment_gateway = gateway
