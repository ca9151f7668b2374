"""Payment gateway webhook processing.

Handles incoming gateway notifications with:
- HMAC signature verification over the raw body
- Event deduplication through the gateway event log
- Replay and out-of-order tolerance keyed on the transaction id
- Payment and order updates in one transaction
"""

import hashlib
import hmac
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any

import structlog
from sqlalchemy.exc import IntegrityError

from storefront.application.notifications import dispatch_events, get_notification_sender
from storefront.application.ports import NotificationSender
from storefront.domain.base import DomainEvent, new_id
from storefront.domain.entities import SYSTEM_ACTOR, Order, Payment
from storefront.domain.exceptions import (
    ConcurrentModificationError,
    InvalidPayloadError,
    InvalidSignatureError,
    NotFoundError,
)
from storefront.domain.state_machines import OrderPaymentStatus, OrderStatus
from storefront.infrastructure.config import settings
from storefront.infrastructure.unit_of_work import (
    SqlAlchemyUnitOfWork,
    UnitOfWorkFactory,
)

logger = structlog.get_logger()


class PaymentWebhookEventType(str, Enum):
    """Gateway event types the store acts on."""

    SUCCEEDED = "payment_intent.succeeded"
    FAILED = "payment_intent.payment_failed"


class WebhookOutcome(str, Enum):
    """What happened to a notification."""

    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"


_OUTCOME_MESSAGES = {
    WebhookOutcome.PROCESSED: "Event processed",
    WebhookOutcome.DUPLICATE: "Event already applied",
    WebhookOutcome.IGNORED: "Event not applied",
}


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


@dataclass
class GatewayEvent:
    """Parsed gateway notification.

    Attributes:
        event_id: Gateway event id.
        event_type: Raw event type string.
        transaction_id: Gateway transaction the event is about.
        amount_cents: Charged amount, if reported.
        currency: Currency, if reported.
        order_id: Order id from the transaction metadata, if any.
        failure_reason: Decline message for failed charges.
    """

    event_id: str
    event_type: str
    transaction_id: str | None
    amount_cents: int | None = None
    currency: str | None = None
    order_id: str | None = None
    failure_reason: str | None = None

    @classmethod
    def parse(cls, raw_payload: bytes) -> "GatewayEvent":
        """Parse a raw notification body.

        Raises:
            InvalidPayloadError: If the body is not a gateway event.
        """
        try:
            body = json.loads(raw_payload)
        except ValueError as e:
            raise InvalidPayloadError("body is not valid JSON") from e
        if not isinstance(body, dict) or not body.get("id") or not body.get("type"):
            raise InvalidPayloadError("missing event id or type")

        obj = _as_dict(_as_dict(body.get("data")).get("object"))
        metadata = _as_dict(obj.get("metadata"))
        error = _as_dict(obj.get("last_payment_error"))
        return cls(
            event_id=str(body["id"]),
            event_type=str(body["type"]),
            transaction_id=obj.get("id"),
            amount_cents=obj.get("amount"),
            currency=obj.get("currency"),
            order_id=metadata.get("order_id"),
            failure_reason=error.get("message"),
        )


@dataclass
class WebhookResult:
    """Result of webhook processing.

    Attributes:
        event_id: The event id.
        outcome: Final outcome.
        message: Status message.
        order_id: Order the event applied to, if any.
    """

    event_id: str
    outcome: WebhookOutcome
    message: str
    order_id: str | None = None

    @property
    def duplicate(self) -> bool:
        return self.outcome == WebhookOutcome.DUPLICATE


class WebhookSignatureVerifier:
    """Verifies HMAC signatures on gateway notifications.

    Uses HMAC-SHA256 over the raw request body.
    """

    def __init__(self, secret: str | None = None) -> None:
        """Initialize verifier.

        Args:
            secret: HMAC secret shared with the gateway.
        """
        self.secret = secret or settings.payment_webhook_secret

    def sign(self, payload: bytes) -> str:
        """Compute the signature header value for a payload."""
        digest = hmac.new(self.secret.encode(), payload, hashlib.sha256).hexdigest()
        return f"sha256={digest}"

    def verify(self, payload: bytes, signature: str | None) -> bool:
        """Verify the HMAC signature of a notification.

        Args:
            payload: Raw request body.
            signature: Signature header value (format: sha256=<hex>).

        Returns:
            True if signature is valid.
        """
        if not signature:
            logger.warning("Missing webhook signature")
            return False

        # Parse signature format: sha256=<hex_digest>
        parts = signature.split("=", 1)
        if len(parts) != 2 or parts[0] != "sha256":
            logger.warning("Invalid signature format", signature_prefix=signature[:20])
            return False

        computed = self.sign(payload).split("=", 1)[1]
        if not hmac.compare_digest(computed, parts[1]):
            logger.warning("Webhook signature mismatch")
            return False

        logger.debug("Webhook signature verified")
        return True


class WebhookService:
    """Reconciles gateway notifications with local payments and orders."""

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory | None = None,
        signature_verifier: WebhookSignatureVerifier | None = None,
        notifier: NotificationSender | None = None,
    ) -> None:
        """Initialize webhook service.

        Args:
            uow_factory: Factory for units of work.
            signature_verifier: Signature verifier.
            notifier: Notification sender (defaults to the configured one).
        """
        self._uow_factory = uow_factory or SqlAlchemyUnitOfWork
        self.signature_verifier = signature_verifier or WebhookSignatureVerifier()
        self._notifier = notifier

    @property
    def notifier(self) -> NotificationSender:
        return self._notifier or get_notification_sender()

    async def handle_notification(
        self,
        raw_payload: bytes,
        signature: str | None,
    ) -> WebhookResult:
        """Verify and apply one gateway notification.

        Args:
            raw_payload: Raw request body as received.
            signature: Signature header value.

        Returns:
            Processing result. Duplicates and unknown events are acknowledged.

        Raises:
            InvalidSignatureError: If the signature does not verify.
            InvalidPayloadError: If the signed body is not a gateway event.
            NotFoundError: If no payment or order matches the transaction.
            ConcurrentModificationError: If a concurrent delivery won the race.
        """
        if not self.signature_verifier.verify(raw_payload, signature):
            raise InvalidSignatureError()

        event = GatewayEvent.parse(raw_payload)
        logger.info(
            "Processing webhook event",
            event_id=event.event_id,
            event_type=event.event_type,
            transaction_id=event.transaction_id,
        )

        try:
            event_type = PaymentWebhookEventType(event.event_type)
        except ValueError:
            return await self._acknowledge_ignored(event)
        if not event.transaction_id:
            raise InvalidPayloadError("missing transaction id")

        order: Order | None = None
        events: list[DomainEvent] = []
        try:
            async with self._uow_factory() as uow:
                if await uow.webhook_events.exists(event.event_id):
                    logger.info("Duplicate webhook event ignored", event_id=event.event_id)
                    return WebhookResult(
                        event_id=event.event_id,
                        outcome=WebhookOutcome.DUPLICATE,
                        message="Event already processed",
                    )

                payment, order = await self._load_targets(uow, event)
                if event_type == PaymentWebhookEventType.SUCCEEDED:
                    outcome = await self._apply_succeeded(uow, event, payment, order, events)
                else:
                    outcome = await self._apply_failed(uow, event, payment, order, events)

                await uow.webhook_events.record(
                    event.event_id,
                    event.event_type,
                    event.transaction_id,
                    outcome.value,
                )
        except IntegrityError as e:
            logger.warning(
                "Concurrent webhook delivery lost the race",
                event_id=event.event_id,
                transaction_id=event.transaction_id,
            )
            raise ConcurrentModificationError("Payment", event.transaction_id) from e

        if outcome == WebhookOutcome.PROCESSED:
            await dispatch_events([*events, *order.collect_events()], self.notifier)

        logger.info(
            "Webhook event processed",
            event_id=event.event_id,
            event_type=event.event_type,
            order_id=order.id,
            outcome=outcome.value,
        )
        return WebhookResult(
            event_id=event.event_id,
            outcome=outcome,
            message=_OUTCOME_MESSAGES[outcome],
            order_id=order.id,
        )

    async def _acknowledge_ignored(self, event: GatewayEvent) -> WebhookResult:
        logger.debug("No handler for event type", event_type=event.event_type)
        try:
            async with self._uow_factory() as uow:
                if not await uow.webhook_events.exists(event.event_id):
                    await uow.webhook_events.record(
                        event.event_id,
                        event.event_type,
                        event.transaction_id,
                        WebhookOutcome.IGNORED.value,
                    )
        except IntegrityError:
            logger.debug("Ignored event already logged", event_id=event.event_id)
        return WebhookResult(
            event_id=event.event_id,
            outcome=WebhookOutcome.IGNORED,
            message="Event type not handled",
        )

    async def _load_targets(
        self,
        uow: SqlAlchemyUnitOfWork,
        event: GatewayEvent,
    ) -> tuple[Payment | None, Order]:
        """Lock the order and then the payment for the transaction.

        Orders are always locked before their payments.
        """
        known = await uow.payments.get_by_transaction(event.transaction_id)
        order_id = known.order_id if known else event.order_id
        order = await uow.orders.get(order_id, lock=True) if order_id else None
        if order is None:
            logger.warning(
                "Webhook for unknown transaction",
                event_id=event.event_id,
                transaction_id=event.transaction_id,
                order_id=order_id,
            )
            raise NotFoundError("PaymentTransaction", event.transaction_id)
        payment = await uow.payments.get_by_transaction(event.transaction_id, lock=True)
        return payment, order

    def _new_payment(self, event: GatewayEvent, order: Order) -> Payment:
        return Payment(
            id=new_id(),
            order_id=order.id,
            payment_transaction_id=event.transaction_id,
            amount_cents=event.amount_cents if event.amount_cents is not None else order.total_cents,
            currency=(event.currency or order.currency).upper(),
        )

    async def _apply_succeeded(
        self,
        uow: SqlAlchemyUnitOfWork,
        event: GatewayEvent,
        payment: Payment | None,
        order: Order,
        events: list[DomainEvent],
    ) -> WebhookOutcome:
        if payment is None:
            payment = self._new_payment(event, order)
            payment.mark_succeeded()
            await uow.payments.add(payment)
        else:
            payment_version = payment.version
            if not payment.mark_succeeded():
                logger.info(
                    "Payment already succeeded",
                    payment_id=payment.id,
                    transaction_id=payment.payment_transaction_id,
                )
                return WebhookOutcome.DUPLICATE
            await uow.payments.update(payment, payment_version)
        events.extend(payment.collect_events())

        order_version = order.version
        if order.is_paid and order.payment_transaction_id != payment.payment_transaction_id:
            logger.error(
                "Order already paid by another transaction",
                order_id=order.id,
                paid_transaction_id=order.payment_transaction_id,
                transaction_id=payment.payment_transaction_id,
            )
            return WebhookOutcome.PROCESSED

        order.set_payment_status(OrderPaymentStatus.SUCCEEDED)
        order.attach_transaction(payment.payment_transaction_id)
        if order.status == OrderStatus.PENDING:
            entry = order.transition_to(
                OrderStatus.CONFIRMED,
                actor=SYSTEM_ACTOR,
                notes="Payment succeeded",
            )
            await uow.orders.add_history(entry)
        elif order.status == OrderStatus.CANCELLED:
            logger.warning(
                "Payment succeeded for cancelled order",
                order_id=order.id,
                transaction_id=payment.payment_transaction_id,
            )
        await uow.orders.update(order, order_version)

        logger.info(
            "Payment succeeded",
            order_id=order.id,
            payment_id=payment.id,
            amount_cents=payment.amount_cents,
        )
        return WebhookOutcome.PROCESSED

    async def _apply_failed(
        self,
        uow: SqlAlchemyUnitOfWork,
        event: GatewayEvent,
        payment: Payment | None,
        order: Order,
        events: list[DomainEvent],
    ) -> WebhookOutcome:
        reason = event.failure_reason or "Payment failed"
        if payment is None:
            payment = self._new_payment(event, order)
            payment.mark_failed(reason)
            await uow.payments.add(payment)
        else:
            payment_version = payment.version
            if not payment.mark_failed(reason):
                logger.info(
                    "Late payment failure ignored",
                    payment_id=payment.id,
                    status=payment.status.value,
                )
                return WebhookOutcome.IGNORED
            await uow.payments.update(payment, payment_version)
        events.extend(payment.collect_events())

        if not order.is_paid and order.payment_status != OrderPaymentStatus.REFUNDED:
            order_version = order.version
            order.set_payment_status(OrderPaymentStatus.FAILED)
            await uow.orders.update(order, order_version)

        logger.info(
            "Payment failed",
            order_id=order.id,
            payment_id=payment.id,
            reason=reason,
        )
        return WebhookOutcome.PROCESSED


# Global service instance
_webhook_service: WebhookService | None = None


def get_webhook_service() -> WebhookService:
    """Get or create the webhook service instance.

    Returns:
        WebhookService instance.
    """
    global _webhook_service
    if _webhook_service is None:
        _webhook_service = WebhookService()
    return _webhook_service
