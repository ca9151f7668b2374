"""Order status notifications.

Notifications are dispatched after the unit of work commits. Delivery is
fire-and-forget: a failing sender is logged and never fails the
operation that triggered it.
"""

from collections.abc import Iterable

import httpx
import structlog

from storefront.application.ports import NotificationSender
from storefront.domain.base import DomainEvent
from storefront.domain.events import OrderStatusChanged
from storefront.infrastructure.config import settings

logger = structlog.get_logger()


class LoggingNotificationSender:
    """Writes notifications to the log. Used when no endpoint is configured."""

    async def notify_order_status_changed(
        self,
        order_id: str,
        from_status: str,
        to_status: str,
        user_id: str | None = None,
    ) -> None:
        logger.info(
            "Order status notification",
            order_id=order_id,
            from_status=from_status,
            to_status=to_status,
            user_id=user_id,
        )


class HttpNotificationSender:
    """Posts notifications as JSON to a notification service."""

    def __init__(
        self,
        url: str,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url
        self.timeout = timeout or settings.notification_timeout_seconds
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def notify_order_status_changed(
        self,
        order_id: str,
        from_status: str,
        to_status: str,
        user_id: str | None = None,
    ) -> None:
        client = await self._get_client()
        response = await client.post(
            self.url,
            json={
                "type": "order_status_update",
                "order_id": order_id,
                "from_status": from_status,
                "to_status": to_status,
                "user_id": user_id,
                "audience": ["customer", "admins"],
            },
        )
        response.raise_for_status()


async def dispatch_events(events: Iterable[DomainEvent], sender: NotificationSender) -> None:
    """Send notifications for committed domain events.

    Args:
        events: Events collected from aggregates after commit.
        sender: Notification sender to deliver through.
    """
    for event in events:
        logger.debug(
            "Dispatching domain event",
            event_type=event.event_type,
            aggregate_id=event.aggregate_id,
        )
        if not isinstance(event, OrderStatusChanged):
            continue
        try:
            await sender.notify_order_status_changed(
                order_id=event.aggregate_id,
                from_status=event.from_status,
                to_status=event.to_status,
                user_id=event.user_id,
            )
        except Exception as e:
            logger.warning(
                "Order status notification failed",
                order_id=event.aggregate_id,
                to_status=event.to_status,
                error=str(e),
            )


# Global sender instance
_notification_sender: NotificationSender | None = None


def get_notification_sender() -> NotificationSender:
    """Get or create the notification sender.

    Returns:
        HTTP sender when a notification URL is configured, else a logging sender.
    """
    global _notification_sender
    if _notification_sender is None:
        if settings.notification_url:
            _notification_sender = HttpNotificationSender(settings.notification_url)
        else:
            _notification_sender = LoggingNotificationSender()
    return _notification_sender


def set_notification_sender(sender: NotificationSender | None) -> None:
    """Replace the notification sender (None resets to the configured default)."""
    global _notification_sender
    _notification_sender = sender
