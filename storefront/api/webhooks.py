"""Payment gateway webhook receiver.

Provides:
- POST /payments/webhook - receive gateway notifications
- HMAC signature verification over the raw body
- Deduplication by event id and transaction id
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Header, Request

from storefront.api.schemas import ErrorResponse, WebhookResponse
from storefront.application.webhook_service import WebhookService, get_webhook_service

router = APIRouter(prefix="/payments", tags=["Webhooks"])


def get_service() -> WebhookService:
    """Get webhook service."""
    return get_webhook_service()


@router.post(
    "/webhook",
    response_model=WebhookResponse,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
    summary="Receive payment gateway webhook",
)
async def receive_payment_webhook(
    request: Request,
    service: Annotated[WebhookService, Depends(get_service)],
    x_payment_signature: Annotated[str | None, Header()] = None,
) -> WebhookResponse:
    """Receive and apply a payment gateway notification.

    The body is verified exactly as received, so it is read raw rather
    than parsed into a model. Duplicates and unknown event types are
    acknowledged with 200; a transaction that matches no payment or order
    answers 404 so the gateway delivers it again later.
    """
    raw_payload = await request.body()
    result = await service.handle_notification(raw_payload, x_payment_signature)
    return WebhookResponse(
        event_id=result.event_id,
        outcome=result.outcome.value,
        message=result.message,
    )
