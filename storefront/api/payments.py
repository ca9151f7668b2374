"""Payment API endpoints.

Provides:
- POST /payments - ensure a payable transaction for an order or the basket
- GET /payments/order/{order_id} - payment attempts of an order
- POST /payments/{id}/refund - refund a payment (admin)
"""

from typing import Annotated

from fastapi import APIRouter, Depends

from storefront.api.dependencies import get_actor, get_owner_key, require_admin
from storefront.api.schemas import (
    ErrorResponse,
    PaymentResponse,
    PaymentTransactionRequest,
    PaymentTransactionResponse,
    PriceSchema,
    RefundRequest,
)
from storefront.application.access import Actor
from storefront.application.payment_service import PaymentService, get_payment_service
from storefront.domain.entities import Payment
from storefront.domain.exceptions import ForbiddenError
from storefront.infrastructure.config import settings

router = APIRouter(prefix="/payments", tags=["Payments"])


def get_service() -> PaymentService:
    """Get payment service."""
    return get_payment_service()


def payment_to_response(payment: Payment) -> PaymentResponse:
    """Convert a Payment to PaymentResponse."""
    return PaymentResponse(
        id=payment.id,
        order_id=payment.order_id,
        payment_transaction_id=payment.payment_transaction_id,
        status=payment.status.value,
        amount=PriceSchema(amount=payment.amount_cents, currency=payment.currency),
        refunded_amount=PriceSchema(amount=payment.refunded_amount_cents, currency=payment.currency),
        failure_reason=payment.failure_reason,
        processed_at=payment.processed_at,
        created_at=payment.created_at,
    )


@router.post(
    "",
    response_model=PaymentTransactionResponse,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
    },
    summary="Ensure payment transaction",
    description=(
        "Return the single active gateway transaction for an order, or a "
        "provisional one for the caller's basket when no order is given."
    ),
)
async def ensure_transaction(
    request: PaymentTransactionRequest,
    actor: Annotated[Actor, Depends(get_actor)],
    service: Annotated[PaymentService, Depends(get_service)],
    owner_key: Annotated[str, Depends(get_owner_key)],
) -> PaymentTransactionResponse:
    """Create or reuse the gateway transaction for an order or basket."""
    if request.order_id:
        if actor.user_id is None:
            raise ForbiddenError("Only signed-in users can pay orders")
        result = await service.ensure_order_transaction(request.order_id, actor)
    else:
        result = await service.ensure_basket_transaction(owner_key)
    return PaymentTransactionResponse(
        payment_transaction_id=result.transaction_id,
        client_secret=result.client_secret,
        amount=PriceSchema(amount=result.amount_cents, currency=settings.currency),
        created=result.created,
    )


@router.get(
    "/order/{order_id}",
    response_model=list[PaymentResponse],
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="List payments of an order",
)
async def list_order_payments(
    order_id: str,
    actor: Annotated[Actor, Depends(get_actor)],
    service: Annotated[PaymentService, Depends(get_service)],
) -> list[PaymentResponse]:
    """List all payment attempts of an order, oldest first."""
    payments = await service.list_order_payments(order_id, actor)
    return [payment_to_response(p) for p in payments]


@router.post(
    "/{payment_id}/refund",
    response_model=PaymentResponse,
    responses={
        400: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
    },
    summary="Refund payment",
)
async def refund_payment(
    payment_id: str,
    request: RefundRequest,
    actor: Annotated[Actor, Depends(require_admin)],
    service: Annotated[PaymentService, Depends(get_service)],
) -> PaymentResponse:
    """Refund part or all of a succeeded payment."""
    payment = await service.refund(
        payment_id,
        actor,
        amount_cents=request.amount,
        reason=request.reason,
    )
    return payment_to_response(payment)
