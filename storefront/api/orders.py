"""Order API endpoints.

Provides endpoints for order lifecycle management:
- POST /orders - create an order from the caller's basket
- GET /orders - list orders (paginated)
- GET /orders/{id} - order details
- GET /orders/{id}/history - status history
- PUT /orders/{id}/status - state machine transition (admin)
- PUT /orders/bulk-status - transition several orders (admin)
- PUT /orders/{id}/tracking - amend tracking number (admin)
- PUT /orders/{id}/notes - save admin notes (admin)
- DELETE /orders/{id} - cancel an order (owner)
- GET /orders/{id}/items/{item_id}/download-permission - digital download check
"""

from typing import Annotated

import structlog
from fastapi import APIRouter, Body, Depends, Query, status

from storefront.api.dependencies import get_owner_key, require_admin, require_user
from storefront.api.schemas import (
    AddressSchema,
    BulkStatusResultSchema,
    BulkStatusUpdateRequest,
    BulkStatusUpdateResponse,
    DownloadPermissionResponse,
    ErrorResponse,
    NotesUpdateRequest,
    OrderCancelRequest,
    OrderCreateRequest,
    OrderCreateResponse,
    OrderItemSchema,
    OrderResponse,
    OrdersListResponse,
    OrderStatusEnum,
    OrderStatusHistorySchema,
    OrderStatusUpdateRequest,
    OrderSummarySchema,
    PriceSchema,
    TrackingUpdateRequest,
)
from storefront.application.access import Actor
from storefront.application.basket_service import BasketService, get_basket_service
from storefront.application.checkout_service import CheckoutService, get_checkout_service
from storefront.application.order_service import OrderService, get_order_service
from storefront.application.payment_service import PaymentService, get_payment_service
from storefront.domain.entities import Order
from storefront.domain.exceptions import NotFoundError, PaymentGatewayError
from storefront.domain.state_machines import OrderStatus

logger = structlog.get_logger()

router = APIRouter(prefix="/orders", tags=["Orders"])


# ============================================================================
# Dependencies
# ============================================================================


def get_service() -> OrderService:
    """Get order service."""
    return get_order_service()


# ============================================================================
# Converters
# ============================================================================


def order_to_response(order: Order) -> OrderResponse:
    """Convert an Order to OrderResponse."""
    currency = order.currency
    return OrderResponse(
        id=order.id,
        order_number=order.order_number,
        user_id=order.user_id,
        status=OrderStatusEnum(order.status.value),
        payment_status=order.payment_status.value,
        items=[
            OrderItemSchema(
                id=item.id,
                product_id=item.product_id,
                variant_id=item.variant_id,
                product_name=item.product_name,
                sku=item.sku,
                quantity=item.quantity,
                unit_price=PriceSchema(amount=item.unit_price_cents, currency=currency),
                line_total=PriceSchema(amount=item.line_total_cents, currency=currency),
                product_type=item.product_type.value,
                attributes=[{"name": a.name, "value": a.value} for a in item.attributes],
            )
            for item in order.items
        ],
        shipping_address=AddressSchema.from_domain(order.shipping_address),
        billing_address=AddressSchema.from_domain(order.billing_address),
        subtotal=PriceSchema(amount=order.subtotal_cents, currency=currency),
        shipping=PriceSchema(amount=order.shipping_cents, currency=currency),
        total=PriceSchema(amount=order.total_cents, currency=currency),
        payment_transaction_id=order.payment_transaction_id,
        tracking_number=order.tracking_number,
        notes=order.notes,
        allowed_transitions=[s.value for s in order.status.allowed_transitions()],
        order_date=order.order_date,
        updated_at=order.updated_at,
    )


def order_to_summary(order: Order) -> OrderSummarySchema:
    """Convert an Order to OrderSummarySchema."""
    return OrderSummarySchema(
        id=order.id,
        order_number=order.order_number,
        user_id=order.user_id,
        status=OrderStatusEnum(order.status.value),
        payment_status=order.payment_status.value,
        total=PriceSchema(amount=order.total_cents, currency=order.currency),
        item_count=sum(item.quantity for item in order.items),
        order_date=order.order_date,
    )


# ============================================================================
# Endpoints
# ============================================================================


@router.post(
    "",
    response_model=OrderCreateResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
    summary="Create order from basket",
)
async def create_order(
    request: OrderCreateRequest,
    actor: Annotated[Actor, Depends(require_user)],
    owner_key: Annotated[str, Depends(get_owner_key)],
    baskets: Annotated[BasketService, Depends(get_basket_service)],
    checkout: Annotated[CheckoutService, Depends(get_checkout_service)],
    payments: Annotated[PaymentService, Depends(get_payment_service)],
) -> OrderCreateResponse:
    """Convert the caller's basket into a pending order and open its transaction.

    If the gateway is unavailable the order is still created; the client
    can ask for a transaction again through POST /payments.
    """
    basket, _ = await baskets.get_basket(owner_key)
    if request.basket_id and request.basket_id != basket.id:
        raise NotFoundError("Basket", request.basket_id)

    order = await checkout.create_order(
        basket.id,
        user_id=actor.user_id,
        shipping_address=request.shipping_address.to_domain(),
        billing_address=request.billing_address.to_domain() if request.billing_address else None,
    )

    transaction_id = None
    client_secret = None
    try:
        txn = await payments.ensure_order_transaction(order.id, actor)
    except PaymentGatewayError as e:
        logger.warning(
            "Order created without payment transaction",
            order_id=order.id,
            error=e.message,
        )
    else:
        transaction_id = txn.transaction_id
        client_secret = txn.client_secret

    return OrderCreateResponse(
        order_id=order.id,
        order_number=order.order_number,
        status=OrderStatusEnum(order.status.value),
        total=PriceSchema(amount=order.total_cents, currency=order.currency),
        payment_transaction_id=transaction_id,
        client_secret=client_secret,
    )


@router.get(
    "",
    response_model=OrdersListResponse,
    responses={401: {"model": ErrorResponse}},
    summary="List orders",
    description="Customers see their own orders; admins see all orders.",
)
async def list_orders(
    actor: Annotated[Actor, Depends(require_user)],
    service: Annotated[OrderService, Depends(get_service)],
    page: int = Query(default=1, ge=1, description="Page number"),
    page_size: int = Query(default=20, ge=1, le=100, description="Items per page"),
    status: OrderStatusEnum | None = Query(default=None, description="Filter by status"),
    user_id: str | None = Query(default=None, description="Filter by user (admin only)"),
) -> OrdersListResponse:
    """List orders newest first with pagination and filtering."""
    result = await service.list_orders(
        actor,
        status=OrderStatus(status.value) if status else None,
        page=page,
        page_size=page_size,
        user_id=user_id,
    )
    return OrdersListResponse(
        items=[order_to_summary(order) for order in result.orders],
        total=result.total,
        page=result.page,
        page_size=result.page_size,
        has_more=result.has_more,
    )


@router.put(
    "/bulk-status",
    response_model=BulkStatusUpdateResponse,
    responses={403: {"model": ErrorResponse}},
    summary="Bulk status update",
)
async def bulk_update_status(
    request: BulkStatusUpdateRequest,
    actor: Annotated[Actor, Depends(require_admin)],
    service: Annotated[OrderService, Depends(get_service)],
) -> BulkStatusUpdateResponse:
    """Apply one transition to several orders; each order succeeds or fails alone."""
    results = await service.bulk_transition(
        request.order_ids,
        OrderStatus(request.status.value),
        actor,
        notes=request.notes,
    )
    succeeded = sum(1 for r in results if r.success)
    return BulkStatusUpdateResponse(
        results=[
            BulkStatusResultSchema(
                order_id=r.order_id,
                success=r.success,
                status=OrderStatusEnum(r.status.value) if r.status else None,
                error_code=r.error_code,
                error=r.error,
            )
            for r in results
        ],
        succeeded=succeeded,
        failed=len(results) - succeeded,
    )


@router.get(
    "/{order_id}",
    response_model=OrderResponse,
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="Get order details",
)
async def get_order(
    order_id: str,
    actor: Annotated[Actor, Depends(require_user)],
    service: Annotated[OrderService, Depends(get_service)],
) -> OrderResponse:
    """Get an order by ID."""
    return order_to_response(await service.get_order(order_id, actor))


@router.get(
    "/{order_id}/history",
    response_model=list[OrderStatusHistorySchema],
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="Get order status history",
)
async def get_order_history(
    order_id: str,
    actor: Annotated[Actor, Depends(require_user)],
    service: Annotated[OrderService, Depends(get_service)],
) -> list[OrderStatusHistorySchema]:
    """Get the status history of an order, oldest first."""
    history = await service.get_history(order_id, actor)
    return [
        OrderStatusHistorySchema(
            from_status=entry.from_status.value if entry.from_status else None,
            to_status=entry.to_status.value,
            updated_by=entry.updated_by,
            changed_at=entry.changed_at,
            notes=entry.notes,
            tracking_number=entry.tracking_number,
        )
        for entry in history
    ]


@router.put(
    "/{order_id}/status",
    response_model=OrderResponse,
    responses={
        400: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
    summary="Update order status",
)
async def update_order_status(
    order_id: str,
    request: OrderStatusUpdateRequest,
    actor: Annotated[Actor, Depends(require_admin)],
    service: Annotated[OrderService, Depends(get_service)],
) -> OrderResponse:
    """Move an order along the order state machine."""
    order = await service.transition(
        order_id,
        OrderStatus(request.status.value),
        actor,
        notes=request.notes,
        tracking_number=request.tracking_number,
    )
    return order_to_response(order)


@router.put(
    "/{order_id}/tracking",
    response_model=OrderResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="Amend tracking number",
)
async def update_tracking(
    order_id: str,
    request: TrackingUpdateRequest,
    actor: Annotated[Actor, Depends(require_admin)],
    service: Annotated[OrderService, Depends(get_service)],
) -> OrderResponse:
    """Replace the tracking number without changing status."""
    order = await service.update_tracking(order_id, request.tracking_number, actor)
    return order_to_response(order)


@router.put(
    "/{order_id}/notes",
    response_model=OrderResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Save admin notes",
)
async def update_notes(
    order_id: str,
    request: NotesUpdateRequest,
    actor: Annotated[Actor, Depends(require_admin)],
    service: Annotated[OrderService, Depends(get_service)],
) -> OrderResponse:
    """Replace the admin notes of an order."""
    order = await service.update_notes(order_id, request.notes, actor)
    return order_to_response(order)


@router.delete(
    "/{order_id}",
    response_model=OrderResponse,
    responses={
        400: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
    },
    summary="Cancel order",
)
async def cancel_order(
    order_id: str,
    actor: Annotated[Actor, Depends(require_user)],
    service: Annotated[OrderService, Depends(get_service)],
    request: Annotated[OrderCancelRequest | None, Body()] = None,
) -> OrderResponse:
    """Cancel an order. Stock is released; refunds are issued separately."""
    order = await service.cancel_order(order_id, actor, reason=request.reason if request else None)
    return order_to_response(order)


@router.get(
    "/{order_id}/items/{item_id}/download-permission",
    response_model=DownloadPermissionResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Check digital download permission",
)
async def check_download_permission(
    order_id: str,
    item_id: str,
    actor: Annotated[Actor, Depends(require_user)],
    service: Annotated[OrderService, Depends(get_service)],
) -> DownloadPermissionResponse:
    """Check whether the caller may download a digital item of an order."""
    permission = await service.check_download_permission(order_id, item_id, actor)
    return DownloadPermissionResponse(allowed=permission.allowed, reason=permission.reason)
