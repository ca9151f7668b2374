"""API schemas for the storefront order service.

Pydantic models for request/response validation and serialization.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from storefront.domain.value_objects import Address


# ============================================================================
# Common Schemas
# ============================================================================


class ErrorResponse(BaseModel):
    """Standard error response.

    All API errors follow this format for consistency.
    """

    error_code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error message")
    details: dict[str, Any] | list[Any] = Field(
        default_factory=dict, description="Additional error details"
    )
    request_id: str | None = Field(
        default=None, description="Request ID for correlation"
    )


class PriceSchema(BaseModel):
    """Price representation."""

    amount: int = Field(..., description="Amount in smallest currency unit (cents)")
    currency: str = Field(default="USD", description="Currency code")


class PaginatedResponse(BaseModel):
    """Base paginated response."""

    total: int = Field(..., description="Total number of items")
    page: int = Field(..., description="Current page number")
    page_size: int = Field(..., description="Items per page")
    has_more: bool = Field(..., description="Whether there are more pages")


class OrderStatusEnum(str, Enum):
    """Order status values exposed by the API."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


# ============================================================================
# Address Schemas
# ============================================================================


class AddressSchema(BaseModel):
    """Postal address."""

    full_name: str = Field(..., min_length=1, max_length=200)
    line1: str = Field(..., min_length=1, max_length=255)
    line2: str | None = Field(default=None, max_length=255)
    city: str = Field(..., min_length=1, max_length=100)
    state: str | None = Field(default=None, max_length=100)
    postal_code: str = Field(..., min_length=1, max_length=20)
    country: str = Field(..., min_length=2, max_length=2, description="ISO 3166-1 alpha-2")
    phone: str | None = Field(default=None, max_length=50)

    def to_domain(self) -> Address:
        return Address(**self.model_dump())

    @classmethod
    def from_domain(cls, address: Address) -> "AddressSchema":
        return cls(
            full_name=address.full_name,
            line1=address.line1,
            line2=address.line2,
            city=address.city,
            state=address.state,
            postal_code=address.postal_code,
            country=address.country,
            phone=address.phone,
        )


# ============================================================================
# Basket Schemas
# ============================================================================


class BasketItemRequest(BaseModel):
    """Request to add or remove units of a variant."""

    product_id: str = Field(..., min_length=1)
    variant_id: str = Field(..., min_length=1)
    quantity: int = Field(default=1, description="Number of units")


class BasketLineSchema(BaseModel):
    """Basket line priced at the current variant price."""

    id: str
    product_id: str
    variant_id: str
    product_name: str
    quantity: int
    unit_price: PriceSchema
    line_total: PriceSchema
    is_digital: bool


class BasketResponse(BaseModel):
    """Basket with its current quote."""

    id: str
    owner_key: str
    items: list[BasketLineSchema]
    subtotal: PriceSchema
    shipping: PriceSchema
    total: PriceSchema
    requires_shipping: bool
    payment_transaction_id: str | None = None


# ============================================================================
# Order Schemas
# ============================================================================


class OrderCreateRequest(BaseModel):
    """Request to convert the caller's basket into an order."""

    basket_id: str | None = Field(
        default=None, description="Basket to convert; defaults to the caller's basket"
    )
    shipping_address: AddressSchema
    billing_address: AddressSchema | None = None


class OrderCreateResponse(BaseModel):
    """Created order and the transaction to pay it with.

    The transaction fields are empty when the gateway could not be
    reached; the client can retry through POST /payments.
    """

    order_id: str
    order_number: str
    status: OrderStatusEnum
    total: PriceSchema
    payment_transaction_id: str | None = None
    client_secret: str | None = None


class OrderItemSchema(BaseModel):
    """Order item snapshot."""

    id: str
    product_id: str
    variant_id: str | None
    product_name: str
    sku: str | None
    quantity: int
    unit_price: PriceSchema
    line_total: PriceSchema
    product_type: str
    attributes: list[dict[str, str]] = Field(default_factory=list)


class OrderResponse(BaseModel):
    """Full order details."""

    id: str
    order_number: str
    user_id: str
    status: OrderStatusEnum
    payment_status: str
    items: list[OrderItemSchema]
    shipping_address: AddressSchema
    billing_address: AddressSchema
    subtotal: PriceSchema
    shipping: PriceSchema
    total: PriceSchema
    payment_transaction_id: str | None
    tracking_number: str | None
    notes: str | None
    allowed_transitions: list[str]
    order_date: datetime
    updated_at: datetime


class OrderSummarySchema(BaseModel):
    """Order summary for list views."""

    id: str
    order_number: str
    user_id: str
    status: OrderStatusEnum
    payment_status: str
    total: PriceSchema
    item_count: int
    order_date: datetime


class OrdersListResponse(PaginatedResponse):
    """Paginated list of orders."""

    items: list[OrderSummarySchema]


class OrderStatusHistorySchema(BaseModel):
    """One status history row."""

    from_status: str | None
    to_status: str
    updated_by: str
    changed_at: datetime
    notes: str | None
    tracking_number: str | None


class OrderStatusUpdateRequest(BaseModel):
    """Request to move an order to a new status."""

    status: OrderStatusEnum
    notes: str | None = Field(default=None, max_length=1000)
    tracking_number: str | None = Field(default=None, max_length=100)


class BulkStatusUpdateRequest(BaseModel):
    """Request to move several orders to the same status."""

    order_ids: list[str] = Field(..., min_length=1, max_length=100)
    status: OrderStatusEnum
    notes: str | None = Field(default=None, max_length=1000)


class BulkStatusResultSchema(BaseModel):
    """Outcome for one order of a bulk update."""

    order_id: str
    success: bool
    status: OrderStatusEnum | None = None
    error_code: str | None = None
    error: str | None = None


class BulkStatusUpdateResponse(BaseModel):
    """Per-order outcomes of a bulk update."""

    results: list[BulkStatusResultSchema]
    succeeded: int
    failed: int


class TrackingUpdateRequest(BaseModel):
    """Request to amend the tracking number."""

    tracking_number: str = Field(..., max_length=100)


class NotesUpdateRequest(BaseModel):
    """Request to replace admin notes."""

    notes: str | None = Field(default=None, max_length=5000)


class OrderCancelRequest(BaseModel):
    """Request to cancel an order."""

    reason: str | None = Field(default=None, max_length=500)


class DownloadPermissionResponse(BaseModel):
    """Result of a digital download check."""

    allowed: bool
    reason: str | None = None


# ============================================================================
# Payment Schemas
# ============================================================================


class PaymentTransactionRequest(BaseModel):
    """Request a payable transaction for an order, or for the caller's basket."""

    order_id: str | None = Field(
        default=None, description="Order to pay; omit to prepare the basket"
    )


class PaymentTransactionResponse(BaseModel):
    """Transaction the client should complete with the gateway."""

    payment_transaction_id: str
    client_secret: str | None
    amount: PriceSchema
    created: bool


class PaymentResponse(BaseModel):
    """Payment attempt."""

    id: str
    order_id: str
    payment_transaction_id: str
    status: str
    amount: PriceSchema
    refunded_amount: PriceSchema
    failure_reason: str | None
    processed_at: datetime | None
    created_at: datetime


class RefundRequest(BaseModel):
    """Request to refund a payment."""

    amount: int | None = Field(
        default=None, description="Amount in cents; omit to refund the remainder"
    )
    reason: str | None = Field(default=None, max_length=500)


class WebhookResponse(BaseModel):
    """Response to a gateway notification."""

    received: bool = True
    event_id: str
    outcome: str
    message: str
