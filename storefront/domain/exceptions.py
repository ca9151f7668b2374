"""Domain exceptions.

All domain-level errors that represent business rule violations.
Each error carries a machine-readable ``error_code`` and the HTTP status
the API layer answers with.
"""

from typing import Any


class DomainError(Exception):
    """Base class for all domain exceptions.

    Attributes:
        error_code: Machine-readable error code used in API responses.
        status_code: HTTP status used in API responses.
    """

    error_code: str = "DOMAIN_ERROR"
    status_code: int = 400

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize domain error.

        Args:
            message: Human-readable error message.
            details: Optional dictionary with additional error context.
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


class NotFoundError(DomainError):
    """Raised when a basket, order, payment or variant does not exist."""

    error_code = "NOT_FOUND"
    status_code = 404

    def __init__(self, entity_type: str, entity_id: str) -> None:
        super().__init__(
            f"{entity_type} {entity_id} not found",
            details={"entity_type": entity_type, "entity_id": entity_id},
        )


class ForbiddenError(DomainError):
    """Raised when the caller may not act on a resource."""

    error_code = "FORBIDDEN"
    status_code = 403

    def __init__(self, message: str = "Not allowed to access this resource") -> None:
        super().__init__(message)


class ConcurrentModificationError(DomainError):
    """Raised when a record changed between read and write."""

    error_code = "CONCURRENT_MODIFICATION"
    status_code = 409

    def __init__(self, entity_type: str, entity_id: str) -> None:
        super().__init__(
            f"{entity_type} {entity_id} was modified concurrently, retry the request",
            details={"entity_type": entity_type, "entity_id": entity_id},
        )


# ============================================================================
# State Machine Errors
# ============================================================================


class InvalidStateTransitionError(DomainError):
    """Raised when an invalid state transition is attempted."""

    error_code = "INVALID_TRANSITION"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        current_state: str,
        target_state: str,
        allowed_transitions: list[str] | None = None,
    ) -> None:
        """Initialize invalid state transition error.

        Args:
            entity_type: Type of entity (e.g., "Order").
            entity_id: ID of the entity.
            current_state: Current state of the entity.
            target_state: Attempted target state.
            allowed_transitions: List of allowed target states from current state.
        """
        allowed = allowed_transitions or []
        message = (
            f"Cannot transition {entity_type}({entity_id}) "
            f"from '{current_state}' to '{target_state}'. "
            f"Allowed transitions: {allowed}"
        )
        super().__init__(
            message,
            details={
                "entity_type": entity_type,
                "entity_id": entity_id,
                "current_state": current_state,
                "target_state": target_state,
                "allowed_transitions": allowed,
            },
        )


class TrackingRequiredError(DomainError):
    """Raised when shipping an order without a tracking number."""

    error_code = "TRACKING_REQUIRED"

    def __init__(self, order_id: str) -> None:
        super().__init__(
            f"Order {order_id} cannot be shipped without a tracking number",
            details={"order_id": order_id},
        )


# ============================================================================
# Basket / Inventory Errors
# ============================================================================


class InvalidQuantityError(DomainError):
    """Raised when an invalid quantity is provided."""

    error_code = "INVALID_QUANTITY"

    def __init__(self, quantity: int, reason: str = "Quantity must be positive") -> None:
        super().__init__(
            f"Invalid quantity {quantity}: {reason}",
            details={"quantity": quantity, "reason": reason},
        )


class InsufficientStockError(DomainError):
    """Raised when a variant has fewer units in stock than requested."""

    error_code = "INSUFFICIENT_STOCK"
    status_code = 409

    def __init__(self, variant_id: str, requested: int, available: int) -> None:
        super().__init__(
            f"Insufficient stock for variant {variant_id}: "
            f"requested {requested}, available {available}",
            details={
                "variant_id": variant_id,
                "requested": requested,
                "available": available,
            },
        )


class EmptyBasketError(DomainError):
    """Raised when converting a basket that holds no items."""

    error_code = "NOT_FOUND"
    status_code = 404

    def __init__(self, basket_id: str) -> None:
        super().__init__(
            f"Basket {basket_id} is empty",
            details={"basket_id": basket_id},
        )


# ============================================================================
# Payment Errors
# ============================================================================


class AlreadyPaidError(DomainError):
    """Raised when asking for a transaction on an order that is already paid."""

    error_code = "ALREADY_PAID"
    status_code = 409

    def __init__(self, order_id: str) -> None:
        super().__init__(
            f"Order {order_id} has already been paid",
            details={"order_id": order_id},
        )


class NotRefundableError(DomainError):
    """Raised when refunding a payment that never succeeded."""

    error_code = "NOT_REFUNDABLE"

    def __init__(self, payment_id: str, current_status: str) -> None:
        super().__init__(
            f"Payment {payment_id} cannot be refunded in status '{current_status}'",
            details={"payment_id": payment_id, "current_status": current_status},
        )


class InvalidAmountError(DomainError):
    """Raised when a refund amount is not positive or exceeds the remainder."""

    error_code = "INVALID_AMOUNT"

    def __init__(self, amount: int, refundable: int) -> None:
        super().__init__(
            f"Invalid refund amount {amount}: refundable amount is {refundable}",
            details={"amount": amount, "refundable": refundable},
        )


class InvalidSignatureError(DomainError):
    """Raised when a gateway notification fails authentication.

    The message is the same for every cause; the cause is only logged.
    """

    error_code = "INVALID_SIGNATURE"

    def __init__(self) -> None:
        super().__init__("Webhook signature verification failed")


class PaymentGatewayError(DomainError):
    """Raised when the payment gateway fails, times out or declines a call."""

    error_code = "PAYMENT_GATEWAY_ERROR"
    status_code = 502

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        gateway_code: str | None = None,
    ) -> None:
        super().__init__(
            f"Payment gateway error: {message}",
            details={"gateway_status": status_code, "gateway_code": gateway_code},
        )
        self.gateway_status = status_code


class InvalidPayloadError(DomainError):
    """Raised when an authenticated gateway notification cannot be parsed."""

    error_code = "INVALID_PAYLOAD"

    def __init__(self, reason: str) -> None:
        super().__init__(
            f"Invalid webhook payload: {reason}",
            details={"reason": reason},
        )
