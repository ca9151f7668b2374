"""Basket API endpoints.

Provides endpoints for the pre-order basket:
- GET /basket - basket with current prices and shipping
- POST /basket/items - add units of a variant
- DELETE /basket/items - remove units of a variant
- DELETE /basket - abandon the basket
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Response, status

from storefront.api.dependencies import get_owner_key
from storefront.api.schemas import (
    BasketItemRequest,
    BasketLineSchema,
    BasketResponse,
    ErrorResponse,
    PriceSchema,
)
from storefront.application.basket_service import BasketQuote, BasketService, get_basket_service
from storefront.domain.entities import Basket

router = APIRouter(prefix="/basket", tags=["Basket"])


def get_service() -> BasketService:
    """Get basket service."""
    return get_basket_service()


def basket_to_response(basket: Basket, quote: BasketQuote) -> BasketResponse:
    """Convert a basket and its quote to BasketResponse."""
    currency = quote.currency
    return BasketResponse(
        id=basket.id,
        owner_key=basket.owner_key,
        items=[
            BasketLineSchema(
                id=line.item.id,
                product_id=line.item.product_id,
                variant_id=line.item.variant_id,
                product_name=line.variant.product_name,
                quantity=line.item.quantity,
                unit_price=PriceSchema(amount=line.variant.price_cents, currency=currency),
                line_total=PriceSchema(amount=line.line_total_cents, currency=currency),
                is_digital=line.variant.is_digital,
            )
            for line in quote.lines
        ],
        subtotal=PriceSchema(amount=quote.subtotal_cents, currency=currency),
        shipping=PriceSchema(amount=quote.shipping_cents, currency=currency),
        total=PriceSchema(amount=quote.total_cents, currency=currency),
        requires_shipping=quote.requires_shipping,
        payment_transaction_id=basket.payment_transaction_id,
    )


@router.get(
    "",
    response_model=BasketResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Get basket",
)
async def get_basket(
    owner_key: Annotated[str, Depends(get_owner_key)],
    service: Annotated[BasketService, Depends(get_service)],
) -> BasketResponse:
    """Get the caller's basket priced at current variant prices."""
    basket, quote = await service.get_basket(owner_key)
    return basket_to_response(basket, quote)


@router.post(
    "/items",
    response_model=BasketResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
    summary="Add item to basket",
)
async def add_item(
    request: BasketItemRequest,
    owner_key: Annotated[str, Depends(get_owner_key)],
    service: Annotated[BasketService, Depends(get_service)],
) -> BasketResponse:
    """Add units of a variant; the basket is created on first use."""
    basket, quote = await service.add_item(
        owner_key,
        product_id=request.product_id,
        variant_id=request.variant_id,
        quantity=request.quantity,
    )
    return basket_to_response(basket, quote)


@router.delete(
    "/items",
    response_model=BasketResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="Remove item from basket",
)
async def remove_item(
    request: BasketItemRequest,
    owner_key: Annotated[str, Depends(get_owner_key)],
    service: Annotated[BasketService, Depends(get_service)],
) -> BasketResponse:
    """Remove units of a variant from the basket."""
    basket, quote = await service.remove_item(
        owner_key,
        product_id=request.product_id,
        variant_id=request.variant_id,
        quantity=request.quantity,
    )
    return basket_to_response(basket, quote)


@router.delete(
    "",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"model": ErrorResponse}},
    summary="Abandon basket",
)
async def abandon_basket(
    owner_key: Annotated[str, Depends(get_owner_key)],
    service: Annotated[BasketService, Depends(get_service)],
) -> Response:
    """Delete the caller's basket."""
    await service.abandon(owner_key)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
