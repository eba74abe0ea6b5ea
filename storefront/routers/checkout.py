"""
Stripe Checkout for guest customers.

POST /api/create-checkout-session   {items, success_url, cancel_url}
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List

import stripe
from fastapi import APIRouter

from storefront.config import get_settings
from storefront.errors import StorefrontError, UpstreamError, ValidationFailed
from storefront.schemas import CheckoutItem, CheckoutSessionRequest, CheckoutSessionResponse
from storefront.services.stripe_catalog import create_checkout_session

logger = logging.getLogger(__name__)
settings = get_settings()

router = APIRouter(prefix="/api", tags=["checkout"])


def _line_items(items: List[CheckoutItem]) -> List[Dict[str, Any]]:
    for item in items:
        if not (item.name and item.amount and item.quantity and item.currency):
            raise ValidationFailed("Each item must have name, amount, quantity, and currency")
        if item.amount <= 0:
            raise ValidationFailed("Item amount must be a positive number")
        if item.quantity <= 0:
            raise ValidationFailed("Item quantity must be a positive number")

    return [
        {
            "price_data": {
                "currency": item.currency.lower(),
                "product_data": {
                    "name": item.name,
                    "description": item.description or None,
                    "images": [item.image] if item.image else [],
                },
                "unit_amount": round(item.amount),
            },
            "quantity": round(item.quantity),
        }
        for item in items
    ]


@router.post(
    "/create-checkout-session",
    response_model=CheckoutSessionResponse,
    response_model_by_alias=True,
)
async def create_checkout(body: CheckoutSessionRequest) -> CheckoutSessionResponse:
    if not settings.stripe_secret_key:
        logger.error("Stripe secret key is not configured")
        raise StorefrontError("Server configuration error")
    if not body.items:
        raise ValidationFailed("Items array is required and must not be empty")
    if not body.success_url or not body.cancel_url:
        raise ValidationFailed("Success and cancel URLs are required")

    line_items = _line_items(body.items)
    try:
        session = await create_checkout_session(line_items, body.success_url, body.cancel_url)
    except stripe.StripeError as exc:
        logger.error("Stripe checkout session failed: %s", exc)
        raise UpstreamError(f"Failed to create checkout session: {exc.user_message or exc}")

    logger.info("Created checkout session %s with %d line items", session.id, len(line_items))
    return CheckoutSessionResponse(session_id=session.id, url=session.url)
