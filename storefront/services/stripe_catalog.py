"""
Thin Stripe wrapper: remote catalog (products + prices) and Checkout sessions.

The SDK is synchronous; calls run in a worker thread so the event loop is not
blocked.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import stripe

from storefront.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

stripe.api_key = settings.stripe_secret_key
stripe.set_app_info("Leen storefront", version="1.0.0")


@dataclass(frozen=True)
class RemotePrice:
    id: str
    unit_amount: Optional[int]
    currency: str


def _search_literal(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


class StripeCatalog:
    """Product and price operations against the Stripe catalog."""

    async def find_product_by_name(self, name: str) -> Optional[str]:
        """Return the id of the first product whose name equals *name* exactly."""
        found = await asyncio.to_thread(
            stripe.Product.search,
            query=f'name:"{_search_literal(name)}"',
            limit=10,
        )
        for product in found.data:
            if product.name == name:
                return product.id
        return None

    async def create_product(
        self,
        name: str,
        description: str,
        metadata: Dict[str, str],
        images: List[str],
    ) -> str:
        product = await asyncio.to_thread(
            stripe.Product.create,
            name=name,
            description=description or None,
            metadata=metadata,
            images=images,
        )
        logger.info("Created Stripe product %s (%s)", product.id, name)
        return product.id

    async def list_active_prices(self, product_id: str) -> List[RemotePrice]:
        prices = await asyncio.to_thread(
            stripe.Price.list, product=product_id, active=True, limit=10
        )
        return [
            RemotePrice(id=p.id, unit_amount=p.unit_amount, currency=p.currency)
            for p in prices.data
        ]

    async def create_price(self, product_id: str, unit_amount: int, currency: str) -> str:
        price = await asyncio.to_thread(
            stripe.Price.create,
            product=product_id,
            unit_amount=unit_amount,
            currency=currency,
        )
        logger.info(
            "Created Stripe price %s for %s (%d %s)",
            price.id, product_id, unit_amount, currency,
        )
        return price.id


async def create_checkout_session(
    line_items: List[Dict[str, Any]],
    success_url: str,
    cancel_url: str,
) -> Any:
    """Create a one-time-payment Checkout session for a guest customer."""
    return await asyncio.to_thread(
        stripe.checkout.Session.create,
        payment_method_types=["card"],
        line_items=line_items,
        mode="payment",
        success_url=success_url,
        cancel_url=cancel_url,
        locale=settings.checkout_locale,
        billing_address_collection="auto",
        shipping_address_collection={
            "allowed_countries": settings.checkout_allowed_countries,
        },
        phone_number_collection={"enabled": True},
    )
