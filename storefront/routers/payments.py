"""
Maksekeskus checkout endpoints.

GET  /api/payment-methods?amount=<decimal>
POST /api/create-payment
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.database import get_db
from storefront.deps import get_maksekeskus_client
from storefront.errors import ValidationFailed
from storefront.schemas import (
    CreatePaymentRequest,
    CreatePaymentResponse,
    PaymentMethodsResponse,
)
from storefront.services import store
from storefront.services.maksekeskus import MaksekeskusClient

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["payments"])


def _parse_amount(raw: Optional[str]) -> float:
    if raw is None or not raw.strip():
        raise ValidationFailed("Amount parameter is required")
    try:
        amount = float(raw.strip().replace(",", "."))
    except ValueError:
        raise ValidationFailed("Invalid amount format")
    if not amount > 0:
        raise ValidationFailed("Amount must be greater than zero")
    return amount


@router.get("/payment-methods", response_model=PaymentMethodsResponse)
async def payment_methods(
    amount: Optional[str] = None,
    client: MaksekeskusClient = Depends(get_maksekeskus_client),
) -> PaymentMethodsResponse:
    value = _parse_amount(amount)
    methods = await client.get_payment_methods(value)
    return PaymentMethodsResponse(methods=methods, count=len(methods))


@router.post("/create-payment", response_model=CreatePaymentResponse)
async def create_payment(
    body: CreatePaymentRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    client: MaksekeskusClient = Depends(get_maksekeskus_client),
) -> CreatePaymentResponse:
    if body.order_data is None:
        raise ValidationFailed("Order data is required")
    if not body.payment_method:
        raise ValidationFailed("Payment method is required")
    if not body.order_data.items:
        raise ValidationFailed("Order must contain at least one item")

    order = await store.create_order(db, body.order_data)
    # The order stays on record even if the provider call below fails
    await db.commit()

    customer_ip = request.client.host if request.client else "127.0.0.1"
    transaction = await client.create_transaction(order, body.payment_method, customer_ip)

    return CreatePaymentResponse(
        order_id=order.id,
        transaction_id=transaction.transaction_id,
        payment_url=transaction.payment_url,
        redirect_url=transaction.payment_url,
    )
