"""
Maksekeskus notification reconciliation: provider payment status -> local
payment row, order status and product availability.

Idempotent: the provider transaction id is the dedup key, and a payment seen
COMPLETED is never moved back to another status by a later (replayed or
out-of-order) notification.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.deps import verify_mac
from storefront.errors import InvalidSignature, NotificationRejected
from storefront.models import OrderStatus, PaymentStatus
from storefront.schemas import MerchantData, ProviderNotification
from storefront.services import store

logger = logging.getLogger(__name__)

PROVIDER_STATUS_MAP = {
    "COMPLETED": PaymentStatus.COMPLETED,
    "CANCELLED": PaymentStatus.CANCELLED,
    "EXPIRED": PaymentStatus.EXPIRED,
    "PENDING": PaymentStatus.PENDING,
    "CREATED": PaymentStatus.PENDING,
}

# Payment outcomes that close a still-pending order
_ORDER_CANCELLING = {PaymentStatus.CANCELLED, PaymentStatus.EXPIRED}


def map_provider_status(provider_status: str | None) -> str:
    """Unknown statuses stay PENDING rather than being treated as failures."""
    return PROVIDER_STATUS_MAP.get((provider_status or "").strip().upper(), PaymentStatus.PENDING)


@dataclass(frozen=True)
class Notification:
    order_id: str
    transaction_id: str
    payment_method: str
    amount: Decimal
    currency: str
    provider_status: str
    status: str


@dataclass(frozen=True)
class ReconcileOutcome:
    order_id: str
    transaction_id: str
    status: str
    applied: bool
    message: str


def parse_notification(payload: str) -> Notification:
    """Decode the notification JSON and its embedded merchant data."""
    try:
        data = ProviderNotification.model_validate_json(payload)
    except ValidationError as exc:
        raise NotificationRejected(f"Invalid notification payload: {exc.errors()[0]['msg']}") from exc

    if not data.merchant_data:
        raise NotificationRejected("Notification missing merchant_data")
    try:
        merchant = MerchantData.model_validate_json(data.merchant_data)
    except ValidationError as exc:
        raise NotificationRejected("Notification missing order_id") from exc

    return Notification(
        order_id=merchant.order_id,
        transaction_id=data.transaction,
        payment_method=data.payment_method or "banklink",
        amount=data.amount,
        currency=(data.currency or "EUR").upper(),
        provider_status=data.status,
        status=map_provider_status(data.status),
    )


async def reconcile(session: AsyncSession, notification: Notification) -> ReconcileOutcome:
    n = notification
    order = await store.get_order(session, n.order_id)
    if order is None:
        raise NotificationRejected(f"Unknown order {n.order_id}")
    # Read before any write: a rollback in upsert_payment expires loaded rows
    order_status = order.status

    existing = await store.find_payment_by_transaction(session, n.transaction_id)
    if existing is not None and existing.status == PaymentStatus.COMPLETED:
        logger.info(
            "Duplicate notification for completed transaction %s (order %s, incoming %s) – ignored",
            n.transaction_id, n.order_id, n.status,
        )
        return ReconcileOutcome(
            order_id=n.order_id,
            transaction_id=n.transaction_id,
            status=PaymentStatus.COMPLETED,
            applied=False,
            message="already completed",
        )

    payment, created = await store.upsert_payment(
        session,
        order_id=n.order_id,
        transaction_id=n.transaction_id,
        payment_method=n.payment_method,
        amount=n.amount,
        currency=n.currency,
        status=n.status,
    )
    if payment.status != n.status:
        # Lost a race against a notification that completed the payment
        logger.info(
            "Transaction %s completed concurrently (order %s, incoming %s) – ignored",
            n.transaction_id, n.order_id, n.status,
        )
        return ReconcileOutcome(
            order_id=n.order_id,
            transaction_id=n.transaction_id,
            status=payment.status,
            applied=False,
            message="already completed",
        )
    logger.info(
        "%s payment %s for order %s with status %s (provider %s)",
        "Recorded" if created else "Updated",
        n.transaction_id, n.order_id, n.status, n.provider_status,
    )

    if n.status == PaymentStatus.COMPLETED:
        await store.set_order_status(session, n.order_id, OrderStatus.PAID)
        await _mark_products_sold(session, n.order_id)
    elif n.status in _ORDER_CANCELLING and order_status == OrderStatus.PENDING:
        await store.set_order_status(session, n.order_id, OrderStatus.CANCELLED)

    return ReconcileOutcome(
        order_id=n.order_id,
        transaction_id=n.transaction_id,
        status=n.status,
        applied=True,
        message="recorded" if created else "updated",
    )


async def _mark_products_sold(session: AsyncSession, order_id: str) -> None:
    """Flag every product of the order unavailable; individual failures are only logged."""
    product_ids = await store.get_order_product_ids(session, order_id)
    marked = 0
    for product_id in product_ids:
        try:
            async with session.begin_nested():
                await store.set_product_availability(session, product_id, False)
            marked += 1
        except SQLAlchemyError as exc:
            logger.error("Error marking product %s as sold: %s", product_id, exc)
    logger.info("Marked %d/%d products as sold for order %s", marked, len(product_ids), order_id)


async def process_notification(
    session: AsyncSession, payload: str, mac: str, secret: str
) -> ReconcileOutcome:
    """Verify, parse and apply one notification.  Raises InvalidSignature / NotificationRejected."""
    if not verify_mac(payload, mac, secret):
        raise InvalidSignature("Invalid MAC signature")
    notification = parse_notification(payload)
    logger.info(
        "Notification received for transaction %s, status %s, order %s",
        notification.transaction_id, notification.provider_status, notification.order_id,
    )
    return await reconcile(session, notification)
