"""
Order store: orders, order items, provider payments and the product fields
touched by catalog sync and sold-out marking.

All functions work inside the caller's session/transaction; committing is the
caller's job.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.models import (
    Order,
    OrderItem,
    OrderPayment,
    OrderStatus,
    PaymentStatus,
    Product,
    SyncStatus,
)
from storefront.errors import ValidationFailed
from storefront.schemas import OrderDataIn
from storefront.services.pricing import minor_to_major, parse_price_to_minor

logger = logging.getLogger(__name__)


# ── Orders ────────────────────────────────────────────────────────────────────

async def create_order(
    session: AsyncSession,
    order_data: OrderDataIn,
    currency: str = "EUR",
) -> Order:
    """
    Persist an order and its items.

    The order row is written first.  Each item goes into its own savepoint so a
    failing item is logged and skipped instead of rolling back the order.  The
    total covers only the items actually written; an order left with nothing
    payable raises ValidationFailed and is never committed.
    """
    priced = [(item, parse_price_to_minor(item.price)) for item in order_data.items]
    if not any(unit_minor > 0 for _, unit_minor in priced):
        raise ValidationFailed("Order must contain at least one item with a valid price")

    order = Order(
        customer_name=order_data.name,
        customer_email=order_data.email,
        customer_phone=order_data.phone,
        shipping_address=order_data.address,
        shipping_city=order_data.city,
        shipping_postal_code=order_data.postal_code,
        shipping_country=order_data.country,
        parcel_terminal_id=order_data.parcel_terminal_id,
        total_amount=Decimal("0.00"),
        currency=currency,
        status=OrderStatus.PENDING,
        notes=order_data.notes,
        user_id=order_data.user_id,
    )
    session.add(order)
    await session.flush()

    written = 0
    total_minor = 0
    for item, unit_minor in priced:
        if unit_minor <= 0:
            logger.error(
                "Skipping order item product=%s for order %s: invalid price %r",
                item.id, order.id, item.price,
            )
            continue
        try:
            async with session.begin_nested():
                session.add(
                    OrderItem(
                        order_id=order.id,
                        product_id=item.id,
                        product_title=item.title,
                        quantity=item.quantity,
                        price=minor_to_major(unit_minor),
                    )
                )
        except SQLAlchemyError as exc:
            logger.error(
                "Error creating order item product=%s for order %s: %s",
                item.id, order.id, exc,
            )
            continue
        written += 1
        total_minor += unit_minor * item.quantity

    if total_minor <= 0:
        raise ValidationFailed("Order must contain at least one item with a valid price")
    order.total_amount = minor_to_major(total_minor)
    await session.flush()

    logger.info(
        "Created order %s with %d/%d items, total=%s %s",
        order.id, written, len(order_data.items), order.total_amount, currency,
    )
    return order


async def get_order(session: AsyncSession, order_id: str) -> Optional[Order]:
    return await session.get(Order, order_id)


async def get_order_product_ids(session: AsyncSession, order_id: str) -> List[str]:
    rows = await session.execute(
        select(OrderItem.product_id).where(OrderItem.order_id == order_id)
    )
    return [r[0] for r in rows.all()]


async def set_order_status(session: AsyncSession, order_id: str, status: str) -> bool:
    """Set the order status.  Returns False when the order already had it (or is missing)."""
    result = await session.execute(
        update(Order)
        .where(Order.id == order_id, Order.status != status)
        .values(status=status, updated_at=datetime.now(timezone.utc))
    )
    changed = result.rowcount > 0
    if changed:
        logger.info("Order %s status -> %s", order_id, status)
    return changed


# ── Payments ──────────────────────────────────────────────────────────────────

async def find_payment_by_transaction(
    session: AsyncSession, transaction_id: str
) -> Optional[OrderPayment]:
    return (
        await session.execute(
            select(OrderPayment).where(OrderPayment.transaction_id == transaction_id)
        )
    ).scalar_one_or_none()


async def upsert_payment(
    session: AsyncSession,
    order_id: str,
    transaction_id: str,
    payment_method: str,
    amount: Decimal,
    currency: str,
    status: str,
) -> Tuple[OrderPayment, bool]:
    """
    Insert or update the payment row keyed by *transaction_id*.

    Returns (payment, created).  A concurrent insert of the same transaction id
    loses on the unique constraint; the loser re-reads and updates the winner.

    A COMPLETED row is never moved to another status.  The update is
    conditional in SQL, so the returned payment may carry a status other than
    *status*; callers compare to tell whether their update took effect.
    """
    existing = await find_payment_by_transaction(session, transaction_id)
    if existing is None:
        payment = OrderPayment(
            order_id=order_id,
            transaction_id=transaction_id,
            payment_method=payment_method,
            amount=amount,
            currency=currency,
            status=status,
        )
        session.add(payment)
        try:
            await session.flush()
            return payment, True
        except IntegrityError:
            await session.rollback()
            logger.info(
                "Concurrent insert for transaction %s – updating existing row",
                transaction_id,
            )
            existing = await find_payment_by_transaction(session, transaction_id)
            if existing is None:
                raise

    stmt = (
        update(OrderPayment)
        .where(OrderPayment.transaction_id == transaction_id)
        .values(
            status=status,
            payment_method=payment_method or existing.payment_method,
            updated_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )
    if status != PaymentStatus.COMPLETED:
        stmt = stmt.where(OrderPayment.status != PaymentStatus.COMPLETED)
    result = await session.execute(stmt)
    if result.rowcount == 0:
        logger.info(
            "Payment %s is already %s – keeping it over %s",
            transaction_id, PaymentStatus.COMPLETED, status,
        )

    payment = (
        await session.execute(
            select(OrderPayment)
            .where(OrderPayment.transaction_id == transaction_id)
            .execution_options(populate_existing=True)
        )
    ).scalar_one()
    return payment, False


# ── Products ──────────────────────────────────────────────────────────────────

async def set_product_availability(
    session: AsyncSession, product_id: str, available: bool
) -> None:
    await session.execute(
        update(Product)
        .where(Product.id == product_id)
        .values(available=available, updated_at=datetime.now(timezone.utc))
    )


@dataclass(frozen=True)
class CatalogProduct:
    """Detached view of a product row, safe to use across commits and rollbacks."""
    id: str
    title: Optional[str]
    description: Optional[str]
    price: Optional[str]
    category: Optional[str]
    image: Optional[str]
    stripe_product_id: Optional[str]
    stripe_price_id: Optional[str]
    sync_status: str


def _snapshot(p: Product) -> CatalogProduct:
    return CatalogProduct(
        id=p.id,
        title=p.title,
        description=p.description,
        price=p.price,
        category=p.category,
        image=p.image,
        stripe_product_id=p.stripe_product_id,
        stripe_price_id=p.stripe_price_id,
        sync_status=p.sync_status,
    )


async def list_products_for_sync(session: AsyncSession) -> List[CatalogProduct]:
    rows = (
        await session.execute(
            select(Product).order_by(Product.created_at, Product.id)
        )
    ).scalars().all()
    return [_snapshot(p) for p in rows]


async def get_product_for_sync(
    session: AsyncSession, product_id: str
) -> Optional[CatalogProduct]:
    product = await session.get(Product, product_id, populate_existing=True)
    return _snapshot(product) if product is not None else None


async def mark_product_synced(
    session: AsyncSession,
    product_id: str,
    stripe_product_id: Optional[str],
    stripe_price_id: Optional[str],
) -> None:
    now = datetime.now(timezone.utc)
    values = {"sync_status": SyncStatus.SYNCED, "last_synced_at": now, "updated_at": now}
    if stripe_product_id:
        values["stripe_product_id"] = stripe_product_id
    if stripe_price_id:
        values["stripe_price_id"] = stripe_price_id
    await session.execute(update(Product).where(Product.id == product_id).values(**values))


async def mark_product_failed(session: AsyncSession, product_id: str) -> None:
    await session.execute(
        update(Product)
        .where(Product.id == product_id)
        .values(sync_status=SyncStatus.FAILED, updated_at=datetime.now(timezone.utc))
    )
