"""
Unit tests for payment notification reconciliation – replays must be no-ops and
a completed payment must never move backwards.
"""
from __future__ import annotations

import json
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy import select

from storefront.deps import compute_mac
from storefront.errors import InvalidSignature, NotificationRejected
from storefront.models import Order, OrderPayment, OrderStatus, PaymentStatus, Product
from storefront.schemas import OrderDataIn
from storefront.services import store
from storefront.services.reconciler import (
    map_provider_status,
    parse_notification,
    process_notification,
    reconcile,
)

SECRET = "testsecret"


@pytest_asyncio.fixture
async def order_id(db_factory):
    async with db_factory() as session:
        session.add_all(
            [
                Product(id="p-1", title="Vaas", price="20€"),
                Product(id="p-2", title="Kauss", price="12,50€"),
                Product(id="p-3", title="Taldrik", price="9€"),
            ]
        )
        order = await store.create_order(
            session,
            OrderDataIn.model_validate(
                {
                    "name": "Mari",
                    "email": "mari@example.ee",
                    "items": [
                        {"id": "p-1", "title": "Vaas", "price": "20€", "quantity": 1},
                        {"id": "p-2", "title": "Kauss", "price": "12,50€", "quantity": 2},
                    ],
                }
            ),
        )
        await session.commit()
        return order.id


def _payload(order_id, status="COMPLETED", transaction="tx-1", amount="45.00") -> str:
    return json.dumps(
        {
            "transaction": transaction,
            "status": status,
            "amount": amount,
            "currency": "EUR",
            "payment_method": "swedbank",
            "merchant_data": json.dumps({"order_id": order_id, "customer_email": "mari@example.ee"}),
        }
    )


async def _apply(db_factory, payload):
    async with db_factory() as session:
        outcome = await process_notification(session, payload, compute_mac(payload, SECRET), SECRET)
        await session.commit()
        return outcome


async def _state(db_factory, order_id):
    async with db_factory() as session:
        order = await session.get(Order, order_id)
        payments = (
            await session.execute(select(OrderPayment).where(OrderPayment.order_id == order_id))
        ).scalars().all()
        products = {
            p.id: p.available
            for p in (await session.execute(select(Product))).scalars().all()
        }
        return order.status, payments, products


@pytest.mark.parametrize(
    "provider, expected",
    [
        ("COMPLETED", PaymentStatus.COMPLETED),
        ("completed", PaymentStatus.COMPLETED),
        ("CANCELLED", PaymentStatus.CANCELLED),
        ("EXPIRED", PaymentStatus.EXPIRED),
        ("CREATED", PaymentStatus.PENDING),
        ("PENDING", PaymentStatus.PENDING),
        ("APPROVED", PaymentStatus.PENDING),
        ("", PaymentStatus.PENDING),
        (None, PaymentStatus.PENDING),
    ],
)
def test_status_mapping(provider, expected):
    assert map_provider_status(provider) == expected


@pytest.mark.asyncio
async def test_completed_payment_marks_order_paid_and_products_sold(db_factory, order_id):
    outcome = await _apply(db_factory, _payload(order_id))
    assert outcome.applied is True

    status, payments, products = await _state(db_factory, order_id)
    assert status == OrderStatus.PAID
    assert len(payments) == 1
    assert payments[0].amount == Decimal("45.00")
    assert payments[0].status == PaymentStatus.COMPLETED
    assert payments[0].payment_method == "swedbank"
    assert products == {"p-1": False, "p-2": False, "p-3": True}


@pytest.mark.asyncio
async def test_duplicate_notification_is_noop(db_factory, order_id, monkeypatch):
    set_status = AsyncMock(side_effect=store.set_order_status)
    monkeypatch.setattr(store, "set_order_status", set_status)

    await _apply(db_factory, _payload(order_id))
    again = await _apply(db_factory, _payload(order_id))

    assert again.applied is False
    status, payments, _ = await _state(db_factory, order_id)
    assert status == OrderStatus.PAID
    assert len(payments) == 1
    set_status.assert_awaited_once()
    assert set_status.await_args.args[1:] == (order_id, OrderStatus.PAID)


@pytest.mark.asyncio
async def test_late_pending_losing_insert_race_keeps_completed(db_factory, order_id, monkeypatch):
    await _apply(db_factory, _payload(order_id, status="COMPLETED"))

    # Both lookups before the insert miss, as if the completed row landed in between
    real_find = store.find_payment_by_transaction
    misses = iter([None, None])

    async def racing_find(session, transaction_id):
        if next(misses, "hit") is None:
            return None
        return await real_find(session, transaction_id)

    monkeypatch.setattr(store, "find_payment_by_transaction", racing_find)
    set_status = AsyncMock(side_effect=store.set_order_status)
    monkeypatch.setattr(store, "set_order_status", set_status)

    late = await _apply(db_factory, _payload(order_id, status="PENDING"))

    assert late.applied is False
    assert late.status == PaymentStatus.COMPLETED
    set_status.assert_not_awaited()
    status, payments, _ = await _state(db_factory, order_id)
    assert status == OrderStatus.PAID
    assert len(payments) == 1
    assert payments[0].status == PaymentStatus.COMPLETED


@pytest.mark.asyncio
async def test_completed_payment_never_regresses(db_factory, order_id):
    await _apply(db_factory, _payload(order_id, status="COMPLETED"))
    late = await _apply(db_factory, _payload(order_id, status="PENDING"))

    assert late.applied is False
    status, payments, _ = await _state(db_factory, order_id)
    assert status == OrderStatus.PAID
    assert payments[0].status == PaymentStatus.COMPLETED


@pytest.mark.asyncio
async def test_pending_then_completed_upgrades_payment(db_factory, order_id):
    await _apply(db_factory, _payload(order_id, status="CREATED"))
    status, payments, _ = await _state(db_factory, order_id)
    assert status == OrderStatus.PENDING
    assert payments[0].status == PaymentStatus.PENDING

    await _apply(db_factory, _payload(order_id, status="COMPLETED"))
    status, payments, _ = await _state(db_factory, order_id)
    assert status == OrderStatus.PAID
    assert len(payments) == 1
    assert payments[0].status == PaymentStatus.COMPLETED


@pytest.mark.asyncio
async def test_cancelled_payment_cancels_pending_order(db_factory, order_id):
    await _apply(db_factory, _payload(order_id, status="CANCELLED"))

    status, payments, products = await _state(db_factory, order_id)
    assert status == OrderStatus.CANCELLED
    assert payments[0].status == PaymentStatus.CANCELLED
    assert all(products.values())


@pytest.mark.asyncio
async def test_expired_payment_does_not_touch_paid_order(db_factory, order_id):
    await _apply(db_factory, _payload(order_id, status="COMPLETED", transaction="tx-1"))
    await _apply(db_factory, _payload(order_id, status="EXPIRED", transaction="tx-2"))

    status, _, _ = await _state(db_factory, order_id)
    assert status == OrderStatus.PAID


@pytest.mark.asyncio
async def test_invalid_mac_rejected_before_any_write(db_factory, order_id):
    payload = _payload(order_id)
    async with db_factory() as session:
        with pytest.raises(InvalidSignature):
            await process_notification(session, payload, "0" * 128, SECRET)

    status, payments, _ = await _state(db_factory, order_id)
    assert status == OrderStatus.PENDING
    assert payments == []


@pytest.mark.asyncio
async def test_unknown_order_rejected(db_session):
    with pytest.raises(NotificationRejected, match="Unknown order"):
        await reconcile(db_session, parse_notification(_payload("no-such-order")))


def test_missing_order_id_rejected():
    payload = json.dumps(
        {"transaction": "tx-9", "status": "COMPLETED", "merchant_data": json.dumps({"customer_email": "x@y.ee"})}
    )
    with pytest.raises(NotificationRejected, match="order_id"):
        parse_notification(payload)


def test_missing_merchant_data_rejected():
    payload = json.dumps({"transaction": "tx-9", "status": "COMPLETED"})
    with pytest.raises(NotificationRejected, match="merchant_data"):
        parse_notification(payload)


def test_malformed_payload_rejected():
    with pytest.raises(NotificationRejected):
        parse_notification("not json")


def test_numeric_order_id_accepted():
    payload = json.dumps(
        {"transaction": "tx-9", "status": "COMPLETED", "merchant_data": json.dumps({"order_id": 42})}
    )
    assert parse_notification(payload).order_id == "42"
