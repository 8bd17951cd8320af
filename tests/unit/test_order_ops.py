"""Unit tests for order placement and the admin lifecycle.

The payment gateway and notifier are in-memory fakes from conftest; the
database is the per-test SQLite session.
"""

import uuid
from decimal import Decimal

import pytest
from libs.auth.models import AuthUser
from libs.common.errors import (
    InsufficientStock,
    InvalidTransition,
    NotFoundError,
    PaymentRejected,
    ValidationError,
)
from services.commerce_service.models import (
    OrderStatus,
    PaymentStatus,
    PaymentTransaction,
    Product,
    ShippingMethod,
)
from services.commerce_service.schemas import (
    OrderLineAdjustment,
    OrderTransitionRequest,
    PlaceOrderRequest,
)
from services.commerce_service.services import cart_ops, order_ops
from sqlalchemy import select, update
from sqlalchemy.sql.dml import Update
from tests.factories import CategoryFactory, OrderFactory, OrderItemFactory, ProductFactory

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _buyer(user_id="buyer-1", role="Wholesale") -> AuthUser:
    return AuthUser(sub=user_id, role=role, email=f"{user_id}@test.com")


ADMIN = AuthUser(sub="admin-1", role="admin", email="admin@test.com")


def _place_payload(**overrides) -> PlaceOrderRequest:
    values = {
        "payment_method_id": "pm_card_visa",
        "shipping_method": "Ground",
        "shipping_address": {"line1": "1 Dock Road"},
        "billing_address": {"line1": "1 Dock Road"},
    }
    values.update(overrides)
    return PlaceOrderRequest(**values)


async def _product(db, **overrides):
    category = CategoryFactory.create()
    product = ProductFactory.create(category_id=category.id, **overrides)
    db.add_all([category, product])
    await db.commit()
    return product


async def _stock(db, product_id) -> int:
    result = await db.execute(
        select(Product)
        .where(Product.id == product_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one().stock


async def _pending_order(db, product, quantity, price=Decimal("15.00")):
    order = OrderFactory.create(
        items=[
            OrderItemFactory.create(
                product_id=product.id, quantity=quantity, price=price
            )
        ],
        amount=price * quantity,
    )
    db.add(order)
    await db.commit()
    return order


# ---------------------------------------------------------------------------
# place_order
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_place_order_snapshots_tier_price_and_authorizes(db_session, gateway, notifier):
    product = await _product(db_session, wholesale_price=Decimal("15.00"))
    buyer = _buyer()
    await cart_ops.add_to_cart(
        db_session, user_id=buyer.user_id, product_id=product.id, quantity=3
    )

    order = await order_ops.place_order(
        db_session, user=buyer, data=_place_payload(), gateway=gateway, notifier=notifier
    )

    assert order.status is OrderStatus.PENDING
    assert order.paid is PaymentStatus.UNPAID
    assert order.items[0].price == Decimal("15.00")
    assert order.shipping_fee == Decimal("10.00")
    assert order.amount == Decimal("55.00")
    assert order.payment_intent_id == "pi_test_1"
    assert gateway.names() == ["create_customer", "attach_payment_method", "authorize"]
    assert "capture" not in gateway.names()
    assert notifier.kinds() == ["order_placed_admin"]
    assert await cart_ops.get_active_cart(db_session, buyer.user_id) is None


@pytest.mark.asyncio
@pytest.mark.unit
async def test_later_price_change_does_not_touch_order(db_session, gateway, notifier):
    product = await _product(db_session, wholesale_price=Decimal("15.00"))
    buyer = _buyer()
    await cart_ops.add_to_cart(
        db_session, user_id=buyer.user_id, product_id=product.id, quantity=1
    )
    order = await order_ops.place_order(
        db_session, user=buyer, data=_place_payload(), gateway=gateway, notifier=notifier
    )

    product.wholesale_price = Decimal("99.00")
    await db_session.commit()

    reloaded = await order_ops.get_order(db_session, order_id=order.id, user=buyer)
    assert reloaded.items[0].price == Decimal("15.00")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_place_order_requires_cart_with_items(db_session, gateway, notifier):
    with pytest.raises(NotFoundError):
        await order_ops.place_order(
            db_session,
            user=_buyer(),
            data=_place_payload(),
            gateway=gateway,
            notifier=notifier,
        )
    assert gateway.calls == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_place_order_rejects_unknown_shipping(db_session, gateway, notifier):
    with pytest.raises(ValidationError):
        await order_ops.place_order(
            db_session,
            user=_buyer(),
            data=_place_payload(shipping_method="Teleport"),
            gateway=gateway,
            notifier=notifier,
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_overnight_order_of_650(db_session, gateway, notifier):
    product = await _product(db_session, wholesale_price=Decimal("650.00"))
    buyer = _buyer()
    await cart_ops.add_to_cart(
        db_session, user_id=buyer.user_id, product_id=product.id, quantity=1
    )

    order = await order_ops.place_order(
        db_session,
        user=buyer,
        data=_place_payload(shipping_method="overnight"),
        gateway=gateway,
        notifier=notifier,
    )

    assert order.shipping_method is ShippingMethod.OVERNIGHT
    assert order.shipping_fee == Decimal("49.00")
    assert order.amount == Decimal("699.00")


# ---------------------------------------------------------------------------
# accept / transition
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_accept_reserves_stock_and_captures(db_session, gateway, notifier):
    product = await _product(db_session, stock=10)
    order = await _pending_order(db_session, product, 4)

    accepted = await order_ops.accept_order(
        db_session, order_id=order.id, adjustments=None, gateway=gateway, notifier=notifier
    )

    assert accepted.status is OrderStatus.PROCESSING
    assert accepted.paid is PaymentStatus.PAID
    assert accepted.approved_at is not None
    assert await _stock(db_session, product.id) == 6
    assert ("capture", order.payment_intent_id, None) in gateway.calls
    assert notifier.kinds() == ["order_confirmed"]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_second_acceptance_cannot_oversell(db_session, gateway, notifier):
    """Stock 5; two pending orders of 3 each. Only the first is accepted."""
    product = await _product(db_session, stock=5)
    first = await _pending_order(db_session, product, 3)
    second = await _pending_order(db_session, product, 3)

    await order_ops.accept_order(
        db_session, order_id=first.id, adjustments=None, gateway=gateway, notifier=notifier
    )
    with pytest.raises(InsufficientStock) as exc:
        await order_ops.accept_order(
            db_session,
            order_id=second.id,
            adjustments=None,
            gateway=gateway,
            notifier=notifier,
        )

    assert exc.value.available == 2
    assert exc.value.requested == 3
    assert await _stock(db_session, product.id) == 2
    still_pending = await order_ops.get_order(db_session, order_id=second.id, user=ADMIN)
    assert still_pending.status is OrderStatus.PENDING


@pytest.mark.asyncio
@pytest.mark.unit
async def test_guarded_decrement_loses_race(db_session, gateway, notifier, monkeypatch):
    """A competing acceptance commits between the stock read and the decrement."""
    product = await _product(db_session, stock=5)
    order = await _pending_order(db_session, product, 3)
    product_id, order_id = product.id, order.id

    execute = db_session.execute
    competed = []

    async def execute_after_competitor(statement, *args, **kwargs):
        if (
            not competed
            and isinstance(statement, Update)
            and statement.table is Product.__table__
        ):
            competed.append(True)
            await execute(
                update(Product).where(Product.id == product_id).values(stock=1)
            )
            await db_session.commit()
        return await execute(statement, *args, **kwargs)

    monkeypatch.setattr(db_session, "execute", execute_after_competitor)

    with pytest.raises(InsufficientStock) as exc:
        await order_ops.accept_order(
            db_session,
            order_id=order_id,
            adjustments=None,
            gateway=gateway,
            notifier=notifier,
        )

    assert competed == [True]
    assert exc.value.available == 1
    assert exc.value.requested == 3
    monkeypatch.undo()
    assert await _stock(db_session, product_id) == 1
    still_pending = await order_ops.get_order(db_session, order_id=order_id, user=ADMIN)
    assert still_pending.status is OrderStatus.PENDING
    assert still_pending.paid is PaymentStatus.UNPAID
    assert "capture" not in gateway.names()


@pytest.mark.asyncio
@pytest.mark.unit
async def test_accept_with_adjustment_recomputes_amount(db_session, gateway, notifier):
    product = await _product(db_session, stock=10)
    order = await _pending_order(db_session, product, 3)

    accepted = await order_ops.accept_order(
        db_session,
        order_id=order.id,
        adjustments=[OrderLineAdjustment(product_id=product.id, quantity=2)],
        gateway=gateway,
        notifier=notifier,
    )

    # 2 x 15 = 30 on Ground -> fee 10
    assert accepted.amount == Decimal("40.00")
    assert ("capture", order.payment_intent_id, Decimal("40.00")) in gateway.calls
    assert await _stock(db_session, product.id) == 8

    result = await db_session.execute(select(PaymentTransaction))
    transaction = result.scalar_one()
    assert transaction.amount_updated is True
    assert transaction.original_amount == Decimal("45.00")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_capture_failure_marks_payment_rejected(
    db_session, failing_gateway, notifier
):
    product = await _product(db_session, stock=10)
    order = await _pending_order(db_session, product, 2)
    # The failure path rolls the session back, expiring both instances
    product_id, order_id = product.id, order.id

    with pytest.raises(PaymentRejected):
        await order_ops.accept_order(
            db_session,
            order_id=order_id,
            adjustments=None,
            gateway=failing_gateway,
            notifier=notifier,
        )

    failed = await order_ops.get_order(db_session, order_id=order_id, user=ADMIN)
    assert failed.status is OrderStatus.PENDING
    assert failed.paid is PaymentStatus.REJECTED
    assert "timeout" in failed.payment_failure_reason
    # Reservation rolled back with the transition
    assert await _stock(db_session, product_id) == 10
    transaction = (await db_session.execute(select(PaymentTransaction))).scalar_one()
    assert transaction.status == "failed"
    assert notifier.kinds() == ["payment_failed"]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_reject_pending_releases_authorization(db_session, gateway, notifier):
    product = await _product(db_session)
    order = await _pending_order(db_session, product, 1)

    rejected = await order_ops.reject_order(
        db_session, order_id=order.id, gateway=gateway, notifier=notifier
    )

    assert rejected.status is OrderStatus.CANCELLED
    assert rejected.paid is PaymentStatus.CANCELLED
    assert rejected.cancelled_at is not None
    assert gateway.names() == ["cancel_authorization"]
    assert notifier.kinds() == ["order_cancelled"]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_reject_after_failed_capture_releases_authorization(
    db_session, failing_gateway, notifier
):
    product = await _product(db_session, stock=10)
    order = await _pending_order(db_session, product, 1)
    order_id, intent_id = order.id, order.payment_intent_id
    with pytest.raises(PaymentRejected):
        await order_ops.accept_order(
            db_session,
            order_id=order_id,
            adjustments=None,
            gateway=failing_gateway,
            notifier=notifier,
        )

    rejected = await order_ops.reject_order(
        db_session, order_id=order_id, gateway=failing_gateway, notifier=notifier
    )

    assert rejected.status is OrderStatus.CANCELLED
    assert rejected.paid is PaymentStatus.CANCELLED
    assert ("cancel_authorization", intent_id) in failing_gateway.calls


@pytest.mark.asyncio
@pytest.mark.unit
async def test_deliver_after_accept(db_session, gateway, notifier):
    product = await _product(db_session)
    order = await _pending_order(db_session, product, 1)
    await order_ops.accept_order(
        db_session, order_id=order.id, adjustments=None, gateway=gateway, notifier=notifier
    )

    delivered = await order_ops.transition_order(
        db_session,
        order_id=order.id,
        data=OrderTransitionRequest(status=OrderStatus.DELIVERED),
        gateway=gateway,
        notifier=notifier,
    )

    assert delivered.status is OrderStatus.DELIVERED
    assert delivered.delivered_at is not None
    assert gateway.names().count("capture") == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_terminal_states_reject_transitions(db_session, gateway, notifier):
    product = await _product(db_session)
    order = await _pending_order(db_session, product, 1)
    await order_ops.reject_order(
        db_session, order_id=order.id, gateway=gateway, notifier=notifier
    )

    with pytest.raises(InvalidTransition):
        await order_ops.transition_order(
            db_session,
            order_id=order.id,
            data=OrderTransitionRequest(status=OrderStatus.PROCESSING),
            gateway=gateway,
            notifier=notifier,
        )
    with pytest.raises(InvalidTransition):
        await order_ops.accept_order(
            db_session,
            order_id=order.id,
            adjustments=None,
            gateway=gateway,
            notifier=notifier,
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_pending_cannot_jump_to_delivered(db_session, gateway, notifier):
    product = await _product(db_session)
    order = await _pending_order(db_session, product, 1)

    with pytest.raises(InvalidTransition):
        await order_ops.transition_order(
            db_session,
            order_id=order.id,
            data=OrderTransitionRequest(status=OrderStatus.DELIVERED),
            gateway=gateway,
            notifier=notifier,
        )
    assert gateway.calls == []


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_other_users_order_is_not_found(db_session):
    product = await _product(db_session)
    order = await _pending_order(db_session, product, 1)

    with pytest.raises(NotFoundError):
        await order_ops.get_order(db_session, order_id=order.id, user=_buyer("intruder"))
    assert (await order_ops.get_order(db_session, order_id=order.id, user=ADMIN)).id == order.id


@pytest.mark.asyncio
@pytest.mark.unit
async def test_admin_list_filters_by_status(db_session, gateway, notifier):
    product = await _product(db_session)
    keep = await _pending_order(db_session, product, 1)
    cancelled = await _pending_order(db_session, product, 1)
    await order_ops.reject_order(
        db_session, order_id=cancelled.id, gateway=gateway, notifier=notifier
    )

    page = await order_ops.list_admin(db_session, status=OrderStatus.PENDING)

    assert page.total == 1
    assert page.items[0].id == keep.id
    assert (await order_ops.list_admin(db_session, limit=1000)).limit == order_ops.MAX_PAGE_SIZE


@pytest.mark.asyncio
@pytest.mark.unit
async def test_update_tracking(db_session):
    product = await _product(db_session)
    order = await _pending_order(db_session, product, 1)

    updated = await order_ops.update_tracking(
        db_session, order_id=order.id, tracking_id="  1Z999AA10123456784 "
    )

    assert updated.tracking_id == "1Z999AA10123456784"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_unknown_order(db_session):
    with pytest.raises(NotFoundError):
        await order_ops.update_tracking(
            db_session, order_id=uuid.uuid4(), tracking_id="x"
        )
