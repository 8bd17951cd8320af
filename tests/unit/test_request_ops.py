"""Unit tests for refund/replacement requests and their status fold."""

import uuid
from decimal import Decimal

import pytest
from libs.auth.models import AuthUser
from libs.common.errors import ConflictError, NotFoundError, ValidationError
from services.commerce_service.models import (
    OrderItem,
    RequestItemStatus,
    RequestStatus,
    RequestType,
)
from services.commerce_service.services import request_ops
from services.commerce_service.services.request_ops import fold_request_status
from sqlalchemy import select
from tests.factories import OrderFactory, OrderItemFactory

USER = "buyer-1"

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _order(db, line_count=2, user_id=USER):
    items = [
        OrderItemFactory.create(position=i, quantity=i + 1, price=Decimal("12.50"))
        for i in range(line_count)
    ]
    order = OrderFactory.create(items=items, user_id=user_id)
    db.add(order)
    await db.commit()
    return order


async def _line(db, order_id, product_id) -> OrderItem:
    result = await db.execute(
        select(OrderItem)
        .where(OrderItem.order_id == order_id, OrderItem.product_id == product_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


# ---------------------------------------------------------------------------
# fold_request_status
# ---------------------------------------------------------------------------

P = RequestItemStatus.PENDING
PR = RequestItemStatus.PROCESSING
A = RequestItemStatus.APPROVED
C = RequestItemStatus.COMPLETED
R = RequestItemStatus.REJECTED


@pytest.mark.unit
@pytest.mark.parametrize(
    "statuses, expected",
    [
        ([], RequestStatus.PENDING),
        ([P], RequestStatus.PENDING),
        ([C, P], RequestStatus.PENDING),
        ([PR, C], RequestStatus.PROCESSING),
        ([C, C], RequestStatus.COMPLETED),
        ([A, C], RequestStatus.COMPLETED),
        ([A], RequestStatus.COMPLETED),
        ([R, R], RequestStatus.REJECTED),
        ([C, R], RequestStatus.PARTIALLY_COMPLETED),
        ([A, R], RequestStatus.PARTIALLY_COMPLETED),
    ],
)
def test_fold_request_status(statuses, expected):
    assert fold_request_status(statuses) is expected


# ---------------------------------------------------------------------------
# Customer requests
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_refund_request_creates_pending_item(db_session):
    order = await _order(db_session)
    line = order.items[0]

    request = await request_ops.request_refund(
        db_session,
        user_id=USER,
        order_id=order.id,
        product_id=line.product_id,
        reason="Arrived damaged",
    )

    assert request.status is RequestStatus.PENDING
    assert len(request.items) == 1
    item = request.items[0]
    assert item.request_type is RequestType.REFUND
    assert item.quantity == line.quantity
    assert item.price == Decimal("12.50")
    assert (await _line(db_session, order.id, line.product_id)).refunded is True


@pytest.mark.asyncio
@pytest.mark.unit
async def test_one_request_document_per_order(db_session):
    order = await _order(db_session)

    first = await request_ops.request_refund(
        db_session, user_id=USER, order_id=order.id, product_id=order.items[0].product_id
    )
    second = await request_ops.request_replacement(
        db_session, user_id=USER, order_id=order.id, product_id=order.items[1].product_id
    )

    assert first.id == second.id
    assert len(second.items) == 2


@pytest.mark.asyncio
@pytest.mark.unit
async def test_duplicate_request_is_conflict(db_session):
    order = await _order(db_session)
    product_id = order.items[0].product_id
    await request_ops.request_refund(
        db_session, user_id=USER, order_id=order.id, product_id=product_id
    )

    with pytest.raises(ConflictError):
        await request_ops.request_refund(
            db_session, user_id=USER, order_id=order.id, product_id=product_id
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_refund_and_replacement_are_exclusive(db_session):
    order = await _order(db_session)
    product_id = order.items[0].product_id
    await request_ops.request_replacement(
        db_session, user_id=USER, order_id=order.id, product_id=product_id
    )

    with pytest.raises(ConflictError):
        await request_ops.request_refund(
            db_session, user_id=USER, order_id=order.id, product_id=product_id
        )

    line = await _line(db_session, order.id, product_id)
    assert line.replaced is True
    assert line.refunded is False


@pytest.mark.asyncio
@pytest.mark.unit
async def test_request_on_someone_elses_order(db_session):
    order = await _order(db_session, user_id="other-user")

    with pytest.raises(NotFoundError):
        await request_ops.request_refund(
            db_session,
            user_id=USER,
            order_id=order.id,
            product_id=order.items[0].product_id,
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_request_for_product_not_in_order(db_session):
    order = await _order(db_session)

    with pytest.raises(NotFoundError):
        await request_ops.request_refund(
            db_session, user_id=USER, order_id=order.id, product_id=uuid.uuid4()
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_request_all_skips_already_disposed_lines(db_session):
    order = await _order(db_session, line_count=3)
    await request_ops.request_replacement(
        db_session, user_id=USER, order_id=order.id, product_id=order.items[0].product_id
    )

    request = await request_ops.request_all_eligible(
        db_session, user_id=USER, order_id=order.id, request_type=RequestType.REFUND
    )

    refunds = [i for i in request.items if i.request_type is RequestType.REFUND]
    assert len(refunds) == 2
    assert order.items[0].product_id not in {i.product_id for i in refunds}

    with pytest.raises(ValidationError):
        await request_ops.request_all_eligible(
            db_session, user_id=USER, order_id=order.id, request_type=RequestType.REFUND
        )


# ---------------------------------------------------------------------------
# Admin resolution
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_resolving_every_item_completes_request(db_session):
    order = await _order(db_session)
    request = await request_ops.request_all_eligible(
        db_session, user_id=USER, order_id=order.id, request_type=RequestType.REFUND
    )

    partial = await request_ops.resolve_item(
        db_session,
        request_id=request.id,
        product_id=order.items[0].product_id,
        decision=RequestItemStatus.APPROVED,
    )
    assert partial.status is RequestStatus.PENDING
    assert partial.completed_at is None

    done = await request_ops.resolve_item(
        db_session,
        request_id=request.id,
        product_id=order.items[1].product_id,
        decision=RequestItemStatus.APPROVED,
        notes="Refund issued",
    )
    assert done.status is RequestStatus.COMPLETED
    assert done.completed_at is not None


@pytest.mark.asyncio
@pytest.mark.unit
async def test_rejection_clears_line_flag(db_session):
    order = await _order(db_session)
    product_id = order.items[0].product_id
    request = await request_ops.request_refund(
        db_session, user_id=USER, order_id=order.id, product_id=product_id
    )

    resolved = await request_ops.resolve_item(
        db_session,
        request_id=request.id,
        product_id=product_id,
        decision=RequestItemStatus.REJECTED,
    )

    assert resolved.status is RequestStatus.REJECTED
    assert (await _line(db_session, order.id, product_id)).refunded is False
    # The customer may ask again
    again = await request_ops.request_refund(
        db_session, user_id=USER, order_id=order.id, product_id=product_id
    )
    assert again.status is RequestStatus.PENDING


@pytest.mark.asyncio
@pytest.mark.unit
async def test_resolve_twice_is_conflict(db_session):
    order = await _order(db_session, line_count=1)
    product_id = order.items[0].product_id
    request = await request_ops.request_refund(
        db_session, user_id=USER, order_id=order.id, product_id=product_id
    )
    await request_ops.resolve_item(
        db_session,
        request_id=request.id,
        product_id=product_id,
        decision=RequestItemStatus.APPROVED,
    )

    with pytest.raises(ConflictError):
        await request_ops.resolve_item(
            db_session,
            request_id=request.id,
            product_id=product_id,
            decision=RequestItemStatus.REJECTED,
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_resolve_requires_a_decision(db_session):
    order = await _order(db_session, line_count=1)
    request = await request_ops.request_refund(
        db_session, user_id=USER, order_id=order.id, product_id=order.items[0].product_id
    )

    with pytest.raises(ValidationError):
        await request_ops.resolve_item(
            db_session,
            request_id=request.id,
            product_id=order.items[0].product_id,
            decision=RequestItemStatus.COMPLETED,
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_get_request_visibility(db_session):
    order = await _order(db_session, line_count=1)
    request = await request_ops.request_refund(
        db_session, user_id=USER, order_id=order.id, product_id=order.items[0].product_id
    )

    owner = AuthUser(sub=USER)
    stranger = AuthUser(sub="someone-else")
    admin = AuthUser(sub="admin-1", role="admin")

    assert (await request_ops.get_request(db_session, request_id=request.id, user=owner)).id == request.id
    assert (await request_ops.get_request(db_session, request_id=request.id, user=admin)).id == request.id
    with pytest.raises(NotFoundError):
        await request_ops.get_request(db_session, request_id=request.id, user=stranger)
