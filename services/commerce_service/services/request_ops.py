"""Refund and replacement requests against placed order lines.

A user has one request per order; each refund/replacement adds an item to
it. The request's status is always ``fold_request_status`` over its items,
recomputed and stored on every write.
"""

import uuid
from typing import Iterable, Optional

from libs.auth.models import AuthUser
from libs.common.datetime_utils import utc_now
from libs.common.errors import ConflictError, NotFoundError, ValidationError
from libs.common.logging import get_logger
from services.commerce_service.models import (
    Order,
    OrderItem,
    OrderRequest,
    OrderRequestItem,
    RequestItemStatus,
    RequestStatus,
    RequestType,
)
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

OPEN_STATUSES = frozenset({RequestItemStatus.PENDING, RequestItemStatus.PROCESSING})
DECISIONS = frozenset({RequestItemStatus.APPROVED, RequestItemStatus.REJECTED})


def fold_request_status(statuses: Iterable[RequestItemStatus]) -> RequestStatus:
    """Aggregate item statuses into the request status.

    Approved counts as a successful outcome, the same as Completed.
    """
    statuses = list(statuses)
    if not statuses or RequestItemStatus.PENDING in statuses:
        return RequestStatus.PENDING
    if RequestItemStatus.PROCESSING in statuses:
        return RequestStatus.PROCESSING
    outcomes = {
        RequestItemStatus.COMPLETED if s is RequestItemStatus.APPROVED else s
        for s in statuses
    }
    if outcomes == {RequestItemStatus.COMPLETED}:
        return RequestStatus.COMPLETED
    if outcomes == {RequestItemStatus.REJECTED}:
        return RequestStatus.REJECTED
    return RequestStatus.PARTIALLY_COMPLETED


def _refold(request: OrderRequest) -> None:
    request.status = fold_request_status(item.status for item in request.items)
    if any(item.status in OPEN_STATUSES for item in request.items):
        request.completed_at = None
    elif request.completed_at is None:
        request.completed_at = utc_now()


def _set_disposition(line: OrderItem, request_type: Optional[RequestType]) -> None:
    line.refunded = request_type is RequestType.REFUND
    line.replaced = request_type is RequestType.REPLACEMENT


async def _load_user_order(db: AsyncSession, user_id: str, order_id: uuid.UUID) -> Order:
    result = await db.execute(
        select(Order)
        .where(Order.id == order_id)
        .execution_options(populate_existing=True)
    )
    order = result.scalar_one_or_none()
    if order is None or order.user_id != user_id:
        raise NotFoundError("Order", order_id)
    return order


async def _load_request(db: AsyncSession, request_id: uuid.UUID) -> OrderRequest:
    result = await db.execute(
        select(OrderRequest)
        .where(OrderRequest.id == request_id)
        .execution_options(populate_existing=True)
    )
    request = result.scalar_one_or_none()
    if request is None:
        raise NotFoundError("Request", request_id)
    return request


async def _request_for(db: AsyncSession, order: Order, user_id: str) -> OrderRequest:
    result = await db.execute(
        select(OrderRequest).where(
            OrderRequest.order_id == order.id, OrderRequest.user_id == user_id
        )
    )
    request = result.scalar_one_or_none()
    if request is None:
        request = OrderRequest(order_id=order.id, user_id=user_id, items=[])
        db.add(request)
    return request


def _open_item(
    request: OrderRequest, product_id: uuid.UUID, request_type: RequestType
) -> Optional[OrderRequestItem]:
    return next(
        (
            item
            for item in request.items
            if item.product_id == product_id
            and item.request_type is request_type
            and item.status in OPEN_STATUSES
        ),
        None,
    )


def _check_line(
    request: OrderRequest, line: OrderItem, request_type: RequestType
) -> None:
    already = line.refunded if request_type is RequestType.REFUND else line.replaced
    opposite = line.replaced if request_type is RequestType.REFUND else line.refunded
    if already or _open_item(request, line.product_id, request_type) is not None:
        raise ConflictError(
            f"A {request_type.value} has already been requested for this item",
            product=str(line.product_id),
        )
    if opposite:
        other = (
            RequestType.REPLACEMENT
            if request_type is RequestType.REFUND
            else RequestType.REFUND
        )
        raise ConflictError(
            f"This item already has a {other.value} request",
            product=str(line.product_id),
        )


def _append_item(
    request: OrderRequest,
    line: OrderItem,
    request_type: RequestType,
    reason: Optional[str],
) -> None:
    request.items.append(
        OrderRequestItem(
            product_id=line.product_id,
            quantity=line.quantity,
            price=line.price,
            request_type=request_type,
            status=RequestItemStatus.PENDING,
            reason=reason,
        )
    )
    _set_disposition(line, request_type)


# ============================================================================
# CUSTOMER OPERATIONS
# ============================================================================


async def request_item(
    db: AsyncSession,
    *,
    user_id: str,
    order_id: uuid.UUID,
    product_id: uuid.UUID,
    request_type: RequestType,
    reason: Optional[str] = None,
) -> OrderRequest:
    order = await _load_user_order(db, user_id, order_id)
    line = next((item for item in order.items if item.product_id == product_id), None)
    if line is None:
        raise NotFoundError("Order item", product_id)

    request = await _request_for(db, order, user_id)
    _check_line(request, line, request_type)
    _append_item(request, line, request_type, reason)
    _refold(request)

    await db.commit()
    logger.info(
        "User %s requested %s for product %s on order %s",
        user_id,
        request_type.value,
        product_id,
        order_id,
    )
    return await _load_request(db, request.id)


async def request_refund(
    db: AsyncSession,
    *,
    user_id: str,
    order_id: uuid.UUID,
    product_id: uuid.UUID,
    reason: Optional[str] = None,
) -> OrderRequest:
    return await request_item(
        db,
        user_id=user_id,
        order_id=order_id,
        product_id=product_id,
        request_type=RequestType.REFUND,
        reason=reason,
    )


async def request_replacement(
    db: AsyncSession,
    *,
    user_id: str,
    order_id: uuid.UUID,
    product_id: uuid.UUID,
    reason: Optional[str] = None,
) -> OrderRequest:
    return await request_item(
        db,
        user_id=user_id,
        order_id=order_id,
        product_id=product_id,
        request_type=RequestType.REPLACEMENT,
        reason=reason,
    )


async def request_all_eligible(
    db: AsyncSession,
    *,
    user_id: str,
    order_id: uuid.UUID,
    request_type: RequestType,
    reason: Optional[str] = None,
) -> OrderRequest:
    """Request ``request_type`` for every line not already refunded or replaced."""
    order = await _load_user_order(db, user_id, order_id)
    request = await _request_for(db, order, user_id)

    eligible = [
        line
        for line in order.items
        if not line.refunded
        and not line.replaced
        and _open_item(request, line.product_id, request_type) is None
    ]
    if not eligible:
        raise ValidationError("No eligible items in this order", field="order_id")

    for line in eligible:
        _append_item(request, line, request_type, reason)
    _refold(request)

    await db.commit()
    logger.info(
        "User %s requested %s for %d items on order %s",
        user_id,
        request_type.value,
        len(eligible),
        order_id,
    )
    return await _load_request(db, request.id)


# ============================================================================
# ADMIN OPERATIONS
# ============================================================================


async def resolve_item(
    db: AsyncSession,
    *,
    request_id: uuid.UUID,
    product_id: uuid.UUID,
    decision: RequestItemStatus,
    notes: Optional[str] = None,
) -> OrderRequest:
    """Approve or reject the pending item for ``product_id``.

    A rejected item releases its line's refund/replacement flag so the
    customer may ask again.
    """
    if decision not in DECISIONS:
        raise ValidationError("Decision must be Approved or Rejected", field="decision")

    request = await _load_request(db, request_id)
    matching = [item for item in request.items if item.product_id == product_id]
    if not matching:
        raise NotFoundError("Request item", product_id)
    item = next(
        (i for i in matching if i.status is RequestItemStatus.PENDING), None
    )
    if item is None:
        raise ConflictError(
            "Request item has already been processed", product=str(product_id)
        )

    item.status = decision
    item.admin_notes = notes
    item.processed_at = utc_now()

    if decision is RequestItemStatus.REJECTED:
        result = await db.execute(
            select(OrderItem).where(
                OrderItem.order_id == request.order_id,
                OrderItem.product_id == product_id,
            )
        )
        for line in result.scalars().all():
            _set_disposition(line, None)

    _refold(request)
    await db.commit()
    logger.info(
        "Request %s item %s resolved as %s; request is %s",
        request_id,
        product_id,
        decision.value,
        request.status.value,
    )
    return await _load_request(db, request_id)


# ============================================================================
# READS
# ============================================================================


async def get_request(
    db: AsyncSession, *, request_id: uuid.UUID, user: AuthUser
) -> OrderRequest:
    request = await _load_request(db, request_id)
    if not user.is_admin and request.user_id != user.user_id:
        raise NotFoundError("Request", request_id)
    return request


async def list_for_user(db: AsyncSession, *, user_id: str) -> list[OrderRequest]:
    result = await db.execute(
        select(OrderRequest)
        .where(OrderRequest.user_id == user_id)
        .order_by(OrderRequest.created_at.desc())
    )
    return list(result.scalars().all())


async def list_admin(
    db: AsyncSession, *, status: Optional[RequestStatus] = None
) -> list[OrderRequest]:
    stmt = select(OrderRequest).order_by(OrderRequest.created_at.desc())
    if status is not None:
        stmt = stmt.where(OrderRequest.status == status)
    result = await db.execute(stmt)
    return list(result.scalars().all())
