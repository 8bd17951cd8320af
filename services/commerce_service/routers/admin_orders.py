"""Admin orders router: acceptance, lifecycle transitions, tracking, requests."""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from libs.auth.dependencies import require_admin
from libs.auth.models import AuthUser
from libs.db.session import get_async_db
from services.commerce_service.integrations.notifications import (
    NotificationDispatcher,
    get_notification_dispatcher,
)
from services.commerce_service.integrations.payments import (
    PaymentGateway,
    get_payment_gateway,
)
from services.commerce_service.models import OrderStatus, PaymentStatus, RequestStatus
from services.commerce_service.schemas import (
    AcceptOrderRequest,
    OrderPage,
    OrderResponse,
    OrderTransitionRequest,
    RequestResponse,
    ResolveRequestItem,
    TrackingUpdate,
)
from services.commerce_service.services import order_ops, request_ops
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(tags=["admin-commerce"])


# ============================================================================
# ORDERS
# ============================================================================


@router.get("/orders", response_model=OrderPage)
async def list_orders(
    status: Optional[OrderStatus] = Query(None),
    paid: Optional[PaymentStatus] = Query(None),
    user_id: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    return await order_ops.list_admin(
        db, status=status, paid=paid, user_id=user_id, page=page, limit=limit
    )


@router.get("/orders/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: uuid.UUID,
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    return await order_ops.get_order(db, order_id=order_id, user=current_user)


@router.post("/orders/{order_id}/accept", response_model=OrderResponse)
async def accept_order(
    order_id: uuid.UUID,
    accept_in: AcceptOrderRequest,
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    notifier: NotificationDispatcher = Depends(get_notification_dispatcher),
):
    """Reserve stock, capture payment and move the order to Processing."""
    return await order_ops.accept_order(
        db,
        order_id=order_id,
        adjustments=accept_in.items,
        gateway=gateway,
        notifier=notifier,
    )


@router.post("/orders/{order_id}/status", response_model=OrderResponse)
async def transition_order(
    order_id: uuid.UUID,
    transition_in: OrderTransitionRequest,
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    notifier: NotificationDispatcher = Depends(get_notification_dispatcher),
):
    return await order_ops.transition_order(
        db, order_id=order_id, data=transition_in, gateway=gateway, notifier=notifier
    )


@router.post("/orders/{order_id}/reject", response_model=OrderResponse)
async def reject_order(
    order_id: uuid.UUID,
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    notifier: NotificationDispatcher = Depends(get_notification_dispatcher),
):
    return await order_ops.reject_order(
        db, order_id=order_id, gateway=gateway, notifier=notifier
    )


@router.patch("/orders/{order_id}/tracking", response_model=OrderResponse)
async def update_tracking(
    order_id: uuid.UUID,
    tracking_in: TrackingUpdate,
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    return await order_ops.update_tracking(
        db, order_id=order_id, tracking_id=tracking_in.tracking_id
    )


# ============================================================================
# REQUESTS
# ============================================================================


@router.get("/requests", response_model=list[RequestResponse])
async def list_requests(
    status: Optional[RequestStatus] = Query(None),
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    return await request_ops.list_admin(db, status=status)


@router.post("/requests/{request_id}/resolve", response_model=RequestResponse)
async def resolve_request_item(
    request_id: uuid.UUID,
    resolve_in: ResolveRequestItem,
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """Approve or reject one pending item of a request."""
    return await request_ops.resolve_item(
        db,
        request_id=request_id,
        product_id=resolve_in.product_id,
        decision=resolve_in.decision,
        notes=resolve_in.notes,
    )
