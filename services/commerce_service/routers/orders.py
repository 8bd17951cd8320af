"""Customer orders router: checkout, order history, refund/replacement requests."""

import uuid

from fastapi import APIRouter, Depends, Query, status
from libs.auth.dependencies import get_current_user
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
from services.commerce_service.models import RequestType
from services.commerce_service.schemas import (
    LineRequest,
    OrderPage,
    OrderResponse,
    OrderWideRequest,
    PlaceOrderRequest,
    RequestResponse,
)
from services.commerce_service.services import order_ops, request_ops
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(tags=["commerce"])


# ============================================================================
# ORDERS
# ============================================================================


@router.post("/orders", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def place_order(
    order_in: PlaceOrderRequest,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    notifier: NotificationDispatcher = Depends(get_notification_dispatcher),
):
    """Check out the active cart. The payment is authorized, not captured."""
    return await order_ops.place_order(
        db, user=current_user, data=order_in, gateway=gateway, notifier=notifier
    )


@router.get("/orders", response_model=OrderPage)
async def list_my_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    return await order_ops.list_for_user(
        db, user_id=current_user.user_id, page=page, limit=limit
    )


@router.get("/orders/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: uuid.UUID,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    return await order_ops.get_order(db, order_id=order_id, user=current_user)


# ============================================================================
# REFUND / REPLACEMENT REQUESTS
# ============================================================================


@router.post(
    "/requests/refund", response_model=RequestResponse, status_code=status.HTTP_201_CREATED
)
async def request_refund(
    request_in: LineRequest,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    return await request_ops.request_refund(
        db,
        user_id=current_user.user_id,
        order_id=request_in.order_id,
        product_id=request_in.product_id,
        reason=request_in.reason,
    )


@router.post(
    "/requests/replacement",
    response_model=RequestResponse,
    status_code=status.HTTP_201_CREATED,
)
async def request_replacement(
    request_in: LineRequest,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    return await request_ops.request_replacement(
        db,
        user_id=current_user.user_id,
        order_id=request_in.order_id,
        product_id=request_in.product_id,
        reason=request_in.reason,
    )


@router.post(
    "/requests/{request_type}/all",
    response_model=RequestResponse,
    status_code=status.HTTP_201_CREATED,
)
async def request_all_items(
    request_type: RequestType,
    request_in: OrderWideRequest,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Refund or replace every eligible line of an order."""
    return await request_ops.request_all_eligible(
        db,
        user_id=current_user.user_id,
        order_id=request_in.order_id,
        request_type=request_type,
        reason=request_in.reason,
    )


@router.get("/requests", response_model=list[RequestResponse])
async def list_my_requests(
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    return await request_ops.list_for_user(db, user_id=current_user.user_id)


@router.get("/requests/{request_id}", response_model=RequestResponse)
async def get_request(
    request_id: uuid.UUID,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    return await request_ops.get_request(db, request_id=request_id, user=current_user)
