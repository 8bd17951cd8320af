"""Order placement and lifecycle execution.

Decisions come from ``order_state``; this module applies them. Order rows
are locked with ``SELECT ... FOR UPDATE`` for the duration of a transition
and stock is decremented with a guarded UPDATE so concurrent acceptances of
different orders can never oversell a product.
"""

import uuid
from decimal import Decimal
from typing import Optional

from libs.auth.models import AuthUser
from libs.common.config import get_settings
from libs.common.datetime_utils import utc_now
from libs.common.errors import (
    ExternalServiceError,
    InsufficientStock,
    InvalidTransition,
    NotFoundError,
    PaymentRejected,
    ValidationError,
)
from libs.common.logging import get_logger
from services.commerce_service.integrations.notifications import (
    NotificationDispatcher,
)
from services.commerce_service.integrations.payments import (
    CaptureResult,
    CustomerProfile,
    PaymentGateway,
)
from services.commerce_service.models import (
    Cart,
    Order,
    OrderItem,
    OrderStatus,
    PaymentStatus,
    PaymentTransaction,
    Product,
)
from services.commerce_service.schemas import (
    OrderLineAdjustment,
    OrderPage,
    OrderResponse,
    OrderTransitionRequest,
    PlaceOrderRequest,
)
from services.commerce_service.services import order_state, pricing
from services.commerce_service.services.order_state import PaymentAction
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

MAX_PAGE_SIZE = 100


def _order_payload(order: Order) -> dict:
    return {
        "order_id": str(order.id),
        "status": order.status.value,
        "amount": str(order.amount),
        "shipping_fee": str(order.shipping_fee),
        "tracking_id": order.tracking_id,
        "order_url": f"{get_settings().FRONTEND_URL}/orders/{order.id}",
    }


async def _notify(
    notifier: NotificationDispatcher, to: Optional[str], kind: str, order: Order
) -> None:
    try:
        await notifier.send_transactional(to, kind, _order_payload(order))
    except Exception as e:
        logger.error("Notification %s for order %s failed: %s", kind, order.id, e)


async def _load_order(
    db: AsyncSession, order_id: uuid.UUID, *, for_update: bool = False
) -> Order:
    stmt = select(Order).where(Order.id == order_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt.execution_options(populate_existing=True))
    order = result.scalar_one_or_none()
    if order is None:
        raise NotFoundError("Order", order_id)
    return order


# ============================================================================
# PLACEMENT
# ============================================================================


async def place_order(
    db: AsyncSession,
    *,
    user: AuthUser,
    data: PlaceOrderRequest,
    gateway: PaymentGateway,
    notifier: NotificationDispatcher,
) -> Order:
    """Turn the caller's active cart into a Pending/Unpaid order.

    Unit prices are snapshotted at the caller's tier; later price edits do
    not reach the order. The payment is authorized only, never captured.
    """
    method = order_state.parse_shipping_method(data.shipping_method)
    if data.discount < 0:
        raise ValidationError("Discount cannot be negative", field="discount")

    result = await db.execute(
        select(Cart).where(Cart.user_id == user.user_id, Cart.is_active.is_(True))
    )
    cart = result.scalar_one_or_none()
    if cart is None or (data.cart_id is not None and cart.id != data.cart_id):
        raise NotFoundError("Cart", data.cart_id, message="No active cart found")
    if not cart.items:
        raise ValidationError("Cart is empty", field="cart_id")

    tier = pricing.resolve_tier(user.role)
    result = await db.execute(
        select(Product).where(Product.id.in_([item.product_id for item in cart.items]))
    )
    products = {p.id: p for p in result.scalars().all()}

    order_id = uuid.uuid4()
    lines: list[OrderItem] = []
    for position, item in enumerate(cart.items):
        product = products.get(item.product_id)
        if product is None or product.is_deleted or not product.published:
            raise ValidationError(
                f"Product {item.product_id} is no longer available", field="items"
            )
        lines.append(
            OrderItem(
                order_id=order_id,
                product_id=product.id,
                product_name=product.name,
                position=position,
                quantity=item.quantity,
                price=pricing.price_for(product, tier),
            )
        )

    subtotal = order_state.items_subtotal((line.quantity, line.price) for line in lines)
    discount = pricing.quantize(data.discount)
    net = max(subtotal - discount, Decimal("0"))
    fee = order_state.shipping_fee(method, net)
    amount = order_state.compute_amount(subtotal, discount, fee)

    name = " ".join(filter(None, [user.first_name, user.last_name])) or None
    customer_ref = await gateway.create_customer(
        CustomerProfile(user_id=user.user_id, email=user.email, name=name)
    )
    await gateway.attach_payment_method(customer_ref, data.payment_method_id)
    authorization = await gateway.authorize(
        customer_ref,
        amount,
        data.payment_method_id,
        metadata={"order_id": str(order_id), "user_id": user.user_id},
    )

    order = Order(
        id=order_id,
        user_id=user.user_id,
        user_email=user.email,
        cart_id=cart.id,
        status=OrderStatus.PENDING,
        paid=PaymentStatus.UNPAID,
        amount=amount,
        shipping_fee=fee,
        discount=discount,
        shipping_method=method,
        shipping_address=data.shipping_address,
        billing_address=data.billing_address,
        payment_method_id=data.payment_method_id,
        payment_customer_id=customer_ref,
        payment_intent_id=authorization.id,
        items=lines,
    )
    db.add(order)
    cart.is_active = False
    await db.commit()
    order = await _load_order(db, order_id)

    logger.info(
        "Order %s placed by %s: %s (%s tier, %d lines)",
        order.id,
        user.user_id,
        order.amount,
        tier.value,
        len(lines),
    )
    await _notify(notifier, get_settings().ADMIN_EMAIL, "order_placed_admin", order)
    return order


# ============================================================================
# LIFECYCLE
# ============================================================================


def _apply_adjustments(order: Order, adjustments: list[OrderLineAdjustment]) -> bool:
    by_product = {item.product_id: item for item in order.items}
    changed = False
    for adjustment in adjustments:
        line = by_product.get(adjustment.product_id)
        if line is None:
            raise ValidationError(
                f"Product {adjustment.product_id} is not part of this order",
                field="items",
            )
        if line.quantity != adjustment.quantity:
            line.quantity = adjustment.quantity
            changed = True
        if adjustment.price is not None and line.price != adjustment.price:
            line.price = pricing.quantize(adjustment.price)
            changed = True
    return changed


async def _reserve_stock(db: AsyncSession, order: Order) -> None:
    """Decrement stock for every line, all or nothing."""
    requested: dict[uuid.UUID, int] = {}
    for item in order.items:
        requested[item.product_id] = requested.get(item.product_id, 0) + item.quantity

    result = await db.execute(
        select(Product.id, Product.stock).where(Product.id.in_(list(requested)))
    )
    available = {row.id: row.stock for row in result}
    for product_id, quantity in requested.items():
        if product_id not in available:
            raise NotFoundError("Product", product_id)
        if available[product_id] < quantity:
            raise InsufficientStock(product_id, available[product_id], quantity)

    for product_id, quantity in requested.items():
        decremented = await db.execute(
            update(Product)
            .where(Product.id == product_id, Product.stock >= quantity)
            .values(stock=Product.stock - quantity)
            .execution_options(synchronize_session=False)
        )
        if decremented.rowcount != 1:
            # Lost a race with another acceptance since the check above
            await db.rollback()
            current = await db.execute(
                select(Product.stock).where(Product.id == product_id)
            )
            raise InsufficientStock(product_id, current.scalar_one_or_none() or 0, quantity)


async def _record_payment_failure(
    db: AsyncSession,
    *,
    order_id: uuid.UUID,
    reason: str,
    transaction: PaymentTransaction,
    notifier: NotificationDispatcher,
) -> None:
    """Discard the pending transition and persist ``paid=Rejected`` instead."""
    await db.rollback()
    order = await _load_order(db, order_id)
    order.paid = PaymentStatus.REJECTED
    order.payment_failure_reason = reason
    db.add(transaction)
    await db.commit()
    logger.warning("Capture for order %s rejected: %s", order_id, reason)
    await _notify(notifier, order.user_email, "payment_failed", order)


async def _execute_transition(
    db: AsyncSession,
    order: Order,
    target: OrderStatus,
    *,
    adjustments: Optional[list[OrderLineAdjustment]],
    shipping_method: Optional[str],
    shipping_fee: Optional[Decimal],
    discount: Optional[Decimal],
    gateway: PaymentGateway,
    notifier: NotificationDispatcher,
) -> Order:
    order_state.check_transition(order.status, target)

    repriced = False
    if adjustments:
        repriced = _apply_adjustments(order, adjustments)
    if shipping_method is not None:
        method = order_state.parse_shipping_method(shipping_method)
        repriced = repriced or method is not order.shipping_method
        order.shipping_method = method
    if discount is not None:
        repriced = repriced or discount != order.discount
        order.discount = pricing.quantize(discount)

    subtotal = order_state.items_subtotal(
        (item.quantity, item.price) for item in order.items
    )
    if shipping_fee is not None:
        order.shipping_fee = pricing.quantize(shipping_fee)
    elif repriced:
        net = max(subtotal - order.discount, Decimal("0"))
        order.shipping_fee = order_state.shipping_fee(order.shipping_method, net)
    new_amount = order_state.compute_amount(subtotal, order.discount, order.shipping_fee)

    plan = order_state.plan_transition(
        status=order.status,
        paid=order.paid,
        target=target,
        authorized_amount=order.amount,
        new_amount=new_amount,
    )

    if plan.from_status is OrderStatus.PENDING and plan.to_status is OrderStatus.PROCESSING:
        await _reserve_stock(db, order)

    order_id = order.id
    previous_amount = order.amount
    if plan.payment_action is PaymentAction.CAPTURE:
        transaction = PaymentTransaction(
            order_id=order_id,
            user_id=order.user_id,
            payment_intent_id=order.payment_intent_id,
            amount=plan.amount,
            status="pending",
            amount_updated=plan.amount_changed,
            original_amount=previous_amount if plan.amount_changed else None,
        )
        if not order.payment_intent_id:
            result = CaptureResult(
                succeeded=False, status="failed", reason="Order has no payment authorization"
            )
        else:
            try:
                result = await gateway.capture(
                    order.payment_intent_id,
                    amount=plan.amount if plan.amount_changed else None,
                )
            except ExternalServiceError as e:
                result = CaptureResult(succeeded=False, status="failed", reason=e.message)
        transaction.status = result.status
        if not result.succeeded:
            reason = result.reason or "Payment capture failed"
            transaction.failure_reason = reason
            await _record_payment_failure(
                db,
                order_id=order_id,
                reason=reason,
                transaction=transaction,
                notifier=notifier,
            )
            raise PaymentRejected(reason, amount=plan.amount)
        order.paid = PaymentStatus.PAID
        order.payment_failure_reason = None
        db.add(transaction)
    elif plan.payment_action is PaymentAction.CANCEL:
        if order.payment_intent_id:
            try:
                await gateway.cancel_authorization(order.payment_intent_id)
            except ExternalServiceError as e:
                # An unconfirmed authorization lapses on its own; the cancel still stands
                logger.warning(
                    "Releasing authorization for order %s failed: %s", order_id, e.message
                )
        order.paid = PaymentStatus.CANCELLED

    now = utc_now()
    order.status = plan.to_status
    order.amount = plan.amount
    if plan.to_status is OrderStatus.PROCESSING and order.approved_at is None:
        order.approved_at = now
    elif plan.to_status is OrderStatus.DELIVERED:
        order.delivered_at = now
    elif plan.to_status is OrderStatus.CANCELLED:
        order.cancelled_at = now

    await db.commit()
    order = await _load_order(db, order_id)
    logger.info(
        "Order %s: %s -> %s (paid=%s, amount=%s)",
        order_id,
        plan.from_status.value,
        plan.to_status.value,
        order.paid.value,
        order.amount,
    )

    for kind in plan.notifications:
        await _notify(notifier, order.user_email, kind, order)
    return order


async def accept_order(
    db: AsyncSession,
    *,
    order_id: uuid.UUID,
    adjustments: Optional[list[OrderLineAdjustment]],
    gateway: PaymentGateway,
    notifier: NotificationDispatcher,
) -> Order:
    """Admin acceptance: reserve stock and move a Pending order to Processing."""
    order = await _load_order(db, order_id, for_update=True)
    if order.status is not OrderStatus.PENDING:
        raise InvalidTransition(order.status.value, OrderStatus.PROCESSING.value)
    return await _execute_transition(
        db,
        order,
        OrderStatus.PROCESSING,
        adjustments=adjustments,
        shipping_method=None,
        shipping_fee=None,
        discount=None,
        gateway=gateway,
        notifier=notifier,
    )


async def transition_order(
    db: AsyncSession,
    *,
    order_id: uuid.UUID,
    data: OrderTransitionRequest,
    gateway: PaymentGateway,
    notifier: NotificationDispatcher,
) -> Order:
    order = await _load_order(db, order_id, for_update=True)
    return await _execute_transition(
        db,
        order,
        data.status,
        adjustments=data.items,
        shipping_method=data.shipping_method,
        shipping_fee=data.shipping_fee,
        discount=data.discount,
        gateway=gateway,
        notifier=notifier,
    )


async def reject_order(
    db: AsyncSession,
    *,
    order_id: uuid.UUID,
    gateway: PaymentGateway,
    notifier: NotificationDispatcher,
) -> Order:
    """Admin rejection of a Pending order; releases the held authorization."""
    order = await _load_order(db, order_id, for_update=True)
    if order.status is not OrderStatus.PENDING:
        raise InvalidTransition(order.status.value, OrderStatus.CANCELLED.value)
    return await _execute_transition(
        db,
        order,
        OrderStatus.CANCELLED,
        adjustments=None,
        shipping_method=None,
        shipping_fee=None,
        discount=None,
        gateway=gateway,
        notifier=notifier,
    )


async def update_tracking(
    db: AsyncSession, *, order_id: uuid.UUID, tracking_id: str
) -> Order:
    order = await _load_order(db, order_id)
    order.tracking_id = tracking_id.strip()
    await db.commit()
    return await _load_order(db, order_id)


# ============================================================================
# READS
# ============================================================================


async def get_order(db: AsyncSession, *, order_id: uuid.UUID, user: AuthUser) -> Order:
    order = await _load_order(db, order_id)
    if not user.is_admin and order.user_id != user.user_id:
        # Other users' orders are indistinguishable from missing ones
        raise NotFoundError("Order", order_id)
    return order


async def _page(db: AsyncSession, clauses: list, page: int, limit: int) -> OrderPage:
    page = max(page, 1)
    limit = min(max(limit, 1), MAX_PAGE_SIZE)
    total = (
        await db.execute(select(func.count(Order.id)).where(*clauses))
    ).scalar_one()
    result = await db.execute(
        select(Order)
        .where(*clauses)
        .order_by(Order.created_at.desc(), Order.id)
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return OrderPage(
        items=[OrderResponse.model_validate(o) for o in result.scalars().all()],
        total=total,
        page=page,
        limit=limit,
    )


async def list_for_user(
    db: AsyncSession, *, user_id: str, page: int = 1, limit: int = 20
) -> OrderPage:
    return await _page(db, [Order.user_id == user_id], page, limit)


async def list_admin(
    db: AsyncSession,
    *,
    status: Optional[OrderStatus] = None,
    paid: Optional[PaymentStatus] = None,
    user_id: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
) -> OrderPage:
    clauses = []
    if status is not None:
        clauses.append(Order.status == status)
    if paid is not None:
        clauses.append(Order.paid == paid)
    if user_id:
        clauses.append(Order.user_id == user_id)
    return await _page(db, clauses, page, limit)
