"""Cart operations.

Every write touches only the caller's single active cart. ``add`` creates
the cart lazily; ``remove`` and ``clear`` on a missing cart are errors.
"""

import uuid
from decimal import Decimal
from typing import Any, Optional

from libs.common.config import get_settings
from libs.common.datetime_utils import utc_days_ago, utc_now
from libs.common.errors import NotFoundError, ValidationError
from libs.common.logging import get_logger
from services.commerce_service.integrations.notifications import (
    NotificationDispatcher,
)
from services.commerce_service.models import Cart, CartItem, Product, Tier
from services.commerce_service.schemas import CartItemInput, PricedCart, PricedCartLine
from services.commerce_service.services import pricing
from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

PRODUCT_NOT_FOUND = "Product not found"


def validate_quantity(quantity: Any) -> int:
    """Accept only true positive integers; ``True`` and ``2.0`` are rejected."""
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise ValidationError("Quantity must be a positive integer", field="quantity")
    return quantity


async def get_active_cart(db: AsyncSession, user_id: str) -> Optional[Cart]:
    result = await db.execute(
        select(Cart)
        .where(Cart.user_id == user_id, Cart.is_active.is_(True))
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _require_active_cart(db: AsyncSession, user_id: str) -> Cart:
    cart = await get_active_cart(db, user_id)
    if cart is None:
        raise NotFoundError("Cart", message="No active cart found")
    return cart


def _touch(cart: Cart) -> None:
    cart.last_activity_at = utc_now()
    cart.reminder_sent_at = None


async def _require_product(db: AsyncSession, product_id: uuid.UUID) -> Product:
    product = await db.get(Product, product_id)
    if product is None or product.is_deleted or not product.published:
        raise NotFoundError("Product", product_id)
    return product


# ---------------------------------------------------------------------------
# Read
# ---------------------------------------------------------------------------


async def get_cart(db: AsyncSession, *, user_id: str, tier: Tier) -> PricedCart:
    """The active cart priced for ``tier``.

    Lines whose product has gone away are kept and flagged with
    ``error="Product not found"``; they contribute nothing to the total.
    """
    cart = await get_active_cart(db, user_id)
    if cart is None:
        return PricedCart(cart_id=None, tier=tier, items=[], grand_total=Decimal("0.00"))

    product_ids = [item.product_id for item in cart.items]
    products: dict[uuid.UUID, Product] = {}
    if product_ids:
        result = await db.execute(select(Product).where(Product.id.in_(product_ids)))
        products = {p.id: p for p in result.scalars().all()}

    lines: list[PricedCartLine] = []
    grand_total = Decimal("0")
    for item in cart.items:
        product = products.get(item.product_id)
        if product is None or product.is_deleted:
            lines.append(
                PricedCartLine(
                    product_id=item.product_id,
                    quantity=item.quantity,
                    error=PRODUCT_NOT_FOUND,
                )
            )
            continue
        unit_price = pricing.price_for(product, tier)
        line_total = pricing.quantize(unit_price * item.quantity)
        grand_total += line_total
        lines.append(
            PricedCartLine(
                product_id=product.id,
                quantity=item.quantity,
                name=product.name,
                unit_price=unit_price,
                line_total=line_total,
                stock=product.stock,
                images=product.images or [],
            )
        )

    return PricedCart(
        cart_id=cart.id,
        tier=tier,
        items=lines,
        grand_total=pricing.quantize(grand_total),
    )


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


async def add_to_cart(
    db: AsyncSession,
    *,
    user_id: str,
    product_id: uuid.UUID,
    quantity: Any,
    user_email: Optional[str] = None,
) -> Cart:
    quantity = validate_quantity(quantity)
    await _require_product(db, product_id)

    cart = await get_active_cart(db, user_id)
    if cart is None:
        cart = Cart(user_id=user_id, user_email=user_email, is_active=True, items=[])
        db.add(cart)
        await db.flush()
        logger.info("Created cart %s for user %s", cart.id, user_id)
    elif user_email and not cart.user_email:
        cart.user_email = user_email

    # Increment in the database so concurrent adds of the same line both land
    merged = await db.execute(
        update(CartItem)
        .where(CartItem.cart_id == cart.id, CartItem.product_id == product_id)
        .values(quantity=CartItem.quantity + quantity)
        .execution_options(synchronize_session="fetch")
    )
    if merged.rowcount == 0:
        db.add(CartItem(cart_id=cart.id, product_id=product_id, quantity=quantity))

    _touch(cart)
    await db.commit()
    return await _require_active_cart(db, user_id)


async def replace_cart(
    db: AsyncSession,
    *,
    user_id: str,
    items: list[CartItemInput],
    user_email: Optional[str] = None,
) -> Cart:
    """Overwrite the active cart's lines with ``items`` (creating the cart if needed).

    Duplicate product ids in ``items`` are merged.
    """
    wanted: dict[uuid.UUID, int] = {}
    for entry in items:
        quantity = validate_quantity(entry.quantity)
        wanted[entry.product_id] = wanted.get(entry.product_id, 0) + quantity
    for product_id in wanted:
        await _require_product(db, product_id)

    cart = await get_active_cart(db, user_id)
    if cart is None:
        cart = Cart(user_id=user_id, user_email=user_email, is_active=True, items=[])
        db.add(cart)
        await db.flush()

    existing = {item.product_id: item for item in cart.items}
    for product_id, item in existing.items():
        if product_id not in wanted:
            cart.items.remove(item)
    for product_id, quantity in wanted.items():
        if product_id in existing:
            existing[product_id].quantity = quantity
        else:
            cart.items.append(CartItem(product_id=product_id, quantity=quantity))

    _touch(cart)
    await db.commit()
    return await _require_active_cart(db, user_id)


async def remove_from_cart(
    db: AsyncSession, *, user_id: str, product_id: uuid.UUID
) -> Cart:
    cart = await _require_active_cart(db, user_id)
    line = next((item for item in cart.items if item.product_id == product_id), None)
    if line is None:
        raise NotFoundError("Cart item", product_id)
    cart.items.remove(line)
    _touch(cart)
    await db.commit()
    return await _require_active_cart(db, user_id)


async def clear_cart(db: AsyncSession, *, user_id: str) -> Cart:
    cart = await _require_active_cart(db, user_id)
    cart.items.clear()
    _touch(cart)
    await db.commit()
    return await _require_active_cart(db, user_id)


# ---------------------------------------------------------------------------
# Abandoned cart reminders
# ---------------------------------------------------------------------------


async def send_abandoned_cart_reminders(
    db: AsyncSession, *, notifier: NotificationDispatcher
) -> int:
    """Email owners of idle, non-empty active carts. Returns the number sent.

    A cart is reminded at most once per period of inactivity and at most
    ``CART_REMINDER_MAX_COUNT`` times overall.
    """
    settings = get_settings()
    now = utc_now()
    cutoff = utc_days_ago(settings.CART_REMINDER_INACTIVITY_DAYS, now=now)

    result = await db.execute(
        select(Cart).where(
            Cart.is_active.is_(True),
            Cart.user_email.is_not(None),
            Cart.last_activity_at <= cutoff,
            Cart.abandoned_reminder_count < settings.CART_REMINDER_MAX_COUNT,
            or_(
                Cart.reminder_sent_at.is_(None),
                Cart.reminder_sent_at < Cart.last_activity_at,
            ),
        )
    )
    carts = [cart for cart in result.scalars().all() if cart.items]

    sent = 0
    for cart in carts:
        delivered = await notifier.send_transactional(
            cart.user_email,
            "cart_reminder",
            {
                "item_count": sum(item.quantity for item in cart.items),
                "cart_url": f"{settings.FRONTEND_URL}/cart",
            },
        )
        if delivered:
            cart.reminder_sent_at = now
            cart.abandoned_reminder_count += 1
            sent += 1

    await db.commit()
    logger.info("Sent %d abandoned cart reminders (%d eligible)", sent, len(carts))
    return sent
