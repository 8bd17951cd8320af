"""Back-in-stock subscriptions and their notification fan-out."""

import uuid

from libs.common.config import get_settings
from libs.common.datetime_utils import utc_now
from libs.common.errors import NotFoundError
from libs.common.logging import get_logger
from services.commerce_service.integrations.mailing_list import MailingListSync
from services.commerce_service.integrations.notifications import (
    NotificationDispatcher,
)
from services.commerce_service.models import NotifyRequest, Product
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

RESTOCK_TAG = "restock"


async def subscribe_restock(
    db: AsyncSession,
    *,
    product_id: uuid.UUID,
    email: str,
    mailing_list: MailingListSync,
) -> NotifyRequest:
    """Register ``email`` for a restock alert on ``product_id``.

    Idempotent while the subscription is pending; a previously notified
    subscription is re-armed.
    """
    product = await db.get(Product, product_id)
    if product is None or product.is_deleted:
        raise NotFoundError("Product", product_id)

    email = email.strip().lower()
    result = await db.execute(
        select(NotifyRequest).where(
            NotifyRequest.product_id == product_id, NotifyRequest.email == email
        )
    )
    subscription = result.scalar_one_or_none()
    is_new = subscription is None

    if subscription is None:
        subscription = NotifyRequest(product_id=product_id, email=email)
        db.add(subscription)
    elif subscription.notified:
        subscription.notified = False
        subscription.notified_at = None

    await db.commit()
    await db.refresh(subscription)

    if is_new:
        await mailing_list.upsert_contact(email=email, tag=RESTOCK_TAG)

    logger.info("Restock subscription %s for product %s", subscription.id, product_id)
    return subscription


async def trigger_restock_notifications(
    db: AsyncSession,
    *,
    product_id: uuid.UUID,
    notifier: NotificationDispatcher,
) -> int:
    """Email every pending subscriber of ``product_id``; returns the number sent."""
    product = await db.get(Product, product_id)
    if product is None:
        return 0

    result = await db.execute(
        select(NotifyRequest).where(
            NotifyRequest.product_id == product_id,
            NotifyRequest.notified.is_(False),
        )
    )
    subscriptions = result.scalars().all()
    if not subscriptions:
        return 0

    settings = get_settings()
    sent = 0
    for subscription in subscriptions:
        delivered = await notifier.send_transactional(
            subscription.email,
            "restock_available",
            {
                "product_name": product.name,
                "product_code": product.product_code,
                "product_url": f"{settings.FRONTEND_URL}/products/{product.id}",
            },
        )
        if delivered:
            subscription.notified = True
            subscription.notified_at = utc_now()
            sent += 1

    await db.commit()
    logger.info(
        "Sent %d/%d restock notifications for product %s",
        sent,
        len(subscriptions),
        product_id,
    )
    return sent
