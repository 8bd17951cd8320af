"""Background maintenance tasks for commerce service."""

from libs.common.cache import build_cache
from libs.common.logging import get_logger
from libs.db.config import AsyncSessionLocal
from services.commerce_service.integrations.notifications import NotificationDispatcher
from services.commerce_service.services import cart_ops, category_tree

logger = get_logger(__name__)


async def send_abandoned_cart_reminders() -> int:
    """Remind owners of idle carts; returns the number of emails sent."""
    async with AsyncSessionLocal() as db:
        sent = await cart_ops.send_abandoned_cart_reminders(
            db, notifier=NotificationDispatcher()
        )
    logger.info("Abandoned cart reminders sent: %d", sent)
    return sent


async def repair_display_order() -> int:
    """Renumber every category sibling group, at most once per interval."""
    cache = build_cache()
    try:
        async with AsyncSessionLocal() as db:
            changed = await category_tree.repair_all_if_due(db, cache)
    finally:
        await cache.close()

    if changed is None:
        logger.info("Display order repair skipped: ran within the last interval")
        return 0
    logger.info("Display order repair renumbered %d categories", changed)
    return changed
