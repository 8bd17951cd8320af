"""ARQ worker for commerce housekeeping: cart reminders and ordering repair."""

from arq import cron
from libs.common.arq_config import get_redis_settings
from libs.common.logging import get_logger

logger = get_logger(__name__)


async def task_send_cart_reminders(ctx: dict):
    from services.commerce_service.tasks import send_abandoned_cart_reminders

    logger.info("Running: send_abandoned_cart_reminders")
    await send_abandoned_cart_reminders()


async def task_repair_display_order(ctx: dict):
    from services.commerce_service.tasks import repair_display_order

    logger.info("Running: repair_display_order")
    await repair_display_order()


class WorkerSettings:
    redis_settings = get_redis_settings()

    functions = [
        task_send_cart_reminders,
        task_repair_display_order,
    ]

    cron_jobs = [
        cron(task_send_cart_reminders, minute={15}),
        cron(task_repair_display_order, hour={3}, minute={30}, run_at_startup=True),
    ]
