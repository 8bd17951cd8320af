"""Best-effort transactional notifications.

Delivery problems are logged and reported as ``False``; they never raise
into the operation that triggered them.
"""

from typing import Any, Optional

from fastapi import Request
from libs.common.emails.client import EmailClient, get_email_client
from libs.common.logging import get_logger

logger = get_logger(__name__)


class NotificationDispatcher:
    def __init__(self, email_client: Optional[EmailClient] = None):
        self.email_client = email_client or get_email_client()

    async def send_transactional(
        self, to: Optional[str], template_kind: str, data: dict[str, Any]
    ) -> bool:
        if not to:
            logger.warning("Skipping %s notification: no recipient", template_kind)
            return False
        try:
            sent = await self.email_client.send_template(
                template_type=template_kind, to_email=to, template_data=data
            )
        except Exception as e:
            logger.error("Failed to send %s notification to %s: %s", template_kind, to, e)
            return False
        if not sent:
            logger.warning("%s notification to %s was not delivered", template_kind, to)
        return sent


def get_notification_dispatcher(request: Request) -> NotificationDispatcher:
    return request.app.state.notifier
