"""
Centralized Email Client for service-to-service email communication.

Routes transactional email through the Communications Service API, which
owns every template. Callers pass a template kind and its data.

Usage:
    from libs.common.emails.client import get_email_client

    email_client = get_email_client()

    await email_client.send_template(
        template_type="order_confirmed",
        to_email="user@example.com",
        template_data={"order_id": "...", "amount": "55.00"},
    )
"""

from typing import Any, Optional

import httpx
from libs.auth.dependencies import create_service_token
from libs.common.config import get_settings
from libs.common.logging import get_logger

logger = get_logger(__name__)


class EmailClient:
    """
    HTTP client for sending emails through the Communications Service.

    Requests carry a short-lived service-role JWT. Every method returns a
    success flag instead of raising; delivery problems are logged here.
    """

    def __init__(self, base_url: Optional[str] = None, timeout: float = 30.0):
        settings = get_settings()
        self.base_url = base_url or settings.COMMUNICATIONS_SERVICE_URL
        self.timeout = timeout

    def _get_auth_headers(self) -> dict[str, str]:
        token = create_service_token("email_client")
        return {"Authorization": f"Bearer {token}"}

    async def _post(self, path: str, payload: dict[str, Any]) -> bool:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.base_url}{path}",
                    json=payload,
                    headers=self._get_auth_headers(),
                )
        except httpx.RequestError as e:
            logger.error("Failed to connect to Communications Service: %s", e)
            return False

        if response.status_code != 200:
            logger.error(
                "Email API %s returned %s: %s",
                path,
                response.status_code,
                response.text,
            )
            return False
        return bool(response.json().get("success", False))

    async def send_template(
        self,
        template_type: str,
        to_email: str,
        template_data: dict[str, Any],
    ) -> bool:
        """
        Send a templated email.

        Commerce template types:
        - order_placed_admin: new order awaiting acceptance
        - order_confirmed: order accepted and payment captured
        - order_cancelled: order cancelled, authorization released
        - order_delivered: order delivered
        - payment_failed: capture declined
        - restock_available: subscribed product back in stock
        - cart_reminder: abandoned cart nudge
        """
        return await self._post(
            "/email/template",
            {
                "template_type": template_type,
                "to_email": to_email,
                "template_data": template_data,
            },
        )


# Singleton instance for convenience
_email_client: Optional[EmailClient] = None


def get_email_client() -> EmailClient:
    """Get or create the singleton EmailClient instance."""
    global _email_client
    if _email_client is None:
        _email_client = EmailClient()
    return _email_client
