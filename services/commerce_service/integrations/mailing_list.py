"""
Mailchimp audience sync.

Contacts are upserted by subscriber hash (md5 of the lower-cased email) and
tagged. Every call is best effort: failures are logged, never raised.
"""

import hashlib
from typing import Optional

import httpx
from fastapi import Request
from libs.common.config import get_settings
from libs.common.logging import get_logger

logger = get_logger(__name__)


class MailingListSync:
    def __init__(
        self,
        api_key: Optional[str] = None,
        server_prefix: Optional[str] = None,
        audience_id: Optional[str] = None,
        timeout: float = 10.0,
    ):
        settings = get_settings()
        self.api_key = api_key or settings.MAILCHIMP_API_KEY
        self.server_prefix = server_prefix or settings.MAILCHIMP_SERVER_PREFIX
        self.audience_id = audience_id or settings.MAILCHIMP_AUDIENCE_ID
        self.timeout = timeout

    @property
    def enabled(self) -> bool:
        return bool(self.api_key and self.audience_id)

    @property
    def base_url(self) -> str:
        return f"https://{self.server_prefix}.api.mailchimp.com/3.0"

    @staticmethod
    def subscriber_hash(email: str) -> str:
        return hashlib.md5(email.strip().lower().encode("utf-8")).hexdigest()

    async def upsert_contact(
        self,
        email: str,
        tag: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
    ) -> bool:
        if not self.enabled:
            logger.debug("Mailing list sync disabled; skipping %s", email)
            return False

        member_hash = self.subscriber_hash(email)
        member_url = f"{self.base_url}/lists/{self.audience_id}/members/{member_hash}"
        payload = {
            "email_address": email,
            "status_if_new": "subscribed",
            "merge_fields": {"FNAME": first_name or "", "LNAME": last_name or ""},
        }
        auth = ("anystring", self.api_key)

        try:
            async with httpx.AsyncClient(timeout=self.timeout, auth=auth) as client:
                response = await client.put(member_url, json=payload)
                if not response.is_success:
                    logger.error(
                        "Mailchimp upsert for %s failed: %s %s",
                        email,
                        response.status_code,
                        response.text,
                    )
                    return False
                tags = await client.post(
                    f"{member_url}/tags",
                    json={"tags": [{"name": tag, "status": "active"}]},
                )
                if not tags.is_success:
                    logger.warning(
                        "Mailchimp tag %s for %s failed: %s", tag, email, tags.status_code
                    )
        except httpx.RequestError as e:
            logger.error("Mailchimp unreachable while syncing %s: %s", email, e)
            return False
        return True


def get_mailing_list(request: Request) -> MailingListSync:
    return request.app.state.mailing_list
