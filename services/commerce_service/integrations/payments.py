"""
Payment gateway abstraction and the Stripe implementation.

The order state machine only ever holds opaque references (customer id,
payment method id, PaymentIntent id). At placement a PaymentIntent is
created but left unconfirmed, so no funds move; confirming it later (when the
order enters Processing or Delivered) is the capture.

Provides async methods for:
- Creating customers and attaching payment methods
- Authorizing (unconfirmed PaymentIntent)
- Updating an authorization amount before capture
- Capturing or cancelling an authorization
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional

import httpx
from fastapi import Request
from libs.common.config import get_settings
from libs.common.errors import ExternalServiceError
from libs.common.logging import get_logger

logger = get_logger(__name__)


@dataclass
class CustomerProfile:
    user_id: str
    email: Optional[str] = None
    name: Optional[str] = None


@dataclass
class AuthorizationRef:
    """Held (uncaptured) authorization."""

    id: str
    amount: Decimal
    status: str


@dataclass
class CaptureResult:
    succeeded: bool
    status: str
    reason: Optional[str] = None


class StripeError(Exception):
    """Stripe API returned an error payload."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        response_data: Optional[dict] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.code = code
        self.response_data = response_data or {}
        super().__init__(message)


def to_minor_units(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).to_integral_value())


class PaymentGateway(ABC):
    """Authorize-then-capture collaborator used by the order state machine."""

    @abstractmethod
    async def create_customer(self, profile: CustomerProfile) -> str: ...

    @abstractmethod
    async def attach_payment_method(self, customer_ref: str, method_ref: str) -> None: ...

    @abstractmethod
    async def authorize(
        self,
        customer_ref: str,
        amount: Decimal,
        method_ref: str,
        metadata: Optional[dict[str, str]] = None,
    ) -> AuthorizationRef: ...

    @abstractmethod
    async def update_amount(self, auth_ref: str, amount: Decimal) -> None: ...

    @abstractmethod
    async def capture(self, auth_ref: str, amount: Optional[Decimal] = None) -> CaptureResult: ...

    @abstractmethod
    async def cancel_authorization(self, auth_ref: str) -> None: ...


class StripeGateway(PaymentGateway):
    """Async client for the Stripe PaymentIntents API.

    Transport failures and timeouts raise ExternalServiceError; a declined
    capture is reported as ``CaptureResult(succeeded=False)`` with Stripe's
    reason so the caller can record it.
    """

    def __init__(
        self,
        secret_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.secret_key = secret_key or settings.STRIPE_SECRET_KEY
        if not self.secret_key:
            raise ValueError("STRIPE_SECRET_KEY is required")
        self.base_url = base_url or settings.STRIPE_API_BASE
        self.timeout = timeout or settings.PAYMENT_TIMEOUT_SECONDS
        self.currency = settings.PAYMENT_CURRENCY
        self._headers = {"Authorization": f"Bearer {self.secret_key}"}
        self._transport = transport

    async def _request(
        self,
        method: str,
        endpoint: str,
        data: Optional[dict[str, Any]] = None,
    ) -> dict:
        """Make a form-encoded request to the Stripe API."""
        url = f"{self.base_url}{endpoint}"
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.request(
                    method=method, url=url, headers=self._headers, data=data
                )
        except httpx.TimeoutException as e:
            logger.error("Stripe request %s %s timed out: %s", method, endpoint, e)
            raise ExternalServiceError("payments", f"timeout calling {endpoint}") from e
        except httpx.RequestError as e:
            logger.error("Stripe request %s %s failed: %s", method, endpoint, e)
            raise ExternalServiceError("payments", str(e)) from e

        try:
            payload = response.json()
        except ValueError as e:
            # Proxies and load balancers answer with HTML error pages
            logger.error(
                "Stripe returned a non-JSON %s response for %s %s",
                response.status_code,
                method,
                endpoint,
            )
            raise ExternalServiceError(
                "payments",
                f"invalid response from {endpoint} (HTTP {response.status_code})",
            ) from e
        if not response.is_success:
            error = payload.get("error", {})
            logger.error("Stripe API error: %s - %s", response.status_code, error)
            raise StripeError(
                message=error.get("message", "Unknown Stripe error"),
                status_code=response.status_code,
                code=error.get("decline_code") or error.get("code"),
                response_data=payload,
            )
        return payload

    async def _call(self, method: str, endpoint: str, data: Optional[dict] = None) -> dict:
        try:
            return await self._request(method, endpoint, data)
        except StripeError as e:
            raise ExternalServiceError("payments", e.message) from e

    # =========================================================================
    # Customers
    # =========================================================================

    async def create_customer(self, profile: CustomerProfile) -> str:
        data = {"metadata[user_id]": profile.user_id}
        if profile.email:
            data["email"] = profile.email
        if profile.name:
            data["name"] = profile.name
        customer = await self._call("POST", "/customers", data)
        return customer["id"]

    async def attach_payment_method(self, customer_ref: str, method_ref: str) -> None:
        try:
            await self._request(
                "POST", f"/payment_methods/{method_ref}/attach", {"customer": customer_ref}
            )
        except StripeError as e:
            # Re-attaching a method the customer already owns is not an error
            if e.code == "resource_already_exists" or "already been attached" in e.message:
                return
            raise ExternalServiceError("payments", e.message) from e

    # =========================================================================
    # PaymentIntents
    # =========================================================================

    async def authorize(
        self,
        customer_ref: str,
        amount: Decimal,
        method_ref: str,
        metadata: Optional[dict[str, str]] = None,
    ) -> AuthorizationRef:
        data: dict[str, Any] = {
            "amount": to_minor_units(amount),
            "currency": self.currency,
            "customer": customer_ref,
            "payment_method": method_ref,
            "automatic_payment_methods[enabled]": "true",
            "automatic_payment_methods[allow_redirects]": "never",
        }
        for key, value in (metadata or {}).items():
            data[f"metadata[{key}]"] = value
        intent = await self._call("POST", "/payment_intents", data)
        return AuthorizationRef(id=intent["id"], amount=Decimal(amount), status=intent["status"])

    async def update_amount(self, auth_ref: str, amount: Decimal) -> None:
        await self._call(
            "POST", f"/payment_intents/{auth_ref}", {"amount": to_minor_units(amount)}
        )

    async def capture(self, auth_ref: str, amount: Optional[Decimal] = None) -> CaptureResult:
        if amount is not None:
            await self.update_amount(auth_ref, amount)
        try:
            intent = await self._request(
                "POST", f"/payment_intents/{auth_ref}/confirm", {"off_session": "true"}
            )
        except StripeError as e:
            return CaptureResult(succeeded=False, status="failed", reason=e.message)

        status = intent.get("status", "unknown")
        if status == "succeeded":
            return CaptureResult(succeeded=True, status=status)
        error = intent.get("last_payment_error") or {}
        return CaptureResult(
            succeeded=False,
            status=status,
            reason=error.get("message") or f"Payment status is {status}",
        )

    async def cancel_authorization(self, auth_ref: str) -> None:
        await self._call("POST", f"/payment_intents/{auth_ref}/cancel")


def get_payment_gateway(request: Request) -> PaymentGateway:
    """Gateway built in the app lifespan."""
    return request.app.state.payment_gateway
