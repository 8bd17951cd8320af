"""Domain error taxonomy shared by commerce operations.

Every failure a core operation reports carries a stable ``kind`` and an HTTP
status. Validation and conflict messages are part of the contract and are
returned verbatim; external-service and internal failures are logged in full
but reach the caller only as a generic message.
"""

from decimal import Decimal
from typing import Any, Optional


class CommerceError(Exception):
    kind = "error"
    status_code = 400
    public = True
    generic_message = "Request failed"

    def __init__(self, message: str, **details: Any):
        self.message = message
        self.details = details
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        if not self.public:
            return {"kind": self.kind, "detail": self.generic_message}
        payload: dict[str, Any] = {"kind": self.kind, "detail": self.message}
        payload.update(self.details)
        return payload


class ValidationError(CommerceError):
    kind = "validation_error"
    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None):
        if field:
            super().__init__(message, field=field)
        else:
            super().__init__(message)
        self.field = field


class NotFoundError(CommerceError):
    kind = "not_found"
    status_code = 404

    def __init__(self, entity: str, entity_id: Any = None, message: Optional[str] = None):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(
            message or f"{entity} not found",
            entity=entity,
            id=str(entity_id) if entity_id is not None else None,
        )


class ConflictError(CommerceError):
    kind = "conflict"
    status_code = 409


class DuplicateCategoryName(ConflictError):
    kind = "duplicate_category_name"

    def __init__(self, name: str, level: int):
        super().__init__(
            f"Category name '{name}' already exists at level {level}",
            name=name,
            level=level,
        )


class MaxDepthExceeded(ConflictError):
    kind = "max_depth_exceeded"

    def __init__(self, max_depth: int):
        super().__init__(
            f"Category depth cannot exceed {max_depth} levels", max_depth=max_depth
        )


class BoundaryReached(ConflictError):
    kind = "boundary_reached"

    def __init__(self, direction: str):
        super().__init__(
            "Cannot move category in that direction", direction=direction
        )


class InvalidTransition(ConflictError):
    kind = "invalid_transition"

    def __init__(self, from_status: str, to_status: str):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Cannot transition order from {from_status} to {to_status}",
            **{"from": from_status, "to": to_status},
        )


class InsufficientStock(ConflictError):
    kind = "insufficient_stock"

    def __init__(self, product_id: Any, available: int, requested: int):
        self.product_id = product_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient stock for product {product_id}: "
            f"available {available}, requested {requested}",
            product=str(product_id),
            available=available,
            requested=requested,
        )


class PaymentRejected(ConflictError):
    """Capture was declined; the order has already been marked ``Rejected``."""

    kind = "payment_rejected"
    status_code = 402

    def __init__(self, reason: str, amount: Optional[Decimal] = None):
        self.reason = reason
        super().__init__(
            f"Payment capture failed: {reason}",
            reason=reason,
            amount=str(amount) if amount is not None else None,
        )


class ExternalServiceError(CommerceError):
    kind = "external_service_error"
    status_code = 502
    public = False
    generic_message = "An external service failed to complete the request"

    def __init__(self, service: str, message: str):
        self.service = service
        super().__init__(f"{service}: {message}")


class InternalError(CommerceError):
    kind = "internal_error"
    status_code = 500
    public = False
    generic_message = "Internal server error"
