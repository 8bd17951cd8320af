"""Order state machine decisions.

Nothing here touches the database or the network. ``plan_transition`` turns
(current order state, requested status) into a ``TransitionPlan`` that the
executor in ``order_ops`` applies: persistence first, then best-effort
notifications.
"""

import enum
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Optional

from libs.common.errors import InvalidTransition, ValidationError
from services.commerce_service.models import OrderStatus, PaymentStatus, ShippingMethod
from services.commerce_service.services.pricing import quantize

ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

# (upper bound inclusive, fee); the last entry applies above every bound
GROUND_FEES: tuple[tuple[Optional[Decimal], Decimal], ...] = (
    (Decimal("50"), Decimal("10")),
    (Decimal("250"), Decimal("20")),
    (Decimal("499"), Decimal("30")),
    (None, Decimal("0")),
)
OVERNIGHT_FEES: tuple[tuple[Optional[Decimal], Decimal], ...] = (
    (Decimal("50"), Decimal("15")),
    (Decimal("250"), Decimal("25")),
    (Decimal("599"), Decimal("35")),
    (Decimal("799"), Decimal("49")),
    (None, Decimal("30")),
)

_SHIPPING_ALIASES = {
    "ground": ShippingMethod.GROUND,
    "overnight": ShippingMethod.OVERNIGHT,
    "overnite": ShippingMethod.OVERNIGHT,
}


class PaymentAction(str, enum.Enum):
    NONE = "none"
    CAPTURE = "capture"
    CANCEL = "cancel"


@dataclass
class TransitionPlan:
    from_status: OrderStatus
    to_status: OrderStatus
    payment_action: PaymentAction
    amount: Decimal
    # Authorization must be re-sized before capture
    amount_changed: bool = False
    # Notification template kinds to send after the state is persisted
    notifications: list[str] = field(default_factory=list)


def parse_shipping_method(value: str) -> ShippingMethod:
    method = _SHIPPING_ALIASES.get((value or "").strip().lower())
    if method is None:
        raise ValidationError(
            f"Unsupported shipping method '{value}'", field="shipping_method"
        )
    return method


def shipping_fee(method: ShippingMethod, amount: Decimal) -> Decimal:
    """Fee for ``amount`` (already net of discount) under ``method``."""
    table = OVERNIGHT_FEES if method is ShippingMethod.OVERNIGHT else GROUND_FEES
    for bound, fee in table:
        if bound is None or amount <= bound:
            return fee
    return table[-1][1]


def items_subtotal(lines: Iterable[tuple[int, Decimal]]) -> Decimal:
    return quantize(sum((Decimal(price) * qty for qty, price in lines), Decimal("0")))


def compute_amount(
    subtotal: Decimal, discount: Decimal, fee: Decimal
) -> Decimal:
    """Order total: items less discount (never below zero) plus shipping."""
    net = max(Decimal(subtotal) - Decimal(discount), Decimal("0"))
    return quantize(net + Decimal(fee))


def check_transition(current: OrderStatus, target: OrderStatus) -> None:
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransition(current.value, target.value)


def plan_transition(
    *,
    status: OrderStatus,
    paid: PaymentStatus,
    target: OrderStatus,
    authorized_amount: Decimal,
    new_amount: Decimal,
) -> TransitionPlan:
    check_transition(status, target)
    plan = TransitionPlan(
        from_status=status,
        to_status=target,
        payment_action=PaymentAction.NONE,
        amount=new_amount,
    )

    if target in (OrderStatus.PROCESSING, OrderStatus.DELIVERED):
        if paid is not PaymentStatus.PAID:
            plan.payment_action = PaymentAction.CAPTURE
            plan.amount_changed = quantize(Decimal(authorized_amount)) != quantize(
                Decimal(new_amount)
            )
        plan.notifications.append(
            "order_confirmed" if target is OrderStatus.PROCESSING else "order_delivered"
        )
    elif target is OrderStatus.CANCELLED:
        # A rejected capture leaves the PaymentIntent open until it is cancelled
        if paid in (PaymentStatus.UNPAID, PaymentStatus.REJECTED):
            plan.payment_action = PaymentAction.CANCEL
        plan.notifications.append("order_cancelled")

    return plan
