"""Tier resolution and per-tier price lookup.

Every function here is pure: no database access, no caching, no mutation of
the product passed in. Checkout snapshots the resolved price into the order
line itself.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Mapping, Optional

from services.commerce_service.models import Product, Tier

CENTS = Decimal("0.01")

# Least-discounted tier; guests and unknown roles see list price
DEFAULT_TIER = Tier.FRANCHISE

_ROLE_TO_TIER = {
    "wholesale": Tier.WHOLESALE,
    "retailer": Tier.RETAILER,
    "chainstore": Tier.CHAIN_STORE,
    "franchise": Tier.FRANCHISE,
}


def quantize(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def resolve_tier(role: Optional[str]) -> Tier:
    """Map a free-form account role to a pricing tier (case-insensitive)."""
    if not role:
        return DEFAULT_TIER
    return _ROLE_TO_TIER.get(role.strip().lower(), DEFAULT_TIER)


def _as_price(value: Any) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    try:
        price = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    if not price.is_finite():
        return None
    return price


def price_for(product: Product, tier: Tier) -> Decimal:
    """Effective unit price of ``product`` for ``tier``.

    Falls back to the base price when the tier entry is missing or not
    numeric (legacy records without a full tier table).
    """
    tier_price = _as_price(product.tier_price(tier))
    if tier_price is not None:
        return quantize(tier_price)
    return quantize(Decimal(product.price))


def tier_table(product: Product) -> dict[Tier, Decimal]:
    """All four resolved tier prices for ``product``."""
    return {tier: price_for(product, tier) for tier in Tier}


def derive_from_percent(cost_price: Decimal, percent_of_cost: Decimal) -> Decimal:
    """``cost_price * percent / 100`` rounded to cents (bulk import only)."""
    return quantize(Decimal(cost_price) * Decimal(percent_of_cost) / Decimal(100))


def apply_percentages(product: Product, percents: Mapping[Tier, Decimal]) -> None:
    """Overwrite tier prices from percentages of the product's cost price."""
    if product.cost_price is None:
        raise ValueError(f"Product {product.id} has no cost price")
    for tier, percent in percents.items():
        product.set_tier_price(tier, derive_from_percent(product.cost_price, percent))
