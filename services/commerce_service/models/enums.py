"""Enum definitions for commerce service models."""

import enum


def enum_values(enum_cls):
    """Return persistent DB values for SAEnum mappings."""
    return [member.value for member in enum_cls]


class Tier(str, enum.Enum):
    """B2B pricing class a caller buys at."""

    WHOLESALE = "Wholesale"
    RETAILER = "Retailer"
    CHAIN_STORE = "ChainStore"
    FRANCHISE = "Franchise"


class OrderStatus(str, enum.Enum):
    PENDING = "Pending"
    PROCESSING = "Processing"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"


class PaymentStatus(str, enum.Enum):
    NONE = "None"
    UNPAID = "Unpaid"
    PAID = "Paid"
    REJECTED = "Rejected"
    CANCELLED = "Cancelled"


class ShippingMethod(str, enum.Enum):
    GROUND = "Ground"
    OVERNIGHT = "Overnight"


class RequestType(str, enum.Enum):
    REFUND = "refund"
    REPLACEMENT = "replacement"


class RequestItemStatus(str, enum.Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    PROCESSING = "Processing"
    COMPLETED = "Completed"


class RequestStatus(str, enum.Enum):
    PENDING = "Pending"
    PROCESSING = "Processing"
    COMPLETED = "Completed"
    PARTIALLY_COMPLETED = "Partially_Completed"
    REJECTED = "Rejected"


class ReorderDirection(str, enum.Enum):
    UP = "up"
    DOWN = "down"
