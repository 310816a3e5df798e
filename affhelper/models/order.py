"""Order model type definitions for database operations."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TypedDict
from uuid import UUID


class Platform(str, Enum):
    """Supported marketplaces, matching the database enum."""

    SHOPEE = "SHOPEE"
    TIKTOK = "TIKTOK"


class OrderStatus(str, Enum):
    """Internal order lifecycle states, matching the database enum.

    PENDING is the only entry state. Only a transition into COMPLETED
    moves money between balance buckets.
    """

    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class Order(TypedDict):
    """Order table row representation.

    One row per (platform, external_order_id). Amounts are snapshotted at
    creation and never recomputed.
    """

    id: UUID
    user_id: UUID
    platform: Platform
    external_order_id: str
    external_item_id: str | None
    product_name: str
    product_image: str | None
    product_price: Decimal
    quantity: int
    total_amount: Decimal
    commission_rate: Decimal
    commission_amount: Decimal
    cashback_rate: Decimal
    cashback_amount: Decimal
    status: OrderStatus
    purchased_at: datetime
    completed_at: datetime | None
    credited_at: datetime | None
    created_at: datetime
    updated_at: datetime


class OrderCreate(TypedDict, total=False):
    """Data required to create a new order on first sighting."""

    user_id: UUID
    platform: Platform
    external_order_id: str
    external_item_id: str | None
    product_name: str
    product_image: str | None
    product_price: Decimal
    quantity: int
    total_amount: Decimal
    commission_rate: Decimal
    commission_amount: Decimal
    cashback_rate: Decimal
    cashback_amount: Decimal
    status: OrderStatus
    purchased_at: datetime
    completed_at: datetime | None
    credited_at: datetime | None


class OrderUpdate(TypedDict, total=False):
    """Data that can be updated on an order after a re-sighting."""

    status: OrderStatus
    completed_at: datetime | None
    credited_at: datetime | None
