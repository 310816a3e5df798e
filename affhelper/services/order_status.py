"""Marketplace order status tokens collapsed onto internal order states."""

import logging

from affhelper.models.order import OrderStatus, Platform

logger = logging.getLogger(__name__)

TIKTOK_STATUS_MAP: dict[str, OrderStatus] = {
    "UNPAID": OrderStatus.PENDING,
    "ON_HOLD": OrderStatus.PENDING,
    "AWAITING_SHIPMENT": OrderStatus.PENDING,
    "AWAITING_COLLECTION": OrderStatus.PENDING,
    "IN_TRANSIT": OrderStatus.PENDING,
    "DELIVERED": OrderStatus.PENDING,
    "COMPLETED": OrderStatus.COMPLETED,
    "CANCELLED": OrderStatus.CANCELLED,
    "RETURNED": OrderStatus.REFUNDED,
    "REFUNDED": OrderStatus.REFUNDED,
}

SHOPEE_STATUS_MAP: dict[str, OrderStatus] = {
    "UNPAID": OrderStatus.PENDING,
    "PENDING": OrderStatus.PENDING,
    "SHIPPED": OrderStatus.PENDING,
    "TO_RECEIVE": OrderStatus.PENDING,
    "COMPLETED": OrderStatus.COMPLETED,
    "CANCELLED": OrderStatus.CANCELLED,
    "RETURNED": OrderStatus.REFUNDED,
    "REFUNDED": OrderStatus.REFUNDED,
}

STATUS_MAPS: dict[Platform, dict[str, OrderStatus]] = {
    Platform.TIKTOK: TIKTOK_STATUS_MAP,
    Platform.SHOPEE: SHOPEE_STATUS_MAP,
}


def map_external_status(platform: Platform, external_status: str | None) -> OrderStatus:
    """Map a marketplace status token to an internal status.

    Unknown tokens map to PENDING, never to COMPLETED.

    Args:
        platform: Marketplace the token came from.
        external_status: Raw status token (case and surrounding whitespace ignored).

    Returns:
        OrderStatus: The collapsed internal status.
    """
    token = (external_status or "").strip().upper()
    status = STATUS_MAPS[platform].get(token)
    if status is None:
        logger.debug("Unmapped %s order status %r, treating as PENDING", platform.value, external_status)
        return OrderStatus.PENDING
    return status


def credits_available(previous: OrderStatus | None, current: OrderStatus) -> bool:
    """True when moving from previous to current crosses into COMPLETED."""
    return current == OrderStatus.COMPLETED and previous != OrderStatus.COMPLETED


def leaves_completed(previous: OrderStatus, current: OrderStatus) -> bool:
    """True when a completed order is reported as no longer completed."""
    return previous == OrderStatus.COMPLETED and current != OrderStatus.COMPLETED
