"""Link conversion model type definitions for database operations."""

from datetime import datetime
from typing import TypedDict
from uuid import UUID

from affhelper.models.order import Platform


class LinkConversion(TypedDict):
    """link_conversions table row representation.

    Written every time a user converts a product URL. The most recent row
    per (platform, product_id) is the fallback attribution source.
    """

    id: UUID
    user_id: UUID
    platform: Platform
    original_url: str
    affiliate_url: str
    product_id: str | None
    created_at: datetime


class LinkConversionCreate(TypedDict, total=False):
    """Data required to record a link conversion."""

    user_id: UUID
    platform: Platform
    original_url: str
    affiliate_url: str
    product_id: str | None
