"""Link conversion Pydantic schemas for API request/response models."""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from affhelper.models.order import Platform


class ProductMetadata(BaseModel):
    """Best-effort product details returned by a marketplace.

    Price and commission rate are optional; without both the cashback
    estimate is omitted but the link is still created.
    """

    product_id: str | None = Field(default=None, description="Marketplace product ID")
    name: str | None = Field(default=None, description="Product name")
    image: str | None = Field(default=None, description="Product image URL")
    price_min: Decimal | None = Field(default=None, description="Lowest listed price")
    commission_rate: Decimal | None = Field(default=None, description="Commission rate as a fraction (0.05 = 5%)")


class LinkConvertRequest(BaseModel):
    """Schema for converting a product URL via POST /links/convert."""

    url: str = Field(min_length=8, max_length=4096, description="Shopee or TikTok Shop product URL")


class LinkConversionResponse(BaseModel):
    """Schema for a converted affiliate link."""

    model_config = ConfigDict(from_attributes=True)

    original_url: str = Field(description="Product URL after short-link resolution")
    short_link: str = Field(description="Affiliate-tracked URL")
    platform: Platform = Field(description="Detected marketplace")
    product_id: str | None = Field(default=None, description="Marketplace product ID")
    product_name: str | None = Field(default=None, description="Product name")
    product_image: str | None = Field(default=None, description="Product image URL")
    price: Decimal | None = Field(default=None, description="Lowest listed price")
    commission_rate: Decimal | None = Field(default=None, description="Commission rate as a fraction")
    estimated_cashback: Decimal | None = Field(default=None, description="Estimated cashback for one unit")


class LinkHistoryItem(BaseModel):
    """Schema for one past link conversion."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(description="Conversion ID")
    platform: Platform = Field(description="Marketplace")
    original_url: str = Field(description="Original product URL")
    affiliate_url: str = Field(description="Affiliate-tracked URL")
    product_id: str | None = Field(default=None, description="Marketplace product ID")
    created_at: datetime = Field(description="Conversion timestamp")


class LinkHistoryResponse(BaseModel):
    """Schema for link history list responses."""

    items: list[LinkHistoryItem] = Field(description="Conversions, newest first")
    total: int = Field(description="Total conversions for the user")
    limit: int = Field(description="Page size")
    offset: int = Field(description="Page offset")
