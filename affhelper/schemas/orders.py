"""Order sync Pydantic schemas: marketplace event boundary and sync summaries."""

from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from affhelper.models.order import Platform


def _coerce_decimal(value: Any) -> Any:
    """Turn loosely formatted marketplace numbers into Decimal.

    Accepts numbers, numeric strings with thousands separators and
    None/empty (treated as zero).
    """
    if value is None or value == "":
        return Decimal("0")
    if isinstance(value, bool):
        raise ValueError("boolean is not a valid amount")
    if isinstance(value, (int, Decimal)):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, str):
        try:
            return Decimal(value.replace(",", "").strip())
        except InvalidOperation as e:
            raise ValueError(f"invalid amount: {value!r}") from e
    return value


def _blank_to_none(value: Any) -> Any:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _to_int(value: Any) -> int | None:
    """Parse an integer-valued field, returning None when it is unusable."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(Decimal(str(value).strip()))
    except (InvalidOperation, ValueError, OverflowError):
        return None


class RawOrderEvent(BaseModel):
    """One externally recorded purchase event, validated at the boundary.

    Marketplace adapters build these from their API payloads; the ledger
    never sees the raw payload shape.
    """

    model_config = ConfigDict(frozen=True)

    external_order_id: str = Field(min_length=1, description="Marketplace order ID")
    tracking_id: str | None = Field(default=None, description="Sub ID echoed back from the affiliate link")
    external_item_id: str | None = Field(default=None, description="Marketplace product ID")
    total_amount: Decimal = Field(default=Decimal("0"), ge=0, description="Order total")
    commission_rate_percent: Decimal = Field(default=Decimal("0"), ge=0, description="Commission rate in percent")
    external_status: str = Field(default="", description="Marketplace-specific status token")
    created_at_epoch_seconds: int | None = Field(default=None, ge=0, description="Purchase time (unix seconds)")
    product_name: str | None = Field(default=None, description="Product display name")
    product_image: str | None = Field(default=None, description="Product image URL")
    quantity: int = Field(default=1, ge=1, description="Units purchased")

    @field_validator("external_order_id", mode="before")
    @classmethod
    def stringify_order_id(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value.strip() if isinstance(value, str) else value

    @field_validator("tracking_id", "external_item_id", "product_name", "product_image", mode="before")
    @classmethod
    def blank_optional_strings(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("total_amount", "commission_rate_percent", mode="before")
    @classmethod
    def coerce_amounts(cls, value: Any) -> Any:
        return _coerce_decimal(value)

    @field_validator("external_status", mode="before")
    @classmethod
    def default_status(cls, value: Any) -> Any:
        return "" if value is None else str(value)

    @field_validator("quantity", mode="before")
    @classmethod
    def clamp_quantity(cls, value: Any) -> int:
        count = _to_int(value)
        return count if count is not None and count >= 1 else 1

    @field_validator("created_at_epoch_seconds", mode="before")
    @classmethod
    def lenient_timestamp(cls, value: Any) -> int | None:
        seconds = _to_int(value)
        return seconds if seconds is not None and seconds > 0 else None


class OrderBatch(BaseModel):
    """Events fetched from one marketplace plus the count of payloads dropped as malformed."""

    events: list[RawOrderEvent] = Field(default_factory=list, description="Valid events, in fetch order")
    dropped: int = Field(default=0, ge=0, description="Payloads that failed validation")


class SyncSummary(BaseModel):
    """Counters from reconciling one batch of events."""

    synced: int = Field(default=0, description="Orders created in this batch")
    skipped: int = Field(default=0, description="Events that created no order (re-sightings, unattributable, races)")
    failed: int = Field(default=0, description="Events that raised during processing or were dropped as malformed")

    def __add__(self, other: "SyncSummary") -> "SyncSummary":
        return SyncSummary(
            synced=self.synced + other.synced,
            skipped=self.skipped + other.skipped,
            failed=self.failed + other.failed,
        )


class SyncRunResult(BaseModel):
    """Result of one order sync run across all marketplaces."""

    trigger: str = Field(description="What started the run (schedule/manual)")
    synced: int = Field(default=0, description="Orders created")
    skipped: int = Field(default=0, description="Events skipped")
    failed: int = Field(default=0, description="Events that failed")
    failed_platforms: list[Platform] = Field(default_factory=list, description="Platforms whose fetch failed")
    per_platform: dict[Platform, SyncSummary] = Field(default_factory=dict, description="Counters per platform")
    started_at: datetime = Field(description="Run start time")
    finished_at: datetime | None = Field(default=None, description="Run end time")
