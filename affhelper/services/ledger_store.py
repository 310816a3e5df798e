"""Persistence for orders, balances and link conversions.

The order ledger talks to storage only through LedgerStore. Two backends
exist: Supabase (production) and an in-process store used by tests and
local development. Both apply an order write and its balance delta as one
atomic commit, with compare-and-set on the stored status.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from functools import lru_cache
from threading import Lock
from typing import Any, Protocol
from uuid import UUID, uuid4

from postgrest.exceptions import APIError as PostgrestAPIError
from supabase import Client

from affhelper.core.config import get_settings
from affhelper.core.supabase import get_supabase_client
from affhelper.models.link_conversion import LinkConversion, LinkConversionCreate
from affhelper.models.order import Order, OrderCreate, OrderStatus, OrderUpdate, Platform
from affhelper.models.profile import BalanceSnapshot

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

# SQLSTATE codes raised by the ledger functions in supabase/migrations
SQLSTATE_USER_NOT_FOUND = "AH001"
SQLSTATE_STALE_ORDER = "AH002"


class LedgerError(Exception):
    """Base class for ledger storage errors."""


class UserNotFoundError(LedgerError):
    """The user whose balance would change does not exist."""

    def __init__(self, user_id: UUID) -> None:
        self.user_id = user_id
        super().__init__(f"User {user_id} not found")


class StaleOrderError(LedgerError):
    """The order changed between lookup and commit.

    Raised when creating an order whose identity already exists, or when
    transitioning an order whose stored status no longer matches the
    status the decision was based on.
    """


@dataclass(frozen=True)
class LedgerCommit:
    """One atomic order write plus the balance movement it causes.

    expected_status None means "create"; otherwise the commit only applies
    if the stored order still has that status.
    """

    platform: Platform
    external_order_id: str
    user_id: UUID
    fields: OrderCreate | OrderUpdate
    expected_status: OrderStatus | None = None
    available_delta: Decimal = ZERO
    pending_delta: Decimal = ZERO

    @property
    def is_create(self) -> bool:
        return self.expected_status is None


class LedgerStore(Protocol):
    """Storage contract consumed by the ledger, resolver and link service."""

    def find_by_external_id(self, platform: Platform, external_order_id: str) -> Order | None: ...

    def upsert_by_external_id(
        self, platform: Platform, external_order_id: str, fields: dict[str, Any]
    ) -> Order: ...

    def commit(self, commit: LedgerCommit) -> Order: ...

    def adjust(
        self,
        user_id: UUID,
        available_delta: Decimal = ZERO,
        pending_delta: Decimal = ZERO,
    ) -> BalanceSnapshot: ...

    def get_balance(self, user_id: UUID) -> BalanceSnapshot: ...

    def user_exists(self, user_id: UUID) -> bool: ...

    def latest_link_owner(self, platform: Platform, product_id: str) -> UUID | None: ...

    def record_link_conversion(self, data: LinkConversionCreate) -> LinkConversion: ...

    def list_link_conversions(
        self, user_id: UUID, limit: int, offset: int
    ) -> tuple[list[LinkConversion], int]: ...


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _ProfileRecord:
    id: UUID
    available_balance: Decimal = ZERO
    pending_balance: Decimal = ZERO

    def snapshot(self) -> BalanceSnapshot:
        return {
            "available_balance": self.available_balance,
            "pending_balance": self.pending_balance,
        }


@dataclass
class InMemoryLedgerStore:
    """Thread-safe in-process ledger store.

    Every public method takes the same lock, so a commit's order write and
    balance delta are observed together or not at all.
    """

    _profiles: dict[UUID, _ProfileRecord] = field(default_factory=dict)
    _orders: dict[tuple[Platform, str], Order] = field(default_factory=dict)
    _links: list[LinkConversion] = field(default_factory=list)
    _lock: Lock = field(default_factory=Lock)

    def add_user(self, user_id: UUID) -> None:
        """Register a user with empty balances."""
        with self._lock:
            self._profiles.setdefault(user_id, _ProfileRecord(id=user_id))

    def find_by_external_id(self, platform: Platform, external_order_id: str) -> Order | None:
        with self._lock:
            order = self._orders.get((platform, external_order_id))
            return dict(order) if order else None

    def upsert_by_external_id(
        self, platform: Platform, external_order_id: str, fields: dict[str, Any]
    ) -> Order:
        with self._lock:
            key = (platform, external_order_id)
            now = _now()
            existing = self._orders.get(key)
            if existing is None:
                order = self._new_order(platform, external_order_id, fields, now)
                self._orders[key] = order
            else:
                existing.update(fields)
                existing["updated_at"] = now
                order = existing
            return dict(order)

    def commit(self, commit: LedgerCommit) -> Order:
        with self._lock:
            key = (commit.platform, commit.external_order_id)
            existing = self._orders.get(key)

            if commit.is_create:
                if existing is not None:
                    raise StaleOrderError(
                        f"Order {commit.platform.value}/{commit.external_order_id} already exists"
                    )
            elif existing is None or existing["status"] != commit.expected_status:
                raise StaleOrderError(
                    f"Order {commit.platform.value}/{commit.external_order_id} is no longer "
                    f"{commit.expected_status.value if commit.expected_status else 'absent'}"
                )

            # Validate before mutating anything so a failure leaves no trace
            profile = self._profiles.get(commit.user_id)
            if profile is None:
                raise UserNotFoundError(commit.user_id)

            now = _now()
            if existing is None:
                order = self._new_order(commit.platform, commit.external_order_id, commit.fields, now)
                self._orders[key] = order
            else:
                existing.update(commit.fields)
                existing["updated_at"] = now
                order = existing

            profile.available_balance += commit.available_delta
            profile.pending_balance += commit.pending_delta
            return dict(order)

    def adjust(
        self,
        user_id: UUID,
        available_delta: Decimal = ZERO,
        pending_delta: Decimal = ZERO,
    ) -> BalanceSnapshot:
        with self._lock:
            profile = self._profiles.get(user_id)
            if profile is None:
                raise UserNotFoundError(user_id)
            profile.available_balance += available_delta
            profile.pending_balance += pending_delta
            return profile.snapshot()

    def get_balance(self, user_id: UUID) -> BalanceSnapshot:
        with self._lock:
            profile = self._profiles.get(user_id)
            if profile is None:
                raise UserNotFoundError(user_id)
            return profile.snapshot()

    def user_exists(self, user_id: UUID) -> bool:
        with self._lock:
            return user_id in self._profiles

    def latest_link_owner(self, platform: Platform, product_id: str) -> UUID | None:
        with self._lock:
            matches = [
                link
                for link in self._links
                if link["platform"] == platform and link["product_id"] == product_id
            ]
            if not matches:
                return None
            return max(reversed(matches), key=lambda link: link["created_at"])["user_id"]

    def record_link_conversion(self, data: LinkConversionCreate) -> LinkConversion:
        with self._lock:
            link: LinkConversion = {
                "id": uuid4(),
                "user_id": data["user_id"],
                "platform": data["platform"],
                "original_url": data["original_url"],
                "affiliate_url": data["affiliate_url"],
                "product_id": data.get("product_id"),
                "created_at": _now(),
            }
            self._links.append(link)
            return dict(link)

    def list_link_conversions(
        self, user_id: UUID, limit: int, offset: int
    ) -> tuple[list[LinkConversion], int]:
        with self._lock:
            owned = sorted(
                (link for link in reversed(self._links) if link["user_id"] == user_id),
                key=lambda link: link["created_at"],
                reverse=True,
            )
            return [dict(link) for link in owned[offset : offset + limit]], len(owned)

    def all_orders(self) -> list[Order]:
        """Return copies of every stored order (inspection helper)."""
        with self._lock:
            return [dict(order) for order in self._orders.values()]

    @staticmethod
    def _new_order(
        platform: Platform, external_order_id: str, fields: dict[str, Any], now: datetime
    ) -> Order:
        order: dict[str, Any] = {
            "id": uuid4(),
            "external_item_id": None,
            "product_image": None,
            "quantity": 1,
            "completed_at": None,
            "credited_at": None,
            "purchased_at": now,
        }
        order.update(fields)
        order.update(
            {
                "platform": platform,
                "external_order_id": external_order_id,
                "created_at": now,
                "updated_at": now,
            }
        )
        return order


# Supabase backend


def _to_jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (Platform, OrderStatus)):
        return value.value
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _serialize(fields: dict[str, Any]) -> dict[str, Any]:
    return {key: _to_jsonable(value) for key, value in fields.items()}


def _parse_datetime(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def _row_to_order(row: dict[str, Any]) -> Order:
    """Normalize a PostgREST orders row into typed values."""
    order = dict(row)
    for key in ("id", "user_id"):
        order[key] = UUID(str(row[key]))
    for key in (
        "product_price",
        "total_amount",
        "commission_rate",
        "commission_amount",
        "cashback_rate",
        "cashback_amount",
    ):
        order[key] = Decimal(str(row.get(key) or 0))
    order["platform"] = Platform(row["platform"])
    order["status"] = OrderStatus(row["status"])
    for key in ("purchased_at", "completed_at", "credited_at", "created_at", "updated_at"):
        order[key] = _parse_datetime(row.get(key))
    return order


def _row_to_balance(row: dict[str, Any]) -> BalanceSnapshot:
    return {
        "available_balance": Decimal(str(row.get("available_balance") or 0)),
        "pending_balance": Decimal(str(row.get("pending_balance") or 0)),
    }


def _row_to_link(row: dict[str, Any]) -> LinkConversion:
    link = dict(row)
    link["id"] = UUID(str(row["id"]))
    link["user_id"] = UUID(str(row["user_id"]))
    link["platform"] = Platform(row["platform"])
    link["created_at"] = _parse_datetime(row.get("created_at"))
    return link


class SupabaseLedgerStore:
    """Ledger store backed by Supabase.

    Reads go through PostgREST. Writes that touch balances go through the
    ledger_commit_order and adjust_balance Postgres functions so the order
    row and the balance change share one transaction.
    """

    def __init__(self, client: Client) -> None:
        self.client = client

    def find_by_external_id(self, platform: Platform, external_order_id: str) -> Order | None:
        response = (
            self.client.table("orders")
            .select("*")
            .eq("platform", platform.value)
            .eq("external_order_id", external_order_id)
            .maybe_single()
            .execute()
        )
        return _row_to_order(response.data) if response and response.data else None

    def upsert_by_external_id(
        self, platform: Platform, external_order_id: str, fields: dict[str, Any]
    ) -> Order:
        payload = _serialize(fields)
        payload["platform"] = platform.value
        payload["external_order_id"] = external_order_id
        response = (
            self.client.table("orders")
            .upsert(payload, on_conflict="platform,external_order_id")
            .execute()
        )
        return _row_to_order(response.data[0])

    def commit(self, commit: LedgerCommit) -> Order:
        params = {
            "p_platform": commit.platform.value,
            "p_external_order_id": commit.external_order_id,
            "p_user_id": str(commit.user_id),
            "p_expected_status": commit.expected_status.value if commit.expected_status else None,
            "p_fields": _serialize(commit.fields),
            "p_available_delta": str(commit.available_delta),
            "p_pending_delta": str(commit.pending_delta),
        }
        try:
            response = self.client.rpc("ledger_commit_order", params).execute()
        except PostgrestAPIError as e:
            self._raise_ledger_error(e, commit.user_id)
            raise
        data = response.data
        row = data[0] if isinstance(data, list) else data
        return _row_to_order(row)

    def adjust(
        self,
        user_id: UUID,
        available_delta: Decimal = ZERO,
        pending_delta: Decimal = ZERO,
    ) -> BalanceSnapshot:
        params = {
            "p_user_id": str(user_id),
            "p_available_delta": str(available_delta),
            "p_pending_delta": str(pending_delta),
        }
        try:
            response = self.client.rpc("adjust_balance", params).execute()
        except PostgrestAPIError as e:
            self._raise_ledger_error(e, user_id)
            raise
        data = response.data
        return _row_to_balance(data[0] if isinstance(data, list) else data)

    def get_balance(self, user_id: UUID) -> BalanceSnapshot:
        response = (
            self.client.table("profiles")
            .select("available_balance, pending_balance")
            .eq("id", str(user_id))
            .maybe_single()
            .execute()
        )
        if not response or not response.data:
            raise UserNotFoundError(user_id)
        return _row_to_balance(response.data)

    def user_exists(self, user_id: UUID) -> bool:
        response = (
            self.client.table("profiles")
            .select("id")
            .eq("id", str(user_id))
            .maybe_single()
            .execute()
        )
        return bool(response and response.data)

    def latest_link_owner(self, platform: Platform, product_id: str) -> UUID | None:
        response = (
            self.client.table("link_conversions")
            .select("user_id")
            .eq("platform", platform.value)
            .eq("product_id", product_id)
            .order("created_at", desc=True)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return UUID(str(response.data[0]["user_id"]))

    def record_link_conversion(self, data: LinkConversionCreate) -> LinkConversion:
        response = self.client.table("link_conversions").insert(_serialize(dict(data))).execute()
        return _row_to_link(response.data[0])

    def list_link_conversions(
        self, user_id: UUID, limit: int, offset: int
    ) -> tuple[list[LinkConversion], int]:
        response = (
            self.client.table("link_conversions")
            .select("*", count="exact")
            .eq("user_id", str(user_id))
            .order("created_at", desc=True)
            .range(offset, offset + limit - 1)
            .execute()
        )
        rows = response.data or []
        total = response.count if response.count is not None else len(rows)
        return [_row_to_link(row) for row in rows], total

    @staticmethod
    def _raise_ledger_error(error: PostgrestAPIError, user_id: UUID) -> None:
        if error.code == SQLSTATE_USER_NOT_FOUND:
            raise UserNotFoundError(user_id) from error
        if error.code == SQLSTATE_STALE_ORDER:
            raise StaleOrderError(error.message or "Order changed concurrently") from error
        logger.error("Ledger RPC failed: %s (%s)", error.message, error.code)


@lru_cache
def get_ledger_store() -> LedgerStore:
    """Get the process-wide ledger store for the configured backend."""
    settings = get_settings()
    if settings.ledger_backend == "memory":
        logger.warning("Using in-memory ledger store; balances will not survive a restart")
        return InMemoryLedgerStore()
    return SupabaseLedgerStore(get_supabase_client())
