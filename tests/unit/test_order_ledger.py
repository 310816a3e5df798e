"""Unit tests for OrderLedger reconciliation."""

from decimal import Decimal
from typing import Any
from unittest.mock import MagicMock
from uuid import UUID, uuid4

import pytest

from affhelper.core.config import LedgerConfig
from affhelper.models.order import OrderStatus, Platform
from affhelper.schemas.orders import RawOrderEvent
from affhelper.services.ledger_store import InMemoryLedgerStore, StaleOrderError
from affhelper.services.order_ledger import OrderLedger


def make_event(user_id: UUID | None, **overrides: Any) -> RawOrderEvent:
    """Build the O1 event: 100000 total, 10% commission, UNPAID."""
    data: dict[str, Any] = {
        "external_order_id": "O1",
        "tracking_id": str(user_id) if user_id else None,
        "external_item_id": "item-1",
        "total_amount": 100000,
        "commission_rate_percent": 10,
        "external_status": "UNPAID",
        "created_at_epoch_seconds": 1760000000,
        "product_name": "Phone case",
    }
    data.update(overrides)
    return RawOrderEvent.model_validate(data)


@pytest.fixture
def ledger(store: InMemoryLedgerStore, ledger_config: LedgerConfig) -> OrderLedger:
    """Create an OrderLedger over the in-memory store."""
    return OrderLedger(store, ledger_config)


class TestCreateOrder:
    """Tests for first sightings of an order."""

    @pytest.mark.asyncio
    async def test_pending_order_credits_pending_balance(
        self, ledger: OrderLedger, store: InMemoryLedgerStore, user_id: UUID
    ) -> None:
        """Test the O1 scenario: 10000 commission, 7000 cashback, pending."""
        summary = await ledger.reconcile(Platform.TIKTOK, [make_event(user_id)])

        assert (summary.synced, summary.skipped, summary.failed) == (1, 0, 0)
        order = store.find_by_external_id(Platform.TIKTOK, "O1")
        assert order is not None
        assert order["user_id"] == user_id
        assert order["status"] == OrderStatus.PENDING
        assert order["commission_rate"] == Decimal("0.1")
        assert order["commission_amount"] == Decimal("10000.00")
        assert order["cashback_rate"] == Decimal("0.7")
        assert order["cashback_amount"] == Decimal("7000.00")
        assert order["completed_at"] is None
        assert order["credited_at"] is None
        assert order["purchased_at"].timestamp() == 1760000000
        assert store.get_balance(user_id) == {
            "available_balance": Decimal("0"),
            "pending_balance": Decimal("7000.00"),
        }

    @pytest.mark.asyncio
    async def test_direct_to_completed_credits_available(
        self, ledger: OrderLedger, store: InMemoryLedgerStore, user_id: UUID
    ) -> None:
        """Test an order first seen COMPLETED never passes through pending."""
        await ledger.reconcile(Platform.TIKTOK, [make_event(user_id, external_status="COMPLETED")])

        order = store.find_by_external_id(Platform.TIKTOK, "O1")
        assert order["status"] == OrderStatus.COMPLETED
        assert order["completed_at"] is not None
        assert order["credited_at"] is not None
        assert store.get_balance(user_id) == {
            "available_balance": Decimal("7000.00"),
            "pending_balance": Decimal("0"),
        }

    @pytest.mark.asyncio
    async def test_cashback_rounds_half_up(
        self, ledger: OrderLedger, store: InMemoryLedgerStore, user_id: UUID
    ) -> None:
        """Test money is quantized to two decimals, half up."""
        event = make_event(user_id, total_amount="12345", commission_rate_percent="3.3")
        await ledger.reconcile(Platform.SHOPEE, [event])

        order = store.find_by_external_id(Platform.SHOPEE, "O1")
        # 12345 * 0.033 = 407.385 -> 407.39; * 0.7 = 285.173 -> 285.17
        assert order["commission_amount"] == Decimal("407.39")
        assert order["cashback_amount"] == Decimal("285.17")

    @pytest.mark.asyncio
    async def test_missing_product_name_gets_platform_default(
        self, ledger: OrderLedger, store: InMemoryLedgerStore, user_id: UUID
    ) -> None:
        """Test the default product name per platform."""
        await ledger.reconcile(Platform.SHOPEE, [make_event(user_id, product_name=None)])

        assert store.find_by_external_id(Platform.SHOPEE, "O1")["product_name"] == "Shopee Product"

    @pytest.mark.asyncio
    async def test_unattributable_event_is_inert(
        self, ledger: OrderLedger, store: InMemoryLedgerStore, user_id: UUID
    ) -> None:
        """Test an unmatched event creates nothing and counts as skipped."""
        summary = await ledger.reconcile(
            Platform.TIKTOK,
            [make_event(uuid4(), external_item_id="unknown-item")],
        )

        assert (summary.synced, summary.skipped, summary.failed) == (0, 1, 0)
        assert store.all_orders() == []
        assert store.get_balance(user_id)["pending_balance"] == Decimal("0")

    @pytest.mark.asyncio
    async def test_same_order_id_on_two_platforms_is_two_orders(
        self, ledger: OrderLedger, store: InMemoryLedgerStore, user_id: UUID
    ) -> None:
        """Test order identity is (platform, external order ID)."""
        await ledger.reconcile(Platform.TIKTOK, [make_event(user_id)])
        await ledger.reconcile(Platform.SHOPEE, [make_event(user_id)])

        assert len(store.all_orders()) == 2
        assert store.get_balance(user_id)["pending_balance"] == Decimal("14000.00")


class TestIdempotency:
    """Tests for repeated reconciliation of the same events."""

    @pytest.mark.asyncio
    async def test_same_batch_twice_equals_once(
        self, ledger: OrderLedger, store: InMemoryLedgerStore, user_id: UUID
    ) -> None:
        """Test reconciling a batch twice leaves rows and balances unchanged."""
        batch = [
            make_event(user_id),
            make_event(user_id, external_order_id="O2", external_status="COMPLETED"),
        ]
        await ledger.reconcile(Platform.TIKTOK, batch)
        orders_once = {o["external_order_id"]: o["status"] for o in store.all_orders()}
        balance_once = store.get_balance(user_id)

        summary = await ledger.reconcile(Platform.TIKTOK, batch)

        assert (summary.synced, summary.skipped) == (0, 2)
        assert {o["external_order_id"]: o["status"] for o in store.all_orders()} == orders_once
        assert store.get_balance(user_id) == balance_once

    @pytest.mark.asyncio
    async def test_duplicate_event_in_one_batch(
        self, ledger: OrderLedger, store: InMemoryLedgerStore, user_id: UUID
    ) -> None:
        """Test a batch carrying the same order twice creates it once."""
        summary = await ledger.reconcile(Platform.SHOPEE, [make_event(user_id), make_event(user_id)])

        assert (summary.synced, summary.skipped) == (1, 1)
        assert store.get_balance(user_id)["pending_balance"] == Decimal("7000.00")


class TestStatusTransitions:
    """Tests for re-sightings with a changed status."""

    @pytest.mark.asyncio
    async def test_full_lifecycle_credits_exactly_once(
        self, ledger: OrderLedger, store: InMemoryLedgerStore, user_id: UUID
    ) -> None:
        """Test UNPAID -> COMPLETED -> COMPLETED moves 7000 once."""
        await ledger.reconcile(Platform.TIKTOK, [make_event(user_id)])

        summary = await ledger.reconcile(Platform.TIKTOK, [make_event(user_id, external_status="COMPLETED")])
        assert (summary.synced, summary.skipped) == (0, 1)
        order = store.find_by_external_id(Platform.TIKTOK, "O1")
        assert order["status"] == OrderStatus.COMPLETED
        assert order["completed_at"] is not None
        assert store.get_balance(user_id) == {
            "available_balance": Decimal("7000.00"),
            "pending_balance": Decimal("0.00"),
        }

        summary = await ledger.reconcile(Platform.TIKTOK, [make_event(user_id, external_status="COMPLETED")])
        assert summary.skipped == 1
        assert store.get_balance(user_id) == {
            "available_balance": Decimal("7000.00"),
            "pending_balance": Decimal("0.00"),
        }

    @pytest.mark.asyncio
    async def test_pending_statuses_are_interchangeable(
        self, ledger: OrderLedger, store: InMemoryLedgerStore, user_id: UUID
    ) -> None:
        """Test moving between tokens of the same bucket changes nothing."""
        await ledger.reconcile(Platform.TIKTOK, [make_event(user_id, external_status="UNPAID")])
        before = store.find_by_external_id(Platform.TIKTOK, "O1")

        await ledger.reconcile(Platform.TIKTOK, [make_event(user_id, external_status="IN_TRANSIT")])

        after = store.find_by_external_id(Platform.TIKTOK, "O1")
        assert after["updated_at"] == before["updated_at"]
        assert store.get_balance(user_id)["pending_balance"] == Decimal("7000.00")

    @pytest.mark.asyncio
    async def test_cancel_moves_no_money(
        self, ledger: OrderLedger, store: InMemoryLedgerStore, user_id: UUID
    ) -> None:
        """Test PENDING -> CANCELLED updates status only."""
        await ledger.reconcile(Platform.SHOPEE, [make_event(user_id, external_status="PENDING")])
        await ledger.reconcile(Platform.SHOPEE, [make_event(user_id, external_status="CANCELLED")])

        assert store.find_by_external_id(Platform.SHOPEE, "O1")["status"] == OrderStatus.CANCELLED
        assert store.get_balance(user_id) == {
            "available_balance": Decimal("0"),
            "pending_balance": Decimal("7000.00"),
        }

    @pytest.mark.asyncio
    async def test_refund_after_credit_is_not_reversed(
        self, ledger: OrderLedger, store: InMemoryLedgerStore, user_id: UUID
    ) -> None:
        """Test COMPLETED -> REFUNDED keeps the credited balance and is logged."""
        await ledger.reconcile(Platform.TIKTOK, [make_event(user_id, external_status="COMPLETED")])
        await ledger.reconcile(Platform.TIKTOK, [make_event(user_id, external_status="RETURNED")])

        assert store.find_by_external_id(Platform.TIKTOK, "O1")["status"] == OrderStatus.REFUNDED
        assert store.get_balance(user_id)["available_balance"] == Decimal("7000.00")

    @pytest.mark.asyncio
    async def test_recompletion_after_refund_does_not_credit_twice(
        self, ledger: OrderLedger, store: InMemoryLedgerStore, user_id: UUID
    ) -> None:
        """Test credited_at blocks a second credit for the same order."""
        for status in ("UNPAID", "COMPLETED", "REFUNDED", "COMPLETED"):
            await ledger.reconcile(Platform.TIKTOK, [make_event(user_id, external_status=status)])

        order = store.find_by_external_id(Platform.TIKTOK, "O1")
        assert order["status"] == OrderStatus.COMPLETED
        assert store.get_balance(user_id) == {
            "available_balance": Decimal("7000.00"),
            "pending_balance": Decimal("0.00"),
        }


class TestFailureIsolation:
    """Tests for per-event error handling."""

    @pytest.mark.asyncio
    async def test_failing_event_does_not_stop_batch(
        self, store: InMemoryLedgerStore, ledger_config: LedgerConfig, user_id: UUID
    ) -> None:
        """Test one raising event counts as failed and the rest proceed."""
        resolver = MagicMock()
        resolver.resolve.side_effect = [RuntimeError("boom"), user_id]
        ledger = OrderLedger(store, ledger_config, resolver=resolver)

        summary = await ledger.reconcile(
            Platform.SHOPEE,
            [make_event(user_id), make_event(user_id, external_order_id="O2")],
        )

        assert (summary.synced, summary.skipped, summary.failed) == (1, 0, 1)
        assert store.find_by_external_id(Platform.SHOPEE, "O1") is None
        assert store.find_by_external_id(Platform.SHOPEE, "O2") is not None

    @pytest.mark.asyncio
    async def test_stale_commit_is_skipped(
        self, ledger_config: LedgerConfig, user_id: UUID
    ) -> None:
        """Test a concurrent change detected at commit skips the event."""
        store = MagicMock()
        store.find_by_external_id.return_value = None
        store.user_exists.return_value = True
        store.commit.side_effect = StaleOrderError("already exists")
        ledger = OrderLedger(store, ledger_config)

        summary = await ledger.reconcile(Platform.TIKTOK, [make_event(user_id)])

        assert (summary.synced, summary.skipped, summary.failed) == (0, 1, 0)
