"""Unit tests for OrderSyncService and its scheduler."""

import asyncio
from datetime import datetime
from decimal import Decimal
from uuid import UUID

import pytest

from affhelper.core.config import LedgerConfig
from affhelper.models.order import Platform
from affhelper.providers.base import UpstreamError
from affhelper.schemas.orders import OrderBatch, RawOrderEvent
from affhelper.services.ledger_store import InMemoryLedgerStore
from affhelper.services.order_ledger import OrderLedger
from affhelper.services.order_sync_service import (
    TRIGGER_MANUAL,
    OrderSyncScheduler,
    OrderSyncService,
)


class StubSource:
    """Order source returning fixed events, or raising."""

    def __init__(
        self,
        platform: Platform,
        events: list[RawOrderEvent] | None = None,
        error: Exception | None = None,
        dropped: int = 0,
    ) -> None:
        self.platform = platform
        self.events = events or []
        self.dropped = dropped
        self.error = error
        self.windows: list[tuple[datetime, datetime]] = []

    async def fetch_recent(self, window_start: datetime, window_end: datetime) -> OrderBatch:
        self.windows.append((window_start, window_end))
        if self.error:
            raise self.error
        return OrderBatch(events=self.events, dropped=self.dropped)


class BlockingSource(StubSource):
    """Order source that waits until released, to hold a run open."""

    def __init__(self, platform: Platform) -> None:
        super().__init__(platform)
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def fetch_recent(self, window_start: datetime, window_end: datetime) -> OrderBatch:
        self.started.set()
        await self.release.wait()
        return OrderBatch()


def make_event(order_id: str, user_id: UUID) -> RawOrderEvent:
    return RawOrderEvent(
        external_order_id=order_id,
        tracking_id=str(user_id),
        total_amount=Decimal("100000"),
        commission_rate_percent=Decimal("10"),
        external_status="UNPAID",
    )


@pytest.fixture
def ledger(store: InMemoryLedgerStore, ledger_config: LedgerConfig) -> OrderLedger:
    return OrderLedger(store, ledger_config)


class TestRunSync:
    """Tests for OrderSyncService.run_sync."""

    @pytest.mark.asyncio
    async def test_totals_across_platforms(
        self, ledger: OrderLedger, store: InMemoryLedgerStore, user_id: UUID
    ) -> None:
        """Test counters are summed and kept per platform."""
        shopee = StubSource(Platform.SHOPEE, [make_event("S1", user_id), make_event("S2", user_id)])
        tiktok = StubSource(Platform.TIKTOK, [make_event("T1", user_id)])
        service = OrderSyncService(ledger, [shopee, tiktok], lookback_days=3)

        result = await service.run_sync(TRIGGER_MANUAL)

        assert result is not None
        assert result.trigger == TRIGGER_MANUAL
        assert (result.synced, result.skipped, result.failed) == (3, 0, 0)
        assert result.per_platform[Platform.SHOPEE].synced == 2
        assert result.per_platform[Platform.TIKTOK].synced == 1
        assert result.failed_platforms == []
        assert result.finished_at >= result.started_at
        assert service.last_result == result
        assert store.get_balance(user_id)["pending_balance"] == Decimal("21000.00")

        window_start, window_end = shopee.windows[0]
        assert (window_end - window_start).days == 3

    @pytest.mark.asyncio
    async def test_failed_platform_does_not_block_others(
        self, ledger: OrderLedger, store: InMemoryLedgerStore, user_id: UUID
    ) -> None:
        """Test one marketplace outage is recorded while the other syncs."""
        shopee = StubSource(Platform.SHOPEE, error=UpstreamError(Platform.SHOPEE, "conversionReport returned HTTP 500"))
        tiktok = StubSource(Platform.TIKTOK, [make_event("T1", user_id)])
        service = OrderSyncService(ledger, [shopee, tiktok])

        result = await service.run_sync()

        assert result.failed_platforms == [Platform.SHOPEE]
        assert Platform.SHOPEE not in result.per_platform
        assert result.synced == 1
        assert store.find_by_external_id(Platform.TIKTOK, "T1") is not None

    @pytest.mark.asyncio
    async def test_dropped_payloads_count_as_failed(self, ledger: OrderLedger, user_id: UUID) -> None:
        """Test malformed payloads dropped by the source show up in the counters."""
        source = StubSource(Platform.SHOPEE, [make_event("S1", user_id)], dropped=2)
        service = OrderSyncService(ledger, [source])

        result = await service.run_sync()

        assert (result.synced, result.failed) == (1, 2)
        assert result.per_platform[Platform.SHOPEE].failed == 2
        assert result.failed_platforms == []

    @pytest.mark.asyncio
    async def test_unexpected_source_error_is_contained(self, ledger: OrderLedger) -> None:
        """Test non-upstream errors from a source also mark it failed."""
        source = StubSource(Platform.TIKTOK, error=RuntimeError("boom"))
        service = OrderSyncService(ledger, [source])

        result = await service.run_sync()

        assert result.failed_platforms == [Platform.TIKTOK]

    @pytest.mark.asyncio
    async def test_second_run_while_running_is_rejected(self, ledger: OrderLedger) -> None:
        """Test a concurrent trigger returns None instead of queueing."""
        source = BlockingSource(Platform.SHOPEE)
        service = OrderSyncService(ledger, [source])

        first = asyncio.create_task(service.run_sync())
        await source.started.wait()

        assert service.is_running
        assert await service.run_sync(TRIGGER_MANUAL) is None

        source.release.set()
        result = await first

        assert result is not None
        assert not service.is_running

    @pytest.mark.asyncio
    async def test_rerun_is_idempotent(self, ledger: OrderLedger, store: InMemoryLedgerStore, user_id: UUID) -> None:
        """Test re-fetching the same events changes nothing."""
        service = OrderSyncService(ledger, [StubSource(Platform.TIKTOK, [make_event("T1", user_id)])])

        await service.run_sync()
        second = await service.run_sync()

        assert (second.synced, second.skipped) == (0, 1)
        assert store.get_balance(user_id)["pending_balance"] == Decimal("7000.00")


class TestOrderSyncScheduler:
    """Tests for OrderSyncScheduler."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self, ledger: OrderLedger) -> None:
        """Test the background task starts once and stops cleanly."""
        scheduler = OrderSyncScheduler(OrderSyncService(ledger, []), interval_minutes=60)

        await scheduler.start()
        task = scheduler._task
        await scheduler.start()

        assert scheduler._task is task
        assert scheduler.interval_seconds == 3600

        await scheduler.stop()

        assert scheduler._task is None
        assert task.cancelled()
