"""Order sync: pulls recent marketplace orders into the ledger on a schedule."""

import asyncio
import logging
from datetime import datetime, timedelta, timezone

from affhelper.core.config import LedgerConfig, Settings, get_settings
from affhelper.models.order import Platform
from affhelper.providers.base import OrderSource, UpstreamError
from affhelper.providers.registry import get_providers
from affhelper.schemas.orders import SyncRunResult, SyncSummary
from affhelper.services.ledger_store import get_ledger_store
from affhelper.services.order_ledger import OrderLedger

logger = logging.getLogger(__name__)

TRIGGER_SCHEDULE = "schedule"
TRIGGER_MANUAL = "manual"


class OrderSyncService:
    """Runs order sync across all marketplaces, one run at a time.

    Usage:
        service = OrderSyncService(ledger, sources, lookback_days=7)
        result = await service.run_sync(TRIGGER_MANUAL)
        if result is None:
            ...  # another run was in progress

    A run that finds the guard held returns None immediately; requests are
    not queued.
    """

    def __init__(
        self,
        ledger: OrderLedger,
        sources: list[OrderSource],
        lookback_days: int = 7,
    ) -> None:
        self.ledger = ledger
        self.sources = sources
        self.lookback_days = lookback_days
        self._lock = asyncio.Lock()
        self.last_result: SyncRunResult | None = None

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    async def run_sync(self, trigger: str = TRIGGER_SCHEDULE) -> SyncRunResult | None:
        """Fetch and reconcile recent orders from every source.

        Args:
            trigger: What started the run, recorded on the result.

        Returns:
            SyncRunResult | None: Run counters, or None if a run was already
            in progress.
        """
        if self._lock.locked():
            logger.info("Order sync already in progress, skipping %s trigger", trigger)
            return None

        async with self._lock:
            started_at = datetime.now(timezone.utc)
            logger.info("Starting order sync (%s)", trigger)

            total = SyncSummary()
            per_platform: dict[Platform, SyncSummary] = {}
            failed_platforms: list[Platform] = []

            for source in self.sources:
                summary = await self._sync_source(source)
                if summary is None:
                    failed_platforms.append(source.platform)
                    continue
                per_platform[source.platform] = summary
                total = total + summary

            result = SyncRunResult(
                trigger=trigger,
                synced=total.synced,
                skipped=total.skipped,
                failed=total.failed,
                failed_platforms=failed_platforms,
                per_platform=per_platform,
                started_at=started_at,
                finished_at=datetime.now(timezone.utc),
            )
            self.last_result = result

            logger.info(
                "Order sync completed: %d synced, %d skipped, %d failed, failed platforms: %s",
                result.synced,
                result.skipped,
                result.failed,
                [p.value for p in failed_platforms] or "none",
            )
            return result

    async def _sync_source(self, source: OrderSource) -> SyncSummary | None:
        window_end = datetime.now(timezone.utc)
        window_start = window_end - timedelta(days=self.lookback_days)
        try:
            batch = await source.fetch_recent(window_start, window_end)
        except UpstreamError as e:
            logger.error("%s order fetch failed: %s", source.platform.value, e.message)
            return None
        except Exception as e:
            logger.error("%s order fetch failed: %s", source.platform.value, e, exc_info=True)
            return None

        logger.info("Found %d %s orders to process", len(batch.events), source.platform.value)
        summary = await self.ledger.reconcile(source.platform, batch.events)
        if batch.dropped:
            logger.warning("%d malformed %s orders were dropped", batch.dropped, source.platform.value)
            summary.failed += batch.dropped
        return summary


class OrderSyncScheduler:
    """Background task that runs order sync at a fixed interval."""

    def __init__(self, service: OrderSyncService, interval_minutes: int) -> None:
        self.service = service
        self.interval_seconds = interval_minutes * 60
        self._task: asyncio.Task | None = None

    async def start(self) -> None:
        """Start the background sync task."""
        if self._task is None:
            self._task = asyncio.create_task(self._loop())
            logger.info("Order sync scheduler started (every %d seconds)", self.interval_seconds)

    async def stop(self) -> None:
        """Stop the background sync task."""
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.info("Order sync scheduler stopped")

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.service.run_sync(TRIGGER_SCHEDULE)
            except Exception as e:
                logger.error("Scheduled order sync crashed: %s", e, exc_info=True)


def build_order_sync_service(settings: Settings | None = None) -> OrderSyncService:
    """Wire the sync service from settings, the ledger store and providers."""
    settings = settings or get_settings()
    ledger = OrderLedger(get_ledger_store(), LedgerConfig.from_settings(settings))
    providers = get_providers()
    return OrderSyncService(
        ledger,
        [providers[Platform.SHOPEE], providers[Platform.TIKTOK]],
        lookback_days=settings.sync_lookback_days,
    )


# Global singleton instances
_sync_service: OrderSyncService | None = None
_scheduler: OrderSyncScheduler | None = None


def get_order_sync_service() -> OrderSyncService:
    """Get or create the global order sync service."""
    global _sync_service
    if _sync_service is None:
        _sync_service = build_order_sync_service()
    return _sync_service


async def init_order_sync_scheduler() -> OrderSyncScheduler | None:
    """Start scheduled sync unless disabled. Call at app startup."""
    global _scheduler
    settings = get_settings()
    if not settings.sync_enabled:
        logger.info("Order sync scheduler disabled")
        return None
    _scheduler = OrderSyncScheduler(get_order_sync_service(), settings.sync_interval_minutes)
    await _scheduler.start()
    return _scheduler


async def shutdown_order_sync_scheduler() -> None:
    """Stop scheduled sync and release the service. Call at app shutdown."""
    global _scheduler, _sync_service
    if _scheduler:
        await _scheduler.stop()
        _scheduler = None
    _sync_service = None
