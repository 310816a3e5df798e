"""Order ledger: folds marketplace order events into orders and balances.

Each event is handled independently:

- First sighting: attribute it to a user, snapshot commission and cashback,
  create the order and credit the cashback (pending, or available when the
  order is already completed) in one atomic commit.
- Re-sighting: if the mapped status changed, update it. Crossing into
  COMPLETED moves the cashback from pending to available, once per order
  (tracked by credited_at). Nothing else moves money.

Leaving COMPLETED (refund/cancel after crediting) is not reversed
automatically; it is logged for manual handling.
"""

import logging
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal

from affhelper.core.config import LedgerConfig
from affhelper.models.order import Order, OrderCreate, OrderStatus, OrderUpdate, Platform
from affhelper.schemas.orders import RawOrderEvent, SyncSummary
from affhelper.services.attribution_service import AttributionResolver
from affhelper.services.ledger_store import LedgerCommit, LedgerStore, StaleOrderError
from affhelper.services.order_status import credits_available, leaves_completed, map_external_status

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
HUNDRED = Decimal("100")

DEFAULT_PRODUCT_NAMES = {
    Platform.SHOPEE: "Shopee Product",
    Platform.TIKTOK: "TikTok Product",
}

# Outcome labels returned by the per-event handlers
SYNCED = "synced"
SKIPPED = "skipped"


class OrderLedger:
    """Reconciles batches of marketplace order events.

    Usage:
        ledger = OrderLedger(store, LedgerConfig.from_settings())
        summary = await ledger.reconcile(Platform.TIKTOK, events)

    Callers must not run two reconciliations at once; OrderSyncService
    holds the run guard. The store's compare-and-set commit is the second
    line against double creation or double crediting.
    """

    def __init__(
        self,
        store: LedgerStore,
        config: LedgerConfig,
        resolver: AttributionResolver | None = None,
    ) -> None:
        self.store = store
        self.config = config
        self.resolver = resolver or AttributionResolver(store)

    async def reconcile(self, platform: Platform, events: list[RawOrderEvent]) -> SyncSummary:
        """Fold a batch of events from one marketplace into the ledger.

        Args:
            platform: Marketplace the events came from.
            events: Validated order events.

        Returns:
            SyncSummary: synced = orders created, skipped = everything that
            created no order, failed = events that raised.
        """
        summary = SyncSummary()
        for event in events:
            try:
                outcome = self._process_event(platform, event)
            except StaleOrderError as e:
                logger.warning(
                    "Order %s/%s changed during sync, skipping: %s",
                    platform.value,
                    event.external_order_id,
                    e,
                )
                summary.skipped += 1
                continue
            except Exception as e:
                logger.error(
                    "Failed to process order %s/%s: %s",
                    platform.value,
                    event.external_order_id,
                    e,
                    exc_info=True,
                )
                summary.failed += 1
                continue

            if outcome == SYNCED:
                summary.synced += 1
            else:
                summary.skipped += 1

        logger.info(
            "%s reconcile: %d synced, %d skipped, %d failed",
            platform.value,
            summary.synced,
            summary.skipped,
            summary.failed,
        )
        return summary

    def _process_event(self, platform: Platform, event: RawOrderEvent) -> str:
        existing = self.store.find_by_external_id(platform, event.external_order_id)
        if existing is None:
            return self._create_order(platform, event)
        return self._update_order(platform, event, existing)

    def _create_order(self, platform: Platform, event: RawOrderEvent) -> str:
        user_id = self.resolver.resolve(platform, event)
        if user_id is None:
            logger.warning(
                "Cannot match %s order %s to any user (tracking_id=%s, item_id=%s)",
                platform.value,
                event.external_order_id,
                event.tracking_id,
                event.external_item_id,
            )
            return SKIPPED

        commission_rate = event.commission_rate_percent / HUNDRED
        commission_amount = self._quantize(event.total_amount * commission_rate)
        cashback_amount = self._quantize(commission_amount * self.config.cashback_rate)
        status = map_external_status(platform, event.external_status)
        now = datetime.now(timezone.utc)

        fields: OrderCreate = {
            "user_id": user_id,
            "external_item_id": event.external_item_id,
            "product_name": event.product_name or DEFAULT_PRODUCT_NAMES[platform],
            "product_image": event.product_image,
            "product_price": event.total_amount,
            "quantity": event.quantity,
            "total_amount": event.total_amount,
            "commission_rate": commission_rate,
            "commission_amount": commission_amount,
            "cashback_rate": self.config.cashback_rate,
            "cashback_amount": cashback_amount,
            "status": status,
            "purchased_at": self._purchased_at(event, now),
            "completed_at": None,
            "credited_at": None,
        }

        if status == OrderStatus.COMPLETED:
            fields["completed_at"] = now
            fields["credited_at"] = now
            available_delta, pending_delta = cashback_amount, ZERO
        else:
            available_delta, pending_delta = ZERO, cashback_amount

        self.store.commit(
            LedgerCommit(
                platform=platform,
                external_order_id=event.external_order_id,
                user_id=user_id,
                fields=fields,
                available_delta=available_delta,
                pending_delta=pending_delta,
            )
        )

        logger.info(
            "Synced %s order %s for user %s: cashback %s (%s)",
            platform.value,
            event.external_order_id,
            user_id,
            cashback_amount,
            status.value,
        )
        return SYNCED

    def _update_order(self, platform: Platform, event: RawOrderEvent, existing: Order) -> str:
        previous = existing["status"]
        status = map_external_status(platform, event.external_status)
        if status == previous:
            return SKIPPED

        now = datetime.now(timezone.utc)
        fields: OrderUpdate = {
            "status": status,
            "completed_at": now if status == OrderStatus.COMPLETED else None,
        }
        available_delta, pending_delta = ZERO, ZERO
        cashback_amount: Decimal = existing["cashback_amount"]

        if credits_available(previous, status):
            if existing.get("credited_at") is None:
                fields["credited_at"] = now
                available_delta, pending_delta = cashback_amount, -cashback_amount
            else:
                logger.info(
                    "%s order %s completed again; cashback already credited at %s",
                    platform.value,
                    event.external_order_id,
                    existing["credited_at"],
                )
        elif leaves_completed(previous, status):
            logger.warning(
                "%s order %s moved from COMPLETED to %s after crediting %s to user %s; "
                "balance not reversed, needs manual review",
                platform.value,
                event.external_order_id,
                status.value,
                cashback_amount,
                existing["user_id"],
            )

        self.store.commit(
            LedgerCommit(
                platform=platform,
                external_order_id=event.external_order_id,
                user_id=existing["user_id"],
                fields=fields,
                expected_status=previous,
                available_delta=available_delta,
                pending_delta=pending_delta,
            )
        )

        logger.info(
            "%s order %s status %s -> %s",
            platform.value,
            event.external_order_id,
            previous.value,
            status.value,
        )
        return SKIPPED

    def _quantize(self, amount: Decimal) -> Decimal:
        return amount.quantize(self.config.amount_precision, rounding=ROUND_HALF_UP)

    @staticmethod
    def _purchased_at(event: RawOrderEvent, default: datetime) -> datetime:
        if event.created_at_epoch_seconds is None:
            return default
        return datetime.fromtimestamp(event.created_at_epoch_seconds, tz=timezone.utc)
