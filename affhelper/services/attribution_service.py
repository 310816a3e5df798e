"""Attribution of marketplace orders to platform users."""

import logging
from uuid import UUID

from affhelper.models.order import Platform
from affhelper.schemas.orders import RawOrderEvent
from affhelper.services.ledger_store import LedgerStore

logger = logging.getLogger(__name__)


def parse_tracking_id(tracking_id: str | None) -> UUID | None:
    """Parse a tracking identifier seeded at link generation time.

    Links carry the user ID either hyphenated or as 32 hex characters
    (Shopee sub IDs cannot contain hyphens). Anything else is not a user ID.
    """
    if not tracking_id:
        return None
    try:
        return UUID(tracking_id.strip())
    except ValueError:
        return None


class AttributionResolver:
    """Maps an order event to the user who generated the affiliate link."""

    def __init__(self, store: LedgerStore) -> None:
        self.store = store

    def resolve(self, platform: Platform, event: RawOrderEvent) -> UUID | None:
        """Resolve the owning user of an event, first match wins.

        1. The tracking ID is a known user ID.
        2. The item ID matches a link conversion; the most recent one wins.

        Args:
            platform: Marketplace the event came from.
            event: Validated order event.

        Returns:
            UUID | None: The user ID, or None when the event is unattributable.
        """
        user_id = parse_tracking_id(event.tracking_id)
        if user_id is not None and self.store.user_exists(user_id):
            return user_id

        if event.external_item_id:
            owner = self.store.latest_link_owner(platform, event.external_item_id)
            if owner is not None:
                logger.debug(
                    "Order %s attributed via item %s to user %s",
                    event.external_order_id,
                    event.external_item_id,
                    owner,
                )
                return owner

        return None
