"""Duplicate-settlement guards consulted before any write."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from src.core.config import Settings, get_settings
from src.schemas.checkout import SettlementResult
from src.services.settlement_ledger import SettlementLedger

logger = logging.getLogger(__name__)


def _parse_timestamp(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    else:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


class IdempotencyGuard:
    """Answers "has this purchase already been settled?".

    already_settled is the primary defense: an exact match on the unique
    external transaction reference. recent_duplicate is a secondary check
    for a client confirm racing a webhook for the same purchase when the
    two paths might disagree on the reference.
    """

    def __init__(self, ledger: SettlementLedger | None = None, settings: Settings | None = None) -> None:
        """Initialize the guard.

        Args:
            ledger: Order lookups.
            settings: Window sizes for the recent-order check.
        """
        self.ledger = ledger or SettlementLedger()
        self.settings = settings or get_settings()

    async def already_settled(self, external_ref: str) -> dict[str, Any] | None:
        """Existing order for the external transaction reference, if any."""
        return await self.ledger.find_order_by_external_ref(external_ref)

    async def recent_duplicate(
        self,
        user_id: str,
        event_id: str,
        external_ref: str,
        window_minutes: int | None = None,
    ) -> dict[str, Any] | None:
        """Most recent order by the user for the event, if it looks like this purchase.

        The order inside the window counts as a duplicate when its reference
        equals `external_ref` or when it is younger than
        `duplicate_recent_seconds`.
        """
        if window_minutes is None:
            window_minutes = self.settings.duplicate_window_minutes
        now = datetime.now(timezone.utc)
        order = await self.ledger.find_latest_order(
            user_id, event_id, since=now - timedelta(minutes=window_minutes)
        )
        if not order:
            return None

        if order.get("stripe_checkout_session_id") == external_ref:
            return order

        created_at = _parse_timestamp(order.get("created_at"))
        if created_at and now - created_at <= timedelta(seconds=self.settings.duplicate_recent_seconds):
            logger.warning(
                "Treating %s as a duplicate of order %s (%s) created %ss ago for user %s",
                external_ref,
                order["id"],
                order.get("stripe_checkout_session_id"),
                int((now - created_at).total_seconds()),
                user_id,
            )
            return order
        return None

    async def existing_result(self, order: dict[str, Any]) -> SettlementResult:
        """The identifiers of an already settled order.

        Raises:
            SettlementInProgressError: If the order's tickets are still being written.
        """
        return await self.ledger.settled_result(order)
