"""Decode verified Stripe events into completion notifications."""

import logging
from typing import Any

from src.core.config import Settings, get_settings
from src.schemas.notification import (
    CheckoutCompleted,
    CompletionNotification,
    IngestionOutcome,
    NotificationSource,
    PaymentConfirmed,
    SettleableNotification,
    Unrecognized,
)
from src.services.settlement_ledger import SettlementLedger

logger = logging.getLogger(__name__)

PAYMENT_CONFIRMED_EVENTS = frozenset({"checkout.session.async_payment_succeeded"})
CHECKOUT_COMPLETED_EVENTS = frozenset({"checkout.session.completed"})


def _ref_id(value: Any) -> str | None:
    """ID of a Stripe reference that may be a plain ID or an expanded object."""
    if value is None:
        return None
    if isinstance(value, str):
        return value or None
    if isinstance(value, dict):
        return value.get("id")
    return getattr(value, "id", None)


def extract_product_ref(session: dict[str, Any]) -> str | None:
    """Stripe product ID of the first line item, when line_items were expanded."""
    line_items = session.get("line_items") or {}
    data = line_items.get("data") if isinstance(line_items, dict) else None
    if not data:
        return None
    price = data[0].get("price") or {}
    return _ref_id(price.get("product"))


def decode_checkout_session(
    session: dict[str, Any],
    kind: str,
    source: NotificationSource = "webhook",
    event_id: str | None = None,
) -> SettleableNotification:
    """Build a settleable notification from a Checkout Session object."""
    customer_details = session.get("customer_details") or {}
    metadata = {str(k): str(v) for k, v in (session.get("metadata") or {}).items() if v is not None}
    fields = {
        "external_ref": session["id"],
        "customer_ref": _ref_id(session.get("customer")),
        "customer_email": customer_details.get("email") or session.get("customer_email"),
        "product_ref": extract_product_ref(session),
        "status": session.get("payment_status"),
        "metadata": metadata,
        "return_url": session.get("success_url"),
        "source": source,
        "event_id": event_id,
    }
    if kind == "payment_confirmed":
        return PaymentConfirmed(**fields)
    return CheckoutCompleted(**fields)


def decode_event(event: dict[str, Any]) -> CompletionNotification:
    """Decode a verified Stripe event into a completion notification."""
    event_type = event.get("type", "")
    event_id = event.get("id")
    if event_type in PAYMENT_CONFIRMED_EVENTS:
        kind = "payment_confirmed"
    elif event_type in CHECKOUT_COMPLETED_EVENTS:
        kind = "checkout_completed"
    else:
        return Unrecognized(event_type=event_type, event_id=event_id)

    session = (event.get("data") or {}).get("object") or {}
    if not session.get("id"):
        logger.warning("Event %s (%s) carries no checkout session id", event_id, event_type)
        return Unrecognized(event_type=event_type, event_id=event_id)
    return decode_checkout_session(session, kind, source="webhook", event_id=event_id)


class NotificationIngestionService:
    """Turns webhook deliveries into settlement work, or into nothing.

    Only decides whether a delivery should be settled; the settlement
    itself runs after the webhook has been acknowledged.
    """

    def __init__(self, ledger: SettlementLedger | None = None, settings: Settings | None = None) -> None:
        """Initialize the ingestion service."""
        self.ledger = ledger or SettlementLedger()
        self.settings = settings or get_settings()

    def is_successful(self, record: SettleableNotification) -> bool:
        """Whether a notification reports a payment that can be settled."""
        if isinstance(record, PaymentConfirmed):
            return True
        return record.status in self.settings.successful_checkout_status_set

    async def ingest(
        self, event: dict[str, Any]
    ) -> tuple[IngestionOutcome, SettleableNotification | None]:
        """Decide what to do with a verified Stripe event.

        Returns:
            tuple: The outcome reported to Stripe and, when the action is
                "scheduled", the notification to settle.
        """
        notification = decode_event(event)

        if isinstance(notification, Unrecognized):
            logger.debug("Ignoring webhook event %s (%s)", notification.event_id, notification.event_type)
            return IngestionOutcome(action="ignored"), None

        summary = {"kind": notification.kind, "external_ref": notification.external_ref}

        if not self.is_successful(notification):
            logger.info(
                "Checkout %s completed with payment_status=%s; not settling",
                notification.external_ref,
                notification.status,
            )
            return IngestionOutcome(action="payment_incomplete", notification=summary), None

        existing = await self.ledger.find_order_by_external_ref(notification.external_ref)
        if existing:
            logger.info(
                "Checkout %s already settled as order %s; skipping %s",
                notification.external_ref,
                existing["id"],
                notification.kind,
            )
            return IngestionOutcome(action="already_settled", notification=summary), None

        return IngestionOutcome(action="scheduled", notification=summary), notification
