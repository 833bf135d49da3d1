"""Settlement ledger: orders, issued tickets and reconciliation records."""

import logging
import secrets
import time
from datetime import datetime, timezone
from typing import Any

from supabase import Client

from src.api.middleware.error_handler import SettlementInProgressError
from src.core.supabase import get_supabase_client
from src.models.order import OrderCreate
from src.models.ticket import TicketCreate
from src.schemas.checkout import SettlementResult

logger = logging.getLogger(__name__)

ORDERS_TABLE = "orders"
TICKETS_TABLE = "tickets"
FAILURES_TABLE = "settlement_failures"

_BASE36 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


def _to_base36(value: int) -> str:
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits)) or "0"


def _random_suffix(length: int) -> str:
    return "".join(secrets.choice(_BASE36) for _ in range(length))


def generate_order_number() -> str:
    """Generate a human-readable order number like NP-LX3K9Q2A-7F2B."""
    return f"NP-{_to_base36(int(time.time() * 1000))}-{_random_suffix(4)}"


def generate_ticket_number() -> str:
    """Generate a human-readable ticket number like TKT-LX3K9Q2A-9ZK41M."""
    return f"TKT-{_to_base36(int(time.time() * 1000))}-{_random_suffix(6)}"


def generate_qr_code() -> str:
    """Generate the opaque token encoded in a ticket's QR code."""
    return secrets.token_urlsafe(24)


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


class SettlementLedger:
    """Durable record of settled orders and the tickets they own.

    The orders table carries a unique constraint on
    stripe_checkout_session_id; every write path relies on it to keep one
    order per external transaction reference.
    """

    def __init__(self, client: Client | None = None) -> None:
        """Initialize the ledger.

        Args:
            client: Optional Supabase client, defaults to the shared singleton.
        """
        self.client = client or get_supabase_client()

    async def find_order_by_external_ref(self, external_ref: str) -> dict[str, Any] | None:
        """Exact-match lookup of an order by its external transaction reference."""
        response = (
            self.client.table(ORDERS_TABLE)
            .select("*")
            .eq("stripe_checkout_session_id", external_ref)
            .limit(1)
            .execute()
        )
        return response.data[0] if response.data else None

    async def find_latest_order(
        self, user_id: str, event_id: str, since: datetime
    ) -> dict[str, Any] | None:
        """Most recent order by a user for an event created at or after `since`."""
        response = (
            self.client.table(ORDERS_TABLE)
            .select("*")
            .eq("user_id", user_id)
            .eq("event_id", event_id)
            .gte("created_at", since.isoformat())
            .order("created_at", desc=True)
            .limit(1)
            .execute()
        )
        return response.data[0] if response.data else None

    async def get_order(self, order_id: str) -> dict[str, Any] | None:
        """Get an order by ID."""
        response = (
            self.client.table(ORDERS_TABLE)
            .select("*")
            .eq("id", order_id)
            .limit(1)
            .execute()
        )
        return response.data[0] if response.data else None

    async def list_orders_for_user(self, user_id: str) -> list[dict[str, Any]]:
        """All orders of a user, newest first."""
        response = (
            self.client.table(ORDERS_TABLE)
            .select("*")
            .eq("user_id", user_id)
            .order("created_at", desc=True)
            .execute()
        )
        return response.data or []

    async def list_tickets_for_order(self, order_id: str) -> list[dict[str, Any]]:
        """Tickets owned by an order, in issue order."""
        response = (
            self.client.table(TICKETS_TABLE)
            .select("*")
            .eq("order_id", order_id)
            .order("ticket_number")
            .execute()
        )
        return response.data or []

    async def list_ticket_ids(self, order_id: str) -> list[str]:
        """IDs of the tickets owned by an order."""
        return [ticket["id"] for ticket in await self.list_tickets_for_order(order_id)]

    async def settled_result(self, order: dict[str, Any]) -> SettlementResult:
        """Identifiers of an existing order, once all of its tickets are written.

        An order with fewer tickets than its quantity belongs to a settlement
        that is still writing, or that is about to roll back.

        Raises:
            SettlementInProgressError: If the order's tickets are incomplete.
        """
        ticket_ids = await self.list_ticket_ids(order["id"])
        if len(ticket_ids) < order["quantity"]:
            raise SettlementInProgressError(
                f"Order {order['id']} has {len(ticket_ids)} of {order['quantity']} tickets",
                order_id=order["id"],
            )
        return SettlementResult(order_id=order["id"], ticket_ids=ticket_ids, already_settled=True)

    def insert_order(self, order: OrderCreate) -> dict[str, Any]:
        """Insert an order row.

        Raises:
            postgrest.exceptions.APIError: On any database error, including
                a unique violation when the reference is already settled.
        """
        response = self.client.table(ORDERS_TABLE).insert(dict(order)).execute()
        return response.data[0]

    def insert_tickets(self, tickets: list[TicketCreate]) -> list[dict[str, Any]]:
        """Insert a batch of ticket rows in one request."""
        response = self.client.table(TICKETS_TABLE).insert([dict(t) for t in tickets]).execute()
        return response.data or []

    def delete_order(self, order_id: str) -> None:
        """Delete an order and its tickets. Only used to undo a failed settlement."""
        self.client.table(TICKETS_TABLE).delete().eq("order_id", order_id).execute()
        self.client.table(ORDERS_TABLE).delete().eq("id", order_id).execute()

    def settle_order(self, params: dict[str, Any]) -> dict[str, Any]:
        """Run the settle_order database function in a single transaction."""
        response = self.client.rpc("settle_order", params).execute()
        return response.data

    async def record_failure(
        self,
        external_ref: str,
        error_type: str,
        error_message: str,
        notification: dict[str, Any] | None = None,
    ) -> None:
        """Record a notification that could not be settled, for manual reconciliation.

        Never raises: a failure to record is logged so that the original
        error stays the one surfaced to the caller.
        """
        row = {
            "stripe_checkout_session_id": external_ref,
            "error_type": error_type,
            "error_message": error_message,
            "notification": notification or {},
            "created_at": utc_now_iso(),
        }
        try:
            self.client.table(FAILURES_TABLE).insert(row).execute()
        except Exception:
            logger.exception(
                "Could not record settlement failure for %s (%s): %s",
                external_ref,
                error_type,
                row,
            )
