"""Post-sale ticket reads: a holder's tickets and door-scan lookups."""

import logging
from typing import Any

from supabase import Client

from src.api.middleware.error_handler import AuthorizationError, NotFoundError
from src.core.supabase import get_supabase_client
from src.services.inventory_store import TICKET_TYPES_TABLE
from src.services.settlement_ledger import ORDERS_TABLE, TICKETS_TABLE

logger = logging.getLogger(__name__)


class TicketService:
    """Service for reading issued tickets."""

    def __init__(self, client: Client | None = None) -> None:
        """Initialize ticket service with Supabase client."""
        self.client = client or get_supabase_client()

    async def list_tickets_for_user(self, profile_id: str) -> list[dict[str, Any]]:
        """All tickets on the orders of a profile.

        Args:
            profile_id: The profile's ID.

        Returns:
            list[dict]: Ticket rows, grouped by order.
        """
        orders = (
            self.client.table(ORDERS_TABLE)
            .select("id")
            .eq("user_id", profile_id)
            .order("created_at", desc=True)
            .execute()
        )
        order_ids = [order["id"] for order in orders.data or []]
        if not order_ids:
            return []

        response = (
            self.client.table(TICKETS_TABLE)
            .select("*")
            .in_("order_id", order_ids)
            .order("ticket_number")
            .execute()
        )
        return response.data or []

    async def get_ticket(self, ticket_id: str, profile_id: str) -> dict[str, Any]:
        """Get a ticket owned by a profile.

        Raises:
            NotFoundError: If the ticket does not exist.
            AuthorizationError: If the ticket belongs to another profile's order.
        """
        response = self.client.table(TICKETS_TABLE).select("*").eq("id", ticket_id).limit(1).execute()
        if not response.data:
            raise NotFoundError(f"Ticket {ticket_id} not found")
        ticket = response.data[0]

        order = (
            self.client.table(ORDERS_TABLE)
            .select("user_id")
            .eq("id", ticket["order_id"])
            .limit(1)
            .execute()
        )
        if not order.data or order.data[0]["user_id"] != profile_id:
            raise AuthorizationError("You do not have access to this ticket")
        return ticket

    async def get_ticket_by_qr(self, qr_code: str) -> dict[str, Any]:
        """Look up a ticket by its QR token for admission.

        Returns:
            dict: The ticket plus the name and event of its ticket type.

        Raises:
            NotFoundError: If no ticket carries this QR token.
        """
        response = self.client.table(TICKETS_TABLE).select("*").eq("qr_code", qr_code).limit(1).execute()
        if not response.data:
            logger.info("QR lookup miss")
            raise NotFoundError("Ticket not found")
        ticket = dict(response.data[0])

        ticket_type = (
            self.client.table(TICKET_TYPES_TABLE)
            .select("*")
            .eq("id", ticket["ticket_type_id"])
            .limit(1)
            .execute()
        )
        if ticket_type.data:
            ticket["ticket_type"] = ticket_type.data[0].get("name")
            ticket["event_id"] = ticket_type.data[0].get("event_id")
        return ticket
