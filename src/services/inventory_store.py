"""Inventory store: ticket types, their shared pools and event price ranges."""

import logging

from supabase import Client

from src.api.middleware.error_handler import NotFoundError, ValidationError
from src.core.config import Settings, get_settings
from src.core.supabase import get_supabase_client
from src.models.event import Event, EventPriceRange
from src.models.ticket_type import TicketType
from src.schemas.ticket import TicketTypeCreate, TicketTypeUpdate
from src.services.settlement_ledger import utc_now_iso

logger = logging.getLogger(__name__)

TICKET_TYPES_TABLE = "ticket_types"
EVENTS_TABLE = "events"

# Edits that change what the event page shows as its price range
_PRICE_FIELDS = frozenset({"price", "fees", "is_active"})


class InventoryStore:
    """Reads and writes ticket types and the events they belong to.

    available_quantity is the one hot counter in the system. It is only
    decremented through decrement_if_available.
    """

    def __init__(self, client: Client | None = None, settings: Settings | None = None) -> None:
        """Initialize the inventory store.

        Args:
            client: Optional Supabase client, defaults to the shared singleton.
            settings: Optional settings, defaults to the cached application settings.
        """
        self.client = client or get_supabase_client()
        self.settings = settings or get_settings()

    async def get_ticket_type(self, ticket_type_id: str) -> TicketType | None:
        """Get a ticket type by ID."""
        response = (
            self.client.table(TICKET_TYPES_TABLE)
            .select("*")
            .eq("id", ticket_type_id)
            .limit(1)
            .execute()
        )
        return response.data[0] if response.data else None

    async def find_by_product(self, product_ref: str) -> TicketType | None:
        """Get the ticket type mapped to a Stripe product."""
        response = (
            self.client.table(TICKET_TYPES_TABLE)
            .select("*")
            .eq("stripe_product_id", product_ref)
            .limit(1)
            .execute()
        )
        return response.data[0] if response.data else None

    async def list_for_event(self, event_id: str, active_only: bool = False) -> list[TicketType]:
        """List the ticket types of an event."""
        query = self.client.table(TICKET_TYPES_TABLE).select("*").eq("event_id", event_id)
        if active_only:
            query = query.eq("is_active", True)
        response = query.execute()
        return response.data or []

    async def get_event(self, event_id: str) -> Event | None:
        """Get an event by ID."""
        response = self.client.table(EVENTS_TABLE).select("*").eq("id", event_id).limit(1).execute()
        return response.data[0] if response.data else None

    async def get_event_by_slug(self, slug: str) -> Event | None:
        """Get an event by its URL slug."""
        response = self.client.table(EVENTS_TABLE).select("*").eq("slug", slug).limit(1).execute()
        return response.data[0] if response.data else None

    async def create_ticket_type(self, event_id: str, data: TicketTypeCreate) -> TicketType:
        """Create a ticket type with a full pool and refresh the event's price range.

        Raises:
            NotFoundError: If the event does not exist.
        """
        event = await self.get_event(event_id)
        if not event:
            raise NotFoundError("Event not found")

        row = data.model_dump()
        row.update(
            {
                "event_id": event_id,
                "currency": data.currency or event.get("currency") or self.settings.default_currency,
                "available_quantity": data.total_quantity,
                "is_active": True,
            }
        )
        response = self.client.table(TICKET_TYPES_TABLE).insert(row).execute()
        ticket_type = response.data[0]

        await self.recompute_price_range(event_id)
        return ticket_type

    async def update_ticket_type(self, ticket_type_id: str, data: TicketTypeUpdate) -> TicketType:
        """Patch a ticket type.

        Changing total_quantity restocks the pool while keeping the number
        already sold: available = max(0, new_total - sold).

        Raises:
            NotFoundError: If the ticket type does not exist.
            ValidationError: If the patch leaves min_per_order above max_per_order.
        """
        ticket_type = await self.get_ticket_type(ticket_type_id)
        if not ticket_type:
            raise NotFoundError("Ticket type not found")

        updates = data.model_dump(exclude_unset=True)
        if not updates:
            return ticket_type

        min_per_order = updates.get("min_per_order", ticket_type["min_per_order"])
        max_per_order = updates.get("max_per_order", ticket_type["max_per_order"])
        if min_per_order > max_per_order:
            raise ValidationError("min_per_order cannot exceed max_per_order")

        if "total_quantity" in updates:
            sold = ticket_type["total_quantity"] - ticket_type["available_quantity"]
            updates["available_quantity"] = max(0, updates["total_quantity"] - sold)

        response = (
            self.client.table(TICKET_TYPES_TABLE)
            .update(updates)
            .eq("id", ticket_type_id)
            .execute()
        )
        updated = response.data[0] if response.data else {**ticket_type, **updates}

        if _PRICE_FIELDS & updates.keys():
            await self.recompute_price_range(ticket_type["event_id"])
        return updated

    async def recompute_price_range(self, event_id: str) -> EventPriceRange | None:
        """Set the event's min/max price to the range of price + fees over active ticket types.

        Display-only and eventually consistent. Leaves the event untouched
        when it has no active ticket types.
        """
        active = await self.list_for_event(event_id, active_only=True)
        if not active:
            return None

        prices = [tt["price"] + tt["fees"] for tt in active]
        patch: EventPriceRange = {
            "min_price": min(prices),
            "max_price": max(prices),
            "updated_at": utc_now_iso(),
        }
        self.client.table(EVENTS_TABLE).update(dict(patch)).eq("id", event_id).execute()
        return patch

    async def decrement_if_available(self, ticket_type_id: str, quantity: int) -> int:
        """Take `quantity` units from a ticket type's pool, floored at zero.

        This is a read followed by a patch, not a compare-and-swap: two
        settlements racing for the last units can both succeed. The floor
        keeps the counter in range; the oversell itself is logged.

        Returns:
            int: The new available quantity.

        Raises:
            NotFoundError: If the ticket type does not exist.
        """
        ticket_type = await self.get_ticket_type(ticket_type_id)
        if not ticket_type:
            raise NotFoundError("Ticket type not found")

        available = ticket_type["available_quantity"]
        if available == 0:
            logger.warning(
                "Oversell on ticket type %s: pool already empty, %d more issued",
                ticket_type_id,
                quantity,
            )
        elif available < quantity:
            logger.warning(
                "Oversell on ticket type %s: %d issued with %d available",
                ticket_type_id,
                quantity,
                available,
            )

        remaining = max(0, available - quantity)
        self.client.table(TICKET_TYPES_TABLE).update(
            {"available_quantity": remaining}
        ).eq("id", ticket_type_id).execute()
        return remaining
