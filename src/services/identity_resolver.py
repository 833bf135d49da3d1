"""Resolve which ticket type, user and quantity a completion notification refers to.

Ticket types are resolved by an ordered chain of steps. Each step returns
a match or None and is only tried when every earlier step came back
empty, so precedence is simply the order of `IdentityResolver.steps`:

1. product_mapping   - Stripe product ID stored on the ticket type
2. checkout_metadata - ticket_type_id written into the checkout's metadata
3. return_url_query  - ticketTypeId query parameter of the checkout's success_url
4. event_slug        - /event/<slug>/ path of the success_url, when that event
                       has exactly one active ticket type (low confidence)
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import parse_qs, urlparse

from src.api.middleware.error_handler import IdentityUnresolvedError
from src.schemas.notification import CompletionRecord
from src.services.inventory_store import InventoryStore
from src.services.payment_gateway import StripeGateway
from src.services.profile_service import ProfileService

logger = logging.getLogger(__name__)

TICKET_TYPE_METADATA_KEY = "ticket_type_id"
TICKET_TYPE_QUERY_PARAM = "ticketTypeId"
QUANTITY_QUERY_PARAM = "quantity"
EVENT_PATH_SEGMENT = "event"


@dataclass
class TicketTypeMatch:
    """A ticket type found by one resolution step."""

    ticket_type: dict[str, Any]
    step: str
    low_confidence: bool = False


@dataclass
class PurchaseIdentity:
    """Everything settlement needs to know about who bought what."""

    ticket_type: dict[str, Any]
    user: dict[str, Any]
    quantity: int
    step: str

    @property
    def event_id(self) -> str:
        """Event the purchased ticket type belongs to."""
        return self.ticket_type["event_id"]


@dataclass
class ResolutionContext:
    """Per-notification state shared by the resolution steps.

    Checkout metadata and the return URL come from the notification when
    it carried them; otherwise the checkout is fetched from Stripe at most
    once.
    """

    record: CompletionRecord
    gateway: StripeGateway
    _checkout: dict[str, Any] | None = field(default=None, init=False)
    _fetched: bool = field(default=False, init=False)

    async def _fetch_checkout(self) -> dict[str, Any] | None:
        if not self._fetched:
            self._fetched = True
            self._checkout = await self.gateway.get_checkout_session(self.record.external_ref)
        return self._checkout

    async def metadata(self) -> dict[str, Any]:
        if self.record.metadata:
            return dict(self.record.metadata)
        checkout = await self._fetch_checkout()
        return (checkout or {}).get("metadata") or {}

    async def return_url(self) -> str | None:
        if self.record.return_url:
            return self.record.return_url
        checkout = await self._fetch_checkout()
        return (checkout or {}).get("success_url")


ResolverStep = Callable[[ResolutionContext], Awaitable[TicketTypeMatch | None]]


def parse_quantity(return_url: str | None) -> int:
    """Quantity from the return URL's quantity parameter, else 1."""
    if not return_url:
        return 1
    values = parse_qs(urlparse(return_url).query).get(QUANTITY_QUERY_PARAM)
    if not values:
        return 1
    try:
        quantity = int(values[0])
    except ValueError:
        logger.warning("Ignoring non-numeric quantity %r in return URL", values[0])
        return 1
    return quantity if quantity > 0 else 1


def parse_event_slug(return_url: str | None) -> str | None:
    """Event slug from a /event/<slug>/... return URL path."""
    if not return_url:
        return None
    segments = [s for s in urlparse(return_url).path.split("/") if s]
    for index, segment in enumerate(segments[:-1]):
        if segment == EVENT_PATH_SEGMENT:
            return segments[index + 1]
    return None


class IdentityResolver:
    """Resolves the (ticket type, user, quantity) triple behind a notification."""

    def __init__(
        self,
        inventory: InventoryStore | None = None,
        profiles: ProfileService | None = None,
        gateway: StripeGateway | None = None,
    ) -> None:
        """Initialize the resolver.

        Args:
            inventory: Ticket type and event lookups.
            profiles: Profile and customer mapping lookups.
            gateway: Stripe lookups for customers and checkouts.
        """
        self.inventory = inventory or InventoryStore()
        self.profiles = profiles or ProfileService()
        self.gateway = gateway or StripeGateway()
        self.steps: list[tuple[str, ResolverStep]] = [
            ("product_mapping", self._from_product_mapping),
            ("checkout_metadata", self._from_checkout_metadata),
            ("return_url_query", self._from_return_url_query),
            ("event_slug", self._from_event_slug),
        ]

    async def resolve(
        self, record: CompletionRecord, user: dict[str, Any] | None = None
    ) -> PurchaseIdentity:
        """Resolve ticket type, user and quantity for a completion record.

        Args:
            record: The normalized notification.
            user: Profile of the caller when already known (client confirm).

        Raises:
            IdentityUnresolvedError: If the ticket type or user cannot be determined.
            UpstreamUnavailableError: If a Stripe lookup failed in a retryable way.
        """
        context = ResolutionContext(record=record, gateway=self.gateway)
        match = await self.resolve_ticket_type(context)
        if user is None:
            user = await self.resolve_user(record)
        quantity = parse_quantity(await context.return_url())

        logger.info(
            "Resolved %s to ticket type %s x%d for user %s via %s",
            record.external_ref,
            match.ticket_type["id"],
            quantity,
            user["id"],
            match.step,
        )
        return PurchaseIdentity(
            ticket_type=match.ticket_type,
            user=user,
            quantity=quantity,
            step=match.step,
        )

    async def resolve_ticket_type(self, context: ResolutionContext) -> TicketTypeMatch:
        """Run the resolution steps in order and return the first match."""
        for name, step in self.steps:
            match = await step(context)
            if match is not None:
                if match.low_confidence:
                    logger.warning(
                        "Low-confidence ticket type match for %s: %s via %s",
                        context.record.external_ref,
                        match.ticket_type["id"],
                        name,
                    )
                return match
            logger.debug("Step %s found nothing for %s", name, context.record.external_ref)

        raise IdentityUnresolvedError(
            f"No ticket type found for checkout {context.record.external_ref}"
        )

    async def resolve_user(self, record: CompletionRecord) -> dict[str, Any]:
        """Resolve the purchasing profile.

        Tries the stored customer mapping first, then matches the customer's
        email against profiles and backfills the mapping on success.

        Raises:
            IdentityUnresolvedError: If no local profile matches.
        """
        customer_ref = record.customer_ref
        email = None

        if customer_ref:
            profile = await self.profiles.get_profile_for_customer(customer_ref)
            if profile:
                return profile
            email = await self.gateway.get_customer_email(customer_ref)

        email = email or record.customer_email
        if email:
            profile = await self.profiles.find_profile_by_email(email)
            if profile:
                if customer_ref:
                    await self.profiles.link_customer(customer_ref, profile["id"])
                return profile

        raise IdentityUnresolvedError(
            f"No local user for customer {customer_ref or '<none>'} on checkout {record.external_ref}"
        )

    async def _from_product_mapping(self, context: ResolutionContext) -> TicketTypeMatch | None:
        product_ref = context.record.product_ref
        if not product_ref:
            return None
        ticket_type = await self.inventory.find_by_product(product_ref)
        return TicketTypeMatch(ticket_type, "product_mapping") if ticket_type else None

    async def _from_checkout_metadata(self, context: ResolutionContext) -> TicketTypeMatch | None:
        ticket_type_id = (await context.metadata()).get(TICKET_TYPE_METADATA_KEY)
        if not ticket_type_id:
            return None
        ticket_type = await self.inventory.get_ticket_type(str(ticket_type_id))
        return TicketTypeMatch(ticket_type, "checkout_metadata") if ticket_type else None

    async def _from_return_url_query(self, context: ResolutionContext) -> TicketTypeMatch | None:
        return_url = await context.return_url()
        if not return_url:
            return None
        values = parse_qs(urlparse(return_url).query).get(TICKET_TYPE_QUERY_PARAM)
        if not values:
            return None
        ticket_type = await self.inventory.get_ticket_type(values[0])
        return TicketTypeMatch(ticket_type, "return_url_query") if ticket_type else None

    async def _from_event_slug(self, context: ResolutionContext) -> TicketTypeMatch | None:
        slug = parse_event_slug(await context.return_url())
        if not slug:
            return None
        event = await self.inventory.get_event_by_slug(slug)
        if not event:
            return None
        active = await self.inventory.list_for_event(event["id"], active_only=True)
        if len(active) != 1:
            logger.info(
                "Event %s has %d active ticket types; cannot pick one for %s",
                slug,
                len(active),
                context.record.external_ref,
            )
            return None
        return TicketTypeMatch(active[0], "event_slug", low_confidence=True)
