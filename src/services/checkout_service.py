"""Checkout and order business logic service."""

import logging
from typing import Any
from urllib.parse import urlencode

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from src.api.middleware.error_handler import (
    APIError,
    AuthorizationError,
    IdentityUnresolvedError,
    InsufficientInventoryError,
    NotFoundError,
    PartialWriteFailureError,
    PaymentIncompleteError,
    SettlementInProgressError,
    UpstreamUnavailableError,
    ValidationError,
)
from src.core.config import Settings, get_settings
from src.schemas.checkout import CheckoutConfirmRequest, SettlementResult
from src.schemas.notification import SettleableNotification
from src.services.idempotency_guard import IdempotencyGuard
from src.services.identity_resolver import (
    QUANTITY_QUERY_PARAM,
    TICKET_TYPE_METADATA_KEY,
    TICKET_TYPE_QUERY_PARAM,
    IdentityResolver,
    PurchaseIdentity,
)
from src.services.inventory_store import InventoryStore
from src.services.notification_ingestion import (
    NotificationIngestionService,
    decode_checkout_session,
)
from src.services.payment_gateway import StripeGateway
from src.services.profile_service import ProfileService
from src.services.settlement_ledger import SettlementLedger
from src.services.settlement_service import SettlementService

logger = logging.getLogger(__name__)

USER_METADATA_KEY = "user_id"


def is_retryable(error: BaseException) -> bool:
    """Whether a background settlement attempt should be retried after `error`.

    Upstream failures and unresolved identities can succeed on a later
    attempt (the customer mapping or the ticket type may not exist yet). A
    partial write is only retried when it was rolled back cleanly. An order
    whose tickets are still being written is retried until its settlement
    finishes or rolls back.
    """
    if isinstance(error, (UpstreamUnavailableError, IdentityUnresolvedError, SettlementInProgressError)):
        return True
    if isinstance(error, PartialWriteFailureError):
        return error.rolled_back
    return False


class CheckoutService:
    """Service for Stripe checkout, settlement and order access.

    Both entry points into settlement, the webhook push and the
    client confirm, go through settle_notification and therefore share
    the idempotency guard, the identity resolver and the settlement
    transaction.
    """

    def __init__(
        self,
        ledger: SettlementLedger | None = None,
        inventory: InventoryStore | None = None,
        profiles: ProfileService | None = None,
        gateway: StripeGateway | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize checkout service with its collaborators."""
        self.settings = settings or get_settings()
        self.ledger = ledger or SettlementLedger()
        self.inventory = inventory or InventoryStore(settings=self.settings)
        self.profiles = profiles or ProfileService()
        self.gateway = gateway or StripeGateway(settings=self.settings)
        self.guard = IdempotencyGuard(self.ledger, self.settings)
        self.resolver = IdentityResolver(self.inventory, self.profiles, self.gateway)
        self.settlement = SettlementService(self.ledger, self.inventory, self.settings)
        self.ingestion = NotificationIngestionService(self.ledger, self.settings)

    async def create_checkout_session(
        self,
        profile: dict[str, Any],
        ticket_type_id: str,
        quantity: int,
    ) -> dict[str, Any]:
        """Create a Stripe Checkout Session for a ticket purchase.

        The session's success URL and metadata carry everything the
        identity resolver needs to settle it later.

        Args:
            profile: The purchasing profile.
            ticket_type_id: Ticket type to buy.
            quantity: Number of tickets.

        Returns:
            dict: Contains checkout_url and stripe_session_id.

        Raises:
            NotFoundError: If the ticket type or its event does not exist.
            ValidationError: If the ticket type is inactive or the quantity
                is outside its per-order limits.
            InsufficientInventoryError: If fewer tickets are available.
            UpstreamUnavailableError: If Stripe is not configured or fails.
        """
        if not self.settings.stripe_secret_key:
            raise UpstreamUnavailableError("Stripe is not configured. Please set STRIPE_SECRET_KEY environment variable.")

        ticket_type = await self.inventory.get_ticket_type(ticket_type_id)
        if not ticket_type:
            raise NotFoundError(f"Ticket type {ticket_type_id} not found")
        if not ticket_type.get("is_active", False):
            raise ValidationError("Ticket type is no longer on sale")

        min_per_order = ticket_type.get("min_per_order") or 1
        max_per_order = ticket_type.get("max_per_order") or quantity
        if quantity < min_per_order or quantity > max_per_order:
            raise ValidationError(
                f"Quantity must be between {min_per_order} and {max_per_order}"
            )
        if ticket_type.get("available_quantity", 0) < quantity:
            raise InsufficientInventoryError(
                f"Only {ticket_type.get('available_quantity', 0)} tickets left"
            )

        event = await self.inventory.get_event(ticket_type["event_id"])
        if not event:
            raise NotFoundError(f"Event {ticket_type['event_id']} not found")

        customer_id = await self._get_or_create_customer(profile)

        event_url = f"{self.settings.frontend_url.rstrip('/')}/event/{event['slug']}"
        query = urlencode({TICKET_TYPE_QUERY_PARAM: ticket_type["id"], QUANTITY_QUERY_PARAM: quantity})
        currency = ticket_type.get("currency") or self.settings.default_currency

        if ticket_type.get("stripe_price_id"):
            line_item: dict[str, Any] = {"price": ticket_type["stripe_price_id"], "quantity": quantity}
        else:
            line_item = {
                "price_data": {
                    "currency": currency,
                    "unit_amount": ticket_type["price"] + ticket_type.get("fees", 0),
                    "product_data": {"name": f"{event.get('title', 'Event')} - {ticket_type['name']}"},
                },
                "quantity": quantity,
            }

        checkout_params: dict[str, Any] = {
            "mode": "payment",
            "customer": customer_id,
            "line_items": [line_item],
            "success_url": f"{event_url}/success?{query}&session_id={{CHECKOUT_SESSION_ID}}",
            "cancel_url": event_url,
            "metadata": {
                TICKET_TYPE_METADATA_KEY: ticket_type["id"],
                QUANTITY_QUERY_PARAM: str(quantity),
                USER_METADATA_KEY: profile["id"],
            },
        }

        stripe_session = await self.gateway.create_checkout_session(checkout_params)
        logger.info(
            "Created checkout %s for profile %s: %d x %s",
            stripe_session["id"],
            profile["id"],
            quantity,
            ticket_type["id"],
        )
        return {
            "checkout_url": stripe_session["url"],
            "stripe_session_id": stripe_session["id"],
        }

    async def _get_or_create_customer(self, profile: dict[str, Any]) -> str:
        customer_id = await self.profiles.get_customer_id_for_profile(profile["id"])
        if customer_id:
            return customer_id

        email = profile.get("email")
        customer = await self.gateway.find_customer_by_email(email) if email else None
        if not customer:
            customer = await self.gateway.create_customer(email, profile["id"])
        await self.profiles.link_customer(customer["id"], profile["id"])
        return customer["id"]

    async def settle_notification(
        self,
        record: SettleableNotification,
        user: dict[str, Any] | None = None,
    ) -> SettlementResult:
        """Settle a successful completion notification exactly once.

        Args:
            record: A notification already known to report a successful payment.
            user: The purchasing profile when the caller already knows it.

        Returns:
            SettlementResult: The settled order, new or existing.
        """
        existing = await self.guard.already_settled(record.external_ref)
        if existing:
            return await self.guard.existing_result(existing)

        identity = await self.resolver.resolve(record, user=user)
        return await self._settle_resolved(record, identity)

    async def _settle_resolved(
        self, record: SettleableNotification, identity: PurchaseIdentity
    ) -> SettlementResult:
        duplicate = await self.guard.recent_duplicate(
            identity.user["id"], identity.event_id, record.external_ref
        )
        if duplicate:
            return await self.guard.existing_result(duplicate)

        return await self.settlement.settle(
            identity.user,
            identity.event_id,
            identity.ticket_type,
            identity.quantity,
            record.external_ref,
        )

    async def process_notification(self, record: SettleableNotification) -> SettlementResult | None:
        """Settle a pushed notification in the background.

        Retryable failures are retried with exponential backoff a bounded
        number of times. Whatever is still failing afterwards is logged with
        the raw record and written to settlement_failures; nothing is raised
        because the webhook has already been acknowledged.
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.settings.settlement_max_attempts),
            wait=wait_exponential(
                multiplier=1,
                min=self.settings.settlement_retry_min_wait,
                max=self.settings.settlement_retry_max_wait,
            ),
            retry=retry_if_exception(is_retryable),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await self.settle_notification(record)
        except Exception as e:
            raw = record.model_dump(mode="json")
            if isinstance(e, APIError):
                error_type = e.error_type
                logger.error(
                    "Giving up on %s after %d attempt(s): %s: %s; record=%s",
                    record.external_ref,
                    retrying.statistics.get("attempt_number", 1),
                    error_type,
                    e.message,
                    raw,
                )
            else:
                error_type = "unexpected_error"
                logger.exception("Unexpected error settling %s; record=%s", record.external_ref, raw)

            if not (isinstance(e, PartialWriteFailureError) and not e.rolled_back):
                await self.ledger.record_failure(record.external_ref, error_type, str(e), raw)
        return None

    async def confirm_purchase(
        self, profile: dict[str, Any], request: CheckoutConfirmRequest
    ) -> SettlementResult:
        """Settle a checkout the buyer just returned from.

        Args:
            profile: The authenticated caller's profile.
            request: The checkout session token and what the client believes it bought.

        Raises:
            NotFoundError: If the checkout does not exist.
            AuthorizationError: If the checkout belongs to another user.
            PaymentIncompleteError: If the checkout has not been paid.
            ValidationError: If the client's ticket type or quantity disagree
                with the checkout.
        """
        existing = await self.guard.already_settled(request.session_token)
        if existing:
            if existing.get("user_id") != profile["id"]:
                raise AuthorizationError("This purchase belongs to another user")
            return await self.guard.existing_result(existing)

        session = await self.gateway.get_checkout_session(request.session_token)
        if not session:
            raise NotFoundError(f"Checkout {request.session_token} not found")

        record = decode_checkout_session(session, "checkout_completed", source="client_confirm")
        if not self.ingestion.is_successful(record):
            raise PaymentIncompleteError(
                f"Checkout {record.external_ref} has payment_status={record.status}"
            )

        await self._check_purchase_owner(record, profile)

        identity = await self.resolver.resolve(record, user=profile)
        if identity.ticket_type["id"] != request.ticket_type_id or identity.quantity != request.quantity:
            logger.warning(
                "Confirm of %s by %s disagrees with checkout: sent %s x%d, checkout %s x%d",
                record.external_ref,
                profile["id"],
                request.ticket_type_id,
                request.quantity,
                identity.ticket_type["id"],
                identity.quantity,
            )
            raise ValidationError("Ticket type or quantity does not match the checkout")

        return await self._settle_resolved(record, identity)

    async def _check_purchase_owner(self, record: SettleableNotification, profile: dict[str, Any]) -> None:
        owner_id = record.metadata.get(USER_METADATA_KEY)
        if owner_id and owner_id != profile["id"]:
            raise AuthorizationError("This purchase belongs to another user")
        if record.customer_ref:
            customer_profile = await self.profiles.get_profile_for_customer(record.customer_ref)
            if customer_profile and customer_profile["id"] != profile["id"]:
                raise AuthorizationError("This purchase belongs to another user")

    async def get_order(self, order_id: str) -> dict[str, Any] | None:
        """Get an order by ID."""
        return await self.ledger.get_order(order_id)

    async def get_orders_for_profile(self, profile_id: str) -> list[dict[str, Any]]:
        """Get all orders for a profile, newest first."""
        return await self.ledger.list_orders_for_user(profile_id)

    async def can_access_order(self, order_id: str, profile_id: str) -> bool:
        """Check if a profile owns an order."""
        order = await self.get_order(order_id)
        if not order:
            return False
        return order.get("user_id") == profile_id
