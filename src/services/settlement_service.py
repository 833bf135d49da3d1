"""Settlement transaction: one order, N tickets and the inventory decrement."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from postgrest.exceptions import APIError as PostgrestAPIError

from src.api.middleware.error_handler import (
    InsufficientInventoryError,
    PartialWriteFailureError,
    ValidationError,
)
from src.core.config import Settings, get_settings
from src.core.supabase import is_unique_violation
from src.models.order import OrderCreate
from src.models.ticket import TicketCreate
from src.schemas.checkout import SettlementResult
from src.services.inventory_store import InventoryStore
from src.services.settlement_ledger import (
    SettlementLedger,
    generate_order_number,
    generate_qr_code,
    generate_ticket_number,
    utc_now_iso,
)

logger = logging.getLogger(__name__)

# Exceptions raised by the settle_order database function
INSUFFICIENT_INVENTORY = "insufficient_inventory"
CONCURRENT_SETTLEMENT = "concurrent_settlement"


@dataclass(frozen=True)
class OrderAmounts:
    """Order totals in minor units. Tax is always zero."""

    subtotal: int
    fees: int
    tax: int
    total: int


def compute_amounts(ticket_type: dict[str, Any], quantity: int) -> OrderAmounts:
    """Price an order of `quantity` tickets of a ticket type."""
    subtotal = ticket_type["price"] * quantity
    fees = ticket_type["fees"] * quantity
    return OrderAmounts(subtotal=subtotal, fees=fees, tax=0, total=subtotal + fees)


class SettlementService:
    """Writes a settled purchase.

    Callers must have checked the idempotency guard first. Two store
    strategies are available through SETTLEMENT_MODE:

    transactional
        The settle_order database function decrements inventory with a
        check and writes the order and its tickets in one transaction.
        Nothing can oversell and nothing can be half-written.
    sequential
        Order, tickets and inventory are separate writes, as on a document
        store. A failure after the order insert rolls the attempt back; the
        inventory decrement floors at zero and logs an oversell instead of
        failing.

    In both modes the unique constraint on the external reference turns a
    concurrent duplicate into an already-settled result.
    """

    def __init__(
        self,
        ledger: SettlementLedger | None = None,
        inventory: InventoryStore | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize the settlement service."""
        self.ledger = ledger or SettlementLedger()
        self.inventory = inventory or InventoryStore()
        self.settings = settings or get_settings()

    async def settle(
        self,
        user: dict[str, Any],
        event_id: str,
        ticket_type: dict[str, Any],
        quantity: int,
        external_ref: str,
    ) -> SettlementResult:
        """Persist the order, its tickets and the inventory decrement.

        Args:
            user: Purchasing profile; holder name and email are copied onto tickets.
            event_id: Event the ticket type belongs to.
            ticket_type: Ticket type row being purchased.
            quantity: Number of tickets, at least 1.
            external_ref: Stripe Checkout Session ID.

        Returns:
            SettlementResult: The new order's identifiers, or an existing
                order's identifiers with already_settled=True.

        Raises:
            ValidationError: If quantity is below 1.
            InsufficientInventoryError: Transactional mode, when the pool is short.
            SettlementInProgressError: When another settlement of the same
                reference has written its order but not all of its tickets.
            PartialWriteFailureError: Sequential mode, when writes after the
                order insert failed.
        """
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1")

        amounts = compute_amounts(ticket_type, quantity)
        order = self._build_order(user, event_id, ticket_type, quantity, external_ref, amounts)
        tickets = self._build_tickets(user, ticket_type, quantity)

        if self.settings.settlement_mode == "transactional":
            result = await self._settle_transactional(order, tickets, ticket_type, quantity)
        else:
            result = await self._settle_sequential(order, tickets, ticket_type, quantity)

        if result.already_settled:
            logger.info("Checkout %s was already settled as order %s", external_ref, result.order_id)
        else:
            logger.info(
                "Settled checkout %s: order %s, %d x %s, total %d %s",
                external_ref,
                result.order_id,
                quantity,
                ticket_type["id"],
                amounts.total,
                order["currency"],
            )
        return result

    def _build_order(
        self,
        user: dict[str, Any],
        event_id: str,
        ticket_type: dict[str, Any],
        quantity: int,
        external_ref: str,
        amounts: OrderAmounts,
    ) -> OrderCreate:
        now = utc_now_iso()
        return {
            "order_number": generate_order_number(),
            "user_id": user["id"],
            "event_id": event_id,
            "ticket_type_id": ticket_type["id"],
            "stripe_checkout_session_id": external_ref,
            "quantity": quantity,
            "subtotal": amounts.subtotal,
            "fees": amounts.fees,
            "tax": amounts.tax,
            "total_amount": amounts.total,
            "currency": ticket_type.get("currency") or self.settings.default_currency,
            "status": "confirmed",
            "payment_status": "completed",
            "created_at": now,
            "updated_at": now,
        }

    def _build_tickets(
        self, user: dict[str, Any], ticket_type: dict[str, Any], quantity: int
    ) -> list[TicketCreate]:
        issued_at = utc_now_iso()
        return [
            {
                "order_id": "",
                "ticket_type_id": ticket_type["id"],
                "ticket_number": generate_ticket_number(),
                "qr_code": generate_qr_code(),
                "price": ticket_type["price"],
                "holder_name": user.get("display_name"),
                "holder_email": user.get("email"),
                "status": "valid",
                "issued_at": issued_at,
            }
            for _ in range(quantity)
        ]

    async def _settle_transactional(
        self,
        order: OrderCreate,
        tickets: list[TicketCreate],
        ticket_type: dict[str, Any],
        quantity: int,
    ) -> SettlementResult:
        params = {
            "p_order": dict(order),
            "p_tickets": [{k: v for k, v in t.items() if k != "order_id"} for t in tickets],
            "p_ticket_type_id": ticket_type["id"],
            "p_quantity": quantity,
        }
        external_ref = order["stripe_checkout_session_id"]
        try:
            data = self.ledger.settle_order(params)
        except PostgrestAPIError as e:
            if e.message == INSUFFICIENT_INVENTORY:
                # A duplicate that waited on the winner's row lock sees the pool the winner emptied
                if await self.ledger.find_order_by_external_ref(external_ref):
                    return await self._existing_settlement(external_ref, e)
                raise InsufficientInventoryError(
                    f"Not enough tickets left for {ticket_type['id']} to cover {quantity}"
                ) from e
            if e.message == CONCURRENT_SETTLEMENT:
                return await self._existing_settlement(external_ref, e)
            raise

        return SettlementResult(
            order_id=data["order_id"],
            ticket_ids=list(data.get("ticket_ids") or []),
            already_settled=bool(data.get("already_settled")),
        )

    async def _settle_sequential(
        self,
        order: OrderCreate,
        tickets: list[TicketCreate],
        ticket_type: dict[str, Any],
        quantity: int,
    ) -> SettlementResult:
        external_ref = order["stripe_checkout_session_id"]
        try:
            created = self.ledger.insert_order(order)
        except PostgrestAPIError as e:
            if not is_unique_violation(e):
                raise
            return await self._existing_settlement(external_ref, e)

        order_id = created["id"]
        try:
            for ticket in tickets:
                ticket["order_id"] = order_id
            issued = self.ledger.insert_tickets(tickets)
            if len(issued) != quantity:
                raise RuntimeError(f"Expected {quantity} tickets, wrote {len(issued)}")
            await self.inventory.decrement_if_available(ticket_type["id"], quantity)
        except (Exception, asyncio.CancelledError) as e:
            rolled_back = self._roll_back(order_id)
            if not rolled_back:
                await self.ledger.record_failure(
                    external_ref,
                    "partial_write_failure",
                    f"{type(e).__name__}: {e}",
                    {"order_id": order_id, "ticket_type_id": ticket_type["id"], "quantity": quantity},
                )
            if isinstance(e, asyncio.CancelledError):
                raise
            raise PartialWriteFailureError(
                f"Settlement of {external_ref} failed after the order was written",
                order_id=order_id,
                rolled_back=rolled_back,
            ) from e

        return SettlementResult(
            order_id=order_id,
            ticket_ids=[ticket["id"] for ticket in issued],
        )

    async def _existing_settlement(self, external_ref: str, error: PostgrestAPIError) -> SettlementResult:
        """Result of the settlement that won a race for `external_ref`.

        Raises:
            SettlementInProgressError: If the winner has not written all of
                its tickets yet.
        """
        existing = await self.ledger.find_order_by_external_ref(external_ref)
        if not existing:
            raise error
        logger.info("Lost settlement race for %s to order %s", external_ref, existing["id"])
        return await self.ledger.settled_result(existing)

    def _roll_back(self, order_id: str) -> bool:
        try:
            self.ledger.delete_order(order_id)
        except Exception:
            logger.exception("Rollback of order %s failed; left for reconciliation", order_id)
            return False
        logger.warning("Rolled back order %s after a failed settlement", order_id)
        return True
