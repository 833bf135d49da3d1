"""Ticket type model type definitions for database operations."""

from typing import Literal, TypedDict

TicketTier = Literal["general", "vip", "premium", "standing", "seated"]


class TicketType(TypedDict):
    """ticket_types table row representation.

    A purchasable tier of an event holding its own price and shared pool.
    Amounts are integer minor units. available_quantity stays within
    [0, total_quantity] and only settlement decrements it.
    """

    id: str
    event_id: str
    name: str
    price: int
    fees: int
    currency: str
    total_quantity: int
    available_quantity: int
    min_per_order: int
    max_per_order: int
    tier: TicketTier
    is_active: bool
    stripe_product_id: str | None
    stripe_price_id: str | None
