"""Order model type definitions for database operations."""

from datetime import datetime
from typing import Literal, TypedDict

# Settlement writes confirmed orders with a completed payment and nothing else
OrderStatus = Literal["confirmed"]
PaymentStatus = Literal["completed"]


class Order(TypedDict):
    """Order table row representation.

    stripe_checkout_session_id is the external transaction reference and
    carries a unique constraint: one order per reference.
    """

    id: str
    order_number: str
    user_id: str
    event_id: str
    ticket_type_id: str
    stripe_checkout_session_id: str
    quantity: int
    subtotal: int
    fees: int
    tax: int
    total_amount: int
    currency: str
    status: OrderStatus
    payment_status: PaymentStatus
    created_at: datetime
    updated_at: datetime


class OrderCreate(TypedDict):
    """Data written when a settlement creates an order."""

    order_number: str
    user_id: str
    event_id: str
    ticket_type_id: str
    stripe_checkout_session_id: str
    quantity: int
    subtotal: int
    fees: int
    tax: int
    total_amount: int
    currency: str
    status: OrderStatus
    payment_status: PaymentStatus
    created_at: str
    updated_at: str
