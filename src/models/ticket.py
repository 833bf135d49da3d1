"""Ticket model type definitions for database operations."""

from datetime import datetime
from typing import Literal, TypedDict

TicketStatus = Literal["valid", "used", "cancelled", "transferred"]


class Ticket(TypedDict):
    """Ticket table row representation.

    Tickets are written once, as a batch of exactly order.quantity rows.
    Holder fields are copied from the purchasing profile at issuance.
    """

    id: str
    order_id: str
    ticket_type_id: str
    ticket_number: str
    qr_code: str
    price: int
    holder_name: str | None
    holder_email: str | None
    status: TicketStatus
    issued_at: datetime


class TicketCreate(TypedDict):
    """Data written for each issued ticket."""

    order_id: str
    ticket_type_id: str
    ticket_number: str
    qr_code: str
    price: int
    holder_name: str | None
    holder_email: str | None
    status: TicketStatus
    issued_at: str
