"""Database model type definitions."""

from src.models.event import Event
from src.models.order import Order
from src.models.profile import PaymentCustomer, Profile
from src.models.ticket import Ticket
from src.models.ticket_type import TicketType

__all__ = [
    "Event",
    "Order",
    "PaymentCustomer",
    "Profile",
    "Ticket",
    "TicketType",
]
