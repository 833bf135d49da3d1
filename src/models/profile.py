"""Profile and payment customer type definitions for database operations."""

from datetime import datetime
from typing import TypedDict


class Profile(TypedDict):
    """Profile table row representation.

    A profile is the local user that orders and tickets belong to. It is
    created on first authenticated use and keyed to the auth user id.
    """

    id: str
    user_id: str
    display_name: str | None
    email: str | None
    created_at: datetime
    updated_at: datetime


class PaymentCustomer(TypedDict):
    """payment_customers table row.

    Maps a Stripe customer to a local profile. Rows are written when a
    checkout is created for a known user and backfilled when a webhook's
    customer is matched to a profile by email.
    """

    stripe_customer_id: str
    user_id: str
    created_at: datetime
