"""Event model type definitions.

Events are owned by the catalog side of the marketplace. Settlement only
reads them and patches the displayed price range.
"""

from datetime import datetime
from typing import TypedDict


class Event(TypedDict):
    """Event table row fields used by the settlement engine."""

    id: str
    slug: str
    title: str
    min_price: int
    max_price: int
    currency: str
    updated_at: datetime


class EventPriceRange(TypedDict):
    """Patch applied when ticket type prices change."""

    min_price: int
    max_price: int
    updated_at: str
