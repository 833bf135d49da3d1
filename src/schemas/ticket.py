"""Ticket and ticket type Pydantic schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator

from src.models.ticket_type import TicketTier


class TicketResponse(BaseModel):
    """An issued ticket as returned to its holder."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    order_id: str
    ticket_type_id: str
    ticket_number: str
    qr_code: str
    price: int
    holder_name: str | None = None
    holder_email: str | None = None
    status: str
    issued_at: datetime


class TicketListResponse(BaseModel):
    """Schema for ticket list API responses."""

    model_config = ConfigDict(from_attributes=True)

    items: list[TicketResponse] = Field(description="List of tickets")


class TicketValidationResponse(BaseModel):
    """Door-scan lookup result for a QR code."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    ticket_number: str
    status: str
    ticket_type: str | None = None
    event_id: str | None = None


class TicketTypeCreate(BaseModel):
    """Schema for creating a ticket type under an event."""

    model_config = ConfigDict(from_attributes=True)

    name: str = Field(min_length=1, max_length=255)
    price: int = Field(ge=0, description="Unit price in minor units")
    fees: int = Field(default=0, ge=0, description="Unit fee in minor units")
    currency: str | None = Field(default=None, description="Currency code, defaults to the configured currency")
    total_quantity: int = Field(ge=0)
    min_per_order: int = Field(default=1, ge=1)
    max_per_order: int = Field(default=10, ge=1)
    tier: TicketTier = "general"
    stripe_product_id: str | None = None
    stripe_price_id: str | None = None

    @model_validator(mode="after")
    def check_order_limits(self) -> "TicketTypeCreate":
        """Reject min_per_order above max_per_order."""
        if self.min_per_order > self.max_per_order:
            raise ValueError("min_per_order cannot exceed max_per_order")
        return self


class TicketTypeUpdate(BaseModel):
    """Schema for patching a ticket type. Omitted fields are unchanged."""

    model_config = ConfigDict(from_attributes=True)

    name: str | None = Field(default=None, min_length=1, max_length=255)
    price: int | None = Field(default=None, ge=0)
    fees: int | None = Field(default=None, ge=0)
    total_quantity: int | None = Field(default=None, ge=0)
    min_per_order: int | None = Field(default=None, ge=1)
    max_per_order: int | None = Field(default=None, ge=1)
    tier: TicketTier | None = None
    is_active: bool | None = None
    stripe_product_id: str | None = None
    stripe_price_id: str | None = None


class TicketTypeResponse(BaseModel):
    """Ticket type as stored."""

    model_config = ConfigDict(from_attributes=True)

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
    tier: str
    is_active: bool
    stripe_product_id: str | None = None
    stripe_price_id: str | None = None
