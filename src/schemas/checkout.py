"""Checkout, order and settlement Pydantic schemas for API request/response models."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from src.models.order import OrderStatus


class CheckoutSessionCreate(BaseModel):
    """Schema for creating a checkout session via POST /checkout/session."""

    model_config = ConfigDict(from_attributes=True)

    ticket_type_id: str = Field(min_length=1, description="Ticket type to purchase")
    quantity: int = Field(default=1, ge=1, description="Number of tickets")


class CheckoutSessionResponse(BaseModel):
    """Schema for checkout session creation response."""

    model_config = ConfigDict(from_attributes=True)

    checkout_url: str = Field(description="Stripe Checkout URL to redirect to")
    stripe_session_id: str = Field(description="Stripe Checkout Session ID")


class CheckoutConfirmRequest(BaseModel):
    """Client-side confirmation sent after returning from Stripe Checkout."""

    model_config = ConfigDict(from_attributes=True)

    session_token: str = Field(min_length=1, description="Stripe Checkout Session ID from the success URL")
    ticket_type_id: str = Field(min_length=1, description="Ticket type the client believes it bought")
    quantity: int = Field(default=1, ge=1, description="Quantity the client believes it bought")


class SettlementResult(BaseModel):
    """Identifiers produced (or found) by a settlement."""

    model_config = ConfigDict(from_attributes=True)

    order_id: str = Field(description="Order ID")
    ticket_ids: list[str] = Field(default_factory=list, description="Issued ticket IDs")
    already_settled: bool = Field(default=False, description="True when an existing order was returned")


class OrderResponse(BaseModel):
    """Schema for order API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(description="Order unique identifier")
    order_number: str = Field(description="Human-readable order number")
    event_id: str = Field(description="Event ID")
    ticket_type_id: str | None = Field(default=None, description="Ticket type ID")
    status: OrderStatus = Field(description="Order status")
    quantity: int = Field(description="Number of tickets")
    subtotal: int = Field(description="Sum of ticket prices in minor units")
    fees: int = Field(description="Sum of ticket fees in minor units")
    tax: int = Field(default=0, description="Tax in minor units")
    total_amount: int = Field(description="Total in minor units")
    currency: str = Field(default="usd", description="Currency code")
    created_at: datetime = Field(description="Creation timestamp")


class OrderListResponse(BaseModel):
    """Schema for order list API responses."""

    model_config = ConfigDict(from_attributes=True)

    items: list[OrderResponse] = Field(description="List of orders")
