"""Completion notification schemas decoded at the ingestion boundary.

Stripe payloads differ by event type and API version. They are decoded
once into one of the variants below so that the rest of the settlement
engine never touches raw webhook fields.
"""

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

NotificationSource = Literal["webhook", "client_confirm"]


class CompletionRecord(BaseModel):
    """Fields shared by every settleable completion notification."""

    model_config = ConfigDict(frozen=True)

    external_ref: str = Field(description="Stripe Checkout Session ID, the idempotency key")
    customer_ref: str | None = Field(default=None, description="Stripe customer ID")
    customer_email: str | None = Field(default=None, description="Email entered at checkout, used when there is no customer")
    product_ref: str | None = Field(default=None, description="Stripe product ID if the payload carried one")
    status: str | None = Field(default=None, description="Checkout payment status reported by Stripe")
    metadata: dict[str, str] = Field(default_factory=dict, description="Metadata attached to the checkout")
    return_url: str | None = Field(default=None, description="success_url recorded on the checkout")
    source: NotificationSource = Field(default="webhook", description="Where the notification came from")
    event_id: str | None = Field(default=None, description="Stripe event ID for webhook deliveries")


class PaymentConfirmed(CompletionRecord):
    """Payment settled at the provider. Always safe to settle from."""

    kind: Literal["payment_confirmed"] = "payment_confirmed"


class CheckoutCompleted(CompletionRecord):
    """Checkout finished. Only settle when status is a successful terminal state."""

    kind: Literal["checkout_completed"] = "checkout_completed"


class Unrecognized(BaseModel):
    """Any event type the engine does not act on."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["unrecognized"] = "unrecognized"
    event_type: str = Field(default="", description="Raw Stripe event type")
    event_id: str | None = Field(default=None, description="Stripe event ID")


CompletionNotification = Annotated[
    Union[PaymentConfirmed, CheckoutCompleted, Unrecognized],
    Field(discriminator="kind"),
]

SettleableNotification = Union[PaymentConfirmed, CheckoutCompleted]


class IngestionOutcome(BaseModel):
    """What the webhook endpoint decided to do with a delivery."""

    action: Literal["scheduled", "already_settled", "ignored", "payment_incomplete"]
    notification: dict[str, Any] | None = None
