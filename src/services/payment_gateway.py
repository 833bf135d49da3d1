"""Outbound Stripe lookups used by checkout and settlement."""

import asyncio
import logging
from collections.abc import Mapping
from typing import Any, Callable

import stripe

from src.api.middleware.error_handler import UpstreamTimeoutError, UpstreamUnavailableError
from src.core.config import Settings, get_settings
from src.core.stripe import get_stripe

logger = logging.getLogger(__name__)


def to_plain_dict(obj: Any) -> dict[str, Any] | None:
    """Convert a Stripe object (or any mapping) into a plain dict."""
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    if isinstance(obj, Mapping):
        return dict(obj)
    raise TypeError(f"Unexpected Stripe payload type: {type(obj).__name__}")


class StripeGateway:
    """Thin wrapper around the Stripe SDK with bounded, classified calls.

    Every lookup runs in a worker thread under a timeout. Errors are
    sorted into two groups:

    - timeouts, connection failures, rate limits and Stripe 5xx raise
      UpstreamTimeoutError / UpstreamUnavailableError so the caller can retry;
    - any other non-2xx answer (unknown id, bad request, permissions) is
      treated as "no result" and returns None.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        """Initialize the gateway with the configured Stripe module."""
        self.stripe = get_stripe()
        self.settings = settings or get_settings()

    async def _call(self, operation: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        timeout = self.settings.stripe_timeout_seconds
        try:
            return await asyncio.wait_for(asyncio.to_thread(func, *args, **kwargs), timeout=timeout)
        except asyncio.TimeoutError as e:
            logger.warning("Stripe %s timed out after %.1fs", operation, timeout)
            raise UpstreamTimeoutError(f"Stripe {operation} timed out") from e
        except (stripe.APIConnectionError, stripe.RateLimitError, stripe.APIError) as e:
            logger.warning("Stripe %s unavailable: %s", operation, str(e))
            raise UpstreamUnavailableError(f"Stripe {operation} failed: {type(e).__name__}") from e
        except stripe.StripeError as e:
            logger.info(
                "Stripe %s returned no result (status=%s): %s",
                operation,
                getattr(e, "http_status", None),
                str(e),
            )
            return None

    async def get_customer(self, customer_id: str) -> dict[str, Any] | None:
        """Fetch a customer by ID. Deleted customers count as not found."""
        customer = to_plain_dict(await self._call("customer lookup", self.stripe.Customer.retrieve, customer_id))
        if not customer or customer.get("deleted"):
            return None
        return customer

    async def get_customer_email(self, customer_id: str) -> str | None:
        """Fetch the email address of a customer, if any."""
        customer = await self.get_customer(customer_id)
        return customer.get("email") if customer else None

    async def find_customer_by_email(self, email: str) -> dict[str, Any] | None:
        """Search customers by exact email and return the first match."""
        result = to_plain_dict(
            await self._call("customer search", self.stripe.Customer.list, email=email, limit=1)
        )
        data = (result or {}).get("data") or []
        return to_plain_dict(data[0]) if data else None

    async def get_checkout_session(self, session_id: str) -> dict[str, Any] | None:
        """Fetch a Checkout Session with its line items expanded."""
        return to_plain_dict(
            await self._call(
                "checkout lookup",
                self.stripe.checkout.Session.retrieve,
                session_id,
                expand=["line_items"],
            )
        )

    async def create_customer(self, email: str | None, user_id: str) -> dict[str, Any]:
        """Create a customer tagged with the local user ID.

        Raises:
            UpstreamUnavailableError: If Stripe rejects or cannot take the request.
        """
        params: dict[str, Any] = {"metadata": {"user_id": user_id}}
        if email:
            params["email"] = email
        customer = await self._call("customer create", self.stripe.Customer.create, **params)
        if customer is None:
            raise UpstreamUnavailableError("Stripe refused to create the customer")
        return to_plain_dict(customer)

    async def create_checkout_session(self, params: dict[str, Any]) -> dict[str, Any]:
        """Create a Checkout Session.

        Raises:
            UpstreamUnavailableError: If Stripe rejects or cannot take the request.
        """
        session = await self._call("checkout create", self.stripe.checkout.Session.create, **params)
        if session is None:
            raise UpstreamUnavailableError("Stripe refused to create the checkout session")
        return to_plain_dict(session)

    def construct_event(self, payload: bytes, sig_header: str) -> dict[str, Any]:
        """Verify a webhook delivery's signature and parse its event.

        Raises:
            stripe.SignatureVerificationError: If the signature does not match.
            ValueError: If the payload is not a valid event.
        """
        event = self.stripe.Webhook.construct_event(
            payload, sig_header, self.settings.stripe_webhook_secret
        )
        return to_plain_dict(event)
