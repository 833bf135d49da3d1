#!/usr/bin/env python
"""Script to sync ticket types to Stripe products and prices.

This script:
1. Reads every ticket type (active or not) with its event
2. Creates a Stripe product and a one-time price of price + fees for each
   ticket type that has none, or a new price when the amount changed
3. Stores stripe_product_id / stripe_price_id on the ticket type

The stored product ID is what lets settlement map a completed checkout
back to its ticket type without relying on metadata or return URLs.

Usage:
    python scripts/sync_stripe_products.py

Requirements:
    - STRIPE_SECRET_KEY environment variable must be set

Note:
    - Stripe prices are immutable; a changed amount gets a new price and
      the old one is archived
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Any

# Add the project root to the path
sys.path.insert(0, str(Path(__file__).parent.parent))

import stripe

from src.core.config import get_settings
from src.core.stripe import configure_stripe, get_stripe
from src.core.supabase import get_supabase_client
from src.services.inventory_store import EVENTS_TABLE, TICKET_TYPES_TABLE

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def get_unit_amount(ticket_type: dict[str, Any]) -> int:
    """Amount charged per ticket, in minor units."""
    return int(ticket_type["price"]) + int(ticket_type.get("fees") or 0)


def get_product_name(ticket_type: dict[str, Any], event: dict[str, Any] | None) -> str:
    """Stripe product name, e.g. "Night Show - VIP"."""
    if event and event.get("title"):
        return f"{event['title']} - {ticket_type['name']}"
    return ticket_type["name"]


def get_metadata(ticket_type: dict[str, Any]) -> dict[str, str]:
    """Metadata attached to both the product and its prices."""
    return {
        "ticket_type_id": str(ticket_type["id"]),
        "event_id": str(ticket_type["event_id"]),
        "tier": ticket_type.get("tier") or "general",
    }


def create_price(ticket_type: dict[str, Any], product_id: str, currency: str) -> str:
    """Create a one-time price for a ticket type's product.

    Returns:
        str: New Stripe price ID.
    """
    price = get_stripe().Price.create(
        product=product_id,
        unit_amount=get_unit_amount(ticket_type),
        currency=currency,
        metadata=get_metadata(ticket_type),
    )
    logger.info("Created Stripe price %s - %d %s", price.id, get_unit_amount(ticket_type), currency)
    return price.id


def create_product_and_price(
    ticket_type: dict[str, Any], event: dict[str, Any] | None, currency: str
) -> tuple[str, str]:
    """Create a Stripe product and price for a ticket type.

    Returns:
        tuple: (stripe_product_id, stripe_price_id)
    """
    name = get_product_name(ticket_type, event)
    product = get_stripe().Product.create(
        name=name,
        active=bool(ticket_type.get("is_active", True)),
        metadata=get_metadata(ticket_type),
    )
    logger.info("Created Stripe product %s - %s", product.id, name)
    return product.id, create_price(ticket_type, product.id, currency)


def sync_existing_product(
    ticket_type: dict[str, Any], event: dict[str, Any] | None, currency: str
) -> str | None:
    """Update an existing product and replace its price if the amount changed.

    Returns:
        str | None: The new price ID, or None when the current price still matches.

    Raises:
        stripe.InvalidRequestError: If the stored product or price no longer exists.
    """
    client = get_stripe()
    product_id = ticket_type["stripe_product_id"]
    price_id = ticket_type.get("stripe_price_id")

    client.Product.modify(
        product_id,
        name=get_product_name(ticket_type, event),
        active=bool(ticket_type.get("is_active", True)),
        metadata=get_metadata(ticket_type),
    )

    if price_id:
        current = client.Price.retrieve(price_id)
        if current.unit_amount == get_unit_amount(ticket_type):
            return None
        logger.warning(
            "%s: amount changed from %d to %d, creating new price",
            ticket_type["name"],
            current.unit_amount,
            get_unit_amount(ticket_type),
        )

    new_price_id = create_price(ticket_type, product_id, currency)
    if price_id:
        client.Price.modify(price_id, active=False)
        logger.info("Archived old price %s", price_id)
    return new_price_id


async def sync_all_ticket_types_to_stripe() -> dict[str, int]:
    """Sync all ticket types to Stripe.

    Returns:
        dict: Counts of processed, created, updated, skipped and failed ticket types.
    """
    settings = get_settings()
    if not settings.stripe_secret_key:
        raise ValueError("STRIPE_SECRET_KEY environment variable is not set. Cannot sync to Stripe.")

    configure_stripe()
    client = get_supabase_client()

    ticket_types = client.table(TICKET_TYPES_TABLE).select("*").execute().data or []
    events = {
        event["id"]: event
        for event in client.table(EVENTS_TABLE).select("*").execute().data or []
    }

    results = {"processed": 0, "created": 0, "updated": 0, "skipped": 0, "failed": 0}

    for ticket_type in ticket_types:
        results["processed"] += 1
        event = events.get(ticket_type["event_id"])
        currency = ticket_type.get("currency") or settings.default_currency

        try:
            if ticket_type.get("stripe_product_id"):
                try:
                    new_price_id = sync_existing_product(ticket_type, event, currency)
                except stripe.InvalidRequestError:
                    logger.warning("%s has stale Stripe IDs, creating new ones", ticket_type["name"])
                else:
                    if new_price_id is None:
                        results["skipped"] += 1
                    else:
                        client.table(TICKET_TYPES_TABLE).update(
                            {"stripe_price_id": new_price_id}
                        ).eq("id", ticket_type["id"]).execute()
                        results["updated"] += 1
                    continue

            product_id, price_id = create_product_and_price(ticket_type, event, currency)
            client.table(TICKET_TYPES_TABLE).update(
                {"stripe_product_id": product_id, "stripe_price_id": price_id}
            ).eq("id", ticket_type["id"]).execute()
            results["created"] += 1

        except Exception:
            results["failed"] += 1
            logger.exception("Failed to sync ticket type %s (%s)", ticket_type["id"], ticket_type.get("name"))

    return results


async def main() -> None:
    """Main entry point for the sync script."""
    logger.info("Starting Stripe product synchronization...")

    try:
        results = await sync_all_ticket_types_to_stripe()
    except Exception:
        logger.exception("Synchronization failed")
        sys.exit(1)

    logger.info("=" * 60)
    logger.info("Stripe synchronization complete!")
    logger.info("Ticket types processed: %d", results["processed"])
    logger.info("Stripe products created: %d", results["created"])
    logger.info("Prices replaced (amount changed): %d", results["updated"])
    logger.info("Skipped (no changes needed): %d", results["skipped"])
    logger.info("Failed: %d", results["failed"])
    logger.info("=" * 60)

    if results["failed"] > 0:
        logger.warning("Some ticket types failed to sync. Check logs for details.")
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
