"""Webhook API routes for Stripe completion notifications."""

import logging

import stripe
from fastapi import APIRouter, BackgroundTasks, HTTPException, Request, status

from src.api.deps import CheckoutServiceDep

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post(
    "/stripe",
    status_code=status.HTTP_200_OK,
    summary="Handle Stripe webhooks",
    description="Receives Stripe checkout events and schedules settlement. Requires a valid signature.",
)
async def stripe_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    service: CheckoutServiceDep,
) -> dict[str, str]:
    """Handle Stripe webhook events.

    Handles:
    - checkout.session.async_payment_succeeded: payment settled, always settleable
    - checkout.session.completed: settleable when payment_status is paid or no_payment_required
    - anything else: acknowledged and ignored

    Settlement runs after the response is sent. Redeliveries of an already
    settled checkout are acknowledged without scheduling anything.

    Raises:
        HTTPException: 403 if the signature is missing or invalid, 400 if
            the payload cannot be parsed.
    """
    payload = await request.body()

    sig_header = request.headers.get("stripe-signature")
    if not sig_header:
        logger.warning("Missing Stripe-Signature header in webhook request")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Missing Stripe-Signature header",
        )

    if not service.settings.stripe_webhook_secret:
        logger.error("STRIPE_WEBHOOK_SECRET is not configured; rejecting webhook")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook secret is not configured",
        )

    try:
        event = service.gateway.construct_event(payload, sig_header)
    except stripe.SignatureVerificationError as e:
        logger.warning("Invalid webhook signature: %s", str(e))
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid signature",
        ) from e
    except ValueError as e:
        logger.warning("Unparsable webhook payload (%d bytes): %s", len(payload), str(e))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid payload",
        ) from e

    logger.info("Received Stripe event %s (%s)", event.get("id"), event.get("type"))

    outcome, record = await service.ingestion.ingest(event)
    if record is not None:
        background_tasks.add_task(service.process_notification, record)

    return {"status": "received", "action": outcome.action}
