"""Checkout API routes: Stripe sessions, client confirmation and orders."""

from fastapi import APIRouter, HTTPException, status

from src.api.deps import CheckoutServiceDep, CurrentProfile
from src.schemas.checkout import (
    CheckoutConfirmRequest,
    CheckoutSessionCreate,
    CheckoutSessionResponse,
    OrderListResponse,
    OrderResponse,
    SettlementResult,
)

router = APIRouter(prefix="/checkout", tags=["checkout"])


@router.post(
    "/session",
    response_model=CheckoutSessionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create Stripe Checkout Session",
    description="Creates a Stripe Checkout Session for tickets of one ticket type.",
)
async def create_checkout_session(
    data: CheckoutSessionCreate,
    profile: CurrentProfile,
    service: CheckoutServiceDep,
) -> CheckoutSessionResponse:
    """Create a Stripe Checkout Session.

    The frontend should redirect to the returned checkout_url. Stripe sends
    the buyer back to the event's success page with the session ID.
    """
    result = await service.create_checkout_session(
        profile=profile,
        ticket_type_id=data.ticket_type_id,
        quantity=data.quantity,
    )
    return CheckoutSessionResponse(**result)


@router.post(
    "/confirm",
    response_model=SettlementResult,
    summary="Confirm a completed checkout",
    description="Settles a paid checkout the caller just returned from. Safe to call repeatedly.",
)
async def confirm_checkout(
    data: CheckoutConfirmRequest,
    profile: CurrentProfile,
    service: CheckoutServiceDep,
) -> SettlementResult:
    """Settle the caller's checkout and return its order and tickets.

    Shares the settlement path with the Stripe webhook, so whichever
    arrives first creates the order and the other gets the same result
    with already_settled=True.
    """
    return await service.confirm_purchase(profile, data)


# Orders router - mounted separately at /orders
orders_router = APIRouter(prefix="/orders", tags=["orders"])


@orders_router.get(
    "",
    response_model=OrderListResponse,
    summary="List my orders",
    description="Returns all orders of the authenticated user, newest first.",
)
async def list_orders(profile: CurrentProfile, service: CheckoutServiceDep) -> OrderListResponse:
    """List all orders for the current user."""
    orders = await service.get_orders_for_profile(profile["id"])
    return OrderListResponse(items=[OrderResponse(**order) for order in orders])


@orders_router.get(
    "/{order_id}",
    response_model=OrderResponse,
    summary="Get order by ID",
    description="Returns a single order by ID. Only accessible by the order owner.",
)
async def get_order(order_id: str, profile: CurrentProfile, service: CheckoutServiceDep) -> OrderResponse:
    """Get a single order by ID.

    Raises:
        HTTPException: 404 if the order does not exist or belongs to someone else.
    """
    if not await service.can_access_order(order_id, profile["id"]):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Order not found",
        )

    order = await service.get_order(order_id)
    return OrderResponse(**order)
