"""Ticket type API routes: create and edit the inventory of an event."""

import logging

from fastapi import APIRouter, HTTPException, status

from src.api.deps import InventoryStoreDep, TicketAdmin
from src.schemas.ticket import TicketTypeCreate, TicketTypeResponse, TicketTypeUpdate

logger = logging.getLogger(__name__)

router = APIRouter(tags=["ticket-types"])


@router.get(
    "/events/{event_id}/ticket-types",
    response_model=list[TicketTypeResponse],
    summary="List ticket types of an event",
)
async def list_ticket_types(event_id: str, inventory: InventoryStoreDep) -> list[TicketTypeResponse]:
    """List the active ticket types of an event."""
    ticket_types = await inventory.list_for_event(event_id, active_only=True)
    return [TicketTypeResponse(**ticket_type) for ticket_type in ticket_types]


@router.post(
    "/events/{event_id}/ticket-types",
    response_model=TicketTypeResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a ticket type",
    description="Adds a ticket type to an event and refreshes its price range. Requires the artist or staff role.",
)
async def create_ticket_type(
    event_id: str,
    data: TicketTypeCreate,
    user: TicketAdmin,
    inventory: InventoryStoreDep,
) -> TicketTypeResponse:
    """Create a ticket type with its full quantity available."""
    ticket_type = await inventory.create_ticket_type(event_id, data)
    logger.info("User %s created ticket type %s on event %s", user.user_id, ticket_type["id"], event_id)
    return TicketTypeResponse(**ticket_type)


@router.patch(
    "/ticket-types/{ticket_type_id}",
    response_model=TicketTypeResponse,
    summary="Update a ticket type",
    description="Edits a ticket type. Changing total_quantity restocks the remaining pool. Requires the artist or staff role.",
)
async def update_ticket_type(
    ticket_type_id: str,
    data: TicketTypeUpdate,
    user: TicketAdmin,
    inventory: InventoryStoreDep,
) -> TicketTypeResponse:
    """Patch a ticket type.

    Raises:
        HTTPException: 400 if the body changes nothing.
    """
    if not data.model_dump(exclude_unset=True):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No fields to update",
        )
    ticket_type = await inventory.update_ticket_type(ticket_type_id, data)
    logger.info("User %s updated ticket type %s", user.user_id, ticket_type_id)
    return TicketTypeResponse(**ticket_type)
