"""Ticket API routes for holders and door staff."""

from fastapi import APIRouter

from src.api.deps import CurrentProfile, TicketAdmin, TicketServiceDep
from src.schemas.ticket import TicketListResponse, TicketResponse, TicketValidationResponse

router = APIRouter(prefix="/tickets", tags=["tickets"])


@router.get(
    "",
    response_model=TicketListResponse,
    summary="List my tickets",
    description="Returns every ticket issued on the authenticated user's orders.",
)
async def list_tickets(profile: CurrentProfile, service: TicketServiceDep) -> TicketListResponse:
    """List the current user's tickets."""
    tickets = await service.list_tickets_for_user(profile["id"])
    return TicketListResponse(items=[TicketResponse(**ticket) for ticket in tickets])


@router.get(
    "/qr/{qr_code}",
    response_model=TicketValidationResponse,
    summary="Look up a ticket by QR code",
    description="Door-scan lookup. Requires the artist or staff role.",
)
async def get_ticket_by_qr(
    qr_code: str,
    user: TicketAdmin,
    service: TicketServiceDep,
) -> TicketValidationResponse:
    """Resolve a scanned QR token to its ticket."""
    ticket = await service.get_ticket_by_qr(qr_code)
    return TicketValidationResponse(**ticket)


@router.get(
    "/{ticket_id}",
    response_model=TicketResponse,
    summary="Get ticket by ID",
    description="Returns a single ticket. Only accessible by the ticket holder.",
)
async def get_ticket(ticket_id: str, profile: CurrentProfile, service: TicketServiceDep) -> TicketResponse:
    """Get one of the current user's tickets."""
    return TicketResponse(**await service.get_ticket(ticket_id, profile["id"]))
