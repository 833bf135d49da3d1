"""FastAPI dependency injection functions."""

from collections.abc import Awaitable, Callable
from typing import Annotated, Any

from fastapi import Depends, Header, HTTPException, status

from src.api.middleware.auth import AuthError, AuthErrorCode, decode_jwt
from src.schemas.auth import UserContext
from src.services.checkout_service import CheckoutService
from src.services.inventory_store import InventoryStore
from src.services.profile_service import ProfileService
from src.services.ticket_service import TicketService

TICKET_ADMIN_ROLES = ("artist", "staff")


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    authorization: Annotated[str, Header(description="Bearer token")] = "",
) -> UserContext:
    """Extract and validate the current user from the Authorization header.

    Args:
        authorization: The Authorization header value (Bearer token).

    Returns:
        UserContext: The authenticated user's context.

    Raises:
        HTTPException: 401 if token is missing, invalid, or expired.
    """
    if not authorization:
        raise _unauthorized("Authorization header required")

    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise _unauthorized("Invalid authorization header format. Expected: Bearer <token>")

    try:
        return decode_jwt(parts[1]).to_user_context()
    except AuthError as e:
        if e.code == AuthErrorCode.TOKEN_EXPIRED:
            raise _unauthorized("Token has expired") from e
        raise _unauthorized(e.message) from e


CurrentUser = Annotated[UserContext, Depends(get_current_user)]


async def get_current_profile(user: CurrentUser) -> dict[str, Any]:
    """Local profile of the authenticated user, created on first use."""
    return await ProfileService().get_or_create_profile(user.user_id, user.email)


CurrentProfile = Annotated[dict[str, Any], Depends(get_current_profile)]


def require_roles(*roles: str) -> Callable[[UserContext], Awaitable[UserContext]]:
    """Build a dependency that only lets users with one of `roles` through."""

    async def check_role(user: CurrentUser) -> UserContext:
        if user.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires one of the roles: {', '.join(roles)}",
            )
        return user

    return check_role


TicketAdmin = Annotated[UserContext, Depends(require_roles(*TICKET_ADMIN_ROLES))]


# Service providers, overridable through app.dependency_overrides


def get_checkout_service() -> CheckoutService:
    """Checkout service wired to the shared clients."""
    return CheckoutService()


def get_inventory_store() -> InventoryStore:
    """Inventory store wired to the shared clients."""
    return InventoryStore()


def get_ticket_service() -> TicketService:
    """Ticket service wired to the shared clients."""
    return TicketService()


CheckoutServiceDep = Annotated[CheckoutService, Depends(get_checkout_service)]
InventoryStoreDep = Annotated[InventoryStore, Depends(get_inventory_store)]
TicketServiceDep = Annotated[TicketService, Depends(get_ticket_service)]
