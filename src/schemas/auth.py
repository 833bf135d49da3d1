"""Authentication schemas for JWT tokens and user context."""

from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class UserContext(BaseModel):
    """Authenticated user context extracted from a JWT.

    Authentication happens upstream; settlement trusts this identity.
    """

    model_config = ConfigDict(from_attributes=True)

    user_id: UUID = Field(description="Auth user ID (JWT sub claim)")
    email: str | None = Field(default=None, description="User's email address if available")
    role: str | None = Field(default=None, description="Application role (e.g. 'customer', 'artist', 'staff')")


class TokenPayload(BaseModel):
    """Claims read from a Supabase-issued JWT."""

    model_config = ConfigDict(from_attributes=True)

    sub: str = Field(description="Subject - the user's UUID")
    email: str | None = Field(default=None, description="User's email address")
    role: str | None = Field(default=None, description="Database role claim")
    app_role: str | None = Field(default=None, description="Application role from app_metadata")
    exp: int = Field(description="Expiration timestamp (Unix epoch)")
    iat: int = Field(description="Issued at timestamp (Unix epoch)")

    def to_user_context(self) -> UserContext:
        """Convert token payload to UserContext, preferring the application role."""
        return UserContext(
            user_id=UUID(self.sub),
            email=self.email,
            role=self.app_role or self.role,
        )
