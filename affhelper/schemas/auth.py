"""Authentication schemas for Supabase JWTs and the request user."""

from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

ADMIN_ROLE = "admin"


class UserContext(BaseModel):
    """Authenticated user for the current request, taken from the JWT."""

    model_config = ConfigDict(from_attributes=True)

    user_id: UUID = Field(description="User ID (JWT sub claim)")
    email: str | None = Field(default=None, description="User's email address if available")
    role: str | None = Field(default=None, description="Application role ('user' or 'admin')")

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


class TokenPayload(BaseModel):
    """Claims of a Supabase-issued access token.

    Supabase sets `role` to the Postgres role ("authenticated"); the
    application role lives in `app_metadata.role`, which only the service
    key can write.
    """

    model_config = ConfigDict(from_attributes=True)

    sub: str = Field(description="Subject - the user's UUID")
    email: str | None = Field(default=None, description="User's email address")
    role: str | None = Field(default=None, description="Postgres role")
    app_metadata: dict[str, Any] = Field(default_factory=dict, description="Server-controlled user metadata")
    exp: int = Field(description="Expiration timestamp (Unix epoch)")
    iat: int = Field(description="Issued at timestamp (Unix epoch)")
    aud: str | None = Field(default=None, description="Audience - intended recipient")
    iss: str | None = Field(default=None, description="Issuer - token issuer URL")

    @property
    def app_role(self) -> str:
        return str(self.app_metadata.get("role") or "user")

    def to_user_context(self) -> UserContext:
        return UserContext(
            user_id=UUID(self.sub),
            email=self.email,
            role=self.app_role,
        )
