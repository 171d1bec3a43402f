"""
Pydantic schemas for user-related requests and responses.
"""
from datetime import datetime
from pydantic import BaseModel


class UserResponse(BaseModel):
    """Schema for user responses."""
    id: int
    username: str
    email: str | None = None
    account_status: str
    last_login_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class CurrentUserResponse(UserResponse):
    """The authenticated user with roles and effective permission names."""
    roles: list[str] = []
    permissions: list[str] = []
    is_admin: bool = False


# ============================================================================
# Token Schemas
# ============================================================================

class TokenPermission(BaseModel):
    """Permission hint embedded in an access token."""
    name: str
    module: str


class TokenClaims(BaseModel):
    """
    Decoded access-token claims.

    ``permissions`` is a snapshot taken at issue time for UI rendering only;
    authorization decisions always go through the live resolver.
    """
    id: int
    username: str
    roles: list[str] = []
    permissions: list[TokenPermission] = []
    exp: int | None = None
    iat: int | None = None

