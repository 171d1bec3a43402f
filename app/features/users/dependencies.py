"""
FastAPI dependencies for authentication and authorization.
"""
from typing import Annotated
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.permissions.resolver import PermissionResolver, get_resolver
from app.features.users.models import User
from app.features.users.auth import verify_jwt_token
from app.utils import utcnow


security = HTTPBearer()

# Body of every authorization failure
ACCESS_DENIED = "Access denied"


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)]
) -> User:
    """
    Get the current authenticated user from JWT token.

    This dependency:
    1. Extracts JWT from Authorization header
    2. Verifies signature and expiry
    3. Looks up the user in the local database
    4. Updates last_login_at timestamp

    Usage:
        @router.get("/me")
        async def get_me(user: User = Depends(get_current_user)):
            return user
    """
    claims = verify_jwt_token(credentials.credentials)

    result = await db.execute(select(User).where(User.id == claims.id))
    user = result.scalar_one_or_none()

    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=ACCESS_DENIED,
        )

    # Committed by get_db when the request finishes
    user.last_login_at = utcnow()
    return user


async def get_current_admin_user(
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
    resolver: Annotated[PermissionResolver, Depends(get_resolver)],
) -> User:
    """
    Require an ADMIN or SUPER_ADMIN role.

    Usage:
        @router.delete("/roles/{role_id}")
        async def delete_role(
            role_id: int,
            admin: User = Depends(get_current_admin_user)
        ):
            # Only admins can access this endpoint
            ...
    """
    if not await resolver.is_admin(db, user.id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required",
        )
    return user


def get_authorization_header(request) -> str:
    """
    Extract authorization header for rate limiting.
    Used with slowapi Limiter.
    """
    auth = request.headers.get("Authorization", "")
    return auth or "anonymous"
