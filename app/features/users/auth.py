"""
Access-token utilities (HS256 JWT).
"""
from datetime import timedelta
from typing import Iterable, Optional, Tuple
import jwt
from fastapi import HTTPException, status
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.features.permissions.resolver import resolver
from app.features.permissions.roles import get_user_role_names
from app.features.users.models import User
from app.features.users.schemas import TokenClaims
from app.utils import get_logger, utcnow


log = get_logger(__name__)


def create_access_token(
    user_id: int,
    username: str,
    roles: Iterable[str],
    permissions: Iterable[Tuple[str, str]],
    expires_minutes: Optional[int] = None,
) -> str:
    """
    Sign an access token.

    Args:
        user_id: Subject user ID
        username: Subject username
        roles: Role names held by the user
        permissions: (name, module) pairs embedded as UI hints
        expires_minutes: Lifetime override; defaults to JWT_EXPIRES_MINUTES

    Returns:
        Encoded JWT string
    """
    now = utcnow()
    lifetime = expires_minutes if expires_minutes is not None else config.JWT_EXPIRES_MINUTES
    payload = {
        "id": user_id,
        "username": username,
        "roles": list(roles),
        "permissions": [{"name": name, "module": module} for name, module in permissions],
        "iat": now,
        "exp": now + timedelta(minutes=lifetime),
    }
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def verify_jwt_token(token: str) -> TokenClaims:
    """
    Verify an access token and return its claims.

    Args:
        token: JWT token from Authorization header

    Returns:
        Decoded claims

    Raises:
        HTTPException: If token is invalid or expired
    """
    try:
        payload = jwt.decode(
            token,
            config.JWT_SECRET,
            algorithms=[config.JWT_ALGORITHM],
        )
        return TokenClaims.model_validate(payload)

    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except jwt.InvalidTokenError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid token: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except ValidationError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def issue_token_for_user(db: AsyncSession, user: User) -> str:
    """
    Issue a token for a user, embedding role names and a snapshot of the
    user's effective permissions.
    """
    roles = await get_user_role_names(db, user.id)
    permissions = await resolver.get_effective_permissions(db, user.id)

    log.info("Issued token for user %s", user.id)
    return create_access_token(
        user.id,
        user.username,
        roles,
        [(permission.name, permission.module) for permission in permissions],
    )
