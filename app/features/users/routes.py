"""
User feature routes.
"""
from typing import Annotated
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.permissions.resolver import PermissionResolver, get_resolver
from app.features.permissions.roles import get_user_role_names
from app.features.users.models import User
from app.features.users.schemas import CurrentUserResponse, UserResponse
from app.features.users.dependencies import get_current_user


router = APIRouter(tags=["users"])


@router.get("/me", response_model=CurrentUserResponse)
async def get_current_user_profile(
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
    resolver: Annotated[PermissionResolver, Depends(get_resolver)],
):
    """Get current authenticated user's profile with roles and effective permissions."""
    permissions = await resolver.get_effective_permissions(db, user.id)
    return CurrentUserResponse(
        **UserResponse.model_validate(user).model_dump(),
        roles=await get_user_role_names(db, user.id),
        permissions=[permission.name for permission in permissions],
        is_admin=await resolver.is_admin(db, user.id),
    )
