"""
FastAPI dependencies for permission-protected routes.

Every check goes through the live resolver; permissions embedded in the
access token are never consulted. A failed check, whatever its cause, answers
403 with the same body so callers cannot tell a denial from a store failure.
"""
from typing import List, Optional, Tuple
from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.exceptions import StoreError
from app.features.permissions.resolver import PermissionResolver, get_resolver
from app.features.permissions.roles import get_user_role_names
from app.features.users.dependencies import ACCESS_DENIED, get_current_user
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)


def _forbidden() -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=ACCESS_DENIED)


def require_permission(module: str, action: str, resource: Optional[str] = None):
    """
    FastAPI dependency to require a specific permission.

    Usage:
        @router.post("/samples")
        async def create_sample(
            db: AsyncSession = Depends(get_db),
            user: User = Depends(require_permission("SAMPLE", "CREATE"))
        ):
            # User may create samples
            pass

    Args:
        module: Permission module (e.g. "SAMPLE")
        action: Permission action (e.g. "CREATE")
        resource: Optional resource qualifier

    Returns:
        Dependency function that returns the current user if they have permission

    Raises:
        HTTPException: 403 if user doesn't have permission
    """
    async def permission_dependency(
        db: AsyncSession = Depends(get_db),
        current_user: User = Depends(get_current_user),
        resolver: PermissionResolver = Depends(get_resolver),
    ) -> User:
        if not await resolver.check_permission(db, current_user.id, module, action, resource):
            raise _forbidden()
        return current_user

    return permission_dependency


def require_any_permission(permissions: List[Tuple[str, str]]):
    """
    FastAPI dependency to require ANY of the specified permissions.

    Usage:
        @router.get("/reports")
        async def get_reports(
            user: User = Depends(require_any_permission([("REPORT", "VIEW"), ("REPORT", "EXPORT")]))
        ):
            pass

    Args:
        permissions: List of (module, action) tuples
    """
    async def permission_dependency(
        db: AsyncSession = Depends(get_db),
        current_user: User = Depends(get_current_user),
        resolver: PermissionResolver = Depends(get_resolver),
    ) -> User:
        for module, action in permissions:
            if await resolver.check_permission(db, current_user.id, module, action):
                return current_user
        raise _forbidden()

    return permission_dependency


def require_all_permissions(permissions: List[Tuple[str, str]]):
    """FastAPI dependency to require EVERY one of the specified (module, action) permissions."""
    async def permission_dependency(
        db: AsyncSession = Depends(get_db),
        current_user: User = Depends(get_current_user),
        resolver: PermissionResolver = Depends(get_resolver),
    ) -> User:
        for module, action in permissions:
            if not await resolver.check_permission(db, current_user.id, module, action):
                raise _forbidden()
        return current_user

    return permission_dependency


def require_role(*role_names: str):
    """
    FastAPI dependency to require any of the named roles.

    Role names are compared case-insensitively against the roles the user
    holds right now, not the ones listed in the token.

    Usage:
        @router.get("/dispatch")
        async def dispatch_board(user: User = Depends(require_role("MANAGER", "ADMIN"))):
            pass
    """
    allowed = {name.upper() for name in role_names}

    async def role_dependency(
        db: AsyncSession = Depends(get_db),
        current_user: User = Depends(get_current_user),
    ) -> User:
        try:
            held = await get_user_role_names(db, current_user.id)
        except StoreError as e:
            log.error("Role check failed for user %s: %s", current_user.id, e)
            raise _forbidden() from e
        if not allowed.intersection(name.upper() for name in held):
            raise _forbidden()
        return current_user

    return role_dependency


def can_view(module: str):
    return require_permission(module, "VIEW")


def can_create(module: str):
    return require_permission(module, "CREATE")


def can_update(module: str):
    return require_permission(module, "UPDATE")


def can_delete(module: str):
    return require_permission(module, "DELETE")


def can_manage(module: str):
    """Any one of VIEW, CREATE, UPDATE or DELETE on the module."""
    return require_any_permission(
        [(module, action) for action in ("VIEW", "CREATE", "UPDATE", "DELETE")]
    )


def resource_owner_or_permission(module: str, action: str, owner_param: str = "user_id"):
    """
    FastAPI dependency letting the owner of a resource through, and anyone
    else only with the permission.

    The owner is identified by the ``owner_param`` path parameter.

    Usage:
        @router.get("/users/{user_id}/samples")
        async def user_samples(
            user_id: int,
            user: User = Depends(resource_owner_or_permission("SAMPLE", "VIEW"))
        ):
            pass
    """
    async def owner_dependency(
        request: Request,
        db: AsyncSession = Depends(get_db),
        current_user: User = Depends(get_current_user),
        resolver: PermissionResolver = Depends(get_resolver),
    ) -> User:
        owner_id = request.path_params.get(owner_param)
        if owner_id is not None and str(owner_id) == str(current_user.id):
            return current_user
        if not await resolver.check_permission(db, current_user.id, module, action):
            raise _forbidden()
        return current_user

    return owner_dependency


# Shorthands used by the administration routes
can_view_roles = require_permission("ROLE", "VIEW")
can_assign_permissions = require_permission("ROLE", "ASSIGN_PERMISSIONS")
