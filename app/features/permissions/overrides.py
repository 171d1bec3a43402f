"""
Direct per-user permission overrides.

A user holds at most one override row per permission. GRANT adds the
permission on top of the user's roles; DENY removes it and beats any grant.
"""
from datetime import datetime
from typing import List, Optional, Union
from sqlalchemy import select, delete as sql_delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.database.engine import atomic
from app.core.exceptions import InvalidInput, StoreError
from app.features.permissions.catalog import get_permission
from app.features.permissions.models import (
    GrantType,
    Permission,
    RolePermission,
    UserPermission,
    live_binding,
    live_permission,
)
from app.features.permissions.roles import get_user
from app.features.users.models import user_roles
from app.utils import as_utc, get_logger, utcnow


log = get_logger(__name__)


def parse_grant_type(value: Union[str, GrantType, None]) -> GrantType:
    """
    Normalise a grant type.

    Raises:
        InvalidInput: anything other than GRANT or DENY
    """
    if isinstance(value, GrantType):
        return value
    if isinstance(value, str):
        try:
            return GrantType(value.strip().upper())
        except ValueError:
            pass
    raise InvalidInput("grant_type must be GRANT or DENY")


async def grant(
    db: AsyncSession,
    user_id: int,
    permission_id: int,
    grant_type: Union[str, GrantType],
    granted_by: Optional[int],
    expires_at: Optional[datetime] = None,
    reason: Optional[str] = None,
    overrides_enabled: Optional[bool] = None,
) -> UserPermission:
    """
    Create or update the user's override for a permission.

    A second grant on the same (user, permission) pair rewrites the existing
    row: type, expiry, reason and grantor all change and the row is
    re-activated.

    Args:
        db: Database session
        user_id: User receiving the override
        permission_id: Permission being granted or denied
        grant_type: GRANT or DENY
        granted_by: ID of the acting user
        expires_at: Optional expiry; expired overrides stop counting
        reason: Free-form justification
        overrides_enabled: Defaults to USER_PERMISSIONS_ENABLED

    Raises:
        InvalidInput: bad grant type, or overrides are disabled
        NotFound: unknown user or permission
    """
    if overrides_enabled is None:
        overrides_enabled = config.USER_PERMISSIONS_ENABLED
    if not overrides_enabled:
        raise InvalidInput("User permission overrides are disabled")

    grant_type = parse_grant_type(grant_type)
    await get_user(db, user_id)
    await get_permission(db, permission_id)

    try:
        override = await db.scalar(
            select(UserPermission).where(
                UserPermission.user_id == user_id,
                UserPermission.permission_id == permission_id,
            )
        )
    except SQLAlchemyError as e:
        raise StoreError("Failed to load user permission") from e

    async with atomic(db):
        if override is None:
            override = UserPermission(user_id=user_id, permission_id=permission_id)
            db.add(override)
        override.grant_type = grant_type
        override.granted_by = granted_by
        override.granted_at = utcnow()
        override.expires_at = as_utc(expires_at)
        override.reason = reason
        override.is_active = True
    await db.refresh(override)

    log.info(
        "%s permission %s for user %s",
        "Granted" if grant_type == GrantType.GRANT else "Denied",
        permission_id,
        user_id,
    )
    return override


async def revoke(db: AsyncSession, user_id: int, permission_id: int) -> None:
    """Remove the user's override for a permission; no-op when absent."""
    async with atomic(db):
        result = await db.execute(
            sql_delete(UserPermission).where(
                UserPermission.user_id == user_id,
                UserPermission.permission_id == permission_id,
            )
        )

    if result.rowcount:
        log.info("Revoked override on permission %s for user %s", permission_id, user_id)


async def list_direct(
    db: AsyncSession,
    user_id: int,
    overrides_enabled: Optional[bool] = None,
) -> List[UserPermission]:
    """
    Active, non-expired overrides of a user, ordered by permission.

    Returns an empty list while overrides are disabled.
    """
    if overrides_enabled is None:
        overrides_enabled = config.USER_PERMISSIONS_ENABLED
    if not overrides_enabled:
        return []

    try:
        result = await db.execute(
            select(UserPermission)
            .join(Permission, Permission.id == UserPermission.permission_id)
            .where(
                UserPermission.user_id == user_id,
                live_binding(UserPermission, utcnow()),
                Permission.deleted_at.is_(None),
            )
            .order_by(Permission.module.asc(), Permission.action.asc(), UserPermission.id.asc())
        )
    except SQLAlchemyError as e:
        raise StoreError("Failed to load user permissions") from e
    return list(result.scalars().all())


async def list_user_permissions(
    db: AsyncSession,
    user_id: int,
    overrides_enabled: Optional[bool] = None,
) -> dict:
    """
    Role-derived permissions and direct overrides of a user, side by side.

    Returns:
        {"role_permissions": [Permission], "direct_permissions": [UserPermission]}

    Raises:
        NotFound: unknown user
    """
    await get_user(db, user_id)

    stmt = (
        select(Permission)
        .join(RolePermission, RolePermission.permission_id == Permission.id)
        .join(user_roles, user_roles.c.role_id == RolePermission.role_id)
        .where(
            user_roles.c.user_id == user_id,
            live_binding(RolePermission, utcnow()),
            live_permission(),
        )
        .order_by(Permission.module.asc(), Permission.action.asc(), Permission.id.asc())
    )
    try:
        result = await db.execute(stmt)
    except SQLAlchemyError as e:
        raise StoreError("Failed to load role permissions") from e

    # A permission reached through several roles appears once
    role_permissions = list({permission.id: permission for permission in result.scalars().all()}.values())

    return {
        "role_permissions": role_permissions,
        "direct_permissions": await list_direct(db, user_id, overrides_enabled),
    }
