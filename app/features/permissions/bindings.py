"""
Role-permission binding management.

Assignment has replace semantics: the role's current bindings are removed and
the new set inserted in the same transaction. Bulk operations validate every
role and permission before writing and commit once, so a batch either lands
completely or not at all.
"""
from typing import Iterable, List, Optional
from sqlalchemy import select, delete as sql_delete, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import atomic
from app.core.exceptions import NotFound, StoreError
from app.features.permissions.models import (
    Permission,
    Role,
    RolePermission,
    live_binding,
    live_permission,
)
from app.utils import get_logger, utcnow


log = get_logger(__name__)


def _unique(ids: Iterable[int]) -> List[int]:
    """Deduplicate while keeping first-seen order."""
    return list(dict.fromkeys(ids))


async def _require_roles(db: AsyncSession, role_ids: List[int]) -> None:
    try:
        result = await db.execute(select(Role.id).where(Role.id.in_(role_ids)))
    except SQLAlchemyError as e:
        raise StoreError("Failed to load roles") from e
    found = set(result.scalars().all())
    for role_id in role_ids:
        if role_id not in found:
            raise NotFound("Role", role_id)


async def _require_permissions(db: AsyncSession, permission_ids: List[int]) -> None:
    if not permission_ids:
        return
    try:
        result = await db.execute(
            select(Permission.id).where(
                Permission.id.in_(permission_ids),
                Permission.deleted_at.is_(None),
            )
        )
    except SQLAlchemyError as e:
        raise StoreError("Failed to load permissions") from e
    found = set(result.scalars().all())
    for permission_id in permission_ids:
        if permission_id not in found:
            raise NotFound("Permission", permission_id)


async def _replace_bindings(
    db: AsyncSession,
    role_id: int,
    permission_ids: List[int],
    granted_by: Optional[int],
) -> None:
    """Delete every binding of the role, then insert the new set. No commit."""
    await db.execute(sql_delete(RolePermission).where(RolePermission.role_id == role_id))

    now = utcnow()
    db.add_all([
        RolePermission(
            role_id=role_id,
            permission_id=permission_id,
            granted_by=granted_by,
            granted_at=now,
            expires_at=None,
            is_active=True,
        )
        for permission_id in permission_ids
    ])
    await db.flush()


async def _remove_bindings(db: AsyncSession, role_id: int, permission_ids: List[int]) -> int:
    """Delete the role's bindings to the given permissions. No commit."""
    result = await db.execute(
        sql_delete(RolePermission).where(
            RolePermission.role_id == role_id,
            RolePermission.permission_id.in_(permission_ids),
        )
    )
    return result.rowcount or 0


async def assign(
    db: AsyncSession,
    role_id: int,
    permission_ids: Iterable[int],
    granted_by: Optional[int],
) -> None:
    """
    Replace the role's permission set.

    Args:
        db: Database session
        role_id: Role receiving the permissions
        permission_ids: New permission set; duplicates collapse
        granted_by: ID of the user performing the assignment

    Raises:
        NotFound: unknown role or permission (nothing is written)
        StoreError: database failure (transaction rolled back)
    """
    permission_ids = _unique(permission_ids)
    await _require_roles(db, [role_id])
    await _require_permissions(db, permission_ids)

    async with atomic(db):
        await _replace_bindings(db, role_id, permission_ids, granted_by)

    log.info("Assigned %d permissions to role %s", len(permission_ids), role_id)


async def remove(db: AsyncSession, role_id: int, permission_ids: Iterable[int]) -> None:
    """
    Remove bindings between the role and the given permissions.

    Missing bindings are ignored.

    Raises:
        NotFound: unknown role
    """
    permission_ids = _unique(permission_ids)
    await _require_roles(db, [role_id])
    if not permission_ids:
        return

    async with atomic(db):
        removed = await _remove_bindings(db, role_id, permission_ids)

    log.info("Removed %d permissions from role %s", removed, role_id)


async def list_for_role(db: AsyncSession, role_id: int) -> List[Permission]:
    """
    Permissions bound to a role through active, non-expired bindings,
    ordered by (module, action).

    Raises:
        NotFound: unknown role
    """
    await _require_roles(db, [role_id])

    stmt = (
        select(Permission)
        .join(RolePermission, RolePermission.permission_id == Permission.id)
        .where(
            RolePermission.role_id == role_id,
            live_binding(RolePermission, utcnow()),
            live_permission(),
        )
        .distinct()
        .order_by(Permission.module.asc(), Permission.action.asc(), Permission.id.asc())
    )
    try:
        result = await db.execute(stmt)
    except SQLAlchemyError as e:
        raise StoreError("Failed to load role permissions") from e
    return list(result.scalars().all())


async def clone(
    db: AsyncSession,
    from_role_id: int,
    to_role_id: int,
    granted_by: Optional[int],
) -> None:
    """
    Copy the source role's current permission set onto the target role.

    The target's previous bindings are replaced; the source is untouched.

    Raises:
        NotFound: either role is missing
    """
    await _require_roles(db, [from_role_id, to_role_id])
    source_permissions = await list_for_role(db, from_role_id)
    permission_ids = [permission.id for permission in source_permissions]

    async with atomic(db):
        await _replace_bindings(db, to_role_id, permission_ids, granted_by)

    log.info("Cloned %d permissions from role %s to role %s", len(permission_ids), from_role_id, to_role_id)


async def bulk_assign(
    db: AsyncSession,
    role_ids: Iterable[int],
    permission_ids: Iterable[int],
    granted_by: Optional[int],
) -> None:
    """
    Apply assign() to every role inside one transaction.

    Any unknown role or permission aborts the whole batch before a write.

    Raises:
        NotFound: unknown role or permission
        StoreError: database failure (nothing is committed)
    """
    role_ids = _unique(role_ids)
    permission_ids = _unique(permission_ids)
    if not role_ids or not permission_ids:
        return

    await _require_roles(db, role_ids)
    await _require_permissions(db, permission_ids)

    async with atomic(db):
        for role_id in role_ids:
            await _replace_bindings(db, role_id, permission_ids, granted_by)

    log.info("Bulk assigned %d permissions to %d roles", len(permission_ids), len(role_ids))


async def bulk_revoke(
    db: AsyncSession,
    role_ids: Iterable[int],
    permission_ids: Iterable[int],
) -> None:
    """
    Apply remove() to every role inside one transaction.

    Raises:
        NotFound: unknown role
        StoreError: database failure (nothing is committed)
    """
    role_ids = _unique(role_ids)
    permission_ids = _unique(permission_ids)
    if not role_ids or not permission_ids:
        return

    await _require_roles(db, role_ids)

    async with atomic(db):
        removed = 0
        for role_id in role_ids:
            removed += await _remove_bindings(db, role_id, permission_ids)

    log.info("Bulk revoked %d bindings across %d roles", removed, len(role_ids))


async def count_for_role(db: AsyncSession, role_id: int) -> int:
    """Number of live bindings a role holds."""
    try:
        return await db.scalar(
            select(func.count(RolePermission.id)).where(
                RolePermission.role_id == role_id,
                live_binding(RolePermission, utcnow()),
            )
        ) or 0
    except SQLAlchemyError as e:
        raise StoreError("Failed to count role permissions") from e
