"""
Permission catalog: the administered set of permissions and permission groups.
"""
import re
from typing import List, Optional, Tuple
from sqlalchemy import select, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import atomic
from app.core.exceptions import AlreadyExists, InUse, InvalidInput, NotFound, StoreError
from app.features.permissions.models import (
    Permission,
    PermissionGroup,
    RolePermission,
    UserPermission,
    canonical_permission_name,
)
from app.utils import get_logger, utcnow


log = get_logger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")


def validate_identifier(value: Optional[str], field: str) -> str:
    """
    Check a module / action / resource token and return it uppercased.

    Raises:
        InvalidInput: if the value is empty or contains anything but letters,
            digits and underscores
    """
    if value is None or not value.strip():
        raise InvalidInput(f"{field} is required")
    value = value.strip()
    if not _IDENTIFIER.match(value):
        raise InvalidInput(f"{field} must contain only letters, digits and underscores")
    return value.upper()


def _catalog_query():
    return (
        select(Permission)
        .where(Permission.deleted_at.is_(None), Permission.is_active.is_(True))
        .order_by(Permission.module.asc(), Permission.action.asc(), Permission.id.asc())
    )


async def list_all(db: AsyncSession) -> List[Permission]:
    """Active permissions ordered by (module, action)."""
    try:
        result = await db.execute(_catalog_query())
    except SQLAlchemyError as e:
        raise StoreError("Failed to list permissions") from e
    return list(result.scalars().all())


async def list_by_module(db: AsyncSession, module: str) -> List[Permission]:
    """Active permissions of one module ordered by (module, action)."""
    try:
        result = await db.execute(_catalog_query().where(Permission.module == module.strip().upper()))
    except SQLAlchemyError as e:
        raise StoreError("Failed to list permissions") from e
    return list(result.scalars().all())


async def get_permission(db: AsyncSession, permission_id: int) -> Permission:
    """
    Get a non-deleted permission by ID.

    Raises:
        NotFound: if no such permission exists or it was deleted
    """
    try:
        permission = await db.scalar(
            select(Permission).where(
                Permission.id == permission_id,
                Permission.deleted_at.is_(None),
            )
        )
    except SQLAlchemyError as e:
        raise StoreError("Failed to load permission") from e
    if permission is None:
        raise NotFound("Permission", permission_id)
    return permission


async def find_by_name(db: AsyncSession, name: str) -> Permission:
    """
    Get a non-deleted permission by canonical name (case-insensitive).

    Raises:
        NotFound: if the name does not resolve
    """
    try:
        permission = await db.scalar(
            select(Permission).where(
                Permission.name == name.strip().upper(),
                Permission.deleted_at.is_(None),
            )
        )
    except SQLAlchemyError as e:
        raise StoreError("Failed to load permission") from e
    if permission is None:
        raise NotFound("Permission", name)
    return permission


async def create(
    db: AsyncSession,
    module: str,
    action: str,
    resource: Optional[str] = None,
    name: Optional[str] = None,
    description: Optional[str] = None,
) -> Permission:
    """
    Create a permission.

    When ``name`` is absent the canonical name is derived as
    MODULE_ACTION or MODULE_ACTION_RESOURCE.

    Raises:
        InvalidInput: malformed module, action, resource or name
        AlreadyExists: the name is held by a non-deleted permission
    """
    module = validate_identifier(module, "module")
    action = validate_identifier(action, "action")
    if resource is not None and resource.strip():
        resource = resource.strip()
        validate_identifier(resource, "resource")
    else:
        resource = None

    if name is not None and name.strip():
        permission_name = validate_identifier(name, "name")
    else:
        permission_name = canonical_permission_name(module, action, resource)

    try:
        existing = await db.scalar(
            select(func.count(Permission.id)).where(
                Permission.name == permission_name,
                Permission.deleted_at.is_(None),
            )
        )
    except SQLAlchemyError as e:
        raise StoreError("Failed to check permission name") from e
    if existing:
        raise AlreadyExists(f"Permission '{permission_name}' already exists")

    permission = Permission(
        module=module,
        action=action,
        resource=resource,
        name=permission_name,
        description=description,
        is_active=True,
    )
    async with atomic(db):
        db.add(permission)
    await db.refresh(permission)

    log.info("Created permission %s (id=%s)", permission.name, permission.id)
    return permission


async def update(
    db: AsyncSession,
    permission_id: int,
    description: Optional[str] = None,
    is_active: Optional[bool] = None,
) -> Permission:
    """
    Partially update a permission; only non-None fields change.

    Raises:
        NotFound: if the permission does not exist
    """
    permission = await get_permission(db, permission_id)

    async with atomic(db):
        if description is not None:
            permission.description = description
        if is_active is not None:
            permission.is_active = is_active
    await db.refresh(permission)

    log.info("Updated permission %s", permission.name)
    return permission


async def is_in_use(db: AsyncSession, permission_id: int) -> bool:
    """True when an active role binding or user override references the permission."""
    try:
        role_refs = await db.scalar(
            select(func.count(RolePermission.id)).where(
                RolePermission.permission_id == permission_id,
                RolePermission.is_active.is_(True),
            )
        )
        if role_refs:
            return True
        user_refs = await db.scalar(
            select(func.count(UserPermission.id)).where(
                UserPermission.permission_id == permission_id,
                UserPermission.is_active.is_(True),
            )
        )
    except SQLAlchemyError as e:
        raise StoreError("Failed to check permission references") from e
    return bool(user_refs)


async def delete(db: AsyncSession, permission_id: int) -> None:
    """
    Soft-delete a permission.

    Raises:
        NotFound: if the permission does not exist
        InUse: while an active binding or override references it
    """
    permission = await get_permission(db, permission_id)

    if await is_in_use(db, permission_id):
        raise InUse("Cannot delete permission that is currently assigned")

    async with atomic(db):
        permission.deleted_at = utcnow()
        permission.is_active = False

    log.info("Deleted permission %s", permission.name)


# ============================================================================
# Permission Groups
# ============================================================================

async def list_groups(db: AsyncSession) -> List[Tuple[PermissionGroup, List[Permission]]]:
    """
    Active permission groups ordered by sort_order, each with the active
    permissions of its module.
    """
    try:
        result = await db.execute(
            select(PermissionGroup)
            .where(PermissionGroup.is_active.is_(True))
            .order_by(PermissionGroup.sort_order.asc(), PermissionGroup.id.asc())
        )
        groups = list(result.scalars().all())

        modules = {group.module for group in groups}
        permissions_by_module: dict[str, List[Permission]] = {module: [] for module in modules}
        if modules:
            perms = await db.execute(_catalog_query().where(Permission.module.in_(modules)))
            for permission in perms.scalars().all():
                permissions_by_module[permission.module].append(permission)
    except SQLAlchemyError as e:
        raise StoreError("Failed to list permission groups") from e

    return [(group, permissions_by_module.get(group.module, [])) for group in groups]


async def create_group(
    db: AsyncSession,
    group_name: str,
    display_name: str,
    module: str,
    description: Optional[str] = None,
    sort_order: int = 0,
) -> PermissionGroup:
    """
    Create a permission group.

    Raises:
        InvalidInput: malformed group name or module
        AlreadyExists: duplicate group name
    """
    group_name = validate_identifier(group_name, "group_name")
    module = validate_identifier(module, "module")

    try:
        existing = await db.scalar(
            select(PermissionGroup).where(PermissionGroup.group_name == group_name)
        )
    except SQLAlchemyError as e:
        raise StoreError("Failed to check permission group") from e
    if existing is not None:
        raise AlreadyExists(f"Permission group '{group_name}' already exists")

    group = PermissionGroup(
        group_name=group_name,
        display_name=display_name,
        description=description,
        module=module,
        sort_order=sort_order,
        is_active=True,
    )
    async with atomic(db):
        db.add(group)
    await db.refresh(group)
    return group
