"""
Role management and user-role assignment.
"""
from typing import List, Optional
from sqlalchemy import select, delete as sql_delete, insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import atomic
from app.core.exceptions import AlreadyExists, InvalidInput, NotFound, StoreError
from app.features.permissions.models import Role, RolePermission
from app.features.users.models import User, user_roles
from app.utils import get_logger


log = get_logger(__name__)

ADMIN_ROLE_NAMES = ("ADMIN", "SUPER_ADMIN")


async def get_user(db: AsyncSession, user_id: int) -> User:
    """
    Get a user by ID.

    Raises:
        NotFound: if the user does not exist
    """
    try:
        user = await db.scalar(select(User).where(User.id == user_id))
    except SQLAlchemyError as e:
        raise StoreError("Failed to load user") from e
    if user is None:
        raise NotFound("User", user_id)
    return user


async def get_role(db: AsyncSession, role_id: int) -> Role:
    """
    Get a role by ID.

    Raises:
        NotFound: if the role does not exist
    """
    try:
        role = await db.scalar(select(Role).where(Role.id == role_id))
    except SQLAlchemyError as e:
        raise StoreError("Failed to load role") from e
    if role is None:
        raise NotFound("Role", role_id)
    return role


async def list_roles(db: AsyncSession) -> List[Role]:
    try:
        result = await db.execute(select(Role).order_by(Role.name.asc()))
    except SQLAlchemyError as e:
        raise StoreError("Failed to list roles") from e
    return list(result.scalars().all())


async def create_role(db: AsyncSession, name: str, description: Optional[str] = None) -> Role:
    """
    Create a role. Role names are stored uppercased.

    Raises:
        InvalidInput: empty name
        AlreadyExists: duplicate name
    """
    if not name or not name.strip():
        raise InvalidInput("Role name is required")
    name = name.strip().upper()

    try:
        existing = await db.scalar(select(Role).where(Role.name == name))
    except SQLAlchemyError as e:
        raise StoreError("Failed to check role name") from e
    if existing is not None:
        raise AlreadyExists(f"Role '{name}' already exists")

    role = Role(name=name, description=description)
    async with atomic(db):
        db.add(role)
    await db.refresh(role)

    log.info("Created role %s (id=%s)", role.name, role.id)
    return role


async def delete_role(db: AsyncSession, role_id: int) -> None:
    """
    Delete a role together with its permission bindings and user links.

    Raises:
        NotFound: if the role does not exist
    """
    role = await get_role(db, role_id)

    async with atomic(db):
        await db.execute(sql_delete(RolePermission).where(RolePermission.role_id == role_id))
        await db.execute(sql_delete(user_roles).where(user_roles.c.role_id == role_id))
        await db.delete(role)

    log.info("Deleted role %s", role.name)


# ============================================================================
# User-Role Assignment
# ============================================================================

async def assign_role_to_user(db: AsyncSession, user_id: int, role_id: int) -> bool:
    """
    Link a user to a role.

    Returns:
        False when the link already existed, True when it was created

    Raises:
        NotFound: unknown user or role
    """
    await get_user(db, user_id)
    await get_role(db, role_id)

    try:
        existing = await db.execute(
            select(user_roles).where(
                user_roles.c.user_id == user_id,
                user_roles.c.role_id == role_id,
            )
        )
    except SQLAlchemyError as e:
        raise StoreError("Failed to check user role") from e
    if existing.first():
        return False

    async with atomic(db):
        await db.execute(insert(user_roles).values(user_id=user_id, role_id=role_id))

    log.info("Assigned role %s to user %s", role_id, user_id)
    return True


async def remove_role_from_user(db: AsyncSession, user_id: int, role_id: int) -> None:
    """Unlink a user from a role; no-op when the link is absent."""
    async with atomic(db):
        await db.execute(
            sql_delete(user_roles).where(
                user_roles.c.user_id == user_id,
                user_roles.c.role_id == role_id,
            )
        )


async def get_user_role_names(db: AsyncSession, user_id: int) -> List[str]:
    """Names of the roles a user holds, sorted."""
    try:
        result = await db.execute(
            select(Role.name)
            .join(user_roles, user_roles.c.role_id == Role.id)
            .where(user_roles.c.user_id == user_id)
            .order_by(Role.name.asc())
        )
    except SQLAlchemyError as e:
        raise StoreError("Failed to load user roles") from e
    return list(result.scalars().all())
