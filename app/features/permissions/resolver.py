"""
Effective permission resolver.

A user holds a permission when a role grants it or a direct GRANT override
does, and no direct DENY override exists:

    has_permission = (RoleSet or DirectGrant) and not DirectDeny

Only active, non-expired bindings and overrides count, and only active,
non-deleted permissions can match. Nothing is cached; every call reads the
store.
"""
from typing import Iterable, List, Optional
from sqlalchemy import select, func, and_, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.exceptions import NotFound, StoreError
from app.features.permissions.models import (
    GrantType,
    Permission,
    Role,
    RolePermission,
    UserPermission,
    canonical_permission_name,
    live_binding,
    live_permission,
)
from app.features.permissions.roles import ADMIN_ROLE_NAMES
from app.features.users.models import User, user_roles
from app.utils import get_logger, utcnow


log = get_logger(__name__)


def _matching(module: str, action: str, resource: Optional[str]):
    """Permissions addressed by canonical name or by the (module, action) pair."""
    module = module.strip().upper()
    action = action.strip().upper()
    return or_(
        Permission.name == canonical_permission_name(module, action, resource),
        and_(Permission.module == module, Permission.action == action),
    )


def _sorted(permissions: Iterable[Permission]) -> List[Permission]:
    return sorted(permissions, key=lambda p: (p.module, p.action, p.id))


class PermissionResolver:
    """
    Computes permission decisions for users.

    Args:
        overrides_enabled: when False, direct user overrides are ignored and
            only role-derived permissions count
    """

    def __init__(self, overrides_enabled: bool = True):
        self.overrides_enabled = overrides_enabled

    async def _load_user(self, db: AsyncSession, user_id: int) -> Optional[User]:
        try:
            return await db.scalar(select(User).where(User.id == user_id))
        except SQLAlchemyError as e:
            raise StoreError("Failed to load user") from e

    async def has_permission(
        self,
        db: AsyncSession,
        user_id: Optional[int],
        module: Optional[str],
        action: Optional[str],
        resource: Optional[str] = None,
    ) -> bool:
        """
        Decide whether a user may perform ``action`` in ``module``.

        Returns False for invalid input, unknown users and accounts that are
        not active.

        Raises:
            StoreError: the store could not be read
        """
        if not user_id or not module or not module.strip() or not action or not action.strip():
            return False

        user = await self._load_user(db, user_id)
        if user is None or not user.is_active:
            log.debug("Permission check for unknown or inactive user %s", user_id)
            return False

        now = utcnow()
        matching = _matching(module, action, resource)

        try:
            role_hits = await db.scalar(
                select(func.count(Permission.id))
                .select_from(Permission)
                .join(RolePermission, RolePermission.permission_id == Permission.id)
                .join(user_roles, user_roles.c.role_id == RolePermission.role_id)
                .where(
                    user_roles.c.user_id == user_id,
                    live_binding(RolePermission, now),
                    live_permission(),
                    matching,
                )
            )

            grant_types = set()
            if self.overrides_enabled:
                result = await db.execute(
                    select(UserPermission.grant_type)
                    .join(Permission, Permission.id == UserPermission.permission_id)
                    .where(
                        UserPermission.user_id == user_id,
                        live_binding(UserPermission, now),
                        live_permission(),
                        matching,
                    )
                )
                grant_types = set(result.scalars().all())
        except SQLAlchemyError as e:
            raise StoreError("Failed to evaluate permission") from e

        allowed = (bool(role_hits) or GrantType.GRANT in grant_types) and GrantType.DENY not in grant_types

        log.debug(
            "Permission check user=%s %s_%s resource=%s -> %s",
            user_id, module.upper(), action.upper(), resource, allowed,
        )
        return allowed

    async def get_user_role_permissions(self, db: AsyncSession, user_id: int) -> List[Permission]:
        """Permissions a user reaches through roles, deduplicated and ordered."""
        try:
            result = await db.execute(
                select(Permission)
                .join(RolePermission, RolePermission.permission_id == Permission.id)
                .join(user_roles, user_roles.c.role_id == RolePermission.role_id)
                .where(
                    user_roles.c.user_id == user_id,
                    live_binding(RolePermission, utcnow()),
                    live_permission(),
                )
            )
        except SQLAlchemyError as e:
            raise StoreError("Failed to load role permissions") from e
        return _sorted({p.id: p for p in result.scalars().all()}.values())

    async def get_effective_permissions(self, db: AsyncSession, user_id: int) -> List[Permission]:
        """
        The user's effective permission set:
        (role-derived ∪ direct GRANT) − direct DENY, ordered by (module, action).

        Accounts that are not active hold no permissions.

        Raises:
            NotFound: unknown user
            StoreError: the store could not be read
        """
        user = await self._load_user(db, user_id)
        if user is None:
            raise NotFound("User", user_id)
        if not user.is_active:
            return []

        effective = {p.id: p for p in await self.get_user_role_permissions(db, user_id)}

        if self.overrides_enabled:
            try:
                result = await db.execute(
                    select(UserPermission.grant_type, Permission)
                    .select_from(UserPermission)
                    .join(Permission, Permission.id == UserPermission.permission_id)
                    .where(
                        UserPermission.user_id == user_id,
                        live_binding(UserPermission, utcnow()),
                        live_permission(),
                    )
                )
                rows = result.all()
            except SQLAlchemyError as e:
                raise StoreError("Failed to load user permissions") from e

            for grant_type, permission in rows:
                if grant_type == GrantType.GRANT:
                    effective.setdefault(permission.id, permission)
            for grant_type, permission in rows:
                if grant_type == GrantType.DENY:
                    effective.pop(permission.id, None)

        return _sorted(effective.values())

    async def is_admin(self, db: AsyncSession, user_id: int) -> bool:
        """True when the user holds an ADMIN or SUPER_ADMIN role."""
        try:
            count = await db.scalar(
                select(func.count(Role.id))
                .select_from(Role)
                .join(user_roles, user_roles.c.role_id == Role.id)
                .where(
                    user_roles.c.user_id == user_id,
                    Role.name.in_(ADMIN_ROLE_NAMES),
                )
            )
        except SQLAlchemyError as e:
            raise StoreError("Failed to load user roles") from e
        return bool(count)

    async def check_permission(
        self,
        db: AsyncSession,
        user_id: Optional[int],
        module: Optional[str],
        action: Optional[str],
        resource: Optional[str] = None,
    ) -> bool:
        """has_permission that denies when the store fails."""
        try:
            return await self.has_permission(db, user_id, module, action, resource)
        except StoreError as e:
            log.error("Permission check failed for user %s: %s", user_id, e.message)
            return False


# Built once at import; the override flag does not change while running
resolver = PermissionResolver(overrides_enabled=config.USER_PERMISSIONS_ENABLED)


def get_resolver() -> PermissionResolver:
    """FastAPI dependency returning the application resolver."""
    return resolver
