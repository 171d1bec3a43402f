"""
Tests for the effective permission resolver.
"""
from datetime import timedelta, timezone
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import update
from sqlalchemy.exc import OperationalError

from app.core.exceptions import NotFound, StoreError
from app.features.permissions import bindings, catalog, overrides, roles
from app.features.permissions.models import RolePermission
from app.features.permissions.resolver import PermissionResolver
from app.utils import utcnow
from tests.conftest import make_permission, make_role, make_user


async def user_with_role(db, username, role_name, permissions):
    """Create a user holding one role bound to the given permissions."""
    user = await make_user(db, username)
    role = await make_role(db, role_name)
    await bindings.assign(db, role.id, [p.id for p in permissions], granted_by=None)
    await roles.assign_role_to_user(db, user.id, role.id)
    return user, role


class TestHasPermission:

    @pytest.mark.asyncio
    async def test_role_grant(self, db, resolver):
        view = await make_permission(db, "SAMPLE", "VIEW")
        user, _ = await user_with_role(db, "alice", "STAFF", [view])

        assert await resolver.has_permission(db, user.id, "SAMPLE", "VIEW") is True
        assert await resolver.has_permission(db, user.id, "sample", "view") is True
        assert await resolver.has_permission(db, user.id, "SAMPLE", "DELETE") is False

    @pytest.mark.asyncio
    async def test_deny_then_revoke_restores_access(self, db, resolver):
        view = await make_permission(db, "SAMPLE", "VIEW")
        user, _ = await user_with_role(db, "alice", "STAFF", [view])

        await overrides.grant(db, user.id, view.id, "DENY", granted_by=None, overrides_enabled=True)
        assert await resolver.has_permission(db, user.id, "SAMPLE", "VIEW") is False

        await overrides.revoke(db, user.id, view.id)
        assert await resolver.has_permission(db, user.id, "SAMPLE", "VIEW") is True

    @pytest.mark.asyncio
    async def test_direct_grant_without_role(self, db, resolver):
        dispatch = await make_permission(db, "SAMPLE", "DISPATCH")
        user = await make_user(db, "alice")

        assert await resolver.has_permission(db, user.id, "SAMPLE", "DISPATCH") is False
        await overrides.grant(db, user.id, dispatch.id, "GRANT", granted_by=None, overrides_enabled=True)
        assert await resolver.has_permission(db, user.id, "SAMPLE", "DISPATCH") is True

    @pytest.mark.asyncio
    async def test_deny_beats_role_and_grant(self, db, resolver):
        view = await make_permission(db, "ORDER", "VIEW")
        user, _ = await user_with_role(db, "alice", "STAFF", [view])
        second = await make_role(db, "MANAGER")
        await bindings.assign(db, second.id, [view.id], granted_by=None)
        await roles.assign_role_to_user(db, user.id, second.id)

        await overrides.grant(db, user.id, view.id, "DENY", granted_by=None, overrides_enabled=True)

        assert await resolver.has_permission(db, user.id, "ORDER", "VIEW") is False

    @pytest.mark.asyncio
    async def test_expired_overrides_ignored(self, db, resolver):
        view = await make_permission(db, "ORDER", "VIEW")
        ship = await make_permission(db, "ORDER", "SHIP")
        user, _ = await user_with_role(db, "alice", "STAFF", [view])
        past = utcnow() - timedelta(minutes=1)

        await overrides.grant(db, user.id, view.id, "DENY", granted_by=None, expires_at=past, overrides_enabled=True)
        await overrides.grant(db, user.id, ship.id, "GRANT", granted_by=None, expires_at=past, overrides_enabled=True)

        assert await resolver.has_permission(db, user.id, "ORDER", "VIEW") is True
        assert await resolver.has_permission(db, user.id, "ORDER", "SHIP") is False

    @pytest.mark.asyncio
    async def test_expiry_with_offset_compared_in_utc(self, db, resolver):
        view = await make_permission(db, "USER", "VIEW")
        ship = await make_permission(db, "ORDER", "SHIP")
        user, _ = await user_with_role(db, "alice", "STAFF", [view, ship])
        expired = (utcnow() - timedelta(hours=1)).astimezone(timezone(timedelta(hours=5)))
        pending = (utcnow() + timedelta(hours=1)).astimezone(timezone(timedelta(hours=-5)))

        await overrides.grant(db, user.id, view.id, "DENY", granted_by=None, expires_at=expired, overrides_enabled=True)
        await overrides.grant(db, user.id, ship.id, "DENY", granted_by=None, expires_at=pending, overrides_enabled=True)

        assert await resolver.has_permission(db, user.id, "USER", "VIEW") is True
        assert await resolver.has_permission(db, user.id, "ORDER", "SHIP") is False

    @pytest.mark.asyncio
    async def test_expired_role_binding_ignored(self, db, resolver):
        view = await make_permission(db, "ORDER", "VIEW")
        user, role = await user_with_role(db, "alice", "STAFF", [view])

        await db.execute(
            update(RolePermission)
            .where(RolePermission.role_id == role.id)
            .values(expires_at=utcnow() - timedelta(seconds=30))
        )
        await db.commit()

        assert await resolver.has_permission(db, user.id, "ORDER", "VIEW") is False

    @pytest.mark.asyncio
    async def test_inactive_binding_ignored(self, db, resolver):
        view = await make_permission(db, "ORDER", "VIEW")
        user, role = await user_with_role(db, "alice", "STAFF", [view])

        await db.execute(
            update(RolePermission).where(RolePermission.role_id == role.id).values(is_active=False)
        )
        await db.commit()

        assert await resolver.has_permission(db, user.id, "ORDER", "VIEW") is False

    @pytest.mark.asyncio
    async def test_inactive_permission_never_matches(self, db, resolver):
        view = await make_permission(db, "ORDER", "VIEW")
        user, _ = await user_with_role(db, "alice", "STAFF", [view])

        await catalog.update(db, view.id, is_active=False)

        assert await resolver.has_permission(db, user.id, "ORDER", "VIEW") is False

    @pytest.mark.asyncio
    async def test_matches_on_module_and_action_with_resource(self, db, resolver):
        view = await make_permission(db, "SAMPLE", "VIEW")
        user, _ = await user_with_role(db, "alice", "STAFF", [view])

        assert await resolver.has_permission(db, user.id, "SAMPLE", "VIEW", "catalogue") is True

    @pytest.mark.asyncio
    async def test_matches_on_resource_name(self, db, resolver):
        export = await make_permission(db, "REPORT", "EXPORT", resource="FINANCE")
        user, _ = await user_with_role(db, "alice", "ANALYST", [export])

        assert await resolver.has_permission(db, user.id, "REPORT", "EXPORT", "FINANCE") is True

    @pytest.mark.asyncio
    async def test_overrides_disabled_uses_roles_only(self, db):
        resolver = PermissionResolver(overrides_enabled=False)
        view = await make_permission(db, "ORDER", "VIEW")
        ship = await make_permission(db, "ORDER", "SHIP")
        user, _ = await user_with_role(db, "alice", "STAFF", [view])

        await overrides.grant(db, user.id, view.id, "DENY", granted_by=None, overrides_enabled=True)
        await overrides.grant(db, user.id, ship.id, "GRANT", granted_by=None, overrides_enabled=True)

        assert await resolver.has_permission(db, user.id, "ORDER", "VIEW") is True
        assert await resolver.has_permission(db, user.id, "ORDER", "SHIP") is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize("module,action", [("", "VIEW"), ("ORDER", ""), (None, "VIEW"), ("ORDER", None)])
    async def test_invalid_input_denied(self, db, resolver, module, action):
        view = await make_permission(db, "ORDER", "VIEW")
        user, _ = await user_with_role(db, "alice", "STAFF", [view])

        assert await resolver.has_permission(db, user.id, module, action) is False

    @pytest.mark.asyncio
    async def test_unknown_or_inactive_user_denied(self, db, resolver):
        view = await make_permission(db, "ORDER", "VIEW")
        user, _ = await user_with_role(db, "alice", "STAFF", [view])

        assert await resolver.has_permission(db, 999, "ORDER", "VIEW") is False
        assert await resolver.has_permission(db, None, "ORDER", "VIEW") is False

        user.account_status = "suspended"
        await db.commit()

        assert await resolver.has_permission(db, user.id, "ORDER", "VIEW") is False


class TestEffectivePermissions:

    @pytest.mark.asyncio
    async def test_roles_plus_grant_minus_deny(self, db, resolver):
        a = await make_permission(db, "SAMPLE", "VIEW")
        b = await make_permission(db, "SAMPLE", "DELETE")
        c = await make_permission(db, "ORDER", "APPROVE")
        user, _ = await user_with_role(db, "alice", "STAFF", [a, b])

        await overrides.grant(db, user.id, c.id, "GRANT", granted_by=None, overrides_enabled=True)
        await overrides.grant(db, user.id, b.id, "DENY", granted_by=None, overrides_enabled=True)

        effective = await resolver.get_effective_permissions(db, user.id)

        assert [p.name for p in effective] == ["ORDER_APPROVE", "SAMPLE_VIEW"]

    @pytest.mark.asyncio
    async def test_deduplicated_across_roles(self, db, resolver):
        a = await make_permission(db, "SAMPLE", "VIEW")
        user, _ = await user_with_role(db, "alice", "STAFF", [a])
        second = await make_role(db, "MANAGER")
        await bindings.assign(db, second.id, [a.id], granted_by=None)
        await roles.assign_role_to_user(db, user.id, second.id)
        await overrides.grant(db, user.id, a.id, "GRANT", granted_by=None, overrides_enabled=True)

        effective = await resolver.get_effective_permissions(db, user.id)

        assert [p.id for p in effective] == [a.id]

    @pytest.mark.asyncio
    async def test_agrees_with_has_permission(self, db, resolver):
        a = await make_permission(db, "SAMPLE", "VIEW")
        b = await make_permission(db, "SAMPLE", "TRACK")
        c = await make_permission(db, "ORDER", "SHIP")
        user, _ = await user_with_role(db, "alice", "STAFF", [a, b])
        await overrides.grant(db, user.id, b.id, "DENY", granted_by=None, overrides_enabled=True)

        effective = {p.id for p in await resolver.get_effective_permissions(db, user.id)}

        for permission in (a, b, c):
            allowed = await resolver.has_permission(db, user.id, permission.module, permission.action)
            assert allowed == (permission.id in effective)

    @pytest.mark.asyncio
    async def test_unknown_user(self, db, resolver):
        with pytest.raises(NotFound):
            await resolver.get_effective_permissions(db, 999)

    @pytest.mark.asyncio
    async def test_inactive_user_has_none(self, db, resolver):
        a = await make_permission(db, "SAMPLE", "VIEW")
        user, _ = await user_with_role(db, "alice", "STAFF", [a])
        user.account_status = "suspended"
        await db.commit()

        assert await resolver.get_effective_permissions(db, user.id) == []


class TestAdminAndFailures:

    @pytest.mark.asyncio
    async def test_is_admin(self, db, resolver):
        user = await make_user(db, "root")
        other = await make_user(db, "alice")
        admin = await make_role(db, "SUPER_ADMIN")
        await roles.assign_role_to_user(db, user.id, admin.id)

        assert await resolver.is_admin(db, user.id) is True
        assert await resolver.is_admin(db, other.id) is False

    @pytest.mark.asyncio
    async def test_admin_role_does_not_bypass_deny(self, db, resolver):
        view = await make_permission(db, "SYSTEM", "BACKUP")
        user, _ = await user_with_role(db, "root", "ADMIN", [view])
        await overrides.grant(db, user.id, view.id, "DENY", granted_by=None, overrides_enabled=True)

        assert await resolver.is_admin(db, user.id) is True
        assert await resolver.has_permission(db, user.id, "SYSTEM", "BACKUP") is False

    @pytest.mark.asyncio
    async def test_store_failure_raises_and_check_denies(self, resolver):
        db = AsyncMock()
        db.scalar.side_effect = OperationalError("SELECT", {}, Exception("database is locked"))

        with pytest.raises(StoreError):
            await resolver.has_permission(db, 1, "ORDER", "VIEW")
        assert await resolver.check_permission(db, 1, "ORDER", "VIEW") is False
