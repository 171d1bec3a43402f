"""
Tests for direct user permission overrides.
"""
from datetime import timedelta

import pytest
from sqlalchemy import func, select

from app.core.exceptions import InvalidInput, NotFound
from app.features.permissions import bindings, overrides, roles
from app.features.permissions.models import GrantType, UserPermission
from app.utils import utcnow
from tests.conftest import make_permission, make_role, make_user


class TestGrant:

    @pytest.mark.asyncio
    async def test_grant_creates_override(self, db):
        user = await make_user(db, "alice")
        permission = await make_permission(db, "SAMPLE", "DISPATCH")

        override = await overrides.grant(
            db, user.id, permission.id, "grant", granted_by=1, reason="Covering shipping",
            overrides_enabled=True,
        )

        assert override.grant_type == GrantType.GRANT
        assert override.granted_by == 1
        assert override.reason == "Covering shipping"
        assert override.is_active is True

    @pytest.mark.asyncio
    async def test_second_grant_updates_in_place(self, db):
        user = await make_user(db, "alice")
        permission = await make_permission(db, "SAMPLE", "DISPATCH")

        first = await overrides.grant(db, user.id, permission.id, GrantType.GRANT, granted_by=1, overrides_enabled=True)
        second = await overrides.grant(
            db, user.id, permission.id, GrantType.DENY, granted_by=2, reason="Suspended", overrides_enabled=True
        )

        count = await db.scalar(select(func.count(UserPermission.id)).where(UserPermission.user_id == user.id))
        assert count == 1
        assert second.id == first.id
        assert second.grant_type == GrantType.DENY
        assert second.granted_by == 2
        assert second.reason == "Suspended"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("grant_type", ["ALLOW", "", None, "revoke"])
    async def test_invalid_grant_type(self, db, grant_type):
        user = await make_user(db, "alice")
        permission = await make_permission(db, "SAMPLE", "DISPATCH")

        with pytest.raises(InvalidInput):
            await overrides.grant(db, user.id, permission.id, grant_type, granted_by=None, overrides_enabled=True)

    @pytest.mark.asyncio
    async def test_unknown_user_or_permission(self, db):
        user = await make_user(db, "alice")
        permission = await make_permission(db, "SAMPLE", "DISPATCH")

        with pytest.raises(NotFound):
            await overrides.grant(db, 999, permission.id, "GRANT", granted_by=None, overrides_enabled=True)
        with pytest.raises(NotFound):
            await overrides.grant(db, user.id, 999, "GRANT", granted_by=None, overrides_enabled=True)

    @pytest.mark.asyncio
    async def test_disabled_overrides_reject_grant(self, db):
        user = await make_user(db, "alice")
        permission = await make_permission(db, "SAMPLE", "DISPATCH")

        with pytest.raises(InvalidInput):
            await overrides.grant(db, user.id, permission.id, "GRANT", granted_by=None, overrides_enabled=False)


class TestRevoke:

    @pytest.mark.asyncio
    async def test_revoke_removes_override(self, db):
        user = await make_user(db, "alice")
        permission = await make_permission(db, "SAMPLE", "DISPATCH")
        await overrides.grant(db, user.id, permission.id, "DENY", granted_by=None, overrides_enabled=True)

        await overrides.revoke(db, user.id, permission.id)

        assert await overrides.list_direct(db, user.id, overrides_enabled=True) == []

    @pytest.mark.asyncio
    async def test_revoke_absent_is_idempotent(self, db):
        user = await make_user(db, "alice")
        permission = await make_permission(db, "SAMPLE", "DISPATCH")

        await overrides.revoke(db, user.id, permission.id)
        await overrides.revoke(db, user.id, permission.id)

        assert await overrides.list_direct(db, user.id, overrides_enabled=True) == []


class TestListDirect:

    @pytest.mark.asyncio
    async def test_expired_override_not_listed(self, db):
        user = await make_user(db, "alice")
        live = await make_permission(db, "ORDER", "APPROVE")
        stale = await make_permission(db, "ORDER", "CANCEL")

        await overrides.grant(
            db, user.id, live.id, "GRANT", granted_by=None,
            expires_at=utcnow() + timedelta(hours=1), overrides_enabled=True,
        )
        await overrides.grant(
            db, user.id, stale.id, "GRANT", granted_by=None,
            expires_at=utcnow() - timedelta(hours=1), overrides_enabled=True,
        )

        listed = await overrides.list_direct(db, user.id, overrides_enabled=True)

        assert [o.permission_id for o in listed] == [live.id]

    @pytest.mark.asyncio
    async def test_disabled_overrides_list_empty(self, db):
        user = await make_user(db, "alice")
        permission = await make_permission(db, "ORDER", "APPROVE")
        await overrides.grant(db, user.id, permission.id, "GRANT", granted_by=None, overrides_enabled=True)

        assert await overrides.list_direct(db, user.id, overrides_enabled=False) == []


class TestUserPermissions:

    @pytest.mark.asyncio
    async def test_role_and_direct_side_by_side(self, db):
        user = await make_user(db, "alice")
        view = await make_permission(db, "SAMPLE", "VIEW")
        dispatch = await make_permission(db, "SAMPLE", "DISPATCH")
        first = await make_role(db, "STAFF")
        second = await make_role(db, "PACKER")
        await bindings.assign(db, first.id, [view.id], granted_by=None)
        await bindings.assign(db, second.id, [view.id], granted_by=None)
        await roles.assign_role_to_user(db, user.id, first.id)
        await roles.assign_role_to_user(db, user.id, second.id)
        await overrides.grant(db, user.id, dispatch.id, "GRANT", granted_by=None, overrides_enabled=True)

        result = await overrides.list_user_permissions(db, user.id, overrides_enabled=True)

        assert [p.name for p in result["role_permissions"]] == ["SAMPLE_VIEW"]
        assert [o.permission_id for o in result["direct_permissions"]] == [dispatch.id]

    @pytest.mark.asyncio
    async def test_unknown_user(self, db):
        with pytest.raises(NotFound):
            await overrides.list_user_permissions(db, 999, overrides_enabled=True)
