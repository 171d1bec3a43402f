"""
Permission management API routes.

Provides endpoints for the permission catalog, roles, role-permission
bindings, user overrides and permission checks. Service errors are translated
to HTTP responses by the application exception handlers.
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.users.dependencies import get_current_user
from app.features.users.models import User
from app.features.permissions import bindings, catalog, overrides, roles
from app.features.permissions.models import canonical_permission_name
from app.features.permissions.resolver import PermissionResolver, get_resolver
from app.features.permissions.schemas import (
    PermissionCreate,
    PermissionUpdate,
    PermissionResponse,
    PermissionGroupResponse,
    RoleCreate,
    RoleResponse,
    RoleWithPermissions,
    RolePermissionsRequest,
    CloneRoleRequest,
    BulkRolePermissionsRequest,
    AssignRoleToUser,
    UserOverrideRequest,
    UserOverrideResponse,
    UserPermissionsResponse,
    EffectivePermissionsResponse,
    PermissionCheckRequest,
    PermissionCheckResponse,
)
from app.features.permissions.dependencies import can_view_roles, can_assign_permissions
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter()


# ============================================================================
# Permission Routes
# ============================================================================

@router.get("/permissions", response_model=List[PermissionResponse])
async def list_permissions(
    module: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(can_view_roles)
):
    """List active permissions, optionally filtered by module."""
    if module:
        return await catalog.list_by_module(db, module)
    return await catalog.list_all(db)


@router.get("/permissions/groups", response_model=List[PermissionGroupResponse])
async def list_permission_groups(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(can_view_roles)
):
    """List permission groups with their module's permissions."""
    groups = await catalog.list_groups(db)
    return [
        PermissionGroupResponse(
            id=group.id,
            group_name=group.group_name,
            display_name=group.display_name,
            description=group.description,
            module=group.module,
            sort_order=group.sort_order,
            permissions=[PermissionResponse.model_validate(p) for p in permissions],
        )
        for group, permissions in groups
    ]


@router.get("/permissions/by-name/{name}", response_model=PermissionResponse)
async def get_permission_by_name(
    name: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(can_view_roles)
):
    """Get a permission by its canonical name."""
    return await catalog.find_by_name(db, name)


@router.get("/permissions/{permission_id}", response_model=PermissionResponse)
async def get_permission(
    permission_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(can_view_roles)
):
    """Get a specific permission by ID."""
    return await catalog.get_permission(db, permission_id)


@router.post("/permissions", response_model=PermissionResponse, status_code=status.HTTP_201_CREATED)
async def create_permission(
    permission: PermissionCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(can_assign_permissions)
):
    """Create a new permission."""
    return await catalog.create(
        db,
        module=permission.module,
        action=permission.action,
        resource=permission.resource,
        name=permission.name,
        description=permission.description,
    )


@router.put("/permissions/{permission_id}", response_model=PermissionResponse)
async def update_permission(
    permission_id: int,
    permission_update: PermissionUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(can_assign_permissions)
):
    """Update a permission's description or active flag."""
    return await catalog.update(
        db,
        permission_id,
        description=permission_update.description,
        is_active=permission_update.is_active,
    )


@router.delete("/permissions/{permission_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_permission(
    permission_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(can_assign_permissions)
):
    """Soft-delete a permission that is no longer assigned anywhere."""
    await catalog.delete(db, permission_id)


# ============================================================================
# Role Routes
# ============================================================================

@router.get("/roles", response_model=List[RoleResponse])
async def list_roles(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(can_view_roles)
):
    """List all roles."""
    return await roles.list_roles(db)


@router.post("/roles", response_model=RoleResponse, status_code=status.HTTP_201_CREATED)
async def create_role(
    role: RoleCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(can_assign_permissions)
):
    """Create a new role."""
    return await roles.create_role(db, role.name, role.description)


@router.post("/roles/clone", status_code=status.HTTP_200_OK)
async def clone_role_permissions(
    request: CloneRoleRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(can_assign_permissions)
):
    """Replace the target role's permissions with a copy of the source role's."""
    await bindings.clone(db, request.from_role_id, request.to_role_id, granted_by=current_user.id)
    return {"message": "Role permissions cloned successfully"}


@router.post("/roles/bulk-assign", status_code=status.HTTP_200_OK)
async def bulk_assign_permissions(
    request: BulkRolePermissionsRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(can_assign_permissions)
):
    """Assign one permission set to every listed role, all or nothing."""
    await bindings.bulk_assign(db, request.role_ids, request.permission_ids, granted_by=current_user.id)
    return {"message": "Permissions assigned successfully"}


@router.post("/roles/bulk-revoke", status_code=status.HTTP_200_OK)
async def bulk_revoke_permissions(
    request: BulkRolePermissionsRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(can_assign_permissions)
):
    """Remove the listed permissions from every listed role, all or nothing."""
    await bindings.bulk_revoke(db, request.role_ids, request.permission_ids)
    return {"message": "Permissions revoked successfully"}


@router.get("/roles/{role_id}", response_model=RoleWithPermissions)
async def get_role(
    role_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(can_view_roles)
):
    """Get a role with its permissions."""
    role = await roles.get_role(db, role_id)
    permissions = await bindings.list_for_role(db, role_id)
    return RoleWithPermissions(
        id=role.id,
        name=role.name,
        description=role.description,
        created_at=role.created_at,
        updated_at=role.updated_at,
        permissions=[PermissionResponse.model_validate(p) for p in permissions],
    )


@router.delete("/roles/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_role(
    role_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(can_assign_permissions)
):
    """Delete a role together with its bindings and user assignments."""
    await roles.delete_role(db, role_id)


@router.get("/roles/{role_id}/permissions", response_model=List[PermissionResponse])
async def list_role_permissions(
    role_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(can_view_roles)
):
    """List permissions currently bound to a role."""
    return await bindings.list_for_role(db, role_id)


@router.put("/roles/{role_id}/permissions", response_model=List[PermissionResponse])
async def assign_role_permissions(
    role_id: int,
    request: RolePermissionsRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(can_assign_permissions)
):
    """Replace a role's permission set."""
    await bindings.assign(db, role_id, request.permission_ids, granted_by=current_user.id)
    return await bindings.list_for_role(db, role_id)


@router.delete("/roles/{role_id}/permissions", status_code=status.HTTP_204_NO_CONTENT)
async def remove_role_permissions(
    role_id: int,
    request: RolePermissionsRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(can_assign_permissions)
):
    """Remove some permissions from a role."""
    await bindings.remove(db, role_id, request.permission_ids)


# ============================================================================
# User Assignment Routes
# ============================================================================

@router.post("/users/{user_id}/roles", status_code=status.HTTP_200_OK)
async def assign_role_to_user(
    user_id: int,
    assignment: AssignRoleToUser,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(can_assign_permissions)
):
    """Assign a role to a user."""
    created = await roles.assign_role_to_user(db, user_id, assignment.role_id)
    if not created:
        return {"message": "User already has this role"}
    return {"message": "Role assigned successfully"}


@router.delete("/users/{user_id}/roles/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_role_from_user(
    user_id: int,
    role_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(can_assign_permissions)
):
    """Remove a role from a user."""
    await roles.remove_role_from_user(db, user_id, role_id)


@router.post("/users/{user_id}/overrides", response_model=UserOverrideResponse)
async def grant_user_permission(
    user_id: int,
    request: UserOverrideRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(can_assign_permissions),
    resolver: PermissionResolver = Depends(get_resolver)
):
    """Create or update a direct GRANT / DENY override for a user."""
    return await overrides.grant(
        db,
        user_id,
        request.permission_id,
        request.grant_type,
        granted_by=current_user.id,
        expires_at=request.expires_at,
        reason=request.reason,
        overrides_enabled=resolver.overrides_enabled,
    )


@router.delete("/users/{user_id}/overrides/{permission_id}", status_code=status.HTTP_204_NO_CONTENT)
async def revoke_user_permission(
    user_id: int,
    permission_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(can_assign_permissions)
):
    """Remove a user's direct override."""
    await overrides.revoke(db, user_id, permission_id)


@router.get("/users/{user_id}/overrides", response_model=List[UserOverrideResponse])
async def list_user_overrides(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(can_view_roles),
    resolver: PermissionResolver = Depends(get_resolver)
):
    """List a user's live direct overrides."""
    return await overrides.list_direct(db, user_id, overrides_enabled=resolver.overrides_enabled)


@router.get("/users/{user_id}/permissions", response_model=UserPermissionsResponse)
async def get_user_permissions(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(can_view_roles),
    resolver: PermissionResolver = Depends(get_resolver)
):
    """Role-derived permissions and direct overrides of a user."""
    result = await overrides.list_user_permissions(db, user_id, overrides_enabled=resolver.overrides_enabled)
    return UserPermissionsResponse(
        user_id=user_id,
        role_permissions=[PermissionResponse.model_validate(p) for p in result["role_permissions"]],
        direct_permissions=[UserOverrideResponse.model_validate(o) for o in result["direct_permissions"]],
    )


@router.get("/users/{user_id}/effective-permissions", response_model=EffectivePermissionsResponse)
async def get_user_effective_permissions(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(can_view_roles),
    resolver: PermissionResolver = Depends(get_resolver)
):
    """The permissions a user actually holds after overrides."""
    permissions = await resolver.get_effective_permissions(db, user_id)
    return EffectivePermissionsResponse(
        user_id=user_id,
        permissions=[PermissionResponse.model_validate(p) for p in permissions],
    )


# ============================================================================
# Permission Check
# ============================================================================

@router.post("/check", response_model=PermissionCheckResponse)
async def check_permission(
    request: PermissionCheckRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    resolver: PermissionResolver = Depends(get_resolver)
):
    """Check whether the current user holds a permission."""
    allowed = await resolver.check_permission(
        db, current_user.id, request.module, request.action, request.resource
    )
    return PermissionCheckResponse(
        has_permission=allowed,
        permission_name=canonical_permission_name(request.module, request.action, request.resource),
    )
