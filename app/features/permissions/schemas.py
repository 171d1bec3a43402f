"""
Pydantic schemas for permission management.

Request and response models for permissions, groups, roles, role bindings,
user overrides and permission checks.
"""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator

from app.features.permissions.models import GrantType


# ============================================================================
# Permission Schemas
# ============================================================================

class PermissionBase(BaseModel):
    """Base permission schema."""
    module: str = Field(..., min_length=1, max_length=100, description="Module (e.g., 'SAMPLE', 'ORDER')")
    action: str = Field(..., min_length=1, max_length=50, description="Action (e.g., 'VIEW', 'CREATE', 'DISPATCH')")
    resource: Optional[str] = Field(None, max_length=100, description="Optional resource qualifier")
    description: Optional[str] = Field(None, max_length=1000, description="Permission description")


class PermissionCreate(PermissionBase):
    """Schema for creating a new permission. The name is derived when omitted."""
    name: Optional[str] = Field(None, max_length=200, description="Canonical name, MODULE_ACTION[_RESOURCE] by default")


class PermissionUpdate(BaseModel):
    """Schema for updating a permission."""
    description: Optional[str] = Field(None, max_length=1000)
    is_active: Optional[bool] = None


class PermissionResponse(PermissionBase):
    """Schema for permission response."""
    id: int
    name: str
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PermissionGroupResponse(BaseModel):
    """Permission group with the permissions of its module."""
    id: int
    group_name: str
    display_name: str
    description: Optional[str] = None
    module: str
    sort_order: int
    permissions: List[PermissionResponse] = []

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Role Schemas
# ============================================================================

class RoleCreate(BaseModel):
    """Schema for creating a new role."""
    name: str = Field(..., min_length=1, max_length=100, description="Unique role name")
    description: Optional[str] = Field(None, max_length=1000, description="Role description")

    @field_validator('name')
    @classmethod
    def name_alphanumeric_underscore(cls, v: str) -> str:
        """Validate role name format."""
        if not v.replace('_', '').isalnum():
            raise ValueError('Role name must contain only alphanumeric characters and underscores')
        return v.upper()


class RoleResponse(BaseModel):
    """Schema for role response."""
    id: int
    name: str
    description: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RoleWithPermissions(RoleResponse):
    """Schema for role with permissions."""
    permissions: List[PermissionResponse] = []


# ============================================================================
# Binding Schemas
# ============================================================================

class RolePermissionsRequest(BaseModel):
    """Permission set to assign to, or remove from, a role."""
    permission_ids: List[int] = Field(default_factory=list, description="Permission IDs")


class CloneRoleRequest(BaseModel):
    """Copy one role's permissions onto another."""
    from_role_id: int
    to_role_id: int


class BulkRolePermissionsRequest(BaseModel):
    """Apply one permission set to many roles."""
    role_ids: List[int] = Field(default_factory=list)
    permission_ids: List[int] = Field(default_factory=list)


# ============================================================================
# User Assignment Schemas
# ============================================================================

class AssignRoleToUser(BaseModel):
    """Schema for assigning a role to a user."""
    role_id: int = Field(..., description="Role ID")


class UserOverrideRequest(BaseModel):
    """Direct GRANT or DENY of one permission for a user."""
    permission_id: int
    grant_type: str = Field(..., description="GRANT or DENY")
    expires_at: Optional[datetime] = None
    reason: Optional[str] = Field(None, max_length=1000)


class UserOverrideResponse(BaseModel):
    """Direct override as stored."""
    id: int
    user_id: int
    permission_id: int
    grant_type: GrantType
    granted_by: Optional[int] = None
    granted_at: datetime
    expires_at: Optional[datetime] = None
    is_active: bool
    reason: Optional[str] = None
    permission: Optional[PermissionResponse] = None

    model_config = ConfigDict(from_attributes=True)


class UserPermissionsResponse(BaseModel):
    """Role-derived permissions and direct overrides of a user."""
    user_id: int
    role_permissions: List[PermissionResponse] = []
    direct_permissions: List[UserOverrideResponse] = []


class EffectivePermissionsResponse(BaseModel):
    """The user's effective permission set."""
    user_id: int
    permissions: List[PermissionResponse] = []


# ============================================================================
# Permission Check Schemas
# ============================================================================

class PermissionCheckRequest(BaseModel):
    """Schema for checking if the current user has a permission."""
    module: str = Field(..., description="Module")
    action: str = Field(..., description="Action")
    resource: Optional[str] = Field(None, description="Optional resource qualifier")


class PermissionCheckResponse(BaseModel):
    """Schema for permission check response."""
    has_permission: bool
    permission_name: str
