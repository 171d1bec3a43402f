"""
Permission, Role and binding models for the textile-sample backend.

This module implements the layered access-control data model:
- Permissions addressed by module / action / optional resource
- Permission groups for UI organisation
- Role-permission bindings carrying grant metadata and optional expiry
- Direct per-user GRANT / DENY overrides

Effective permissions are never stored; they are computed by the resolver.
"""
import enum
from datetime import datetime
from sqlalchemy import (
    String, ForeignKey, Text, DateTime, Boolean, Integer, Enum, UniqueConstraint, Index, and_, or_
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database.base import Base, TimestampMixin, SoftDeleteMixin


class GrantType(str, enum.Enum):
    """Kind of direct user override."""
    GRANT = "GRANT"
    DENY = "DENY"


def canonical_permission_name(module: str, action: str, resource: str | None = None) -> str:
    """
    Build the canonical permission name.

    Examples:
        ("user", "view") -> "USER_VIEW"
        ("sample", "dispatch", "export") -> "SAMPLE_DISPATCH_EXPORT"
    """
    if resource:
        return f"{module}_{action}_{resource}".upper()
    return f"{module}_{action}".upper()


# ============================================================================
# Core Models
# ============================================================================

class Permission(Base, TimestampMixin, SoftDeleteMixin):
    """
    Permission defining one action within a module.

    Examples:
    - module="USER", action="VIEW" -> USER_VIEW
    - module="SAMPLE", action="DISPATCH" -> SAMPLE_DISPATCH
    """
    __tablename__ = "permissions"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    module: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    resource: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Unique among non-deleted rows; enforced by the catalog
    name: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Permission(id={self.id}, name={self.name!r}, module={self.module}, action={self.action})>"


class PermissionGroup(Base, TimestampMixin):
    """
    Logical grouping of permissions by module, used to lay out admin screens.
    """
    __tablename__ = "permission_groups"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    group_name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    display_name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    module: Mapped[str] = mapped_column(String(100), nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<PermissionGroup(id={self.id}, group_name={self.group_name!r}, module={self.module})>"


class Role(Base, TimestampMixin):
    """
    Role grouping permissions.

    Examples: SUPER_ADMIN, ADMIN, SALES_MANAGER, WAREHOUSE_STAFF
    """
    __tablename__ = "roles"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<Role(id={self.id}, name={self.name!r})>"


# ============================================================================
# Bindings
# ============================================================================

class RolePermission(Base, TimestampMixin):
    """
    Role-permission binding with grant metadata.

    At most one active binding per (role, permission); assignment replaces
    the whole set for a role.
    """
    __tablename__ = "role_permissions"
    __table_args__ = (
        Index("ix_role_permissions_role_permission", "role_id", "permission_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    role_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("roles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    permission_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("permissions.id", ondelete="CASCADE"), nullable=False, index=True
    )

    granted_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    granted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    permission: Mapped["Permission"] = relationship("Permission", lazy="selectin")

    def __repr__(self) -> str:
        return f"<RolePermission(role_id={self.role_id}, permission_id={self.permission_id}, active={self.is_active})>"


class UserPermission(Base, TimestampMixin):
    """
    Direct user override. GRANT adds access, DENY removes it and always wins.
    """
    __tablename__ = "user_permissions"
    __table_args__ = (
        UniqueConstraint("user_id", "permission_id", name="uq_user_permissions_user_permission"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    permission_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("permissions.id", ondelete="CASCADE"), nullable=False, index=True
    )

    grant_type: Mapped[GrantType] = mapped_column(
        Enum(GrantType, name="grant_type", native_enum=False, length=20), nullable=False
    )
    granted_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    granted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    permission: Mapped["Permission"] = relationship("Permission", lazy="selectin")

    def __repr__(self) -> str:
        return (
            f"<UserPermission(user_id={self.user_id}, permission_id={self.permission_id}, "
            f"grant_type={self.grant_type})>"
        )


def live_binding(model, now: datetime):
    """
    SQL clause selecting bindings that currently count: active and either
    without expiry or expiring after ``now``.

    Works for both RolePermission and UserPermission.
    """
    return and_(
        model.is_active.is_(True),
        or_(model.expires_at.is_(None), model.expires_at > now),
    )


def live_permission():
    """SQL clause selecting permissions that are active and not soft-deleted."""
    return and_(Permission.is_active.is_(True), Permission.deleted_at.is_(None))
