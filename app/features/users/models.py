"""
User model and the user-role association.
"""
from datetime import datetime
from sqlalchemy import String, ForeignKey, Table, Column, Integer, DateTime, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database.base import Base, TimestampMixin


ACCOUNT_STATUS_ACTIVE = "active"


# User-Role relationship (no metadata beyond timestamps)
user_roles = Table(
    "user_roles",
    Base.metadata,
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("role_id", Integer, ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()),
)


class User(Base, TimestampMixin):
    """
    Authenticated user.

    Only the fields the permission engine needs live here; profile CRUD
    belongs to the user service.
    """
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # "active", "suspended", ...; only active accounts pass permission checks
    account_status: Mapped[str] = mapped_column(
        String(50), default=ACCOUNT_STATUS_ACTIVE, nullable=False
    )

    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    roles: Mapped[list["Role"]] = relationship(  # type: ignore
        "Role",
        secondary=user_roles,
        lazy="selectin"
    )

    @property
    def is_active(self) -> bool:
        return self.account_status == ACCOUNT_STATUS_ACTIVE

    def __repr__(self) -> str:
        return f"<User(id={self.id}, username={self.username!r})>"
