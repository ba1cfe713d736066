"""Database models for roles, permissions, and their assignments."""
from __future__ import annotations

from sqlalchemy import ForeignKey, Index, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column

from gatekeeper.db.base import Base, SoftDeleteMixin, TimestampMixin

# Only permissions of this type satisfy the standard authorization gate.
STANDARD_PERMISSION_TYPE = 0


class Role(SoftDeleteMixin, TimestampMixin, Base):
    """Named bundle of permissions; each user holds at most one role."""

    __tablename__ = "roles"
    __table_args__ = (
        Index(
            "uq_roles_name_active",
            "name",
            unique=True,
            sqlite_where=text("deleted_at IS NULL"),
            postgresql_where=text("deleted_at IS NULL"),
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)


class Permission(SoftDeleteMixin, TimestampMixin, Base):
    """Grantable capability identified by (resource, action, type)."""

    __tablename__ = "permissions"
    __table_args__ = (
        Index(
            "uq_permissions_triple_active",
            "resource",
            "action",
            "type",
            unique=True,
            sqlite_where=text("deleted_at IS NULL"),
            postgresql_where=text("deleted_at IS NULL"),
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    resource: Mapped[str] = mapped_column(String(128), nullable=False)
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    type: Mapped[int] = mapped_column(Integer, default=STANDARD_PERMISSION_TYPE, nullable=False)


class RoleHasPermission(Base):
    """Join row between a role and a permission."""

    __tablename__ = "role_has_permissions"

    role_id: Mapped[int] = mapped_column(ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True)
    permission_id: Mapped[int] = mapped_column(ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True)
