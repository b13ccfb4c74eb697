"""Role-based access control: roles, permissions and their join table."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from campusdb.features.base import Base, EntityMixin, utc_now
from campusdb.relationships import (
    ManyToManyOptions,
    RelationshipDefinition,
    belongs_to,
    many_to_many,
)

MODULE_NAME = "rbac"


class Role(EntityMixin, Base):
    __tablename__ = "roles"

    name: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    description: Mapped[str | None] = mapped_column(String(255), nullable=True)


class Permission(EntityMixin, Base):
    __tablename__ = "permissions"

    name: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    description: Mapped[str | None] = mapped_column(String(255), nullable=True)


class RolePermission(Base):
    """Join table for Role <-> Permission. Composite key of both sides."""

    __tablename__ = "role_permissions"

    role_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True
    )
    permission_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


def describe_relationships() -> list[RelationshipDefinition]:
    """Relationships owned by the RBAC feature."""
    return [
        many_to_many(
            Role,
            Permission,
            ManyToManyOptions(
                through="RolePermission",
                foreign_key="role_id",
                other_key="permission_id",
                alias="permissions",
                order_by="name",
            ),
            MODULE_NAME,
        ),
        many_to_many(
            Permission,
            Role,
            ManyToManyOptions(
                through="RolePermission",
                foreign_key="permission_id",
                other_key="role_id",
                alias="roles",
            ),
            MODULE_NAME,
        ),
        many_to_many(
            Role,
            "User",
            {"through": "UserRole", "alias": "users"},
            MODULE_NAME,
        ),
        belongs_to(RolePermission, Role, {"alias": "role"}, MODULE_NAME),
        belongs_to(RolePermission, Permission, {"alias": "permission"}, MODULE_NAME),
        # Also declared by the users feature; whichever loads first owns it.
        belongs_to("UserRole", Role, {"alias": "role"}, MODULE_NAME),
    ]
