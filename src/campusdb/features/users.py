"""School users and their role assignments."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from campusdb.features.base import Base, EntityMixin, utc_now
from campusdb.relationships import RelationshipDefinition, belongs_to, many_to_many

MODULE_NAME = "users"


class User(EntityMixin, Base):
    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    first_name: Mapped[str] = mapped_column(String(128), nullable=False)
    last_name: Mapped[str] = mapped_column(String(128), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class UserRole(Base):
    __tablename__ = "user_roles"

    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    role_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


def describe_relationships() -> list[RelationshipDefinition]:
    return [
        # Every user belongs to exactly one school (tenant).
        belongs_to(User, "School", {"alias": "school", "on_delete": "CASCADE"}, MODULE_NAME),
        many_to_many(User, "Role", {"through": UserRole, "alias": "roles"}, MODULE_NAME),
        belongs_to(UserRole, User, {"alias": "user"}, MODULE_NAME),
        belongs_to(UserRole, "Role", {"alias": "role"}, MODULE_NAME),
    ]
