"""Schools, the tenants every other record hangs off."""

from __future__ import annotations

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from campusdb.features.base import Base, EntityMixin
from campusdb.relationships import RelationshipDefinition, one_to_many

MODULE_NAME = "schools"


class School(EntityMixin, Base):
    __tablename__ = "schools"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    code: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    timezone: Mapped[str | None] = mapped_column(String(64), nullable=True)


def describe_relationships() -> list[RelationshipDefinition]:
    return [
        one_to_many(School, "User", {"alias": "users"}, MODULE_NAME),
        one_to_many(School, "Department", {"order_by": "name"}, MODULE_NAME),
        one_to_many(School, "SchoolYear", {"order_by": "-start_date"}, MODULE_NAME),
        one_to_many(School, "Category", {"alias": "categories"}, MODULE_NAME),
    ]
