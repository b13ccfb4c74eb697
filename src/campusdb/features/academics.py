"""Academic structure: departments, subjects, school years, periods, categories."""

from __future__ import annotations

from datetime import date

from sqlalchemy import Boolean, Date, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from campusdb.features.base import Base, EntityMixin
from campusdb.relationships import (
    ManyToOneOptions,
    OneToManyOptions,
    RelationshipDefinition,
    belongs_to,
    one_to_many,
)

MODULE_NAME = "academics"


class Department(EntityMixin, Base):
    __tablename__ = "departments"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    code: Mapped[str | None] = mapped_column(String(32), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)


class Subject(EntityMixin, Base):
    __tablename__ = "subjects"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    code: Mapped[str] = mapped_column(String(32), nullable=False)
    credits: Mapped[int | None] = mapped_column(nullable=True)


class SchoolYear(EntityMixin, Base):
    __tablename__ = "school_years"

    name: Mapped[str] = mapped_column(String(64), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    is_current: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)


class Period(EntityMixin, Base):
    """A term or semester inside a school year."""

    __tablename__ = "periods"

    name: Mapped[str] = mapped_column(String(64), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)


class Category(EntityMixin, Base):
    __tablename__ = "categories"

    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)


def describe_relationships() -> list[RelationshipDefinition]:
    return [
        belongs_to(Department, "School", {"on_delete": "CASCADE"}, MODULE_NAME),
        one_to_many(Department, Subject, {"order_by": "code"}, MODULE_NAME),
        belongs_to(Subject, Department, {"on_delete": "SET_NULL"}, MODULE_NAME),
        belongs_to(SchoolYear, "School", {"on_delete": "CASCADE"}, MODULE_NAME),
        one_to_many(
            SchoolYear,
            Period,
            OneToManyOptions(order_by="start_date", cascade="all, delete-orphan"),
            MODULE_NAME,
        ),
        belongs_to(Period, SchoolYear, {"on_delete": "CASCADE"}, MODULE_NAME),
        belongs_to(Category, "School", {"on_delete": "CASCADE"}, MODULE_NAME),
        # Categories nest: parent <-> children on the same table.
        belongs_to(
            Category,
            Category,
            ManyToOneOptions(alias="parent", foreign_key="parent_id", on_delete="SET_NULL"),
            MODULE_NAME,
        ),
        one_to_many(
            Category,
            Category,
            OneToManyOptions(alias="children", foreign_key="parent_id"),
            MODULE_NAME,
        ),
    ]
