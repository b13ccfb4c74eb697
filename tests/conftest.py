"""Shared test fixtures for campusdb."""

import os
from collections.abc import Generator
from types import SimpleNamespace

import pytest
from sqlalchemy import ForeignKey, String, text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from campusdb.core.connection import DatabaseConnection
from campusdb.features.base import generate_uuid
from campusdb.relationships import JoinTableSpec, RelationshipRegistry


def _psycopg_available() -> bool:
    """Check if psycopg is installed."""
    try:
        import psycopg  # noqa: F401

        return True
    except ImportError:
        return False


def _postgresql_connectable(url: str) -> bool:
    """Check if we can connect to PostgreSQL."""
    if not _psycopg_available():
        return False
    try:
        conn = DatabaseConnection(url)
        result = conn.test_connection()
        conn.close()
        return result
    except Exception:
        return False


def build_models() -> SimpleNamespace:
    """A fresh declarative base with a small school schema.

    Every call returns new classes, so tests can mutate them freely.
    """

    class Base(DeclarativeBase):
        pass

    class Role(Base):
        __tablename__ = "roles"

        id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
        name: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)

    class Permission(Base):
        __tablename__ = "permissions"

        id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
        name: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)

    class RolePermission(Base):
        __tablename__ = "role_permissions"

        role_id: Mapped[str] = mapped_column(
            String(36), ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True
        )
        permission_id: Mapped[str] = mapped_column(
            String(36), ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True
        )

    class School(Base):
        __tablename__ = "schools"

        id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
        name: Mapped[str] = mapped_column(String(255), nullable=False)

    class Department(Base):
        __tablename__ = "departments"

        id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
        name: Mapped[str] = mapped_column(String(255), nullable=False)

    class User(Base):
        __tablename__ = "users"

        id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
        email: Mapped[str] = mapped_column(String(255), nullable=False)

    class Profile(Base):
        __tablename__ = "profiles"

        id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
        bio: Mapped[str | None] = mapped_column(String(255), nullable=True)

    return SimpleNamespace(
        Base=Base,
        Role=Role,
        Permission=Permission,
        RolePermission=RolePermission,
        School=School,
        Department=Department,
        User=User,
        Profile=Profile,
    )


@pytest.fixture
def models() -> Generator[SimpleNamespace, None, None]:
    """Fresh model classes for one test, disposed afterwards."""
    ns = build_models()
    yield ns
    ns.Base.registry.dispose()


@pytest.fixture
def registry(models: SimpleNamespace) -> Generator[RelationshipRegistry, None, None]:
    """Empty registry bound to the test's models."""
    reg = RelationshipRegistry(models.Base)
    yield reg
    reg.reset()


@pytest.fixture
def role_permission_join() -> dict[str, JoinTableSpec]:
    return {"RolePermission": JoinTableSpec("RolePermission", "role_id", "permission_id")}


@pytest.fixture
def sqlite_connection() -> Generator[DatabaseConnection, None, None]:
    """DatabaseConnection to a SQLite in-memory database."""
    connection = DatabaseConnection("sqlite:///:memory:")
    yield connection
    connection.close()


@pytest.fixture
def execute_sql():
    """Run raw DDL/DML against a connection in its own transaction."""

    def run(connection: DatabaseConnection, statement: str) -> None:
        with connection.engine.begin() as conn:
            conn.execute(text(statement))

    return run


@pytest.fixture
def postgresql_url() -> str:
    """Get PostgreSQL URL from environment or use default.

    Skips the test when psycopg is missing or the server is unreachable.
    """
    url = os.environ.get("TEST_DATABASE_URL") or "postgresql://localhost/campusdb_test"

    if not _psycopg_available():
        pytest.skip("psycopg not installed")

    if not _postgresql_connectable(url):
        pytest.skip(f"Cannot connect to PostgreSQL at {url}")

    return url


@pytest.fixture
def pg_connection(postgresql_url: str) -> Generator[DatabaseConnection, None, None]:
    """DatabaseConnection to PostgreSQL, with every table in the schema dropped afterwards."""
    connection = DatabaseConnection(postgresql_url)
    yield connection
    with connection.engine.connect() as conn:
        result = conn.execute(
            text("SELECT tablename FROM pg_tables WHERE schemaname = current_schema()")
        )
        for row in result.fetchall():
            conn.execute(text(f'DROP TABLE IF EXISTS "{row[0]}" CASCADE'))
        conn.commit()
    connection.close()
