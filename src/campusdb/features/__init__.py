"""Feature modules of the school-administration backend.

Each feature module exposes its models and a pure ``describe_relationships()``
returning the relationships it declares. Nothing is registered on import.
"""

from __future__ import annotations

from collections.abc import Iterator
from types import ModuleType

from campusdb.features import academics, rbac, schools, users
from campusdb.features.academics import Category, Department, Period, SchoolYear, Subject
from campusdb.features.base import Base
from campusdb.features.rbac import Permission, Role, RolePermission
from campusdb.features.schools import School
from campusdb.features.users import User, UserRole
from campusdb.relationships.definitions import RelationshipDefinition

FEATURE_MODULES: tuple[ModuleType, ...] = (rbac, users, schools, academics)

# Table creation order: base tables first, then tables with foreign keys,
# join tables last. Kept by hand; relationship application has its own order.
SYNC_ORDER: tuple[type[Base], ...] = (
    Role,
    Permission,
    School,
    User,
    Department,
    Subject,
    SchoolYear,
    Period,
    Category,
    RolePermission,
    UserRole,
)

# Pre-rename spellings of base tables, dropped on sync when the current table
# exists and the old one is empty. Join tables get "<Name>s" automatically.
LEGACY_TABLE_NAMES: dict[str, list[str]] = {
    "Role": ["Roles"],
    "Permission": ["Permissions"],
}


def describe_all(modules: tuple[ModuleType, ...] = FEATURE_MODULES) -> Iterator[RelationshipDefinition]:
    """Relationship definitions of every feature module, module by module."""
    for module in modules:
        yield from module.describe_relationships()


__all__ = [
    "Base",
    "FEATURE_MODULES",
    "LEGACY_TABLE_NAMES",
    "SYNC_ORDER",
    "describe_all",
    "Role",
    "Permission",
    "RolePermission",
    "User",
    "UserRole",
    "School",
    "Department",
    "Subject",
    "SchoolYear",
    "Period",
    "Category",
]
