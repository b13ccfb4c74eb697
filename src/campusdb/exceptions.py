"""Custom exceptions for campusdb.

Errors carry a context dict so the bootstrap can log (or print as JSON)
exactly which entity, relationship or catalog query went wrong.
"""

from __future__ import annotations

from typing import Any

# SQLSTATE codes that get an operator hint in sync errors and logs.
SQLSTATE_HINTS = {
    "42P01": "Relation does not exist. A table might need to be created before the tables "
    "that depend on it.",
    "23503": "Foreign key constraint violation. Check that referenced tables are created first.",
    "42501": "Permission denied. Make sure the database user has CREATE TABLE privileges.",
}


class CampusDBError(Exception):
    """Base exception for all campusdb errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def to_dict(self) -> dict[str, Any]:
        """Return error as JSON-serializable dict."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
        }


class ConnectionError(CampusDBError):
    """Failed to connect to the database."""

    pass


class ConfigurationError(CampusDBError):
    """A relationship declaration is structurally invalid.

    Raised at declaration time; the declaring feature module has to fix its
    own code.
    """

    def __init__(
        self,
        message: str,
        source: str | None = None,
        target: str | None = None,
        owning_module: str | None = None,
    ) -> None:
        super().__init__(
            message,
            {"source": source, "target": target, "owning_module": owning_module},
        )
        self.source = source
        self.target = target
        self.owning_module = owning_module


class RelationshipApplicationError(CampusDBError):
    """Pushing one relationship onto the live mapped classes failed."""

    def __init__(self, source: str, target: str, kind: str, alias: str, reason: str) -> None:
        message = (
            f"Failed to apply {kind} relationship {source} -> {target} as '{alias}': {reason}"
        )
        super().__init__(
            message,
            {"source": source, "target": target, "kind": kind, "alias": alias, "reason": reason},
        )
        self.source = source
        self.target = target
        self.kind = kind
        self.alias = alias
        self.reason = reason


class SchemaIntrospectionError(CampusDBError):
    """A catalog query itself failed."""

    pass


# === Schema synchronization ===


def sqlstate_of(error: BaseException) -> str | None:
    """Extract the SQLSTATE code from a DBAPI error wrapped by SQLAlchemy.

    psycopg 3 exposes ``sqlstate``, psycopg2 exposes ``pgcode``.
    """
    orig = getattr(error, "orig", None)
    if orig is None:
        return None
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


class SchemaSyncError(CampusDBError):
    """Synchronizing one entity's table failed."""

    def __init__(self, entity_name: str, table_name: str, reason: BaseException | str) -> None:
        code = sqlstate_of(reason) if isinstance(reason, BaseException) else None
        message = f"Failed to synchronize '{entity_name}' (table '{table_name}'): {reason}"
        context: dict[str, Any] = {
            "entity_name": entity_name,
            "table_name": table_name,
            "error_code": code,
        }
        if code in SQLSTATE_HINTS:
            context["hint"] = SQLSTATE_HINTS[code]
        super().__init__(message, context)
        self.entity_name = entity_name
        self.table_name = table_name
        self.error_code = code


class BaseEntitySyncError(SchemaSyncError):
    """A base (non-join) table failed to materialize. Fatal for the pass."""

    pass


class JoinEntitySyncError(SchemaSyncError):
    """A join table failed to sync and to be recreated. Tolerated."""

    pass
