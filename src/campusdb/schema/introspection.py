"""Read-only questions against the live database catalog.

Every answer comes from a fresh query so repair decisions always see the
current, possibly externally modified, schema. A failed catalog query is
logged and answered with False: assuming a table or column is missing only
leads to an idempotent create or recreate.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from campusdb.exceptions import ConnectionError, SchemaIntrospectionError, sqlstate_of

if TYPE_CHECKING:
    from campusdb.core.connection import DatabaseConnection

logger = logging.getLogger(__name__)

_PG_TABLE_EXISTS = """
    SELECT EXISTS (
        SELECT FROM information_schema.tables
        WHERE table_schema = COALESCE(CAST(:schema AS text), current_schema())
        AND table_name = :table
        AND table_type = 'BASE TABLE'
    )
"""

_PG_COLUMN_EXISTS = """
    SELECT EXISTS (
        SELECT FROM information_schema.columns
        WHERE table_schema = COALESCE(CAST(:schema AS text), current_schema())
        AND table_name = :table
        AND column_name = :column
    )
"""

_PG_LIST_TABLES = """
    SELECT table_name FROM information_schema.tables
    WHERE table_schema = COALESCE(CAST(:schema AS text), current_schema())
    AND table_type = 'BASE TABLE'
    ORDER BY table_name
"""

_SQLITE_TABLE_EXISTS = "SELECT COUNT(*) FROM sqlite_master WHERE type = 'table' AND name = :table"

_SQLITE_COLUMN_EXISTS = "SELECT COUNT(*) FROM pragma_table_info(:table) WHERE name = :column"

_SQLITE_LIST_TABLES = """
    SELECT name FROM sqlite_master
    WHERE type = 'table' AND name NOT LIKE 'sqlite_%'
    ORDER BY name
"""


class SchemaIntrospector:
    """Answers table and column existence questions. Holds no state."""

    def __init__(self, connection: DatabaseConnection) -> None:
        self._connection = connection

    def _execute(self, statement: str, params: dict[str, Any]) -> Any:
        try:
            with self._connection.engine.connect() as conn:
                return conn.execute(text(statement), params).all()
        except (SQLAlchemyError, ConnectionError) as e:
            raise SchemaIntrospectionError(
                f"Catalog query failed: {e}",
                {"params": params, "error_code": sqlstate_of(e)},
            ) from e

    def table_exists(self, name: str) -> bool:
        """Check if a base table exists in the active schema.

        Returns False if the catalog query fails.
        """
        try:
            if self._connection.is_postgresql:
                rows = self._execute(
                    _PG_TABLE_EXISTS, {"schema": self._connection.schema, "table": name}
                )
            else:
                rows = self._execute(_SQLITE_TABLE_EXISTS, {"table": name})
        except (SchemaIntrospectionError, ConnectionError) as e:
            logger.error(f"Error checking if table {name} exists: {e}")
            return False
        return bool(rows and rows[0][0])

    def column_exists(self, table: str, column: str) -> bool:
        """Check if ``column`` exists on ``table`` in the active schema.

        Returns False if the catalog query fails.
        """
        try:
            if self._connection.is_postgresql:
                rows = self._execute(
                    _PG_COLUMN_EXISTS,
                    {"schema": self._connection.schema, "table": table, "column": column},
                )
            else:
                rows = self._execute(_SQLITE_COLUMN_EXISTS, {"table": table, "column": column})
        except (SchemaIntrospectionError, ConnectionError) as e:
            logger.error(f"Error checking if column {column} in table {table} exists: {e}")
            return False
        return bool(rows and rows[0][0])

    def list_tables(self) -> list[str]:
        """Names of all base tables in the active schema, or [] if the query fails."""
        try:
            if self._connection.is_postgresql:
                rows = self._execute(_PG_LIST_TABLES, {"schema": self._connection.schema})
            else:
                rows = self._execute(_SQLITE_LIST_TABLES, {})
        except (SchemaIntrospectionError, ConnectionError) as e:
            logger.error(f"Error listing tables: {e}")
            return []
        return [row[0] for row in rows]
