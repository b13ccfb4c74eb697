"""Table synchronization for an ordered list of mapped entity types.

Entity types are synced one at a time in the order given: base tables
before the tables that reference them, join tables last. Join tables hold
no facts of their own (they mirror many-to-many relationships), so when one
is malformed or fails to sync it is dropped and recreated. Base tables are
never rebuilt implicitly; a failure there aborts the pass.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any

from sqlalchemy import Column, Table, text

from campusdb.core.types import EntitySyncResult, SyncReport, SyncState
from campusdb.exceptions import BaseEntitySyncError, JoinEntitySyncError, SchemaSyncError
from campusdb.schema.introspection import SchemaIntrospector

if TYPE_CHECKING:
    from sqlalchemy import Connection

    from campusdb.core.connection import DatabaseConnection
    from campusdb.relationships.registry import JoinTableSpec

logger = logging.getLogger(__name__)


class SchemaSynchronizer:
    """Creates, alters and repairs the tables of mapped entity types."""

    def __init__(
        self,
        connection: DatabaseConnection,
        join_tables: Mapping[str, JoinTableSpec] | None = None,
        introspector: SchemaIntrospector | None = None,
        legacy_table_names: Mapping[str, Sequence[str]] | None = None,
    ) -> None:
        """Initialize the synchronizer.

        Args:
            connection: Database connection to use
            join_tables: Join entity type names mapped to their expected key columns
            introspector: Catalog introspector (defaults to one on ``connection``)
            legacy_table_names: Historical table names per entity type name,
                dropped when they exist next to the current table and are empty
        """
        self._connection = connection
        self._join_tables = dict(join_tables or {})
        self._introspector = introspector or SchemaIntrospector(connection)
        self._legacy_table_names = {k: list(v) for k, v in (legacy_table_names or {}).items()}

    @property
    def introspector(self) -> SchemaIntrospector:
        return self._introspector

    def is_join_type(self, entity_type: type) -> bool:
        return entity_type.__name__ in self._join_tables

    # === DDL helpers ===

    def _quote(self, conn: Connection, name: str) -> str:
        return conn.dialect.identifier_preparer.quote(name)

    def _drop_table(self, conn: Connection, table_name: str) -> None:
        statement = f"DROP TABLE IF EXISTS {self._quote(conn, table_name)}"
        if conn.dialect.name == "postgresql":
            statement += " CASCADE"
        conn.execute(text(statement))

    def _add_column(self, conn: Connection, table: Table, column: Column[Any]) -> None:
        """Add a declared column to a live table.

        Added columns are always nullable: existing rows have no value for them.
        """
        quote = self._quote
        ddl = (
            f"ALTER TABLE {quote(conn, table.name)} ADD COLUMN {quote(conn, column.name)} "
            f"{column.type.compile(dialect=conn.dialect)}"
        )
        fk = next(iter(column.foreign_keys), None)
        if fk is not None:
            referenced = fk.column
            ddl += f" REFERENCES {quote(conn, referenced.table.name)} ({quote(conn, referenced.name)})"
            if fk.ondelete:
                ddl += f" ON DELETE {fk.ondelete}"
        conn.execute(text(ddl))
        logger.info(f"Added column {table.name}.{column.name}")

    def _create_or_alter(self, table: Table, exists: bool, force: bool, alter: bool) -> None:
        missing: list[Column[Any]] = []
        if exists and alter and not force:
            missing = [
                column
                for column in table.columns
                if not self._introspector.column_exists(table.name, column.name)
            ]

        with self._connection.engine.begin() as conn:
            if exists and force:
                self._drop_table(conn, table.name)
                exists = False
            if not exists:
                table.create(conn)
                logger.info(f"Created table {table.name}")
                return
            for column in missing:
                self._add_column(conn, table, column)

    def recreate(self, entity_type: type) -> None:
        """Drop an entity's table if it exists, then create it from its declaration.

        Destructive. Only join tables, whose rows are derived from relationships,
        are recreated implicitly.

        Raises:
            SchemaSyncError: If the drop or the create fails
        """
        table: Table = entity_type.__table__  # type: ignore[attr-defined]
        logger.info(f"Dropping and recreating table {table.name}...")
        try:
            with self._connection.engine.begin() as conn:
                self._drop_table(conn, table.name)
                table.create(conn)
        except Exception as e:
            logger.error(f"Error recreating table {table.name}: {e}")
            raise SchemaSyncError(entity_type.__name__, table.name, e) from e
        logger.info(f"Table {table.name} recreated successfully")

    # === Drift repair ===

    def _legacy_names(self, entity_type: type) -> list[str]:
        """Historical table names of ``entity_type`` other than its current one.

        Join types also get ``<Name>s`` (``RolePermissions``), the plural the
        old naming produced by appending "s". Base types only use the names
        configured for them.
        """
        names = list(self._legacy_table_names.get(entity_type.__name__, []))
        if self.is_join_type(entity_type):
            names.insert(0, f"{entity_type.__name__}s")
        current = entity_type.__table__.name  # type: ignore[attr-defined]
        return [name for name in dict.fromkeys(names) if name != current]

    def _has_rows(self, table_name: str) -> bool:
        """Whether ``table_name`` holds any row. True if the query fails."""
        try:
            with self._connection.engine.connect() as conn:
                statement = f"SELECT 1 FROM {self._quote(conn, table_name)} LIMIT 1"
                return conn.execute(text(statement)).first() is not None
        except Exception as e:
            logger.error(f"Error checking rows of table {table_name}: {e}")
            return True

    def reconcile_duplicates(self, entity_types: Sequence[type]) -> list[str]:
        """Drop legacy-named twins of entity tables.

        Older naming conventions left tables such as ``Roles`` or
        ``RolePermissions`` next to ``roles`` and ``role_permissions``. A legacy
        table is dropped only when the current table also exists. A base-table
        twin that still holds rows is kept with a warning. Failures are logged
        and skipped.

        Returns:
            Names of the dropped tables
        """
        logger.info("Checking for duplicate tables left by naming-convention changes...")
        dropped: list[str] = []
        for entity_type in entity_types:
            table_name = entity_type.__table__.name  # type: ignore[attr-defined]
            for legacy in self._legacy_names(entity_type):
                if not self._introspector.table_exists(legacy):
                    continue
                if not self._introspector.table_exists(table_name):
                    continue
                if not self.is_join_type(entity_type) and self._has_rows(legacy):
                    logger.warning(
                        f"Found duplicate tables: '{table_name}' and '{legacy}'. "
                        f"Keeping '{legacy}' because it holds rows"
                    )
                    continue
                logger.warning(
                    f"Found duplicate tables: '{table_name}' and '{legacy}'. Dropping '{legacy}'"
                )
                try:
                    with self._connection.engine.begin() as conn:
                        self._drop_table(conn, legacy)
                except Exception as e:
                    logger.error(f"Error dropping duplicate table {legacy}: {e}")
                    continue
                dropped.append(legacy)
                logger.info(f"Dropped the '{legacy}' table")
        return dropped

    def _drop_join_tables(self, entity_types: Sequence[type]) -> None:
        logger.info("Force sync requested. Dropping join tables first...")
        for entity_type in entity_types:
            if not self.is_join_type(entity_type):
                continue
            table_name = entity_type.__table__.name  # type: ignore[attr-defined]
            try:
                with self._connection.engine.begin() as conn:
                    self._drop_table(conn, table_name)
            except Exception as e:
                logger.warning(f"Error dropping join table {table_name}: {e}")

    # === Synchronization ===

    def _missing_join_keys(self, entity_type: type, table_name: str) -> list[str]:
        spec = self._join_tables[entity_type.__name__]
        return [
            column
            for column in spec.key_columns
            if not self._introspector.column_exists(table_name, column)
        ]

    def _repair(self, entity_type: type, result: EntitySyncResult) -> None:
        result.advance(SyncState.REPAIRING)
        try:
            self.recreate(entity_type)
        except SchemaSyncError as e:
            error = JoinEntitySyncError(e.entity_name, e.table_name, e.__cause__ or e)
            result.error = error.to_dict()
            result.advance(SyncState.FAILED_TOLERATED)
            logger.error(f"Failed to recreate {entity_type.__name__}, continuing: {error}")
            return
        result.advance(SyncState.RECREATED)
        result.advance(SyncState.SYNCED)

    def _sync_entity(self, entity_type: type, force: bool, alter: bool) -> EntitySyncResult:
        name = entity_type.__name__
        table: Table = entity_type.__table__  # type: ignore[attr-defined]
        is_join = self.is_join_type(entity_type)
        result = EntitySyncResult(entity=name, table=table.name, is_join=is_join)
        logger.info(f"Syncing entity: {name}")

        result.advance(SyncState.CHECKING)
        exists = self._introspector.table_exists(table.name)

        if is_join:
            missing_keys = self._missing_join_keys(entity_type, table.name) if exists else []
            if not exists or missing_keys:
                if missing_keys:
                    logger.warning(
                        f"Join table {table.name} is missing key columns "
                        f"{', '.join(missing_keys)}, recreating it"
                    )
                self._repair(entity_type, result)
                return result

        result.advance(SyncState.SYNCING)
        try:
            self._create_or_alter(table, exists, force, alter)
        except Exception as e:
            logger.error(f"Error syncing entity {name}: {e}")
            if not is_join:
                error = BaseEntitySyncError(name, table.name, e)
                result.error = error.to_dict()
                result.advance(SyncState.FAILED)
                if "hint" in error.context:
                    logger.error(error.context["hint"])
                raise error from e
            logger.info(f"Attempting to recreate {name} after sync error")
            self._repair(entity_type, result)
            return result

        result.advance(SyncState.SYNCED)
        logger.info(f"Successfully synced entity: {name}")
        return result

    def synchronize(
        self, entity_types: Sequence[type], force: bool = False, alter: bool = True
    ) -> SyncReport:
        """Ensure every entity type has a correctly shaped table, in order.

        Args:
            entity_types: Mapped classes, base tables before dependents, join tables last
            force: Drop join tables up front and drop and recreate every table
            alter: Add declared columns missing from existing tables

        Returns:
            Per-entity report

        Raises:
            BaseEntitySyncError: If a non-join table fails to sync. Entity types
                after it are not processed.
        """
        logger.info(
            f"Starting sequential sync of {len(entity_types)} entity types "
            f"(force={force}, alter={alter})"
        )
        report = SyncReport(force=force, alter=alter)
        report.dropped_duplicates = self.reconcile_duplicates(entity_types)

        if force:
            self._drop_join_tables(entity_types)

        for entity_type in entity_types:
            report.results.append(self._sync_entity(entity_type, force, alter))

        if report.tolerated_failures:
            logger.warning(
                f"Synced {len(report.results)} entity types with unusable join tables: "
                f"{', '.join(report.tolerated_failures)}"
            )
        else:
            logger.info(f"All {len(report.results)} entity types synced successfully")
        return report
