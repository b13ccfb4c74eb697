"""Startup sequence: register relationships, apply them, synchronize tables.

Relationships are applied before tables are synchronized because applying a
belongs-to relationship may append a foreign key column to a model, and the
synchronizer must see that column when it creates or alters the table.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from types import ModuleType
from typing import Any

from sqlalchemy.orm import DeclarativeBase

from campusdb.core.connection import DatabaseConnection
from campusdb.core.types import ApplySummary, SyncReport
from campusdb.features import FEATURE_MODULES, LEGACY_TABLE_NAMES, SYNC_ORDER, Base, describe_all
from campusdb.relationships.registry import RelationshipRegistry
from campusdb.schema.synchronizer import SchemaSynchronizer

logger = logging.getLogger(__name__)


@dataclass
class BootstrapResult:
    """What the startup sequence did."""

    relationships: ApplySummary
    sync: SyncReport
    tables: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "relationships": self.relationships.model_dump(),
            "sync": self.sync.to_dict(),
            "tables": self.tables,
        }


def build_registry(
    base: type[DeclarativeBase] = Base,
    modules: Sequence[ModuleType] = FEATURE_MODULES,
) -> RelationshipRegistry:
    """Collect every feature module's relationship descriptions into a new registry.

    Raises:
        ConfigurationError: If a feature module describes an invalid relationship
    """
    logger.info("Loading feature-specific relationships...")
    registry = RelationshipRegistry(base)
    accepted = registry.register_all(describe_all(tuple(modules)))
    logger.info(f"Registered {accepted} relationships from {len(modules)} feature modules")
    return registry


def bootstrap(
    connection: DatabaseConnection,
    force: bool = False,
    alter: bool = True,
    registry: RelationshipRegistry | None = None,
    entity_types: Sequence[type] = SYNC_ORDER,
    legacy_table_names: Mapping[str, Sequence[str]] | None = LEGACY_TABLE_NAMES,
) -> BootstrapResult:
    """Run the startup sequence against ``connection``.

    Relationship failures are logged and reported; the sequence continues.

    Raises:
        BaseEntitySyncError: If a base table cannot be synchronized. The process
            must not start serving.
    """
    if registry is None:
        registry = build_registry()

    logger.info("Setting up model relationships...")
    summary = registry.apply_all()
    if not summary.complete:
        logger.warning(
            f"{len(summary.failures)} relationship failures "
            f"({summary.applied} of {summary.total} applied); "
            "continuing startup in degraded mode"
        )

    synchronizer = SchemaSynchronizer(
        connection,
        join_tables=registry.join_tables(),
        legacy_table_names=legacy_table_names,
    )
    logger.info("Syncing database models...")
    report = synchronizer.synchronize(entity_types, force=force, alter=alter)

    logger.info("Verifying database tables...")
    tables = synchronizer.introspector.list_tables()
    if tables:
        logger.info(f"Found database tables: {', '.join(tables)}")
    else:
        logger.error(
            "No tables were created during sync. This indicates a database configuration issue."
        )

    return BootstrapResult(relationships=summary, sync=report, tables=tables)
