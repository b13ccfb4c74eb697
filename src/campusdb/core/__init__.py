"""Core components for campusdb."""

from campusdb.core.config import Settings, configure_logging, get_database_url
from campusdb.core.connection import DatabaseConnection
from campusdb.core.types import (
    ApplySummary,
    EntitySyncResult,
    OnDeleteActionType,
    RelationshipKind,
    SyncReport,
    SyncState,
)

__all__ = [
    "DatabaseConnection",
    "Settings",
    "configure_logging",
    "get_database_url",
    "RelationshipKind",
    "OnDeleteActionType",
    "SyncState",
    "ApplySummary",
    "EntitySyncResult",
    "SyncReport",
]
