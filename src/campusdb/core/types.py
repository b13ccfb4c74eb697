"""Core types for campusdb.

All result types are pydantic models so they serialize cleanly to JSON for
the CLI and for log records.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class RelationshipKind(StrEnum):
    """Cardinality and ownership shape of a declared relationship."""

    MANY_TO_ONE = "many_to_one"  # e.g., Department -> School ("belongs to")
    ONE_TO_ONE = "one_to_one"  # e.g., User -> StaffProfile
    ONE_TO_MANY = "one_to_many"  # e.g., School -> Departments
    MANY_TO_MANY = "many_to_many"  # e.g., Role <-> Permission (requires join table)

    @classmethod
    def values(cls) -> list[str]:
        """Return all valid relationship kind values."""
        return [k.value for k in cls]

    @property
    def rank(self) -> int:
        """Application precedence: owning sides first, join relationships last."""
        return _KIND_RANK[self]


_KIND_RANK = {
    RelationshipKind.MANY_TO_ONE: 1,
    RelationshipKind.ONE_TO_ONE: 2,
    RelationshipKind.ONE_TO_MANY: 3,
    RelationshipKind.MANY_TO_MANY: 4,
}


class OnDeleteActionType(StrEnum):
    """Referential actions when a related row is deleted."""

    CASCADE = "CASCADE"
    SET_NULL = "SET_NULL"
    RESTRICT = "RESTRICT"
    NO_ACTION = "NO_ACTION"

    @classmethod
    def values(cls) -> list[str]:
        """Return all valid on_delete action values."""
        return [a.value for a in cls]

    @property
    def sql(self) -> str:
        """The ON DELETE clause keyword."""
        return self.value.replace("_", " ")


class SyncState(StrEnum):
    """States an entity type passes through during a synchronization pass."""

    PENDING = "pending"
    CHECKING = "checking"
    SYNCING = "syncing"
    SYNCED = "synced"
    REPAIRING = "repairing"
    RECREATED = "recreated"
    FAILED = "failed"
    FAILED_TOLERATED = "failed_tolerated"


class ApplySummary(BaseModel):
    """Outcome of one RelationshipRegistry.apply_all() pass."""

    applied: int = Field(..., description="Relationships applied after this pass")
    total: int = Field(..., description="Relationships registered")
    failures: list[dict[str, Any]] = Field(
        default_factory=list, description="Errors for relationships that failed this pass"
    )

    @property
    def complete(self) -> bool:
        """Whether every registered relationship is applied and the mappers configured."""
        return self.applied == self.total and not self.failures


class EntitySyncResult(BaseModel):
    """Per-entity record of a synchronization pass."""

    entity: str
    table: str
    is_join: bool = False
    state: SyncState = SyncState.PENDING
    history: list[SyncState] = Field(default_factory=lambda: [SyncState.PENDING])
    error: dict[str, Any] | None = None

    def advance(self, state: SyncState) -> None:
        """Move to a new state, keeping the path taken."""
        self.state = state
        self.history.append(state)


class SyncReport(BaseModel):
    """Ordered per-entity outcomes of SchemaSynchronizer.synchronize()."""

    force: bool = False
    alter: bool = True
    dropped_duplicates: list[str] = Field(default_factory=list)
    results: list[EntitySyncResult] = Field(default_factory=list)

    def get(self, entity: str) -> EntitySyncResult | None:
        """Look up the result for one entity type name."""
        for result in self.results:
            if result.entity == entity:
                return result
        return None

    @property
    def synced(self) -> list[str]:
        return [r.entity for r in self.results if r.state == SyncState.SYNCED]

    @property
    def recreated(self) -> list[str]:
        return [r.entity for r in self.results if SyncState.RECREATED in r.history]

    @property
    def tolerated_failures(self) -> list[str]:
        return [r.entity for r in self.results if r.state == SyncState.FAILED_TOLERATED]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return self.model_dump(mode="json")
