"""Relationship registry.

Feature modules describe their relationships independently and in any load
order. The registry de-duplicates them by identity key, orders them so
owning sides (which create foreign key columns) go before the relationships
that depend on those columns, and pushes each onto the mapped classes exactly
once.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from sqlalchemy.orm import DeclarativeBase

from campusdb.core.types import ApplySummary, RelationshipKind
from campusdb.exceptions import CampusDBError, RelationshipApplicationError
from campusdb.relationships.definitions import (
    ManyToManyOptions,
    ManyToOneOptions,
    OneToManyOptions,
    OneToOneOptions,
    RelationshipDefinition,
    build_definition,
    type_name,
)
from campusdb.relationships.orm import declare_relationship, existing_relationship

logger = logging.getLogger(__name__)

RelationshipKey = tuple[str, str, str]

_OWNING_KINDS = (RelationshipKind.MANY_TO_ONE,)
_OWNED_KINDS = (RelationshipKind.ONE_TO_ONE, RelationshipKind.ONE_TO_MANY)


@dataclass(frozen=True)
class JoinTableSpec:
    """A join entity type and the two key columns it must have."""

    entity: str
    source_key: str
    target_key: str

    @property
    def key_columns(self) -> tuple[str, str]:
        return (self.source_key, self.target_key)


def _is_inverse(a: RelationshipDefinition, b: RelationshipDefinition) -> bool:
    """Whether ``b`` is the other direction of ``a``."""
    if a is b or a.source_type != b.target_type or a.target_type != b.source_type:
        return False
    if a.kind == RelationshipKind.MANY_TO_MANY:
        return (
            b.kind == RelationshipKind.MANY_TO_MANY
            and a.through_type == b.through_type
            and a.foreign_key == b.other_key
            and a.other_key == b.foreign_key
        )
    if a.kind in _OWNING_KINDS:
        return b.kind in _OWNED_KINDS and a.foreign_key == b.foreign_key
    return b.kind in _OWNING_KINDS and a.foreign_key == b.foreign_key


class RelationshipRegistry:
    """Collects relationship definitions and applies them to a declarative base.

    One instance is owned by the bootstrap sequencer. Tests build their own.
    """

    def __init__(self, base: type[DeclarativeBase]) -> None:
        """Initialize the registry.

        Args:
            base: Declarative base whose mapped classes the definitions refer to
        """
        self._base = base
        self._definitions: list[RelationshipDefinition] = []
        self._index: dict[RelationshipKey, RelationshipDefinition] = {}

    # === Registration ===

    def register(self, definition: RelationshipDefinition) -> bool:
        """Register one definition.

        A definition whose identity key is already registered is rejected with
        a warning naming the module that owns it. This is expected when two
        feature modules both declare the same side of a relationship.

        Returns:
            True if registered, False if rejected as a duplicate
        """
        key = definition.key
        if key in self._index:
            logger.warning(
                f"Relationship already defined: {definition.describe()}. "
                f"Previously defined by module: {self.get_owner(*key)}, "
                f"now attempted by: {definition.owning_module}"
            )
            return False

        definition.applied = False
        self._definitions.append(definition)
        self._index[key] = definition
        logger.debug(f"Registered {definition.describe()} ({definition.owning_module})")
        return True

    def register_all(self, definitions: Iterable[RelationshipDefinition]) -> int:
        """Register many definitions. Returns how many were accepted."""
        return sum(1 for definition in definitions if self.register(definition))

    def register_one_to_one(
        self,
        source: str | type,
        target: str | type,
        options: OneToOneOptions | dict[str, Any] | None = None,
        owning_module: str = "unknown",
    ) -> bool:
        return self.register(
            build_definition(RelationshipKind.ONE_TO_ONE, source, target, options, owning_module)
        )

    def register_one_to_many(
        self,
        source: str | type,
        target: str | type,
        options: OneToManyOptions | dict[str, Any] | None = None,
        owning_module: str = "unknown",
    ) -> bool:
        return self.register(
            build_definition(RelationshipKind.ONE_TO_MANY, source, target, options, owning_module)
        )

    def register_many_to_one(
        self,
        source: str | type,
        target: str | type,
        options: ManyToOneOptions | dict[str, Any] | None = None,
        owning_module: str = "unknown",
    ) -> bool:
        return self.register(
            build_definition(RelationshipKind.MANY_TO_ONE, source, target, options, owning_module)
        )

    register_belongs_to = register_many_to_one

    def register_many_to_many(
        self,
        source: str | type,
        target: str | type,
        options: ManyToManyOptions | dict[str, Any] | None = None,
        owning_module: str = "unknown",
    ) -> bool:
        """Register a many-to-many relationship.

        Raises:
            ConfigurationError: If ``options`` has no ``through`` join type
        """
        return self.register(
            build_definition(RelationshipKind.MANY_TO_MANY, source, target, options, owning_module)
        )

    # === Lookup ===

    def get_owner(
        self, source: str | type, target: str | type, alias: str
    ) -> str | None:
        """Module that registered the given identity key, if any."""
        definition = self._index.get((type_name(source), type_name(target), alias))
        return definition.owning_module if definition else None

    def get(self, source: str | type, target: str | type, alias: str) -> RelationshipDefinition | None:
        return self._index.get((type_name(source), type_name(target), alias))

    def get_all_relationships(self) -> list[RelationshipDefinition]:
        """All registered definitions, in registration order."""
        return list(self._definitions)

    def __len__(self) -> int:
        return len(self._definitions)

    def join_tables(self) -> dict[str, JoinTableSpec]:
        """Join entity types used by many-to-many relationships, by type name.

        The first relationship registered through a join type decides the
        order of its key columns.
        """
        specs: dict[str, JoinTableSpec] = {}
        for definition in self._definitions:
            if definition.kind != RelationshipKind.MANY_TO_MANY or not definition.through_type:
                continue
            if definition.through_type not in specs:
                specs[definition.through_type] = JoinTableSpec(
                    entity=definition.through_type,
                    source_key=definition.foreign_key,
                    target_key=definition.other_key or "",
                )
        return specs

    # === Application ===

    def resolve_application_order(self) -> list[RelationshipDefinition]:
        """Definitions sorted many_to_one, one_to_one, one_to_many, many_to_many.

        The sort is stable, so registration order is kept within a kind.
        """
        return sorted(self._definitions, key=lambda d: d.kind.rank)

    def _models(self) -> dict[str, type]:
        return {mapper.class_.__name__: mapper.class_ for mapper in self._base.registry.mappers}

    def _find_applied_inverse(self, definition: RelationshipDefinition) -> str | None:
        for other in self._definitions:
            if other.applied and _is_inverse(definition, other):
                return other.alias
        return None

    def _check_back_populates(
        self, definition: RelationshipDefinition, models: dict[str, type]
    ) -> None:
        """Reject an explicit back_populates naming nothing on the target.

        The name must be an attribute already mapped on the target type or the
        alias of a definition registered on it.
        """
        name = definition.options.back_populates
        target = models.get(definition.target_type)
        if not name or target is None:
            return
        if existing_relationship(target, name) is not None:
            return
        if any(
            d.source_type == definition.target_type and d.alias == name for d in self._definitions
        ):
            return
        raise RelationshipApplicationError(
            definition.source_type,
            definition.target_type,
            str(definition.kind),
            definition.alias,
            f"back_populates '{name}' is not a relationship on {definition.target_type}",
        )

    def _configure_mappers(self, applied_now: list[RelationshipDefinition]) -> list[dict[str, Any]]:
        """Configure the base's mappers, reporting failures instead of raising.

        Some relationship errors only surface when SQLAlchemy configures the
        mappers. Definitions named in the error (``Source.alias``) are marked
        unapplied. A failed configuration stays failed for this base.
        """
        try:
            self._base.registry.configure()
        except Exception as e:
            logger.error(f"Mapper configuration failed after applying relationships: {e}")
            blamed = [d for d in applied_now if f"{d.source_type}.{d.alias}" in str(e)]
            for definition in blamed:
                definition.applied = False
            if not blamed:
                return [CampusDBError(f"Mapper configuration failed: {e}").to_dict()]
            return [
                RelationshipApplicationError(
                    d.source_type, d.target_type, str(d.kind), d.alias, str(e)
                ).to_dict()
                for d in blamed
            ]
        return []

    def apply_all(self) -> ApplySummary:
        """Apply every registered definition that is not applied yet.

        A failure on one definition is logged and the rest are still attempted.
        The mappers are then configured, so errors SQLAlchemy defers to
        configuration are reported here too.
        Calling this again only retries the definitions that failed.

        Returns:
            Summary with applied and total counts and the failures of this pass
        """
        models = self._models()
        failures: list[dict[str, Any]] = []
        applied_now: list[RelationshipDefinition] = []

        for definition in self.resolve_application_order():
            if definition.applied:
                continue
            try:
                self._check_back_populates(definition, models)
                declare_relationship(
                    definition, models, inverse=self._find_applied_inverse(definition)
                )
            except RelationshipApplicationError as e:
                logger.error(
                    f"Error applying {definition.kind} relationship from "
                    f"{definition.source_type} to {definition.target_type} "
                    f"as '{definition.alias}' ({definition.owning_module}): {e.reason}"
                )
                failures.append(e.to_dict())
                continue

            definition.applied = True
            applied_now.append(definition)
            logger.debug(f"Applied {definition.describe()}")

        failures.extend(self._configure_mappers(applied_now))

        applied = sum(1 for d in self._definitions if d.applied)
        logger.info(f"Applied {applied} of {len(self._definitions)} relationships")
        return ApplySummary(applied=applied, total=len(self._definitions), failures=failures)

    def reset(self) -> None:
        """Clear all registrations. Test harnesses only."""
        self._definitions.clear()
        self._index.clear()
