"""Pushes relationship definitions onto live SQLAlchemy declarative classes.

Declarative classes accept new attributes after mapping: assigning a
``Column`` appends it to the class's table and mapper, assigning a
``relationship()`` adds the property. Mappers are configured lazily, so
nothing here triggers ``configure_mappers()``.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from sqlalchemy import Column, ForeignKey
from sqlalchemy.exc import InvalidRequestError
from sqlalchemy.orm import RelationshipProperty, relationship

from campusdb.core.types import OnDeleteActionType, RelationshipKind
from campusdb.exceptions import RelationshipApplicationError
from campusdb.relationships.definitions import RelationshipDefinition, RelationshipOptions

logger = logging.getLogger(__name__)


def _fail(definition: RelationshipDefinition, reason: str) -> RelationshipApplicationError:
    return RelationshipApplicationError(
        definition.source_type,
        definition.target_type,
        str(definition.kind),
        definition.alias,
        reason,
    )


def resolve_model(
    models: Mapping[str, type], name: str, definition: RelationshipDefinition
) -> type:
    """Find the mapped class for a logical type name."""
    model = models.get(name)
    if model is None:
        raise _fail(definition, f"Entity type '{name}' is not mapped")
    return model


def primary_key_column(model: type) -> Column[Any]:
    """The single primary key column of a mapped class."""
    columns = list(model.__table__.primary_key.columns)  # type: ignore[attr-defined]
    if len(columns) != 1:
        raise ValueError(f"{model.__name__} must have a single-column primary key")
    return columns[0]


def ensure_foreign_key_column(
    owner: type, name: str, referenced: type, options: RelationshipOptions
) -> Column[Any]:
    """Return ``owner``'s foreign key column, appending it when missing.

    The new column copies the referenced primary key's type. It carries a
    FOREIGN KEY (with ``options.on_delete``) unless ``options.constraints`` is
    False.
    """
    table = owner.__table__  # type: ignore[attr-defined]
    if name in table.c:
        return table.c[name]

    referenced_pk = primary_key_column(referenced)
    args: list[Any] = []
    if options.constraints:
        ondelete = OnDeleteActionType(options.on_delete).sql if options.on_delete else None
        args.append(ForeignKey(referenced_pk, ondelete=ondelete))

    setattr(owner, name, Column(name, referenced_pk.type, *args, nullable=True, index=True))
    logger.debug(f"Added foreign key column {table.name}.{name} -> {referenced_pk}")
    return table.c[name]


def existing_relationship(model: type, alias: str) -> Any:
    """The mapper property already registered under ``alias``, or None."""
    try:
        return model.__mapper__.get_property(alias)  # type: ignore[attr-defined]
    except InvalidRequestError:
        return None


def _points_at(prop: RelationshipProperty[Any], target: type) -> bool:
    argument = prop.argument
    if callable(argument) and not isinstance(argument, type):
        return False
    return argument is target or argument == target.__name__


def _relationship_kwargs(options: RelationshipOptions, target: type) -> dict[str, Any]:
    kwargs: dict[str, Any] = {"lazy": options.lazy}
    if options.cascade:
        kwargs["cascade"] = options.cascade
    if options.order_by:
        column = target.__table__.c[options.order_by.lstrip("-")]  # type: ignore[attr-defined]
        kwargs["order_by"] = column.desc() if options.order_by.startswith("-") else column
    return kwargs


def declare_relationship(
    definition: RelationshipDefinition,
    models: Mapping[str, type],
    inverse: str | None = None,
) -> bool:
    """Declare one relationship on its source class.

    Args:
        definition: The relationship to declare
        models: Mapped classes by logical type name
        inverse: Alias of an already-declared inverse relationship on the target,
            linked through ``back_populates``

    Returns:
        True if the mapped classes were changed, False if an identical
        relationship was already mapped and got adopted as-is

    Raises:
        RelationshipApplicationError: If the relationship cannot be declared
    """
    source = resolve_model(models, definition.source_type, definition)
    target = resolve_model(models, definition.target_type, definition)
    options = definition.options
    alias = definition.alias

    current = existing_relationship(source, alias)
    if current is not None:
        if isinstance(current, RelationshipProperty) and _points_at(current, target):
            logger.debug(f"Relationship {definition.describe()} already mapped, adopting it")
            return False
        raise _fail(definition, f"'{alias}' is already used by another attribute on {source.__name__}")

    back_populates = options.back_populates or inverse

    try:
        kwargs = _relationship_kwargs(options, target)
        if back_populates:
            kwargs["back_populates"] = back_populates

        # Only the side a key points at needs a single-column primary key;
        # join entities with composite keys can still belong to other types.
        if definition.kind == RelationshipKind.MANY_TO_ONE:
            target_pk = primary_key_column(target)
            fk_column = ensure_foreign_key_column(source, definition.foreign_key, target, options)
            if source is target:
                kwargs["remote_side"] = [target_pk]
            prop = relationship(
                target,
                primaryjoin=fk_column == target_pk,
                foreign_keys=[fk_column],
                **kwargs,
            )
        elif definition.kind in (RelationshipKind.ONE_TO_ONE, RelationshipKind.ONE_TO_MANY):
            source_pk = primary_key_column(source)
            fk_column = ensure_foreign_key_column(target, definition.foreign_key, source, options)
            prop = relationship(
                target,
                primaryjoin=source_pk == fk_column,
                foreign_keys=[fk_column],
                uselist=definition.kind == RelationshipKind.ONE_TO_MANY,
                **kwargs,
            )
        else:
            source_pk = primary_key_column(source)
            target_pk = primary_key_column(target)
            through = resolve_model(models, definition.through_type or "", definition)
            join_table = through.__table__  # type: ignore[attr-defined]
            for key in (definition.foreign_key, definition.other_key):
                if key not in join_table.c:
                    raise ValueError(f"Join table '{join_table.name}' has no column '{key}'")
            source_key = join_table.c[definition.foreign_key]
            target_key = join_table.c[definition.other_key]
            prop = relationship(
                target,
                secondary=join_table,
                primaryjoin=source_pk == source_key,
                secondaryjoin=target_pk == target_key,
                foreign_keys=[source_key, target_key],
                **kwargs,
            )

        setattr(source, alias, prop)
    except RelationshipApplicationError:
        raise
    except Exception as e:
        raise _fail(definition, str(e)) from e

    if back_populates:
        other = existing_relationship(target, back_populates)
        if isinstance(other, RelationshipProperty) and other.back_populates is None:
            other.back_populates = alias

    return True
