"""Relationship definitions and their per-kind option variants.

A RelationshipDefinition names both sides by their logical entity type (the
mapped class name), never by table name, so feature modules can describe
relationships without importing each other's models.

Options are a tagged union: each relationship kind has its own pydantic model
and only ManyToManyOptions accepts ``through`` / ``other_key``. Unknown fields
are rejected, so a ``through`` passed to a one-to-many declaration fails at
declaration time instead of being silently ignored.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError, field_validator

from campusdb.core.types import OnDeleteActionType, RelationshipKind
from campusdb.exceptions import ConfigurationError


def to_snake_case(name: str) -> str:
    """Convert an entity type name to snake_case (e.g., SchoolYear -> school_year)."""
    result = []
    for i, char in enumerate(name):
        if char.isupper() and i > 0 and not name[i - 1].isupper():
            result.append("_")
        result.append(char.lower())
    safe_name = "".join(result).replace(" ", "_").replace("-", "_")
    while "__" in safe_name:
        safe_name = safe_name.replace("__", "_")
    return safe_name


LoaderStrategy = Literal[
    "select", "joined", "subquery", "selectin", "raise", "raise_on_sql", "noload", "immediate"
]


def type_name(entity: str | type) -> str:
    """Logical type name of a mapped class, or the name itself."""
    if isinstance(entity, str):
        return entity
    return entity.__name__


class _RelationshipOptions(BaseModel):
    """Fields shared by every relationship kind."""

    alias: str | None = Field(default=None, description="Attribute name on the source type")
    foreign_key: str | None = Field(default=None, description="Column linking both sides")
    on_delete: OnDeleteActionType | None = Field(
        default=None, description="ON DELETE action for a foreign key column added on apply"
    )
    order_by: str | None = Field(
        default=None, description="Target column to order by, '-' prefix for descending"
    )
    cascade: str | None = Field(default=None, description="ORM cascade, e.g. 'all, delete-orphan'")
    lazy: LoaderStrategy = Field(default="select", description="ORM loader strategy")
    constraints: bool = Field(
        default=True, description="Whether an added foreign key column carries a FOREIGN KEY"
    )
    back_populates: str | None = Field(
        default=None, description="Inverse attribute on the target type"
    )

    model_config = {"extra": "forbid", "frozen": True}


class OneToOneOptions(_RelationshipOptions):
    """Options for ``source`` has one ``target`` (key lives on the target)."""


class OneToManyOptions(_RelationshipOptions):
    """Options for ``source`` has many ``target`` (key lives on the target)."""


class ManyToOneOptions(_RelationshipOptions):
    """Options for ``source`` belongs to ``target`` (key lives on the source)."""


class ManyToManyOptions(_RelationshipOptions):
    """Options for ``source`` belongs to many ``target`` through a join type."""

    through: str = Field(..., description="Join entity type name")
    other_key: str | None = Field(
        default=None, description="Join column pointing at the target (default '<target>_id')"
    )

    @field_validator("through", mode="before")
    @classmethod
    def _through_type_name(cls, value: Any) -> Any:
        if isinstance(value, type):
            return value.__name__
        return value


RelationshipOptions = OneToOneOptions | OneToManyOptions | ManyToOneOptions | ManyToManyOptions

OPTIONS_BY_KIND: dict[RelationshipKind, type[_RelationshipOptions]] = {
    RelationshipKind.ONE_TO_ONE: OneToOneOptions,
    RelationshipKind.ONE_TO_MANY: OneToManyOptions,
    RelationshipKind.MANY_TO_ONE: ManyToOneOptions,
    RelationshipKind.MANY_TO_MANY: ManyToManyOptions,
}


@dataclass(eq=False)
class RelationshipDefinition:
    """One declared relationship between two entity types.

    Everything except ``applied`` is fixed at declaration time; ``applied``
    flips to True once the relationship is pushed onto the mapped classes.
    """

    source_type: str
    target_type: str
    kind: RelationshipKind
    alias: str
    foreign_key: str
    options: RelationshipOptions
    owning_module: str
    through_type: str | None = None
    other_key: str | None = None
    applied: bool = False

    @property
    def key(self) -> tuple[str, str, str]:
        """Identity key: (source_type, target_type, alias)."""
        return (self.source_type, self.target_type, self.alias)

    def describe(self) -> str:
        return f"{self.source_type} {self.kind} {self.target_type} as '{self.alias}'"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "source": self.source_type,
            "target": self.target_type,
            "kind": str(self.kind),
            "alias": self.alias,
            "foreign_key": self.foreign_key,
            "through": self.through_type,
            "other_key": self.other_key,
            "owning_module": self.owning_module,
            "applied": self.applied,
        }


def _coerce_options(
    kind: RelationshipKind,
    options: RelationshipOptions | dict[str, Any] | None,
    source: str,
    target: str,
    owning_module: str,
) -> RelationshipOptions:
    options_cls = OPTIONS_BY_KIND[kind]
    if isinstance(options, options_cls):
        return options  # type: ignore[return-value]
    if isinstance(options, BaseModel):
        raise ConfigurationError(
            f"{type(options).__name__} cannot configure a {kind} relationship "
            f"from {source} to {target}. Use {options_cls.__name__}.",
            source=source,
            target=target,
            owning_module=owning_module,
        )

    data = dict(options or {})
    if kind == RelationshipKind.MANY_TO_MANY and not data.get("through"):
        raise ConfigurationError(
            f"'through' option is required for {kind} relationship from {source} to {target}",
            source=source,
            target=target,
            owning_module=owning_module,
        )
    try:
        return options_cls.model_validate(data)  # type: ignore[return-value]
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid options for {kind} relationship from {source} to {target}: {e}",
            source=source,
            target=target,
            owning_module=owning_module,
        ) from e


def build_definition(
    kind: RelationshipKind,
    source: str | type,
    target: str | type,
    options: RelationshipOptions | dict[str, Any] | None,
    owning_module: str,
) -> RelationshipDefinition:
    """Build a definition, filling alias and foreign key defaults by convention.

    Defaults:
        many_to_one: alias ``<target>``, foreign key ``<target>_id`` on the source
        one_to_one: alias ``<target>``, foreign key ``<source>_id`` on the target
        one_to_many: alias ``<target>s``, foreign key ``<source>_id`` on the target
        many_to_many: alias ``<target>s``, keys ``<source>_id`` / ``<target>_id``
            on the join type

    Plurals just append "s" (Category gives ``categorys``). Pass ``alias`` for
    irregular plurals.

    Raises:
        ConfigurationError: If the options are invalid for the kind
    """
    kind = RelationshipKind(kind)
    source_name = type_name(source)
    target_name = type_name(target)
    opts = _coerce_options(kind, options, source_name, target_name, owning_module)

    source_snake = to_snake_case(source_name)
    target_snake = to_snake_case(target_name)

    if kind in (RelationshipKind.ONE_TO_ONE, RelationshipKind.MANY_TO_ONE):
        alias = opts.alias or target_snake
    else:
        alias = opts.alias or f"{target_snake}s"

    if kind == RelationshipKind.MANY_TO_ONE:
        foreign_key = opts.foreign_key or f"{target_snake}_id"
    else:
        foreign_key = opts.foreign_key or f"{source_snake}_id"

    through_type = None
    other_key = None
    if isinstance(opts, ManyToManyOptions):
        through_type = opts.through
        other_key = opts.other_key or f"{target_snake}_id"
        if other_key == foreign_key:
            raise ConfigurationError(
                f"{kind} relationship from {source_name} to {target_name} uses "
                f"'{foreign_key}' for both join columns. Set foreign_key and other_key.",
                source=source_name,
                target=target_name,
                owning_module=owning_module,
            )

    return RelationshipDefinition(
        source_type=source_name,
        target_type=target_name,
        kind=kind,
        alias=alias,
        foreign_key=foreign_key,
        options=opts,
        owning_module=owning_module,
        through_type=through_type,
        other_key=other_key,
    )


def one_to_one(
    source: str | type,
    target: str | type,
    options: OneToOneOptions | dict[str, Any] | None = None,
    owning_module: str = "unknown",
) -> RelationshipDefinition:
    """``source`` has one ``target``."""
    return build_definition(RelationshipKind.ONE_TO_ONE, source, target, options, owning_module)


def one_to_many(
    source: str | type,
    target: str | type,
    options: OneToManyOptions | dict[str, Any] | None = None,
    owning_module: str = "unknown",
) -> RelationshipDefinition:
    """``source`` has many ``target``."""
    return build_definition(RelationshipKind.ONE_TO_MANY, source, target, options, owning_module)


def many_to_one(
    source: str | type,
    target: str | type,
    options: ManyToOneOptions | dict[str, Any] | None = None,
    owning_module: str = "unknown",
) -> RelationshipDefinition:
    """``source`` belongs to ``target``."""
    return build_definition(RelationshipKind.MANY_TO_ONE, source, target, options, owning_module)


belongs_to = many_to_one


def many_to_many(
    source: str | type,
    target: str | type,
    options: ManyToManyOptions | dict[str, Any] | None = None,
    owning_module: str = "unknown",
) -> RelationshipDefinition:
    """``source`` belongs to many ``target`` through ``options['through']``.

    Raises:
        ConfigurationError: If no join type is given
    """
    return build_definition(RelationshipKind.MANY_TO_MANY, source, target, options, owning_module)
