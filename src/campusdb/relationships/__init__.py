"""Relationship declaration and application."""

from campusdb.relationships.definitions import (
    ManyToManyOptions,
    ManyToOneOptions,
    OneToManyOptions,
    OneToOneOptions,
    RelationshipDefinition,
    RelationshipOptions,
    belongs_to,
    many_to_many,
    many_to_one,
    one_to_many,
    one_to_one,
)
from campusdb.relationships.registry import JoinTableSpec, RelationshipRegistry

__all__ = [
    "RelationshipRegistry",
    "RelationshipDefinition",
    "RelationshipOptions",
    "JoinTableSpec",
    "OneToOneOptions",
    "OneToManyOptions",
    "ManyToOneOptions",
    "ManyToManyOptions",
    "one_to_one",
    "one_to_many",
    "many_to_one",
    "belongs_to",
    "many_to_many",
]
