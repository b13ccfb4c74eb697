"""Schema introspection and synchronization."""

from campusdb.schema.introspection import SchemaIntrospector
from campusdb.schema.synchronizer import SchemaSynchronizer

__all__ = [
    "SchemaIntrospector",
    "SchemaSynchronizer",
]
