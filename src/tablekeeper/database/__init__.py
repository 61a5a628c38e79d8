"""
Database integration package for tablekeeper.

This package provides:
- Async PostgreSQL connection pooling
- Catalog introspection of relations and columns
- The relation store the refresh engine talks to
"""

from .connection import ConnectionConfig, ConnectionPool
from .introspection import CatalogIntrospector, ColumnInfo, Relation, RelationType
from .store import PostgresRelationStore, RelationStore

__all__ = [
    "ConnectionConfig",
    "ConnectionPool",
    "CatalogIntrospector",
    "ColumnInfo",
    "Relation",
    "RelationType",
    "RelationStore",
    "PostgresRelationStore",
]
