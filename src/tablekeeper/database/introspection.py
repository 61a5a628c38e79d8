"""
Database catalog introspection for tablekeeper.

Provides the column and relation value types shared by the refresh
engine, plus the PostgreSQL catalog reader that produces them.
"""

import hashlib
import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, List, Optional

import asyncpg

from .connection import ConnectionPool
from ..exceptions import DatabaseError, SchemaError


logger = logging.getLogger(__name__)

# PostgreSQL truncates longer identifiers (NAMEDATALEN - 1)
MAX_IDENTIFIER_LENGTH = 63


class RelationType(str, Enum):
    """Kinds of relation the engine addresses."""

    TABLE = "table"
    VIEW = "view"


@dataclass(frozen=True)
class ColumnInfo:
    """One column's name and physical type facets."""

    name: str
    data_type: Optional[str] = None
    char_size: Optional[int] = None
    numeric_precision: Optional[int] = None
    numeric_scale: Optional[int] = None

    @property
    def key(self) -> str:
        """Case-insensitive identity of the column."""
        return self.name.lower()

    def __str__(self) -> str:
        return f"{self.name} {self.data_type or 'unknown'}"


@dataclass(frozen=True)
class Relation:
    """Address of a table or view in the store."""

    database: str
    schema: str
    identifier: str
    type: RelationType = RelationType.TABLE

    @property
    def name(self) -> str:
        """Schema-qualified name."""
        return f"{self.schema}.{self.identifier}"

    @property
    def full_name(self) -> str:
        """Database- and schema-qualified name."""
        return f"{self.database}.{self.schema}.{self.identifier}"

    @property
    def is_table(self) -> bool:
        return self.type == RelationType.TABLE

    @property
    def is_view(self) -> bool:
        return self.type == RelationType.VIEW

    def incorporate(self, type: RelationType) -> "Relation":
        """Return the same address with a different relation type."""
        return replace(self, type=type)

    def staging_view(self, suffix: str) -> "Relation":
        """Return the deterministic transient view for this relation.

        Names that would exceed the store's identifier limit keep a prefix of
        the identifier plus a short digest of the whole, so the view is still
        addressable by the name it was created under.
        """
        identifier = f"{self.identifier}{suffix}"
        if len(identifier.encode("utf-8")) > MAX_IDENTIFIER_LENGTH:
            digest = hashlib.md5(self.identifier.encode("utf-8")).hexdigest()[:8]
            budget = MAX_IDENTIFIER_LENGTH - len(suffix.encode("utf-8")) - len(digest) - 1
            prefix = self.identifier.encode("utf-8")[:budget].decode("utf-8", "ignore")
            identifier = f"{prefix}_{digest}{suffix}"
        return replace(self, identifier=identifier, type=RelationType.VIEW)

    def __str__(self) -> str:
        return self.name


# information_schema.columns.data_type -> base type understood by the type synthesizer
_POSTGRES_BASE_TYPES: Dict[str, str] = {
    "character varying": "VARCHAR",
    "character": "CHAR",
    "text": "TEXT",
    "numeric": "NUMERIC",
    "real": "FLOAT",
    "double precision": "FLOAT",
    "smallint": "SMALLINT",
    "integer": "INTEGER",
    "bigint": "BIGINT",
    "boolean": "BOOLEAN",
    "date": "DATE",
    "time without time zone": "TIME",
    "time with time zone": "TIMETZ",
    "timestamp without time zone": "TIMESTAMP",
    "timestamp with time zone": "TIMESTAMPTZ",
    "interval": "INTERVAL",
    "uuid": "UUID",
    "json": "JSON",
    "jsonb": "JSONB",
    "bytea": "BYTEA",
}

_FRACTIONAL_SECOND_TYPES = ("TIME", "TIMETZ", "TIMESTAMP", "TIMESTAMPTZ")

_POSTGRES_RELATION_TYPES: Dict[str, RelationType] = {
    "BASE TABLE": RelationType.TABLE,
    "LOCAL TEMPORARY": RelationType.TABLE,
    "VIEW": RelationType.VIEW,
}


def normalize_postgres_column(
    name: str,
    data_type: str,
    udt_name: Optional[str] = None,
    char_size: Optional[int] = None,
    numeric_precision: Optional[int] = None,
    numeric_scale: Optional[int] = None,
    datetime_precision: Optional[int] = None,
) -> ColumnInfo:
    """Build a ColumnInfo from an information_schema.columns row."""
    base_type = _POSTGRES_BASE_TYPES.get(data_type)

    if base_type is None:
        if data_type == "ARRAY" and udt_name:
            base_type = f"{udt_name.lstrip('_').upper()}[]"
        elif data_type == "USER-DEFINED" and udt_name:
            base_type = udt_name.upper()
        else:
            base_type = data_type.upper()

    # Fractional-second types report their scale as datetime_precision
    if base_type in _FRACTIONAL_SECOND_TYPES:
        scale = datetime_precision
    elif base_type == "NUMERIC":
        scale = numeric_scale
    else:
        scale = None

    # Integers report a binary precision that must not leak into DDL
    precision = numeric_precision if base_type in ("NUMERIC", "FLOAT") else None

    return ColumnInfo(
        name=name,
        data_type=base_type,
        char_size=char_size,
        numeric_precision=precision,
        numeric_scale=scale,
    )


class CatalogIntrospector:
    """PostgreSQL catalog reads for relations and their columns."""

    def __init__(self, pool: ConnectionPool):
        self.pool = pool

    async def get_relation_type(self, schema: str, identifier: str) -> Optional[RelationType]:
        """Return the relation's type, or None when it does not exist."""
        query = """
            SELECT table_type
            FROM information_schema.tables
            WHERE table_schema = $1 AND table_name = $2
        """

        try:
            table_type = await self.pool.fetchval(query, schema, identifier)
        except asyncpg.PostgresError as e:
            logger.error(f"Error probing relation {schema}.{identifier}: {e}")
            raise DatabaseError(f"Failed to probe relation {schema}.{identifier}", cause=e) from e

        if table_type is None:
            return None

        relation_type = _POSTGRES_RELATION_TYPES.get(table_type)
        if relation_type is None:
            raise SchemaError(
                f"Unsupported relation type '{table_type}' for {schema}.{identifier}"
            )
        return relation_type

    async def get_columns(self, schema: str, identifier: str) -> List[ColumnInfo]:
        """Get the columns of a relation in physical order."""
        query = """
            SELECT
                c.column_name,
                c.data_type,
                c.udt_name,
                c.character_maximum_length,
                c.numeric_precision,
                c.numeric_scale,
                c.datetime_precision
            FROM information_schema.columns c
            WHERE c.table_schema = $1 AND c.table_name = $2
            ORDER BY c.ordinal_position
        """

        try:
            rows = await self.pool.fetch(query, schema, identifier)
        except asyncpg.PostgresError as e:
            logger.error(f"Error getting columns for {schema}.{identifier}: {e}")
            raise SchemaError(f"Failed to get columns for {schema}.{identifier}", cause=e) from e

        return [
            normalize_postgres_column(
                name=row["column_name"],
                data_type=row["data_type"],
                udt_name=row["udt_name"],
                char_size=row["character_maximum_length"],
                numeric_precision=row["numeric_precision"],
                numeric_scale=row["numeric_scale"],
                datetime_precision=row["datetime_precision"],
            )
            for row in rows
        ]
