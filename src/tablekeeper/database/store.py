"""
Store collaborator for the refresh engine.

The engine only ever talks to a ``RelationStore``: an existence probe, a
column catalog read, statement execution and a capability flag.
"""

import logging
import time
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, List, Optional

import asyncpg

from .connection import ConnectionPool
from .introspection import CatalogIntrospector, ColumnInfo, Relation
from ..exceptions import StoreError

if TYPE_CHECKING:
    from ..schema.statements import Statement


logger = logging.getLogger(__name__)


class RelationStore(ABC):
    """Abstract store the refresh engine runs against."""

    @property
    def supports_column_alter(self) -> bool:
        """Whether ALTER TABLE ADD/DROP COLUMN is available."""
        return True

    @abstractmethod
    async def get_relation(self, relation: Relation) -> Optional[Relation]:
        """Return the relation as it exists in the store, or None."""
        pass

    @abstractmethod
    async def get_columns(self, relation: Relation) -> List[ColumnInfo]:
        """Return the relation's columns in physical order."""
        pass

    @abstractmethod
    async def execute(self, statement: "Statement") -> str:
        """Execute one DDL/DML statement and return its command status.

        Raises:
            StoreError: the statement failed
        """
        pass


class PostgresRelationStore(RelationStore):
    """RelationStore backed by an asyncpg connection pool."""

    def __init__(self, pool: ConnectionPool):
        self.pool = pool
        self.introspector = CatalogIntrospector(pool)

    async def get_relation(self, relation: Relation) -> Optional[Relation]:
        relation_type = await self.introspector.get_relation_type(
            relation.schema, relation.identifier
        )
        if relation_type is None:
            return None
        return relation.incorporate(type=relation_type)

    async def get_columns(self, relation: Relation) -> List[ColumnInfo]:
        return await self.introspector.get_columns(relation.schema, relation.identifier)

    async def execute(self, statement: "Statement") -> str:
        start_time = time.time()
        try:
            status = await self.pool.execute(statement.sql)
        except asyncpg.PostgresError as e:
            logger.error(f"Statement {statement.statement_id} failed: {e}")
            raise StoreError(
                f"Statement {statement.statement_id} failed", statement=statement.sql, cause=e
            ) from e

        logger.debug(f"Executed {statement.statement_id} in {(time.time() - start_time) * 1000:.1f}ms: {status}")
        return status
