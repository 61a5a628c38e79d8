"""
Column snapshots of existing relations and pending queries.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from ..database.introspection import ColumnInfo, Relation
from ..database.store import RelationStore
from ..exceptions import DatabaseError, InspectionError
from .context import RefreshContext
from .staging import COLUMN_CHECK_SUFFIX, staging_view
from .statements import Statement, StatementBuilder


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RelationSnapshot:
    """An existing relation as reported by the store, with its ordered columns."""

    relation: Relation
    columns: List[ColumnInfo]

    @property
    def column_names(self) -> List[str]:
        return [c.name for c in self.columns]


class SchemaInspector:
    """Reads column definitions from the store's catalog."""

    def __init__(self, store: RelationStore, builder: Optional[StatementBuilder] = None):
        self.store = store
        self.builder = builder or StatementBuilder()

    async def snapshot(self, relation: Relation) -> Optional[RelationSnapshot]:
        """Snapshot an existing relation, or None when it does not exist."""
        existing = await self.store.get_relation(relation)
        if existing is None:
            return None

        columns = await self.store.get_columns(existing)
        return RelationSnapshot(relation=existing, columns=columns)

    async def snapshot_query(
        self,
        target: Relation,
        sql: str,
        context: RefreshContext,
    ) -> List[ColumnInfo]:
        """Columns a query would produce, discovered through a transient view.

        The query is materialized as a view because its result columns
        cannot be derived statically (CTEs, ``SELECT *`` and friends).

        Raises:
            InspectionError: the query could not be materialized, its columns
                could not be read, or it projects no columns
        """
        try:
            async with staging_view(
                self._run, self.builder, target, COLUMN_CHECK_SUFFIX, sql, context
            ) as view:
                columns = await self.store.get_columns(view)
        except DatabaseError as e:
            raise InspectionError(target.name, "query could not be materialized", cause=e) from e

        if not columns:
            raise InspectionError(target.name, "query produced no columns")

        logger.debug(f"Query for {target} projects {[c.name for c in columns]}")
        return columns

    async def _run(self, statement: Statement) -> str:
        return await self.store.execute(statement)
