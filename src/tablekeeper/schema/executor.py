"""
Plan execution for tablekeeper.

Sequences the statements that realize a refresh strategy. Statements are
issued one at a time, in order, with no rollback: a failure part way
through leaves the target in whatever state the last completed statement
left it.
"""

import logging
import time
from enum import Enum
from typing import List, Optional

from ..database.introspection import Relation, RelationType
from ..database.store import RelationStore
from ..exceptions import StoreError, StructuralImpossibilityError
from .comparator import SchemaDiff
from .context import RefreshContext
from .staging import ALTER_SUFFIX, CREATE_SUFFIX, INSERT_SUFFIX, staging_view
from .statements import Statement, StatementBuilder
from .strategy import RefreshStrategy


logger = logging.getLogger(__name__)


class ExecutionMode(str, Enum):
    """Plan execution modes."""

    EXECUTE = "execute"   # Issue statements against the store
    DRY_RUN = "dry_run"   # Record statements but don't execute


class PlanExecutor:
    """Issues the statements for a chosen refresh strategy."""

    def __init__(
        self,
        store: RelationStore,
        builder: Optional[StatementBuilder] = None,
        mode: ExecutionMode = ExecutionMode.EXECUTE,
    ):
        self.store = store
        self.builder = builder or StatementBuilder()
        self.mode = mode

    async def execute(
        self,
        strategy: RefreshStrategy,
        relation: Relation,
        sql: str,
        diff: Optional[SchemaDiff],
        context: RefreshContext,
        statements: Optional[List[Statement]] = None,
    ) -> List[Statement]:
        """
        Realize ``strategy`` for ``relation`` from ``sql``.

        Args:
            strategy: Strategy chosen by the selector
            relation: Target table
            sql: Query producing the table's new contents
            diff: Column diff; required for TRUNCATE_INSERT and ALTER_IN_PLACE
            context: Attempt-scoped context
            statements: Optional list every issued statement is appended to,
                so callers keep the trail even when a statement fails

        Returns:
            The statements issued, in order

        Raises:
            StoreError: a statement failed
            StructuralImpossibilityError: the altered table would have no columns.
                The final column list is computed from the diff and checked
                before the staging view is created, so this is raised with
                nothing issued and the target untouched
        """
        issued = statements if statements is not None else []
        target = relation.incorporate(type=RelationType.TABLE)

        async def run(statement: Statement) -> Statement:
            return await self._run(statement, issued)

        if strategy == RefreshStrategy.CREATE:
            await self._create(run, target, sql, context)
        elif strategy == RefreshStrategy.TRUNCATE_INSERT:
            await self._truncate_insert(run, target, sql, self._require_diff(strategy, diff), context)
        elif strategy == RefreshStrategy.ALTER_IN_PLACE:
            await self._alter_in_place(run, target, sql, self._require_diff(strategy, diff), context)
        elif strategy == RefreshStrategy.DROP_RECREATE:
            await self._drop_recreate(run, target, sql, context)
        else:
            raise ValueError(f"Unknown refresh strategy: {strategy}")

        return issued

    async def drop_occupant(
        self,
        existing: Relation,
        context: RefreshContext,
        statements: Optional[List[Statement]] = None,
    ) -> Statement:
        """Drop a non-table relation that holds the target table's name."""
        issued = statements if statements is not None else []
        context.log(f"Dropping relation {existing} because it is of type {existing.type.value}")
        return await self._run(self.builder.drop_relation(existing), issued)

    async def _create(self, run, target: Relation, sql: str, context: RefreshContext) -> None:
        context.log(f"Creating new table {target} using CREATE TABLE AS SELECT")

        async with staging_view(run, self.builder, target, CREATE_SUFFIX, sql, context) as view:
            await run(self.builder.create_table_as(target, view))

    async def _truncate_insert(
        self, run, target: Relation, sql: str, diff: SchemaDiff, context: RefreshContext
    ) -> None:
        context.log(
            f"Table {target} exists with matching columns. Using truncate and insert strategy."
        )

        # Existing physical order, whatever order the query projects
        columns = diff.existing_column_names
        if not columns:
            raise StructuralImpossibilityError(target.name)
        source_columns = [diff.source_column_for(name) for name in columns]

        async with staging_view(run, self.builder, target, INSERT_SUFFIX, sql, context) as view:
            await run(self.builder.truncate(target))
            await run(self.builder.insert_from(target, view, columns, source_columns))

    async def _alter_in_place(
        self, run, target: Relation, sql: str, diff: SchemaDiff, context: RefreshContext
    ) -> None:
        """Truncate, drop and add columns, then insert in the final column order.

        The final order depends only on the diff, so an empty one is rejected
        up front rather than after the alters have run.
        """
        context.log(
            f"Table {target} exists but columns do not match. "
            f"Using truncate, alter, and insert strategy."
        )

        final_columns = diff.final_column_order()
        if not final_columns:
            raise StructuralImpossibilityError(target.name)

        async with staging_view(run, self.builder, target, ALTER_SUFFIX, sql, context) as view:
            await run(self.builder.truncate(target))

            if diff.columns_to_drop:
                context.log(f"Dropping {len(diff.columns_to_drop)} columns")
                for column_name in diff.columns_to_drop:
                    await run(self.builder.drop_column(target, column_name))
                    context.log(f"Dropped column: {column_name}")

            if diff.columns_to_add:
                context.log(f"Adding {len(diff.columns_to_add)} columns")
                for addition in diff.columns_to_add:
                    await run(self.builder.add_column(target, addition.name, addition.definition))
                    context.log(f"Added column: {addition.name} {addition.definition}")

            context.log(f"Inserting data with column order: {', '.join(final_columns)}")
            source_columns = [diff.source_column_for(name) for name in final_columns]
            await run(self.builder.insert_from(target, view, final_columns, source_columns))

    async def _drop_recreate(self, run, target: Relation, sql: str, context: RefreshContext) -> None:
        context.log(
            f"Table {target} exists but columns do not match and the store cannot alter "
            f"columns. Using drop and recreate strategy."
        )
        context.log(f"Dropping relation {target} because it is of type {target.type.value}")
        await run(self.builder.drop_relation(target))

        await self._create(run, target, sql, context)

    async def _run(self, statement: Statement, issued: List[Statement]) -> Statement:
        issued.append(statement)

        if self.mode == ExecutionMode.DRY_RUN:
            logger.info(f"DRY RUN: Would execute {statement.statement_id}")
            logger.info(f"SQL: {statement.sql}")
            return statement

        start_time = time.time()
        try:
            statement.status = await self.store.execute(statement)
        except StoreError as e:
            statement.error = str(e)
            logger.error(f"Failed to execute {statement.statement_id}: {e}")
            raise
        finally:
            statement.execution_time_ms = (time.time() - start_time) * 1000

        statement.executed = True
        logger.debug(f"Successfully executed {statement.statement_id}")
        return statement

    @staticmethod
    def _require_diff(strategy: RefreshStrategy, diff: Optional[SchemaDiff]) -> SchemaDiff:
        if diff is None:
            raise ValueError(f"Strategy {strategy.value} requires a column diff")
        return diff
