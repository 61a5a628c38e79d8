"""
Table refresh orchestration for tablekeeper.

Coordinates inspection, comparison, strategy selection and plan execution
for each model, and reports what happened.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Union

from ..config import ModelConfig, RefreshSettings
from ..database.introspection import Relation, RelationType
from ..database.store import RelationStore
from ..exceptions import (
    ConfigurationError,
    RefreshInProgressError,
    StructuralImpossibilityError,
    TablekeeperError,
)
from .comparator import SchemaDiff, compare_columns
from .context import RefreshContext
from .executor import ExecutionMode, PlanExecutor
from .inspector import SchemaInspector
from .statements import QuoteStyle, Statement, StatementBuilder, StatementType, strip_query
from .strategy import RefreshStrategy, select_strategy

if TYPE_CHECKING:
    from ..resolver import QueryResolver


logger = logging.getLogger(__name__)


class RefreshStatus(str, Enum):
    """Outcome of a refresh attempt."""

    SUCCESS = "success"
    PARTIAL = "partial"    # failed after the target was modified
    FAILED = "failed"      # failed before the target was modified
    SKIPPED = "skipped"


@dataclass
class RefreshPlan:
    """What a refresh would do, decided from current store state."""

    relation: Relation
    query: str
    strategy: RefreshStrategy
    diff: Optional[SchemaDiff] = None
    existing: Optional[Relation] = None

    @property
    def replaces_relation(self) -> bool:
        """True when a non-table relation occupies the target name."""
        return self.existing is not None and not self.existing.is_table


@dataclass
class RefreshResult:
    """Result of refreshing one model."""

    status: RefreshStatus
    model: str
    relation: Relation
    strategy: Optional[RefreshStrategy] = None
    diff: Optional[SchemaDiff] = None
    statements: List[Statement] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    execution_time_ms: float = 0.0

    @property
    def target_modified(self) -> bool:
        """Whether any executed statement touched the target table itself."""
        return any(
            s.executed and s.relation.identifier == self.relation.identifier
            and s.relation.schema == self.relation.schema
            for s in self.statements
        )

    @property
    def needs_manual_rerun(self) -> bool:
        """The target may be truncated or partially altered without its data."""
        return self.status == RefreshStatus.PARTIAL

    @property
    def rows_inserted(self) -> Optional[int]:
        for statement in reversed(self.statements):
            if statement.statement_type == StatementType.INSERT and statement.executed:
                return statement.rows_affected
        return None


class TableRefresher:
    """
    Refreshes tables from queries without breaking their physical identity.

    Each refresh attempt reads current store state, so a failed attempt can
    simply be run again. Attempts against the same relation are serialized
    by refusing a second one while the first is in flight.
    """

    def __init__(
        self,
        store: RelationStore,
        database: str,
        settings: Optional[RefreshSettings] = None,
        resolver: Optional["QueryResolver"] = None,
        mode: ExecutionMode = ExecutionMode.EXECUTE,
    ):
        self.store = store
        self.database = database
        self.settings = settings or RefreshSettings()
        self.resolver = resolver
        self.mode = mode

        self.builder = StatementBuilder(QuoteStyle(self.settings.quote_style))
        self.inspector = SchemaInspector(store, self.builder)
        self.executor = PlanExecutor(store, self.builder, mode)

        self._active_refreshes: Dict[str, bool] = {}
        self._refresh_lock = asyncio.Lock()

    @property
    def supports_alter(self) -> bool:
        """Column drift is repaired in place only if both store and settings allow it."""
        return self.settings.alter_in_place and self.store.supports_column_alter

    def relation_for(self, model: ModelConfig) -> Relation:
        return Relation(
            database=self.database,
            schema=model.schema_name or self.settings.default_schema,
            identifier=model.identifier,
            type=RelationType.TABLE,
        )

    def context_for(self, model: ModelConfig) -> RefreshContext:
        log_to_stdout = (
            model.log_to_stdout if model.log_to_stdout is not None else self.settings.log_to_stdout
        )
        return RefreshContext(relation=self.relation_for(model), log_to_stdout=log_to_stdout)

    async def plan(
        self,
        model: Union[str, ModelConfig],
        sql: Optional[str] = None,
    ) -> RefreshPlan:
        """Decide the refresh strategy for a model without touching the target."""
        model_config = self._get_model(model)
        query = self._resolve_query(model_config, sql)
        return await self._plan(model_config, query, self.context_for(model_config))

    async def refresh(
        self,
        model: Union[str, ModelConfig],
        sql: Optional[str] = None,
    ) -> RefreshResult:
        """
        Refresh a single model's table.

        Args:
            model: Model name or configuration
            sql: Pre-compiled query text; resolved from the model when omitted

        Returns:
            RefreshResult with the strategy, diff and statements issued

        Raises:
            InspectionError: the query could not be inspected or projects no columns
            StoreError: a statement failed; the target may be left truncated
            StructuralImpossibilityError: the altered table would have no columns
        """
        model_config = self._get_model(model)
        result = RefreshResult(
            status=RefreshStatus.SKIPPED,
            model=model_config.name,
            relation=self.relation_for(model_config),
        )
        await self._refresh_into(result, model_config, sql)
        return result

    async def refresh_all(
        self,
        models: Iterable[Union[str, ModelConfig]],
    ) -> Dict[str, RefreshResult]:
        """
        Refresh several models, one at a time.

        Failures are recorded per model instead of raised, except for
        StructuralImpossibilityError which always propagates. With
        ``fail_fast`` the batch stops at the first failure.
        """
        results: Dict[str, RefreshResult] = {}

        for model in models:
            model_config = self._get_model(model)
            result = RefreshResult(
                status=RefreshStatus.SKIPPED,
                model=model_config.name,
                relation=self.relation_for(model_config),
            )
            results[model_config.name] = result

            try:
                await self._refresh_into(result, model_config)
            except StructuralImpossibilityError:
                raise
            except TablekeeperError as e:
                result.errors.append(str(e))
                result.status = (
                    RefreshStatus.PARTIAL if result.target_modified else RefreshStatus.FAILED
                )
                logger.error(f"Refresh failed for {result.relation}: {e}")

                if result.needs_manual_rerun:
                    logger.warning(
                        f"{result.relation} may have been left truncated or partially "
                        f"altered; re-run the refresh once the cause is fixed"
                    )

                if self.settings.fail_fast:
                    logger.warning(f"Stopping refresh due to failure: {model_config.name}")
                    break

        return results

    def summarize(self, results: Dict[str, RefreshResult]) -> Dict[str, object]:
        """Get summary of refresh results."""
        total = len(results)
        successful = sum(1 for r in results.values() if r.status == RefreshStatus.SUCCESS)
        strategies: Dict[str, int] = {}
        for r in results.values():
            if r.strategy is not None:
                strategies[r.strategy.value] = strategies.get(r.strategy.value, 0) + 1

        return {
            "total_models": total,
            "successful": successful,
            "failed": sum(1 for r in results.values() if r.status == RefreshStatus.FAILED),
            "partial": sum(1 for r in results.values() if r.status == RefreshStatus.PARTIAL),
            "success_rate": successful / total if total > 0 else 0,
            "strategies": strategies,
            "needs_manual_rerun": [
                name for name, r in results.items() if r.needs_manual_rerun
            ],
        }

    async def _refresh_into(
        self,
        result: RefreshResult,
        model: ModelConfig,
        sql: Optional[str] = None,
    ) -> None:
        start_time = time.time()
        relation_key = result.relation.full_name.lower()

        async with self._refresh_lock:
            if self._active_refreshes.get(relation_key, False):
                raise RefreshInProgressError(result.relation.name)
            self._active_refreshes[relation_key] = True

        try:
            logger.info(f"Starting refresh for {result.relation}")
            context = self.context_for(model)
            query = self._resolve_query(model, sql)

            plan = await self._plan(model, query, context)
            result.strategy = plan.strategy
            result.diff = plan.diff

            if plan.replaces_relation:
                await self.executor.drop_occupant(plan.existing, context, result.statements)

            await self.executor.execute(
                plan.strategy,
                plan.relation,
                plan.query,
                plan.diff,
                context,
                statements=result.statements,
            )
            result.status = RefreshStatus.SUCCESS

        finally:
            self._active_refreshes.pop(relation_key, None)
            result.execution_time_ms = (time.time() - start_time) * 1000

        logger.info(
            f"Refresh completed for {result.relation}: "
            f"{result.strategy.value} ({result.execution_time_ms:.1f}ms)"
        )

    async def _plan(self, model: ModelConfig, query: str, context: RefreshContext) -> RefreshPlan:
        target = self.relation_for(model)
        snapshot = await self.inspector.snapshot(target)

        if snapshot is None or not snapshot.relation.is_table:
            return RefreshPlan(
                relation=target,
                query=query,
                strategy=select_strategy(False, None, self.supports_alter),
                existing=snapshot.relation if snapshot else None,
            )

        model_columns = await self.inspector.snapshot_query(target, query, context)
        diff = compare_columns(snapshot.columns, model_columns)

        if not diff.columns_match:
            context.log(f"Columns to add: {[a.name for a in diff.columns_to_add]}")
            context.log(f"Columns to drop: {diff.columns_to_drop}")

        return RefreshPlan(
            relation=target,
            query=query,
            strategy=select_strategy(True, diff, self.supports_alter),
            diff=diff,
            existing=snapshot.relation,
        )

    def _get_model(self, model: Union[str, ModelConfig]) -> ModelConfig:
        if isinstance(model, ModelConfig):
            return model
        if self.resolver is None:
            raise ConfigurationError(f"Cannot resolve model '{model}' without a configuration")
        return self.resolver.get_model(model)

    def _resolve_query(self, model: ModelConfig, sql: Optional[str]) -> str:
        if sql is not None:
            query = strip_query(sql)
        elif self.resolver is not None:
            query = self.resolver.resolve(model)
        else:
            query = strip_query(model.sql or "")

        if not query:
            raise ConfigurationError(f"No SQL code found for model: {model.name}")
        return query
