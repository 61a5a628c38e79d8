"""
Tests for tablekeeper.schema.refresher module.

These run full refresh attempts against the in-memory store.
"""

import asyncio
import logging
from unittest.mock import AsyncMock

import pytest

from tablekeeper.config import ModelConfig, RefreshSettings
from tablekeeper.database.introspection import ColumnInfo, RelationType
from tablekeeper.exceptions import (
    ConfigurationError,
    InspectionError,
    RefreshInProgressError,
    StoreError,
    StructuralImpossibilityError,
)
from tablekeeper.schema.executor import ExecutionMode
from tablekeeper.schema.refresher import RefreshResult, RefreshStatus, TableRefresher
from tablekeeper.schema.statements import StatementType
from tablekeeper.schema.strategy import RefreshStrategy


QUERY = "SELECT order_date, order_count FROM orders_rollup"
COLUMNS = [ColumnInfo("order_date", "DATE"), ColumnInfo("order_count", "BIGINT")]
ROWS = [
    {"order_date": "2024-01-01", "order_count": 10},
    {"order_date": "2024-01-02", "order_count": 12},
]


def make_refresher(store, **settings) -> TableRefresher:
    return TableRefresher(store, database="warehouse", settings=RefreshSettings(**settings))


@pytest.fixture
def model():
    return ModelConfig(name="daily_orders", schema_name="analytics", sql=QUERY + ";")


@pytest.fixture
def refresher(fake_store):
    return make_refresher(fake_store)


class TestRefreshResult:
    """Test RefreshResult properties."""

    def test_status_values(self):
        assert RefreshStatus.SUCCESS == "success"
        assert RefreshStatus.PARTIAL == "partial"
        assert RefreshStatus.FAILED == "failed"
        assert RefreshStatus.SKIPPED == "skipped"

    def test_defaults(self, target):
        result = RefreshResult(status=RefreshStatus.SKIPPED, model="m", relation=target)

        assert result.statements == []
        assert result.rows_inserted is None
        assert not result.target_modified
        assert not result.needs_manual_rerun


class TestPlan:
    """Test planning without execution."""

    @pytest.mark.asyncio
    async def test_plan_new_table(self, fake_store, refresher, model):
        plan = await refresher.plan(model)

        assert plan.strategy == RefreshStrategy.CREATE
        assert plan.diff is None
        assert plan.query == QUERY
        assert fake_store.executed == []

    @pytest.mark.asyncio
    async def test_plan_existing_table_leaves_target_untouched(self, fake_store, refresher, model):
        fake_store.add_table("analytics", "daily_orders", COLUMNS[:1], [{"order_date": "x"}])
        fake_store.register_query(QUERY, COLUMNS)

        plan = await refresher.plan(model)

        assert plan.strategy == RefreshStrategy.ALTER_IN_PLACE
        assert [a.name for a in plan.diff.columns_to_add] == ["order_count"]
        assert fake_store.table("analytics", "daily_orders")["rows"] == [{"order_date": "x"}]
        assert all(
            s.relation.identifier.endswith("__tmp_column_check") for s in fake_store.executed
        )

    @pytest.mark.asyncio
    async def test_plan_uses_explicit_sql(self, refresher, model):
        plan = await refresher.plan(model, sql="SELECT 1 AS one")
        assert plan.query == "SELECT 1 AS one"

    @pytest.mark.asyncio
    async def test_plan_view_occupant(self, fake_store, refresher, model):
        fake_store.add_table("analytics", "daily_orders", COLUMNS, type=RelationType.VIEW)

        plan = await refresher.plan(model)

        assert plan.strategy == RefreshStrategy.CREATE
        assert plan.replaces_relation


class TestRefresh:
    """Test single-model refresh end to end."""

    @pytest.mark.asyncio
    async def test_first_refresh_creates_table(self, fake_store, refresher, model):
        fake_store.register_query(QUERY, COLUMNS, ROWS)

        result = await refresher.refresh(model)

        assert result.status == RefreshStatus.SUCCESS
        assert result.strategy == RefreshStrategy.CREATE
        assert fake_store.column_names("analytics", "daily_orders") == ["order_date", "order_count"]
        assert fake_store.table("analytics", "daily_orders")["rows"] == ROWS

    @pytest.mark.asyncio
    async def test_matching_columns_keep_table_identity(self, fake_store, refresher, model):
        """Test a refresh with unchanged columns replaces data in the same table."""
        table = fake_store.add_table(
            "analytics", "daily_orders", list(reversed(COLUMNS)),
            [{"order_count": 1, "order_date": "1999-12-31"}],
        )
        original_oid = table["oid"]
        fake_store.register_query(QUERY, COLUMNS, ROWS)

        result = await refresher.refresh(model)

        refreshed = fake_store.table("analytics", "daily_orders")
        assert result.strategy == RefreshStrategy.TRUNCATE_INSERT
        assert refreshed["oid"] == original_oid
        assert refreshed["rows"] == [
            {"order_count": 10, "order_date": "2024-01-01"},
            {"order_count": 12, "order_date": "2024-01-02"},
        ]
        assert result.rows_inserted == 2
        assert StatementType.DROP_TABLE not in fake_store.executed_types

    @pytest.mark.asyncio
    async def test_added_column_altered_in_place(self, fake_store, refresher, model):
        table = fake_store.add_table("analytics", "daily_orders", COLUMNS)
        model_columns = COLUMNS + [ColumnInfo("region", "VARCHAR", char_size=16)]
        fake_store.register_query(QUERY, model_columns, [dict(ROWS[0], region="eu")])

        result = await refresher.refresh(model)

        assert result.strategy == RefreshStrategy.ALTER_IN_PLACE
        assert fake_store.table("analytics", "daily_orders")["oid"] == table["oid"]
        assert fake_store.column_names("analytics", "daily_orders") == [
            "order_date", "order_count", "region"
        ]
        add = next(s for s in result.statements if s.statement_type == StatementType.ADD_COLUMN)
        assert add.definition == "VARCHAR(16)"

    @pytest.mark.asyncio
    async def test_dropped_column_altered_in_place(self, fake_store, refresher, model):
        fake_store.add_table("analytics", "daily_orders", COLUMNS + [ColumnInfo("legacy")])
        fake_store.register_query(QUERY, COLUMNS, ROWS)

        result = await refresher.refresh(model)

        assert result.diff.columns_to_drop == ["legacy"]
        assert fake_store.column_names("analytics", "daily_orders") == ["order_date", "order_count"]
        assert fake_store.table("analytics", "daily_orders")["rows"] == ROWS

    @pytest.mark.asyncio
    async def test_second_refresh_converges(self, fake_store, refresher, model):
        """Test a refresh after an alter finds matching columns."""
        fake_store.add_table("analytics", "daily_orders", [ColumnInfo("legacy")])
        fake_store.register_query(QUERY, COLUMNS, ROWS)

        first = await refresher.refresh(model)
        second = await refresher.refresh(model)

        assert first.strategy == RefreshStrategy.ALTER_IN_PLACE
        assert second.strategy == RefreshStrategy.TRUNCATE_INSERT
        assert fake_store.table("analytics", "daily_orders")["rows"] == ROWS

    @pytest.mark.asyncio
    async def test_drift_without_alter_support_recreates(self, store_factory, model):
        store = store_factory(supports_alter=False)
        table = store.add_table("analytics", "daily_orders", [ColumnInfo("legacy")])
        store.register_query(QUERY, COLUMNS, ROWS)

        result = await make_refresher(store).refresh(model)

        assert result.strategy == RefreshStrategy.DROP_RECREATE
        assert store.table("analytics", "daily_orders")["oid"] != table["oid"]

    @pytest.mark.asyncio
    async def test_alter_disabled_by_settings(self, fake_store, model):
        fake_store.add_table("analytics", "daily_orders", [ColumnInfo("legacy")])
        fake_store.register_query(QUERY, COLUMNS, ROWS)

        result = await make_refresher(fake_store, alter_in_place=False).refresh(model)

        assert result.strategy == RefreshStrategy.DROP_RECREATE

    @pytest.mark.asyncio
    async def test_view_occupant_replaced(self, fake_store, refresher, model, caplog):
        fake_store.add_table("analytics", "daily_orders", COLUMNS, type=RelationType.VIEW)
        fake_store.register_query(QUERY, COLUMNS, ROWS)

        with caplog.at_level(logging.DEBUG, logger="tablekeeper.refresh"):
            result = await refresher.refresh(model)

        assert result.strategy == RefreshStrategy.CREATE
        assert result.statements[0].statement_type == StatementType.DROP_VIEW
        assert fake_store.table("analytics", "daily_orders")["type"] == RelationType.TABLE
        assert "Dropping relation analytics.daily_orders because it is of type view" in caplog.text

    @pytest.mark.asyncio
    async def test_query_without_columns(self, fake_store, refresher, model):
        """Test a query projecting no columns is rejected before the target is touched."""
        fake_store.add_table("analytics", "daily_orders", COLUMNS, ROWS)
        fake_store.register_query(QUERY, [])

        with pytest.raises(InspectionError, match="query produced no columns"):
            await refresher.refresh(model)

        assert fake_store.column_names("analytics", "daily_orders") == ["order_date", "order_count"]
        assert fake_store.table("analytics", "daily_orders")["rows"] == ROWS
        assert StatementType.TRUNCATE not in fake_store.executed_types

    @pytest.mark.asyncio
    async def test_invalid_query(self, fake_store, refresher, model):
        fake_store.add_table("analytics", "daily_orders", COLUMNS, ROWS)

        with pytest.raises(InspectionError):
            await refresher.refresh(model)

        assert fake_store.table("analytics", "daily_orders")["rows"] == ROWS

    @pytest.mark.asyncio
    async def test_missing_sql(self, refresher):
        with pytest.raises(ConfigurationError, match="No SQL code found for model: empty"):
            await refresher.refresh(ModelConfig(name="empty"))

    @pytest.mark.asyncio
    async def test_alias_and_default_schema(self, fake_store, refresher):
        fake_store.register_query(QUERY, COLUMNS, ROWS)
        model = ModelConfig(name="orders", alias="orders_v2", sql=QUERY)

        result = await refresher.refresh(model)

        assert result.relation.name == "public.orders_v2"
        assert fake_store.table("public", "orders_v2") is not None

    @pytest.mark.asyncio
    async def test_dry_run_leaves_target_untouched(self, fake_store, model):
        fake_store.add_table("analytics", "daily_orders", COLUMNS, [{"order_date": "x", "order_count": 0}])
        fake_store.register_query(QUERY, COLUMNS, ROWS)
        refresher = TableRefresher(fake_store, "warehouse", mode=ExecutionMode.DRY_RUN)

        result = await refresher.refresh(model)

        assert result.status == RefreshStatus.SUCCESS
        assert result.strategy == RefreshStrategy.TRUNCATE_INSERT
        assert not any(s.executed for s in result.statements)
        assert fake_store.table("analytics", "daily_orders")["rows"] == [
            {"order_date": "x", "order_count": 0}
        ]

    @pytest.mark.asyncio
    async def test_concurrent_refresh_rejected(self, fake_store, refresher, model):
        fake_store.register_query(QUERY, COLUMNS, ROWS)
        started = asyncio.Event()
        release = asyncio.Event()
        original_execute = fake_store.execute

        async def slow_execute(statement):
            started.set()
            await release.wait()
            return await original_execute(statement)

        fake_store.execute = slow_execute

        first = asyncio.create_task(refresher.refresh(model))
        await started.wait()

        with pytest.raises(RefreshInProgressError):
            await refresher.refresh(model)

        release.set()
        result = await first
        assert result.status == RefreshStatus.SUCCESS


class TestRefreshAll:
    """Test batch refresh."""

    @pytest.fixture
    def models(self):
        return [
            ModelConfig(name="first", sql="SELECT 1 AS a"),
            ModelConfig(name="broken", sql="SELECT broken"),
            ModelConfig(name="last", sql="SELECT 3 AS c"),
        ]

    @pytest.fixture
    def batch_store(self, fake_store):
        fake_store.register_query("SELECT 1 AS a", [ColumnInfo("a")], [{"a": 1}])
        fake_store.register_query("SELECT 3 AS c", [ColumnInfo("c")], [{"c": 3}])
        return fake_store

    @pytest.mark.asyncio
    async def test_fail_fast_stops_batch(self, batch_store, models):
        results = await make_refresher(batch_store).refresh_all(models)

        assert list(results) == ["first", "broken"]
        assert results["first"].status == RefreshStatus.SUCCESS
        assert results["broken"].status == RefreshStatus.FAILED
        assert results["broken"].errors

    @pytest.mark.asyncio
    async def test_continue_on_failure(self, batch_store, models):
        refresher = make_refresher(batch_store, fail_fast=False)

        results = await refresher.refresh_all(models)

        assert [r.status for r in results.values()] == [
            RefreshStatus.SUCCESS, RefreshStatus.FAILED, RefreshStatus.SUCCESS
        ]
        summary = refresher.summarize(results)
        assert summary["total_models"] == 3
        assert summary["successful"] == 2
        assert summary["failed"] == 1
        # the failed model was planned before its statements failed
        assert summary["strategies"] == {"create": 3}

    @pytest.mark.asyncio
    async def test_failure_after_truncate_is_partial(self, fake_store):
        fake_store.add_table("public", "orders", COLUMNS, ROWS)
        fake_store.register_query(QUERY, COLUMNS, ROWS)
        fake_store.fail_on.add(StatementType.INSERT)
        refresher = make_refresher(fake_store)

        results = await refresher.refresh_all([ModelConfig(name="orders", sql=QUERY)])

        result = results["orders"]
        assert result.status == RefreshStatus.PARTIAL
        assert result.needs_manual_rerun
        assert fake_store.table("public", "orders")["rows"] == []
        assert refresher.summarize(results)["needs_manual_rerun"] == ["orders"]

    @pytest.mark.asyncio
    async def test_structural_impossibility_propagates(self, fake_store):
        fake_store.add_table("public", "hollow", [ColumnInfo("stale")])
        fake_store.register_query(QUERY, COLUMNS)
        refresher = make_refresher(fake_store, fail_fast=False)
        refresher.executor.execute = AsyncMock(
            side_effect=StructuralImpossibilityError("public.hollow")
        )

        with pytest.raises(StructuralImpossibilityError):
            await refresher.refresh_all([ModelConfig(name="hollow", sql=QUERY)])

    @pytest.mark.asyncio
    async def test_query_without_columns_does_not_stop_batch(self, fake_store):
        """Test a model whose query projects nothing fails alone."""
        fake_store.add_table("public", "t", [ColumnInfo("id"), ColumnInfo("name")])
        fake_store.register_query("SELECT FROM nothing", [])
        fake_store.register_query(QUERY, COLUMNS, ROWS)
        refresher = make_refresher(fake_store, fail_fast=False)

        results = await refresher.refresh_all([
            ModelConfig(name="t", sql="SELECT FROM nothing"),
            ModelConfig(name="u", sql=QUERY),
        ])

        assert results["t"].status == RefreshStatus.FAILED
        assert "query produced no columns" in results["t"].errors[0]
        assert fake_store.column_names("public", "t") == ["id", "name"]
        assert results["u"].status == RefreshStatus.SUCCESS
        assert fake_store.table("public", "u")["rows"] == ROWS

    @pytest.mark.asyncio
    async def test_model_names_need_resolver(self, fake_store):
        with pytest.raises(ConfigurationError, match="without a configuration"):
            await make_refresher(fake_store).refresh_all(["daily_orders"])
