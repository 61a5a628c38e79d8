"""
Pytest configuration and shared fixtures for tablekeeper tests.

This module provides an in-memory relation store and configuration
fixtures shared by the unit tests.
"""

import itertools
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

import pytest
import yaml

from tablekeeper.config import ModelConfig, RefreshSettings, TablekeeperConfig
from tablekeeper.database.connection import ConnectionConfig
from tablekeeper.database.introspection import ColumnInfo, Relation, RelationType
from tablekeeper.database.store import RelationStore
from tablekeeper.exceptions import StoreError
from tablekeeper.schema.context import RefreshContext
from tablekeeper.schema.statements import Statement, StatementType


# ============================================================================
# In-memory store
# ============================================================================

class FakeRelationStore(RelationStore):
    """
    RelationStore that applies statements to in-memory relations.

    Statements are applied from their structured payload, not by parsing SQL.
    Each table gets an ``oid`` when created; it changes only when the table
    is dropped and created again, so tests can assert physical identity.
    """

    _oids = itertools.count(16384)

    def __init__(self, supports_alter: bool = True):
        self.relations: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self.queries: Dict[str, Tuple[List[ColumnInfo], List[Dict[str, Any]]]] = {}
        self.executed: List[Statement] = []
        self.fail_on: Set[StatementType] = set()
        self._supports_alter = supports_alter

    @property
    def supports_column_alter(self) -> bool:
        return self._supports_alter

    # -- test setup helpers ------------------------------------------------

    def register_query(
        self,
        sql: str,
        columns: Sequence[ColumnInfo],
        rows: Optional[List[Dict[str, Any]]] = None,
    ) -> str:
        """Declare the columns and rows a query produces."""
        self.queries[sql.strip()] = (list(columns), [dict(r) for r in rows or []])
        return sql

    def add_table(
        self,
        schema: str,
        identifier: str,
        columns: Sequence[ColumnInfo],
        rows: Optional[List[Dict[str, Any]]] = None,
        type: RelationType = RelationType.TABLE,
    ) -> Dict[str, Any]:
        entry = {
            "type": type,
            "columns": list(columns),
            "rows": [dict(r) for r in rows or []],
            "oid": next(self._oids),
        }
        self.relations[(schema.lower(), identifier.lower())] = entry
        return entry

    def table(self, schema: str, identifier: str) -> Optional[Dict[str, Any]]:
        return self.relations.get((schema.lower(), identifier.lower()))

    def column_names(self, schema: str, identifier: str) -> List[str]:
        return [c.name for c in self.table(schema, identifier)["columns"]]

    @property
    def executed_types(self) -> List[StatementType]:
        return [s.statement_type for s in self.executed]

    # -- RelationStore -----------------------------------------------------

    async def get_relation(self, relation: Relation) -> Optional[Relation]:
        entry = self._entry(relation)
        if entry is None:
            return None
        return relation.incorporate(type=entry["type"])

    async def get_columns(self, relation: Relation) -> List[ColumnInfo]:
        entry = self._entry(relation)
        return list(entry["columns"]) if entry else []

    async def execute(self, statement: Statement) -> str:
        self.executed.append(statement)

        if statement.statement_type in self.fail_on:
            raise StoreError(f"Statement {statement.statement_id} failed", statement=statement.sql)

        handler = getattr(self, f"_apply_{statement.statement_type.value}")
        return handler(statement)

    # -- statement handlers --------------------------------------------------

    def _key(self, relation: Relation) -> Tuple[str, str]:
        return (relation.schema.lower(), relation.identifier.lower())

    def _entry(self, relation: Relation) -> Optional[Dict[str, Any]]:
        return self.relations.get(self._key(relation))

    def _apply_create_view(self, statement: Statement) -> str:
        if statement.query not in self.queries:
            raise StoreError("syntax error in view definition", statement=statement.sql)
        if self._entry(statement.relation) is not None:
            raise StoreError(f"relation {statement.relation} already exists", statement=statement.sql)

        columns, rows = self.queries[statement.query]
        self.add_table(
            statement.relation.schema, statement.relation.identifier, columns, rows,
            type=RelationType.VIEW,
        )
        return "CREATE VIEW"

    def _apply_drop_view(self, statement: Statement) -> str:
        self.relations.pop(self._key(statement.relation), None)
        return "DROP VIEW"

    def _apply_drop_table(self, statement: Statement) -> str:
        self.relations.pop(self._key(statement.relation), None)
        return "DROP TABLE"

    def _apply_create_table_as(self, statement: Statement) -> str:
        source = self._entry(statement.source)
        if self._entry(statement.relation) is not None:
            raise StoreError(f"relation {statement.relation} already exists", statement=statement.sql)
        self.add_table(
            statement.relation.schema, statement.relation.identifier,
            source["columns"], source["rows"],
        )
        return f"SELECT {len(source['rows'])}"

    def _apply_truncate(self, statement: Statement) -> str:
        self._entry(statement.relation)["rows"] = []
        return "TRUNCATE TABLE"

    def _apply_drop_column(self, statement: Statement) -> str:
        entry = self._entry(statement.relation)
        key = statement.target_object.lower()
        entry["columns"] = [c for c in entry["columns"] if c.key != key]
        return "ALTER TABLE"

    def _apply_add_column(self, statement: Statement) -> str:
        entry = self._entry(statement.relation)
        entry["columns"].append(ColumnInfo(statement.target_object, statement.definition))
        return "ALTER TABLE"

    def _apply_insert(self, statement: Statement) -> str:
        target = self._entry(statement.relation)
        source = self._entry(statement.source)
        for row in source["rows"]:
            target["rows"].append({
                column: row.get(source_column)
                for column, source_column in zip(statement.columns, statement.source_columns)
            })
        return f"INSERT 0 {len(source['rows'])}"


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def fake_store() -> FakeRelationStore:
    """Empty in-memory store supporting column alters."""
    return FakeRelationStore()


@pytest.fixture
def target() -> Relation:
    """The table most tests refresh."""
    return Relation(database="warehouse", schema="analytics", identifier="daily_orders")


@pytest.fixture
def context(target) -> RefreshContext:
    return RefreshContext(relation=target)


@pytest.fixture
def connection_config() -> ConnectionConfig:
    return ConnectionConfig(
        host="localhost",
        port=5432,
        database="warehouse",
        user="tablekeeper",
        password="secret",
    )


@pytest.fixture
def orders_model() -> ModelConfig:
    return ModelConfig(
        name="daily_orders",
        schema_name="analytics",
        sql="SELECT order_date, order_count FROM orders_rollup",
    )


@pytest.fixture
def sample_config(connection_config, orders_model) -> TablekeeperConfig:
    return TablekeeperConfig(
        database=connection_config,
        refresh=RefreshSettings(default_schema="analytics"),
        models=[orders_model],
    )


@pytest.fixture
def sample_config_dict() -> Dict[str, Any]:
    return {
        "service_name": "tablekeeper-test",
        "database": {
            "host": "localhost",
            "port": 5432,
            "database": "warehouse",
            "user": "tablekeeper",
            "password": "secret",
        },
        "refresh": {
            "default_schema": "analytics",
            "alter_in_place": True,
        },
        "models": [
            {
                "name": "daily_orders",
                "sql": "SELECT order_date, order_count FROM orders_rollup",
            },
            {
                "name": "customers",
                "schema": "crm",
                "alias": "customer_dim",
                "sql_file": "models/customers.sql",
            },
        ],
    }


@pytest.fixture
def config_file(tmp_path, sample_config_dict):
    """YAML configuration file plus the model SQL it references."""
    models_dir = tmp_path / "models"
    models_dir.mkdir()
    (models_dir / "customers.sql").write_text("SELECT id, name FROM raw_customers;\n")

    path = tmp_path / "tablekeeper.yaml"
    path.write_text(yaml.safe_dump(sample_config_dict))
    return path


@pytest.fixture
def store_factory():
    """Build in-memory stores with non-default capabilities."""
    return FakeRelationStore
