"""
Table refresh package for tablekeeper.

This package provides:
- Column snapshots of relations and pending queries
- Column diffing and type synthesis
- Refresh strategy selection
- Ordered statement execution with staging views
"""

from .comparator import ColumnAddition, SchemaDiff, compare_columns
from .executor import ExecutionMode, PlanExecutor
from .inspector import RelationSnapshot, SchemaInspector
from .refresher import RefreshPlan, RefreshResult, RefreshStatus, TableRefresher
from .statements import QuoteStyle, Statement, StatementBuilder, StatementType
from .strategy import RefreshStrategy, select_strategy
from .types import synthesize_column_type

__all__ = [
    "ColumnAddition",
    "SchemaDiff",
    "compare_columns",
    "ExecutionMode",
    "PlanExecutor",
    "RelationSnapshot",
    "SchemaInspector",
    "RefreshPlan",
    "RefreshResult",
    "RefreshStatus",
    "TableRefresher",
    "QuoteStyle",
    "Statement",
    "StatementBuilder",
    "StatementType",
    "RefreshStrategy",
    "select_strategy",
    "synthesize_column_type",
]
