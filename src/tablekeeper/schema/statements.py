"""
SQL statement construction for tablekeeper.

Every piece of DDL/DML the engine issues is built here, so identifier
quoting happens in exactly one place.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence

from ..database.introspection import Relation, RelationType


class StatementType(str, Enum):
    """Kinds of statement the engine issues."""

    CREATE_VIEW = "create_view"
    DROP_VIEW = "drop_view"
    DROP_TABLE = "drop_table"
    CREATE_TABLE_AS = "create_table_as"
    TRUNCATE = "truncate"
    DROP_COLUMN = "drop_column"
    ADD_COLUMN = "add_column"
    INSERT = "insert"


class QuoteStyle(str, Enum):
    """Identifier quoting conventions."""

    DOUBLE_QUOTE = "double_quote"  # PostgreSQL / ANSI
    BRACKET = "bracket"            # T-SQL


@dataclass
class Statement:
    """A single statement against the store, plus its execution outcome."""

    statement_type: StatementType
    relation: Relation
    sql: str
    description: str

    # Structured payload mirroring the SQL text
    target_object: Optional[str] = None
    source: Optional[Relation] = None
    columns: List[str] = field(default_factory=list)
    source_columns: List[str] = field(default_factory=list)
    definition: Optional[str] = None
    query: Optional[str] = None
    is_destructive: bool = False

    # Execution results
    executed: bool = False
    execution_time_ms: Optional[float] = None
    status: Optional[str] = None
    error: Optional[str] = None

    @property
    def has_error(self) -> bool:
        return self.error is not None

    @property
    def statement_id(self) -> str:
        """Readable identifier for log lines."""
        target = f".{self.target_object}" if self.target_object else ""
        return f"{self.statement_type.value}:{self.relation.name}{target}"

    @property
    def rows_affected(self) -> Optional[int]:
        """Row count parsed from a command status such as 'INSERT 0 42'."""
        if not self.status:
            return None
        parts = self.status.split()
        if parts and parts[-1].isdigit():
            return int(parts[-1])
        return None


def strip_query(sql: str) -> str:
    """Trim whitespace and trailing semicolons so a query can be embedded."""
    query = sql.strip()
    while query.endswith(";"):
        query = query[:-1].rstrip()
    return query


class StatementBuilder:
    """Builds quoted SQL for each statement kind."""

    def __init__(self, quote_style: QuoteStyle = QuoteStyle.DOUBLE_QUOTE):
        self.quote_style = quote_style

    def quote(self, identifier: str) -> str:
        """Quote an identifier, escaping embedded quote characters."""
        if not identifier:
            raise ValueError("SQL identifier cannot be empty")
        if self.quote_style == QuoteStyle.BRACKET:
            return "[" + identifier.replace("]", "]]") + "]"
        return '"' + identifier.replace('"', '""') + '"'

    def render(self, relation: Relation) -> str:
        """Render a schema-qualified relation name."""
        return f"{self.quote(relation.schema)}.{self.quote(relation.identifier)}"

    def column_list(self, columns: Sequence[str]) -> str:
        return ", ".join(self.quote(c) for c in columns)

    def create_view(self, view: Relation, sql: str) -> Statement:
        query = strip_query(sql)
        return Statement(
            statement_type=StatementType.CREATE_VIEW,
            relation=view,
            sql=f"CREATE VIEW {self.render(view)} AS\n{query}",
            description=f"Create view {view.name}",
            query=query,
        )

    def drop_relation(self, relation: Relation) -> Statement:
        """DROP ... IF EXISTS for a table or view."""
        if relation.type == RelationType.VIEW:
            statement_type, keyword = StatementType.DROP_VIEW, "VIEW"
        else:
            statement_type, keyword = StatementType.DROP_TABLE, "TABLE"

        return Statement(
            statement_type=statement_type,
            relation=relation,
            sql=f"DROP {keyword} IF EXISTS {self.render(relation)}",
            description=f"Drop {relation.type.value} {relation.name}",
            is_destructive=relation.type == RelationType.TABLE,
        )

    def create_table_as(self, relation: Relation, source: Relation) -> Statement:
        return Statement(
            statement_type=StatementType.CREATE_TABLE_AS,
            relation=relation,
            sql=f"CREATE TABLE {self.render(relation)} AS SELECT * FROM {self.render(source)}",
            description=f"Create table {relation.name} from {source.name}",
            source=source,
        )

    def truncate(self, relation: Relation) -> Statement:
        return Statement(
            statement_type=StatementType.TRUNCATE,
            relation=relation,
            sql=f"TRUNCATE TABLE {self.render(relation)}",
            description=f"Truncate table {relation.name}",
            is_destructive=True,
        )

    def drop_column(self, relation: Relation, column_name: str) -> Statement:
        return Statement(
            statement_type=StatementType.DROP_COLUMN,
            relation=relation,
            sql=f"ALTER TABLE {self.render(relation)} DROP COLUMN {self.quote(column_name)}",
            description=f"Drop column {column_name}",
            target_object=column_name,
            is_destructive=True,
        )

    def add_column(self, relation: Relation, column_name: str, definition: str) -> Statement:
        return Statement(
            statement_type=StatementType.ADD_COLUMN,
            relation=relation,
            sql=f"ALTER TABLE {self.render(relation)} ADD {self.quote(column_name)} {definition}",
            description=f"Add column {column_name} {definition}",
            target_object=column_name,
            definition=definition,
        )

    def insert_from(
        self,
        relation: Relation,
        source: Relation,
        columns: Sequence[str],
        source_columns: Optional[Sequence[str]] = None,
    ) -> Statement:
        """INSERT ... SELECT with explicit column lists on both sides.

        ``source_columns`` names the same columns as spelled by the source,
        position for position; it defaults to ``columns``.
        """
        if not columns:
            raise ValueError("INSERT requires an explicit, non-empty column list")

        selected = list(source_columns) if source_columns is not None else list(columns)
        if len(selected) != len(columns):
            raise ValueError("INSERT column lists must have the same length on both sides")

        return Statement(
            statement_type=StatementType.INSERT,
            relation=relation,
            sql=(
                f"INSERT INTO {self.render(relation)} ({self.column_list(columns)})\n"
                f"SELECT {self.column_list(selected)} FROM {self.render(source)}"
            ),
            description=f"Insert into {relation.name} from {source.name}",
            source=source,
            columns=list(columns),
            source_columns=selected,
        )
