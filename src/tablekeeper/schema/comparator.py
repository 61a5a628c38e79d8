"""
Structural comparison of an existing table against a pending query.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Sequence

from ..database.introspection import ColumnInfo
from .types import synthesize_column_type


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ColumnAddition:
    """A model column missing from the table, with its ready-to-use definition."""

    column: ColumnInfo
    definition: str

    @property
    def name(self) -> str:
        return self.column.name


@dataclass(frozen=True)
class SchemaDiff:
    """Column-level difference between an existing table and a query.

    ``columns_to_add`` and ``columns_to_drop`` are derived from the two
    snapshots when the diff is built and are empty whenever
    ``columns_match`` is true. Column types take no part in the comparison.
    """

    existing_columns: List[ColumnInfo]
    model_columns: List[ColumnInfo]
    columns_match: bool = field(init=False)
    columns_to_add: List[ColumnAddition] = field(init=False)
    columns_to_drop: List[str] = field(init=False)

    def __post_init__(self):
        existing_keys = {c.key for c in self.existing_columns}
        model_keys = {c.key for c in self.model_columns}

        to_drop = [c.name for c in self.existing_columns if c.key not in model_keys]
        to_add = [
            ColumnAddition(column=c, definition=synthesize_column_type(c))
            for c in self.model_columns
            if c.key not in existing_keys
        ]

        # frozen dataclass: derived fields are set once here
        object.__setattr__(self, "columns_match", existing_keys == model_keys)
        object.__setattr__(self, "columns_to_add", to_add)
        object.__setattr__(self, "columns_to_drop", to_drop)

    @property
    def existing_column_names(self) -> List[str]:
        return [c.name for c in self.existing_columns]

    @property
    def model_column_names(self) -> List[str]:
        return [c.name for c in self.model_columns]

    def final_column_order(self) -> List[str]:
        """Table column order after dropping and adding columns.

        Surviving existing columns keep their physical order; added columns
        follow in the order they were added.
        """
        dropped = {name.lower() for name in self.columns_to_drop}
        final = [c.name for c in self.existing_columns if c.key not in dropped]
        final.extend(addition.name for addition in self.columns_to_add)
        return final

    def source_column_for(self, name: str) -> str:
        """Spelling of ``name`` in the model projection (case-insensitive match)."""
        key = name.lower()
        for column in self.model_columns:
            if column.key == key:
                return column.name
        return name


def compare_columns(
    existing: Sequence[ColumnInfo],
    model: Sequence[ColumnInfo],
) -> SchemaDiff:
    """Compare the existing table's columns against the query's columns."""
    diff = SchemaDiff(existing_columns=list(existing), model_columns=list(model))

    logger.debug(f"Columns to add: {[a.name for a in diff.columns_to_add]}")
    logger.debug(f"Columns to drop: {diff.columns_to_drop}")

    return diff
