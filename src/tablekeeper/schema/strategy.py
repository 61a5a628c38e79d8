"""
Refresh strategy selection.
"""

from enum import Enum
from typing import Optional

from .comparator import SchemaDiff


class RefreshStrategy(str, Enum):
    """How a refresh realizes the query's result in the target table."""

    CREATE = "create"                    # first materialization
    TRUNCATE_INSERT = "truncate_insert"  # same columns, data replaced in place
    ALTER_IN_PLACE = "alter_in_place"    # columns dropped/added, data replaced in place
    DROP_RECREATE = "drop_recreate"      # store cannot alter columns

    @property
    def preserves_table(self) -> bool:
        """Whether the target table keeps its physical identity."""
        return self in (RefreshStrategy.TRUNCATE_INSERT, RefreshStrategy.ALTER_IN_PLACE)


def select_strategy(
    table_exists: bool,
    diff: Optional[SchemaDiff],
    supports_alter: bool = True,
) -> RefreshStrategy:
    """Map table existence and column diff to a refresh strategy."""
    if not table_exists:
        return RefreshStrategy.CREATE

    if diff is None:
        raise ValueError("A column diff is required when the table exists")

    if diff.columns_match:
        return RefreshStrategy.TRUNCATE_INSERT

    if supports_alter:
        return RefreshStrategy.ALTER_IN_PLACE

    return RefreshStrategy.DROP_RECREATE
