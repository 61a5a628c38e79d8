"""
Transient staging views.

A staging view holds a pending query under a name derived from the target
relation. It is dropped before creation (a crashed attempt may have left it
behind) and dropped again on every exit path.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable

from ..database.introspection import Relation
from ..exceptions import StoreError
from .context import RefreshContext
from .statements import Statement, StatementBuilder


logger = logging.getLogger(__name__)


COLUMN_CHECK_SUFFIX = "__tmp_column_check"
CREATE_SUFFIX = "__tmp_vw"
INSERT_SUFFIX = "__tmp_insert"
ALTER_SUFFIX = "__tmp_alter"


StatementRunner = Callable[[Statement], Awaitable[object]]


@asynccontextmanager
async def staging_view(
    run: StatementRunner,
    builder: StatementBuilder,
    relation: Relation,
    suffix: str,
    sql: str,
    context: RefreshContext,
) -> AsyncIterator[Relation]:
    """Materialize ``sql`` as a view next to ``relation`` for the block's duration."""
    view = relation.staging_view(suffix)

    await run(builder.drop_relation(view))
    await run(builder.create_view(view, sql))
    context.log(f"Created temporary view {view}")

    try:
        yield view
    except BaseException:
        try:
            await run(builder.drop_relation(view))
        except StoreError as cleanup_error:
            # the in-flight error wins over the cleanup failure
            logger.error(f"Failed to drop temporary view {view}: {cleanup_error}")
        raise

    await run(builder.drop_relation(view))
    context.log(f"Dropped temporary view {view}")
