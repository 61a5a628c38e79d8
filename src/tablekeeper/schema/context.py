"""
Per-attempt refresh context.
"""

import logging
from dataclasses import dataclass

from ..database.introspection import Relation


logger = logging.getLogger("tablekeeper.refresh")


@dataclass(frozen=True)
class RefreshContext:
    """State carried through one refresh attempt.

    ``log_to_stdout`` decides whether refresh events surface at INFO on the
    operator console or stay at DEBUG in the internal trace.
    """

    relation: Relation
    log_to_stdout: bool = False

    def log(self, message: str) -> None:
        if self.log_to_stdout:
            logger.info(message)
        else:
            logger.debug(message)
