"""
tablekeeper: Refresh tables from queries without breaking their identity.

tablekeeper materializes the result of a query into a table of the same
name. Existing tables are truncated and refilled, or have their columns
repaired in place, instead of being dropped, so grants, dependents and
table identity survive a refresh.
"""

__version__ = "0.1.0"
__author__ = "tablekeeper Contributors"

from .config import TablekeeperConfig
from .exceptions import TablekeeperError, ConfigurationError, DatabaseError, SchemaError, RefreshError

__all__ = [
    "__version__",
    "TablekeeperConfig",
    "TablekeeperError",
    "ConfigurationError",
    "DatabaseError",
    "SchemaError",
    "RefreshError",
]
