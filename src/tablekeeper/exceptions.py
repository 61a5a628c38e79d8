"""
Exception classes for tablekeeper.
"""

from typing import Any, Dict, Optional


class TablekeeperError(Exception):
    """Base exception for all tablekeeper errors."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.cause = cause

    def __str__(self) -> str:
        result = self.message
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            result += f" [{details_str}]"
        if self.cause:
            result += f" (caused by: {self.cause})"
        return result


class ConfigurationError(TablekeeperError):
    """Raised when there's an error in configuration."""

    pass


class DatabaseError(TablekeeperError):
    """Raised when there's an error with database operations."""

    pass


class DatabaseConnectionError(DatabaseError):
    """Raised when there's an error establishing or maintaining database connections."""

    pass


class DatabaseConfigurationError(DatabaseError):
    """Raised when there's an error in database configuration."""

    pass


class StoreError(DatabaseError):
    """Raised when a DDL/DML statement fails against the store."""

    def __init__(
        self,
        message: str,
        statement: Optional[str] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        details = {}
        if statement:
            details["statement"] = " ".join(statement.split())
        super().__init__(message, details, cause)
        self.statement = statement


class SchemaError(DatabaseError):
    """Raised when there's an error with database schema operations."""

    pass


class InspectionError(SchemaError):
    """Raised when a pending query cannot be materialized for column discovery."""

    def __init__(
        self,
        relation_name: str,
        reason: str,
        cause: Optional[Exception] = None,
    ) -> None:
        super().__init__(
            f"Could not inspect columns of query for '{relation_name}': {reason}",
            cause=cause,
        )
        self.relation_name = relation_name
        self.reason = reason


class StructuralImpossibilityError(SchemaError):
    """Raised when a column reconciliation would leave a table with no columns."""

    def __init__(self, relation_name: str) -> None:
        super().__init__(
            f"No columns remain for '{relation_name}' after ALTER operations"
        )
        self.relation_name = relation_name


class RefreshError(TablekeeperError):
    """Raised when a refresh attempt cannot be started."""

    pass


class RefreshInProgressError(RefreshError):
    """Raised when a relation is already being refreshed."""

    def __init__(self, relation_name: str) -> None:
        super().__init__(f"Refresh already in progress for {relation_name}")
        self.relation_name = relation_name
