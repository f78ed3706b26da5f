"""Query execution package."""

from src.queries.executor import (
    LedgerQueryExecutor,
    QueryExecutionError,
    group_installments,
)

__all__ = ["LedgerQueryExecutor", "QueryExecutionError", "group_installments"]
