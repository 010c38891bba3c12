"""Query execution package."""

from splitledger.queries.executor import TransactionQueryExecutor

__all__ = ["TransactionQueryExecutor"]
