"""
Storage Services Package

Provides the abstract storage interface and its SQLAlchemy implementation.
The services only ever see LedgerStorageInterface and LedgerUnitOfWork.
"""

from splitledger.services.storage.interface import (
    ConnectionError,
    DuplicateError,
    LedgerStorageInterface,
    LedgerUnitOfWork,
    StorageError,
)
from splitledger.services.storage.sqlalchemy_store import (
    Database,
    SQLAlchemyLedgerStorage,
    SQLAlchemyUnitOfWork,
)

__all__ = [
    # Interfaces
    "LedgerStorageInterface",
    "LedgerUnitOfWork",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "StorageError",
    # SQLAlchemy implementation
    "Database",
    "SQLAlchemyLedgerStorage",
    "SQLAlchemyUnitOfWork",
]
