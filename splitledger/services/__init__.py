"""Services package."""

from splitledger.services.errors import (
    ErrorKind,
    ForbiddenError,
    InvalidInputError,
    LedgerError,
    NotFoundError,
)
from splitledger.services.friends import (
    FriendDirectory,
    InMemoryFriendDirectory,
    SQLAlchemyFriendDirectory,
)
from splitledger.services.storage import (
    ConnectionError,
    Database,
    DuplicateError,
    LedgerStorageInterface,
    LedgerUnitOfWork,
    SQLAlchemyLedgerStorage,
    StorageError,
)

__all__ = [
    # Errors
    "ErrorKind",
    "ForbiddenError",
    "InvalidInputError",
    "LedgerError",
    "NotFoundError",
    # Friends
    "FriendDirectory",
    "InMemoryFriendDirectory",
    "SQLAlchemyFriendDirectory",
    # Storage services
    "ConnectionError",
    "Database",
    "DuplicateError",
    "LedgerStorageInterface",
    "LedgerUnitOfWork",
    "SQLAlchemyLedgerStorage",
    "StorageError",
]
