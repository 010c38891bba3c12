"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Keep the ledger rules independent of SQL
2. Swap SQLite for PostgreSQL (or anything else) without touching services
3. Hand the services an explicit storage handle instead of a global pool

Every operation happens inside a unit of work. A unit of work commits
when its block exits normally and rolls back everything when an exception
escapes, so a failed request never leaves half a transaction or half a
balance movement behind.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from decimal import Decimal
from typing import Optional, Union

from splitledger.models.ledger import (
    Account,
    EditTransactionAmount,
    ExternalPayee,
    RegisteredAccount,
    Transaction,
    TransactionAmount,
    TransactionFilters,
    TransactionTag,
)


class LedgerUnitOfWork(ABC):
    """
    Storage operations available inside one atomic unit of work.

    Implementations never check ownership or ledger rules; the services do.
    """

    # -------------------------------------------------------------------------
    # Accounts
    # -------------------------------------------------------------------------

    @abstractmethod
    def get_account(self, account_id: int) -> Optional[Account]:
        """Account by id regardless of owner, or None."""

    @abstractmethod
    def list_accounts(self, user_id: int) -> list[Account]:
        """A user's accounts, newest first."""

    @abstractmethod
    def insert_account(self, user_id: int, name: str, balance: Decimal) -> Account:
        """Create an account with its starting balance."""

    @abstractmethod
    def rename_account(self, account_id: int, name: str) -> Account:
        """Change an account's name."""

    @abstractmethod
    def delete_account(self, account_id: int) -> None:
        """
        Delete an account row.

        Split rows must have been orphaned first.
        """

    @abstractmethod
    def orphan_account_amounts(self, account_id: int, account_name: str) -> int:
        """
        Re-point every split row of an account to a name snapshot.

        Returns:
            Number of rows converted
        """

    @abstractmethod
    def adjust_balance(self, account_id: int, delta: Decimal) -> None:
        """
        Add delta to an account balance as one atomic increment.

        Only the balance engine calls this.
        """

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    @abstractmethod
    def insert_transaction(
        self,
        category: str,
        is_income: bool,
        include_in_reports: bool,
        description: Optional[str],
        notes: Optional[str],
    ) -> int:
        """Create a transaction header and return its id."""

    @abstractmethod
    def get_transaction(
        self,
        transaction_id: int,
        for_update: bool = False,
    ) -> Optional[Transaction]:
        """
        Load a transaction with its split rows and tags.

        Args:
            transaction_id: Transaction to load
            for_update: Lock the header row until the unit of work ends,
                        so concurrent edits of the same transaction serialize

        Returns:
            The transaction, or None if it does not exist
        """

    @abstractmethod
    def update_transaction_header(self, transaction_id: int, **fields) -> None:
        """Patch header columns (category, is_income, ...)."""

    @abstractmethod
    def delete_transaction(self, transaction_id: int) -> None:
        """Delete a transaction together with its split rows and tags."""

    @abstractmethod
    def has_access(self, user_id: int, transaction_id: int) -> bool:
        """True if the user owns an account on one of the transaction's rows."""

    # -------------------------------------------------------------------------
    # Split rows
    # -------------------------------------------------------------------------

    @abstractmethod
    def insert_amount(
        self,
        transaction_id: int,
        target: Union[RegisteredAccount, ExternalPayee],
        amount_to_pay: Decimal,
        amount_paid: Decimal,
    ) -> TransactionAmount:
        """Add a split row to a transaction."""

    @abstractmethod
    def update_amounts(self, patches: list[EditTransactionAmount]) -> list[TransactionAmount]:
        """
        Patch existing split rows as one change.

        Each patch names a row by id; None fields leave a column unchanged.
        Rows may swap accounts with each other within one call.
        """

    @abstractmethod
    def delete_amount(self, amount_id: int) -> None:
        """Remove a split row."""

    # -------------------------------------------------------------------------
    # Tags
    # -------------------------------------------------------------------------

    @abstractmethod
    def insert_tag(self, transaction_id: int, tag: str) -> TransactionTag:
        """Tag a transaction."""

    @abstractmethod
    def delete_tag(self, tag_id: int) -> None:
        """Remove a tag."""

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    @abstractmethod
    def count_transactions(self, user_id: int, filters: TransactionFilters) -> int:
        """Number of visible transactions matching every filter."""

    @abstractmethod
    def find_transaction_ids(
        self,
        user_id: int,
        filters: TransactionFilters,
        offset: int,
        limit: int,
    ) -> list[int]:
        """
        Ids of one page of visible matching transactions.

        Ordered newest first.
        """


class LedgerStorageInterface(ABC):
    """
    Abstract storage handle.

    Any storage implementation (SQLite, PostgreSQL, ...) must implement this.
    """

    @abstractmethod
    def unit_of_work(self) -> AbstractContextManager[LedgerUnitOfWork]:
        """
        Open an atomic unit of work.

        Commits when the block exits normally, rolls back when it raises.
        """


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class DuplicateError(StorageError):
    """Write rejected by a uniqueness or integrity constraint."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
