"""
Main Orchestrator for Split Ledger

This module ties together all the components and defines the
end-to-end flows for:
1. Accounts (create → rename → delete, orphaning its split rows)
2. Transactions (parse → resolve accounts → check rules → write rows → move balances)
3. Tags and listings

DESIGN DECISION: The orchestrator enforces the boundaries:
- Every mutation runs in one unit of work; any failure rolls all of it back
- Balances only move through the balance engine
- Callers only see transactions they have a stake in
- Every mutation and every rejection is audited

This is the "glue" that keeps Account.balance equal to the ledger rows
no matter which operation touched them.
"""

from collections.abc import Mapping
from contextlib import contextmanager
from typing import Iterator, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ValidationError

from splitledger.audit import AuditLogger, configure_logging, create_correlation_id
from splitledger.balance import BalanceMaintenanceEngine, compute_balance_deltas
from splitledger.config import Settings, get_settings
from splitledger.models.ledger import (
    Account,
    EditAccount,
    EditTransaction,
    EditTransactionAmount,
    ExternalPayee,
    NewAccount,
    NewTag,
    NewTransaction,
    RegisteredAccount,
    Transaction,
    TransactionFilters,
    TransactionPage,
    TransactionTag,
)
from splitledger.queries import TransactionQueryExecutor
from splitledger.services.errors import (
    ForbiddenError,
    InvalidInputError,
    LedgerError,
    NotFoundError,
)
from splitledger.services.friends import FriendDirectory, SQLAlchemyFriendDirectory
from splitledger.services.storage import (
    Database,
    LedgerStorageInterface,
    LedgerUnitOfWork,
    SQLAlchemyLedgerStorage,
    StorageError,
)
from splitledger.validation import LedgerValidator


ACCOUNT_NOT_FOUND = "Account not found or does not belong to user"
TRANSACTION_NOT_FOUND = "Transaction not found or you do not have access to it"
TAG_NOT_FOUND = "Tag not found for this transaction"

Payload = Union[BaseModel, Mapping]


def _parse(model: type[BaseModel], data: Payload):
    """Turn a request payload into its model; field errors become InvalidInputError."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise InvalidInputError.from_validation_error(e)


class _AuditedService:
    """Shared rejection logging for the services."""

    def __init__(self, audit_logger: Optional[AuditLogger]):
        self._audit = audit_logger or AuditLogger()

    @contextmanager
    def _audited(
        self,
        operation: str,
        user_id: Optional[int],
        correlation_id: UUID,
    ) -> Iterator[None]:
        """Log ledger rejections and storage failures, then re-raise them."""
        try:
            yield
        except LedgerError as e:
            self._audit.log_rejected(
                operation=operation,
                error_kind=e.kind.value,
                error_message=e.message,
                user_id=user_id,
                correlation_id=correlation_id,
            )
            raise
        except StorageError as e:
            self._audit.log_error(
                error_type=type(e).__name__,
                error_message=str(e),
                details={"operation": operation, "user_id": user_id},
                correlation_id=correlation_id,
            )
            raise


class AccountService(_AuditedService):
    """
    Account lifecycle.

    An account's balance is only seeded here; afterwards the balance
    engine owns it.
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        super().__init__(audit_logger)
        self._storage = storage

    def create_account(
        self,
        user_id: int,
        data: Payload,
        correlation_id: Optional[UUID] = None,
    ) -> Account:
        correlation_id = correlation_id or create_correlation_id()

        with self._audited("create_account", user_id, correlation_id):
            payload = _parse(NewAccount, data)
            with self._storage.unit_of_work() as uow:
                account = uow.insert_account(user_id, payload.name, payload.initial_balance)

        self._audit.log_account_created(
            account_id=account.id,
            user_id=user_id,
            initial_balance=account.balance,
            correlation_id=correlation_id,
        )
        return account

    def get_account(self, user_id: int, account_id: int) -> Account:
        """The caller's account; NotFoundError for anyone else's."""
        with self._storage.unit_of_work() as uow:
            return self._owned_account(uow, user_id, account_id)

    def list_accounts(self, user_id: int) -> list[Account]:
        with self._storage.unit_of_work() as uow:
            return uow.list_accounts(user_id)

    def edit_account(
        self,
        user_id: int,
        account_id: int,
        data: Payload,
        correlation_id: Optional[UUID] = None,
    ) -> Account:
        correlation_id = correlation_id or create_correlation_id()

        with self._audited("edit_account", user_id, correlation_id):
            payload = _parse(EditAccount, data)
            with self._storage.unit_of_work() as uow:
                self._owned_account(uow, user_id, account_id)
                account = uow.rename_account(account_id, payload.name)

        self._audit.log_account_updated(
            account_id=account_id,
            user_id=user_id,
            correlation_id=correlation_id,
        )
        return account

    def delete_account(
        self,
        user_id: int,
        account_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> int:
        """
        Delete an account without losing ledger history.

        Every split row that pointed at the account keeps its amounts and
        is re-pointed to the account's name, in the same unit of work as
        the delete.

        Returns:
            Number of split rows converted to a name
        """
        correlation_id = correlation_id or create_correlation_id()

        with self._audited("delete_account", user_id, correlation_id):
            with self._storage.unit_of_work() as uow:
                account = self._owned_account(uow, user_id, account_id)
                orphaned = uow.orphan_account_amounts(account_id, account.name)
                uow.delete_account(account_id)

        self._audit.log_account_deleted(
            account_id=account_id,
            user_id=user_id,
            orphaned_rows=orphaned,
            correlation_id=correlation_id,
        )
        return orphaned

    def get_account_by_id(self, account_id: int) -> Optional[Account]:
        """Unscoped lookup; None when the account does not exist."""
        with self._storage.unit_of_work() as uow:
            return uow.get_account(account_id)

    @staticmethod
    def _owned_account(uow: LedgerUnitOfWork, user_id: int, account_id: int) -> Account:
        account = uow.get_account(account_id)
        if account is None or account.user_id != user_id:
            raise NotFoundError(ACCOUNT_NOT_FOUND)
        return account


class TransactionService(_AuditedService):
    """
    Transactions, their split rows and their tags.

    Flow for every mutation:
    1. Parse → typed payload (field errors are InvalidInput)
    2. Access → caller must own an account on the transaction
    3. Resolve → every referenced account exists and is the caller's or a friend's
    4. Rules → totals balance, no account twice, caller keeps a stake
    5. Write → rows, tags and balance deltas in one unit of work
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        friends: FriendDirectory,
        validator: Optional[LedgerValidator] = None,
        balance_engine: Optional[BalanceMaintenanceEngine] = None,
        query_executor: Optional[TransactionQueryExecutor] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        super().__init__(audit_logger)
        self._storage = storage
        self._friends = friends
        self._validator = validator or LedgerValidator()
        self._balances = balance_engine or BalanceMaintenanceEngine(self._audit)
        self._queries = query_executor or TransactionQueryExecutor(storage)

    # -------------------------------------------------------------------------
    # Create
    # -------------------------------------------------------------------------

    def create_transaction(
        self,
        user_id: int,
        data: Payload,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Record a transaction with its split rows and tags.

        Every registered account on a row has its balance moved by the
        row's amount_paid (added for income, subtracted for expenses).

        Raises:
            InvalidInputError: Malformed payload or broken ledger rule
            NotFoundError: A referenced account does not exist
            ForbiddenError: A referenced account is neither the caller's nor a friend's
        """
        correlation_id = correlation_id or create_correlation_id()

        with self._audited("create_transaction", user_id, correlation_id):
            payload = _parse(NewTransaction, data)
            self._check_distinct_tags(payload.tags)

            with self._storage.unit_of_work() as uow:
                has_self_stake = False
                for amount in payload.amounts:
                    if amount.account_id is None:
                        continue
                    account = self._resolve_account(uow, user_id, amount.account_id)
                    has_self_stake = has_self_stake or account.user_id == user_id

                _, issues = self._validator.validate_new_rows(payload.amounts, has_self_stake)
                self._validator.raise_for_issues(issues)

                transaction_id = uow.insert_transaction(
                    category=payload.category,
                    is_income=payload.is_income,
                    include_in_reports=payload.include_in_reports,
                    description=payload.description,
                    notes=payload.notes,
                )
                for amount in payload.amounts:
                    uow.insert_amount(
                        transaction_id,
                        amount.target,
                        amount.amount_to_pay,
                        amount.amount_paid,
                    )
                for tag in payload.tags:
                    uow.insert_tag(transaction_id, tag)

                deltas = compute_balance_deltas([], payload.amounts, payload.is_income)
                self._balances.apply(
                    uow,
                    deltas,
                    reason=f"transaction {transaction_id} created",
                    correlation_id=correlation_id,
                )
                transaction = uow.get_transaction(transaction_id)

        self._audit.log_transaction_created(
            transaction_id=transaction.id,
            user_id=user_id,
            amount_count=len(transaction.amounts),
            tag_count=len(transaction.tags),
            correlation_id=correlation_id,
        )
        return transaction

    # -------------------------------------------------------------------------
    # Read
    # -------------------------------------------------------------------------

    def get_transaction(self, user_id: int, transaction_id: int) -> Transaction:
        """Full transaction, if the caller has a stake in it."""
        with self._storage.unit_of_work() as uow:
            self._check_access(uow, user_id, transaction_id)
            return uow.get_transaction(transaction_id)

    def has_access_to_transaction(self, user_id: int, transaction_id: int) -> bool:
        with self._storage.unit_of_work() as uow:
            return uow.has_access(user_id, transaction_id)

    def list_transactions(
        self,
        user_id: int,
        filters: Union[TransactionFilters, Mapping, None] = None,
    ) -> TransactionPage:
        return self._queries.list_transactions(user_id, filters)

    # -------------------------------------------------------------------------
    # Update / delete
    # -------------------------------------------------------------------------

    def update_transaction(
        self,
        user_id: int,
        transaction_id: int,
        data: Payload,
        correlation_id: Optional[UUID] = None,
    ) -> Optional[Transaction]:
        """
        Update a transaction.

        Header fields are patched. When `amounts` is given it is the complete
        desired set of split rows:
        - rows whose id is not listed are deleted
        - entries without an id are new rows
        - entries with an id patch that row; omitted fields stay as they are

        An empty `amounts` list deletes the whole transaction (and returns
        None), but only when no header field is supplied alongside it.

        Balances move by exactly signed(new paid) - signed(old paid) per
        account, including the reversal when is_income flips.
        """
        correlation_id = correlation_id or create_correlation_id()

        with self._audited("update_transaction", user_id, correlation_id):
            payload = _parse(EditTransaction, data)
            header = payload.header_updates()

            with self._storage.unit_of_work() as uow:
                current = self._lock_transaction(uow, user_id, transaction_id)

                if payload.drains_amounts and header:
                    raise InvalidInputError("Transaction cannot be deleted if it has updates")

                if payload.drains_amounts:
                    self._remove_transaction(uow, current, correlation_id)
                    drained = True
                else:
                    drained = False
                    counts = (0, 0, 0)
                    if payload.amounts is not None:
                        counts = self._apply_amounts(uow, user_id, current, payload.amounts)
                    if header:
                        uow.update_transaction_header(transaction_id, **header)

                    updated = uow.get_transaction(transaction_id)
                    _, issues = self._validator.validate_updated_rows(updated.amounts)
                    self._validator.raise_for_issues(issues)

                    deltas = compute_balance_deltas(
                        current.amounts,
                        updated.amounts,
                        is_income=updated.is_income,
                        was_income=current.is_income,
                    )
                    self._balances.apply(
                        uow,
                        deltas,
                        reason=f"transaction {transaction_id} updated",
                        correlation_id=correlation_id,
                    )

        if drained:
            self._audit.log_transaction_deleted(
                transaction_id=transaction_id,
                user_id=user_id,
                drained=True,
                correlation_id=correlation_id,
            )
            return None

        inserted, patched, removed = counts
        self._audit.log_transaction_updated(
            transaction_id=transaction_id,
            user_id=user_id,
            header_fields=sorted(header),
            inserted=inserted,
            patched=patched,
            removed=removed,
            correlation_id=correlation_id,
        )
        return updated

    def delete_transaction(
        self,
        user_id: int,
        transaction_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Delete a transaction, reversing every balance it moved."""
        correlation_id = correlation_id or create_correlation_id()

        with self._audited("delete_transaction", user_id, correlation_id):
            with self._storage.unit_of_work() as uow:
                current = self._lock_transaction(uow, user_id, transaction_id)
                self._remove_transaction(uow, current, correlation_id)

        self._audit.log_transaction_deleted(
            transaction_id=transaction_id,
            user_id=user_id,
            drained=False,
            correlation_id=correlation_id,
        )

    # -------------------------------------------------------------------------
    # Tags
    # -------------------------------------------------------------------------

    def get_transaction_tags(self, user_id: int, transaction_id: int) -> list[TransactionTag]:
        return self.get_transaction(user_id, transaction_id).tags

    def add_tag(
        self,
        user_id: int,
        transaction_id: int,
        data: Payload,
        correlation_id: Optional[UUID] = None,
    ) -> TransactionTag:
        """Tag a transaction. Tags are unique per transaction, ignoring case."""
        correlation_id = correlation_id or create_correlation_id()

        with self._audited("add_tag", user_id, correlation_id):
            payload = _parse(NewTag, data)
            with self._storage.unit_of_work() as uow:
                self._check_access(uow, user_id, transaction_id)
                transaction = uow.get_transaction(transaction_id)

                wanted = payload.tag.lower()
                if any(t.tag.lower() == wanted for t in transaction.tags):
                    raise InvalidInputError(f'Tag "{payload.tag}" already exists for this transaction')

                tag = uow.insert_tag(transaction_id, payload.tag)

        self._audit.log_tag_added(
            transaction_id=transaction_id,
            tag_id=tag.id,
            tag=tag.tag,
            user_id=user_id,
            correlation_id=correlation_id,
        )
        return tag

    def remove_tag(
        self,
        user_id: int,
        transaction_id: int,
        tag_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        correlation_id = correlation_id or create_correlation_id()

        with self._audited("remove_tag", user_id, correlation_id):
            with self._storage.unit_of_work() as uow:
                self._check_access(uow, user_id, transaction_id)
                transaction = uow.get_transaction(transaction_id)
                if not any(t.id == tag_id for t in transaction.tags):
                    raise NotFoundError(TAG_NOT_FOUND)
                uow.delete_tag(tag_id)

        self._audit.log_tag_removed(
            transaction_id=transaction_id,
            tag_id=tag_id,
            user_id=user_id,
            correlation_id=correlation_id,
        )

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _check_access(uow: LedgerUnitOfWork, user_id: int, transaction_id: int) -> None:
        # Missing and not-yours look the same to the caller
        if not uow.has_access(user_id, transaction_id):
            raise NotFoundError(TRANSACTION_NOT_FOUND)

    @classmethod
    def _lock_transaction(cls, uow: LedgerUnitOfWork, user_id: int, transaction_id: int) -> Transaction:
        """
        Lock the transaction until the unit of work ends, then check access.

        Concurrent edits of one transaction wait here, so the rows read
        below are the rows the balance deltas are computed from.
        """
        current = uow.get_transaction(transaction_id, for_update=True)
        if current is None:
            raise NotFoundError(TRANSACTION_NOT_FOUND)
        cls._check_access(uow, user_id, transaction_id)
        return current

    @staticmethod
    def _check_distinct_tags(tags: list[str]) -> None:
        seen = set()
        for tag in tags:
            if tag.lower() in seen:
                raise InvalidInputError(f'Tag "{tag}" appears more than once')
            seen.add(tag.lower())

    def _resolve_account(self, uow: LedgerUnitOfWork, user_id: int, account_id: int) -> Account:
        """The referenced account, if the caller may put amounts on it."""
        account = uow.get_account(account_id)
        if account is None:
            raise NotFoundError(f"Account with ID {account_id} not found")
        if account.user_id != user_id and not self._friends.is_friend(account.user_id, user_id):
            raise ForbiddenError(f"You do not have access to account with ID {account_id}")
        return account

    def _apply_amounts(
        self,
        uow: LedgerUnitOfWork,
        user_id: int,
        current: Transaction,
        entries: list[EditTransactionAmount],
    ) -> tuple[int, int, int]:
        """
        Turn the current split rows into the requested set.

        Every entry is checked before the first row changes.

        Returns:
            (inserted, patched, removed)
        """
        existing = {row.id: row for row in current.amounts}

        patches = []
        inserts = []
        final_targets: list[Union[RegisteredAccount, ExternalPayee]] = []

        for entry in entries:
            target = entry.target

            if entry.id is not None:
                row = existing.get(entry.id)
                if row is None:
                    raise InvalidInputError(
                        f"Transaction amount with ID {entry.id} not found or doesn't belong to this transaction"
                    )
                if (
                    isinstance(target, RegisteredAccount)
                    and target.account_id != row.account_id
                ):
                    self._resolve_account(uow, user_id, target.account_id)
                patches.append(entry)
                final_targets.append(target or row.target)
                continue

            if target is None:
                raise InvalidInputError("Either accountId or accountName must be provided for each amount update")
            if isinstance(target, RegisteredAccount):
                self._resolve_account(uow, user_id, target.account_id)
            if entry.amount_paid is None:
                raise InvalidInputError("Amount paid must be provided for each new amount")
            if entry.amount_to_pay is None:
                raise InvalidInputError("Amount to pay must be provided for each new amount")
            inserts.append(entry)
            final_targets.append(target)

        issues = self._validator.check_distinct_accounts(
            t.account_id for t in final_targets if isinstance(t, RegisteredAccount)
        )
        self._validator.raise_for_issues(issues)

        listed = {entry.id for entry in patches}
        removed = [row_id for row_id in existing if row_id not in listed]

        # Deletes first so a replaced row frees its account slot
        for row_id in removed:
            uow.delete_amount(row_id)
        if patches:
            uow.update_amounts(patches)
        for entry in inserts:
            uow.insert_amount(current.id, entry.target, entry.amount_to_pay, entry.amount_paid)

        return len(inserts), len(patches), len(removed)

    def _remove_transaction(
        self,
        uow: LedgerUnitOfWork,
        current: Transaction,
        correlation_id: UUID,
    ) -> None:
        deltas = compute_balance_deltas(current.amounts, [], current.is_income)
        self._balances.apply(
            uow,
            deltas,
            reason=f"transaction {current.id} deleted",
            correlation_id=correlation_id,
        )
        uow.delete_transaction(current.id)


def create_app_components(
    settings: Optional[Settings] = None,
    friends: Optional[FriendDirectory] = None,
    create_schema: bool = True,
) -> tuple[AccountService, TransactionService, Database]:
    """
    Factory function to create all application components.

    Args:
        settings: Settings to use (defaults to get_settings())
        friends: Friendship lookup. Defaults to the friendships table of
                 the ledger database.
        create_schema: Create missing tables on startup

    Returns:
        (account_service, transaction_service, database)

    The caller owns the returned database and should close() it on shutdown.
    """
    settings = settings or get_settings()
    configure_logging(settings.app.log_level)

    database = Database(settings.database).open()
    if create_schema:
        database.create_schema()

    storage = SQLAlchemyLedgerStorage(database)
    audit_logger = AuditLogger()
    ledger_settings = settings.ledger

    account_service = AccountService(storage, audit_logger=audit_logger)
    transaction_service = TransactionService(
        storage,
        friends=friends or SQLAlchemyFriendDirectory(database),
        validator=LedgerValidator(ledger_settings.balance_tolerance),
        balance_engine=BalanceMaintenanceEngine(audit_logger),
        query_executor=TransactionQueryExecutor(storage, ledger_settings),
        audit_logger=audit_logger,
    )

    return account_service, transaction_service, database
