"""
SQLAlchemy Storage Implementation

DESIGN DECISION: A relational database is the ledger's only backend because:
1. Balance movements and row changes must commit or roll back together
2. Concurrent edits of one transaction need row locks
3. Listing needs real filtering, ordering and counting

The implementation follows the abstract interface, so services never
import SQLAlchemy themselves.

Any SQLAlchemy URL works. In-memory SQLite gets a single shared
connection so that every session sees the same database. On SQLite every
unit of work holds the write lock from BEGIN, since SQLite ignores
SELECT ... FOR UPDATE.
"""

from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterator, Optional, Union

import structlog
from sqlalchemy import create_engine, event, func, literal, select, update
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload, sessionmaker
from sqlalchemy.pool import StaticPool
from tenacity import Retrying, stop_after_attempt, wait_exponential

from splitledger.config import DatabaseSettings, get_settings
from splitledger.models.ledger import (
    Account,
    EditTransactionAmount,
    ExternalPayee,
    RegisteredAccount,
    Transaction,
    TransactionAmount,
    TransactionFilters,
    TransactionTag,
    split_target,
)
from splitledger.services.storage.interface import (
    ConnectionError,
    DuplicateError,
    LedgerStorageInterface,
    LedgerUnitOfWork,
    StorageError,
)
from splitledger.services.storage.schema import (
    AccountRow,
    Base,
    FixedPoint,
    TransactionAmountRow,
    TransactionRow,
    TransactionTagRow,
)


logger = structlog.get_logger(__name__)


def _is_memory_sqlite(url: str) -> bool:
    return url.startswith("sqlite") and (url in ("sqlite://", "sqlite+pysqlite://") or ":memory:" in url)


# Execution option marking a connection that only reads
READ_ONLY = "splitledger_read_only"


def _configure_sqlite_connection(dbapi_connection, connection_record) -> None:
    # pysqlite must not issue its own deferred BEGIN; _begin_sqlite does it
    dbapi_connection.isolation_level = None
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _begin_sqlite(connection) -> None:
    """
    Start every SQLite unit of work holding the write lock.

    SQLite ignores SELECT ... FOR UPDATE, so this is what serializes two
    edits of the same transaction. Read-only connections start deferred.
    """
    if connection.get_execution_options().get(READ_ONLY):
        connection.exec_driver_sql("BEGIN")
    else:
        connection.exec_driver_sql("BEGIN IMMEDIATE")


class Database:
    """
    Owns the engine and session factory.

    Usage:
        db = Database()
        db.open()
        db.create_schema()
        ...
        db.close()

    or as a context manager.
    """

    def __init__(self, settings: Optional[DatabaseSettings] = None):
        self._settings = settings or get_settings().database
        self._engine: Optional[Engine] = None
        self._sessions: Optional[sessionmaker] = None

    @property
    def url(self) -> str:
        return self._settings.url

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise StorageError("Database is not open")
        return self._engine

    def open(self) -> "Database":
        """
        Create the engine and verify the database answers.

        Retries with exponential backoff before raising ConnectionError.
        """
        if self._engine is not None:
            return self

        engine = self._create_engine()

        try:
            for attempt in Retrying(
                stop=stop_after_attempt(self._settings.connect_attempts),
                wait=wait_exponential(multiplier=1, min=2, max=10),
                reraise=True,
            ):
                with attempt:
                    self._ping(engine)
        except OperationalError as e:
            engine.dispose()
            raise ConnectionError(f"Failed to connect to database: {e}")

        self._engine = engine
        self._sessions = sessionmaker(bind=engine, expire_on_commit=False)
        logger.info("database_opened", dialect=engine.dialect.name)
        return self

    def close(self) -> None:
        """Dispose of every pooled connection."""
        if self._engine is not None:
            self._engine.dispose()
            logger.info("database_closed", dialect=self._engine.dialect.name)
        self._engine = None
        self._sessions = None

    def create_schema(self) -> None:
        """Create every ledger table that does not exist yet."""
        Base.metadata.create_all(self.engine)

    def session(self) -> Session:
        """A new ORM session bound to this database."""
        if self._sessions is None:
            raise StorageError("Database is not open")
        return self._sessions()

    def read_connection(self) -> Connection:
        """
        A connection for short lookups outside any unit of work.

        On SQLite it does not take the write lock, so it can run while
        another connection holds a unit of work open.
        """
        return self.engine.connect().execution_options(**{READ_ONLY: True})

    def _create_engine(self) -> Engine:
        url = self._settings.url
        kwargs = {
            "echo": self._settings.echo,
            "pool_pre_ping": self._settings.pool_pre_ping,
        }
        if self._settings.isolation_level:
            kwargs["isolation_level"] = self._settings.isolation_level
        if url.startswith("sqlite"):
            # Pooled connections move between threads
            kwargs["connect_args"] = {"check_same_thread": False}
        if _is_memory_sqlite(url):
            kwargs["poolclass"] = StaticPool

        engine = create_engine(url, **kwargs)
        if engine.dialect.name == "sqlite":
            event.listen(engine, "connect", _configure_sqlite_connection)
            event.listen(engine, "begin", _begin_sqlite)
        return engine

    @staticmethod
    def _ping(engine: Engine) -> None:
        with engine.connect() as connection:
            connection.execute(select(1))

    def __enter__(self) -> "Database":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


# =============================================================================
# ROW CONVERSION
# =============================================================================

def _account_from_row(row: AccountRow) -> Account:
    return Account(
        id=row.id,
        user_id=row.user_id,
        name=row.name,
        balance=row.balance,
        created_on=row.created_on,
    )


def _amount_from_row(row: TransactionAmountRow) -> TransactionAmount:
    return TransactionAmount(
        id=row.id,
        transaction_id=row.transaction_id,
        target=split_target(row.account_id, row.account_name),
        amount_to_pay=row.amount_to_pay,
        amount_paid=row.amount_paid,
        created_on=row.created_on,
    )


def _tag_from_row(row: TransactionTagRow) -> TransactionTag:
    return TransactionTag(
        id=row.id,
        transaction_id=row.transaction_id,
        tag=row.tag,
        created_on=row.created_on,
    )


def _transaction_from_row(row: TransactionRow) -> Transaction:
    return Transaction(
        id=row.id,
        category=row.category,
        is_income=row.is_income,
        include_in_reports=row.include_in_reports,
        description=row.description,
        notes=row.notes,
        created_on=row.created_on,
        amounts=[_amount_from_row(a) for a in row.amounts],
        tags=[_tag_from_row(t) for t in row.tags],
    )


def _naive_utc(value: datetime) -> datetime:
    """created_on columns hold naive UTC; align aware bounds with them."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _apply_target(row: TransactionAmountRow, target: Union[RegisteredAccount, ExternalPayee]) -> None:
    if isinstance(target, RegisteredAccount):
        row.account_id = target.account_id
        row.account_name = None
    else:
        row.account_id = None
        row.account_name = target.name


# =============================================================================
# UNIT OF WORK
# =============================================================================

class SQLAlchemyUnitOfWork(LedgerUnitOfWork):
    """
    LedgerUnitOfWork over one ORM session.

    Split rows and tags are always changed through their transaction's
    collections so that a reloaded Transaction reflects every change
    made earlier in the same unit of work.
    """

    def __init__(self, session: Session):
        self._session = session

    # -------------------------------------------------------------------------
    # Accounts
    # -------------------------------------------------------------------------

    def get_account(self, account_id: int) -> Optional[Account]:
        row = self._session.get(AccountRow, account_id)
        return _account_from_row(row) if row is not None else None

    def list_accounts(self, user_id: int) -> list[Account]:
        stmt = (
            select(AccountRow)
            .where(AccountRow.user_id == user_id)
            .order_by(AccountRow.created_on.desc(), AccountRow.id.desc())
        )
        return [_account_from_row(row) for row in self._session.scalars(stmt)]

    def insert_account(self, user_id: int, name: str, balance: Decimal) -> Account:
        row = AccountRow(user_id=user_id, name=name, balance=balance)
        self._session.add(row)
        self._session.flush()
        return _account_from_row(row)

    def rename_account(self, account_id: int, name: str) -> Account:
        row = self._account_row(account_id)
        row.name = name
        self._session.flush()
        return _account_from_row(row)

    def delete_account(self, account_id: int) -> None:
        self._session.delete(self._account_row(account_id))
        self._session.flush()

    def orphan_account_amounts(self, account_id: int, account_name: str) -> int:
        stmt = (
            update(TransactionAmountRow)
            .where(TransactionAmountRow.account_id == account_id)
            .values(account_id=None, account_name=account_name)
            .execution_options(synchronize_session="evaluate")
        )
        return self._session.execute(stmt).rowcount

    def adjust_balance(self, account_id: int, delta: Decimal) -> None:
        # Increment in SQL so concurrent adjustments never lose an update
        stmt = (
            update(AccountRow)
            .where(AccountRow.id == account_id)
            .values(balance=AccountRow.balance + literal(delta, FixedPoint()))
            .execution_options(synchronize_session=False)
        )
        result = self._session.execute(stmt)
        if result.rowcount != 1:
            raise StorageError(f"Account {account_id} not found for balance adjustment")

        cached = self._session.identity_map.get(Session.identity_key(AccountRow, account_id))
        if cached is not None:
            self._session.expire(cached, ["balance"])

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    def insert_transaction(
        self,
        category: str,
        is_income: bool,
        include_in_reports: bool,
        description: Optional[str],
        notes: Optional[str],
    ) -> int:
        row = TransactionRow(
            category=category,
            is_income=is_income,
            include_in_reports=include_in_reports,
            description=description,
            notes=notes,
            amounts=[],
            tags=[],
        )
        self._session.add(row)
        self._session.flush()
        return row.id

    def get_transaction(
        self,
        transaction_id: int,
        for_update: bool = False,
    ) -> Optional[Transaction]:
        row = self._transaction_row(transaction_id, for_update=for_update)
        return _transaction_from_row(row) if row is not None else None

    def update_transaction_header(self, transaction_id: int, **fields) -> None:
        row = self._required_transaction_row(transaction_id)
        for name, value in fields.items():
            setattr(row, name, value)
        self._session.flush()

    def delete_transaction(self, transaction_id: int) -> None:
        self._session.delete(self._required_transaction_row(transaction_id))
        self._session.flush()

    def has_access(self, user_id: int, transaction_id: int) -> bool:
        stmt = select(
            select(TransactionAmountRow.id)
            .join(AccountRow, AccountRow.id == TransactionAmountRow.account_id)
            .where(
                TransactionAmountRow.transaction_id == transaction_id,
                AccountRow.user_id == user_id,
            )
            .exists()
        )
        return bool(self._session.scalar(stmt))

    # -------------------------------------------------------------------------
    # Split rows
    # -------------------------------------------------------------------------

    def insert_amount(
        self,
        transaction_id: int,
        target: Union[RegisteredAccount, ExternalPayee],
        amount_to_pay: Decimal,
        amount_paid: Decimal,
    ) -> TransactionAmount:
        parent = self._required_transaction_row(transaction_id)
        row = TransactionAmountRow(amount_to_pay=amount_to_pay, amount_paid=amount_paid)
        _apply_target(row, target)
        parent.amounts.append(row)
        self._session.flush()
        return _amount_from_row(row)

    def update_amounts(self, patches: list[EditTransactionAmount]) -> list[TransactionAmount]:
        rows = []
        for patch in patches:
            row = self._session.get(TransactionAmountRow, patch.id)
            if row is None:
                raise StorageError(f"Split amount {patch.id} not found")
            rows.append((row, patch))

        # Rows may trade accounts with each other, so every moving row
        # gives up its account before any row takes a new one
        moving = [
            row for row, patch in rows
            if patch.target is not None
            and row.account_id is not None
            and patch.target != RegisteredAccount(account_id=row.account_id)
        ]
        if moving:
            for row in moving:
                row.account_id = None
                row.account_name = ""
            self._session.flush()

        for row, patch in rows:
            if patch.target is not None:
                _apply_target(row, patch.target)
            if patch.amount_to_pay is not None:
                row.amount_to_pay = patch.amount_to_pay
            if patch.amount_paid is not None:
                row.amount_paid = patch.amount_paid

        self._session.flush()
        return [_amount_from_row(row) for row, _ in rows]

    def delete_amount(self, amount_id: int) -> None:
        row = self._session.get(TransactionAmountRow, amount_id)
        if row is None:
            raise StorageError(f"Split amount {amount_id} not found")
        row.transaction.amounts.remove(row)
        self._session.flush()

    # -------------------------------------------------------------------------
    # Tags
    # -------------------------------------------------------------------------

    def insert_tag(self, transaction_id: int, tag: str) -> TransactionTag:
        parent = self._required_transaction_row(transaction_id)
        row = TransactionTagRow(tag=tag)
        parent.tags.append(row)
        self._session.flush()
        return _tag_from_row(row)

    def delete_tag(self, tag_id: int) -> None:
        row = self._session.get(TransactionTagRow, tag_id)
        if row is None:
            raise StorageError(f"Tag {tag_id} not found")
        row.transaction.tags.remove(row)
        self._session.flush()

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def count_transactions(self, user_id: int, filters: TransactionFilters) -> int:
        stmt = (
            select(func.count())
            .select_from(TransactionRow)
            .where(*self._filter_conditions(user_id, filters))
        )
        return self._session.scalar(stmt) or 0

    def find_transaction_ids(
        self,
        user_id: int,
        filters: TransactionFilters,
        offset: int,
        limit: int,
    ) -> list[int]:
        stmt = (
            select(TransactionRow.id)
            .where(*self._filter_conditions(user_id, filters))
            .order_by(TransactionRow.created_on.desc(), TransactionRow.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(self._session.scalars(stmt))

    @staticmethod
    def _filter_conditions(user_id: int, filters: TransactionFilters) -> list:
        """
        WHERE clauses shared by the page query and the count query.

        Visibility and the account filter apply to the same split row, so
        account_id only matches an account the caller owns.
        """
        visible = (
            select(TransactionAmountRow.transaction_id)
            .join(AccountRow, AccountRow.id == TransactionAmountRow.account_id)
            .where(AccountRow.user_id == user_id)
        )
        if filters.account_id is not None:
            visible = visible.where(TransactionAmountRow.account_id == filters.account_id)

        conditions = [TransactionRow.id.in_(visible)]

        if filters.start_date is not None:
            conditions.append(TransactionRow.created_on >= _naive_utc(filters.start_date))
        if filters.end_date is not None:
            conditions.append(TransactionRow.created_on <= _naive_utc(filters.end_date))
        if filters.category is not None:
            conditions.append(TransactionRow.category == filters.category)

        if filters.tags:
            wanted = sorted({tag.lower() for tag in filters.tags})
            lowered = func.lower(TransactionTagRow.tag)
            tagged = (
                select(TransactionTagRow.transaction_id)
                .where(lowered.in_(wanted))
                .group_by(TransactionTagRow.transaction_id)
                .having(func.count(lowered.distinct()) == len(wanted))
            )
            conditions.append(TransactionRow.id.in_(tagged))

        return conditions

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _account_row(self, account_id: int) -> AccountRow:
        row = self._session.get(AccountRow, account_id)
        if row is None:
            raise StorageError(f"Account {account_id} not found")
        return row

    def _transaction_row(self, transaction_id: int, for_update: bool = False) -> Optional[TransactionRow]:
        stmt = (
            select(TransactionRow)
            .where(TransactionRow.id == transaction_id)
            .options(selectinload(TransactionRow.amounts), selectinload(TransactionRow.tags))
        )
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return self._session.scalars(stmt).one_or_none()

    def _required_transaction_row(self, transaction_id: int) -> TransactionRow:
        row = self._transaction_row(transaction_id)
        if row is None:
            raise StorageError(f"Transaction {transaction_id} not found")
        return row


class SQLAlchemyLedgerStorage(LedgerStorageInterface):
    """
    Storage handle over a Database.

    One session per unit of work. Integrity violations surface as
    DuplicateError, every other database failure as StorageError.
    """

    def __init__(self, database: Database):
        self._database = database

    @property
    def database(self) -> Database:
        return self._database

    @contextmanager
    def unit_of_work(self) -> Iterator[SQLAlchemyUnitOfWork]:
        session = self._database.session()
        try:
            with session.begin():
                yield SQLAlchemyUnitOfWork(session)
        except IntegrityError as e:
            raise DuplicateError(f"Integrity constraint violated: {e.orig}")
        except SQLAlchemyError as e:
            raise StorageError(f"Database operation failed: {e}")
        finally:
            session.close()
