"""
Shared fixtures.

Every test gets its own in-memory SQLite database, so tests never
see each other's rows.
"""

from decimal import Decimal

import pytest

from splitledger.audit import AuditLogger
from splitledger.balance import BalanceMaintenanceEngine
from splitledger.config import DatabaseSettings, LedgerSettings
from splitledger.orchestrator import AccountService, TransactionService
from splitledger.queries import TransactionQueryExecutor
from splitledger.services.friends import InMemoryFriendDirectory
from splitledger.services.storage import Database, SQLAlchemyLedgerStorage
from splitledger.validation import LedgerValidator


ALICE = 1
BOB = 2
CAROL = 3


@pytest.fixture
def database():
    db = Database(DatabaseSettings(url="sqlite://")).open()
    db.create_schema()
    yield db
    db.close()


@pytest.fixture
def storage(database):
    return SQLAlchemyLedgerStorage(database)


@pytest.fixture
def friends():
    # Alice and Bob are friends; Carol knows nobody
    return InMemoryFriendDirectory([(ALICE, BOB)])


@pytest.fixture
def ledger_settings():
    return LedgerSettings(
        balance_tolerance=Decimal("0.01"),
        default_page_size=20,
        max_page_size=100,
    )


@pytest.fixture
def account_service(storage):
    return AccountService(storage, audit_logger=AuditLogger())


@pytest.fixture
def transaction_service(storage, friends, ledger_settings):
    audit_logger = AuditLogger()
    return TransactionService(
        storage,
        friends=friends,
        validator=LedgerValidator(ledger_settings.balance_tolerance),
        balance_engine=BalanceMaintenanceEngine(audit_logger),
        query_executor=TransactionQueryExecutor(storage, ledger_settings),
        audit_logger=audit_logger,
    )


@pytest.fixture
def alice_account(account_service):
    return account_service.create_account(ALICE, {"name": "Alice Wallet"})


@pytest.fixture
def bob_account(account_service):
    return account_service.create_account(BOB, {"name": "Bob Wallet"})


@pytest.fixture
def carol_account(account_service):
    return account_service.create_account(CAROL, {"name": "Carol Wallet"})


def balance_of(account_service, account_id):
    """Current balance straight from storage."""
    return account_service.get_account_by_id(account_id).balance
