"""
Data Models Package

This package contains all Pydantic models used by the split ledger.
Everything the services accept or return conforms to these schemas.
"""

from splitledger.models.ledger import (
    Account,
    EditAccount,
    EditTransaction,
    EditTransactionAmount,
    ExternalPayee,
    NewAccount,
    NewTag,
    NewTransaction,
    NewTransactionAmount,
    RegisteredAccount,
    Settlement,
    SplitTarget,
    Transaction,
    TransactionAmount,
    TransactionFilters,
    TransactionPage,
    TransactionTag,
    ValidationIssue,
    split_target,
    utcnow,
)
from splitledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "Account",
    "EditAccount",
    "EditTransaction",
    "EditTransactionAmount",
    "ExternalPayee",
    "NewAccount",
    "NewTag",
    "NewTransaction",
    "NewTransactionAmount",
    "RegisteredAccount",
    "Settlement",
    "SplitTarget",
    "Transaction",
    "TransactionAmount",
    "TransactionFilters",
    "TransactionPage",
    "TransactionTag",
    "ValidationIssue",
    "split_target",
    "utcnow",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
