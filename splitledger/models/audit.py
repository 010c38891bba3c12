"""
Audit Models for Split Ledger

Every ledger mutation is described by one structured event.
This provides:
1. Traceability of who changed which transaction or account
2. Debugging information when a request is rejected
3. Balance movements that can be followed per account

DESIGN DECISION: Events are emitted to the structured log only.
The ledger rows themselves are the record of truth; events are never
persisted or replayed.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from splitledger.models.ledger import utcnow


class AuditEventType(str, Enum):
    """Types of events we log."""
    # Transactions
    TRANSACTION_CREATED = "transaction_created"
    TRANSACTION_UPDATED = "transaction_updated"
    TRANSACTION_DELETED = "transaction_deleted"

    # Tags
    TAG_ADDED = "tag_added"
    TAG_REMOVED = "tag_removed"

    # Accounts
    ACCOUNT_CREATED = "account_created"
    ACCOUNT_UPDATED = "account_updated"
    ACCOUNT_DELETED = "account_deleted"

    # Balance engine
    BALANCE_ADJUSTED = "balance_adjusted"

    # Failures
    REQUEST_REJECTED = "request_rejected"
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    Every mutating ledger operation creates at least one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'transaction', 'account', 'tag')"
    )
    entity_id: Optional[int] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )
    user_id: Optional[int] = Field(
        default=None,
        description="Caller that triggered the event"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., an update and its balance moves)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )

    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "user_id": self.user_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.transaction_created(transaction, user_id, correlation_id)
        event = AuditEventBuilder.balance_adjusted(account_id, delta, reason, correlation_id)
    """

    @staticmethod
    def transaction_created(
        transaction_id: int,
        user_id: int,
        amount_count: int,
        tag_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_CREATED,
            entity_type="transaction",
            entity_id=transaction_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Transaction {transaction_id} created with {amount_count} split rows",
            details={
                "amount_count": amount_count,
                "tag_count": tag_count,
            },
        )

    @staticmethod
    def transaction_updated(
        transaction_id: int,
        user_id: int,
        header_fields: list[str],
        inserted: int,
        patched: int,
        removed: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_UPDATED,
            entity_type="transaction",
            entity_id=transaction_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Transaction {transaction_id} updated",
            details={
                "header_fields": header_fields,
                "rows_inserted": inserted,
                "rows_patched": patched,
                "rows_removed": removed,
            },
        )

    @staticmethod
    def transaction_deleted(
        transaction_id: int,
        user_id: int,
        drained: bool,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        how = "by removing its last split row" if drained else "explicitly"
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_DELETED,
            entity_type="transaction",
            entity_id=transaction_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Transaction {transaction_id} deleted {how}",
            details={
                "drained": drained,
            },
        )

    @staticmethod
    def tag_added(
        transaction_id: int,
        tag_id: int,
        tag: str,
        user_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TAG_ADDED,
            entity_type="tag",
            entity_id=tag_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Tag '{tag}' added to transaction {transaction_id}",
            details={
                "transaction_id": transaction_id,
                "tag": tag,
            },
        )

    @staticmethod
    def tag_removed(
        transaction_id: int,
        tag_id: int,
        user_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TAG_REMOVED,
            entity_type="tag",
            entity_id=tag_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Tag {tag_id} removed from transaction {transaction_id}",
            details={
                "transaction_id": transaction_id,
            },
        )

    @staticmethod
    def account_created(
        account_id: int,
        user_id: int,
        initial_balance: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_CREATED,
            entity_type="account",
            entity_id=account_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Account {account_id} created",
            details={
                "initial_balance": str(initial_balance),
            },
        )

    @staticmethod
    def account_updated(
        account_id: int,
        user_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_UPDATED,
            entity_type="account",
            entity_id=account_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Account {account_id} renamed",
        )

    @staticmethod
    def account_deleted(
        account_id: int,
        user_id: int,
        orphaned_rows: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_DELETED,
            entity_type="account",
            entity_id=account_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Account {account_id} deleted, {orphaned_rows} split rows kept by name",
            details={
                "orphaned_rows": orphaned_rows,
            },
        )

    @staticmethod
    def balance_adjusted(
        account_id: int,
        delta: Decimal,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BALANCE_ADJUSTED,
            severity=AuditSeverity.DEBUG,
            entity_type="account",
            entity_id=account_id,
            correlation_id=correlation_id,
            description=f"Balance of account {account_id} moved by {delta}",
            details={
                "delta": str(delta),
                "reason": reason,
            },
        )

    @staticmethod
    def request_rejected(
        operation: str,
        error_kind: str,
        error_message: str,
        user_id: Optional[int] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.REQUEST_REJECTED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"{operation} rejected: {error_kind}",
            error_code=error_kind,
            error_message=error_message,
            details={
                "operation": operation,
            },
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
