"""
Audit Logger

DESIGN DECISION: Every ledger mutation is logged as one structured event.
This provides:
1. Traceability of every balance movement
2. Debugging capability when a request is rejected
3. Correlation of the events produced by one request

The audit logger:
- Writes JSON lines through structlog
- Reports an event it cannot render through the stdlib logger instead of raising
- Supports correlation IDs to trace related events
"""

import logging
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

import structlog

from splitledger.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

LOGGER_NAME = "splitledger.audit"


def configure_logging(level: str = "INFO") -> None:
    """Route structured events to stderr at the given level."""
    logging.basicConfig(format="%(message)s", level=level)
    logging.getLogger("splitledger").setLevel(level)


class AuditLogger:
    """
    Central audit logging service.

    Events go to the structured local log only.
    """

    def __init__(self, name: str = LOGGER_NAME):
        self._logger = structlog.get_logger(name)

    def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Returns False if the event could not be written.
        """
        log_dict = event.to_log_dict()

        try:
            if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
                self._logger.error("audit_event", **log_dict)
            elif event.severity == AuditSeverity.WARNING:
                self._logger.warning("audit_event", **log_dict)
            elif event.severity == AuditSeverity.DEBUG:
                self._logger.debug("audit_event", **log_dict)
            else:
                self._logger.info("audit_event", **log_dict)
        except (TypeError, ValueError) as e:
            # The event could not be rendered; report it without structlog
            logging.getLogger(LOGGER_NAME).error(
                "audit event %s (%s) could not be written: %s",
                event.event_id,
                event.event_type.value,
                e,
            )
            return False

        return True

    def log_transaction_created(
        self,
        transaction_id: int,
        user_id: int,
        amount_count: int,
        tag_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log transaction creation."""
        self.log(AuditEventBuilder.transaction_created(
            transaction_id=transaction_id,
            user_id=user_id,
            amount_count=amount_count,
            tag_count=tag_count,
            correlation_id=correlation_id,
        ))

    def log_transaction_updated(
        self,
        transaction_id: int,
        user_id: int,
        header_fields: list[str],
        inserted: int,
        patched: int,
        removed: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a transaction update."""
        self.log(AuditEventBuilder.transaction_updated(
            transaction_id=transaction_id,
            user_id=user_id,
            header_fields=header_fields,
            inserted=inserted,
            patched=patched,
            removed=removed,
            correlation_id=correlation_id,
        ))

    def log_transaction_deleted(
        self,
        transaction_id: int,
        user_id: int,
        drained: bool,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a transaction deletion."""
        self.log(AuditEventBuilder.transaction_deleted(
            transaction_id=transaction_id,
            user_id=user_id,
            drained=drained,
            correlation_id=correlation_id,
        ))

    def log_tag_added(
        self,
        transaction_id: int,
        tag_id: int,
        tag: str,
        user_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        self.log(AuditEventBuilder.tag_added(
            transaction_id=transaction_id,
            tag_id=tag_id,
            tag=tag,
            user_id=user_id,
            correlation_id=correlation_id,
        ))

    def log_tag_removed(
        self,
        transaction_id: int,
        tag_id: int,
        user_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        self.log(AuditEventBuilder.tag_removed(
            transaction_id=transaction_id,
            tag_id=tag_id,
            user_id=user_id,
            correlation_id=correlation_id,
        ))

    def log_account_created(
        self,
        account_id: int,
        user_id: int,
        initial_balance: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        self.log(AuditEventBuilder.account_created(
            account_id=account_id,
            user_id=user_id,
            initial_balance=initial_balance,
            correlation_id=correlation_id,
        ))

    def log_account_updated(
        self,
        account_id: int,
        user_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        self.log(AuditEventBuilder.account_updated(
            account_id=account_id,
            user_id=user_id,
            correlation_id=correlation_id,
        ))

    def log_account_deleted(
        self,
        account_id: int,
        user_id: int,
        orphaned_rows: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        self.log(AuditEventBuilder.account_deleted(
            account_id=account_id,
            user_id=user_id,
            orphaned_rows=orphaned_rows,
            correlation_id=correlation_id,
        ))

    def log_balance_adjusted(
        self,
        account_id: int,
        delta: Decimal,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log one balance movement applied by the balance engine."""
        self.log(AuditEventBuilder.balance_adjusted(
            account_id=account_id,
            delta=delta,
            reason=reason,
            correlation_id=correlation_id,
        ))

    def log_rejected(
        self,
        operation: str,
        error_kind: str,
        error_message: str,
        user_id: Optional[int] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a request the ledger refused."""
        self.log(AuditEventBuilder.request_rejected(
            operation=operation,
            error_kind=error_kind,
            error_message=error_message,
            user_id=user_id,
            correlation_id=correlation_id,
        ))

    def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an unexpected error."""
        self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a request. Pass it through every
    operation the request performs.
    """
    return uuid4()
