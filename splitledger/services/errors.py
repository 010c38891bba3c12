"""
Ledger Errors

Every failure a caller can see is one of three kinds:

- INVALID_INPUT: malformed fields or a broken ledger rule
- NOT_FOUND: the entity does not exist, or the caller cannot see it
- FORBIDDEN: the caller referenced an account that is neither theirs
  nor a friend's

NOT_FOUND deliberately covers "exists but not yours" so that callers
cannot discover other users' transactions.
"""

from enum import Enum
from typing import Optional

from pydantic import ValidationError

from splitledger.models.ledger import ValidationIssue


class ErrorKind(str, Enum):
    """Classification carried by every ledger error."""
    INVALID_INPUT = "invalid_input"
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"


class LedgerError(Exception):
    """Base exception for ledger operations."""

    kind: ErrorKind = ErrorKind.INVALID_INPUT

    def __init__(
        self,
        message: str,
        issues: Optional[list[ValidationIssue]] = None,
    ):
        self.message = message
        self.issues = issues or []
        super().__init__(message)

    def to_dict(self) -> dict:
        """Shape handed back to transports."""
        return {
            "error": self.message,
            "kind": self.kind.value,
            "issues": [issue.model_dump() for issue in self.issues],
        }


class InvalidInputError(LedgerError):
    """Malformed request or violated ledger invariant."""
    kind = ErrorKind.INVALID_INPUT

    @classmethod
    def from_validation_error(cls, error: ValidationError) -> "InvalidInputError":
        """Convert a pydantic ValidationError, keeping every field error."""
        issues = []
        for err in error.errors():
            field = ".".join(str(part) for part in err["loc"]) or "payload"
            issues.append(ValidationIssue(
                field=field,
                issue_type=err["type"],
                message=err["msg"],
            ))

        first = issues[0] if issues else None
        message = f"{first.field}: {first.message}" if first else "Invalid input"
        return cls(message, issues=issues)


class NotFoundError(LedgerError):
    """Entity missing, or not visible to the caller."""
    kind = ErrorKind.NOT_FOUND


class ForbiddenError(LedgerError):
    """Caller may not attribute amounts to the referenced account."""
    kind = ErrorKind.FORBIDDEN
