"""
Ledger Rule Validation

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - SCHEMA VALIDATION:
- Type checking, required fields, non-negative amounts
- Exactly one split target per row
- Done by the pydantic request models before anything else runs

STAGE 2 - LEDGER RULES (this module):
- Total paid matches total owed within the tolerance
- The same registered account is not listed twice
- The caller keeps a stake in the transaction
- This catches requests that are well-formed but would corrupt the ledger

WHY TWO STAGES:
1. Separation of concerns (structural vs logical)
2. Better error messages (know exactly what kind of issue)
3. Ledger rules run again after an update has rebuilt the row set

IMPORTANT: Validation NEVER silently fixes issues.
Every broken rule is reported; the service refuses the whole request.
"""

from decimal import Decimal
from typing import Iterable, Optional, Protocol

from splitledger.config import get_settings
from splitledger.models.ledger import ValidationIssue
from splitledger.services.errors import InvalidInputError


class SplitRow(Protocol):
    """Shape of a split row as far as the ledger rules care."""

    @property
    def account_id(self) -> Optional[int]: ...

    @property
    def amount_to_pay(self) -> Decimal: ...

    @property
    def amount_paid(self) -> Decimal: ...


UNBALANCED_MESSAGE = "Sum of Amount Paid must equal the sum of Amount To Pay"
NO_SELF_STAKE_MESSAGE = "At least one amount must have accountId set to the userId"
NO_REGISTERED_ROW_MESSAGE = "At least one amount must have accountId set"


class LedgerValidator:
    """
    Checks a complete set of split rows against the ledger rules.

    Used on create (rows from the request) and on update (rows as they
    will be after the update).
    """

    def __init__(self, tolerance: Optional[Decimal] = None):
        """
        Initialize validator.

        Args:
            tolerance: Largest accepted |total paid - total owed|.
                       Defaults to LEDGER_BALANCE_TOLERANCE.
        """
        if tolerance is None:
            tolerance = get_settings().ledger.balance_tolerance
        self._tolerance = tolerance

    @property
    def tolerance(self) -> Decimal:
        return self._tolerance

    def check_balanced(self, rows: Iterable[SplitRow]) -> list[ValidationIssue]:
        """Total paid and total owed may differ by at most the tolerance."""
        rows = list(rows)
        total_paid = sum((r.amount_paid for r in rows), Decimal("0"))
        total_to_pay = sum((r.amount_to_pay for r in rows), Decimal("0"))

        if abs(total_paid - total_to_pay) > self._tolerance:
            return [ValidationIssue(
                field="amounts",
                issue_type="unbalanced",
                message=UNBALANCED_MESSAGE,
            )]
        return []

    def check_distinct_accounts(self, account_ids: Iterable[Optional[int]]) -> list[ValidationIssue]:
        """A registered account may appear at most once per transaction."""
        seen = set()
        issues = []
        for account_id in account_ids:
            if account_id is None:
                continue
            if account_id in seen:
                issues.append(ValidationIssue(
                    field="amounts",
                    issue_type="duplicate_account",
                    message=f"Account with ID {account_id} appears more than once",
                ))
            seen.add(account_id)
        return issues

    def check_self_stake(self, has_self_stake: bool) -> list[ValidationIssue]:
        """On create, one row must point at an account the caller owns."""
        if has_self_stake:
            return []
        return [ValidationIssue(
            field="amounts",
            issue_type="no_self_stake",
            message=NO_SELF_STAKE_MESSAGE,
        )]

    def check_has_registered_row(self, rows: Iterable[SplitRow]) -> list[ValidationIssue]:
        """After an update, some row must still point at a registered account."""
        if any(r.account_id is not None for r in rows):
            return []
        return [ValidationIssue(
            field="amounts",
            issue_type="no_registered_account",
            message=NO_REGISTERED_ROW_MESSAGE,
        )]

    def validate_new_rows(
        self,
        rows: list[SplitRow],
        has_self_stake: bool,
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Ledger rules for a transaction being created.

        Returns: (is_valid, list_of_issues)
        """
        issues = []
        issues.extend(self.check_distinct_accounts(r.account_id for r in rows))
        issues.extend(self.check_balanced(rows))
        issues.extend(self.check_self_stake(has_self_stake))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    def validate_updated_rows(self, rows: list[SplitRow]) -> tuple[bool, list[ValidationIssue]]:
        """
        Ledger rules for the row set an update leaves behind.

        Returns: (is_valid, list_of_issues)
        """
        issues = []
        issues.extend(self.check_distinct_accounts(r.account_id for r in rows))
        issues.extend(self.check_balanced(rows))
        issues.extend(self.check_has_registered_row(rows))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    @staticmethod
    def raise_for_issues(issues: list[ValidationIssue]) -> None:
        """Raise InvalidInputError carrying every error-level issue."""
        errors = [issue for issue in issues if issue.severity == "error"]
        if errors:
            raise InvalidInputError(errors[0].message, issues=errors)
