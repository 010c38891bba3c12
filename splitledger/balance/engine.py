"""
Balance Maintenance Engine

CRITICAL: Account.balance is a cache of the ledger rows. For every
registered account it must always equal its starting balance plus the
signed amount_paid of every split row that points at it:

    signed(amount_paid) = +amount_paid  for income
                          -amount_paid  for expenses

Only amount_paid moves a balance; amount_to_pay describes who owes whom
and never touches an account. External payees have no balance.

Every mutation of split rows describes itself as an old row set and a
new row set. The delta per account is exactly
signed(new_paid) - signed(old_paid), so any create, patch, retarget,
delete or income flip is handled by the same arithmetic.
"""

from collections import defaultdict
from decimal import Decimal
from typing import Iterable, Optional, Protocol
from uuid import UUID

from splitledger.audit import AuditLogger
from splitledger.services.storage import LedgerUnitOfWork


ZERO = Decimal("0")


class BalanceRow(Protocol):
    """Anything with the two fields that move a balance."""

    @property
    def account_id(self) -> Optional[int]: ...

    @property
    def amount_paid(self) -> Decimal: ...


def signed_amount(amount: Decimal, is_income: bool) -> Decimal:
    """Income adds to an account, an expense takes from it."""
    return amount if is_income else -amount


def _contributions(rows: Iterable[BalanceRow], is_income: bool) -> dict[int, Decimal]:
    totals: dict[int, Decimal] = defaultdict(lambda: ZERO)
    for row in rows:
        if row.account_id is None:
            continue
        totals[row.account_id] += signed_amount(row.amount_paid, is_income)
    return totals


def compute_balance_deltas(
    old_rows: Iterable[BalanceRow],
    new_rows: Iterable[BalanceRow],
    is_income: bool,
    was_income: Optional[bool] = None,
) -> dict[int, Decimal]:
    """
    Per-account balance change that turns old_rows into new_rows.

    Args:
        old_rows: Split rows as they are before the change
        new_rows: Split rows as they will be after the change
        is_income: Income flag the new rows are booked under
        was_income: Income flag the old rows were booked under
                    (defaults to is_income)

    Returns:
        {account_id: delta} without zero entries
    """
    if was_income is None:
        was_income = is_income

    before = _contributions(old_rows, was_income)
    after = _contributions(new_rows, is_income)

    deltas = {}
    for account_id in before.keys() | after.keys():
        delta = after.get(account_id, ZERO) - before.get(account_id, ZERO)
        if delta != ZERO:
            deltas[account_id] = delta
    return deltas


class BalanceMaintenanceEngine:
    """
    Applies balance deltas through a unit of work.

    Accounts are always adjusted in ascending id order, so two units of
    work touching the same accounts lock them in the same order.
    """

    def __init__(self, audit_logger: Optional[AuditLogger] = None):
        self._audit = audit_logger or AuditLogger()

    def apply(
        self,
        uow: LedgerUnitOfWork,
        deltas: dict[int, Decimal],
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        for account_id in sorted(deltas):
            delta = deltas[account_id]
            if delta == ZERO:
                continue
            uow.adjust_balance(account_id, delta)
            self._audit.log_balance_adjusted(
                account_id=account_id,
                delta=delta,
                reason=reason,
                correlation_id=correlation_id,
            )
