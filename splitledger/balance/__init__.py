"""Balance maintenance: keeps Account.balance equal to the ledger rows."""

from splitledger.balance.engine import (
    BalanceMaintenanceEngine,
    compute_balance_deltas,
    signed_amount,
)

__all__ = [
    "BalanceMaintenanceEngine",
    "compute_balance_deltas",
    "signed_amount",
]
