"""
Split Ledger - Source Package

The ledger consistency core of a shared finance tracker: accounts,
transactions split between friends, tags, and account balances that
always agree with the split rows.

DESIGN PRINCIPLES:
1. Balances are derived, never typed in
2. Fail early, fail visibly
3. No silent corrections
4. Every mutation is one atomic unit of work
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Split Ledger Team"
