"""
Household Ledger - Source Package

The balance engine of a shared personal-finance tracker: workspaces
hold accounts, credit cards, categories and transactions, and the
ledger keeps every account's running balance consistent as
transactions are created, edited, deleted, deferred and replayed.

DESIGN PRINCIPLES:
1. A balance only ever moves through the delta table
2. Fail early, fail visibly
3. No silent corrections
4. Every balance change must be auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Household Ledger Team"
