"""
Ledger balance engine.

BalanceLedger owns transaction commands; the sweeper and the recurrence
expander catch up deferred and recurring effects.
"""

from src.ledger.balance import (
    BalanceUpdater,
    balance_deltas,
    revert_deltas,
    transaction_deltas,
)
from src.ledger.catalog import DEFAULT_CATEGORIES, WorkspaceCatalog
from src.ledger.errors import (
    ConsistencyError,
    LedgerError,
    NotFoundError,
    ValidationError,
)
from src.ledger.journal import LedgerJournal
from src.ledger.locks import AccountLocks
from src.ledger.recurrence import RecurrenceExpander, occurrence_dates
from src.ledger.service import BalanceLedger, collect_transactions, strip_installment_suffix
from src.ledger.sweeper import PendingTransactionSweeper

__all__ = [
    "AccountLocks",
    "BalanceLedger",
    "BalanceUpdater",
    "ConsistencyError",
    "DEFAULT_CATEGORIES",
    "LedgerError",
    "LedgerJournal",
    "NotFoundError",
    "PendingTransactionSweeper",
    "RecurrenceExpander",
    "ValidationError",
    "WorkspaceCatalog",
    "balance_deltas",
    "collect_transactions",
    "occurrence_dates",
    "revert_deltas",
    "strip_installment_suffix",
    "transaction_deltas",
]
