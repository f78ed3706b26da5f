"""
Balance Deltas and the Balance Updater

The delta table is the single source of truth for how a transaction
moves money:

    income, yield        account_id  +m
    expense, investment  account_id  -m
    transfer             account_id  -m, target_account_id +m
                         (no effect at all without a target)

Reverting is the exact negation, so apply followed by revert is always
a no-op on every balance.
"""

from collections import defaultdict
from decimal import Decimal
from functools import partial
from typing import Optional, TYPE_CHECKING
from uuid import UUID

from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.audit import AuditLogger
from src.ledger.errors import ConsistencyError
from src.models.ledger import Account, Transaction, TransactionType
from src.services.storage import ConcurrentModificationError, DocumentStoreInterface
from src.utils.money import magnitude, quantize_money

if TYPE_CHECKING:
    from src.ledger.journal import LedgerJournal

CREDITS = (TransactionType.INCOME, TransactionType.YIELD)
DEBITS = (TransactionType.EXPENSE, TransactionType.INVESTMENT)

CAS_ATTEMPTS = 5


def balance_deltas(
    transaction_type: TransactionType,
    amount,
    account_id: str,
    target_account_id: Optional[str] = None,
) -> dict[str, Decimal]:
    """Signed per-account deltas of applying one transaction."""
    m = magnitude(amount)
    transaction_type = TransactionType(transaction_type)

    if transaction_type in CREDITS:
        return {account_id: m}
    if transaction_type in DEBITS:
        return {account_id: -m}
    if transaction_type == TransactionType.TRANSFER and target_account_id:
        deltas: dict[str, Decimal] = defaultdict(Decimal)
        deltas[account_id] -= m
        deltas[target_account_id] += m
        return dict(deltas)
    return {}


def revert_deltas(deltas: dict[str, Decimal]) -> dict[str, Decimal]:
    return {account_id: -delta for account_id, delta in deltas.items()}


def transaction_deltas(tx: Transaction) -> dict[str, Decimal]:
    return balance_deltas(tx.type, tx.amount, tx.account_id, tx.target_account_id)


class BalanceUpdater:
    """
    Folds deltas into account balances.

    Every write is a read-modify-write against the freshly read account,
    guarded by compare-and-swap on the account version. A lost race is
    retried; a failed conditional write changed nothing, so that retry
    cannot double-count.
    """

    def __init__(
        self,
        store: DocumentStoreInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._audit = audit_logger or AuditLogger()

    @retry(
        stop=stop_after_attempt(CAS_ATTEMPTS),
        wait=wait_exponential(multiplier=0.05, max=1),
        retry=retry_if_exception_type(ConcurrentModificationError),
        reraise=True,
    )
    async def _compare_and_swap(
        self,
        workspace_id: str,
        account_id: str,
        delta: Decimal,
        correlation_id: Optional[UUID],
    ) -> Optional[Account]:
        account = await self._store.get_account(workspace_id, account_id)
        if account is None:
            return None
        try:
            return await self._store.update_account(
                workspace_id,
                account_id,
                {"current_balance": quantize_money(account.current_balance + delta)},
                expected_version=account.version,
            )
        except ConcurrentModificationError:
            await self._audit.log_balance_conflict(
                workspace_id=workspace_id,
                account_id=account_id,
                expected_version=account.version,
                correlation_id=correlation_id,
            )
            raise

    async def adjust(
        self,
        workspace_id: str,
        account_id: str,
        delta: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> Optional[Account]:
        """
        Add `delta` to one account's current balance.

        Returns:
            The account after the write, or None if the account doesn't
            exist (the delta is skipped and logged)

        Raises:
            ConsistencyError: If every compare-and-swap attempt lost
        """
        try:
            account = await self._compare_and_swap(
                workspace_id, account_id, delta, correlation_id
            )
        except ConcurrentModificationError as e:
            raise ConsistencyError(
                f"Gave up updating balance of {account_id} after {CAS_ATTEMPTS} conflicts"
            ) from e

        if account is None:
            await self._audit.log_account_missing(
                workspace_id=workspace_id,
                account_id=account_id,
                delta=delta,
                correlation_id=correlation_id,
            )
        return account

    async def apply_deltas(
        self,
        workspace_id: str,
        deltas: dict[str, Decimal],
        journal: Optional["LedgerJournal"] = None,
        correlation_id: Optional[UUID] = None,
    ) -> list[str]:
        """
        Apply a set of deltas, in account id order.

        Each successful write is recorded in `journal` with its inverse.

        Returns:
            Ids of the accounts actually written
        """
        touched = []
        for account_id in sorted(deltas):
            delta = deltas[account_id]
            if delta == 0:
                continue
            account = await self.adjust(workspace_id, account_id, delta, correlation_id)
            if account is None:
                continue
            touched.append(account_id)
            if journal is not None:
                journal.record(
                    f"balance {account_id} {delta:+}",
                    partial(self.adjust, workspace_id, account_id, -delta, correlation_id),
                )
        return touched
