"""
Pending-Transaction Sweeper

Future-dated transactions (installment parcels, scheduled entries) are
stored UNAPPLIED. The sweep applies every one whose due day has arrived.

A transaction is due when its local calendar day is today or earlier;
time of day never matters. Running the sweep twice applies nothing the
second time: each record is re-read under its account locks and skipped
if it is already APPLIED or an update moved it into the future.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from src.audit import AuditLogger
from src.config import LedgerSettings, get_settings
from src.ledger.balance import BalanceUpdater, transaction_deltas
from src.ledger.journal import LedgerJournal
from src.ledger.locks import AccountLocks
from src.ledger.service import collect_transactions
from src.models.ledger import BalanceState, SweepResult, Transaction, TransactionQuery
from src.services.storage import DocumentStoreInterface
from src.utils.dates import Clock, end_of_local_day, local_now, start_of_local_day


class PendingTransactionSweeper:
    """Applies deferred transactions once their date arrives."""

    def __init__(
        self,
        store: DocumentStoreInterface,
        audit_logger: Optional[AuditLogger] = None,
        locks: Optional[AccountLocks] = None,
        clock: Clock = local_now,
        settings: Optional[LedgerSettings] = None,
    ):
        self._store = store
        self._audit = audit_logger or AuditLogger()
        self._locks = locks or AccountLocks()
        self._clock = clock
        self._settings = settings or get_settings().ledger
        self._updater = BalanceUpdater(store, self._audit)

    async def apply_pending_transactions(
        self,
        workspace_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> SweepResult:
        """
        Apply every UNAPPLIED transaction due today or earlier.

        Candidates are collected first (newest first, page by page) and
        applied afterwards, so applying never shifts the pages being read.
        """
        now = self._clock()
        today = start_of_local_day(now)

        candidates = await collect_transactions(
            self._store,
            workspace_id,
            TransactionQuery(
                balance_state=BalanceState.UNAPPLIED,
                date_to=end_of_local_day(now),
                limit=self._settings.sweep_page_size,
            ),
        )
        due = [tx for tx in candidates if start_of_local_day(tx.date) <= today]

        result = SweepResult(workspace_id=workspace_id, scanned=len(candidates))
        for pending in due:
            tx = await self._apply_if_still_due(workspace_id, pending, today, correlation_id)
            if tx is None:
                result.skipped_ids.append(pending.id)
                continue

            result.applied_ids.append(tx.id)
            await self._audit.log_pending_applied(
                workspace_id=workspace_id,
                transaction_id=tx.id,
                amount=tx.amount,
                due_date=tx.date.date().isoformat(),
                correlation_id=correlation_id,
            )

        await self._audit.log_sweep_completed(
            workspace_id=workspace_id,
            scanned=result.scanned,
            applied=result.applied_count,
            correlation_id=correlation_id,
        )
        return result

    async def _apply_if_still_due(
        self,
        workspace_id: str,
        pending: Transaction,
        today: datetime,
        correlation_id: Optional[UUID],
    ) -> Optional[Transaction]:
        """
        Apply one candidate under its account locks.

        The record is re-read once the locks are held. Returns None when
        it is gone, already APPLIED, or no longer due; retries with the
        new lock set when an update moved it to other accounts.
        """
        account_ids = pending.account_ids
        while True:
            async with self._locks.hold(workspace_id, account_ids) as held:
                tx = await self._store.get_transaction(workspace_id, pending.id)
                if tx is None or tx.applied_to_balance:
                    return None
                if start_of_local_day(tx.date) > today:
                    return None
                if not tx.account_ids <= set(held):
                    account_ids = tx.account_ids
                    continue

                journal = LedgerJournal(
                    "apply_pending_transaction", workspace_id, self._audit, correlation_id
                )
                async with journal:
                    await self._updater.apply_deltas(
                        workspace_id, transaction_deltas(tx), journal, correlation_id
                    )
                    await self._store.update_transaction(
                        workspace_id,
                        tx.id,
                        {"balance_state": BalanceState.APPLIED},
                    )
                return tx
