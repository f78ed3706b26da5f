"""
Balance Ledger

Keeps every account's current_balance equal to its initial balance plus
the signed deltas of all APPLIED transactions touching it.

Transaction lifecycle:

    create:  UNAPPLIED ──(date <= now and not skipped)──> APPLIED
    update:  APPLIED ──revert──> UNAPPLIED ──apply new──> APPLIED
             (stays UNAPPLIED if the new date is in the future)
    delete:  APPLIED ──revert──> UNAPPLIED ──> gone

Each public operation:
1. Validates before writing anything
2. Holds the locks of every account it touches (sorted order)
3. Records an undo step per successful write and rolls back on failure
4. Emits an audit event once it has committed
"""

import re
from functools import partial
from typing import Iterable, Optional
from uuid import UUID

from src.audit import AuditLogger, create_correlation_id
from src.config import LedgerSettings, get_settings
from src.installments import generate_installments
from src.ledger.balance import BalanceUpdater, revert_deltas, transaction_deltas
from src.ledger.errors import NotFoundError, ValidationError
from src.ledger.journal import LedgerJournal
from src.ledger.locks import AccountLocks
from src.models.ledger import (
    AccountReconciliation,
    BalanceState,
    InstallmentGroupChanges,
    InstallmentPurchaseInput,
    InstallmentPurchaseResult,
    RevertPolicy,
    Transaction,
    TransactionInput,
    TransactionQuery,
    TransactionType,
)
from src.services.storage import DocumentStoreInterface
from src.utils.dates import Clock, as_local_datetime, local_now
from src.utils.money import ZERO, quantize_money
from src.validation import TransactionValidator

INSTALLMENT_SUFFIX = re.compile(r"\s*\((\d+)/(\d+)\)$")

# Fields a transaction update is allowed to change
UPDATABLE_FIELDS = (
    "type",
    "amount",
    "account_id",
    "target_account_id",
    "category_id",
    "credit_card_id",
    "description",
    "date",
    "is_recurring",
    "recurrence_frequency",
    "balance_state",
)


def strip_installment_suffix(description: Optional[str]) -> str:
    """'Laptop (2/10)' -> 'Laptop'"""
    return INSTALLMENT_SUFFIX.sub("", description or "").strip()


async def collect_transactions(
    store: DocumentStoreInterface,
    workspace_id: str,
    query: TransactionQuery,
) -> list[Transaction]:
    """Follow next_cursor until every matching transaction has been read."""
    results = []
    while True:
        page = await store.query_transactions(workspace_id, query)
        results.extend(page.items)
        if not page.next_cursor:
            return results
        query = query.model_copy(update={"start_after": page.next_cursor})


class BalanceLedger:
    """
    Transaction commands and the balance effects they carry.

    All collaborators are injected; only the store is required.
    """

    def __init__(
        self,
        store: DocumentStoreInterface,
        audit_logger: Optional[AuditLogger] = None,
        locks: Optional[AccountLocks] = None,
        clock: Clock = local_now,
        settings: Optional[LedgerSettings] = None,
        validator: Optional[TransactionValidator] = None,
    ):
        self._store = store
        self._audit = audit_logger or AuditLogger()
        self._locks = locks or AccountLocks()
        self._clock = clock
        self._settings = settings or get_settings().ledger
        self._validator = validator or TransactionValidator(store)
        self._updater = BalanceUpdater(store, self._audit)

    @property
    def locks(self) -> AccountLocks:
        return self._locks

    @property
    def updater(self) -> BalanceUpdater:
        return self._updater

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _validate(self, workspace_id: str, data: TransactionInput) -> None:
        result = await self._validator.validate_transaction(workspace_id, data)
        if result.has_errors:
            raise ValidationError(result.issues)

    async def _require_transaction(self, workspace_id: str, transaction_id: str) -> Transaction:
        tx = await self._store.get_transaction(workspace_id, transaction_id)
        if tx is None:
            raise NotFoundError("transaction not found", transaction_id)
        return tx

    def _should_revert(self, tx: Transaction) -> bool:
        return tx.applied_to_balance or self._settings.revert_policy == RevertPolicy.ALWAYS

    def _should_apply(self, data: TransactionInput) -> bool:
        return not data.skip_balance_update and data.date <= self._clock()

    def _build_transaction(self, user_id: str, data: TransactionInput) -> Transaction:
        is_transfer = data.type == TransactionType.TRANSFER
        return Transaction(
            type=data.type,
            amount=data.amount,
            account_id=data.account_id,
            target_account_id=data.target_account_id if is_transfer else None,
            category_id=data.category_id,
            credit_card_id=data.credit_card_id,
            description=data.description,
            date=data.date,
            balance_state=(
                BalanceState.APPLIED if self._should_apply(data) else BalanceState.UNAPPLIED
            ),
            credit_card_purchase_id=data.credit_card_purchase_id,
            installment_number=data.installment_number,
            is_recurring=data.is_recurring,
            recurrence_frequency=data.recurrence_frequency,
            recurrence_template_id=data.recurrence_template_id,
            recurrence_key=data.recurrence_key,
            created_by=user_id,
        )

    async def _insert(
        self,
        workspace_id: str,
        user_id: str,
        data: TransactionInput,
        journal: LedgerJournal,
    ) -> tuple[str, Transaction]:
        """Insert one transaction and fold its delta if it is applied. Caller holds locks."""
        tx = self._build_transaction(user_id, data)
        tx_id = await self._store.create_transaction(workspace_id, tx)
        journal.record(
            f"insert {tx_id}",
            partial(self._store.delete_transaction, workspace_id, tx_id),
        )
        if tx.applied_to_balance:
            await self._updater.apply_deltas(
                workspace_id, transaction_deltas(tx), journal, journal.correlation_id
            )
        return tx_id, tx.model_copy(update={"id": tx_id})

    async def _update_locked(
        self,
        workspace_id: str,
        old: Transaction,
        data: TransactionInput,
        journal: LedgerJournal,
    ) -> tuple[bool, bool]:
        """Revert, rewrite, re-apply. Caller holds locks. Returns (reverted, applied)."""
        reverted = self._should_revert(old)
        if reverted:
            await self._updater.apply_deltas(
                workspace_id,
                revert_deltas(transaction_deltas(old)),
                journal,
                journal.correlation_id,
            )

        new = self._build_transaction(old.created_by or "", data)
        fields = {name: getattr(new, name) for name in UPDATABLE_FIELDS}
        await self._store.update_transaction(workspace_id, old.id, fields)
        journal.record(
            f"rewrite {old.id}",
            partial(
                self._store.update_transaction,
                workspace_id,
                old.id,
                {name: getattr(old, name) for name in UPDATABLE_FIELDS},
            ),
        )

        if new.applied_to_balance:
            await self._updater.apply_deltas(
                workspace_id, transaction_deltas(new), journal, journal.correlation_id
            )
        return reverted, new.applied_to_balance

    async def _delete_locked(
        self,
        workspace_id: str,
        tx: Transaction,
        journal: LedgerJournal,
    ) -> bool:
        """Revert then delete. The delete is the last write, so it needs no undo."""
        reverted = self._should_revert(tx)
        if reverted:
            await self._updater.apply_deltas(
                workspace_id,
                revert_deltas(transaction_deltas(tx)),
                journal,
                journal.correlation_id,
            )
        await self._store.delete_transaction(workspace_id, tx.id)
        return reverted

    async def _group_members(self, workspace_id: str, purchase_id: str) -> list[Transaction]:
        members = await collect_transactions(
            self._store,
            workspace_id,
            TransactionQuery(
                credit_card_purchase_id=purchase_id,
                limit=self._settings.sweep_page_size,
            ),
        )
        if not members:
            raise NotFoundError("installment group not found", purchase_id)
        return sorted(members, key=lambda tx: (tx.installment_number or 0, tx.date))

    def _journal(self, operation: str, workspace_id: str, correlation_id: Optional[UUID]) -> LedgerJournal:
        return LedgerJournal(operation, workspace_id, self._audit, correlation_id)

    # -------------------------------------------------------------------------
    # Single transactions
    # -------------------------------------------------------------------------

    async def create_transaction(
        self,
        workspace_id: str,
        user_id: str,
        data: TransactionInput,
        correlation_id: Optional[UUID] = None,
    ) -> str:
        """
        Create a transaction and apply its effect if it is due.

        A transaction dated after now (or created with skip_balance_update)
        is stored UNAPPLIED and left for the pending sweep.

        Returns:
            The new transaction id

        Raises:
            ValidationError: Before any write
        """
        await self._validate(workspace_id, data)

        async with self._locks.hold(workspace_id, [data.account_id, data.target_account_id]):
            async with self._journal("create_transaction", workspace_id, correlation_id) as journal:
                tx_id, tx = await self._insert(workspace_id, user_id, data, journal)

        await self._audit.log_transaction_created(
            workspace_id=workspace_id,
            transaction_id=tx_id,
            transaction_type=tx.type.value,
            amount=tx.amount,
            applied=tx.applied_to_balance,
            correlation_id=correlation_id,
        )
        return tx_id

    async def update_transaction(
        self,
        workspace_id: str,
        user_id: str,
        transaction_id: str,
        data: TransactionInput,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """
        Replace a transaction's fields and move its balance effect.

        The old effect is reverted (if it was applied, or always under the
        ALWAYS revert policy) and the new one applied if its date is not
        in the future.

        Raises:
            ValidationError: Before any write
            NotFoundError: "transaction not found"
        """
        await self._validate(workspace_id, data)
        new_accounts = {data.account_id, data.target_account_id}

        while True:
            current = await self._require_transaction(workspace_id, transaction_id)
            wanted = current.account_ids | new_accounts
            async with self._locks.hold(workspace_id, wanted) as held:
                old = await self._require_transaction(workspace_id, transaction_id)
                if not old.account_ids <= set(held):
                    # Accounts changed between the read and the lock
                    continue
                async with self._journal("update_transaction", workspace_id, correlation_id) as journal:
                    reverted, applied = await self._update_locked(workspace_id, old, data, journal)
                break

        await self._audit.log_transaction_updated(
            workspace_id=workspace_id,
            transaction_id=transaction_id,
            old_amount=old.amount,
            new_amount=data.amount,
            reverted=reverted,
            applied=applied,
            correlation_id=correlation_id,
        )

    async def delete_transaction(
        self,
        workspace_id: str,
        transaction_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """
        Delete a transaction, reverting its effect first.

        Under the default policy an UNAPPLIED transaction is deleted
        without touching any balance.

        Raises:
            NotFoundError: "transaction not found"
        """
        current = await self._require_transaction(workspace_id, transaction_id)

        async with self._locks.hold(workspace_id, current.account_ids):
            tx = await self._require_transaction(workspace_id, transaction_id)
            async with self._journal("delete_transaction", workspace_id, correlation_id) as journal:
                reverted = await self._delete_locked(workspace_id, tx, journal)

        await self._audit.log_transaction_deleted(
            workspace_id=workspace_id,
            transaction_id=transaction_id,
            amount=tx.amount,
            reverted=reverted,
            correlation_id=correlation_id,
        )

    # -------------------------------------------------------------------------
    # Installment purchases
    # -------------------------------------------------------------------------

    async def create_installment_transactions(
        self,
        workspace_id: str,
        user_id: str,
        params: InstallmentPurchaseInput,
        correlation_id: Optional[UUID] = None,
    ) -> InstallmentPurchaseResult:
        """
        Create one expense per parcel of a credit card purchase.

        Parcels due after now are stored UNAPPLIED. The first parcel's id
        becomes the group key (credit_card_purchase_id) of every parcel.

        Raises:
            ValidationError: Before any write
            NotFoundError: "credit card not found"
        """
        result = await self._validator.validate_installment_purchase(workspace_id, params)
        if result.has_errors:
            raise ValidationError(result.issues)

        closing_day, due_day = params.closing_day, params.due_day
        if closing_day is None or due_day is None:
            card = await self._store.get_credit_card(workspace_id, params.credit_card_id)
            if card is None:
                raise NotFoundError("credit card not found", params.credit_card_id)
            closing_day = closing_day or card.closing_day or self._settings.default_closing_day
            due_day = due_day or card.due_day or self._settings.default_due_day

        parcels = generate_installments(
            params.total_amount,
            params.installments_count,
            params.purchase_date,
            closing_day,
            due_day,
        )
        base_description = params.description or self._settings.default_installment_description
        correlation_id = correlation_id or create_correlation_id()

        ids: list[str] = []
        applied_count = 0
        async with self._locks.hold(workspace_id, [params.account_id]):
            async with self._journal(
                "create_installment_transactions", workspace_id, correlation_id
            ) as journal:
                for parcel in parcels:
                    due_at = as_local_datetime(parcel.due_date)
                    data = TransactionInput(
                        type=TransactionType.EXPENSE,
                        amount=parcel.amount,
                        account_id=params.account_id,
                        category_id=params.category_id,
                        credit_card_id=params.credit_card_id,
                        description=f"{base_description} ({parcel.number}/{len(parcels)})",
                        date=due_at,
                        skip_balance_update=due_at > self._clock(),
                        installment_number=parcel.number,
                        credit_card_purchase_id=ids[0] if ids else None,
                    )
                    tx_id, tx = await self._insert(workspace_id, user_id, data, journal)
                    ids.append(tx_id)
                    if tx.applied_to_balance:
                        applied_count += 1

                first_id = ids[0]
                await self._store.update_transaction(
                    workspace_id,
                    first_id,
                    {"credit_card_purchase_id": first_id, "installment_number": 1},
                )

        await self._audit.log_installment_purchase_created(
            workspace_id=workspace_id,
            purchase_id=first_id,
            total_amount=params.total_amount,
            count=len(ids),
            applied_count=applied_count,
            correlation_id=correlation_id,
        )
        return InstallmentPurchaseResult(count=len(ids), first_id=first_id, transaction_ids=ids)

    async def update_installment_group(
        self,
        workspace_id: str,
        user_id: str,
        purchase_id: str,
        changes: InstallmentGroupChanges,
        correlation_id: Optional[UUID] = None,
    ) -> int:
        """
        Apply shared fields to every parcel of a purchase.

        Each parcel keeps its own amount, date and "(n/N)" suffix.

        Returns:
            Number of parcels updated

        Raises:
            NotFoundError: "installment group not found"
            ValidationError: Before any write
        """
        members = await self._group_members(workspace_id, purchase_id)
        base = changes.description or strip_installment_suffix(members[0].description)

        def member_input(member: Transaction) -> TransactionInput:
            match = INSTALLMENT_SUFFIX.search(member.description or "")
            suffix = match.group(0).strip() if match else (
                f"({member.installment_number}/{len(members)})"
            )
            return TransactionInput.from_transaction(
                member,
                type=changes.type,
                account_id=changes.account_id,
                target_account_id=changes.target_account_id,
                category_id=changes.category_id,
                credit_card_id=changes.credit_card_id,
                description=f"{base} {suffix}".strip(),
            )

        await self._validate(workspace_id, member_input(members[0]))

        accounts: set[Optional[str]] = {changes.account_id, changes.target_account_id}
        for member in members:
            accounts |= member.account_ids

        correlation_id = correlation_id or create_correlation_id()
        async with self._locks.hold(workspace_id, accounts):
            members = await self._group_members(workspace_id, purchase_id)
            async with self._journal(
                "update_installment_group", workspace_id, correlation_id
            ) as journal:
                for member in members:
                    await self._update_locked(workspace_id, member, member_input(member), journal)

        await self._audit.log_installment_group_changed(
            workspace_id=workspace_id,
            purchase_id=purchase_id,
            count=len(members),
            deleted=False,
            correlation_id=correlation_id,
        )
        return len(members)

    async def delete_installment_group(
        self,
        workspace_id: str,
        purchase_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> int:
        """
        Delete every parcel of a purchase, last parcel first.

        Each parcel is its own atomic step: if a delete fails, parcels
        already removed stay removed (their balances correctly reverted)
        and the error propagates.

        Returns:
            Number of parcels deleted

        Raises:
            NotFoundError: "installment group not found"
        """
        members = await self._group_members(workspace_id, purchase_id)
        accounts: set[str] = set()
        for member in members:
            accounts |= member.account_ids

        correlation_id = correlation_id or create_correlation_id()
        deleted = 0
        async with self._locks.hold(workspace_id, accounts):
            members = await self._group_members(workspace_id, purchase_id)
            for member in reversed(members):
                async with self._journal(
                    "delete_installment_group", workspace_id, correlation_id
                ) as journal:
                    await self._delete_locked(workspace_id, member, journal)
                deleted += 1

        await self._audit.log_installment_group_changed(
            workspace_id=workspace_id,
            purchase_id=purchase_id,
            count=deleted,
            deleted=True,
            correlation_id=correlation_id,
        )
        return deleted

    # -------------------------------------------------------------------------
    # Reconciliation
    # -------------------------------------------------------------------------

    async def reconcile_balances(
        self,
        workspace_id: str,
        repair: bool = False,
        correlation_id: Optional[UUID] = None,
    ) -> list[AccountReconciliation]:
        """
        Recompute every account's balance from its APPLIED transactions.

        With repair=True, drifted accounts get current_balance rewritten to
        the recomputed value. Used after a failed rollback.
        """
        accounts = await self._store.list_accounts(workspace_id)
        reports = []

        async with self._locks.hold(workspace_id, [a.id for a in accounts]):
            applied = await collect_transactions(
                self._store,
                workspace_id,
                TransactionQuery(
                    balance_state=BalanceState.APPLIED,
                    limit=self._settings.sweep_page_size,
                ),
            )
            expected = self._expected_balances(accounts, applied)

            for account in await self._store.list_accounts(workspace_id):
                report = AccountReconciliation(
                    account_id=account.id,
                    account_name=account.name,
                    recorded_balance=account.current_balance,
                    expected_balance=expected.get(account.id, account.initial_balance),
                )
                if not report.is_consistent:
                    if repair:
                        await self._store.update_account(
                            workspace_id,
                            account.id,
                            {"current_balance": report.expected_balance},
                            expected_version=account.version,
                        )
                        report.repaired = True
                    await self._audit.log_balance_drift(
                        workspace_id=workspace_id,
                        account_id=account.id,
                        recorded=report.recorded_balance,
                        expected=report.expected_balance,
                        repaired=report.repaired,
                        correlation_id=correlation_id,
                    )
                reports.append(report)

        return reports

    @staticmethod
    def _expected_balances(accounts, transactions: Iterable[Transaction]) -> dict:
        expected = {a.id: a.initial_balance or ZERO for a in accounts}
        for tx in transactions:
            for account_id, delta in transaction_deltas(tx).items():
                if account_id in expected:
                    expected[account_id] += delta
        return {k: quantize_money(v) for k, v in expected.items()}
