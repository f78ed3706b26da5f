"""Tests for BalanceLedger: transaction commands and their balance effects."""

from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest

from src.ledger import BalanceLedger, NotFoundError, ValidationError
from src.models.audit import AuditEventType
from src.models.ledger import (
    Account,
    BalanceState,
    InstallmentGroupChanges,
    InstallmentPurchaseInput,
    RevertPolicy,
    TransactionInput,
    TransactionQuery,
    TransactionType,
)
from src.services.storage import InMemoryDocumentStore, StorageError

from tests.conftest import NOW, USER, WORKSPACE, balance_of, make_settings

YESTERDAY = NOW - timedelta(days=1)
NEXT_WEEK = NOW + timedelta(days=7)


def tx_input(account_id, amount, type=TransactionType.EXPENSE, when=YESTERDAY, **extra):
    return TransactionInput(type=type, amount=amount, account_id=account_id, date=when, **extra)


async def stored_transactions(store):
    page = await store.query_transactions(WORKSPACE, TransactionQuery(limit=1000))
    return page.items


class FailingStore(InMemoryDocumentStore):
    """Fails balance writes to one account, or every transaction rewrite."""

    def __init__(self):
        super().__init__()
        self.fail_account = None
        self.fail_transaction_updates = False

    async def update_account(self, workspace_id, account_id, fields, expected_version=None):
        if account_id == self.fail_account:
            raise StorageError("write rejected")
        return await super().update_account(workspace_id, account_id, fields, expected_version)

    async def update_transaction(self, workspace_id, transaction_id, fields):
        if self.fail_transaction_updates:
            raise StorageError("write rejected")
        return await super().update_transaction(workspace_id, transaction_id, fields)


class TestCreateTransaction:
    """Creation applies due transactions and defers future ones."""

    async def test_past_expense_is_applied(self, ledger, store, checking):
        tx_id = await ledger.create_transaction(WORKSPACE, USER, tx_input(checking, "150.00"))

        tx = await store.get_transaction(WORKSPACE, tx_id)
        assert tx.balance_state == BalanceState.APPLIED
        assert tx.created_by == USER
        assert await balance_of(store, checking) == Decimal("850.00")

    async def test_future_expense_is_deferred(self, ledger, store, checking):
        tx_id = await ledger.create_transaction(
            WORKSPACE, USER, tx_input(checking, "150.00", when=NEXT_WEEK)
        )

        tx = await store.get_transaction(WORKSPACE, tx_id)
        assert tx.balance_state == BalanceState.UNAPPLIED
        assert not tx.applied_to_balance
        assert await balance_of(store, checking) == Decimal("1000.00")

    async def test_skip_balance_update(self, ledger, store, checking):
        tx_id = await ledger.create_transaction(
            WORKSPACE, USER, tx_input(checking, "150.00", skip_balance_update=True)
        )

        tx = await store.get_transaction(WORKSPACE, tx_id)
        assert tx.balance_state == BalanceState.UNAPPLIED
        assert await balance_of(store, checking) == Decimal("1000.00")

    async def test_transfer_is_symmetric(self, ledger, store, checking, savings):
        await ledger.create_transaction(
            WORKSPACE,
            USER,
            tx_input(checking, "300.00", TransactionType.TRANSFER, target_account_id=savings),
        )

        assert await balance_of(store, checking) == Decimal("700.00")
        assert await balance_of(store, savings) == Decimal("300.00")

    async def test_formatted_amount(self, ledger, store, checking):
        await ledger.create_transaction(
            WORKSPACE, USER, tx_input(checking, "R$ 1.000,50", TransactionType.INCOME)
        )
        assert await balance_of(store, checking) == Decimal("2000.50")

    async def test_target_dropped_for_non_transfers(self, ledger, store, checking, savings):
        tx_id = await ledger.create_transaction(
            WORKSPACE, USER, tx_input(checking, "10.00", target_account_id=savings)
        )

        tx = await store.get_transaction(WORKSPACE, tx_id)
        assert tx.target_account_id is None
        assert await balance_of(store, savings) == Decimal("0.00")

    async def test_audited(self, ledger, checking, audit_storage):
        tx_id = await ledger.create_transaction(WORKSPACE, USER, tx_input(checking, "10.00"))

        events = await audit_storage.get_events_by_entity("transaction", tx_id)
        assert [e.event_type for e in events] == [AuditEventType.TRANSACTION_CREATED]
        assert events[0].details["applied"] is True


class TestValidation:
    """Rejected commands never write."""

    @pytest.mark.parametrize("amount", ["0", "0,00", "abc"])
    async def test_amount_must_be_positive(self, ledger, store, checking, amount):
        with pytest.raises(ValidationError, match="amount must be positive"):
            await ledger.create_transaction(WORKSPACE, USER, tx_input(checking, amount))
        assert await stored_transactions(store) == []

    async def test_account_must_exist(self, ledger, store):
        with pytest.raises(ValidationError, match="account not found"):
            await ledger.create_transaction(WORKSPACE, USER, tx_input("nope", "10.00"))
        assert await stored_transactions(store) == []

    async def test_transfer_requires_target(self, ledger, checking):
        with pytest.raises(ValidationError, match="target account is required for transfers"):
            await ledger.create_transaction(
                WORKSPACE, USER, tx_input(checking, "10.00", TransactionType.TRANSFER)
            )

    async def test_transfer_target_must_differ(self, ledger, checking):
        with pytest.raises(ValidationError, match="must differ"):
            await ledger.create_transaction(
                WORKSPACE,
                USER,
                tx_input(checking, "10.00", TransactionType.TRANSFER, target_account_id=checking),
            )

    async def test_transfer_target_must_exist(self, ledger, store, checking):
        with pytest.raises(ValidationError, match="target account not found"):
            await ledger.create_transaction(
                WORKSPACE,
                USER,
                tx_input(checking, "10.00", TransactionType.TRANSFER, target_account_id="nope"),
            )
        assert await balance_of(store, checking) == Decimal("1000.00")

    async def test_error_carries_issues(self, ledger, checking):
        with pytest.raises(ValidationError) as exc_info:
            await ledger.create_transaction(WORKSPACE, USER, tx_input(checking, "0"))
        assert [i.field for i in exc_info.value.issues] == ["amount"]


class TestUpdateAndDelete:
    """Revert the old effect, apply the new one."""

    async def test_create_update_delete_scenario(self, ledger, store, checking):
        """1000 → expense 150 → 850 → edit to 200 → 800 → delete → 1000."""
        tx_id = await ledger.create_transaction(WORKSPACE, USER, tx_input(checking, "150.00"))
        assert await balance_of(store, checking) == Decimal("850.00")

        await ledger.update_transaction(WORKSPACE, USER, tx_id, tx_input(checking, "200.00"))
        assert await balance_of(store, checking) == Decimal("800.00")

        await ledger.delete_transaction(WORKSPACE, tx_id)
        assert await balance_of(store, checking) == Decimal("1000.00")
        assert await store.get_transaction(WORKSPACE, tx_id) is None

    async def test_update_missing(self, ledger, checking):
        with pytest.raises(NotFoundError, match="transaction not found"):
            await ledger.update_transaction(WORKSPACE, USER, "nope", tx_input(checking, "1.00"))

    async def test_delete_missing(self, ledger):
        with pytest.raises(NotFoundError, match="transaction not found"):
            await ledger.delete_transaction(WORKSPACE, "nope")

    async def test_update_changes_type(self, ledger, store, checking):
        tx_id = await ledger.create_transaction(WORKSPACE, USER, tx_input(checking, "100.00"))

        await ledger.update_transaction(
            WORKSPACE, USER, tx_id, tx_input(checking, "100.00", TransactionType.INCOME)
        )

        assert await balance_of(store, checking) == Decimal("1100.00")

    async def test_update_moves_between_accounts(self, ledger, store, checking, savings):
        tx_id = await ledger.create_transaction(WORKSPACE, USER, tx_input(checking, "100.00"))

        await ledger.update_transaction(WORKSPACE, USER, tx_id, tx_input(savings, "100.00"))

        assert await balance_of(store, checking) == Decimal("1000.00")
        assert await balance_of(store, savings) == Decimal("-100.00")

    async def test_update_into_the_future_defers(self, ledger, store, checking):
        tx_id = await ledger.create_transaction(WORKSPACE, USER, tx_input(checking, "100.00"))

        await ledger.update_transaction(
            WORKSPACE, USER, tx_id, tx_input(checking, "100.00", when=NEXT_WEEK)
        )

        tx = await store.get_transaction(WORKSPACE, tx_id)
        assert tx.balance_state == BalanceState.UNAPPLIED
        assert await balance_of(store, checking) == Decimal("1000.00")

    async def test_update_of_deferred_into_the_past_applies(self, ledger, store, checking):
        tx_id = await ledger.create_transaction(
            WORKSPACE, USER, tx_input(checking, "100.00", when=NEXT_WEEK)
        )

        await ledger.update_transaction(WORKSPACE, USER, tx_id, tx_input(checking, "40.00"))

        tx = await store.get_transaction(WORKSPACE, tx_id)
        assert tx.balance_state == BalanceState.APPLIED
        assert await balance_of(store, checking) == Decimal("960.00")

    async def test_delete_unswept_future_leaves_balance(self, ledger, store, checking):
        tx_id = await ledger.create_transaction(
            WORKSPACE, USER, tx_input(checking, "100.00", when=NEXT_WEEK)
        )

        await ledger.delete_transaction(WORKSPACE, tx_id)

        assert await balance_of(store, checking) == Decimal("1000.00")

    async def test_always_policy_reverts_unapplied(self, store, audit_logger, clock, checking):
        legacy = BalanceLedger(
            store,
            audit_logger=audit_logger,
            clock=clock,
            settings=make_settings(revert_policy=RevertPolicy.ALWAYS),
        )
        tx_id = await legacy.create_transaction(
            WORKSPACE, USER, tx_input(checking, "100.00", when=NEXT_WEEK)
        )

        await legacy.delete_transaction(WORKSPACE, tx_id)

        assert await balance_of(store, checking) == Decimal("1100.00")

    async def test_update_validates_first(self, ledger, store, checking):
        tx_id = await ledger.create_transaction(WORKSPACE, USER, tx_input(checking, "100.00"))

        with pytest.raises(ValidationError):
            await ledger.update_transaction(WORKSPACE, USER, tx_id, tx_input(checking, "0"))

        tx = await store.get_transaction(WORKSPACE, tx_id)
        assert tx.amount == Decimal("100.00")
        assert await balance_of(store, checking) == Decimal("900.00")


class TestRollback:
    """A failure mid-operation undoes every completed write."""

    @pytest.fixture
    def failing_store(self):
        return FailingStore()

    @pytest.fixture
    def failing_ledger(self, failing_store, audit_logger, clock, settings):
        return BalanceLedger(failing_store, audit_logger=audit_logger, clock=clock, settings=settings)

    async def _open(self, store, name, initial):
        return await store.create_account(
            WORKSPACE, Account(name=name, initial_balance=initial, current_balance=initial)
        )

    async def test_failed_transfer_leg_is_rolled_back(self, failing_store, failing_ledger, audit_storage):
        a = await self._open(failing_store, "A", "1000.00")
        b = await self._open(failing_store, "B", "0")
        failing_store.fail_account = b

        with pytest.raises(StorageError):
            await failing_ledger.create_transaction(
                WORKSPACE,
                USER,
                tx_input(a, "300.00", TransactionType.TRANSFER, target_account_id=b),
            )

        assert await balance_of(failing_store, a) == Decimal("1000.00")
        assert await balance_of(failing_store, b) == Decimal("0.00")
        assert await stored_transactions(failing_store) == []
        types = [e.event_type for e in audit_storage.events]
        assert AuditEventType.OPERATION_ROLLED_BACK in types
        assert AuditEventType.TRANSACTION_CREATED not in types

    async def test_failed_rewrite_restores_old_effect(self, failing_store, failing_ledger):
        a = await self._open(failing_store, "A", "1000.00")
        tx_id = await failing_ledger.create_transaction(WORKSPACE, USER, tx_input(a, "150.00"))
        failing_store.fail_transaction_updates = True

        with pytest.raises(StorageError):
            await failing_ledger.update_transaction(WORKSPACE, USER, tx_id, tx_input(a, "200.00"))

        assert await balance_of(failing_store, a) == Decimal("850.00")
        tx = await failing_store.get_transaction(WORKSPACE, tx_id)
        assert tx.amount == Decimal("150.00")
        assert tx.balance_state == BalanceState.APPLIED


class TestInstallmentPurchases:
    """One expense per parcel, deferred until due."""

    def purchase(self, account_id, card_id, purchase_date=date(2025, 1, 5), **extra):
        values = dict(
            total_amount="100.00",
            installments_count=3,
            purchase_date=purchase_date,
            credit_card_id=card_id,
            account_id=account_id,
            description="Laptop",
        )
        values.update(extra)
        return InstallmentPurchaseInput(**values)

    async def test_all_parcels_due(self, ledger, store, checking, card):
        result = await ledger.create_installment_transactions(
            WORKSPACE, USER, self.purchase(checking, card)
        )

        assert result.count == 3
        assert result.first_id == result.transaction_ids[0]
        parcels = [await store.get_transaction(WORKSPACE, i) for i in result.transaction_ids]
        assert [p.amount for p in parcels] == [Decimal("33.33"), Decimal("33.33"), Decimal("33.34")]
        assert [p.date for p in parcels] == [
            datetime(2025, 1, 10),
            datetime(2025, 2, 10),
            datetime(2025, 3, 10),
        ]
        assert [p.description for p in parcels] == ["Laptop (1/3)", "Laptop (2/3)", "Laptop (3/3)"]
        assert [p.installment_number for p in parcels] == [1, 2, 3]
        assert {p.credit_card_purchase_id for p in parcels} == {result.first_id}
        assert all(p.type == TransactionType.EXPENSE for p in parcels)
        assert await balance_of(store, checking) == Decimal("900.00")

    async def test_future_parcels_are_deferred(self, ledger, store, checking, card, audit_storage):
        result = await ledger.create_installment_transactions(
            WORKSPACE, USER, self.purchase(checking, card, purchase_date=date(2025, 3, 5))
        )

        parcels = [await store.get_transaction(WORKSPACE, i) for i in result.transaction_ids]
        assert [p.balance_state for p in parcels] == [
            BalanceState.APPLIED,
            BalanceState.UNAPPLIED,
            BalanceState.UNAPPLIED,
        ]
        assert await balance_of(store, checking) == Decimal("966.67")

        events = await audit_storage.get_events_by_entity("installment_group", result.first_id)
        assert events[0].details["applied_count"] == 1

    async def test_missing_card(self, ledger, store, checking):
        with pytest.raises(NotFoundError, match="credit card not found"):
            await ledger.create_installment_transactions(
                WORKSPACE, USER, self.purchase(checking, "no-card")
            )
        assert await stored_transactions(store) == []

    async def test_explicit_days_override_card(self, ledger, store, checking, card):
        result = await ledger.create_installment_transactions(
            WORKSPACE, USER, self.purchase(checking, card, closing_day=28, due_day=31)
        )

        parcels = [await store.get_transaction(WORKSPACE, i) for i in result.transaction_ids]
        assert [p.date.date() for p in parcels] == [
            date(2025, 1, 31),
            date(2025, 2, 28),
            date(2025, 3, 31),
        ]

    async def test_default_description(self, ledger, store, checking, card):
        result = await ledger.create_installment_transactions(
            WORKSPACE, USER, self.purchase(checking, card, description="  ", installments_count=2)
        )

        first = await store.get_transaction(WORKSPACE, result.first_id)
        assert first.description == "Installment purchase (1/2)"

    async def test_count_must_be_positive(self, ledger, store, checking, card):
        with pytest.raises(ValidationError, match="installments count"):
            await ledger.create_installment_transactions(
                WORKSPACE, USER, self.purchase(checking, card, installments_count=0)
            )
        assert await stored_transactions(store) == []

    async def test_total_too_small_for_count(self, ledger, store, checking, card):
        """0.02 in 3 parcels would store two parcels of 0.00."""
        with pytest.raises(ValidationError, match="amount must be positive"):
            await ledger.create_installment_transactions(
                WORKSPACE, USER, self.purchase(checking, card, total_amount="0.02")
            )
        assert await stored_transactions(store) == []
        assert await balance_of(store, checking) == Decimal("1000.00")

    async def test_one_cent_per_parcel(self, ledger, store, checking, card):
        result = await ledger.create_installment_transactions(
            WORKSPACE, USER, self.purchase(checking, card, total_amount="0.03")
        )

        parcels = [await store.get_transaction(WORKSPACE, i) for i in result.transaction_ids]
        assert [p.amount for p in parcels] == [Decimal("0.01")] * 3


class TestInstallmentGroups:
    """Editing and deleting a purchase as a whole."""

    @pytest.fixture
    async def purchase_id(self, ledger, checking, card):
        result = await ledger.create_installment_transactions(
            WORKSPACE,
            USER,
            InstallmentPurchaseInput(
                total_amount="100.00",
                installments_count=3,
                purchase_date=date(2025, 3, 5),
                credit_card_id=card,
                account_id=checking,
                description="Phone",
            ),
        )
        return result.first_id

    async def members(self, store, purchase_id):
        page = await store.query_transactions(
            WORKSPACE, TransactionQuery(credit_card_purchase_id=purchase_id)
        )
        return sorted(page.items, key=lambda tx: tx.installment_number)

    async def test_update_keeps_amounts_dates_and_suffix(self, ledger, store, checking, card, purchase_id):
        before = await self.members(store, purchase_id)

        count = await ledger.update_installment_group(
            WORKSPACE,
            USER,
            purchase_id,
            InstallmentGroupChanges(
                account_id=checking,
                credit_card_id=card,
                category_id="cat-tech",
                description="New phone",
            ),
        )

        after = await self.members(store, purchase_id)
        assert count == 3
        assert [m.description for m in after] == ["New phone (1/3)", "New phone (2/3)", "New phone (3/3)"]
        assert [m.amount for m in after] == [m.amount for m in before]
        assert [m.date for m in after] == [m.date for m in before]
        assert {m.category_id for m in after} == {"cat-tech"}
        assert await balance_of(store, checking) == Decimal("966.67")

    async def test_update_moves_applied_parcels(self, ledger, store, checking, savings, purchase_id):
        await ledger.update_installment_group(
            WORKSPACE,
            USER,
            purchase_id,
            InstallmentGroupChanges(account_id=savings),
        )

        after = await self.members(store, purchase_id)
        assert [m.description for m in after] == ["Phone (1/3)", "Phone (2/3)", "Phone (3/3)"]
        assert [m.balance_state for m in after] == [
            BalanceState.APPLIED,
            BalanceState.UNAPPLIED,
            BalanceState.UNAPPLIED,
        ]
        assert await balance_of(store, checking) == Decimal("1000.00")
        assert await balance_of(store, savings) == Decimal("-33.33")

    async def test_delete_group(self, ledger, store, checking, purchase_id):
        deleted = await ledger.delete_installment_group(WORKSPACE, purchase_id)

        assert deleted == 3
        assert await self.members(store, purchase_id) == []
        assert await balance_of(store, checking) == Decimal("1000.00")

    async def test_unknown_group(self, ledger, checking):
        with pytest.raises(NotFoundError, match="installment group not found"):
            await ledger.delete_installment_group(WORKSPACE, "nope")
        with pytest.raises(NotFoundError, match="installment group not found"):
            await ledger.update_installment_group(
                WORKSPACE, USER, "nope", InstallmentGroupChanges(account_id=checking)
            )


class TestReconciliation:
    """Recompute balances from applied transactions."""

    async def test_consistent_after_normal_operations(self, ledger, checking, savings):
        await ledger.create_transaction(WORKSPACE, USER, tx_input(checking, "150.00"))
        await ledger.create_transaction(
            WORKSPACE,
            USER,
            tx_input(checking, "300.00", TransactionType.TRANSFER, target_account_id=savings),
        )
        await ledger.create_transaction(WORKSPACE, USER, tx_input(savings, "20.00", when=NEXT_WEEK))

        reports = await ledger.reconcile_balances(WORKSPACE)

        assert len(reports) == 2
        assert all(r.is_consistent for r in reports)

    async def test_detects_and_repairs_drift(self, ledger, store, checking, audit_storage):
        await ledger.create_transaction(WORKSPACE, USER, tx_input(checking, "150.00"))
        await store.update_account(WORKSPACE, checking, {"current_balance": Decimal("5.00")})

        reports = await ledger.reconcile_balances(WORKSPACE)
        assert reports[0].drift == Decimal("-845.00")
        assert not reports[0].repaired
        assert await balance_of(store, checking) == Decimal("5.00")

        reports = await ledger.reconcile_balances(WORKSPACE, repair=True)
        assert reports[0].repaired
        assert await balance_of(store, checking) == Decimal("850.00")

        reports = await ledger.reconcile_balances(WORKSPACE)
        assert reports[0].is_consistent
        types = [e.event_type for e in audit_storage.events]
        assert AuditEventType.BALANCE_DRIFT_DETECTED in types
        assert AuditEventType.BALANCE_REPAIRED in types
