"""Tests for the delta table, the balance updater, locks and the undo journal."""

import asyncio
from decimal import Decimal
from functools import partial

import pytest

from src.ledger import (
    AccountLocks,
    BalanceUpdater,
    ConsistencyError,
    LedgerJournal,
    balance_deltas,
    revert_deltas,
)
from src.models.audit import AuditEventType
from src.models.ledger import Account, TransactionType
from src.services.storage import ConcurrentModificationError, InMemoryDocumentStore

from tests.conftest import WORKSPACE, balance_of


class ConflictingStore(InMemoryDocumentStore):
    """Loses the compare-and-swap race a fixed number of times."""

    def __init__(self, conflicts: int):
        super().__init__()
        self.conflicts = conflicts

    async def update_account(self, workspace_id, account_id, fields, expected_version=None):
        if expected_version is not None and self.conflicts > 0:
            self.conflicts -= 1
            # Someone else wrote in between: bump the stored version
            await super().update_account(workspace_id, account_id, {})
            raise ConcurrentModificationError(account_id, expected_version, expected_version + 1)
        return await super().update_account(workspace_id, account_id, fields, expected_version)


class TestDeltaTable:
    """The single source of truth for how transactions move money."""

    @pytest.mark.parametrize("tx_type,expected", [
        (TransactionType.INCOME, Decimal("10.00")),
        (TransactionType.YIELD, Decimal("10.00")),
        (TransactionType.EXPENSE, Decimal("-10.00")),
        (TransactionType.INVESTMENT, Decimal("-10.00")),
    ])
    def test_single_account_types(self, tx_type, expected):
        assert balance_deltas(tx_type, "10.00", "a") == {"a": expected}

    def test_amount_sign_is_ignored(self):
        assert balance_deltas(TransactionType.INCOME, "-10.00", "a") == {"a": Decimal("10.00")}

    def test_transfer_moves_between_accounts(self):
        deltas = balance_deltas(TransactionType.TRANSFER, "25.50", "a", "b")
        assert deltas == {"a": Decimal("-25.50"), "b": Decimal("25.50")}
        assert sum(deltas.values()) == 0

    def test_transfer_without_target_is_a_no_op(self):
        assert balance_deltas(TransactionType.TRANSFER, "25.50", "a", None) == {}

    def test_revert_is_exact_negation(self):
        deltas = balance_deltas(TransactionType.TRANSFER, "25.50", "a", "b")
        assert revert_deltas(deltas) == {"a": Decimal("25.50"), "b": Decimal("-25.50")}


class TestBalanceUpdater:
    """Read-modify-write with compare-and-swap."""

    @pytest.mark.parametrize("tx_type", list(TransactionType))
    async def test_apply_then_revert_round_trip(self, store, audit_logger, tx_type):
        updater = BalanceUpdater(store, audit_logger)
        a = await store.create_account(WORKSPACE, _account("A", "100.00"))
        b = await store.create_account(WORKSPACE, _account("B", "50.00"))

        deltas = balance_deltas(tx_type, "12.34", a, b)
        await updater.apply_deltas(WORKSPACE, deltas)
        await updater.apply_deltas(WORKSPACE, revert_deltas(deltas))

        assert await balance_of(store, a) == Decimal("100.00")
        assert await balance_of(store, b) == Decimal("50.00")

    async def test_every_write_bumps_version(self, store, audit_logger):
        updater = BalanceUpdater(store, audit_logger)
        a = await store.create_account(WORKSPACE, _account("A", "0"))

        await updater.adjust(WORKSPACE, a, Decimal("1.00"))
        await updater.adjust(WORKSPACE, a, Decimal("1.00"))

        account = await store.get_account(WORKSPACE, a)
        assert account.version == 2
        assert account.current_balance == Decimal("2.00")

    async def test_missing_account_is_skipped_and_logged(self, store, audit_logger, audit_storage):
        updater = BalanceUpdater(store, audit_logger)

        assert await updater.adjust(WORKSPACE, "ghost", Decimal("5.00")) is None
        assert [e.event_type for e in audit_storage.events] == [AuditEventType.ACCOUNT_MISSING]

    async def test_conflict_is_retried(self, audit_logger, audit_storage):
        store = ConflictingStore(conflicts=2)
        updater = BalanceUpdater(store, audit_logger)
        a = await store.create_account(WORKSPACE, _account("A", "100.00"))

        await updater.adjust(WORKSPACE, a, Decimal("-30.00"))

        assert await balance_of(store, a) == Decimal("70.00")
        conflicts = [e for e in audit_storage.events if e.event_type == AuditEventType.BALANCE_CONFLICT]
        assert len(conflicts) == 2

    async def test_exhausted_retries_raise_consistency_error(self, audit_logger):
        store = ConflictingStore(conflicts=100)
        updater = BalanceUpdater(store, audit_logger)
        a = await store.create_account(WORKSPACE, _account("A", "100.00"))

        with pytest.raises(ConsistencyError):
            await updater.adjust(WORKSPACE, a, Decimal("-30.00"))
        assert await balance_of(store, a) == Decimal("100.00")


class TestAccountLocks:
    """Per-account serialization."""

    async def test_hold_orders_and_ignores_none(self):
        locks = AccountLocks()
        async with locks.hold(WORKSPACE, ["b", None, "a", "b"]) as held:
            assert held == ["a", "b"]
            assert locks.is_locked(WORKSPACE, "a")
            assert locks.is_locked(WORKSPACE, "b")
        assert not locks.is_locked(WORKSPACE, "a")

    async def test_overlapping_holders_are_serialized(self):
        locks = AccountLocks()
        order = []

        async def worker(name, ids):
            async with locks.hold(WORKSPACE, ids):
                order.append(f"{name}-in")
                await asyncio.sleep(0.01)
                order.append(f"{name}-out")

        await asyncio.gather(worker("first", ["a", "b"]), worker("second", ["b", "a"]))

        assert order in (
            ["first-in", "first-out", "second-in", "second-out"],
            ["second-in", "second-out", "first-in", "first-out"],
        )

    async def test_workspaces_do_not_share_locks(self):
        locks = AccountLocks()
        async with locks.hold("ws-1", ["a"]):
            assert not locks.is_locked("ws-2", "a")


class TestLedgerJournal:
    """Undo on failure."""

    async def test_rolls_back_in_reverse_order(self, audit_logger, audit_storage):
        undone = []

        async def undo(label):
            undone.append(label)

        with pytest.raises(RuntimeError, match="boom"):
            async with LedgerJournal("op", WORKSPACE, audit_logger) as journal:
                journal.record("first", partial(undo, "first"))
                journal.record("second", partial(undo, "second"))
                raise RuntimeError("boom")

        assert undone == ["second", "first"]
        assert audit_storage.events[-1].event_type == AuditEventType.OPERATION_ROLLED_BACK
        assert audit_storage.events[-1].details["steps"] == 2

    async def test_failed_undo_is_audited_and_others_still_run(self, audit_logger, audit_storage):
        undone = []

        async def broken():
            raise ValueError("undo failed")

        async def fine():
            undone.append("fine")

        with pytest.raises(RuntimeError):
            async with LedgerJournal("op", WORKSPACE, audit_logger) as journal:
                journal.record("fine", fine)
                journal.record("broken", broken)
                raise RuntimeError("boom")

        assert undone == ["fine"]
        types = [e.event_type for e in audit_storage.events]
        assert AuditEventType.ROLLBACK_STEP_FAILED in types

    async def test_success_discards_steps(self, audit_logger):
        async with LedgerJournal("op", WORKSPACE, audit_logger) as journal:
            journal.record("step", _never_called)
        assert journal.steps == []


async def _never_called():
    raise AssertionError("undo must not run on success")


def _account(name, initial):
    return Account(name=name, initial_balance=initial, current_balance=initial)
