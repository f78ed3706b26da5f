"""
Shared fixtures.

Every time-dependent component gets the same FixedClock, pinned to
2025-03-15 12:00 local, so "today", "future" and "due" are deterministic.
"""

from datetime import datetime, timedelta

import pytest

from src.audit import AuditLogger
from src.config import LedgerSettings
from src.ledger import (
    AccountLocks,
    BalanceLedger,
    PendingTransactionSweeper,
    RecurrenceExpander,
    WorkspaceCatalog,
)
from src.models.ledger import RevertPolicy
from src.queries import LedgerQueryExecutor
from src.services.storage import InMemoryAuditStorage, InMemoryDocumentStore

WORKSPACE = "ws-household"
USER = "user-ana"
NOW = datetime(2025, 3, 15, 12, 0)


class FixedClock:
    """A clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def make_settings(**overrides) -> LedgerSettings:
    values = dict(
        revert_policy=RevertPolicy.APPLIED_ONLY,
        sweep_page_size=3,  # small, so pagination is exercised
        max_recurrence_catchup=36,
        default_closing_day=10,
        default_due_day=10,
        default_installment_description="Installment purchase",
    )
    values.update(overrides)
    return LedgerSettings(**values)


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def audit_logger(audit_storage):
    return AuditLogger(audit_storage)


@pytest.fixture
def locks():
    return AccountLocks()


@pytest.fixture
def ledger(store, audit_logger, locks, clock, settings):
    return BalanceLedger(
        store,
        audit_logger=audit_logger,
        locks=locks,
        clock=clock,
        settings=settings,
    )


@pytest.fixture
def sweeper(store, audit_logger, locks, clock, settings):
    return PendingTransactionSweeper(
        store,
        audit_logger=audit_logger,
        locks=locks,
        clock=clock,
        settings=settings,
    )


@pytest.fixture
def expander(store, ledger, audit_logger, clock, settings):
    return RecurrenceExpander(
        store,
        ledger,
        audit_logger=audit_logger,
        clock=clock,
        settings=settings,
    )


@pytest.fixture
def catalog(store):
    return WorkspaceCatalog(store)


@pytest.fixture
def queries(store, clock, settings):
    return LedgerQueryExecutor(store, clock=clock, settings=settings)


@pytest.fixture
async def checking(catalog):
    """Account id of a bank account opened with 1000.00."""
    return await catalog.create_account(WORKSPACE, "Checking", initial_balance="1000.00")


@pytest.fixture
async def savings(catalog):
    """Account id of an empty savings account."""
    return await catalog.create_account(WORKSPACE, "Savings", initial_balance=0)


@pytest.fixture
async def card(catalog):
    """Credit card id, closing on the 1st and due on the 10th."""
    return await catalog.create_credit_card(WORKSPACE, "Visa", closing_day=1, due_day=10)


async def balance_of(store, account_id):
    account = await store.get_account(WORKSPACE, account_id)
    return account.current_balance
