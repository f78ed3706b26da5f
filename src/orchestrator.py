"""
Main Orchestrator for the Household Ledger

This module ties together all the components and defines the
end-to-end "dashboard load" flow:
1. Recurrence expansion (materialize elapsed recurring occurrences)
2. Pending sweep (apply deferred transactions now due)
3. Period summary (read-side figures)

DESIGN DECISION: The orchestrator enforces the ordering. Recurrence runs
before the sweep so an occurrence created later today as UNAPPLIED is
caught by the same load; the summary runs last so it sees both.

Every component built here shares one AccountLocks registry. Two
components with separate registries could interleave writes to the
same account.
"""

from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from src.audit import AuditLogger, configure_logging, create_correlation_id
from src.config import get_settings
from src.ledger import (
    AccountLocks,
    BalanceLedger,
    LedgerError,
    PendingTransactionSweeper,
    RecurrenceExpander,
    WorkspaceCatalog,
)
from src.models.ledger import PeriodSummary, SummaryPeriod, SweepResult
from src.queries import LedgerQueryExecutor
from src.services.storage import (
    AuditStorageInterface,
    DocumentStoreInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsDocumentStore,
    InMemoryAuditStorage,
    InMemoryDocumentStore,
    StorageError,
)
from src.utils.dates import Clock, local_now


class DashboardLoad(BaseModel):
    """Everything one dashboard load did and computed."""
    correlation_id: UUID
    recurring_created: list[str] = Field(default_factory=list)
    sweep: SweepResult
    summary: PeriodSummary


class DashboardFlow:
    """
    Orchestrates the dashboard load.

    Flow:
    1. Expand recurring templates
    2. Sweep pending transactions
    3. Summarize the selected period
    """

    def __init__(
        self,
        expander: RecurrenceExpander,
        sweeper: PendingTransactionSweeper,
        queries: LedgerQueryExecutor,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._expander = expander
        self._sweeper = sweeper
        self._queries = queries
        self._audit_logger = audit_logger or AuditLogger()

    async def load(
        self,
        workspace_id: str,
        user_id: str,
        period: SummaryPeriod = SummaryPeriod.THIS_MONTH,
        category_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> DashboardLoad:
        correlation_id = correlation_id or create_correlation_id()

        try:
            created = await self._expander.ensure_recurring_instances(
                workspace_id, user_id, correlation_id
            )
            sweep = await self._sweeper.apply_pending_transactions(
                workspace_id, correlation_id
            )
            summary = await self._queries.period_summary(
                workspace_id, period, category_id
            )
        except StorageError as e:
            await self._audit_logger.log_storage_error(
                operation="dashboard_load",
                error_message=str(e),
                workspace_id=workspace_id,
                correlation_id=correlation_id,
            )
            raise
        except LedgerError as e:
            await self._audit_logger.log_error(
                error_type=type(e).__name__,
                error_message=str(e),
                details={"operation": "dashboard_load", "workspace_id": workspace_id},
                correlation_id=correlation_id,
            )
            raise

        return DashboardLoad(
            correlation_id=correlation_id,
            recurring_created=created,
            sweep=sweep,
            summary=summary,
        )


class AppComponents(BaseModel):
    """The wired-up application."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    store: DocumentStoreInterface
    audit_storage: AuditStorageInterface
    audit_logger: AuditLogger
    locks: AccountLocks
    ledger: BalanceLedger
    sweeper: PendingTransactionSweeper
    expander: RecurrenceExpander
    catalog: WorkspaceCatalog
    queries: LedgerQueryExecutor
    dashboard: DashboardFlow
    sheets_client: Optional[GoogleSheetsClient] = None


def create_app_components(
    store: Optional[DocumentStoreInterface] = None,
    audit_storage: Optional[AuditStorageInterface] = None,
    clock: Clock = local_now,
) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        store: Document store to use. If None, the backend named by
               STORAGE_BACKEND is built (memory or google_sheets).
        audit_storage: Audit persistence. Defaults to the same backend.
        clock: Time source shared by every time-dependent component.

    Raises:
        ConnectionError: If the Google Sheets backend is selected but
                         can't be reached
    """
    settings = get_settings()
    configure_logging(settings.app.log_level)
    ledger_settings = settings.ledger

    sheets_client = None
    if store is None:
        if settings.storage.backend == "google_sheets":
            sheets_client = GoogleSheetsClient()
            sheets_client.get_spreadsheet()
            store = GoogleSheetsDocumentStore(sheets_client)
            audit_storage = audit_storage or GoogleSheetsAuditStorage(sheets_client)
        else:
            store = InMemoryDocumentStore()
    audit_storage = audit_storage or InMemoryAuditStorage()

    audit_logger = AuditLogger(audit_storage)
    locks = AccountLocks()

    ledger = BalanceLedger(
        store,
        audit_logger=audit_logger,
        locks=locks,
        clock=clock,
        settings=ledger_settings,
    )
    sweeper = PendingTransactionSweeper(
        store,
        audit_logger=audit_logger,
        locks=locks,
        clock=clock,
        settings=ledger_settings,
    )
    expander = RecurrenceExpander(
        store,
        ledger,
        audit_logger=audit_logger,
        clock=clock,
        settings=ledger_settings,
    )
    queries = LedgerQueryExecutor(store, clock=clock, settings=ledger_settings)

    return AppComponents(
        store=store,
        audit_storage=audit_storage,
        audit_logger=audit_logger,
        locks=locks,
        ledger=ledger,
        sweeper=sweeper,
        expander=expander,
        catalog=WorkspaceCatalog(store),
        queries=queries,
        dashboard=DashboardFlow(expander, sweeper, queries, audit_logger),
        sheets_client=sheets_client,
    )
