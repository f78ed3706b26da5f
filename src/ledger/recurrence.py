"""
Recurrence Expander

A recurring template is a transaction with is_recurring set. Every
elapsed occurrence after the template's own date becomes a regular
transaction created through the ledger, carrying
recurrence_template_id and recurrence_key (the occurrence's ISO date).
That pair is what makes expansion idempotent.

Monthly and yearly occurrences keep the template's day of month,
clamped to short months (Jan 31 -> Feb 28 -> Mar 31).
"""

from datetime import date, datetime
from typing import Iterator, Optional
from uuid import UUID

from src.audit import AuditLogger
from src.config import LedgerSettings, get_settings
from src.ledger.service import BalanceLedger, collect_transactions
from src.models.ledger import (
    RecurrenceFrequency,
    Transaction,
    TransactionInput,
    TransactionQuery,
)
from src.services.storage import DocumentStoreInterface
from src.utils.dates import Clock, add_months, add_weeks, add_years, local_now


def occurrence_dates(template: Transaction, until: date) -> Iterator[date]:
    """Occurrences strictly after the template date, up to and including `until`."""
    start = template.date.date()
    step = {
        RecurrenceFrequency.WEEKLY: add_weeks,
        RecurrenceFrequency.MONTHLY: add_months,
        RecurrenceFrequency.YEARLY: add_years,
    }[template.recurrence_frequency]

    n = 1
    while True:
        occurrence = step(start, n)
        if occurrence > until:
            return
        yield occurrence
        n += 1


class RecurrenceExpander:
    """Materializes elapsed occurrences of recurring templates."""

    def __init__(
        self,
        store: DocumentStoreInterface,
        ledger: BalanceLedger,
        audit_logger: Optional[AuditLogger] = None,
        clock: Clock = local_now,
        settings: Optional[LedgerSettings] = None,
    ):
        self._store = store
        self._ledger = ledger
        self._audit = audit_logger or AuditLogger()
        self._clock = clock
        self._settings = settings or get_settings().ledger

    async def _templates(self, workspace_id: str) -> list[Transaction]:
        found = await collect_transactions(
            self._store,
            workspace_id,
            TransactionQuery(is_recurring=True, limit=self._settings.sweep_page_size),
        )
        return [
            tx for tx in found
            if tx.recurrence_frequency is not None and tx.recurrence_template_id is None
        ]

    async def _existing_keys(self, workspace_id: str, template_id: str) -> set[str]:
        instances = await collect_transactions(
            self._store,
            workspace_id,
            TransactionQuery(
                recurrence_template_id=template_id,
                limit=self._settings.sweep_page_size,
            ),
        )
        return {tx.recurrence_key for tx in instances if tx.recurrence_key}

    async def ensure_recurring_instances(
        self,
        workspace_id: str,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> list[str]:
        """
        Create every missing occurrence up to today.

        At most max_recurrence_catchup instances are created per template
        per call (oldest first); the next call continues from there.

        Returns:
            Ids of the transactions created
        """
        today = self._clock().date()
        created = []

        for template in await self._templates(workspace_id):
            existing = await self._existing_keys(workspace_id, template.id)
            budget = self._settings.max_recurrence_catchup

            for occurrence in occurrence_dates(template, today):
                if budget == 0:
                    break
                key = occurrence.isoformat()
                if key in existing:
                    continue

                data = TransactionInput.from_transaction(
                    template,
                    date=datetime.combine(occurrence, template.date.time()),
                    is_recurring=False,
                    recurrence_template_id=template.id,
                    recurrence_key=key,
                )
                tx_id = await self._ledger.create_transaction(
                    workspace_id, user_id, data, correlation_id
                )
                existing.add(key)
                created.append(tx_id)
                budget -= 1

                await self._audit.log_recurring_instance_created(
                    workspace_id=workspace_id,
                    template_id=template.id,
                    transaction_id=tx_id,
                    occurrence=key,
                    correlation_id=correlation_id,
                )

        return created
