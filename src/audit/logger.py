"""
Audit Logger

DESIGN DECISION: Every balance-affecting action in the system is logged.
This provides:
1. Traceability from any balance back to the transactions that moved it
2. Debugging capability when a balance drifts
3. A record of consistency risks (write conflicts, failed rollbacks)

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the ledger if logging fails)
- Supports correlation IDs to trace related events
"""

import logging
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

import structlog

from src.models.audit import AuditEvent, AuditEventBuilder
from src.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def configure_logging(level: str = "INFO") -> None:
    """Route the stdlib root logger (which structlog writes through) at `level`."""
    logging.basicConfig(format="%(message)s", level=getattr(logging, level.upper()))


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence and household visibility)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("ledger.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # An unpersisted audit row must never undo a balance write
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_transaction_created(
        self,
        workspace_id: str,
        transaction_id: str,
        transaction_type: str,
        amount: Decimal,
        applied: bool,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.transaction_created(
            workspace_id=workspace_id,
            transaction_id=transaction_id,
            transaction_type=transaction_type,
            amount=str(amount),
            applied=applied,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_transaction_updated(
        self,
        workspace_id: str,
        transaction_id: str,
        old_amount: Decimal,
        new_amount: Decimal,
        reverted: bool,
        applied: bool,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.transaction_updated(
            workspace_id=workspace_id,
            transaction_id=transaction_id,
            old_amount=str(old_amount),
            new_amount=str(new_amount),
            reverted=reverted,
            applied=applied,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_transaction_deleted(
        self,
        workspace_id: str,
        transaction_id: str,
        amount: Decimal,
        reverted: bool,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.transaction_deleted(
            workspace_id=workspace_id,
            transaction_id=transaction_id,
            amount=str(amount),
            reverted=reverted,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_installment_purchase_created(
        self,
        workspace_id: str,
        purchase_id: str,
        total_amount: Decimal,
        count: int,
        applied_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.installment_purchase_created(
            workspace_id=workspace_id,
            purchase_id=purchase_id,
            total_amount=str(total_amount),
            count=count,
            applied_count=applied_count,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_installment_group_changed(
        self,
        workspace_id: str,
        purchase_id: str,
        count: int,
        deleted: bool,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.installment_group_changed(
            workspace_id=workspace_id,
            purchase_id=purchase_id,
            count=count,
            deleted=deleted,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_pending_applied(
        self,
        workspace_id: str,
        transaction_id: str,
        amount: Decimal,
        due_date: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a deferred transaction reaching its date."""
        event = AuditEventBuilder.pending_applied(
            workspace_id=workspace_id,
            transaction_id=transaction_id,
            amount=str(amount),
            due_date=due_date,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_sweep_completed(
        self,
        workspace_id: str,
        scanned: int,
        applied: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.sweep_completed(
            workspace_id=workspace_id,
            scanned=scanned,
            applied=applied,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_recurring_instance_created(
        self,
        workspace_id: str,
        template_id: str,
        transaction_id: str,
        occurrence: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.recurring_instance_created(
            workspace_id=workspace_id,
            template_id=template_id,
            transaction_id=transaction_id,
            occurrence=occurrence,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_balance_conflict(
        self,
        workspace_id: str,
        account_id: str,
        expected_version: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a lost compare-and-swap on an account balance."""
        event = AuditEventBuilder.balance_conflict(
            workspace_id=workspace_id,
            account_id=account_id,
            expected_version=expected_version,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_account_missing(
        self,
        workspace_id: str,
        account_id: str,
        delta: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.account_missing(
            workspace_id=workspace_id,
            account_id=account_id,
            delta=str(delta),
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_operation_rolled_back(
        self,
        workspace_id: str,
        operation: str,
        steps: int,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.operation_rolled_back(
            workspace_id=workspace_id,
            operation=operation,
            steps=steps,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_rollback_step_failed(
        self,
        workspace_id: str,
        operation: str,
        step: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.rollback_step_failed(
            workspace_id=workspace_id,
            operation=operation,
            step=step,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_balance_drift(
        self,
        workspace_id: str,
        account_id: str,
        recorded: Decimal,
        expected: Decimal,
        repaired: bool,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.balance_drift(
            workspace_id=workspace_id,
            account_id=account_id,
            recorded=str(recorded),
            expected=str(expected),
            repaired=repaired,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_storage_error(
        self,
        operation: str,
        error_message: str,
        workspace_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.storage_error(
            operation=operation,
            error_message=error_message,
            workspace_id=workspace_id,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new ledger operation (e.g., an installment
    purchase). Pass it through all subsequent writes.
    """
    return uuid4()
