"""
Audit Models for the Household Ledger

Every balance-affecting action in the system is logged for audit purposes.
This provides:
1. Traceability of every balance change back to a transaction
2. Debugging information when a balance drifts
3. A record of consistency risks (write conflicts, failed rollbacks)

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Every ledger operation has its own event type.
    """
    # Transactions
    TRANSACTION_CREATED = "transaction_created"
    TRANSACTION_UPDATED = "transaction_updated"
    TRANSACTION_DELETED = "transaction_deleted"
    INSTALLMENT_PURCHASE_CREATED = "installment_purchase_created"
    INSTALLMENT_GROUP_UPDATED = "installment_group_updated"
    INSTALLMENT_GROUP_DELETED = "installment_group_deleted"

    # Deferred effects
    PENDING_TRANSACTION_APPLIED = "pending_transaction_applied"
    SWEEP_COMPLETED = "sweep_completed"
    RECURRING_INSTANCE_CREATED = "recurring_instance_created"

    # Consistency
    BALANCE_CONFLICT = "balance_conflict"
    ACCOUNT_MISSING = "account_missing"
    OPERATION_ROLLED_BACK = "operation_rolled_back"
    ROLLBACK_STEP_FAILED = "rollback_step_failed"
    BALANCE_DRIFT_DETECTED = "balance_drift_detected"
    BALANCE_REPAIRED = "balance_repaired"

    # System events
    SYSTEM_ERROR = "system_error"
    STORAGE_ERROR = "storage_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Context - which workspace and entity is this about?
    workspace_id: Optional[str] = None
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'transaction', 'account')"
    )
    entity_id: Optional[str] = None

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all parcels of one purchase)"
    )

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)

    # Error information (if applicable)
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user command?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "workspace_id": self.workspace_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, workspace_id, entity_type,
         entity_id, correlation_id, description, details_json, error_message,
         is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.workspace_id or "",
            self.entity_type or "",
            self.entity_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.transaction_created(ws, tx_id, "expense", "10.00", True)
        event = AuditEventBuilder.balance_conflict(ws, account_id, expected_version=3)
    """

    @staticmethod
    def transaction_created(
        workspace_id: str,
        transaction_id: str,
        transaction_type: str,
        amount: str,
        applied: bool,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        state = "applied" if applied else "deferred"
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_CREATED,
            workspace_id=workspace_id,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Transaction created: {transaction_type} {amount} ({state})",
            details={
                "type": transaction_type,
                "amount": amount,
                "applied": applied,
            },
            is_user_action=True,
        )

    @staticmethod
    def transaction_updated(
        workspace_id: str,
        transaction_id: str,
        old_amount: str,
        new_amount: str,
        reverted: bool,
        applied: bool,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_UPDATED,
            workspace_id=workspace_id,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Transaction updated: {old_amount} -> {new_amount}",
            details={
                "old_amount": old_amount,
                "new_amount": new_amount,
                "reverted": reverted,
                "applied": applied,
            },
            is_user_action=True,
        )

    @staticmethod
    def transaction_deleted(
        workspace_id: str,
        transaction_id: str,
        amount: str,
        reverted: bool,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_DELETED,
            workspace_id=workspace_id,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Transaction deleted: {amount}",
            details={"amount": amount, "reverted": reverted},
            is_user_action=True,
        )

    @staticmethod
    def installment_purchase_created(
        workspace_id: str,
        purchase_id: str,
        total_amount: str,
        count: int,
        applied_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INSTALLMENT_PURCHASE_CREATED,
            workspace_id=workspace_id,
            entity_type="installment_group",
            entity_id=purchase_id,
            correlation_id=correlation_id,
            description=f"Installment purchase created: {total_amount} in {count} parcels",
            details={
                "total_amount": total_amount,
                "count": count,
                "applied_count": applied_count,
            },
            is_user_action=True,
        )

    @staticmethod
    def installment_group_changed(
        workspace_id: str,
        purchase_id: str,
        count: int,
        deleted: bool,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        event_type = (
            AuditEventType.INSTALLMENT_GROUP_DELETED
            if deleted
            else AuditEventType.INSTALLMENT_GROUP_UPDATED
        )
        action = "deleted" if deleted else "updated"
        return AuditEvent(
            event_type=event_type,
            workspace_id=workspace_id,
            entity_type="installment_group",
            entity_id=purchase_id,
            correlation_id=correlation_id,
            description=f"Installment group {action} ({count} parcels)",
            details={"count": count},
            is_user_action=True,
        )

    @staticmethod
    def pending_applied(
        workspace_id: str,
        transaction_id: str,
        amount: str,
        due_date: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PENDING_TRANSACTION_APPLIED,
            workspace_id=workspace_id,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Deferred transaction applied: {amount} due {due_date}",
            details={"amount": amount, "due_date": due_date},
        )

    @staticmethod
    def sweep_completed(
        workspace_id: str,
        scanned: int,
        applied: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SWEEP_COMPLETED,
            workspace_id=workspace_id,
            correlation_id=correlation_id,
            description=f"Pending sweep applied {applied} of {scanned} scanned",
            details={"scanned": scanned, "applied": applied},
        )

    @staticmethod
    def recurring_instance_created(
        workspace_id: str,
        template_id: str,
        transaction_id: str,
        occurrence: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECURRING_INSTANCE_CREATED,
            workspace_id=workspace_id,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Recurring instance created for {occurrence}",
            details={"template_id": template_id, "occurrence": occurrence},
        )

    @staticmethod
    def balance_conflict(
        workspace_id: str,
        account_id: str,
        expected_version: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BALANCE_CONFLICT,
            severity=AuditSeverity.WARNING,
            workspace_id=workspace_id,
            entity_type="account",
            entity_id=account_id,
            correlation_id=correlation_id,
            description="Concurrent balance write detected; retrying read-modify-write",
            details={"expected_version": expected_version},
        )

    @staticmethod
    def account_missing(
        workspace_id: str,
        account_id: str,
        delta: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_MISSING,
            severity=AuditSeverity.WARNING,
            workspace_id=workspace_id,
            entity_type="account",
            entity_id=account_id,
            correlation_id=correlation_id,
            description=f"Balance delta {delta} skipped: account not found",
            details={"delta": delta},
        )

    @staticmethod
    def operation_rolled_back(
        workspace_id: str,
        operation: str,
        steps: int,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OPERATION_ROLLED_BACK,
            severity=AuditSeverity.WARNING,
            workspace_id=workspace_id,
            correlation_id=correlation_id,
            description=f"{operation} failed; {steps} step(s) undone",
            error_message=error_message,
            details={"operation": operation, "steps": steps},
        )

    @staticmethod
    def rollback_step_failed(
        workspace_id: str,
        operation: str,
        step: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ROLLBACK_STEP_FAILED,
            severity=AuditSeverity.CRITICAL,
            workspace_id=workspace_id,
            correlation_id=correlation_id,
            description=f"Could not undo '{step}' of {operation}; balances need reconciliation",
            error_message=error_message,
            details={"operation": operation, "step": step},
        )

    @staticmethod
    def balance_drift(
        workspace_id: str,
        account_id: str,
        recorded: str,
        expected: str,
        repaired: bool,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=(
                AuditEventType.BALANCE_REPAIRED
                if repaired
                else AuditEventType.BALANCE_DRIFT_DETECTED
            ),
            severity=AuditSeverity.WARNING,
            workspace_id=workspace_id,
            entity_type="account",
            entity_id=account_id,
            correlation_id=correlation_id,
            description=f"Balance drift: recorded {recorded}, expected {expected}",
            details={"recorded": recorded, "expected": expected, "repaired": repaired},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def storage_error(
        operation: str,
        error_message: str,
        workspace_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STORAGE_ERROR,
            severity=AuditSeverity.ERROR,
            workspace_id=workspace_id,
            description=f"Storage error during {operation}",
            error_message=error_message,
            details={"operation": operation},
            correlation_id=correlation_id,
        )
